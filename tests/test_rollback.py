"""Tests for rollback coordination and its collaborators."""

import asyncio
import sys

import httpx
import pytest
from unittest.mock import AsyncMock, Mock

from regression_guard.actions.base import ActionResult
from regression_guard.actions.notifications import LoggingNotifier, WebhookNotifier, build_rollback_message
from regression_guard.actions.rollback import CommandRollbackExecutor, RollbackCoordinator
from regression_guard.core.errors import ConfigurationError, ExternalActionError, InsufficientDataError
from regression_guard.core.models import AutoRollbackConfig, RegressionAlert, RollbackState, Severity
from regression_guard.core.scheduler import ManualScheduler
from regression_guard.monitoring.metrics import GuardMetrics


def make_alert(metric: str = "api.responseTime", severity: Severity = Severity.CRITICAL,
               degradation: float = 35.0, alert_id: str = "alert_1_abc") -> RegressionAlert:
    return RegressionAlert(
        id=alert_id,
        metric=metric,
        severity=severity,
        current_value=135.0,
        baseline_value=100.0,
        degradation_percentage=degradation,
        confidence=0.97,
        detected_at=1_700_000_000_000
    )


ENABLED = AutoRollbackConfig(
    enabled=True,
    critical_metrics=("api.responseTime", "page.loadComplete"),
    degradation_threshold=30.0,
    confirmation_window=300.0,
    notification_endpoints=("https://hooks.example.com/a", "ops-pager")
)


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def verifier():
    """Re-check that reports the regression as still present."""
    return Mock(return_value=True)


@pytest.fixture
def coordinator(scheduler, verifier, mock_executor, mock_notifier):
    return RollbackCoordinator(
        ENABLED,
        scheduler,
        verifier,
        executor=mock_executor,
        notifier=mock_notifier,
        metrics=GuardMetrics()
    )


class TestEligibility:
    """Test cases for the eligibility conjunction."""

    def test_eligible_alert(self, coordinator):
        assert coordinator.is_eligible(make_alert())

    @pytest.mark.parametrize("alert", [
        make_alert(metric="component.renderTime"),
        make_alert(degradation=25.0),
        make_alert(severity=Severity.WARNING),
    ])
    def test_each_condition_is_required(self, coordinator, alert):
        assert not coordinator.is_eligible(alert)

    def test_disabled(self, coordinator):
        coordinator.configure(enabled=False)

        assert not coordinator.is_eligible(make_alert())

    def test_emergency_below_threshold_not_eligible(self, coordinator):
        """High severity alone never overrides the degradation threshold."""
        assert not coordinator.is_eligible(make_alert(severity=Severity.EMERGENCY, degradation=29.9))


class TestConfirmation:
    """Test cases for the confirmation window."""

    @pytest.mark.asyncio
    async def test_rollback_after_confirmation(self, coordinator, scheduler, verifier, mock_executor, mock_notifier):
        alert = make_alert()

        assert coordinator.consider(alert) == RollbackState.AWAITING_CONFIRMATION
        assert scheduler.pending() == [f"confirm-rollback:{alert.id}"]

        await scheduler.advance(299)
        assert alert.rollback_triggered is False
        mock_executor.execute.assert_not_awaited()

        await scheduler.advance(1)

        verifier.assert_called_once_with(alert)
        mock_executor.execute.assert_awaited_once_with(alert)
        assert alert.rollback_triggered is True
        assert alert.rollback_failed is False
        assert alert.rollback_state == RollbackState.ROLLBACK_TRIGGERED
        assert mock_notifier.notify.await_count == 2
        assert alert.metadata["notifications"] == {"https://hooks.example.com/a": True, "ops-pager": True}
        assert coordinator.pending_metrics == []

    @pytest.mark.asyncio
    async def test_recovered_regression_is_not_rolled_back(self, coordinator, scheduler, verifier, mock_executor):
        """A regression that disappears within the window is debounced."""
        verifier.return_value = False
        alert = make_alert()
        coordinator.consider(alert)

        await scheduler.advance(300)

        assert alert.rollback_triggered is False
        assert alert.rollback_state == RollbackState.NOT_CONFIRMED
        mock_executor.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_async_verifier(self, coordinator, scheduler, mock_executor):
        coordinator.verifier = AsyncMock(return_value=True)
        coordinator.consider(make_alert())

        await scheduler.advance(300)

        mock_executor.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_verifier_error_cancels(self, coordinator, scheduler, verifier, mock_executor):
        verifier.side_effect = RuntimeError("no samples")
        alert = make_alert()
        coordinator.consider(alert)

        await scheduler.advance(300)

        assert alert.rollback_state == RollbackState.NOT_CONFIRMED
        mock_executor.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_fresh_samples_cancels(self, coordinator, scheduler, verifier, mock_executor):
        verifier.side_effect = InsufficientDataError("api.responseTime", 0, 5, purpose="confirmation")
        alert = make_alert()
        coordinator.consider(alert)

        await scheduler.advance(300)

        assert alert.rollback_state == RollbackState.NOT_CONFIRMED
        assert alert.metadata["confirmation"] == {
            "confirmed": False,
            "reason": "not enough fresh samples to confirm (0 < 5)",
        }
        mock_executor.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_disabled_during_window(self, coordinator, scheduler, mock_executor):
        alert = make_alert()
        coordinator.consider(alert)

        coordinator.configure(enabled=False)
        await scheduler.advance(300)

        assert alert.rollback_state == RollbackState.NOT_CONFIRMED
        mock_executor.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_one_pending_confirmation_per_metric(self, coordinator, scheduler, mock_executor):
        first = make_alert(alert_id="alert_1")
        second = make_alert(severity=Severity.EMERGENCY, degradation=45.0, alert_id="alert_2")

        coordinator.consider(first)
        assert coordinator.consider(second) == RollbackState.NOT_ELIGIBLE
        assert len(scheduler.pending()) == 1

        await scheduler.advance(300)

        mock_executor.execute.assert_awaited_once_with(first)

    def test_ineligible_alert_is_not_scheduled(self, coordinator, scheduler):
        alert = make_alert(degradation=25.0)

        assert coordinator.consider(alert) == RollbackState.NOT_ELIGIBLE
        assert scheduler.pending() == []

    def test_cancel_pending(self, coordinator):
        alert = make_alert()
        coordinator.consider(alert)

        assert coordinator.cancel_pending("shutdown") == 1
        assert alert.rollback_state == RollbackState.NOT_CONFIRMED
        assert coordinator.pending_metrics == []

    @pytest.mark.asyncio
    async def test_cancelled_confirmation_does_not_fire(self, coordinator, scheduler, mock_executor):
        alert = make_alert()
        coordinator.consider(alert)
        coordinator.cancel_pending("operator abort")

        await scheduler.advance(300)

        mock_executor.execute.assert_not_awaited()
        assert alert.rollback_triggered is False


class TestExecution:
    """Test cases for executor and notifier failures."""

    @pytest.mark.asyncio
    async def test_trigger_runs_once(self, coordinator, mock_executor):
        alert = make_alert()

        await coordinator.trigger(alert)
        await coordinator.trigger(alert)

        mock_executor.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_executor_failure_sets_flag(self, coordinator, mock_executor):
        mock_executor.execute.return_value = ActionResult(success=False, message="exit 1")
        alert = make_alert()

        await coordinator.trigger(alert)

        assert alert.rollback_triggered is True
        assert alert.rollback_failed is True
        assert coordinator.metrics.get_value("rollbacks_total", {"outcome": "failed"}) == 1

    @pytest.mark.asyncio
    async def test_executor_exception_sets_flag(self, coordinator, mock_executor):
        mock_executor.execute.side_effect = ExternalActionError("rollback", "deploy API down")
        alert = make_alert()

        await coordinator.trigger(alert)

        assert alert.rollback_failed is True
        assert "deploy API down" in alert.metadata["rollback"]["message"]

    @pytest.mark.asyncio
    async def test_executor_timeout_sets_flag(self, coordinator, mock_executor):
        async def hang(alert):
            await asyncio.sleep(10)

        mock_executor.execute.side_effect = hang
        coordinator.rollback_timeout = 0.01
        alert = make_alert()

        await coordinator.trigger(alert)

        assert alert.rollback_failed is True

    @pytest.mark.asyncio
    async def test_cancelled_executor_records_outcome(self, coordinator, mock_executor, mock_notifier):
        started = asyncio.Event()

        async def hang(alert):
            started.set()
            await asyncio.sleep(10)

        mock_executor.execute.side_effect = hang
        alert = make_alert()

        task = asyncio.create_task(coordinator.trigger(alert))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert alert.rollback_triggered is True
        assert alert.rollback_failed is True
        assert alert.metadata["rollback"]["success"] is False
        mock_notifier.notify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_disabled_executor_is_skipped(self, coordinator, mock_executor):
        mock_executor.is_enabled.return_value = False
        alert = make_alert()

        await coordinator.trigger(alert)

        mock_executor.execute.assert_not_awaited()
        assert alert.rollback_failed is False
        assert alert.metadata["rollback"]["executed"] is False

    @pytest.mark.asyncio
    async def test_disabled_notifier_is_skipped(self, coordinator, mock_notifier):
        mock_notifier.is_enabled.return_value = False
        alert = make_alert()

        await coordinator.trigger(alert)

        mock_notifier.notify.assert_not_awaited()
        assert "notifications" not in alert.metadata

    @pytest.mark.asyncio
    async def test_without_executor_records_decision(self, scheduler, verifier):
        coordinator = RollbackCoordinator(ENABLED.merged(notification_endpoints=[]), scheduler, verifier)
        alert = make_alert()

        await coordinator.trigger(alert)

        assert alert.rollback_triggered is True
        assert alert.rollback_failed is False
        assert alert.metadata["rollback"]["executed"] is False

    @pytest.mark.asyncio
    async def test_notifier_failure_does_not_affect_rollback(self, coordinator, mock_notifier):
        mock_notifier.notify.side_effect = [
            RuntimeError("webhook down"),
            ActionResult(success=True, message="sent"),
        ]
        alert = make_alert()

        await coordinator.trigger(alert)

        assert alert.rollback_failed is False
        assert alert.metadata["notifications"] == {"https://hooks.example.com/a": False, "ops-pager": True}
        assert coordinator.metrics.get_value("notifications_total", {"outcome": "failed"}) == 1


class TestConfigure:
    """Test cases for partial configuration updates."""

    def test_merge_keeps_other_fields(self, coordinator):
        config = coordinator.configure(degradation_threshold=50.0)

        assert config.degradation_threshold == 50.0
        assert config.enabled is True
        assert config.critical_metrics == ENABLED.critical_metrics

    def test_lists_are_frozen(self, coordinator):
        config = coordinator.configure(critical_metrics=["ai.accuracy"])

        assert config.critical_metrics == ("ai.accuracy",)

    def test_unknown_key(self, coordinator):
        with pytest.raises(ConfigurationError):
            coordinator.configure(rollback_everything=True)

    def test_none_rejected(self, coordinator):
        with pytest.raises(ConfigurationError):
            coordinator.configure(critical_metrics=None)

        assert coordinator.config == ENABLED

    def test_wrong_type_rejected(self, coordinator):
        with pytest.raises(ConfigurationError):
            coordinator.configure(degradation_threshold="a lot")

        assert coordinator.config == ENABLED

    def test_negative_window_rejected(self, coordinator):
        with pytest.raises(ConfigurationError):
            coordinator.configure(confirmation_window=-1)


class TestCommandRollbackExecutor:
    """Test cases for CommandRollbackExecutor."""

    def test_empty_command(self):
        with pytest.raises(ConfigurationError):
            CommandRollbackExecutor("  ")

    @pytest.mark.asyncio
    async def test_success_exposes_alert_env(self):
        executor = CommandRollbackExecutor(f'{sys.executable} -c "import os; print(os.environ[\'REGRESSION_METRIC\'])"')

        result = await executor.execute(make_alert())

        assert result.success
        assert result.data["returncode"] == 0
        assert "api.responseTime" in result.data["stdout"]

    @pytest.mark.asyncio
    async def test_non_zero_exit(self):
        executor = CommandRollbackExecutor(f'{sys.executable} -c "raise SystemExit(3)"')

        result = await executor.execute(make_alert())

        assert not result.success
        assert result.data["returncode"] == 3

    @pytest.mark.asyncio
    async def test_dry_run(self):
        executor = CommandRollbackExecutor("false", {"dry_run": True})

        result = await executor.execute(make_alert())

        assert result.success
        assert result.message == "Dry run"

    @pytest.mark.asyncio
    async def test_disabled_does_not_run_command(self, tmp_path):
        marker = tmp_path / "rolled-back"
        executor = CommandRollbackExecutor(
            f'{sys.executable} -c "open(\'{marker}\', \'w\').close()"',
            {"enabled": False}
        )

        result = await executor.execute(make_alert())

        assert not result.success
        assert result.data["skipped"] is True
        assert not marker.exists()


class TestNotifiers:
    """Test cases for LoggingNotifier and WebhookNotifier."""

    def test_message_payload(self):
        alert = make_alert()
        alert.rollback_triggered = True

        payload = build_rollback_message(alert)

        assert "api.responseTime" in payload["text"]
        assert "triggered" in payload["text"]
        assert payload["alert"]["id"] == alert.id

    @pytest.mark.asyncio
    async def test_logging_notifier(self):
        result = await LoggingNotifier().notify("ops-pager", make_alert())

        assert result.success

    @pytest.mark.asyncio
    async def test_disabled_logging_notifier(self):
        result = await LoggingNotifier({"enabled": False}).notify("ops-pager", make_alert())

        assert not result.success
        assert result.data["skipped"] is True

    @pytest.mark.asyncio
    async def test_disabled_webhook_sends_nothing(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            notifier = WebhookNotifier({"enabled": False}, client=client)
            result = await notifier.notify("https://hooks.example.com/a", make_alert())

        assert not result.success
        assert requests == []

    @pytest.mark.asyncio
    async def test_webhook_posts_json(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            notifier = WebhookNotifier(client=client)
            result = await notifier.notify("https://hooks.example.com/a", make_alert())

        assert result.success
        assert len(requests) == 1
        assert requests[0].url == "https://hooks.example.com/a"

    @pytest.mark.asyncio
    async def test_webhook_http_error(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(500))
        async with httpx.AsyncClient(transport=transport) as client:
            result = await WebhookNotifier(client=client).notify("https://hooks.example.com/a", make_alert())

        assert not result.success
        assert result.data["status_code"] == 500

    @pytest.mark.asyncio
    async def test_webhook_retries_transport_errors(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            raise httpx.ConnectError("refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            notifier = WebhookNotifier({"max_attempts": 2}, client=client)
            result = await notifier.notify("https://hooks.example.com/a", make_alert())

        assert not result.success
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_webhook_rejects_non_http_endpoint(self):
        result = await WebhookNotifier().notify("ops-pager", make_alert())

        assert not result.success
