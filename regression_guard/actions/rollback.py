"""Confirmed automatic rollback for critical metrics."""

import asyncio
import inspect
import os
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import structlog
from pydantic import ValidationError

from .base import ActionResult, Notifier, RollbackExecutor
from ..core.config import AutoRollbackUpdate
from ..core.errors import ConfigurationError, ExternalActionError, InsufficientDataError
from ..core.models import AutoRollbackConfig, RegressionAlert, RollbackState, Severity
from ..core.scheduler import Scheduler
from ..monitoring.logging import audit_logger
from ..monitoring.metrics import GuardMetrics

logger = structlog.get_logger(__name__)

Verifier = Callable[[RegressionAlert], Union[bool, Awaitable[bool]]]

ROLLBACK_SEVERITIES = (Severity.CRITICAL, Severity.EMERGENCY)


class CommandRollbackExecutor(RollbackExecutor):
    """Runs a shell command; a zero exit status means the rollback succeeded."""

    def __init__(self, command: str, config: Dict[str, Any] = None):
        super().__init__(config)
        if not command or not command.strip():
            raise ConfigurationError("rollback command must not be empty", config_key="rollback_command")
        self.command = command

    async def execute(self, alert: RegressionAlert) -> ActionResult:
        if not self.is_enabled():
            logger.info("Rollback executor disabled, command not executed", alert_id=alert.id)
            return self.create_result(False, "Rollback executor disabled", {"skipped": True})
        if self.is_dry_run():
            logger.info("Dry run, rollback command not executed", command=self.command, alert_id=alert.id)
            return self.create_result(True, "Dry run", {"command": self.command})

        start = time.monotonic()
        env = {
            "REGRESSION_ALERT_ID": alert.id,
            "REGRESSION_METRIC": alert.metric,
            "REGRESSION_SEVERITY": alert.severity.value,
        }
        process = await asyncio.create_subprocess_shell(
            self.command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env={**os.environ, **env},
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise ExternalActionError("rollback", f"command timed out after {self.timeout}s")

        result = self.create_result(
            process.returncode == 0,
            f"Rollback command exited with {process.returncode}",
            {
                "returncode": process.returncode,
                "stdout": stdout.decode(errors="replace")[-2000:],
                "stderr": stderr.decode(errors="replace")[-2000:],
            }
        )
        result.execution_time = time.monotonic() - start
        return result


class RollbackCoordinator:
    """Decide, confirm and execute automatic rollbacks.

    Per alert: ``DETECTED -> NOT_ELIGIBLE`` or
    ``DETECTED -> AWAITING_CONFIRMATION -> NOT_CONFIRMED | ROLLBACK_TRIGGERED``.
    The confirmation is a deferred scheduler job, never a sleep, and at most
    one confirmation per metric is pending at a time.
    """

    def __init__(
        self,
        config: AutoRollbackConfig,
        scheduler: Scheduler,
        verifier: Verifier,
        executor: Optional[RollbackExecutor] = None,
        notifier: Optional[Notifier] = None,
        rollback_timeout: float = 60.0,
        notification_timeout: float = 10.0,
        metrics: Optional[GuardMetrics] = None
    ):
        self._config = config
        self.scheduler = scheduler
        self.verifier = verifier
        self.executor = executor
        self.notifier = notifier
        self.rollback_timeout = rollback_timeout
        self.notification_timeout = notification_timeout
        self.metrics = metrics or GuardMetrics()
        self._pending: Dict[str, RegressionAlert] = {}

    @property
    def config(self) -> AutoRollbackConfig:
        return self._config

    def configure(self, **partial: Any) -> AutoRollbackConfig:
        """Merge ``partial`` into the live configuration."""
        unknown = set(partial) - set(AutoRollbackConfig.field_names())
        if unknown:
            raise ConfigurationError(f"unknown auto-rollback settings: {sorted(unknown)}")
        missing = sorted(key for key, value in partial.items() if value is None)
        if missing:
            raise ConfigurationError(f"auto-rollback settings must not be None: {missing}", config_key=missing[0])
        try:
            update = AutoRollbackUpdate(**partial)
        except ValidationError as e:
            raise ConfigurationError(f"invalid auto-rollback settings: {e}") from e

        self._config = self._config.merged(**update.model_dump(exclude_unset=True))
        logger.info("Auto-rollback configuration updated", config=self._config.to_dict())
        return self._config

    @property
    def pending_metrics(self) -> List[str]:
        return list(self._pending)

    def is_eligible(self, alert: RegressionAlert) -> bool:
        config = self._config
        return (
            config.enabled
            and alert.metric in config.critical_metrics
            and alert.degradation_percentage >= config.degradation_threshold
            and alert.severity in ROLLBACK_SEVERITIES
        )

    def consider(self, alert: RegressionAlert) -> RollbackState:
        """Schedule a confirmation for an eligible alert."""
        if not self.is_eligible(alert):
            alert.rollback_state = RollbackState.NOT_ELIGIBLE
            return alert.rollback_state

        if alert.metric in self._pending:
            logger.debug(
                "Confirmation already pending for metric",
                metric=alert.metric,
                pending_alert=self._pending[alert.metric].id,
                alert_id=alert.id
            )
            alert.rollback_state = RollbackState.NOT_ELIGIBLE
            return alert.rollback_state

        alert.rollback_state = RollbackState.AWAITING_CONFIRMATION
        self._pending[alert.metric] = alert
        window = self._config.confirmation_window
        self.scheduler.call_later(f"confirm-rollback:{alert.id}", window, lambda: self.confirm(alert))
        self.metrics.increment_counter("rollbacks_total", {"outcome": "scheduled"})
        audit_logger.log_rollback_scheduled(alert.id, alert.metric, window)
        return alert.rollback_state

    async def confirm(self, alert: RegressionAlert) -> bool:
        """Re-check the regression and roll back if it persists."""
        if self._pending.get(alert.metric) is not alert:
            logger.debug("Confirmation no longer pending", metric=alert.metric, alert_id=alert.id)
            return False
        del self._pending[alert.metric]

        if not self._config.enabled:
            return self._cancel(alert, "auto-rollback disabled during confirmation window")

        try:
            still_regressed = self.verifier(alert)
            if inspect.isawaitable(still_regressed):
                still_regressed = await still_regressed
        except InsufficientDataError as e:
            return self._cancel(
                alert, f"not enough fresh samples to confirm ({e.available} < {e.required})"
            )
        except Exception as e:
            logger.exception("Regression re-check failed", metric=alert.metric, alert_id=alert.id, error=str(e))
            return self._cancel(alert, f"re-check failed: {e}")

        if not still_regressed:
            return self._cancel(alert, "regression no longer present")

        await self.trigger(alert)
        return True

    def cancel_pending(self, reason: str) -> int:
        """Abandon every pending confirmation, e.g. on shutdown."""
        pending = list(self._pending.values())
        self._pending.clear()
        for alert in pending:
            self._cancel(alert, reason)
        return len(pending)

    def _cancel(self, alert: RegressionAlert, reason: str) -> bool:
        alert.rollback_state = RollbackState.NOT_CONFIRMED
        alert.metadata["confirmation"] = {"confirmed": False, "reason": reason}
        self.metrics.increment_counter("rollbacks_total", {"outcome": "not_confirmed"})
        audit_logger.log_rollback_cancelled(alert.id, alert.metric, reason)
        return False

    def _executor_enabled(self) -> bool:
        return self.executor is not None and bool(self.executor.is_enabled())

    async def trigger(self, alert: RegressionAlert) -> None:
        """Invoke the rollback executor and notify every endpoint, once per alert."""
        if alert.rollback_triggered:
            return

        alert.rollback_triggered = True
        alert.rollback_state = RollbackState.ROLLBACK_TRIGGERED

        try:
            result = await self._execute(alert)
        except asyncio.CancelledError:
            self._record_outcome(alert, ActionResult(success=False, message="Rollback cancelled before completion"))
            raise
        self._record_outcome(alert, result)

        await self._notify_all(alert)

    def _record_outcome(self, alert: RegressionAlert, result: ActionResult) -> None:
        alert.rollback_failed = not result.success
        alert.metadata["rollback"] = {
            "success": result.success,
            "message": result.message,
            "executed": self._executor_enabled(),
        }
        self.metrics.increment_counter("rollbacks_total", {"outcome": "succeeded" if result.success else "failed"})
        audit_logger.log_rollback_executed(alert.id, alert.metric, result.success, {"message": result.message})

    async def _execute(self, alert: RegressionAlert) -> ActionResult:
        if self.executor is None:
            logger.warning("No rollback executor configured, recording decision only", alert_id=alert.id)
            return ActionResult(success=True, message="No rollback executor configured")
        if not self._executor_enabled():
            logger.warning("Rollback executor disabled, recording decision only", alert_id=alert.id)
            return ActionResult(success=True, message="Rollback executor disabled", data={"skipped": True})
        try:
            return await asyncio.wait_for(self.executor.execute(alert), timeout=self.rollback_timeout)
        except asyncio.TimeoutError:
            logger.error("Rollback executor timed out", alert_id=alert.id, timeout=self.rollback_timeout)
            return ActionResult(success=False, message=f"Rollback timed out after {self.rollback_timeout}s")
        except Exception as e:
            logger.exception("Rollback executor failed", alert_id=alert.id, error=str(e))
            return ActionResult(success=False, message=f"Rollback failed: {e}")

    async def _notify_all(self, alert: RegressionAlert) -> List[ActionResult]:
        endpoints = self._config.notification_endpoints
        if not endpoints or self.notifier is None:
            return []
        if not self.notifier.is_enabled():
            logger.info("Notifier disabled, skipping rollback notifications", alert_id=alert.id)
            return []
        results = await asyncio.gather(*(self._notify_one(endpoint, alert) for endpoint in endpoints))
        alert.metadata["notifications"] = {
            endpoint: result.success for endpoint, result in zip(endpoints, results)
        }
        return list(results)

    async def _notify_one(self, endpoint: str, alert: RegressionAlert) -> ActionResult:
        try:
            result = await asyncio.wait_for(self.notifier.notify(endpoint, alert), timeout=self.notification_timeout)
        except asyncio.TimeoutError:
            result = ActionResult(success=False, message=f"Notification timed out after {self.notification_timeout}s")
        except Exception as e:
            logger.exception("Notification failed", endpoint=endpoint, alert_id=alert.id, error=str(e))
            result = ActionResult(success=False, message=f"Notification failed: {e}")

        self.metrics.increment_counter("notifications_total", {"outcome": "sent" if result.success else "failed"})
        if not result.success:
            audit_logger.log_notification(alert.id, endpoint, False, result.message)
        return result
