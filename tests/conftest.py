"""Pytest configuration and fixtures."""

import pytest
from unittest.mock import AsyncMock
from typing import Dict, List, Sequence

from regression_guard.actions.base import ActionResult, Notifier, RollbackExecutor
from regression_guard.core.config import GuardSettings
from regression_guard.core.detector import PerformanceRegressionDetector
from regression_guard.core.models import Percentiles, RegressionBaseline
from regression_guard.core.scheduler import ManualScheduler
from regression_guard.monitoring.metrics import GuardMetrics
from regression_guard.storage.stores import MemoryStore

# Alternating 90/110: mean 100, population std-dev 10
STEADY_VALUES = [90.0, 110.0] * 10


def make_baseline(metric_name: str = "api.responseTime", mean: float = 100.0,
                  standard_deviation: float = 10.0, values: Sequence[float] = None) -> RegressionBaseline:
    """Baseline with fixed statistics, independent of any manager."""
    values = list(values) if values is not None else list(STEADY_VALUES)
    return RegressionBaseline(
        metric_name=metric_name,
        values=sorted(values),
        mean=mean,
        standard_deviation=standard_deviation,
        percentiles=Percentiles(p50=mean, p75=mean, p90=mean, p95=mean, p99=mean),
        last_updated=1_700_000_000_000,
        sample_size=len(values)
    )


def feed(detector: PerformanceRegressionDetector, metric_name: str, values: List[float]) -> None:
    for value in values:
        assert detector.record(metric_name, value)


@pytest.fixture
def scheduler():
    """Virtual-clock scheduler."""
    return ManualScheduler()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def guard_metrics():
    """Metrics on a private registry."""
    return GuardMetrics()


@pytest.fixture
def settings(tmp_path):
    """Default settings isolated from the environment and any .env file."""
    return GuardSettings(_env_file=None, baseline_store_path=str(tmp_path / "baselines"))


@pytest.fixture
def rollback_settings(tmp_path):
    """Settings with auto-rollback enabled for api.responseTime."""
    return GuardSettings(
        _env_file=None,
        baseline_store_path=str(tmp_path / "baselines"),
        auto_rollback_enabled=True,
        critical_metrics=["api.responseTime"],
        rollback_degradation_threshold=30.0,
        confirmation_window=300.0,
        notification_endpoints=["https://hooks.example.com/deploys", "ops-pager"]
    )


@pytest.fixture
def mock_executor():
    """Rollback executor that always succeeds."""
    executor = AsyncMock(spec=RollbackExecutor)
    executor.is_enabled.return_value = True
    executor.execute.return_value = ActionResult(success=True, message="rolled back")
    return executor


@pytest.fixture
def mock_notifier():
    """Notifier that always succeeds."""
    notifier = AsyncMock(spec=Notifier)
    notifier.is_enabled.return_value = True
    notifier.notify.return_value = ActionResult(success=True, message="sent")
    return notifier


def _build_detector(settings, store, scheduler, metrics, executor, notifier) -> PerformanceRegressionDetector:
    return PerformanceRegressionDetector.from_settings(
        settings,
        store=store,
        executor=executor,
        notifier=notifier,
        scheduler=scheduler,
        metrics=metrics
    )


@pytest.fixture
def detector(settings, store, scheduler, guard_metrics, mock_executor, mock_notifier):
    """Detector with auto-rollback disabled."""
    return _build_detector(settings, store, scheduler, guard_metrics, mock_executor, mock_notifier)


@pytest.fixture
def rollback_detector(rollback_settings, store, scheduler, guard_metrics, mock_executor, mock_notifier):
    """Detector with auto-rollback enabled for api.responseTime."""
    return _build_detector(rollback_settings, store, scheduler, guard_metrics, mock_executor, mock_notifier)


@pytest.fixture
def sample_budgets() -> Dict[str, float]:
    return {"page.loadComplete": 2000.0, "api.responseTime": 500.0}
