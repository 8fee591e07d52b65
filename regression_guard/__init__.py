"""
Performance Regression Guard - statistical regression detection with confirmed auto-rollback

Collects performance samples, keeps per-metric baselines, raises alerts when
a metric degrades significantly and, for critical metrics, rolls back after
the regression has been confirmed.
"""

__version__ = "1.0.0"

from .core.detector import PerformanceRegressionDetector
from .core.config import GuardSettings, load_settings
from .core.models import (
    PerformanceSample,
    RegressionBaseline,
    RegressionAlert,
    BudgetViolation,
    AutoRollbackConfig,
    Severity,
)
from .core.scheduler import AsyncioScheduler, ManualScheduler
from .actions.base import RollbackExecutor, Notifier

__all__ = [
    "PerformanceRegressionDetector",
    "GuardSettings",
    "load_settings",
    "PerformanceSample",
    "RegressionBaseline",
    "RegressionAlert",
    "BudgetViolation",
    "AutoRollbackConfig",
    "Severity",
    "AsyncioScheduler",
    "ManualScheduler",
    "RollbackExecutor",
    "Notifier",
]
