"""Detection service composing collection, analysis, alerting and rollback."""

import time
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Set

import structlog

from .alerts import AlertManager
from .config import GuardSettings, load_settings
from .errors import InsufficientDataError
from .models import (
    AutoRollbackConfig,
    BaselineResult,
    BudgetViolation,
    PerformanceBudget,
    RegressionAlert,
    RegressionBaseline,
    RollbackState,
)
from .scheduler import AsyncioScheduler, Scheduler
from ..actions.base import Notifier, RollbackExecutor
from ..actions.notifications import WebhookNotifier
from ..actions.rollback import CommandRollbackExecutor, RollbackCoordinator
from ..detectors.baseline import BaselineManager
from ..detectors.budget import BudgetTracker
from ..detectors.regression import RegressionAnalyzer
from ..monitoring.collector import SampleCollector, group_by_metric
from ..monitoring.metrics import GuardMetrics
from ..storage.stores import FileStore, KeyValueStore

logger = structlog.get_logger(__name__)

DETECTION_JOB = "detect-regressions"
BASELINE_JOB = "update-baselines"
BUDGET_JOB = "analyze-budgets"


class PerformanceRegressionDetector:
    """Watches performance metrics for regressions and budget violations.

    Samples recorded through ``record`` are buffered by the collector and
    moved into per-metric histories at the start of every detection or
    budget tick. A metric is analyzed for regressions again only once new
    samples for it have arrived, while budgets are re-evaluated on every
    budget tick. Regressions become alerts; eligible alerts are handed to
    the rollback coordinator, which confirms them after a delay before
    rolling back.
    """

    def __init__(
        self,
        collector: SampleCollector,
        baselines: BaselineManager,
        analyzer: RegressionAnalyzer,
        budget_tracker: BudgetTracker,
        alert_manager: AlertManager,
        scheduler: Scheduler,
        auto_rollback: Optional[AutoRollbackConfig] = None,
        executor: Optional[RollbackExecutor] = None,
        notifier: Optional[Notifier] = None,
        config: Dict[str, Any] = None,
        metrics: Optional[GuardMetrics] = None
    ):
        self.config = config or {}
        self.collector = collector
        self.baselines = baselines
        self.analyzer = analyzer
        self.budget_tracker = budget_tracker
        self.alert_manager = alert_manager
        self.scheduler = scheduler
        self.metrics = metrics or GuardMetrics()

        self.history_window = self.config.get("history_window", 500)
        self.min_analysis_samples = self.config.get("min_analysis_samples", 5)
        self.budget_trend_window = self.config.get("budget_trend_window", 5)
        self.detection_interval = self.config.get("detection_interval", 120.0)
        self.baseline_update_interval = self.config.get("baseline_update_interval", 24 * 60 * 60.0)
        self.budget_check_interval = self.config.get("budget_check_interval", 30.0)

        self.rollback = RollbackCoordinator(
            config=auto_rollback or AutoRollbackConfig(),
            scheduler=scheduler,
            verifier=self._verify_regression,
            executor=executor,
            notifier=notifier,
            rollback_timeout=self.config.get("rollback_timeout", 60.0),
            notification_timeout=self.config.get("notification_timeout", 10.0),
            metrics=self.metrics
        )

        self._history: Dict[str, Deque[float]] = {}
        # total samples ever ingested per metric, unaffected by the history cap
        self._ingested: Dict[str, int] = {}
        # alert id -> ingested count when its rollback confirmation was scheduled
        self._confirmation_marks: Dict[str, int] = {}
        # metrics with samples not yet seen by the detection tick
        self._pending_detection: Set[str] = set()
        self._started = False

    @classmethod
    def from_settings(
        cls,
        settings: Optional[GuardSettings] = None,
        store: Optional[KeyValueStore] = None,
        executor: Optional[RollbackExecutor] = None,
        notifier: Optional[Notifier] = None,
        scheduler: Optional[Scheduler] = None,
        metrics: Optional[GuardMetrics] = None
    ) -> "PerformanceRegressionDetector":
        """Build a detector and all of its components from settings."""
        settings = settings or load_settings()
        config = settings.model_dump()
        scheduler = scheduler or AsyncioScheduler()
        metrics = metrics or GuardMetrics()
        clock = scheduler.time

        if store is None:
            store = FileStore(settings.baseline_store_path)
        if executor is None and settings.rollback_command:
            executor = CommandRollbackExecutor(settings.rollback_command, {"timeout": settings.rollback_timeout})
        if notifier is None:
            notifier = WebhookNotifier({"timeout": settings.notification_timeout})

        return cls(
            collector=SampleCollector(settings.sample_buffer_size, clock=clock, metrics=metrics),
            baselines=BaselineManager(store, config, clock=clock, metrics=metrics),
            analyzer=RegressionAnalyzer(config),
            budget_tracker=BudgetTracker(settings.budgets, config, metrics=metrics),
            alert_manager=AlertManager(config, clock=clock, metrics=metrics),
            scheduler=scheduler,
            auto_rollback=settings.auto_rollback_config(),
            executor=executor,
            notifier=notifier,
            config=config,
            metrics=metrics
        )

    # Ingestion

    def record(self, metric_name: str, value: float, unit: str = "ms",
               tags: Optional[Dict[str, str]] = None, timestamp: Optional[int] = None) -> bool:
        return self.collector.record(metric_name, value, unit, tags, timestamp)

    def _ingest(self) -> None:
        for metric_name, values in group_by_metric(self.collector.drain()).items():
            history = self._history.get(metric_name)
            if history is None:
                history = self._history[metric_name] = deque(maxlen=self.history_window)
            history.extend(values)
            self._ingested[metric_name] = self._ingested.get(metric_name, 0) + len(values)
            self._pending_detection.add(metric_name)

    def history(self, metric_name: str) -> List[float]:
        return list(self._history.get(metric_name, ()))

    # Detection

    async def detect_regressions(self) -> List[RegressionAlert]:
        """Analyze every metric with new samples and return the alerts raised."""
        start = time.perf_counter()
        self._ingest()
        changed, self._pending_detection = self._pending_detection, set()

        alerts: List[RegressionAlert] = []
        for metric_name in sorted(changed):
            try:
                alert = self._detect_metric(metric_name)
                if alert is not None:
                    if self.rollback.consider(alert) == RollbackState.AWAITING_CONFIRMATION:
                        self._confirmation_marks[alert.id] = self._ingested[metric_name]
                    alerts.append(alert)
            except Exception as e:
                self.metrics.increment_counter("detection_errors_total")
                logger.exception("Regression analysis failed", metric=metric_name, error=str(e))

        self.alert_manager.prune()
        self.metrics.record_histogram("detection_cycle_duration_seconds", time.perf_counter() - start)

        if alerts:
            self._log_issues(alerts=alerts)
        return alerts

    def _detect_metric(self, metric_name: str) -> Optional[RegressionAlert]:
        values = self._history[metric_name]
        if len(values) < self.min_analysis_samples:
            return None

        baseline = self.baselines.get(metric_name)
        if baseline is None:
            # first sighting: establish a baseline, analyze from the next cycle on
            self.baselines.create_or_update_baseline(metric_name, values)
            return None

        analysis = self.analyzer.analyze(metric_name, values, baseline)
        if not analysis.is_regression:
            return None
        return self.alert_manager.raise_alert(analysis, baseline)

    def _verify_regression(self, alert: RegressionAlert) -> bool:
        """Re-run the analyzer on samples recorded after ``alert`` was scheduled for rollback.

        Raises InsufficientDataError when fewer than ``min_analysis_samples``
        arrived since then, so an alert is never confirmed by the samples
        that raised it.
        """
        self._ingest()
        metric_name = alert.metric
        ingested = self._ingested.get(metric_name, 0)
        fresh = ingested - self._confirmation_marks.pop(alert.id, ingested)
        if fresh < self.min_analysis_samples:
            raise InsufficientDataError(metric_name, fresh, self.min_analysis_samples, purpose="confirmation")

        baseline = self.baselines.get(metric_name)
        if baseline is None:
            return False
        values = self.history(metric_name)[-fresh:]
        return self.analyzer.analyze(metric_name, values, baseline).is_regression

    def analyze_budgets(self) -> List[BudgetViolation]:
        """Evaluate every budgeted metric with data against its budget."""
        self._ingest()

        latest = {}
        trend_samples = {}
        for budget in self.budget_tracker.get_budgets():
            history = self._history.get(budget.metric)
            if not history:
                continue
            latest[budget.metric] = history[-1]
            trend_samples[budget.metric] = list(history)[-self.budget_trend_window:]

        violations = self.budget_tracker.evaluate_budgets(latest, trend_samples)
        if violations:
            self._log_issues(violations=violations)
        return violations

    def _log_issues(self, alerts: List[RegressionAlert] = (), violations: List[BudgetViolation] = ()) -> None:
        logger.warning(
            "Performance issues detected",
            regressions=[{"metric": a.metric, "severity": a.severity.value} for a in alerts],
            budget_violations=[{"metric": v.metric, "impact": v.impact.value} for v in violations]
        )

    # Baselines

    def update_baseline(self, metric_name: str, values: Optional[List[float]] = None) -> BaselineResult:
        """Recompute one baseline from ``values`` or from the metric's history."""
        if values is None:
            self._ingest()
            values = self.history(metric_name)
        return self.baselines.create_or_update_baseline(metric_name, values)

    def update_all_baselines(self) -> Dict[str, BaselineResult]:
        self._ingest()
        results = self.baselines.refresh({name: list(values) for name, values in self._history.items()})
        logger.info(
            "Baselines refreshed",
            updated=sum(1 for r in results.values() if r.ok),
            tracked=len(self.baselines)
        )
        return results

    # Queries

    def get_active_alerts(self) -> List[RegressionAlert]:
        return self.alert_manager.get_active_alerts()

    def get_alerts(self) -> List[RegressionAlert]:
        return self.alert_manager.get_alerts()

    def get_baselines(self) -> List[RegressionBaseline]:
        return self.baselines.all()

    def get_budgets(self) -> List[PerformanceBudget]:
        return self.budget_tracker.get_budgets()

    def get_violations(self) -> List[BudgetViolation]:
        return self.budget_tracker.get_violations()

    def configure_auto_rollback(self, **partial: Any) -> AutoRollbackConfig:
        return self.rollback.configure(**partial)

    def health(self) -> Dict[str, Any]:
        return {
            "status": "running" if self._started else "stopped",
            "buffered_samples": len(self.collector),
            "tracked_metrics": len(self._history),
            "baselines": len(self.baselines),
            "active_alerts": len(self.get_active_alerts()),
            "pending_rollbacks": self.rollback.pending_metrics,
            "auto_rollback": self.rollback.config.to_dict(),
        }

    # Lifecycle

    def start(self) -> None:
        """Load stored baselines and schedule detection, baseline refresh and budget checks."""
        if self._started:
            return
        self.baselines.load_all()
        self.scheduler.every(DETECTION_JOB, self.detection_interval, self.detect_regressions)
        self.scheduler.every(BASELINE_JOB, self.baseline_update_interval, self.update_all_baselines)
        self.scheduler.every(BUDGET_JOB, self.budget_check_interval, self.analyze_budgets)
        self.scheduler.start()
        self._started = True
        logger.info(
            "Regression detector started",
            detection_interval=self.detection_interval,
            budget_check_interval=self.budget_check_interval,
            baselines=len(self.baselines),
            auto_rollback=self.rollback.config.enabled
        )

    def stop(self) -> None:
        """Cancel all periodic work and any pending rollback confirmation."""
        if not self._started:
            return
        self.scheduler.stop()
        cancelled = self.rollback.cancel_pending("detector stopped")
        self._confirmation_marks.clear()
        self._started = False
        logger.info("Regression detector stopped", cancelled_confirmations=cancelled)
