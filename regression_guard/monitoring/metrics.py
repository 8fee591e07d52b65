"""Prometheus instrumentation for the regression guard itself."""

import threading
from typing import Dict
from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry, generate_latest
import structlog

logger = structlog.get_logger(__name__)


class GuardMetrics:
    """Counters, gauges and histograms describing detector activity.

    Every instance owns its own registry so several detectors (or tests)
    can coexist in one process.
    """

    def __init__(self, registry: CollectorRegistry = None):
        self.registry = registry or CollectorRegistry()
        self._lock = threading.Lock()

        self.counters: Dict[str, Counter] = {}
        self.histograms: Dict[str, Histogram] = {}
        self.gauges: Dict[str, Gauge] = {}

        self._initialize_metrics()

    def _initialize_metrics(self):
        # Ingestion
        self.counters["samples_recorded_total"] = Counter(
            "samples_recorded_total",
            "Samples accepted by the collector",
            registry=self.registry
        )
        self.counters["samples_rejected_total"] = Counter(
            "samples_rejected_total",
            "Malformed samples dropped at ingestion",
            registry=self.registry
        )
        self.counters["samples_dropped_total"] = Counter(
            "samples_dropped_total",
            "Samples evicted from the full ring buffer",
            registry=self.registry
        )

        # Detection
        self.counters["regression_alerts_total"] = Counter(
            "regression_alerts_total",
            "Regression alerts raised",
            ["metric", "severity"],
            registry=self.registry
        )
        self.counters["alerts_suppressed_total"] = Counter(
            "alerts_suppressed_total",
            "Alerts suppressed by deduplication",
            ["metric"],
            registry=self.registry
        )
        self.counters["detection_errors_total"] = Counter(
            "detection_errors_total",
            "Per-metric analysis failures",
            registry=self.registry
        )
        self.histograms["detection_cycle_duration_seconds"] = Histogram(
            "detection_cycle_duration_seconds",
            "Time spent in one detection cycle",
            buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0],
            registry=self.registry
        )

        # Baselines
        self.counters["baseline_updates_total"] = Counter(
            "baseline_updates_total",
            "Baselines created or recomputed",
            registry=self.registry
        )
        self.counters["baseline_persistence_failures_total"] = Counter(
            "baseline_persistence_failures_total",
            "Baseline load/save failures",
            ["operation"],
            registry=self.registry
        )
        self.gauges["baselines_tracked"] = Gauge(
            "baselines_tracked",
            "Metrics with a baseline in force",
            registry=self.registry
        )

        # Alerts, budgets, rollback
        self.gauges["active_alerts"] = Gauge(
            "active_alerts",
            "Alerts inside the active window",
            registry=self.registry
        )
        self.gauges["budget_utilization_percent"] = Gauge(
            "budget_utilization_percent",
            "Latest budget utilization per metric",
            ["metric"],
            registry=self.registry
        )
        self.counters["budget_violations_total"] = Counter(
            "budget_violations_total",
            "Budget evaluations that ended approaching or over budget",
            ["metric", "impact"],
            registry=self.registry
        )
        self.counters["rollbacks_total"] = Counter(
            "rollbacks_total",
            "Rollback decisions by outcome",
            ["outcome"],
            registry=self.registry
        )
        self.counters["notifications_total"] = Counter(
            "notifications_total",
            "Rollback notifications by outcome",
            ["outcome"],
            registry=self.registry
        )

    def increment_counter(self, name: str, labels: Dict[str, str] = None, amount: float = 1.0) -> None:
        """Increment a counter metric."""
        labels = labels or {}

        with self._lock:
            if name in self.counters:
                counter = self.counters[name]
                if counter._labelnames:
                    counter.labels(**labels).inc(amount)
                else:
                    counter.inc(amount)
            else:
                logger.warning("Counter not found", metric_name=name)

    def record_histogram(self, name: str, value: float, labels: Dict[str, str] = None) -> None:
        """Record a value in a histogram metric."""
        labels = labels or {}

        with self._lock:
            if name in self.histograms:
                histogram = self.histograms[name]
                if histogram._labelnames:
                    histogram.labels(**labels).observe(value)
                else:
                    histogram.observe(value)
            else:
                logger.warning("Histogram not found", metric_name=name)

    def set_gauge(self, name: str, value: float, labels: Dict[str, str] = None) -> None:
        """Set a gauge metric value."""
        labels = labels or {}

        with self._lock:
            if name in self.gauges:
                gauge = self.gauges[name]
                if gauge._labelnames:
                    gauge.labels(**labels).set(value)
                else:
                    gauge.set(value)
            else:
                logger.warning("Gauge not found", metric_name=name)

    def get_value(self, name: str, labels: Dict[str, str] = None) -> float:
        """Read a single sample back from the registry (0.0 when absent)."""
        value = self.registry.get_sample_value(name, labels or {})
        return value or 0.0

    def render(self) -> str:
        """Get Prometheus-formatted metrics."""
        return generate_latest(self.registry).decode("utf-8")
