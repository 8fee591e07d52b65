"""Materialization, deduplication and retention of regression alerts."""

import copy
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Tuple

import structlog

from .models import RegressionAlert, RegressionAnalysis, RegressionBaseline, Severity
from ..monitoring.logging import audit_logger
from ..monitoring.metrics import GuardMetrics

logger = structlog.get_logger(__name__)


# Metrics that usually move together with the key metric
RELATED_METRICS: Dict[str, Tuple[str, ...]] = {
    "page.loadComplete": ("navigation.firstPaint", "bundle.totalSize", "network.request"),
    "api.responseTime": ("database.queryTime", "network.rtt"),
    "component.renderTime": ("memory.heapUsed", "cpu.usage"),
}

# Fallback by metric family (the part before the first dot)
FAMILY_RELATED_METRICS: Dict[str, Tuple[str, ...]] = {
    "page": ("navigation.firstPaint", "bundle.totalSize", "network.request"),
    "navigation": ("page.loadComplete", "network.request"),
    "api": ("database.queryTime", "network.rtt"),
    "database": ("api.responseTime",),
    "component": ("memory.heapUsed", "cpu.usage"),
    "memory": ("component.renderTime",),
}

SUGGESTED_ACTIONS: List[Tuple[Tuple[str, ...], List[str]]] = [
    (("bundle", "size"), [
        "Review recent code changes for bundle size increases",
        "Enable code splitting and lazy loading",
        "Analyze and remove unused dependencies",
    ]),
    (("api", "database"), [
        "Check database query performance",
        "Review API endpoint implementations",
        "Verify caching strategies are working",
    ]),
    (("memory",), [
        "Review memory leaks in recent changes",
        "Check component cleanup and unmounting",
        "Analyze memory usage patterns",
    ]),
]

ROLLBACK_ACTION = "Consider immediate rollback of recent changes"


def get_related_metrics(metric_name: str) -> Tuple[str, ...]:
    if metric_name in RELATED_METRICS:
        return RELATED_METRICS[metric_name]
    family = metric_name.split(".", 1)[0]
    return tuple(m for m in FAMILY_RELATED_METRICS.get(family, ()) if m != metric_name)


def generate_suggested_actions(metric_name: str, severity: Severity) -> List[str]:
    lowered = metric_name.lower()
    actions: List[str] = []
    for keywords, suggestions in SUGGESTED_ACTIONS:
        if any(keyword in lowered for keyword in keywords):
            actions.extend(suggestions)
    if severity in (Severity.CRITICAL, Severity.EMERGENCY):
        actions.insert(0, ROLLBACK_ACTION)
    return actions


class AlertManager:
    """Rolling log of regression alerts.

    A new alert for a metric is suppressed when an alert with the same
    severity for that metric was raised within ``dedup_window`` seconds.
    The log keeps ``retention`` seconds of history and never more than
    ``max_alerts`` entries.
    """

    def __init__(self, config: Dict[str, Any] = None, clock: Callable[[], float] = time.time,
                 metrics: Optional[GuardMetrics] = None):
        self.config = config or {}
        self.retention = self.config.get("alert_retention", 24 * 60 * 60)
        self.active_window = self.config.get("active_alert_window", 60 * 60)
        self.dedup_window = self.config.get("alert_dedup_window", 10 * 60)
        self.max_alerts = self.config.get("max_alerts", 1000)
        self._clock = clock
        self.metrics = metrics or GuardMetrics()
        self._alerts: List[RegressionAlert] = []
        self.suppressed = 0

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def raise_alert(self, analysis: RegressionAnalysis, baseline: RegressionBaseline) -> Optional[RegressionAlert]:
        """Turn a qualifying analysis into an alert, or None if it is a duplicate."""
        now = self._now_ms()

        duplicate = self._find_recent(analysis.metric_name, analysis.severity, now)
        if duplicate is not None:
            self.suppressed += 1
            self.metrics.increment_counter("alerts_suppressed_total", {"metric": analysis.metric_name})
            logger.debug(
                "Suppressing duplicate alert",
                metric=analysis.metric_name,
                severity=analysis.severity.value,
                existing_alert=duplicate.id
            )
            return None

        alert = RegressionAlert(
            id=f"alert_{now}_{uuid.uuid4().hex[:9]}",
            metric=analysis.metric_name,
            severity=analysis.severity,
            current_value=analysis.current_mean,
            baseline_value=baseline.mean,
            degradation_percentage=analysis.degradation_percentage,
            confidence=analysis.confidence,
            detected_at=now,
            affected_metrics=get_related_metrics(analysis.metric_name),
            suggested_actions=generate_suggested_actions(analysis.metric_name, analysis.severity),
            metadata=copy.deepcopy({
                "baseline": {
                    "mean": baseline.mean,
                    "standard_deviation": baseline.standard_deviation,
                    "sample_size": baseline.sample_size,
                    "last_updated": baseline.last_updated,
                    "p95": baseline.percentiles.p95,
                },
                "detection": {
                    "confidence": analysis.confidence,
                    "degradation_percentage": analysis.degradation_percentage,
                    "window_size": analysis.window_size,
                },
            })
        )

        self._alerts.append(alert)
        if len(self._alerts) > self.max_alerts:
            self._alerts = self._alerts[-self.max_alerts:]

        self.metrics.increment_counter(
            "regression_alerts_total",
            {"metric": alert.metric, "severity": alert.severity.value}
        )
        audit_logger.log_regression_detected(
            alert.id, alert.metric, alert.severity.value,
            alert.degradation_percentage, alert.confidence
        )
        return alert

    def _find_recent(self, metric: str, severity: Severity, now: int) -> Optional[RegressionAlert]:
        if self.dedup_window <= 0:
            return None
        horizon = now - int(self.dedup_window * 1000)
        for alert in reversed(self._alerts):
            if alert.detected_at < horizon:
                break
            if alert.metric == metric and alert.severity == severity:
                return alert
        return None

    def prune(self) -> int:
        """Drop alerts older than the retention window; returns how many went."""
        horizon = self._now_ms() - int(self.retention * 1000)
        before = len(self._alerts)
        self._alerts = [alert for alert in self._alerts if alert.detected_at > horizon]
        removed = before - len(self._alerts)
        if removed:
            logger.debug("Pruned expired alerts", removed=removed, remaining=len(self._alerts))
        return removed

    def get_active_alerts(self) -> List[RegressionAlert]:
        horizon = self._now_ms() - int(self.active_window * 1000)
        active = [alert for alert in self._alerts if alert.detected_at > horizon]
        self.metrics.set_gauge("active_alerts", len(active))
        return active

    def get_alerts(self) -> List[RegressionAlert]:
        return list(self._alerts)

    def get_alert(self, alert_id: str) -> Optional[RegressionAlert]:
        for alert in self._alerts:
            if alert.id == alert_id:
                return alert
        return None
