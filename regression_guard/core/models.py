"""Data model shared by the regression guard components."""

from dataclasses import dataclass, field, asdict, replace, fields
from enum import Enum
from typing import Dict, Any, List, Optional, Tuple


class Severity(str, Enum):
    """Regression severity band."""
    WARNING = "warning"
    CRITICAL = "critical"
    EMERGENCY = "emergency"


class BudgetStatus(str, Enum):
    WITHIN_BUDGET = "within-budget"
    APPROACHING_LIMIT = "approaching-limit"
    OVER_BUDGET = "over-budget"


class Trend(str, Enum):
    IMPROVING = "improving"
    STABLE = "stable"
    DEGRADING = "degrading"


class Impact(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RollbackState(str, Enum):
    """Lifecycle of an alert inside the rollback coordinator."""
    DETECTED = "detected"
    NOT_ELIGIBLE = "not_eligible"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    NOT_CONFIRMED = "not_confirmed"
    ROLLBACK_TRIGGERED = "rollback_triggered"


@dataclass
class PerformanceSample:
    """A single measurement emitted by instrumented code."""
    metric_name: str
    value: float
    unit: str
    timestamp: int
    tags: Dict[str, str] = field(default_factory=dict)


@dataclass
class Percentiles:
    p50: float
    p75: float
    p90: float
    p95: float
    p99: float


@dataclass
class RegressionBaseline:
    """Statistical profile a metric is expected to follow."""
    metric_name: str
    values: List[float]
    mean: float
    standard_deviation: float
    percentiles: Percentiles
    last_updated: int
    sample_size: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RegressionBaseline":
        """Rebuild a baseline from its serialized form.

        Raises KeyError, TypeError or ValueError on malformed input.
        """
        percentiles = data["percentiles"]
        return cls(
            metric_name=str(data["metric_name"]),
            values=[float(v) for v in data["values"]],
            mean=float(data["mean"]),
            standard_deviation=float(data["standard_deviation"]),
            percentiles=Percentiles(**{k: float(percentiles[k]) for k in ("p50", "p75", "p90", "p95", "p99")}),
            last_updated=int(data["last_updated"]),
            sample_size=int(data["sample_size"]),
        )


@dataclass
class RegressionAnalysis:
    """Transient result of comparing a recent window against a baseline."""
    metric_name: str
    current_mean: float
    degradation_percentage: float
    confidence: float
    is_regression: bool
    severity: Severity
    window_size: int = 0


@dataclass
class RegressionAlert:
    """A materialized regression, possibly acted upon by the rollback coordinator."""
    id: str
    metric: str
    severity: Severity
    current_value: float
    baseline_value: float
    degradation_percentage: float
    confidence: float
    detected_at: int
    affected_metrics: Tuple[str, ...] = ()
    suggested_actions: List[str] = field(default_factory=list)
    rollback_triggered: bool = False
    rollback_failed: bool = False
    rollback_state: RollbackState = RollbackState.DETECTED
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["severity"] = self.severity.value
        data["rollback_state"] = self.rollback_state.value
        data["affected_metrics"] = list(self.affected_metrics)
        return data


@dataclass
class PerformanceBudget:
    """Current utilization of a fixed performance budget."""
    metric: str
    budget: float
    current: float = 0.0
    utilization_percentage: float = 0.0
    status: BudgetStatus = BudgetStatus.WITHIN_BUDGET
    trend: Trend = Trend.STABLE
    recent_violations: List[bool] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metric": self.metric,
            "budget": self.budget,
            "current": self.current,
            "utilization_percentage": self.utilization_percentage,
            "status": self.status.value,
            "trend": self.trend.value,
        }


@dataclass
class BudgetViolation:
    metric: str
    budget: float
    current_value: float
    violation_percentage: float
    trend: Trend
    frequency: float
    impact: Impact

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["trend"] = self.trend.value
        data["impact"] = self.impact.value
        return data


@dataclass(frozen=True)
class AutoRollbackConfig:
    """Process-wide auto-rollback policy. Replaced, never mutated."""
    enabled: bool = False
    critical_metrics: Tuple[str, ...] = ()
    degradation_threshold: float = 30.0
    confirmation_window: float = 300.0
    notification_endpoints: Tuple[str, ...] = ()

    @classmethod
    def field_names(cls) -> List[str]:
        return [f.name for f in fields(cls)]

    def merged(self, **changes: Any) -> "AutoRollbackConfig":
        """Return a copy with ``changes`` applied; sequences are frozen to tuples."""
        for key in ("critical_metrics", "notification_endpoints"):
            if key in changes and changes[key] is not None:
                changes[key] = tuple(changes[key])
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["critical_metrics"] = list(self.critical_metrics)
        data["notification_endpoints"] = list(self.notification_endpoints)
        return data


@dataclass
class BaselineResult:
    """Outcome of a baseline create/update request."""
    metric_name: str
    baseline: Optional[RegressionBaseline] = None
    sample_size: int = 0
    required: int = 0
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.baseline is not None

    @property
    def insufficient_data(self) -> bool:
        return self.baseline is None
