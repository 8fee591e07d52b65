"""Fixed performance budgets: utilization, trend and violations."""

from typing import Any, Dict, List, Mapping, Optional, Sequence

import structlog

from ..core.config import DEFAULT_BUDGETS
from ..core.models import BudgetStatus, BudgetViolation, Impact, PerformanceBudget, Trend
from ..monitoring.metrics import GuardMetrics

logger = structlog.get_logger(__name__)


def calculate_trend(values: Sequence[float], band: float = 5.0) -> Trend:
    """Compare the averages of the older and newer halves of ``values``."""
    if len(values) < 3:
        return Trend.STABLE

    middle = len(values) // 2
    first_half = values[:middle]
    second_half = values[middle:]

    first_avg = sum(first_half) / len(first_half)
    second_avg = sum(second_half) / len(second_half)
    if first_avg == 0:
        return Trend.STABLE

    change_percentage = ((second_avg - first_avg) / first_avg) * 100

    if change_percentage < -band:
        return Trend.IMPROVING
    if change_percentage > band:
        return Trend.DEGRADING
    return Trend.STABLE


def calculate_impact(violation_percentage: float, trend: Trend) -> Impact:
    if violation_percentage >= 50 and trend == Trend.DEGRADING:
        return Impact.CRITICAL
    if violation_percentage >= 30:
        return Impact.HIGH
    if violation_percentage >= 15:
        return Impact.MEDIUM
    return Impact.LOW


def budget_status(utilization_percentage: float) -> BudgetStatus:
    if utilization_percentage <= 80:
        return BudgetStatus.WITHIN_BUDGET
    if utilization_percentage <= 100:
        return BudgetStatus.APPROACHING_LIMIT
    return BudgetStatus.OVER_BUDGET


class BudgetTracker:
    """Track each budgeted metric against its ceiling.

    Budget violations do not need statistical confidence: a single latest
    value over budget is enough. Only the latest violation per metric is
    kept; history survives only as the budget record's trend and violation
    frequency.
    """

    def __init__(self, budgets: Mapping[str, float] = None, config: Dict[str, Any] = None,
                 metrics: Optional[GuardMetrics] = None):
        self.config = config or {}
        self.trend_window = self.config.get("budget_trend_window", 5)
        self.frequency_window = self.config.get("budget_frequency_window", 20)
        self.metrics = metrics or GuardMetrics()

        budgets = dict(DEFAULT_BUDGETS if budgets is None else budgets)
        self._budgets: Dict[str, PerformanceBudget] = {
            metric: PerformanceBudget(metric=metric, budget=float(limit))
            for metric, limit in budgets.items()
        }
        self._violations: Dict[str, BudgetViolation] = {}

    def get_budgets(self) -> List[PerformanceBudget]:
        return list(self._budgets.values())

    def get_budget(self, metric: str) -> Optional[PerformanceBudget]:
        return self._budgets.get(metric)

    def get_violations(self) -> List[BudgetViolation]:
        return list(self._violations.values())

    def evaluate_budgets(
        self,
        latest_value_per_metric: Mapping[str, float],
        trend_samples: Mapping[str, Sequence[float]] = None
    ) -> List[BudgetViolation]:
        """Update every budget with data this tick and return current violations."""
        trend_samples = trend_samples or {}
        violations: List[BudgetViolation] = []

        for metric, record in self._budgets.items():
            if metric not in latest_value_per_metric:
                continue

            current = float(latest_value_per_metric[metric])
            utilization = (current / record.budget) * 100
            status = budget_status(utilization)
            recent = list(trend_samples.get(metric, ()))[-self.trend_window:]
            trend = calculate_trend(recent)

            record.current = current
            record.utilization_percentage = utilization
            record.status = status
            record.trend = trend
            record.recent_violations.append(status != BudgetStatus.WITHIN_BUDGET)
            del record.recent_violations[:-self.frequency_window]

            self.metrics.set_gauge("budget_utilization_percent", utilization, {"metric": metric})

            if status == BudgetStatus.WITHIN_BUDGET:
                self._violations.pop(metric, None)
                continue

            violation_percentage = ((current - record.budget) / record.budget) * 100
            violation = BudgetViolation(
                metric=metric,
                budget=record.budget,
                current_value=current,
                violation_percentage=violation_percentage,
                trend=trend,
                frequency=sum(record.recent_violations) / len(record.recent_violations),
                impact=calculate_impact(violation_percentage, trend)
            )
            self._violations[metric] = violation
            violations.append(violation)
            self.metrics.increment_counter(
                "budget_violations_total", {"metric": metric, "impact": violation.impact.value}
            )

            if status == BudgetStatus.OVER_BUDGET:
                logger.info(
                    "Performance budget exceeded",
                    metric=metric,
                    budget=record.budget,
                    current=current,
                    utilization_percentage=round(utilization, 1),
                    trend=trend.value
                )

        return violations
