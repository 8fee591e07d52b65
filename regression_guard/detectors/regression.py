"""Statistical comparison of a recent window against a baseline."""

import math
from typing import Any, Dict, Sequence

import numpy as np
import structlog
from scipy import stats

from ..core.models import RegressionAnalysis, RegressionBaseline, Severity

logger = structlog.get_logger(__name__)


class RegressionAnalyzer:
    """Compute degradation, confidence and severity for one metric.

    Metrics are oriented so that higher is worse; callers tracking a
    higher-is-better metric must negate it before recording.

    Two confidence methods are available:

    * ``heuristic`` (default): ``min(t / 3, 1)`` where
      ``t = |mean - baseline_mean| / (s / sqrt(n))``. A coarse separation
      score, tunable through ``heuristic_divisor``; it is not a p-value.
    * ``welch``: ``1 - p`` of a one-sided Welch t-test of the recent window
      against the baseline's stored values.

    Both grow with mean separation and with window size, and both are read
    against the same ``confidence_minimum`` cut-off.
    """

    def __init__(self, config: Dict[str, Any] = None):
        self.config = config or {}
        self.warning_threshold = self.config.get("warning_threshold", 15.0)
        self.critical_threshold = self.config.get("critical_threshold", 25.0)
        self.emergency_threshold = self.config.get("emergency_threshold", 40.0)
        self.confidence_minimum = self.config.get("confidence_minimum", 0.8)
        self.recent_window = self.config.get("recent_window", 10)
        self.confidence_method = self.config.get("confidence_method", "heuristic")
        self.heuristic_divisor = self.config.get("heuristic_divisor", 3.0)

        if self.confidence_method not in ("heuristic", "welch"):
            raise ValueError(f"Unknown confidence method: {self.confidence_method}")

    def analyze(
        self,
        metric_name: str,
        recent_samples: Sequence[float],
        baseline: RegressionBaseline
    ) -> RegressionAnalysis:
        """Compare the newest ``recent_window`` samples with ``baseline``."""
        window = [float(v) for v in list(recent_samples)[-self.recent_window:]]
        if not window:
            return RegressionAnalysis(
                metric_name=metric_name,
                current_mean=0.0,
                degradation_percentage=0.0,
                confidence=0.0,
                is_regression=False,
                severity=Severity.WARNING,
                window_size=0
            )

        current_mean = float(np.mean(window))

        if baseline.mean == 0:
            logger.debug("Baseline mean is zero, degradation undefined", metric=metric_name)
            degradation = 0.0
        else:
            degradation = ((current_mean - baseline.mean) / baseline.mean) * 100

        confidence = self.calculate_confidence(window, baseline)

        is_regression = (
            degradation > self.warning_threshold
            and confidence >= self.confidence_minimum
        )

        return RegressionAnalysis(
            metric_name=metric_name,
            current_mean=current_mean,
            degradation_percentage=degradation,
            confidence=confidence,
            is_regression=is_regression,
            severity=self.classify_severity(degradation),
            window_size=len(window)
        )

    def classify_severity(self, degradation_percentage: float) -> Severity:
        if degradation_percentage >= self.emergency_threshold:
            return Severity.EMERGENCY
        if degradation_percentage >= self.critical_threshold:
            return Severity.CRITICAL
        return Severity.WARNING

    def calculate_confidence(self, sample: Sequence[float], baseline: RegressionBaseline) -> float:
        if len(sample) < 3:
            return 0.0
        if self.confidence_method == "welch" and len(baseline.values) >= 2:
            return self._welch_confidence(sample, baseline)
        return self._heuristic_confidence(sample, baseline)

    def _heuristic_confidence(self, sample: Sequence[float], baseline: RegressionBaseline) -> float:
        values = np.asarray(sample, dtype=float)
        sample_mean = float(values.mean())
        sample_std = float(values.std(ddof=1))
        difference = abs(sample_mean - baseline.mean)

        standard_error = sample_std / math.sqrt(len(values))
        if standard_error == 0:
            # identical samples: any separation at all is certain
            return 1.0 if difference > 0 else 0.0

        t_statistic = difference / standard_error
        return min(t_statistic / self.heuristic_divisor, 1.0)

    def _welch_confidence(self, sample: Sequence[float], baseline: RegressionBaseline) -> float:
        result = stats.ttest_ind(
            np.asarray(sample, dtype=float),
            np.asarray(baseline.values, dtype=float),
            equal_var=False,
            alternative="greater"
        )
        p_value = float(result.pvalue)
        if math.isnan(p_value):
            # both sides have zero variance
            return 1.0 if float(np.mean(sample)) > baseline.mean else 0.0
        return max(0.0, min(1.0, 1.0 - p_value))
