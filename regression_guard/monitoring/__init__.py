"""Sample collection, structured logging and self-instrumentation."""

from .collector import SampleCollector, group_by_metric
from .metrics import GuardMetrics

__all__ = ["SampleCollector", "group_by_metric", "GuardMetrics"]
