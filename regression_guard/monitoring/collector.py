"""Sample ingestion and grouping."""

import asyncio
import math
import threading
import time
from collections import deque, OrderedDict
from contextlib import contextmanager
from functools import wraps
from numbers import Real
from typing import Callable, Dict, Iterable, List, Optional

import structlog

from ..core.models import PerformanceSample
from .metrics import GuardMetrics

logger = structlog.get_logger(__name__)


class SampleCollector:
    """Bounded, thread-safe buffer of raw performance samples.

    Producers call ``record`` from anywhere; the detection cycle is the
    single consumer and calls ``drain``. When producers outpace the consumer
    the oldest samples are evicted.
    """

    def __init__(
        self,
        max_samples: int = 10000,
        clock: Callable[[], float] = time.time,
        metrics: Optional[GuardMetrics] = None
    ):
        if max_samples <= 0:
            raise ValueError("max_samples must be positive")
        self.max_samples = max_samples
        self._clock = clock
        self._buffer: deque = deque(maxlen=max_samples)
        self._lock = threading.Lock()
        self.metrics = metrics or GuardMetrics()
        self.dropped = 0
        self.rejected = 0

    def record(
        self,
        metric_name: str,
        value: float,
        unit: str = "ms",
        tags: Optional[Dict[str, str]] = None,
        timestamp: Optional[int] = None
    ) -> bool:
        """Buffer a sample. Returns False when the sample was rejected."""
        if not isinstance(metric_name, str) or not metric_name.strip():
            self._reject("empty metric name", metric_name, value)
            return False
        if isinstance(value, bool) or not isinstance(value, Real) or not math.isfinite(value):
            self._reject("non-finite value", metric_name, value)
            return False

        sample = PerformanceSample(
            metric_name=metric_name,
            value=float(value),
            unit=unit,
            timestamp=timestamp if timestamp is not None else int(self._clock() * 1000),
            tags=dict(tags or {})
        )

        with self._lock:
            if len(self._buffer) == self.max_samples:
                self.dropped += 1
                self.metrics.increment_counter("samples_dropped_total")
            self._buffer.append(sample)

        self.metrics.increment_counter("samples_recorded_total")
        return True

    def _reject(self, reason: str, metric_name, value) -> None:
        self.rejected += 1
        self.metrics.increment_counter("samples_rejected_total")
        logger.debug("Dropping malformed sample", reason=reason, metric=repr(metric_name), value=repr(value))

    def drain(self) -> List[PerformanceSample]:
        """Remove and return every buffered sample, oldest first."""
        with self._lock:
            samples = list(self._buffer)
            self._buffer.clear()
        return samples

    def snapshot(self) -> List[PerformanceSample]:
        with self._lock:
            return list(self._buffer)

    def __len__(self) -> int:
        return len(self._buffer)

    @contextmanager
    def measure(self, name: str, tags: Optional[Dict[str, str]] = None):
        """Record the wall time of a block in milliseconds."""
        start = time.perf_counter()
        success = "true"
        try:
            yield
        except BaseException:
            success = "false"
            raise
        finally:
            elapsed = (time.perf_counter() - start) * 1000
            self.record(name, elapsed, "ms", {**(tags or {}), "success": success})

    def timed(self, name: Optional[str] = None, tags: Optional[Dict[str, str]] = None):
        """Decorator recording the duration of each call (sync or async)."""
        def decorator(func: Callable) -> Callable:
            metric_name = name or f"function.{func.__name__}"

            if asyncio.iscoroutinefunction(func):
                @wraps(func)
                async def async_wrapper(*args, **kwargs):
                    with self.measure(metric_name, tags):
                        return await func(*args, **kwargs)
                return async_wrapper

            @wraps(func)
            def sync_wrapper(*args, **kwargs):
                with self.measure(metric_name, tags):
                    return func(*args, **kwargs)
            return sync_wrapper

        return decorator


def group_by_metric(samples: Iterable[PerformanceSample]) -> Dict[str, List[float]]:
    """Partition samples by metric name, each group in timestamp order."""
    ordered = sorted(samples, key=lambda s: s.timestamp)
    groups: Dict[str, List[float]] = OrderedDict()
    for sample in ordered:
        groups.setdefault(sample.metric_name, []).append(sample.value)
    return groups
