"""Per-metric statistical baselines with durable storage."""

import json
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np
import structlog

from ..core.errors import InsufficientDataError
from ..core.models import BaselineResult, Percentiles, RegressionBaseline
from ..monitoring.metrics import GuardMetrics
from ..storage.stores import KeyValueStore, MemoryStore

logger = structlog.get_logger(__name__)

PERCENTILE_LADDER = (50, 75, 90, 95, 99)


def calculate_percentile(sorted_values: Sequence[float], percentile: float) -> float:
    """Linear interpolation between order statistics (index = p/100 * (n-1))."""
    if len(sorted_values) == 0:
        raise ValueError("cannot take a percentile of an empty sequence")
    return float(np.percentile(np.asarray(sorted_values, dtype=float), percentile))


class BaselineManager:
    """Owns every ``RegressionBaseline``; the only component that mutates them.

    Baselines are recomputed wholesale from the newest ``history_window``
    values, never incrementally, so they follow gradual legitimate shifts.
    Each baseline is persisted under ``performance_baselines/<metric>`` and
    the set of metrics under ``performance_baselines/_index``. A store that
    fails is logged and the in-memory baseline stays authoritative.
    """

    STORAGE_PREFIX = "performance_baselines"
    INDEX_KEY = f"{STORAGE_PREFIX}/_index"

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        config: Dict[str, Any] = None,
        clock: Callable[[], float] = time.time,
        metrics: Optional[GuardMetrics] = None
    ):
        self.config = config or {}
        self.store = store if store is not None else MemoryStore()
        self.sample_size_minimum = self.config.get("sample_size_minimum", 20)
        self.history_window = self.config.get("history_window", 500)
        self._clock = clock
        self.metrics = metrics or GuardMetrics()
        self._baselines: Dict[str, RegressionBaseline] = {}
        self._indexed: set = set()

    # Queries

    def get(self, metric_name: str) -> Optional[RegressionBaseline]:
        return self._baselines.get(metric_name)

    def all(self) -> List[RegressionBaseline]:
        return list(self._baselines.values())

    def __contains__(self, metric_name: str) -> bool:
        return metric_name in self._baselines

    def __len__(self) -> int:
        return len(self._baselines)

    # Computation

    def compute_baseline(self, metric_name: str, samples: Sequence[float]) -> BaselineResult:
        """Build a baseline without storing it."""
        window = list(samples)[-self.history_window:]
        if len(window) < self.sample_size_minimum:
            reason = InsufficientDataError(metric_name, len(window), self.sample_size_minimum)
            return BaselineResult(
                metric_name=metric_name,
                sample_size=len(window),
                required=self.sample_size_minimum,
                reason=reason.message
            )

        values = np.asarray(window, dtype=float)
        sorted_values = np.sort(values)
        ladder = np.percentile(sorted_values, PERCENTILE_LADDER)

        baseline = RegressionBaseline(
            metric_name=metric_name,
            values=[float(v) for v in sorted_values],
            mean=float(values.mean()),
            standard_deviation=float(values.std()),  # population
            percentiles=Percentiles(*(float(p) for p in ladder)),
            last_updated=int(self._clock() * 1000),
            sample_size=len(window)
        )
        return BaselineResult(
            metric_name=metric_name,
            baseline=baseline,
            sample_size=len(window),
            required=self.sample_size_minimum
        )

    def create_or_update_baseline(self, metric_name: str, samples: Sequence[float]) -> BaselineResult:
        """Recompute, store in memory and persist the baseline for a metric."""
        result = self.compute_baseline(metric_name, samples)
        if result.insufficient_data:
            logger.debug(
                "Skipping baseline, insufficient data",
                metric=metric_name,
                sample_size=result.sample_size,
                required=result.required
            )
            return result

        baseline = result.baseline
        created = metric_name not in self._baselines
        self._baselines[metric_name] = baseline
        self.metrics.increment_counter("baseline_updates_total")
        self.metrics.set_gauge("baselines_tracked", len(self._baselines))

        logger.info(
            "Baseline created" if created else "Baseline updated",
            metric=metric_name,
            sample_size=baseline.sample_size,
            mean=round(baseline.mean, 3),
            standard_deviation=round(baseline.standard_deviation, 3)
        )

        self._save(metric_name, baseline)
        return result

    def refresh(self, histories: Dict[str, Sequence[float]]) -> Dict[str, BaselineResult]:
        """Recompute every baseline whose history meets the minimum sample size."""
        results = {}
        for metric_name, values in histories.items():
            if len(values) < self.sample_size_minimum:
                continue
            try:
                results[metric_name] = self.create_or_update_baseline(metric_name, values)
            except Exception as e:
                logger.exception("Baseline refresh failed", metric=metric_name, error=str(e))
        return results

    # Persistence

    def _record_key(self, metric_name: str) -> str:
        return f"{self.STORAGE_PREFIX}/{metric_name}"

    def _save(self, metric_name: str, baseline: RegressionBaseline) -> bool:
        try:
            self.store.save(self._record_key(metric_name), json.dumps(baseline.to_dict()).encode("utf-8"))
            if metric_name not in self._indexed:
                index = sorted(self._indexed | set(self._baselines) | set(self._stored_index()))
                self.store.save(self.INDEX_KEY, json.dumps(index).encode("utf-8"))
                self._indexed = set(index)
            return True
        except Exception as e:
            self.metrics.increment_counter("baseline_persistence_failures_total", {"operation": "save"})
            logger.warning("Failed to save baseline", metric=metric_name, error=str(e))
            return False

    def _stored_index(self) -> List[str]:
        raw = self.store.load(self.INDEX_KEY)
        if raw is None:
            return []
        index = json.loads(raw.decode("utf-8"))
        if not isinstance(index, list):
            raise ValueError("baseline index is not a list")
        return [str(m) for m in index]

    def load_all(self) -> int:
        """Load persisted baselines; missing or corrupt records are skipped."""
        try:
            index = self._stored_index()
        except Exception as e:
            self.metrics.increment_counter("baseline_persistence_failures_total", {"operation": "load"})
            logger.warning("Failed to load stored baselines", error=str(e))
            return 0

        if not index:
            return 0

        self._indexed = set(index)
        loaded = 0
        for metric_name in index:
            baseline = self._load_one(metric_name)
            if baseline is not None:
                self._baselines[baseline.metric_name] = baseline
                loaded += 1

        self.metrics.set_gauge("baselines_tracked", len(self._baselines))
        logger.info("Baselines loaded", loaded=loaded, indexed=len(index))
        return loaded

    def _load_one(self, metric_name: str) -> Optional[RegressionBaseline]:
        try:
            raw = self.store.load(self._record_key(metric_name))
            if raw is None:
                logger.warning("Indexed baseline missing from store", metric=metric_name)
                return None
            baseline = RegressionBaseline.from_dict(json.loads(raw.decode("utf-8")))
            if baseline.metric_name != metric_name:
                raise ValueError(f"record names '{baseline.metric_name}'")
            return baseline
        except Exception as e:
            self.metrics.increment_counter("baseline_persistence_failures_total", {"operation": "load"})
            logger.warning("Ignoring corrupt baseline", metric=metric_name, error=str(e))
            return None
