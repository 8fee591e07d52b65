"""Scheduling primitives for periodic and deferred guard work.

The detector never creates timers itself. It asks a ``Scheduler`` for a
periodic job (detection, baseline refresh, budget check) or a deferred job
(rollback confirmation), so production runs on the asyncio loop while tests
drive a virtual clock with ``ManualScheduler.advance``.
"""

import asyncio
import heapq
import inspect
import itertools
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import structlog

logger = structlog.get_logger(__name__)

Job = Callable[[], Union[None, Awaitable[Any]]]


async def _run_job(name: str, job: Job) -> None:
    """Run a job, awaiting it if needed; exceptions are logged, never raised."""
    try:
        result = job()
        if inspect.isawaitable(result):
            await result
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.exception("Scheduled job failed", job=name, error=str(e))


class Scheduler(ABC):
    """Ticker/timer interface used by the detector."""

    @abstractmethod
    def time(self) -> float:
        """Current time in seconds since the epoch."""

    @abstractmethod
    def every(self, name: str, interval: float, job: Job) -> None:
        """Run ``job`` every ``interval`` seconds once started."""

    @abstractmethod
    def call_later(self, name: str, delay: float, job: Job) -> None:
        """Run ``job`` once after ``delay`` seconds."""

    @abstractmethod
    def start(self) -> None:
        pass

    @abstractmethod
    def stop(self) -> None:
        """Cancel every periodic and deferred job."""

    @abstractmethod
    def pending(self) -> List[str]:
        """Names of deferred jobs that have not run yet."""

    def now_ms(self) -> int:
        return int(self.time() * 1000)


class AsyncioScheduler(Scheduler):
    """Scheduler backed by tasks on the running asyncio loop."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._periodic: Dict[str, tuple] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._deferred: Dict[int, asyncio.Task] = {}
        self._deferred_names: Dict[int, str] = {}
        self._ids = itertools.count()
        self._running = False

    def time(self) -> float:
        return self._clock()

    def every(self, name: str, interval: float, job: Job) -> None:
        self._periodic[name] = (interval, job)
        if self._running:
            self._tasks[name] = asyncio.get_running_loop().create_task(self._loop(name, interval, job))

    def call_later(self, name: str, delay: float, job: Job) -> None:
        job_id = next(self._ids)
        task = asyncio.get_running_loop().create_task(self._deferred_run(job_id, name, delay, job))
        self._deferred[job_id] = task
        self._deferred_names[job_id] = name

    def start(self) -> None:
        if self._running:
            return
        loop = asyncio.get_running_loop()
        self._running = True
        for name, (interval, job) in self._periodic.items():
            self._tasks[name] = loop.create_task(self._loop(name, interval, job))
        logger.info("Scheduler started", jobs=list(self._periodic))

    def stop(self) -> None:
        self._running = False
        for task in list(self._tasks.values()) + list(self._deferred.values()):
            task.cancel()
        cancelled = len(self._tasks) + len(self._deferred)
        self._tasks.clear()
        self._deferred.clear()
        self._deferred_names.clear()
        logger.info("Scheduler stopped", cancelled_tasks=cancelled)

    def pending(self) -> List[str]:
        return list(self._deferred_names.values())

    async def _loop(self, name: str, interval: float, job: Job) -> None:
        while self._running:
            await asyncio.sleep(interval)
            await _run_job(name, job)

    async def _deferred_run(self, job_id: int, name: str, delay: float, job: Job) -> None:
        try:
            await asyncio.sleep(delay)
            await _run_job(name, job)
        finally:
            self._deferred.pop(job_id, None)
            self._deferred_names.pop(job_id, None)


@dataclass(order=True)
class _Entry:
    due: float
    seq: int
    name: str = field(compare=False)
    job: Job = field(compare=False)
    interval: Optional[float] = field(default=None, compare=False)


class ManualScheduler(Scheduler):
    """Deterministic scheduler with a virtual clock, driven by ``advance``."""

    def __init__(self, start_time: float = 1_700_000_000.0):
        self._now = start_time
        self._queue: List[_Entry] = []
        self._periodic: Dict[str, float] = {}
        self._seq = itertools.count()
        self._running = False

    def time(self) -> float:
        return self._now

    def every(self, name: str, interval: float, job: Job) -> None:
        self._periodic[name] = interval
        heapq.heappush(self._queue, _Entry(self._now + interval, next(self._seq), name, job, interval))

    def call_later(self, name: str, delay: float, job: Job) -> None:
        heapq.heappush(self._queue, _Entry(self._now + delay, next(self._seq), name, job))

    def start(self) -> None:
        self._running = True

    def stop(self) -> None:
        self._running = False
        self._queue.clear()
        self._periodic.clear()

    def pending(self) -> List[str]:
        return [entry.name for entry in sorted(self._queue) if entry.interval is None]

    async def advance(self, seconds: float) -> None:
        """Move the clock forward, running every job that falls due on the way."""
        target = self._now + seconds
        while self._queue and self._queue[0].due <= target:
            entry = heapq.heappop(self._queue)
            self._now = entry.due
            if entry.interval is not None:
                heapq.heappush(
                    self._queue,
                    _Entry(entry.due + entry.interval, next(self._seq), entry.name, entry.job, entry.interval)
                )
                # periodic jobs only tick between start() and stop()
                if not self._running:
                    continue
            await _run_job(entry.name, entry.job)
        self._now = target
