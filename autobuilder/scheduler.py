"""Worker pool and retry policy.

Two scheduling modes share one RetryPolicy:

- ``static``: the resolved order is split round-robin into one bucket per
  worker before anything runs (bucket ``i`` gets ``order[i::k]``). Each
  worker builds its bucket strictly in sequence. Nothing crosses buckets,
  so a package may start before a dependency held by another worker.
- ``ready-queue``: workers pull from a shared queue of packages whose
  in-set build dependencies have finished (succeeded or failed for good).
  With one worker this is exactly the resolved order.

Both modes join every worker before returning a ScheduleReport.
"""

from __future__ import annotations

import heapq
import logging
import threading
import time
from collections import defaultdict
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field

from autobuilder.types import JobResult, ScheduleMode

logger = logging.getLogger(__name__)

BuildFn = Callable[[str, int], JobResult]


class RetryPolicy:
    """Bounded retries with linear backoff.

    After every failed attempt ``n`` the policy sleeps ``n * backoff``
    seconds, including after the final attempt. An exception raised by the
    build function counts as a failed attempt.
    """

    def __init__(
        self,
        max_attempts: int,
        backoff: float,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 0:
            raise ValueError("max_attempts must be >= 0")
        self.max_attempts = max_attempts
        self.backoff = backoff
        self.sleep = sleep

    def delay(self, attempt: int) -> float:
        """Backoff after a failed attempt."""
        return attempt * self.backoff

    def run(self, name: str, build_fn: BuildFn) -> tuple[JobResult | None, int]:
        """Build one package until it succeeds or attempts run out.

        Args:
            name: Package name.
            build_fn: Called as ``build_fn(name, attempt)``.

        Returns:
            Tuple of (last result, attempts made). The result is None when
            the package was never attempted or its last attempt raised.
        """
        result: JobResult | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                result = build_fn(name, attempt)
            except Exception:
                logger.exception("Unexpected error building %s (attempt %d)", name, attempt)
                result = None
            if result is not None and result.success:
                return result, attempt
            delay = self.delay(attempt)
            logger.warning(
                "%s failed (attempt %d/%d); sleeping %ss",
                name,
                attempt,
                self.max_attempts,
                delay,
            )
            self.sleep(delay)

        logger.error("%s failed permanently after %d attempt(s)", name, self.max_attempts)
        return result, self.max_attempts


def partition(order: Sequence[str], worker_count: int) -> list[list[str]]:
    """Split an order round-robin into one bucket per worker.

    Args:
        order: Resolved build order.
        worker_count: Number of workers (>= 1).

    Returns:
        ``worker_count`` buckets; bucket ``i`` holds ``order[i::worker_count]``.
    """
    if worker_count < 1:
        raise ValueError("worker_count must be >= 1")
    return [list(order[i::worker_count]) for i in range(worker_count)]


@dataclass
class ScheduleReport:
    """Outcome of a scheduled run.

    Attributes:
        succeeded: Packages that built, in completion order.
        failed: Packages that failed permanently, in completion order.
        attempts: Attempts made per package.
        results: Last JobResult per package (absent if never attempted).
    """

    succeeded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    attempts: dict[str, int] = field(default_factory=dict)
    results: dict[str, JobResult] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def add(self, name: str, result: JobResult | None, attempts: int) -> None:
        """Record a package's final outcome."""
        with self._lock:
            self.attempts[name] = attempts
            if result is not None:
                self.results[name] = result
            if result is not None and result.success:
                self.succeeded.append(name)
            else:
                self.failed.append(name)

    @property
    def ok(self) -> bool:
        """Whether every package built."""
        return not self.failed

    def to_dict(self) -> dict[str, object]:
        """Summary for JSON output."""
        return {
            "succeeded": list(self.succeeded),
            "failed": list(self.failed),
            "attempts": dict(self.attempts),
        }


class Scheduler:
    """Fixed pool of worker threads building a resolved order."""

    def __init__(
        self,
        worker_count: int,
        build_fn: BuildFn,
        policy: RetryPolicy,
        mode: ScheduleMode = ScheduleMode.STATIC,
        deps: Mapping[str, Sequence[str]] | None = None,
    ) -> None:
        if worker_count < 1:
            raise ValueError("worker_count must be >= 1")
        self.worker_count = worker_count
        self.build_fn = build_fn
        self.policy = policy
        self.mode = mode
        self.deps = deps or {}

    def run(self, order: Sequence[str]) -> ScheduleReport:
        """Build every package in the order and wait for all workers."""
        report = ScheduleReport()
        if self.mode is ScheduleMode.READY_QUEUE:
            targets = self._ready_queue_workers(order, report)
        else:
            targets = self._static_workers(order, report)

        threads = [
            threading.Thread(target=target, name=f"autobuilder-worker-{i}", daemon=True)
            for i, target in enumerate(targets)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        logger.info(
            "Run finished: %d succeeded, %d failed",
            len(report.succeeded),
            len(report.failed),
        )
        return report

    def _build(self, name: str, report: ScheduleReport) -> None:
        result, attempts = self.policy.run(name, self.build_fn)
        report.add(name, result, attempts)

    def _static_workers(
        self, order: Sequence[str], report: ScheduleReport
    ) -> list[Callable[[], None]]:
        def make_worker(bucket: list[str]) -> Callable[[], None]:
            def worker() -> None:
                for name in bucket:
                    self._build(name, report)

            return worker

        buckets = partition(order, self.worker_count)
        for i, bucket in enumerate(buckets):
            logger.debug("Worker %d bucket: %s", i, bucket)
        return [make_worker(bucket) for bucket in buckets]

    def _ready_queue_workers(
        self, order: Sequence[str], report: ScheduleReport
    ) -> list[Callable[[], None]]:
        index = {name: i for i, name in enumerate(order)}
        waiting_on: dict[str, set[str]] = {}
        dependents: dict[str, list[str]] = defaultdict(list)
        for name in order:
            deps = {d for d in self.deps.get(name, ()) if d in index and d != name}
            waiting_on[name] = deps
            for dep in deps:
                dependents[dep].append(name)

        cond = threading.Condition()
        heap: list[tuple[int, str]] = []
        queued: set[str] = set()
        pending = set(order)
        in_flight = 0

        def push(name: str) -> None:
            queued.add(name)
            heapq.heappush(heap, (index[name], name))

        for name in order:
            if not waiting_on[name]:
                push(name)

        def next_package() -> str | None:
            nonlocal in_flight
            with cond:
                while not heap:
                    if not pending:
                        return None
                    if in_flight == 0:
                        stalled = min(pending, key=index.__getitem__)
                        logger.warning(
                            "Dependencies of %s never completed; releasing it", stalled
                        )
                        push(stalled)
                        break
                    cond.wait()
                _, name = heapq.heappop(heap)
                pending.discard(name)
                in_flight += 1
                return name

        def finish(name: str) -> None:
            nonlocal in_flight
            with cond:
                in_flight -= 1
                for dependent in dependents[name]:
                    waiting_on[dependent].discard(name)
                    if not waiting_on[dependent] and dependent not in queued:
                        push(dependent)
                cond.notify_all()

        def worker() -> None:
            while True:
                name = next_package()
                if name is None:
                    return
                try:
                    self._build(name, report)
                finally:
                    finish(name)

        return [worker] * self.worker_count


__all__ = ["BuildFn", "RetryPolicy", "ScheduleReport", "Scheduler", "partition"]
