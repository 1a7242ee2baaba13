from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

logger = logging.getLogger(__name__)

# GitHub asks integrators to space out write requests by about a second.
DEFAULT_INTERVAL_SECONDS = 1.0

STREAM_MARK_READ = "mark_read"
STREAM_REPLY = "reply"
STREAM_REACTION = "reaction"
STREAM_RECORD = "record"


@dataclass(frozen=True)
class DispatchTask:
    stream: str
    description: str
    run: Callable[[], object]


@dataclass(frozen=True)
class TaskFailure:
    task: DispatchTask
    error: BaseException


class DispatchError(Exception):
    """Raised when one or more dispatched writes failed."""

    def __init__(self, failures: List[TaskFailure]):
        self.failures = failures
        summary = "; ".join(f"{f.task.description}: {f.error}" for f in failures[:5])
        if len(failures) > 5:
            summary += f"; ... ({len(failures) - 5} more)"
        super().__init__(f"{len(failures)} dispatch task(s) failed: {summary}")


@dataclass
class DispatchReport:
    completed: List[DispatchTask] = field(default_factory=list)
    failures: List[TaskFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def raise_for_failures(self) -> None:
        if self.failures:
            raise DispatchError(self.failures)


class Pacer:
    """Hands out start slots at least ``interval`` seconds apart.

    Shared by every worker thread, so all writes go through the same
    spacing no matter which stream they belong to.
    """

    def __init__(
        self,
        interval: float = DEFAULT_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.interval = max(float(interval), 0.0)
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._next_slot: Optional[float] = None

    def wait(self) -> float:
        """Block until this caller's slot; return how long it waited."""
        with self._lock:
            now = self._clock()
            slot = now if self._next_slot is None else max(now, self._next_slot)
            self._next_slot = slot + self.interval
        delay = slot - now
        if delay > 0:
            self._sleep(delay)
        return delay


class RateLimitedDispatcher:
    def __init__(
        self,
        interval: float = DEFAULT_INTERVAL_SECONDS,
        concurrency: int = 1,
        pacer: Optional[Pacer] = None,
    ):
        self.concurrency = max(int(concurrency), 1)
        self.pacer = pacer or Pacer(interval)

    def _run(self, task: DispatchTask, before_each: Optional[Callable[[], None]] = None) -> None:
        self.pacer.wait()
        if before_each is not None:
            before_each()
        logger.info("dispatch [%s] %s", task.stream, task.description)
        task.run()

    def dispatch(
        self,
        tasks: Iterable[DispatchTask],
        before_each: Optional[Callable[[], None]] = None,
    ) -> DispatchReport:
        """Run every task; failures are collected, never short-circuited.

        ``before_each`` runs right before each task; if it raises, that task
        is recorded as failed without running.
        """
        tasks = list(tasks)
        report = DispatchReport()
        if not tasks:
            return report

        with ThreadPoolExecutor(
            max_workers=self.concurrency, thread_name_prefix="dispatch"
        ) as pool:
            futures = [(task, pool.submit(self._run, task, before_each)) for task in tasks]
            for task, future in futures:
                error = future.exception()
                if error is None:
                    report.completed.append(task)
                    continue
                logger.error("dispatch [%s] %s failed: %s", task.stream, task.description, error)
                report.failures.append(TaskFailure(task, error))

        return report
