"""
In-process recurring job scheduler.

Tasks are bound to five-field cron expressions
(``minute hour day_of_month month day_of_week``). Each task keeps the next
minute its expression matches; ``tick(now)`` fires every task whose
``next_run_at`` has passed on a worker pool, so one slow or failing task never
holds up another. A tick that arrives late still fires the missed run, and a
gap spanning several matching minutes fires it once. Each task name has its own lock: a trigger that
arrives while the same task is still running is skipped, not queued. Failed
runs are logged and left for the next scheduled firing.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Optional

from .errors import TaskAlreadyRunningError, TaskNotFoundError
from .models import BatchOutcome

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CronSpec:
    minutes: frozenset[int] = field(default_factory=lambda: frozenset(range(60)))
    hours: frozenset[int] = field(default_factory=lambda: frozenset(range(24)))
    days_of_month: frozenset[int] = field(default_factory=lambda: frozenset(range(1, 32)))
    months: frozenset[int] = field(default_factory=lambda: frozenset(range(1, 13)))
    days_of_week: frozenset[int] = field(default_factory=lambda: frozenset(range(7)))


def _parse_cron_field(field_str: str, min_val: int, max_val: int) -> frozenset[int]:
    values: set[int] = set()

    for part in field_str.split(","):
        part = part.strip()
        step = 1
        if "/" in part:
            part, step_str = part.split("/", 1)
            step = int(step_str)
            if step <= 0:
                raise ValueError(f"Step must be positive: {step}")

        if part == "*":
            start, end = min_val, max_val
        elif "-" in part:
            s, e = part.split("-", 1)
            start, end = int(s), int(e)
            if start > end:
                raise ValueError(f"Range start > end: {start}-{end}")
        else:
            start = int(part)
            end = max_val if step > 1 else start

        if start < min_val or end > max_val:
            raise ValueError(f"Value outside range [{min_val}, {max_val}]: {field_str}")
        values.update(range(start, end + 1, step))

    return frozenset(values)


def parse_cron(expression: str) -> CronSpec:
    parts = expression.strip().split()
    if len(parts) != 5:
        raise ValueError(f"Cron expression must have 5 fields, got {len(parts)}: '{expression}'")

    return CronSpec(
        minutes=_parse_cron_field(parts[0], 0, 59),
        hours=_parse_cron_field(parts[1], 0, 23),
        days_of_month=_parse_cron_field(parts[2], 1, 31),
        months=_parse_cron_field(parts[3], 1, 12),
        days_of_week=_parse_cron_field(parts[4], 0, 6),
    )


_ALL_DAYS_OF_MONTH = frozenset(range(1, 32))
_ALL_DAYS_OF_WEEK = frozenset(range(7))

# long enough to reach a Feb 29 expression from any start
_MAX_SCAN_DAYS = 4 * 366


def _day_matches(spec: CronSpec, dt: datetime) -> bool:
    if dt.month not in spec.months:
        return False
    # cron counts weekdays from Sunday, datetime.weekday() from Monday
    cron_dow = (dt.weekday() + 1) % 7
    dom_ok = dt.day in spec.days_of_month
    dow_ok = cron_dow in spec.days_of_week
    # when both day fields are restricted, either one may match
    if spec.days_of_month != _ALL_DAYS_OF_MONTH and spec.days_of_week != _ALL_DAYS_OF_WEEK:
        return dom_ok or dow_ok
    return dom_ok and dow_ok


def matches_cron(spec: CronSpec, dt: datetime) -> bool:
    return dt.minute in spec.minutes and dt.hour in spec.hours and _day_matches(spec, dt)


def next_cron_match(spec: CronSpec, after: datetime) -> datetime:
    """Return the first minute strictly after ``after`` that matches ``spec``.

    Days that cannot match are skipped whole, so monthly expressions stay
    cheap to resolve.

    Raises:
        ValueError: If nothing matches within the scan horizon
            (e.g. ``0 0 30 2 *``).
    """
    candidate = after.replace(second=0, microsecond=0) + timedelta(minutes=1)
    horizon = candidate + timedelta(days=_MAX_SCAN_DAYS)

    while candidate < horizon:
        if not _day_matches(spec, candidate):
            candidate = candidate.replace(hour=0, minute=0) + timedelta(days=1)
            continue
        if candidate.hour in spec.hours and candidate.minute in spec.minutes:
            return candidate
        candidate += timedelta(minutes=1)

    raise ValueError(f"No cron match found within {_MAX_SCAN_DAYS} days after {after}")


class RunStatus(str, Enum):
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    INTERRUPTED = "INTERRUPTED"
    SKIPPED = "SKIPPED"


@dataclass
class TaskRun:
    task_name: str
    status: RunStatus
    started_at: datetime
    finished_at: Optional[datetime] = None
    outcome: Optional[BatchOutcome] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "task_name": self.task_name,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "outcome": self.outcome.model_dump(mode="json") if self.outcome else None,
            "error": self.error,
        }


@dataclass
class ScheduledTask:
    name: str
    cron_expression: str
    func: Callable[[], Any]
    description: str = ""
    spec: CronSpec = field(init=False)
    next_run_at: Optional[datetime] = None
    last_run: Optional[TaskRun] = None
    _running: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def __post_init__(self):
        self.spec = parse_cron(self.cron_expression)

    def is_due(self, now: datetime) -> bool:
        if self.next_run_at is None:
            # on the first look the current minute still counts
            self.next_run_at = next_cron_match(self.spec, now - timedelta(minutes=1))
        return now >= self.next_run_at

    def mark_fired(self, now: datetime) -> None:
        self.next_run_at = next_cron_match(self.spec, now)

    @property
    def is_running(self) -> bool:
        return self._running.locked()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Scheduler:
    def __init__(
        self,
        clock: Callable[[], datetime] = _utcnow,
        tick_interval_seconds: float = 30,
        max_workers: int = 4,
    ):
        self._clock = clock
        self._tick_interval = tick_interval_seconds
        self._tasks: dict[str, ScheduledTask] = {}
        self._max_workers = max_workers
        self._executor = self._new_executor()
        self.stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._tick_lock = threading.Lock()

    def _new_executor(self) -> ThreadPoolExecutor:
        return ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="pension-job")

    def register(self, name: str, cron_expression: str, func: Callable[[], Any], description: str = "") -> ScheduledTask:
        task = ScheduledTask(name=name, cron_expression=cron_expression, func=func, description=description)
        self._tasks[name] = task
        logger.info("Scheduled task %s (%s)", name, cron_expression)
        return task

    def get_task(self, name: str) -> ScheduledTask:
        task = self._tasks.get(name)
        if task is None:
            raise TaskNotFoundError(f"Task {name} not found")
        return task

    @property
    def tasks(self) -> list[ScheduledTask]:
        return list(self._tasks.values())

    def tick(self, now: Optional[datetime] = None) -> list[Future]:
        """Submit every due task to the worker pool and return their futures."""
        now = now or self._clock()
        futures = []
        with self._tick_lock:
            for task in self._tasks.values():
                try:
                    if not task.is_due(now):
                        continue
                    scheduled_for = task.next_run_at
                    task.mark_fired(now)
                except ValueError:
                    logger.exception("Task %s has no upcoming run for '%s'", task.name, task.cron_expression)
                    continue
                if scheduled_for < now.replace(second=0, microsecond=0):
                    logger.warning(
                        "Task %s missed its %s firing, running it late at %s",
                        task.name, scheduled_for.isoformat(), now.isoformat(),
                    )
                logger.info("Firing scheduled task %s at %s", task.name, now.isoformat())
                futures.append(self._executor.submit(self._execute, task))
        return futures

    def run_task(self, name: str) -> TaskRun:
        """Run one task now in the calling thread; raises if it is already in flight."""
        task = self.get_task(name)
        run = self._execute(task)
        if run.status == RunStatus.SKIPPED:
            raise TaskAlreadyRunningError(f"Task {name} is already running")
        return run

    def _execute(self, task: ScheduledTask) -> TaskRun:
        started = self._clock()
        if not task._running.acquire(blocking=False):
            logger.warning("Task %s is already running, skipping this trigger", task.name)
            return TaskRun(task_name=task.name, status=RunStatus.SKIPPED, started_at=started, finished_at=started)

        try:
            logger.info("Task %s started", task.name)
            try:
                result = task.func()
            except Exception as e:
                logger.exception("Task %s failed", task.name)
                run = TaskRun(task_name=task.name, status=RunStatus.FAILED, started_at=started, error=str(e))
            else:
                outcome = result if isinstance(result, BatchOutcome) else None
                if outcome is not None and outcome.interrupted:
                    status = RunStatus.INTERRUPTED
                    logger.warning("Task %s was interrupted after %d records", task.name, outcome.total)
                elif outcome is not None and outcome.failed:
                    status = RunStatus.FAILED
                else:
                    status = RunStatus.SUCCEEDED
                run = TaskRun(task_name=task.name, status=status, started_at=started, outcome=outcome)
            run.finished_at = self._clock()
            task.last_run = run
            if run.outcome is not None:
                logger.info(
                    "Task %s finished with status %s: %d succeeded, %d failed",
                    task.name, run.status.value, run.outcome.succeeded, run.outcome.failed,
                )
            else:
                logger.info("Task %s finished with status %s", task.name, run.status.value)
            return run
        finally:
            task._running.release()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        if self.stop_event.is_set():
            # previous stop() shut the pool down
            self._executor = self._new_executor()
        self.stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="pension-scheduler", daemon=True)
        self._thread.start()
        logger.info("Scheduler started (tick every %ss)", self._tick_interval)

    def stop(self, timeout: float = 30.0) -> None:
        self.stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        self._executor.shutdown(wait=True)
        logger.info("Scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run_loop(self) -> None:
        while not self.stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("Scheduler tick failed")
            self.stop_event.wait(timeout=self._tick_interval)
