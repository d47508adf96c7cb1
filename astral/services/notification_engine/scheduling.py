"""Clocks, cancellable deferred tasks, and quiet-hours arithmetic.

Quiet-hours deferral, snooze, and the expiry sweep all run through a
TaskScheduler. Every scheduled task returns a handle whose cancel() is
honoured even if the underlying timer has already started to fire, so a
dismissed alert can never be delivered by a stale timer.
"""
import logging
import re
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Callable, List, Optional

from astral.shared.models import QuietHours

from .errors import SchedulingNoop

logger = logging.getLogger(__name__)

_SNOOZE_PATTERN = re.compile(r"^(\d+)([hm])$")


class Clock(ABC):
    """Source of the current time. Always timezone-aware UTC."""

    @abstractmethod
    def now(self) -> datetime:
        pass


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FrozenClock(Clock):
    """Clock that only moves when told to.

    Used with ManualTaskScheduler for simulations and tests.
    """

    def __init__(self, start: datetime):
        if start.tzinfo is None:
            raise ValueError("FrozenClock requires a timezone-aware start time")
        self._now = start.astimezone(timezone.utc)

    def now(self) -> datetime:
        return self._now

    def set(self, moment: datetime) -> None:
        self._now = moment.astimezone(timezone.utc)

    def advance(self, delta: timedelta) -> None:
        self._now = self._now + delta


class ScheduledTask:
    """Handle for a deferred callback.

    cancel() is safe to call at any time, any number of times. A task that
    was cancelled before its callback started never runs the callback.
    """

    def __init__(self, run_at: datetime, callback: Callable[[], None], name: str = ""):
        self.task_id = f"task_{uuid.uuid4().hex[:12]}"
        self.run_at = run_at
        self.name = name
        self._callback = callback
        self._lock = threading.Lock()
        self._cancelled = False
        self._started = False
        self._timer: Optional[threading.Timer] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def started(self) -> bool:
        return self._started

    def cancel(self) -> bool:
        """Cancel the task.

        Returns:
            True if the callback had not started and now never will
        """
        with self._lock:
            if self._started:
                return False
            self._cancelled = True
        if self._timer is not None:
            self._timer.cancel()
        return True

    def run(self) -> None:
        with self._lock:
            if self._cancelled or self._started:
                return
            self._started = True
        try:
            self._callback()
        except Exception as e:
            logger.error(
                "SCHEDULED_TASK_FAILED",
                extra={
                    "task_id": self.task_id,
                    "task_name": self.name,
                    "error": str(e),
                    "error_type": type(e).__name__,
                }
            )


class TaskScheduler(ABC):
    """Runs callbacks at absolute times and hands back cancellable handles."""

    def __init__(self, clock: Clock):
        self.clock = clock

    @abstractmethod
    def schedule(
        self,
        run_at: datetime,
        callback: Callable[[], None],
        name: str = "",
    ) -> ScheduledTask:
        pass

    def shutdown(self) -> None:
        """Cancel everything still pending."""
        pass


class ThreadingTaskScheduler(TaskScheduler):
    """Production scheduler backed by daemon threading.Timer instances."""

    def __init__(self, clock: Optional[Clock] = None):
        super().__init__(clock or SystemClock())
        self._tasks: List[ScheduledTask] = []
        self._lock = threading.Lock()

    def schedule(
        self,
        run_at: datetime,
        callback: Callable[[], None],
        name: str = "",
    ) -> ScheduledTask:
        task = ScheduledTask(run_at, callback, name)
        delay = max(0.0, (run_at - self.clock.now()).total_seconds())

        timer = threading.Timer(delay, task.run)
        timer.daemon = True
        task._timer = timer

        with self._lock:
            self._tasks = [t for t in self._tasks if not (t.cancelled or t.started)]
            self._tasks.append(task)
        timer.start()

        logger.debug(
            "TASK_SCHEDULED",
            extra={"task_id": task.task_id, "task_name": name, "delay_seconds": delay}
        )
        return task

    def shutdown(self) -> None:
        with self._lock:
            pending, self._tasks = self._tasks, []
        for task in pending:
            task.cancel()


class ManualTaskScheduler(TaskScheduler):
    """Deterministic scheduler driven by a FrozenClock.

    Nothing runs until advance() or run_due() is called; due tasks then run
    on the calling thread in run_at order, with the clock set to each
    task's run_at while it runs.
    """

    def __init__(self, clock: FrozenClock):
        super().__init__(clock)
        self._tasks: List[ScheduledTask] = []

    def schedule(
        self,
        run_at: datetime,
        callback: Callable[[], None],
        name: str = "",
    ) -> ScheduledTask:
        task = ScheduledTask(run_at, callback, name)
        self._tasks.append(task)
        return task

    @property
    def pending(self) -> List[ScheduledTask]:
        """Tasks that have neither run nor been cancelled, soonest first."""
        live = [t for t in self._tasks if not (t.cancelled or t.started)]
        return sorted(live, key=lambda t: t.run_at)

    def run_due(self) -> int:
        """Run every task due at the current clock time. Returns the count run."""
        return self._run_until(self.clock.now())

    def advance(self, delta: timedelta) -> int:
        """Move the clock forward, running tasks as their time comes."""
        target = self.clock.now() + delta
        ran = self._run_until(target)
        self.clock.set(target)
        return ran

    def _run_until(self, target: datetime) -> int:
        ran = 0
        while True:
            due = [t for t in self.pending if t.run_at <= target]
            if not due:
                return ran
            task = due[0]
            if task.run_at > self.clock.now():
                self.clock.set(task.run_at)
            task.run()
            ran += 1

    def shutdown(self) -> None:
        for task in self.pending:
            task.cancel()


def window_contains(start_minutes: int, end_minutes: int, minute_of_day: int) -> bool:
    """Whether a time of day falls inside a quiet-hours window.

    Both ends are inclusive. start > end means the window wraps midnight.
    """
    if start_minutes <= end_minutes:
        return start_minutes <= minute_of_day <= end_minutes
    return minute_of_day >= start_minutes or minute_of_day <= end_minutes


def is_quiet_time(quiet_hours: QuietHours, now: datetime, tz: tzinfo) -> bool:
    """Whether ``now`` falls within enabled quiet hours in the user's timezone."""
    if not quiet_hours.enabled:
        return False
    local = now.astimezone(tz)
    return window_contains(
        quiet_hours.start_minutes,
        quiet_hours.end_minutes,
        local.hour * 60 + local.minute,
    )


def next_quiet_hours_end(quiet_hours: QuietHours, now: datetime, tz: tzinfo) -> datetime:
    """Next wall-clock occurrence of quiet-hours end, in UTC.

    Compared at minute precision: anywhere inside the end minute itself
    (e.g. 08:00:30 for a window ending 08:00) the result is today's end,
    which is not after ``now``.
    """
    local = now.astimezone(tz)
    end = quiet_hours.end_minutes
    candidate = local.replace(hour=end // 60, minute=end % 60, second=0, microsecond=0)
    if candidate < local.replace(second=0, microsecond=0):
        candidate = candidate + timedelta(days=1)
    return candidate.astimezone(timezone.utc)


def parse_snooze_duration(token: str) -> timedelta:
    """Parse a ``<N>h`` or ``<N>m`` snooze token.

    Raises:
        SchedulingNoop: If the token is not in a recognised form
    """
    match = _SNOOZE_PATTERN.match((token or "").strip())
    if not match:
        raise SchedulingNoop(f"Unparseable snooze duration {token!r}")
    value = int(match.group(1))
    if match.group(2) == "h":
        return timedelta(hours=value)
    return timedelta(minutes=value)
