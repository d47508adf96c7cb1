"""AlertLifecycleTracker: single source of truth for alert state.

State machine:
    pending -> sent -> delivered -> read -> dismissed
    any     -> failed      (dispatch error)
    pending -> dismissed   (category disabled, or user dismissed a deferred alert)
    pending (with armed task) while deferred for quiet hours

Every mutation of one alert happens under that alert's lock, so a user
dismissing an alert cannot be lost to a dispatch result arriving at the
same moment. Deferred work (quiet-hours release, snooze re-delivery) is
held as a ScheduledTask handle per alert; dismiss() cancels it.
"""
import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Set

from astral.shared.models import (
    ACTIVE_STATUSES,
    Alert,
    AlertStatus,
    Channel,
    ChannelResult,
    ContactNotification,
    CrisisAlert,
)
from astral.shared.utils import hash_pii

from .errors import SchedulingNoop
from .scheduling import ScheduledTask, TaskScheduler, parse_snooze_duration

logger = logging.getLogger(__name__)


class AlertLifecycleTracker:
    """Registry of alerts, their statuses and their armed deferred tasks."""

    def __init__(self, task_scheduler: TaskScheduler):
        """Initialize tracker.

        Args:
            task_scheduler: Runs snooze and quiet-hours tasks
        """
        self.task_scheduler = task_scheduler
        self.clock = task_scheduler.clock
        self._alerts: Dict[str, Alert] = {}
        self._tasks: Dict[str, ScheduledTask] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._in_flight: Set[str] = set()
        self._attempts: Dict[str, int] = {}
        self._index_lock = threading.Lock()
        self._resubmit: Optional[Callable[[Alert], None]] = None

    def set_resubmit_handler(self, handler: Callable[[Alert], None]) -> None:
        """Where snoozed alerts go when their snooze elapses."""
        self._resubmit = handler

    def _lock_for(self, alert_id: str) -> threading.RLock:
        with self._index_lock:
            lock = self._locks.get(alert_id)
            if lock is None:
                lock = self._locks[alert_id] = threading.RLock()
            return lock

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def register(self, alert: Alert) -> Alert:
        with self._lock_for(alert.id):
            with self._index_lock:
                self._alerts[alert.id] = alert

        logger.info(
            "ALERT_REGISTERED",
            extra={
                "alert_id": alert.id,
                "user_id_hash": hash_pii(alert.user_id),
                "type": alert.type.value,
                "priority": alert.priority.value,
            }
        )
        return alert

    def get(self, alert_id: str) -> Optional[Alert]:
        with self._index_lock:
            return self._alerts.get(alert_id)

    def remove(self, alert_id: str) -> Optional[Alert]:
        """Forget an alert, cancelling any armed task."""
        with self._lock_for(alert_id):
            self._cancel_task_locked(alert_id)
            with self._index_lock:
                self._in_flight.discard(alert_id)
                self._attempts.pop(alert_id, None)
                self._locks.pop(alert_id, None)
                return self._alerts.pop(alert_id, None)

    def get_active_alerts(self, user_id: str) -> List[Alert]:
        """Pending, sent and delivered alerts for the user, newest first."""
        with self._index_lock:
            alerts = list(self._alerts.values())
        active = [
            a for a in alerts
            if a.user_id == user_id and a.status in ACTIVE_STATUSES
        ]
        return sorted(active, key=lambda a: a.timestamp, reverse=True)

    def expired_alert_ids(self) -> List[str]:
        now = self.clock.now()
        with self._index_lock:
            return [a.id for a in self._alerts.values() if a.is_expired(now)]

    def armed_task(self, alert_id: str) -> Optional[ScheduledTask]:
        with self._lock_for(alert_id):
            return self._tasks.get(alert_id)

    # ------------------------------------------------------------------
    # Deferred tasks
    # ------------------------------------------------------------------

    def arm(
        self,
        alert_id: str,
        run_at: datetime,
        action: Callable[[], None],
        name: str = "deferred_delivery",
    ) -> Optional[ScheduledTask]:
        """Arm a deferred task for a pending alert.

        Replaces any task already armed for the alert. Returns None (and
        arms nothing) if the alert is unknown or no longer pending.
        """
        with self._lock_for(alert_id):
            alert = self.get(alert_id)
            if alert is None or alert.status != AlertStatus.PENDING:
                return None
            return self._arm_locked(alert_id, run_at, lambda: True, action, name)

    def cancel_task(self, alert_id: str) -> bool:
        with self._lock_for(alert_id):
            return self._cancel_task_locked(alert_id)

    def _arm_locked(
        self,
        alert_id: str,
        run_at: datetime,
        prepare: Callable[[], bool],
        action: Callable[[], None],
        name: str,
    ) -> ScheduledTask:
        """Arm a task. Caller holds the alert lock.

        When the task fires, ``prepare`` runs under the alert lock and only
        if this task is still the one armed for the alert; ``action`` then
        runs outside the lock if ``prepare`` returned True.
        """
        self._cancel_task_locked(alert_id)
        armed: Dict[str, ScheduledTask] = {}

        def fire():
            with self._lock_for(alert_id):
                if self._tasks.get(alert_id) is not armed.get("task"):
                    return
                del self._tasks[alert_id]
                proceed = prepare()
            if proceed:
                action()

        task = self.task_scheduler.schedule(run_at, fire, name=f"{name}:{alert_id}")
        armed["task"] = task
        self._tasks[alert_id] = task

        logger.info(
            "ALERT_TASK_ARMED",
            extra={
                "alert_id": alert_id,
                "task_id": task.task_id,
                "task_name": name,
                "run_at": run_at.isoformat(),
            }
        )
        return task

    def _cancel_task_locked(self, alert_id: str) -> bool:
        task = self._tasks.pop(alert_id, None)
        if task is None:
            return False
        task.cancel()
        logger.info(
            "ALERT_TASK_CANCELLED",
            extra={"alert_id": alert_id, "task_id": task.task_id}
        )
        return True

    # ------------------------------------------------------------------
    # Dispatch outcomes
    # ------------------------------------------------------------------

    def begin_dispatch(self, alert_id: str) -> Optional[int]:
        """Claim a pending alert for dispatch.

        Returns:
            The attempt number to hand back to record_dispatch, or None if
            the alert is unknown, no longer pending, or already being
            dispatched
        """
        with self._lock_for(alert_id):
            alert = self.get(alert_id)
            if alert is None or alert.status != AlertStatus.PENDING:
                return None
            with self._index_lock:
                if alert_id in self._in_flight:
                    return None
                self._in_flight.add(alert_id)
                attempt = self._attempts.get(alert_id, 0) + 1
                self._attempts[alert_id] = attempt
            return attempt

    def record_dispatch(
        self,
        alert_id: str,
        status: AlertStatus,
        channel_results: Dict[Channel, ChannelResult],
        attempt: Optional[int] = None,
    ) -> Optional[Alert]:
        """Store the outcome of a dispatch.

        A read or dismiss that landed while the dispatch was in flight wins:
        channel results are recorded but the user's status is kept.

        Results from an attempt older than the latest claim (a snooze that
        elapsed and re-opened the alert mid-dispatch) are dropped.
        """
        with self._lock_for(alert_id):
            alert = self.get(alert_id)
            if alert is None:
                return None

            with self._index_lock:
                current = self._attempts.get(alert_id, 0)
                stale = attempt is not None and attempt != current
                if not stale:
                    self._in_flight.discard(alert_id)
            if stale:
                logger.info(
                    "DISPATCH_RESULT_STALE",
                    extra={
                        "alert_id": alert_id,
                        "attempt": attempt,
                        "current_attempt": current,
                        "dispatch_status": status.value,
                    }
                )
                return alert

            alert.channel_results = dict(channel_results)
            if alert.status == AlertStatus.PENDING:
                alert.status = status
            else:
                logger.info(
                    "DISPATCH_RESULT_AFTER_USER_ACTION",
                    extra={
                        "alert_id": alert_id,
                        "kept_status": alert.status.value,
                        "dispatch_status": status.value,
                    }
                )
            return alert

    def record_escalation(
        self,
        alert_id: str,
        contact_results: List[ContactNotification],
    ) -> Optional[Alert]:
        """Store emergency-contact outcomes and flag the contacts as notified."""
        with self._lock_for(alert_id):
            alert = self.get(alert_id)
            if isinstance(alert, CrisisAlert):
                alert.contact_results = list(contact_results)
                alert.emergency_contacts_notified = True
            return alert

    def mark_delivered(self, alert_id: str) -> Optional[Alert]:
        """Delivery receipt from a sink: sent -> delivered."""
        with self._lock_for(alert_id):
            alert = self.get(alert_id)
            if alert is not None and alert.status == AlertStatus.SENT:
                alert.status = AlertStatus.DELIVERED
            return alert

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------

    def acknowledge(self, alert_id: str) -> Optional[Alert]:
        """Mark read. Idempotent; any deferred delivery is cancelled."""
        with self._lock_for(alert_id):
            alert = self.get(alert_id)
            if alert is None:
                logger.warning("ALERT_ACKNOWLEDGE_NOT_FOUND", extra={"alert_id": alert_id})
                return None
            self._cancel_task_locked(alert_id)
            alert.status = AlertStatus.READ

        logger.info(
            "ALERT_ACKNOWLEDGED",
            extra={
                "alert_id": alert_id,
                "time_to_acknowledge_seconds": (
                    self.clock.now() - alert.timestamp
                ).total_seconds(),
            }
        )
        return alert

    def dismiss(self, alert_id: str, reason: str = "user") -> Optional[Alert]:
        """Mark dismissed. Idempotent.

        Cancels any armed task for the alert, so a dismissed alert is never
        delivered later by a quiet-hours release or snooze timer.
        """
        with self._lock_for(alert_id):
            alert = self.get(alert_id)
            if alert is None:
                logger.warning("ALERT_DISMISS_NOT_FOUND", extra={"alert_id": alert_id})
                return None
            cancelled = self._cancel_task_locked(alert_id)
            alert.status = AlertStatus.DISMISSED

        logger.info(
            "ALERT_DISMISSED",
            extra={
                "alert_id": alert_id,
                "reason": reason,
                "cancelled_task": cancelled,
            }
        )
        return alert

    def snooze(self, alert_id: str, duration: str) -> Optional[Alert]:
        """Dismiss now and re-deliver after ``duration`` (``<N>h`` / ``<N>m``).

        The re-delivery is a new attempt: status goes back to pending and
        the previous channel results are cleared before the alert is
        re-submitted. An unparseable duration leaves the alert untouched.

        Returns:
            The alert, or None if unknown
        """
        try:
            delay = parse_snooze_duration(duration)
        except SchedulingNoop:
            logger.warning(
                "SNOOZE_DURATION_UNPARSEABLE",
                extra={"alert_id": alert_id, "duration": duration}
            )
            return self.get(alert_id)

        with self._lock_for(alert_id):
            alert = self.get(alert_id)
            if alert is None:
                logger.warning("ALERT_SNOOZE_NOT_FOUND", extra={"alert_id": alert_id})
                return None

            alert.status = AlertStatus.DISMISSED
            run_at = self.clock.now() + delay
            self._arm_locked(
                alert_id,
                run_at,
                lambda: self._reopen_locked(alert),
                lambda: self._resubmit_snoozed(alert),
                "snooze",
            )

        logger.info(
            "ALERT_SNOOZED",
            extra={
                "alert_id": alert_id,
                "snooze_minutes": int(delay / timedelta(minutes=1)),
            }
        )
        return alert

    def _reopen_locked(self, alert: Alert) -> bool:
        if alert.status != AlertStatus.DISMISSED:
            return False
        alert.status = AlertStatus.PENDING
        alert.channel_results = {}
        with self._index_lock:
            # A dispatch still running for the earlier attempt no longer
            # blocks the re-delivery; its result is dropped as stale.
            if alert.id in self._in_flight:
                self._in_flight.discard(alert.id)
                self._attempts[alert.id] = self._attempts.get(alert.id, 0) + 1
        return True

    def _resubmit_snoozed(self, alert: Alert) -> None:
        logger.info("ALERT_SNOOZE_ELAPSED", extra={"alert_id": alert.id})
        if self._resubmit is None:
            logger.error(
                "ALERT_RESUBMIT_UNAVAILABLE",
                extra={"alert_id": alert.id, "reason": "no_resubmit_handler"}
            )
            return
        self._resubmit(alert)


class ExpirySweeper:
    """Periodically removes alerts whose expires_at has passed."""

    def __init__(
        self,
        tracker: AlertLifecycleTracker,
        interval_seconds: int = 60,
    ):
        self.tracker = tracker
        self.task_scheduler = tracker.task_scheduler
        self.interval = timedelta(seconds=interval_seconds)
        self._task: Optional[ScheduledTask] = None
        self._running = False
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._running

    def sweep(self) -> List[str]:
        """Remove every expired alert regardless of status.

        Returns:
            Ids of removed alerts
        """
        removed = []
        for alert_id in self.tracker.expired_alert_ids():
            if self.tracker.remove(alert_id) is not None:
                removed.append(alert_id)

        if removed:
            logger.info("EXPIRED_ALERTS_SWEPT", extra={"removed_count": len(removed)})
        return removed

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            self._running = True
            self._arm_next()
        logger.info(
            "EXPIRY_SWEEPER_STARTED",
            extra={"interval_seconds": self.interval.total_seconds()}
        )

    def stop(self) -> None:
        with self._lock:
            self._running = False
            if self._task is not None:
                self._task.cancel()
                self._task = None
        logger.info("EXPIRY_SWEEPER_STOPPED")

    def _arm_next(self) -> None:
        run_at = self.task_scheduler.clock.now() + self.interval
        self._task = self.task_scheduler.schedule(run_at, self._tick, name="expiry_sweep")

    def _tick(self) -> None:
        try:
            self.sweep()
        finally:
            with self._lock:
                if self._running:
                    self._arm_next()
