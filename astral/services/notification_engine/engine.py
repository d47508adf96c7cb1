"""NotificationEngine: wires the notification components together.

One explicitly constructed object per process (or per test) owns the
preference store, lifecycle tracker, delivery scheduler, dispatcher,
escalation cascade and expiry sweeper. Nothing here is a module-level
singleton; the HTTP layer builds its own instance.
"""
import logging
from dataclasses import dataclass
from typing import Any, List, Optional

from astral.shared.models import (
    ActionType,
    Alert,
    AlertStatus,
    CrisisAlert,
    NotificationPreferences,
)
from astral.shared.utils import hash_pii

from .alert_factory import AlertFactory
from .channels import EmailSink, InAppInbox, InAppSink, PushSink, SmsSink
from .config import NotificationConfig
from .delivery_scheduler import DeliveryDecision, DeliveryScheduler
from .dispatcher import ChannelDispatcher
from .escalation import EscalationCascade
from .lifecycle import AlertLifecycleTracker, ExpirySweeper
from .preference_store import PreferenceStore
from .scheduling import Clock, SystemClock, TaskScheduler, ThreadingTaskScheduler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActionOutcome:
    """What the client should do after a notification action was taken.

    kind is one of navigate, dial, snooze or dismiss. For navigate the
    target is an in-app path; for dial it is a tel: URI.
    """
    action_id: str
    action_type: ActionType
    kind: str
    target: Optional[str]
    alert_status: AlertStatus

    def to_dict(self) -> dict:
        return {
            "action_id": self.action_id,
            "action_type": self.action_type.value,
            "kind": self.kind,
            "target": self.target,
            "alert_status": self.alert_status.value,
        }


class NotificationEngine:
    """Entry point for creating, delivering and acting on alerts."""

    def __init__(
        self,
        config: Optional[NotificationConfig] = None,
        clock: Optional[Clock] = None,
        task_scheduler: Optional[TaskScheduler] = None,
        preference_store: Optional[PreferenceStore] = None,
        push_sink: Optional[PushSink] = None,
        sms_sink: Optional[SmsSink] = None,
        email_sink: Optional[EmailSink] = None,
        in_app_sink: Optional[InAppSink] = None,
    ):
        """Initialize engine with its collaborators.

        Args:
            config: Engine tunables (defaults if omitted)
            clock: Time source; ignored when task_scheduler is given
            task_scheduler: Runs deferred work (threading timers if omitted)
            preference_store: Preference storage (in-memory if omitted)
            push_sink: Push provider
            sms_sink: SMS provider
            email_sink: E-mail provider
            in_app_sink: Local channel (an InAppInbox if omitted)
        """
        self.config = config or NotificationConfig()
        if task_scheduler is None:
            task_scheduler = ThreadingTaskScheduler(clock or SystemClock())
        self.task_scheduler = task_scheduler
        self.clock = task_scheduler.clock

        self.preference_store = preference_store or PreferenceStore()
        self.in_app_sink = in_app_sink or InAppInbox()
        self.factory = AlertFactory(config=self.config, clock=self.clock)
        self.tracker = AlertLifecycleTracker(task_scheduler)
        self.escalation = EscalationCascade(
            self.tracker,
            sms_sink=sms_sink,
            email_sink=email_sink,
            config=self.config,
        )
        self.dispatcher = ChannelDispatcher(
            self.tracker,
            self.in_app_sink,
            push_sink=push_sink,
            sms_sink=sms_sink,
            email_sink=email_sink,
            escalation=self.escalation,
            config=self.config,
        )
        self.scheduler = DeliveryScheduler(
            self.preference_store, self.tracker, self.dispatcher
        )
        self.tracker.set_resubmit_handler(self.scheduler.submit)
        self.sweeper = ExpirySweeper(
            self.tracker, interval_seconds=self.config.sweep_interval_seconds
        )

        logger.info("NOTIFICATION_ENGINE_INITIALIZED")

    def start(self) -> None:
        """Begin the periodic expiry sweep."""
        self.sweeper.start()

    def shutdown(self) -> None:
        self.sweeper.stop()
        self.task_scheduler.shutdown()
        self.dispatcher.shutdown()
        logger.info("NOTIFICATION_ENGINE_SHUTDOWN")

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    def set_preferences(self, preferences: NotificationPreferences) -> None:
        self.preference_store.set(preferences)

    def get_preferences(self, user_id: str) -> Optional[NotificationPreferences]:
        return self.preference_store.get(user_id)

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    def send_alert(self, alert: Alert) -> DeliveryDecision:
        """Register an alert and hand it to the delivery scheduler."""
        self.tracker.register(alert)
        decision = self.scheduler.submit(alert)

        log = logger.critical if alert.is_crisis else logger.info
        log(
            "ALERT_SUBMITTED",
            extra={
                "alert_id": alert.id,
                "user_id_hash": hash_pii(alert.user_id),
                "decision": decision.value,
                "status": alert.status.value,
            }
        )
        return decision

    def send_crisis_alert(self, user_id: str, **overrides: Any) -> CrisisAlert:
        """Create and deliver a crisis alert.

        Quiet hours never delay it; the emergency-contact cascade runs
        alongside the channel fan-out when the user has opted in.
        """
        alert = self.factory.create_crisis_alert(user_id, **overrides)
        self.send_alert(alert)
        return alert

    def send_reminder(
        self,
        user_id: str,
        reminder_type: str,
        custom_message: Optional[str] = None,
    ) -> Alert:
        alert = self.factory.create_reminder(user_id, reminder_type, custom_message)
        self.send_alert(alert)
        return alert

    def send_wellness_check_in(self, user_id: str, mood_trend: str) -> Alert:
        alert = self.factory.create_wellness_check_in(user_id, mood_trend)
        self.send_alert(alert)
        return alert

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def get_alert(self, alert_id: str) -> Optional[Alert]:
        return self.tracker.get(alert_id)

    def get_active_alerts(self, user_id: str) -> List[Alert]:
        return self.tracker.get_active_alerts(user_id)

    def acknowledge(self, alert_id: str) -> Optional[Alert]:
        return self.tracker.acknowledge(alert_id)

    def dismiss(self, alert_id: str) -> Optional[Alert]:
        return self.tracker.dismiss(alert_id)

    def snooze(self, alert_id: str, duration: str) -> Optional[Alert]:
        return self.tracker.snooze(alert_id, duration)

    def confirm_delivery(self, alert_id: str) -> Optional[Alert]:
        """Delivery receipt from a channel provider."""
        return self.tracker.mark_delivered(alert_id)

    def cleanup_expired_alerts(self) -> List[str]:
        return self.sweeper.sweep()

    # ------------------------------------------------------------------
    # Notification actions
    # ------------------------------------------------------------------

    def handle_action(self, alert_id: str, action_id: str) -> Optional[ActionOutcome]:
        """Carry out one of an alert's actions.

        url and chat actions navigate, call actions dial; all three also
        mark the alert read. snooze and dismiss act on the alert without
        acknowledging it.

        Returns:
            ActionOutcome, or None if the alert or action is unknown
        """
        alert = self.tracker.get(alert_id)
        if alert is None:
            return None
        action = alert.find_action(action_id)
        if action is None:
            logger.warning(
                "ALERT_ACTION_NOT_FOUND",
                extra={"alert_id": alert_id, "action_id": action_id}
            )
            return None

        if action.type == ActionType.SNOOZE:
            kind, target = "snooze", action.target
            self.tracker.snooze(alert_id, action.target or "")
        elif action.type == ActionType.DISMISS:
            kind, target = "dismiss", None
            self.tracker.dismiss(alert_id)
        elif action.type == ActionType.CALL:
            kind, target = "dial", f"tel:{action.target}"
            self.tracker.acknowledge(alert_id)
        else:
            kind, target = "navigate", action.target
            self.tracker.acknowledge(alert_id)

        logger.info(
            "ALERT_ACTION_HANDLED",
            extra={
                "alert_id": alert_id,
                "action_id": action_id,
                "action_type": action.type.value,
                "kind": kind,
            }
        )
        return ActionOutcome(
            action_id=action.id,
            action_type=action.type,
            kind=kind,
            target=target,
            alert_status=alert.status,
        )
