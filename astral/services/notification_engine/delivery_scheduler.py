"""DeliveryScheduler: decides whether and when an alert is sent.

Decision order for a submitted alert:
1. No stored preferences -> skipped, alert stays pending
2. Category disabled by the user -> dismissed, nothing sent
3. Not critical and inside quiet hours -> deferred to quiet-hours end
4. Otherwise -> dispatched now

Critical alerts never wait for quiet hours, whatever the configuration.
"""
import logging
from enum import Enum
from typing import Optional

from astral.shared.models import Alert, AlertPriority, NotificationPreferences
from astral.shared.utils import hash_pii

from .dispatcher import ChannelDispatcher
from .errors import PreferenceNotFound
from .lifecycle import AlertLifecycleTracker
from .preference_store import PreferenceStore
from .scheduling import is_quiet_time, next_quiet_hours_end

logger = logging.getLogger(__name__)


class DeliveryDecision(Enum):
    """What submit() did with an alert."""
    DISPATCHED = "dispatched"
    DEFERRED = "deferred"
    SUPPRESSED = "suppressed"        # Category disabled; alert dismissed
    SKIPPED = "skipped"              # No preferences, or alert no longer pending


class DeliveryScheduler:
    """Routes alerts to immediate dispatch or quiet-hours deferral."""

    def __init__(
        self,
        preference_store: PreferenceStore,
        tracker: AlertLifecycleTracker,
        dispatcher: ChannelDispatcher,
    ):
        self.preference_store = preference_store
        self.tracker = tracker
        self.dispatcher = dispatcher
        self.clock = tracker.clock

    def submit(self, alert: Alert) -> DeliveryDecision:
        """Decide and act on a new (or snoozed and re-opened) alert.

        Registers the alert with the tracker if it is not yet tracked.
        Never raises for delivery problems.
        """
        if self.tracker.get(alert.id) is None:
            self.tracker.register(alert)

        preferences = self._preferences_for(alert)
        if preferences is None:
            return DeliveryDecision.SKIPPED

        if not preferences.allows(alert.type):
            self.tracker.dismiss(alert.id, reason="category_disabled")
            return DeliveryDecision.SUPPRESSED

        if self.should_defer(alert, preferences):
            return self._defer(alert, preferences)

        return self._dispatch(alert, preferences)

    def should_defer(self, alert: Alert, preferences: NotificationPreferences) -> bool:
        if alert.priority == AlertPriority.CRITICAL:
            return False
        return is_quiet_time(preferences.quiet_hours, self.clock.now(), preferences.tzinfo)

    def release(self, alert_id: str) -> DeliveryDecision:
        """Deliver an alert whose quiet-hours deferral has ended.

        Preferences are read again (they may have changed overnight) but
        quiet hours are not re-checked: the task was armed for their end.
        """
        alert = self.tracker.get(alert_id)
        if alert is None:
            return DeliveryDecision.SKIPPED

        logger.info("ALERT_RELEASED_FROM_QUIET_HOURS", extra={"alert_id": alert_id})

        preferences = self._preferences_for(alert)
        if preferences is None:
            return DeliveryDecision.SKIPPED

        if not preferences.allows(alert.type):
            self.tracker.dismiss(alert.id, reason="category_disabled")
            return DeliveryDecision.SUPPRESSED

        return self._dispatch(alert, preferences)

    def _preferences_for(self, alert: Alert) -> Optional[NotificationPreferences]:
        try:
            return self.preference_store.require(alert.user_id)
        except PreferenceNotFound:
            logger.warning(
                "PREFERENCES_NOT_FOUND",
                extra={
                    "alert_id": alert.id,
                    "user_id_hash": hash_pii(alert.user_id),
                    "action": "delivery_skipped",
                }
            )
            return None

    def _defer(self, alert: Alert, preferences: NotificationPreferences) -> DeliveryDecision:
        now = self.clock.now()
        run_at = next_quiet_hours_end(preferences.quiet_hours, now, preferences.tzinfo)
        if run_at <= now:
            # Inside the closing minute of the window
            return self._dispatch(alert, preferences)

        task = self.tracker.arm(
            alert.id,
            run_at,
            lambda: self.release(alert.id),
            name="quiet_hours",
        )
        if task is None:
            return DeliveryDecision.SKIPPED

        logger.info(
            "ALERT_DEFERRED_QUIET_HOURS",
            extra={
                "alert_id": alert.id,
                "priority": alert.priority.value,
                "deliver_at": run_at.isoformat(),
            }
        )
        return DeliveryDecision.DEFERRED

    def _dispatch(self, alert: Alert, preferences: NotificationPreferences) -> DeliveryDecision:
        status = self.dispatcher.dispatch(alert, preferences)
        if status is None:
            return DeliveryDecision.SKIPPED
        return DeliveryDecision.DISPATCHED
