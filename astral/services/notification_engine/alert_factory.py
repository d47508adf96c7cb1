"""AlertFactory: builds typed alerts with category-appropriate defaults.

Alerts leave the factory pending and unregistered; the engine registers
them with the lifecycle tracker before scheduling delivery.
"""
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from astral.shared.models import (
    ActionStyle,
    ActionType,
    Alert,
    AlertPriority,
    AlertType,
    Channel,
    CrisisAlert,
    EscalationLevel,
    Location,
    NotificationAction,
    TriggerSource,
)

from .config import NotificationConfig
from .scheduling import Clock, SystemClock

logger = logging.getLogger(__name__)


REMINDER_MESSAGES: Dict[str, str] = {
    "mood-check": "How are you feeling today? Take a moment to check in with yourself.",
    "therapy": "You have a therapy session coming up soon.",
    "medication": "Reminder to take your medication.",
    "journal": "Consider writing in your journal today - it's a great way to process your thoughts.",
    "exercise": "A little movement can boost your mood. How about a walk or some stretching?",
}

CHECK_IN_MESSAGES: Dict[str, str] = {
    "concerning": "We noticed you might be going through a tough time. How are you doing today?",
    "stable": "How are you feeling today? Your wellbeing matters to us.",
    "improving": "It looks like things have been going well! How are you feeling today?",
}

# Set by the factory on every alert, never by the caller
_PROTECTED_FIELDS = frozenset({"id", "timestamp", "status"})

# Override fields that arrive as plain strings from JSON bodies
_ENUM_FIELDS = {
    "type": AlertType,
    "priority": AlertPriority,
    "trigger_source": TriggerSource,
    "escalation_level": EscalationLevel,
}


def new_alert_id() -> str:
    return f"alert_{uuid.uuid4().hex[:16]}"


class AlertFactory:
    """Constructs crisis alerts, reminders and wellness check-ins."""

    def __init__(
        self,
        config: Optional[NotificationConfig] = None,
        clock: Optional[Clock] = None,
    ):
        self.config = config or NotificationConfig()
        self.clock = clock or SystemClock()

    def crisis_actions(self) -> List[NotificationAction]:
        hotline = self.config.crisis_hotline
        return [
            NotificationAction(
                id=f"call-{hotline}",
                label=f"Call {hotline} Crisis Line",
                type=ActionType.CALL,
                target=hotline,
                style=ActionStyle.DANGER,
            ),
            NotificationAction(
                id="crisis-chat",
                label="Start Crisis Chat",
                type=ActionType.CHAT,
                target="/crisis/chat",
                style=ActionStyle.PRIMARY,
            ),
            NotificationAction(
                id="safety-plan",
                label="View Safety Plan",
                type=ActionType.URL,
                target="/crisis/safety-plan",
                style=ActionStyle.SECONDARY,
            ),
        ]

    def create_crisis_alert(self, user_id: str, **overrides: Any) -> CrisisAlert:
        """Build a crisis alert.

        Caller-supplied fields replace any default. id, timestamp and
        status are always set fresh by the factory.

        Args:
            user_id: User in crisis
            **overrides: Any CrisisAlert field (enum fields accept their
                string values, channels accepts channel names)

        Raises:
            TypeError: On an unknown field name
            ValueError: On an invalid value (e.g. risk_level outside 1-10)
        """
        fields: Dict[str, Any] = {
            "type": AlertType.CRISIS,
            "priority": AlertPriority.CRITICAL,
            "title": "Crisis Support Available",
            "message": "You don't have to go through this alone. Help is available right now.",
            "channels": {Channel.PUSH, Channel.SMS, Channel.IN_APP},
            "is_emergency": True,
            "requires_acknowledgment": True,
            "risk_level": 8,
            "trigger_source": TriggerSource.AI_DETECTION,
            "intervention_required": True,
            "escalation_level": EscalationLevel.IMMEDIATE,
            "support_team_notified": False,
            "emergency_contacts_notified": False,
            "actions": self.crisis_actions(),
        }
        fields.update(self._coerce_overrides(overrides))

        alert = CrisisAlert(
            id=new_alert_id(),
            user_id=user_id,
            timestamp=self.clock.now(),
            **fields,
        )

        logger.info(
            "CRISIS_ALERT_CREATED",
            extra={
                "alert_id": alert.id,
                "risk_level": alert.risk_level,
                "trigger_source": alert.trigger_source.value,
                "escalation_level": alert.escalation_level.value,
            }
        )
        return alert

    def create_reminder(
        self,
        user_id: str,
        reminder_type: str,
        custom_message: Optional[str] = None,
    ) -> Alert:
        """Build a wellness reminder that expires after a day.

        Args:
            user_id: Recipient
            reminder_type: mood-check, therapy, medication, journal or exercise
            custom_message: Replaces the canned message for the type

        Raises:
            ValueError: On an unknown reminder type
        """
        if reminder_type not in REMINDER_MESSAGES:
            raise ValueError(f"Unknown reminder type {reminder_type!r}")

        now = self.clock.now()
        return Alert(
            id=new_alert_id(),
            type=AlertType.REMINDER,
            priority=AlertPriority.MEDIUM,
            title=f"Wellness Reminder - {reminder_type.replace('-', ' ').title()}",
            message=custom_message or REMINDER_MESSAGES[reminder_type],
            user_id=user_id,
            timestamp=now,
            expires_at=now + timedelta(hours=self.config.reminder_expiry_hours),
            channels={Channel.PUSH, Channel.IN_APP},
            actions=[
                NotificationAction(
                    id="open-app",
                    label="Open App",
                    type=ActionType.URL,
                    target="/",
                    style=ActionStyle.PRIMARY,
                ),
                NotificationAction(
                    id="snooze",
                    label="Remind Later",
                    type=ActionType.SNOOZE,
                    target="1h",
                    style=ActionStyle.SECONDARY,
                ),
            ],
            data={"reminder_type": reminder_type},
        )

    def create_wellness_check_in(self, user_id: str, mood_trend: str) -> Alert:
        """Build a daily check-in, escalated when the mood trend is concerning.

        Raises:
            ValueError: On a trend other than concerning, stable or improving
        """
        if mood_trend not in CHECK_IN_MESSAGES:
            raise ValueError(f"Unknown mood trend {mood_trend!r}")

        concerning = mood_trend == "concerning"
        actions = [
            NotificationAction(
                id="mood-tracking",
                label="Track Mood",
                type=ActionType.URL,
                target="/mood-gamified",
                style=ActionStyle.PRIMARY,
            ),
            NotificationAction(
                id="ai-therapy",
                label="Talk to AI Therapist",
                type=ActionType.URL,
                target="/ai-therapy",
                style=ActionStyle.SECONDARY,
            ),
        ]
        if concerning:
            actions.append(NotificationAction(
                id="crisis-support",
                label="Get Crisis Support",
                type=ActionType.URL,
                target="/crisis",
                style=ActionStyle.DANGER,
            ))

        return Alert(
            id=new_alert_id(),
            type=AlertType.CHECK_IN,
            priority=AlertPriority.HIGH if concerning else AlertPriority.MEDIUM,
            title="Daily Check-in",
            message=CHECK_IN_MESSAGES[mood_trend],
            user_id=user_id,
            timestamp=self.clock.now(),
            channels={Channel.PUSH, Channel.IN_APP},
            actions=actions,
            data={"mood_trend": mood_trend},
        )

    def _coerce_overrides(self, overrides: Dict[str, Any]) -> Dict[str, Any]:
        coerced = {}
        for name, value in overrides.items():
            if name in _PROTECTED_FIELDS:
                continue
            if name in _ENUM_FIELDS and isinstance(value, str):
                value = _ENUM_FIELDS[name](value)
            elif name == "channels":
                value = {c if isinstance(c, Channel) else Channel(c) for c in value}
            elif name == "expires_at" and isinstance(value, str):
                value = datetime.fromisoformat(value)
            elif name == "actions":
                value = [
                    a if isinstance(a, NotificationAction) else NotificationAction(
                        id=a["id"],
                        label=a["label"],
                        type=ActionType(a["type"]),
                        target=a.get("target", ""),
                        style=ActionStyle(a.get("style", ActionStyle.SECONDARY.value)),
                    )
                    for a in value
                ]
            elif name == "location" and isinstance(value, dict):
                value = Location(
                    latitude=float(value["latitude"]),
                    longitude=float(value["longitude"]),
                    accuracy=float(value.get("accuracy", 0.0)),
                )
            coerced[name] = value
        return coerced
