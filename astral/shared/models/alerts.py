"""Alert domain models.

An Alert is a notification-worthy event with a priority, the channels it
asked for, and a lifecycle status. Crisis alerts carry the risk context
that drives emergency-contact escalation.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set


class AlertType(Enum):
    """Alert categories, each gated by a preference toggle."""
    CRISIS = "crisis"
    REMINDER = "reminder"
    CHECK_IN = "check-in"
    EMERGENCY = "emergency"
    THERAPY = "therapy"
    SUPPORT = "support"


class AlertPriority(Enum):
    """Delivery priority. CRITICAL bypasses quiet hours."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class AlertStatus(Enum):
    """Lifecycle state of an alert."""
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    DISMISSED = "dismissed"
    FAILED = "failed"


ACTIVE_STATUSES = frozenset({
    AlertStatus.PENDING,
    AlertStatus.SENT,
    AlertStatus.DELIVERED,
})


class Channel(Enum):
    """Delivery media."""
    PUSH = "push"
    SMS = "sms"
    EMAIL = "email"
    IN_APP = "in-app"


class ActionType(Enum):
    """What clicking an alert action does on the client."""
    URL = "url"
    CALL = "call"
    CHAT = "chat"
    DISMISS = "dismiss"
    SNOOZE = "snooze"


class ActionStyle(Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"
    DANGER = "danger"


class TriggerSource(Enum):
    """What raised a crisis alert."""
    AI_DETECTION = "ai-detection"
    USER_REQUEST = "user-request"
    THERAPIST_ALERT = "therapist-alert"
    AUTO_CHECK_IN = "auto-check-in"


class EscalationLevel(Enum):
    IMMEDIATE = "immediate"
    URGENT = "urgent"
    SCHEDULED = "scheduled"


class ChannelOutcome(Enum):
    """Result of one channel in one delivery attempt."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    UNAVAILABLE = "unavailable"  # Sink not configured; channel not invoked


@dataclass(frozen=True)
class NotificationAction:
    """A button attached to an alert."""
    id: str
    label: str
    type: ActionType
    target: str
    style: ActionStyle = ActionStyle.SECONDARY

    def to_dict(self) -> Dict[str, str]:
        return {
            "id": self.id,
            "label": self.label,
            "type": self.type.value,
            "target": self.target,
            "style": self.style.value,
        }


@dataclass(frozen=True)
class ChannelResult:
    """Per-channel outcome of a delivery attempt."""
    channel: Channel
    outcome: ChannelOutcome
    attempted_at: datetime
    error: Optional[str] = None

    @property
    def invoked(self) -> bool:
        return self.outcome != ChannelOutcome.UNAVAILABLE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channel": self.channel.value,
            "outcome": self.outcome.value,
            "attempted_at": self.attempted_at.isoformat(),
            "error": self.error,
        }


@dataclass(frozen=True)
class ContactNotification:
    """Outcome of notifying one emergency contact over one channel."""
    contact_name: str
    contact_priority: int
    channel: Channel
    succeeded: bool
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contact_name": self.contact_name,
            "contact_priority": self.contact_priority,
            "channel": self.channel.value,
            "succeeded": self.succeeded,
            "error": self.error,
        }


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float
    accuracy: float


@dataclass
class Alert:
    """Base alert.

    Mutable: status and channel_results change as the alert moves through
    its lifecycle. All mutation after registration goes through the
    AlertLifecycleTracker.
    """
    id: str
    type: AlertType
    priority: AlertPriority
    title: str
    message: str
    user_id: str
    timestamp: datetime
    expires_at: Optional[datetime] = None
    channels: Set[Channel] = field(default_factory=set)
    actions: List[NotificationAction] = field(default_factory=list)
    data: Dict[str, Any] = field(default_factory=dict)
    status: AlertStatus = AlertStatus.PENDING
    is_emergency: bool = False
    requires_acknowledgment: bool = False
    channel_results: Dict[Channel, ChannelResult] = field(default_factory=dict)

    def __post_init__(self):
        if not self.user_id:
            raise ValueError("Alert requires a user_id")
        if not self.title:
            raise ValueError("Alert requires a title")
        # Naive datetimes cannot be compared with the engine's UTC clock
        if self.timestamp.tzinfo is None:
            raise ValueError("Alert timestamp must be timezone-aware")
        if self.expires_at is not None and self.expires_at.tzinfo is None:
            raise ValueError("Alert expires_at must be timezone-aware")

    @property
    def is_crisis(self) -> bool:
        return self.type in (AlertType.CRISIS, AlertType.EMERGENCY)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at < now

    def find_action(self, action_id: str) -> Optional[NotificationAction]:
        for action in self.actions:
            if action.id == action_id:
                return action
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "priority": self.priority.value,
            "title": self.title,
            "message": self.message,
            "user_id": self.user_id,
            "timestamp": self.timestamp.isoformat(),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "channels": sorted(c.value for c in self.channels),
            "actions": [a.to_dict() for a in self.actions],
            "data": dict(self.data),
            "status": self.status.value,
            "is_emergency": self.is_emergency,
            "requires_acknowledgment": self.requires_acknowledgment,
            "channel_results": {
                c.value: r.to_dict() for c, r in self.channel_results.items()
            },
        }


@dataclass
class CrisisAlert(Alert):
    """Highest-priority alert tied to detected self-harm or suicide risk.

    risk_level is on a 1-10 scale.
    """
    risk_level: int = 8
    trigger_source: TriggerSource = TriggerSource.AI_DETECTION
    intervention_required: bool = True
    escalation_level: EscalationLevel = EscalationLevel.IMMEDIATE
    support_team_notified: bool = False
    emergency_contacts_notified: bool = False
    location: Optional[Location] = None
    contact_results: List[ContactNotification] = field(default_factory=list)

    def __post_init__(self):
        super().__post_init__()
        if not self.is_crisis:
            raise ValueError(
                f"CrisisAlert type must be crisis or emergency, got {self.type.value}"
            )
        if not 1 <= self.risk_level <= 10:
            raise ValueError(f"risk_level must be between 1 and 10, got {self.risk_level}")

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload.update({
            "risk_level": self.risk_level,
            "trigger_source": self.trigger_source.value,
            "intervention_required": self.intervention_required,
            "escalation_level": self.escalation_level.value,
            "support_team_notified": self.support_team_notified,
            "emergency_contacts_notified": self.emergency_contacts_notified,
            "location": (
                {
                    "latitude": self.location.latitude,
                    "longitude": self.location.longitude,
                    "accuracy": self.location.accuracy,
                }
                if self.location else None
            ),
            "contact_results": [r.to_dict() for r in self.contact_results],
        })
        return payload
