"""Per-user notification preferences.

One NotificationPreferences record per user: which channels may be used,
which alert categories the user wants, quiet hours, and the ranked list of
emergency contacts notified during a crisis.
"""
from dataclasses import dataclass, field
from datetime import time
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .alerts import AlertType


def parse_time_of_day(value: str) -> int:
    """Parse an ``HH:MM`` string into minutes since midnight.

    Raises:
        ValueError: If the value is not a valid 24-hour time
    """
    try:
        hour_text, minute_text = value.split(":")
        parsed = time(int(hour_text), int(minute_text))
    except (AttributeError, TypeError, ValueError):
        raise ValueError(f"Invalid time of day {value!r}, expected HH:MM")
    return parsed.hour * 60 + parsed.minute


def _flag(data: Dict[str, Any], key: str, default: bool) -> bool:
    """Read a boolean toggle, refusing strings like "false"."""
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ValueError(f"{key} must be true or false, got {value!r}")
    return value


@dataclass(frozen=True)
class QuietHours:
    """Daily window during which non-critical alerts are deferred.

    start > end means the window wraps midnight (e.g. 22:00 to 07:00).
    """
    start: str = "22:00"
    end: str = "07:00"
    enabled: bool = False

    def __post_init__(self):
        parse_time_of_day(self.start)
        parse_time_of_day(self.end)

    @property
    def start_minutes(self) -> int:
        return parse_time_of_day(self.start)

    @property
    def end_minutes(self) -> int:
        return parse_time_of_day(self.end)

    def to_dict(self) -> Dict[str, Any]:
        return {"start": self.start, "end": self.end, "enabled": self.enabled}


@dataclass(frozen=True)
class EmergencyContact:
    """Someone to notify during a crisis. Lower priority is notified first."""
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    relationship: str = ""
    priority: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "relationship": self.relationship,
            "priority": self.priority,
        }


@dataclass(frozen=True)
class NotificationPreferences:
    """Delivery preferences for one user.

    Stored whole: a new record replaces the previous one, there is no
    field-level merge.
    """
    user_id: str
    push_notifications: bool = True
    sms_notifications: bool = False
    email_notifications: bool = False
    crisis_alerts: bool = True
    reminder_alerts: bool = True
    mood_check_ins: bool = True
    therapy_reminders: bool = True
    support_group_notifications: bool = True
    emergency_contact_alerts: bool = False
    quiet_hours: QuietHours = field(default_factory=QuietHours)
    phone_number: Optional[str] = None
    email: Optional[str] = None
    emergency_contacts: List[EmergencyContact] = field(default_factory=list)
    timezone: str = "UTC"

    def __post_init__(self):
        if not self.user_id:
            raise ValueError("Preferences require a user_id")
        priorities = [c.priority for c in self.emergency_contacts]
        if len(priorities) != len(set(priorities)):
            raise ValueError("Emergency contact priorities must be distinct")
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone {self.timezone!r}")

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def allows(self, alert_type: AlertType) -> bool:
        """Whether the user wants alerts of this category at all."""
        if alert_type in (AlertType.CRISIS, AlertType.EMERGENCY):
            return self.crisis_alerts
        if alert_type == AlertType.REMINDER:
            return self.reminder_alerts
        if alert_type == AlertType.CHECK_IN:
            return self.mood_check_ins
        if alert_type == AlertType.THERAPY:
            return self.therapy_reminders
        if alert_type == AlertType.SUPPORT:
            return self.support_group_notifications
        return True

    def ranked_contacts(self, limit: int) -> List[EmergencyContact]:
        """First ``limit`` emergency contacts by ascending priority."""
        return sorted(self.emergency_contacts, key=lambda c: c.priority)[:limit]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "push_notifications": self.push_notifications,
            "sms_notifications": self.sms_notifications,
            "email_notifications": self.email_notifications,
            "crisis_alerts": self.crisis_alerts,
            "reminder_alerts": self.reminder_alerts,
            "mood_check_ins": self.mood_check_ins,
            "therapy_reminders": self.therapy_reminders,
            "support_group_notifications": self.support_group_notifications,
            "emergency_contact_alerts": self.emergency_contact_alerts,
            "quiet_hours": self.quiet_hours.to_dict(),
            "phone_number": self.phone_number,
            "email": self.email,
            "emergency_contacts": [c.to_dict() for c in self.emergency_contacts],
            "timezone": self.timezone,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NotificationPreferences":
        """Build preferences from a plain dict (JSON body or stored row).

        Missing toggles take their defaults.
        """
        quiet = data.get("quiet_hours") or {}
        contacts = [
            EmergencyContact(
                name=c["name"],
                phone=c.get("phone"),
                email=c.get("email"),
                relationship=c.get("relationship", ""),
                priority=int(c.get("priority", 1)),
            )
            for c in data.get("emergency_contacts") or []
        ]
        toggles = {
            key: _flag(data, key, False)
            for key in (
                "push_notifications",
                "sms_notifications",
                "email_notifications",
                "crisis_alerts",
                "reminder_alerts",
                "mood_check_ins",
                "therapy_reminders",
                "support_group_notifications",
                "emergency_contact_alerts",
            )
            if key in data
        }
        return cls(
            user_id=data.get("user_id", ""),
            quiet_hours=QuietHours(
                start=quiet.get("start", "22:00"),
                end=quiet.get("end", "07:00"),
                enabled=_flag(quiet, "enabled", False),
            ),
            phone_number=data.get("phone_number"),
            email=data.get("email"),
            emergency_contacts=contacts,
            timezone=data.get("timezone", "UTC"),
            **toggles,
        )
