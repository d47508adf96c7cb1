"""Shared domain models for the Astral platform."""
from .alerts import (
    ACTIVE_STATUSES,
    ActionStyle,
    ActionType,
    Alert,
    AlertPriority,
    AlertStatus,
    AlertType,
    Channel,
    ChannelOutcome,
    ChannelResult,
    ContactNotification,
    CrisisAlert,
    EscalationLevel,
    Location,
    NotificationAction,
    TriggerSource,
)
from .preferences import (
    EmergencyContact,
    NotificationPreferences,
    QuietHours,
    parse_time_of_day,
)

__all__ = [
    "ACTIVE_STATUSES",
    "ActionStyle",
    "ActionType",
    "Alert",
    "AlertPriority",
    "AlertStatus",
    "AlertType",
    "Channel",
    "ChannelOutcome",
    "ChannelResult",
    "ContactNotification",
    "CrisisAlert",
    "EscalationLevel",
    "Location",
    "NotificationAction",
    "TriggerSource",
    "EmergencyContact",
    "NotificationPreferences",
    "QuietHours",
    "parse_time_of_day",
]
