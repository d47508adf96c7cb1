"""Notification engine configuration.

Defaults match the crisis-line and escalation policy of the platform;
every value can be overridden from the environment.
"""
import os
from dataclasses import dataclass


@dataclass(frozen=True)
class NotificationConfig:
    """Tunables for delivery, escalation and cleanup."""

    # Dialed by the "Call 988 Crisis Line" action and named in contact templates
    crisis_hotline: str = "988"

    # Emergency contacts notified per crisis, by ascending priority
    max_emergency_contacts: int = 3

    # How often expired alerts are swept from the tracker
    sweep_interval_seconds: int = 60

    # Thread pool size for concurrent channel sends
    dispatch_workers: int = 8

    # Upper bound on waiting for a single dispatch fan-out
    dispatch_timeout_seconds: float = 30.0

    reminder_expiry_hours: int = 24

    @classmethod
    def from_env(cls) -> "NotificationConfig":
        """Create config from environment variables.

        Environment variables:
            NOTIFY_CRISIS_HOTLINE: Crisis line number (default 988)
            NOTIFY_MAX_EMERGENCY_CONTACTS: Contacts per cascade (default 3)
            NOTIFY_SWEEP_INTERVAL_SECONDS: Expiry sweep period (default 60)
            NOTIFY_DISPATCH_WORKERS: Channel send threads (default 8)
            NOTIFY_DISPATCH_TIMEOUT_SECONDS: Fan-out wait limit (default 30)
            NOTIFY_REMINDER_EXPIRY_HOURS: Reminder lifetime (default 24)
        """
        return cls(
            crisis_hotline=os.getenv("NOTIFY_CRISIS_HOTLINE", "988"),
            max_emergency_contacts=int(os.getenv("NOTIFY_MAX_EMERGENCY_CONTACTS", "3")),
            sweep_interval_seconds=int(os.getenv("NOTIFY_SWEEP_INTERVAL_SECONDS", "60")),
            dispatch_workers=int(os.getenv("NOTIFY_DISPATCH_WORKERS", "8")),
            dispatch_timeout_seconds=float(os.getenv("NOTIFY_DISPATCH_TIMEOUT_SECONDS", "30")),
            reminder_expiry_hours=int(os.getenv("NOTIFY_REMINDER_EXPIRY_HOURS", "24")),
        )
