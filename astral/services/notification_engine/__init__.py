"""Notification Engine: crisis alerts, reminders and check-ins.

Decides whether, when and through which channels an alert reaches a user:
1. Category toggles and quiet hours from the user's preferences
2. Critical alerts bypass quiet hours unconditionally
3. Push, SMS and e-mail fan out concurrently; in-app is always attempted
4. Crisis alerts cascade to the user's ranked emergency contacts
5. Acknowledge, dismiss and snooze drive each alert's lifecycle

Endpoints:
- PUT/GET /preferences/<user_id> - Manage preferences
- POST /alerts/crisis - Send crisis alert
- POST /alerts/reminder - Send wellness reminder
- POST /alerts/check-in - Send daily check-in
- POST /alerts/<id>/acknowledge|dismiss|snooze - User actions
- POST /alerts/<id>/actions/<action_id> - Notification action buttons
- GET /alerts/active - List a user's active alerts
"""

from .alert_factory import AlertFactory
from .channels import (
    EmailSink,
    InAppInbox,
    InAppSink,
    LoggingEmailSink,
    LoggingPushSink,
    LoggingSmsSink,
    PushSink,
    SmsSink,
)
from .config import NotificationConfig
from .delivery_scheduler import DeliveryDecision, DeliveryScheduler
from .dispatcher import ChannelDispatcher
from .engine import ActionOutcome, NotificationEngine
from .errors import (
    ChannelUnavailable,
    DispatchFailure,
    NotificationError,
    PreferenceNotFound,
    SchedulingNoop,
)
from .escalation import EscalationCascade
from .lifecycle import AlertLifecycleTracker, ExpirySweeper
from .preference_store import (
    InMemoryPreferenceRepository,
    PostgresPreferenceRepository,
    PreferenceRepository,
    PreferenceStore,
    PushRegistrationService,
)
from .scheduling import (
    FrozenClock,
    ManualTaskScheduler,
    ScheduledTask,
    SystemClock,
    ThreadingTaskScheduler,
)

__all__ = [
    "AlertFactory",
    "EmailSink",
    "InAppInbox",
    "InAppSink",
    "LoggingEmailSink",
    "LoggingPushSink",
    "LoggingSmsSink",
    "PushSink",
    "SmsSink",
    "NotificationConfig",
    "DeliveryDecision",
    "DeliveryScheduler",
    "ChannelDispatcher",
    "ActionOutcome",
    "NotificationEngine",
    "ChannelUnavailable",
    "DispatchFailure",
    "NotificationError",
    "PreferenceNotFound",
    "SchedulingNoop",
    "EscalationCascade",
    "AlertLifecycleTracker",
    "ExpirySweeper",
    "InMemoryPreferenceRepository",
    "PostgresPreferenceRepository",
    "PreferenceRepository",
    "PreferenceStore",
    "PushRegistrationService",
    "FrozenClock",
    "ManualTaskScheduler",
    "ScheduledTask",
    "SystemClock",
    "ThreadingTaskScheduler",
]
