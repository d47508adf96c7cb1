"""Channel sinks: the delivery collaborators the dispatcher fans out to.

Provider integrations (push gateway, SMS and e-mail vendors) live outside
this service and plug in by implementing PushSink, SmsSink or EmailSink.
The logging sinks here are the development defaults: they record the send
without contacting a provider, the same way crisis events fall back to a
log line when no stream is configured.

InAppInbox is the in-process InAppSink. It is always available, which is
what guarantees every alert at least one local delivery attempt.
"""
import logging
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Callable, Dict, List

from astral.shared.models import Alert, NotificationAction
from astral.shared.utils import hash_pii, mask_contact

logger = logging.getLogger(__name__)


class PushSink(ABC):
    """Platform push notification delivery."""

    @abstractmethod
    def send(self, user_id: str, title: str, body: str, options: Dict[str, Any]) -> bool:
        """Send a push notification.

        Returns:
            True if the provider accepted the notification
        """
        pass


class SmsSink(ABC):

    @abstractmethod
    def send(self, phone_number: str, message: str) -> bool:
        pass


class EmailSink(ABC):

    @abstractmethod
    def send(
        self,
        address: str,
        subject: str,
        body: str,
        actions: List[NotificationAction],
    ) -> bool:
        pass


class InAppSink(ABC):
    """Local, synchronous delivery into the user's in-app notification list."""

    @abstractmethod
    def publish(self, alert: Alert) -> None:
        pass


class LoggingPushSink(PushSink):
    """Records push sends in the log instead of calling a push gateway."""

    def __init__(self):
        self.sent_count = 0

    def send(self, user_id: str, title: str, body: str, options: Dict[str, Any]) -> bool:
        self.sent_count += 1
        logger.info(
            "PUSH_NOTIFICATION_LOGGED",
            extra={
                "user_id_hash": hash_pii(user_id),
                "tag": options.get("tag"),
                "require_interaction": options.get("require_interaction"),
            }
        )
        return True


class LoggingSmsSink(SmsSink):

    def __init__(self):
        self.sent_count = 0

    def send(self, phone_number: str, message: str) -> bool:
        self.sent_count += 1
        logger.info(
            "SMS_LOGGED",
            extra={
                "to": mask_contact(phone_number),
                "length": len(message),
            }
        )
        return True


class LoggingEmailSink(EmailSink):

    def __init__(self):
        self.sent_count = 0

    def send(
        self,
        address: str,
        subject: str,
        body: str,
        actions: List[NotificationAction],
    ) -> bool:
        self.sent_count += 1
        logger.info(
            "EMAIL_LOGGED",
            extra={
                "to": mask_contact(address),
                "action_count": len(actions),
            }
        )
        return True


class InAppInbox(InAppSink):
    """Thread-safe per-user list of published alerts.

    Listeners are called synchronously on publish; the HTTP layer or a
    websocket bridge subscribes here to push alerts to open sessions.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._by_user: Dict[str, List[Alert]] = defaultdict(list)
        self._listeners: List[Callable[[Alert], None]] = []

    def subscribe(self, listener: Callable[[Alert], None]) -> None:
        with self._lock:
            self._listeners.append(listener)

    def publish(self, alert: Alert) -> None:
        with self._lock:
            self._by_user[alert.user_id].append(alert)
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(alert)
            except Exception as e:
                logger.error(
                    "IN_APP_LISTENER_FAILED",
                    extra={"alert_id": alert.id, "error": str(e)}
                )

        logger.info(
            "IN_APP_ALERT_PUBLISHED",
            extra={
                "alert_id": alert.id,
                "user_id_hash": hash_pii(alert.user_id),
                "priority": alert.priority.value,
            }
        )

    def list_for(self, user_id: str) -> List[Alert]:
        with self._lock:
            return list(self._by_user.get(user_id, []))
