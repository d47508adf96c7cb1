"""PreferenceStore: per-user delivery preferences and emergency contacts.

Storage is behind PreferenceRepository so the scheduling and dispatch code
never knows whether preferences live in memory (tests, local dev) or in
PostgreSQL (production).
"""
import json
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from astral.shared.database import BaseRepository, ConnectionManager
from astral.shared.models import NotificationPreferences
from astral.shared.utils import hash_pii

from .errors import PreferenceNotFound

logger = logging.getLogger(__name__)


class PreferenceRepository(ABC):
    """Key-value persistence of NotificationPreferences keyed by user id."""

    @abstractmethod
    def get(self, user_id: str) -> Optional[NotificationPreferences]:
        pass

    @abstractmethod
    def set(self, preferences: NotificationPreferences) -> None:
        pass

    @abstractmethod
    def delete(self, user_id: str) -> bool:
        pass

    @abstractmethod
    def list_user_ids(self) -> List[str]:
        pass


class InMemoryPreferenceRepository(PreferenceRepository):

    def __init__(self):
        self._lock = threading.Lock()
        self._records: Dict[str, NotificationPreferences] = {}

    def get(self, user_id: str) -> Optional[NotificationPreferences]:
        with self._lock:
            return self._records.get(user_id)

    def set(self, preferences: NotificationPreferences) -> None:
        with self._lock:
            self._records[preferences.user_id] = preferences

    def delete(self, user_id: str) -> bool:
        with self._lock:
            return self._records.pop(user_id, None) is not None

    def list_user_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._records)


class PostgresPreferenceRepository(BaseRepository[NotificationPreferences], PreferenceRepository):
    """Preferences stored as one JSON document per user.

    Expected table:
        CREATE TABLE notification_preferences (
            id TEXT PRIMARY KEY,
            preferences_json JSONB NOT NULL,
            updated_at TIMESTAMPTZ NOT NULL
        );
    """

    def __init__(self, connection_manager: ConnectionManager):
        super().__init__(connection_manager, "notification_preferences")

    def _row_to_entity(self, row: tuple) -> NotificationPreferences:
        """Convert database row to NotificationPreferences.

        Expected columns:
            0: id (user_id)
            1: preferences_json
            2: updated_at
        """
        data = json.loads(row[1]) if isinstance(row[1], str) else row[1]
        data["user_id"] = row[0]
        return NotificationPreferences.from_dict(data)

    def _entity_to_params(self, entity: NotificationPreferences) -> Dict[str, Any]:
        return {
            "id": entity.user_id,
            "preferences_json": json.dumps(entity.to_dict()),
            "updated_at": datetime.now(timezone.utc),
        }

    def get(self, user_id: str) -> Optional[NotificationPreferences]:
        return self.find_by_id(user_id)

    def set(self, preferences: NotificationPreferences) -> None:
        self.save(preferences)

    def list_user_ids(self) -> List[str]:
        return self.list_ids()


class PushRegistrationService(ABC):
    """Exchanges a push subscription descriptor for a user."""

    @abstractmethod
    def subscribe(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Register the user's device for push.

        Returns:
            Subscription descriptor, or None if registration was refused
        """
        pass


class InMemoryPushRegistry(PushRegistrationService):
    """Issues opaque subscription descriptors and remembers them per user."""

    def __init__(self):
        self._lock = threading.Lock()
        self._subscriptions: Dict[str, Dict[str, Any]] = {}

    def subscribe(self, user_id: str) -> Optional[Dict[str, Any]]:
        descriptor = {
            "subscription_id": f"sub_{uuid.uuid4().hex[:16]}",
            "user_id": user_id,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        with self._lock:
            self._subscriptions[user_id] = descriptor
        return descriptor

    def subscription_for(self, user_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._subscriptions.get(user_id)


class PreferenceStore:
    """Reads and replaces user preferences.

    Writes to one user's record are serialized; different users never
    contend with each other.
    """

    def __init__(
        self,
        repository: Optional[PreferenceRepository] = None,
        push_registration: Optional[PushRegistrationService] = None,
    ):
        """Initialize store.

        Args:
            repository: Backing storage (in-memory if omitted)
            push_registration: Called when a user newly enables push
        """
        self.repository = repository or InMemoryPreferenceRepository()
        self.push_registration = push_registration
        self._user_locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._locks_guard = threading.Lock()

    def _lock_for(self, user_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._user_locks[user_id]

    def get(self, user_id: str) -> Optional[NotificationPreferences]:
        """Preferences for the user, or None. Never raises on absence."""
        return self.repository.get(user_id)

    def require(self, user_id: str) -> NotificationPreferences:
        """Preferences for the user.

        Raises:
            PreferenceNotFound: If none are stored
        """
        preferences = self.repository.get(user_id)
        if preferences is None:
            raise PreferenceNotFound(user_id)
        return preferences

    def set(self, preferences: NotificationPreferences) -> None:
        """Replace the user's preferences.

        No merge with the previous record. If push is enabled now but was
        not before, the push subscription is registered.

        Logs:
            - PREFERENCES_UPDATED: After the record is stored
            - PUSH_SUBSCRIPTION_REGISTERED / PUSH_SUBSCRIPTION_FAILED
        """
        user_id = preferences.user_id
        with self._lock_for(user_id):
            previous = self.repository.get(user_id)
            self.repository.set(preferences)

        newly_enabled = preferences.push_notifications and (
            previous is None or not previous.push_notifications
        )

        logger.info(
            "PREFERENCES_UPDATED",
            extra={
                "user_id_hash": hash_pii(user_id),
                "push_newly_enabled": newly_enabled,
                "quiet_hours_enabled": preferences.quiet_hours.enabled,
                "emergency_contact_count": len(preferences.emergency_contacts),
            }
        )

        if newly_enabled and self.push_registration is not None:
            self._register_push(user_id)

    def delete(self, user_id: str) -> bool:
        with self._lock_for(user_id):
            return self.repository.delete(user_id)

    def list_user_ids(self) -> List[str]:
        return self.repository.list_user_ids()

    def _register_push(self, user_id: str) -> None:
        try:
            descriptor = self.push_registration.subscribe(user_id)
        except Exception as e:
            logger.error(
                "PUSH_SUBSCRIPTION_FAILED",
                extra={
                    "user_id_hash": hash_pii(user_id),
                    "error": str(e),
                    "error_type": type(e).__name__,
                }
            )
            return

        logger.info(
            "PUSH_SUBSCRIPTION_REGISTERED",
            extra={
                "user_id_hash": hash_pii(user_id),
                "registered": descriptor is not None,
            }
        )
