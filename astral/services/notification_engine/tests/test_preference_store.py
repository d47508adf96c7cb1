"""Tests for PreferenceStore, its repositories and preference models."""
import json
import pytest
from unittest.mock import MagicMock

from astral.shared.models import (
    AlertType,
    EmergencyContact,
    NotificationPreferences,
    QuietHours,
)
from astral.shared.utils import configure_pii_salt
from astral.services.notification_engine.errors import PreferenceNotFound
from astral.services.notification_engine.preference_store import (
    InMemoryPreferenceRepository,
    InMemoryPushRegistry,
    PostgresPreferenceRepository,
    PreferenceStore,
)


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt("test_salt_that_is_at_least_32_characters_long")


@pytest.fixture
def push_registration():
    registration = MagicMock()
    registration.subscribe.return_value = {"subscription_id": "sub_1"}
    return registration


@pytest.fixture
def store(push_registration):
    return PreferenceStore(push_registration=push_registration)


class TestNotificationPreferences:

    def test_defaults(self):
        prefs = NotificationPreferences(user_id="user_1")

        assert prefs.push_notifications is True
        assert prefs.sms_notifications is False
        assert prefs.email_notifications is False
        assert prefs.crisis_alerts is True
        assert prefs.emergency_contact_alerts is False
        assert prefs.quiet_hours.enabled is False
        assert prefs.timezone == "UTC"

    def test_duplicate_contact_priority_rejected(self):
        with pytest.raises(ValueError):
            NotificationPreferences(
                user_id="user_1",
                emergency_contacts=[
                    EmergencyContact(name="A", phone="+1", priority=1),
                    EmergencyContact(name="B", phone="+2", priority=1),
                ],
            )

    @pytest.mark.parametrize("value", ["25:00", "7am", "", "12:60"])
    def test_malformed_quiet_hours_rejected(self, value):
        with pytest.raises(ValueError):
            QuietHours(start=value, end="07:00", enabled=True)

    def test_unknown_timezone_rejected(self):
        with pytest.raises(ValueError):
            NotificationPreferences(user_id="user_1", timezone="Mars/Olympus_Mons")

    def test_ranked_contacts(self):
        prefs = NotificationPreferences(
            user_id="user_1",
            emergency_contacts=[
                EmergencyContact(name="C", phone="+3", priority=3),
                EmergencyContact(name="A", phone="+1", priority=1),
                EmergencyContact(name="D", phone="+4", priority=4),
                EmergencyContact(name="B", phone="+2", priority=2),
            ],
        )

        assert [c.name for c in prefs.ranked_contacts(3)] == ["A", "B", "C"]

    @pytest.mark.parametrize("toggle,alert_type", [
        ("crisis_alerts", AlertType.CRISIS),
        ("crisis_alerts", AlertType.EMERGENCY),
        ("reminder_alerts", AlertType.REMINDER),
        ("mood_check_ins", AlertType.CHECK_IN),
        ("therapy_reminders", AlertType.THERAPY),
        ("support_group_notifications", AlertType.SUPPORT),
    ])
    def test_category_toggles(self, toggle, alert_type):
        assert NotificationPreferences(user_id="u").allows(alert_type) is True
        assert NotificationPreferences(user_id="u", **{toggle: False}).allows(alert_type) is False

    def test_dict_round_trip(self):
        prefs = NotificationPreferences(
            user_id="user_1",
            sms_notifications=True,
            phone_number="+15555550100",
            quiet_hours=QuietHours(start="23:00", end="06:30", enabled=True),
            emergency_contacts=[
                EmergencyContact(name="Sam", phone="+15555550101", relationship="sibling", priority=1),
            ],
            timezone="Europe/London",
        )

        assert NotificationPreferences.from_dict(prefs.to_dict()) == prefs

    @pytest.mark.parametrize("value", ["false", "true", 0, 1, None])
    def test_from_dict_rejects_non_bool_toggle(self, value):
        with pytest.raises(ValueError):
            NotificationPreferences.from_dict({"user_id": "user_1", "crisis_alerts": value})

    def test_from_dict_rejects_non_bool_quiet_hours_enabled(self):
        with pytest.raises(ValueError):
            NotificationPreferences.from_dict(
                {"user_id": "user_1", "quiet_hours": {"enabled": "no"}}
            )

    def test_from_dict_keeps_default_for_missing_toggle(self):
        prefs = NotificationPreferences.from_dict(
            {"user_id": "user_1", "emergency_contact_alerts": False}
        )

        assert prefs.emergency_contact_alerts is False
        assert prefs.crisis_alerts is True


class TestPreferenceStore:

    def test_get_missing_returns_none(self, store):
        assert store.get("nobody") is None

    def test_require_missing_raises(self, store):
        with pytest.raises(PreferenceNotFound) as exc_info:
            store.require("nobody")
        assert exc_info.value.user_id == "nobody"

    def test_set_overwrites_without_merge(self, store):
        store.set(NotificationPreferences(
            user_id="user_1", sms_notifications=True, phone_number="+15555550100"
        ))
        store.set(NotificationPreferences(user_id="user_1"))

        prefs = store.require("user_1")
        assert prefs.sms_notifications is False
        assert prefs.phone_number is None

    def test_push_registered_when_newly_enabled(self, store, push_registration):
        store.set(NotificationPreferences(user_id="user_1", push_notifications=True))

        push_registration.subscribe.assert_called_once_with("user_1")

    def test_push_registered_when_toggled_on(self, store, push_registration):
        store.set(NotificationPreferences(user_id="user_1", push_notifications=False))
        push_registration.subscribe.assert_not_called()

        store.set(NotificationPreferences(user_id="user_1", push_notifications=True))

        push_registration.subscribe.assert_called_once_with("user_1")

    def test_push_not_re_registered_when_already_enabled(self, store, push_registration):
        store.set(NotificationPreferences(user_id="user_1"))
        store.set(NotificationPreferences(user_id="user_1", sms_notifications=True))

        assert push_registration.subscribe.call_count == 1

    def test_registration_failure_does_not_propagate(self, store, push_registration):
        push_registration.subscribe.side_effect = RuntimeError("push service down")

        store.set(NotificationPreferences(user_id="user_1"))

        assert store.get("user_1") is not None

    def test_delete_and_list(self, store):
        store.set(NotificationPreferences(user_id="b"))
        store.set(NotificationPreferences(user_id="a"))

        assert store.list_user_ids() == ["a", "b"]
        assert store.delete("a") is True
        assert store.delete("a") is False
        assert store.list_user_ids() == ["b"]

    def test_in_memory_registry_remembers_subscription(self):
        registry = InMemoryPushRegistry()
        store = PreferenceStore(repository=InMemoryPreferenceRepository(), push_registration=registry)

        store.set(NotificationPreferences(user_id="user_1"))

        assert registry.subscription_for("user_1")["subscription_id"].startswith("sub_")


class TestPostgresPreferenceRepository:

    @pytest.fixture
    def cursor(self):
        return MagicMock()

    @pytest.fixture
    def repository(self, cursor):
        conn = MagicMock()
        conn.cursor.return_value.__enter__.return_value = cursor
        manager = MagicMock()
        manager.get_connection.return_value.__enter__.return_value = conn
        return PostgresPreferenceRepository(manager)

    def test_table_name(self, repository):
        assert repository.table_name == "notification_preferences"

    def test_get_parses_json_string(self, repository, cursor):
        stored = NotificationPreferences(user_id="user_1", email_notifications=True, email="a@b.c")
        cursor.fetchone.return_value = ("user_1", json.dumps(stored.to_dict()), None)

        assert repository.get("user_1") == stored

    def test_get_accepts_decoded_jsonb(self, repository, cursor):
        cursor.fetchone.return_value = ("user_1", {"sms_notifications": True}, None)

        prefs = repository.get("user_1")

        assert prefs.user_id == "user_1"
        assert prefs.sms_notifications is True

    def test_set_stores_json_document(self, repository, cursor):
        prefs = NotificationPreferences(user_id="user_1", timezone="Asia/Tokyo")

        repository.set(prefs)

        sql, values = cursor.execute.call_args.args
        assert "INSERT INTO notification_preferences" in sql
        assert values[0] == "user_1"
        assert json.loads(values[1])["timezone"] == "Asia/Tokyo"
