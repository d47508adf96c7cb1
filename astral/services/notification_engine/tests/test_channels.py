"""Tests for channel sink implementations."""
import pytest
from datetime import datetime, timezone
from unittest.mock import MagicMock

from astral.shared.models import Alert, AlertPriority, AlertType
from astral.shared.utils import configure_pii_salt, mask_contact
from astral.services.notification_engine.channels import (
    InAppInbox,
    LoggingEmailSink,
    LoggingPushSink,
    LoggingSmsSink,
)


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt("test_salt_that_is_at_least_32_characters_long")


def make_alert(user_id="user_1", alert_id="alert_1"):
    return Alert(
        id=alert_id,
        type=AlertType.REMINDER,
        priority=AlertPriority.MEDIUM,
        title="Wellness Reminder",
        message="Check in",
        user_id=user_id,
        timestamp=datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc),
    )


class TestLoggingSinks:

    def test_push_sink_counts_sends(self):
        sink = LoggingPushSink()
        assert sink.send("user_1", "t", "b", {"tag": "alert_1"}) is True
        assert sink.sent_count == 1

    def test_sms_sink_counts_sends(self):
        sink = LoggingSmsSink()
        assert sink.send("+15555550100", "hello") is True
        assert sink.sent_count == 1

    def test_email_sink_counts_sends(self):
        sink = LoggingEmailSink()
        assert sink.send("a@example.com", "s", "b", []) is True
        assert sink.sent_count == 1

    def test_mask_contact(self):
        assert mask_contact("+15555550100") == "**********00"
        assert mask_contact("ab") == "**"
        assert mask_contact(None) == ""


class TestInAppInbox:

    def test_publish_lists_per_user(self):
        inbox = InAppInbox()
        inbox.publish(make_alert("user_1", "a1"))
        inbox.publish(make_alert("user_2", "a2"))

        assert [a.id for a in inbox.list_for("user_1")] == ["a1"]
        assert inbox.list_for("nobody") == []

    def test_listeners_notified(self):
        inbox = InAppInbox()
        listener = MagicMock()
        inbox.subscribe(listener)
        alert = make_alert()

        inbox.publish(alert)

        listener.assert_called_once_with(alert)

    def test_failing_listener_does_not_block_others(self):
        inbox = InAppInbox()
        good = MagicMock()
        inbox.subscribe(MagicMock(side_effect=RuntimeError("socket closed")))
        inbox.subscribe(good)

        inbox.publish(make_alert())

        good.assert_called_once()
        assert len(inbox.list_for("user_1")) == 1
