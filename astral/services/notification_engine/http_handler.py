"""Notification Engine HTTP handler - alert and preference endpoints.

Thin Flask layer over one NotificationEngine. Delivery itself never fails
a request: an alert whose channels all failed still returns 201 with
status "failed" and its per-channel results.
"""
import logging
import os

from flask import Flask, request, jsonify

from astral.shared.database import ConnectionManager, DatabaseConfig
from astral.shared.models import NotificationPreferences
from astral.shared.utils import hash_pii, configure_pii_salt
from .channels import LoggingEmailSink, LoggingPushSink, LoggingSmsSink
from .config import NotificationConfig
from .engine import NotificationEngine
from .preference_store import (
    InMemoryPushRegistry,
    PostgresPreferenceRepository,
    PreferenceStore,
)

logger = logging.getLogger(__name__)

# Initialize Flask app
app = Flask(__name__)

# Configure PII salt
pii_salt = os.getenv("PII_HASH_SALT", "default_dev_salt_change_in_production_32chars")
configure_pii_salt(pii_salt)


def _build_preference_store() -> PreferenceStore:
    """PostgreSQL-backed when DB_HOST is set, in-memory otherwise."""
    repository = None
    if os.getenv("DB_HOST"):
        repository = PostgresPreferenceRepository(
            ConnectionManager(DatabaseConfig.from_env())
        )
    return PreferenceStore(repository=repository, push_registration=InMemoryPushRegistry())


# Initialize notification engine
engine = NotificationEngine(
    config=NotificationConfig.from_env(),
    preference_store=_build_preference_store(),
    push_sink=LoggingPushSink(),
    sms_sink=LoggingSmsSink(),
    email_sink=LoggingEmailSink(),
)


def _alert_response(alert) -> dict:
    payload = alert.to_dict()
    task = engine.tracker.armed_task(alert.id)
    payload["deliver_at"] = task.run_at.isoformat() if task is not None else None
    return payload


@app.route("/health", methods=["GET"])
def health():
    """Health check endpoint."""
    return jsonify({
        "status": "healthy",
        "service": "notification-engine",
    }), 200


@app.route("/ready", methods=["GET"])
def ready():
    """Readiness check."""
    if engine is None:
        return jsonify({"status": "not_ready"}), 503
    return jsonify({"status": "ready"}), 200


@app.route("/preferences/<user_id>", methods=["PUT"])
def put_preferences(user_id: str):
    """Replace a user's notification preferences.

    Request Body:
        {
            "push_notifications": true,
            "sms_notifications": true,
            "phone_number": "+15555550100",
            "quiet_hours": {"start": "22:00", "end": "07:00", "enabled": true},
            "emergency_contacts": [
                {"name": "Sam", "phone": "+15555550101", "priority": 1}
            ],
            "timezone": "America/New_York"
        }
    """
    try:
        data = request.get_json(silent=True)
        if not data:
            return jsonify({"error": "Request body required"}), 400

        try:
            preferences = NotificationPreferences.from_dict({**data, "user_id": user_id})
        except (KeyError, TypeError, ValueError) as e:
            return jsonify({"error": f"Invalid preferences: {e}"}), 400

        engine.set_preferences(preferences)

        return jsonify(preferences.to_dict()), 200

    except Exception as e:
        logger.error("PREFERENCES_UPDATE_ERROR", extra={"error": str(e)})
        return jsonify({"error": "Failed to update preferences"}), 500


@app.route("/preferences/<user_id>", methods=["GET"])
def get_preferences(user_id: str):
    """Get a user's notification preferences."""
    try:
        preferences = engine.get_preferences(user_id)
        if preferences is None:
            return jsonify({"error": "Preferences not found"}), 404
        return jsonify(preferences.to_dict()), 200

    except Exception as e:
        logger.error("PREFERENCES_GET_ERROR", extra={"error": str(e)})
        return jsonify({"error": "Failed to get preferences"}), 500


@app.route("/alerts/crisis", methods=["POST"])
def send_crisis_alert():
    """Create and deliver a crisis alert.

    Request Body:
        {
            "user_id": "user_123",
            "risk_level": 9,
            "trigger_source": "user-request",
            "message": "..."
        }

    Any other field is passed through as an override of the crisis
    defaults.
    """
    try:
        data = request.get_json(silent=True)
        if not data:
            return jsonify({"error": "Request body required"}), 400

        overrides = dict(data)
        user_id = overrides.pop("user_id", None)
        if not user_id:
            return jsonify({"error": "Missing user_id"}), 400

        logger.critical(
            "CRISIS_ALERT_REQUESTED",
            extra={
                "user_id_hash": hash_pii(user_id),
                "override_fields": sorted(overrides),
            }
        )

        try:
            alert = engine.send_crisis_alert(user_id, **overrides)
        except (TypeError, ValueError) as e:
            return jsonify({"error": f"Invalid crisis alert: {e}"}), 400

        return jsonify(_alert_response(alert)), 201

    except Exception as e:
        logger.error("CRISIS_ALERT_ERROR", extra={"error": str(e)})
        return jsonify({"error": "Failed to send crisis alert"}), 500


@app.route("/alerts/reminder", methods=["POST"])
def send_reminder():
    """Create and deliver a wellness reminder.

    Request Body:
        {
            "user_id": "user_123",
            "reminder_type": "mood-check",
            "custom_message": "optional"
        }
    """
    try:
        data = request.get_json(silent=True)
        if not data:
            return jsonify({"error": "Request body required"}), 400

        user_id = data.get("user_id")
        reminder_type = data.get("reminder_type")
        if not user_id or not reminder_type:
            return jsonify({"error": "Missing user_id or reminder_type"}), 400

        try:
            alert = engine.send_reminder(user_id, reminder_type, data.get("custom_message"))
        except ValueError as e:
            return jsonify({"error": str(e)}), 400

        return jsonify(_alert_response(alert)), 201

    except Exception as e:
        logger.error("REMINDER_ERROR", extra={"error": str(e)})
        return jsonify({"error": "Failed to send reminder"}), 500


@app.route("/alerts/check-in", methods=["POST"])
def send_check_in():
    """Create and deliver a daily wellness check-in.

    Request Body:
        {
            "user_id": "user_123",
            "mood_trend": "concerning"
        }
    """
    try:
        data = request.get_json(silent=True)
        if not data:
            return jsonify({"error": "Request body required"}), 400

        user_id = data.get("user_id")
        mood_trend = data.get("mood_trend")
        if not user_id or not mood_trend:
            return jsonify({"error": "Missing user_id or mood_trend"}), 400

        try:
            alert = engine.send_wellness_check_in(user_id, mood_trend)
        except ValueError as e:
            return jsonify({"error": str(e)}), 400

        return jsonify(_alert_response(alert)), 201

    except Exception as e:
        logger.error("CHECK_IN_ERROR", extra={"error": str(e)})
        return jsonify({"error": "Failed to send check-in"}), 500


@app.route("/alerts/<alert_id>/acknowledge", methods=["POST"])
def acknowledge_alert(alert_id: str):
    """Mark an alert read."""
    try:
        alert = engine.acknowledge(alert_id)
        if alert is None:
            return jsonify({"error": "Alert not found"}), 404
        return jsonify({"alert_id": alert.id, "status": alert.status.value}), 200

    except Exception as e:
        logger.error("ALERT_ACKNOWLEDGE_ERROR", extra={"error": str(e)})
        return jsonify({"error": "Failed to acknowledge alert"}), 500


@app.route("/alerts/<alert_id>/dismiss", methods=["POST"])
def dismiss_alert(alert_id: str):
    """Dismiss an alert, cancelling any deferred delivery."""
    try:
        alert = engine.dismiss(alert_id)
        if alert is None:
            return jsonify({"error": "Alert not found"}), 404
        return jsonify({"alert_id": alert.id, "status": alert.status.value}), 200

    except Exception as e:
        logger.error("ALERT_DISMISS_ERROR", extra={"error": str(e)})
        return jsonify({"error": "Failed to dismiss alert"}), 500


@app.route("/alerts/<alert_id>/snooze", methods=["POST"])
def snooze_alert(alert_id: str):
    """Snooze an alert.

    Request Body:
        {
            "duration": "1h"
        }
    """
    try:
        data = request.get_json(silent=True)
        if not data:
            return jsonify({"error": "Request body required"}), 400

        duration = data.get("duration")
        if not duration:
            return jsonify({"error": "Missing duration"}), 400

        alert = engine.snooze(alert_id, duration)
        if alert is None:
            return jsonify({"error": "Alert not found"}), 404

        return jsonify(_alert_response(alert)), 200

    except Exception as e:
        logger.error("ALERT_SNOOZE_ERROR", extra={"error": str(e)})
        return jsonify({"error": "Failed to snooze alert"}), 500


@app.route("/alerts/<alert_id>/actions/<action_id>", methods=["POST"])
def handle_action(alert_id: str, action_id: str):
    """Carry out a notification action (call, chat, url, snooze, dismiss)."""
    try:
        outcome = engine.handle_action(alert_id, action_id)
        if outcome is None:
            return jsonify({"error": "Alert or action not found"}), 404
        return jsonify(outcome.to_dict()), 200

    except Exception as e:
        logger.error("ALERT_ACTION_ERROR", extra={"error": str(e)})
        return jsonify({"error": "Failed to handle action"}), 500


@app.route("/alerts/active", methods=["GET"])
def get_active_alerts():
    """Get a user's pending, sent and delivered alerts, newest first.

    Query Params:
        user_id: Alert recipient (required)
    """
    try:
        user_id = request.args.get("user_id")
        if not user_id:
            return jsonify({"error": "Missing user_id"}), 400

        active = engine.get_active_alerts(user_id)

        return jsonify({
            "count": len(active),
            "alerts": [a.to_dict() for a in active],
        }), 200

    except Exception as e:
        logger.error("ALERT_LIST_ERROR", extra={"error": str(e)})
        return jsonify({"error": "Failed to list alerts"}), 500


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    engine.start()
    port = int(os.getenv("PORT", "8004"))
    app.run(host="0.0.0.0", port=port, debug=False)
