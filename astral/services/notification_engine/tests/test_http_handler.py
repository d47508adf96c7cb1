"""Tests for Notification Engine HTTP handler."""
import json
import uuid
import pytest

from astral.shared.utils import configure_pii_salt


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt("test_salt_that_is_at_least_32_characters_long")


@pytest.fixture
def client():
    from astral.services.notification_engine.http_handler import app
    app.config['TESTING'] = True
    with app.test_client() as client:
        yield client


@pytest.fixture
def user_id(client):
    """A fresh user with default preferences stored."""
    uid = f"user_{uuid.uuid4().hex[:8]}"
    response = client.put(f'/preferences/{uid}', json={'push_notifications': True})
    assert response.status_code == 200
    return uid


class TestHealthEndpoint:
    def test_health_returns_200(self, client):
        response = client.get('/health')
        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['status'] == 'healthy'
        assert data['service'] == 'notification-engine'

    def test_ready(self, client):
        response = client.get('/ready')
        assert response.status_code == 200


class TestPreferencesEndpoint:
    def test_put_and_get(self, client):
        response = client.put(
            '/preferences/user_prefs_1',
            json={
                'sms_notifications': True,
                'phone_number': '+15555550100',
                'quiet_hours': {'start': '23:00', 'end': '06:00', 'enabled': True},
                'emergency_contacts': [
                    {'name': 'Sam', 'phone': '+15555550101', 'priority': 1},
                ],
                'timezone': 'Europe/Berlin',
            },
        )
        assert response.status_code == 200

        response = client.get('/preferences/user_prefs_1')
        data = json.loads(response.data)
        assert response.status_code == 200
        assert data['user_id'] == 'user_prefs_1'
        assert data['sms_notifications'] is True
        assert data['quiet_hours']['start'] == '23:00'
        assert data['emergency_contacts'][0]['name'] == 'Sam'
        assert data['timezone'] == 'Europe/Berlin'

    def test_get_missing(self, client):
        response = client.get('/preferences/user_never_seen')
        assert response.status_code == 404

    def test_put_requires_body(self, client):
        response = client.put('/preferences/user_1', data='', content_type='application/json')
        assert response.status_code == 400

    def test_put_rejects_duplicate_contact_priorities(self, client):
        response = client.put(
            '/preferences/user_1',
            json={
                'emergency_contacts': [
                    {'name': 'A', 'phone': '+1', 'priority': 1},
                    {'name': 'B', 'phone': '+2', 'priority': 1},
                ],
            },
        )
        assert response.status_code == 400

    def test_put_rejects_malformed_quiet_hours(self, client):
        response = client.put(
            '/preferences/user_1',
            json={'quiet_hours': {'start': '10pm', 'end': '07:00', 'enabled': True}},
        )
        assert response.status_code == 400

    def test_put_rejects_string_toggle(self, client):
        response = client.put(
            '/preferences/user_string_toggle',
            json={'crisis_alerts': 'false'},
        )
        assert response.status_code == 400
        assert client.get('/preferences/user_string_toggle').status_code == 404


class TestCrisisAlertEndpoint:
    def test_send_crisis_alert(self, client, user_id):
        response = client.post(
            '/alerts/crisis',
            json={'user_id': user_id, 'risk_level': 9, 'trigger_source': 'user-request'},
        )

        assert response.status_code == 201
        data = json.loads(response.data)
        assert data['type'] == 'crisis'
        assert data['priority'] == 'critical'
        assert data['risk_level'] == 9
        assert data['trigger_source'] == 'user-request'
        assert data['status'] == 'sent'
        assert data['deliver_at'] is None
        assert data['channel_results']['in-app']['outcome'] == 'succeeded'

    def test_missing_user_id(self, client):
        response = client.post('/alerts/crisis', json={'risk_level': 9})
        assert response.status_code == 400

    def test_invalid_risk_level(self, client, user_id):
        response = client.post('/alerts/crisis', json={'user_id': user_id, 'risk_level': 42})
        assert response.status_code == 400

    def test_unknown_field(self, client, user_id):
        response = client.post('/alerts/crisis', json={'user_id': user_id, 'severity': 'high'})
        assert response.status_code == 400

    def test_naive_expires_at_rejected(self, client, user_id):
        response = client.post(
            '/alerts/crisis',
            json={'user_id': user_id, 'expires_at': '2026-01-16T13:00:00'},
        )

        assert response.status_code == 400
        response = client.get(f'/alerts/active?user_id={user_id}')
        assert json.loads(response.data)['count'] == 0

    def test_expires_at_with_offset_accepted(self, client, user_id):
        response = client.post(
            '/alerts/crisis',
            json={'user_id': user_id, 'expires_at': '2099-01-16T13:00:00+00:00'},
        )

        assert response.status_code == 201
        assert json.loads(response.data)['expires_at'] == '2099-01-16T13:00:00+00:00'


class TestReminderAndCheckInEndpoints:
    def test_send_reminder(self, client, user_id):
        response = client.post(
            '/alerts/reminder',
            json={'user_id': user_id, 'reminder_type': 'mood-check'},
        )

        assert response.status_code == 201
        data = json.loads(response.data)
        assert data['title'] == 'Wellness Reminder - Mood Check'
        assert data['expires_at'] is not None

    def test_unknown_reminder_type(self, client, user_id):
        response = client.post(
            '/alerts/reminder',
            json={'user_id': user_id, 'reminder_type': 'yoga'},
        )
        assert response.status_code == 400

    def test_reminder_for_user_without_preferences_stays_pending(self, client):
        response = client.post(
            '/alerts/reminder',
            json={'user_id': 'user_no_prefs', 'reminder_type': 'journal'},
        )

        assert response.status_code == 201
        assert json.loads(response.data)['status'] == 'pending'

    def test_send_check_in(self, client, user_id):
        response = client.post(
            '/alerts/check-in',
            json={'user_id': user_id, 'mood_trend': 'concerning'},
        )

        assert response.status_code == 201
        data = json.loads(response.data)
        assert data['priority'] == 'high'
        assert 'crisis-support' in [a['id'] for a in data['actions']]

    def test_check_in_missing_trend(self, client, user_id):
        response = client.post('/alerts/check-in', json={'user_id': user_id})
        assert response.status_code == 400


class TestAlertLifecycle:
    def _send_reminder(self, client, user_id):
        response = client.post(
            '/alerts/reminder',
            json={'user_id': user_id, 'reminder_type': 'journal'},
        )
        return json.loads(response.data)['id']

    def test_acknowledge(self, client, user_id):
        alert_id = self._send_reminder(client, user_id)

        response = client.post(f'/alerts/{alert_id}/acknowledge')

        assert response.status_code == 200
        assert json.loads(response.data)['status'] == 'read'

    def test_dismiss(self, client, user_id):
        alert_id = self._send_reminder(client, user_id)

        response = client.post(f'/alerts/{alert_id}/dismiss')

        assert response.status_code == 200
        assert json.loads(response.data)['status'] == 'dismissed'

    def test_snooze(self, client, user_id):
        alert_id = self._send_reminder(client, user_id)

        response = client.post(f'/alerts/{alert_id}/snooze', json={'duration': '1h'})

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['status'] == 'dismissed'
        assert data['deliver_at'] is not None

    def test_snooze_requires_duration(self, client, user_id):
        alert_id = self._send_reminder(client, user_id)

        response = client.post(f'/alerts/{alert_id}/snooze', json={})

        assert response.status_code == 400

    def test_unknown_alert(self, client):
        assert client.post('/alerts/alert_missing/acknowledge').status_code == 404
        assert client.post('/alerts/alert_missing/dismiss').status_code == 404
        assert client.post('/alerts/alert_missing/snooze', json={'duration': '1h'}).status_code == 404

    def test_action(self, client, user_id):
        response = client.post('/alerts/crisis', json={'user_id': user_id})
        alert_id = json.loads(response.data)['id']

        response = client.post(f'/alerts/{alert_id}/actions/call-988')

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['kind'] == 'dial'
        assert data['target'] == 'tel:988'
        assert data['alert_status'] == 'read'

    def test_unknown_action(self, client, user_id):
        alert_id = self._send_reminder(client, user_id)

        response = client.post(f'/alerts/{alert_id}/actions/teleport')

        assert response.status_code == 404

    def test_active_alerts(self, client, user_id):
        kept = self._send_reminder(client, user_id)
        dismissed = self._send_reminder(client, user_id)
        client.post(f'/alerts/{dismissed}/dismiss')

        response = client.get(f'/alerts/active?user_id={user_id}')

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['count'] == 1
        assert data['alerts'][0]['id'] == kept

    def test_active_alerts_requires_user(self, client):
        response = client.get('/alerts/active')
        assert response.status_code == 400
