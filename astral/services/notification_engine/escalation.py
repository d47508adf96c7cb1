"""EscalationCascade: notifies a user's emergency contacts during a crisis.

Contacts receive a fixed template, never the alert's own title or message,
so nothing the user wrote or was told leaks to third parties. The template
only asks the contact to check in and points at the crisis line.
"""
import logging
from typing import List, Optional

from astral.shared.models import (
    ActionStyle,
    ActionType,
    Alert,
    Channel,
    ContactNotification,
    EmergencyContact,
    NotificationAction,
    NotificationPreferences,
)
from astral.shared.utils import hash_pii

from .channels import EmailSink, SmsSink
from .config import NotificationConfig
from .lifecycle import AlertLifecycleTracker

logger = logging.getLogger(__name__)

CONTACT_ALERT_TITLE = "CRISIS ALERT - Please Check on Your Loved One"

CONTACT_ALERT_TEMPLATE = (
    "CRISIS ALERT: Someone who listed you as an emergency contact may need "
    "immediate support. A crisis situation has been detected on the Astral "
    "mental health platform. Please reach out to them or call {hotline} if needed."
)


class EscalationCascade:
    """Runs the emergency-contact cascade for crisis and emergency alerts."""

    def __init__(
        self,
        tracker: AlertLifecycleTracker,
        sms_sink: Optional[SmsSink] = None,
        email_sink: Optional[EmailSink] = None,
        config: Optional[NotificationConfig] = None,
    ):
        self.tracker = tracker
        self.sms_sink = sms_sink
        self.email_sink = email_sink
        self.config = config or NotificationConfig()

    def message(self) -> str:
        return CONTACT_ALERT_TEMPLATE.format(hotline=self.config.crisis_hotline)

    def applies(self, alert: Alert, preferences: NotificationPreferences) -> bool:
        return alert.is_crisis and preferences.emergency_contact_alerts

    def run(
        self,
        alert: Alert,
        preferences: NotificationPreferences,
    ) -> List[ContactNotification]:
        """Notify the highest-ranked emergency contacts.

        Contacts are taken in ascending priority, at most
        max_emergency_contacts of them. Each gets an SMS if they have a phone
        number and an e-mail if they have an address. Failures are recorded
        per contact and not retried; the alert is marked as having notified
        its contacts once the cascade has run, whatever the outcomes.

        Returns:
            One ContactNotification per attempted send
        """
        if not self.applies(alert, preferences):
            return []

        contacts = preferences.ranked_contacts(self.config.max_emergency_contacts)

        logger.critical(
            "EMERGENCY_CASCADE_STARTED",
            extra={
                "alert_id": alert.id,
                "user_id_hash": hash_pii(alert.user_id),
                "contact_count": len(contacts),
            }
        )

        results: List[ContactNotification] = []
        for contact in contacts:
            if contact.phone:
                results.append(self._notify_by_sms(contact))
            if contact.email:
                results.append(self._notify_by_email(contact))

            logger.critical(
                "EMERGENCY_CONTACT_NOTIFIED",
                extra={
                    "alert_id": alert.id,
                    "contact_priority": contact.priority,
                    "relationship": contact.relationship,
                    "succeeded": all(
                        r.succeeded for r in results
                        if r.contact_priority == contact.priority
                    ),
                }
            )

        self.tracker.record_escalation(alert.id, results)

        failed = [r for r in results if not r.succeeded]
        logger.critical(
            "EMERGENCY_CASCADE_COMPLETED",
            extra={
                "alert_id": alert.id,
                "attempts": len(results),
                "failures": len(failed),
            }
        )
        return results

    def _notify_by_sms(self, contact: EmergencyContact) -> ContactNotification:
        if self.sms_sink is None:
            return self._outcome(contact, Channel.SMS, False, "sms sink not configured")
        try:
            ok = self.sms_sink.send(contact.phone, self.message())
        except Exception as e:
            return self._outcome(contact, Channel.SMS, False, str(e))
        return self._outcome(contact, Channel.SMS, ok, None if ok else "sms sink reported failure")

    def _notify_by_email(self, contact: EmergencyContact) -> ContactNotification:
        if self.email_sink is None:
            return self._outcome(contact, Channel.EMAIL, False, "email sink not configured")
        hotline = self.config.crisis_hotline
        actions = [
            NotificationAction(
                id=f"call-{hotline}",
                label=f"Call {hotline} Crisis Line",
                type=ActionType.CALL,
                target=hotline,
                style=ActionStyle.DANGER,
            )
        ]
        try:
            ok = self.email_sink.send(contact.email, CONTACT_ALERT_TITLE, self.message(), actions)
        except Exception as e:
            return self._outcome(contact, Channel.EMAIL, False, str(e))
        return self._outcome(contact, Channel.EMAIL, ok, None if ok else "email sink reported failure")

    def _outcome(
        self,
        contact: EmergencyContact,
        channel: Channel,
        succeeded: bool,
        error: Optional[str],
    ) -> ContactNotification:
        if not succeeded:
            logger.error(
                "EMERGENCY_CONTACT_SEND_FAILED",
                extra={
                    "contact_priority": contact.priority,
                    "channel": channel.value,
                    "error": error,
                }
            )
        return ContactNotification(
            contact_name=contact.name,
            contact_priority=contact.priority,
            channel=channel,
            succeeded=bool(succeeded),
            error=error,
        )
