"""ChannelDispatcher: fans one alert out to its delivery channels.

In-app delivery is attempted first, synchronously, for every alert, so an
alert is visible locally even when every external channel is down.
External channels (push, SMS, e-mail) then run concurrently on a thread
pool; each one's failure is isolated and recorded as a ChannelResult.

Overall status is all-or-nothing: SENT only if every invoked channel
succeeded, FAILED otherwise. The per-channel detail is kept on
alert.channel_results. Channels whose sink is not configured are recorded
as UNAVAILABLE and do not count as invoked.
"""
import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from functools import partial
from typing import Callable, Dict, List, Optional, Tuple

from astral.shared.models import (
    Alert,
    AlertPriority,
    AlertStatus,
    Channel,
    ChannelOutcome,
    ChannelResult,
    NotificationPreferences,
)
from astral.shared.utils import hash_pii

from .channels import EmailSink, InAppSink, PushSink, SmsSink
from .config import NotificationConfig
from .errors import ChannelUnavailable, DispatchFailure
from .escalation import EscalationCascade
from .lifecycle import AlertLifecycleTracker

logger = logging.getLogger(__name__)

CRITICAL_VIBRATE_PATTERN = [200, 100, 200, 100, 200]
DEFAULT_VIBRATE_PATTERN = [200]


def push_options(alert: Alert) -> Dict:
    """Platform notification options for an alert."""
    return {
        "tag": alert.id,
        "icon": "/icons/notification-icon.png",
        "badge": "/icons/notification-badge.png",
        "data": {
            "alert_id": alert.id,
            "actions": [a.to_dict() for a in alert.actions],
        },
        "require_interaction": alert.requires_acknowledgment,
        "vibrate": (
            CRITICAL_VIBRATE_PATTERN
            if alert.priority == AlertPriority.CRITICAL
            else DEFAULT_VIBRATE_PATTERN
        ),
    }


class ChannelDispatcher:
    """Delivers alerts over push, SMS, e-mail and in-app channels."""

    def __init__(
        self,
        tracker: AlertLifecycleTracker,
        in_app_sink: InAppSink,
        push_sink: Optional[PushSink] = None,
        sms_sink: Optional[SmsSink] = None,
        email_sink: Optional[EmailSink] = None,
        escalation: Optional[EscalationCascade] = None,
        config: Optional[NotificationConfig] = None,
    ):
        """Initialize dispatcher.

        Args:
            tracker: Receives the outcome of every dispatch
            in_app_sink: Always-available local channel
            push_sink: Push provider (channel unavailable if None)
            sms_sink: SMS provider (channel unavailable if None)
            email_sink: E-mail provider (channel unavailable if None)
            escalation: Emergency-contact cascade run alongside crisis sends
            config: Worker count and fan-out timeout
        """
        self.tracker = tracker
        self.clock = tracker.clock
        self.in_app_sink = in_app_sink
        self.push_sink = push_sink
        self.sms_sink = sms_sink
        self.email_sink = email_sink
        self.escalation = escalation
        self.config = config or NotificationConfig()
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.dispatch_workers,
            thread_name_prefix="alert-dispatch",
        )

    def dispatch(
        self,
        alert: Alert,
        preferences: NotificationPreferences,
    ) -> Optional[AlertStatus]:
        """Send the alert now and record the outcome with the tracker.

        Never raises for delivery problems; they become the FAILED status
        and per-channel results.

        Returns:
            The dispatch status, or None if the alert was no longer pending
        """
        attempt = self.tracker.begin_dispatch(alert.id)
        if attempt is None:
            logger.info(
                "DISPATCH_SKIPPED_NOT_PENDING",
                extra={"alert_id": alert.id, "status": alert.status.value}
            )
            return None

        results: Dict[Channel, ChannelResult] = {}
        try:
            results[Channel.IN_APP] = self._deliver_in_app(alert)

            futures: Dict[Future, Channel] = {}
            for channel, call in self._plan(alert, preferences):
                if isinstance(call, ChannelResult):
                    results[channel] = call
                else:
                    futures[self._executor.submit(self._invoke, channel, call)] = channel

            cascade: Optional[Future] = None
            if self.escalation is not None and self.escalation.applies(alert, preferences):
                cascade = self._executor.submit(self.escalation.run, alert, preferences)

            done, _ = wait(futures, timeout=self.config.dispatch_timeout_seconds)
            for future, channel in futures.items():
                if future in done:
                    results[channel] = future.result()
                else:
                    future.cancel()
                    results[channel] = self._result(
                        channel, ChannelOutcome.FAILED, "timed out"
                    )

            if cascade is not None:
                self._await_cascade(alert, cascade)

            status = self._overall_status(results)

        except Exception as e:
            logger.error(
                "DISPATCH_ERROR",
                extra={
                    "alert_id": alert.id,
                    "error": str(e),
                    "error_type": type(e).__name__,
                }
            )
            status = AlertStatus.FAILED

        self.tracker.record_dispatch(alert.id, status, results, attempt=attempt)

        log = logger.critical if alert.is_crisis else logger.info
        log(
            "ALERT_DISPATCHED",
            extra={
                "alert_id": alert.id,
                "user_id_hash": hash_pii(alert.user_id),
                "status": status.value,
                "channels": {c.value: r.outcome.value for c, r in results.items()},
            }
        )
        return status

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)

    def _plan(
        self,
        alert: Alert,
        preferences: NotificationPreferences,
    ) -> List[Tuple[Channel, object]]:
        """External channels for this alert.

        Each entry is either a zero-arg send callable, or a ready
        ChannelResult when the channel cannot be invoked.
        """
        plan: List[Tuple[Channel, object]] = []

        if Channel.PUSH in alert.channels and preferences.push_notifications:
            sink = self.push_sink
            if sink is None:
                plan.append((Channel.PUSH, self._unavailable(Channel.PUSH, "push sink not configured")))
            else:
                plan.append((Channel.PUSH, partial(
                    sink.send, alert.user_id, alert.title, alert.message, push_options(alert)
                )))

        if Channel.SMS in alert.channels and preferences.sms_notifications:
            sink = self.sms_sink
            if sink is None:
                plan.append((Channel.SMS, self._unavailable(Channel.SMS, "sms sink not configured")))
            elif not preferences.phone_number:
                plan.append((Channel.SMS, self._unavailable(Channel.SMS, "no phone number")))
            else:
                text = f"{alert.title}: {alert.message}"
                plan.append((Channel.SMS, partial(sink.send, preferences.phone_number, text)))

        if Channel.EMAIL in alert.channels and preferences.email_notifications:
            sink = self.email_sink
            if sink is None:
                plan.append((Channel.EMAIL, self._unavailable(Channel.EMAIL, "email sink not configured")))
            elif not preferences.email:
                plan.append((Channel.EMAIL, self._unavailable(Channel.EMAIL, "no email address")))
            else:
                plan.append((Channel.EMAIL, partial(
                    sink.send, preferences.email, alert.title, alert.message, list(alert.actions)
                )))

        return plan

    def _invoke(self, channel: Channel, call: Callable[[], bool]) -> ChannelResult:
        try:
            if not call():
                raise DispatchFailure(f"{channel.value} sink reported failure")
        except ChannelUnavailable as e:
            return self._unavailable(channel, str(e))
        except Exception as e:
            logger.error(
                "CHANNEL_DISPATCH_FAILED",
                extra={
                    "channel": channel.value,
                    "error": str(e),
                    "error_type": type(e).__name__,
                }
            )
            return self._result(channel, ChannelOutcome.FAILED, str(e))
        return self._result(channel, ChannelOutcome.SUCCEEDED)

    def _deliver_in_app(self, alert: Alert) -> ChannelResult:
        def publish() -> bool:
            self.in_app_sink.publish(alert)
            return True

        return self._invoke(Channel.IN_APP, publish)

    def _await_cascade(self, alert: Alert, cascade: Future) -> None:
        done, _ = wait([cascade], timeout=self.config.dispatch_timeout_seconds)
        if not done:
            logger.critical(
                "EMERGENCY_CASCADE_TIMEOUT",
                extra={"alert_id": alert.id}
            )
            return
        error = cascade.exception()
        if error is not None:
            logger.critical(
                "EMERGENCY_CASCADE_ERROR",
                extra={
                    "alert_id": alert.id,
                    "error": str(error),
                    "error_type": type(error).__name__,
                }
            )

    def _unavailable(self, channel: Channel, reason: str) -> ChannelResult:
        logger.warning(
            "CHANNEL_UNAVAILABLE",
            extra={"channel": channel.value, "reason": reason}
        )
        return self._result(channel, ChannelOutcome.UNAVAILABLE, reason)

    def _result(
        self,
        channel: Channel,
        outcome: ChannelOutcome,
        error: Optional[str] = None,
    ) -> ChannelResult:
        return ChannelResult(
            channel=channel,
            outcome=outcome,
            attempted_at=self.clock.now(),
            error=error,
        )

    @staticmethod
    def _overall_status(results: Dict[Channel, ChannelResult]) -> AlertStatus:
        invoked = [r for r in results.values() if r.invoked]
        if all(r.outcome == ChannelOutcome.SUCCEEDED for r in invoked):
            return AlertStatus.SENT
        return AlertStatus.FAILED
