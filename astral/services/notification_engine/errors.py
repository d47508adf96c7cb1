"""Error taxonomy for the notification engine.

Only malformed input raises to callers. Delivery-path errors are caught
inside the engine and surface as alert status transitions and per-channel
results.
"""


class NotificationError(Exception):
    """Base exception for notification engine errors."""
    pass


class PreferenceNotFound(NotificationError):
    """No preferences stored for the user; delivery is skipped."""

    def __init__(self, user_id: str):
        super().__init__("No notification preferences for user")
        self.user_id = user_id


class ChannelUnavailable(NotificationError):
    """Channel sink is not configured or not permitted for this user."""
    pass


class DispatchFailure(NotificationError):
    """A sink reported a failed send. Not retried by the engine."""
    pass


class SchedulingNoop(NotificationError):
    """A scheduling request could not be interpreted and was ignored."""
    pass
