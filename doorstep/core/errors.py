"""
Error taxonomy for the booking core.

Domain errors (BookingNotFound, ConflictError, BookingRuleError) propagate to
the HTTP layer. Infrastructure errors (LockUnavailableError,
NotificationDeliveryFailure) are caught where they happen and logged.
"""


class BookingError(Exception):
    """Base class for errors surfaced to API callers."""


class BookingNotFound(BookingError):
    def __init__(self, booking_id):
        self.booking_id = booking_id
        super().__init__(f"Booking {booking_id} not found")


class ConflictError(BookingError):
    """The requested transition is not valid for the booking's current state."""

    def __init__(self, current, requested, message=None):
        self.current = getattr(current, "value", current)
        self.requested = getattr(requested, "value", requested)
        super().__init__(
            message
            or f"Cannot {self.requested} a booking in status '{self.current}'"
        )


class StaleStateError(ConflictError):
    """A concurrent update changed the booking between read and write."""

    def __init__(self, expected, requested):
        super().__init__(
            expected,
            requested,
            f"Booking is no longer '{getattr(expected, 'value', expected)}'; "
            f"refresh before attempting to {getattr(requested, 'value', requested)}",
        )


class BookingRuleError(BookingError, ValueError):
    """A business rule refused the change (missing reason, failed payment, ...)."""


class LockUnavailableError(Exception):
    """The job lock store could not be reached. Internal only."""


class ConnectionLimitExceeded(Exception):
    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Realtime connection limit reached ({limit})")


class NotificationDeliveryFailure(Exception):
    """A realtime or inbox notification could not be delivered."""
