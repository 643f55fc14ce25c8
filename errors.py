"""
Fleet Booking – error taxonomy raised by the booking core.

Only RepositoryUnavailable is worth retrying, and the core never retries it
itself: the caller owns the retry policy.
"""


class BookingError(Exception):
    """Base class for every error the booking core raises."""

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class ValidationError(BookingError):
    """A required field is missing or malformed."""


class InvalidWindow(BookingError):
    """Start/end are out of order or the start lies in the past."""


class QuotaExceeded(BookingError):
    """The requester already has the maximum number of pending bookings."""

    def __init__(self, requester_id, limit):
        super().__init__(
            f"You can only have up to {limit} pending booking requests at a time."
        )
        self.requester_id = requester_id
        self.limit = limit


class VehicleUnavailable(BookingError):
    """The vehicle is not `available` (in use or under maintenance)."""


class BookingConflict(BookingError):
    """The requested window overlaps a booking that still holds the vehicle."""

    def __init__(self, conflicting):
        super().__init__(
            f"This vehicle is already booked between "
            f"{conflicting.start_time.strftime('%Y-%m-%d %H:%M')} and "
            f"{conflicting.end_time.strftime('%Y-%m-%d %H:%M')} "
            f"(Booking #{conflicting.id})."
        )
        self.booking_id = conflicting.id


class InvalidTransition(BookingError):
    """The booking's current status does not allow the requested change."""

    def __init__(self, booking_id, current, target, action=None):
        if action:
            message = f"Cannot {action} booking #{booking_id} while it is {current.value}."
        else:
            message = (
                f"Booking #{booking_id} cannot move from {current.value} to {target.value}."
            )
        super().__init__(message)
        self.booking_id = booking_id
        self.current = current
        self.target = target
        self.action = action


class NotFound(BookingError):
    def __init__(self, entity_type, entity_id):
        super().__init__(f"{entity_type} #{entity_id} does not exist.")
        self.entity_type = entity_type
        self.entity_id = entity_id


class RepositoryUnavailable(BookingError):
    """Transient persistence failure; safe for the caller to retry."""
