"""
Fleet Booking – time sources.
All datetimes handled by the booking core are naive UTC.
"""

from datetime import datetime, timezone


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value):
    """Convert an aware datetime to naive UTC; naive values pass through."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class SystemClock:
    def now(self):
        return utcnow()


class FrozenClock:
    """A clock that only moves when told to (used by tests and replays)."""

    def __init__(self, current):
        self.current = as_naive_utc(current)

    def now(self):
        return self.current

    def set(self, current):
        self.current = as_naive_utc(current)

    def advance(self, delta):
        self.current = self.current + delta
