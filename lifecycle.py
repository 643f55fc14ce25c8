"""
Fleet Booking – booking lifecycle engine.

    PENDING ──approve──► APPROVED ──time ≥ start──► IN_PROGRESS ──time ≥ end──► COMPLETED
       │                    │
       ├──reject──► REJECTED │
       └──cancel──► CANCELLED ◄──cancel──┘

COMPLETED, CANCELLED and REJECTED are final.  The engine is the only code
that writes booking status or windows; every write goes through the
repository's compare-and-set so that admin actions and the scheduler can
race safely.
"""

import logging
from datetime import datetime

from clock import SystemClock, as_naive_utc
from conflicts import find_conflict
from errors import (
    BookingConflict,
    InvalidTransition,
    InvalidWindow,
    QuotaExceeded,
    ValidationError,
    VehicleUnavailable,
)
from models import COMMITTED_STATUSES, Booking, BookingPurpose, BookingStatus

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"
DEFAULT_MAX_PENDING = 3
EDITABLE_FIELDS = ("purpose", "pickup_location", "dropoff_location", "notes")

ALLOWED_TRANSITIONS = {
    BookingStatus.PENDING: {
        BookingStatus.APPROVED,
        BookingStatus.REJECTED,
        BookingStatus.CANCELLED,
    },
    BookingStatus.APPROVED: {BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED},
    BookingStatus.IN_PROGRESS: {BookingStatus.COMPLETED},
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
    BookingStatus.REJECTED: set(),
}

# Audit-log action names for automatic transitions
_TIME_ACTIONS = {
    BookingStatus.IN_PROGRESS: "start",
    BookingStatus.COMPLETED: "complete",
}


def can_transition(current, target):
    return target in ALLOWED_TRANSITIONS.get(current, ())


def advance_by_time(booking, now):
    """
    Return the status *booking* should move to at *now*, or None.

    Pure and idempotent: an APPROVED booking starts once ``now >= start_time``,
    an IN_PROGRESS booking completes once ``now >= end_time``.  Only one step
    is returned per call.
    """
    if booking.status == BookingStatus.APPROVED and now >= booking.start_time:
        return BookingStatus.IN_PROGRESS
    if booking.status == BookingStatus.IN_PROGRESS and now >= booking.end_time:
        return BookingStatus.COMPLETED
    return None


# ── Input cleaning ───────────────────────────────────────────────────────────


def _parse_purpose(value):
    if isinstance(value, BookingPurpose):
        return value
    text = str(value).strip()
    for purpose in BookingPurpose:
        if text.lower() in (purpose.value.lower(), purpose.name.lower()):
            return purpose
    return None


def _parse_datetime(value, label):
    if value is None or value == "":
        raise ValidationError(f"Planned {label} date/time is required.")
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            raise ValidationError(f"Invalid {label} date/time format.") from None
    if not isinstance(value, datetime):
        raise ValidationError(f"Invalid {label} date/time format.")
    return as_naive_utc(value)


def _clean_details(fields, partial=False):
    """Validate and trim the free-form booking fields; raise ValidationError."""
    errors = []
    cleaned = {}

    if not partial or "purpose" in fields:
        raw = fields.get("purpose")
        if raw is None or not str(raw).strip():
            errors.append("Purpose is required.")
        else:
            purpose = _parse_purpose(raw)
            if purpose is None:
                choices = ", ".join(p.value for p in BookingPurpose)
                errors.append(f"Purpose must be one of: {choices}.")
            cleaned["purpose"] = purpose

    for key, label in (("pickup_location", "Pickup location"), ("dropoff_location", "Drop-off location")):
        if not partial or key in fields:
            value = (fields.get(key) or "").strip()
            if not value:
                errors.append(f"{label} is required.")
            cleaned[key] = value

    if not partial or "notes" in fields:
        cleaned["notes"] = (fields.get("notes") or "").strip() or None

    if errors:
        raise ValidationError(" ".join(errors))
    return cleaned


class BookingEngine:
    """
    Admission control, admin actions and time-driven transitions for bookings.

    Parameters
    ----------
    repository : BookingRepository
    clock : object with ``now()``; defaults to the system clock
    listeners : iterable of objects with ``booking_changed(booking, old, new)``,
        called after each committed transition (best effort)
    max_pending : int
        How many PENDING bookings one requester may hold at once.
    """

    def __init__(self, repository, clock=None, listeners=(), max_pending=DEFAULT_MAX_PENDING):
        self.repository = repository
        self.clock = clock or SystemClock()
        self.listeners = list(listeners)
        self.max_pending = max_pending

    # ── Requests ─────────────────────────────────────────────────────────

    def submit_request(self, requester_id, vehicle_id, start, end, details):
        """Create a PENDING booking, or raise why it cannot be admitted."""
        cleaned = _clean_details(details or {})
        if requester_id is None:
            raise ValidationError("Requester is required.")
        start = _parse_datetime(start, "start")
        end = _parse_datetime(end, "end")
        now = self.clock.now()
        if end <= start:
            raise InvalidWindow("End date/time must be after start date/time.")
        if start < now:
            raise InvalidWindow("Start date/time cannot be in the past.")

        # Check-then-insert runs under the vehicle's lock
        with self.repository.atomic(vehicle_id) as vehicle:
            if not vehicle.is_bookable:
                raise VehicleUnavailable(
                    f"Vehicle {vehicle.license_plate} is no longer available "
                    f"({vehicle.status}) and cannot be booked."
                )

            pending = self.repository.count_for_requester(requester_id, BookingStatus.PENDING)
            if pending >= self.max_pending:
                raise QuotaExceeded(requester_id, self.max_pending)

            conflict = find_conflict(self.repository, vehicle_id, start, end)
            if conflict is not None:
                logger.info(
                    f"Rejected request by {requester_id} for vehicle {vehicle_id}: "
                    f"overlaps booking #{conflict.id}"
                )
                raise BookingConflict(conflict)

            booking = Booking(
                vehicle_id=vehicle_id,
                requester_id=requester_id,
                start_time=start,
                end_time=end,
                status=BookingStatus.PENDING,
                created_at=now,
                updated_at=now,
                updated_by=str(requester_id),
                **cleaned,
            )
            self.repository.add(booking)
            self.repository.record(
                "create",
                booking.id,
                requester_id,
                f"Requested {vehicle.license_plate} "
                f"{start:%Y-%m-%d %H:%M} → {end:%Y-%m-%d %H:%M}, "
                f"{cleaned['pickup_location']} → {cleaned['dropoff_location']}",
            )
            booking_id = booking.id

        logger.info(f"Booking #{booking_id} created for vehicle {vehicle_id} (PENDING)")
        self._publish(booking, None, BookingStatus.PENDING)
        return booking

    def edit_details(self, booking_id, actor_id, fields):
        """
        Change purpose, locations or notes of a PENDING booking.

        A booking that is no longer PENDING raises InvalidTransition whatever
        the fields are; field errors are only reported for PENDING bookings.
        """
        fields = dict(fields or {})

        with self.repository.atomic():
            booking = self.repository.get(booking_id)
            if booking.status != BookingStatus.PENDING:
                raise self._invalid(booking, BookingStatus.PENDING, action="edit")

            if "start_time" in fields or "end_time" in fields:
                raise ValidationError("Booking dates cannot be changed after submission.")
            unknown = sorted(set(fields) - set(EDITABLE_FIELDS))
            if unknown:
                raise ValidationError(f"Fields cannot be edited: {', '.join(unknown)}.")
            cleaned = _clean_details(fields, partial=True)

            # Re-assert PENDING at write time
            booking = self.repository.compare_and_set_status(
                booking.id,
                BookingStatus.PENDING,
                BookingStatus.PENDING,
                actor_id,
                self.clock.now(),
            )
            for key, value in cleaned.items():
                setattr(booking, key, value)
            self.repository.record(
                "edit",
                booking.id,
                actor_id,
                "Updated " + ", ".join(sorted(cleaned)),
            )

        logger.info(f"Booking #{booking_id} details edited by {actor_id}")
        return booking

    # ── Admin actions ────────────────────────────────────────────────────

    def approve(self, booking_id, actor_id):
        """
        Approve a PENDING booking, but only if no APPROVED or IN_PROGRESS
        booking of the same vehicle overlaps it.  Two overlapping approvals
        cannot both succeed: the second one raises BookingConflict.
        """
        vehicle_id = self.repository.get(booking_id).vehicle_id

        with self.repository.atomic(vehicle_id):
            booking = self.repository.get(booking_id)
            self._check(booking, BookingStatus.APPROVED, action="approve")
            conflict = find_conflict(
                self.repository,
                booking.vehicle_id,
                booking.start_time,
                booking.end_time,
                exclude_booking_id=booking.id,
                statuses=COMMITTED_STATUSES,
            )
            if conflict is not None:
                logger.info(
                    f"Cannot approve booking #{booking.id}: vehicle already committed "
                    f"to booking #{conflict.id}"
                )
                raise BookingConflict(conflict)
            booking = self._move(booking, BookingStatus.APPROVED, actor_id, "approve")

        self._publish(booking, BookingStatus.PENDING, BookingStatus.APPROVED)
        return booking

    def reject(self, booking_id, actor_id):
        with self.repository.atomic():
            booking = self.repository.get(booking_id)
            self._check(booking, BookingStatus.REJECTED, action="reject")
            booking = self._move(booking, BookingStatus.REJECTED, actor_id, "reject")

        self._publish(booking, BookingStatus.PENDING, BookingStatus.REJECTED)
        return booking

    def cancel(self, booking_id, actor_id):
        """Cancel a booking that has not started yet (PENDING or APPROVED)."""
        with self.repository.atomic():
            booking = self.repository.get(booking_id)
            previous = booking.status
            self._check(booking, BookingStatus.CANCELLED, action="cancel")
            booking = self._move(booking, BookingStatus.CANCELLED, actor_id, "cancel")

        self._publish(booking, previous, BookingStatus.CANCELLED)
        return booking

    # ── Time-driven transitions ──────────────────────────────────────────

    def apply_time_transition(self, booking, now=None):
        """
        Persist ``advance_by_time(booking, now)`` if it yields a step.

        The write is conditional on the booking still having the status seen
        in *booking*; if something else moved it first, InvalidTransition is
        raised and nothing is written.  Returns the updated booking, or None
        when no step is due.
        """
        now = as_naive_utc(now) if now is not None else self.clock.now()
        target = advance_by_time(booking, now)
        if target is None:
            return None
        expected = booking.status

        with self.repository.atomic():
            updated = self.repository.compare_and_set_status(
                booking.id, expected, target, SYSTEM_ACTOR, now
            )
            self.repository.record(
                _TIME_ACTIONS[target],
                updated.id,
                SYSTEM_ACTOR,
                f"{expected.value} → {target.value} at {now:%Y-%m-%d %H:%M}",
            )

        logger.info(f"Booking #{updated.id} moved {expected.value} → {target.value}")
        self._publish(updated, expected, target)
        return updated

    # ── Reads ────────────────────────────────────────────────────────────

    def get_booking(self, booking_id):
        return self.repository.get(booking_id)

    def bookings_for_requester(self, requester_id, status=None):
        return self.repository.for_requester(requester_id, status)

    def list_bookings(self, status=None):
        if status is None:
            return self.repository.with_status()
        return self.repository.with_status(status)

    def booking_views(self, status=None):
        return self.repository.booking_views(status)

    def status_counts(self):
        return self.repository.status_counts()

    # ── Helpers ──────────────────────────────────────────────────────────

    def _invalid(self, booking, target, action=None):
        error = InvalidTransition(booking.id, booking.status, target, action=action)
        logger.warning(error.message)
        return error

    def _check(self, booking, target, action=None):
        if not can_transition(booking.status, target):
            raise self._invalid(booking, target, action=action)

    def _move(self, booking, target, actor_id, action):
        previous = booking.status
        updated = self.repository.compare_and_set_status(
            booking.id, previous, target, actor_id, self.clock.now()
        )
        self.repository.record(
            action, updated.id, actor_id, f"{previous.value} → {target.value}"
        )
        logger.info(f"Booking #{updated.id} {previous.value} → {target.value} by {actor_id}")
        return updated

    def _publish(self, booking, old_status, new_status):
        for listener in self.listeners:
            try:
                listener.booking_changed(booking, old_status, new_status)
            except Exception as e:
                logger.error(
                    f"Listener {type(listener).__name__} failed for booking "
                    f"#{booking.id} ({new_status.value}): {e}"
                )
