"""
Fleet Booking – booking persistence.

BookingRepository is the boundary the lifecycle engine talks to;
SQLAlchemyBookingRepository implements it on top of the Flask-SQLAlchemy session.
"""

import logging
import threading
from contextlib import contextmanager, nullcontext
from functools import wraps

from sqlalchemy import func, select, update
from sqlalchemy.exc import InterfaceError, OperationalError

from errors import InvalidTransition, NotFound, RepositoryUnavailable
from models import AuditLog, Booking, BookingStatus, Driver, Vehicle, db

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (OperationalError, InterfaceError)


class BookingRepository:
    """Storage operations the booking core relies on."""

    def get(self, booking_id):
        raise NotImplementedError

    def get_vehicle(self, vehicle_id):
        raise NotImplementedError

    def for_vehicle(self, vehicle_id, starting_before=None, statuses=None):
        raise NotImplementedError

    def for_requester(self, requester_id, status=None):
        raise NotImplementedError

    def with_status(self, *statuses):
        raise NotImplementedError

    def count_for_requester(self, requester_id, status):
        raise NotImplementedError

    def add(self, booking):
        raise NotImplementedError

    def atomic(self, vehicle_id=None):
        """Context manager: one all-or-nothing unit, serialised per vehicle."""
        raise NotImplementedError

    def compare_and_set_status(self, booking_id, expected, new, actor, now):
        raise NotImplementedError

    def record(self, action, booking_id, actor, details=None):
        raise NotImplementedError


# ── Per-vehicle locks ────────────────────────────────────────────────────────

_vehicle_locks = {}
_vehicle_locks_guard = threading.Lock()


def _vehicle_lock(vehicle_id):
    vehicle_id = int(vehicle_id)  # "1" and 1 are the same row
    with _vehicle_locks_guard:
        lock = _vehicle_locks.get(vehicle_id)
        if lock is None:
            lock = _vehicle_locks[vehicle_id] = threading.Lock()
        return lock


def _translate_errors(method):
    @wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except TRANSIENT_ERRORS as e:
            self.session.rollback()
            logger.error(f"Booking store unavailable during {method.__name__}: {e}")
            raise RepositoryUnavailable("The booking store is unavailable. Try again.") from e

    return wrapper


class SQLAlchemyBookingRepository(BookingRepository):
    def __init__(self, session=None):
        self._session = session

    @property
    def session(self):
        # db.session is scoped to the current app context
        return self._session if self._session is not None else db.session

    # ── Reads ────────────────────────────────────────────────────────────

    @_translate_errors
    def get(self, booking_id):
        booking = self.session.execute(
            select(Booking)
            .where(Booking.id == booking_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if booking is None:
            raise NotFound("Booking", booking_id)
        return booking

    @_translate_errors
    def get_vehicle(self, vehicle_id):
        vehicle = self.session.get(Vehicle, vehicle_id)
        if vehicle is None:
            raise NotFound("Vehicle", vehicle_id)
        return vehicle

    @_translate_errors
    def for_vehicle(self, vehicle_id, starting_before=None, statuses=None):
        """Bookings of *vehicle_id*, optionally only those starting at or before a time."""
        stmt = select(Booking).where(Booking.vehicle_id == vehicle_id)
        if starting_before is not None:
            stmt = stmt.where(Booking.start_time <= starting_before)
        if statuses is not None:
            stmt = stmt.where(Booking.status.in_(list(statuses)))
        stmt = stmt.order_by(Booking.start_time).execution_options(populate_existing=True)
        return list(self.session.execute(stmt).scalars())

    @_translate_errors
    def for_requester(self, requester_id, status=None):
        stmt = select(Booking).where(Booking.requester_id == requester_id)
        if status is not None:
            stmt = stmt.where(Booking.status == status)
        return list(self.session.execute(stmt.order_by(Booking.start_time.desc())).scalars())

    @_translate_errors
    def with_status(self, *statuses):
        stmt = select(Booking)
        if statuses:
            stmt = stmt.where(Booking.status.in_(statuses))
        stmt = stmt.order_by(Booking.start_time).execution_options(populate_existing=True)
        return list(self.session.execute(stmt).scalars())

    @_translate_errors
    def count_for_requester(self, requester_id, status):
        return self.session.scalar(
            select(func.count(Booking.id)).where(
                Booking.requester_id == requester_id, Booking.status == status
            )
        )

    @_translate_errors
    def status_counts(self):
        """Number of bookings per status, plus a ``total`` key."""
        rows = self.session.execute(
            select(Booking.status, func.count(Booking.id)).group_by(Booking.status)
        ).all()
        counts = {status: 0 for status in BookingStatus}
        for status, count in rows:
            counts[status] = count
        counts["total"] = sum(count for _, count in rows)
        return counts

    @_translate_errors
    def booking_views(self, status=None):
        """Bookings joined with their vehicle and the vehicle's driver."""
        stmt = (
            select(Booking, Vehicle, Driver)
            .join(Vehicle, Booking.vehicle_id == Vehicle.id)
            .outerjoin(Driver, Vehicle.driver_id == Driver.id)
        )
        if status is not None:
            stmt = stmt.where(Booking.status == status)
        stmt = stmt.order_by(Booking.start_time.desc())

        views = []
        for booking, vehicle, driver in self.session.execute(stmt).all():
            views.append(
                {
                    "id": booking.id,
                    "status": booking.status,
                    "start_time": booking.start_time,
                    "end_time": booking.end_time,
                    "purpose": booking.purpose,
                    "pickup_location": booking.pickup_location,
                    "dropoff_location": booking.dropoff_location,
                    "requester_id": booking.requester_id,
                    "vehicle_id": vehicle.id,
                    "vehicle_name": vehicle.name,
                    "license_plate": vehicle.license_plate,
                    "vehicle_status": vehicle.status,
                    "driver_id": driver.id if driver else None,
                    "driver_name": driver.name if driver else None,
                }
            )
        return views

    # ── Writes ───────────────────────────────────────────────────────────

    @contextmanager
    def atomic(self, vehicle_id=None):
        """
        Run the enclosed block as one transaction.

        With *vehicle_id* the block is serialised against every other atomic
        block for the same vehicle, in this process and in any other process
        sharing the database: an in-process lock, then a no-op ``UPDATE`` of
        the vehicle row as the first statement.  The UPDATE takes a row lock
        on PostgreSQL and the database write lock on SQLite (which ignores
        ``FOR UPDATE``); either is held until commit or rollback.  The locked
        Vehicle is yielded.  Commits on success, rolls back on error.
        """
        lock = _vehicle_lock(vehicle_id) if vehicle_id is not None else nullcontext()
        with lock:
            try:
                vehicle = None
                if vehicle_id is not None:
                    self._lock_vehicle_row(vehicle_id)
                    vehicle = self.session.execute(
                        select(Vehicle)
                        .where(Vehicle.id == vehicle_id)
                        .execution_options(populate_existing=True)
                    ).scalar_one()
                yield vehicle
                self.session.commit()
            except TRANSIENT_ERRORS as e:
                self.session.rollback()
                logger.error(f"Booking store unavailable, transaction rolled back: {e}")
                raise RepositoryUnavailable("The booking store is unavailable. Try again.") from e
            except Exception:
                self.session.rollback()
                raise

    def _lock_vehicle_row(self, vehicle_id):
        result = self.session.execute(
            update(Vehicle)
            .where(Vehicle.id == vehicle_id)
            .values(status=Vehicle.status)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise NotFound("Vehicle", vehicle_id)

    def add(self, booking):
        self.session.add(booking)
        self.session.flush()  # assign ID
        return booking

    def compare_and_set_status(self, booking_id, expected, new, actor, now):
        """
        Move *booking_id* from *expected* to *new* only if it is still in
        *expected*; otherwise raise InvalidTransition with the status found.
        """
        result = self.session.execute(
            update(Booking)
            .where(Booking.id == booking_id, Booking.status == expected)
            .values(status=new, updated_at=now, updated_by=str(actor))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            current = self.session.scalar(
                select(Booking.status).where(Booking.id == booking_id)
            )
            if current is None:
                raise NotFound("Booking", booking_id)
            raise InvalidTransition(booking_id, current, new)
        return self.get(booking_id)

    def record(self, action, booking_id, actor, details=None):
        entry = AuditLog(
            actor=str(actor),
            action=action,
            entity_type="Booking",
            entity_id=booking_id,
            details=details,
        )
        self.session.add(entry)
        return entry
