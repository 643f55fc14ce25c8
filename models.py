"""
Fleet Booking – Vehicle Booking Core
SQLAlchemy models for Booking, Vehicle, Driver, User and AuditLog.
"""

import enum

from flask_sqlalchemy import SQLAlchemy

from clock import utcnow

db = SQLAlchemy()


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------
class BookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"

    @property
    def is_terminal(self):
        return self in TERMINAL_STATUSES


class BookingPurpose(str, enum.Enum):
    OFFICIAL = "Official"
    FIELD = "Field"
    RESEARCH = "Research"
    WORKSHOP = "Workshop"
    OTHER = "Other"


# Statuses that reserve a slice of the vehicle's timeline
BLOCKING_STATUSES = frozenset(
    {BookingStatus.PENDING, BookingStatus.APPROVED, BookingStatus.IN_PROGRESS}
)
# Checked again at approval time
COMMITTED_STATUSES = frozenset({BookingStatus.APPROVED, BookingStatus.IN_PROGRESS})
TERMINAL_STATUSES = frozenset(
    {BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.REJECTED}
)


# ---------------------------------------------------------------------------
# User  (read model of the identity provider; roles are enforced upstream)
# ---------------------------------------------------------------------------
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    staff_id = db.Column(db.String(40), unique=True, nullable=False)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    role = db.Column(
        db.String(20), nullable=False, default="staff"
    )  # admin | staff
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    bookings = db.relationship("Booking", backref="requester", lazy=True)

    @property
    def is_admin(self):
        return self.role == "admin"

    def __repr__(self):
        return f"<User {self.staff_id} ({self.role})>"


# ---------------------------------------------------------------------------
# Driver
# ---------------------------------------------------------------------------
class Driver(db.Model):
    __tablename__ = "drivers"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    license_number = db.Column(db.String(40), unique=True, nullable=False)
    phone = db.Column(db.String(30), nullable=True)
    status = db.Column(
        db.String(20), nullable=False, default="off_duty"
    )  # on_duty | off_duty | on_leave

    vehicles = db.relationship("Vehicle", backref="driver", lazy=True)

    def __repr__(self):
        return f"<Driver {self.name} ({self.status})>"


# ---------------------------------------------------------------------------
# Vehicle
# ---------------------------------------------------------------------------
class Vehicle(db.Model):
    __tablename__ = "vehicles"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(80), nullable=False)
    license_plate = db.Column(db.String(20), unique=True, nullable=False)
    vehicle_type = db.Column(db.String(50), nullable=True)
    status = db.Column(
        db.String(20), nullable=False, default="available"
    )  # available | in_use | maintenance
    driver_id = db.Column(db.Integer, db.ForeignKey("drivers.id"), nullable=True)

    bookings = db.relationship("Booking", backref="vehicle", lazy=True)

    @property
    def is_bookable(self):
        return self.status == "available"

    def __repr__(self):
        return f"<Vehicle {self.license_plate}>"


# ---------------------------------------------------------------------------
# Booking
# ---------------------------------------------------------------------------
class Booking(db.Model):
    __tablename__ = "bookings"
    __table_args__ = (
        db.CheckConstraint("start_time < end_time", name="ck_booking_window"),
        db.Index("ix_booking_vehicle_start", "vehicle_id", "start_time"),
        db.Index("ix_booking_requester_status", "requester_id", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    vehicle_id = db.Column(
        db.Integer, db.ForeignKey("vehicles.id"), nullable=False
    )
    requester_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    start_time = db.Column(db.DateTime, nullable=False)
    end_time = db.Column(db.DateTime, nullable=False)

    purpose = db.Column(
        db.Enum(
            BookingPurpose,
            native_enum=False,
            length=20,
            validate_strings=True,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
    )
    pickup_location = db.Column(db.String(200), nullable=False)
    dropoff_location = db.Column(db.String(200), nullable=False)
    notes = db.Column(db.Text, nullable=True)

    status = db.Column(
        db.Enum(BookingStatus, native_enum=False, length=20, validate_strings=True),
        nullable=False,
        default=BookingStatus.PENDING,
        index=True,
    )

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_by = db.Column(db.String(80), nullable=True)

    def __repr__(self):
        return f"<Booking {self.id} – vehicle {self.vehicle_id} {self.status.value}>"


# ---------------------------------------------------------------------------
# AuditLog  (tracks who moved which booking and when)
# ---------------------------------------------------------------------------
class AuditLog(db.Model):
    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)
    actor = db.Column(db.String(80), nullable=False)
    action = db.Column(
        db.String(20), nullable=False
    )  # create | approve | reject | cancel | edit | start | complete
    entity_type = db.Column(db.String(50), nullable=False)  # Booking
    entity_id = db.Column(db.Integer, nullable=True)
    details = db.Column(db.Text, nullable=True)
    timestamp = db.Column(db.DateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return f"<AuditLog {self.id} – {self.action} {self.entity_type} #{self.entity_id} by {self.actor}>"
