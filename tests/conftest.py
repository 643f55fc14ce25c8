"""
Shared pytest fixtures for the Fleet Booking tests.
Uses an in-memory SQLite database so tests never touch real data, and a
frozen clock so date-driven transitions are deterministic.
"""

import pytest
from datetime import datetime

from app import create_app
from clock import FrozenClock
from models import db as _db, Booking, BookingPurpose, BookingStatus, Driver, User, Vehicle

# "Day 1, 08:00" – every test starts here
NOW = datetime(2030, 3, 1, 8, 0)

DETAILS = {
    "purpose": "Official",
    "pickup_location": "Head Office",
    "dropoff_location": "Field Station",
    "notes": "",
}


def at(day, hour, minute=0):
    """A naive-UTC timestamp in March 2030 (day 1 is 'today')."""
    return datetime(2030, 3, day, hour, minute)


@pytest.fixture(scope="session")
def clock():
    return FrozenClock(NOW)


@pytest.fixture(scope="session")
def app(clock):
    """Create the Flask application with a test config."""
    return create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "MAIL_ENABLED": False,
            "BOOKING_SCHEDULER_ENABLED": False,
            "BOOKING_MAX_PENDING": 3,
        },
        clock=clock,
    )


@pytest.fixture(autouse=True)
def app_ctx(app, clock):
    """Fresh tables, a reset clock and a pushed app context for every test."""
    clock.set(NOW)
    with app.app_context():
        _db.create_all()
        yield
        _db.session.remove()
        _db.drop_all()


@pytest.fixture()
def engine(app):
    return app.extensions["booking_engine"]


@pytest.fixture()
def db_session():
    return _db.session


# ── Helper: Create people & vehicles ────────────────────────────────────────


def _add(obj):
    _db.session.add(obj)
    _db.session.commit()
    return obj


@pytest.fixture()
def requester():
    return _add(User(staff_id="S-001", name="Test Requester", email="req@test.org", role="staff"))


@pytest.fixture()
def other_requester():
    return _add(User(staff_id="S-002", name="Other Requester", email="other@test.org", role="staff"))


@pytest.fixture()
def admin():
    return _add(User(staff_id="A-001", name="Test Admin", email="admin@test.org", role="admin"))


@pytest.fixture()
def driver():
    return _add(Driver(name="Test Driver", license_number="DL-0001", phone="0700000000"))


@pytest.fixture()
def vehicle(driver):
    return _add(
        Vehicle(
            name="Land Cruiser",
            license_plate="KAA 001A",
            vehicle_type="SUV",
            status="available",
            driver_id=driver.id,
        )
    )


@pytest.fixture()
def second_vehicle():
    return _add(Vehicle(name="Hilux", license_plate="KBB 002B", vehicle_type="Pickup"))


@pytest.fixture()
def maintenance_vehicle():
    return _add(
        Vehicle(name="Patrol", license_plate="KCC 003C", vehicle_type="SUV", status="maintenance")
    )


# ── Helper: Bookings ─────────────────────────────────────────────────────────


def make_booking(vehicle, requester, start, end, status=BookingStatus.PENDING):
    """Insert a booking directly, bypassing admission control."""
    return _add(
        Booking(
            vehicle_id=vehicle.id,
            requester_id=requester.id,
            start_time=start,
            end_time=end,
            purpose=BookingPurpose.FIELD,
            pickup_location="X",
            dropoff_location="Y",
            status=status,
            updated_by="fixture",
        )
    )


def submit(engine, requester, vehicle, start, end, **overrides):
    """Submit a booking request through the engine with default details."""
    details = dict(DETAILS, **overrides)
    return engine.submit_request(requester.id, vehicle.id, start, end, details)
