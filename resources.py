"""
Fleet Booking – one-way collaborators told about booking transitions.

Listeners run after the transition has been committed.  They are best effort:
a failure here is logged and never undoes the booking change.
"""

import logging

from flask import current_app
from flask_mail import Message
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from models import BookingStatus, User, Vehicle, db

logger = logging.getLogger(__name__)


# ── Vehicle / driver availability ────────────────────────────────────────────


class FleetStatusListener:
    """
    Keep vehicle and driver status in step with bookings:
    entering IN_PROGRESS marks the vehicle ``in_use`` and its driver
    ``on_duty``; leaving IN_PROGRESS puts them back to ``available`` and
    ``off_duty``.  Vehicles under maintenance and drivers on leave are left
    alone.
    """

    def __init__(self, session=None):
        self._session = session

    @property
    def session(self):
        return self._session if self._session is not None else db.session

    def booking_changed(self, booking, old_status, new_status):
        if new_status == BookingStatus.IN_PROGRESS:
            self._mark(booking.vehicle_id, "available", "in_use", "off_duty", "on_duty")
        elif old_status == BookingStatus.IN_PROGRESS:
            self._mark(booking.vehicle_id, "in_use", "available", "on_duty", "off_duty")

    def _mark(self, vehicle_id, vehicle_from, vehicle_to, driver_from, driver_to):
        try:
            vehicle = self.session.execute(
                select(Vehicle).where(Vehicle.id == vehicle_id)
            ).scalar_one_or_none()
            if vehicle is None:
                return
            if vehicle.status == vehicle_from:
                vehicle.status = vehicle_to
            driver = vehicle.driver
            if driver is not None and driver.status == driver_from:
                driver.status = driver_to
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        logger.info(
            f"Vehicle {vehicle.license_plate} now {vehicle.status}"
            + (f", driver {driver.name} {driver.status}" if driver is not None else "")
        )


# ── Email ────────────────────────────────────────────────────────────────────


def send_notification(mail, subject, recipients, body):
    """Send an email notification (only if MAIL_ENABLED is true)."""
    if not current_app.config.get("MAIL_ENABLED"):
        return False  # silently skip
    recipients = [r for r in recipients if r]
    if not recipients:
        return False
    try:
        msg = Message(subject=subject, recipients=recipients, body=body)
        mail.send(msg)
    except Exception as e:
        logger.error(f"Failed to send email: {e}")
        return False
    return True


def _window(booking):
    return (
        f"From: {booking.start_time.strftime('%d %b %Y %H:%M')}\n"
        f"To: {booking.end_time.strftime('%d %b %Y %H:%M')}\n"
    )


class MailListener:
    """Email the requester (and admins, for new requests) about their booking."""

    SIGNATURE = "– Fleet Booking"

    def __init__(self, mail):
        self.mail = mail

    def booking_changed(self, booking, old_status, new_status):
        if not current_app.config.get("MAIL_ENABLED"):
            return
        if old_status is None and new_status == BookingStatus.PENDING:
            self._request_received(booking)
        elif new_status in (
            BookingStatus.APPROVED,
            BookingStatus.REJECTED,
            BookingStatus.CANCELLED,
        ):
            self._decision(booking, new_status)

    def _request_received(self, booking):
        vehicle = booking.vehicle
        admins = db.session.execute(
            select(User).where(User.role == "admin")
        ).scalars()
        send_notification(
            self.mail,
            subject=f"New Booking Request #{booking.id} – Fleet Booking",
            recipients=[a.email for a in admins],
            body=(
                f"Hello Admin,\n\n"
                f"A new vehicle booking request has been submitted.\n\n"
                f"Booking #: {booking.id}\n"
                f"Vehicle: {vehicle.name} ({vehicle.license_plate})\n"
                f"Route: {booking.pickup_location} → {booking.dropoff_location}\n"
                f"Purpose: {booking.purpose.value}\n"
                f"{_window(booking)}\n"
                f"Please review and approve or reject this request.\n\n"
                f"{self.SIGNATURE}"
            ),
        )
        requester = booking.requester
        if requester is not None:
            send_notification(
                self.mail,
                subject=f"Booking Request #{booking.id} Received – Fleet Booking",
                recipients=[requester.email],
                body=(
                    f"Hello {requester.name},\n\n"
                    f"Your vehicle booking request has been submitted successfully.\n\n"
                    f"Booking #: {booking.id}\n"
                    f"Vehicle: {vehicle.name} ({vehicle.license_plate})\n"
                    f"{_window(booking)}\n"
                    f"Status: PENDING – awaiting admin approval.\n\n"
                    f"{self.SIGNATURE}"
                ),
            )

    def _decision(self, booking, new_status):
        requester = booking.requester
        if requester is None:
            return
        label = new_status.value.lower()
        send_notification(
            self.mail,
            subject=f"Booking #{booking.id} {label.capitalize()} – Fleet Booking",
            recipients=[requester.email],
            body=(
                f"Hello {requester.name},\n\n"
                f"Your vehicle booking #{booking.id} has been {label}.\n\n"
                f"Vehicle: {booking.vehicle.name} ({booking.vehicle.license_plate})\n"
                f"Route: {booking.pickup_location} → {booking.dropoff_location}\n"
                f"{_window(booking)}\n"
                f"{self.SIGNATURE}"
            ),
        )
