"""
Fleet Booking – time-driven booking transitions.

``sweep`` moves APPROVED bookings to IN_PROGRESS once they start and
IN_PROGRESS bookings to COMPLETED once they end.  ``BookingScheduler`` runs
it on a background thread every ``interval`` seconds.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime

from clock import as_naive_utc
from errors import InvalidTransition, NotFound, RepositoryUnavailable
from models import BLOCKING_STATUSES

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 60  # seconds


@dataclass
class SweepReport:
    now: datetime
    scanned: int = 0
    changed: list = field(default_factory=list)  # (booking_id, old_status, new_status)
    skipped: list = field(default_factory=list)  # booking ids moved by someone else
    failed: list = field(default_factory=list)  # (booking_id, error message)


def sweep(engine, now=None):
    """
    Apply every due time transition to the non-final bookings.

    A booking whose status changed underneath the sweep is skipped without
    error.  A store failure on one booking is logged and recorded, and the
    sweep carries on with the next one; a failure to list bookings at all is
    raised.  Bookings overdue on both ends catch up in one sweep.
    """
    now = as_naive_utc(now) if now is not None else engine.clock.now()
    report = SweepReport(now=now)

    try:
        bookings = engine.repository.with_status(*BLOCKING_STATUSES)
    except RepositoryUnavailable as e:
        logger.error(f"Booking sweep at {now:%Y-%m-%d %H:%M} could not list bookings: {e}")
        raise

    for booking in bookings:
        booking_id = booking.id
        report.scanned += 1
        current = booking
        while True:
            previous = current.status
            try:
                updated = engine.apply_time_transition(current, now)
            except (InvalidTransition, NotFound):
                logger.debug(f"Booking #{booking_id} changed during sweep, skipped")
                report.skipped.append(booking_id)
                break
            except RepositoryUnavailable as e:
                logger.error(f"Booking sweep failed on booking #{booking_id}: {e}")
                report.failed.append((booking_id, str(e)))
                break
            if updated is None:
                break
            report.changed.append((booking_id, previous, updated.status))
            current = updated

    if report.changed:
        logger.info(
            f"Booking sweep at {now:%Y-%m-%d %H:%M}: "
            f"{len(report.changed)} transition(s) over {report.scanned} booking(s)"
        )
    return report


class BookingScheduler:
    """Background thread that runs ``sweep`` inside the app context."""

    def __init__(self, app, interval=DEFAULT_INTERVAL):
        self.app = app
        self.interval = interval
        self._stop = threading.Event()
        self._thread = None

    @property
    def running(self):
        return self._thread is not None and self._thread.is_alive()

    def run_once(self, now=None):
        with self.app.app_context():
            return sweep(self.app.extensions["booking_engine"], now)

    def start(self):
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="booking-scheduler", daemon=True
        )
        self._thread.start()

    def join(self, timeout=None):
        if self._thread is not None:
            self._thread.join(timeout)

    def stop(self, timeout=None):
        """Signal the scheduler to stop and wait for the current sweep."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self):
        logger.info(f"Booking scheduler started (every {self.interval}s)")
        while not self._stop.is_set():
            try:
                self.run_once()
            except Exception as e:
                logger.error(f"Scheduled booking sweep error: {e}")
            self._stop.wait(self.interval)
        logger.info("Booking scheduler stopped")
