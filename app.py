"""
Fleet Booking – Vehicle Booking Lifecycle Core
==============================================
Flask application host: configuration, database, mail, logging, and the
booking engine / scheduler wiring.  No pages or routes live here; the
presentation layer calls the engine returned by ``get_engine()``.

How to run the scheduler
------------------------
1.  pip install -e .
2.  python app.py          # sweeps bookings every BOOKING_SWEEP_INTERVAL seconds

Configuration is read from the environment (a ``.env`` file is honoured):

    DATABASE_URL               sqlite:///fleet.db
    BOOKING_MAX_PENDING        3
    BOOKING_SWEEP_INTERVAL     60      (seconds)
    BOOKING_SCHEDULER_ENABLED  0
    LOG_LEVEL                  INFO
    MAIL_ENABLED               0       (plus MAIL_SERVER, MAIL_PORT, ...)
"""

import logging
import os

from dotenv import load_dotenv
from flask import Flask, current_app
from flask_mail import Mail

from clock import SystemClock
from lifecycle import BookingEngine
from models import db
from repository import SQLAlchemyBookingRepository
from resources import FleetStatusListener, MailListener
from scheduler import BookingScheduler

load_dotenv()  # load .env file if present

mail = Mail()


def _env_flag(name, default="0"):
    return os.environ.get(name, default) == "1"


def load_config(app):
    basedir = os.path.abspath(os.path.dirname(__file__))
    database_url = os.environ.get(
        "DATABASE_URL", "sqlite:///" + os.path.join(basedir, "fleet.db")
    )
    # Heroku / PythonAnywhere may provide postgres:// but SQLAlchemy 2.x needs postgresql://
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)
    app.config["SQLALCHEMY_DATABASE_URI"] = database_url
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False

    # ── Booking rules ────────────────────────────────────────────────────
    app.config["BOOKING_MAX_PENDING"] = int(os.environ.get("BOOKING_MAX_PENDING", 3))
    app.config["BOOKING_SWEEP_INTERVAL"] = int(os.environ.get("BOOKING_SWEEP_INTERVAL", 60))
    app.config["BOOKING_SCHEDULER_ENABLED"] = _env_flag("BOOKING_SCHEDULER_ENABLED")
    app.config["LOG_LEVEL"] = os.environ.get("LOG_LEVEL", "INFO").upper()

    # ── Mail config (disabled by default – set MAIL_ENABLED=1 env var to turn on)
    app.config["MAIL_ENABLED"] = _env_flag("MAIL_ENABLED")
    app.config["MAIL_SERVER"] = os.environ.get("MAIL_SERVER", "smtp.gmail.com")
    app.config["MAIL_PORT"] = int(os.environ.get("MAIL_PORT", 587))
    app.config["MAIL_USE_TLS"] = True
    app.config["MAIL_USERNAME"] = os.environ.get("MAIL_USERNAME", "")
    app.config["MAIL_PASSWORD"] = os.environ.get("MAIL_PASSWORD", "")
    app.config["MAIL_DEFAULT_SENDER"] = os.environ.get(
        "MAIL_DEFAULT_SENDER", "noreply@fleet-booking.org"
    )


def configure_logging(app):
    """Route module loggers and app.logger through one root handler."""
    level = logging.getLevelName(app.config["LOG_LEVEL"])
    if not isinstance(level, int):
        level = logging.INFO
    # Must run before app.logger is first touched so Flask skips its own handler
    logging.basicConfig(
        level=level,
        format="[%(asctime)s] %(levelname)s in %(module)s: %(message)s",
    )
    logging.getLogger().setLevel(level)
    app.logger.setLevel(level)


def create_app(test_config=None, clock=None):
    app = Flask(__name__)
    load_config(app)
    if test_config:
        app.config.update(test_config)

    configure_logging(app)
    db.init_app(app)
    mail.init_app(app)

    engine = BookingEngine(
        SQLAlchemyBookingRepository(),
        clock=clock or SystemClock(),
        listeners=[FleetStatusListener(), MailListener(mail)],
        max_pending=app.config["BOOKING_MAX_PENDING"],
    )
    app.extensions["booking_engine"] = engine

    scheduler = BookingScheduler(app, interval=app.config["BOOKING_SWEEP_INTERVAL"])
    app.extensions["booking_scheduler"] = scheduler

    # ── Create DB tables ─────────────────────────────────────────────────
    with app.app_context():
        db.create_all()

    if app.config["BOOKING_SCHEDULER_ENABLED"]:
        scheduler.start()

    return app


def get_engine():
    """The BookingEngine of the current app."""
    return current_app.extensions["booking_engine"]


# ── Run ──────────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    application = create_app()
    runner = application.extensions["booking_scheduler"]
    runner.start()
    application.logger.info("Booking scheduler running, press Ctrl+C to stop")
    try:
        runner.join()
    except KeyboardInterrupt:
        runner.stop()
