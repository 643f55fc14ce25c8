"""
Tests for application configuration and wiring.
"""

import logging

from flask import Flask

from app import configure_logging, create_app, get_engine, load_config
from lifecycle import BookingEngine
from resources import FleetStatusListener, MailListener


class TestLoadConfig:
    def test_defaults(self, monkeypatch):
        for name in (
            "DATABASE_URL",
            "BOOKING_MAX_PENDING",
            "BOOKING_SWEEP_INTERVAL",
            "BOOKING_SCHEDULER_ENABLED",
            "MAIL_ENABLED",
            "LOG_LEVEL",
        ):
            monkeypatch.delenv(name, raising=False)
        app = Flask(__name__)
        load_config(app)
        assert app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///")
        assert app.config["SQLALCHEMY_DATABASE_URI"].endswith("fleet.db")
        assert app.config["BOOKING_MAX_PENDING"] == 3
        assert app.config["BOOKING_SWEEP_INTERVAL"] == 60
        assert app.config["BOOKING_SCHEDULER_ENABLED"] is False
        assert app.config["MAIL_ENABLED"] is False
        assert app.config["LOG_LEVEL"] == "INFO"

    def test_postgres_url_is_rewritten(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgres://fleet:secret@db/fleet")
        app = Flask(__name__)
        load_config(app)
        assert app.config["SQLALCHEMY_DATABASE_URI"] == "postgresql://fleet:secret@db/fleet"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("BOOKING_MAX_PENDING", "5")
        monkeypatch.setenv("BOOKING_SWEEP_INTERVAL", "15")
        monkeypatch.setenv("BOOKING_SCHEDULER_ENABLED", "1")
        monkeypatch.setenv("MAIL_ENABLED", "1")
        monkeypatch.setenv("LOG_LEVEL", "debug")
        app = Flask(__name__)
        load_config(app)
        assert app.config["BOOKING_MAX_PENDING"] == 5
        assert app.config["BOOKING_SWEEP_INTERVAL"] == 15
        assert app.config["BOOKING_SCHEDULER_ENABLED"] is True
        assert app.config["MAIL_ENABLED"] is True
        assert app.config["LOG_LEVEL"] == "DEBUG"

    def test_unknown_log_level_falls_back_to_info(self):
        app = Flask(__name__)
        app.config["LOG_LEVEL"] = "CHATTY"
        configure_logging(app)
        assert app.logger.level == logging.INFO


class TestCreateApp:
    def test_engine_wiring(self, app, clock):
        engine = app.extensions["booking_engine"]
        assert isinstance(engine, BookingEngine)
        assert engine.clock is clock
        assert engine.max_pending == 3
        assert [type(listener) for listener in engine.listeners] == [
            FleetStatusListener,
            MailListener,
        ]

    def test_get_engine_uses_current_app(self, app):
        assert get_engine() is app.extensions["booking_engine"]

    def test_limit_comes_from_config(self):
        other = create_app(
            {
                "TESTING": True,
                "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
                "BOOKING_SCHEDULER_ENABLED": False,
                "BOOKING_MAX_PENDING": 5,
            }
        )
        assert other.extensions["booking_engine"].max_pending == 5
        assert other.extensions["booking_scheduler"].running is False
