# backend/retailops/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/retailops.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///retailops.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Percent applied to cart subtotals when the caller does not send a rate
    DEFAULT_VAT_RATE = float(os.environ.get("DEFAULT_VAT_RATE", "5"))

    # Keystrokes further apart than this are not part of the same scan
    SCANNER_IDLE_TIMEOUT_MS = int(os.environ.get("SCANNER_IDLE_TIMEOUT_MS", "100"))

    # Synthetic location given to a unit while it travels between outlets
    TRANSIT_LOCATION_PREFIX = os.environ.get("TRANSIT_LOCATION_PREFIX", "In Transit to ")


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    LOG_LEVEL = "WARNING"
