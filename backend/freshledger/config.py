# backend/freshledger/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: str = "False") -> bool:
    return os.environ.get(name, default).lower() in ("1", "true", "yes")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored next to the app by default
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///freshledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Ledger dates and day boundaries are computed in this zone
    BUSINESS_TIMEZONE = os.environ.get("BUSINESS_TIMEZONE", "UTC")

    # Expiry reconciliation scheduler
    EXPIRY_SWEEP_ENABLED = _env_flag("EXPIRY_SWEEP_ENABLED")
    EXPIRY_SWEEP_INTERVAL_MINUTES = int(os.environ.get("EXPIRY_SWEEP_INTERVAL_MINUTES", 60))
    EXPIRY_STATUS_INTERVAL_MINUTES = int(os.environ.get("EXPIRY_STATUS_INTERVAL_MINUTES", 10))

    DEFAULT_ORDER_TYPE = os.environ.get("DEFAULT_ORDER_TYPE", "dine-in")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
