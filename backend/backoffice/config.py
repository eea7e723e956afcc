# backend/backoffice/config.py
from __future__ import annotations
import os


CASH_POLICY_AUTO_CREATE = "auto_create"
CASH_POLICY_REQUIRE_OPEN = "require_open"


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/backoffice.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///backoffice.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # What a sale / movement / refund does when the day has no open session:
    # - auto_create: create the day's session (open, opening 0) if none exists;
    #   an existing closed session still rejects.
    # - require_open: reject unless the day's session is open.
    CASH_SESSION_POLICY = os.environ.get("CASH_SESSION_POLICY", CASH_POLICY_AUTO_CREATE)

    # Flat tax rate applied to credit note lines, in basis points (2100 = 21%)
    DEFAULT_TAX_RATE_BPS = int(os.environ.get("DEFAULT_TAX_RATE_BPS", "2100"))

    # Calendar used to pick "today's" cash session
    BUSINESS_TIMEZONE = os.environ.get("BUSINESS_TIMEZONE", "UTC")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
