from __future__ import annotations

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from flask import current_app, has_app_context


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (how timestamps are stored)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def business_today(tz_name: str | None = None) -> date:
    """
    Calendar date used to select the cash session.

    The timezone comes from BUSINESS_TIMEZONE unless given explicitly, so a
    store closing at 23:30 local time does not book into tomorrow's session.
    """
    if tz_name is None:
        tz_name = current_app.config.get("BUSINESS_TIMEZONE", "UTC") if has_app_context() else "UTC"
    return datetime.now(ZoneInfo(tz_name)).date()


def parse_iso_datetime(value: str | None) -> datetime | None:
    """
    ISO-8601 text to a naive UTC datetime; None or blank gives None.

    Offsets (including a trailing Z) are applied before the tzinfo is dropped;
    text without an offset is taken as UTC already.
    """
    if value is None or not value.strip():
        return None

    text = value.strip()
    if text[-1] in "zZ":
        text = f"{text[:-1]}+00:00"

    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.replace(tzinfo=None)


def parse_iso_date(value: str | None) -> date | None:
    """Parse "YYYY-MM-DD"; None / "" -> None."""
    if value is None or not value.strip():
        return None
    return date.fromisoformat(value.strip())


def to_utc_z(dt: datetime | None) -> str | None:
    """JSON form of a stored timestamp: whole seconds, UTC, trailing Z."""
    if dt is None:
        return None
    aware = dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)
    return aware.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
