"""Datetime helpers. Everything the engine stores or compares is UTC."""

from __future__ import annotations

from datetime import date, datetime, timezone

import pendulum


def utc_now() -> datetime:
    return pendulum.now("UTC")


def today_utc() -> date:
    return utc_now().date()


def day_window(day: date) -> tuple[datetime, datetime]:
    """Return 00:00:00 and 23:59:59 UTC of ``day``."""
    start = pendulum.datetime(day.year, day.month, day.day, 0, 0, 0, tz="UTC")
    end = pendulum.datetime(day.year, day.month, day.day, 23, 59, 59, tz="UTC")
    return start, end


def parse_instant(value: str | datetime) -> datetime:
    if isinstance(value, datetime):
        return as_utc(value)
    parsed = pendulum.parse(value, tz="UTC")
    if not isinstance(parsed, datetime):
        raise ValueError(f"Not an instant: {value!r}")
    return parsed.in_timezone("UTC")


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive values read back from the database."""
    if value is None:
        return None
    if value.tzinfo is None:
        return pendulum.instance(value.replace(tzinfo=timezone.utc))
    return pendulum.instance(value).in_timezone("UTC")


def to_db(value: datetime | None) -> datetime | None:
    """Naive UTC for storage."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return datetime(
        *value.astimezone(timezone.utc).timetuple()[:6],
        microsecond=value.microsecond,
    )


def format_day(value: date) -> str:
    return value.strftime("%Y-%m-%d")
