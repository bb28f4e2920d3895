"""Datetime parsing: lax legacy input -> timezone-aware output."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

import pendulum

logger = logging.getLogger(__name__)

# Date format requested from the extraction tool.
LEGACY_EXPORT_FORMAT = "%Y-%m-%d %H:%M:%S"


def parse_datetime(value: str | datetime, default_tz: str = "UTC") -> datetime:
    """Parse a lax datetime string into a timezone-aware datetime.

    Accepts various formats:
    - 2024-03-05 10:11:12
    - 2024-03-05 10:11
    - 2024-03-05
    - ISO 8601 variants with T separator

    Missing timezone defaults to default_tz.
    Missing time components default to zeros.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            tz = pendulum.timezone(default_tz)
            value = value.replace(tzinfo=tz)  # type: ignore[arg-type]
        return value

    value_str = value.strip()

    parsed = pendulum.parse(value_str, tz=default_tz, strict=False)
    if not isinstance(parsed, pendulum.DateTime):
        # pendulum.parse returns Date for date-only strings
        parsed = pendulum.datetime(
            parsed.year, parsed.month, parsed.day, tz=default_tz  # type: ignore[union-attr]
        )
    return parsed  # type: ignore[return-value]


def parse_legacy_datetime(value: str | None) -> datetime | None:
    """Parse a date exported from a legacy table; blank or malformed values give None."""
    if value is None or not value.strip():
        return None
    try:
        return parse_datetime(value)
    except ValueError as exc:
        logger.debug("Unparseable legacy date %r: %s", value, exc)
        return None


def from_timestamp(timestamp: float) -> datetime:
    """Convert a POSIX timestamp (e.g. a file mtime) to a UTC datetime."""
    return datetime.fromtimestamp(timestamp, timezone.utc)


def now_utc() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(timezone.utc)

