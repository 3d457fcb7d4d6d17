"""Timestamp conversion between Apple's epoch, Unix seconds and datetimes."""

import re
from datetime import datetime, timedelta, timezone

# Seconds between the Unix epoch and Apple's epoch (2001-01-01T00:00:00Z)
APPLE_EPOCH_OFFSET = 978307200
NANOSECONDS_PER_SECOND = 1_000_000_000


def apple_to_unix(apple_date: int) -> int:
    """Convert Apple nanoseconds to a Unix timestamp (seconds), flooring fractions."""
    return int(apple_date // NANOSECONDS_PER_SECOND) + APPLE_EPOCH_OFFSET


def unix_to_datetime(unix_timestamp: int) -> datetime:
    """Convert a Unix timestamp to a UTC-aware datetime."""
    return datetime.fromtimestamp(unix_timestamp, tz=timezone.utc)


def apple_to_datetime(apple_date: int) -> datetime:
    return unix_to_datetime(apple_to_unix(apple_date))


def datetime_to_unix(dt: datetime) -> int:
    """Convert a datetime to Unix seconds. Naive datetimes are taken as UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp())


def parse_date(value: str | None) -> datetime | None:
    """Parse a date filter into a UTC-aware datetime.

    Supports:
    - Relative: "2h", "7d", "1w", "3m", "1y"
    - Absolute: "2024-01-01", "2024-01-01T00:00:00"

    Raises ValueError for anything else.
    """
    if value is None:
        return None

    value = value.strip().lower()

    match = re.match(r"^(\d+)([hdwmy])$", value)
    if match:
        amount = int(match.group(1))
        unit = match.group(2)

        now = datetime.now(tz=timezone.utc)
        if unit == "h":
            return now - timedelta(hours=amount)
        elif unit == "d":
            return now - timedelta(days=amount)
        elif unit == "w":
            return now - timedelta(weeks=amount)
        elif unit == "m":
            return now - timedelta(days=amount * 30)  # Approximate
        return now - timedelta(days=amount * 365)  # Approximate

    # fromisoformat() only accepts a Z suffix from Python 3.11
    if value.endswith("z"):
        value = value[:-1] + "+00:00"

    try:
        if "t" in value:
            dt = datetime.fromisoformat(value.upper())
        else:
            dt = datetime.fromisoformat(value + "T00:00:00")
    except ValueError:
        raise ValueError(f"Invalid date format: {value} (expected YYYY-MM-DD or e.g. 7d)") from None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
