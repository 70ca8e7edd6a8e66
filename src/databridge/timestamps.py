"""Timestamp helpers for cache freshness checks.

All timestamps are exchanged as ISO 8601 strings. Naive timestamps are
interpreted as UTC.
"""

from datetime import datetime, timezone
from typing import Optional


def now_iso() -> str:
    """Return the current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


def parse_iso(value: str) -> datetime:
    """Parse an ISO 8601 string into a timezone-aware datetime.

    Raises:
        ValueError: If value is not a valid ISO 8601 string
    """
    dt = datetime.fromisoformat(value)

    # Handle timezone-naive datetimes
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def elapsed_seconds(start: str, end: Optional[str] = None) -> float:
    """Seconds elapsed between two ISO 8601 timestamps.

    Args:
        start: Earlier timestamp
        end: Later timestamp (defaults to now)

    Returns:
        Elapsed seconds; negative if start is after end
    """
    end_dt = parse_iso(end) if end is not None else datetime.now(timezone.utc)
    return (end_dt - parse_iso(start)).total_seconds()


def is_ttl_valid(written_at: str, ttl_seconds: int, now: Optional[str] = None) -> bool:
    """Check if a cache entry is still fresh.

    Args:
        written_at: ISO format timestamp of the cache write
        ttl_seconds: Time-to-live in seconds; zero means never reuse
        now: Reference timestamp (defaults to the current time)

    Returns:
        True if the entry can be reused, False if stale
    """
    if ttl_seconds <= 0:
        return False
    return elapsed_seconds(written_at, now) <= ttl_seconds


def get_ttl_remaining(
    written_at: str, ttl_seconds: int, now: Optional[str] = None
) -> int:
    """Get remaining seconds until a cache entry goes stale.

    Args:
        written_at: ISO format timestamp of the cache write
        ttl_seconds: Time-to-live in seconds
        now: Reference timestamp (defaults to the current time)

    Returns:
        Whole seconds remaining, never negative
    """
    remaining = ttl_seconds - elapsed_seconds(written_at, now)
    return max(0, int(remaining))
