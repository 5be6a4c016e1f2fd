"""Wall-clock helpers for the single business timezone.

Every datetime stored in the database is naive and expressed in
``config.BUSINESS_TIMEZONE``. Aware datetimes only appear at the edges
(Google Calendar payloads).
"""

from datetime import datetime
from zoneinfo import ZoneInfo

from bookingbot.config import config


def business_tz() -> ZoneInfo:
    return ZoneInfo(config.BUSINESS_TIMEZONE)


def now_local() -> datetime:
    """Current wall-clock time in the business timezone (naive)."""
    return datetime.now(business_tz()).replace(tzinfo=None, microsecond=0)


def to_local(value: datetime) -> datetime:
    """Normalize any datetime to a naive business-local datetime."""
    if value.tzinfo is None:
        return value
    return value.astimezone(business_tz()).replace(tzinfo=None)


def parse_iso(value: str) -> datetime:
    """Parse an ISO-8601 timestamp (``Z`` suffix accepted) to naive local time."""
    s = value.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    return to_local(datetime.fromisoformat(s))
