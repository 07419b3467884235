"""
Datetime utilities for consistent timezone handling across the application.

All business timestamps (preview expiry, payment dates, lab milestones) are
timezone-aware datetimes in the clinic timezone, configured through
CLINIC_UTC_OFFSET_MINUTES (UTC+5:30 by default).
"""

import logging
from datetime import datetime, timezone, timedelta, date
from typing import Optional

from core.config import CLINIC_UTC_OFFSET_MINUTES

logger = logging.getLogger(__name__)

CLINIC_TZ = timezone(timedelta(minutes=CLINIC_UTC_OFFSET_MINUTES))


def clinic_now() -> datetime:
    """
    Get the current datetime in the clinic timezone.

    Returns:
        Current timezone-aware datetime
    """
    return datetime.now(CLINIC_TZ)


def ensure_clinic_tz(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure a datetime is timezone-aware in the clinic timezone.

    Naive values (e.g. read back from SQLite) are assumed to already be clinic
    local time.

    Args:
        dt: Datetime to normalize

    Returns:
        Timezone-aware datetime in the clinic timezone, or None if input is None
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=CLINIC_TZ)
    return dt.astimezone(CLINIC_TZ)


def epoch_millis(dt: Optional[datetime] = None) -> int:
    """Milliseconds since the Unix epoch for ``dt`` (defaults to now)."""
    moment = dt or clinic_now()
    return int(moment.timestamp() * 1000)


def compact_date(day: date) -> str:
    """Format a date as YYYYMMDD for document numbers."""
    return day.strftime("%Y%m%d")


def start_of_day(day: date) -> datetime:
    """Clinic-local midnight at the start of ``day``."""
    return datetime(day.year, day.month, day.day, tzinfo=CLINIC_TZ)


def end_of_day(day: date) -> datetime:
    """Last representable instant of ``day`` in clinic time."""
    return start_of_day(day) + timedelta(days=1) - timedelta(microseconds=1)
