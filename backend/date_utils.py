"""
Date utilities for timezone-aware reporting.

Transactions are stored with UTC timestamps. Reports and dashboards group and
filter them by calendar date in the pharmacy's configured timezone, so a sale
made just after local midnight lands on the right day.
"""
from datetime import datetime, date, timedelta
from typing import Optional
import pytz

from config import settings


class DatePreset:
    TODAY = "TODAY"
    WEEK = "WEEK"
    MONTH = "MONTH"
    LAST_MONTH = "LAST_MONTH"
    YTD = "YTD"

    ALL = (TODAY, WEEK, MONTH, LAST_MONTH, YTD)


def get_app_timezone(timezone_name: Optional[str] = None):
    """
    Get pytz timezone object for the application.

    Falls back to UTC if the configured name is unknown.
    """
    try:
        return pytz.timezone(timezone_name or settings.APP_TIMEZONE)
    except pytz.exceptions.UnknownTimeZoneError:
        return pytz.UTC


def get_local_today(timezone_name: Optional[str] = None) -> date:
    """Current date in the application's timezone."""
    tz = get_app_timezone(timezone_name)
    utc_now = datetime.utcnow().replace(tzinfo=pytz.UTC)
    return utc_now.astimezone(tz).date()


def utc_to_local_datetime(utc_datetime: datetime, timezone_name: Optional[str] = None) -> datetime:
    """Convert a UTC datetime (naive or aware) to an aware datetime in the application's timezone."""
    tz = get_app_timezone(timezone_name)
    if utc_datetime.tzinfo is None:
        utc_datetime = utc_datetime.replace(tzinfo=pytz.UTC)
    return utc_datetime.astimezone(tz)


def utc_to_local_date(utc_datetime: datetime, timezone_name: Optional[str] = None) -> date:
    """
    Convert a UTC datetime (naive or aware) to a calendar date in the
    application's timezone.
    """
    return utc_to_local_datetime(utc_datetime, timezone_name).date()


def preset_date_range(preset: str, today: Optional[date] = None) -> tuple[date, date]:
    """
    Resolve a named preset to an inclusive (start, end) date range.

    Examples (today = 2025-03-15):
        TODAY      -> 2025-03-15 .. 2025-03-15
        WEEK       -> 2025-03-09 .. 2025-03-15  (last 7 days)
        MONTH      -> 2025-03-01 .. 2025-03-15
        LAST_MONTH -> 2025-02-01 .. 2025-02-28
        YTD        -> 2025-01-01 .. 2025-03-15
    """
    today = today or get_local_today()

    if preset == DatePreset.TODAY:
        return today, today
    if preset == DatePreset.WEEK:
        return today - timedelta(days=6), today
    if preset == DatePreset.MONTH:
        return today.replace(day=1), today
    if preset == DatePreset.LAST_MONTH:
        end = today.replace(day=1) - timedelta(days=1)
        return end.replace(day=1), end
    if preset == DatePreset.YTD:
        return today.replace(month=1, day=1), today

    raise ValueError(f"Unknown date preset: {preset}")


def utc_range_for_dates(start: date, end: date, timezone_name: Optional[str] = None) -> tuple[datetime, datetime]:
    """
    Naive UTC datetimes bounding the local calendar dates start..end (inclusive),
    for use in database queries.
    """
    tz = get_app_timezone(timezone_name)
    local_start = tz.localize(datetime.combine(start, datetime.min.time()))
    local_end = tz.localize(datetime.combine(end + timedelta(days=1), datetime.min.time())) - timedelta(microseconds=1)
    start_utc = local_start.astimezone(pytz.UTC).replace(tzinfo=None)
    end_utc = local_end.astimezone(pytz.UTC).replace(tzinfo=None)
    return start_utc, end_utc
