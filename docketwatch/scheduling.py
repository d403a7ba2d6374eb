"""
Delivery scheduling in the operational timezone

``compute_scheduled_for`` turns a digest type and the current instant into
the concrete UTC instant the notification becomes due. Wall-clock targets
(daily send hour, weekly weekday/hour) are resolved in the configured
timezone with pytz so DST transitions land on the intended local hour.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Union

import pytz

from docketwatch.models import DigestType

DEFAULT_TIMEZONE = "America/New_York"


def _zone(tz: Union[str, pytz.BaseTzInfo]) -> pytz.BaseTzInfo:
    return pytz.timezone(tz) if isinstance(tz, str) else tz


def _require_aware(now: datetime) -> datetime:
    if now.tzinfo is None:
        raise ValueError("now must be timezone-aware")
    return now


def _at_local(zone: pytz.BaseTzInfo, day: date, hour: int) -> datetime:
    """Localize ``day`` at ``hour``:00 in ``zone`` and return it in UTC."""
    naive = datetime(day.year, day.month, day.day, hour, 0, 0)
    return zone.localize(naive).astimezone(timezone.utc)


def next_daily_send(
    now: datetime, tz: Union[str, pytz.BaseTzInfo] = DEFAULT_TIMEZONE, hour: int = 13
) -> datetime:
    """Today's send hour, or tomorrow's when the hour has already started."""
    zone = _zone(tz)
    local_now = _require_aware(now).astimezone(zone)
    day = local_now.date()
    if local_now.hour >= hour:
        day += timedelta(days=1)
    return _at_local(zone, day, hour)


def next_weekly_send(
    now: datetime,
    tz: Union[str, pytz.BaseTzInfo] = DEFAULT_TIMEZONE,
    weekday: int = 0,
    hour: int = 9,
) -> datetime:
    """The next ``weekday`` (0 = Monday) at ``hour``:00 strictly after ``now``."""
    zone = _zone(tz)
    local_now = _require_aware(now).astimezone(zone)
    days_ahead = (weekday - local_now.weekday()) % 7
    candidate = _at_local(zone, local_now.date() + timedelta(days=days_ahead), hour)
    if candidate <= now:
        candidate = _at_local(zone, local_now.date() + timedelta(days=days_ahead + 7), hour)
    return candidate


def compute_scheduled_for(
    digest_type: DigestType,
    now: datetime,
    tz: Union[str, pytz.BaseTzInfo] = DEFAULT_TIMEZONE,
    daily_hour: int = 13,
    weekly_weekday: int = 0,
    weekly_hour: int = 9,
) -> datetime:
    """Compute when a queued notification becomes due, as a UTC instant.

    Args:
        digest_type: Delivery cadence
        now: Current instant (must be timezone-aware)
        tz: Operational timezone name or pytz zone
        daily_hour: Local hour of the daily send
        weekly_weekday: Weekday of the weekly send (0 = Monday)
        weekly_hour: Local hour of the weekly send

    Returns:
        Aware UTC datetime
    """
    now = _require_aware(now)
    if digest_type == DigestType.DAILY:
        return next_daily_send(now, tz, daily_hour)
    if digest_type == DigestType.WEEKLY:
        return next_weekly_send(now, tz, weekly_weekday, weekly_hour)
    # immediate and seed digests are due right away
    return now.astimezone(timezone.utc)


def operational_date(now: datetime, tz: Union[str, pytz.BaseTzInfo] = DEFAULT_TIMEZONE) -> str:
    """The local calendar date (``YYYY-MM-DD``) used for the daily deluge reset."""
    return _require_aware(now).astimezone(_zone(tz)).date().isoformat()
