"""Opening-hours evaluation in the restaurant's local time zone."""
import logging
from datetime import datetime, time, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from qrorder.models import OperatingHour, ScheduleException

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = 'America/Argentina/Buenos_Aires'


def _day_index(local_dt: datetime) -> int:
    """0=Sunday ... 6=Saturday (Python's weekday() starts on Monday)."""
    return (local_dt.weekday() + 1) % 7


def _within(current: time, open_time: time, close_time: time) -> bool:
    """Same-day range check; overnight ranges are handled by the caller."""
    if open_time == close_time:
        # open == close means open around the clock
        return True
    return open_time <= current < close_time


def local_now(restaurant, now: Optional[datetime] = None) -> datetime:
    """Return ``now`` expressed in the restaurant's time zone."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    try:
        tz = ZoneInfo(restaurant.timezone or DEFAULT_TIMEZONE)
    except ZoneInfoNotFoundError:
        logger.warning(f"[SCHEDULE] Unknown timezone '{restaurant.timezone}' for restaurant {restaurant.id}")
        tz = ZoneInfo(DEFAULT_TIMEZONE)
    return now.astimezone(tz)


def is_restaurant_open(session, restaurant, now: Optional[datetime] = None) -> bool:
    """
    Check whether the restaurant accepts orders at ``now``.

    Rules:
    - a schedule exception for today's local date overrides the weekly hours;
    - a restaurant with no weekly hours configured is always open;
    - ranges whose close time is earlier than the open time run past midnight.
    """
    local = local_now(restaurant, now)
    current = local.time().replace(tzinfo=None)

    exception = session.query(ScheduleException).filter(
        ScheduleException.restaurant_id == restaurant.id,
        ScheduleException.exception_date == local.date()
    ).first()

    if exception:
        if exception.is_closed_all_day:
            return False
        if exception.open_time and exception.close_time:
            if exception.close_time > exception.open_time:
                return _within(current, exception.open_time, exception.close_time)
            return current >= exception.open_time or current < exception.close_time

    hours = session.query(OperatingHour).filter(
        OperatingHour.restaurant_id == restaurant.id
    ).all()

    if not hours:
        return True

    today = _day_index(local)
    yesterday = (today - 1) % 7

    for row in hours:
        if row.is_closed:
            continue
        overnight = row.close_time < row.open_time
        if row.day_of_week == today:
            if overnight and current >= row.open_time:
                return True
            if not overnight and _within(current, row.open_time, row.close_time):
                return True
        elif row.day_of_week == yesterday and overnight and current < row.close_time:
            # tail of last night's range
            return True

    return False
