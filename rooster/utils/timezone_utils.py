from datetime import date, datetime
from typing import Iterable, List, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from rooster.config.settings import settings
from rooster.utils.datetime_utils import utc_now, to_utc
from rooster.utils.logging import get_logger

logger = get_logger()


def _resolve_zone(timezone: str) -> Optional[ZoneInfo]:
    if not timezone or not isinstance(timezone, str):
        return None
    try:
        return ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError):
        return None


def _local_now(zone: ZoneInfo, now: Optional[datetime] = None) -> datetime:
    return to_utc(now or utc_now()).astimezone(zone)


def is_valid_timezone(timezone: str) -> bool:
    """Check whether a string is a resolvable IANA timezone identifier."""
    return _resolve_zone(timezone) is not None


def timezones_at_local_hour(
    hour: int, candidate_zones: Iterable[str], now: Optional[datetime] = None
) -> List[str]:
    """
    Return the candidate zones whose current local wall-clock hour equals `hour`.

    A single instant is captured up front and every zone is compared against it,
    so a call that straddles an hour boundary still gives a consistent answer.
    Invalid zone identifiers are logged and skipped.

    Args:
        hour: Target local hour (0-23)
        candidate_zones: IANA timezone identifiers to check
        now: Instant to evaluate at (default: current UTC time)

    Returns:
        List[str]: Matching zones, sorted
    """
    instant = to_utc(now or utc_now())
    matches = set()

    for timezone in set(candidate_zones):
        zone = _resolve_zone(timezone)
        if zone is None:
            logger.warning(f"Skipping invalid timezone identifier: {timezone!r}")
            continue

        if instant.astimezone(zone).hour == hour:
            matches.add(timezone)

    return sorted(matches)


def _coerce_date(value: Union[date, datetime, str, None]) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        except ValueError:
            return None
    return None


def _is_leap_year(year: int) -> bool:
    return year % 4 == 0 and (year % 100 != 0 or year % 400 == 0)


def is_event_due_today(
    reference_date: Union[date, datetime, str, None],
    timezone: str,
    now: Optional[datetime] = None,
) -> bool:
    """
    Check whether a yearly event anchored on `reference_date` falls on today's
    local date in `timezone`.

    Accepts a date, a datetime or an ISO-formatted string. Invalid dates or zones
    return False. Events on February 29 are observed on February 28 in
    non-leap years.
    """
    event_date = _coerce_date(reference_date)
    zone = _resolve_zone(timezone)
    if event_date is None or zone is None:
        return False

    today = _local_now(zone, now).date()

    if event_date.month == 2 and event_date.day == 29 and not _is_leap_year(today.year):
        return today.month == 2 and today.day == 28

    return today.month == event_date.month and today.day == event_date.day


def current_year(timezone: str, now: Optional[datetime] = None) -> int:
    """
    Current calendar year in `timezone`. Invalid zones fall back to the
    configured default timezone, then UTC.
    """
    zone = (
        _resolve_zone(timezone)
        or _resolve_zone(get_default_timezone())
        or ZoneInfo("UTC")
    )
    return _local_now(zone, now).year


def get_default_timezone() -> str:
    return settings.DEFAULT_TIMEZONE or "UTC"
