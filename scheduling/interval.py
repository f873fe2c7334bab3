"""Timezone-aware normalization of event start/end inputs to UTC instants."""
import logging
from datetime import datetime, time as dt_time
from typing import Optional, Tuple

import pytz

from scheduling.errors import InvalidIntervalError, InvalidTimestampError

logger = logging.getLogger(__name__)

DATE_FORMATS = [
    '%Y-%m-%d',      # ISO 8601
    '%Y/%m/%d',      # Alternative ISO format
    '%m/%d/%Y',      # US format
]

TIME_FORMATS = [
    '%H:%M',         # 24-hour format
    '%H:%M:%S',      # 24-hour with seconds
    '%I:%M %p',      # 12-hour format with AM/PM
    '%I:%M%p',       # 12-hour format without space
    '%I:%M:%S %p',   # 12-hour with seconds and AM/PM
]


def ensure_timezone(name: str):
    """
    Look up an IANA timezone.

    Args:
        name: Zone identifier, e.g. "America/New_York"

    Returns:
        pytz timezone object

    Raises:
        InvalidTimestampError: If the identifier is empty or unknown
    """
    if not name or not isinstance(name, str):
        raise InvalidTimestampError('Timezone is required')
    try:
        return pytz.timezone(name.strip())
    except pytz.exceptions.UnknownTimeZoneError:
        raise InvalidTimestampError(f"Unknown timezone: {name}")


def truncate_to_millis(instant: datetime) -> datetime:
    return instant.replace(microsecond=instant.microsecond // 1000 * 1000)


def _parse_date(date_str: str):
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(date_str.strip(), fmt).date()
        except ValueError:
            continue
    return None


def _parse_time(time_str: str) -> Optional[dt_time]:
    for fmt in TIME_FORMATS:
        try:
            return datetime.strptime(time_str.strip(), fmt).time()
        except ValueError:
            continue
    return None


def _localize(local: datetime, tz) -> datetime:
    """
    Attach a zone to a naive wall-clock moment and convert it to UTC.

    Wall-clock moments skipped by a forward DST jump, or repeated by a
    backward one, are rejected rather than shifted.
    """
    try:
        aware = tz.localize(local, is_dst=None)
    except pytz.exceptions.NonExistentTimeError:
        raise InvalidTimestampError(
            f"{local.isoformat()} does not exist in {tz.zone} "
            f"(daylight saving transition)"
        )
    except pytz.exceptions.AmbiguousTimeError:
        raise InvalidTimestampError(
            f"{local.isoformat()} is ambiguous in {tz.zone} "
            f"(daylight saving transition)"
        )
    return aware.astimezone(pytz.utc)


def resolve_instant(date_value: str, time_value: Optional[str],
                    timezone: str) -> datetime:
    """
    Resolve one date+time boundary to an absolute UTC instant.

    When time_value is omitted, date_value is read as a combined ISO-8601
    timestamp. A timestamp carrying an offset (or "Z") is already absolute
    and the zone is not applied; a naive one is resolved in the zone.

    Args:
        date_value: Calendar date, or combined timestamp
        time_value: Wall-clock time, or None
        timezone: IANA zone the wall-clock values are expressed in

    Returns:
        Timezone-aware UTC datetime with millisecond precision

    Raises:
        InvalidTimestampError: If any input fails to parse or resolve
    """
    tz = ensure_timezone(timezone)

    if not date_value or not isinstance(date_value, str):
        raise InvalidTimestampError('Date is required')

    if time_value is None or not str(time_value).strip():
        try:
            parsed = datetime.fromisoformat(
                date_value.strip().replace('Z', '+00:00')
            )
        except ValueError:
            raise InvalidTimestampError(f"Invalid timestamp: {date_value}")
        if parsed.tzinfo is not None:
            return truncate_to_millis(parsed.astimezone(pytz.utc))
        return truncate_to_millis(_localize(parsed, tz))

    date_part = _parse_date(date_value)
    if date_part is None:
        raise InvalidTimestampError(f"Invalid date format: {date_value}")

    time_part = _parse_time(str(time_value))
    if time_part is None:
        raise InvalidTimestampError(f"Invalid time format: {time_value}")

    return truncate_to_millis(
        _localize(datetime.combine(date_part, time_part), tz)
    )


def normalize_interval(start_date: str, start_time: Optional[str],
                       end_date: str, end_time: Optional[str],
                       timezone: str) -> Tuple[datetime, datetime]:
    """
    Normalize a start/end pair authored in an IANA zone to UTC instants.

    Ordering is not checked here; see validate_ordering.

    Returns:
        Tuple of (start_instant, end_instant)
    """
    start_instant = resolve_instant(start_date, start_time, timezone)
    end_instant = resolve_instant(end_date, end_time, timezone)
    logger.debug(
        f"Normalized interval in {timezone}: "
        f"{format_instant(start_instant)} - {format_instant(end_instant)}"
    )
    return start_instant, end_instant


def validate_ordering(start_instant: datetime, end_instant: datetime) -> None:
    """
    Raises:
        InvalidIntervalError: If end_instant is not strictly after start_instant
    """
    if end_instant <= start_instant:
        raise InvalidIntervalError('End date must be after start date')


def format_instant(instant: datetime, timezone: Optional[str] = None) -> str:
    """
    Render an instant as ISO 8601 with millisecond precision.

    UTC renders with a "Z" suffix; any other zone renders with its offset.
    """
    if timezone and timezone != 'UTC':
        local = instant.astimezone(ensure_timezone(timezone))
        return local.isoformat(timespec='milliseconds')
    utc = instant.astimezone(pytz.utc)
    return utc.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def parse_instant(value: str) -> datetime:
    """Parse a stored ISO 8601 instant. Naive values are taken as UTC."""
    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except (AttributeError, ValueError):
        raise InvalidTimestampError(f"Invalid timestamp: {value}")
    if parsed.tzinfo is None:
        parsed = pytz.utc.localize(parsed)
    return parsed.astimezone(pytz.utc)


def utc_now() -> datetime:
    return truncate_to_millis(datetime.now(pytz.utc))
