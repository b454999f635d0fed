from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from slotdesk.services.scheduling.base import TimeWindow
from slotdesk.services.scheduling.errors import InvalidTime


def _get_zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise InvalidTime(f"Unknown timezone: {name!r}", field="timezone") from None


def normalize_time(local_time: str, tz_name: str, duration_minutes: int) -> TimeWindow:
    """Turn a caller's wall-clock time in ``tz_name`` into a UTC window.

    A string that already carries an offset is taken as an absolute instant.
    """
    if duration_minutes <= 0:
        raise InvalidTime(f"Duration must be positive, got {duration_minutes}", field="duration_minutes")

    zone = _get_zone(tz_name)
    try:
        parsed = datetime.fromisoformat((local_time or "").strip())
    except ValueError:
        raise InvalidTime(f"Unparseable start time: {local_time!r}", field="start_time") from None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=zone)

    start = parsed.astimezone(timezone.utc)
    return TimeWindow(
        start=start,
        end=start + timedelta(minutes=duration_minutes),
        timezone=tz_name,
    )


def resolve_duration(
    requested: Optional[int],
    appointment_type: Optional[str],
    *,
    default_minutes: int,
    type_durations: dict[str, int],
    min_minutes: int,
    max_minutes: int,
) -> int:
    """Caller value (clamped) wins, then the appointment-type map, then the default."""
    if requested is not None:
        return max(min_minutes, min(max_minutes, int(requested)))
    if appointment_type and appointment_type.lower() in type_durations:
        return type_durations[appointment_type.lower()]
    return default_minutes
