"""Local checks evaluated before any external call: lead time and office hours."""

from __future__ import annotations

from datetime import datetime, timedelta

from slotdesk.services.scheduling.base import (
    OUTSIDE_OFFICE_HOURS,
    TOO_SOON,
    Decision,
    TimeWindow,
)


def _fractional_hour(value: datetime) -> float:
    return value.hour + value.minute / 60 + value.second / 3600


def check_lead_time(window: TimeWindow, now: datetime, lead_time_minutes: int) -> Decision:
    if window.start - now < timedelta(minutes=lead_time_minutes):
        return Decision.reject(TOO_SOON)
    return Decision.accept()


def check_office_hours(window: TimeWindow, office_start: float, office_end: float) -> Decision:
    """The whole window must sit inside [office_start, office_end] in local time.

    Ending exactly at ``office_end`` is allowed only on a whole hour.
    """
    local_start = window.local_start
    local_end = window.local_end

    start_hour = _fractional_hour(local_start)
    # Windows running past local midnight count as later than any office end
    day_offset = (local_end.date() - local_start.date()).days
    end_hour = _fractional_hour(local_end) + 24 * day_offset

    if start_hour < office_start:
        return Decision.reject(OUTSIDE_OFFICE_HOURS)
    if end_hour > office_end:
        return Decision.reject(OUTSIDE_OFFICE_HOURS)
    if day_offset == 0 and local_end.hour == office_end and local_end.minute > 0:
        return Decision.reject(OUTSIDE_OFFICE_HOURS)
    return Decision.accept()


def check_local_rules(
    window: TimeWindow,
    now: datetime,
    *,
    lead_time_minutes: int,
    office_start: float,
    office_end: float,
) -> Decision:
    """Lead time first, then office hours."""
    decision = check_lead_time(window, now, lead_time_minutes)
    if not decision.accepted:
        return decision
    return check_office_hours(window, office_start, office_end)
