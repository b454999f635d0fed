"""Google Calendar wire-format mapping"""

from datetime import datetime, timezone
from typing import Any, Iterable

from slotdesk.integrations.providers.base import BusyInterval, EventPayload


def to_rfc3339(value: datetime) -> str:
    """Google wants RFC 3339 with an explicit offset"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def parse_rfc3339(value: str) -> datetime:
    # Google returns "Z" suffixes, which fromisoformat only accepts on 3.11+
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


def to_google_event(event: EventPayload) -> dict[str, Any]:
    """Convert to Google Calendar API event format"""
    body: dict[str, Any] = {
        "summary": event.summary,
        "description": event.description,
        "start": {
            "dateTime": to_rfc3339(event.start),
            "timeZone": event.timezone,
        },
        "end": {
            "dateTime": to_rfc3339(event.end),
            "timeZone": event.timezone,
        },
    }
    if event.location:
        body["location"] = event.location
    if event.attendees:
        body["attendees"] = [{"email": email} for email in event.attendees]
    return body


def freebusy_body(calendar_ids: Iterable[str], start: datetime, end: datetime) -> dict[str, Any]:
    return {
        "timeMin": to_rfc3339(start),
        "timeMax": to_rfc3339(end),
        "items": [{"id": calendar_id} for calendar_id in calendar_ids],
    }


def parse_busy(raw: list[dict[str, Any]]) -> list[BusyInterval]:
    return [
        BusyInterval(start=parse_rfc3339(item["start"]), end=parse_rfc3339(item["end"]))
        for item in raw
    ]


def counts_as_booking(event: dict[str, Any]) -> bool:
    """Cancelled and "show as free" events do not consume capacity"""
    if event.get("status") == "cancelled":
        return False
    return event.get("transparency") != "transparent"
