"""Google Calendar v3 REST client (freebusy, event insert/delete, event count)"""

import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, Sequence
from urllib.parse import quote

import httpx

from slotdesk.integrations.google_calendar.models import (
    counts_as_booking,
    freebusy_body,
    parse_busy,
    to_google_event,
    to_rfc3339,
)
from slotdesk.integrations.providers.base import BusyInterval, DeleteOutcome, EventPayload
from slotdesk.services.scheduling.errors import CalendarError

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Awaitable[str]]


class GoogleCalendarClient:
    """Calendar collaborator backed by the Google Calendar REST API.

    Implements the busy-interval source, the event sink and the event
    counter used by the scheduling engine. Every call is bounded by
    ``timeout``; transport errors and timeouts surface as ``CalendarError``.
    """

    BASE_URL = "https://www.googleapis.com/calendar/v3"

    def __init__(
        self,
        token_provider: TokenProvider,
        *,
        timeout: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.token_provider = token_provider
        self._client = http_client or httpx.AsyncClient(base_url=self.BASE_URL, timeout=timeout)
        self._owns_client = http_client is None

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        token = await self.token_provider()
        headers = {"Authorization": f"Bearer {token}"}
        try:
            return await self._client.request(method, path, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            logger.error(f"Google Calendar {method} {path} timed out: {e}")
            raise CalendarError(f"timeout on {method} {path}") from e
        except httpx.HTTPError as e:
            logger.error(f"Google Calendar {method} {path} failed: {e}")
            raise CalendarError(f"transport error on {method} {path}: {e}") from e

    @staticmethod
    def _raise_for_status(response: httpx.Response, action: str) -> None:
        if response.is_success:
            return
        logger.error(f"Google Calendar {action} failed: {response.status_code} {response.text}")
        raise CalendarError(f"{action} failed with HTTP {response.status_code}", status_code=response.status_code)

    @staticmethod
    def _events_path(calendar_id: str) -> str:
        return f"/calendars/{quote(calendar_id, safe='')}/events"

    async def query_busy(
        self, calendar_ids: Sequence[str], start: datetime, end: datetime
    ) -> dict[str, list[BusyInterval]]:
        response = await self._request("POST", "/freeBusy", json=freebusy_body(calendar_ids, start, end))
        self._raise_for_status(response, "freeBusy query")

        calendars = response.json().get("calendars", {})
        busy: dict[str, list[BusyInterval]] = {}
        for calendar_id in calendar_ids:
            entry = calendars.get(calendar_id)
            if entry is None:
                raise CalendarError(f"freeBusy response missing calendar {calendar_id}")
            if entry.get("errors"):
                reasons = ", ".join(err.get("reason", "unknown") for err in entry["errors"])
                raise CalendarError(f"freeBusy error for {calendar_id}: {reasons}")
            busy[calendar_id] = parse_busy(entry.get("busy", []))
        return busy

    async def count_events(self, calendar_id: str, start: datetime, end: datetime) -> int:
        params: dict[str, Any] = {
            "timeMin": to_rfc3339(start),
            "timeMax": to_rfc3339(end),
            "singleEvents": "true",
            "maxResults": 250,
        }
        count = 0
        while True:
            response = await self._request("GET", self._events_path(calendar_id), params=params)
            self._raise_for_status(response, "events list")
            data = response.json()
            count += sum(1 for event in data.get("items", []) if counts_as_booking(event))
            page_token = data.get("nextPageToken")
            if not page_token:
                return count
            params["pageToken"] = page_token

    async def create_event(self, calendar_id: str, event: EventPayload) -> str:
        response = await self._request("POST", self._events_path(calendar_id), json=to_google_event(event))
        self._raise_for_status(response, "event insert")
        event_id = response.json().get("id")
        if not event_id:
            raise CalendarError("event insert returned no id")
        logger.info(f"Created calendar event {event_id} on {calendar_id}")
        return event_id

    async def delete_event(self, calendar_id: str, event_id: str) -> DeleteOutcome:
        path = f"{self._events_path(calendar_id)}/{quote(event_id, safe='')}"
        response = await self._request("DELETE", path)
        if response.status_code in (404, 410):
            logger.info(f"Calendar event {event_id} already gone ({response.status_code})")
            return DeleteOutcome.ALREADY_GONE
        self._raise_for_status(response, "event delete")
        return DeleteOutcome.DELETED
