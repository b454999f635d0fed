from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

from slotdesk.integrations.providers.base import BusySource, EventCounter
from slotdesk.services.scheduling.base import SLOT_BLOCKED, SLOT_FULL, Decision, TimeWindow
from slotdesk.services.scheduling.errors import DependencyFailure

logger = logging.getLogger(__name__)


class ProbeFailurePolicy(str, Enum):
    FAIL = "fail"  # surface the outage; never guess availability
    OPEN = "open"  # treat the slot as free; only when storage guards allocation


class AvailabilityProber:
    """Two-tier busy check: a hard-blocking calendar, then a capacity count.

    Any busy interval on the blocking calendar vetoes the window. Otherwise
    the number of busy intervals on the primary calendar is compared with the
    capacity ceiling. When both ids are the same calendar every busy interval
    is a block, so capacity only matters for a separate primary calendar.

    ``event_counter`` replaces the freebusy interval count with an explicit
    event count for the primary calendar when supplied.
    """

    def __init__(
        self,
        busy_source: BusySource,
        failure_policy: ProbeFailurePolicy = ProbeFailurePolicy.FAIL,
        event_counter: Optional[EventCounter] = None,
    ) -> None:
        self.busy_source = busy_source
        self.failure_policy = ProbeFailurePolicy(failure_policy)
        self.event_counter = event_counter

    async def probe(
        self,
        window: TimeWindow,
        calendar_id: str,
        blocking_calendar_id: Optional[str],
        capacity: int,
    ) -> Decision:
        blocking_id = blocking_calendar_id or calendar_id
        try:
            return await self._probe(window, calendar_id, blocking_id, capacity)
        except DependencyFailure as exc:
            if self.failure_policy is ProbeFailurePolicy.OPEN:
                logger.warning(
                    f"Availability probe failed for {calendar_id}; treating slot as open: {exc}"
                )
                return Decision.accept()
            logger.error(f"Availability probe failed for {calendar_id}: {exc}")
            raise

    async def _probe(
        self,
        window: TimeWindow,
        calendar_id: str,
        blocking_id: str,
        capacity: int,
    ) -> Decision:
        calendar_ids = [blocking_id] if blocking_id == calendar_id else [blocking_id, calendar_id]
        busy = await self.busy_source.query_busy(calendar_ids, window.start, window.end)

        blocking = [
            interval
            for interval in busy.get(blocking_id, [])
            if interval.overlaps(window.start, window.end)
        ]
        if blocking:
            return Decision.reject(SLOT_BLOCKED)

        if self.event_counter is not None:
            booked = await self.event_counter.count_events(calendar_id, window.start, window.end)
        else:
            booked = sum(
                1
                for interval in busy.get(calendar_id, [])
                if interval.overlaps(window.start, window.end)
            )
        if booked >= capacity:
            return Decision.reject(SLOT_FULL)
        return Decision.accept()
