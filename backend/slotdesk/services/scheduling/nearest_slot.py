from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from slotdesk.services.scheduling.availability import AvailabilityProber
from slotdesk.services.scheduling.base import BusinessConfig, TimeWindow
from slotdesk.services.scheduling.rules import check_local_rules

logger = logging.getLogger(__name__)

BEFORE = "before"
AFTER = "after"

# At equal distance the earlier candidate is tried first.
DIRECTIONS = ((BEFORE, -1), (AFTER, 1))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SlotSuggestion:
    window: TimeWindow
    direction: str
    offset_minutes: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "start": self.window.start.isoformat(),
            "end": self.window.end.isoformat(),
            "local_start": self.window.local_start.isoformat(),
            "local_end": self.window.local_end.isoformat(),
            "timezone": self.window.timezone,
            "direction": self.direction,
            "offset_minutes": self.offset_minutes,
        }


class NearestSlotFinder:
    """Scan outward from a rejected window for the closest bookable one.

    Distances grow in ``step_minutes`` increments up to ``horizon_minutes``;
    at each distance "before" is checked, then "after". Each candidate goes
    through the same lead-time, office-hours and availability checks as a
    direct booking.
    """

    def __init__(
        self,
        prober: AvailabilityProber,
        *,
        step_minutes: int = 15,
        horizon_minutes: int = 480,
        lead_time_minutes: int = 30,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if step_minutes < 1:
            raise ValueError("step_minutes must be >= 1")
        self.prober = prober
        self.step_minutes = step_minutes
        self.horizon_minutes = horizon_minutes
        self.lead_time_minutes = lead_time_minutes
        self.clock = clock

    def _candidates(self, window: TimeWindow):
        for offset in range(0, self.horizon_minutes + 1, self.step_minutes):
            for direction, sign in DIRECTIONS:
                if offset == 0 and direction == BEFORE:
                    continue
                yield window.shifted(timedelta(minutes=sign * offset)), direction, offset

    async def find(self, window: TimeWindow, config: BusinessConfig) -> Optional[SlotSuggestion]:
        now = self.clock()
        checked = 0
        for candidate, direction, offset in self._candidates(window):
            local = check_local_rules(
                candidate,
                now,
                lead_time_minutes=self.lead_time_minutes,
                office_start=config.office_start,
                office_end=config.office_end,
            )
            if not local.accepted:
                continue

            checked += 1
            decision = await self.prober.probe(
                candidate,
                config.calendar_id,
                config.effective_blocking_calendar_id,
                config.capacity,
            )
            if decision.accepted:
                logger.info(
                    f"Nearest slot for {window.start.isoformat()}: "
                    f"{candidate.start.isoformat()} ({direction}, {offset} min)"
                )
                return SlotSuggestion(window=candidate, direction=direction, offset_minutes=offset)

        logger.info(
            f"No open slot within {self.horizon_minutes} min of {window.start.isoformat()} "
            f"({checked} candidates probed)"
        )
        return None
