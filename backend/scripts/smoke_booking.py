from __future__ import annotations

import argparse
import asyncio
import json

from slotdesk.api.v1.appointments import _google_calendar
from slotdesk.core.config import settings
from slotdesk.core.database import AsyncSessionLocal
from slotdesk.services.db_service import DBService
from slotdesk.services.scheduling import AvailabilityProber, NearestSlotFinder
from slotdesk.services.scheduling.timing import normalize_time


async def run_smoke(business_id: str, start_time: str) -> None:
    async with AsyncSessionLocal() as session:
        config = await DBService(session).get_business_config(business_id)
    if config is None:
        print(json.dumps({"status": "not_found", "reason": "business_not_found"}, indent=2))
        return

    calendar = _google_calendar(config)
    try:
        event_counter = calendar if settings.scheduling.capacity_source == "events" else None
        prober = AvailabilityProber(calendar, event_counter=event_counter)
        window = normalize_time(start_time, config.timezone, config.duration_minutes)

        decision = await prober.probe(
            window, config.calendar_id, config.effective_blocking_calendar_id, config.capacity
        )
        finder = NearestSlotFinder(
            prober,
            step_minutes=settings.scheduling.search_step_minutes,
            horizon_minutes=settings.scheduling.search_horizon_minutes,
            lead_time_minutes=settings.scheduling.lead_time_minutes,
        )
        suggestion = await finder.find(window, config)
    finally:
        await calendar.close()

    print(json.dumps({
        "requested": {
            "start": window.start.isoformat(),
            "end": window.end.isoformat(),
            "accepted": decision.accepted,
            "reason": decision.reason,
        },
        "nearest": suggestion.to_dict() if suggestion else None,
    }, indent=2))


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Probe a slot and search for the nearest open one.")
    parser.add_argument("--business-id", required=True, help="Business UUID")
    parser.add_argument("--start-time", required=True, help="Local wall-clock time, e.g. 2025-01-01T09:00")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    asyncio.run(run_smoke(args.business_id, args.start_time))


if __name__ == "__main__":
    main()
