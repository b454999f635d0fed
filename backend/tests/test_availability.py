"""Tests for the two-tier availability probe."""

import pytest

from slotdesk.services.scheduling import AvailabilityProber, ProbeFailurePolicy
from slotdesk.services.scheduling.base import SLOT_BLOCKED, SLOT_FULL
from slotdesk.services.scheduling.errors import CalendarError

from conftest import BLOCKING, PRIMARY, FakeCalendar, busy, local_window


class FakeCounter:
    def __init__(self, count):
        self.count = count
        self.calls = []

    async def count_events(self, calendar_id, start, end):
        self.calls.append(calendar_id)
        return self.count


@pytest.fixture
def window():
    return local_window("2025-01-01T09:00")


class TestAvailabilityProber:
    @pytest.mark.asyncio
    async def test_clear_calendars_accept(self, window):
        decision = await AvailabilityProber(FakeCalendar()).probe(window, PRIMARY, BLOCKING, 1)
        assert decision.accepted

    @pytest.mark.asyncio
    async def test_block_wins_over_free_capacity(self, window):
        calendar = FakeCalendar({BLOCKING: [busy("2025-01-01T09:15", "2025-01-01T10:00")]})
        decision = await AvailabilityProber(calendar).probe(window, PRIMARY, BLOCKING, 5)
        assert decision.reason == SLOT_BLOCKED

    @pytest.mark.asyncio
    async def test_primary_below_capacity(self, window):
        calendar = FakeCalendar({PRIMARY: [
            busy("2025-01-01T09:00", "2025-01-01T09:30"),
            busy("2025-01-01T08:30", "2025-01-01T10:00"),
        ]})
        decision = await AvailabilityProber(calendar).probe(window, PRIMARY, BLOCKING, 5)
        assert decision.accepted

    @pytest.mark.asyncio
    async def test_primary_at_capacity_is_full(self, window):
        calendar = FakeCalendar({PRIMARY: [
            busy("2025-01-01T09:00", "2025-01-01T09:30"),
            busy("2025-01-01T08:30", "2025-01-01T10:00"),
        ]})
        decision = await AvailabilityProber(calendar).probe(window, PRIMARY, BLOCKING, 2)
        assert decision.reason == SLOT_FULL

    @pytest.mark.asyncio
    async def test_adjacent_interval_does_not_overlap(self, window):
        calendar = FakeCalendar({BLOCKING: [busy("2025-01-01T08:30", "2025-01-01T09:00")]})
        decision = await AvailabilityProber(calendar).probe(window, PRIMARY, BLOCKING, 1)
        assert decision.accepted

    @pytest.mark.asyncio
    async def test_both_calendars_queried_in_one_call(self, window):
        calendar = FakeCalendar()
        await AvailabilityProber(calendar).probe(window, PRIMARY, BLOCKING, 1)
        assert calendar.queries == [[BLOCKING, PRIMARY]]

    @pytest.mark.asyncio
    async def test_same_calendar_treats_any_busy_as_block(self, window):
        calendar = FakeCalendar({PRIMARY: [busy("2025-01-01T09:00", "2025-01-01T09:30")]})
        decision = await AvailabilityProber(calendar).probe(window, PRIMARY, PRIMARY, 5)
        assert decision.reason == SLOT_BLOCKED
        assert calendar.queries == [[PRIMARY]]

    @pytest.mark.asyncio
    async def test_missing_blocking_calendar_defaults_to_primary(self, window):
        calendar = FakeCalendar({PRIMARY: [busy("2025-01-01T09:00", "2025-01-01T09:30")]})
        decision = await AvailabilityProber(calendar).probe(window, PRIMARY, None, 5)
        assert decision.reason == SLOT_BLOCKED

    @pytest.mark.asyncio
    async def test_event_counter_replaces_interval_count(self, window):
        counter = FakeCounter(3)
        prober = AvailabilityProber(FakeCalendar(), event_counter=counter)
        assert (await prober.probe(window, PRIMARY, BLOCKING, 3)).reason == SLOT_FULL
        assert (await prober.probe(window, PRIMARY, BLOCKING, 4)).accepted
        assert counter.calls == [PRIMARY, PRIMARY]


class TestProbeFailurePolicy:
    @pytest.mark.asyncio
    async def test_fail_policy_propagates(self, window):
        calendar = FakeCalendar()
        calendar.fail_query = True
        prober = AvailabilityProber(calendar, failure_policy=ProbeFailurePolicy.FAIL)
        with pytest.raises(CalendarError):
            await prober.probe(window, PRIMARY, BLOCKING, 1)

    @pytest.mark.asyncio
    async def test_open_policy_accepts(self, window):
        calendar = FakeCalendar()
        calendar.fail_query = True
        prober = AvailabilityProber(calendar, failure_policy="open")
        assert (await prober.probe(window, PRIMARY, BLOCKING, 1)).accepted

    def test_unknown_policy_rejected(self):
        with pytest.raises(ValueError):
            AvailabilityProber(FakeCalendar(), failure_policy="maybe")
