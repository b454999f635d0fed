"""Shared test fixtures and in-memory collaborators."""

import asyncio
import uuid
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Optional

import pytest

from slotdesk.integrations.providers.base import (
    AppointmentDraft,
    AppointmentRecord,
    BusyInterval,
    ConstraintKind,
    DeleteOutcome,
    EventPayload,
    ResourceInfo,
    UpsertResult,
)
from slotdesk.services.scheduling import (
    AvailabilityProber,
    BookingOrchestrator,
    BusinessConfig,
    NearestSlotFinder,
    ResourceAllocator,
)
from slotdesk.services.scheduling.base import make_idempotency_key
from slotdesk.services.scheduling.errors import CalendarError, DependencyFailure
from slotdesk.services.scheduling.timing import normalize_time

BUSINESS_ID = "0b6f3c1e-6d0a-4d8e-9a57-2f4f0c1d9e01"
OTHER_BUSINESS_ID = "7d1c2a9e-3b54-4f1e-8c0a-5e6f7a8b9c02"
PRIMARY = "primary@group.calendar.google.com"
BLOCKING = "blocking@group.calendar.google.com"
TZ = "America/Chicago"

# Fixed "now": the day before the sample bookings
NOW = datetime(2024, 12, 31, 12, 0, tzinfo=timezone.utc)


def fixed_clock(now: datetime = NOW):
    return lambda: now


def local_window(local_time: str, minutes: int = 30, tz: str = TZ):
    return normalize_time(local_time, tz, minutes)


def busy(local_start: str, local_end: str, tz: str = TZ) -> BusyInterval:
    """Busy interval from two local wall-clock strings."""
    start = normalize_time(local_start, tz, 1).start
    end = normalize_time(local_end, tz, 1).start
    return BusyInterval(start=start, end=end)


def make_config(**overrides) -> BusinessConfig:
    values = dict(
        business_id=BUSINESS_ID,
        name="Lakeside Motors",
        timezone=TZ,
        office_start=9,
        office_end=17,
        duration_minutes=30,
        capacity=5,
        calendar_id=PRIMARY,
        blocking_calendar_id=BLOCKING,
    )
    values.update(overrides)
    return BusinessConfig(**values)


def make_draft(
    local_time: str = "2025-01-01T09:00",
    name: str = "A",
    minutes: int = 30,
    resource_id: Optional[str] = None,
    business_id: str = BUSINESS_ID,
) -> AppointmentDraft:
    window = local_window(local_time, minutes)
    return AppointmentDraft(
        business_id=business_id,
        appointment_type="appointment",
        customer_name=name,
        start_at=window.start,
        end_at=window.end,
        local_start=local_time,
        timezone=TZ,
        idempotency_key=make_idempotency_key(business_id, "appointment", window.start, name),
        resource_id=resource_id,
        calendar_id=PRIMARY,
    )


class FakeCalendar:
    """Busy source, event counter and event sink backed by dicts.

    Created events show up as busy intervals on their calendar, as they do
    in a real freebusy response.
    """

    def __init__(self, busy_map: Optional[dict] = None):
        self.busy = {key: list(value) for key, value in (busy_map or {}).items()}
        self.created: list[tuple[str, EventPayload, str]] = []
        self.event_busy: dict[str, tuple[str, BusyInterval]] = {}
        self.event_counts: dict[str, int] = {}
        self.counted: list[str] = []
        self.deleted: list[tuple[str, str]] = []
        self.gone: set[str] = set()
        self.queries: list[list[str]] = []
        self.fail_query = False
        self.fail_create = False
        self.fail_delete = False
        self.closed = False

    def add_busy(self, calendar_id: str, interval: BusyInterval) -> None:
        self.busy.setdefault(calendar_id, []).append(interval)

    async def query_busy(self, calendar_ids, start, end):
        self.queries.append(list(calendar_ids))
        if self.fail_query:
            raise CalendarError("freeBusy unavailable", status_code=503)
        return {
            calendar_id: [i for i in self.busy.get(calendar_id, []) if i.overlaps(start, end)]
            for calendar_id in calendar_ids
        }

    async def create_event(self, calendar_id, event):
        if self.fail_create:
            raise CalendarError("event insert failed", status_code=500)
        event_id = f"evt-{len(self.created) + 1}"
        self.created.append((calendar_id, event, event_id))
        interval = BusyInterval(start=event.start, end=event.end)
        self.event_busy[event_id] = (calendar_id, interval)
        self.add_busy(calendar_id, interval)
        return event_id

    async def delete_event(self, calendar_id, event_id):
        if self.fail_delete:
            raise CalendarError("event delete failed", status_code=500)
        if event_id in self.gone:
            return DeleteOutcome.ALREADY_GONE
        self.deleted.append((calendar_id, event_id))
        if event_id in self.event_busy:
            owner, interval = self.event_busy.pop(event_id)
            self.busy[owner].remove(interval)
        return DeleteOutcome.DELETED

    async def count_events(self, calendar_id, start, end):
        self.counted.append(calendar_id)
        return self.event_counts.get(calendar_id, 0)

    async def close(self):
        self.closed = True


class FakeStore:
    """Appointment store with the two guarantees of the real table.

    Upsert on idempotency key returns the existing row, and a booked row on
    the same unit with an overlapping window is a constraint violation. No
    await happens between the check and the insert.
    """

    def __init__(self):
        self.rows: dict[str, AppointmentRecord] = {}
        self.upserts = 0
        self.lookups = 0
        self.forced_result: Optional[UpsertResult] = None
        self.fail_attach = False
        self.fail_delete = False

    async def upsert_appointment(self, draft: AppointmentDraft) -> UpsertResult:
        self.upserts += 1
        if self.forced_result is not None:
            return self.forced_result

        for row in self.rows.values():
            if row.idempotency_key == draft.idempotency_key:
                return UpsertResult.ok(row, inserted=False)
        if draft.resource_id:
            for row in self.rows.values():
                if (
                    row.resource_id == draft.resource_id
                    and row.status == "booked"
                    and row.start_at < draft.end_at
                    and row.end_at > draft.start_at
                ):
                    return UpsertResult.constraint_violation(ConstraintKind.OVERLAP, "exclusion_violation")

        record = AppointmentRecord(id=str(uuid.uuid4()), **asdict(draft))
        self.rows[record.id] = record
        return UpsertResult.ok(record)

    async def find_by_idempotency_key(self, idempotency_key):
        self.lookups += 1
        return next((row for row in self.rows.values() if row.idempotency_key == idempotency_key), None)

    async def attach_event(self, appointment_id, event_id):
        if self.fail_attach:
            raise DependencyFailure("store", "update failed")
        self.rows[appointment_id].external_event_id = event_id

    async def delete_appointment(self, appointment_id):
        if self.fail_delete:
            raise DependencyFailure("store", "delete failed")
        self.rows.pop(appointment_id, None)

    async def find_upcoming(self, business_id, since, limit=10):
        rows = [
            row
            for row in self.rows.values()
            if row.business_id == business_id and row.status == "booked" and row.start_at >= since
        ]
        return sorted(rows, key=lambda row: row.start_at)[:limit]

    def add(self, local_time: str, name: str, *, email=None, phone=None, event_id=None,
            status="booked", minutes=30) -> AppointmentRecord:
        draft = make_draft(local_time, name=name, minutes=minutes)
        record = AppointmentRecord(id=str(uuid.uuid4()), **asdict(draft))
        record.customer_email = email
        record.customer_phone = phone
        record.external_event_id = event_id
        record.status = status
        self.rows[record.id] = record
        return record


class FakeInventory:
    def __init__(self, units: Optional[list[ResourceInfo]] = None):
        self.units = list(units or [])

    async def list_active(self, business_id, model):
        await asyncio.sleep(0)
        return [
            unit
            for unit in self.units
            if unit.business_id == business_id
            and unit.active
            and unit.model.lower() == model.strip().lower()
        ]

    async def get_resource(self, resource_id):
        return next((unit for unit in self.units if unit.id == resource_id), None)


class FakeDirectory:
    def __init__(self, configs: Optional[dict[str, BusinessConfig]] = None):
        self.configs = configs or {}

    async def get_business_config(self, business_id):
        return self.configs.get(business_id)


def unit(unit_id: str, model: str = "Model Y", trim: Optional[str] = None,
         active: bool = True, business_id: str = BUSINESS_ID) -> ResourceInfo:
    return ResourceInfo(id=unit_id, business_id=business_id, model=model, trim=trim, active=active)


def make_orchestrator(calendar, store, inventory=None, *, clock=None, with_finder=True, **kwargs):
    clock = clock or fixed_clock()
    prober = AvailabilityProber(calendar, failure_policy=kwargs.pop("probe_failure", "fail"))
    finder = NearestSlotFinder(prober, clock=clock) if with_finder else None
    return BookingOrchestrator(
        prober=prober,
        allocator=ResourceAllocator(store, inventory or FakeInventory()),
        events=calendar,
        store=store,
        nearest_finder=finder,
        clock=clock,
        **kwargs,
    )


@pytest.fixture
def calendar():
    return FakeCalendar()


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def inventory():
    return FakeInventory([
        unit("unit-b", trim="Long Range"),
        unit("unit-a", trim="Performance"),
        unit("unit-c", model="Model 3", trim="Standard"),
        unit("unit-x", active=False),
    ])


@pytest.fixture
def config():
    return make_config()
