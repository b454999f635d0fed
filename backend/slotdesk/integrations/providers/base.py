from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Protocol, Sequence


@dataclass(frozen=True)
class BusyInterval:
    start: datetime
    end: datetime

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.start < end and self.end > start


@dataclass(frozen=True)
class ResourceInfo:
    id: str
    business_id: str
    model: str
    trim: Optional[str] = None
    active: bool = True


@dataclass(frozen=True)
class AppointmentDraft:
    """Row to be written by the orchestrator; ``resource_id`` is filled per candidate."""

    business_id: str
    appointment_type: str
    customer_name: str
    start_at: datetime
    end_at: datetime
    local_start: str
    timezone: str
    idempotency_key: str
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    resource_id: Optional[str] = None
    calendar_id: Optional[str] = None
    notes: Optional[str] = None
    source: str = "agent"
    status: str = "booked"


@dataclass
class AppointmentRecord:
    id: str
    business_id: str
    appointment_type: str
    customer_name: str
    start_at: datetime
    end_at: datetime
    local_start: str
    timezone: str
    idempotency_key: str
    status: str = "booked"
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    resource_id: Optional[str] = None
    calendar_id: Optional[str] = None
    external_event_id: Optional[str] = None
    notes: Optional[str] = None
    source: str = "agent"


class ConstraintKind(str, Enum):
    OVERLAP = "overlap"  # exclusion on (resource, time range)
    CAPACITY = "capacity"  # check / trigger enforced ceiling
    UNIQUE = "unique"  # any other uniqueness constraint


class UpsertStatus(str, Enum):
    OK = "ok"
    CONSTRAINT_VIOLATION = "constraint_violation"
    ERROR = "error"


@dataclass
class UpsertResult:
    status: UpsertStatus
    appointment: Optional[AppointmentRecord] = None
    violation: Optional[ConstraintKind] = None
    detail: Optional[str] = None
    inserted: bool = True  # False when an existing row was returned for the key

    @classmethod
    def ok(cls, appointment: AppointmentRecord, inserted: bool = True) -> "UpsertResult":
        return cls(status=UpsertStatus.OK, appointment=appointment, inserted=inserted)

    @classmethod
    def constraint_violation(cls, kind: ConstraintKind, detail: Optional[str] = None) -> "UpsertResult":
        return cls(status=UpsertStatus.CONSTRAINT_VIOLATION, violation=kind, detail=detail)

    @classmethod
    def error(cls, detail: str) -> "UpsertResult":
        return cls(status=UpsertStatus.ERROR, detail=detail)


class DeleteOutcome(str, Enum):
    DELETED = "deleted"
    ALREADY_GONE = "already_gone"


@dataclass
class EventPayload:
    summary: str
    description: str
    start: datetime
    end: datetime
    timezone: str
    location: Optional[str] = None
    attendees: list[str] = field(default_factory=list)


class BusySource(Protocol):
    async def query_busy(
        self, calendar_ids: Sequence[str], start: datetime, end: datetime
    ) -> dict[str, list[BusyInterval]]:
        ...


class EventCounter(Protocol):
    async def count_events(self, calendar_id: str, start: datetime, end: datetime) -> int:
        ...


class EventSink(Protocol):
    async def create_event(self, calendar_id: str, event: EventPayload) -> str:
        ...

    async def delete_event(self, calendar_id: str, event_id: str) -> DeleteOutcome:
        ...


class AppointmentStore(Protocol):
    async def upsert_appointment(self, draft: AppointmentDraft) -> UpsertResult:
        ...

    async def find_by_idempotency_key(self, idempotency_key: str) -> Optional[AppointmentRecord]:
        ...

    async def attach_event(self, appointment_id: str, event_id: str) -> None:
        ...

    async def delete_appointment(self, appointment_id: str) -> None:
        ...

    async def find_upcoming(
        self, business_id: str, since: datetime, limit: int
    ) -> list[AppointmentRecord]:
        ...


class InventorySource(Protocol):
    async def list_active(self, business_id: str, model: str) -> list[ResourceInfo]:
        ...

    async def get_resource(self, resource_id: str) -> Optional[ResourceInfo]:
        ...
