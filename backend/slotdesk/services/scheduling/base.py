from __future__ import annotations

import hashlib
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

# Rejection reason codes returned to callers.
TOO_SOON = "too_soon"
OUTSIDE_OFFICE_HOURS = "outside_office_hours"
SLOT_BLOCKED = "slot_blocked"
SLOT_FULL = "slot_full"
OVERLAP = "overlap"
NO_UNIT_AVAILABLE = "no_unit_available"
NO_UNITS_OF_MODEL = "no_units_of_model"
EXACT_TRIM_UNAVAILABLE = "exact_trim_unavailable"
TOO_CLOSE_TO_CANCEL = "too_close_to_cancel"
NOT_FOUND = "not_found"
CALENDAR_INSERT_FAILED = "calendar_insert_failed"
STORE_UPDATE_FAILED = "store_update_failed"


@dataclass(frozen=True)
class TimeWindow:
    start: datetime  # UTC
    end: datetime  # UTC
    timezone: str

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def local_start(self) -> datetime:
        return self.start.astimezone(self.zone)

    @property
    def local_end(self) -> datetime:
        return self.end.astimezone(self.zone)

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def shifted(self, delta: timedelta) -> "TimeWindow":
        return replace(self, start=self.start + delta, end=self.end + delta)


@dataclass(frozen=True)
class Decision:
    accepted: bool
    reason: Optional[str] = None

    @classmethod
    def accept(cls) -> "Decision":
        return cls(accepted=True)

    @classmethod
    def reject(cls, reason: str) -> "Decision":
        return cls(accepted=False, reason=reason)


@dataclass(frozen=True)
class ResourceClass:
    """Any unit of ``model``; ``trim`` only narrows the pool when ``exact`` is set."""

    model: str
    trim: Optional[str] = None
    exact: bool = False

    @property
    def required_trim(self) -> Optional[str]:
        if self.exact and self.trim:
            return self.trim
        return None


@dataclass(frozen=True)
class BookingRequest:
    business_id: str
    name: str
    start_local: str  # ISO-8601 wall-clock, e.g. "2025-01-01T09:00"
    email: Optional[str] = None
    phone: Optional[str] = None
    timezone: Optional[str] = None
    calendar_id: Optional[str] = None
    blocking_calendar_id: Optional[str] = None
    resource_id: Optional[str] = None
    resource_class: Optional[ResourceClass] = None
    appointment_type: str = "appointment"
    duration_minutes: Optional[int] = None
    notes: Optional[str] = None
    # Per-request policy overrides
    office_start: Optional[float] = None
    office_end: Optional[float] = None
    capacity: Optional[int] = None


@dataclass(frozen=True)
class BusinessConfig:
    business_id: str
    timezone: str
    office_start: float
    office_end: float
    duration_minutes: int
    capacity: int
    calendar_id: Optional[str] = None
    blocking_calendar_id: Optional[str] = None
    name: str = ""
    calendar_credentials: Optional[str] = None

    @property
    def effective_blocking_calendar_id(self) -> Optional[str]:
        return self.blocking_calendar_id or self.calendar_id

    def with_overrides(self, request: BookingRequest) -> "BusinessConfig":
        """Apply the fields a caller is allowed to supply for a single request."""
        return replace(
            self,
            timezone=request.timezone or self.timezone,
            office_start=self.office_start if request.office_start is None else request.office_start,
            office_end=self.office_end if request.office_end is None else request.office_end,
            capacity=self.capacity if request.capacity is None else request.capacity,
            calendar_id=request.calendar_id or self.calendar_id,
            blocking_calendar_id=request.blocking_calendar_id or self.blocking_calendar_id,
        )


def normalize_name(name: str) -> str:
    return " ".join(name.lower().split())


def make_idempotency_key(
    business_id: str,
    appointment_type: str,
    start: datetime,
    name: str,
) -> str:
    """Derive the key that makes a retried identical booking non-duplicating."""
    raw = f"{business_id}:{appointment_type}:{start.isoformat()}:{normalize_name(name)}"
    return hashlib.sha256(raw.encode()).hexdigest()
