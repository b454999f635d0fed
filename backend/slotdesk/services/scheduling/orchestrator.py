from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

from slotdesk.core.config import APPOINTMENT_DURATIONS
from slotdesk.integrations.providers.base import (
    AppointmentDraft,
    AppointmentRecord,
    AppointmentStore,
    EventPayload,
    EventSink,
)
from slotdesk.services.scheduling.allocator import ResourceAllocator
from slotdesk.services.scheduling.availability import AvailabilityProber
from slotdesk.services.scheduling.base import (
    CALENDAR_INSERT_FAILED,
    SLOT_BLOCKED,
    SLOT_FULL,
    STORE_UPDATE_FAILED,
    BookingRequest,
    BusinessConfig,
    TimeWindow,
    make_idempotency_key,
)
from slotdesk.services.scheduling.errors import ConsistencyFailure, ValidationError
from slotdesk.services.scheduling.nearest_slot import NearestSlotFinder, SlotSuggestion
from slotdesk.services.scheduling.rules import check_lead_time, check_office_hours
from slotdesk.services.scheduling.timing import normalize_time, resolve_duration

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CalendarFailurePolicy(str, Enum):
    ROLLBACK = "rollback"  # delete the stored row, report calendar_insert_failed
    BEST_EFFORT = "best_effort"  # keep the stored row, report success without an event


class BookingStage(str, Enum):
    PARSED = "parsed"
    TIME_NORMALIZED = "time_normalized"
    LEAD_TIME_CHECKED = "lead_time_checked"
    HOURS_VALIDATED = "hours_validated"
    AVAILABILITY_PROBED = "availability_probed"
    RESOURCE_ALLOCATED = "resource_allocated"
    PERSISTED = "persisted"
    EXTERNAL_EVENT_CREATED = "external_event_created"
    COMPLETED = "completed"


@dataclass
class BookingConfirmation:
    appointment_id: str
    resource_id: Optional[str]
    event_id: Optional[str]
    window: TimeWindow
    replayed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "appointment_id": self.appointment_id,
            "resource_id": self.resource_id,
            "event_id": self.event_id,
            "start_utc": self.window.start.isoformat(),
            "end_utc": self.window.end.isoformat(),
            "start_local": self.window.local_start.isoformat(),
            "end_local": self.window.local_end.isoformat(),
            "timezone": self.window.timezone,
            "replayed": self.replayed,
        }


@dataclass
class BookingOutcome:
    status: str  # success | rejected | error
    stage: BookingStage
    reason: Optional[str] = None
    confirmation: Optional[BookingConfirmation] = None
    alternative: Optional[SlotSuggestion] = None
    warnings: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == "success"

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"status": self.status, "stage": self.stage.value}
        if self.succeeded:
            body["result"] = "booked"
        if self.reason:
            body["reason"] = self.reason
        if self.confirmation is not None:
            body["booking"] = self.confirmation.to_dict()
        if self.reason in (SLOT_BLOCKED, SLOT_FULL):
            body["alternative"] = self.alternative.to_dict() if self.alternative else None
        if self.warnings:
            body["warnings"] = list(self.warnings)
        return body


def build_event_payload(request: BookingRequest, window: TimeWindow) -> EventPayload:
    contact = request.email or request.phone or "no contact"
    lines = [f"Booked by: {request.name}"]
    if request.email:
        lines.append(f"Email: {request.email}")
    if request.phone:
        lines.append(f"Phone: {request.phone}")
    if request.notes:
        lines.append(f"Notes: {request.notes}")
    return EventPayload(
        summary=f"Appointment: {request.name} ({contact})",
        description="\n".join(lines),
        start=window.start,
        end=window.end,
        timezone=window.timezone,
        location=f"Phone: {request.phone}" if request.phone else None,
    )


class BookingOrchestrator:
    """Runs one booking request through every check, then persists and syncs it.

    Order: normalize time, lead time, office hours, replay lookup,
    availability probe, allocation (which persists), calendar event, event id
    attach. Local checks run before any external call and external probes
    before any mutation. A request whose idempotency key is already stored is
    answered from the stored row before the probe, since its own event would
    otherwise count against it. Only the request that inserted the row
    creates the calendar event.

    ``calendar_failure`` decides what happens when the calendar event cannot
    be created after the row is stored. ``allow_caller_duration`` is off for
    the pooled-unit flow, where the business slot length always applies.
    ``nearest_finder`` serves ``find_nearest`` and, with
    ``suggest_alternatives``, attaches a suggestion to slot_blocked and
    slot_full rejections.
    """

    def __init__(
        self,
        *,
        prober: AvailabilityProber,
        allocator: ResourceAllocator,
        events: EventSink,
        store: AppointmentStore,
        calendar_failure: CalendarFailurePolicy = CalendarFailurePolicy.ROLLBACK,
        lead_time_minutes: int = 30,
        allow_caller_duration: bool = True,
        min_duration_minutes: int = 15,
        max_duration_minutes: int = 240,
        nearest_finder: Optional[NearestSlotFinder] = None,
        suggest_alternatives: bool = True,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.prober = prober
        self.allocator = allocator
        self.events = events
        self.store = store
        self.calendar_failure = CalendarFailurePolicy(calendar_failure)
        self.lead_time_minutes = lead_time_minutes
        self.allow_caller_duration = allow_caller_duration
        self.min_duration_minutes = min_duration_minutes
        self.max_duration_minutes = max_duration_minutes
        self.nearest_finder = nearest_finder
        self.suggest_alternatives = suggest_alternatives
        self.clock = clock

    # ---------------------------------------------------------------- helpers

    def _validate(self, request: BookingRequest, config: BusinessConfig, *, require_name: bool = True) -> None:
        if require_name and not (request.name or "").strip():
            raise ValidationError("name is required", field="name")
        if not (request.start_local or "").strip():
            raise ValidationError("start time is required", field="start_time")
        if not config.calendar_id:
            raise ValidationError("calendar id is required", field="calendar_id")
        if config.capacity < 1:
            raise ValidationError("capacity must be at least 1", field="capacity")
        if not 0 <= config.office_start < config.office_end <= 24:
            raise ValidationError("office hours must satisfy 0 <= start < end <= 24", field="office_hours")

    def _duration(self, request: BookingRequest, config: BusinessConfig) -> int:
        if not self.allow_caller_duration:
            return config.duration_minutes
        return resolve_duration(
            request.duration_minutes,
            request.appointment_type,
            default_minutes=config.duration_minutes,
            type_durations=APPOINTMENT_DURATIONS,
            min_minutes=self.min_duration_minutes,
            max_minutes=self.max_duration_minutes,
        )

    def normalize(self, request: BookingRequest, config: BusinessConfig) -> TimeWindow:
        return normalize_time(request.start_local, config.timezone, self._duration(request, config))

    def _draft(self, request: BookingRequest, config: BusinessConfig, window: TimeWindow) -> AppointmentDraft:
        return AppointmentDraft(
            business_id=config.business_id,
            appointment_type=request.appointment_type,
            customer_name=request.name.strip(),
            customer_email=request.email,
            customer_phone=request.phone,
            start_at=window.start,
            end_at=window.end,
            local_start=request.start_local,
            timezone=window.timezone,
            calendar_id=config.calendar_id,
            notes=request.notes,
            idempotency_key=make_idempotency_key(
                config.business_id, request.appointment_type, window.start, request.name
            ),
        )

    def _rejected(self, stage: BookingStage, reason: str, request: BookingRequest) -> BookingOutcome:
        logger.info(f"Booking rejected for {request.name!r} at {stage.value}: {reason}")
        return BookingOutcome(status="rejected", stage=stage, reason=reason)

    def _replayed(self, appointment: AppointmentRecord, window: TimeWindow) -> BookingOutcome:
        logger.info(f"Replayed booking {appointment.id} (event={appointment.external_event_id})")
        return BookingOutcome(
            status="success",
            stage=BookingStage.COMPLETED,
            confirmation=self._confirmation(appointment, window, replayed=True),
        )

    @staticmethod
    def _confirmation(
        appointment: AppointmentRecord, window: TimeWindow, *, replayed: bool = False
    ) -> BookingConfirmation:
        return BookingConfirmation(
            appointment_id=appointment.id,
            resource_id=appointment.resource_id,
            event_id=appointment.external_event_id,
            window=window,
            replayed=replayed,
        )

    # ------------------------------------------------------------- operations

    async def find_nearest(
        self, request: BookingRequest, config: BusinessConfig
    ) -> Optional[SlotSuggestion]:
        config = config.with_overrides(request)
        self._validate(request, config, require_name=False)
        if self.nearest_finder is None:
            raise ValidationError("nearest-slot search is not configured")
        return await self.nearest_finder.find(self.normalize(request, config), config)

    async def book(self, request: BookingRequest, config: BusinessConfig) -> BookingOutcome:
        config = config.with_overrides(request)
        self._validate(request, config)

        window = self.normalize(request, config)

        decision = check_lead_time(window, self.clock(), self.lead_time_minutes)
        if not decision.accepted:
            return self._rejected(BookingStage.LEAD_TIME_CHECKED, decision.reason, request)

        decision = check_office_hours(window, config.office_start, config.office_end)
        if not decision.accepted:
            return self._rejected(BookingStage.HOURS_VALIDATED, decision.reason, request)

        draft = self._draft(request, config, window)
        existing = await self.store.find_by_idempotency_key(draft.idempotency_key)
        if existing is not None:
            return self._replayed(existing, window)

        decision = await self.prober.probe(
            window, config.calendar_id, config.effective_blocking_calendar_id, config.capacity
        )
        if not decision.accepted:
            outcome = self._rejected(BookingStage.AVAILABILITY_PROBED, decision.reason, request)
            if self.suggest_alternatives and self.nearest_finder is not None:
                outcome.alternative = await self.nearest_finder.find(window, config)
            return outcome

        allocation = await self.allocator.allocate(
            draft,
            resource_id=request.resource_id,
            resource_class=request.resource_class,
        )
        if not allocation.succeeded:
            return self._rejected(BookingStage.RESOURCE_ALLOCATED, allocation.reason, request)

        appointment = allocation.appointment
        if not allocation.inserted:
            # a concurrent identical request stored the row first and owns its event
            return self._replayed(appointment, window)

        return await self._sync_calendar(request, config, window, appointment)

    async def _sync_calendar(
        self,
        request: BookingRequest,
        config: BusinessConfig,
        window: TimeWindow,
        appointment: AppointmentRecord,
    ) -> BookingOutcome:
        try:
            event_id = await self.events.create_event(
                config.calendar_id, build_event_payload(request, window)
            )
        except Exception as exc:
            if self.calendar_failure is CalendarFailurePolicy.BEST_EFFORT:
                logger.warning(f"Calendar insert failed for {appointment.id}; keeping booking: {exc}")
                return BookingOutcome(
                    status="success",
                    stage=BookingStage.COMPLETED,
                    confirmation=self._confirmation(appointment, window),
                    warnings=[CALENDAR_INSERT_FAILED],
                )
            logger.warning(f"Calendar insert failed for {appointment.id}; rolling back: {exc}")
            await self._purge(appointment.id, reason="calendar insert failed")
            return BookingOutcome(status="error", stage=BookingStage.PERSISTED, reason=CALENDAR_INSERT_FAILED)

        try:
            await self.store.attach_event(appointment.id, event_id)
        except Exception as exc:
            logger.warning(f"Could not attach event {event_id} to {appointment.id}; compensating: {exc}")
            await self._compensate_event(config.calendar_id, event_id, appointment.id)
            await self._purge(appointment.id, reason="event id attach failed", event_id=event_id)
            return BookingOutcome(
                status="error", stage=BookingStage.EXTERNAL_EVENT_CREATED, reason=STORE_UPDATE_FAILED
            )

        appointment.external_event_id = event_id
        logger.info(f"Booked {appointment.id} for {request.name!r} (unit={appointment.resource_id}, event={event_id})")
        return BookingOutcome(
            status="success",
            stage=BookingStage.COMPLETED,
            confirmation=self._confirmation(appointment, window),
        )

    async def _purge(self, appointment_id: str, *, reason: str, event_id: Optional[str] = None) -> None:
        try:
            await self.store.delete_appointment(appointment_id)
        except Exception as exc:
            logger.critical(
                f"ROLLBACK FAILED: appointment {appointment_id} left in storage after {reason}: {exc}"
            )
            raise ConsistencyFailure(
                f"Could not roll back appointment {appointment_id} after {reason}",
                appointment_id=appointment_id,
                event_id=event_id,
            ) from exc

    async def _compensate_event(self, calendar_id: str, event_id: str, appointment_id: str) -> None:
        try:
            await self.events.delete_event(calendar_id, event_id)
        except Exception as exc:
            logger.critical(
                f"ROLLBACK FAILED: calendar event {event_id} orphaned for appointment {appointment_id}: {exc}"
            )
            raise ConsistencyFailure(
                f"Could not delete calendar event {event_id}",
                appointment_id=appointment_id,
                event_id=event_id,
            ) from exc
