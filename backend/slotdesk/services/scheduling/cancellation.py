from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from slotdesk.integrations.providers.base import (
    AppointmentRecord,
    AppointmentStore,
    DeleteOutcome,
    EventSink,
)
from slotdesk.services.scheduling.base import NOT_FOUND, TOO_CLOSE_TO_CANCEL, normalize_name
from slotdesk.services.scheduling.errors import ConsistencyFailure, DependencyFailure, ValidationError

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _digits(value: Optional[str]) -> str:
    return "".join(ch for ch in (value or "") if ch.isdigit())


@dataclass
class CancellationOutcome:
    status: str  # success | rejected | not_found
    reason: Optional[str] = None
    appointment: Optional[AppointmentRecord] = None
    calendar_result: Optional[DeleteOutcome] = None

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"status": self.status}
        if self.reason:
            body["reason"] = self.reason
        if self.appointment is not None:
            body["result"] = "cancelled"
            body["appointment_id"] = self.appointment.id
            body["start_utc"] = self.appointment.start_at.isoformat()
        if self.calendar_result is not None:
            body["calendar"] = self.calendar_result.value
        return body


class CancellationMatcher:
    """Find the caller's next cancellable appointment and remove it everywhere."""

    def __init__(
        self,
        store: AppointmentStore,
        events: EventSink,
        *,
        min_lead_minutes: int = 60,
        candidate_limit: int = 10,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.events = events
        self.min_lead_minutes = min_lead_minutes
        self.candidate_limit = candidate_limit
        self.clock = clock

    @staticmethod
    def _identity_matches(
        appointment: AppointmentRecord,
        name: str,
        email: Optional[str],
        phone: Optional[str],
    ) -> bool:
        if normalize_name(appointment.customer_name or "") != normalize_name(name):
            return False
        if email and (appointment.customer_email or "").strip().lower() == email.strip().lower():
            return True
        if phone and _digits(phone) and _digits(appointment.customer_phone) == _digits(phone):
            return True
        return False

    async def cancel(
        self,
        *,
        business_id: str,
        calendar_id: Optional[str],
        name: str,
        email: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> CancellationOutcome:
        if not (name or "").strip():
            raise ValidationError("name is required", field="name")
        if not (email or phone):
            raise ValidationError("email or phone is required", field="email")

        now = self.clock()
        candidates = await self.store.find_upcoming(business_id, now, self.candidate_limit)
        matches = sorted(
            (
                appt
                for appt in candidates
                if appt.status == "booked" and self._identity_matches(appt, name, email, phone)
            ),
            key=lambda appt: appt.start_at,
        )
        if not matches:
            logger.info(f"No upcoming appointment matches {name!r} for {business_id}")
            return CancellationOutcome(status="not_found", reason=NOT_FOUND)

        cutoff = now + timedelta(minutes=self.min_lead_minutes)
        target = next((appt for appt in matches if appt.start_at >= cutoff), None)
        if target is None:
            logger.info(f"All {len(matches)} matches for {name!r} start within {self.min_lead_minutes} min")
            return CancellationOutcome(status="rejected", reason=TOO_CLOSE_TO_CANCEL)

        calendar_result = None
        event_calendar = target.calendar_id or calendar_id
        if target.external_event_id and event_calendar:
            calendar_result = await self.events.delete_event(event_calendar, target.external_event_id)
            if calendar_result is DeleteOutcome.ALREADY_GONE:
                logger.info(f"Event {target.external_event_id} already gone; purging {target.id}")

        try:
            await self.store.delete_appointment(target.id)
        except DependencyFailure as exc:
            if calendar_result is None:
                raise
            logger.critical(
                f"CANCEL INCOMPLETE: event {target.external_event_id} removed but appointment "
                f"{target.id} still booked: {exc}"
            )
            raise ConsistencyFailure(
                f"Could not purge appointment {target.id} after deleting its event",
                appointment_id=target.id,
                event_id=target.external_event_id,
            ) from exc
        logger.info(f"Cancelled appointment {target.id} for {name!r}")
        return CancellationOutcome(status="success", appointment=target, calendar_result=calendar_result)
