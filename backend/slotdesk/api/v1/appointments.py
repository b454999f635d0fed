from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import pydantic
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from slotdesk.core.config import settings
from slotdesk.core.database import get_db
from slotdesk.integrations.google_calendar import GoogleCalendarClient
from slotdesk.integrations.google_calendar.oauth import google_oauth
from slotdesk.integrations.providers.base import AppointmentStore, InventorySource
from slotdesk.services.db_service import DBService
from slotdesk.services.scheduling import (
    AvailabilityProber,
    BookingOrchestrator,
    BookingRequest,
    BusinessConfig,
    CalendarFailurePolicy,
    CancellationMatcher,
    NearestSlotFinder,
    ProbeFailurePolicy,
    ResourceAllocator,
    ResourceClass,
)
from slotdesk.services.scheduling.errors import (
    ConsistencyFailure,
    DependencyFailure,
    ValidationError,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["appointments"])

_STATUS_CODES = {
    "success": 200,
    "rejected": 409,
    "not_found": 404,
    "error": 502,
}


class _BaseToolArgs(BaseModel):
    """Common base for tool argument models.

    Tolerant of extra fields coming from the agent; accepts both camelCase
    and snake_case keys.
    """

    class Config:
        extra = "ignore"
        populate_by_name = True


class _BookingArgs(_BaseToolArgs):
    business_id: str = Field(alias="businessId")
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    start_time: Optional[str] = Field(None, alias="startTime")
    timezone: Optional[str] = None
    calendar_id: Optional[str] = Field(None, alias="calendarId")
    blocking_calendar_id: Optional[str] = Field(None, alias="blockingCalendarId")
    notes: Optional[str] = None
    office_start: Optional[float] = Field(None, alias="officeStart")
    office_end: Optional[float] = Field(None, alias="officeEnd")
    capacity: Optional[int] = None


class AppointmentActionArgs(_BookingArgs):
    action: str  # book | cancel | findNearest
    resource_id: Optional[str] = Field(None, alias="resourceId")
    appointment_type: str = Field("appointment", alias="appointmentType")
    duration_minutes: Optional[int] = Field(None, alias="durationMinutes")


class BookVehicleArgs(_BookingArgs):
    model: Optional[str] = None
    trim: Optional[str] = None
    exact_trim: bool = Field(False, alias="exactTrim")
    resource_id: Optional[str] = Field(None, alias="carId")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class BookingBackend:
    """Collaborators for one request.

    ``directory`` resolves a business id to its ``BusinessConfig``;
    ``calendar_factory`` builds the calendar client (busy source and event
    sink) for that business.
    """

    directory: Any
    store: AppointmentStore
    inventory: InventorySource
    calendar_factory: Callable[[BusinessConfig], Any]
    clock: Callable[[], datetime] = _utcnow


def _google_calendar(config: BusinessConfig) -> GoogleCalendarClient:
    return GoogleCalendarClient(
        google_oauth.token_provider(config.calendar_credentials),
        timeout=settings.google.http_timeout_seconds,
    )


async def get_backend(db: AsyncSession = Depends(get_db)) -> BookingBackend:
    db_service = DBService(db)
    return BookingBackend(
        directory=db_service,
        store=db_service,
        inventory=db_service,
        calendar_factory=_google_calendar,
    )


def _is_tool_call(payload: Dict[str, Any]) -> bool:
    return isinstance(payload.get("message"), dict)


def _extract_tool_arguments(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Extract the first tool call's arguments from a Vapi tool payload.

    Expected shape (simplified):
    {
        "message": {
            "toolCallList": [
                {
                    "id": "call_123",
                    "function": {
                        "name": "book_appointment",
                        "arguments": { ... } or "{...}"  # JSON string
                    }
                }
            ]
        }
    }
    """

    message = payload.get("message") or {}
    tool_calls: List[Dict[str, Any]] = (
        message.get("toolCallList")
        or message.get("toolCalls")
        or []
    )

    if not tool_calls:
        raise HTTPException(status_code=400, detail="Missing toolCallList in request payload")

    function = (tool_calls[0] or {}).get("function") or {}
    args = function.get("arguments")

    # Vapi sometimes sends arguments as a JSON string
    if isinstance(args, str):
        try:
            args = json.loads(args)
        except json.JSONDecodeError:
            raise HTTPException(status_code=400, detail="Invalid JSON in tool arguments")

    if not isinstance(args, dict):
        raise HTTPException(status_code=400, detail="Tool arguments must be an object")

    return args


def _tool_call_id(payload: Dict[str, Any]) -> Optional[str]:
    message = payload.get("message") or {}
    tool_calls: List[Dict[str, Any]] = (
        message.get("toolCallList")
        or message.get("toolCalls")
        or []
    )
    return (tool_calls[0] or {}).get("id") if tool_calls else None


def _vapi_result(message: str, tool_call_id: Optional[str] = None) -> Dict[str, Any]:
    """Wrap a plain-text result in Vapi's expected response envelope.

    If a tool_call_id is provided, include it so Vapi can match the result to
    the originating tool call.
    """

    result: Dict[str, Any] = {"result": message}
    if tool_call_id:
        result["toolCallId"] = tool_call_id
    return {"results": [result]}


async def _read_payload(request: Request) -> Dict[str, Any]:
    try:
        payload = await request.json()
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Request body must be JSON")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Request body must be an object")
    return payload


def _parse_args(model: type, raw_args: Dict[str, Any]):
    try:
        return model(**raw_args)
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid arguments: {e.errors()[0].get('msg')}") from e


def _respond(payload: Dict[str, Any], body: Dict[str, Any], status_code: int):
    """Plain JSON with a mapped status, or Vapi's envelope with 200 for tool calls."""
    if _is_tool_call(payload):
        return _vapi_result(json.dumps(body), _tool_call_id(payload))
    return JSONResponse(status_code=status_code, content=body)


def _error_body(reason: str, detail: Optional[str] = None, **extra: Any) -> Dict[str, Any]:
    body: Dict[str, Any] = {"status": "error", "reason": reason}
    if detail:
        body["detail"] = detail
    body.update({k: v for k, v in extra.items() if v is not None})
    return body


def _build_orchestrator(
    backend: BookingBackend,
    calendar: Any,
    *,
    pooled: bool,
) -> BookingOrchestrator:
    sched = settings.scheduling
    # Probe failure policy per variant: general bookings fail closed; pooled
    # bookings default to open because the unit exclusion constraint still
    # guards allocation.
    probe_policy = sched.pooled_probe_failure_policy if pooled else sched.probe_failure_policy
    # "events" counts primary calendar events instead of freebusy intervals
    event_counter = calendar if sched.capacity_source == "events" else None
    prober = AvailabilityProber(
        calendar,
        failure_policy=ProbeFailurePolicy(probe_policy),
        event_counter=event_counter,
    )
    finder = NearestSlotFinder(
        prober,
        step_minutes=sched.search_step_minutes,
        horizon_minutes=sched.search_horizon_minutes,
        lead_time_minutes=sched.lead_time_minutes,
        clock=backend.clock,
    )
    return BookingOrchestrator(
        prober=prober,
        allocator=ResourceAllocator(backend.store, backend.inventory),
        events=calendar,
        store=backend.store,
        calendar_failure=CalendarFailurePolicy(sched.calendar_failure_policy),
        lead_time_minutes=sched.lead_time_minutes,
        allow_caller_duration=not pooled,
        min_duration_minutes=sched.min_duration_minutes,
        max_duration_minutes=sched.max_duration_minutes,
        nearest_finder=finder,
        suggest_alternatives=sched.suggest_alternatives,
        clock=backend.clock,
    )


def _booking_request(args: _BookingArgs, **extra: Any) -> BookingRequest:
    return BookingRequest(
        business_id=args.business_id,
        name=args.name or "",
        start_local=args.start_time or "",
        email=args.email,
        phone=args.phone,
        timezone=args.timezone,
        calendar_id=args.calendar_id,
        blocking_calendar_id=args.blocking_calendar_id,
        notes=args.notes,
        office_start=args.office_start,
        office_end=args.office_end,
        capacity=args.capacity,
        **extra,
    )


async def _run(payload: Dict[str, Any], backend: BookingBackend, handler) -> Any:
    """Resolve the business, run ``handler`` and map failures to responses."""
    raw_args = _extract_tool_arguments(payload) if _is_tool_call(payload) else payload
    try:
        body, status_code = await handler(raw_args)
    except ValidationError as e:
        logger.info(f"Invalid request: {e}")
        body, status_code = _error_body(e.code, str(e), field=e.field), 400
    except ConsistencyFailure as e:
        logger.critical(
            f"Storage and calendar out of sync (appointment={e.appointment_id}, event={e.event_id}): {e}"
        )
        body, status_code = _error_body("consistency_failure", str(e)), 500
    except DependencyFailure as e:
        logger.error(f"Dependency failure ({e.dependency}): {e}")
        body, status_code = _error_body("dependency_failure"), 502
    return _respond(payload, body, status_code)


async def _load_config(backend: BookingBackend, business_id: str) -> Optional[BusinessConfig]:
    config = await backend.directory.get_business_config(business_id)
    if config is None:
        logger.info(f"Unknown business {business_id}")
    return config


async def _close(calendar: Any) -> None:
    close = getattr(calendar, "close", None)
    if close is not None:
        await close()


_BUSINESS_NOT_FOUND = ({"status": "not_found", "reason": "business_not_found"}, 404)


@router.post("/appointments/action")
async def appointment_action(request: Request, backend: BookingBackend = Depends(get_backend)):
    """Action endpoint: book, cancel or findNearest for a single business.

    Accepts a plain JSON body or a Vapi tool-call envelope. Tool calls always
    get HTTP 200 with the JSON result serialized into the envelope.
    """

    payload = await _read_payload(request)

    async def handle(raw_args: Dict[str, Any]):
        args = _parse_args(AppointmentActionArgs, raw_args)
        config = await _load_config(backend, args.business_id)
        if config is None:
            return _BUSINESS_NOT_FOUND

        calendar = backend.calendar_factory(config)
        try:
            if args.action == "cancel":
                matcher = CancellationMatcher(
                    backend.store,
                    calendar,
                    min_lead_minutes=settings.scheduling.cancel_lead_time_minutes,
                    candidate_limit=settings.scheduling.cancel_candidate_limit,
                    clock=backend.clock,
                )
                outcome = await matcher.cancel(
                    business_id=config.business_id,
                    calendar_id=args.calendar_id or config.calendar_id,
                    name=args.name or "",
                    email=args.email,
                    phone=args.phone,
                )
                return outcome.to_dict(), _STATUS_CODES[outcome.status]

            orchestrator = _build_orchestrator(backend, calendar, pooled=False)
            booking_request = _booking_request(
                args,
                resource_id=args.resource_id,
                appointment_type=args.appointment_type,
                duration_minutes=args.duration_minutes,
            )

            if args.action == "book":
                outcome = await orchestrator.book(booking_request, config)
                return outcome.to_dict(), _STATUS_CODES[outcome.status]

            if args.action == "findNearest":
                suggestion = await orchestrator.find_nearest(booking_request, config)
                if suggestion is None:
                    return {"status": "not_found", "reason": "not_found"}, 404
                return {"status": "success", "slot": suggestion.to_dict()}, 200

            raise ValidationError(f"Unknown action {args.action!r}", field="action")
        finally:
            await _close(calendar)

    return await _run(payload, backend, handle)


@router.post("/appointments/book-vehicle")
async def book_vehicle(request: Request, backend: BookingBackend = Depends(get_backend)):
    """Pooled-unit booking: any active unit of a model, optionally an exact trim.

    The business slot length always applies; a caller duration is ignored.
    """

    payload = await _read_payload(request)

    async def handle(raw_args: Dict[str, Any]):
        args = _parse_args(BookVehicleArgs, raw_args)
        if not args.resource_id and not (args.model or "").strip():
            raise ValidationError("model or carId is required", field="model")

        config = await _load_config(backend, args.business_id)
        if config is None:
            return _BUSINESS_NOT_FOUND

        resource_class = None
        if not args.resource_id:
            resource_class = ResourceClass(model=args.model.strip(), trim=args.trim, exact=args.exact_trim)

        calendar = backend.calendar_factory(config)
        try:
            orchestrator = _build_orchestrator(backend, calendar, pooled=True)
            outcome = await orchestrator.book(
                _booking_request(
                    args,
                    resource_id=args.resource_id,
                    resource_class=resource_class,
                    appointment_type="vehicle",
                ),
                config,
            )
            return outcome.to_dict(), _STATUS_CODES[outcome.status]
        finally:
            await _close(calendar)

    return await _run(payload, backend, handle)
