import logging
from datetime import datetime
from typing import Optional, List
import uuid

from sqlalchemy import Boolean, select, delete, update, func, literal_column
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from slotdesk.core.config import settings
from slotdesk.models import Business, Resource, Appointment
from slotdesk.integrations.providers.base import (
    AppointmentDraft,
    AppointmentRecord,
    ConstraintKind,
    ResourceInfo,
    UpsertResult,
)
from slotdesk.services.scheduling.base import BusinessConfig
from slotdesk.services.scheduling.errors import DependencyFailure

logger = logging.getLogger(__name__)

# PostgreSQL SQLSTATE codes
_CONSTRAINT_KINDS = {
    "23P01": ConstraintKind.OVERLAP,  # exclusion_violation
    "23514": ConstraintKind.CAPACITY,  # check_violation
    "23505": ConstraintKind.UNIQUE,  # unique_violation
}


def classify_integrity_error(exc: IntegrityError) -> Optional[ConstraintKind]:
    """Map a driver error to a constraint kind using its SQLSTATE."""
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code is None:
        # asyncpg exceptions sit one level further down
        code = getattr(getattr(orig, "__cause__", None), "sqlstate", None)
    return _CONSTRAINT_KINDS.get(code)


def _parse_uuid(value: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _to_record(appointment: Appointment) -> AppointmentRecord:
    return AppointmentRecord(
        id=str(appointment.id),
        business_id=str(appointment.business_id),
        appointment_type=appointment.appointment_type,
        customer_name=appointment.customer_name,
        customer_email=appointment.customer_email,
        customer_phone=appointment.customer_phone,
        start_at=appointment.start_at,
        end_at=appointment.end_at,
        local_start=appointment.local_start,
        timezone=appointment.timezone,
        idempotency_key=appointment.idempotency_key,
        status=appointment.status,
        resource_id=str(appointment.resource_id) if appointment.resource_id else None,
        calendar_id=appointment.calendar_id,
        external_event_id=appointment.external_event_id,
        notes=appointment.notes,
        source=appointment.source,
    )


def _to_resource(resource: Resource) -> ResourceInfo:
    return ResourceInfo(
        id=str(resource.id),
        business_id=str(resource.business_id),
        model=resource.model,
        trim=resource.trim,
        active=bool(resource.active),
    )


class DBService:
    """
    Service for database operations

    Serves as the appointment store, the inventory source and the business
    directory for the scheduling engine.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    # ==================== BUSINESSES ====================

    async def get_business(self, business_id: str) -> Optional[Business]:
        """Get business by ID"""
        b_uuid = _parse_uuid(business_id)
        if b_uuid is None:
            return None

        result = await self.session.execute(
            select(Business).where(Business.id == b_uuid)
        )
        return result.scalar_one_or_none()

    async def get_business_config(self, business_id: str) -> Optional[BusinessConfig]:
        """Scheduling policy for a business, with app defaults for unset fields"""
        try:
            business = await self.get_business(business_id)
        except SQLAlchemyError as e:
            raise DependencyFailure("directory", str(e)) from e
        if not business:
            return None

        defaults = settings.scheduling
        return BusinessConfig(
            business_id=str(business.id),
            name=business.name,
            timezone=business.timezone or defaults.default_timezone,
            office_start=business.office_start if business.office_start is not None else defaults.default_office_start,
            office_end=business.office_end if business.office_end is not None else defaults.default_office_end,
            duration_minutes=business.slot_duration_minutes or defaults.default_duration_minutes,
            capacity=business.capacity or defaults.default_capacity,
            calendar_id=business.google_calendar_id,
            blocking_calendar_id=business.blocking_calendar_id,
            calendar_credentials=business.google_refresh_token,
        )

    # ==================== RESOURCES ====================

    async def list_active(self, business_id: str, model: str) -> List[ResourceInfo]:
        """Active units of a model (case-insensitive), ordered by id"""
        b_uuid = _parse_uuid(business_id)
        if b_uuid is None:
            return []

        try:
            result = await self.session.execute(
                select(Resource)
                .where(
                    Resource.business_id == b_uuid,
                    Resource.active.is_(True),
                    func.lower(Resource.model) == model.strip().lower(),
                )
                .order_by(Resource.id)
            )
        except SQLAlchemyError as e:
            raise DependencyFailure("inventory", str(e)) from e
        return [_to_resource(row) for row in result.scalars().all()]

    async def get_resource(self, resource_id: str) -> Optional[ResourceInfo]:
        """Get a unit by ID regardless of its active flag"""
        r_uuid = _parse_uuid(resource_id)
        if r_uuid is None:
            return None

        try:
            result = await self.session.execute(
                select(Resource).where(Resource.id == r_uuid)
            )
        except SQLAlchemyError as e:
            raise DependencyFailure("inventory", str(e)) from e
        resource = result.scalar_one_or_none()
        return _to_resource(resource) if resource else None

    # ==================== APPOINTMENTS ====================

    async def upsert_appointment(self, draft: AppointmentDraft) -> UpsertResult:
        """
        Insert an appointment, or return the existing row with the same idempotency key

        Constraint violations come back as a tagged result, not an exception.
        ``inserted`` is read from the row version: xmax is 0 only for a fresh insert.
        """
        values = {
            "business_id": uuid.UUID(draft.business_id),
            "resource_id": uuid.UUID(draft.resource_id) if draft.resource_id else None,
            "appointment_type": draft.appointment_type,
            "customer_name": draft.customer_name,
            "customer_email": draft.customer_email,
            "customer_phone": draft.customer_phone,
            "start_at": draft.start_at,
            "end_at": draft.end_at,
            "local_start": draft.local_start,
            "timezone": draft.timezone,
            "status": draft.status,
            "source": draft.source,
            "calendar_id": draft.calendar_id,
            "notes": draft.notes,
            "idempotency_key": draft.idempotency_key,
        }
        stmt = (
            pg_insert(Appointment)
            .values(**values)
            .on_conflict_do_update(
                index_elements=[Appointment.idempotency_key],
                set_={"updated_at": datetime.utcnow()},
            )
            .returning(Appointment, literal_column("(xmax = 0)", Boolean).label("inserted"))
            .execution_options(populate_existing=True)
        )
        try:
            result = await self.session.execute(stmt)
            appointment, inserted = result.one()
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            kind = classify_integrity_error(e)
            if kind is not None:
                return UpsertResult.constraint_violation(kind, detail=str(e.orig))
            logger.error(f"Appointment insert failed: {e}")
            return UpsertResult.error(str(e.orig))
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Appointment insert failed: {e}")
            return UpsertResult.error(str(e))
        return UpsertResult.ok(_to_record(appointment), inserted=bool(inserted))

    async def find_by_idempotency_key(self, idempotency_key: str) -> Optional[AppointmentRecord]:
        """Get the appointment stored under an idempotency key"""
        try:
            result = await self.session.execute(
                select(Appointment).where(Appointment.idempotency_key == idempotency_key)
            )
        except SQLAlchemyError as e:
            raise DependencyFailure("store", str(e)) from e
        appointment = result.scalar_one_or_none()
        return _to_record(appointment) if appointment else None

    async def attach_event(self, appointment_id: str, event_id: str) -> None:
        """Store the external calendar event id on an appointment"""
        try:
            await self.session.execute(
                update(Appointment)
                .where(Appointment.id == uuid.UUID(appointment_id))
                .values(external_event_id=event_id, updated_at=datetime.utcnow())
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise DependencyFailure("store", str(e)) from e

    async def delete_appointment(self, appointment_id: str) -> None:
        """Delete an appointment by ID"""
        try:
            await self.session.execute(
                delete(Appointment).where(Appointment.id == uuid.UUID(appointment_id))
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise DependencyFailure("store", str(e)) from e

    async def find_upcoming(
        self,
        business_id: str,
        since: datetime,
        limit: int = 10,
    ) -> List[AppointmentRecord]:
        """Booked appointments starting at or after ``since``, soonest first"""
        b_uuid = _parse_uuid(business_id)
        if b_uuid is None:
            return []

        try:
            result = await self.session.execute(
                select(Appointment)
                .where(
                    Appointment.business_id == b_uuid,
                    Appointment.status == "booked",
                    Appointment.start_at >= since,
                )
                .order_by(Appointment.start_at.asc())
                .limit(limit)
            )
        except SQLAlchemyError as e:
            raise DependencyFailure("store", str(e)) from e
        return [_to_record(row) for row in result.scalars().all()]
