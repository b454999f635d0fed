from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Optional

from slotdesk.integrations.providers.base import (
    AppointmentDraft,
    AppointmentRecord,
    AppointmentStore,
    ConstraintKind,
    InventorySource,
    ResourceInfo,
    UpsertStatus,
)
from slotdesk.services.scheduling.base import (
    EXACT_TRIM_UNAVAILABLE,
    NO_UNIT_AVAILABLE,
    NO_UNITS_OF_MODEL,
    OVERLAP,
    ResourceClass,
)
from slotdesk.services.scheduling.errors import DependencyFailure, ResourceInvalid

logger = logging.getLogger(__name__)

# Violations that mean "this unit is taken", so the next candidate may still fit
_RETRYABLE = {ConstraintKind.OVERLAP, ConstraintKind.CAPACITY}


@dataclass
class Allocation:
    appointment: Optional[AppointmentRecord] = None
    reason: Optional[str] = None
    inserted: bool = True

    @property
    def succeeded(self) -> bool:
        return self.appointment is not None


def _matches(left: Optional[str], right: Optional[str]) -> bool:
    return (left or "").strip().lower() == (right or "").strip().lower()


class ResourceAllocator:
    """Persist an appointment against one unit, trying a pool in stable order.

    The store's exclusion constraint on (unit, time range) is what makes this
    race-safe: concurrent requests may both pass the advisory availability
    probe, but at most one insert per unit and window can succeed.
    """

    def __init__(self, store: AppointmentStore, inventory: InventorySource) -> None:
        self.store = store
        self.inventory = inventory

    async def allocate(
        self,
        draft: AppointmentDraft,
        *,
        resource_id: Optional[str] = None,
        resource_class: Optional[ResourceClass] = None,
    ) -> Allocation:
        if resource_id:
            return await self._allocate_explicit(draft, resource_id)
        if resource_class is not None:
            return await self._allocate_from_pool(draft, resource_class)
        return await self._insert_single(draft)

    async def _allocate_explicit(self, draft: AppointmentDraft, resource_id: str) -> Allocation:
        resource = await self.inventory.get_resource(resource_id)
        if resource is None or str(resource.business_id) != str(draft.business_id):
            raise ResourceInvalid(f"Unit {resource_id} not found for this business", field="resource_id")
        if not resource.active:
            raise ResourceInvalid(f"Unit {resource_id} is not active", field="resource_id")
        return await self._insert_single(replace(draft, resource_id=str(resource.id)))

    async def _insert_single(self, draft: AppointmentDraft) -> Allocation:
        result = await self.store.upsert_appointment(draft)
        if result.status is UpsertStatus.OK:
            return Allocation(appointment=result.appointment, inserted=result.inserted)
        if result.status is UpsertStatus.CONSTRAINT_VIOLATION and result.violation in _RETRYABLE:
            logger.info(f"Insert rejected by {result.violation.value} constraint for unit {draft.resource_id}")
            return Allocation(reason=OVERLAP)
        raise DependencyFailure("store", result.detail or "appointment insert failed")

    async def _allocate_from_pool(
        self, draft: AppointmentDraft, resource_class: ResourceClass
    ) -> Allocation:
        units = [
            unit
            for unit in await self.inventory.list_active(draft.business_id, resource_class.model)
            if unit.active and _matches(unit.model, resource_class.model)
        ]
        if not units:
            logger.info(f"No active units of model {resource_class.model!r} for {draft.business_id}")
            return Allocation(reason=NO_UNITS_OF_MODEL)

        required_trim = resource_class.required_trim
        if required_trim:
            units = [unit for unit in units if _matches(unit.trim, required_trim)]
            if not units:
                logger.info(f"No {resource_class.model!r} units with trim {required_trim!r}")
                return Allocation(reason=EXACT_TRIM_UNAVAILABLE)

        for unit in self._ordered(units):
            result = await self.store.upsert_appointment(replace(draft, resource_id=str(unit.id)))
            if result.status is UpsertStatus.OK:
                logger.info(f"Allocated unit {unit.id} for {draft.customer_name}")
                return Allocation(appointment=result.appointment, inserted=result.inserted)
            if result.status is UpsertStatus.CONSTRAINT_VIOLATION and result.violation in _RETRYABLE:
                logger.debug(f"Unit {unit.id} taken ({result.violation.value}); trying next")
                continue
            raise DependencyFailure("store", result.detail or f"insert failed for unit {unit.id}")

        logger.info(f"All {len(units)} {resource_class.model!r} units are taken")
        return Allocation(reason=NO_UNIT_AVAILABLE)

    @staticmethod
    def _ordered(units: list[ResourceInfo]) -> list[ResourceInfo]:
        return sorted(units, key=lambda unit: str(unit.id))
