"""Tests for unit allocation against the appointment store."""

import asyncio

import pytest

from slotdesk.integrations.providers.base import ConstraintKind, UpsertResult
from slotdesk.services.scheduling import ResourceAllocator, ResourceClass
from slotdesk.services.scheduling.base import (
    EXACT_TRIM_UNAVAILABLE,
    NO_UNIT_AVAILABLE,
    NO_UNITS_OF_MODEL,
    OVERLAP,
)
from slotdesk.services.scheduling.errors import DependencyFailure, ResourceInvalid

from conftest import OTHER_BUSINESS_ID, FakeInventory, FakeStore, make_draft, unit


@pytest.fixture
def allocator(store, inventory):
    return ResourceAllocator(store, inventory)


class TestSingleInsert:
    @pytest.mark.asyncio
    async def test_without_unit(self, allocator, store):
        allocation = await allocator.allocate(make_draft())
        assert allocation.succeeded
        assert allocation.appointment.resource_id is None
        assert len(store.rows) == 1

    @pytest.mark.asyncio
    async def test_identical_request_returns_existing_row(self, allocator, store):
        first = await allocator.allocate(make_draft())
        second = await allocator.allocate(make_draft())
        assert first.appointment.id == second.appointment.id
        assert len(store.rows) == 1


class TestExplicitUnit:
    @pytest.mark.asyncio
    async def test_books_named_unit(self, allocator):
        allocation = await allocator.allocate(make_draft(), resource_id="unit-c")
        assert allocation.appointment.resource_id == "unit-c"

    @pytest.mark.asyncio
    async def test_unknown_unit(self, allocator):
        with pytest.raises(ResourceInvalid) as exc:
            await allocator.allocate(make_draft(), resource_id="unit-zzz")
        assert exc.value.code == "invalid_unit"

    @pytest.mark.asyncio
    async def test_inactive_unit(self, allocator):
        with pytest.raises(ResourceInvalid):
            await allocator.allocate(make_draft(), resource_id="unit-x")

    @pytest.mark.asyncio
    async def test_unit_of_another_business(self, store):
        inventory = FakeInventory([unit("unit-other", business_id=OTHER_BUSINESS_ID)])
        with pytest.raises(ResourceInvalid):
            await ResourceAllocator(store, inventory).allocate(make_draft(), resource_id="unit-other")
        assert store.upserts == 0

    @pytest.mark.asyncio
    async def test_named_unit_taken(self, allocator):
        await allocator.allocate(make_draft(name="A"), resource_id="unit-a")
        allocation = await allocator.allocate(make_draft(name="B"), resource_id="unit-a")
        assert not allocation.succeeded
        assert allocation.reason == OVERLAP


class TestPoolAllocation:
    @pytest.mark.asyncio
    async def test_units_tried_in_id_order(self, allocator):
        allocation = await allocator.allocate(make_draft(), resource_class=ResourceClass("Model Y"))
        assert allocation.appointment.resource_id == "unit-a"

    @pytest.mark.asyncio
    async def test_model_match_ignores_case(self, allocator):
        allocation = await allocator.allocate(make_draft(), resource_class=ResourceClass("model y"))
        assert allocation.succeeded

    @pytest.mark.asyncio
    async def test_taken_unit_is_skipped(self, allocator, store):
        await allocator.allocate(make_draft(name="A"), resource_id="unit-a")
        allocation = await allocator.allocate(make_draft(name="B"), resource_class=ResourceClass("Model Y"))
        assert allocation.appointment.resource_id == "unit-b"

    @pytest.mark.asyncio
    async def test_pool_exhausted(self, allocator):
        await allocator.allocate(make_draft(name="A"), resource_class=ResourceClass("Model Y"))
        await allocator.allocate(make_draft(name="B"), resource_class=ResourceClass("Model Y"))
        allocation = await allocator.allocate(make_draft(name="C"), resource_class=ResourceClass("Model Y"))
        assert allocation.reason == NO_UNIT_AVAILABLE

    @pytest.mark.asyncio
    async def test_non_overlapping_windows_share_a_unit(self, allocator):
        await allocator.allocate(make_draft("2025-01-01T09:00", name="A"), resource_id="unit-c")
        allocation = await allocator.allocate(
            make_draft("2025-01-01T09:30", name="B"), resource_class=ResourceClass("Model 3")
        )
        assert allocation.appointment.resource_id == "unit-c"

    @pytest.mark.asyncio
    async def test_no_units_of_model(self, allocator, store):
        allocation = await allocator.allocate(make_draft(), resource_class=ResourceClass("Cybertruck"))
        assert allocation.reason == NO_UNITS_OF_MODEL
        assert store.upserts == 0

    @pytest.mark.asyncio
    async def test_exact_trim_filters_pool(self, allocator):
        allocation = await allocator.allocate(
            make_draft(), resource_class=ResourceClass("Model Y", trim="long range", exact=True)
        )
        assert allocation.appointment.resource_id == "unit-b"

    @pytest.mark.asyncio
    async def test_exact_trim_unavailable_is_distinct(self, allocator):
        allocation = await allocator.allocate(
            make_draft(), resource_class=ResourceClass("Model Y", trim="Plaid", exact=True)
        )
        assert allocation.reason == EXACT_TRIM_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_trim_without_exact_is_a_preference_only(self, allocator):
        allocation = await allocator.allocate(
            make_draft(), resource_class=ResourceClass("Model Y", trim="Plaid")
        )
        assert allocation.succeeded

    @pytest.mark.asyncio
    async def test_store_error_aborts_loop(self, allocator, store):
        store.forced_result = UpsertResult.error("connection reset")
        with pytest.raises(DependencyFailure) as exc:
            await allocator.allocate(make_draft(), resource_class=ResourceClass("Model Y"))
        assert exc.value.dependency == "store"
        assert store.upserts == 1

    @pytest.mark.asyncio
    async def test_unique_violation_is_not_retried(self, allocator, store):
        store.forced_result = UpsertResult.constraint_violation(ConstraintKind.UNIQUE)
        with pytest.raises(DependencyFailure):
            await allocator.allocate(make_draft(), resource_class=ResourceClass("Model Y"))
        assert store.upserts == 1

    @pytest.mark.asyncio
    async def test_capacity_violation_moves_to_next_unit(self, allocator, store):
        store.forced_result = UpsertResult.constraint_violation(ConstraintKind.CAPACITY)
        allocation = await allocator.allocate(make_draft(), resource_class=ResourceClass("Model Y"))
        assert allocation.reason == NO_UNIT_AVAILABLE
        assert store.upserts == 2


class TestConcurrentAllocation:
    @pytest.mark.asyncio
    async def test_single_unit_is_booked_once(self):
        store = FakeStore()
        allocator = ResourceAllocator(store, FakeInventory([unit("only-unit", model="Roadster")]))
        results = await asyncio.gather(
            allocator.allocate(make_draft(name="A"), resource_class=ResourceClass("Roadster")),
            allocator.allocate(make_draft(name="B"), resource_class=ResourceClass("Roadster")),
        )
        assert sum(1 for result in results if result.succeeded) == 1
        assert [result.reason for result in results if not result.succeeded] == [NO_UNIT_AVAILABLE]
        assert len(store.rows) == 1
        assert store.upserts == 2
