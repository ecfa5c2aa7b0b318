"""
Inventory ledger against a real store.

Concurrent reservations run in separate sessions so each one is its own
transaction, the way concurrent requests are.
"""
import asyncio
import random

import pytest

from sportsfest.services.inventory import (
    reserve_inventory,
    release_inventory,
    confirm_inventory_sale,
    get_inventory_status,
    INSUFFICIENT_INVENTORY,
)


async def _reserve_in_own_session(session_factory, product_id, quantity):
    async with session_factory() as session:
        return await reserve_inventory(session, product_id, quantity)


class TestReserveInventory:
    """Test reserve_inventory."""

    @pytest.mark.asyncio
    async def test_reserve_reduces_available(self, db, seed):
        year = await seed.event_year()
        product = await seed.product(year, total_inventory=10, sold_count=2)

        result = await reserve_inventory(db, product.id, 3)

        assert result.success is True
        assert result.available_inventory == 5
        status = await get_inventory_status(db, product.id)
        assert status.reserved_count == 3
        assert status.sold_count == 2

    @pytest.mark.asyncio
    async def test_reserve_exact_remaining(self, db, seed):
        year = await seed.event_year()
        product = await seed.product(year, total_inventory=4, reserved_count=1)

        result = await reserve_inventory(db, product.id, 3)

        assert result.success is True
        assert result.available_inventory == 0

    @pytest.mark.asyncio
    async def test_reserve_more_than_available_changes_nothing(self, db, seed):
        year = await seed.event_year()
        product = await seed.product(year, total_inventory=5, sold_count=3, reserved_count=1)

        result = await reserve_inventory(db, product.id, 2)

        assert result.success is False
        assert result.error == INSUFFICIENT_INVENTORY
        status = await get_inventory_status(db, product.id)
        assert (status.sold_count, status.reserved_count) == (3, 1)

    @pytest.mark.asyncio
    async def test_unknown_product(self, db):
        result = await reserve_inventory(db, 987654, 1)

        assert result.success is False
        assert result.error == INSUFFICIENT_INVENTORY

    @pytest.mark.asyncio
    async def test_unlimited_inventory_always_reserves(self, db, seed):
        year = await seed.event_year()
        product = await seed.product(year, total_inventory=None)

        for _ in range(3):
            result = await reserve_inventory(db, product.id, 500)
            assert result.success is True
            assert result.available_inventory is None

        status = await get_inventory_status(db, product.id)
        assert status.reserved_count == 1500
        assert status.available_inventory is None


class TestConcurrentReservations:
    """Concurrent callers never oversell."""

    @pytest.mark.asyncio
    async def test_burst_never_over_reserves(self, db, seed, session_factory):
        year = await seed.event_year()
        product = await seed.product(year, total_inventory=10)

        results = await asyncio.gather(*[
            _reserve_in_own_session(session_factory, product.id, 1) for _ in range(25)
        ])

        assert sum(1 for r in results if r.success) == 10
        assert all(r.error == INSUFFICIENT_INVENTORY for r in results if not r.success)
        status = await get_inventory_status(db, product.id)
        assert status.reserved_count == 10
        assert status.available_inventory == 0

    @pytest.mark.asyncio
    async def test_mixed_sizes_conserve_stock(self, db, seed, session_factory):
        year = await seed.event_year()
        product = await seed.product(year, total_inventory=12)
        quantities = [5, 4, 3, 2, 2, 1, 6]

        results = await asyncio.gather(*[
            _reserve_in_own_session(session_factory, product.id, q) for q in quantities
        ])

        granted = sum(q for q, r in zip(quantities, results) if r.success)
        assert granted <= 12
        status = await get_inventory_status(db, product.id)
        assert status.reserved_count == granted
        assert status.sold_count + status.reserved_count <= status.total_inventory


class TestReleaseAndConfirm:
    """Test release_inventory and confirm_inventory_sale."""

    @pytest.mark.asyncio
    async def test_release_returns_stock(self, db, seed):
        year = await seed.event_year()
        product = await seed.product(year, total_inventory=10, reserved_count=4)

        result = await release_inventory(db, product.id, 3)

        assert result.success is True
        assert result.available_inventory == 9

    @pytest.mark.asyncio
    async def test_over_release_floors_at_zero(self, db, seed):
        year = await seed.event_year()
        product = await seed.product(year, total_inventory=10, sold_count=1, reserved_count=2)

        result = await release_inventory(db, product.id, 50)

        assert result.success is True
        status = await get_inventory_status(db, product.id)
        assert status.reserved_count == 0
        assert status.sold_count == 1

    @pytest.mark.asyncio
    async def test_release_unknown_product_succeeds(self, db):
        result = await release_inventory(db, 987654, 1)
        assert result.success is True
        assert result.available_inventory == 0

    @pytest.mark.asyncio
    async def test_confirm_moves_reserved_to_sold(self, db, seed):
        year = await seed.event_year()
        product = await seed.product(year, total_inventory=10)
        await reserve_inventory(db, product.id, 4)

        result = await confirm_inventory_sale(db, product.id, 4)

        assert result.success is True
        assert result.available_inventory == 6
        status = await get_inventory_status(db, product.id)
        assert (status.sold_count, status.reserved_count) == (4, 0)

    @pytest.mark.asyncio
    async def test_confirm_is_not_idempotent(self, db, seed):
        year = await seed.event_year()
        product = await seed.product(year, total_inventory=10)
        await reserve_inventory(db, product.id, 2)

        await confirm_inventory_sale(db, product.id, 2)
        await confirm_inventory_sale(db, product.id, 2)

        status = await get_inventory_status(db, product.id)
        assert status.sold_count == 4
        assert status.reserved_count == 0

    @pytest.mark.asyncio
    async def test_status_of_unknown_product(self, db):
        assert await get_inventory_status(db, 987654) is None


class TestConservation:
    """sold + reserved never exceeds total under interleaved operations."""

    @pytest.mark.asyncio
    async def test_release_beyond_reserved_twice(self, db, seed):
        year = await seed.event_year()
        product = await seed.product(year, total_inventory=10)
        await reserve_inventory(db, product.id, 3)

        await release_inventory(db, product.id, 5)
        await release_inventory(db, product.id, 5)

        assert (await get_inventory_status(db, product.id)).reserved_count == 0

    @pytest.mark.asyncio
    async def test_random_interleaving(self, db, seed, session_factory):
        year = await seed.event_year()
        product = await seed.product(year, total_inventory=15)
        rng = random.Random(20260601)
        operations = {
            "reserve": reserve_inventory,
            "release": release_inventory,
            "confirm": confirm_inventory_sale,
        }

        async def run(name, quantity):
            async with session_factory() as session:
                return await operations[name](session, product.id, quantity)

        for _ in range(6):
            batch = [
                (rng.choice(["reserve", "reserve", "release", "confirm"]), rng.randint(1, 4))
                for _ in range(8)
            ]
            await asyncio.gather(*[run(name, quantity) for name, quantity in batch])

            status = await get_inventory_status(db, product.id)
            assert status.sold_count >= 0
            assert status.reserved_count >= 0
            assert status.sold_count + status.reserved_count <= status.total_inventory
