"""
Tent quota: TENTS_PER_TEAM tents per company team, checked on reserve and
tracked on confirmation.
"""
import pytest
import pytest_asyncio
from sqlalchemy import select

from sportsfest.models import OrderStatus, TentPurchaseTracking
from sportsfest.services.cart_service import CartService
from sportsfest.services.inventory import get_inventory_status
from sportsfest.services.tent_quota import (
    reserve_tent_inventory,
    reserve_tent_inventory_by_slug,
    release_tent_inventory,
    confirm_tent_sale,
    get_tent_quota_status,
    NO_TEAMS,
    TENT_NOT_FOUND,
    ORGANIZATION_NOT_FOUND,
)


async def _track(db, organization, year, tent, purchased):
    db.add(TentPurchaseTracking(
        organization_id=organization.id,
        event_year_id=year.id,
        tent_product_id=tent.id,
        quantity_purchased=purchased,
        max_allowed=0,
        remaining_allowed=0,
        company_team_count=0,
    ))
    await db.commit()


@pytest_asyncio.fixture
async def setup(db, seed):
    year = await seed.event_year()
    organization = await seed.organization("acme")
    tent = await seed.tent(year, total_inventory=50)
    return organization, year, tent


class TestReserveTentInventory:
    """Test reserve_tent_inventory."""

    @pytest.mark.asyncio
    async def test_within_quota(self, db, seed, setup):
        organization, year, tent = setup
        await seed.teams(organization, year, 4)
        await _track(db, organization, year, tent, 3)

        result = await reserve_tent_inventory(db, tent.id, organization.id, year.id, 5)

        assert result.success is True
        assert result.max_allowed == 8
        assert result.team_count == 4
        assert result.quantity_purchased == 3
        assert result.remaining_allowed == 0
        status = await get_inventory_status(db, tent.id)
        assert status.reserved_count == 5

    @pytest.mark.asyncio
    async def test_over_quota_is_rejected(self, db, seed, setup):
        organization, year, tent = setup
        await seed.teams(organization, year, 4)
        await _track(db, organization, year, tent, 3)

        result = await reserve_tent_inventory(db, tent.id, organization.id, year.id, 6)

        assert result.success is False
        assert result.error == (
            "Exceeds tent limit. Maximum allowed: 8 (4 team(s) x 2 tents), "
            "already purchased or in cart: 3"
        )
        assert result.remaining_allowed == 5
        status = await get_inventory_status(db, tent.id)
        assert status.reserved_count == 0

    @pytest.mark.asyncio
    async def test_last_tent_under_quota(self, db, seed, setup):
        organization, year, tent = setup
        await seed.teams(organization, year, 2)
        await _track(db, organization, year, tent, 3)

        rejected = await reserve_tent_inventory(db, tent.id, organization.id, year.id, 2)
        accepted = await reserve_tent_inventory(db, tent.id, organization.id, year.id, 1)

        assert rejected.success is False
        assert accepted.success is True
        assert accepted.remaining_allowed == 0

    @pytest.mark.asyncio
    async def test_no_teams(self, db, setup):
        organization, year, tent = setup

        result = await reserve_tent_inventory(db, tent.id, organization.id, year.id, 1)

        assert result.success is False
        assert result.error == NO_TEAMS
        assert result.max_allowed == 0

    @pytest.mark.asyncio
    async def test_teams_in_cart_count_toward_quota(self, db, setup):
        organization, year, tent = setup

        result = await reserve_tent_inventory(
            db, tent.id, organization.id, year.id, 2, teams_in_cart=1
        )

        assert result.success is True
        assert result.team_count == 1
        assert result.max_allowed == 2

    @pytest.mark.asyncio
    async def test_tents_in_cart_count_toward_quota(self, db, seed, setup):
        organization, year, tent = setup
        await seed.teams(organization, year, 1)

        result = await reserve_tent_inventory(
            db, tent.id, organization.id, year.id, 1, tents_in_cart=2
        )

        assert result.success is False
        assert "Maximum allowed: 2" in result.error
        assert "already purchased or in cart: 2" in result.error

    @pytest.mark.asyncio
    async def test_insufficient_tent_stock(self, db, seed):
        year = await seed.event_year()
        organization = await seed.organization("acme")
        tent = await seed.tent(year, total_inventory=3, sold_count=2)
        await seed.teams(organization, year, 5)

        result = await reserve_tent_inventory(db, tent.id, organization.id, year.id, 2)

        assert result.success is False
        assert result.error == "Insufficient tent inventory. Requested: 2, available: 1"

    @pytest.mark.asyncio
    async def test_non_tent_product_is_not_found(self, db, seed, setup):
        organization, year, _tent = setup
        await seed.teams(organization, year, 1)
        shirt = await seed.product(year)

        result = await reserve_tent_inventory(db, shirt.id, organization.id, year.id, 1)

        assert result.success is False
        assert result.error == TENT_NOT_FOUND

    @pytest.mark.asyncio
    async def test_purchased_team_registrations_count(self, db, seed, setup):
        organization, year, tent = setup
        registration = await seed.team_registration(year)
        await seed.order(organization, year, [(registration, 2)], status=OrderStatus.FULLY_PAID)

        result = await reserve_tent_inventory(db, tent.id, organization.id, year.id, 4)

        assert result.success is True
        assert result.team_count == 2

    @pytest.mark.asyncio
    async def test_abandoned_checkouts_do_not_count(self, db, seed, setup):
        organization, year, tent = setup
        registration = await seed.team_registration(year)
        await seed.order(organization, year, [(registration, 3)], status=OrderStatus.PENDING)

        result = await reserve_tent_inventory(db, tent.id, organization.id, year.id, 1)

        assert result.success is False
        assert result.error == NO_TEAMS

    @pytest.mark.asyncio
    async def test_pending_order_with_completed_payment_counts(self, db, seed, setup):
        organization, year, tent = setup
        registration = await seed.team_registration(year)
        await seed.order(
            organization, year, [(registration, 1)],
            status=OrderStatus.PENDING, completed_payment=True,
        )

        result = await reserve_tent_inventory(db, tent.id, organization.id, year.id, 2)

        assert result.success is True
        assert result.team_count == 1


class TestReserveBySlug:
    @pytest.mark.asyncio
    async def test_resolves_slug(self, db, seed, setup):
        organization, year, tent = setup
        await seed.teams(organization, year, 1)

        result = await reserve_tent_inventory_by_slug(db, tent.id, "acme", year.id, 1)

        assert result.success is True

    @pytest.mark.asyncio
    async def test_unknown_slug(self, db, setup):
        _organization, year, tent = setup

        result = await reserve_tent_inventory_by_slug(db, tent.id, "nobody", year.id, 1)

        assert result.success is False
        assert result.error == ORGANIZATION_NOT_FOUND


class TestConfirmTentSale:
    """Test confirm_tent_sale and the tracking row."""

    async def _tracking(self, db, organization, year, tent):
        result = await db.execute(
            select(TentPurchaseTracking)
            .where(
                TentPurchaseTracking.organization_id == organization.id,
                TentPurchaseTracking.event_year_id == year.id,
                TentPurchaseTracking.tent_product_id == tent.id,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @pytest.mark.asyncio
    async def test_first_confirmation_creates_tracking(self, db, seed, setup):
        organization, year, tent = setup
        await seed.teams(organization, year, 4)
        await reserve_tent_inventory(db, tent.id, organization.id, year.id, 2)

        result = await confirm_tent_sale(db, tent.id, organization.id, year.id, 2)

        assert result.success is True
        assert result.quantity_purchased == 2
        assert result.max_allowed == 8
        assert result.remaining_allowed == 6

        tracking = await self._tracking(db, organization, year, tent)
        assert tracking.quantity_purchased == 2
        assert tracking.company_team_count == 4

        status = await get_inventory_status(db, tent.id)
        assert (status.sold_count, status.reserved_count) == (2, 0)

    @pytest.mark.asyncio
    async def test_later_confirmation_increments(self, db, seed, setup):
        organization, year, tent = setup
        await seed.teams(organization, year, 4)
        await reserve_tent_inventory(db, tent.id, organization.id, year.id, 2)
        await confirm_tent_sale(db, tent.id, organization.id, year.id, 2)
        await reserve_tent_inventory(db, tent.id, organization.id, year.id, 3)

        result = await confirm_tent_sale(db, tent.id, organization.id, year.id, 3)

        assert result.success is True
        assert result.quantity_purchased == 5
        assert result.remaining_allowed == 3
        tracking = await self._tracking(db, organization, year, tent)
        assert tracking.quantity_purchased == 5

    @pytest.mark.asyncio
    async def test_quota_counts_confirmed_tents(self, db, seed, setup):
        organization, year, tent = setup
        await seed.teams(organization, year, 1)
        await reserve_tent_inventory(db, tent.id, organization.id, year.id, 2)
        await confirm_tent_sale(db, tent.id, organization.id, year.id, 2)

        result = await reserve_tent_inventory(db, tent.id, organization.id, year.id, 1)

        assert result.success is False
        assert "already purchased or in cart: 2" in result.error

    @pytest.mark.asyncio
    async def test_release_returns_tent_stock(self, db, seed, setup):
        organization, year, tent = setup
        await seed.teams(organization, year, 1)
        await reserve_tent_inventory(db, tent.id, organization.id, year.id, 2)

        result = await release_tent_inventory(db, tent.id, 2)

        assert result.success is True
        assert result.available_inventory == 50

    @pytest.mark.asyncio
    async def test_confirmation_without_teams_is_refused(self, db, setup):
        organization, year, tent = setup
        held = await reserve_tent_inventory(db, tent.id, organization.id, year.id, 2, teams_in_cart=1)
        assert held.success is True

        result = await confirm_tent_sale(db, tent.id, organization.id, year.id, 2)

        assert result.success is False
        assert result.error == NO_TEAMS
        assert result.team_count == 0
        assert result.max_allowed == 0
        assert await self._tracking(db, organization, year, tent) is None
        status = await get_inventory_status(db, tent.id)
        assert (status.sold_count, status.reserved_count) == (0, 2)


class TestOneTeamTentLifecycle:
    """One team: two tents through the cart, a third refused, then the sale."""

    @pytest.mark.asyncio
    async def test_reserve_reject_confirm(self, db, seed, setup):
        organization, year, tent = setup
        await seed.teams(organization, year, 1)
        cart = CartService(db)

        added = await cart.add_item("sess-lifecycle", organization.id, year.id, tent.id, 2)
        third = await cart.add_item("sess-lifecycle", organization.id, year.id, tent.id, 1)

        assert added.success is True
        assert third.success is False
        assert third.quantity == 2
        status = await get_inventory_status(db, tent.id)
        assert (status.sold_count, status.reserved_count) == (0, 2)

        sale = await confirm_tent_sale(db, tent.id, organization.id, year.id, 2)

        assert sale.success is True
        assert sale.quantity_purchased == 2
        assert sale.remaining_allowed == 0
        status = await get_inventory_status(db, tent.id)
        assert (status.sold_count, status.reserved_count) == (2, 0)
        tracking = await db.execute(
            select(TentPurchaseTracking.quantity_purchased).where(
                TentPurchaseTracking.organization_id == organization.id,
                TentPurchaseTracking.tent_product_id == tent.id,
            )
        )
        assert tracking.scalar_one() == 2


class TestTentQuotaStatus:
    """Test get_tent_quota_status flags."""

    @pytest.mark.asyncio
    async def test_requires_team(self, db, setup):
        organization, year, tent = setup

        status = await get_tent_quota_status(db, tent.id, organization.id, year.id)

        assert status.requires_team is True
        assert status.max_allowed == 0
        assert status.can_purchase_more is False

    @pytest.mark.asyncio
    async def test_at_limit(self, db, seed, setup):
        organization, year, tent = setup
        await seed.teams(organization, year, 2)
        await _track(db, organization, year, tent, 4)

        status = await get_tent_quota_status(db, tent.id, organization.id, year.id)

        assert status.team_count == 2
        assert status.quantity_purchased == 4
        assert status.remaining_allowed == 0
        assert status.at_quota_limit is True
        assert status.can_purchase_more is False

    @pytest.mark.asyncio
    async def test_teams_in_cart_raise_the_limit(self, db, seed, setup):
        organization, year, tent = setup
        await seed.teams(organization, year, 2)
        await _track(db, organization, year, tent, 4)

        status = await get_tent_quota_status(db, tent.id, organization.id, year.id, teams_in_cart=1)

        assert status.max_allowed == 6
        assert status.remaining_allowed == 2
        assert status.can_purchase_more is True
        assert status.available_inventory == 50

    @pytest.mark.asyncio
    async def test_unknown_product(self, db, setup):
        organization, year, _tent = setup
        assert await get_tent_quota_status(db, 987654, organization.id, year.id) is None
