"""
Tent quota

Tents are limited per organization to TENTS_PER_TEAM per company team.
Reservation checks the quota against confirmed purchases (plus whatever
the caller's cart already holds), then takes the stock through the
inventory ledger. Confirmation converts held stock to sold and folds the
quantity into TentPurchaseTracking with an atomic increment.

The quota check and the stock reservation are separate statements: two
concurrent carts of the same organization can both pass the check. Stock
itself can never be oversold.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select, update, case
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from sportsfest.core.config import settings
from sportsfest.core.utils import utcnow
from sportsfest.models import Organization, Product, ProductType, TentPurchaseTracking
from sportsfest.services.inventory import (
    reserve_inventory,
    release_inventory,
    confirm_inventory_sale,
    InventoryResult,
)
from sportsfest.services.purchases import (
    compute_team_count,
    compute_tent_quota,
    get_company_team_count,
)

logger = logging.getLogger(__name__)

NO_TEAMS = "You must register at least one team before reserving tents"
TENT_NOT_FOUND = "Tent product not found"
ORGANIZATION_NOT_FOUND = "Organization not found"
TENT_DB_ERROR = "Database error while reserving tent inventory"
TENT_CONFIRM_DB_ERROR = "Database error while confirming tent sale"


@dataclass
class TentTrackingResult:
    success: bool
    quantity_purchased: Optional[int] = None
    remaining_allowed: Optional[int] = None
    max_allowed: Optional[int] = None
    team_count: Optional[int] = None
    error: Optional[str] = None


@dataclass
class TentQuotaStatus:
    product_id: int
    team_count: int
    max_allowed: int
    quantity_purchased: int
    remaining_allowed: int
    available_inventory: Optional[int]
    at_quota_limit: bool
    can_purchase_more: bool
    requires_team: bool


def _exceeds_limit_message(max_allowed: int, team_count: int, already: int) -> str:
    return (
        f"Exceeds tent limit. Maximum allowed: {max_allowed} "
        f"({team_count} team(s) x {settings.TENTS_PER_TEAM} tents), "
        f"already purchased or in cart: {already}"
    )


async def _get_quantity_purchased(
    db: AsyncSession,
    organization_id: int,
    event_year_id: int,
    product_id: int,
) -> int:
    result = await db.execute(
        select(TentPurchaseTracking.quantity_purchased).where(
            TentPurchaseTracking.organization_id == organization_id,
            TentPurchaseTracking.event_year_id == event_year_id,
            TentPurchaseTracking.tent_product_id == product_id,
        )
    )
    return int(result.scalar() or 0)


async def _get_tent_counters(db: AsyncSession, product_id: int):
    result = await db.execute(
        select(Product.total_inventory, Product.sold_count, Product.reserved_count).where(
            Product.id == product_id,
            Product.type == ProductType.TENT_RENTAL.value,
        )
    )
    return result.first()


async def reserve_tent_inventory(
    db: AsyncSession,
    product_id: int,
    organization_id: int,
    event_year_id: int,
    quantity: int,
    teams_in_cart: int = 0,
    tents_in_cart: int = 0,
) -> TentTrackingResult:
    """
    Reserve tents for an organization within its quota.

    Args:
        teams_in_cart: team registrations in the caller's cart, counted
            toward the team total before they are paid for
        tents_in_cart: units of this tent product the caller's cart
            already holds, counted toward the quota
    """
    try:
        persisted_teams = await get_company_team_count(db, organization_id, event_year_id)
        team_count = compute_team_count(persisted_teams, teams_in_cart)
        if team_count == 0:
            return TentTrackingResult(success=False, team_count=0, max_allowed=0, error=NO_TEAMS)

        max_allowed = compute_tent_quota(team_count)

        counters = await _get_tent_counters(db, product_id)
        if counters is None:
            return TentTrackingResult(success=False, error=TENT_NOT_FOUND)

        total, sold, reserved = counters
        if total is not None and total - sold - reserved < quantity:
            available = max(0, total - sold - reserved)
            return TentTrackingResult(
                success=False,
                error=f"Insufficient tent inventory. Requested: {quantity}, available: {available}",
            )

        purchased = await _get_quantity_purchased(db, organization_id, event_year_id, product_id)
        already = purchased + max(0, tents_in_cart)
        if already + quantity > max_allowed:
            logger.info(
                f"[TENTS] Quota rejected org={organization_id} product={product_id} "
                f"requested={quantity} held={already} max={max_allowed}"
            )
            return TentTrackingResult(
                success=False,
                quantity_purchased=purchased,
                remaining_allowed=max(0, max_allowed - already),
                max_allowed=max_allowed,
                team_count=team_count,
                error=_exceeds_limit_message(max_allowed, team_count, already),
            )
    except Exception as e:
        logger.error(f"Error checking tent quota for org {organization_id}: {e}", exc_info=True)
        return TentTrackingResult(success=False, error=TENT_DB_ERROR)

    reservation = await reserve_inventory(db, product_id, quantity)
    if not reservation.success:
        return TentTrackingResult(success=False, error=reservation.error)

    return TentTrackingResult(
        success=True,
        quantity_purchased=purchased,
        remaining_allowed=max(0, max_allowed - already - quantity),
        max_allowed=max_allowed,
        team_count=team_count,
    )


async def reserve_tent_inventory_by_slug(
    db: AsyncSession,
    product_id: int,
    organization_slug: str,
    event_year_id: int,
    quantity: int,
    teams_in_cart: int = 0,
    tents_in_cart: int = 0,
) -> TentTrackingResult:
    """reserve_tent_inventory for callers that only know the organization slug."""
    try:
        result = await db.execute(select(Organization.id).where(Organization.slug == organization_slug))
        organization_id = result.scalar_one_or_none()
    except Exception as e:
        logger.error(f"Error resolving organization {organization_slug}: {e}", exc_info=True)
        return TentTrackingResult(success=False, error=TENT_DB_ERROR)

    if organization_id is None:
        return TentTrackingResult(success=False, error=ORGANIZATION_NOT_FOUND)

    return await reserve_tent_inventory(
        db,
        product_id,
        organization_id,
        event_year_id,
        quantity,
        teams_in_cart=teams_in_cart,
        tents_in_cart=tents_in_cart,
    )


async def release_tent_inventory(db: AsyncSession, product_id: int, quantity: int) -> InventoryResult:
    """Tents release like any other stock; the quota only counts confirmed sales."""
    return await release_inventory(db, product_id, quantity)


async def _increment_tracking(
    db: AsyncSession,
    organization_id: int,
    event_year_id: int,
    product_id: int,
    quantity: int,
    max_allowed: int,
    team_count: int,
):
    new_total = TentPurchaseTracking.quantity_purchased + quantity
    stmt = (
        update(TentPurchaseTracking)
        .where(
            TentPurchaseTracking.organization_id == organization_id,
            TentPurchaseTracking.event_year_id == event_year_id,
            TentPurchaseTracking.tent_product_id == product_id,
        )
        .values(
            quantity_purchased=new_total,
            max_allowed=max_allowed,
            remaining_allowed=case((max_allowed - new_total < 0, 0), else_=max_allowed - new_total),
            company_team_count=team_count,
            updated_at=utcnow(),
        )
        .returning(TentPurchaseTracking.quantity_purchased, TentPurchaseTracking.remaining_allowed)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    return result.fetchone()


async def confirm_tent_sale(
    db: AsyncSession,
    product_id: int,
    organization_id: int,
    event_year_id: int,
    quantity: int,
) -> TentTrackingResult:
    """
    Convert reserved tents to sold and add them to the organization's
    tracking row. max_allowed is recomputed from the current team count on
    every confirmation. Without at least one team nothing is confirmed:
    stock and tracking are left untouched.
    """
    try:
        team_count = await get_company_team_count(db, organization_id, event_year_id)
    except Exception as e:
        logger.error(f"Error counting teams for org {organization_id}: {e}", exc_info=True)
        return TentTrackingResult(success=False, error=TENT_CONFIRM_DB_ERROR)

    if team_count == 0:
        logger.warning(
            f"[TENTS] Confirmation of {quantity} tent(s) refused: org={organization_id} has no teams"
        )
        return TentTrackingResult(success=False, team_count=0, max_allowed=0, error=NO_TEAMS)

    max_allowed = compute_tent_quota(team_count)

    sale = await confirm_inventory_sale(db, product_id, quantity)
    if not sale.success:
        return TentTrackingResult(success=False, error=sale.error)

    try:
        row = await _increment_tracking(
            db, organization_id, event_year_id, product_id, quantity, max_allowed, team_count
        )
        if row is None:
            try:
                db.add(TentPurchaseTracking(
                    organization_id=organization_id,
                    event_year_id=event_year_id,
                    tent_product_id=product_id,
                    quantity_purchased=quantity,
                    max_allowed=max_allowed,
                    remaining_allowed=max(0, max_allowed - quantity),
                    company_team_count=team_count,
                ))
                await db.flush()
                row = (quantity, max(0, max_allowed - quantity))
            except IntegrityError:
                # Another confirmation created the row first
                await db.rollback()
                row = await _increment_tracking(
                    db, organization_id, event_year_id, product_id, quantity, max_allowed, team_count
                )
                if row is None:
                    raise
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.error(
            f"Error updating tent tracking org={organization_id} product={product_id}: {e}",
            exc_info=True,
        )
        return TentTrackingResult(success=False, error=TENT_CONFIRM_DB_ERROR)

    quantity_purchased, remaining_allowed = row
    logger.info(
        f"[TENTS] Confirmed {quantity} tent(s) org={organization_id} "
        f"purchased={quantity_purchased} max={max_allowed}"
    )
    return TentTrackingResult(
        success=True,
        quantity_purchased=quantity_purchased,
        remaining_allowed=remaining_allowed,
        max_allowed=max_allowed,
        team_count=team_count,
    )


async def get_tent_quota_status(
    db: AsyncSession,
    product_id: int,
    organization_id: int,
    event_year_id: int,
    teams_in_cart: int = 0,
) -> Optional[TentQuotaStatus]:
    """Quota view for one tent product. None if the product is missing or the read fails."""
    try:
        counters = await _get_tent_counters(db, product_id)
        if counters is None:
            return None

        persisted_teams = await get_company_team_count(db, organization_id, event_year_id)
        purchased = await _get_quantity_purchased(db, organization_id, event_year_id, product_id)
    except Exception as e:
        logger.error(f"Error reading tent quota for org {organization_id}: {e}", exc_info=True)
        return None

    team_count = compute_team_count(persisted_teams, teams_in_cart)
    max_allowed = compute_tent_quota(team_count)
    remaining = max(0, max_allowed - purchased)

    total, sold, reserved = counters
    available = None if total is None else max(0, total - sold - reserved)

    return TentQuotaStatus(
        product_id=product_id,
        team_count=team_count,
        max_allowed=max_allowed,
        quantity_purchased=purchased,
        remaining_allowed=remaining,
        available_inventory=available,
        at_quota_limit=remaining == 0,
        can_purchase_more=remaining > 0 and (available is None or available > 0),
        requires_team=team_count == 0,
    )
