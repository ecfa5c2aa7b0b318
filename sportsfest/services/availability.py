"""
Per-organization product availability

For each active product of an event year: how many units the organization
has bought, and how many more it may still buy. Tent limits are dynamic
(TENTS_PER_TEAM per company team); other products use their static
max_quantity_per_org, NULL meaning unlimited.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sportsfest.models import Organization, Product, ProductStatus
from sportsfest.services.purchases import (
    compute_team_count,
    compute_tent_quota,
    get_company_team_count,
    get_purchased_quantities,
)

logger = logging.getLogger(__name__)


@dataclass
class ProductAvailability:
    product_id: int
    max_quantity_per_org: Optional[int]
    purchased_quantity: int
    available_quantity: Optional[int]
    is_tent_product: bool = False
    requires_team: bool = False


def _availability_for(product: Product, purchased: int, team_count: Optional[int]) -> ProductAvailability:
    if product.is_tent:
        max_quantity = compute_tent_quota(team_count or 0)
        return ProductAvailability(
            product_id=product.id,
            max_quantity_per_org=max_quantity,
            purchased_quantity=purchased,
            available_quantity=max(0, max_quantity - purchased),
            is_tent_product=True,
            requires_team=not team_count,
        )

    max_quantity = product.max_quantity_per_org
    return ProductAvailability(
        product_id=product.id,
        max_quantity_per_org=max_quantity,
        purchased_quantity=purchased,
        available_quantity=None if max_quantity is None else max(0, max_quantity - purchased),
    )


async def get_product_availability_for_org(
    db: AsyncSession,
    organization_id: int,
    event_year_id: int,
    teams_in_cart: int = 0,
) -> List[ProductAvailability]:
    products = (
        await db.execute(
            select(Product)
            .where(
                Product.event_year_id == event_year_id,
                Product.status == ProductStatus.ACTIVE.value,
            )
            .order_by(Product.id)
        )
    ).scalars().all()
    if not products:
        return []

    purchased = await get_purchased_quantities(db, organization_id, event_year_id)

    team_count = None
    if any(p.is_tent for p in products):
        persisted = await get_company_team_count(db, organization_id, event_year_id)
        team_count = compute_team_count(persisted, teams_in_cart)

    return [_availability_for(p, purchased.get(p.id, 0), team_count) for p in products]


async def get_product_availability(
    db: AsyncSession,
    organization_slug: str,
    event_year_id: int,
    teams_in_cart: int = 0,
) -> List[ProductAvailability]:
    """
    Availability of every active product for an organization.

    Returns an empty list for an unknown organization or on a store error.
    """
    try:
        result = await db.execute(select(Organization.id).where(Organization.slug == organization_slug))
        organization_id = result.scalar_one_or_none()
        if organization_id is None:
            logger.info(f"Availability requested for unknown organization {organization_slug}")
            return []

        return await get_product_availability_for_org(db, organization_id, event_year_id, teams_in_cart)
    except Exception as e:
        logger.error(f"Error computing availability for {organization_slug}: {e}", exc_info=True)
        return []
