"""
Admin tent tracking report.

Per-organization tent purchases for an event year, plus a stock summary
across all tent products.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from sportsfest.models import Organization, Product, ProductType, TentPurchaseTracking
from sportsfest.services.purchases import compute_tent_quota, get_company_team_count

logger = logging.getLogger(__name__)


@dataclass
class TentTrackingRow:
    organization_id: int
    organization_name: str
    organization_slug: str
    tent_product_id: int
    tent_product_name: str
    quantity_purchased: int
    max_allowed: int
    remaining_allowed: int
    team_count: int
    is_at_limit: bool


@dataclass
class TentAvailabilitySummary:
    total_tents: Optional[int]
    sold_tents: int
    reserved_tents: int
    available_tents: Optional[int]
    utilization_rate: Optional[float]
    organizations_at_limit: int


async def get_tent_tracking(db: AsyncSession, event_year_id: int) -> List[TentTrackingRow]:
    """
    Tracking rows with live team counts. max_allowed is recomputed from the
    current team count rather than read from the row.
    """
    result = await db.execute(
        select(TentPurchaseTracking, Organization, Product)
        .join(Organization, Organization.id == TentPurchaseTracking.organization_id)
        .join(Product, Product.id == TentPurchaseTracking.tent_product_id)
        .where(TentPurchaseTracking.event_year_id == event_year_id)
        .order_by(Organization.name, Product.id)
    )

    rows = []
    team_counts = {}
    for tracking, organization, product in result.all():
        if organization.id not in team_counts:
            team_counts[organization.id] = await get_company_team_count(db, organization.id, event_year_id)
        team_count = team_counts[organization.id]
        max_allowed = compute_tent_quota(team_count)
        rows.append(TentTrackingRow(
            organization_id=organization.id,
            organization_name=organization.name,
            organization_slug=organization.slug,
            tent_product_id=product.id,
            tent_product_name=product.name,
            quantity_purchased=tracking.quantity_purchased,
            max_allowed=max_allowed,
            remaining_allowed=max(0, max_allowed - tracking.quantity_purchased),
            team_count=team_count,
            is_at_limit=tracking.quantity_purchased >= max_allowed,
        ))
    return rows


async def get_tent_availability(
    db: AsyncSession,
    event_year_id: int,
    rows: Optional[List[TentTrackingRow]] = None,
) -> TentAvailabilitySummary:
    result = await db.execute(
        select(
            func.count(Product.id),
            func.count(Product.total_inventory),
            func.coalesce(func.sum(Product.total_inventory), 0),
            func.coalesce(func.sum(Product.sold_count), 0),
            func.coalesce(func.sum(Product.reserved_count), 0),
        ).where(
            Product.event_year_id == event_year_id,
            Product.type == ProductType.TENT_RENTAL.value,
        )
    )
    product_count, limited_count, total, sold, reserved = result.one()

    if rows is None:
        rows = await get_tent_tracking(db, event_year_id)
    organizations_at_limit = len({r.organization_id for r in rows if r.is_at_limit})

    # Any unlimited tent product makes the pool unlimited
    if product_count == 0 or limited_count < product_count:
        return TentAvailabilitySummary(
            total_tents=None,
            sold_tents=int(sold),
            reserved_tents=int(reserved),
            available_tents=None,
            utilization_rate=None,
            organizations_at_limit=organizations_at_limit,
        )

    total = int(total)
    return TentAvailabilitySummary(
        total_tents=total,
        sold_tents=int(sold),
        reserved_tents=int(reserved),
        available_tents=max(0, total - int(sold) - int(reserved)),
        utilization_rate=round(int(sold) / total * 100, 2) if total else 0.0,
        organizations_at_limit=organizations_at_limit,
    )
