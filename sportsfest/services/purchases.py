"""
Purchase aggregation

What an organization has actually bought in an event year. An order counts
once it has left `pending`, or while still pending if it already has a
completed payment. Pending orders with no completed payment are abandoned
checkouts and never count.
"""
import logging
from typing import Dict

from sqlalchemy import select, func, or_, exists
from sqlalchemy.ext.asyncio import AsyncSession

from sportsfest.core.config import settings
from sportsfest.models import (
    Order,
    OrderItem,
    OrderPayment,
    OrderStatus,
    PaymentStatus,
    Product,
    ProductType,
    CompanyTeam,
)

logger = logging.getLogger(__name__)


def counted_order_clause():
    """SQL predicate on Order selecting orders that count as purchases."""
    completed_payment = exists().where(
        OrderPayment.order_id == Order.id,
        OrderPayment.status == PaymentStatus.COMPLETED.value,
    )
    return or_(Order.status != OrderStatus.PENDING.value, completed_payment)


def compute_team_count(persisted_team_count: int, teams_in_cart: int = 0) -> int:
    return max(0, persisted_team_count or 0) + max(0, teams_in_cart or 0)


def compute_tent_quota(team_count: int, tents_per_team: int = None) -> int:
    """Tents an organization may buy for `team_count` teams."""
    if tents_per_team is None:
        tents_per_team = settings.TENTS_PER_TEAM
    return max(0, team_count) * tents_per_team


async def get_purchased_quantities(
    db: AsyncSession,
    organization_id: int,
    event_year_id: int,
) -> Dict[int, int]:
    """Quantity bought per product id across the organization's counted orders."""
    stmt = (
        select(OrderItem.product_id, func.coalesce(func.sum(OrderItem.quantity), 0))
        .join(Order, Order.id == OrderItem.order_id)
        .where(
            Order.organization_id == organization_id,
            Order.event_year_id == event_year_id,
            counted_order_clause(),
        )
        .group_by(OrderItem.product_id)
    )
    result = await db.execute(stmt)
    return {product_id: int(quantity) for product_id, quantity in result.all()}


async def get_purchased_quantity(
    db: AsyncSession,
    organization_id: int,
    event_year_id: int,
    product_id: int,
) -> int:
    stmt = (
        select(func.coalesce(func.sum(OrderItem.quantity), 0))
        .join(Order, Order.id == OrderItem.order_id)
        .where(
            OrderItem.product_id == product_id,
            Order.organization_id == organization_id,
            Order.event_year_id == event_year_id,
            counted_order_clause(),
        )
    )
    return int((await db.execute(stmt)).scalar() or 0)


async def get_purchased_team_count(db: AsyncSession, organization_id: int, event_year_id: int) -> int:
    """Team registrations bought across counted orders."""
    stmt = (
        select(func.coalesce(func.sum(OrderItem.quantity), 0))
        .join(Order, Order.id == OrderItem.order_id)
        .join(Product, Product.id == OrderItem.product_id)
        .where(
            Product.type == ProductType.TEAM_REGISTRATION.value,
            Order.organization_id == organization_id,
            Order.event_year_id == event_year_id,
            counted_order_clause(),
        )
    )
    return int((await db.execute(stmt)).scalar() or 0)


async def get_created_team_count(db: AsyncSession, organization_id: int, event_year_id: int) -> int:
    stmt = select(func.count(CompanyTeam.id)).where(
        CompanyTeam.organization_id == organization_id,
        CompanyTeam.event_year_id == event_year_id,
    )
    return int((await db.execute(stmt)).scalar() or 0)


async def get_company_team_count(db: AsyncSession, organization_id: int, event_year_id: int) -> int:
    """
    Persisted team count: the larger of teams created and team
    registrations purchased. Covers the window between payment and team
    row creation, and teams entered by admins without an order.
    """
    created = await get_created_team_count(db, organization_id, event_year_id)
    purchased = await get_purchased_team_count(db, organization_id, event_year_id)
    return max(created, purchased)
