"""
Company team creation from paid team registrations.
"""
import logging
from typing import List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sportsfest.models import CompanyTeam, Order
from sportsfest.services.purchases import get_purchased_team_count

logger = logging.getLogger(__name__)


async def create_company_teams_for_order(db: AsyncSession, order: Order) -> List[CompanyTeam]:
    """
    Bring the organization's team rows up to the number of team
    registrations it has bought for the order's event year.

    Missing teams take the lowest unused team numbers and are named
    "Team N". Calling this again creates nothing. Does not commit.
    """
    required = await get_purchased_team_count(db, order.organization_id, order.event_year_id)

    result = await db.execute(
        select(CompanyTeam.team_number).where(
            CompanyTeam.organization_id == order.organization_id,
            CompanyTeam.event_year_id == order.event_year_id,
        )
    )
    used = set(result.scalars().all())

    missing = required - len(used)
    if missing <= 0:
        return []

    created = []
    number = 1
    while len(created) < missing:
        if number not in used:
            team = CompanyTeam(
                organization_id=order.organization_id,
                event_year_id=order.event_year_id,
                team_number=number,
                name=f"Team {number}",
                is_paid=True,
                order_id=order.id,
            )
            db.add(team)
            created.append(team)
        number += 1

    await db.flush()
    logger.info(
        f"Created {len(created)} company team(s) for organization {order.organization_id} "
        f"from order {order.order_number}"
    )
    return created
