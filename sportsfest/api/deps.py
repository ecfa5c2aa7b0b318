"""
API dependencies

Organizations are resolved by slug and carts by the X-Cart-Session
header. Authentication and organization membership are enforced upstream.
"""
from typing import Optional
from fastapi import Depends, Header, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from sportsfest.core.database import get_db
from sportsfest.core.exceptions import NotFoundError
from sportsfest.models import Organization, EventYear


async def get_organization_by_slug(db: AsyncSession, slug: str) -> Organization:
    result = await db.execute(select(Organization).where(Organization.slug == slug))
    organization = result.scalar_one_or_none()
    if organization is None:
        raise NotFoundError("Organization not found", entity="organization", entity_id=slug)
    return organization


async def resolve_event_year_id(db: AsyncSession, event_year_id: Optional[int] = None) -> int:
    """Explicit event year if given, otherwise the active one."""
    if event_year_id is not None:
        event_year = await db.get(EventYear, event_year_id)
        if event_year is None:
            raise NotFoundError("Event year not found", entity="event_year", entity_id=event_year_id)
        return event_year.id

    result = await db.execute(
        select(EventYear.id).where(EventYear.is_active == True).order_by(EventYear.year.desc())
    )
    active_id = result.scalars().first()
    if active_id is None:
        raise NotFoundError("No active event year", entity="event_year")
    return active_id


async def get_organization(slug: str, db: AsyncSession = Depends(get_db)) -> Organization:
    return await get_organization_by_slug(db, slug)


async def get_event_year_id(
    event_year_id: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> int:
    return await resolve_event_year_id(db, event_year_id)


def get_cart_session_id(x_cart_session: str = Header(..., min_length=8, max_length=64)) -> str:
    return x_cart_session
