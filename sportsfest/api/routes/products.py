"""
Product availability routes
"""
from typing import List
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from sportsfest.core.database import get_db
from sportsfest.core.exceptions import NotFoundError
from sportsfest.api.deps import get_organization, get_event_year_id
from sportsfest.models import Organization
from sportsfest.schemas.product import ProductAvailabilityResponse, TentQuotaResponse
from sportsfest.services.availability import get_product_availability
from sportsfest.services.tent_quota import get_tent_quota_status

router = APIRouter(prefix="/organizations/{slug}/products", tags=["Products"])


@router.get("/availability", response_model=List[ProductAvailabilityResponse])
async def product_availability(
    slug: str,
    event_year_id: int = Depends(get_event_year_id),
    teams_in_cart: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    """
    Purchased and remaining quantity per active product for the
    organization. Unknown organizations get an empty list.
    """
    return await get_product_availability(db, slug, event_year_id, teams_in_cart=teams_in_cart)


@router.get("/{product_id}/tent-quota", response_model=TentQuotaResponse)
async def tent_quota(
    product_id: int,
    organization: Organization = Depends(get_organization),
    event_year_id: int = Depends(get_event_year_id),
    teams_in_cart: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    status = await get_tent_quota_status(
        db, product_id, organization.id, event_year_id, teams_in_cart=teams_in_cart
    )
    if status is None:
        raise NotFoundError("Tent product not found", entity="product", entity_id=product_id)
    return status
