"""
Admin inventory routes

Tent tracking report and raw inventory counters. Admin authentication is
applied by the gateway in front of /admin.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from sportsfest.core.database import get_db
from sportsfest.core.exceptions import NotFoundError
from sportsfest.api.deps import get_event_year_id
from sportsfest.schemas.admin import TentTrackingReportResponse
from sportsfest.schemas.product import InventoryStatusResponse
from sportsfest.services.inventory import get_inventory_status
from sportsfest.services.tent_tracking_report import get_tent_tracking, get_tent_availability

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.get("/tent-tracking", response_model=TentTrackingReportResponse)
async def tent_tracking(
    event_year_id: int = Depends(get_event_year_id),
    db: AsyncSession = Depends(get_db),
):
    """Tent purchases per organization with the event year's tent stock summary."""
    rows = await get_tent_tracking(db, event_year_id)
    availability = await get_tent_availability(db, event_year_id, rows=rows)
    return TentTrackingReportResponse.model_validate(
        {"event_year_id": event_year_id, "tracking": rows, "availability": availability},
        from_attributes=True,
    )


@router.get("/inventory/{product_id}", response_model=InventoryStatusResponse)
async def inventory_status(product_id: int, db: AsyncSession = Depends(get_db)):
    status = await get_inventory_status(db, product_id)
    if status is None:
        raise NotFoundError("Product not found", entity="product", entity_id=product_id)
    return status
