"""
Admin report schemas
"""
from typing import List, Optional
from pydantic import BaseModel


class TentTrackingRowResponse(BaseModel):
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

    class Config:
        from_attributes = True


class TentAvailabilityResponse(BaseModel):
    total_tents: Optional[int] = None
    sold_tents: int
    reserved_tents: int
    available_tents: Optional[int] = None
    utilization_rate: Optional[float] = None
    organizations_at_limit: int

    class Config:
        from_attributes = True


class TentTrackingReportResponse(BaseModel):
    event_year_id: int
    tracking: List[TentTrackingRowResponse]
    availability: TentAvailabilityResponse
