"""
Product availability and quota schemas
"""
from typing import Optional
from pydantic import BaseModel


class ProductAvailabilityResponse(BaseModel):
    product_id: int
    max_quantity_per_org: Optional[int] = None
    purchased_quantity: int
    available_quantity: Optional[int] = None
    is_tent_product: bool = False
    requires_team: bool = False

    class Config:
        from_attributes = True


class TentQuotaResponse(BaseModel):
    product_id: int
    team_count: int
    max_allowed: int
    quantity_purchased: int
    remaining_allowed: int
    available_inventory: Optional[int] = None
    at_quota_limit: bool
    can_purchase_more: bool
    requires_team: bool

    class Config:
        from_attributes = True


class InventoryStatusResponse(BaseModel):
    product_id: int
    name: str
    total_inventory: Optional[int] = None
    sold_count: int
    reserved_count: int
    available_inventory: Optional[int] = None

    class Config:
        from_attributes = True
