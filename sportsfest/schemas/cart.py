"""
Cart schemas
"""
from typing import List, Optional
from pydantic import BaseModel, Field


class CartItemCreate(BaseModel):
    product_id: int
    quantity: int = Field(default=1, ge=1)
    use_deposit: bool = False


class CartItemUpdate(BaseModel):
    quantity: int


class CartLineResponse(BaseModel):
    product_id: int
    name: str
    product_type: str
    quantity: int
    use_deposit: bool
    unit_price: float
    full_unit_price: float
    line_total: float

    class Config:
        from_attributes = True


class CartResponse(BaseModel):
    session_id: str
    items: List[CartLineResponse]
    teams_in_cart: int
    subtotal: float
    amount_due_now: float
    deposit_total: float
    item_count: int

    class Config:
        from_attributes = True


class CartMutationResponse(BaseModel):
    success: bool
    product_id: Optional[int] = None
    quantity: int
    message: Optional[str] = None
    trimmed_product_ids: List[int] = []
