"""
Checkout schemas
"""
from typing import List, Optional, Literal
from pydantic import BaseModel, EmailStr


class PaymentIntentRequest(BaseModel):
    organization_slug: str
    event_year_id: Optional[int] = None
    payment_type: Literal["full", "deposit"] = "full"
    coupon_code: Optional[str] = None
    customer_email: Optional[EmailStr] = None


class PaymentIntentResponse(BaseModel):
    client_secret: str
    payment_intent_id: str
    order_id: int
    order_number: str
    amount: int  # cents
    discount: float = 0.0


class ConfirmPaymentRequest(BaseModel):
    payment_intent_id: str
    order_id: int


class ConfirmPaymentResponse(BaseModel):
    status: str
    order_id: Optional[int] = None
    order_status: Optional[str] = None
    warnings: List[str] = []
