"""
CheckoutService - turns a cart into a pending order.

The cart's reservations move to the order untouched; nothing is committed
here so the caller can attach the Stripe payment intent and commit once.
"""
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from sportsfest.core.exceptions import CartError
from sportsfest.core.utils import utcnow, dollars_to_cents
from sportsfest.models import Order, OrderItem, OrderStatus
from sportsfest.services.cart_service import CartService
from sportsfest.services.coupon_service import get_coupon_service

logger = logging.getLogger(__name__)

MINIMUM_CHARGE_CENTS = 50

PAYMENT_TYPE_FULL = "full"
PAYMENT_TYPE_DEPOSIT = "deposit"


@dataclass
class CheckoutDraft:
    order: Order
    amount_due_cents: int
    discount: Decimal = Decimal("0.00")


def generate_order_number() -> str:
    """Order number in format SF-YYYYMMDD-XXXXXXXX."""
    return f"SF-{utcnow().strftime('%Y%m%d')}-{uuid.uuid4().hex[:8].upper()}"


class CheckoutService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_order_from_cart(
        self,
        session_id: str,
        organization_id: int,
        event_year_id: int,
        payment_type: str = PAYMENT_TYPE_FULL,
        coupon_code: Optional[str] = None,
        customer_email: Optional[str] = None,
    ) -> CheckoutDraft:
        """
        Build a pending order with items from the cart session.

        Raises:
            CartError: empty/expired cart or a charge below Stripe's minimum
            CouponError: coupon rejected
        """
        lines = await CartService(self.db).checkout_cart(session_id, organization_id, event_year_id)

        total = Decimal("0.00")
        due_now = Decimal("0.00")
        items = []
        for cart_item, product in lines:
            full_line = Decimal(product.base_price) * cart_item.quantity
            total += full_line
            if payment_type == PAYMENT_TYPE_DEPOSIT:
                due_now += Decimal(cart_item.unit_price) * cart_item.quantity
            else:
                due_now += full_line
            items.append(OrderItem(
                product_id=product.id,
                product_name=product.name,
                quantity=cart_item.quantity,
                unit_price=Decimal(product.base_price),
                total_price=full_line,
            ))

        metadata = {"payment_type": payment_type, "original_total": str(total)}
        discount = Decimal("0.00")
        if coupon_code:
            coupon, discount = await get_coupon_service().validate_coupon(self.db, coupon_code, total)
            metadata["applied_coupon"] = {
                "id": coupon.id,
                "code": coupon.code,
                "discount_type": coupon.discount_type,
                "discount_value": str(coupon.discount_value),
            }
            metadata["coupon_discount"] = str(discount)

        order_total = total - discount
        due_now = min(due_now, order_total)
        amount_due_cents = dollars_to_cents(due_now)
        if amount_due_cents < MINIMUM_CHARGE_CENTS:
            raise CartError("Order total must be at least $0.50", details={"amount_cents": amount_due_cents})

        order = Order(
            organization_id=organization_id,
            event_year_id=event_year_id,
            order_number=generate_order_number(),
            status=OrderStatus.PENDING.value,
            total_amount=order_total,
            balance_owed=order_total,
            customer_email=customer_email,
            order_metadata=metadata,
            items=items,
        )
        self.db.add(order)
        await self.db.flush()

        logger.info(
            f"Created order {order.order_number} for organization {organization_id}: "
            f"total={order_total} due_now={due_now} items={len(items)}"
        )
        return CheckoutDraft(order=order, amount_due_cents=amount_due_cents, discount=discount)
