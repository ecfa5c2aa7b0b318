"""
Coupon Service

Validation and discount calculation at checkout, and the usage counter
bumped once an order is paid.
"""
import logging
from datetime import timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from sportsfest.core.exceptions import CouponError
from sportsfest.core.utils import utcnow
from sportsfest.models import Coupon, DiscountType

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


class CouponService:
    """Coupon checks against an order total."""

    async def validate_coupon(
        self,
        db: AsyncSession,
        code: str,
        order_total: Decimal,
    ) -> Tuple[Coupon, Decimal]:
        """
        Validate a coupon code and calculate the discount.

        Returns:
            Tuple of (coupon, discount_amount)

        Raises:
            CouponError: If validation fails
        """
        result = await db.execute(
            select(Coupon).where(
                Coupon.code == code.upper().strip(),
                Coupon.is_active == True,
            )
        )
        coupon = result.scalar_one_or_none()

        if not coupon:
            raise CouponError("Coupon code not found", code="COUPON_NOT_FOUND")

        expires_at = coupon.expires_at
        if expires_at is not None:
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
            if utcnow() > expires_at:
                raise CouponError("This coupon has expired", code="COUPON_EXPIRED")

        if coupon.max_uses is not None and coupon.current_uses >= coupon.max_uses:
            raise CouponError("This coupon has reached its usage limit", code="COUPON_EXHAUSTED")

        discount = self.calculate_discount(coupon, order_total)
        if discount <= 0:
            raise CouponError("Coupon does not apply to this order", code="COUPON_NOT_APPLICABLE")

        return coupon, discount

    @staticmethod
    def calculate_discount(coupon: Coupon, order_total: Decimal) -> Decimal:
        """Discount amount, never more than the order total."""
        order_total = Decimal(order_total)
        value = Decimal(coupon.discount_value)

        if coupon.discount_type == DiscountType.PERCENTAGE.value:
            discount = (order_total * value / Decimal("100")).quantize(CENTS, rounding=ROUND_HALF_UP)
        elif coupon.discount_type == DiscountType.FIXED.value:
            discount = value
        else:
            logger.warning(f"Unknown discount type {coupon.discount_type!r} on coupon {coupon.code}")
            discount = Decimal("0")

        return min(discount, order_total)


async def increment_coupon_usage(db: AsyncSession, coupon_id: int) -> Optional[int]:
    """
    Atomically add one use to a coupon. Returns the new use count, or
    None if the coupon no longer exists. Does not commit.
    """
    stmt = (
        update(Coupon)
        .where(Coupon.id == coupon_id)
        .values(current_uses=Coupon.current_uses + 1, updated_at=utcnow())
        .returning(Coupon.current_uses)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    row = result.fetchone()
    if row is None:
        logger.warning(f"Coupon {coupon_id} not found when recording usage")
        return None
    return row[0]


_coupon_service: Optional[CouponService] = None


def get_coupon_service() -> CouponService:
    global _coupon_service
    if _coupon_service is None:
        _coupon_service = CouponService()
    return _coupon_service
