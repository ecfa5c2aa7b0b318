"""
Coupon model

Percentage or fixed-amount discounts applied at checkout. current_uses is
incremented once per paid order, atomically, by
sportsfest.services.coupon_service.increment_coupon_usage.
"""
import enum
from sqlalchemy import Column, String, Boolean, Integer, DateTime, Numeric, CheckConstraint

from sportsfest.core.database import Base
from sportsfest.core.utils import utcnow


class DiscountType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class Coupon(Base):
    __tablename__ = "coupons"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(50), unique=True, nullable=False, index=True)

    discount_type = Column(String(20), nullable=False)  # 'percentage', 'fixed'
    discount_value = Column(Numeric(10, 2), nullable=False)

    max_uses = Column(Integer)  # NULL = unlimited
    current_uses = Column(Integer, nullable=False, default=0)

    is_active = Column(Boolean, default=True, nullable=False)
    expires_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("current_uses >= 0", name="check_coupon_uses_non_negative"),
    )
