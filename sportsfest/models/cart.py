"""
Cart models

A cart session belongs to one organization and event year. Every line in
it holds a live reservation on the product's stock; lines are only
written after the reservation succeeded.
"""
from sqlalchemy import (
    Column, Integer, String, Boolean, ForeignKey, DateTime, Numeric, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship

from sportsfest.core.database import Base
from sportsfest.core.utils import utcnow


class CartSession(Base):
    __tablename__ = "cart_sessions"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String(64), unique=True, nullable=False, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    event_year_id = Column(Integer, ForeignKey("event_years.id"), nullable=False)

    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    items = relationship("CartItem", back_populates="cart_session", cascade="all, delete-orphan")


class CartItem(Base):
    __tablename__ = "cart_items"

    id = Column(Integer, primary_key=True, index=True)
    cart_session_id = Column(Integer, ForeignKey("cart_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)

    quantity = Column(Integer, nullable=False, default=1)
    use_deposit = Column(Boolean, default=False, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    cart_session = relationship("CartSession", back_populates="items")
    product = relationship("Product")

    __table_args__ = (
        UniqueConstraint("cart_session_id", "product_id", name="uq_cart_items_session_product"),
        Index("ix_cart_items_session_product", "cart_session_id", "product_id"),
    )
