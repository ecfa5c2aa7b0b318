"""
Order models

Orders are created from a cart at checkout in `pending` status and move
forward only through PaymentConfirmationService. Payments are keyed by
their Stripe payment intent id; the unique constraint on that column is
what makes a second confirmation of the same intent a no-op.
"""
import enum
from sqlalchemy import (
    Column, Integer, String, ForeignKey, DateTime, Text, JSON, Numeric, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship

from sportsfest.core.database import Base
from sportsfest.core.utils import utcnow


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PAYMENT_PROCESSING = "payment_processing"
    CONFIRMED = "confirmed"
    DEPOSIT_PAID = "deposit_paid"
    FULLY_PAID = "fully_paid"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentType(str, enum.Enum):
    TEAM_REGISTRATION = "team_registration"
    TENT_RENTAL = "tent_rental"
    PRODUCT_PURCHASE = "product_purchase"
    DEPOSIT_PAYMENT = "deposit_payment"
    BALANCE_PAYMENT = "balance_payment"


PAID_ORDER_STATUSES = (OrderStatus.DEPOSIT_PAID.value, OrderStatus.FULLY_PAID.value)


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    event_year_id = Column(Integer, ForeignKey("event_years.id"), nullable=False, index=True)

    order_number = Column(String(50), unique=True, index=True, nullable=False)
    status = Column(String(32), default=OrderStatus.PENDING.value, nullable=False, index=True)

    # Pricing
    total_amount = Column(Numeric(12, 2), nullable=False)
    balance_owed = Column(Numeric(12, 2), nullable=False, default=0)

    # Payment
    stripe_payment_intent_id = Column(String(255), index=True)
    customer_email = Column(String(255))

    # Coupon snapshot, failure history, inventory release flag
    # ("metadata" is reserved on declarative classes)
    order_metadata = Column("metadata", JSON, default=dict)

    notes = Column(Text)

    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    organization = relationship("Organization", back_populates="orders")
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")
    payments = relationship("OrderPayment", back_populates="order")
    invoice = relationship("OrderInvoice", back_populates="order", uselist=False)

    __table_args__ = (
        Index("ix_orders_org_event_year", organization_id, event_year_id),
    )


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)

    product_name = Column(String(255))  # Snapshot
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    total_price = Column(Numeric(12, 2), nullable=False)

    order = relationship("Order", back_populates="items")
    product = relationship("Product")


class OrderPayment(Base):
    __tablename__ = "order_payments"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)

    type = Column(String(32), nullable=False)
    status = Column(String(32), nullable=False, default=PaymentStatus.PENDING.value, index=True)
    amount = Column(Numeric(12, 2), nullable=False)

    stripe_payment_intent_id = Column(String(255), nullable=True)
    stripe_charge_id = Column(String(255))
    payment_method_type = Column(String(50))
    payment_metadata = Column(JSON, default=dict)

    processed_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=utcnow)

    order = relationship("Order", back_populates="payments")

    __table_args__ = (
        UniqueConstraint("stripe_payment_intent_id", name="uq_order_payments_payment_intent"),
    )


class OrderInvoice(Base):
    __tablename__ = "order_invoices"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, unique=True)
    invoice_number = Column(String(50), unique=True, nullable=False)

    status = Column(String(32), nullable=False, default="draft")  # draft, sent, paid
    total_amount = Column(Numeric(12, 2), nullable=False)
    paid_amount = Column(Numeric(12, 2), nullable=False, default=0)
    balance_owed = Column(Numeric(12, 2), nullable=False, default=0)

    due_date = Column(DateTime(timezone=True))
    paid_at = Column(DateTime(timezone=True))
    sent_at = Column(DateTime(timezone=True))
    stripe_invoice_id = Column(String(255))
    notes = Column(Text)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    order = relationship("Order", back_populates="invoice")
