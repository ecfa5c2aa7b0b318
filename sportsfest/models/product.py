"""
Product model

Purchasable SKUs for an event year. Stock is tracked with three counters:
total_inventory (NULL = unlimited), sold_count and reserved_count. The
counters are only ever mutated through the atomic statements in
sportsfest.services.inventory.

Check constraints keep both counters non-negative and
sold_count + reserved_count <= total_inventory when inventory is limited.
"""
import enum
from datetime import datetime, timezone
from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Numeric, ForeignKey, CheckConstraint, Index
)
from sqlalchemy.orm import relationship

from sportsfest.core.database import Base


class ProductType(str, enum.Enum):
    TENT_RENTAL = "tent_rental"
    TEAM_REGISTRATION = "team_registration"
    MERCHANDISE = "merchandise"
    EQUIPMENT = "equipment"
    SERVICES = "services"


class ProductStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    ARCHIVED = "archived"


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    event_year_id = Column(Integer, ForeignKey("event_years.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    type = Column(String(32), nullable=False, default=ProductType.MERCHANDISE.value, index=True)
    status = Column(String(32), nullable=False, default=ProductStatus.ACTIVE.value, index=True)

    # Pricing
    base_price = Column(Numeric(12, 2), nullable=False)
    requires_deposit = Column(Boolean, default=False, nullable=False)
    deposit_amount = Column(Numeric(12, 2), nullable=True)

    # Inventory
    total_inventory = Column(Integer, nullable=True)  # NULL = unlimited
    sold_count = Column(Integer, nullable=False, default=0)
    reserved_count = Column(Integer, nullable=False, default=0)
    max_quantity_per_org = Column(Integer, nullable=True)  # NULL = unlimited

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    event_year = relationship("EventYear", back_populates="products")

    __table_args__ = (
        Index("ix_products_event_year_status", event_year_id, status),
        CheckConstraint("sold_count >= 0", name="check_sold_count_non_negative"),
        CheckConstraint("reserved_count >= 0", name="check_reserved_count_non_negative"),
        CheckConstraint(
            "total_inventory IS NULL OR sold_count + reserved_count <= total_inventory",
            name="check_stock_within_inventory",
        ),
    )

    @property
    def is_tent(self) -> bool:
        return self.type == ProductType.TENT_RENTAL.value

    @property
    def available_inventory(self):
        """Unreserved, unsold stock; None when inventory is unlimited."""
        if self.total_inventory is None:
            return None
        return self.total_inventory - (self.sold_count or 0) - (self.reserved_count or 0)
