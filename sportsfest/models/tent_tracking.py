"""
Tent purchase tracking

Per (organization, event year, tent product) totals of confirmed tent
purchases. quantity_purchased only moves through the atomic increment in
sportsfest.services.tent_quota.confirm_tent_sale.
"""
from sqlalchemy import Column, Integer, ForeignKey, DateTime, UniqueConstraint, CheckConstraint

from sportsfest.core.database import Base
from sportsfest.core.utils import utcnow


class TentPurchaseTracking(Base):
    __tablename__ = "tent_purchase_tracking"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    event_year_id = Column(Integer, ForeignKey("event_years.id"), nullable=False, index=True)
    tent_product_id = Column(Integer, ForeignKey("products.id"), nullable=False)

    quantity_purchased = Column(Integer, nullable=False, default=0)
    max_allowed = Column(Integer, nullable=False, default=0)
    remaining_allowed = Column(Integer, nullable=False, default=0)
    company_team_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint(
            "organization_id", "event_year_id", "tent_product_id",
            name="uq_tent_tracking_org_year_product",
        ),
        CheckConstraint("quantity_purchased >= 0", name="check_tent_quantity_non_negative"),
    )
