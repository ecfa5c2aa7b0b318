"""
Company team model

One row per team an organization fields in an event year. Teams are
created from paid team-registration purchases and numbered 1..n within
(organization, event year).
"""
from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, DateTime, UniqueConstraint
from sqlalchemy.orm import relationship

from sportsfest.core.database import Base
from sportsfest.core.utils import utcnow


class CompanyTeam(Base):
    __tablename__ = "company_teams"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    event_year_id = Column(Integer, ForeignKey("event_years.id"), nullable=False, index=True)

    team_number = Column(Integer, nullable=False)
    name = Column(String(255), nullable=False)
    is_paid = Column(Boolean, default=False, nullable=False)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)

    organization = relationship("Organization", back_populates="company_teams")

    __table_args__ = (
        UniqueConstraint(
            "organization_id", "event_year_id", "team_number",
            name="uq_company_teams_org_year_number",
        ),
    )
