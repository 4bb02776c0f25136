"""
Component model - raw materials and packaging consumed by builds
"""
from datetime import datetime

from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint,
)

from buildledger.db.base import Base


class Component(Base):
    """
    A stock-keeping raw material.

    Components referenced by any ledger line are never physically deleted;
    they are deactivated instead.
    """
    __tablename__ = "components"
    __table_args__ = (
        UniqueConstraint("company_id", "sku_code", name="uq_components_company_sku_code"),
    )

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    brand_id = Column(Integer, ForeignKey("brands.id"), nullable=True)

    sku_code = Column(String(100), nullable=False)
    name = Column(String(255), nullable=False)
    category = Column(String(100), nullable=True)
    unit_of_measure = Column(String(20), default="each", nullable=False)

    # Costing
    cost_per_unit = Column(Numeric(18, 4), default=0, nullable=False)

    # Replenishment
    reorder_point = Column(Numeric(18, 4), default=0, nullable=False)
    lead_time_days = Column(Integer, default=7, nullable=False)

    notes = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<Component {self.sku_code}: {self.name}>"
