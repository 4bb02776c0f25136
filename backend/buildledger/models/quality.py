"""
Defect threshold and alert models
"""
from datetime import datetime

from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String, UniqueConstraint,
)

from buildledger.db.base import Base


class DefectThreshold(Base):
    """
    Maximum acceptable defect rate (percent) for builds.

    sku_id NULL is the company-wide threshold; a SKU-specific row wins
    over it.
    """
    __tablename__ = "defect_thresholds"
    __table_args__ = (
        UniqueConstraint("company_id", "sku_id", name="uq_defect_thresholds_company_sku"),
    )

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    sku_id = Column(Integer, ForeignKey("skus.id"), nullable=True)
    defect_rate_limit = Column(Numeric(5, 2), nullable=False)
    affected_rate_limit = Column(Numeric(5, 2), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<DefectThreshold sku={self.sku_id}: {self.defect_rate_limit}%>"


class DefectAlert(Base):
    __tablename__ = "defect_alerts"

    id = Column(Integer, primary_key=True, index=True)
    threshold_id = Column(Integer, ForeignKey("defect_thresholds.id"), nullable=False, index=True)
    entry_id = Column(Integer, ForeignKey("ledger_entries.id"), nullable=False)
    sku_id = Column(Integer, ForeignKey("skus.id"), nullable=False, index=True)
    defect_rate = Column(Numeric(5, 2), nullable=False)
    threshold_value = Column(Numeric(5, 2), nullable=False)
    severity = Column(String(20), nullable=False)  # warning, critical
    acknowledged_at = Column(DateTime, nullable=True)
    acknowledged_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<DefectAlert sku={self.sku_id} {self.severity}: {self.defect_rate}%>"
