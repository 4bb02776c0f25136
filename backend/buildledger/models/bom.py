"""
Bill of Materials models
"""
from datetime import datetime

from sqlalchemy import (
    JSON, Boolean, CheckConstraint, Column, DateTime, ForeignKey, Integer, Numeric, String, Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from buildledger.db.base import Base


class BOMVersion(Base):
    """
    One version of a SKU's recipe.

    At most one version per SKU is active; promoting a version deactivates
    every sibling and stamps its effective_end_date.
    """
    __tablename__ = "bom_versions"

    id = Column(Integer, primary_key=True, index=True)
    sku_id = Column(Integer, ForeignKey("skus.id"), nullable=False, index=True)

    version_name = Column(String(100), nullable=False)
    effective_start_date = Column(DateTime, default=datetime.utcnow, nullable=False)
    effective_end_date = Column(DateTime, nullable=True)
    is_active = Column(Boolean, default=False, nullable=False)

    notes = Column(Text, nullable=True)
    defect_notes = Column(Text, nullable=True)
    quality_metadata = Column(JSON, nullable=True)

    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    lines = relationship(
        "BOMLine",
        back_populates="bom_version",
        cascade="all, delete-orphan",
        order_by="BOMLine.id",
    )

    def __repr__(self):
        return f"<BOMVersion {self.id}: {self.version_name} active={self.is_active}>"


class BOMLine(Base):
    __tablename__ = "bom_lines"
    __table_args__ = (
        UniqueConstraint("bom_version_id", "component_id", name="uq_bom_lines_version_component"),
        CheckConstraint("quantity_per_unit >= 0", name="ck_bom_lines_quantity_nonnegative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    bom_version_id = Column(Integer, ForeignKey("bom_versions.id", ondelete="CASCADE"), nullable=False, index=True)
    component_id = Column(Integer, ForeignKey("components.id"), nullable=False, index=True)
    quantity_per_unit = Column(Numeric(18, 4), nullable=False)
    notes = Column(Text, nullable=True)

    bom_version = relationship("BOMVersion", back_populates="lines")

    def __repr__(self):
        return f"<BOMLine component={self.component_id} qty={self.quantity_per_unit}>"
