"""
SKU model - finished goods produced by builds
"""
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint

from buildledger.db.base import Base


class SKU(Base):
    __tablename__ = "skus"
    __table_args__ = (
        UniqueConstraint("company_id", "internal_code", name="uq_skus_company_internal_code"),
    )

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    brand_id = Column(Integer, ForeignKey("brands.id"), nullable=True)

    internal_code = Column(String(100), nullable=False)
    name = Column(String(255), nullable=False)
    sales_channel = Column(String(50), nullable=True)  # amazon, shopify, tiktok, generic
    notes = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<SKU {self.internal_code}: {self.name}>"
