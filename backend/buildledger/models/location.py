"""
Location model
"""
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String

from buildledger.db.base import Base


class Location(Base):
    """
    Physical or logical place stock sits in (warehouse, 3PL, FBA, ...).

    At most one location per company has is_default set; the default is
    only used while it is also active.
    """
    __tablename__ = "locations"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    type = Column(String(50), default="warehouse", nullable=False)
    # warehouse, 3pl, fba, finished_goods, other
    is_default = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    notes = Column(String(500), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<Location {self.id}: {self.name}>"
