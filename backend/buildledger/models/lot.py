"""
Lot models - traceable received batches of a component
"""
from datetime import datetime

from sqlalchemy import (
    CheckConstraint, Column, Date, DateTime, ForeignKey, Integer, Numeric, String, Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from buildledger.db.base import Base


class Lot(Base):
    __tablename__ = "lots"
    __table_args__ = (
        UniqueConstraint("component_id", "lot_number", name="uq_lots_component_lot_number"),
    )

    id = Column(Integer, primary_key=True, index=True)
    component_id = Column(Integer, ForeignKey("components.id"), nullable=False, index=True)
    lot_number = Column(String(100), nullable=False)
    expiry_date = Column(Date, nullable=True)
    received_quantity = Column(Numeric(18, 4), default=0, nullable=False)
    supplier = Column(String(200), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    balance = relationship("LotBalance", back_populates="lot", uselist=False)

    def __repr__(self):
        return f"<Lot {self.lot_number} component={self.component_id}>"


class LotBalance(Base):
    """Remaining quantity of a lot. Never negative."""
    __tablename__ = "lot_balances"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_lot_balances_quantity_nonnegative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    lot_id = Column(Integer, ForeignKey("lots.id"), nullable=False, unique=True)
    quantity = Column(Numeric(18, 4), default=0, nullable=False)
    reserved_quantity = Column(Numeric(18, 4), default=0, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    lot = relationship("Lot", back_populates="balance")

    def __repr__(self):
        return f"<LotBalance lot={self.lot_id}: {self.quantity}>"
