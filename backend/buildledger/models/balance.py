"""
Running balance models

Each row is a cache of the signed sum of ledger lines for its key; the
ledger audit service can rebuild any of them from history.
"""
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, UniqueConstraint

from buildledger.db.base import Base


class InventoryBalance(Base):
    """On-hand quantity of a component at a location.

    location_id is NULL for stock consumed by builds of a company with no
    location to consume from; reads across locations include that row.
    """
    __tablename__ = "inventory_balances"
    __table_args__ = (
        UniqueConstraint("component_id", "location_id", name="uq_inventory_balances_component_location"),
    )

    id = Column(Integer, primary_key=True, index=True)
    component_id = Column(Integer, ForeignKey("components.id"), nullable=False, index=True)
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=True, index=True)
    quantity = Column(Numeric(18, 4), default=0, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<InventoryBalance component={self.component_id} location={self.location_id}: {self.quantity}>"


class FinishedGoodsBalance(Base):
    """On-hand quantity of a SKU at a location."""
    __tablename__ = "finished_goods_balances"
    __table_args__ = (
        UniqueConstraint("sku_id", "location_id", name="uq_finished_goods_balances_sku_location"),
    )

    id = Column(Integer, primary_key=True, index=True)
    sku_id = Column(Integer, ForeignKey("skus.id"), nullable=False, index=True)
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=False, index=True)
    quantity = Column(Numeric(18, 4), default=0, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<FinishedGoodsBalance sku={self.sku_id} location={self.location_id}: {self.quantity}>"
