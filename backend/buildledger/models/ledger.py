"""
Ledger models - the append-only history of every inventory movement

A LedgerEntry is one business event (receipt, build, transfer, ...). Its
LedgerLines move component stock and its FinishedGoodsLines move SKU
stock. Entries are never edited or deleted; a correction is a new entry
whose lines negate the original (reversal_of_id points back).
"""
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship

from buildledger.db.base import Base


class LedgerEntryType:
    RECEIPT = "receipt"
    BUILD = "build"
    ADJUSTMENT = "adjustment"
    INITIAL = "initial"
    TRANSFER = "transfer"
    OUTBOUND = "outbound"

    ALL = (RECEIPT, BUILD, ADJUSTMENT, INITIAL, TRANSFER, OUTBOUND)


class LedgerEntry(Base):
    """Header of a single inventory event."""
    __tablename__ = "ledger_entries"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)

    type = Column(String(20), nullable=False, index=True)
    # receipt, build, adjustment, initial, transfer, outbound
    date = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Build context
    sku_id = Column(Integer, ForeignKey("skus.id"), nullable=True, index=True)
    bom_version_id = Column(Integer, ForeignKey("bom_versions.id"), nullable=True)
    units_built = Column(Integer, nullable=True)
    unit_bom_cost = Column(Numeric(18, 4), nullable=True)
    total_bom_cost = Column(Numeric(18, 4), nullable=True)
    sales_channel = Column(String(50), nullable=True)

    # Quality
    defect_count = Column(Integer, nullable=True)
    defect_notes = Column(Text, nullable=True)
    affected_units = Column(Integer, nullable=True)

    # Movement context
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=True)
    from_location_id = Column(Integer, ForeignKey("locations.id"), nullable=True)
    to_location_id = Column(Integer, ForeignKey("locations.id"), nullable=True)
    supplier = Column(String(200), nullable=True)
    reason = Column(String(255), nullable=True)

    # Corrections
    reversal_of_id = Column(Integer, ForeignKey("ledger_entries.id"), nullable=True, unique=True)
    reversed_by_id = Column(Integer, ForeignKey("ledger_entries.id"), nullable=True)

    notes = Column(Text, nullable=True)
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    lines = relationship(
        "LedgerLine",
        back_populates="entry",
        order_by="LedgerLine.id",
    )
    finished_goods_lines = relationship(
        "FinishedGoodsLine",
        back_populates="entry",
        order_by="FinishedGoodsLine.id",
    )
    reversal_of = relationship("LedgerEntry", remote_side=[id], foreign_keys=[reversal_of_id])

    def __repr__(self):
        return f"<LedgerEntry {self.id}: {self.type}>"


class LedgerLine(Base):
    """
    Signed change of a component's stock at one location.

    lot_id is NULL for pooled (untracked) stock. cost_per_unit is the
    component cost at the moment the line was written.
    """
    __tablename__ = "ledger_lines"

    id = Column(Integer, primary_key=True, index=True)
    entry_id = Column(Integer, ForeignKey("ledger_entries.id"), nullable=False, index=True)
    component_id = Column(Integer, ForeignKey("components.id"), nullable=False, index=True)
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=True, index=True)
    lot_id = Column(Integer, ForeignKey("lots.id"), nullable=True, index=True)
    quantity_change = Column(Numeric(18, 4), nullable=False)
    cost_per_unit = Column(Numeric(18, 4), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    entry = relationship("LedgerEntry", back_populates="lines")

    def __repr__(self):
        return f"<LedgerLine component={self.component_id} lot={self.lot_id}: {self.quantity_change}>"


class FinishedGoodsLine(Base):
    """Signed change of a SKU's stock at one location."""
    __tablename__ = "finished_goods_lines"

    id = Column(Integer, primary_key=True, index=True)
    entry_id = Column(Integer, ForeignKey("ledger_entries.id"), nullable=False, index=True)
    sku_id = Column(Integer, ForeignKey("skus.id"), nullable=False, index=True)
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=False, index=True)
    quantity_change = Column(Numeric(18, 4), nullable=False)
    cost_per_unit = Column(Numeric(18, 4), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    entry = relationship("LedgerEntry", back_populates="finished_goods_lines")

    def __repr__(self):
        return f"<FinishedGoodsLine sku={self.sku_id}: {self.quantity_change}>"
