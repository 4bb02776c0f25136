"""
Lot Service - lot records, lot balance writes and lot traceability

Lot balances never go negative: every decrement is a conditional UPDATE
that only matches while enough stock remains.
"""
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from buildledger.core.decimal_utils import to_decimal
from buildledger.exceptions import ConcurrencyError, NotFoundError
from buildledger.logging_config import get_logger
from buildledger.models.component import Component
from buildledger.models.ledger import LedgerEntry, LedgerEntryType, LedgerLine
from buildledger.models.lot import Lot, LotBalance
from buildledger.models.sku import SKU

logger = get_logger(__name__)


def get_lot(db: Session, lot_id: int, company_id: int) -> Lot:
    """Lot whose component belongs to the company, or NotFoundError."""
    lot = db.query(Lot).join(Component, Component.id == Lot.component_id).filter(
        Lot.id == lot_id,
        Component.company_id == company_id,
    ).first()
    if not lot:
        raise NotFoundError("Lot", lot_id)
    return lot


def get_lot_balance_quantity(db: Session, lot_id: int) -> Decimal:
    balance = db.query(LotBalance).filter(LotBalance.lot_id == lot_id).first()
    return to_decimal(balance.quantity) if balance else Decimal("0")


def increment_lot_balance(db: Session, lot_id: int, quantity: Decimal) -> None:
    quantity = to_decimal(quantity)
    db.flush()
    updated = db.query(LotBalance).filter(LotBalance.lot_id == lot_id).update(
        {LotBalance.quantity: LotBalance.quantity + quantity},
        synchronize_session="fetch",
    )
    if not updated:
        db.add(LotBalance(lot_id=lot_id, quantity=quantity))
        db.flush()


def decrement_lot_balance(db: Session, lot_id: int, quantity: Decimal) -> None:
    """
    Atomically take quantity from a lot.

    UPDATE lot_balances SET quantity = quantity - :q
    WHERE lot_id = :lot AND quantity >= :q

    No matching row means another writer got there first (or the request
    exceeds the balance); ConcurrencyError aborts the enclosing unit.
    """
    quantity = to_decimal(quantity)
    db.flush()
    updated = db.query(LotBalance).filter(
        LotBalance.lot_id == lot_id,
        LotBalance.quantity >= quantity,
    ).update(
        {LotBalance.quantity: LotBalance.quantity - quantity},
        synchronize_session="fetch",
    )
    if not updated:
        raise ConcurrencyError(
            f"Lot {lot_id} balance changed concurrently or is below {quantity}",
            details={"lot_id": lot_id, "quantity": str(quantity)},
        )


def receive_into_lot(
    db: Session,
    component_id: int,
    lot_number: str,
    quantity: Decimal,
    expiry_date: Optional[date] = None,
    supplier: Optional[str] = None,
    notes: Optional[str] = None,
) -> Lot:
    """
    Add received stock to a lot, creating the lot on first receipt.

    Receiving an existing lot number increments its received quantity and
    balance; its expiry date is only filled in if it had none.
    Does NOT commit.
    """
    quantity = to_decimal(quantity)
    lot = db.query(Lot).filter(
        Lot.component_id == component_id,
        Lot.lot_number == lot_number,
    ).first()

    if lot:
        lot.received_quantity = to_decimal(lot.received_quantity) + quantity
        if lot.expiry_date is None and expiry_date is not None:
            lot.expiry_date = expiry_date
        increment_lot_balance(db, lot.id, quantity)
        return lot

    lot = Lot(
        component_id=component_id,
        lot_number=lot_number,
        expiry_date=expiry_date,
        received_quantity=quantity,
        supplier=supplier,
        notes=notes,
    )
    db.add(lot)
    db.flush()
    db.add(LotBalance(lot_id=lot.id, quantity=quantity))
    db.flush()
    logger.info(f"Created lot {lot.lot_number} ({lot.id}) for component {component_id}")
    return lot


def get_affected_skus_for_lot(db: Session, lot_id: int, company_id: int) -> List[Dict[str, Any]]:
    """
    SKUs built with stock from a lot, for recall and traceability.

    quantity_used is the net amount taken from the lot by builds of each
    SKU, so a reversed build cancels out. build_count counts builds that
    still stand (neither reversed nor reversals). SKUs whose net use is
    zero are left out.

    Returns:
        [{"sku_id", "name", "internal_code", "quantity_used", "build_count"}]
        ordered by internal_code
    """
    get_lot(db, lot_id, company_id)

    rows = db.query(
        LedgerEntry.id,
        LedgerEntry.reversal_of_id,
        SKU.id,
        SKU.name,
        SKU.internal_code,
        LedgerLine.quantity_change,
    ).select_from(LedgerLine).join(
        LedgerEntry, LedgerEntry.id == LedgerLine.entry_id,
    ).join(
        SKU, SKU.id == LedgerEntry.sku_id,
    ).filter(
        LedgerLine.lot_id == lot_id,
        LedgerEntry.type == LedgerEntryType.BUILD,
        LedgerEntry.company_id == company_id,
    ).all()

    reversed_ids = {reversal_of_id for _, reversal_of_id, *_ in rows if reversal_of_id is not None}
    affected: Dict[int, Dict[str, Any]] = {}
    standing: Dict[int, set] = {}
    for entry_id, reversal_of_id, sku_id, name, internal_code, quantity_change in rows:
        item = affected.setdefault(sku_id, {
            "sku_id": sku_id,
            "name": name,
            "internal_code": internal_code,
            "quantity_used": Decimal("0"),
            "build_count": 0,
        })
        item["quantity_used"] -= to_decimal(quantity_change)
        if reversal_of_id is None and entry_id not in reversed_ids:
            standing.setdefault(sku_id, set()).add(entry_id)

    results = []
    for sku_id, item in affected.items():
        if item["quantity_used"] <= 0:
            continue
        item["build_count"] = len(standing.get(sku_id, ()))
        results.append(item)
    return sorted(results, key=lambda item: item["internal_code"])
