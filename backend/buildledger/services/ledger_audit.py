"""
Ledger Audit Service

Checks the ledger invariant for a company: every running balance equals
the signed sum of the ledger lines behind it.

    InventoryBalance(component, location) == sum(LedgerLine.quantity_change)
    LotBalance(lot)                       == sum(LedgerLine.quantity_change where lot_id)
    FinishedGoodsBalance(sku, location)   == sum(FinishedGoodsLine.quantity_change)

A balance row with no lines behind it must be zero; ledger lines with no
balance row count as a drift against an implicit zero.
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from buildledger.core.decimal_utils import ZERO, to_decimal
from buildledger.logging_config import get_logger
from buildledger.models.balance import FinishedGoodsBalance, InventoryBalance
from buildledger.models.component import Component
from buildledger.models.ledger import FinishedGoodsLine, LedgerLine
from buildledger.models.lot import Lot, LotBalance
from buildledger.models.sku import SKU
from buildledger.services.inventory_service import nullable_eq

logger = get_logger(__name__)

DRIFT_COMPONENT = "component"
DRIFT_LOT = "lot"
DRIFT_FINISHED_GOODS = "finished_goods"


@dataclass
class BalanceDrift:
    """A balance row that disagrees with its ledger lines"""
    kind: str  # component, lot, finished_goods
    item_id: int  # component_id, lot_id or sku_id
    location_id: Optional[int]
    balance: Decimal
    ledger_sum: Decimal

    @property
    def difference(self) -> Decimal:
        return self.balance - self.ledger_sum


@dataclass
class LedgerAuditResult:
    """Results of a ledger audit"""
    audit_timestamp: datetime
    company_id: int
    balances_checked: int = 0
    drifts: List[BalanceDrift] = field(default_factory=list)
    repaired: int = 0

    @property
    def is_consistent(self) -> bool:
        return not self.drifts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "audit_timestamp": self.audit_timestamp.isoformat(),
            "company_id": self.company_id,
            "balances_checked": self.balances_checked,
            "is_consistent": self.is_consistent,
            "repaired": self.repaired,
            "drifts": [
                {
                    "kind": d.kind,
                    "item_id": d.item_id,
                    "location_id": d.location_id,
                    "balance": str(d.balance),
                    "ledger_sum": str(d.ledger_sum),
                    "difference": str(d.difference),
                }
                for d in self.drifts
            ],
        }


class LedgerAuditService:
    """
    Verifies and repairs derived balances from ledger history.

    IMPORTANT: repair() does NOT commit. Caller is responsible for commit.
    """

    def __init__(self, db: Session):
        self.db = db

    def verify(self, company_id: int) -> LedgerAuditResult:
        """Compare every balance of the company with its ledger lines."""
        result = LedgerAuditResult(audit_timestamp=datetime.utcnow(), company_id=company_id)
        for kind, balances, sums in (
            (DRIFT_COMPONENT, self._component_balances(company_id), self._component_sums(company_id)),
            (DRIFT_LOT, self._lot_balances(company_id), self._lot_sums(company_id)),
            (DRIFT_FINISHED_GOODS, self._sku_balances(company_id), self._sku_sums(company_id)),
        ):
            keys = set(balances) | set(sums)
            result.balances_checked += len(keys)
            for key in sorted(keys, key=lambda k: (k[0], k[1] if k[1] is not None else 0)):
                balance = balances.get(key, ZERO)
                ledger_sum = sums.get(key, ZERO)
                if balance != ledger_sum:
                    result.drifts.append(BalanceDrift(
                        kind=kind,
                        item_id=key[0],
                        location_id=key[1],
                        balance=balance,
                        ledger_sum=ledger_sum,
                    ))

        if result.drifts:
            logger.warning(
                f"Ledger audit for company {company_id}: {len(result.drifts)} drifted balance(s) "
                f"out of {result.balances_checked}"
            )
        else:
            logger.info(f"Ledger audit for company {company_id}: {result.balances_checked} balance(s) consistent")
        return result

    def repair(self, company_id: int) -> LedgerAuditResult:
        """
        Overwrite every drifted balance with its ledger sum.

        Missing balance rows are created. Returns the audit that drove the
        repair, with repaired set to the number of rows written.
        """
        result = self.verify(company_id)
        for drift in result.drifts:
            self._write_balance(drift)
            result.repaired += 1
            logger.warning(
                f"Rebuilt {drift.kind} balance {drift.item_id}"
                f"{'@' + str(drift.location_id) if drift.location_id is not None else ''}: "
                f"{drift.balance} -> {drift.ledger_sum}"
            )
        self.db.flush()
        return result

    # === INTERNAL HELPERS ===

    def _write_balance(self, drift: BalanceDrift) -> None:
        if drift.kind == DRIFT_COMPONENT:
            row = self.db.query(InventoryBalance).filter(
                InventoryBalance.component_id == drift.item_id,
                nullable_eq(InventoryBalance.location_id, drift.location_id),
            ).first()
            if row is None:
                row = InventoryBalance(component_id=drift.item_id, location_id=drift.location_id)
                self.db.add(row)
        elif drift.kind == DRIFT_LOT:
            row = self.db.query(LotBalance).filter(LotBalance.lot_id == drift.item_id).first()
            if row is None:
                row = LotBalance(lot_id=drift.item_id)
                self.db.add(row)
        else:
            row = self.db.query(FinishedGoodsBalance).filter(
                FinishedGoodsBalance.sku_id == drift.item_id,
                FinishedGoodsBalance.location_id == drift.location_id,
            ).first()
            if row is None:
                row = FinishedGoodsBalance(sku_id=drift.item_id, location_id=drift.location_id)
                self.db.add(row)
        row.quantity = drift.ledger_sum

    def _component_balances(self, company_id: int) -> Dict[Tuple[int, Optional[int]], Decimal]:
        rows = self.db.query(
            InventoryBalance.component_id, InventoryBalance.location_id, InventoryBalance.quantity,
        ).join(Component, Component.id == InventoryBalance.component_id).filter(
            Component.company_id == company_id,
        ).all()
        return {(cid, lid): to_decimal(qty) for cid, lid, qty in rows}

    def _component_sums(self, company_id: int) -> Dict[Tuple[int, Optional[int]], Decimal]:
        rows = self.db.query(
            LedgerLine.component_id, LedgerLine.location_id, func.sum(LedgerLine.quantity_change),
        ).join(Component, Component.id == LedgerLine.component_id).filter(
            Component.company_id == company_id,
        ).group_by(LedgerLine.component_id, LedgerLine.location_id).all()
        return {(cid, lid): to_decimal(total) for cid, lid, total in rows}

    def _lot_balances(self, company_id: int) -> Dict[Tuple[int, Optional[int]], Decimal]:
        rows = self.db.query(LotBalance.lot_id, LotBalance.quantity).join(
            Lot, Lot.id == LotBalance.lot_id,
        ).join(Component, Component.id == Lot.component_id).filter(
            Component.company_id == company_id,
        ).all()
        return {(lot_id, None): to_decimal(qty) for lot_id, qty in rows}

    def _lot_sums(self, company_id: int) -> Dict[Tuple[int, Optional[int]], Decimal]:
        rows = self.db.query(LedgerLine.lot_id, func.sum(LedgerLine.quantity_change)).join(
            Component, Component.id == LedgerLine.component_id,
        ).filter(
            Component.company_id == company_id,
            LedgerLine.lot_id.isnot(None),
        ).group_by(LedgerLine.lot_id).all()
        return {(lot_id, None): to_decimal(total) for lot_id, total in rows}

    def _sku_balances(self, company_id: int) -> Dict[Tuple[int, Optional[int]], Decimal]:
        rows = self.db.query(
            FinishedGoodsBalance.sku_id, FinishedGoodsBalance.location_id, FinishedGoodsBalance.quantity,
        ).join(SKU, SKU.id == FinishedGoodsBalance.sku_id).filter(
            SKU.company_id == company_id,
        ).all()
        return {(sid, lid): to_decimal(qty) for sid, lid, qty in rows}

    def _sku_sums(self, company_id: int) -> Dict[Tuple[int, Optional[int]], Decimal]:
        rows = self.db.query(
            FinishedGoodsLine.sku_id, FinishedGoodsLine.location_id, func.sum(FinishedGoodsLine.quantity_change),
        ).join(SKU, SKU.id == FinishedGoodsLine.sku_id).filter(
            SKU.company_id == company_id,
        ).group_by(FinishedGoodsLine.sku_id, FinishedGoodsLine.location_id).all()
        return {(sid, lid): to_decimal(total) for sid, lid, total in rows}
