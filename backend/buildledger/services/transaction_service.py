"""
Transaction Service - ledger entries for every non-build inventory movement

All physical inventory movements MUST go through a ledger service so that:
1. A LedgerEntry header is created
2. One signed line per affected (component|SKU, location, lot)
3. The matching running balances are updated
4. All of it lands in a single commit (atomic)

Usage:
    txn_service = TransactionService(db)
    with atomic_unit(db):
        entry = txn_service.create_receipt(company_id=1, component_id=5, ...)

Entries are immutable. Corrections go through reverse_entry(), which
writes a new entry whose lines negate the original.
"""
from datetime import date as date_type, datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from buildledger.core.decimal_utils import ZERO, to_decimal
from buildledger.exceptions import (
    ConfigurationError,
    InsufficientInventoryError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from buildledger.logging_config import get_logger
from buildledger.models.balance import FinishedGoodsBalance, InventoryBalance
from buildledger.models.ledger import FinishedGoodsLine, LedgerEntry, LedgerEntryType, LedgerLine
from buildledger.services.inventory_service import (
    apply_finished_goods_delta,
    apply_inventory_delta,
    get_component,
    get_component_quantity,
    get_sku,
    get_sku_quantity,
    nullable_eq,
)
from buildledger.services.location_service import get_default_location_id, get_location
from buildledger.services.lot_service import (
    decrement_lot_balance,
    get_lot,
    get_lot_balance_quantity,
    increment_lot_balance,
    receive_into_lot,
)

logger = get_logger(__name__)


class TransactionService:
    """
    Ledger writer for receipts, adjustments, opening balances, transfers,
    outbound shipments, finished-goods adjustments and reversals.

    IMPORTANT: This service does NOT commit. Caller is responsible for commit.
    This allows multiple operations to be grouped in a single atomic unit.
    """

    def __init__(self, db: Session):
        self.db = db

    # === INTERNAL HELPERS ===

    def _resolve_location_id(self, company_id: int, location_id: Optional[int]) -> int:
        """Explicit active location of the company, else the company default."""
        if location_id is not None:
            return get_location(self.db, location_id, company_id).id
        default_id = get_default_location_id(self.db, company_id)
        if default_id is None:
            raise ConfigurationError(
                "No location specified and company has no default location",
                details={"company_id": company_id},
            )
        return default_id

    def _create_entry(self, company_id: int, entry_type: str, date: Optional[datetime], **fields) -> LedgerEntry:
        entry = LedgerEntry(
            company_id=company_id,
            type=entry_type,
            date=date or datetime.utcnow(),
            **fields,
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def _add_line(
        self,
        entry: LedgerEntry,
        component_id: int,
        location_id: Optional[int],
        quantity_change: Decimal,
        cost_per_unit: Optional[Decimal],
        lot_id: Optional[int] = None,
    ) -> LedgerLine:
        line = LedgerLine(
            entry_id=entry.id,
            component_id=component_id,
            location_id=location_id,
            lot_id=lot_id,
            quantity_change=quantity_change,
            cost_per_unit=cost_per_unit,
        )
        self.db.add(line)
        return line

    def _add_finished_goods_line(
        self,
        entry: LedgerEntry,
        sku_id: int,
        location_id: int,
        quantity_change: Decimal,
        cost_per_unit: Optional[Decimal] = None,
    ) -> FinishedGoodsLine:
        line = FinishedGoodsLine(
            entry_id=entry.id,
            sku_id=sku_id,
            location_id=location_id,
            quantity_change=quantity_change,
            cost_per_unit=cost_per_unit,
        )
        self.db.add(line)
        return line

    def _finish(self, entry: LedgerEntry) -> LedgerEntry:
        self.db.flush()
        self.db.refresh(entry)
        logger.info(
            f"Ledger entry {entry.id} ({entry.type}) recorded for company {entry.company_id}"
        )
        return entry

    @staticmethod
    def _require_positive(quantity, field: str = "quantity") -> Decimal:
        quantity = to_decimal(quantity)
        if quantity <= 0:
            raise ValidationError(f"{field} must be greater than zero", field=field, value=quantity)
        return quantity

    @staticmethod
    def _require_nonzero(quantity, field: str = "quantity") -> Decimal:
        quantity = to_decimal(quantity)
        if quantity == 0:
            raise ValidationError(f"{field} must not be zero", field=field, value=quantity)
        return quantity

    def _check_component_available(self, component, location_id: int, required: Decimal) -> None:
        available = get_component_quantity(self.db, component.id, component.company_id, location_id)
        if available < required:
            raise InsufficientInventoryError(
                f"Insufficient inventory at source location. Available: {available}, Required: {required}",
                shortages=[{
                    "component_id": component.id,
                    "component_name": component.name,
                    "sku_code": component.sku_code,
                    "required": str(required),
                    "available": str(available),
                    "shortage": str(required - available),
                }],
            )

    def _check_sku_available(self, sku, location_id: int, required: Decimal) -> None:
        available = get_sku_quantity(self.db, sku.id, sku.company_id, location_id)
        if available < required:
            raise InsufficientInventoryError(
                f"Insufficient finished goods at location. Available: {available}, Required: {required}",
                shortages=[{
                    "sku_id": sku.id,
                    "sku_name": sku.name,
                    "required": str(required),
                    "available": str(available),
                    "shortage": str(required - available),
                }],
            )

    # === COMPONENT MOVEMENTS ===

    def create_receipt(
        self,
        company_id: int,
        component_id: int,
        quantity: Decimal,
        created_by_id: Optional[int] = None,
        date: Optional[datetime] = None,
        supplier: Optional[str] = None,
        cost_per_unit: Optional[Decimal] = None,
        update_component_cost: bool = False,
        location_id: Optional[int] = None,
        lot_number: Optional[str] = None,
        expiry_date: Optional[date_type] = None,
        notes: Optional[str] = None,
    ) -> LedgerEntry:
        """
        Receive component stock.

        With lot_number the stock goes into that lot (created on first
        receipt). cost_per_unit defaults to the component's current cost;
        update_component_cost makes the given cost the new current cost.
        """
        quantity = self._require_positive(quantity)
        component = get_component(self.db, component_id, company_id)
        location_id = self._resolve_location_id(company_id, location_id)
        line_cost = to_decimal(cost_per_unit) if cost_per_unit is not None else to_decimal(component.cost_per_unit)

        lot_id = None
        if lot_number:
            lot = receive_into_lot(
                self.db, component.id, lot_number, quantity,
                expiry_date=expiry_date, supplier=supplier, notes=notes,
            )
            lot_id = lot.id

        entry = self._create_entry(
            company_id, LedgerEntryType.RECEIPT, date,
            location_id=location_id, supplier=supplier, notes=notes, created_by_id=created_by_id,
        )
        self._add_line(entry, component.id, location_id, quantity, line_cost, lot_id=lot_id)

        if update_component_cost and cost_per_unit is not None:
            component.cost_per_unit = line_cost

        apply_inventory_delta(self.db, component.id, location_id, quantity)
        return self._finish(entry)

    def create_adjustment(
        self,
        company_id: int,
        component_id: int,
        quantity: Decimal,
        reason: str,
        created_by_id: Optional[int] = None,
        date: Optional[datetime] = None,
        location_id: Optional[int] = None,
        lot_id: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> LedgerEntry:
        """
        Signed correction of component stock (count differences, damage, ...).

        With lot_id the lot balance moves too and may not go negative.
        The component balance itself may go negative.
        """
        quantity = self._require_nonzero(quantity)
        if not reason:
            raise ValidationError("reason is required for adjustments", field="reason")
        component = get_component(self.db, component_id, company_id)
        location_id = self._resolve_location_id(company_id, location_id)

        if lot_id is not None:
            lot = get_lot(self.db, lot_id, company_id)
            if lot.component_id != component.id:
                raise ValidationError(
                    f"Lot {lot.lot_number} does not belong to the specified component",
                    field="lot_id",
                    value=lot_id,
                )
            if quantity < 0:
                available = get_lot_balance_quantity(self.db, lot.id)
                if available < -quantity:
                    raise InsufficientInventoryError(
                        f"Lot {lot.lot_number}: requested {-quantity}, available {available}",
                    )

        entry = self._create_entry(
            company_id, LedgerEntryType.ADJUSTMENT, date,
            location_id=location_id, reason=reason, notes=notes, created_by_id=created_by_id,
        )
        self._add_line(entry, component.id, location_id, quantity, to_decimal(component.cost_per_unit), lot_id=lot_id)

        if lot_id is not None:
            if quantity > 0:
                increment_lot_balance(self.db, lot_id, quantity)
            else:
                decrement_lot_balance(self.db, lot_id, -quantity)

        apply_inventory_delta(self.db, component.id, location_id, quantity)
        return self._finish(entry)

    def create_initial(
        self,
        company_id: int,
        component_id: int,
        quantity: Decimal,
        created_by_id: Optional[int] = None,
        date: Optional[datetime] = None,
        cost_per_unit: Optional[Decimal] = None,
        update_component_cost: bool = False,
        location_id: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> LedgerEntry:
        """Opening balance of a component at a location."""
        quantity = self._require_positive(quantity)
        component = get_component(self.db, component_id, company_id)
        location_id = self._resolve_location_id(company_id, location_id)
        line_cost = to_decimal(cost_per_unit) if cost_per_unit is not None else to_decimal(component.cost_per_unit)

        entry = self._create_entry(
            company_id, LedgerEntryType.INITIAL, date,
            location_id=location_id, notes=notes, created_by_id=created_by_id,
        )
        self._add_line(entry, component.id, location_id, quantity, line_cost)

        if update_component_cost and cost_per_unit is not None:
            component.cost_per_unit = line_cost

        apply_inventory_delta(self.db, component.id, location_id, quantity)
        return self._finish(entry)

    def create_transfer(
        self,
        company_id: int,
        component_id: int,
        quantity: Decimal,
        from_location_id: int,
        to_location_id: int,
        created_by_id: Optional[int] = None,
        date: Optional[datetime] = None,
        notes: Optional[str] = None,
    ) -> LedgerEntry:
        """Move component stock between two active locations of the company."""
        quantity = self._require_positive(quantity)
        if from_location_id == to_location_id:
            raise ValidationError("Cannot transfer to the same location", field="to_location_id")

        component = get_component(self.db, component_id, company_id)
        source = get_location(self.db, from_location_id, company_id)
        destination = get_location(self.db, to_location_id, company_id)
        self._check_component_available(component, source.id, quantity)

        cost = to_decimal(component.cost_per_unit)
        entry = self._create_entry(
            company_id, LedgerEntryType.TRANSFER, date,
            from_location_id=source.id, to_location_id=destination.id,
            notes=notes, created_by_id=created_by_id,
        )
        self._add_line(entry, component.id, source.id, -quantity, cost)
        self._add_line(entry, component.id, destination.id, quantity, cost)

        apply_inventory_delta(self.db, component.id, source.id, -quantity, require_sufficient=True)
        apply_inventory_delta(self.db, component.id, destination.id, quantity)
        return self._finish(entry)

    # === FINISHED GOODS MOVEMENTS ===

    def create_outbound(
        self,
        company_id: int,
        sku_id: int,
        quantity: Decimal,
        created_by_id: Optional[int] = None,
        date: Optional[datetime] = None,
        location_id: Optional[int] = None,
        sales_channel: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> LedgerEntry:
        """Ship finished goods out of a location."""
        quantity = self._require_positive(quantity)
        sku = get_sku(self.db, sku_id, company_id)
        location_id = self._resolve_location_id(company_id, location_id)
        self._check_sku_available(sku, location_id, quantity)

        entry = self._create_entry(
            company_id, LedgerEntryType.OUTBOUND, date,
            sku_id=sku.id, location_id=location_id, sales_channel=sales_channel,
            notes=notes, created_by_id=created_by_id,
        )
        self._add_finished_goods_line(entry, sku.id, location_id, -quantity)

        apply_finished_goods_delta(self.db, sku.id, location_id, -quantity, require_sufficient=True)
        return self._finish(entry)

    def adjust_finished_goods(
        self,
        company_id: int,
        sku_id: int,
        location_id: int,
        quantity: Decimal,
        reason: str,
        created_by_id: Optional[int] = None,
        date: Optional[datetime] = None,
        notes: Optional[str] = None,
    ) -> LedgerEntry:
        """Signed correction of finished goods; the balance may not go negative."""
        quantity = self._require_nonzero(quantity)
        if not reason:
            raise ValidationError("reason is required for adjustments", field="reason")
        sku = get_sku(self.db, sku_id, company_id)
        location = get_location(self.db, location_id, company_id)
        if quantity < 0:
            self._check_sku_available(sku, location.id, -quantity)

        entry = self._create_entry(
            company_id, LedgerEntryType.ADJUSTMENT, date,
            sku_id=sku.id, location_id=location.id, reason=reason,
            notes=notes, created_by_id=created_by_id,
        )
        self._add_finished_goods_line(entry, sku.id, location.id, quantity)

        apply_finished_goods_delta(self.db, sku.id, location.id, quantity, require_sufficient=True)
        return self._finish(entry)

    def transfer_finished_goods(
        self,
        company_id: int,
        sku_id: int,
        quantity: Decimal,
        from_location_id: int,
        to_location_id: int,
        created_by_id: Optional[int] = None,
        date: Optional[datetime] = None,
        notes: Optional[str] = None,
    ) -> LedgerEntry:
        quantity = self._require_positive(quantity)
        if from_location_id == to_location_id:
            raise ValidationError("Cannot transfer to the same location", field="to_location_id")

        sku = get_sku(self.db, sku_id, company_id)
        source = get_location(self.db, from_location_id, company_id)
        destination = get_location(self.db, to_location_id, company_id)
        self._check_sku_available(sku, source.id, quantity)

        entry = self._create_entry(
            company_id, LedgerEntryType.TRANSFER, date,
            sku_id=sku.id, from_location_id=source.id, to_location_id=destination.id,
            notes=notes, created_by_id=created_by_id,
        )
        self._add_finished_goods_line(entry, sku.id, source.id, -quantity)
        self._add_finished_goods_line(entry, sku.id, destination.id, quantity)

        apply_finished_goods_delta(self.db, sku.id, source.id, -quantity, require_sufficient=True)
        apply_finished_goods_delta(self.db, sku.id, destination.id, quantity)
        return self._finish(entry)

    # === CORRECTIONS ===

    def get_entry(self, company_id: int, entry_id: int) -> LedgerEntry:
        entry = self.db.query(LedgerEntry).filter(
            LedgerEntry.id == entry_id,
            LedgerEntry.company_id == company_id,
        ).first()
        if not entry:
            raise NotFoundError("Ledger entry", entry_id)
        return entry

    def _reversal_shortages(self, entry: LedgerEntry) -> List[Dict[str, str]]:
        """Balances that would go negative if the entry were reversed."""
        needed_components: Dict[Tuple[int, Optional[int]], Decimal] = {}
        needed_lots: Dict[int, Decimal] = {}
        needed_skus: Dict[Tuple[int, int], Decimal] = {}

        for line in entry.lines:
            change = to_decimal(line.quantity_change)
            if change <= 0:
                continue
            key = (line.component_id, line.location_id)
            needed_components[key] = needed_components.get(key, ZERO) + change
            if line.lot_id is not None:
                needed_lots[line.lot_id] = needed_lots.get(line.lot_id, ZERO) + change
        for fg_line in entry.finished_goods_lines:
            change = to_decimal(fg_line.quantity_change)
            if change > 0:
                key = (fg_line.sku_id, fg_line.location_id)
                needed_skus[key] = needed_skus.get(key, ZERO) + change

        shortages = []
        for (component_id, location_id), needed in needed_components.items():
            row = self.db.query(InventoryBalance).filter(
                InventoryBalance.component_id == component_id,
                nullable_eq(InventoryBalance.location_id, location_id),
            ).first()
            available = to_decimal(row.quantity) if row else ZERO
            if available < needed:
                shortages.append({
                    "component_id": str(component_id), "location_id": str(location_id),
                    "required": str(needed), "available": str(available),
                })
        for lot_id, needed in needed_lots.items():
            available = get_lot_balance_quantity(self.db, lot_id)
            if available < needed:
                shortages.append({
                    "lot_id": str(lot_id), "required": str(needed), "available": str(available),
                })
        for (sku_id, location_id), needed in needed_skus.items():
            row = self.db.query(FinishedGoodsBalance).filter(
                FinishedGoodsBalance.sku_id == sku_id,
                FinishedGoodsBalance.location_id == location_id,
            ).first()
            available = to_decimal(row.quantity) if row else ZERO
            if available < needed:
                shortages.append({
                    "sku_id": str(sku_id), "location_id": str(location_id),
                    "required": str(needed), "available": str(available),
                })
        return shortages

    def reverse_entry(
        self,
        company_id: int,
        entry_id: int,
        created_by_id: Optional[int] = None,
        reason: Optional[str] = None,
        date: Optional[datetime] = None,
    ) -> LedgerEntry:
        """
        Cancel an entry by writing its exact negation.

        The reversal has the same type, points back via reversal_of_id and
        restores every balance the original touched. An entry can be
        reversed once; reversals themselves cannot be reversed. Stock the
        original added must still be on hand.
        """
        original = self.get_entry(company_id, entry_id)
        if original.reversal_of_id is not None:
            raise InvalidStateError("Cannot reverse a reversal entry", current_state="reversal")
        already = self.db.query(LedgerEntry.id).filter(LedgerEntry.reversal_of_id == original.id).first()
        if already is not None:
            raise InvalidStateError(f"Ledger entry {original.id} is already reversed", current_state="reversed")

        shortages = self._reversal_shortages(original)
        if shortages:
            raise InsufficientInventoryError(
                f"Cannot reverse ledger entry {original.id}: stock it added has since been used",
                shortages=shortages,
            )

        reversal = self._create_entry(
            company_id, original.type, date,
            sku_id=original.sku_id,
            bom_version_id=original.bom_version_id,
            location_id=original.location_id,
            from_location_id=original.from_location_id,
            to_location_id=original.to_location_id,
            units_built=-original.units_built if original.units_built else None,
            unit_bom_cost=original.unit_bom_cost,
            total_bom_cost=-to_decimal(original.total_bom_cost) if original.total_bom_cost is not None else None,
            reason=reason or f"Reversal of entry {original.id}",
            reversal_of_id=original.id,
            created_by_id=created_by_id,
        )
        original.reversed_by_id = reversal.id

        for line in original.lines:
            change = -to_decimal(line.quantity_change)
            self._add_line(reversal, line.component_id, line.location_id, change, line.cost_per_unit, lot_id=line.lot_id)
            if line.lot_id is not None:
                if change > 0:
                    increment_lot_balance(self.db, line.lot_id, change)
                else:
                    decrement_lot_balance(self.db, line.lot_id, -change)
            apply_inventory_delta(self.db, line.component_id, line.location_id, change, require_sufficient=True)

        for fg_line in original.finished_goods_lines:
            change = -to_decimal(fg_line.quantity_change)
            self._add_finished_goods_line(reversal, fg_line.sku_id, fg_line.location_id, change, fg_line.cost_per_unit)
            apply_finished_goods_delta(self.db, fg_line.sku_id, fg_line.location_id, change, require_sufficient=True)

        return self._finish(reversal)
