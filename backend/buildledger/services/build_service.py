"""
Build Service - the atomic write path for a production build

A build consumes BOM components and produces finished goods:

    SKU + BOM version + units_to_build
        -> sufficiency check (authoritative, inside the unit)
        -> lot allocation per component (FEFO, override or pooled)
        -> negative LedgerLines + lot balance decrements
        -> FinishedGoodsLine at the output location
        -> InventoryBalance decrements per component
        -> LedgerEntry header with cost snapshot and defect fields

Everything between resolving the BOM and finalising the header happens in
one atomic_unit; any exception leaves no trace. The defect alert runs
after the commit and can never undo the build.

Usage:
    result = create_build_transaction(
        db, company_id=1, sku_id=7, units_to_build=10, created_by_id=3,
    )
    result.entry.id, result.consumed, result.warning
"""
from dataclasses import dataclass, field
from datetime import date as date_type, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Sequence

from sqlalchemy.orm import Session

from buildledger.core.config import settings
from buildledger.core.decimal_utils import ZERO, to_decimal
from buildledger.db.unit_of_work import atomic_unit
from buildledger.exceptions import (
    BusinessRuleError,
    ConfigurationError,
    InsufficientInventoryError,
    LotOverrideValidationError,
    ValidationError,
)
from buildledger.logging_config import get_logger
from buildledger.models.ledger import FinishedGoodsLine, LedgerEntry, LedgerEntryType
from buildledger.schemas.lot import ConsumedComponent, LotOverride
from buildledger.services.alert_service import calculate_defect_rate, evaluate_defect_threshold
from buildledger.services.bom_service import (
    get_active_bom_version,
    get_bom_lines_with_components,
    get_bom_version,
)
from buildledger.services.expiry_service import is_lot_expired
from buildledger.services.inventory_service import (
    apply_finished_goods_delta,
    apply_inventory_delta,
    get_sku,
)
from buildledger.services.location_service import get_default_location_id, get_location
from buildledger.services.lot_selection import (
    BuildLineRequirement,
    ConsumedLot,
    check_lot_availability_for_build,
    consume_lots_for_build_tx,
    validate_lot_overrides,
)
from buildledger.services.sufficiency_service import ShortageReport, check_insufficient_inventory

logger = get_logger(__name__)

AlertEvaluator = Callable[..., Any]


@dataclass
class BuildResult:
    """Outcome of create_build_transaction"""
    entry: LedgerEntry
    consumed: List[ConsumedLot] = field(default_factory=list)
    shortages: List[ShortageReport] = field(default_factory=list)
    warning: Optional[str] = None
    output_location_id: Optional[int] = None
    output_quantity: int = 0
    alert_id: Optional[int] = None

    def component_totals(self) -> List[ConsumedComponent]:
        """Consumed quantity per component, in consumption order."""
        totals: Dict[int, ConsumedComponent] = {}
        for item in self.consumed:
            current = totals.get(item.component_id)
            if current is None:
                current = ConsumedComponent(component_id=item.component_id, quantity=ZERO)
                totals[item.component_id] = current
            current.quantity += item.quantity
            if item.lot_id is None:
                current.pooled_quantity += item.quantity
        return list(totals.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entry_id": self.entry.id,
            "type": self.entry.type,
            "units_built": self.entry.units_built,
            "unit_bom_cost": str(self.entry.unit_bom_cost) if self.entry.unit_bom_cost is not None else None,
            "total_bom_cost": str(self.entry.total_bom_cost) if self.entry.total_bom_cost is not None else None,
            "output_location_id": self.output_location_id,
            "output_quantity": self.output_quantity,
            "consumed": [
                {
                    "component_id": c.component_id,
                    "lot_id": c.lot_id,
                    "lot_number": c.lot_number,
                    "quantity": str(c.quantity),
                    "cost_per_unit": str(c.cost_per_unit),
                }
                for c in self.consumed
            ],
            "insufficient_items": [s.to_dict() for s in self.shortages],
            "warning": self.warning,
            "alert_id": self.alert_id,
        }


class ExpiredLotUsage(NamedTuple):
    """An expired lot that FEFO would draw from"""
    component_id: int
    component_name: str
    lot_id: int
    lot_number: Optional[str]
    expiry_date: Optional[date_type]
    quantity: Decimal


# ============================================================================
# Input validation
# ============================================================================

def _validate_inputs(
    units_to_build,
    output_quantity,
    defect_count,
    affected_units,
) -> None:
    if isinstance(units_to_build, bool) or not isinstance(units_to_build, int) or units_to_build <= 0:
        raise ValidationError(
            "units_to_build must be a positive integer",
            field="units_to_build",
            value=units_to_build,
        )
    if output_quantity is not None:
        if isinstance(output_quantity, bool) or not isinstance(output_quantity, int):
            raise ValidationError("output_quantity must be an integer", field="output_quantity", value=output_quantity)
        if output_quantity < 0 or output_quantity > units_to_build:
            raise ValidationError(
                f"output_quantity must be between 0 and {units_to_build}",
                field="output_quantity",
                value=output_quantity,
            )
    for name, value in (("defect_count", defect_count), ("affected_units", affected_units)):
        if value is not None and value < 0:
            raise ValidationError(f"{name} must not be negative", field=name, value=value)


def _resolve_location_id(
    db: Session,
    company_id: int,
    location_id: Optional[int],
    purpose: str,
    required: bool = True,
) -> Optional[int]:
    """Explicit active location, else the company default, else None unless required."""
    if location_id is not None:
        return get_location(db, location_id, company_id).id
    default_id = get_default_location_id(db, company_id)
    if default_id is None and required:
        raise ConfigurationError(
            f"No {purpose} location specified and company has no default location",
            details={"company_id": company_id, "purpose": purpose},
        )
    return default_id


def _check_overrides(
    db: Session,
    lot_overrides: Sequence[LotOverride],
    bom_component_ids: Sequence[int],
    company_id: int,
) -> None:
    """Raise LotOverrideValidationError listing every problem with the overrides."""
    errors = []
    in_bom = set(bom_component_ids)
    for override in lot_overrides:
        if override.component_id not in in_bom:
            errors.append({
                "code": "COMPONENT_NOT_IN_BOM",
                "message": f"Component {override.component_id} is not part of this BOM version",
                "component_id": override.component_id,
                "lot_id": None,
            })

    validation = validate_lot_overrides(db, lot_overrides, company_id)
    errors.extend(error.model_dump() for error in validation.errors)

    if errors:
        raise LotOverrideValidationError("Invalid lot overrides", errors=errors)


# ============================================================================
# Write steps
# ============================================================================

def _record_finished_goods(
    db: Session,
    entry: LedgerEntry,
    sku_id: int,
    location_id: int,
    quantity: int,
    unit_cost: Decimal,
) -> Optional[FinishedGoodsLine]:
    """Production line plus FinishedGoodsBalance upsert. Nothing for zero output."""
    if quantity <= 0:
        return None
    line = FinishedGoodsLine(
        entry_id=entry.id,
        sku_id=sku_id,
        location_id=location_id,
        quantity_change=Decimal(quantity),
        cost_per_unit=unit_cost,
    )
    db.add(line)
    apply_finished_goods_delta(db, sku_id, location_id, Decimal(quantity))
    return line


def _decrement_component_balances(
    db: Session,
    consumed: Sequence[ConsumedLot],
    location_id: Optional[int],
    require_sufficient: bool,
) -> None:
    totals: Dict[int, Decimal] = {}
    for item in consumed:
        totals[item.component_id] = totals.get(item.component_id, ZERO) + item.quantity
    for component_id, quantity in totals.items():
        apply_inventory_delta(db, component_id, location_id, -quantity, require_sufficient=require_sufficient)


def create_build_transaction(
    db: Session,
    *,
    company_id: int,
    sku_id: int,
    units_to_build: int,
    created_by_id: Optional[int] = None,
    bom_version_id: Optional[int] = None,
    date: Optional[datetime] = None,
    output_to_finished_goods: bool = True,
    output_location_id: Optional[int] = None,
    output_quantity: Optional[int] = None,
    location_id: Optional[int] = None,
    lot_overrides: Optional[Sequence[LotOverride]] = None,
    defect_count: Optional[int] = None,
    defect_notes: Optional[str] = None,
    affected_units: Optional[int] = None,
    notes: Optional[str] = None,
    sales_channel: Optional[str] = None,
    allow_insufficient_inventory: bool = False,
    allow_expired_lots: bool = False,
    alert_evaluator: Optional[AlertEvaluator] = evaluate_defect_threshold,
) -> BuildResult:
    """
    Record a build in one atomic unit and return the committed entry.

    Args:
        bom_version_id: version to build from; the SKU's active version when None
        location_id: where components are consumed (company default when None;
            with no default, lines are unlocated and checked against total stock)
        output_location_id: where finished goods land (company default when None)
        output_quantity: good units produced, 0..units_to_build (default all)
        lot_overrides: manual lot picks; bypass FEFO for their components
        allow_insufficient_inventory: build despite shortages; component
            balances may go negative and lot shortfalls come from pooled stock
        allow_expired_lots: let FEFO use expired lots when BLOCK_EXPIRED_LOTS is on
        alert_evaluator: called after commit when defects were reported;
            None disables alerting

    Raises:
        ValidationError: bad counts, or overrides that do not add up
        NotFoundError: SKU, BOM version or location not visible to the company
        ConfigurationError: finished goods requested but no output location resolved
        InsufficientInventoryError: shortages and not tolerated
        LotOverrideValidationError: every override problem found
        InsufficientLotQuantityError / ConcurrencyError: from the write path
    """
    _validate_inputs(units_to_build, output_quantity, defect_count, affected_units)
    if output_quantity is None:
        output_quantity = units_to_build
    if not output_to_finished_goods:
        output_quantity = 0
    lot_overrides = list(lot_overrides or [])
    exclude_expired = settings.BLOCK_EXPIRED_LOTS and not allow_expired_lots

    with atomic_unit(db):
        sku = get_sku(db, sku_id, company_id)
        if bom_version_id is not None:
            bom_version = get_bom_version(db, bom_version_id, company_id)
            if bom_version.sku_id != sku.id:
                raise ValidationError(
                    f"BOM version {bom_version_id} does not belong to SKU {sku.id}",
                    field="bom_version_id",
                    value=bom_version_id,
                )
        else:
            bom_version = get_active_bom_version(db, sku.id, company_id)
            if bom_version is None:
                raise BusinessRuleError(
                    f"SKU {sku.internal_code} has no active BOM version",
                    rule="active_bom_required",
                )

        consumption_location_id = _resolve_location_id(
            db, company_id, location_id, "consumption", required=False,
        )
        if consumption_location_id is None:
            logger.info(f"Company {company_id} has no default location; consuming against total stock")
        resolved_output_location_id = None
        if output_to_finished_goods:
            resolved_output_location_id = _resolve_location_id(db, company_id, output_location_id, "output")

        pairs = get_bom_lines_with_components(db, bom_version.id)

        shortages = check_insufficient_inventory(
            db, bom_version.id, company_id, units_to_build, location_id=consumption_location_id,
        )
        warning = None
        if shortages:
            if not allow_insufficient_inventory:
                raise InsufficientInventoryError(
                    f"Insufficient inventory for {len(shortages)} component(s)",
                    shortages=[s.to_dict() for s in shortages],
                )
            warning = (
                f"Build recorded with insufficient inventory for {len(shortages)} component(s); "
                "balances may be negative"
            )
            logger.warning(f"SKU {sku.id}: {warning}")

        if lot_overrides:
            _check_overrides(db, lot_overrides, [component.id for _, component in pairs], company_id)

        unit_cost = sum(
            (to_decimal(line.quantity_per_unit) * to_decimal(component.cost_per_unit) for line, component in pairs),
            ZERO,
        )

        entry = LedgerEntry(
            company_id=company_id,
            type=LedgerEntryType.BUILD,
            date=date or datetime.utcnow(),
            sku_id=sku.id,
            bom_version_id=bom_version.id,
            units_built=units_to_build,
            location_id=consumption_location_id,
            sales_channel=sales_channel,
            notes=notes,
            created_by_id=created_by_id,
        )
        db.add(entry)
        db.flush()

        requirements = [
            BuildLineRequirement(
                component_id=component.id,
                quantity_required=to_decimal(line.quantity_per_unit) * units_to_build,
                cost_per_unit=to_decimal(component.cost_per_unit),
            )
            for line, component in pairs
        ]
        consumed = consume_lots_for_build_tx(
            db,
            entry.id,
            requirements,
            consumption_location_id,
            company_id,
            lot_overrides=lot_overrides,
            allow_insufficient=allow_insufficient_inventory,
            exclude_expired=exclude_expired,
        )

        if output_to_finished_goods:
            _record_finished_goods(db, entry, sku.id, resolved_output_location_id, output_quantity, unit_cost)

        # Unlocated consumption is checked against the total across locations
        _decrement_component_balances(
            db, consumed, consumption_location_id,
            require_sufficient=not allow_insufficient_inventory and consumption_location_id is not None,
        )

        entry.unit_bom_cost = unit_cost
        entry.total_bom_cost = unit_cost * units_to_build
        entry.defect_count = defect_count
        entry.defect_notes = defect_notes
        entry.affected_units = affected_units
        db.flush()
        db.refresh(entry)

    logger.info(
        f"Build entry {entry.id}: {units_to_build} x SKU {sku_id} "
        f"(BOM version {entry.bom_version_id}) for company {company_id}"
    )

    result = BuildResult(
        entry=entry,
        consumed=consumed,
        shortages=shortages,
        warning=warning,
        output_location_id=resolved_output_location_id,
        output_quantity=output_quantity,
    )

    if defect_count and alert_evaluator is not None:
        try:
            with atomic_unit(db):
                alert = alert_evaluator(
                    db,
                    company_id=company_id,
                    entry_id=entry.id,
                    sku_id=sku_id,
                    defect_rate=calculate_defect_rate(defect_count, units_to_build),
                )
            result.alert_id = getattr(alert, "id", None)
        except Exception:
            logger.exception(f"Defect threshold evaluation failed for build entry {entry.id}")

    return result


# ============================================================================
# Read-only helpers
# ============================================================================

def check_expired_lots_for_build(
    db: Session,
    bom_version_id: int,
    company_id: int,
    units_to_build: int,
    location_id: Optional[int] = None,
    today: Optional[date_type] = None,
) -> List[ExpiredLotUsage]:
    """Expired lots the FEFO allocation for this build would draw from."""
    availability = check_lot_availability_for_build(
        db, bom_version_id, company_id, units_to_build, location_id=location_id,
    )
    expired = []
    for item in availability:
        for selection in item.selected_lots:
            if selection.lot_id is None or not is_lot_expired(selection.expiry_date, today):
                continue
            expired.append(ExpiredLotUsage(
                component_id=item.component_id,
                component_name=item.component_name,
                lot_id=selection.lot_id,
                lot_number=selection.lot_number,
                expiry_date=selection.expiry_date,
                quantity=selection.quantity,
            ))
    return expired
