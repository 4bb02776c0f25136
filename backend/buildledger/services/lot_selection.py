"""
Lot Selection - FEFO (first expired, first out) allocation

FEFO order of a component's lots with stock left:
1. expiry date ascending
2. lots without an expiry date after every dated lot
3. ties broken by receipt order (created_at, then id)

Allocation walks that order greedily, taking min(lot balance, still
needed) from each lot. A component that has never had a lot is pooled:
its stock only exists in InventoryBalance, and selection returns a
single allocation with lot_id None for the full quantity.

Manual overrides bypass FEFO for their component entirely.

Usage:
    selections = select_lots_for_consumption(db, component_id, Decimal("40"), company_id)
    consumed = consume_lots_for_build_tx(db, entry.id, requirements, location_id, company_id)
"""
from datetime import date
from decimal import Decimal
from typing import Dict, List, NamedTuple, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from buildledger.core.decimal_utils import ZERO, to_decimal
from buildledger.exceptions import InsufficientLotQuantityError, ValidationError
from buildledger.logging_config import get_logger
from buildledger.models.component import Component
from buildledger.models.ledger import LedgerLine
from buildledger.models.lot import Lot, LotBalance
from buildledger.schemas.lot import (
    AvailableLot,
    ComponentLotAvailability,
    LotOverride,
    LotOverrideError,
    LotOverrideValidation,
    LotSelection,
)
from buildledger.services.bom_service import get_bom_lines_with_components, get_bom_version
from buildledger.services.expiry_service import is_lot_expired
from buildledger.services.inventory_service import get_component, get_component_quantities
from buildledger.services.lot_service import decrement_lot_balance

logger = get_logger(__name__)


class BuildLineRequirement(NamedTuple):
    """Component quantity a build needs, with the cost to snapshot on its lines"""
    component_id: int
    quantity_required: Decimal
    cost_per_unit: Decimal


class ConsumedLot(NamedTuple):
    """One ledger line written by consume_lots_for_build_tx"""
    component_id: int
    lot_id: Optional[int]
    lot_number: Optional[str]
    quantity: Decimal
    cost_per_unit: Decimal


# ============================================================================
# FEFO listing
# ============================================================================

def _available_lots_query(db: Session, component_id: int, company_id: int):
    return db.query(Lot, LotBalance).join(
        LotBalance, LotBalance.lot_id == Lot.id,
    ).join(
        Component, Component.id == Lot.component_id,
    ).filter(
        Lot.component_id == component_id,
        Component.company_id == company_id,
        LotBalance.quantity > 0,
    ).order_by(
        Lot.expiry_date.is_(None),
        Lot.expiry_date.asc(),
        Lot.created_at.asc(),
        Lot.id.asc(),
    )


def _to_available(rows, exclude_expired: bool, today: Optional[date]) -> List[AvailableLot]:
    lots = []
    for lot, balance in rows:
        expired = is_lot_expired(lot.expiry_date, today)
        if exclude_expired and expired:
            continue
        lots.append(AvailableLot(
            lot_id=lot.id,
            lot_number=lot.lot_number,
            quantity=to_decimal(balance.quantity),
            expiry_date=lot.expiry_date,
            received_quantity=to_decimal(lot.received_quantity),
            supplier=lot.supplier,
            is_expired=expired,
        ))
    return lots


def get_available_lots_for_component(
    db: Session,
    component_id: int,
    company_id: int,
    exclude_expired: bool = False,
    today: Optional[date] = None,
) -> List[AvailableLot]:
    """Lots of the component with positive balance, in FEFO order."""
    rows = _available_lots_query(db, component_id, company_id).all()
    return _to_available(rows, exclude_expired, today)


def get_available_lots_for_component_tx(
    db: Session,
    component_id: int,
    company_id: int,
    exclude_expired: bool = False,
    today: Optional[date] = None,
) -> List[AvailableLot]:
    """
    FEFO listing for use inside an atomic unit.

    Locks the returned lot balance rows (SELECT ... FOR UPDATE) on backends
    that support it, so a concurrent build blocks until this unit ends.
    """
    rows = _available_lots_query(db, component_id, company_id).with_for_update(of=LotBalance).all()
    return _to_available(rows, exclude_expired, today)


def _allocate_fefo(
    lots: Sequence[AvailableLot],
    required: Decimal,
) -> Tuple[List[LotSelection], Decimal]:
    """Greedy allocation; returns (selections, quantity still unallocated)."""
    selections: List[LotSelection] = []
    remaining = required
    for lot in lots:
        if remaining <= 0:
            break
        take = min(lot.quantity, remaining)
        if take > 0:
            selections.append(LotSelection(
                lot_id=lot.lot_id,
                lot_number=lot.lot_number,
                quantity=take,
                expiry_date=lot.expiry_date,
            ))
            remaining -= take
    return selections, remaining


def select_lots_for_consumption(
    db: Session,
    component_id: int,
    required_quantity: Decimal,
    company_id: int,
    allow_insufficient: bool = False,
    exclude_expired: bool = False,
) -> List[LotSelection]:
    """
    FEFO allocation of required_quantity for one component.

    Returns a single pooled selection (lot_id None) when the component has
    no lot with stock left. When lots run out, raises InsufficientLotQuantityError
    unless allow_insufficient, in which case the partial allocation is
    returned and callers must compare its sum with what they asked for.
    """
    required_quantity = to_decimal(required_quantity)
    get_component(db, component_id, company_id)

    lots = get_available_lots_for_component(db, component_id, company_id, exclude_expired)
    if not lots:
        return [LotSelection(lot_id=None, quantity=required_quantity)]

    selections, remaining = _allocate_fefo(lots, required_quantity)

    if remaining > 0 and not allow_insufficient:
        raise InsufficientLotQuantityError(
            component_id,
            required_quantity,
            required_quantity - remaining,
        )
    return selections


def check_lot_availability_for_build(
    db: Session,
    bom_version_id: int,
    company_id: int,
    units_to_build: int,
    location_id: Optional[int] = None,
    exclude_expired: bool = False,
) -> List[ComponentLotAvailability]:
    """
    Read-only preview of how each BOM line would be allocated.

    Pooled components report their component balance; lot-tracked ones
    report the FEFO selection and the total across their lots.
    """
    get_bom_version(db, bom_version_id, company_id)
    pairs = get_bom_lines_with_components(db, bom_version_id)
    pooled_quantities = get_component_quantities(
        db, [component.id for _, component in pairs], company_id, location_id,
    )

    results = []
    for line, component in pairs:
        required = to_decimal(line.quantity_per_unit) * units_to_build
        lots = get_available_lots_for_component(db, component.id, company_id, exclude_expired)
        if not lots:
            available = pooled_quantities.get(component.id, ZERO)
            results.append(ComponentLotAvailability(
                component_id=component.id,
                component_name=component.name,
                sku_code=component.sku_code,
                required=required,
                available=available,
                is_lot_tracked=False,
                is_sufficient=available >= required,
                selected_lots=[LotSelection(lot_id=None, quantity=required)] if required > 0 else [],
            ))
            continue

        selections, _ = _allocate_fefo(lots, required)
        available = sum((lot.quantity for lot in lots), ZERO)
        results.append(ComponentLotAvailability(
            component_id=component.id,
            component_name=component.name,
            sku_code=component.sku_code,
            required=required,
            available=available,
            is_lot_tracked=True,
            is_sufficient=available >= required,
            selected_lots=selections,
        ))
    return results


# ============================================================================
# Manual overrides
# ============================================================================

def validate_lot_overrides(
    db: Session,
    overrides: Sequence[LotOverride],
    company_id: int,
) -> LotOverrideValidation:
    """
    Check every override and collect all problems, not just the first.

    - component not owned by the company: NOT_FOUND
    - lot missing or owned by another company: NOT_FOUND (same message
      either way, never a quantity message)
    - lot of a different component: LOT_COMPONENT_MISMATCH
    - requested total per lot above its balance: INSUFFICIENT_LOT_BALANCE
      (allocations naming the same lot are summed first)
    """
    errors: List[LotOverrideError] = []
    requested: Dict[int, Decimal] = {}
    lots: Dict[int, Lot] = {}

    for override in overrides:
        component = db.query(Component.id).filter(
            Component.id == override.component_id,
            Component.company_id == company_id,
        ).first()
        if not component:
            errors.append(LotOverrideError(
                code="NOT_FOUND",
                message=f"Component {override.component_id} not found or access denied",
                component_id=override.component_id,
            ))
            continue

        for allocation in override.allocations:
            lot = db.query(Lot).join(Component, Component.id == Lot.component_id).filter(
                Lot.id == allocation.lot_id,
                Component.company_id == company_id,
            ).first()
            if not lot:
                errors.append(LotOverrideError(
                    code="NOT_FOUND",
                    message=f"Lot {allocation.lot_id} not found or access denied",
                    component_id=override.component_id,
                    lot_id=allocation.lot_id,
                ))
                continue

            if lot.component_id != override.component_id:
                errors.append(LotOverrideError(
                    code="LOT_COMPONENT_MISMATCH",
                    message=f"Lot {lot.lot_number} does not belong to the specified component",
                    component_id=override.component_id,
                    lot_id=lot.id,
                ))
                continue

            lots[lot.id] = lot
            requested[lot.id] = requested.get(lot.id, ZERO) + to_decimal(allocation.quantity)

    for lot_id, quantity in requested.items():
        balance = db.query(LotBalance).filter(LotBalance.lot_id == lot_id).first()
        available = to_decimal(balance.quantity) if balance else ZERO
        if available < quantity:
            lot = lots[lot_id]
            errors.append(LotOverrideError(
                code="INSUFFICIENT_LOT_BALANCE",
                message=f"Lot {lot.lot_number}: requested {quantity}, available {available}",
                component_id=lot.component_id,
                lot_id=lot_id,
            ))

    return LotOverrideValidation(valid=not errors, errors=errors)


# ============================================================================
# Write path
# ============================================================================

def _record_consumption(
    db: Session,
    entry_id: int,
    requirement: BuildLineRequirement,
    location_id: Optional[int],
    lot_id: Optional[int],
    lot_number: Optional[str],
    quantity: Decimal,
) -> ConsumedLot:
    db.add(LedgerLine(
        entry_id=entry_id,
        component_id=requirement.component_id,
        location_id=location_id,
        lot_id=lot_id,
        quantity_change=-quantity,
        cost_per_unit=requirement.cost_per_unit,
    ))
    if lot_id is not None:
        decrement_lot_balance(db, lot_id, quantity)
    return ConsumedLot(
        component_id=requirement.component_id,
        lot_id=lot_id,
        lot_number=lot_number,
        quantity=quantity,
        cost_per_unit=requirement.cost_per_unit,
    )


def consume_lots_for_build_tx(
    db: Session,
    entry_id: int,
    requirements: Sequence[BuildLineRequirement],
    location_id: Optional[int],
    company_id: int,
    lot_overrides: Optional[Sequence[LotOverride]] = None,
    allow_insufficient: bool = False,
    exclude_expired: bool = False,
) -> List[ConsumedLot]:
    """
    Write consumption ledger lines for a build and decrement lot balances.

    Must run inside the caller's atomic unit; does NOT commit.

    Per requirement:
    - override present: one line per allocation, no FEFO listing; the
      allocations must add up to the required quantity
    - no lot with stock left: one pooled line for the full quantity
    - otherwise FEFO over locked lot rows; a shortfall raises unless
      allow_insufficient, in which case it becomes a pooled remainder line

    Pooled lines leave lot balances alone. Zero-quantity requirements
    write nothing.
    """
    overrides_by_component: Dict[int, LotOverride] = {}
    for override in lot_overrides or []:
        if override.component_id in overrides_by_component:
            raise ValidationError(
                f"Component {override.component_id} has more than one lot override",
                field="lot_overrides",
                value=override.component_id,
            )
        overrides_by_component[override.component_id] = override

    consumed: List[ConsumedLot] = []
    for requirement in requirements:
        required = to_decimal(requirement.quantity_required)
        if required <= 0:
            continue

        override = overrides_by_component.get(requirement.component_id)
        if override is not None:
            allocated = sum((to_decimal(a.quantity) for a in override.allocations), ZERO)
            if allocated != required:
                raise ValidationError(
                    f"Lot override for component {requirement.component_id} allocates "
                    f"{allocated} but the build requires {required}",
                    field="lot_overrides",
                    details={"component_id": requirement.component_id},
                )
            for allocation in override.allocations:
                lot = db.query(Lot).filter(Lot.id == allocation.lot_id).first()
                consumed.append(_record_consumption(
                    db, entry_id, requirement, location_id,
                    allocation.lot_id, lot.lot_number if lot else None,
                    to_decimal(allocation.quantity),
                ))
            continue

        lots = get_available_lots_for_component_tx(
            db, requirement.component_id, company_id, exclude_expired,
        )
        if not lots:
            consumed.append(_record_consumption(
                db, entry_id, requirement, location_id, None, None, required,
            ))
            continue

        selections, remaining = _allocate_fefo(lots, required)
        if remaining > 0 and not allow_insufficient:
            raise InsufficientLotQuantityError(
                requirement.component_id, required, required - remaining,
            )

        for selection in selections:
            consumed.append(_record_consumption(
                db, entry_id, requirement, location_id,
                selection.lot_id, selection.lot_number, selection.quantity,
            ))
        if remaining > 0:
            logger.warning(
                f"Component {requirement.component_id}: lots short by {remaining}, "
                f"consuming remainder from pooled stock"
            )
            consumed.append(_record_consumption(
                db, entry_id, requirement, location_id, None, None, remaining,
            ))

    db.flush()
    return consumed
