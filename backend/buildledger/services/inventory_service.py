"""
Inventory Service - running balances derived from the ledger

InventoryBalance (component x location) and FinishedGoodsBalance
(SKU x location) are caches of the signed sum of ledger lines. Only the
ledger services in this package write them, and every write here is
paired with a ledger line written by the caller in the same unit.

Reads are O(1) lookups against the balance tables; the ledger audit
service can rebuild them from history.

Usage:
    apply_inventory_delta(db, component_id, location_id, Decimal("-5"))
    on_hand = get_component_quantity(db, component_id, company_id)
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from buildledger.core.config import settings
from buildledger.core.decimal_utils import ZERO, to_decimal
from buildledger.exceptions import ConcurrencyError, NotFoundError
from buildledger.logging_config import get_logger
from buildledger.models.balance import FinishedGoodsBalance, InventoryBalance
from buildledger.models.bom import BOMLine
from buildledger.models.component import Component
from buildledger.models.ledger import LedgerLine
from buildledger.models.location import Location
from buildledger.models.lot import Lot
from buildledger.models.sku import SKU

logger = get_logger(__name__)


# ============================================================================
# Ownership helpers
# ============================================================================

def get_component(db: Session, component_id: int, company_id: int) -> Component:
    """Component owned by the company, or NotFoundError."""
    component = db.query(Component).filter(
        Component.id == component_id,
        Component.company_id == company_id,
    ).first()
    if not component:
        raise NotFoundError("Component", component_id)
    return component


def get_sku(db: Session, sku_id: int, company_id: int) -> SKU:
    """SKU owned by the company, or NotFoundError."""
    sku = db.query(SKU).filter(
        SKU.id == sku_id,
        SKU.company_id == company_id,
    ).first()
    if not sku:
        raise NotFoundError("SKU", sku_id)
    return sku


# ============================================================================
# Balance writes
# ============================================================================

def nullable_eq(column, value: Optional[int]):
    """column == value, or IS NULL when value is None (the unlocated balance row)."""
    if value is None:
        return column.is_(None)
    return column == value


def _apply_delta(
    db: Session,
    model,
    key: Dict[str, int],
    delta: Decimal,
    require_sufficient: bool,
) -> None:
    """
    Add delta to the balance row identified by key, creating it if needed.

    With require_sufficient and a negative delta the update is conditional
    (quantity >= -delta); a miss means another writer drained the row
    after our check, so ConcurrencyError is raised and the unit rolls back.
    """
    delta = to_decimal(delta)
    if delta == 0:
        return

    # Pending inserts from this unit must be visible to the UPDATE
    db.flush()

    filters = [nullable_eq(getattr(model, name), value) for name, value in key.items()]
    if require_sufficient and delta < 0:
        filters.append(model.quantity >= -delta)

    updated = db.query(model).filter(*filters).update(
        {model.quantity: model.quantity + delta},
        synchronize_session="fetch",
    )
    if updated:
        return

    if require_sufficient and delta < 0:
        raise ConcurrencyError(
            f"{model.__tablename__} row changed concurrently or would go negative",
            details={**key, "delta": str(delta)},
        )

    db.add(model(quantity=delta, **key))
    db.flush()


def apply_inventory_delta(
    db: Session,
    component_id: int,
    location_id: Optional[int],
    delta: Decimal,
    require_sufficient: bool = False,
) -> None:
    """
    Upsert InventoryBalance(component, location) by delta.

    Negative component balances are allowed unless require_sufficient is
    set; builds that tolerate shortages drive balances below zero.
    location_id None moves the unlocated row.
    """
    _apply_delta(
        db,
        InventoryBalance,
        {"component_id": component_id, "location_id": location_id},
        delta,
        require_sufficient,
    )


def apply_finished_goods_delta(
    db: Session,
    sku_id: int,
    location_id: int,
    delta: Decimal,
    require_sufficient: bool = False,
) -> None:
    """Upsert FinishedGoodsBalance(sku, location) by delta."""
    _apply_delta(
        db,
        FinishedGoodsBalance,
        {"sku_id": sku_id, "location_id": location_id},
        delta,
        require_sufficient,
    )


# ============================================================================
# Component quantity reads
# ============================================================================

def get_component_quantity(
    db: Session,
    component_id: int,
    company_id: int,
    location_id: Optional[int] = None,
) -> Decimal:
    """
    On-hand quantity of one component.

    Without location_id this is the total across every location.
    """
    get_component(db, component_id, company_id)

    if location_id is None:
        total = db.query(func.coalesce(func.sum(InventoryBalance.quantity), 0)).filter(
            InventoryBalance.component_id == component_id,
        ).scalar()
        return to_decimal(total)

    balance = db.query(InventoryBalance).filter(
        InventoryBalance.component_id == component_id,
        InventoryBalance.location_id == location_id,
    ).first()
    return to_decimal(balance.quantity) if balance else ZERO


def get_component_quantities(
    db: Session,
    component_ids: Sequence[int],
    company_id: int,
    location_id: Optional[int] = None,
) -> Dict[int, Decimal]:
    """
    Batched on-hand lookup.

    Every requested id is present in the result; ids the company does not
    own, or with no balance rows, map to 0.
    """
    quantities: Dict[int, Decimal] = {cid: ZERO for cid in component_ids}
    if not component_ids:
        return quantities

    owned_ids = [
        row.id for row in db.query(Component.id).filter(
            Component.id.in_(list(component_ids)),
            Component.company_id == company_id,
        ).all()
    ]
    if not owned_ids:
        return quantities

    query = db.query(
        InventoryBalance.component_id,
        func.sum(InventoryBalance.quantity),
    ).filter(InventoryBalance.component_id.in_(owned_ids))
    if location_id is not None:
        query = query.filter(InventoryBalance.location_id == location_id)

    for component_id, total in query.group_by(InventoryBalance.component_id).all():
        quantities[component_id] = to_decimal(total)
    return quantities


def get_component_quantities_by_location(
    db: Session,
    component_id: int,
    company_id: int,
) -> List[Dict[str, Any]]:
    """Non-zero balances of a component per location, sorted by location name.

    The unlocated row written by builds without a location is not listed.
    """
    get_component(db, component_id, company_id)

    rows = db.query(InventoryBalance, Location).join(
        Location, Location.id == InventoryBalance.location_id,
    ).filter(
        InventoryBalance.component_id == component_id,
        InventoryBalance.quantity != 0,
    ).order_by(Location.name.asc()).all()

    return [
        {
            "location_id": location.id,
            "location_name": location.name,
            "location_type": location.type,
            "quantity": to_decimal(balance.quantity),
        }
        for balance, location in rows
    ]


def calculate_reorder_status(
    quantity_on_hand: Decimal,
    reorder_point: Decimal,
    warning_multiplier: Optional[Decimal] = None,
) -> str:
    """
    Reorder status of a component.

    critical: on hand <= reorder point
    warning:  on hand <= reorder point * multiplier
    ok:       above that, or no reorder point configured
    """
    quantity_on_hand = to_decimal(quantity_on_hand)
    reorder_point = to_decimal(reorder_point)
    if warning_multiplier is None:
        warning_multiplier = settings.reorder_warning_multiplier

    if reorder_point == 0:
        return "ok"
    if quantity_on_hand <= reorder_point:
        return "critical"
    if quantity_on_hand <= reorder_point * to_decimal(warning_multiplier):
        return "warning"
    return "ok"


def can_delete_component(db: Session, component_id: int, company_id: int) -> Tuple[bool, Optional[str]]:
    """
    Whether a component may be removed.

    History is preserved: any ledger line, BOM line or lot referencing the
    component blocks removal.
    """
    get_component(db, component_id, company_id)

    line_count = db.query(LedgerLine.id).filter(LedgerLine.component_id == component_id).count()
    if line_count:
        return False, (
            f"Cannot deactivate component with {line_count} ledger line(s). "
            "Historical data must be preserved."
        )

    bom_count = db.query(BOMLine.id).filter(BOMLine.component_id == component_id).count()
    if bom_count:
        return False, f"Cannot deactivate component used in {bom_count} BOM line(s). Remove from all BOMs first."

    lot_count = db.query(Lot.id).filter(Lot.component_id == component_id).count()
    if lot_count:
        return False, f"Cannot deactivate component with {lot_count} lot(s)."

    return True, None


# ============================================================================
# Finished goods reads
# ============================================================================

def get_sku_quantity(
    db: Session,
    sku_id: int,
    company_id: int,
    location_id: Optional[int] = None,
) -> Decimal:
    """On-hand finished goods of one SKU, total or at one location."""
    get_sku(db, sku_id, company_id)

    query = db.query(func.coalesce(func.sum(FinishedGoodsBalance.quantity), 0)).filter(
        FinishedGoodsBalance.sku_id == sku_id,
    )
    if location_id is not None:
        query = query.filter(FinishedGoodsBalance.location_id == location_id)
    return to_decimal(query.scalar())


def get_sku_quantities(
    db: Session,
    sku_ids: Sequence[int],
    company_id: int,
    location_id: Optional[int] = None,
) -> Dict[int, Decimal]:
    quantities: Dict[int, Decimal] = {sid: ZERO for sid in sku_ids}
    if not sku_ids:
        return quantities

    query = db.query(
        FinishedGoodsBalance.sku_id,
        func.sum(FinishedGoodsBalance.quantity),
    ).join(SKU, SKU.id == FinishedGoodsBalance.sku_id).filter(
        FinishedGoodsBalance.sku_id.in_(list(sku_ids)),
        SKU.company_id == company_id,
    )
    if location_id is not None:
        query = query.filter(FinishedGoodsBalance.location_id == location_id)

    for sku_id, total in query.group_by(FinishedGoodsBalance.sku_id).all():
        quantities[sku_id] = to_decimal(total)
    return quantities


def get_sku_inventory_summary(db: Session, sku_id: int, company_id: int) -> Dict[str, Any]:
    """Total finished goods of a SKU plus the non-zero split per location, largest first."""
    get_sku(db, sku_id, company_id)

    rows = db.query(FinishedGoodsBalance, Location).join(
        Location, Location.id == FinishedGoodsBalance.location_id,
    ).filter(
        FinishedGoodsBalance.sku_id == sku_id,
        FinishedGoodsBalance.quantity != 0,
    ).all()

    by_location = [
        {
            "location_id": location.id,
            "location_name": location.name,
            "location_type": location.type,
            "quantity": to_decimal(balance.quantity),
        }
        for balance, location in rows
    ]
    by_location.sort(key=lambda item: item["quantity"], reverse=True)

    return {
        "total_quantity": sum((item["quantity"] for item in by_location), ZERO),
        "by_location": by_location,
    }
