"""
BOM Service - BOM version lifecycle and cost rollup

Cost of one unit = sum(quantity_per_unit x component.cost_per_unit) over the
version's lines, computed in Decimal with no intermediate rounding.

Only one BOM version per SKU is active at a time. Creating an active
version or activating an existing one deactivates its siblings and
stamps their effective_end_date with the new version's start date.
"""
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Union

from sqlalchemy.orm import Session

from buildledger.core.decimal_utils import ZERO, to_decimal
from buildledger.db.unit_of_work import atomic_unit
from buildledger.exceptions import NotFoundError, ValidationError
from buildledger.logging_config import get_logger
from buildledger.models.bom import BOMLine, BOMVersion
from buildledger.models.component import Component
from buildledger.models.sku import SKU
from buildledger.schemas.bom import BOMLineCost, BOMLineInput, BOMVersionCreate, BOMVersionUpdate
from buildledger.services.inventory_service import get_sku

logger = get_logger(__name__)


# ============================================================================
# Lookups
# ============================================================================

def get_bom_version(db: Session, bom_version_id: int, company_id: int) -> BOMVersion:
    """BOM version whose SKU belongs to the company, or NotFoundError."""
    bom_version = db.query(BOMVersion).join(SKU, SKU.id == BOMVersion.sku_id).filter(
        BOMVersion.id == bom_version_id,
        SKU.company_id == company_id,
    ).first()
    if not bom_version:
        raise NotFoundError("BOM version", bom_version_id)
    return bom_version


def get_active_bom_version(db: Session, sku_id: int, company_id: int) -> Optional[BOMVersion]:
    return db.query(BOMVersion).join(SKU, SKU.id == BOMVersion.sku_id).filter(
        BOMVersion.sku_id == sku_id,
        BOMVersion.is_active.is_(True),
        SKU.company_id == company_id,
    ).first()


def get_bom_lines_with_components(db: Session, bom_version_id: int):
    """(BOMLine, Component) pairs of a version, in line order."""
    return db.query(BOMLine, Component).join(
        Component, Component.id == BOMLine.component_id,
    ).filter(
        BOMLine.bom_version_id == bom_version_id,
    ).order_by(BOMLine.id.asc()).all()


# ============================================================================
# Cost rollup
# ============================================================================

def calculate_bom_unit_cost(db: Session, bom_version_id: int, company_id: int) -> Decimal:
    """Unit cost of one BOM version. A version with no lines costs 0."""
    get_bom_version(db, bom_version_id, company_id)

    total = ZERO
    for line, component in get_bom_lines_with_components(db, bom_version_id):
        total += to_decimal(line.quantity_per_unit) * to_decimal(component.cost_per_unit)
    return total


def calculate_bom_unit_costs(
    db: Session,
    bom_version_ids: Sequence[int],
    company_id: int,
) -> Dict[int, Decimal]:
    """
    Unit costs for many versions in one query.

    Every requested id is in the result, initialised to 0; versions of
    other companies contribute nothing and stay 0.
    """
    costs: Dict[int, Decimal] = {bid: ZERO for bid in bom_version_ids}
    if not bom_version_ids:
        return costs

    rows = db.query(BOMLine, Component).join(
        Component, Component.id == BOMLine.component_id,
    ).join(
        BOMVersion, BOMVersion.id == BOMLine.bom_version_id,
    ).join(
        SKU, SKU.id == BOMVersion.sku_id,
    ).filter(
        BOMLine.bom_version_id.in_(list(bom_version_ids)),
        SKU.company_id == company_id,
    ).all()

    for line, component in rows:
        line_cost = to_decimal(line.quantity_per_unit) * to_decimal(component.cost_per_unit)
        costs[line.bom_version_id] = costs[line.bom_version_id] + line_cost
    return costs


def calculate_line_costs(db: Session, bom_version_id: int, company_id: int) -> List[BOMLineCost]:
    """Per-line cost breakdown of a BOM version."""
    get_bom_version(db, bom_version_id, company_id)

    result = []
    for line, component in get_bom_lines_with_components(db, bom_version_id):
        quantity = to_decimal(line.quantity_per_unit)
        cost = to_decimal(component.cost_per_unit)
        result.append(BOMLineCost(
            component_id=component.id,
            component_name=component.name,
            sku_code=component.sku_code,
            quantity_per_unit=quantity,
            cost_per_unit=cost,
            line_cost=quantity * cost,
        ))
    return result


def is_component_in_active_bom(db: Session, component_id: int, company_id: int) -> bool:
    """True if any active BOM of the company uses the component."""
    match = db.query(BOMLine.id).join(
        BOMVersion, BOMVersion.id == BOMLine.bom_version_id,
    ).join(
        SKU, SKU.id == BOMVersion.sku_id,
    ).filter(
        BOMLine.component_id == component_id,
        BOMVersion.is_active.is_(True),
        SKU.company_id == company_id,
    ).first()
    return match is not None


# ============================================================================
# Version lifecycle
# ============================================================================

def _validate_line_components(db: Session, lines: List[BOMLineInput], company_id: int) -> None:
    component_ids = {line.component_id for line in lines}
    if not component_ids:
        return
    owned = {
        row.id for row in db.query(Component.id).filter(
            Component.id.in_(component_ids),
            Component.company_id == company_id,
        ).all()
    }
    missing = sorted(component_ids - owned)
    if missing:
        raise NotFoundError("Component", missing[0], details={"missing_ids": missing})


def _deactivate_siblings(
    db: Session,
    sku_id: int,
    end_date: datetime,
    exclude_id: Optional[int] = None,
) -> int:
    query = db.query(BOMVersion).filter(
        BOMVersion.sku_id == sku_id,
        BOMVersion.is_active.is_(True),
    )
    if exclude_id is not None:
        query = query.filter(BOMVersion.id != exclude_id)
    return query.update(
        {BOMVersion.is_active: False, BOMVersion.effective_end_date: end_date},
        synchronize_session="fetch",
    )


def _add_lines(db: Session, bom_version: BOMVersion, lines: List[BOMLineInput]) -> None:
    for line in lines:
        db.add(BOMLine(
            bom_version_id=bom_version.id,
            component_id=line.component_id,
            quantity_per_unit=line.quantity_per_unit,
            notes=line.notes,
        ))


def create_bom_version(
    db: Session,
    data: BOMVersionCreate,
    company_id: int,
    created_by_id: Optional[int] = None,
) -> BOMVersion:
    """
    Create a BOM version with its lines in one atomic unit.

    When data.is_active is set the SKU's current active version is
    deactivated first, with its end date set to the new start date.
    """
    with atomic_unit(db):
        get_sku(db, data.sku_id, company_id)
        _validate_line_components(db, data.lines, company_id)

        start = data.effective_start_date or datetime.utcnow()
        if data.is_active:
            _deactivate_siblings(db, data.sku_id, start)

        bom_version = BOMVersion(
            sku_id=data.sku_id,
            version_name=data.version_name,
            effective_start_date=start,
            is_active=data.is_active,
            notes=data.notes,
            defect_notes=data.defect_notes,
            quality_metadata=data.quality_metadata or {},
            created_by_id=created_by_id,
        )
        db.add(bom_version)
        db.flush()
        _add_lines(db, bom_version, data.lines)
        db.flush()

    db.refresh(bom_version)
    logger.info(
        f"Created BOM version {bom_version.id} '{bom_version.version_name}' "
        f"for SKU {bom_version.sku_id} (active={bom_version.is_active})"
    )
    return bom_version


def activate_bom_version(db: Session, bom_version_id: int, company_id: int) -> BOMVersion:
    """
    Promote an existing version to active.

    Siblings are deactivated with effective_end_date set to this version's
    effective_start_date; this version's end date is cleared.
    """
    with atomic_unit(db):
        bom_version = get_bom_version(db, bom_version_id, company_id)
        _deactivate_siblings(
            db,
            bom_version.sku_id,
            bom_version.effective_start_date,
            exclude_id=bom_version.id,
        )
        bom_version.is_active = True
        bom_version.effective_end_date = None
        db.flush()

    db.refresh(bom_version)
    logger.info(f"Activated BOM version {bom_version.id} for SKU {bom_version.sku_id}")
    return bom_version


def _default_clone_name(db: Session, source: BOMVersion) -> str:
    existing = {
        row.version_name for row in db.query(BOMVersion.version_name).filter(
            BOMVersion.sku_id == source.sku_id,
        ).all()
    }
    name = f"{source.version_name} (copy)"
    suffix = 2
    while name in existing:
        name = f"{source.version_name} (copy {suffix})"
        suffix += 1
    return name


def clone_bom_version(
    db: Session,
    bom_version_id: int,
    company_id: int,
    new_version_name: Optional[str] = None,
    created_by_id: Optional[int] = None,
) -> BOMVersion:
    """Copy a version's lines into a new, inactive version."""
    with atomic_unit(db):
        source = get_bom_version(db, bom_version_id, company_id)
        clone = BOMVersion(
            sku_id=source.sku_id,
            version_name=new_version_name or _default_clone_name(db, source),
            effective_start_date=datetime.utcnow(),
            is_active=False,
            notes=f"Cloned from {source.version_name}",
            defect_notes=source.defect_notes,
            quality_metadata=dict(source.quality_metadata or {}),
            created_by_id=created_by_id,
        )
        db.add(clone)
        db.flush()
        for line in source.lines:
            db.add(BOMLine(
                bom_version_id=clone.id,
                component_id=line.component_id,
                quantity_per_unit=line.quantity_per_unit,
                notes=line.notes,
            ))
        db.flush()

    db.refresh(clone)
    logger.info(f"Cloned BOM version {source.id} into {clone.id} '{clone.version_name}'")
    return clone


def update_bom_version(
    db: Session,
    bom_version_id: int,
    data: BOMVersionUpdate,
    company_id: int,
) -> BOMVersion:
    """Update metadata; when data.lines is given the existing lines are replaced."""
    with atomic_unit(db):
        bom_version = get_bom_version(db, bom_version_id, company_id)

        fields = data.model_dump(exclude_unset=True, exclude={"lines"})
        for field_name, value in fields.items():
            setattr(bom_version, field_name, value)

        if (
            bom_version.effective_end_date is not None
            and bom_version.effective_end_date < bom_version.effective_start_date
        ):
            raise ValidationError(
                "effective_end_date must not be before effective_start_date",
                field="effective_end_date",
            )

        if data.lines is not None:
            _validate_line_components(db, data.lines, company_id)
            # Deletes must reach the database before re-inserting the same components
            bom_version.lines.clear()
            db.flush()
            _add_lines(db, bom_version, data.lines)
        db.flush()

    db.refresh(bom_version)
    return bom_version
