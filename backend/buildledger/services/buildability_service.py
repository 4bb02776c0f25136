"""
Buildability Service - how many units of a SKU current stock can produce

For each line of the SKU's active BOM:

    buildable = floor(on_hand / quantity_per_unit)

and the SKU's answer is the minimum over lines (the binding constraint).
None means "not applicable" (no active BOM, no lines, or no line that
actually consumes anything), which is different from 0 buildable.
"""
from decimal import Decimal, ROUND_FLOOR
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from buildledger.core.decimal_utils import ZERO, to_decimal
from buildledger.models.bom import BOMLine, BOMVersion
from buildledger.models.sku import SKU
from buildledger.services.inventory_service import get_component_quantities


def _max_buildable(
    lines: Iterable[Tuple[int, Decimal]],
    quantities: Dict[int, Decimal],
) -> Optional[int]:
    """
    Minimum of floor(on_hand / per_unit) over (component_id, per_unit) pairs.

    Lines with per_unit == 0 impose no constraint. Negative on-hand counts
    as zero buildable.
    """
    result: Optional[int] = None
    for component_id, per_unit in lines:
        per_unit = to_decimal(per_unit)
        if per_unit <= 0:
            continue
        on_hand = max(quantities.get(component_id, ZERO), ZERO)
        buildable = int((on_hand / per_unit).to_integral_value(rounding=ROUND_FLOOR))
        result = buildable if result is None else min(result, buildable)
    return result


def _active_bom_lines(
    db: Session,
    sku_ids: Sequence[int],
    company_id: int,
) -> Dict[int, List[Tuple[int, Decimal]]]:
    """sku_id -> [(component_id, quantity_per_unit)] for the active BOM of each SKU."""
    rows = db.query(BOMVersion.sku_id, BOMLine.component_id, BOMLine.quantity_per_unit).join(
        BOMLine, BOMLine.bom_version_id == BOMVersion.id,
    ).join(
        SKU, SKU.id == BOMVersion.sku_id,
    ).filter(
        BOMVersion.sku_id.in_(list(sku_ids)),
        BOMVersion.is_active.is_(True),
        SKU.company_id == company_id,
    ).all()

    lines: Dict[int, List[Tuple[int, Decimal]]] = {}
    for sku_id, component_id, per_unit in rows:
        lines.setdefault(sku_id, []).append((component_id, to_decimal(per_unit)))
    return lines


def calculate_max_buildable_units(
    db: Session,
    sku_id: int,
    company_id: int,
    location_id: Optional[int] = None,
) -> Optional[int]:
    """
    Max units of one SKU buildable from stock, optionally at one location.

    Returns None when the SKU (for this company) has no active BOM or the
    active BOM has no constraining lines.
    """
    return calculate_max_buildable_units_for_skus(db, [sku_id], company_id, location_id)[sku_id]


def calculate_max_buildable_units_for_skus(
    db: Session,
    sku_ids: Sequence[int],
    company_id: int,
    location_id: Optional[int] = None,
) -> Dict[int, Optional[int]]:
    """Batched variant: one BOM query and one shared balance fetch for all SKUs."""
    result: Dict[int, Optional[int]] = {sid: None for sid in sku_ids}
    if not sku_ids:
        return result

    lines_by_sku = _active_bom_lines(db, sku_ids, company_id)
    component_ids = sorted({cid for lines in lines_by_sku.values() for cid, _ in lines})
    quantities = get_component_quantities(db, component_ids, company_id, location_id)

    for sku_id, lines in lines_by_sku.items():
        result[sku_id] = _max_buildable(lines, quantities)
    return result
