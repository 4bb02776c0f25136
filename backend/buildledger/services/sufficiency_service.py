"""
Sufficiency Service - shortage report for a planned build

Advisory pre-flight check. The build orchestrator runs it again inside
its atomic unit, and the balance decrements themselves are conditional,
so a passing pre-flight is never relied on for correctness.
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from sqlalchemy.orm import Session

from buildledger.core.decimal_utils import ZERO, to_decimal
from buildledger.services.bom_service import get_bom_lines_with_components, get_bom_version
from buildledger.services.inventory_service import get_component_quantities


class ShortageReport(BaseModel):
    """One component that cannot cover a build"""
    component_id: int
    component_name: str
    sku_code: str
    required: Decimal
    available: Decimal
    shortage: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "component_id": self.component_id,
            "component_name": self.component_name,
            "sku_code": self.sku_code,
            "required": str(self.required),
            "available": str(self.available),
            "shortage": str(self.shortage),
        }


def check_insufficient_inventory(
    db: Session,
    bom_version_id: int,
    company_id: int,
    units_to_build: int,
    location_id: Optional[int] = None,
) -> List[ShortageReport]:
    """
    Components whose on-hand stock is below quantity_per_unit x units_to_build.

    On-hand is taken at location_id when given, otherwise across all
    locations. An empty list means the build is fully covered.
    """
    get_bom_version(db, bom_version_id, company_id)
    pairs = get_bom_lines_with_components(db, bom_version_id)
    if not pairs:
        return []

    quantities = get_component_quantities(
        db, [component.id for _, component in pairs], company_id, location_id,
    )

    shortages = []
    for line, component in pairs:
        required = to_decimal(line.quantity_per_unit) * units_to_build
        available = quantities.get(component.id, ZERO)
        if available < required:
            shortages.append(ShortageReport(
                component_id=component.id,
                component_name=component.name,
                sku_code=component.sku_code,
                required=required,
                available=available,
                shortage=required - available,
            ))
    return shortages
