"""
Bill of Materials Pydantic Schemas
"""
from pydantic import BaseModel, Field, field_validator
from typing import Any, Dict, Optional, List
from datetime import datetime
from decimal import Decimal


class BOMLineInput(BaseModel):
    """One component requirement of a BOM version"""
    component_id: int = Field(..., description="Component ID")
    quantity_per_unit: Decimal = Field(..., ge=0, description="Quantity consumed per built unit")
    notes: Optional[str] = Field(None, max_length=1000)


def _unique_components(lines: List[BOMLineInput]) -> List[BOMLineInput]:
    seen = set()
    for line in lines:
        if line.component_id in seen:
            raise ValueError(f"Component {line.component_id} appears more than once")
        seen.add(line.component_id)
    return lines


class BOMVersionCreate(BaseModel):
    """Create a new BOM version for a SKU"""
    sku_id: int
    version_name: str = Field(..., min_length=1, max_length=100)
    effective_start_date: Optional[datetime] = None
    is_active: bool = False
    notes: Optional[str] = None
    defect_notes: Optional[str] = None
    quality_metadata: Optional[Dict[str, Any]] = None
    lines: List[BOMLineInput] = Field(default_factory=list)

    @field_validator("lines")
    @classmethod
    def check_lines(cls, v: List[BOMLineInput]) -> List[BOMLineInput]:
        return _unique_components(v)


class BOMVersionUpdate(BaseModel):
    """Update BOM version metadata; lines, when given, replace the existing lines"""
    version_name: Optional[str] = Field(None, min_length=1, max_length=100)
    effective_start_date: Optional[datetime] = None
    effective_end_date: Optional[datetime] = None
    notes: Optional[str] = None
    defect_notes: Optional[str] = None
    quality_metadata: Optional[Dict[str, Any]] = None
    lines: Optional[List[BOMLineInput]] = None

    @field_validator("lines")
    @classmethod
    def check_lines(cls, v: Optional[List[BOMLineInput]]) -> Optional[List[BOMLineInput]]:
        if v is None:
            return v
        return _unique_components(v)


class BOMLineCost(BaseModel):
    """Cost breakdown of a single BOM line"""
    component_id: int
    component_name: str
    sku_code: str
    quantity_per_unit: Decimal
    cost_per_unit: Decimal
    line_cost: Decimal
