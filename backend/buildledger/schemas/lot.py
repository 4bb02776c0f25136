"""
Lot selection Pydantic Schemas
"""
from datetime import date
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


class LotAllocation(BaseModel):
    """Quantity to take from one lot"""
    lot_id: int
    quantity: Decimal = Field(..., gt=0)


class LotOverride(BaseModel):
    """Manual lot choice for one component; bypasses FEFO for that component"""
    component_id: int
    allocations: List[LotAllocation] = Field(..., min_length=1)


class LotSelection(BaseModel):
    """
    Result of FEFO selection for one lot.

    lot_id None means pooled stock: the component has no lot records, or a
    tolerated shortfall is being taken from untracked stock.
    """
    lot_id: Optional[int] = None
    lot_number: Optional[str] = None
    quantity: Decimal
    expiry_date: Optional[date] = None


class AvailableLot(BaseModel):
    lot_id: int
    lot_number: str
    quantity: Decimal
    expiry_date: Optional[date] = None
    received_quantity: Decimal
    supplier: Optional[str] = None
    is_expired: bool = False


class LotOverrideError(BaseModel):
    """One problem found while validating manual overrides"""
    code: str  # NOT_FOUND, LOT_COMPONENT_MISMATCH, INSUFFICIENT_LOT_BALANCE
    message: str
    component_id: Optional[int] = None
    lot_id: Optional[int] = None


class LotOverrideValidation(BaseModel):
    valid: bool
    errors: List[LotOverrideError] = Field(default_factory=list)


class ComponentLotAvailability(BaseModel):
    """Lot availability preview for one BOM line"""
    component_id: int
    component_name: str
    sku_code: str
    required: Decimal
    available: Decimal
    is_lot_tracked: bool
    is_sufficient: bool
    selected_lots: List[LotSelection] = Field(default_factory=list)


class ConsumedComponent(BaseModel):
    """Total quantity of one component consumed by a build"""
    component_id: int
    quantity: Decimal
    pooled_quantity: Decimal = Decimal("0")
