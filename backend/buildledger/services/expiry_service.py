"""
Expiry Service

Lots are expired when their expiry date is before today; a lot that
expires today is still usable. Lots without an expiry date never expire.
"""
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from buildledger.core.config import settings
from buildledger.core.decimal_utils import to_decimal
from buildledger.models.component import Component
from buildledger.models.lot import Lot, LotBalance

EXPIRY_OK = "ok"
EXPIRY_EXPIRING_SOON = "expiring_soon"
EXPIRY_EXPIRED = "expired"


def is_lot_expired(expiry_date: Optional[date], today: Optional[date] = None) -> bool:
    if expiry_date is None:
        return False
    return expiry_date < (today or date.today())


def is_lot_expiring_soon(
    expiry_date: Optional[date],
    warning_days: int,
    today: Optional[date] = None,
) -> bool:
    """True when the lot expires between today and today + warning_days, inclusive."""
    if expiry_date is None:
        return False
    today = today or date.today()
    return today <= expiry_date <= today + timedelta(days=warning_days)


def calculate_expiry_status(
    expiry_date: Optional[date],
    warning_days: Optional[int] = None,
    today: Optional[date] = None,
) -> str:
    if warning_days is None:
        warning_days = settings.LOT_EXPIRY_WARNING_DAYS
    if expiry_date is None:
        return EXPIRY_OK
    if is_lot_expired(expiry_date, today):
        return EXPIRY_EXPIRED
    if is_lot_expiring_soon(expiry_date, warning_days, today):
        return EXPIRY_EXPIRING_SOON
    return EXPIRY_OK


def get_expiring_lots(
    db: Session,
    company_id: int,
    warning_days: Optional[int] = None,
    today: Optional[date] = None,
) -> List[Dict[str, Any]]:
    """Lots with stock left that expire within the warning window, soonest first."""
    if warning_days is None:
        warning_days = settings.LOT_EXPIRY_WARNING_DAYS
    today = today or date.today()
    warning_date = today + timedelta(days=warning_days)

    rows = db.query(Lot, LotBalance, Component).join(
        LotBalance, LotBalance.lot_id == Lot.id,
    ).join(
        Component, Component.id == Lot.component_id,
    ).filter(
        Component.company_id == company_id,
        Lot.expiry_date >= today,
        Lot.expiry_date <= warning_date,
        LotBalance.quantity > 0,
    ).order_by(Lot.expiry_date.asc(), Lot.id.asc()).all()

    return [
        {
            "lot_id": lot.id,
            "lot_number": lot.lot_number,
            "component_id": component.id,
            "component_name": component.name,
            "component_sku_code": component.sku_code,
            "expiry_date": lot.expiry_date,
            "balance": to_decimal(balance.quantity),
            "days_until_expiry": (lot.expiry_date - today).days,
        }
        for lot, balance, component in rows
    ]


def get_expired_lot_count(db: Session, company_id: int, today: Optional[date] = None) -> int:
    """Number of expired lots that still hold stock."""
    today = today or date.today()
    return db.query(Lot.id).join(
        LotBalance, LotBalance.lot_id == Lot.id,
    ).join(
        Component, Component.id == Lot.component_id,
    ).filter(
        Component.company_id == company_id,
        Lot.expiry_date < today,
        LotBalance.quantity > 0,
    ).count()
