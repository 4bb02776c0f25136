"""
Location Service

Default-location resolution and the rules for changing which location is
the default. Build, transfer and receipt paths all fall back to the
company default when the caller does not name a location.
"""
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from buildledger.exceptions import InvalidStateError, NotFoundError
from buildledger.logging_config import get_logger
from buildledger.models.balance import FinishedGoodsBalance, InventoryBalance
from buildledger.models.location import Location

logger = get_logger(__name__)

DEFAULT_LOCATION_NAME = "Main Warehouse"


def get_default_location(db: Session, company_id: int) -> Optional[Location]:
    """Active default location of the company, or None."""
    return db.query(Location).filter(
        Location.company_id == company_id,
        Location.is_default.is_(True),
        Location.is_active.is_(True),
    ).first()


def get_default_location_id(db: Session, company_id: int) -> Optional[int]:
    location = get_default_location(db, company_id)
    return location.id if location else None


def get_location(
    db: Session,
    location_id: int,
    company_id: int,
    require_active: bool = True,
) -> Location:
    """
    Fetch a location owned by the company.

    Raises:
        NotFoundError: missing, owned by another company, or (when
            require_active) deactivated.
    """
    query = db.query(Location).filter(
        Location.id == location_id,
        Location.company_id == company_id,
    )
    if require_active:
        query = query.filter(Location.is_active.is_(True))
    location = query.first()
    if not location:
        raise NotFoundError("Location", location_id)
    return location


def ensure_default_location(db: Session, company_id: int) -> Location:
    """
    Make sure the company has a default location.

    Creates "Main Warehouse" when the company has no locations at all;
    otherwise promotes the oldest location if none is flagged default.
    Does NOT commit.
    """
    locations = db.query(Location).filter(
        Location.company_id == company_id,
    ).order_by(Location.created_at.asc(), Location.id.asc()).all()

    if not locations:
        location = Location(
            company_id=company_id,
            name=DEFAULT_LOCATION_NAME,
            type="warehouse",
            is_default=True,
            is_active=True,
        )
        db.add(location)
        db.flush()
        logger.info(f"Created default location {location.id} for company {company_id}")
        return location

    for location in locations:
        if location.is_default:
            return location

    first = locations[0]
    first.is_default = True
    db.flush()
    logger.info(f"Promoted location {first.id} to default for company {company_id}")
    return first


def set_default_location(db: Session, company_id: int, location_id: int) -> Location:
    """
    Flag one location as the company default and clear every other flag.

    The target must be active. Does NOT commit.
    """
    location = get_location(db, location_id, company_id, require_active=True)

    db.query(Location).filter(
        Location.company_id == company_id,
        Location.is_default.is_(True),
        Location.id != location.id,
    ).update({Location.is_default: False}, synchronize_session="fetch")

    location.is_default = True
    db.flush()
    return location


def can_deactivate_location(db: Session, company_id: int, location_id: int) -> Tuple[bool, Optional[str]]:
    location = get_location(db, location_id, company_id, require_active=False)
    if location.is_default:
        return False, "Cannot deactivate the default location"
    return True, None


def can_delete_location(db: Session, company_id: int, location_id: int) -> Tuple[bool, Optional[str]]:
    """A location can be deleted when it is not the default and holds no stock."""
    location = get_location(db, location_id, company_id, require_active=False)
    if location.is_default:
        return False, "Cannot delete the default location"

    has_components = db.query(InventoryBalance.id).filter(
        InventoryBalance.location_id == location.id,
        InventoryBalance.quantity != 0,
    ).first() is not None
    has_finished_goods = db.query(FinishedGoodsBalance.id).filter(
        FinishedGoodsBalance.location_id == location.id,
        FinishedGoodsBalance.quantity != 0,
    ).first() is not None
    if has_components or has_finished_goods:
        return False, "Location still holds inventory"
    return True, None


def deactivate_location(db: Session, company_id: int, location_id: int) -> Location:
    """Soft-delete a location. Does NOT commit."""
    allowed, reason = can_deactivate_location(db, company_id, location_id)
    if not allowed:
        raise InvalidStateError(reason, current_state="default")
    location = get_location(db, location_id, company_id, require_active=False)
    location.is_active = False
    db.flush()
    return location
