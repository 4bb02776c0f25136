"""
Unit Tests for Location and Expiry Services
"""
import pytest
from datetime import date
from decimal import Decimal

from buildledger.exceptions import InvalidStateError, NotFoundError
from buildledger.models import Location
from buildledger.services.expiry_service import (
    EXPIRY_EXPIRED,
    EXPIRY_EXPIRING_SOON,
    EXPIRY_OK,
    calculate_expiry_status,
    get_expired_lot_count,
    get_expiring_lots,
    is_lot_expired,
)
from buildledger.services.location_service import (
    DEFAULT_LOCATION_NAME,
    can_delete_location,
    deactivate_location,
    ensure_default_location,
    get_default_location_id,
    get_location,
    set_default_location,
)

from tests.factories import (
    create_test_component,
    create_test_location,
    create_test_lot,
    set_component_balance,
)

TODAY = date(2026, 6, 15)


class TestDefaultLocation:
    def test_no_locations_means_no_default(self, db_session, company):
        assert get_default_location_id(db_session, company.id) is None

    def test_ensure_creates_main_warehouse(self, db_session, company):
        location = ensure_default_location(db_session, company.id)

        assert location.name == DEFAULT_LOCATION_NAME
        assert location.is_default is True
        assert get_default_location_id(db_session, company.id) == location.id

    def test_ensure_promotes_oldest_location(self, db_session, company):
        first = create_test_location(db_session, company, name="Garage")
        create_test_location(db_session, company, name="Studio")

        location = ensure_default_location(db_session, company.id)

        assert location.id == first.id
        assert db_session.query(Location).count() == 2

    def test_inactive_default_is_ignored(self, db_session, company):
        create_test_location(db_session, company, is_default=True, is_active=False)

        assert get_default_location_id(db_session, company.id) is None

    def test_set_default_moves_flag(self, db_session, company, main_location):
        studio = create_test_location(db_session, company, name="Studio")

        set_default_location(db_session, company.id, studio.id)

        db_session.refresh(main_location)
        assert main_location.is_default is False
        assert get_default_location_id(db_session, company.id) == studio.id

    def test_default_is_per_company(self, db_session, company, other_company, main_location):
        assert get_default_location_id(db_session, other_company.id) is None


class TestLocationAccess:
    def test_other_tenant_location_not_found(self, db_session, other_company, main_location):
        with pytest.raises(NotFoundError):
            get_location(db_session, main_location.id, other_company.id)

    def test_inactive_location_not_found_when_active_required(self, db_session, company):
        closed = create_test_location(db_session, company, is_active=False)

        with pytest.raises(NotFoundError):
            get_location(db_session, closed.id, company.id)
        assert get_location(db_session, closed.id, company.id, require_active=False).id == closed.id

    def test_default_cannot_be_deactivated(self, db_session, company, main_location):
        with pytest.raises(InvalidStateError):
            deactivate_location(db_session, company.id, main_location.id)

    def test_location_with_stock_cannot_be_deleted(self, db_session, company, main_location):
        shelf = create_test_location(db_session, company)
        set_component_balance(db_session, create_test_component(db_session, company), shelf, Decimal("1"))

        allowed, reason = can_delete_location(db_session, company.id, shelf.id)

        assert allowed is False
        assert reason == "Location still holds inventory"

    def test_empty_location_can_be_deleted(self, db_session, company, main_location):
        shelf = create_test_location(db_session, company)

        assert can_delete_location(db_session, company.id, shelf.id) == (True, None)


class TestExpiryStatus:
    def test_expiry_day_itself_is_not_expired(self):
        assert is_lot_expired(TODAY, TODAY) is False
        assert is_lot_expired(date(2026, 6, 14), TODAY) is True
        assert is_lot_expired(None, TODAY) is False

    @pytest.mark.parametrize("expiry,expected", [
        (None, EXPIRY_OK),
        (date(2026, 6, 1), EXPIRY_EXPIRED),
        (date(2026, 6, 15), EXPIRY_EXPIRING_SOON),
        (date(2026, 7, 15), EXPIRY_EXPIRING_SOON),
        (date(2026, 7, 16), EXPIRY_OK),
    ])
    def test_status(self, expiry, expected):
        assert calculate_expiry_status(expiry, warning_days=30, today=TODAY) == expected


class TestExpiringLots:
    def test_lists_lots_in_window_soonest_first(self, db_session, company):
        wax = create_test_component(db_session, company)
        late = create_test_lot(db_session, wax, Decimal("5"), expiry_date=date(2026, 7, 1))
        soon = create_test_lot(db_session, wax, Decimal("5"), expiry_date=date(2026, 6, 20))
        create_test_lot(db_session, wax, Decimal("5"), expiry_date=date(2026, 9, 1))
        create_test_lot(db_session, wax, Decimal("5"), expiry_date=date(2026, 6, 1))
        create_test_lot(db_session, wax, Decimal("0"), expiry_date=date(2026, 6, 18))

        lots = get_expiring_lots(db_session, company.id, warning_days=30, today=TODAY)

        assert [lot["lot_id"] for lot in lots] == [soon.id, late.id]
        assert lots[0]["days_until_expiry"] == 5

    def test_expired_count_ignores_empty_and_foreign_lots(self, db_session, company, other_company):
        wax = create_test_component(db_session, company)
        foreign = create_test_component(db_session, other_company)
        create_test_lot(db_session, wax, Decimal("5"), expiry_date=date(2026, 6, 1))
        create_test_lot(db_session, wax, Decimal("0"), expiry_date=date(2026, 6, 1))
        create_test_lot(db_session, foreign, Decimal("5"), expiry_date=date(2026, 6, 1))

        assert get_expired_lot_count(db_session, company.id, today=TODAY) == 1
