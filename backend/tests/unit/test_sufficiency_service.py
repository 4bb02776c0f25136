"""
Unit Tests for Sufficiency Service
"""
import pytest
from decimal import Decimal

from buildledger.exceptions import NotFoundError
from buildledger.services.sufficiency_service import check_insufficient_inventory

from tests.factories import (
    create_test_bom,
    create_test_component,
    create_test_location,
    create_test_sku,
    set_component_balance,
)


class TestCheckInsufficientInventory:
    @pytest.fixture
    def candle(self, db_session, company, main_location):
        wax = create_test_component(db_session, company, name="Soy Wax", sku_code="WAX-01")
        wick = create_test_component(db_session, company, name="Cotton Wick")
        sku = create_test_sku(db_session, company)
        bom = create_test_bom(db_session, sku, [(wax, Decimal("2")), (wick, Decimal("1"))])
        set_component_balance(db_session, wax, main_location, Decimal("5"))
        set_component_balance(db_session, wick, main_location, Decimal("10"))
        db_session.commit()
        return bom, wax, wick

    def test_covered_build_has_no_shortages(self, db_session, company, candle):
        bom, _, _ = candle

        assert check_insufficient_inventory(db_session, bom.id, company.id, units_to_build=2) == []

    def test_shortage_is_required_minus_available(self, db_session, company, candle):
        bom, wax, _ = candle

        (report,) = check_insufficient_inventory(db_session, bom.id, company.id, units_to_build=4)

        assert report.component_id == wax.id
        assert report.component_name == "Soy Wax"
        assert report.sku_code == "WAX-01"
        assert report.required == Decimal("8")
        assert report.available == Decimal("5")
        assert report.shortage == Decimal("3")
        assert Decimal(report.to_dict()["shortage"]) == Decimal("3")

    def test_location_scoped_versus_all_locations(self, db_session, company, main_location, candle):
        bom, wax, _ = candle
        studio = create_test_location(db_session, company, name="Studio")
        set_component_balance(db_session, wax, studio, Decimal("5"))
        db_session.commit()

        scoped = check_insufficient_inventory(
            db_session, bom.id, company.id, units_to_build=4, location_id=main_location.id,
        )
        total = check_insufficient_inventory(db_session, bom.id, company.id, units_to_build=4)

        assert [(r.component_id, r.available, r.shortage) for r in scoped] == [(wax.id, Decimal("5"), Decimal("3"))]
        assert total == []

    def test_empty_bom(self, db_session, company):
        sku = create_test_sku(db_session, company)
        bom = create_test_bom(db_session, sku, [])
        db_session.commit()

        assert check_insufficient_inventory(db_session, bom.id, company.id, units_to_build=10) == []

    def test_other_tenant_bom_not_found(self, db_session, company, other_company, candle):
        bom, _, _ = candle

        with pytest.raises(NotFoundError):
            check_insufficient_inventory(db_session, bom.id, other_company.id, units_to_build=1)
