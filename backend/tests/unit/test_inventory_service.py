"""
Unit Tests for Inventory Service and Buildability

Tests:
1. Balance writes (upsert, conditional decrement)
2. Quantity reads (single, batched, per location)
3. Reorder status and deletion guard
4. Max buildable units
"""
import pytest
from decimal import Decimal

from buildledger.exceptions import ConcurrencyError, NotFoundError
from buildledger.models import InventoryBalance
from buildledger.services.buildability_service import (
    calculate_max_buildable_units,
    calculate_max_buildable_units_for_skus,
)
from buildledger.services.inventory_service import (
    apply_finished_goods_delta,
    apply_inventory_delta,
    calculate_reorder_status,
    can_delete_component,
    get_component_quantities,
    get_component_quantities_by_location,
    get_component_quantity,
    get_sku_inventory_summary,
    get_sku_quantity,
)

from tests.factories import (
    create_test_bom,
    create_test_component,
    create_test_location,
    create_test_lot,
    create_test_sku,
    set_component_balance,
)


class TestBalanceWrites:
    def test_first_delta_creates_row(self, db_session, company, main_location):
        wax = create_test_component(db_session, company)

        apply_inventory_delta(db_session, wax.id, main_location.id, Decimal("12"))
        db_session.commit()

        assert get_component_quantity(db_session, wax.id, company.id) == Decimal("12")
        assert db_session.query(InventoryBalance).count() == 1

    def test_deltas_accumulate(self, db_session, company, main_location):
        wax = create_test_component(db_session, company)

        apply_inventory_delta(db_session, wax.id, main_location.id, Decimal("12"))
        apply_inventory_delta(db_session, wax.id, main_location.id, Decimal("-5"))
        db_session.commit()

        assert get_component_quantity(db_session, wax.id, company.id) == Decimal("7")
        assert db_session.query(InventoryBalance).count() == 1

    def test_unconditional_decrement_can_go_negative(self, db_session, company, main_location):
        wax = create_test_component(db_session, company)
        set_component_balance(db_session, wax, main_location, Decimal("3"))

        apply_inventory_delta(db_session, wax.id, main_location.id, Decimal("-5"))
        db_session.commit()

        assert get_component_quantity(db_session, wax.id, company.id) == Decimal("-2")

    def test_conditional_decrement_refuses_to_go_negative(self, db_session, company, main_location):
        wax = create_test_component(db_session, company)
        set_component_balance(db_session, wax, main_location, Decimal("3"))
        db_session.commit()

        with pytest.raises(ConcurrencyError):
            apply_inventory_delta(db_session, wax.id, main_location.id, Decimal("-5"), require_sufficient=True)
        db_session.rollback()

        assert get_component_quantity(db_session, wax.id, company.id) == Decimal("3")

    def test_conditional_decrement_without_row_fails(self, db_session, company, main_location):
        wax = create_test_component(db_session, company)

        with pytest.raises(ConcurrencyError):
            apply_inventory_delta(db_session, wax.id, main_location.id, Decimal("-1"), require_sufficient=True)

    def test_zero_delta_writes_nothing(self, db_session, company, main_location):
        wax = create_test_component(db_session, company)

        apply_inventory_delta(db_session, wax.id, main_location.id, Decimal("0"))

        assert db_session.query(InventoryBalance).count() == 0


class TestQuantityReads:
    def test_total_and_location_quantities(self, db_session, company, main_location):
        shelf = create_test_location(db_session, company, name="Shelf B")
        wax = create_test_component(db_session, company)
        set_component_balance(db_session, wax, main_location, Decimal("10"))
        set_component_balance(db_session, wax, shelf, Decimal("4"))
        db_session.commit()

        assert get_component_quantity(db_session, wax.id, company.id) == Decimal("14")
        assert get_component_quantity(db_session, wax.id, company.id, shelf.id) == Decimal("4")

        by_location = get_component_quantities_by_location(db_session, wax.id, company.id)
        assert [row["location_name"] for row in by_location] == ["Main Warehouse", "Shelf B"]

    def test_batched_lookup_initialises_every_id(self, db_session, company, main_location):
        wax = create_test_component(db_session, company)
        wick = create_test_component(db_session, company)
        set_component_balance(db_session, wax, main_location, Decimal("10"))
        db_session.commit()

        quantities = get_component_quantities(db_session, [wax.id, wick.id, 9999], company.id)

        assert quantities == {wax.id: Decimal("10"), wick.id: Decimal("0"), 9999: Decimal("0")}

    def test_batched_lookup_hides_other_tenant(self, db_session, company, other_company, main_location):
        wax = create_test_component(db_session, company)
        set_component_balance(db_session, wax, main_location, Decimal("10"))
        db_session.commit()

        assert get_component_quantities(db_session, [wax.id], other_company.id) == {wax.id: Decimal("0")}

    def test_single_lookup_rejects_other_tenant(self, db_session, company, other_company):
        wax = create_test_component(db_session, company)
        db_session.commit()

        with pytest.raises(NotFoundError):
            get_component_quantity(db_session, wax.id, other_company.id)

    def test_sku_quantities(self, db_session, company, main_location):
        overflow = create_test_location(db_session, company, name="Overflow")
        sku = create_test_sku(db_session, company)
        apply_finished_goods_delta(db_session, sku.id, main_location.id, Decimal("5"))
        apply_finished_goods_delta(db_session, sku.id, overflow.id, Decimal("8"))
        db_session.commit()

        summary = get_sku_inventory_summary(db_session, sku.id, company.id)

        assert get_sku_quantity(db_session, sku.id, company.id) == Decimal("13")
        assert summary["total_quantity"] == Decimal("13")
        assert [row["location_name"] for row in summary["by_location"]] == ["Overflow", "Main Warehouse"]


class TestReorderStatus:
    @pytest.mark.parametrize("on_hand,expected", [
        (Decimal("5"), "critical"),
        (Decimal("10"), "critical"),
        (Decimal("15"), "warning"),
        (Decimal("16"), "ok"),
    ])
    def test_thresholds(self, on_hand, expected):
        assert calculate_reorder_status(on_hand, Decimal("10"), Decimal("1.5")) == expected

    def test_no_reorder_point_is_ok(self):
        assert calculate_reorder_status(Decimal("0"), Decimal("0")) == "ok"


class TestCanDeleteComponent:
    def test_unused_component(self, db_session, company):
        wax = create_test_component(db_session, company)

        assert can_delete_component(db_session, wax.id, company.id) == (True, None)

    def test_blocked_by_bom_line(self, db_session, company):
        wax = create_test_component(db_session, company)
        create_test_bom(db_session, create_test_sku(db_session, company), [(wax, Decimal("1"))])

        allowed, reason = can_delete_component(db_session, wax.id, company.id)

        assert allowed is False
        assert "BOM" in reason

    def test_blocked_by_lot(self, db_session, company):
        wax = create_test_component(db_session, company)
        create_test_lot(db_session, wax, Decimal("1"))

        allowed, _ = can_delete_component(db_session, wax.id, company.id)

        assert allowed is False


class TestBuildability:
    def test_minimum_across_lines(self, db_session, company, main_location):
        a = create_test_component(db_session, company)
        b = create_test_component(db_session, company)
        sku = create_test_sku(db_session, company)
        create_test_bom(db_session, sku, [(a, Decimal("2")), (b, Decimal("5"))])
        set_component_balance(db_session, a, main_location, Decimal("100"))
        set_component_balance(db_session, b, main_location, Decimal("30"))
        db_session.commit()

        assert calculate_max_buildable_units(db_session, sku.id, company.id) == 6

    def test_fractional_result_floors(self, db_session, company, main_location):
        a = create_test_component(db_session, company)
        sku = create_test_sku(db_session, company)
        create_test_bom(db_session, sku, [(a, Decimal("0.75"))])
        set_component_balance(db_session, a, main_location, Decimal("10"))
        db_session.commit()

        assert calculate_max_buildable_units(db_session, sku.id, company.id) == 13

    def test_no_active_bom_is_none(self, db_session, company):
        sku = create_test_sku(db_session, company)
        create_test_bom(db_session, sku, [], is_active=False)
        db_session.commit()

        assert calculate_max_buildable_units(db_session, sku.id, company.id) is None

    def test_empty_active_bom_is_none(self, db_session, company):
        sku = create_test_sku(db_session, company)
        create_test_bom(db_session, sku, [])
        db_session.commit()

        assert calculate_max_buildable_units(db_session, sku.id, company.id) is None

    def test_zero_quantity_line_imposes_no_constraint(self, db_session, company, main_location):
        a = create_test_component(db_session, company)
        label = create_test_component(db_session, company)
        sku = create_test_sku(db_session, company)
        create_test_bom(db_session, sku, [(a, Decimal("2")), (label, Decimal("0"))])
        set_component_balance(db_session, a, main_location, Decimal("9"))
        db_session.commit()

        assert calculate_max_buildable_units(db_session, sku.id, company.id) == 4

    def test_only_zero_lines_is_none(self, db_session, company):
        label = create_test_component(db_session, company)
        sku = create_test_sku(db_session, company)
        create_test_bom(db_session, sku, [(label, Decimal("0"))])
        db_session.commit()

        assert calculate_max_buildable_units(db_session, sku.id, company.id) is None

    def test_negative_stock_counts_as_zero(self, db_session, company, main_location):
        a = create_test_component(db_session, company)
        sku = create_test_sku(db_session, company)
        create_test_bom(db_session, sku, [(a, Decimal("1"))])
        set_component_balance(db_session, a, main_location, Decimal("-4"))
        db_session.commit()

        assert calculate_max_buildable_units(db_session, sku.id, company.id) == 0

    def test_location_scope(self, db_session, company, main_location):
        shelf = create_test_location(db_session, company)
        a = create_test_component(db_session, company)
        sku = create_test_sku(db_session, company)
        create_test_bom(db_session, sku, [(a, Decimal("1"))])
        set_component_balance(db_session, a, main_location, Decimal("10"))
        set_component_balance(db_session, a, shelf, Decimal("3"))
        db_session.commit()

        assert calculate_max_buildable_units(db_session, sku.id, company.id) == 13
        assert calculate_max_buildable_units(db_session, sku.id, company.id, shelf.id) == 3

    def test_batched_variant(self, db_session, company, main_location):
        a = create_test_component(db_session, company)
        sku1 = create_test_sku(db_session, company)
        sku2 = create_test_sku(db_session, company)
        sku3 = create_test_sku(db_session, company)
        create_test_bom(db_session, sku1, [(a, Decimal("1"))])
        create_test_bom(db_session, sku2, [(a, Decimal("4"))])
        set_component_balance(db_session, a, main_location, Decimal("20"))
        db_session.commit()

        result = calculate_max_buildable_units_for_skus(db_session, [sku1.id, sku2.id, sku3.id], company.id)

        assert result == {sku1.id: 20, sku2.id: 5, sku3.id: None}

    def test_other_tenant_sees_nothing(self, db_session, company, other_company, main_location):
        a = create_test_component(db_session, company)
        sku = create_test_sku(db_session, company)
        create_test_bom(db_session, sku, [(a, Decimal("1"))])
        set_component_balance(db_session, a, main_location, Decimal("20"))
        db_session.commit()

        assert calculate_max_buildable_units(db_session, sku.id, other_company.id) is None
