"""
Unit Tests for Lot Selection (FEFO)

Tests:
1. FEFO ordering, including the undated and receipt-order tie-breaks
2. Greedy allocation, pooled fallback, shortfalls
3. Override validation (every error collected, no cross-tenant leaks)
4. The in-unit write path
"""
import pytest
from datetime import date, datetime
from decimal import Decimal
from unittest.mock import patch

from buildledger.exceptions import ConcurrencyError, InsufficientLotQuantityError, ValidationError
from buildledger.models import LedgerEntry, LedgerEntryType, LedgerLine, LotBalance
from buildledger.schemas.lot import LotAllocation, LotOverride
from buildledger.services import lot_selection
from buildledger.services.lot_selection import (
    BuildLineRequirement,
    check_lot_availability_for_build,
    consume_lots_for_build_tx,
    get_available_lots_for_component,
    select_lots_for_consumption,
    validate_lot_overrides,
)
from buildledger.services.lot_service import decrement_lot_balance, get_lot_balance_quantity

from tests.factories import (
    create_test_bom,
    create_test_component,
    create_test_lot,
    create_test_sku,
    set_component_balance,
)


def _entry(db, company):
    entry = LedgerEntry(company_id=company.id, type=LedgerEntryType.BUILD, date=datetime(2026, 6, 1))
    db.add(entry)
    db.flush()
    return entry


class TestFEFOOrdering:
    def test_expiry_ascending_with_undated_last(self, db_session, company):
        oil = create_test_component(db_session, company)
        march = create_test_lot(db_session, oil, Decimal("10"), expiry_date=date(2025, 3, 1))
        january = create_test_lot(db_session, oil, Decimal("10"), expiry_date=date(2025, 1, 15))
        undated = create_test_lot(db_session, oil, Decimal("10"), expiry_date=None)
        db_session.commit()

        lots = get_available_lots_for_component(db_session, oil.id, company.id)

        assert [lot.lot_id for lot in lots] == [january.id, march.id, undated.id]

    def test_same_expiry_breaks_tie_by_receipt_order(self, db_session, company):
        oil = create_test_component(db_session, company)
        expiry = date(2026, 1, 1)
        later = create_test_lot(db_session, oil, Decimal("10"), expiry_date=expiry, created_at=datetime(2025, 6, 2))
        earlier = create_test_lot(db_session, oil, Decimal("10"), expiry_date=expiry, created_at=datetime(2025, 6, 1))
        db_session.commit()

        lots = get_available_lots_for_component(db_session, oil.id, company.id)

        assert [lot.lot_id for lot in lots] == [earlier.id, later.id]

    def test_undated_lots_ordered_by_receipt(self, db_session, company):
        oil = create_test_component(db_session, company)
        second = create_test_lot(db_session, oil, Decimal("1"), created_at=datetime(2025, 2, 1))
        first = create_test_lot(db_session, oil, Decimal("1"), created_at=datetime(2025, 1, 1))
        db_session.commit()

        lots = get_available_lots_for_component(db_session, oil.id, company.id)

        assert [lot.lot_id for lot in lots] == [first.id, second.id]

    def test_empty_lots_are_skipped(self, db_session, company):
        oil = create_test_component(db_session, company)
        create_test_lot(db_session, oil, Decimal("0"), expiry_date=date(2025, 1, 1))
        full = create_test_lot(db_session, oil, Decimal("4"), expiry_date=date(2025, 2, 1))
        db_session.commit()

        assert [lot.lot_id for lot in get_available_lots_for_component(db_session, oil.id, company.id)] == [full.id]

    def test_exclude_expired(self, db_session, company):
        oil = create_test_component(db_session, company)
        create_test_lot(db_session, oil, Decimal("4"), expiry_date=date(2026, 1, 1))
        fresh = create_test_lot(db_session, oil, Decimal("4"), expiry_date=date(2026, 12, 1))
        db_session.commit()

        lots = get_available_lots_for_component(
            db_session, oil.id, company.id, exclude_expired=True, today=date(2026, 6, 1),
        )

        assert [lot.lot_id for lot in lots] == [fresh.id]

    def test_other_tenant_sees_no_lots(self, db_session, company, other_company):
        oil = create_test_component(db_session, company)
        create_test_lot(db_session, oil, Decimal("4"))
        db_session.commit()

        assert get_available_lots_for_component(db_session, oil.id, other_company.id) == []


class TestSelectLotsForConsumption:
    def test_greedy_allocation(self, db_session, company):
        oil = create_test_component(db_session, company)
        lot_a = create_test_lot(db_session, oil, Decimal("30"), expiry_date=date(2026, 1, 1))
        lot_b = create_test_lot(db_session, oil, Decimal("50"), expiry_date=date(2026, 2, 1))
        db_session.commit()

        selections = select_lots_for_consumption(db_session, oil.id, Decimal("40"), company.id)

        assert [(s.lot_id, s.quantity) for s in selections] == [(lot_a.id, Decimal("30")), (lot_b.id, Decimal("10"))]

    def test_pooled_when_component_has_no_lots(self, db_session, company):
        wick = create_test_component(db_session, company)
        db_session.commit()

        selections = select_lots_for_consumption(db_session, wick.id, Decimal("25"), company.id)

        assert len(selections) == 1
        assert selections[0].lot_id is None
        assert selections[0].quantity == Decimal("25")

    def test_shortfall_raises_with_amount(self, db_session, company):
        oil = create_test_component(db_session, company)
        create_test_lot(db_session, oil, Decimal("20"))
        db_session.commit()

        with pytest.raises(InsufficientLotQuantityError) as exc_info:
            select_lots_for_consumption(db_session, oil.id, Decimal("50"), company.id)

        assert exc_info.value.shortfall == Decimal("30")
        assert Decimal(exc_info.value.details["shortfall"]) == Decimal("30")

    def test_shortfall_tolerated_returns_partial(self, db_session, company):
        oil = create_test_component(db_session, company)
        lot = create_test_lot(db_session, oil, Decimal("20"))
        db_session.commit()

        selections = select_lots_for_consumption(
            db_session, oil.id, Decimal("50"), company.id, allow_insufficient=True,
        )

        assert [(s.lot_id, s.quantity) for s in selections] == [(lot.id, Decimal("20"))]

    def test_exhausted_lots_fall_back_to_pooled(self, db_session, company, main_location):
        oil = create_test_component(db_session, company)
        create_test_lot(db_session, oil, Decimal("0"))
        set_component_balance(db_session, oil, main_location, Decimal("20"))
        db_session.commit()

        selections = select_lots_for_consumption(db_session, oil.id, Decimal("5"), company.id)

        assert [(s.lot_id, s.quantity) for s in selections] == [(None, Decimal("5"))]


class TestValidateLotOverrides:
    def test_valid_override(self, db_session, company):
        oil = create_test_component(db_session, company)
        lot = create_test_lot(db_session, oil, Decimal("10"))
        db_session.commit()

        result = validate_lot_overrides(
            db_session,
            [LotOverride(component_id=oil.id, allocations=[LotAllocation(lot_id=lot.id, quantity=Decimal("10"))])],
            company.id,
        )

        assert result.valid is True
        assert result.errors == []

    def test_foreign_lot_reported_as_not_found(self, db_session, company, other_company):
        oil = create_test_component(db_session, company)
        foreign_oil = create_test_component(db_session, other_company)
        foreign_lot = create_test_lot(db_session, foreign_oil, Decimal("1"))
        db_session.commit()

        result = validate_lot_overrides(
            db_session,
            [LotOverride(component_id=oil.id, allocations=[LotAllocation(lot_id=foreign_lot.id, quantity=Decimal("500"))])],
            company.id,
        )

        assert result.valid is False
        assert [e.code for e in result.errors] == ["NOT_FOUND"]
        assert "not found or access denied" in result.errors[0].message
        assert "available" not in result.errors[0].message

    def test_collects_every_error(self, db_session, company, other_company):
        oil = create_test_component(db_session, company)
        wax = create_test_component(db_session, company)
        foreign = create_test_component(db_session, other_company)
        oil_lot = create_test_lot(db_session, oil, Decimal("5"))
        wax_lot = create_test_lot(db_session, wax, Decimal("5"))
        db_session.commit()

        result = validate_lot_overrides(
            db_session,
            [
                LotOverride(component_id=foreign.id, allocations=[LotAllocation(lot_id=oil_lot.id, quantity=Decimal("1"))]),
                LotOverride(component_id=oil.id, allocations=[
                    LotAllocation(lot_id=wax_lot.id, quantity=Decimal("1")),
                    LotAllocation(lot_id=9999, quantity=Decimal("1")),
                    LotAllocation(lot_id=oil_lot.id, quantity=Decimal("6")),
                ]),
            ],
            company.id,
        )

        codes = sorted(e.code for e in result.errors)
        assert codes == ["INSUFFICIENT_LOT_BALANCE", "LOT_COMPONENT_MISMATCH", "NOT_FOUND", "NOT_FOUND"]

    def test_allocations_of_same_lot_are_summed(self, db_session, company):
        oil = create_test_component(db_session, company)
        lot = create_test_lot(db_session, oil, Decimal("10"))
        db_session.commit()

        result = validate_lot_overrides(
            db_session,
            [LotOverride(component_id=oil.id, allocations=[
                LotAllocation(lot_id=lot.id, quantity=Decimal("6")),
                LotAllocation(lot_id=lot.id, quantity=Decimal("6")),
            ])],
            company.id,
        )

        assert [e.code for e in result.errors] == ["INSUFFICIENT_LOT_BALANCE"]


class TestConsumeLotsForBuild:
    def test_fefo_lines_and_lot_decrements(self, db_session, company, main_location):
        oil = create_test_component(db_session, company, cost_per_unit=Decimal("2.00"))
        lot_a = create_test_lot(db_session, oil, Decimal("30"), expiry_date=date(2026, 1, 1))
        lot_b = create_test_lot(db_session, oil, Decimal("50"), expiry_date=date(2026, 2, 1))
        entry = _entry(db_session, company)

        consumed = consume_lots_for_build_tx(
            db_session, entry.id,
            [BuildLineRequirement(oil.id, Decimal("40"), Decimal("2.00"))],
            main_location.id, company.id,
        )
        db_session.commit()

        assert [(c.lot_id, c.quantity) for c in consumed] == [(lot_a.id, Decimal("30")), (lot_b.id, Decimal("10"))]
        lines = db_session.query(LedgerLine).order_by(LedgerLine.id).all()
        assert [line.quantity_change for line in lines] == [Decimal("-30"), Decimal("-10")]
        assert all(line.cost_per_unit == Decimal("2.00") for line in lines)
        assert get_lot_balance_quantity(db_session, lot_a.id) == Decimal("0")
        assert get_lot_balance_quantity(db_session, lot_b.id) == Decimal("40")

    def test_pooled_component_writes_single_line(self, db_session, company, main_location):
        wick = create_test_component(db_session, company)
        entry = _entry(db_session, company)

        consumed = consume_lots_for_build_tx(
            db_session, entry.id, [BuildLineRequirement(wick.id, Decimal("25"), Decimal("0.10"))],
            main_location.id, company.id,
        )

        assert [(c.lot_id, c.quantity) for c in consumed] == [(None, Decimal("25"))]
        assert db_session.query(LedgerLine).one().lot_id is None

    def test_restocked_without_lot_consumes_pooled(self, db_session, company, main_location):
        oil = create_test_component(db_session, company)
        spent = create_test_lot(db_session, oil, Decimal("0"))
        set_component_balance(db_session, oil, main_location, Decimal("20"))
        entry = _entry(db_session, company)

        consumed = consume_lots_for_build_tx(
            db_session, entry.id, [BuildLineRequirement(oil.id, Decimal("5"), Decimal("1"))],
            main_location.id, company.id,
        )

        assert [(c.lot_id, c.quantity) for c in consumed] == [(None, Decimal("5"))]
        assert db_session.query(LedgerLine).one().lot_id is None
        assert get_lot_balance_quantity(db_session, spent.id) == Decimal("0")

    def test_override_never_lists_lots(self, db_session, company, main_location):
        oil = create_test_component(db_session, company)
        create_test_lot(db_session, oil, Decimal("10"), expiry_date=date(2026, 1, 1))
        picked = create_test_lot(db_session, oil, Decimal("10"), expiry_date=date(2026, 9, 1))
        entry = _entry(db_session, company)
        override = LotOverride(component_id=oil.id, allocations=[LotAllocation(lot_id=picked.id, quantity=Decimal("4"))])

        with patch.object(lot_selection, "get_available_lots_for_component_tx") as listing:
            consumed = consume_lots_for_build_tx(
                db_session, entry.id, [BuildLineRequirement(oil.id, Decimal("4"), Decimal("1"))],
                main_location.id, company.id, lot_overrides=[override],
            )

        listing.assert_not_called()
        assert [(c.lot_id, c.quantity) for c in consumed] == [(picked.id, Decimal("4"))]
        assert get_lot_balance_quantity(db_session, picked.id) == Decimal("6")

    def test_override_total_must_match_requirement(self, db_session, company, main_location):
        oil = create_test_component(db_session, company)
        lot = create_test_lot(db_session, oil, Decimal("10"))
        entry = _entry(db_session, company)
        override = LotOverride(component_id=oil.id, allocations=[LotAllocation(lot_id=lot.id, quantity=Decimal("3"))])

        with pytest.raises(ValidationError):
            consume_lots_for_build_tx(
                db_session, entry.id, [BuildLineRequirement(oil.id, Decimal("4"), Decimal("1"))],
                main_location.id, company.id, lot_overrides=[override],
            )

    def test_duplicate_override_for_component_rejected(self, db_session, company, main_location):
        oil = create_test_component(db_session, company)
        lot = create_test_lot(db_session, oil, Decimal("10"))
        entry = _entry(db_session, company)
        override = LotOverride(component_id=oil.id, allocations=[LotAllocation(lot_id=lot.id, quantity=Decimal("1"))])

        with pytest.raises(ValidationError):
            consume_lots_for_build_tx(
                db_session, entry.id, [BuildLineRequirement(oil.id, Decimal("1"), Decimal("1"))],
                main_location.id, company.id, lot_overrides=[override, override],
            )

    def test_tolerated_shortfall_becomes_pooled_remainder(self, db_session, company, main_location):
        oil = create_test_component(db_session, company)
        lot = create_test_lot(db_session, oil, Decimal("20"))
        entry = _entry(db_session, company)

        consumed = consume_lots_for_build_tx(
            db_session, entry.id, [BuildLineRequirement(oil.id, Decimal("50"), Decimal("1"))],
            main_location.id, company.id, allow_insufficient=True,
        )

        assert [(c.lot_id, c.quantity) for c in consumed] == [(lot.id, Decimal("20")), (None, Decimal("30"))]
        assert get_lot_balance_quantity(db_session, lot.id) == Decimal("0")

    def test_untolerated_shortfall_raises(self, db_session, company, main_location):
        oil = create_test_component(db_session, company)
        create_test_lot(db_session, oil, Decimal("20"))
        entry = _entry(db_session, company)

        with pytest.raises(InsufficientLotQuantityError):
            consume_lots_for_build_tx(
                db_session, entry.id, [BuildLineRequirement(oil.id, Decimal("50"), Decimal("1"))],
                main_location.id, company.id,
            )

    def test_zero_requirement_writes_nothing(self, db_session, company, main_location):
        label = create_test_component(db_session, company)
        entry = _entry(db_session, company)

        consumed = consume_lots_for_build_tx(
            db_session, entry.id, [BuildLineRequirement(label.id, Decimal("0"), Decimal("1"))],
            main_location.id, company.id,
        )

        assert consumed == []
        assert db_session.query(LedgerLine).count() == 0


class TestLotBalanceDecrement:
    def test_decrement_below_balance_fails(self, db_session, company):
        oil = create_test_component(db_session, company)
        lot = create_test_lot(db_session, oil, Decimal("5"))
        db_session.commit()

        with pytest.raises(ConcurrencyError):
            decrement_lot_balance(db_session, lot.id, Decimal("6"))
        db_session.rollback()

        assert db_session.query(LotBalance).filter(LotBalance.lot_id == lot.id).one().quantity == Decimal("5")


class TestLotAvailabilityPreview:
    def test_mixed_pooled_and_tracked(self, db_session, company, main_location):
        oil = create_test_component(db_session, company)
        wick = create_test_component(db_session, company)
        lot = create_test_lot(db_session, oil, Decimal("5"))
        set_component_balance(db_session, wick, main_location, Decimal("1"))
        sku = create_test_sku(db_session, company)
        bom = create_test_bom(db_session, sku, [(oil, Decimal("2")), (wick, Decimal("1"))])
        db_session.commit()

        preview = check_lot_availability_for_build(db_session, bom.id, company.id, units_to_build=2)

        oil_row, wick_row = preview
        assert oil_row.is_lot_tracked is True
        assert oil_row.is_sufficient is True
        assert [(s.lot_id, s.quantity) for s in oil_row.selected_lots] == [(lot.id, Decimal("4"))]
        assert wick_row.is_lot_tracked is False
        assert wick_row.is_sufficient is False
        assert wick_row.available == Decimal("1")

    def test_spent_lots_preview_as_pooled(self, db_session, company, main_location):
        oil = create_test_component(db_session, company)
        create_test_lot(db_session, oil, Decimal("0"))
        set_component_balance(db_session, oil, main_location, Decimal("20"))
        sku = create_test_sku(db_session, company)
        bom = create_test_bom(db_session, sku, [(oil, Decimal("1"))])
        db_session.commit()

        (oil_row,) = check_lot_availability_for_build(db_session, bom.id, company.id, units_to_build=5)

        assert oil_row.is_lot_tracked is False
        assert oil_row.is_sufficient is True
        assert oil_row.available == Decimal("20")
        assert [(s.lot_id, s.quantity) for s in oil_row.selected_lots] == [(None, Decimal("5"))]
