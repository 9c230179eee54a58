"""
Tests for the Stock Ledger
WAC blending, no-negative-stock and movement immutability
"""

import pytest
from decimal import Decimal
from sqlalchemy.orm import Session

from stockledger.core.exceptions import (
    BusinessLogicError, InsufficientStockError, InvalidQuantityError,
    NotFoundError, ValidationError
)
from stockledger.models import LocationStock, StockMovement
from stockledger.schemas.stock import MovementKind, ReferenceType
from stockledger.services.stock import ledger as ledger_module


class TestReceive:

    def test_first_receipt_sets_wac_to_unit_price(self, ledger, period, locations, items):
        snapshot = ledger.receive(locations["kitchen"].id, items["flour"].id, Decimal("100"), Decimal("10.00"), period.id)

        assert snapshot.on_hand == Decimal("100")
        assert snapshot.wac == Decimal("10.00")
        assert snapshot.movement_id is not None

    def test_wac_blend(self, ledger, stock_up, period, locations, items):
        """100 @ 10.00 plus 50 @ 16.00 gives 150 @ 12.00"""
        stock_up(locations["kitchen"], items["flour"], 100, "10.00")

        snapshot = ledger.receive(locations["kitchen"].id, items["flour"].id, Decimal("50"), Decimal("16.00"), period.id)

        assert snapshot.on_hand == Decimal("150")
        assert snapshot.wac == Decimal("12.00")

    def test_full_precision_wac_kept(self, ledger, stock_up, period, locations, items):
        stock_up(locations["kitchen"], items["rice"], 2, "1.00")

        snapshot = ledger.receive(locations["kitchen"].id, items["rice"].id, Decimal("1"), Decimal("2.00"), period.id)

        assert snapshot.wac == Decimal("1.333333")
        assert snapshot.display_wac == Decimal("1.33")

    def test_negative_price_rejected(self, ledger, period, locations, items):
        with pytest.raises(ValidationError):
            ledger.receive(locations["kitchen"].id, items["flour"].id, Decimal("1"), Decimal("-1"), period.id)

    def test_unknown_item(self, ledger, period, locations):
        with pytest.raises(NotFoundError):
            ledger.receive(locations["kitchen"].id, 9999, Decimal("1"), Decimal("1"), period.id)

    @pytest.mark.parametrize("quantity", [Decimal("0"), Decimal("-5")])
    def test_non_positive_quantity(self, ledger, period, locations, items, quantity):
        with pytest.raises(InvalidQuantityError):
            ledger.receive(locations["kitchen"].id, items["flour"].id, quantity, Decimal("10"), period.id)


class TestIssue:

    def test_issue_preserves_wac(self, ledger, stock_up, period, locations, items):
        stock_up(locations["kitchen"], items["flour"], 100, "10.00")
        stock_up(locations["kitchen"], items["flour"], 50, "16.00")

        for quantity in ("10", "0.5", "39.5"):
            snapshot = ledger.issue(locations["kitchen"].id, items["flour"].id, Decimal(quantity), period.id)
            assert snapshot.wac == Decimal("12.00")

        assert snapshot.on_hand == Decimal("100")

    def test_issue_more_than_on_hand(self, db_session, ledger, stock_up, period, locations, items):
        stock_up(locations["kitchen"], items["flour"], 20, "10.00")

        with pytest.raises(InsufficientStockError) as exc_info:
            ledger.issue(locations["kitchen"].id, items["flour"].id, Decimal("25"), period.id)

        assert exc_info.value.requested == Decimal("25")
        assert exc_info.value.available == Decimal("20")
        assert exc_info.value.to_dict()["details"]["shortfall"] == "5.0000"

        stock = ledger.get_stock(locations["kitchen"].id, items["flour"].id)
        assert stock.on_hand == Decimal("20")
        assert len(ledger.movement_history(locations["kitchen"].id)) == 1

    def test_issue_never_stocked_item(self, ledger, period, locations, items):
        with pytest.raises(InsufficientStockError) as exc_info:
            ledger.issue(locations["kitchen"].id, items["oil"].id, Decimal("1"), period.id)
        assert exc_info.value.available == Decimal("0")

    def test_issue_to_zero_keeps_wac(self, ledger, stock_up, period, locations, items):
        """WAC is retained at zero stock and replaced by the next receipt"""
        stock_up(locations["kitchen"], items["oil"], 10, "5.00")

        empty = ledger.issue(locations["kitchen"].id, items["oil"].id, Decimal("10"), period.id)
        assert empty.on_hand == Decimal("0")
        assert empty.wac == Decimal("5.00")

        refilled = ledger.receive(locations["kitchen"].id, items["oil"].id, Decimal("4"), Decimal("7.00"), period.id)
        assert refilled.wac == Decimal("7.00")


class TestMovementLog:

    def test_each_mutation_appends_a_movement(self, db_session, ledger, stock_up, period, locations, items):
        kitchen, store = locations["kitchen"].id, locations["store"].id
        flour = items["flour"].id
        stock_up(locations["kitchen"], items["flour"], 100, "15.00")

        ledger.issue(kitchen, flour, Decimal("10"), period.id)
        out = ledger.transfer_out(kitchen, flour, Decimal("20"), period.id, destination_location_id=store)
        ledger.transfer_in(store, flour, Decimal("20"), out.wac, period.id, source_location_id=kitchen)
        db_session.commit()

        history = ledger.movement_history(kitchen, item_id=flour, period_id=period.id)
        assert [m.kind for m in history] == ["RECEIPT", "ISSUE", "TRANSFER_OUT"]
        assert [m.value for m in history] == [Decimal("1500.00"), Decimal("150.00"), Decimal("300.00")]
        assert history[-1].on_hand_after == Decimal("70")
        assert history[-1].counterpart_location_id == store
        assert all(m.status == "POSTED" for m in history)
        assert all(m.reference_type == ReferenceType.NONE.value for m in history)
        assert all(m.reference_id is None for m in history)

        incoming = ledger.movement_history(store)
        assert incoming[0].kind == MovementKind.TRANSFER_IN.value
        assert incoming[0].unit_cost == Decimal("15.00")

    def test_posted_movement_is_immutable(self, db_session, ledger, stock_up, locations, items):
        stock_up(locations["kitchen"], items["flour"], 100, "15.00")
        movement = db_session.query(StockMovement).one()

        with pytest.raises(BusinessLogicError):
            movement.quantity = Decimal("90")
        with pytest.raises(BusinessLogicError):
            movement.unit_cost = Decimal("1.00")

    def test_posted_movement_never_returns_to_draft(self, db_session, stock_up, locations, items):
        stock_up(locations["kitchen"], items["flour"], 100, "15.00")
        movement = db_session.query(StockMovement).one()

        with pytest.raises(BusinessLogicError):
            movement.status = "DRAFT"


class TestStockQueries:

    def test_unknown_position_is_zero(self, ledger, locations, items):
        stock = ledger.get_stock(locations["store"].id, items["rice"].id)
        assert stock.on_hand == Decimal("0")
        assert stock.wac == Decimal("0")
        assert stock.value == Decimal("0.00")

    def test_location_stock_value(self, ledger, stock_up, locations, items):
        stock_up(locations["kitchen"], items["flour"], 100, "15.00")
        stock_up(locations["kitchen"], items["rice"], 3, "3.333")
        stock_up(locations["store"], items["oil"], 10, "12.00")

        assert ledger.location_stock_value(locations["kitchen"].id) == Decimal("1510.00")
        assert ledger.location_stock_value(locations["store"].id) == Decimal("120.00")
        assert len(ledger.list_location_stock(locations["kitchen"].id)) == 2

    def test_zero_rows_kept(self, db_session, ledger, stock_up, period, locations, items):
        stock_up(locations["kitchen"], items["rice"], 5, "2.00")
        ledger.issue(locations["kitchen"].id, items["rice"].id, Decimal("5"), period.id)
        db_session.commit()

        assert db_session.query(LocationStock).count() == 1
        assert ledger.list_location_stock(locations["kitchen"].id, include_zero=False) == []


class TestNoNegativeStock:

    def test_mixed_sequence_never_goes_negative(self, db_session: Session, ledger, period, locations, items):
        kitchen, flour = locations["kitchen"].id, items["flour"].id
        operations = [
            ("receive", "10", "4.00"),
            ("issue", "4", None),
            ("issue", "7", None),
            ("receive", "2.5", "6.00"),
            ("issue", "8.5", None),
            ("issue", "0.0001", None),
            ("receive", "1", "1.00"),
        ]

        rejected = 0
        for operation, quantity, price in operations:
            before = ledger.get_stock(kitchen, flour)
            try:
                if operation == "receive":
                    ledger.receive(kitchen, flour, Decimal(quantity), Decimal(price), period.id)
                else:
                    ledger.issue(kitchen, flour, Decimal(quantity), period.id)
            except InsufficientStockError:
                rejected += 1
                after = ledger.get_stock(kitchen, flour)
                assert after.on_hand == before.on_hand
                assert after.wac == before.wac
            assert ledger.get_stock(kitchen, flour).on_hand >= 0

        assert rejected == 2
        assert ledger.get_stock(kitchen, flour).on_hand == Decimal("1")
        assert len(ledger.movement_history(kitchen, item_id=flour)) == 5


class TestStockRowCreation:

    def test_row_created_after_first_read_is_reused(self, db_session, ledger, stock_up, monkeypatch,
                                                   period, locations, items):
        """A row that appears between the locked read and the insert is picked up, not duplicated"""
        kitchen, flour = locations["kitchen"].id, items["flour"].id
        stock_up(locations["kitchen"], items["flour"], 10, "4.00")

        real_read = ledger_module.locked_stock_row
        calls = []

        def row_missing_on_first_read(db, location_id, item_id):
            calls.append((location_id, item_id))
            if len(calls) == 1:
                return None
            return real_read(db, location_id, item_id)

        monkeypatch.setattr(ledger_module, "locked_stock_row", row_missing_on_first_read)

        snapshot = ledger.receive(kitchen, flour, Decimal("10"), Decimal("6.00"), period.id)
        db_session.commit()

        assert len(calls) == 2
        assert snapshot.on_hand == Decimal("20")
        assert snapshot.wac == Decimal("5.00")
        assert db_session.query(LocationStock).count() == 1

    def test_first_receipt_creates_row(self, db_session, ledger, period, locations, items):
        ledger.receive(locations["store"].id, items["oil"].id, Decimal("3"), Decimal("12.00"), period.id)
        db_session.commit()

        row = db_session.get(LocationStock, (locations["store"].id, items["oil"].id))
        assert row.on_hand == Decimal("3")
        assert row.wac == Decimal("12.00")
