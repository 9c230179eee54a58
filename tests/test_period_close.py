"""
Tests for period management and the period close
"""

import pytest
from datetime import date
from decimal import Decimal

from stockledger.core.exceptions import (
    ClosePreconditionError, InvalidPeriodStateError, PeriodClosedError,
    PermissionDeniedError
)
from stockledger.models import Period, PeriodLocation, Reconciliation
from stockledger.schemas.stock import PeriodStatus, ReconciliationMode
from stockledger.services.periods import PeriodCloseService, PeriodService
from stockledger.services.reconciliation import ReconciliationCalculator
from stockledger.services.stock import TransferService

FEBRUARY_START = date(2026, 2, 1)
FEBRUARY_END = date(2026, 2, 28)


@pytest.fixture
def closer(db_session, admin):
    return PeriodCloseService(db_session, admin)


@pytest.fixture
def calculator(db_session, supervisor):
    return ReconciliationCalculator(db_session, supervisor)


@pytest.fixture
def saved_everywhere(calculator, period, locations):
    """Save a reconciliation for every location of the period"""
    for location in locations.values():
        calculator.save_adjustments(location.id, period.id, {"credits": "100"})


def status_of(db_session, period, location):
    return db_session.get(PeriodLocation, (period.id, location.id)).status


class TestPeriodService:

    def test_open_period(self, db_session, period, locations):
        assert period.status == PeriodStatus.OPEN.value
        assert {pl.location_id for pl in period.period_locations} == {loc.id for loc in locations.values()}
        assert PeriodService(db_session).get_period_location_status(period.id, locations["kitchen"].id) == PeriodStatus.OPEN

    def test_overlapping_period_rejected(self, db_session, admin, period, locations):
        with pytest.raises(InvalidPeriodStateError):
            PeriodService(db_session, admin).open_period(
                "Mid January", date(2026, 1, 15), date(2026, 2, 15), [locations["kitchen"].id]
            )

    def test_end_before_start_rejected(self, db_session, admin, locations):
        with pytest.raises(InvalidPeriodStateError):
            PeriodService(db_session, admin).open_period(
                "Backwards", date(2026, 3, 31), date(2026, 3, 1), [locations["kitchen"].id]
            )

    def test_item_price(self, db_session, admin, period, items):
        service = PeriodService(db_session, admin)
        assert service.get_item_price(period.id, items["flour"].id) == Decimal("15.00")

        service.set_item_price(period.id, items["flour"].id, "15.25")
        assert service.get_item_price(period.id, items["flour"].id) == Decimal("15.25")

    def test_roll_forward_requires_closed_period(self, db_session, admin, period):
        with pytest.raises(InvalidPeriodStateError):
            PeriodService(db_session, admin).roll_forward(period.id, "February 2026", FEBRUARY_START, FEBRUARY_END)


class TestRequestClose:

    def test_reports_every_failing_location(self, db_session, closer, period, locations):
        with pytest.raises(ClosePreconditionError) as exc_info:
            closer.request_close(period.id)

        failing = exc_info.value.failing_locations
        assert failing == sorted([locations["kitchen"].id, locations["store"].id])
        assert all(f["reason"] == "RECONCILIATION_NOT_SAVED" for f in exc_info.value.failures)
        assert status_of(db_session, period, locations["kitchen"]) == "OPEN"

    def test_pending_transfer_blocks_both_ends(self, db_session, closer, stock_up, saved_everywhere, supervisor,
                                               period, locations, items):
        stock_up(locations["kitchen"], items["flour"], 10, "15.00")
        TransferService(db_session, supervisor).request_transfer(
            locations["kitchen"].id, locations["store"].id, period.id,
            [{"item_id": items["flour"].id, "quantity": "5"}]
        )

        with pytest.raises(ClosePreconditionError) as exc_info:
            closer.request_close(period.id)

        reasons = {(f["location_id"], f["reason"]) for f in exc_info.value.failures}
        assert reasons == {
            (locations["kitchen"].id, "PENDING_TRANSFERS"),
            (locations["store"].id, "PENDING_TRANSFERS"),
        }
        assert status_of(db_session, period, locations["store"]) == "OPEN"

    def test_only_admin_closes(self, db_session, supervisor, saved_everywhere, period):
        with pytest.raises(PermissionDeniedError):
            PeriodCloseService(db_session, supervisor).request_close(period.id)

    def test_moves_every_location_to_pending(self, db_session, closer, saved_everywhere, ledger, period, locations, items):
        closer.request_close(period.id)

        assert db_session.get(Period, period.id).status == "PENDING_CLOSE"
        assert status_of(db_session, period, locations["kitchen"]) == "PENDING_CLOSE"
        assert status_of(db_session, period, locations["store"]) == "PENDING_CLOSE"

        with pytest.raises(PeriodClosedError):
            ledger.receive(locations["kitchen"].id, items["flour"].id, Decimal("1"), Decimal("15"), period.id)

    def test_cannot_request_twice(self, closer, saved_everywhere, period):
        closer.request_close(period.id)
        with pytest.raises(InvalidPeriodStateError):
            closer.request_close(period.id)


class TestExecuteClose:

    def test_requires_request_first(self, closer, saved_everywhere, period):
        with pytest.raises(InvalidPeriodStateError):
            closer.execute_close(period.id)

    def test_close_freezes_reconciliation(self, db_session, closer, calculator, stock_up, saved_everywhere,
                                          period, locations, items):
        kitchen = locations["kitchen"]
        stock_up(kitchen, items["flour"], 100, "15.00")
        stock_up(kitchen, items["rice"], 10, "8.50")

        closer.request_close(period.id)
        result = closer.execute_close(period.id)

        assert result.period_status == PeriodStatus.CLOSED
        assert sorted(result.closed_locations) == sorted(loc.id for loc in locations.values())
        assert db_session.get(Period, period.id).status == "CLOSED"

        membership = db_session.get(PeriodLocation, (period.id, kitchen.id))
        assert membership.status == "CLOSED"
        assert membership.closing_value == Decimal("1585.00")
        assert len(membership.snapshot_data["items"]) == 2
        assert membership.snapshot_data["reconciliation"]["closing_stock"] == "1585.00"

        record = db_session.query(Reconciliation).filter(Reconciliation.location_id == kitchen.id).one()
        assert record.frozen_at is not None
        assert record.receipts == Decimal("1585.00")
        assert record.closing_stock == Decimal("1585.00")
        assert record.consumption == Decimal("100.00")

        frozen = calculator.calculate(kitchen.id, period.id)
        assert frozen.mode == ReconciliationMode.FROZEN
        assert frozen.closing_stock == Decimal("1585.00")

    def test_closed_is_final(self, db_session, closer, calculator, ledger, saved_everywhere, period, locations, items):
        closer.request_close(period.id)
        closer.execute_close(period.id)
        kitchen = locations["kitchen"].id

        with pytest.raises(PeriodClosedError):
            calculator.save_adjustments(kitchen, period.id, {"credits": "1"})
        with pytest.raises(PeriodClosedError):
            ledger.receive(kitchen, items["flour"].id, Decimal("1"), Decimal("15"), period.id)
        with pytest.raises(InvalidPeriodStateError):
            closer.execute_close(period.id)

    def test_revalidates_each_location(self, db_session, closer, calculator, saved_everywhere, period, locations):
        closer.request_close(period.id)

        # Store's reconciliation disappears between request and execution
        db_session.query(Reconciliation).filter(Reconciliation.location_id == locations["store"].id).delete()
        db_session.commit()

        with pytest.raises(ClosePreconditionError) as exc_info:
            closer.execute_close(period.id)

        assert exc_info.value.failing_locations == [locations["store"].id]
        assert status_of(db_session, period, locations["kitchen"]) == "CLOSED"
        assert status_of(db_session, period, locations["store"]) == "PENDING_CLOSE"
        assert db_session.get(Period, period.id).status == "PENDING_CLOSE"

        # Fix and finish; the kitchen stays closed
        calculator.save_adjustments(locations["store"].id, period.id, {"credits": "0"})
        result = closer.execute_close(period.id)
        assert result.period_status == PeriodStatus.CLOSED
        assert status_of(db_session, period, locations["store"]) == "CLOSED"


class TestRollForward:

    def test_closing_value_becomes_opening_stock(self, db_session, admin, closer, calculator, stock_up,
                                                 saved_everywhere, period, locations, items):
        kitchen = locations["kitchen"]
        stock_up(kitchen, items["flour"], 100, "15.00")
        closer.request_close(period.id)
        closer.execute_close(period.id)

        service = PeriodService(db_session, admin)
        february = service.roll_forward(period.id, "February 2026", FEBRUARY_START, FEBRUARY_END)

        assert db_session.get(PeriodLocation, (february.id, kitchen.id)).opening_value == Decimal("1500.00")
        assert service.get_item_price(february.id, items["flour"].id) == Decimal("15.00")

        result = calculator.calculate(kitchen.id, february.id)
        assert result.mode == ReconciliationMode.DERIVED
        assert result.opening_stock == Decimal("1500.00")
        assert result.closing_stock == Decimal("1500.00")
        assert result.consumption == Decimal("0.00")

    def test_january_stays_frozen_after_february_movements(self, db_session, admin, closer, calculator, ledger,
                                                           stock_up, saved_everywhere, period, locations, items):
        kitchen = locations["kitchen"]
        stock_up(kitchen, items["flour"], 100, "15.00")
        closer.request_close(period.id)
        closer.execute_close(period.id)
        before = calculator.calculate(kitchen.id, period.id)

        february = PeriodService(db_session, admin).roll_forward(period.id, "February 2026", FEBRUARY_START, FEBRUARY_END)
        ledger.issue(kitchen.id, items["flour"].id, Decimal("40"), february.id)
        db_session.commit()

        after = calculator.calculate(kitchen.id, period.id)
        assert after.model_dump(exclude={"calculated_at"}) == before.model_dump(exclude={"calculated_at"})
        assert calculator.calculate(kitchen.id, february.id).issues == Decimal("600.00")

    def test_opening_from_previous_frozen_reconciliation(self, db_session, admin, closer, calculator, stock_up,
                                                         saved_everywhere, period, locations, items):
        """A period opened before the previous one closed picks up its closing stock"""
        kitchen = locations["kitchen"]
        stock_up(kitchen, items["rice"], 10, "8.50")
        february = PeriodService(db_session, admin).open_period(
            "February 2026", FEBRUARY_START, FEBRUARY_END, [kitchen.id]
        )
        assert db_session.get(PeriodLocation, (february.id, kitchen.id)).opening_value is None

        closer.request_close(period.id)
        closer.execute_close(period.id)

        assert calculator.calculate(kitchen.id, february.id).opening_stock == Decimal("85.00")

    def test_later_period_movements_excluded_from_closing(self, db_session, admin, closer, calculator, ledger,
                                                          stock_up, saved_everywhere, period, locations, items):
        """Receipts already posted to February do not count in January's closing stock"""
        kitchen = locations["kitchen"]
        stock_up(kitchen, items["flour"], 100, "15.00")
        february = PeriodService(db_session, admin).open_period(
            "February 2026", FEBRUARY_START, FEBRUARY_END, [kitchen.id]
        )
        ledger.receive(kitchen.id, items["flour"].id, Decimal("10"), Decimal("15.00"), february.id)
        db_session.commit()

        assert calculator.calculate(kitchen.id, period.id).closing_stock == Decimal("1500.00")

        closer.request_close(period.id)
        closer.execute_close(period.id)

        assert db_session.get(PeriodLocation, (period.id, kitchen.id)).closing_value == Decimal("1500.00")
        assert db_session.get(PeriodLocation, (february.id, kitchen.id)).opening_value == Decimal("1500.00")

        result = calculator.calculate(kitchen.id, february.id)
        assert result.opening_stock == Decimal("1500.00")
        assert result.receipts == Decimal("150.00")
        assert result.closing_stock == Decimal("1650.00")
        assert result.consumption == Decimal("0.00")
