"""
End-to-End Business Workflow Tests
A month of stock activity across two locations, from opening to roll forward
"""

from datetime import date
from decimal import Decimal

from stockledger.models import AuditLog, PeriodLocation, StockMovement
from stockledger.schemas.stock import PeriodStatus, ReconciliationMode
from stockledger.services.ncr import CollectingNCRGateway
from stockledger.services.periods import PeriodCloseService, PeriodService
from stockledger.services.pob import POBService
from stockledger.services.reconciliation import ReconciliationCalculator
from stockledger.services.stock import DeliveryService, IssueService, TransferService


class TestMonthEndWorkflow:
    """Deliveries, issues and a transfer, then reconcile, close and roll forward"""

    def test_full_month(self, db_session, admin, supervisor, operator, ledger, period, locations, items):
        kitchen, store = locations["kitchen"].id, locations["store"].id
        flour, rice = items["flour"].id, items["rice"].id
        ncr = CollectingNCRGateway()

        # 1. DELIVERIES
        deliveries = DeliveryService(db_session, supervisor, ncr_gateway=ncr)
        deliveries.post_delivery(
            kitchen, period.id,
            [
                {"item_id": flour, "quantity": "100", "unit_price": "15.00"},
                {"item_id": rice, "quantity": "40", "unit_price": "8.50"},
            ],
            supplier_ref="SUP01", invoice_no="A-100", delivery_date=date(2026, 1, 3)
        )
        store_delivery = deliveries.post_delivery(
            store, period.id,
            [{"item_id": flour, "quantity": "50", "unit_price": "16.00"}],
            supplier_ref="SUP02", invoice_no="B-7", delivery_date=date(2026, 1, 4)
        )

        assert store_delivery.has_variance is True
        assert len(ncr.records) == 1
        assert ncr.records[0].variance_value == Decimal("50.00")

        # 2. ISSUE TO THE KITCHEN FLOOR
        issue = IssueService(db_session, operator).post_issue(
            kitchen, period.id, [{"item_id": flour, "quantity": "30"}], issue_date=date(2026, 1, 10)
        )
        assert issue.total_value == Decimal("450.00")

        # 3. TRANSFER STORE -> KITCHEN
        transfers = TransferService(db_session, supervisor)
        transfer = transfers.request_transfer(
            store, kitchen, period.id, [{"item_id": flour, "quantity": "20"}], transfer_date=date(2026, 1, 12)
        )
        transfers.approve_transfer(transfer.id)

        kitchen_flour = ledger.get_stock(kitchen, flour)
        assert kitchen_flour.on_hand == Decimal("90")
        assert kitchen_flour.display_wac == Decimal("15.22")
        assert ledger.get_stock(store, flour).on_hand == Decimal("30")
        assert ledger.get_stock(store, flour).wac == Decimal("16.00")

        # 4. PERSONS ON BOARD
        POBService(db_session, supervisor).record_entries(kitchen, period.id, [
            {"entry_date": date(2026, 1, day), "crew_count": 8, "extra_count": 2}
            for day in range(1, 11)
        ])

        # 5. RECONCILIATION
        calculator = ReconciliationCalculator(db_session, supervisor)
        kitchen_recon = calculator.save_adjustments(kitchen, period.id, {"credits": "50"})
        store_recon = calculator.save_adjustments(store, period.id, {})

        figures = kitchen_recon.display()
        assert figures["receipts"] == Decimal("1840.00")
        assert figures["transfers_in"] == Decimal("320.00")
        assert figures["issues"] == Decimal("450.00")
        assert figures["closing_stock"] == Decimal("1710.00")
        assert figures["consumption"] == Decimal("50.00")
        assert figures["total_mandays"] == 100
        assert figures["manday_cost"] == Decimal("0.50")

        assert store_recon.display()["transfers_out"] == Decimal("320.00")
        assert store_recon.display()["closing_stock"] == Decimal("480.00")

        # 6. CLOSE
        closer = PeriodCloseService(db_session, admin)
        closer.request_close(period.id)
        result = closer.execute_close(period.id)

        assert result.period_status == PeriodStatus.CLOSED
        assert {s.location_id: s.closing_value for s in result.locations} == {
            kitchen: Decimal("1710.00"),
            store: Decimal("480.00"),
        }
        frozen = calculator.calculate(kitchen, period.id)
        assert frozen.mode == ReconciliationMode.FROZEN
        assert frozen.manday_cost.quantize(Decimal("0.01")) == Decimal("0.50")

        # 7. ROLL FORWARD
        february = PeriodService(db_session, admin).roll_forward(
            period.id, "February 2026", date(2026, 2, 1), date(2026, 2, 28)
        )
        assert db_session.get(PeriodLocation, (february.id, kitchen)).opening_value == Decimal("1710.00")
        assert db_session.get(PeriodLocation, (february.id, store)).opening_value == Decimal("480.00")

        next_month = calculator.calculate(kitchen, february.id)
        assert next_month.opening_stock == Decimal("1710.00")
        assert next_month.consumption == Decimal("0.00")

        # 8. AUDIT TRAIL
        actions = {row.audit_action for row in db_session.query(AuditLog).all()}
        assert {
            "PERIOD_OPENED", "PERIOD_PRICE_SET", "DELIVERY_POSTED", "ISSUE_POSTED",
            "TRANSFER_REQUESTED", "TRANSFER_APPROVED", "POB_SAVED", "ADJUSTMENTS_SAVED",
            "CLOSE_REQUESTED", "LOCATION_CLOSED", "PERIOD_ROLLED_FORWARD",
        } <= actions

    def test_movement_history_matches_stock(self, db_session, supervisor, operator, ledger, period, locations, items):
        """Every movement keeps the balance it left behind"""
        kitchen, flour = locations["kitchen"].id, items["flour"].id

        DeliveryService(db_session, supervisor).post_delivery(
            kitchen, period.id, [{"item_id": flour, "quantity": "10", "unit_price": "10.00"}]
        )
        DeliveryService(db_session, supervisor).post_delivery(
            kitchen, period.id, [{"item_id": flour, "quantity": "10", "unit_price": "20.00"}]
        )
        IssueService(db_session, operator).post_issue(kitchen, period.id, [{"item_id": flour, "quantity": "5"}])

        history = ledger.movement_history(kitchen, flour, period.id)
        assert [m.kind for m in history] == ["RECEIPT", "RECEIPT", "ISSUE"]
        assert [m.wac_after for m in history] == [Decimal("10"), Decimal("15"), Decimal("15")]
        assert history[-1].on_hand_after == ledger.get_stock(kitchen, flour).on_hand == Decimal("15")
        assert history[-1].value == Decimal("75.00")

        posted = db_session.query(StockMovement).filter(StockMovement.status == "POSTED").count()
        assert posted == 3
