"""
Tests for ReconciliationService.

The ledger replay must agree with stock records after any mix of
movements; tampering with either side is reported, and item-line caches
that drifted from allocation history are repaired.
"""

from datetime import date
from decimal import Decimal
from types import SimpleNamespace

from sqlalchemy import update

from lab_kernel.domain.values import TransactionType
from lab_kernel.models.stock import StockRecord
from lab_kernel.services.reconciliation_service import replay_deltas
from tests.builders import CENTRAL, LAB, allocate_cmd, chemical, equipment, return_cmd


class TestReplay:
    def test_return_drains_custody_and_credits_origin(self):
        entry = SimpleNamespace(
            transaction_type=TransactionType.RETURN.value,
            item_kind="chemical",
            product_id="ethanol",
            variant="",
            lot_code="A",
            quantity=Decimal("4"),
            from_location="faculty",
            to_location=CENTRAL,
            custody_location=LAB,
        )

        balances = replay_deltas([entry])

        assert balances == {
            ("chemical", "ethanol", "", CENTRAL, "A"): Decimal("4"),
            ("chemical", "ethanol", "", LAB, "A"): Decimal("-4"),
        }


class TestStockReconciliation:
    def test_clean_after_mixed_movements(
        self, receive_stock, register_units, make_request, stock_service, allocation_service,
        return_service, reconciliation_service, admin, assistant, faculty,
    ):
        receive_stock("ethanol", 50, lot_code="A", expiry_date=date(2025, 6, 1))
        receive_stock("ethanol", 30, lot_code="B", expiry_date=date(2025, 9, 1))
        beakers = receive_stock("beaker-250", 20, lot_code="G1", item_kind="glassware")
        register_units("microscope", "MIC-1", "MIC-2")
        request = make_request(chemical("ethanol", 60), equipment("microscope", 1))
        ethanol, microscope = request.experiments[0].item_lines

        allocation_service.allocate(allocate_cmd(ethanol, assistant, 60))
        allocation_service.allocate(allocate_cmd(microscope, assistant, 1))
        return_service.return_items(return_cmd(ethanol, faculty, 15))
        stock_service.transfer(beakers.id, LAB, Decimal("5"), admin.actor_id)
        stock_service.record_loss(beakers.id, Decimal("1"), "broken", "cracked", admin.actor_id)
        stock_service.issue(beakers.id, Decimal("2"), admin.actor_id)

        report = reconciliation_service.reconcile()

        assert report.is_clean

    def test_tampered_record_reported(
        self, receive_stock, session, reconciliation_service
    ):
        record = receive_stock("ethanol", 10, lot_code="A")
        session.execute(
            update(StockRecord).where(StockRecord.id == record.id).values(quantity=Decimal("12"))
        )
        session.expire_all()

        (mismatch,) = reconciliation_service.reconcile_stock()

        assert mismatch.location == CENTRAL
        assert mismatch.lot_code == "A"
        assert mismatch.recorded_quantity == 12
        assert mismatch.ledger_quantity == 10
        assert mismatch.difference == 2

    def test_mismatch_is_not_repaired(self, receive_stock, session, reconciliation_service):
        record = receive_stock("ethanol", 10)
        session.execute(
            update(StockRecord).where(StockRecord.id == record.id).values(quantity=Decimal("7"))
        )
        session.expire_all()

        reconciliation_service.reconcile()

        assert session.get(StockRecord, record.id).quantity == 7
        assert len(reconciliation_service.reconcile_stock()) == 1


class TestItemLineReconciliation:
    def test_drifted_cache_repaired(
        self, receive_stock, make_request, allocation_service, reconciliation_service, assistant
    ):
        receive_stock("ethanol", 50)
        request = make_request(chemical("ethanol", 10))
        line = request.experiments[0].item_lines[0]
        allocation_service.allocate(allocate_cmd(line, assistant, 6))
        line.allocated_quantity = Decimal("3")

        (drift,) = reconciliation_service.reconcile_item_lines()

        assert drift.item_line_id == line.id
        assert drift.cached_quantity == 3
        assert drift.history_quantity == 6
        assert drift.repaired
        assert line.allocated_quantity == 6
        assert line.is_allocated

    def test_report_only(
        self, receive_stock, make_request, allocation_service, reconciliation_service, assistant
    ):
        receive_stock("ethanol", 50)
        line = make_request(chemical("ethanol", 10)).experiments[0].item_lines[0]
        allocation_service.allocate(allocate_cmd(line, assistant, 6))
        line.is_allocated = False

        (drift,) = reconciliation_service.reconcile_item_lines(repair=False)

        assert not drift.repaired
        assert not line.is_allocated

    def test_scoped_to_one_request(
        self, receive_stock, make_request, allocation_service, reconciliation_service, assistant
    ):
        receive_stock("ethanol", 50)
        first = make_request(chemical("ethanol", 10))
        second = make_request(chemical("ethanol", 10))
        first_line = first.experiments[0].item_lines[0]
        second_line = second.experiments[0].item_lines[0]
        allocation_service.allocate(allocate_cmd(first_line, assistant, 5))
        allocation_service.allocate(allocate_cmd(second_line, assistant, 5))
        first_line.allocated_quantity = Decimal("1")
        second_line.allocated_quantity = Decimal("1")

        drift = reconciliation_service.reconcile_item_lines(request_id=second.id)

        assert [d.item_line_id for d in drift] == [second_line.id]
        assert first_line.allocated_quantity == 1
