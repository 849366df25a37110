"""
Tests for LedgerSelector history queries.
"""

from datetime import date
from decimal import Decimal

import pytest

from lab_kernel.domain.values import TransactionType
from tests.builders import CENTRAL, LAB, allocate_cmd, chemical, return_cmd


@pytest.fixture
def movements(
    receive_stock, make_request, allocation_service, return_service, assistant, faculty,
    deterministic_clock,
):
    """Entry on day 0, allocation on day 1, return on day 2."""
    receive_stock("ethanol", 20, lot_code="A")
    receive_stock("acetone", 5)
    line = make_request(chemical("ethanol", 10)).experiments[0].item_lines[0]
    deterministic_clock.advance_days(1)
    allocation_service.allocate(allocate_cmd(line, assistant, 10))
    deterministic_clock.advance_days(1)
    return_service.return_items(return_cmd(line, faculty, 3))
    return line


class TestHistory:
    def test_ledger_order(self, movements, ledger_selector):
        entries = ledger_selector.history(product_id="ethanol")

        assert [e.transaction_type for e in entries] == ["entry", "allocation", "return"]
        assert [e.seq for e in entries] == sorted(e.seq for e in entries)
        assert ledger_selector.count() == 4

    def test_location_matches_either_endpoint_and_custody(self, movements, ledger_selector):
        at_lab = ledger_selector.history(location=LAB)

        assert [e.transaction_type for e in at_lab] == ["allocation", "return"]
        assert at_lab[1].custody_location == LAB
        assert at_lab[1].to_location == CENTRAL

    def test_date_range_is_inclusive(self, movements, ledger_selector):
        day_one = date(2025, 3, 11)

        only_day_one = ledger_selector.history(start=day_one, end=day_one)
        from_day_one = ledger_selector.history(start=day_one)

        assert [e.transaction_type for e in only_day_one] == ["allocation"]
        assert [e.transaction_type for e in from_day_one] == ["allocation", "return"]

    def test_transaction_type_filter(self, movements, ledger_selector):
        (entry,) = ledger_selector.history(transaction_type=TransactionType.RETURN)

        assert entry.quantity == Decimal("3")
        assert entry.direction == "in"

    def test_unknown_transaction_type(self, movements, ledger_selector):
        with pytest.raises(ValueError):
            ledger_selector.history(transaction_type="gift")

    def test_item_line_filter(self, movements, ledger_selector):
        entries = ledger_selector.history(item_line_id=movements.id)

        assert {e.transaction_type for e in entries} == {"allocation", "return"}
        assert all(e.request_id is not None for e in entries)

    def test_equipment_unit_filter(
        self, movements, register_units, stock_service, admin, ledger_selector
    ):
        first, second = register_units("microscope", "MIC-1", "MIC-2")
        stock_service.transfer_equipment("MIC-1", LAB, admin.actor_id)

        entries = ledger_selector.history(equipment_unit_id=first.id)

        assert [e.transaction_type for e in entries] == ["entry", "transfer"]
        assert all(e.equipment_unit_id == first.id for e in entries)
        assert len(ledger_selector.history(equipment_unit_id=second.id)) == 1
