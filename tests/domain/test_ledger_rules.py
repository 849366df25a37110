"""
Tests for ledger movement validation and direction classification.
"""

from decimal import Decimal

import pytest

from lab_kernel.domain.ledger_rules import direction_for, validate_movement
from lab_kernel.domain.values import TransactionDirection, TransactionType
from lab_kernel.exceptions import LedgerEntryValidationError

ONE = Decimal("1")


class TestDirection:
    @pytest.mark.parametrize(
        "tx_type, direction",
        [
            ("entry", TransactionDirection.IN),
            ("return", TransactionDirection.IN),
            ("allocation", TransactionDirection.OUT),
            ("issue", TransactionDirection.OUT),
            ("broken", TransactionDirection.OUT),
            ("maintenance", TransactionDirection.OUT),
            ("transfer", TransactionDirection.TRANSFER),
        ],
    )
    def test_every_type_classified(self, tx_type, direction):
        assert direction_for(tx_type) == direction


class TestValidateMovement:
    def test_valid_allocation(self):
        assert (
            validate_movement("allocation", ONE, "central-store", "lab-1")
            == TransactionType.ALLOCATION
        )

    def test_transfer_endpoints_must_differ(self):
        with pytest.raises(LedgerEntryValidationError):
            validate_movement("transfer", ONE, "lab-1", "lab-1")

    def test_transfer_needs_both_endpoints(self):
        with pytest.raises(LedgerEntryValidationError):
            validate_movement("transfer", ONE, "lab-1", None)

    def test_allocation_needs_destination(self):
        with pytest.raises(LedgerEntryValidationError):
            validate_movement("allocation", ONE, "central-store", None)

    def test_return_needs_source(self):
        with pytest.raises(LedgerEntryValidationError):
            validate_movement("return", ONE, None, "central-store")

    def test_entry_needs_destination(self):
        with pytest.raises(LedgerEntryValidationError):
            validate_movement("entry", ONE, None, None)

    @pytest.mark.parametrize("tx_type", ["broken", "maintenance"])
    def test_loss_needs_reason(self, tx_type):
        with pytest.raises(LedgerEntryValidationError):
            validate_movement(tx_type, ONE, "central-store", None, reason="  ")

        assert validate_movement(tx_type, ONE, "central-store", None, reason="cracked")

    @pytest.mark.parametrize("quantity", [Decimal("0"), Decimal("-2")])
    def test_quantity_must_be_positive(self, quantity):
        with pytest.raises(LedgerEntryValidationError):
            validate_movement("entry", quantity, None, "central-store")

    def test_unknown_type(self):
        with pytest.raises(LedgerEntryValidationError) as exc_info:
            validate_movement("theft", ONE, "a", "b")

        assert exc_info.value.code == "LEDGER_ENTRY_INVALID"

    def test_unknown_condition(self):
        with pytest.raises(LedgerEntryValidationError):
            validate_movement("entry", ONE, None, "central-store", condition="soggy")
