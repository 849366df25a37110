"""
Tests for FIFO stock planning.

Covers:
- Earliest-expiry-first ordering, no-expiry records last
- Creation-order ordering for glassware
- Single-record fast path and multi-record drain
- Shortfall reporting
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from lab_engines.fifo import StockCandidate, order_candidates, plan_fifo


def candidate(quantity, expiry=None, order_key=0, lot_code=""):
    return StockCandidate(
        record_id=uuid4(),
        quantity=Decimal(str(quantity)),
        expiry_date=expiry,
        lot_code=lot_code,
        order_key=order_key,
    )


class TestOrdering:
    def test_earliest_expiry_first(self):
        late = candidate(10, date(2025, 9, 1), order_key=0)
        early = candidate(10, date(2025, 6, 1), order_key=1)

        assert order_candidates([late, early]) == [early, late]

    def test_records_without_expiry_go_last(self):
        undated = candidate(10, None, order_key=0)
        dated = candidate(10, date(2030, 1, 1), order_key=1)

        assert order_candidates([undated, dated]) == [dated, undated]

    def test_creation_order_when_expiry_ignored(self):
        first = candidate(10, date(2025, 9, 1), order_key=0)
        second = candidate(10, date(2025, 6, 1), order_key=1)

        assert order_candidates([second, first], by_expiry=False) == [first, second]


class TestPlanning:
    def test_single_record_covers_amount(self):
        a = candidate(50, date(2025, 6, 1))
        b = candidate(30, date(2025, 9, 1))

        plan = plan_fifo(candidates=[a, b], amount=Decimal("20"))

        assert [t.record_id for t in plan.takes] == [a.record_id]
        assert plan.takes[0].amount == Decimal("20")
        assert plan.is_satisfied

    def test_drains_in_order_across_records(self):
        a = candidate(50, date(2025, 6, 1), lot_code="A")
        b = candidate(30, date(2025, 9, 1), lot_code="B")

        plan = plan_fifo(candidates=[b, a], amount=Decimal("60"))

        assert [(t.lot_code, t.amount) for t in plan.takes] == [
            ("A", Decimal("50")),
            ("B", Decimal("10")),
        ]
        assert plan.total_taken == Decimal("60")
        assert plan.shortfall == Decimal("0")

    def test_empty_records_are_skipped(self):
        empty = candidate(0, date(2025, 1, 1))
        full = candidate(5, date(2025, 2, 1))

        plan = plan_fifo(candidates=[empty, full], amount=Decimal("5"))

        assert [t.record_id for t in plan.takes] == [full.record_id]

    def test_shortfall_reported(self):
        plan = plan_fifo(
            candidates=[candidate(10), candidate(5, order_key=1)],
            amount=Decimal("20"),
        )

        assert not plan.is_satisfied
        assert plan.available == Decimal("15")
        assert plan.total_taken == Decimal("15")
        assert plan.shortfall == Decimal("5")

    def test_exact_total_is_satisfied(self):
        plan = plan_fifo(
            candidates=[candidate(10), candidate(15, order_key=1)],
            amount=Decimal("25"),
        )

        assert plan.is_satisfied

    @pytest.mark.parametrize("amount", ["0", "-1"])
    def test_non_positive_amount_rejected(self, amount):
        with pytest.raises(ValueError):
            plan_fifo(candidates=[candidate(10)], amount=Decimal(amount))
