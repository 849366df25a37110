"""
Property-based conservation tests.

Random stock layouts and random allocate/return sequences must never
create or destroy stock:
- FIFO plans take exactly min(requested, available) and never overdraw
- central + lab holdings always equal what was received
- the lab holding always equals what is allocated on the line
- the cached allocated amount always equals allocation history
- the ledger replay agrees with stock records after every sequence
"""

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st
from hypothesis.strategies import composite

from lab_engines.fifo import StockCandidate, order_candidates, plan_fifo
from lab_kernel.domain.values import ItemKind
from tests.builders import CENTRAL, LAB, allocate_cmd, chemical, return_cmd

SERVICE_SETTINGS = settings(
    max_examples=25,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
)


@composite
def candidates(draw):
    """1-5 stock records, some without expiry."""
    count = draw(st.integers(min_value=1, max_value=5))
    return [
        StockCandidate(
            record_id=uuid4(),
            quantity=Decimal(draw(st.integers(min_value=0, max_value=100))),
            expiry_date=draw(
                st.one_of(st.none(), st.dates(min_value=date(2025, 1, 1), max_value=date(2026, 12, 31)))
            ),
            lot_code=f"L{position}",
            order_key=position,
        )
        for position in range(count)
    ]


@composite
def lots(draw):
    """Lot quantities and optional expiry offsets for one product."""
    count = draw(st.integers(min_value=1, max_value=3))
    return [
        (
            draw(st.integers(min_value=1, max_value=40)),
            draw(st.one_of(st.none(), st.integers(min_value=30, max_value=400))),
        )
        for _ in range(count)
    ]


operations = st.lists(
    st.tuples(st.sampled_from(["allocate", "return"]), st.integers(min_value=1, max_value=30)),
    min_size=1,
    max_size=8,
)


class TestFifoPlanProperties:
    @given(candidates(), st.integers(min_value=1, max_value=600), st.booleans())
    @settings(max_examples=200)
    def test_takes_cover_min_of_requested_and_available(self, pool, amount, by_expiry):
        plan = plan_fifo(candidates=pool, amount=Decimal(amount), by_expiry=by_expiry)

        available = sum(c.quantity for c in pool)
        assert plan.total_taken == min(Decimal(amount), available)
        assert plan.is_satisfied == (available >= amount)

        quantities = {c.record_id: c.quantity for c in pool}
        for take in plan.takes:
            assert 0 < take.amount <= quantities[take.record_id]

    @given(candidates(), st.integers(min_value=1, max_value=600), st.booleans())
    @settings(max_examples=200)
    def test_records_drained_in_order(self, pool, amount, by_expiry):
        plan = plan_fifo(candidates=pool, amount=Decimal(amount), by_expiry=by_expiry)

        ordered = [c for c in order_candidates(pool, by_expiry) if c.quantity > 0]
        taken = [t.record_id for t in plan.takes]
        assert taken == [c.record_id for c in ordered[: len(taken)]]
        # Every take but the last empties its record.
        for take, candidate in zip(plan.takes[:-1], ordered):
            assert take.amount == candidate.quantity


class TestAllocationConservation:
    @given(layout=lots(), requested=st.integers(min_value=1, max_value=60), ops=operations)
    @SERVICE_SETTINGS
    def test_stock_is_conserved(
        self, layout, requested, ops, receive_stock, make_request, allocation_service,
        return_service, stock_selector, reconciliation_service, assistant, faculty,
    ):
        product_id = f"chem-{uuid4().hex[:12]}"
        received = Decimal(0)
        for position, (quantity, expiry_offset) in enumerate(layout):
            expiry = date(2025, 3, 10) + timedelta(days=expiry_offset) if expiry_offset else None
            receive_stock(product_id, quantity, lot_code=f"L{position}", expiry_date=expiry)
            received += quantity
        line = make_request(chemical(product_id, requested)).experiments[0].item_lines[0]

        for operation, amount in ops:
            if operation == "allocate":
                allocation_service.allocate(allocate_cmd(line, assistant, amount))
            else:
                return_service.return_items(return_cmd(line, faculty, amount))

            central = stock_selector.available_quantity(ItemKind.CHEMICAL, product_id, "", CENTRAL)
            lab = stock_selector.available_quantity(ItemKind.CHEMICAL, product_id, "", LAB)
            history = sum((s.outstanding for s in line.outstanding_sources()), Decimal(0))

            assert central + lab == received
            assert lab == line.allocated_quantity
            assert line.allocated_quantity == history
            assert 0 <= line.allocated_quantity <= line.quantity
            assert line.is_allocated == (line.allocated_quantity > 0)

        assert reconciliation_service.reconcile_stock() == []
