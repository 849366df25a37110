"""
Module: lab_engines.fifo
Responsibility:
    Decide which stock records an allocation draws from, and how much from
    each.  Chemicals are consumed earliest-expiry first; records with no
    expiry come last.  Glassware (and chemicals when expiry ordering is
    switched off) is consumed in creation order.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The plan is executed by
    the quantity-pool strategy through guarded decrements.

Invariants enforced:
    - Conservation: sum(take.amount) == min(requested, total available).
    - FIFO: a record is touched only after every earlier record in the
      ordering has been taken to zero.
    - No take is zero or exceeds its record's quantity.

Failure modes:
    - ValueError on a non-positive requested amount.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from lab_engines.tracer import traced_engine
from lab_kernel.domain.values import ZERO


@dataclass(frozen=True)
class StockCandidate:
    """A stock record eligible to supply an allocation."""

    record_id: UUID
    quantity: Decimal
    expiry_date: date | None = None
    lot_code: str = ""
    order_key: int = 0  # creation order tie-breaker


@dataclass(frozen=True)
class Take:
    """Amount to draw from one record."""

    record_id: UUID
    amount: Decimal
    expiry_date: date | None = None
    lot_code: str = ""


@dataclass(frozen=True)
class FifoPlan:
    """
    Result of planning an allocation across records.

    Guarantees:
        - ``total_taken + shortfall == requested``.
    """

    requested: Decimal
    takes: tuple[Take, ...]
    available: Decimal

    @property
    def total_taken(self) -> Decimal:
        return sum((t.amount for t in self.takes), ZERO)

    @property
    def shortfall(self) -> Decimal:
        return self.requested - self.total_taken

    @property
    def is_satisfied(self) -> bool:
        return self.shortfall == 0


def order_candidates(
    candidates: Sequence[StockCandidate],
    by_expiry: bool = True,
) -> list[StockCandidate]:
    """Consumption order: expiry (None last) then creation order, or creation order."""
    if by_expiry:
        return sorted(
            candidates,
            key=lambda c: (
                c.expiry_date is None,
                c.expiry_date or date.max,
                c.order_key,
                c.lot_code,
            ),
        )
    return sorted(candidates, key=lambda c: (c.order_key, c.lot_code))


@traced_engine("fifo", "1.0", fingerprint_fields=("amount", "by_expiry"))
def plan_fifo(
    *,
    candidates: Sequence[StockCandidate],
    amount: Decimal,
    by_expiry: bool = True,
) -> FifoPlan:
    """
    Plan takes covering ``amount`` in consumption order.

    When the earliest record covers the whole amount it is the only take;
    otherwise records are drained in order until the amount is covered or
    stock runs out (the plan then reports a shortfall and callers reject).
    """
    if amount <= 0:
        raise ValueError("Requested amount must be positive")

    usable = [c for c in candidates if c.quantity > 0]
    available = sum((c.quantity for c in usable), ZERO)

    takes: list[Take] = []
    remaining = amount
    for candidate in order_candidates(usable, by_expiry):
        if remaining <= 0:
            break
        take = min(candidate.quantity, remaining)
        takes.append(
            Take(
                record_id=candidate.record_id,
                amount=take,
                expiry_date=candidate.expiry_date,
                lot_code=candidate.lot_code,
            )
        )
        remaining -= take

    return FifoPlan(requested=amount, takes=tuple(takes), available=available)
