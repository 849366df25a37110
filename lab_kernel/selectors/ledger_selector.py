"""
Module: lab_kernel.selectors.ledger_selector
Responsibility: Ledger history for reporting collaborators, per product or
    per location, filterable by date range and transaction type.
Architecture position: Kernel > Selectors.  Read-only.

Invariants enforced:
    - History is returned in ledger order (``seq``), which is creation order.
    - A location filter matches either endpoint of a movement, and the
      holding a return drained.

Audit relevance:
    The ledger is the audit trail; this is its only read path.
"""

from datetime import date, datetime, time, timedelta, timezone
from uuid import UUID

from sqlalchemy import func, or_, select

from lab_kernel.domain.dtos import LedgerEntryView
from lab_kernel.domain.values import TransactionType
from lab_kernel.models.ledger import LedgerEntry
from lab_kernel.selectors.base import BaseSelector


def _start_of(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def to_view(entry: LedgerEntry) -> LedgerEntryView:
    return LedgerEntryView(
        entry_id=entry.id,
        seq=entry.seq,
        transaction_type=entry.transaction_type,
        direction=entry.direction.value,
        item_kind=entry.item_kind,
        product_id=entry.product_id,
        variant=entry.variant,
        lot_code=entry.lot_code,
        quantity=entry.quantity,
        from_location=entry.from_location,
        to_location=entry.to_location,
        custody_location=entry.custody_location,
        condition=entry.condition,
        reason=entry.reason,
        occurred_at=entry.occurred_at,
        created_by_id=entry.created_by_id,
        request_id=entry.request_id,
        item_line_id=entry.item_line_id,
        equipment_unit_id=entry.equipment_unit_id,
    )


class LedgerSelector(BaseSelector[LedgerEntry]):
    """Read-only ledger history."""

    def history(
        self,
        product_id: str | None = None,
        location: str | None = None,
        start: date | None = None,
        end: date | None = None,
        transaction_type: TransactionType | str | None = None,
        item_line_id: UUID | None = None,
        equipment_unit_id: UUID | None = None,
    ) -> list[LedgerEntryView]:
        """
        Ledger entries matching every given filter, ordered by ``seq``.

        ``start`` and ``end`` are inclusive calendar days (UTC).
        """
        stmt = select(LedgerEntry)
        if product_id is not None:
            stmt = stmt.where(LedgerEntry.product_id == product_id)
        if location is not None:
            stmt = stmt.where(
                or_(
                    LedgerEntry.from_location == location,
                    LedgerEntry.to_location == location,
                    LedgerEntry.custody_location == location,
                )
            )
        if start is not None:
            stmt = stmt.where(LedgerEntry.occurred_at >= _start_of(start))
        if end is not None:
            stmt = stmt.where(LedgerEntry.occurred_at < _start_of(end + timedelta(days=1)))
        if transaction_type is not None:
            stmt = stmt.where(
                LedgerEntry.transaction_type == TransactionType(transaction_type).value
            )
        if item_line_id is not None:
            stmt = stmt.where(LedgerEntry.item_line_id == item_line_id)
        if equipment_unit_id is not None:
            stmt = stmt.where(LedgerEntry.equipment_unit_id == equipment_unit_id)
        stmt = stmt.order_by(LedgerEntry.seq)
        return [to_view(entry) for entry in self.session.execute(stmt).scalars()]

    def count(self) -> int:
        return self.session.execute(select(func.count(LedgerEntry.id))).scalar_one()
