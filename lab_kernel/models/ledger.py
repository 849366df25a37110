"""
Ledger model: the append-only movement log.

Responsibility:
    One row per quantity movement (entry, issue, allocation, transfer,
    return, broken, maintenance).  Rows are ordered by ``seq`` and are
    the audit trail that Stock Record deltas must agree with.

Architecture position:
    Kernel > Models.  Written only by LedgerWriter; read by LedgerSelector
    and ReconciliationService.

Invariants enforced:
    - Immutable after INSERT (db/immutability.py listeners).
    - ``seq`` is unique and strictly increasing (SequenceService).
    - Movement rules are checked before construction
      (domain/ledger_rules.py).

Audit relevance:
    ``custody_location`` records which holding a return drained, so the
    ledger can be replayed into per-location quantities without guessing.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import BigInteger, DateTime, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from lab_kernel.db.base import TrackedBase, UUIDString
from lab_kernel.domain.ledger_rules import direction_for
from lab_kernel.domain.values import (
    Condition,
    ItemKind,
    TransactionDirection,
    TransactionType,
)


class LedgerEntry(TrackedBase):
    """
    A single immutable stock movement.

    Contract:
        ``from_location`` / ``to_location`` hold a central store code, a
        lab code, or the symbolic faculty location.  ``stock_record_id``
        or ``equipment_unit_id`` points at the stock the movement touched.

    Guarantees:
        - Never updated or deleted once flushed.
    """

    __tablename__ = "ledger_entries"

    __table_args__ = (
        UniqueConstraint("seq", name="uq_ledger_entry_seq"),
        Index("idx_ledger_product", "product_id", "variant"),
        Index("idx_ledger_from_location", "from_location"),
        Index("idx_ledger_to_location", "to_location"),
        Index("idx_ledger_occurred_at", "occurred_at"),
        Index("idx_ledger_item_line", "item_line_id"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False)

    transaction_type: Mapped[TransactionType] = mapped_column(String(20), nullable=False)

    item_kind: Mapped[ItemKind] = mapped_column(String(20), nullable=False)

    product_id: Mapped[str] = mapped_column(String(100), nullable=False)

    variant: Mapped[str] = mapped_column(String(100), nullable=False, default="")

    unit: Mapped[str] = mapped_column(String(20), nullable=False, default="")

    lot_code: Mapped[str] = mapped_column(String(100), nullable=False, default="")

    quantity: Mapped[Decimal] = mapped_column(nullable=False)

    from_location: Mapped[str | None] = mapped_column(String(100), nullable=True)

    to_location: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Holding drained by a return (the symbolic faculty side is at this lab)
    custody_location: Mapped[str | None] = mapped_column(String(100), nullable=True)

    condition: Mapped[Condition] = mapped_column(
        String(20), nullable=False, default=Condition.GOOD.value
    )

    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    stock_record_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    equipment_unit_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    request_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    item_line_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    # Business timestamp from the injected clock
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry #{self.seq} {self.transaction_type} {self.quantity} "
            f"{self.from_location}->{self.to_location}>"
        )

    @property
    def direction(self) -> TransactionDirection:
        return direction_for(self.transaction_type)
