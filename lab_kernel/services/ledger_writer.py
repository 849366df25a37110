"""
LedgerWriter -- the only writer of ledger entries.

Responsibility:
    Validates a movement against its transaction-type rules, stamps it
    with the next ledger sequence number and the injected clock time, and
    appends it.  Entries are immutable once flushed.

Architecture position:
    Kernel > Services.  Called by StockService and the item strategies
    right after the stock mutation it records has succeeded, inside the
    same transaction (or line savepoint).

Invariants enforced:
    - Movement rules (domain/ledger_rules.py) hold for every entry.
    - ``seq`` is strictly increasing (SequenceService counter row).

Failure modes:
    - LedgerEntryValidationError: rule violation; nothing is written.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from lab_kernel.domain.clock import Clock
from lab_kernel.domain.ledger_rules import validate_movement
from lab_kernel.domain.values import Condition, ItemKind, TransactionType
from lab_kernel.logging_config import get_logger
from lab_kernel.models.ledger import LedgerEntry
from lab_kernel.services.base import BaseService
from lab_kernel.services.sequence_service import SequenceService

logger = get_logger("services.ledger_writer")


class LedgerWriter(BaseService[LedgerEntry]):
    """
    Appends validated, sequenced ledger entries.

    Contract:
        ``append`` returns the flushed LedgerEntry.

    Non-goals:
        - Does not touch stock quantities; callers mutate stock first.
    """

    def __init__(self, session: Session, clock: Clock):
        super().__init__(session)
        self._clock = clock
        self._sequences = SequenceService(session)

    def append(
        self,
        *,
        transaction_type: TransactionType | str,
        item_kind: ItemKind | str,
        product_id: str,
        quantity: Decimal,
        actor_id: UUID,
        variant: str = "",
        unit: str = "",
        lot_code: str = "",
        from_location: str | None = None,
        to_location: str | None = None,
        custody_location: str | None = None,
        condition: Condition | str = Condition.GOOD,
        reason: str | None = None,
        stock_record_id: UUID | None = None,
        equipment_unit_id: UUID | None = None,
        request_id: UUID | None = None,
        item_line_id: UUID | None = None,
    ) -> LedgerEntry:
        tx_type = validate_movement(
            transaction_type,
            quantity,
            from_location,
            to_location,
            reason=reason,
            condition=condition,
        )

        entry = LedgerEntry(
            seq=self._sequences.next_value(SequenceService.LEDGER_ENTRY),
            transaction_type=tx_type.value,
            item_kind=ItemKind(item_kind).value,
            product_id=product_id,
            variant=variant,
            unit=unit,
            lot_code=lot_code,
            quantity=quantity,
            from_location=from_location,
            to_location=to_location,
            custody_location=custody_location,
            condition=Condition(condition).value,
            reason=reason,
            stock_record_id=stock_record_id,
            equipment_unit_id=equipment_unit_id,
            request_id=request_id,
            item_line_id=item_line_id,
            occurred_at=self._clock.now(),
            created_by_id=actor_id,
        )
        self.session.add(entry)
        self.session.flush()

        logger.info(
            "ledger_entry_appended",
            extra={
                "entry_id": str(entry.id),
                "seq": entry.seq,
                "transaction_type": tx_type.value,
                "product_id": product_id,
                "quantity": str(quantity),
                "from_location": from_location,
                "to_location": to_location,
            },
        )
        return entry
