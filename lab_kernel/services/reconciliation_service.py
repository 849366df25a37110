"""
ReconciliationService -- detect and repair drift between derived state and
its sources of truth.

Responsibility:
    Two independent checks:
      1. Stock: replay the ledger per (kind, product, variant, location,
         lot) and compare against StockRecord quantities.  Any mismatch
         means a stock write and its ledger row were not committed
         together.
      2. Item lines: recompute ``allocated_quantity`` / ``is_allocated``
         from allocation history and repair the cache where it drifted.

Architecture position:
    Kernel > Services.  Run on demand by operators or a scheduled job
    owned by the caller; not called from the allocation path.

Invariants enforced:
    - Replay sign rules per transaction type:
        entry                    +to
        allocation, transfer     -from  +to
        return                   -custody  +to
        issue, broken,
        maintenance              -from
    - Only the item-line cache is ever repaired; stock mismatches are
      reported, never auto-corrected.

Audit relevance:
    Every repaired line is logged with its cached and recomputed amounts.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from lab_config.schema import LedgerConfig
from lab_kernel.domain.clock import Clock, SystemClock
from lab_kernel.domain.dtos import ItemLineDrift, ReconciliationReport, StockMismatch
from lab_kernel.domain.values import ZERO, ItemKind, TransactionType
from lab_kernel.logging_config import get_logger
from lab_kernel.models.ledger import LedgerEntry
from lab_kernel.models.request import Experiment, ItemLine, Request
from lab_kernel.models.stock import StockRecord
from lab_kernel.services.base import BaseService
from lab_kernel.services.status_service import StatusService

logger = get_logger("services.reconciliation")

StockKey = tuple[str, str, str, str, str]

_CREDIT_TO = frozenset(
    {
        TransactionType.ENTRY,
        TransactionType.ALLOCATION,
        TransactionType.TRANSFER,
        TransactionType.RETURN,
    }
)
_DEBIT_FROM = frozenset(
    {
        TransactionType.ALLOCATION,
        TransactionType.TRANSFER,
        TransactionType.ISSUE,
        TransactionType.BROKEN,
        TransactionType.MAINTENANCE,
    }
)


def _key(entry: LedgerEntry, location: str) -> StockKey:
    return (entry.item_kind, entry.product_id, entry.variant, location, entry.lot_code)


def replay_deltas(entries: Iterable[LedgerEntry]) -> dict[StockKey, Decimal]:
    """Net quantity per stock identity implied by ``entries``."""
    balances: dict[StockKey, Decimal] = defaultdict(lambda: ZERO)
    for entry in entries:
        tx_type = TransactionType(entry.transaction_type)
        if tx_type in _CREDIT_TO and entry.to_location:
            balances[_key(entry, entry.to_location)] += entry.quantity
        if tx_type in _DEBIT_FROM and entry.from_location:
            balances[_key(entry, entry.from_location)] -= entry.quantity
        if tx_type == TransactionType.RETURN and entry.custody_location:
            balances[_key(entry, entry.custody_location)] -= entry.quantity
    return dict(balances)


class ReconciliationService(BaseService[StockRecord]):
    """
    Ledger-versus-state reconciliation.

    Non-goals:
        - Equipment units are not replayed; their state is a status flag,
          not a quantity.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: LedgerConfig | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._config = config or LedgerConfig.with_defaults()

    def reconcile_stock(self) -> list[StockMismatch]:
        entries = self.session.execute(
            select(LedgerEntry)
            .where(LedgerEntry.item_kind != ItemKind.EQUIPMENT.value)
            .order_by(LedgerEntry.seq)
        ).scalars().all()
        expected = replay_deltas(entries)

        recorded: dict[StockKey, Decimal] = {}
        for record in self.session.execute(select(StockRecord)).scalars():
            key = (
                record.item_kind,
                record.product_id,
                record.variant,
                record.location,
                record.lot_code,
            )
            recorded[key] = record.quantity

        mismatches = []
        for key in sorted(set(expected) | set(recorded)):
            have = recorded.get(key, ZERO)
            want = expected.get(key, ZERO)
            if have != want:
                kind, product_id, variant, location, lot_code = key
                mismatches.append(
                    StockMismatch(
                        item_kind=kind,
                        product_id=product_id,
                        variant=variant,
                        location=location,
                        lot_code=lot_code,
                        recorded_quantity=have,
                        ledger_quantity=want,
                    )
                )

        if mismatches:
            logger.warning(
                "stock_reconciliation_mismatch",
                extra={"mismatches": len(mismatches)},
            )
        else:
            logger.info("stock_reconciliation_clean", extra={"records": len(recorded)})
        return mismatches

    def reconcile_item_lines(
        self,
        request_id: UUID | None = None,
        repair: bool = True,
    ) -> list[ItemLineDrift]:
        """Compare each line's cached allocation with its history."""
        stmt = select(ItemLine).join(Experiment).order_by(Experiment.request_id, ItemLine.id)
        if request_id is not None:
            stmt = stmt.where(Experiment.request_id == request_id)

        drift: list[ItemLineDrift] = []
        touched: dict[UUID, Request] = {}
        for line in self.session.execute(stmt).scalars().all():
            history = sum((s.outstanding for s in line.outstanding_sources()), ZERO)
            cached = line.allocated_quantity
            if cached == history and line.is_allocated == (history > 0):
                continue
            if repair:
                line.recompute_allocation()
                touched[line.experiment.request_id] = line.experiment.request
            drift.append(
                ItemLineDrift(
                    item_line_id=line.id,
                    cached_quantity=cached,
                    history_quantity=history,
                    repaired=repair,
                )
            )
            logger.warning(
                "item_line_allocation_drift",
                extra={
                    "item_line_id": str(line.id),
                    "cached_quantity": str(cached),
                    "history_quantity": str(history),
                    "repaired": repair,
                },
            )

        if touched:
            status = StatusService(self.session, self._clock, self._config)
            for request in touched.values():
                status.recompute(request)
        self.session.flush()
        return drift

    def reconcile(self, request_id: UUID | None = None, repair: bool = True) -> ReconciliationReport:
        return ReconciliationReport(
            stock_mismatches=tuple(self.reconcile_stock()),
            item_line_drift=tuple(self.reconcile_item_lines(request_id, repair)),
        )
