"""
ReturnService -- reverse allocations on request item lines.

Responsibility:
    Validates a return against what is currently out on the item line,
    reverses the oldest outstanding allocation sources first (draining
    the lab holding and crediting the origin record), appends a
    return-history entry and recomputes status.

Architecture position:
    Kernel > Services -- imperative shell.  Mirrors AllocationService and
    shares its strategies, resolver and status service.

Invariants enforced:
    - A return never exceeds the outstanding allocated amount; it is
      rejected, not clamped.
    - Per-line atomicity through a SAVEPOINT, as for allocation.
    - Returns are not date-gated; any known role may return.
    - After a full return ``is_allocated`` is False and both the origin
      and the lab holding are back at their pre-allocation quantities.

Failure modes (reported per line):
    - ItemNotAllocatedError: nothing is out on the line.
    - ReturnExceedsAllocatedError: more requested than is out.
    - CustodyShortfallError: the lab holding was drained elsewhere.
    - DestinationUnresolvableError: no record or unit to credit.

Audit relevance:
    One RETURN ledger row per reversed source, from the faculty to the
    origin, naming the holding it left as ``custody_location``.
    ReturnEvent rows are immutable.
"""

from __future__ import annotations

from collections.abc import Sequence

from sqlalchemy.orm import Session

from lab_config.schema import LedgerConfig
from lab_kernel.domain.clock import Clock, SystemClock
from lab_kernel.domain.dtos import (
    BatchReturnResult,
    LineError,
    LineReturnResult,
    LineStatus,
    ReturnBatchStatus,
    ReturnCommand,
)
from lab_kernel.domain.item_kinds import build_payload
from lab_kernel.exceptions import (
    ItemNotAllocatedError,
    LabLedgerError,
    MissingFieldError,
    ReturnExceedsAllocatedError,
    UnknownRoleError,
)
from lab_kernel.logging_config import LogContext, get_logger
from lab_kernel.models.request import ItemLine, ReturnEvent
from lab_kernel.services.base import BaseService
from lab_kernel.services.item_strategies import strategy_for
from lab_kernel.services.ledger_writer import LedgerWriter
from lab_kernel.services.line_resolver import LineResolver
from lab_kernel.services.status_service import StatusService
from lab_kernel.services.stock_service import StockService

logger = get_logger("services.return")


class ReturnService(BaseService[ItemLine]):
    """
    Return engine.

    Contract:
        ``return_items`` always yields a LineReturnResult; rejections are
        FAILED results with a LineError and no side effects.

    Non-goals:
        - Does NOT commit.
        - Does NOT record condition on return; losses go through
          StockService.record_loss.
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
        self._ledger = LedgerWriter(session, self._clock)
        self._stock = StockService(session, self._clock, self._config, self._ledger)
        self._resolver = LineResolver(session)
        self._status = StatusService(session, self._clock, self._config)

    def return_items(self, command: ReturnCommand) -> LineReturnResult:
        """Return against one item line inside its own SAVEPOINT."""
        with LogContext.bind(
            actor_id=command.actor.actor_id,
            request_id=command.request_id,
            experiment_id=command.experiment_id,
            item_line_id=command.item_line_id,
        ):
            savepoint = self.session.begin_nested()
            try:
                result = self._return_line(command)
            except LabLedgerError as exc:
                savepoint.rollback()
                # Guarded bulk UPDATEs bypass the identity map; drop what they left stale.
                self.session.expire_all()
                logger.warning(
                    "return_line_failed",
                    extra={"code": exc.code, "error": str(exc)},
                )
                return LineReturnResult(
                    item_line_id=command.item_line_id,
                    status=LineStatus.FAILED,
                    errors=(LineError.from_exception(exc),),
                )
            except Exception:
                savepoint.rollback()
                raise
            savepoint.commit()
            return result

    def return_batch(self, commands: Sequence[ReturnCommand]) -> BatchReturnResult:
        if not commands:
            raise MissingFieldError("commands")
        results = tuple(self.return_items(command) for command in commands)

        failed = sum(1 for r in results if not r.succeeded)
        if failed == 0:
            overall = ReturnBatchStatus.FULLY_RETURNED
        elif failed == len(results):
            overall = ReturnBatchStatus.ALL_FAILED
        else:
            overall = ReturnBatchStatus.PARTIALLY_RETURNED

        logger.info(
            "return_batch_completed",
            extra={"overall_status": overall.value, "lines": len(results), "failed": failed},
        )
        return BatchReturnResult(overall_status=overall, results=results)

    def _return_line(self, command: ReturnCommand) -> LineReturnResult:
        resolved = self._resolver.resolve(
            command.request_id,
            command.experiment_id,
            command.item_line_id,
            command.item_kind,
        )
        request, line = resolved.request, resolved.line
        actor = command.actor
        if actor.role not in self._config.known_roles:
            raise UnknownRoleError(actor.role)

        payload = build_payload(resolved.kind, command.amount, command.item_codes)

        line.recompute_allocation()
        if not line.is_allocated:
            raise ItemNotAllocatedError(str(line.id))

        strategy = strategy_for(
            resolved.kind, self.session, self._stock, self._ledger, self._config
        )
        returnable = strategy.returnable(line, payload)
        if payload.size > returnable:
            raise ReturnExceedsAllocatedError(str(line.id), payload.size, returnable)

        outcome = strategy.reverse(
            line,
            payload,
            request_id=request.id,
            actor_id=actor.actor_id,
        )

        line.return_history.append(
            ReturnEvent(
                sequence=len(line.return_history) + 1,
                returned_at=self._clock.now(),
                returned_by_id=actor.actor_id,
                quantity=outcome.amount,
                item_codes=list(outcome.item_codes),
            )
        )
        line.recompute_allocation()
        line.updated_by_id = actor.actor_id
        self.session.flush()

        self._status.recompute(request)

        logger.info(
            "return_line_succeeded",
            extra={
                "item_kind": line.item_kind,
                "product_id": line.product_id,
                "amount": str(outcome.amount),
                "still_allocated": str(line.allocated_quantity),
            },
        )
        return LineReturnResult(
            item_line_id=line.id,
            status=LineStatus.RETURNED,
            returned_amount=outcome.amount,
            ledger_entry_ids=outcome.entry_ids,
            item_codes=tuple(outcome.item_codes),
        )
