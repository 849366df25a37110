"""
AllocationService -- allocate stock against request item lines.

Responsibility:
    Runs one allocation per item line: reference resolution, the
    preconditions (request allocatable, line enabled, quantity left, date
    gate), the kind-specific stock movement, the allocation-history entry
    and the status recompute.  Batches run every line independently and
    report a multi-status outcome.

Architecture position:
    Kernel > Services -- imperative shell.  Consumes LineResolver,
    StockService, LedgerWriter, the item strategies, StatusService and
    the pure date gate.

Invariants enforced:
    - Per-line atomicity: each line runs inside its own SAVEPOINT.  A
      failure rolls back every stock movement and ledger row of that line
      and nothing else.
    - A failed line has no effect.  Insufficient aggregate stock fails the
      line outright; nothing is partially allocated.
    - allocated_quantity never exceeds quantity.
    - allocated_quantity is recomputed from allocation history after the
      movement.

Failure modes (reported per line, never raised from allocate/allocate_batch):
    - Validation: InvalidReferenceError, MissingFieldError,
      InvalidQuantityError, UnknownRoleError.
    - Business rule: RequestNotAllocatableError, ItemDisabledError,
      ItemFullyAllocatedError, DateGateRejectedError,
      InsufficientStockError, EquipmentUnavailableError.
    - Concurrency: StockGuardConflictError (code INSUFFICIENT_STOCK).
    - Integrity: RequestNotFoundError, ExperimentNotFoundError,
      ItemLineNotFoundError, StockRecordNotFoundError.

Audit relevance:
    One ALLOCATION ledger row per contributing stock record or unit, and
    one AllocationEvent carrying the actor and the per-source breakdown.
"""

from __future__ import annotations

from collections.abc import Sequence

from sqlalchemy.orm import Session

from lab_config.schema import LedgerConfig
from lab_engines.date_gate import evaluate_date_gate
from lab_kernel.domain.clock import Clock, SystemClock
from lab_kernel.domain.dtos import (
    AllocationBatchStatus,
    AllocationCommand,
    BatchAllocationResult,
    LineAllocationResult,
    LineError,
    LineStatus,
)
from lab_kernel.domain.item_kinds import build_payload
from lab_kernel.domain.values import ALLOCATABLE_REQUEST_STATUSES, RequestStatus
from lab_kernel.exceptions import (
    DateGateRejectedError,
    InvalidReferenceError,
    ItemDisabledError,
    ItemFullyAllocatedError,
    LabLedgerError,
    MissingFieldError,
    RequestNotAllocatableError,
)
from lab_kernel.logging_config import LogContext, get_logger
from lab_kernel.models.request import AllocationEvent, ItemLine
from lab_kernel.services.base import BaseService
from lab_kernel.services.item_strategies import strategy_for
from lab_kernel.services.ledger_writer import LedgerWriter
from lab_kernel.services.line_resolver import LineResolver
from lab_kernel.services.status_service import StatusService
from lab_kernel.services.stock_service import StockService

logger = get_logger("services.allocation")


class AllocationService(BaseService[ItemLine]):
    """
    Allocation engine.

    Contract:
        ``allocate`` takes one AllocationCommand and always returns a
        LineAllocationResult; rejections come back as FAILED results
        carrying a LineError with the exception's ``code``.

    Guarantees:
        - FAILED results leave stock, ledger and the item line untouched.
        - Successful lines in a batch survive failures of other lines.

    Non-goals:
        - Does NOT commit; the caller owns the outer transaction.
        - Does NOT retry after a guard conflict; the caller re-submits.
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

    def allocate(self, command: AllocationCommand) -> LineAllocationResult:
        """Allocate one item line inside its own SAVEPOINT."""
        with LogContext.bind(
            actor_id=command.actor.actor_id,
            request_id=command.request_id,
            experiment_id=command.experiment_id,
            item_line_id=command.item_line_id,
        ):
            savepoint = self.session.begin_nested()
            try:
                result = self._allocate_line(command)
            except LabLedgerError as exc:
                savepoint.rollback()
                # Guarded bulk UPDATEs bypass the identity map; drop what they left stale.
                self.session.expire_all()
                logger.warning(
                    "allocation_line_failed",
                    extra={"code": exc.code, "error": str(exc)},
                )
                return LineAllocationResult(
                    item_line_id=command.item_line_id,
                    status=LineStatus.FAILED,
                    errors=(LineError.from_exception(exc),),
                )
            except Exception:
                savepoint.rollback()
                raise
            savepoint.commit()
            return result

    def allocate_batch(self, commands: Sequence[AllocationCommand]) -> BatchAllocationResult:
        """
        Allocate several lines independently.

        Returns FULLY_ALLOCATED when every line ends fully allocated,
        ALL_FAILED when no line succeeded, PARTIALLY_ALLOCATED otherwise.
        """
        if not commands:
            raise MissingFieldError("commands")
        results = tuple(self.allocate(command) for command in commands)

        if all(r.status == LineStatus.ALLOCATED for r in results):
            overall = AllocationBatchStatus.FULLY_ALLOCATED
        elif not any(r.succeeded for r in results):
            overall = AllocationBatchStatus.ALL_FAILED
        else:
            overall = AllocationBatchStatus.PARTIALLY_ALLOCATED

        logger.info(
            "allocation_batch_completed",
            extra={
                "overall_status": overall.value,
                "lines": len(results),
                "failed": sum(1 for r in results if not r.succeeded),
            },
        )
        return BatchAllocationResult(overall_status=overall, results=results)

    # =========================================================================
    # Single line
    # =========================================================================

    def _allocate_line(self, command: AllocationCommand) -> LineAllocationResult:
        resolved = self._resolver.resolve(
            command.request_id,
            command.experiment_id,
            command.item_line_id,
            command.item_kind,
        )
        request, experiment, line = resolved.request, resolved.experiment, resolved.line
        actor = command.actor

        if RequestStatus(request.status) not in ALLOCATABLE_REQUEST_STATUSES:
            raise RequestNotAllocatableError(str(request.id), str(request.status))
        if line.is_disabled:
            raise ItemDisabledError(str(line.id), line.disabled_reason)

        payload = build_payload(resolved.kind, command.amount, command.item_codes)

        line.recompute_allocation()
        remaining = line.remaining_quantity
        if remaining <= 0 or payload.size > remaining:
            raise ItemFullyAllocatedError(str(line.id), payload.size, remaining)

        decision = evaluate_date_gate(
            experiment_date=experiment.scheduled_date,
            today=self._clock.today(),
            role=actor.role,
            config=self._config,
            admin_override=experiment.admin_override,
            was_disabled=line.was_disabled,
        )
        if not decision.allowed:
            raise DateGateRejectedError(
                str(experiment.id),
                decision.reason_type.value,
                decision.message,
                decision.days_overdue,
            )

        source_location = command.source_location or self._config.central_store_location
        if source_location == request.lab_id:
            raise InvalidReferenceError(
                "source_location", source_location, "source is the requesting lab"
            )

        strategy = strategy_for(
            resolved.kind, self.session, self._stock, self._ledger, self._config
        )
        outcome = strategy.allocate(
            line,
            payload,
            request_id=request.id,
            source_location=source_location,
            destination_location=request.lab_id,
            actor_id=actor.actor_id,
        )

        line.allocation_history.append(
            AllocationEvent(
                sequence=len(line.allocation_history) + 1,
                allocated_at=self._clock.now(),
                allocated_by_id=actor.actor_id,
                quantity=outcome.amount,
                item_codes=list(outcome.item_codes),
                sources=outcome.sources,
            )
        )
        line.recompute_allocation()
        line.updated_by_id = actor.actor_id
        self.session.flush()

        self._status.recompute(request, role=actor.role)

        status = LineStatus.ALLOCATED if line.is_fully_allocated else LineStatus.PARTIAL
        logger.info(
            "allocation_line_succeeded",
            extra={
                "item_kind": line.item_kind,
                "product_id": line.product_id,
                "amount": str(outcome.amount),
                "sources": len(outcome.sources),
                "line_status": status.value,
                "override_applied": decision.override_applied,
                "catch_up": decision.catch_up,
            },
        )
        return LineAllocationResult(
            item_line_id=line.id,
            status=status,
            allocated_amount=outcome.amount,
            ledger_entry_ids=outcome.entry_ids,
            item_codes=tuple(outcome.item_codes),
        )
