"""
Item strategies -- one allocation interface, one implementation per item kind.

Responsibility:
    Executes the stock side of an allocation or a return for one item
    line: which records or units move, the guarded stock mutations, and the
    ledger rows describing them.  Chemicals and glassware share the
    quantity-pool implementation and differ only in consumption order;
    equipment moves serialized units.

Architecture position:
    Kernel > Services.  Called by AllocationService and ReturnService
    inside the line's SAVEPOINT; those services own the item line's
    allocation/return history and status.  ``strategy_for`` is the only
    place that dispatches on item kind.

Invariants enforced:
    - Conservation: every unit taken from a source is put on the lab
      holding and described by exactly one ledger row.
    - All-or-nothing per line: a plan that cannot cover the whole amount
      raises before any stock is touched; a guard failure mid-way raises
      and the caller's SAVEPOINT undoes the earlier takes.
    - Returns reverse the oldest outstanding sources first.

Failure modes:
    - InsufficientStockError / StockGuardConflictError: not enough stock.
    - EquipmentUnavailableError: a named unit is not available.
    - CustodyShortfallError: the lab holding cannot release a return.
    - DestinationUnresolvableError: nothing left to credit a return to.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from lab_config.schema import LedgerConfig
from lab_engines.fifo import StockCandidate, plan_fifo
from lab_kernel.domain.item_kinds import Payload, QuantityPayload, UnitPayload, spec_for
from lab_kernel.domain.values import ZERO, ItemKind, TransactionType
from lab_kernel.exceptions import (
    CustodyShortfallError,
    DestinationUnresolvableError,
    EquipmentUnavailableError,
    InsufficientStockError,
    InvalidReferenceError,
    StockGuardConflictError,
)
from lab_kernel.logging_config import get_logger
from lab_kernel.models.ledger import LedgerEntry
from lab_kernel.models.request import AllocationSource, ItemLine
from lab_kernel.models.stock import EquipmentUnit, StockRecord
from lab_kernel.services.ledger_writer import LedgerWriter
from lab_kernel.services.stock_service import StockService

logger = get_logger("services.item_strategies")


@dataclass
class MovementOutcome:
    """What one strategy call moved."""

    amount: Decimal = ZERO
    sources: list[AllocationSource] = field(default_factory=list)
    entries: list[LedgerEntry] = field(default_factory=list)
    item_codes: list[str] = field(default_factory=list)

    @property
    def entry_ids(self) -> tuple[UUID, ...]:
        return tuple(entry.id for entry in self.entries)


class AllocationStrategy(ABC):
    """
    Stock-side allocation and return for one item kind.

    Contract:
        ``allocate`` returns unsaved AllocationSource rows for the caller to
        attach to a new AllocationEvent.  ``reverse`` updates
        ``returned_quantity`` on the line's existing sources in place.
    """

    kind: ItemKind

    def __init__(
        self,
        session: Session,
        stock: StockService,
        ledger: LedgerWriter,
        config: LedgerConfig,
    ):
        self.session = session
        self._stock = stock
        self._ledger = ledger
        self._config = config

    @abstractmethod
    def allocate(
        self,
        line: ItemLine,
        payload: Payload,
        *,
        request_id: UUID,
        source_location: str,
        destination_location: str,
        actor_id: UUID,
    ) -> MovementOutcome:
        ...

    @abstractmethod
    def reverse(
        self,
        line: ItemLine,
        payload: Payload,
        *,
        request_id: UUID,
        actor_id: UUID,
    ) -> MovementOutcome:
        ...

    @abstractmethod
    def returnable(self, line: ItemLine, payload: Payload) -> Decimal:
        """How much of ``payload`` is currently out on ``line``."""


# =============================================================================
# Quantity pools (chemicals, glassware)
# =============================================================================


class QuantityPoolStrategy(AllocationStrategy):
    """Pooled stock drawn across records in consumption order."""

    def _by_expiry(self) -> bool:
        return spec_for(self.kind).fifo_by_expiry and self._config.chemical_fifo

    def allocate(
        self,
        line: ItemLine,
        payload: Payload,
        *,
        request_id: UUID,
        source_location: str,
        destination_location: str,
        actor_id: UUID,
    ) -> MovementOutcome:
        assert isinstance(payload, QuantityPayload)
        records = self._stock.pool_records(
            self.kind, line.product_id, line.variant, source_location
        )
        plan = plan_fifo(
            candidates=[
                StockCandidate(
                    record_id=record.id,
                    quantity=record.quantity,
                    expiry_date=record.expiry_date,
                    lot_code=record.lot_code,
                    order_key=position,
                )
                for position, record in enumerate(records)
            ],
            amount=payload.amount,
            by_expiry=self._by_expiry(),
        )
        if not plan.is_satisfied:
            raise InsufficientStockError(
                line.product_id, source_location, payload.amount, plan.available
            )

        outcome = MovementOutcome()
        for position, take in enumerate(plan.takes):
            source = self._stock.guarded_decrement(take.record_id, take.amount)
            holding = self._stock.upsert_holding(
                item_kind=self.kind,
                product_id=line.product_id,
                variant=line.variant,
                location=destination_location,
                amount=take.amount,
                actor_id=actor_id,
                lot_code=source.lot_code,
                expiry_date=source.expiry_date,
                unit=source.unit or line.unit,
            )
            entry = self._ledger.append(
                transaction_type=TransactionType.ALLOCATION,
                item_kind=self.kind,
                product_id=line.product_id,
                variant=line.variant,
                unit=line.unit,
                lot_code=source.lot_code,
                quantity=take.amount,
                from_location=source.location,
                to_location=destination_location,
                actor_id=actor_id,
                stock_record_id=source.id,
                request_id=request_id,
                item_line_id=line.id,
            )
            outcome.sources.append(
                AllocationSource(
                    position=position,
                    source_location=source.location,
                    destination_location=destination_location,
                    stock_record_id=source.id,
                    destination_record_id=holding.id,
                    lot_code=source.lot_code,
                    expiry_date=source.expiry_date,
                    quantity=take.amount,
                    returned_quantity=ZERO,
                )
            )
            outcome.entries.append(entry)
            outcome.amount += take.amount
        return outcome

    def returnable(self, line: ItemLine, payload: Payload) -> Decimal:
        return sum((s.outstanding for s in line.outstanding_sources()), ZERO)

    def reverse(
        self,
        line: ItemLine,
        payload: Payload,
        *,
        request_id: UUID,
        actor_id: UUID,
    ) -> MovementOutcome:
        assert isinstance(payload, QuantityPayload)
        outcome = MovementOutcome()
        remaining = payload.amount
        for source in line.outstanding_sources():
            if remaining <= 0:
                break
            take = min(source.outstanding, remaining)
            custody = self._release_custody(line, source, take)
            origin = self._resolve_origin(line, source, actor_id)
            self._stock.increment(origin.id, take)
            entry = self._ledger.append(
                transaction_type=TransactionType.RETURN,
                item_kind=self.kind,
                product_id=line.product_id,
                variant=line.variant,
                unit=line.unit,
                lot_code=source.lot_code,
                quantity=take,
                from_location=self._config.faculty_location,
                to_location=origin.location,
                custody_location=custody.location,
                actor_id=actor_id,
                stock_record_id=origin.id,
                request_id=request_id,
                item_line_id=line.id,
            )
            source.returned_quantity = source.returned_quantity + take
            outcome.entries.append(entry)
            outcome.amount += take
            remaining -= take
        return outcome

    def _release_custody(
        self, line: ItemLine, source: AllocationSource, amount: Decimal
    ) -> StockRecord:
        try:
            return self._stock.guarded_decrement(source.destination_record_id, amount)
        except StockGuardConflictError:
            logger.warning(
                "custody_shortfall",
                extra={
                    "item_line_id": str(line.id),
                    "location": source.destination_location,
                    "requested": str(amount),
                },
            )
            raise CustodyShortfallError(
                source.destination_location, line.product_id, amount
            ) from None

    def _resolve_origin(
        self, line: ItemLine, source: AllocationSource, actor_id: UUID
    ) -> StockRecord:
        """The record the allocation drew from, else a central-store record."""
        if source.stock_record_id is not None:
            origin = self.session.get(StockRecord, source.stock_record_id)
            if origin is not None:
                return origin
        central = self._config.central_store_location
        if not central:
            raise DestinationUnresolvableError(str(line.id), line.product_id)
        logger.info(
            "return_origin_fallback",
            extra={
                "item_line_id": str(line.id),
                "origin_location": source.source_location,
                "fallback_location": central,
            },
        )
        return self._stock.ensure_record(
            item_kind=self.kind,
            product_id=line.product_id,
            variant=line.variant,
            location=central,
            actor_id=actor_id,
            lot_code=source.lot_code,
            expiry_date=source.expiry_date,
            unit=line.unit,
        )


class ChemicalPoolStrategy(QuantityPoolStrategy):
    kind = ItemKind.CHEMICAL


class GlasswarePoolStrategy(QuantityPoolStrategy):
    kind = ItemKind.GLASSWARE


# =============================================================================
# Serialized units (equipment)
# =============================================================================


class EquipmentUnitStrategy(AllocationStrategy):
    """
    Equipment moves as individual units.

    Guarantees:
        - A unit is claimed by a guarded flip of ``is_allocated``, so it can
          be active in at most one allocation at a time.
    """

    kind = ItemKind.EQUIPMENT

    def allocate(
        self,
        line: ItemLine,
        payload: Payload,
        *,
        request_id: UUID,
        source_location: str,
        destination_location: str,
        actor_id: UUID,
    ) -> MovementOutcome:
        assert isinstance(payload, UnitPayload)
        if payload.is_explicit:
            units = [self._named_unit(line, code, source_location) for code in payload.item_codes]
        else:
            units = self._stock.available_units(
                line.product_id, line.variant, source_location, limit=payload.count
            )
            if len(units) < payload.count:
                raise InsufficientStockError(
                    line.product_id,
                    source_location,
                    Decimal(payload.count),
                    Decimal(len(units)),
                )

        assignee_id = line.experiment.request.faculty_id
        outcome = MovementOutcome()
        for position, unit in enumerate(units):
            try:
                unit = self._stock.claim_unit(unit.id, destination_location, assignee_id)
            except EquipmentUnavailableError:
                if payload.is_explicit:
                    raise
                raise StockGuardConflictError(
                    str(unit.id), line.product_id, source_location, Decimal("1")
                ) from None
            entry = self._ledger.append(
                transaction_type=TransactionType.ALLOCATION,
                item_kind=self.kind,
                product_id=line.product_id,
                variant=line.variant,
                quantity=Decimal("1"),
                from_location=source_location,
                to_location=destination_location,
                actor_id=actor_id,
                equipment_unit_id=unit.id,
                request_id=request_id,
                item_line_id=line.id,
            )
            outcome.sources.append(
                AllocationSource(
                    position=position,
                    source_location=source_location,
                    destination_location=destination_location,
                    equipment_unit_id=unit.id,
                    item_code=unit.item_code,
                    lot_code="",
                    quantity=Decimal("1"),
                    returned_quantity=ZERO,
                )
            )
            outcome.entries.append(entry)
            outcome.item_codes.append(unit.item_code)
            outcome.amount += 1
        return outcome

    def _named_unit(self, line: ItemLine, item_code: str, source_location: str) -> EquipmentUnit:
        unit = self._stock.get_unit_by_code(item_code)
        if unit.product_id != line.product_id or unit.variant != line.variant:
            raise InvalidReferenceError(
                "item_codes", item_code, f"unit is not {line.product_id}/{line.variant}"
            )
        if not unit.is_available:
            raise EquipmentUnavailableError(item_code, f"unit is {unit.status}")
        if unit.location != source_location:
            raise EquipmentUnavailableError(item_code, f"unit is at {unit.location}")
        return unit

    def _codes_to_return(self, line: ItemLine, payload: UnitPayload) -> list[str]:
        active = line.active_item_codes()
        if payload.is_explicit:
            return list(payload.item_codes)
        return active[: payload.count]

    def returnable(self, line: ItemLine, payload: Payload) -> Decimal:
        assert isinstance(payload, UnitPayload)
        active = set(line.active_item_codes())
        if payload.is_explicit:
            return Decimal(sum(1 for code in payload.item_codes if code in active))
        return Decimal(len(active))

    def reverse(
        self,
        line: ItemLine,
        payload: Payload,
        *,
        request_id: UUID,
        actor_id: UUID,
    ) -> MovementOutcome:
        assert isinstance(payload, UnitPayload)
        outcome = MovementOutcome()
        for code in self._codes_to_return(line, payload):
            # Every still-active history entry naming the code is closed.
            sources = [s for s in line.outstanding_sources() if s.item_code == code]
            if not sources:
                raise InvalidReferenceError(
                    "item_codes", code, "not currently allocated on this item line"
                )
            source = sources[0]
            unit = (
                self.session.get(EquipmentUnit, source.equipment_unit_id)
                if source.equipment_unit_id is not None
                else None
            )
            if unit is None:
                raise DestinationUnresolvableError(str(line.id), line.product_id)
            origin = source.source_location or self._config.central_store_location
            custody = unit.location
            unit = self._stock.release_unit(unit.id, origin)
            entry = self._ledger.append(
                transaction_type=TransactionType.RETURN,
                item_kind=self.kind,
                product_id=line.product_id,
                variant=line.variant,
                quantity=Decimal("1"),
                from_location=self._config.faculty_location,
                to_location=origin,
                custody_location=custody,
                actor_id=actor_id,
                equipment_unit_id=unit.id,
                request_id=request_id,
                item_line_id=line.id,
            )
            for closed in sources:
                closed.returned_quantity = closed.quantity
            outcome.entries.append(entry)
            outcome.item_codes.append(code)
            outcome.amount += 1
        return outcome


_STRATEGIES: dict[ItemKind, type[AllocationStrategy]] = {
    ItemKind.CHEMICAL: ChemicalPoolStrategy,
    ItemKind.GLASSWARE: GlasswarePoolStrategy,
    ItemKind.EQUIPMENT: EquipmentUnitStrategy,
}


def strategy_for(
    kind: ItemKind | str,
    session: Session,
    stock: StockService,
    ledger: LedgerWriter,
    config: LedgerConfig,
) -> AllocationStrategy:
    """Instantiate the strategy for a requestable item kind."""
    return _STRATEGIES[spec_for(kind).kind](session, stock, ledger, config)
