"""
StockService -- the guarded stock primitive and stock-side movements.

Responsibility:
    Every quantity change on a StockRecord and every status flip on an
    EquipmentUnit goes through this service.  Decrements are
    compare-and-guard UPDATEs (``WHERE quantity >= :amount``); unit claims
    are guarded on ``is_allocated = false AND status = 'available'``.
    Also owns the movements that do not belong to a request: stock intake
    (entry), transfers between locations, direct issue, losses
    (broken / maintenance) and the equipment unit lifecycle (transfer,
    return to central, maintenance, discard), each recorded in the ledger.

Architecture position:
    Kernel > Services.  Used by the item strategies (allocation/return)
    and directly by store-keeping callers.

Invariants enforced:
    - quantity >= 0 always; a decrement that would go negative updates
      zero rows and raises StockGuardConflictError.  Nothing is retried.
    - No unguarded quantity write exists in the codebase.
    - An equipment unit is claimed by at most one allocation at a time.
    - Ledger entries are appended only after the stock mutation they
      describe has succeeded, in the same transaction.

Failure modes:
    - StockRecordNotFoundError: record id does not exist.
    - StockGuardConflictError: guard rejected the decrement (raced or short).
    - InvalidQuantityError: non-positive amount.
    - EquipmentUnavailableError: unit cannot be claimed or serviced.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from lab_config.schema import LedgerConfig
from lab_kernel.domain.clock import Clock
from lab_kernel.domain.values import (
    POOLED_KINDS,
    Condition,
    EquipmentStatus,
    ItemKind,
    TransactionType,
)
from lab_kernel.exceptions import (
    EquipmentUnavailableError,
    InvalidQuantityError,
    InvalidReferenceError,
    LedgerEntryValidationError,
    StockGuardConflictError,
    StockRecordNotFoundError,
)
from lab_kernel.logging_config import get_logger
from lab_kernel.models.ledger import LedgerEntry
from lab_kernel.models.stock import EquipmentUnit, StockRecord
from lab_kernel.services.base import BaseService
from lab_kernel.services.ledger_writer import LedgerWriter

logger = get_logger("services.stock")


def _positive(amount: Decimal) -> Decimal:
    value = Decimal(str(amount))
    if value <= 0:
        raise InvalidQuantityError(value)
    return value


class StockService(BaseService[StockRecord]):
    """
    Guarded stock mutation plus store-keeping movements.

    Contract:
        Callers hand in record ids and amounts; the service mutates the
        database with guarded UPDATEs and refreshes any loaded instance.

    Non-goals:
        - Does not pick which record to draw from; FIFO planning happens
          in lab_engines.fifo.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock,
        config: LedgerConfig,
        ledger: LedgerWriter | None = None,
    ):
        super().__init__(session)
        self._clock = clock
        self._config = config
        self._ledger = ledger or LedgerWriter(session, clock)

    # =========================================================================
    # Lookups
    # =========================================================================

    def get_record(self, record_id: UUID) -> StockRecord:
        record = self.session.get(StockRecord, record_id)
        if record is None:
            raise StockRecordNotFoundError(str(record_id))
        return record

    def find_record(
        self,
        item_kind: ItemKind | str,
        product_id: str,
        variant: str,
        location: str,
        lot_code: str = "",
    ) -> StockRecord | None:
        return self.session.execute(
            select(StockRecord).where(
                StockRecord.item_kind == ItemKind(item_kind).value,
                StockRecord.product_id == product_id,
                StockRecord.variant == variant,
                StockRecord.location == location,
                StockRecord.lot_code == lot_code,
            )
        ).scalar_one_or_none()

    def pool_records(
        self,
        item_kind: ItemKind | str,
        product_id: str,
        variant: str,
        location: str,
    ) -> list[StockRecord]:
        """
        Non-empty records for one product variant at one location.

        Ordered by receipt time; the lot code breaks ties within one
        transaction.
        """
        return list(
            self.session.execute(
                select(StockRecord)
                .where(
                    StockRecord.item_kind == ItemKind(item_kind).value,
                    StockRecord.product_id == product_id,
                    StockRecord.variant == variant,
                    StockRecord.location == location,
                    StockRecord.quantity > 0,
                )
                .order_by(StockRecord.created_at, StockRecord.lot_code, StockRecord.id)
            ).scalars()
        )

    def available_units(
        self,
        product_id: str,
        variant: str,
        location: str,
        limit: int | None = None,
    ) -> list[EquipmentUnit]:
        stmt = (
            select(EquipmentUnit)
            .where(
                EquipmentUnit.product_id == product_id,
                EquipmentUnit.variant == variant,
                EquipmentUnit.location == location,
                EquipmentUnit.status == EquipmentStatus.AVAILABLE.value,
                EquipmentUnit.is_allocated.is_(False),
            )
            .order_by(EquipmentUnit.item_code)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.execute(stmt).scalars())

    def get_unit_by_code(self, item_code: str) -> EquipmentUnit:
        unit = self.session.execute(
            select(EquipmentUnit).where(EquipmentUnit.item_code == item_code)
        ).scalar_one_or_none()
        if unit is None:
            raise InvalidReferenceError("item_code", item_code, "unknown equipment unit")
        return unit

    # =========================================================================
    # Guarded primitive
    # =========================================================================

    def guarded_decrement(self, record_id: UUID, amount: Decimal) -> StockRecord:
        """
        Decrement ``record_id`` by ``amount`` only if it holds at least that much.

        Raises:
            StockGuardConflictError: zero rows matched the guard.
            StockRecordNotFoundError: the record does not exist.
        """
        amount = _positive(amount)
        result = self.session.execute(
            update(StockRecord)
            .where(StockRecord.id == record_id, StockRecord.quantity >= amount)
            .values(quantity=StockRecord.quantity - amount)
            .execution_options(synchronize_session=False)
        )
        record = self._reload(record_id)
        if result.rowcount != 1:
            logger.warning(
                "stock_guard_rejected",
                extra={
                    "record_id": str(record_id),
                    "requested": str(amount),
                    "on_hand": str(record.quantity),
                },
            )
            raise StockGuardConflictError(
                str(record_id), record.product_id, record.location, amount
            )
        logger.debug(
            "stock_decremented",
            extra={"record_id": str(record_id), "amount": str(amount)},
        )
        return record

    def increment(self, record_id: UUID, amount: Decimal) -> StockRecord:
        """Increment ``record_id`` by ``amount`` in the database."""
        amount = _positive(amount)
        result = self.session.execute(
            update(StockRecord)
            .where(StockRecord.id == record_id)
            .values(quantity=StockRecord.quantity + amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise StockRecordNotFoundError(str(record_id))
        logger.debug(
            "stock_incremented",
            extra={"record_id": str(record_id), "amount": str(amount)},
        )
        return self._reload(record_id)

    def _reload(self, record_id: UUID) -> StockRecord:
        record = self.session.get(StockRecord, record_id, populate_existing=True)
        if record is None:
            raise StockRecordNotFoundError(str(record_id))
        return record

    def ensure_record(
        self,
        *,
        item_kind: ItemKind | str,
        product_id: str,
        variant: str,
        location: str,
        actor_id: UUID,
        lot_code: str = "",
        expiry_date: date | None = None,
        unit: str = "",
    ) -> StockRecord:
        """Locate the record for this identity, creating an empty one if absent."""
        kind = ItemKind(item_kind)
        if kind not in POOLED_KINDS:
            raise InvalidReferenceError("item_kind", kind.value, "not held as a quantity pool")
        record = self.find_record(kind, product_id, variant, location, lot_code)
        if record is not None:
            return record
        record = StockRecord(
            item_kind=kind.value,
            product_id=product_id,
            variant=variant,
            unit=unit,
            location=location,
            lot_code=lot_code,
            expiry_date=expiry_date,
            quantity=Decimal("0"),
            created_by_id=actor_id,
        )
        self.session.add(record)
        self.session.flush()
        logger.info(
            "stock_record_created",
            extra={
                "record_id": str(record.id),
                "item_kind": kind.value,
                "product_id": product_id,
                "location": location,
                "lot_code": lot_code,
            },
        )
        return record

    def upsert_holding(
        self,
        *,
        item_kind: ItemKind | str,
        product_id: str,
        variant: str,
        location: str,
        amount: Decimal,
        actor_id: UUID,
        lot_code: str = "",
        expiry_date: date | None = None,
        unit: str = "",
    ) -> StockRecord:
        """Create-or-increment the record for this identity by ``amount``."""
        record = self.ensure_record(
            item_kind=item_kind,
            product_id=product_id,
            variant=variant,
            location=location,
            actor_id=actor_id,
            lot_code=lot_code,
            expiry_date=expiry_date,
            unit=unit,
        )
        return self.increment(record.id, amount)

    # =========================================================================
    # Equipment guards
    # =========================================================================

    def claim_unit(self, unit_id: UUID, location: str, assignee_id: UUID) -> EquipmentUnit:
        """Flip an available unit to ASSIGNED at ``location``; guarded."""
        result = self.session.execute(
            update(EquipmentUnit)
            .where(
                EquipmentUnit.id == unit_id,
                EquipmentUnit.is_allocated.is_(False),
                EquipmentUnit.status == EquipmentStatus.AVAILABLE.value,
            )
            .values(
                is_allocated=True,
                status=EquipmentStatus.ASSIGNED.value,
                location=location,
                assigned_to_id=assignee_id,
            )
            .execution_options(synchronize_session=False)
        )
        unit = self.session.get(EquipmentUnit, unit_id, populate_existing=True)
        if result.rowcount != 1:
            code = unit.item_code if unit is not None else str(unit_id)
            logger.warning("equipment_claim_rejected", extra={"item_code": code})
            raise EquipmentUnavailableError(code, "already allocated or not available")
        return unit

    def release_unit(self, unit_id: UUID, location: str) -> EquipmentUnit:
        """Flip an allocated unit back to AVAILABLE at ``location``; guarded."""
        result = self.session.execute(
            update(EquipmentUnit)
            .where(EquipmentUnit.id == unit_id, EquipmentUnit.is_allocated.is_(True))
            .values(
                is_allocated=False,
                status=EquipmentStatus.AVAILABLE.value,
                location=location,
                assigned_to_id=None,
            )
            .execution_options(synchronize_session=False)
        )
        unit = self.session.get(EquipmentUnit, unit_id, populate_existing=True)
        if result.rowcount != 1:
            code = unit.item_code if unit is not None else str(unit_id)
            raise EquipmentUnavailableError(code, "unit is not allocated")
        return unit

    # =========================================================================
    # Store-keeping movements
    # =========================================================================

    def receive(
        self,
        *,
        item_kind: ItemKind | str,
        product_id: str,
        location: str,
        quantity: Decimal,
        actor_id: UUID,
        variant: str = "",
        lot_code: str = "",
        expiry_date: date | None = None,
        unit: str = "",
    ) -> StockRecord:
        """Stock intake: increment (or create) the record and append an entry row."""
        quantity = _positive(quantity)
        record = self.upsert_holding(
            item_kind=item_kind,
            product_id=product_id,
            variant=variant,
            location=location,
            amount=quantity,
            actor_id=actor_id,
            lot_code=lot_code,
            expiry_date=expiry_date,
            unit=unit,
        )
        self._ledger.append(
            transaction_type=TransactionType.ENTRY,
            item_kind=record.item_kind,
            product_id=product_id,
            variant=variant,
            unit=unit,
            lot_code=lot_code,
            quantity=quantity,
            to_location=location,
            actor_id=actor_id,
            stock_record_id=record.id,
        )
        logger.info(
            "stock_received",
            extra={"record_id": str(record.id), "quantity": str(quantity), "location": location},
        )
        return record

    def transfer(
        self,
        record_id: UUID,
        to_location: str,
        quantity: Decimal,
        actor_id: UUID,
    ) -> tuple[StockRecord, StockRecord]:
        """Move quantity of one lot between locations. Returns (source, destination)."""
        quantity = _positive(quantity)
        source = self.get_record(record_id)
        if source.location == to_location:
            raise LedgerEntryValidationError(
                TransactionType.TRANSFER.value, "from_location and to_location must differ"
            )
        source = self.guarded_decrement(record_id, quantity)
        destination = self.upsert_holding(
            item_kind=source.item_kind,
            product_id=source.product_id,
            variant=source.variant,
            location=to_location,
            amount=quantity,
            actor_id=actor_id,
            lot_code=source.lot_code,
            expiry_date=source.expiry_date,
            unit=source.unit,
        )
        self._ledger.append(
            transaction_type=TransactionType.TRANSFER,
            item_kind=source.item_kind,
            product_id=source.product_id,
            variant=source.variant,
            unit=source.unit,
            lot_code=source.lot_code,
            quantity=quantity,
            from_location=source.location,
            to_location=to_location,
            actor_id=actor_id,
            stock_record_id=source.id,
        )
        logger.info(
            "stock_transferred",
            extra={
                "record_id": str(record_id),
                "from_location": source.location,
                "to_location": to_location,
                "quantity": str(quantity),
            },
        )
        return source, destination

    def issue(
        self,
        record_id: UUID,
        quantity: Decimal,
        actor_id: UUID,
        to_location: str | None = None,
    ) -> LedgerEntry:
        """Issue stock out of a location (to the faculty by default)."""
        quantity = _positive(quantity)
        record = self.guarded_decrement(record_id, quantity)
        return self._ledger.append(
            transaction_type=TransactionType.ISSUE,
            item_kind=record.item_kind,
            product_id=record.product_id,
            variant=record.variant,
            unit=record.unit,
            lot_code=record.lot_code,
            quantity=quantity,
            from_location=record.location,
            to_location=to_location or self._config.faculty_location,
            actor_id=actor_id,
            stock_record_id=record.id,
        )

    def record_loss(
        self,
        record_id: UUID,
        quantity: Decimal,
        transaction_type: TransactionType | str,
        reason: str,
        actor_id: UUID,
        condition: Condition | str | None = None,
    ) -> LedgerEntry:
        """Remove broken stock, or stock sent to maintenance, with a reason."""
        tx_type = TransactionType(transaction_type)
        if tx_type not in (TransactionType.BROKEN, TransactionType.MAINTENANCE):
            raise LedgerEntryValidationError(tx_type.value, "not a loss transaction type")
        if not (reason and reason.strip()):
            raise LedgerEntryValidationError(tx_type.value, "reason is required")
        if condition is None:
            condition = (
                Condition.BROKEN if tx_type == TransactionType.BROKEN else Condition.UNDER_MAINTENANCE
            )
        quantity = _positive(quantity)
        record = self.guarded_decrement(record_id, quantity)
        entry = self._ledger.append(
            transaction_type=tx_type,
            item_kind=record.item_kind,
            product_id=record.product_id,
            variant=record.variant,
            unit=record.unit,
            lot_code=record.lot_code,
            quantity=quantity,
            from_location=record.location,
            condition=condition,
            reason=reason,
            actor_id=actor_id,
            stock_record_id=record.id,
        )
        logger.info(
            "stock_loss_recorded",
            extra={
                "record_id": str(record_id),
                "transaction_type": tx_type.value,
                "quantity": str(quantity),
                "reason": reason,
            },
        )
        return entry

    def register_equipment(
        self,
        *,
        item_code: str,
        product_id: str,
        location: str,
        actor_id: UUID,
        variant: str = "",
    ) -> EquipmentUnit:
        """Add one serialized unit to stock and record its entry."""
        if not item_code or not item_code.strip():
            raise InvalidReferenceError("item_code", item_code, "blank item code")
        unit = EquipmentUnit(
            item_code=item_code,
            product_id=product_id,
            variant=variant,
            location=location,
            status=EquipmentStatus.AVAILABLE.value,
            is_allocated=False,
            created_by_id=actor_id,
        )
        self.session.add(unit)
        self.session.flush()
        self._ledger.append(
            transaction_type=TransactionType.ENTRY,
            item_kind=ItemKind.EQUIPMENT,
            product_id=product_id,
            variant=variant,
            quantity=Decimal("1"),
            to_location=location,
            actor_id=actor_id,
            equipment_unit_id=unit.id,
        )
        logger.info(
            "equipment_registered",
            extra={"item_code": item_code, "product_id": product_id, "location": location},
        )
        return unit

    def _flip_unit(
        self,
        unit: EquipmentUnit,
        from_statuses: tuple[EquipmentStatus, ...],
        values: dict,
        refusal: str,
    ) -> EquipmentUnit:
        """Guarded status/location change on an unallocated unit still where it was read."""
        result = self.session.execute(
            update(EquipmentUnit)
            .where(
                EquipmentUnit.id == unit.id,
                EquipmentUnit.is_allocated.is_(False),
                EquipmentUnit.status.in_([status.value for status in from_statuses]),
                EquipmentUnit.location == unit.location,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        item_code = unit.item_code
        unit = self.session.get(EquipmentUnit, unit.id, populate_existing=True)
        if result.rowcount != 1:
            logger.warning("equipment_update_rejected", extra={"item_code": item_code})
            raise EquipmentUnavailableError(item_code, refusal)
        return unit

    def send_equipment_to_maintenance(
        self,
        item_code: str,
        reason: str,
        actor_id: UUID,
    ) -> EquipmentUnit:
        """Take an available unit out of service for maintenance."""
        if not (reason and reason.strip()):
            raise LedgerEntryValidationError(TransactionType.MAINTENANCE.value, "reason is required")
        unit = self._flip_unit(
            self.get_unit_by_code(item_code),
            (EquipmentStatus.AVAILABLE,),
            {"status": EquipmentStatus.MAINTENANCE.value},
            "only available units can go to maintenance",
        )
        self._ledger.append(
            transaction_type=TransactionType.MAINTENANCE,
            item_kind=ItemKind.EQUIPMENT,
            product_id=unit.product_id,
            variant=unit.variant,
            quantity=Decimal("1"),
            from_location=unit.location,
            condition=Condition.UNDER_MAINTENANCE,
            reason=reason,
            actor_id=actor_id,
            equipment_unit_id=unit.id,
        )
        return unit

    def complete_equipment_maintenance(self, item_code: str, actor_id: UUID) -> EquipmentUnit:
        """Put a serviced unit back into stock where it stands."""
        unit = self._flip_unit(
            self.get_unit_by_code(item_code),
            (EquipmentStatus.MAINTENANCE,),
            {"status": EquipmentStatus.AVAILABLE.value},
            "unit is not under maintenance",
        )
        self._ledger.append(
            transaction_type=TransactionType.RETURN,
            item_kind=ItemKind.EQUIPMENT,
            product_id=unit.product_id,
            variant=unit.variant,
            quantity=Decimal("1"),
            from_location=unit.location,
            to_location=unit.location,
            condition=Condition.GOOD,
            reason="maintenance completed",
            actor_id=actor_id,
            equipment_unit_id=unit.id,
        )
        logger.info("equipment_maintenance_completed", extra={"item_code": item_code})
        return unit

    def transfer_equipment(self, item_code: str, to_location: str, actor_id: UUID) -> EquipmentUnit:
        """Move an available, unallocated unit to another location."""
        unit = self.get_unit_by_code(item_code)
        from_location = unit.location
        if from_location == to_location:
            raise LedgerEntryValidationError(
                TransactionType.TRANSFER.value, "from_location and to_location must differ"
            )
        unit = self._flip_unit(
            unit,
            (EquipmentStatus.AVAILABLE,),
            {"location": to_location},
            "only available units can be transferred",
        )
        self._ledger.append(
            transaction_type=TransactionType.TRANSFER,
            item_kind=ItemKind.EQUIPMENT,
            product_id=unit.product_id,
            variant=unit.variant,
            quantity=Decimal("1"),
            from_location=from_location,
            to_location=to_location,
            actor_id=actor_id,
            equipment_unit_id=unit.id,
        )
        logger.info(
            "equipment_transferred",
            extra={"item_code": item_code, "from_location": from_location, "to_location": to_location},
        )
        return unit

    def return_equipment_to_central(self, item_code: str, actor_id: UUID) -> EquipmentUnit:
        """
        Bring a transferred unit back to the central store.

        Units held under an allocation go back through ReturnService
        instead; this path refuses them.
        """
        central = self._config.central_store_location
        unit = self.get_unit_by_code(item_code)
        from_location = unit.location
        if from_location == central:
            raise LedgerEntryValidationError(
                TransactionType.RETURN.value, f"unit is already at {central}"
            )
        unit = self._flip_unit(
            unit,
            (EquipmentStatus.AVAILABLE,),
            {"location": central},
            "only available, unallocated units can be returned directly",
        )
        self._ledger.append(
            transaction_type=TransactionType.RETURN,
            item_kind=ItemKind.EQUIPMENT,
            product_id=unit.product_id,
            variant=unit.variant,
            quantity=Decimal("1"),
            from_location=from_location,
            to_location=central,
            condition=Condition.GOOD,
            actor_id=actor_id,
            equipment_unit_id=unit.id,
        )
        logger.info(
            "equipment_returned_to_central",
            extra={"item_code": item_code, "from_location": from_location},
        )
        return unit

    def discard_equipment(self, item_code: str, reason: str, actor_id: UUID) -> EquipmentUnit:
        """Write off an unallocated unit as broken beyond repair."""
        if not (reason and reason.strip()):
            raise LedgerEntryValidationError(TransactionType.BROKEN.value, "reason is required")
        unit = self._flip_unit(
            self.get_unit_by_code(item_code),
            (EquipmentStatus.AVAILABLE, EquipmentStatus.MAINTENANCE),
            {"status": EquipmentStatus.DISCARDED.value},
            "only available or serviced units can be discarded",
        )
        self._ledger.append(
            transaction_type=TransactionType.BROKEN,
            item_kind=ItemKind.EQUIPMENT,
            product_id=unit.product_id,
            variant=unit.variant,
            quantity=Decimal("1"),
            from_location=unit.location,
            condition=Condition.BROKEN,
            reason=reason,
            actor_id=actor_id,
            equipment_unit_id=unit.id,
        )
        logger.info("equipment_discarded", extra={"item_code": item_code, "reason": reason})
        return unit
