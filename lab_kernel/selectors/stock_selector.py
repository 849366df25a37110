"""
Module: lab_kernel.selectors.stock_selector
Responsibility: Current stock levels per location and product, available
    quantity for planning, and the equipment unit register.
Architecture position: Kernel > Selectors.  Read-only.

Invariants enforced:
    - Levels are read straight from StockRecord; the ledger replay that
      cross-checks them lives in ReconciliationService.
"""

from decimal import Decimal

from sqlalchemy import func, select

from lab_kernel.domain.dtos import EquipmentUnitView, StockLevel
from lab_kernel.domain.values import ZERO, EquipmentStatus, ItemKind
from lab_kernel.models.stock import EquipmentUnit, StockRecord
from lab_kernel.selectors.base import BaseSelector


def _to_level(record: StockRecord) -> StockLevel:
    return StockLevel(
        record_id=record.id,
        item_kind=ItemKind(record.item_kind),
        product_id=record.product_id,
        variant=record.variant,
        location=record.location,
        lot_code=record.lot_code,
        expiry_date=record.expiry_date,
        quantity=record.quantity,
        unit=record.unit,
    )


class StockSelector(BaseSelector[StockRecord]):
    """Read access to stock records and equipment units."""

    def levels(
        self,
        location: str | None = None,
        product_id: str | None = None,
        item_kind: ItemKind | str | None = None,
        include_empty: bool = False,
    ) -> list[StockLevel]:
        """
        Stock levels, ordered by location, product, variant and expiry.

        Empty records are omitted unless ``include_empty``.
        """
        stmt = select(StockRecord)
        if location is not None:
            stmt = stmt.where(StockRecord.location == location)
        if product_id is not None:
            stmt = stmt.where(StockRecord.product_id == product_id)
        if item_kind is not None:
            stmt = stmt.where(StockRecord.item_kind == ItemKind(item_kind).value)
        if not include_empty:
            stmt = stmt.where(StockRecord.quantity > 0)
        stmt = stmt.order_by(
            StockRecord.location,
            StockRecord.product_id,
            StockRecord.variant,
            StockRecord.expiry_date,
            StockRecord.lot_code,
        )
        return [_to_level(record) for record in self.session.execute(stmt).scalars()]

    def available_quantity(
        self,
        item_kind: ItemKind | str,
        product_id: str,
        variant: str,
        location: str,
    ) -> Decimal:
        """Sum over every lot of one product variant at one location."""
        total = self.session.execute(
            select(func.sum(StockRecord.quantity)).where(
                StockRecord.item_kind == ItemKind(item_kind).value,
                StockRecord.product_id == product_id,
                StockRecord.variant == variant,
                StockRecord.location == location,
            )
        ).scalar()
        return Decimal(str(total)) if total is not None else ZERO

    def available_unit_count(self, product_id: str, variant: str, location: str) -> int:
        return self.session.execute(
            select(func.count(EquipmentUnit.id)).where(
                EquipmentUnit.product_id == product_id,
                EquipmentUnit.variant == variant,
                EquipmentUnit.location == location,
                EquipmentUnit.status == EquipmentStatus.AVAILABLE.value,
                EquipmentUnit.is_allocated.is_(False),
            )
        ).scalar_one()

    def equipment_units(
        self,
        product_id: str | None = None,
        location: str | None = None,
        status: EquipmentStatus | str | None = None,
    ) -> list[EquipmentUnitView]:
        stmt = select(EquipmentUnit)
        if product_id is not None:
            stmt = stmt.where(EquipmentUnit.product_id == product_id)
        if location is not None:
            stmt = stmt.where(EquipmentUnit.location == location)
        if status is not None:
            stmt = stmt.where(EquipmentUnit.status == EquipmentStatus(status).value)
        stmt = stmt.order_by(EquipmentUnit.item_code)
        return [
            EquipmentUnitView(
                unit_id=unit.id,
                item_code=unit.item_code,
                product_id=unit.product_id,
                variant=unit.variant,
                location=unit.location,
                status=unit.status,
                is_allocated=unit.is_allocated,
            )
            for unit in self.session.execute(stmt).scalars()
        ]
