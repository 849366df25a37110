"""
Stock Store models: pooled stock records and serialized equipment units.

Responsibility:
    ``StockRecord`` holds the allocatable quantity of one product variant
    (and lot) at one location.  ``EquipmentUnit`` is one physical piece of
    equipment; equipment is never pooled.

Architecture position:
    Kernel > Models.  Mutated only through ``StockService`` -- direct
    quantity writes are forbidden; every change is a guarded UPDATE.

Invariants enforced:
    - quantity >= 0 (CHECK constraint plus the guarded decrement).
    - One record per (item_kind, product_id, variant, location, lot_code).
    - An equipment unit is allocated to at most one item line at a time
      (is_allocated flipped only by a guarded UPDATE).
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from lab_kernel.db.base import TrackedBase, UUIDString
from lab_kernel.domain.values import EquipmentStatus, ItemKind


class StockRecord(TrackedBase):
    """
    Quantity of one product variant lot at one location.

    Contract:
        ``location`` is the central store code or a lab code.  Chemicals
        carry ``expiry_date`` per lot; FIFO consumes the earliest expiry
        first.  ``lot_code`` distinguishes batches of the same product at
        the same location and is empty for unbatched stock.

    Guarantees:
        - quantity is never negative.

    Non-goals:
        - Does not price stock; valuation is out of scope.
    """

    __tablename__ = "stock_records"

    __table_args__ = (
        UniqueConstraint(
            "item_kind",
            "product_id",
            "variant",
            "location",
            "lot_code",
            name="uq_stock_record_identity",
        ),
        CheckConstraint("quantity >= 0", name="ck_stock_record_quantity_non_negative"),
        Index("idx_stock_record_lookup", "item_kind", "product_id", "variant", "location"),
        Index("idx_stock_record_location", "location"),
    )

    item_kind: Mapped[ItemKind] = mapped_column(String(20), nullable=False)

    # Catalog reference; the catalog itself lives outside the ledger
    product_id: Mapped[str] = mapped_column(String(100), nullable=False)

    variant: Mapped[str] = mapped_column(String(100), nullable=False, default="")

    unit: Mapped[str] = mapped_column(String(20), nullable=False, default="")

    location: Mapped[str] = mapped_column(String(100), nullable=False)

    lot_code: Mapped[str] = mapped_column(String(100), nullable=False, default="")

    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    quantity: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    def __repr__(self) -> str:
        return (
            f"<StockRecord {self.item_kind}:{self.product_id}/{self.variant} "
            f"@{self.location} lot={self.lot_code!r} qty={self.quantity}>"
        )

    @property
    def is_empty(self) -> bool:
        return self.quantity <= 0


class EquipmentUnit(TrackedBase):
    """
    One serialized piece of equipment.

    Contract:
        ``item_code`` is the physical tag and is globally unique.  While
        ``is_allocated`` is True the unit sits at the requesting lab with
        status ASSIGNED.

    Guarantees:
        - item_code is unique (uq_equipment_item_code).
    """

    __tablename__ = "equipment_units"

    __table_args__ = (
        UniqueConstraint("item_code", name="uq_equipment_item_code"),
        Index("idx_equipment_lookup", "product_id", "variant", "location", "status"),
    )

    item_code: Mapped[str] = mapped_column(String(100), nullable=False)

    product_id: Mapped[str] = mapped_column(String(100), nullable=False)

    variant: Mapped[str] = mapped_column(String(100), nullable=False, default="")

    location: Mapped[str] = mapped_column(String(100), nullable=False)

    status: Mapped[EquipmentStatus] = mapped_column(
        String(20),
        nullable=False,
        default=EquipmentStatus.AVAILABLE.value,
    )

    is_allocated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Faculty holding the unit while allocated
    assigned_to_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def __repr__(self) -> str:
        return f"<EquipmentUnit {self.item_code} {self.status} @{self.location}>"

    @property
    def is_available(self) -> bool:
        return self.status == EquipmentStatus.AVAILABLE and not self.is_allocated
