"""
Request models: requests, experiments, item lines and their histories.

Responsibility:
    A faculty ``Request`` owns ordered ``Experiment`` rows, each owning
    ``ItemLine`` rows (chemical, glassware or equipment).  The item line is
    the allocation state machine unit.  Its ``allocation_history`` is the
    authoritative record of what is out; ``allocated_quantity`` and
    ``is_allocated`` are caches recomputed from it after every mutation.

Architecture position:
    Kernel > Models.  Mutated by AllocationService, ReturnService,
    ItemAdminService and StatusService, always within one request.

Invariants enforced:
    - allocated_quantity == sum of outstanding AllocationSource amounts.
    - is_allocated == (allocated_quantity > 0).
    - is_disabled and is_allocated are never both True (checked by
      ItemAdminService before disabling).
    - Item lines are never deleted; ReturnEvent rows are immutable.

Audit relevance:
    AllocationEvent keeps the amount and actor of every allocation and its
    per-source breakdown.  Returns mark sources returned (oldest first)
    rather than deleting history, so the original allocation remains
    readable after reversal.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lab_kernel.db.base import Base, TrackedBase, UUIDString
from lab_kernel.domain.values import (
    ZERO,
    FulfillmentStatus,
    ItemKind,
    ReasonType,
    RequestStatus,
)


class Request(TrackedBase):
    """
    A faculty request for lab resources.

    Contract:
        Status moves PENDING -> APPROVED | REJECTED by explicit admin action;
        afterwards StatusService derives APPROVED / PARTIALLY_FULFILLED /
        FULFILLED from the item lines.
    """

    __tablename__ = "requests"

    __table_args__ = (
        Index("idx_request_lab", "lab_id"),
        Index("idx_request_faculty", "faculty_id"),
        Index("idx_request_status", "status"),
    )

    faculty_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    lab_id: Mapped[str] = mapped_column(String(100), nullable=False)

    status: Mapped[RequestStatus] = mapped_column(
        String(30), nullable=False, default=RequestStatus.PENDING.value
    )

    approved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Admin edit summary
    has_admin_edits: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_edited_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    last_edited_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    edit_summary: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    experiments: Mapped[list["Experiment"]] = relationship(
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="Experiment.position",
    )

    def __repr__(self) -> str:
        return f"<Request {self.id} lab={self.lab_id} {self.status}>"

    def item_lines(self) -> list["ItemLine"]:
        return [line for exp in self.experiments for line in exp.item_lines]


class Experiment(TrackedBase):
    """
    One scheduled experiment within a request.

    Contract:
        ``scheduled_date`` is the usage date consulted by the date gate.
        The ``can_allocate`` .. ``status_checked_at`` columns cache the last
        gate evaluation; the override columns are the per-experiment admin
        override and are authoritative.
    """

    __tablename__ = "experiments"

    __table_args__ = (Index("idx_experiment_request", "request_id"),)

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("requests.id"), nullable=False
    )

    position: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    experiment_ref: Mapped[str] = mapped_column(String(100), nullable=False)
    experiment_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    course_ref: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    batch_ref: Mapped[str] = mapped_column(String(100), nullable=False, default="")

    # Scheduled usage date consulted by the date gate
    scheduled_date: Mapped[date] = mapped_column("date", Date, nullable=False)

    fulfillment_status: Mapped[FulfillmentStatus] = mapped_column(
        String(30), nullable=False, default=FulfillmentStatus.PENDING.value
    )

    # Gate decision cache
    can_allocate: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    status_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    reason_type: Mapped[ReasonType] = mapped_column(
        String(40), nullable=False, default=ReasonType.ALLOCATABLE.value
    )
    status_checked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Admin override
    admin_override: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    override_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    override_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    override_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    request: Mapped[Request] = relationship(back_populates="experiments")

    item_lines: Mapped[list["ItemLine"]] = relationship(
        back_populates="experiment",
        cascade="all, delete-orphan",
        order_by="ItemLine.position",
    )

    def __repr__(self) -> str:
        return f"<Experiment {self.experiment_ref} on {self.scheduled_date}>"

    def lines_of_kind(self, kind: ItemKind) -> list["ItemLine"]:
        return [line for line in self.item_lines if line.item_kind == kind]

    @property
    def chemicals(self) -> list["ItemLine"]:
        return self.lines_of_kind(ItemKind.CHEMICAL)

    @property
    def glassware(self) -> list["ItemLine"]:
        return self.lines_of_kind(ItemKind.GLASSWARE)

    @property
    def equipment(self) -> list["ItemLine"]:
        return self.lines_of_kind(ItemKind.EQUIPMENT)

    @property
    def active_lines(self) -> list["ItemLine"]:
        return [line for line in self.item_lines if not line.is_disabled]


class ItemLine(TrackedBase):
    """
    One requested product (quantity or equipment count) within an experiment.

    Contract:
        ``quantity`` is the requested amount (unit count for equipment).
        ``original_quantity`` is snapshotted on the first admin quantity
        edit.  ``was_disabled`` becomes True the first time a disabled line
        is re-enabled and never reverts.

    Guarantees:
        - recompute_allocation() is the only writer of allocated_quantity
          and is_allocated.
    """

    __tablename__ = "item_lines"

    __table_args__ = (
        Index("idx_item_line_experiment", "experiment_id"),
        Index("idx_item_line_product", "item_kind", "product_id", "variant"),
    )

    experiment_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("experiments.id"), nullable=False
    )

    position: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    item_kind: Mapped[ItemKind] = mapped_column(String(20), nullable=False)
    product_id: Mapped[str] = mapped_column(String(100), nullable=False)
    variant: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    unit: Mapped[str] = mapped_column(String(20), nullable=False, default="")

    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    original_quantity: Mapped[Decimal | None] = mapped_column(nullable=True)

    allocated_quantity: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    is_allocated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    is_disabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    disabled_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    was_disabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    experiment: Mapped[Experiment] = relationship(back_populates="item_lines")

    allocation_history: Mapped[list["AllocationEvent"]] = relationship(
        back_populates="item_line",
        cascade="all, delete-orphan",
        order_by="AllocationEvent.sequence",
    )

    return_history: Mapped[list["ReturnEvent"]] = relationship(
        back_populates="item_line",
        cascade="all, delete-orphan",
        order_by="ReturnEvent.sequence",
    )

    def __repr__(self) -> str:
        return (
            f"<ItemLine {self.item_kind}:{self.product_id} "
            f"{self.allocated_quantity}/{self.quantity}>"
        )

    @property
    def remaining_quantity(self) -> Decimal:
        return max(self.quantity - self.allocated_quantity, ZERO)

    @property
    def is_fully_allocated(self) -> bool:
        return self.allocated_quantity >= self.quantity

    def outstanding_sources(self) -> list["AllocationSource"]:
        """Sources with quantity still out, oldest allocation first."""
        return [
            source
            for event in self.allocation_history
            for source in event.sources
            if source.outstanding > 0
        ]

    def active_item_codes(self) -> list[str]:
        """Equipment item codes allocated and not yet returned."""
        return [
            source.item_code
            for source in self.outstanding_sources()
            if source.item_code is not None
        ]

    def recompute_allocation(self) -> Decimal:
        """Refresh the cached allocated amount from allocation history."""
        total = sum((s.outstanding for s in self.outstanding_sources()), ZERO)
        self.allocated_quantity = total
        self.is_allocated = total > 0
        return total


class AllocationEvent(Base):
    """
    One successful allocation against an item line (an allocationHistory entry).

    Contract:
        ``quantity`` and ``item_codes`` record what was allocated and never
        change.  What is still out is tracked on the child sources.
    """

    __tablename__ = "allocation_events"

    __table_args__ = (Index("idx_allocation_event_line", "item_line_id", "sequence"),)

    item_line_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("item_lines.id"), nullable=False
    )

    sequence: Mapped[int] = mapped_column(BigInteger, nullable=False)

    allocated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    allocated_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    item_codes: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    item_line: Mapped[ItemLine] = relationship(back_populates="allocation_history")

    sources: Mapped[list["AllocationSource"]] = relationship(
        back_populates="allocation_event",
        cascade="all, delete-orphan",
        order_by="AllocationSource.position",
    )

    @property
    def outstanding(self) -> Decimal:
        return sum((s.outstanding for s in self.sources), ZERO)


class AllocationSource(Base):
    """
    The share of one allocation drawn from one stock record or unit.

    Contract:
        ``returned_quantity`` grows as returns reverse this share; it never
        exceeds ``quantity``.  For equipment, ``quantity`` is 1 and
        ``item_code`` names the unit.
    """

    __tablename__ = "allocation_sources"

    __table_args__ = (
        Index("idx_allocation_source_event", "allocation_event_id"),
        Index("idx_allocation_source_unit", "equipment_unit_id"),
    )

    allocation_event_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("allocation_events.id"), nullable=False
    )

    position: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    source_location: Mapped[str] = mapped_column(String(100), nullable=False)
    destination_location: Mapped[str] = mapped_column(String(100), nullable=False)

    stock_record_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    destination_record_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    equipment_unit_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    item_code: Mapped[str | None] = mapped_column(String(100), nullable=True)

    lot_code: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    returned_quantity: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)

    allocation_event: Mapped[AllocationEvent] = relationship(back_populates="sources")

    @property
    def outstanding(self) -> Decimal:
        return self.quantity - (self.returned_quantity or ZERO)


class ReturnEvent(Base):
    """One return against an item line (a returnHistory entry). Immutable."""

    __tablename__ = "return_events"

    __table_args__ = (Index("idx_return_event_line", "item_line_id", "sequence"),)

    item_line_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("item_lines.id"), nullable=False
    )

    sequence: Mapped[int] = mapped_column(BigInteger, nullable=False)

    returned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    returned_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    item_codes: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    item_line: Mapped[ItemLine] = relationship(back_populates="return_history")
