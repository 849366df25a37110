"""
Data Transfer Objects for the lab ledger.

Responsibility:
    Frozen commands accepted by the allocation, return and request
    services, the per-line and batch results they return, and the read
    views produced by selectors.  These are the only types that cross the
    boundary to the (excluded) transport layer.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Invariants enforced:
    - Every failed result carries at least one ``LineError`` with a
      machine-checkable ``code``; no result is boolean-only.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from lab_kernel.domain.values import (
    Actor,
    FulfillmentStatus,
    ItemKind,
    ReasonType,
    RequestStatus,
)


# =============================================================================
# Request authoring
# =============================================================================


@dataclass(frozen=True)
class ItemLineSpec:
    """One requested product on a new experiment."""

    item_kind: ItemKind | str
    product_id: str
    quantity: Decimal | int | str
    variant: str = ""
    unit: str = ""


@dataclass(frozen=True)
class ExperimentSpec:
    """One experiment on a new request."""

    experiment_ref: str
    scheduled_date: date
    items: tuple[ItemLineSpec, ...] = ()
    experiment_name: str = ""
    course_ref: str = ""
    batch_ref: str = ""


# =============================================================================
# Commands
# =============================================================================


@dataclass(frozen=True)
class AllocationCommand:
    """
    Allocate against one item line.

    ``amount`` is a quantity for chemicals/glassware and a unit count for
    equipment; equipment may instead name ``item_codes``.
    ``source_location`` defaults to the central store.
    """

    request_id: UUID
    experiment_id: UUID
    item_line_id: UUID
    item_kind: ItemKind | str
    actor: Actor
    amount: Decimal | int | str | None = None
    item_codes: tuple[str, ...] = ()
    source_location: str | None = None


@dataclass(frozen=True)
class ReturnCommand:
    """Return against one item line (amount, or item codes for equipment)."""

    request_id: UUID
    experiment_id: UUID
    item_line_id: UUID
    item_kind: ItemKind | str
    actor: Actor
    amount: Decimal | int | str | None = None
    item_codes: tuple[str, ...] = ()


# =============================================================================
# Results
# =============================================================================


class LineStatus(str, Enum):
    ALLOCATED = "allocated"
    PARTIAL = "partial"
    RETURNED = "returned"
    FAILED = "failed"


class AllocationBatchStatus(str, Enum):
    FULLY_ALLOCATED = "fully_allocated"
    PARTIALLY_ALLOCATED = "partially_allocated"
    ALL_FAILED = "all_failed"


class ReturnBatchStatus(str, Enum):
    FULLY_RETURNED = "fully_returned"
    PARTIALLY_RETURNED = "partially_returned"
    ALL_FAILED = "all_failed"


@dataclass(frozen=True)
class LineError:
    """Machine-checkable rejection reason for one line."""

    code: str
    message: str
    reason_type: str | None = None

    @classmethod
    def from_exception(cls, exc: Exception) -> LineError:
        return cls(
            code=getattr(exc, "code", "UNEXPECTED_ERROR"),
            message=str(exc),
            reason_type=getattr(exc, "reason_type", None),
        )


@dataclass(frozen=True)
class LineAllocationResult:
    """
    Outcome of one allocation.

    Guarantees:
        - status FAILED implies allocated_amount == 0 and no ledger entries.
        - status PARTIAL means the line still has quantity left to allocate.
    """

    item_line_id: UUID
    status: LineStatus
    allocated_amount: Decimal = Decimal("0")
    errors: tuple[LineError, ...] = ()
    ledger_entry_ids: tuple[UUID, ...] = ()
    item_codes: tuple[str, ...] = ()

    @property
    def succeeded(self) -> bool:
        return self.status != LineStatus.FAILED


@dataclass(frozen=True)
class LineReturnResult:
    """Outcome of one return."""

    item_line_id: UUID
    status: LineStatus
    returned_amount: Decimal = Decimal("0")
    errors: tuple[LineError, ...] = ()
    ledger_entry_ids: tuple[UUID, ...] = ()
    item_codes: tuple[str, ...] = ()

    @property
    def succeeded(self) -> bool:
        return self.status != LineStatus.FAILED


@dataclass(frozen=True)
class BatchAllocationResult:
    """Multi-status outcome of a batch; one result per command, in order."""

    overall_status: AllocationBatchStatus
    results: tuple[LineAllocationResult, ...]

    @property
    def succeeded(self) -> tuple[LineAllocationResult, ...]:
        return tuple(r for r in self.results if r.succeeded)

    @property
    def failed(self) -> tuple[LineAllocationResult, ...]:
        return tuple(r for r in self.results if not r.succeeded)


@dataclass(frozen=True)
class BatchReturnResult:
    overall_status: ReturnBatchStatus
    results: tuple[LineReturnResult, ...]


# =============================================================================
# Permission and status views
# =============================================================================


@dataclass(frozen=True)
class ExperimentAllocationStatus:
    """Gate decision combined with the experiment's line counts."""

    experiment_id: UUID
    can_allocate: bool
    reason_type: ReasonType
    message: str
    days_remaining: int | None = None
    days_overdue: int | None = None
    pending_lines: int = 0
    re_enabled_lines: int = 0
    admin_override: bool = False


@dataclass(frozen=True)
class ItemPermissions:
    """What an actor may do to one item line right now."""

    item_line_id: UUID
    can_edit: bool
    can_disable: bool
    can_enable: bool
    can_increase: bool
    max_increase: Decimal
    reason_type: ReasonType
    message: str


@dataclass(frozen=True)
class ExperimentSummary:
    experiment_id: UUID
    experiment_ref: str
    scheduled_date: date
    fulfillment_status: FulfillmentStatus
    total_lines: int
    disabled_lines: int
    allocated_lines: int
    fully_allocated_lines: int


@dataclass(frozen=True)
class RequestSummary:
    request_id: UUID
    lab_id: str
    faculty_id: UUID
    status: RequestStatus
    experiments: tuple[ExperimentSummary, ...] = ()


# =============================================================================
# Stock and ledger views
# =============================================================================


@dataclass(frozen=True)
class StockLevel:
    record_id: UUID
    item_kind: ItemKind
    product_id: str
    variant: str
    location: str
    lot_code: str
    expiry_date: date | None
    quantity: Decimal
    unit: str = ""


@dataclass(frozen=True)
class EquipmentUnitView:
    unit_id: UUID
    item_code: str
    product_id: str
    variant: str
    location: str
    status: str
    is_allocated: bool


@dataclass(frozen=True)
class LedgerEntryView:
    entry_id: UUID
    seq: int
    transaction_type: str
    direction: str
    item_kind: str
    product_id: str
    variant: str
    lot_code: str
    quantity: Decimal
    from_location: str | None
    to_location: str | None
    custody_location: str | None
    condition: str
    reason: str | None
    occurred_at: datetime
    created_by_id: UUID
    request_id: UUID | None = None
    item_line_id: UUID | None = None
    equipment_unit_id: UUID | None = None


@dataclass(frozen=True)
class StockMismatch:
    """Stock record quantity disagrees with the ledger replay."""

    item_kind: str
    product_id: str
    variant: str
    location: str
    lot_code: str
    recorded_quantity: Decimal
    ledger_quantity: Decimal

    @property
    def difference(self) -> Decimal:
        return self.recorded_quantity - self.ledger_quantity


@dataclass(frozen=True)
class ItemLineDrift:
    """Cached allocated amount disagrees with allocation history."""

    item_line_id: UUID
    cached_quantity: Decimal
    history_quantity: Decimal
    repaired: bool


@dataclass(frozen=True)
class ReconciliationReport:
    stock_mismatches: tuple[StockMismatch, ...] = field(default_factory=tuple)
    item_line_drift: tuple[ItemLineDrift, ...] = field(default_factory=tuple)

    @property
    def is_clean(self) -> bool:
        return not self.stock_mismatches and not self.item_line_drift
