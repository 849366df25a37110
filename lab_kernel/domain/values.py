"""
Value types for the lab ledger.

Responsibility:
    Closed vocabularies (item kinds, ledger transaction types, statuses,
    gate reason types) and the ``Actor`` value object supplied by the
    authentication collaborator.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Imported by models, engines,
    services and selectors alike.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from uuid import UUID


class ItemKind(str, Enum):
    """Resource kinds tracked by the ledger."""

    CHEMICAL = "chemical"
    GLASSWARE = "glassware"
    EQUIPMENT = "equipment"
    OTHER_PRODUCT = "other_product"


# Kinds an experiment item line can request
REQUESTABLE_KINDS = frozenset({ItemKind.CHEMICAL, ItemKind.GLASSWARE, ItemKind.EQUIPMENT})

# Kinds held as quantity pools in stock records (equipment is serialized)
POOLED_KINDS = frozenset({ItemKind.CHEMICAL, ItemKind.GLASSWARE, ItemKind.OTHER_PRODUCT})


class TransactionType(str, Enum):
    """Ledger movement types."""

    ENTRY = "entry"
    ISSUE = "issue"
    ALLOCATION = "allocation"
    TRANSFER = "transfer"
    RETURN = "return"
    BROKEN = "broken"
    MAINTENANCE = "maintenance"


class TransactionDirection(str, Enum):
    IN = "in"
    OUT = "out"
    TRANSFER = "transfer"


class Condition(str, Enum):
    """Physical condition recorded against a movement."""

    GOOD = "good"
    DAMAGED = "damaged"
    BROKEN = "broken"
    UNDER_MAINTENANCE = "under_maintenance"


class EquipmentStatus(str, Enum):
    """Lifecycle status of a serialized equipment unit."""

    AVAILABLE = "available"
    ISSUED = "issued"
    ASSIGNED = "assigned"
    MAINTENANCE = "maintenance"
    DISCARDED = "discarded"


class RequestStatus(str, Enum):
    """Request lifecycle.

    PENDING -> APPROVED | REJECTED; APPROVED <-> PARTIALLY_FULFILLED <-> FULFILLED
    as allocations and returns land.
    """

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    FULFILLED = "fulfilled"
    PARTIALLY_FULFILLED = "partially_fulfilled"


# A fulfilled request stays open to allocation calls; the per-line remaining
# check rejects them with ITEM_FULLY_ALLOCATED.
ALLOCATABLE_REQUEST_STATUSES = frozenset(
    {RequestStatus.APPROVED, RequestStatus.PARTIALLY_FULFILLED, RequestStatus.FULFILLED}
)


class FulfillmentStatus(str, Enum):
    """Per-experiment fulfillment derived from its item lines."""

    PENDING = "pending"
    PARTIALLY_FULFILLED = "partially_fulfilled"
    FULFILLED = "fulfilled"


class ReasonType(str, Enum):
    """Machine-checkable outcome of the date/permission gate."""

    ALLOCATABLE = "allocatable"
    DATE_EXPIRED_ADMIN_ONLY = "date_expired_admin_only"
    DATE_EXPIRED_COMPLETELY = "date_expired_completely"
    FULLY_ALLOCATED = "fully_allocated"
    NO_ITEMS = "no_items"


@dataclass(frozen=True)
class Actor:
    """Authenticated caller, as supplied by the auth collaborator."""

    actor_id: UUID
    role: str


ZERO = Decimal("0")
