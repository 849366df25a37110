"""
Pure domain layer.

Value types, item-kind payloads, ledger movement rules, the clock
abstraction and DTOs, with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O
"""

from lab_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from lab_kernel.domain.dtos import (
    AllocationCommand,
    BatchAllocationResult,
    BatchReturnResult,
    ExperimentSpec,
    ItemLineSpec,
    LineAllocationResult,
    LineError,
    LineReturnResult,
    LineStatus,
    ReturnCommand,
)
from lab_kernel.domain.item_kinds import QuantityPayload, UnitPayload, build_payload
from lab_kernel.domain.values import (
    Actor,
    Condition,
    EquipmentStatus,
    FulfillmentStatus,
    ItemKind,
    ReasonType,
    RequestStatus,
    TransactionType,
)

__all__ = [
    "Actor",
    "AllocationCommand",
    "BatchAllocationResult",
    "BatchReturnResult",
    "Clock",
    "Condition",
    "DeterministicClock",
    "EquipmentStatus",
    "ExperimentSpec",
    "FulfillmentStatus",
    "ItemKind",
    "ItemLineSpec",
    "LineAllocationResult",
    "LineError",
    "LineReturnResult",
    "LineStatus",
    "QuantityPayload",
    "ReasonType",
    "RequestStatus",
    "ReturnCommand",
    "SystemClock",
    "TransactionType",
    "UnitPayload",
    "build_payload",
]
