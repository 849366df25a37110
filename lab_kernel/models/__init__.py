"""ORM models for the lab ledger."""

from lab_kernel.models.ledger import LedgerEntry
from lab_kernel.models.request import (
    AllocationEvent,
    AllocationSource,
    Experiment,
    ItemLine,
    Request,
    ReturnEvent,
)
from lab_kernel.models.stock import EquipmentUnit, StockRecord

__all__ = [
    "StockRecord",
    "EquipmentUnit",
    "LedgerEntry",
    "Request",
    "Experiment",
    "ItemLine",
    "AllocationEvent",
    "AllocationSource",
    "ReturnEvent",
]
