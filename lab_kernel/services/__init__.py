"""Services for the lab ledger (write side)."""

from lab_kernel.services.allocation_service import AllocationService
from lab_kernel.services.item_admin_service import ItemAdminService
from lab_kernel.services.item_strategies import (
    AllocationStrategy,
    ChemicalPoolStrategy,
    EquipmentUnitStrategy,
    GlasswarePoolStrategy,
    strategy_for,
)
from lab_kernel.services.ledger_writer import LedgerWriter
from lab_kernel.services.reconciliation_service import ReconciliationService
from lab_kernel.services.request_service import RequestService
from lab_kernel.services.return_service import ReturnService
from lab_kernel.services.sequence_service import SequenceService
from lab_kernel.services.status_service import StatusService
from lab_kernel.services.stock_service import StockService

__all__ = [
    "AllocationService",
    "AllocationStrategy",
    "ChemicalPoolStrategy",
    "EquipmentUnitStrategy",
    "GlasswarePoolStrategy",
    "ItemAdminService",
    "LedgerWriter",
    "ReconciliationService",
    "RequestService",
    "ReturnService",
    "SequenceService",
    "StatusService",
    "StockService",
    "strategy_for",
]
