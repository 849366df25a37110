"""Selectors for the lab ledger (read side)."""

from lab_kernel.selectors.ledger_selector import LedgerSelector
from lab_kernel.selectors.request_selector import RequestSelector
from lab_kernel.selectors.stock_selector import StockSelector

__all__ = [
    "LedgerSelector",
    "RequestSelector",
    "StockSelector",
]
