"""
Ledger configuration package.

``LedgerConfig`` is the typed schema; ``load_ledger_config`` reads it from
YAML (packaged defaults when no path is given).
"""

from lab_config.loader import load_ledger_config
from lab_config.schema import LedgerConfig

__all__ = ["LedgerConfig", "load_ledger_config"]
