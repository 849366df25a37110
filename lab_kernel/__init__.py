"""
Lab Kernel - allocation and return ledger for lab resources.

Tracks chemicals, glassware and equipment across a central store and
many labs, and fulfills faculty requests against that stock with:
- Guarded (compare-and-guard) stock decrements
- An append-only movement ledger
- Per-line allocation state with reversible history
- Date-gated, role-sensitive permissions
"""

__version__ = "0.1.0"
