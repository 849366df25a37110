"""
ORM-Level Immutability Enforcement.

===============================================================================
HOW IT WORKS
===============================================================================

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
Listeners registered here intercept those events for append-only entities
and raise ImmutabilityViolationError, aborting the flush:

    session.flush()
         |
         v
    [before_update event] --> _check_*_immutability() --> ImmutabilityViolationError
         |
         v
    [before_delete event] --> _check_*_delete() --------> ImmutabilityViolationError

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity        | When Immutable          | Why
--------------|-------------------------|-----------------------------------
LedgerEntry   | ALWAYS (from creation)  | Audit trail of every stock movement
ReturnEvent   | ALWAYS (from creation)  | Return history backs reversal audit
ItemLine      | DELETE only             | Lines are zeroed, never removed

Bulk ``update()`` / ``delete()`` statements bypass mapper events.  The
ledger never issues bulk statements against these tables; stock records
use guarded bulk UPDATEs and are deliberately not listed here.
"""

from sqlalchemy import event

from lab_kernel.exceptions import ImmutabilityViolationError
from lab_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _block(entity_type: str, target, operation: str, reason: str):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


# =============================================================================
# LedgerEntry
# =============================================================================


def _check_ledger_entry_immutability(mapper, connection, target):
    """Ledger entries are never modified."""
    _block("LedgerEntry", target, "UPDATE", "Ledger entries are immutable and cannot be modified")


def _check_ledger_entry_delete(mapper, connection, target):
    """Ledger entries are never deleted."""
    _block("LedgerEntry", target, "DELETE", "Ledger entries cannot be deleted")


# =============================================================================
# ReturnEvent
# =============================================================================


def _check_return_event_immutability(mapper, connection, target):
    _block("ReturnEvent", target, "UPDATE", "Return history is immutable")


def _check_return_event_delete(mapper, connection, target):
    _block("ReturnEvent", target, "DELETE", "Return history cannot be deleted")


# =============================================================================
# ItemLine
# =============================================================================


def _check_item_line_delete(mapper, connection, target):
    _block(
        "ItemLine",
        target,
        "DELETE",
        "Item lines are never deleted; zero the quantity or disable the line",
    )


_LISTENERS = (
    ("LedgerEntry", "before_update", _check_ledger_entry_immutability),
    ("LedgerEntry", "before_delete", _check_ledger_entry_delete),
    ("ReturnEvent", "before_update", _check_return_event_immutability),
    ("ReturnEvent", "before_delete", _check_return_event_delete),
    ("ItemLine", "before_delete", _check_item_line_delete),
)


def _targets():
    from lab_kernel.models.ledger import LedgerEntry
    from lab_kernel.models.request import ItemLine, ReturnEvent

    return {"LedgerEntry": LedgerEntry, "ReturnEvent": ReturnEvent, "ItemLine": ItemLine}


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Call this during application initialization, after models are imported
    and before any ledger operation runs.  Safe to call more than once.
    """
    targets = _targets()
    for name, event_name, listener_fn in _LISTENERS:
        target = targets[name]
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that deliberately violate the rules.
    """
    targets = _targets()
    for name, event_name, listener_fn in _LISTENERS:
        _safe_remove_listener(targets[name], event_name, listener_fn)
