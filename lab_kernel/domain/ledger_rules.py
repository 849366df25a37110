"""
Ledger movement rules.

Responsibility:
    Pure validation of a proposed ledger movement before it is written,
    and the direction classification used by reporting.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Called by LedgerWriter before it
    constructs a LedgerEntry row.

Invariants enforced:
    - transfer: both endpoints present and distinct.
    - allocation: destination present.
    - return: source present.
    - entry: destination present.
    - issue, broken, maintenance: source present.
    - broken, maintenance: a reason is recorded.
    - quantity > 0 for every movement.
"""

from decimal import Decimal

from lab_kernel.domain.values import Condition, TransactionDirection, TransactionType
from lab_kernel.exceptions import LedgerEntryValidationError

_DIRECTIONS = {
    TransactionType.ENTRY: TransactionDirection.IN,
    TransactionType.RETURN: TransactionDirection.IN,
    TransactionType.ISSUE: TransactionDirection.OUT,
    TransactionType.ALLOCATION: TransactionDirection.OUT,
    TransactionType.BROKEN: TransactionDirection.OUT,
    TransactionType.MAINTENANCE: TransactionDirection.OUT,
    TransactionType.TRANSFER: TransactionDirection.TRANSFER,
}

_REASON_REQUIRED = frozenset({TransactionType.BROKEN, TransactionType.MAINTENANCE})
_SOURCE_REQUIRED = frozenset(
    {
        TransactionType.TRANSFER,
        TransactionType.RETURN,
        TransactionType.ISSUE,
        TransactionType.BROKEN,
        TransactionType.MAINTENANCE,
    }
)
_DESTINATION_REQUIRED = frozenset(
    {TransactionType.TRANSFER, TransactionType.ALLOCATION, TransactionType.ENTRY}
)


def direction_for(transaction_type: TransactionType | str) -> TransactionDirection:
    return _DIRECTIONS[TransactionType(transaction_type)]


def validate_movement(
    transaction_type: TransactionType | str,
    quantity: Decimal,
    from_location: str | None,
    to_location: str | None,
    reason: str | None = None,
    condition: Condition | str = Condition.GOOD,
) -> TransactionType:
    """
    Check a movement against its transaction-type rules.

    Returns:
        The normalised TransactionType.

    Raises:
        LedgerEntryValidationError: If any rule is violated.
    """
    try:
        tx_type = TransactionType(transaction_type)
    except ValueError:
        raise LedgerEntryValidationError(str(transaction_type), "unknown transaction type")

    try:
        Condition(condition)
    except ValueError:
        raise LedgerEntryValidationError(tx_type.value, f"unknown condition {condition!r}")

    if quantity is None or quantity <= 0:
        raise LedgerEntryValidationError(tx_type.value, "quantity must be positive")

    if tx_type in _SOURCE_REQUIRED and not from_location:
        raise LedgerEntryValidationError(tx_type.value, "from_location is required")

    if tx_type in _DESTINATION_REQUIRED and not to_location:
        raise LedgerEntryValidationError(tx_type.value, "to_location is required")

    if tx_type == TransactionType.TRANSFER and from_location == to_location:
        raise LedgerEntryValidationError(
            tx_type.value, "from_location and to_location must differ"
        )

    if tx_type in _REASON_REQUIRED and not (reason and reason.strip()):
        raise LedgerEntryValidationError(tx_type.value, "reason is required")

    return tx_type
