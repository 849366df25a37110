"""
Typed Exception Hierarchy for the Lab Ledger.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every rejection the ledger produces must carry a machine-checkable reason.
Callers (the transport layer, batch result builders, reporting tools) catch
by type and read ``code``; they never parse message strings.

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        allocation_service.allocate(command)
    except DateGateRejectedError as e:
        respond(code=e.code, reason_type=e.reason_type, days_overdue=e.days_overdue)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from LabLedgerError:

    LabLedgerError (base)
    |
    +-- ValidationError                 rejected before any mutation
    |   +-- InvalidReferenceError
    |   +-- MissingFieldError
    |   +-- InvalidQuantityError
    |   +-- UnknownRoleError
    |   +-- LedgerEntryValidationError
    |
    +-- BusinessRuleError               rejected with a reason, no partial effect
    |   +-- InsufficientStockError
    |   +-- ReturnExceedsAllocatedError
    |   +-- DateGateRejectedError
    |   +-- ItemDisabledError
    |   +-- ItemFullyAllocatedError
    |   +-- ItemNotAllocatedError
    |   +-- DisableAllocatedItemError
    |   +-- OverrideReasonRequiredError
    |   +-- OverrideNotNeededError
    |   +-- PermissionDeniedError
    |   +-- RequestNotAllocatableError
    |   +-- InvalidStatusTransitionError
    |   +-- QuantityBelowAllocatedError
    |   +-- EquipmentUnavailableError
    |
    +-- ConcurrencyError
    |   +-- StockGuardConflictError     (also an InsufficientStockError)
    |
    +-- LedgerIntegrityError            fatal for the operation, never skipped
    |   +-- RequestNotFoundError
    |   +-- ExperimentNotFoundError
    |   +-- ItemLineNotFoundError
    |   +-- StockRecordNotFoundError
    |   +-- DestinationUnresolvableError
    |   +-- CustodyShortfallError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
"""

from decimal import Decimal


class LabLedgerError(Exception):
    """
    Base exception for all lab ledger errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "LAB_LEDGER_ERROR"


# Validation errors


class ValidationError(LabLedgerError):
    """Base exception for malformed input."""

    code: str = "VALIDATION_ERROR"


class InvalidReferenceError(ValidationError):
    """A reference could not be parsed or points at the wrong owner."""

    code: str = "INVALID_REFERENCE"

    def __init__(self, field: str, value: object, reason: str = "malformed reference"):
        self.field = field
        self.value = str(value)
        self.reason = reason
        super().__init__(f"Invalid reference for {field}={value!r}: {reason}")


class MissingFieldError(ValidationError):
    """A required field was absent or blank."""

    code: str = "MISSING_FIELD"

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Missing required field: {field}")


class InvalidQuantityError(ValidationError):
    """Quantity was zero, negative or otherwise unusable."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, quantity: object, reason: str = "quantity must be positive"):
        self.quantity = str(quantity)
        self.reason = reason
        super().__init__(f"Invalid quantity {quantity}: {reason}")


class UnknownRoleError(ValidationError):
    """Actor role is not one the ledger recognizes."""

    code: str = "UNKNOWN_ROLE"

    def __init__(self, role: str):
        self.role = role
        super().__init__(f"Unknown actor role: {role!r}")


class LedgerEntryValidationError(ValidationError):
    """A ledger entry violates its transaction-type rules."""

    code: str = "LEDGER_ENTRY_INVALID"

    def __init__(self, transaction_type: str, reason: str):
        self.transaction_type = transaction_type
        self.reason = reason
        super().__init__(f"Invalid {transaction_type} ledger entry: {reason}")


# Business-rule errors


class BusinessRuleError(LabLedgerError):
    """Base exception for requests rejected by a business rule."""

    code: str = "BUSINESS_RULE_ERROR"


class InsufficientStockError(BusinessRuleError):
    """Aggregate eligible stock cannot cover the requested amount."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        product_id: str,
        location: str,
        requested: Decimal,
        available: Decimal,
    ):
        self.product_id = product_id
        self.location = location
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for {product_id} at {location}: "
            f"requested {requested}, available {available}"
        )


class ReturnExceedsAllocatedError(BusinessRuleError):
    """Return amount is larger than what is currently out."""

    code: str = "RETURN_EXCEEDS_ALLOCATED"

    def __init__(self, item_line_id: str, requested: Decimal, outstanding: Decimal):
        self.item_line_id = item_line_id
        self.requested = requested
        self.outstanding = outstanding
        super().__init__(
            f"Cannot return {requested} on item line {item_line_id}: "
            f"only {outstanding} currently allocated"
        )


class DateGateRejectedError(BusinessRuleError):
    """The date/permission gate blocked the mutation."""

    code: str = "DATE_GATE_REJECTED"

    def __init__(
        self,
        experiment_id: str,
        reason_type: str,
        message: str,
        days_overdue: int | None = None,
    ):
        self.experiment_id = experiment_id
        self.reason_type = reason_type
        self.days_overdue = days_overdue
        super().__init__(message)


class ItemDisabledError(BusinessRuleError):
    """Item line is administratively disabled."""

    code: str = "ITEM_DISABLED"

    def __init__(self, item_line_id: str, disabled_reason: str | None):
        self.item_line_id = item_line_id
        self.disabled_reason = disabled_reason
        super().__init__(
            f"Item line {item_line_id} is disabled: {disabled_reason or 'no reason recorded'}"
        )


class ItemFullyAllocatedError(BusinessRuleError):
    """Nothing remains to allocate on the item line, or the amount exceeds it."""

    code: str = "ITEM_FULLY_ALLOCATED"

    def __init__(self, item_line_id: str, requested: Decimal, remaining: Decimal):
        self.item_line_id = item_line_id
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            f"Item line {item_line_id} has {remaining} left to allocate, "
            f"cannot allocate {requested}"
        )


class ItemNotAllocatedError(BusinessRuleError):
    """Return attempted on a line with nothing allocated."""

    code: str = "ITEM_NOT_ALLOCATED"

    def __init__(self, item_line_id: str):
        self.item_line_id = item_line_id
        super().__init__(f"Item line {item_line_id} has no outstanding allocation")


class DisableAllocatedItemError(BusinessRuleError):
    """Disabling is only permitted on non-allocated lines."""

    code: str = "DISABLE_ALLOCATED_ITEM"

    def __init__(self, item_line_id: str):
        self.item_line_id = item_line_id
        super().__init__(f"Cannot disable allocated item line {item_line_id}")


class OverrideReasonRequiredError(BusinessRuleError):
    """Admin override needs a non-empty reason."""

    code: str = "OVERRIDE_REASON_REQUIRED"

    def __init__(self, experiment_id: str):
        self.experiment_id = experiment_id
        super().__init__(f"Override reason is required for experiment {experiment_id}")


class OverrideNotNeededError(BusinessRuleError):
    """Admin override requested while the admin gate already allows mutation."""

    code: str = "OVERRIDE_NOT_NEEDED"

    def __init__(self, experiment_id: str, reason_type: str):
        self.experiment_id = experiment_id
        self.reason_type = reason_type
        super().__init__(
            f"Override not needed for experiment {experiment_id}: date is still valid for admin"
        )


class PermissionDeniedError(BusinessRuleError):
    """Actor role may not perform the operation."""

    code: str = "PERMISSION_DENIED"

    def __init__(self, role: str, operation: str):
        self.role = role
        self.operation = operation
        super().__init__(f"Role {role!r} may not {operation}")


class RequestNotAllocatableError(BusinessRuleError):
    """Request status does not accept allocations."""

    code: str = "REQUEST_NOT_ALLOCATABLE"

    def __init__(self, request_id: str, status: str):
        self.request_id = request_id
        self.status = status
        super().__init__(f"Request {request_id} is {status}; allocation not allowed")


class InvalidStatusTransitionError(BusinessRuleError):
    """Request status transition is not allowed."""

    code: str = "INVALID_STATUS_TRANSITION"

    def __init__(self, request_id: str, from_status: str, to_status: str):
        self.request_id = request_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Request {request_id} cannot move from {from_status} to {to_status}"
        )


class QuantityBelowAllocatedError(BusinessRuleError):
    """Edited quantity would drop below what is already allocated."""

    code: str = "QUANTITY_BELOW_ALLOCATED"

    def __init__(self, item_line_id: str, new_quantity: Decimal, allocated: Decimal):
        self.item_line_id = item_line_id
        self.new_quantity = new_quantity
        self.allocated = allocated
        super().__init__(
            f"Item line {item_line_id}: quantity {new_quantity} is below "
            f"allocated {allocated}"
        )


class EquipmentUnavailableError(BusinessRuleError):
    """Requested equipment unit is not available for allocation."""

    code: str = "EQUIPMENT_UNAVAILABLE"

    def __init__(self, item_code: str, reason: str):
        self.item_code = item_code
        self.reason = reason
        super().__init__(f"Equipment unit {item_code} unavailable: {reason}")


# Concurrency errors


class ConcurrencyError(LabLedgerError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class StockGuardConflictError(ConcurrencyError, InsufficientStockError):
    """
    Guarded decrement lost the race for a contributing stock record.

    Surfaced to callers as insufficient stock; the engine never retries.
    """

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, record_id: str, product_id: str, location: str, requested: Decimal):
        self.record_id = record_id
        self.guard_conflict = True
        InsufficientStockError.__init__(
            self, product_id, location, requested, Decimal("0")
        )


# Integrity errors


class LedgerIntegrityError(LabLedgerError):
    """Base exception for missing or inconsistent persisted state."""

    code: str = "INTEGRITY_ERROR"


class RequestNotFoundError(LedgerIntegrityError):
    """Request with given ID was not found."""

    code: str = "REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Request not found: {request_id}")


class ExperimentNotFoundError(LedgerIntegrityError):
    """Experiment with given ID was not found on the request."""

    code: str = "EXPERIMENT_NOT_FOUND"

    def __init__(self, experiment_id: str):
        self.experiment_id = experiment_id
        super().__init__(f"Experiment not found: {experiment_id}")


class ItemLineNotFoundError(LedgerIntegrityError):
    """Item line with given ID was not found on the experiment."""

    code: str = "ITEM_LINE_NOT_FOUND"

    def __init__(self, item_line_id: str):
        self.item_line_id = item_line_id
        super().__init__(f"Item line not found: {item_line_id}")


class StockRecordNotFoundError(LedgerIntegrityError):
    """Referenced stock record does not exist."""

    code: str = "STOCK_RECORD_NOT_FOUND"

    def __init__(self, record_ref: str):
        self.record_ref = record_ref
        super().__init__(f"Stock record not found: {record_ref}")


class DestinationUnresolvableError(LedgerIntegrityError):
    """A return could not resolve any stock record to credit."""

    code: str = "DESTINATION_UNRESOLVABLE"

    def __init__(self, item_line_id: str, product_id: str):
        self.item_line_id = item_line_id
        self.product_id = product_id
        super().__init__(
            f"No destination stock record for {product_id} on item line {item_line_id}"
        )


class CustodyShortfallError(LedgerIntegrityError):
    """Lab holding no longer covers the quantity being returned."""

    code: str = "CUSTODY_SHORTFALL"

    def __init__(self, location: str, product_id: str, requested: Decimal):
        self.location = location
        self.product_id = product_id
        self.requested = requested
        super().__init__(
            f"Holding of {product_id} at {location} cannot release {requested}"
        )


# Immutability errors


class ImmutabilityError(LabLedgerError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
