"""
Item kinds as a closed tagged union.

Responsibility:
    Describes the three requestable item kinds and the shape of the amount
    each one moves.  Chemicals and glassware move a ``QuantityPayload``
    (a decimal amount drawn from pooled stock records); equipment moves a
    ``UnitPayload`` (a set of serialized item codes, or a count of units to
    pick).  Every allocation and return goes through ``build_payload`` so
    that the engines never branch on kind for input handling.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  The persistence-side strategies
    that act on these payloads live in services/item_strategies.py.

Invariants enforced:
    - Quantity payloads are strictly positive.
    - Unit payloads name each item code at most once, and a count is a
      positive whole number.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from lab_kernel.domain.values import REQUESTABLE_KINDS, ItemKind
from lab_kernel.exceptions import InvalidQuantityError, InvalidReferenceError, MissingFieldError


@dataclass(frozen=True)
class QuantityPayload:
    """Amount moved from a quantity pool."""

    amount: Decimal

    @property
    def size(self) -> Decimal:
        return self.amount


@dataclass(frozen=True)
class UnitPayload:
    """
    Serialized units moved.

    ``item_codes`` empty means "pick ``count`` available units".
    """

    count: int
    item_codes: tuple[str, ...] = ()

    @property
    def size(self) -> Decimal:
        return Decimal(self.count)

    @property
    def is_explicit(self) -> bool:
        return bool(self.item_codes)


Payload = QuantityPayload | UnitPayload


@dataclass(frozen=True)
class ItemKindSpec:
    """Static traits of one requestable item kind."""

    kind: ItemKind
    serialized: bool
    fifo_by_expiry: bool


ITEM_KIND_SPECS: dict[ItemKind, ItemKindSpec] = {
    ItemKind.CHEMICAL: ItemKindSpec(ItemKind.CHEMICAL, serialized=False, fifo_by_expiry=True),
    ItemKind.GLASSWARE: ItemKindSpec(ItemKind.GLASSWARE, serialized=False, fifo_by_expiry=False),
    ItemKind.EQUIPMENT: ItemKindSpec(ItemKind.EQUIPMENT, serialized=True, fifo_by_expiry=False),
}


def parse_item_kind(value: ItemKind | str) -> ItemKind:
    """Normalise a requestable item kind or raise InvalidReferenceError."""
    try:
        kind = ItemKind(value)
    except ValueError:
        raise InvalidReferenceError("item_kind", value, "unknown item kind")
    if kind not in REQUESTABLE_KINDS:
        raise InvalidReferenceError("item_kind", value, "not requestable on an item line")
    return kind


def spec_for(kind: ItemKind | str) -> ItemKindSpec:
    return ITEM_KIND_SPECS[parse_item_kind(kind)]


def _as_decimal(amount: Decimal | int | str) -> Decimal:
    try:
        return Decimal(str(amount))
    except InvalidOperation:
        raise InvalidQuantityError(amount, "not a number")


def build_payload(
    kind: ItemKind | str,
    amount: Decimal | int | str | None = None,
    item_codes: tuple[str, ...] | list[str] | None = None,
) -> Payload:
    """
    Build the kind-appropriate payload from caller input.

    Quantity kinds need ``amount``.  Equipment takes ``item_codes`` or a
    whole-number ``amount`` (unit count); if both are given they must agree.

    Raises:
        MissingFieldError: Nothing to move was given.
        InvalidQuantityError: Amount not positive, or not whole for equipment.
        InvalidReferenceError: Duplicate or blank item codes.
    """
    spec = spec_for(kind)

    if not spec.serialized:
        if amount is None:
            raise MissingFieldError("amount")
        value = _as_decimal(amount)
        if value <= 0:
            raise InvalidQuantityError(value)
        return QuantityPayload(amount=value)

    codes = tuple(item_codes or ())
    if codes:
        if any(not code or not str(code).strip() for code in codes):
            raise InvalidReferenceError("item_codes", codes, "blank item code")
        if len(set(codes)) != len(codes):
            raise InvalidReferenceError("item_codes", codes, "duplicate item code")
        if amount is not None and _as_decimal(amount) != len(codes):
            raise InvalidQuantityError(amount, "count does not match item_codes")
        return UnitPayload(count=len(codes), item_codes=codes)

    if amount is None:
        raise MissingFieldError("item_codes")
    value = _as_decimal(amount)
    if value <= 0:
        raise InvalidQuantityError(value)
    if value != value.to_integral_value():
        raise InvalidQuantityError(value, "equipment count must be a whole number")
    return UnitPayload(count=int(value))
