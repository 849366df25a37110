"""
ItemAdminService -- gate-protected administrative edits on item lines.

Responsibility:
    Disable and re-enable item lines, change requested quantities, grant
    or revoke the per-experiment admin override, and report what an actor
    may currently edit on a line.

Architecture position:
    Kernel > Services.  Shares the date gate with the allocation engine;
    every edit recomputes request status afterwards.

Invariants enforced:
    - A line cannot be disabled while anything is allocated on it.
    - ``was_disabled`` becomes True on the first re-enable and stays True.
    - ``original_quantity`` is snapshotted on the first quantity edit.
    - A quantity never drops below what is currently allocated.
    - The override is scoped to one experiment and needs a reason.

Failure modes:
    - PermissionDeniedError: non-admin actor.
    - DateGateRejectedError: the gate blocks the edit.
    - DisableAllocatedItemError, QuantityBelowAllocatedError,
      OverrideReasonRequiredError, OverrideNotNeededError.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from uuid import UUID

from sqlalchemy.orm import Session

from lab_config.schema import LedgerConfig
from lab_engines.date_gate import GateDecision, evaluate_date_gate
from lab_kernel.domain.clock import Clock, SystemClock
from lab_kernel.domain.dtos import ItemPermissions
from lab_kernel.domain.item_kinds import spec_for
from lab_kernel.domain.values import ZERO, Actor, ItemKind, ReasonType
from lab_kernel.exceptions import (
    DateGateRejectedError,
    DisableAllocatedItemError,
    InvalidQuantityError,
    ItemLineNotFoundError,
    OverrideNotNeededError,
    OverrideReasonRequiredError,
    PermissionDeniedError,
    QuantityBelowAllocatedError,
    UnknownRoleError,
)
from lab_kernel.logging_config import LogContext, get_logger
from lab_kernel.models.request import Experiment, ItemLine, Request
from lab_kernel.selectors.stock_selector import StockSelector
from lab_kernel.services.base import BaseService
from lab_kernel.services.line_resolver import LineResolver
from lab_kernel.services.status_service import StatusService

logger = get_logger("services.item_admin")


class ItemAdminService(BaseService[ItemLine]):
    """
    Administrative edits on requests.

    Contract:
        Every mutating method is admin-only and raises on rejection; the
        caller's transaction is left untouched by a rejected edit because
        all checks run before the first write.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: LedgerConfig | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._config = config or LedgerConfig.with_defaults()
        self._resolver = LineResolver(session)
        self._status = StatusService(session, self._clock, self._config)
        self._stock = StockSelector(session)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _require_admin(self, actor: Actor, operation: str) -> None:
        if actor.role not in self._config.known_roles:
            raise UnknownRoleError(actor.role)
        if not self._config.is_admin(actor.role):
            raise PermissionDeniedError(actor.role, operation)

    def _decision(
        self, experiment: Experiment, actor: Actor, was_disabled: bool = False
    ) -> GateDecision:
        return evaluate_date_gate(
            experiment_date=experiment.scheduled_date,
            today=self._clock.today(),
            role=actor.role,
            config=self._config,
            admin_override=experiment.admin_override,
            was_disabled=was_disabled,
        )

    def _require_gate(
        self, experiment: Experiment, actor: Actor, was_disabled: bool = False
    ) -> GateDecision:
        decision = self._decision(experiment, actor, was_disabled)
        if not decision.allowed:
            raise DateGateRejectedError(
                str(experiment.id),
                decision.reason_type.value,
                decision.message,
                decision.days_overdue,
            )
        return decision

    def _central_availability(self, line: ItemLine) -> Decimal:
        location = self._config.central_store_location
        if line.item_kind == ItemKind.EQUIPMENT:
            return Decimal(
                self._stock.available_unit_count(line.product_id, line.variant, location)
            )
        return self._stock.available_quantity(
            line.item_kind, line.product_id, line.variant, location
        )

    # =========================================================================
    # Disable / enable
    # =========================================================================

    def set_disabled(
        self,
        item_line_id: UUID,
        disabled: bool,
        reason: str | None,
        actor: Actor,
    ) -> ItemLine:
        """
        Disable or re-enable an item line.

        Re-enabling is allowed past the ordinary cutoff; disabling goes
        through the date gate like any other edit.
        """
        self._require_admin(actor, "set_disabled")
        resolved = self._resolver.load_line(item_line_id)
        request, experiment, line = resolved.request, resolved.experiment, resolved.line

        with LogContext.bind(actor_id=actor.actor_id, item_line_id=line.id):
            if disabled == line.is_disabled:
                return line

            if disabled:
                line.recompute_allocation()
                if line.is_allocated:
                    raise DisableAllocatedItemError(str(line.id))
                self._require_gate(experiment, actor, was_disabled=line.was_disabled)
                line.is_disabled = True
                line.disabled_reason = (
                    reason.strip()
                    if reason and reason.strip()
                    else self._config.default_disable_reason
                )
            else:
                self._require_gate(experiment, actor, was_disabled=True)
                line.is_disabled = False
                line.disabled_reason = None
                line.was_disabled = True

            line.updated_by_id = actor.actor_id
            self._record_edit(
                request,
                actor,
                f"{'disabled' if disabled else 'enabled'} {line.product_id}",
            )
            self._status.recompute(request, role=actor.role)

            logger.info(
                "item_line_disabled" if disabled else "item_line_enabled",
                extra={"reason": line.disabled_reason, "was_disabled": line.was_disabled},
            )
        return line

    # =========================================================================
    # Admin override
    # =========================================================================

    def set_admin_override(
        self,
        experiment_id: UUID,
        enable: bool,
        reason: str | None,
        actor: Actor,
    ) -> Experiment:
        """Grant (with a reason) or revoke the experiment's admin override."""
        self._require_admin(actor, "set_admin_override")
        request, experiment = self._resolver.load_experiment(experiment_id)

        if enable:
            if not reason or not reason.strip():
                raise OverrideReasonRequiredError(str(experiment_id))
            plain = evaluate_date_gate(
                experiment_date=experiment.scheduled_date,
                today=self._clock.today(),
                role=actor.role,
                config=self._config,
                admin_override=False,
            )
            if plain.allowed:
                raise OverrideNotNeededError(str(experiment_id), plain.reason_type.value)
            experiment.admin_override = True
            experiment.override_reason = reason.strip()
            experiment.override_by_id = actor.actor_id
            experiment.override_at = self._clock.now()
        else:
            experiment.admin_override = False
            experiment.override_reason = None
            experiment.override_by_id = None
            experiment.override_at = None

        experiment.updated_by_id = actor.actor_id
        self._status.refresh_gate_cache(experiment, actor.role)
        self.session.flush()

        logger.info(
            "admin_override_granted" if enable else "admin_override_revoked",
            extra={
                "experiment_id": str(experiment.id),
                "request_id": str(request.id),
                "reason": experiment.override_reason,
            },
        )
        return experiment

    # =========================================================================
    # Quantity edits
    # =========================================================================

    def edit_quantity(
        self,
        item_line_id: UUID,
        new_quantity: Decimal | int | str,
        reason: str | None,
        actor: Actor,
    ) -> ItemLine:
        self._require_admin(actor, "edit_quantity")
        resolved = self._resolver.load_line(item_line_id)
        request, experiment, line = resolved.request, resolved.experiment, resolved.line

        try:
            quantity = Decimal(str(new_quantity))
        except InvalidOperation:
            raise InvalidQuantityError(new_quantity, "not a number")
        if quantity < 0:
            raise InvalidQuantityError(quantity, "quantity cannot be negative")
        if spec_for(line.item_kind).serialized and quantity != quantity.to_integral_value():
            raise InvalidQuantityError(quantity, "equipment count must be a whole number")

        allocated = line.recompute_allocation()
        if quantity < allocated:
            raise QuantityBelowAllocatedError(str(line.id), quantity, allocated)
        self._require_gate(experiment, actor, was_disabled=line.was_disabled)

        previous = line.quantity
        if line.original_quantity is None:
            line.original_quantity = previous
        line.quantity = quantity
        line.updated_by_id = actor.actor_id

        summary = f"{line.product_id}: {previous.normalize():f} -> {quantity.normalize():f}"
        if reason and reason.strip():
            summary = f"{summary} ({reason.strip()})"
        self._record_edit(request, actor, summary)
        self._status.recompute(request, role=actor.role)

        logger.info(
            "item_quantity_edited",
            extra={
                "item_line_id": str(line.id),
                "from_quantity": str(previous),
                "to_quantity": str(quantity),
            },
        )
        return line

    def _record_edit(self, request: Request, actor: Actor, summary: str) -> None:
        request.has_admin_edits = True
        request.last_edited_by_id = actor.actor_id
        request.last_edited_at = self._clock.now()
        request.edit_summary = summary[:1000]
        request.updated_by_id = actor.actor_id

    # =========================================================================
    # Permissions
    # =========================================================================

    def item_edit_permissions(self, item_line_id: UUID, actor: Actor) -> ItemPermissions:
        """What ``actor`` may currently do to the line."""
        if actor.role not in self._config.known_roles:
            raise UnknownRoleError(actor.role)
        line = self.session.get(ItemLine, item_line_id)
        if line is None:
            raise ItemLineNotFoundError(str(item_line_id))
        experiment = line.experiment
        decision = self._decision(experiment, actor, was_disabled=line.was_disabled)

        available = self._central_availability(line)
        max_increase = max(available - line.quantity, ZERO)

        if not self._config.is_admin(actor.role):
            return ItemPermissions(
                item_line_id=line.id,
                can_edit=False,
                can_disable=False,
                can_enable=False,
                can_increase=False,
                max_increase=max_increase,
                reason_type=decision.reason_type,
                message="Item edits are admin only",
            )

        if decision.reason_type == ReasonType.DATE_EXPIRED_COMPLETELY:
            return ItemPermissions(
                item_line_id=line.id,
                can_edit=False,
                can_disable=False,
                can_enable=line.is_disabled,
                can_increase=False,
                max_increase=ZERO,
                reason_type=decision.reason_type,
                message="Experiment date expired beyond grace period",
            )

        allowed = decision.allowed
        return ItemPermissions(
            item_line_id=line.id,
            can_edit=allowed and (not line.is_allocated or line.is_disabled),
            can_disable=allowed and not line.is_allocated and not line.is_disabled,
            can_enable=line.is_disabled,
            can_increase=allowed and line.is_allocated and available > line.quantity,
            max_increase=max_increase,
            reason_type=decision.reason_type,
            message=decision.message,
        )
