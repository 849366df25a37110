"""
RequestService -- author, approve and reject faculty requests.

Responsibility:
    Creates a pending request with its experiments and item lines, and
    moves it through the explicit admin transitions PENDING -> APPROVED
    and PENDING -> REJECTED.  Every later status change is derived by
    StatusService.

Architecture position:
    Kernel > Services.  Upstream of the allocation and return engines:
    item lines only exist because a request was authored here.

Invariants enforced:
    - Item lines are created with explicit zeroed allocation state.
    - Only requestable kinds with a positive quantity are accepted;
      equipment quantities are whole numbers.
    - Approval and rejection are admin-only and only leave PENDING.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal, InvalidOperation
from uuid import UUID

from sqlalchemy.orm import Session

from lab_config.schema import LedgerConfig
from lab_kernel.domain.clock import Clock, SystemClock
from lab_kernel.domain.dtos import ExperimentSpec, ItemLineSpec
from lab_kernel.domain.item_kinds import parse_item_kind, spec_for
from lab_kernel.domain.values import (
    ZERO,
    Actor,
    FulfillmentStatus,
    ReasonType,
    RequestStatus,
)
from lab_kernel.exceptions import (
    InvalidQuantityError,
    InvalidStatusTransitionError,
    MissingFieldError,
    PermissionDeniedError,
    UnknownRoleError,
)
from lab_kernel.logging_config import get_logger
from lab_kernel.models.request import Experiment, ItemLine, Request
from lab_kernel.services.base import BaseService
from lab_kernel.services.line_resolver import LineResolver

logger = get_logger("services.request")


class RequestService(BaseService[Request]):
    """
    Request authoring and approval.

    Non-goals:
        - Does not notify anyone; notification delivery is external.
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

    def create_request(
        self,
        faculty_id: UUID,
        lab_id: str,
        experiments: Sequence[ExperimentSpec],
        actor: Actor,
    ) -> Request:
        """Create a PENDING request with its experiments and item lines."""
        if actor.role not in self._config.known_roles:
            raise UnknownRoleError(actor.role)
        if not lab_id or not lab_id.strip():
            raise MissingFieldError("lab_id")
        if not experiments:
            raise MissingFieldError("experiments")

        request = Request(
            faculty_id=faculty_id,
            lab_id=lab_id,
            status=RequestStatus.PENDING.value,
            has_admin_edits=False,
            created_by_id=actor.actor_id,
        )
        for position, spec in enumerate(experiments):
            request.experiments.append(self._build_experiment(spec, position, actor))

        self.session.add(request)
        self.session.flush()

        logger.info(
            "request_created",
            extra={
                "request_id": str(request.id),
                "lab_id": lab_id,
                "experiments": len(request.experiments),
                "item_lines": len(request.item_lines()),
            },
        )
        return request

    def _build_experiment(self, spec: ExperimentSpec, position: int, actor: Actor) -> Experiment:
        if spec.scheduled_date is None:
            raise MissingFieldError("scheduled_date")
        if not spec.experiment_ref:
            raise MissingFieldError("experiment_ref")
        experiment = Experiment(
            position=position,
            experiment_ref=spec.experiment_ref,
            experiment_name=spec.experiment_name,
            course_ref=spec.course_ref,
            batch_ref=spec.batch_ref,
            scheduled_date=spec.scheduled_date,
            fulfillment_status=FulfillmentStatus.PENDING.value,
            can_allocate=True,
            reason_type=ReasonType.ALLOCATABLE.value,
            admin_override=False,
            created_by_id=actor.actor_id,
        )
        for line_position, item in enumerate(spec.items):
            experiment.item_lines.append(self._build_line(item, line_position, actor))
        return experiment

    def _build_line(self, item: ItemLineSpec, position: int, actor: Actor) -> ItemLine:
        kind = parse_item_kind(item.item_kind)
        if not item.product_id:
            raise MissingFieldError("product_id")
        try:
            quantity = Decimal(str(item.quantity))
        except InvalidOperation:
            raise InvalidQuantityError(item.quantity, "not a number")
        if quantity <= 0:
            raise InvalidQuantityError(quantity)
        if spec_for(kind).serialized and quantity != quantity.to_integral_value():
            raise InvalidQuantityError(quantity, "equipment count must be a whole number")
        return ItemLine(
            position=position,
            item_kind=kind.value,
            product_id=item.product_id,
            variant=item.variant,
            unit=item.unit,
            quantity=quantity,
            allocated_quantity=ZERO,
            is_allocated=False,
            is_disabled=False,
            was_disabled=False,
            created_by_id=actor.actor_id,
        )

    def _require_admin(self, actor: Actor, operation: str) -> None:
        if actor.role not in self._config.known_roles:
            raise UnknownRoleError(actor.role)
        if not self._config.is_admin(actor.role):
            raise PermissionDeniedError(actor.role, operation)

    def approve_request(self, request_id: UUID, actor: Actor) -> Request:
        self._require_admin(actor, "approve_request")
        request = self._resolver.lock_request(request_id)
        if request.status != RequestStatus.PENDING:
            raise InvalidStatusTransitionError(
                str(request_id), str(request.status), RequestStatus.APPROVED.value
            )
        request.status = RequestStatus.APPROVED.value
        request.approved_by_id = actor.actor_id
        request.approved_at = self._clock.now()
        request.updated_by_id = actor.actor_id
        self.session.flush()
        logger.info("request_approved", extra={"request_id": str(request_id)})
        return request

    def reject_request(self, request_id: UUID, reason: str, actor: Actor) -> Request:
        self._require_admin(actor, "reject_request")
        if not reason or not reason.strip():
            raise MissingFieldError("reason")
        request = self._resolver.lock_request(request_id)
        if request.status != RequestStatus.PENDING:
            raise InvalidStatusTransitionError(
                str(request_id), str(request.status), RequestStatus.REJECTED.value
            )
        request.status = RequestStatus.REJECTED.value
        request.rejection_reason = reason
        request.updated_by_id = actor.actor_id
        self.session.flush()
        logger.info(
            "request_rejected",
            extra={"request_id": str(request_id), "reason": reason},
        )
        return request
