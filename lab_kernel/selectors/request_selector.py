"""
Module: lab_kernel.selectors.request_selector
Responsibility: Allocation status of an experiment as seen by an actor, and
    a fulfillment summary of a whole request.
Architecture position: Kernel > Selectors.  Read-only; evaluates the pure
    date gate but never writes the experiment's cached decision back.
"""

from uuid import UUID

from sqlalchemy.orm import Session

from lab_config.schema import LedgerConfig
from lab_engines.date_gate import evaluate_experiment
from lab_engines.status import LineState
from lab_kernel.domain.clock import Clock, SystemClock
from lab_kernel.domain.dtos import (
    ExperimentAllocationStatus,
    ExperimentSummary,
    RequestSummary,
)
from lab_kernel.domain.values import Actor, FulfillmentStatus, RequestStatus
from lab_kernel.exceptions import ExperimentNotFoundError, RequestNotFoundError
from lab_kernel.models.request import Experiment, Request
from lab_kernel.selectors.base import BaseSelector


class RequestSelector(BaseSelector[Request]):
    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: LedgerConfig | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._config = config or LedgerConfig.with_defaults()

    def allocation_status(self, experiment_id: UUID, actor: Actor) -> ExperimentAllocationStatus:
        """
        Whether ``actor`` may allocate on the experiment today.

        Reports ``no_items`` when every line is disabled and
        ``fully_allocated`` when nothing is pending.
        """
        experiment = self.session.get(Experiment, experiment_id)
        if experiment is None:
            raise ExperimentNotFoundError(str(experiment_id))
        gate = evaluate_experiment(
            experiment_date=experiment.scheduled_date,
            today=self._clock.today(),
            role=actor.role,
            config=self._config,
            admin_override=experiment.admin_override,
            lines=[
                LineState(
                    is_disabled=line.is_disabled,
                    is_allocated=line.is_allocated,
                    is_fully_allocated=line.is_fully_allocated,
                    was_disabled=line.was_disabled,
                )
                for line in experiment.item_lines
            ],
        )
        return ExperimentAllocationStatus(
            experiment_id=experiment.id,
            can_allocate=gate.can_allocate,
            reason_type=gate.decision.reason_type,
            message=gate.decision.message,
            days_remaining=gate.decision.days_remaining,
            days_overdue=gate.decision.days_overdue,
            pending_lines=gate.pending_lines,
            re_enabled_lines=gate.re_enabled_lines,
            admin_override=experiment.admin_override,
        )

    def request_summary(self, request_id: UUID) -> RequestSummary:
        request = self.session.get(Request, request_id)
        if request is None:
            raise RequestNotFoundError(str(request_id))
        return RequestSummary(
            request_id=request.id,
            lab_id=request.lab_id,
            faculty_id=request.faculty_id,
            status=RequestStatus(request.status),
            experiments=tuple(
                ExperimentSummary(
                    experiment_id=experiment.id,
                    experiment_ref=experiment.experiment_ref,
                    scheduled_date=experiment.scheduled_date,
                    fulfillment_status=FulfillmentStatus(experiment.fulfillment_status),
                    total_lines=len(experiment.item_lines),
                    disabled_lines=sum(1 for line in experiment.item_lines if line.is_disabled),
                    allocated_lines=sum(1 for line in experiment.item_lines if line.is_allocated),
                    fully_allocated_lines=sum(
                        1
                        for line in experiment.item_lines
                        if not line.is_disabled and line.is_fully_allocated
                    ),
                )
                for experiment in request.experiments
            ),
        )
