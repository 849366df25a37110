"""
StatusService -- writes derived fulfillment status back to a request.

Responsibility:
    Snapshots every item line of a request, asks the pure status engine
    for each experiment's fulfillment and the request's status, and
    refreshes each experiment's allocation-status cache from the date
    gate as seen by the acting role.

Architecture position:
    Kernel > Services.  Invoked by AllocationService, ReturnService and
    ItemAdminService after every mutation, inside the same transaction.

Invariants enforced:
    - Idempotent: recompute() twice without an intervening mutation
      writes the same values.
    - Disabled lines never count toward fulfillment.
    - PENDING and REJECTED requests are left alone.
"""

from sqlalchemy.orm import Session

from lab_config.schema import LedgerConfig
from lab_engines.date_gate import ExperimentGate, evaluate_experiment
from lab_engines.status import LineState, aggregate_experiment, aggregate_request
from lab_kernel.domain.clock import Clock
from lab_kernel.logging_config import get_logger
from lab_kernel.models.request import Experiment, ItemLine, Request
from lab_kernel.services.base import BaseService

logger = get_logger("services.status")


def line_state(line: ItemLine) -> LineState:
    return LineState(
        is_disabled=line.is_disabled,
        is_allocated=line.is_allocated,
        is_fully_allocated=line.is_fully_allocated,
        was_disabled=line.was_disabled,
    )


class StatusService(BaseService[Request]):
    """
    Recomputes experiment and request status from item line state.

    Non-goals:
        - Does not decide whether a mutation is allowed; the gate is
          consulted here only to refresh the cached allocation status.
    """

    def __init__(self, session: Session, clock: Clock, config: LedgerConfig):
        super().__init__(session)
        self._clock = clock
        self._config = config

    def gate_for(self, experiment: Experiment, role: str) -> ExperimentGate:
        return evaluate_experiment(
            experiment_date=experiment.scheduled_date,
            today=self._clock.today(),
            role=role,
            config=self._config,
            admin_override=experiment.admin_override,
            lines=[line_state(line) for line in experiment.item_lines],
        )

    def refresh_gate_cache(self, experiment: Experiment, role: str) -> ExperimentGate:
        gate = self.gate_for(experiment, role)
        experiment.can_allocate = gate.can_allocate
        experiment.reason_type = gate.decision.reason_type.value
        experiment.status_reason = gate.decision.message
        experiment.status_checked_at = self._clock.now()
        return gate

    def recompute(self, request: Request, role: str | None = None) -> str:
        """
        Recompute every experiment's fulfillment and the request status.

        When ``role`` is given the experiments' gate caches are refreshed
        for that role too.  Returns the request status value.
        """
        snapshots: list[list[LineState]] = []
        for experiment in request.experiments:
            states = [line_state(line) for line in experiment.item_lines]
            snapshots.append(states)
            experiment.fulfillment_status = aggregate_experiment(states).value
            if role is not None:
                self.refresh_gate_cache(experiment, role)

        previous = request.status
        status = aggregate_request(current_status=previous, experiments=snapshots)
        request.status = status.value
        self.session.flush()

        if previous != status.value:
            logger.info(
                "request_status_changed",
                extra={
                    "request_id": str(request.id),
                    "from_status": str(previous),
                    "to_status": status.value,
                },
            )
        return status.value
