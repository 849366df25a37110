"""
Resolve (request, experiment, item line) references for the mutating services.

Item lines are mutated only by operations holding their request's
identity, so the request row is loaded ``FOR UPDATE`` first; the
experiment and line are then resolved through it.  A reference that
points at a line of another experiment, or names the wrong item kind, is
a validation error rather than a silent redirect.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from lab_kernel.domain.item_kinds import parse_item_kind
from lab_kernel.domain.values import ItemKind
from lab_kernel.exceptions import (
    ExperimentNotFoundError,
    InvalidReferenceError,
    ItemLineNotFoundError,
    RequestNotFoundError,
)
from lab_kernel.models.request import Experiment, ItemLine, Request


@dataclass(frozen=True)
class ResolvedLine:
    request: Request
    experiment: Experiment
    line: ItemLine

    @property
    def kind(self) -> ItemKind:
        return ItemKind(self.line.item_kind)


class LineResolver:
    """Locks the owning request and walks down to the item line."""

    def __init__(self, session: Session):
        self.session = session

    def lock_request(self, request_id: UUID) -> Request:
        request = self.session.execute(
            select(Request).where(Request.id == request_id).with_for_update()
        ).scalar_one_or_none()
        if request is None:
            raise RequestNotFoundError(str(request_id))
        return request

    def resolve(
        self,
        request_id: UUID,
        experiment_id: UUID,
        item_line_id: UUID,
        item_kind: ItemKind | str | None = None,
    ) -> ResolvedLine:
        request = self.lock_request(request_id)
        experiment = next((e for e in request.experiments if e.id == experiment_id), None)
        if experiment is None:
            raise ExperimentNotFoundError(str(experiment_id))
        line = next((ln for ln in experiment.item_lines if ln.id == item_line_id), None)
        if line is None:
            raise ItemLineNotFoundError(str(item_line_id))
        if item_kind is not None and parse_item_kind(item_kind) != line.item_kind:
            raise InvalidReferenceError(
                "item_kind", item_kind, f"item line {item_line_id} is {line.item_kind}"
            )
        return ResolvedLine(request=request, experiment=experiment, line=line)

    def load_line(self, item_line_id: UUID) -> ResolvedLine:
        """Resolve from the line id alone (administrative edits)."""
        line = self.session.get(ItemLine, item_line_id)
        if line is None:
            raise ItemLineNotFoundError(str(item_line_id))
        experiment = line.experiment
        request = self.lock_request(experiment.request_id)
        return ResolvedLine(request=request, experiment=experiment, line=line)

    def load_experiment(self, experiment_id: UUID) -> tuple[Request, Experiment]:
        experiment = self.session.get(Experiment, experiment_id)
        if experiment is None:
            raise ExperimentNotFoundError(str(experiment_id))
        return self.lock_request(experiment.request_id), experiment
