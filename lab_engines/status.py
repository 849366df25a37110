"""
Module: lab_engines.status
Responsibility:
    Derive experiment fulfillment and request status from item line states.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  StatusService feeds it
    snapshots of the persisted lines and writes the answers back.

Invariants enforced:
    - Disabled lines are excluded from the denominator entirely.
    - Idempotence: the result depends only on the inputs, so recomputing
      without an intervening mutation yields the same status.
    - PENDING and REJECTED requests are never moved by aggregation; only
      explicit approval/rejection changes them.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from lab_engines.tracer import traced_engine
from lab_kernel.domain.values import FulfillmentStatus, RequestStatus


@dataclass(frozen=True)
class LineState:
    """Snapshot of one item line's allocation state."""

    is_disabled: bool
    is_allocated: bool
    is_fully_allocated: bool
    was_disabled: bool = False

    @property
    def is_pending(self) -> bool:
        return not self.is_disabled and not self.is_fully_allocated


_AGGREGATED_REQUEST_STATUSES = frozenset(
    {
        RequestStatus.APPROVED,
        RequestStatus.PARTIALLY_FULFILLED,
        RequestStatus.FULFILLED,
    }
)


def aggregate_experiment(lines: Sequence[LineState]) -> FulfillmentStatus:
    """
    Fulfillment of one experiment.

    FULFILLED when every non-disabled line is fully allocated (and there is
    at least one); PARTIALLY_FULFILLED when anything is allocated but not
    everything; PENDING otherwise.
    """
    active = [line for line in lines if not line.is_disabled]
    if not active:
        return FulfillmentStatus.PENDING
    if all(line.is_fully_allocated for line in active):
        if any(line.is_allocated for line in active):
            return FulfillmentStatus.FULFILLED
        return FulfillmentStatus.PENDING
    if any(line.is_allocated for line in active):
        return FulfillmentStatus.PARTIALLY_FULFILLED
    return FulfillmentStatus.PENDING


@traced_engine("status_aggregation", "1.0", fingerprint_fields=("current_status",))
def aggregate_request(
    *,
    current_status: RequestStatus | str,
    experiments: Sequence[Sequence[LineState]],
) -> RequestStatus:
    """
    Request status from all of its item lines.

    - fulfilled: every non-disabled line across the request is fully
      allocated.
    - partially_fulfilled: at least one line is allocated and at least one
      is pending or disabled.
    - approved: nothing is currently allocated (including after every
      allocation has been returned).
    - Requests with no active lines, or not yet approved, keep their status.
    """
    status = RequestStatus(current_status)
    if status not in _AGGREGATED_REQUEST_STATUSES:
        return status

    lines = [line for exp in experiments for line in exp]
    active = [line for line in lines if not line.is_disabled]
    if not active:
        return status

    any_allocated = any(line.is_allocated for line in active)
    if not any_allocated:
        return RequestStatus.APPROVED
    if all(line.is_fully_allocated for line in active):
        return RequestStatus.FULFILLED
    return RequestStatus.PARTIALLY_FULFILLED
