"""
Module: lab_engines
Responsibility:
    Package entrypoint re-exporting the pure calculation engines: the
    date/permission gate, FIFO stock planning and status aggregation.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May import lab_kernel.domain and lab_config.schema only.
    MUST NOT import lab_kernel services, selectors or models.

Invariants enforced:
    - Purity: engines never read the clock.  "Today" is a parameter.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Engine invocations are traced via ``@traced_engine``
    (see ``lab_engines.tracer``).
"""

from lab_engines.date_gate import (
    ExperimentGate,
    GateDecision,
    evaluate_date_gate,
    evaluate_experiment,
)
from lab_engines.fifo import FifoPlan, StockCandidate, Take, order_candidates, plan_fifo
from lab_engines.status import LineState, aggregate_experiment, aggregate_request

__all__ = [
    "GateDecision",
    "ExperimentGate",
    "evaluate_date_gate",
    "evaluate_experiment",
    "StockCandidate",
    "Take",
    "FifoPlan",
    "order_candidates",
    "plan_fifo",
    "LineState",
    "aggregate_experiment",
    "aggregate_request",
]
