"""
Module: lab_engines.date_gate
Responsibility:
    The date/permission gate: decide whether an actor may mutate an
    experiment's allocation state today, from the experiment date, the
    actor's role and the experiment's override flag.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Consulted by the
    allocation engine and the administrative edit operations before any
    mutation; "today" is supplied by the caller's injected clock.

Invariants enforced:
    - Day granularity: times of day never matter.
    - Standard roles: allowed while today <= experiment date (inclusive).
    - Admin roles: allowed through experiment date + grace days.
    - Beyond grace: blocked (date_expired_completely) unless an admin acts
      on an experiment carrying an admin override.
    - Lines re-enabled after being disabled are allowed past cutoff.

Failure modes:
    - UnknownRoleError for a role the configuration does not know.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, timedelta

from lab_config.schema import LedgerConfig
from lab_engines.status import LineState
from lab_engines.tracer import traced_engine
from lab_kernel.domain.values import ReasonType
from lab_kernel.exceptions import UnknownRoleError


@dataclass(frozen=True)
class GateDecision:
    """
    Outcome of the gate.

    Guarantees:
        - ``allowed`` implies ``reason_type`` is ALLOCATABLE.
        - At most one of ``days_remaining`` / ``days_overdue`` is set.
    """

    allowed: bool
    reason_type: ReasonType
    message: str
    days_remaining: int | None = None
    days_overdue: int | None = None
    in_grace: bool = False
    override_applied: bool = False
    catch_up: bool = False


@dataclass(frozen=True)
class ExperimentGate:
    """Gate decision combined with the experiment's line counts."""

    decision: GateDecision
    pending_lines: int
    re_enabled_lines: int

    @property
    def can_allocate(self) -> bool:
        return self.decision.allowed


@traced_engine(
    "date_gate",
    "1.0",
    fingerprint_fields=("experiment_date", "today", "role", "admin_override", "was_disabled"),
)
def evaluate_date_gate(
    *,
    experiment_date: date,
    today: date,
    role: str,
    config: LedgerConfig,
    admin_override: bool = False,
    was_disabled: bool = False,
) -> GateDecision:
    """Decide whether ``role`` may mutate allocation state on ``today``."""
    if role not in config.known_roles:
        raise UnknownRoleError(role)

    is_admin = config.is_admin(role)
    grace_end = experiment_date + timedelta(days=config.admin_grace_days)

    if today <= experiment_date:
        remaining = (experiment_date - today).days
        return GateDecision(
            allowed=True,
            reason_type=ReasonType.ALLOCATABLE,
            message=f"Allocation allowed ({remaining} day(s) remaining)",
            days_remaining=remaining,
        )

    overdue = (today - experiment_date).days

    if was_disabled:
        return GateDecision(
            allowed=True,
            reason_type=ReasonType.ALLOCATABLE,
            message="Re-enabled item may be allocated after the experiment date",
            days_overdue=overdue,
            catch_up=True,
        )

    if is_admin and today <= grace_end:
        return GateDecision(
            allowed=True,
            reason_type=ReasonType.ALLOCATABLE,
            message=f"Admin grace period ({overdue} day(s) after experiment date)",
            days_overdue=overdue,
            in_grace=True,
        )

    if is_admin and admin_override:
        return GateDecision(
            allowed=True,
            reason_type=ReasonType.ALLOCATABLE,
            message="Admin override active",
            days_overdue=overdue,
            override_applied=True,
        )

    if today <= grace_end:
        return GateDecision(
            allowed=False,
            reason_type=ReasonType.DATE_EXPIRED_ADMIN_ONLY,
            message=(
                f"Only admin can allocate within {config.admin_grace_days} day(s) "
                "after the experiment date"
            ),
            days_overdue=overdue,
        )

    return GateDecision(
        allowed=False,
        reason_type=ReasonType.DATE_EXPIRED_COMPLETELY,
        message=(
            f"Allocation window closed {overdue} day(s) after the experiment date; "
            "admin override required"
        ),
        days_overdue=overdue,
    )


def evaluate_experiment(
    *,
    experiment_date: date,
    today: date,
    role: str,
    config: LedgerConfig,
    admin_override: bool,
    lines: Sequence[LineState],
) -> ExperimentGate:
    """
    Experiment-level allocation status.

    Adds the line-derived reason types: NO_ITEMS when no line is active,
    FULLY_ALLOCATED when no active line is pending.  Re-enabled pending
    lines keep an experiment allocatable past its cutoff.
    """
    active = [line for line in lines if not line.is_disabled]
    pending = [line for line in active if line.is_pending]
    re_enabled = [line for line in pending if line.was_disabled]

    if not active:
        return ExperimentGate(
            decision=GateDecision(
                allowed=False,
                reason_type=ReasonType.NO_ITEMS,
                message="No active items to allocate",
            ),
            pending_lines=0,
            re_enabled_lines=0,
        )

    if not pending:
        return ExperimentGate(
            decision=GateDecision(
                allowed=False,
                reason_type=ReasonType.FULLY_ALLOCATED,
                message="All items are already allocated",
            ),
            pending_lines=0,
            re_enabled_lines=0,
        )

    decision = evaluate_date_gate(
        experiment_date=experiment_date,
        today=today,
        role=role,
        config=config,
        admin_override=admin_override,
    )
    if not decision.allowed and re_enabled:
        decision = evaluate_date_gate(
            experiment_date=experiment_date,
            today=today,
            role=role,
            config=config,
            admin_override=admin_override,
            was_disabled=True,
        )

    return ExperimentGate(
        decision=decision,
        pending_lines=len(pending),
        re_enabled_lines=len(re_enabled),
    )
