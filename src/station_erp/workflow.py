"""Approval state machine for sales, expenses and fuel entries.

Every record moves one stage at a time along the sequence of its kind, or to
``rejected`` from any non-terminal status. :func:`plan_transition` is a pure
function that decides whether a move is legal and what the next record looks
like; :func:`advance` reads the record, plans, and commits the plan with a
compare-and-set on the status it read. Of several concurrent callers acting
on the same record exactly one commit wins and the others receive
:class:`~station_erp.errors.StaleStateError`.

A fuel entry reaching its final stage triggers one tank deduction keyed by the
record id. The approval is committed first and is not undone if the deduction
fails; the failure is reported on :class:`AdvanceResult` and
:func:`retry_pending_deductions` picks it up later.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from decimal import Decimal
from typing import Dict, List, Mapping, Optional, Tuple

from . import data_manager, inventory, log
from .constants import ApprovalStage, Role, WorkflowKind, WorkflowStatus
from .core_logic import Actor, RuntimeContext, get_record, list_records
from .discrepancy import DiscrepancyReport, DiscrepancyStatus, classify_fuel_reading
from .errors import (
    BusinessRuleViolation,
    ConflictError,
    IllegalTransitionError,
    StaleStateError,
    StationError,
    UnauthorizedError,
)


STAGE_SEQUENCES: Mapping[WorkflowKind, Tuple[WorkflowStatus, ...]] = {
    WorkflowKind.SALE: (
        WorkflowStatus.SUBMITTED,
        WorkflowStatus.ACCOUNTANT_APPROVED,
        WorkflowStatus.MANAGER_APPROVED,
    ),
    WorkflowKind.FUEL_ENTRY: (
        WorkflowStatus.SUBMITTED,
        WorkflowStatus.ACCOUNTANT_APPROVED,
        WorkflowStatus.MANAGER_APPROVED,
    ),
    WorkflowKind.EXPENSE: (
        WorkflowStatus.SUBMITTED,
        WorkflowStatus.ACCOUNTANT_APPROVED,
        WorkflowStatus.MANAGER_APPROVED,
        WorkflowStatus.DIRECTOR_APPROVED,
    ),
}

# Role allowed to act on a record sitting in the given status.
APPROVER_ROLES: Mapping[Tuple[WorkflowKind, WorkflowStatus], Role] = {
    (WorkflowKind.SALE, WorkflowStatus.SUBMITTED): Role.ACCOUNTANT,
    (WorkflowKind.SALE, WorkflowStatus.ACCOUNTANT_APPROVED): Role.MANAGER,
    (WorkflowKind.FUEL_ENTRY, WorkflowStatus.SUBMITTED): Role.ACCOUNTANT,
    (WorkflowKind.FUEL_ENTRY, WorkflowStatus.ACCOUNTANT_APPROVED): Role.MANAGER,
    (WorkflowKind.EXPENSE, WorkflowStatus.SUBMITTED): Role.ACCOUNTANT,
    (WorkflowKind.EXPENSE, WorkflowStatus.ACCOUNTANT_APPROVED): Role.MANAGER,
    (WorkflowKind.EXPENSE, WorkflowStatus.MANAGER_APPROVED): Role.DIRECTOR,
}

STATUS_STAGES: Mapping[WorkflowStatus, ApprovalStage] = {
    WorkflowStatus.ACCOUNTANT_APPROVED: ApprovalStage.ACCOUNTANT,
    WorkflowStatus.MANAGER_APPROVED: ApprovalStage.MANAGER,
    WorkflowStatus.DIRECTOR_APPROVED: ApprovalStage.DIRECTOR,
}


@dataclass(frozen=True)
class TransitionPlan:
    """Next state of a record plus the approval entry that records the move."""

    record: data_manager.WorkflowRecord
    approval: Optional[data_manager.ApprovalEntry]


@dataclass(frozen=True)
class AdvanceResult:
    """Outcome of a committed transition.

    ``deduction`` and ``deduction_error`` are only populated when a fuel entry
    reached its final stage; at most one of them is set.
    """

    record: data_manager.WorkflowRecord
    previous_status: WorkflowStatus
    deduction: Optional[data_manager.TankRow] = None
    deduction_error: Optional[StationError] = None
    discrepancy: Optional[DiscrepancyReport] = None


@dataclass(frozen=True)
class DeductionRetryReport:
    """Summary of a :func:`retry_pending_deductions` sweep."""

    applied: List[str] = field(default_factory=list)
    failed: Dict[str, StationError] = field(default_factory=dict)


def final_status(kind: WorkflowKind) -> WorkflowStatus:
    return STAGE_SEQUENCES[WorkflowKind(kind)][-1]


def is_terminal(kind: WorkflowKind, status: WorkflowStatus) -> bool:
    status = WorkflowStatus(status)
    return status is WorkflowStatus.REJECTED or status is final_status(kind)


def next_status(kind: WorkflowKind, status: WorkflowStatus) -> Optional[WorkflowStatus]:
    """Successor of ``status`` in the sequence of ``kind``, or ``None`` when terminal."""

    if is_terminal(kind, status):
        return None
    sequence = STAGE_SEQUENCES[WorkflowKind(kind)]
    return sequence[sequence.index(WorkflowStatus(status)) + 1]


def required_role(kind: WorkflowKind, status: WorkflowStatus) -> Optional[Role]:
    return APPROVER_ROLES.get((WorkflowKind(kind), WorkflowStatus(status)))


def plan_transition(
    record: data_manager.WorkflowRecord,
    actor: Actor,
    target_status: WorkflowStatus,
    *,
    rejection_reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> TransitionPlan:
    """Decide whether ``actor`` may move ``record`` to ``target_status``.

    Checks run in a fixed order so a given request always fails the same way:
    the target must belong to the kind's sequence (or be ``rejected``), the
    record must not be terminal, the target must not already be reached, no
    stage may be skipped, the actor must hold the role the current status
    requires, and a rejection must carry a reason.

    Args:
        record: Record as read from the store.
        actor: Caller requesting the move.
        target_status: Requested status.
        rejection_reason: Mandatory when rejecting.
        now: Timestamp stamped onto the plan; defaults to the current UTC time.

    Returns:
        TransitionPlan: The record to commit and, for approvals, the stage
            entry to append.

    Raises:
        IllegalTransitionError: Unknown target, ``submitted``, or a skipped
            stage.
        StaleStateError: The record is terminal or already at (or past) the
            target.
        UnauthorizedError: The actor's role is not the one the current status
            requires.
        BusinessRuleViolation: A rejection without a reason.
    """

    kind = record.kind
    sequence = STAGE_SEQUENCES[kind]
    try:
        target = WorkflowStatus(target_status)
        current = WorkflowStatus(record.status)
    except ValueError as exc:
        raise IllegalTransitionError(f"Unknown status: {exc}") from exc

    if target is not WorkflowStatus.REJECTED and target not in sequence[1:]:
        raise IllegalTransitionError(f"'{target.value}' is not a reachable {kind.value} status")
    if is_terminal(kind, current):
        raise StaleStateError(f"{kind.value} '{record.record_id}' is already {current.value}")
    if target is not WorkflowStatus.REJECTED:
        if sequence.index(target) <= sequence.index(current):
            raise StaleStateError(
                f"{kind.value} '{record.record_id}' already reached '{target.value}'"
            )
        if sequence.index(target) != sequence.index(current) + 1:
            raise IllegalTransitionError(
                f"Cannot move {kind.value} '{record.record_id}' from '{current.value}' to '{target.value}'"
            )

    role = APPROVER_ROLES[(kind, current)]
    if Role(actor.role) is not role:
        raise UnauthorizedError(
            f"Role '{Role(actor.role).value}' cannot act on a {kind.value} in '{current.value}' "
            f"(requires '{role.value}')"
        )

    timestamp = (now or datetime.now(UTC)).isoformat()
    if target is WorkflowStatus.REJECTED:
        reason = (rejection_reason or "").strip()
        if not reason:
            raise BusinessRuleViolation("A rejection reason is required")
        return TransitionPlan(
            record=replace(
                record,
                status=target.value,
                updated_at_iso=timestamp,
                rejection_reason=reason,
                rejected_by=actor.actor_id,
                rejected_at_iso=timestamp,
            ),
            approval=None,
        )

    approval = data_manager.ApprovalEntry(
        record_id=record.record_id,
        kind=kind.value,
        stage=STATUS_STAGES[target].value,
        approver_id=actor.actor_id,
        timestamp_iso=timestamp,
    )
    return TransitionPlan(
        record=replace(record, status=target.value, updated_at_iso=timestamp),
        approval=approval,
    )


def advance(
    context: RuntimeContext,
    record_id: str,
    kind: WorkflowKind,
    actor: Actor,
    target_status: WorkflowStatus,
    rejection_reason: Optional[str] = None,
    expected_status: Optional[WorkflowStatus] = None,
) -> AdvanceResult:
    """Move a record to ``target_status`` if it is still where the caller saw it.

    Args:
        context (RuntimeContext): Active runtime context.
        record_id (str): Record to move.
        kind (WorkflowKind): Kind of the record.
        actor (Actor): Caller; must hold the role the current status requires.
        target_status (WorkflowStatus): Immediate successor or ``rejected``.
        rejection_reason (str | None): Required when rejecting.
        expected_status (WorkflowStatus | None): Status the caller last saw.
            When given, a record that has moved on is refused even if the
            requested move would otherwise be legal.

    Returns:
        AdvanceResult: The committed record and, for a fuel entry reaching
            its final stage, the deduction outcome.

    Raises:
        RecordNotFoundError: If the record does not exist.
        StaleStateError: If the record changed since it was read.
        UnauthorizedError: If the actor's role may not act.
        IllegalTransitionError: If the move is not legal for the kind.
        BusinessRuleViolation: If a rejection lacks a reason.
    """

    kind = WorkflowKind(kind)
    record = get_record(context, kind, record_id)
    current = WorkflowStatus(record.status)

    if expected_status is not None and WorkflowStatus(expected_status) is not current:
        log.warning(
            "%s '%s' is '%s', caller expected '%s'",
            kind.value,
            record_id,
            current.value,
            WorkflowStatus(expected_status).value,
        )
        raise StaleStateError(
            f"{kind.value} '{record_id}' is '{current.value}', expected '{WorkflowStatus(expected_status).value}'"
        )

    try:
        plan = plan_transition(record, actor, target_status, rejection_reason=rejection_reason)
    except BusinessRuleViolation as exc:
        log.warning(
            "Transition of %s '%s' to '%s' by '%s' refused: %s",
            kind.value,
            record_id,
            target_status,
            actor.actor_id,
            exc,
        )
        raise

    try:
        committed = context.store.compare_and_set_status(
            plan.record,
            expected_status=current.value,
            approval=plan.approval,
        )
    except ConflictError as exc:
        log.warning("Transition of %s '%s' lost a concurrent update: %s", kind.value, record_id, exc)
        raise StaleStateError(str(exc)) from exc

    log.info(
        "%s '%s' moved %s -> %s by '%s' (%s)",
        kind.value,
        record_id,
        current.value,
        committed.status,
        actor.actor_id,
        Role(actor.role).value,
    )

    if (
        isinstance(committed, data_manager.FuelEntryRecord)
        and WorkflowStatus(committed.status) is final_status(kind)
    ):
        tank, error, report = _apply_final_deduction(context, committed, actor)
        return AdvanceResult(
            record=committed,
            previous_status=current,
            deduction=tank,
            deduction_error=error,
            discrepancy=report,
        )
    return AdvanceResult(record=committed, previous_status=current)


def approve(
    context: RuntimeContext,
    record_id: str,
    kind: WorkflowKind,
    actor: Actor,
    *,
    expected_status: Optional[WorkflowStatus] = None,
) -> AdvanceResult:
    """Advance a record to the stage after the one it is in.

    The target is derived from ``expected_status`` when given, otherwise from
    the status read now.

    Raises:
        StaleStateError: If the record is already terminal.
    """

    base = expected_status
    if base is None:
        base = WorkflowStatus(get_record(context, kind, record_id).status)
    target = next_status(kind, base)
    if target is None:
        raise StaleStateError(f"{WorkflowKind(kind).value} '{record_id}' is already {WorkflowStatus(base).value}")
    return advance(context, record_id, kind, actor, target, expected_status=base)


def reject(
    context: RuntimeContext,
    record_id: str,
    kind: WorkflowKind,
    actor: Actor,
    reason: str,
    *,
    expected_status: Optional[WorkflowStatus] = None,
) -> AdvanceResult:
    return advance(
        context,
        record_id,
        kind,
        actor,
        WorkflowStatus.REJECTED,
        rejection_reason=reason,
        expected_status=expected_status,
    )


def list_pending(
    context: RuntimeContext,
    kind: WorkflowKind,
    role: Optional[Role] = None,
) -> List[data_manager.WorkflowRecord]:
    """Non-terminal records of ``kind``, optionally only those ``role`` can act on."""

    kind = WorkflowKind(kind)
    pending = []
    for status in STAGE_SEQUENCES[kind][:-1]:
        if role is not None and APPROVER_ROLES[(kind, status)] is not Role(role):
            continue
        pending.extend(list_records(context, kind, status=status))
    return pending


def retry_pending_deductions(context: RuntimeContext, actor: Optional[Actor] = None) -> DeductionRetryReport:
    """Apply the tank deduction of every final-stage fuel entry still missing one.

    Deductions are keyed by record id, so running this repeatedly never
    deducts an entry twice.
    """

    report = DeductionRetryReport()
    final = final_status(WorkflowKind.FUEL_ENTRY)
    for record in list_records(context, WorkflowKind.FUEL_ENTRY, status=final):
        if record.fuel_sold <= 0 or context.store.has_movement(record.record_id):
            continue
        approver = actor or _final_approver(record)
        tank, error, _ = _apply_final_deduction(context, record, approver)
        if error is not None:
            report.failed[record.record_id] = error
        elif tank is not None:
            report.applied.append(record.record_id)
    log.info(
        "Deduction retry sweep: %d applied, %d failed",
        len(report.applied),
        len(report.failed),
    )
    return report


def _final_approver(record: data_manager.WorkflowRecord) -> Actor:
    entry = record.approvals.get(ApprovalStage.MANAGER.value)
    return Actor(actor_id=entry.approver_id if entry else "system", role=Role.MANAGER)


def _apply_final_deduction(
    context: RuntimeContext,
    record: data_manager.FuelEntryRecord,
    actor: Actor,
) -> Tuple[Optional[data_manager.TankRow], Optional[StationError], Optional[DiscrepancyReport]]:
    amount = record.fuel_sold
    if amount <= Decimal("0"):
        log.info("Fuel entry '%s' sold nothing; no deduction needed", record.record_id)
        return None, None, None

    tank = context.store.get_tank(record.fuel_type)
    report = classify_fuel_reading(
        record.opening_stock,
        record.closing_stock,
        record.pump_fuel_sold,
        tank.current_level if tank is not None else None,
        tolerance=context.settings.discrepancy_tolerance,
    )
    if report.status is not DiscrepancyStatus.OK:
        log.warning("Fuel entry '%s' approved with warning: %s", record.record_id, report.describe())

    try:
        deducted = inventory.deduct(
            context,
            record.fuel_type,
            amount,
            idempotency_key=record.record_id,
            actor_id=actor.actor_id,
            notes=f"Fuel entry {record.record_id}",
        )
    except StationError as exc:
        log.error(
            "Deduction for approved fuel entry '%s' failed: %s",
            record.record_id,
            exc,
        )
        return None, exc, report
    return deducted, None, report
