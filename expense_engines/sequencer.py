"""
expense_engines.sequencer -- Pure approval sequencing engine.

Responsibility:
    Apply one approver action to an expense and decide what happens next:
    keep waiting, advance to the next sequence, approve the expense, or
    reject it.  Sequences are processed in ascending order; within a
    sequence every approver acts in parallel and the sequence completes
    once its percentage threshold of approvals is reached.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import expense_kernel/domain/ types and kernel exceptions.
    The acting timestamp is supplied by the caller's clock.

Invariants enforced:
    - The current sequence is the lowest sequence with a pending instance;
      None when nothing is pending.  There is no implicit default.
    - Completion uses integer arithmetic: 100 * approved >= threshold * total.
    - A rejection is final and immediate regardless of thresholds.
    - Pending instances left behind by a completed sequence, and every
      pending instance after a rejection, become skipped.
    - Status changes go through ``state_machine.transition`` only.
    - Every successful action appends at least one history entry.
    - Inputs are never mutated; a new Expense is returned.

Failure modes:
    - ExpenseAlreadyResolvedError if the expense is approved or rejected.
    - StepAlreadyResolvedError if the actor already acted in the current
      sequence.
    - NotAuthorizedApproverError if the actor has no pending instance in
      the current sequence.
    - InvalidActionError for an unknown action (checked after authorization).
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from uuid import UUID

from expense_engines import history, state_machine
from expense_engines.tracer import traced_engine
from expense_kernel.domain.approval import (
    ActionOutcome,
    ApprovalAction,
    ApprovalStepInstance,
    Expense,
    ExpenseStatus,
    HistoryAction,
    SequenceDecision,
    StepStatus,
)
from expense_kernel.exceptions import (
    ExpenseAlreadyResolvedError,
    InvalidActionError,
    NotAuthorizedApproverError,
    StepAlreadyResolvedError,
)


def current_sequence(expense: Expense) -> int | None:
    """Lowest sequence that still has a pending instance."""
    pending = [s.sequence for s in expense.steps if s.is_pending]
    return min(pending) if pending else None


def is_sequence_complete(expense: Expense, sequence: int) -> bool:
    """Whether enough approvals have been collected for ``sequence``.

    An empty group is vacuously complete.
    """
    group = expense.steps_for(sequence)
    if not group:
        return True
    approved = sum(1 for s in group if s.status == StepStatus.APPROVED)
    threshold = group[0].percentage_threshold
    return 100 * approved >= threshold * len(group)


def next_sequence(expense: Expense, after: int) -> int | None:
    """Lowest sequence after ``after`` that still has pending instances."""
    later = [s.sequence for s in expense.steps if s.is_pending and s.sequence > after]
    return min(later) if later else None


def first_pending_index(steps: tuple[ApprovalStepInstance, ...]) -> int:
    for index, step in enumerate(steps):
        if step.is_pending:
            return index
    return len(steps)


def _coerce_action(action: ApprovalAction | str) -> ApprovalAction:
    try:
        return ApprovalAction(action)
    except ValueError:
        raise InvalidActionError(str(action)) from None


def _locate_actor_instance(
    expense: Expense,
    actor_id: UUID,
    sequence: int | None,
) -> int:
    """Index of the actor's pending instance in ``sequence``."""
    if sequence is not None:
        for index, step in enumerate(expense.steps):
            if (
                step.sequence == sequence
                and step.approver == actor_id
                and step.is_pending
            ):
                return index
        for step in expense.steps_for(sequence):
            if step.approver == actor_id:
                raise StepAlreadyResolvedError(
                    str(expense.expense_id), str(actor_id), step.status.value,
                )
    raise NotAuthorizedApproverError(str(expense.expense_id), str(actor_id))


def _skip_pending(
    steps: tuple[ApprovalStepInstance, ...],
    sequence: int | None = None,
) -> tuple[tuple[ApprovalStepInstance, ...], tuple[UUID, ...]]:
    """Mark pending instances (of ``sequence``, or all) as skipped."""
    updated: list[ApprovalStepInstance] = []
    skipped: list[UUID] = []
    for step in steps:
        if step.is_pending and (sequence is None or step.sequence == sequence):
            updated.append(replace(step, status=StepStatus.SKIPPED))
            skipped.append(step.approver)
        else:
            updated.append(step)
    return tuple(updated), tuple(skipped)


@traced_engine(
    "sequencer", "1.0", fingerprint_fields=("actor_id", "action"),
)
def record_action(
    expense: Expense,
    actor_id: UUID,
    action: ApprovalAction | str,
    comment: str | None,
    at: datetime,
) -> ActionOutcome:
    """Apply ``action`` by ``actor_id`` to ``expense``.

    Args:
        expense: Current expense snapshot.
        actor_id: The acting approver.
        action: ``approve`` or ``reject``.
        comment: Optional approver comment.
        at: Acting timestamp from the caller's clock.

    Returns:
        ActionOutcome with the new expense snapshot and the decision made.
    """
    if expense.is_terminal:
        raise ExpenseAlreadyResolvedError(
            str(expense.expense_id), expense.status.value,
        )

    sequence = current_sequence(expense)
    index = _locate_actor_instance(expense, actor_id, sequence)
    resolved_action = _coerce_action(action)
    instance = expense.steps[index]

    if resolved_action == ApprovalAction.REJECT:
        return _reject(expense, index, instance, actor_id, comment, at)
    return _approve(expense, index, instance, actor_id, comment, at)


def _with_step(
    expense: Expense,
    index: int,
    step: ApprovalStepInstance,
) -> Expense:
    steps = expense.steps[:index] + (step,) + expense.steps[index + 1:]
    return replace(expense, steps=steps)


def _approve(
    expense: Expense,
    index: int,
    instance: ApprovalStepInstance,
    actor_id: UUID,
    comment: str | None,
    at: datetime,
) -> ActionOutcome:
    sequence = instance.sequence
    updated = _with_step(
        expense,
        index,
        replace(instance, status=StepStatus.APPROVED, acted_at=at, comment=comment),
    )
    updated = history.append(
        updated,
        HistoryAction.STEP_APPROVED,
        actor_id,
        {"comment": comment, "step_name": instance.step_name, "sequence": sequence},
        at,
    )

    if not is_sequence_complete(updated, sequence):
        updated = state_machine.transition(updated, ExpenseStatus.PARTIALLY_APPROVED)
        updated = replace(updated, current_step_index=first_pending_index(updated.steps))
        return ActionOutcome(
            expense=updated,
            decision=SequenceDecision.AWAITING_APPROVALS,
            acted_sequence=sequence,
            next_sequence=sequence,
        )

    steps, skipped = _skip_pending(updated.steps, sequence)
    updated = replace(updated, steps=steps, current_step_index=first_pending_index(steps))
    following = next_sequence(updated, sequence)

    if following is None:
        updated = state_machine.transition(updated, ExpenseStatus.APPROVED)
        updated = history.append(
            updated, HistoryAction.FULLY_APPROVED, actor_id, {"comment": comment}, at,
        )
        return ActionOutcome(
            expense=updated,
            decision=SequenceDecision.FULLY_APPROVED,
            acted_sequence=sequence,
            skipped_approvers=skipped,
        )

    updated = state_machine.transition(updated, ExpenseStatus.PARTIALLY_APPROVED)
    updated = history.append(
        updated,
        HistoryAction.SEQUENCE_COMPLETED,
        actor_id,
        {"completed_sequence": sequence, "next_sequence": following},
        at,
    )
    return ActionOutcome(
        expense=updated,
        decision=SequenceDecision.SEQUENCE_ADVANCED,
        acted_sequence=sequence,
        next_sequence=following,
        skipped_approvers=skipped,
    )


def _reject(
    expense: Expense,
    index: int,
    instance: ApprovalStepInstance,
    actor_id: UUID,
    comment: str | None,
    at: datetime,
) -> ActionOutcome:
    updated = _with_step(
        expense,
        index,
        replace(instance, status=StepStatus.REJECTED, acted_at=at, comment=comment),
    )
    steps, skipped = _skip_pending(updated.steps)
    updated = replace(updated, steps=steps, current_step_index=first_pending_index(steps))
    updated = state_machine.transition(updated, ExpenseStatus.REJECTED)
    updated = history.append(
        updated,
        HistoryAction.REJECTED,
        actor_id,
        {
            "comment": comment,
            "step_name": instance.step_name,
            "sequence": instance.sequence,
        },
        at,
    )
    return ActionOutcome(
        expense=updated,
        decision=SequenceDecision.REJECTED,
        acted_sequence=instance.sequence,
        skipped_approvers=skipped,
    )
