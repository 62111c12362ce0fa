"""
Tests for the pure approval sequencer.

Tests cover:
- current_sequence / next_sequence / is_sequence_complete
- record_action: approve, reject, multi-sequence advancement
- error ordering: terminal expense, double action, non-approver, bad action
- history entries appended for every mutation path
"""

from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID, uuid4

import pytest

from expense_engines.sequencer import (
    current_sequence,
    is_sequence_complete,
    next_sequence,
    record_action,
)
from expense_kernel.domain.approval import (
    ApprovalAction,
    ApprovalStepInstance,
    Expense,
    ExpenseStatus,
    HistoryAction,
    SequenceDecision,
    StepStatus,
)
from expense_kernel.exceptions import (
    AuthorizationError,
    ConflictError,
    ExpenseAlreadyResolvedError,
    InvalidActionError,
    NotAuthorizedApproverError,
    StepAlreadyResolvedError,
    ValidationError,
)

AT = datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc)


# =========================================================================
# Factory helpers
# =========================================================================


def instance(
    approver: UUID,
    sequence: int = 1,
    threshold: int = 100,
    status: StepStatus = StepStatus.PENDING,
    name: str = "Step",
) -> ApprovalStepInstance:
    return ApprovalStepInstance(
        approver=approver,
        step_name=name,
        sequence=sequence,
        percentage_threshold=threshold,
        status=status,
    )


def make_expense(*steps: ApprovalStepInstance, status: ExpenseStatus = ExpenseStatus.PENDING) -> Expense:
    return Expense(
        expense_id=uuid4(),
        employee_id=uuid4(),
        company_id=uuid4(),
        amount=Decimal("1000"),
        currency="USD",
        base_amount=Decimal("1000"),
        base_currency="USD",
        category="travel",
        status=status,
        steps=tuple(steps),
        version=1,
    )


# =========================================================================
# Sequence queries
# =========================================================================


class TestCurrentSequence:
    def test_lowest_pending_sequence(self):
        expense = make_expense(
            instance(uuid4(), 1, status=StepStatus.APPROVED),
            instance(uuid4(), 3),
            instance(uuid4(), 2),
        )
        assert current_sequence(expense) == 2

    def test_none_when_nothing_pending(self):
        expense = make_expense(
            instance(uuid4(), 1, status=StepStatus.APPROVED),
            instance(uuid4(), 2, status=StepStatus.SKIPPED),
        )
        assert current_sequence(expense) is None

    def test_none_for_expense_without_steps(self):
        # Never defaults to sequence 1.
        assert current_sequence(make_expense()) is None

    def test_next_sequence(self):
        expense = make_expense(instance(uuid4(), 1), instance(uuid4(), 4), instance(uuid4(), 9))
        assert next_sequence(expense, 1) == 4
        assert next_sequence(expense, 4) == 9
        assert next_sequence(expense, 9) is None


class TestIsSequenceComplete:
    """Integer threshold arithmetic."""

    @pytest.mark.parametrize("threshold,approved,total,expected", [
        (100, 2, 2, True),
        (100, 1, 2, False),
        (50, 1, 2, True),
        (50, 0, 2, False),
        (60, 1, 2, False),
        (34, 1, 3, False),
        (33, 1, 3, True),
        (67, 2, 3, False),
        (66, 2, 3, True),
        (1, 1, 100, True),
    ])
    def test_threshold(self, threshold, approved, total, expected):
        steps = [
            instance(uuid4(), 1, threshold, StepStatus.APPROVED if i < approved else StepStatus.PENDING)
            for i in range(total)
        ]
        assert is_sequence_complete(make_expense(*steps), 1) is expected

    def test_empty_group_is_vacuously_complete(self):
        assert is_sequence_complete(make_expense(instance(uuid4(), 1)), 2) is True

    def test_rejected_and_skipped_count_as_not_approved(self):
        expense = make_expense(
            instance(uuid4(), 1, 50, StepStatus.REJECTED),
            instance(uuid4(), 1, 50, StepStatus.SKIPPED),
        )
        assert is_sequence_complete(expense, 1) is False


# =========================================================================
# record_action
# =========================================================================


class TestApprove:
    def test_two_sequence_scenario(self):
        manager, finance = uuid4(), uuid4()
        expense = make_expense(instance(manager, 1, name="Manager"), instance(finance, 2, name="Finance"))

        first = record_action(expense, manager, ApprovalAction.APPROVE, "ok", AT)

        assert first.decision == SequenceDecision.SEQUENCE_ADVANCED
        assert first.expense.status == ExpenseStatus.PARTIALLY_APPROVED
        assert first.next_sequence == 2
        assert current_sequence(first.expense) == 2
        assert [h.action for h in first.expense.history] == [
            HistoryAction.STEP_APPROVED,
            HistoryAction.SEQUENCE_COMPLETED,
        ]
        assert dict(first.expense.history[1].metadata) == {
            "completed_sequence": 1,
            "next_sequence": 2,
        }

        second = record_action(first.expense, finance, "approve", None, AT)

        assert second.decision == SequenceDecision.FULLY_APPROVED
        assert second.expense.status == ExpenseStatus.APPROVED
        assert current_sequence(second.expense) is None
        assert all(s.status != StepStatus.PENDING for s in second.expense.steps)
        assert second.expense.history[-1].action == HistoryAction.FULLY_APPROVED

    def test_single_of_two_at_fifty_percent_completes_and_skips_other(self):
        a, b = uuid4(), uuid4()
        expense = make_expense(instance(a, 1, 50), instance(b, 1, 50))

        outcome = record_action(expense, a, ApprovalAction.APPROVE, None, AT)

        assert outcome.decision == SequenceDecision.FULLY_APPROVED
        assert outcome.expense.status == ExpenseStatus.APPROVED
        statuses = {s.approver: s.status for s in outcome.expense.steps}
        assert statuses == {a: StepStatus.APPROVED, b: StepStatus.SKIPPED}
        assert outcome.skipped_approvers == (b,)

    def test_partial_approval_within_sequence_awaits_others(self):
        a, b = uuid4(), uuid4()
        expense = make_expense(instance(a, 1), instance(b, 1))

        outcome = record_action(expense, a, ApprovalAction.APPROVE, "fine", AT)

        assert outcome.decision == SequenceDecision.AWAITING_APPROVALS
        assert outcome.expense.status == ExpenseStatus.PARTIALLY_APPROVED
        assert current_sequence(outcome.expense) == 1
        assert [h.action for h in outcome.expense.history] == [HistoryAction.STEP_APPROVED]

    def test_approval_stamps_instance(self):
        a = uuid4()
        outcome = record_action(make_expense(instance(a, 1)), a, ApprovalAction.APPROVE, "lgtm", AT)
        (step,) = outcome.expense.steps
        assert step.status == StepStatus.APPROVED
        assert step.acted_at == AT
        assert step.comment == "lgtm"
        entry = outcome.expense.history[0]
        assert entry.actor_id == a
        assert entry.at == AT
        assert dict(entry.metadata) == {"comment": "lgtm", "step_name": "Step", "sequence": 1}

    def test_current_step_index_tracks_first_pending(self):
        a, b = uuid4(), uuid4()
        expense = make_expense(instance(a, 1), instance(b, 2))
        outcome = record_action(expense, a, ApprovalAction.APPROVE, None, AT)
        assert outcome.expense.current_step_index == 1

    def test_input_expense_is_not_mutated(self):
        a = uuid4()
        expense = make_expense(instance(a, 1))
        record_action(expense, a, ApprovalAction.APPROVE, None, AT)
        assert expense.status == ExpenseStatus.PENDING
        assert expense.steps[0].status == StepStatus.PENDING
        assert expense.history == ()


class TestReject:
    def test_reject_is_immediate_and_skips_everything_pending(self):
        a, b, c = uuid4(), uuid4(), uuid4()
        expense = make_expense(instance(a, 1, 50), instance(b, 1, 50), instance(c, 2))

        outcome = record_action(expense, a, ApprovalAction.REJECT, "no receipt", AT)

        assert outcome.decision == SequenceDecision.REJECTED
        assert outcome.expense.status == ExpenseStatus.REJECTED
        statuses = [s.status for s in outcome.expense.steps]
        assert statuses == [StepStatus.REJECTED, StepStatus.SKIPPED, StepStatus.SKIPPED]
        assert set(outcome.skipped_approvers) == {b, c}
        entry = outcome.expense.history[-1]
        assert entry.action == HistoryAction.REJECTED
        assert entry.metadata["comment"] == "no receipt"

    def test_reject_after_partial_approval(self):
        a, b = uuid4(), uuid4()
        expense = make_expense(instance(a, 1), instance(b, 2))
        partial = record_action(expense, a, ApprovalAction.APPROVE, None, AT).expense

        outcome = record_action(partial, b, ApprovalAction.REJECT, None, AT)

        assert outcome.expense.status == ExpenseStatus.REJECTED

    def test_no_action_accepted_after_rejection(self):
        a, b = uuid4(), uuid4()
        expense = make_expense(instance(a, 1), instance(b, 1))
        rejected = record_action(expense, a, ApprovalAction.REJECT, None, AT).expense

        with pytest.raises(ExpenseAlreadyResolvedError):
            record_action(rejected, b, ApprovalAction.APPROVE, None, AT)


class TestActionErrors:
    def test_double_approval_is_conflict(self):
        a, b = uuid4(), uuid4()
        expense = make_expense(instance(a, 1), instance(b, 1))
        after = record_action(expense, a, ApprovalAction.APPROVE, None, AT).expense

        with pytest.raises(StepAlreadyResolvedError) as exc_info:
            record_action(after, a, ApprovalAction.APPROVE, None, AT)

        assert isinstance(exc_info.value, ConflictError)
        approved = [s for s in after.steps if s.status == StepStatus.APPROVED]
        assert len(approved) == 1

    def test_approver_of_later_sequence_is_not_yet_authorized(self):
        a, b = uuid4(), uuid4()
        expense = make_expense(instance(a, 1), instance(b, 2))
        with pytest.raises(NotAuthorizedApproverError) as exc_info:
            record_action(expense, b, ApprovalAction.APPROVE, None, AT)
        assert isinstance(exc_info.value, AuthorizationError)

    def test_stranger_is_not_authorized(self):
        expense = make_expense(instance(uuid4(), 1))
        with pytest.raises(NotAuthorizedApproverError):
            record_action(expense, uuid4(), ApprovalAction.APPROVE, None, AT)

    def test_approved_expense_rejects_further_actions(self):
        a = uuid4()
        approved = record_action(make_expense(instance(a, 1)), a, ApprovalAction.APPROVE, None, AT).expense
        with pytest.raises(ExpenseAlreadyResolvedError):
            record_action(approved, a, ApprovalAction.APPROVE, None, AT)

    def test_unknown_action_is_validation_error(self):
        a = uuid4()
        with pytest.raises(InvalidActionError) as exc_info:
            record_action(make_expense(instance(a, 1)), a, "escalate", None, AT)
        assert isinstance(exc_info.value, ValidationError)

    def test_authorization_is_checked_before_action(self):
        expense = make_expense(instance(uuid4(), 1))
        with pytest.raises(NotAuthorizedApproverError):
            record_action(expense, uuid4(), "escalate", None, AT)

    def test_skipped_holder_outside_current_sequence_is_not_authorized(self):
        a, b = uuid4(), uuid4()
        expense = make_expense(instance(a, 1, 50), instance(b, 1, 50), instance(uuid4(), 2))
        after = record_action(expense, a, ApprovalAction.APPROVE, None, AT).expense
        # Sequence 1 is complete; b was skipped and is not in sequence 2.
        with pytest.raises(NotAuthorizedApproverError):
            record_action(after, b, ApprovalAction.APPROVE, None, AT)

    def test_skipped_instance_in_current_sequence_is_conflict(self):
        a, b = uuid4(), uuid4()
        expense = make_expense(
            instance(a, 1),
            replace(instance(b, 1), status=StepStatus.SKIPPED),
        )
        with pytest.raises(StepAlreadyResolvedError):
            record_action(expense, b, ApprovalAction.APPROVE, None, AT)
