"""
expense_engines.state_machine -- Expense approval status transitions.

Responsibility:
    Decide the initial status of a newly planned expense and guard every
    later status change against ``EXPENSE_TRANSITIONS``.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Called only by the sequencer once an expense exists.

Invariants enforced:
    - Approved and rejected are terminal: no edge leaves them.
    - An expense with no step instances starts approved.

Failure modes:
    - InvalidExpenseTransitionError for any edge not in the table.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace

from expense_kernel.domain.approval import (
    EXPENSE_TRANSITIONS,
    ApprovalStepInstance,
    Expense,
    ExpenseStatus,
)
from expense_kernel.exceptions import InvalidExpenseTransitionError


def initial_status(steps: Sequence[ApprovalStepInstance]) -> ExpenseStatus:
    """Approved when nothing needs approval, pending otherwise."""
    return ExpenseStatus.APPROVED if not steps else ExpenseStatus.PENDING


def can_transition(from_status: ExpenseStatus, to_status: ExpenseStatus) -> bool:
    return to_status in EXPENSE_TRANSITIONS.get(from_status, frozenset())


def transition(expense: Expense, new_status: ExpenseStatus) -> Expense:
    """Return ``expense`` with ``new_status`` or raise on an illegal edge."""
    if not can_transition(expense.status, new_status):
        raise InvalidExpenseTransitionError(
            expense.status.value, new_status.value,
        )
    return replace(expense, status=new_status)
