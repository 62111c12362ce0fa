"""
Module: expense_kernel.selectors.expense_selector
Responsibility: Read access to expenses, their step instances and history.

Invariants enforced:
    - Results are frozen Expense snapshots; the approval position is derived
      by the caller from step statuses, never from current_step_index.
"""

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import select

from expense_kernel.domain.approval import OPEN_EXPENSE_STATUSES, Expense, StepStatus
from expense_kernel.models.expense import ExpenseApprovalStepModel, ExpenseModel
from expense_kernel.selectors.base import BaseSelector


class ExpenseSelector(BaseSelector[ExpenseModel]):
    """Queries over expenses."""

    def get(self, expense_id: UUID) -> Expense | None:
        model = self.session.get(ExpenseModel, expense_id)
        return model.to_dto() if model is not None else None

    def with_pending_step_for(self, approver_id: UUID) -> list[Expense]:
        """Open expenses holding a pending instance for ``approver_id``.

        The instance may sit in a later sequence; callers narrow the result
        to the expense's current sequence.
        """
        stmt = (
            select(ExpenseModel)
            .join(ExpenseApprovalStepModel, ExpenseApprovalStepModel.expense_id == ExpenseModel.id)
            .where(
                ExpenseApprovalStepModel.approver_id == approver_id,
                ExpenseApprovalStepModel.status == StepStatus.PENDING.value,
                ExpenseModel.status.in_([s.value for s in OPEN_EXPENSE_STATUSES]),
            )
            .order_by(ExpenseModel.created_at, ExpenseModel.id)
            .distinct()
        )
        return [m.to_dto() for m in self.session.execute(stmt).scalars().all()]

    def for_employees(self, employee_ids: Iterable[UUID]) -> list[Expense]:
        """Expenses submitted by any of ``employee_ids``, newest first."""
        ids = list(employee_ids)
        if not ids:
            return []
        stmt = (
            select(ExpenseModel)
            .where(ExpenseModel.employee_id.in_(ids))
            .order_by(ExpenseModel.created_at.desc(), ExpenseModel.id)
        )
        return [m.to_dto() for m in self.session.execute(stmt).scalars().all()]

    def for_company(self, company_id: UUID) -> list[Expense]:
        """All expenses of ``company_id``, newest first."""
        stmt = (
            select(ExpenseModel)
            .where(ExpenseModel.company_id == company_id)
            .order_by(ExpenseModel.created_at.desc(), ExpenseModel.id)
        )
        return [m.to_dto() for m in self.session.execute(stmt).scalars().all()]
