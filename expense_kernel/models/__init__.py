"""ORM models for the expense kernel."""

from expense_kernel.models.approval_rule import ApprovalRuleModel, ApprovalRuleStepModel
from expense_kernel.models.directory_user import DirectoryUserModel
from expense_kernel.models.expense import (
    ExpenseApprovalStepModel,
    ExpenseHistoryModel,
    ExpenseModel,
)

__all__ = [
    "ApprovalRuleModel",
    "ApprovalRuleStepModel",
    "DirectoryUserModel",
    "ExpenseApprovalStepModel",
    "ExpenseHistoryModel",
    "ExpenseModel",
]
