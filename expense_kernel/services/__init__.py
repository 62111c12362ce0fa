"""Services for the expense kernel (write side)."""

from expense_kernel.services.currency import StaticRateConverter
from expense_kernel.services.expense_approval_service import (
    ActionResult,
    ExpenseApprovalService,
    SubmissionResult,
)
from expense_kernel.services.rule_service import RuleService

__all__ = [
    "ActionResult",
    "ExpenseApprovalService",
    "RuleService",
    "StaticRateConverter",
    "SubmissionResult",
]
