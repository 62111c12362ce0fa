"""Selectors for the expense kernel (read side)."""

from expense_kernel.selectors.directory import SqlUserDirectory
from expense_kernel.selectors.expense_selector import ExpenseSelector
from expense_kernel.selectors.rule_selector import RuleSelector

__all__ = [
    "ExpenseSelector",
    "RuleSelector",
    "SqlUserDirectory",
]
