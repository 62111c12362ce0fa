"""
Pure domain layer.

This module contains pure value objects and domain logic with NO
dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

All domain objects are immutable and deterministic.
"""

from expense_kernel.domain.approval import (
    EXPENSE_TRANSITIONS,
    OPEN_EXPENSE_STATUSES,
    TERMINAL_EXPENSE_STATUSES,
    ActionOutcome,
    ApprovalAction,
    ApprovalRule,
    ApprovalStepInstance,
    Company,
    CurrencyConverter,
    DirectoryUser,
    Expense,
    ExpenseDraft,
    ExpenseStatus,
    HistoryAction,
    HistoryEntry,
    PendingApproval,
    Role,
    RuleCatalog,
    RuleConditions,
    RuleStep,
    SequenceDecision,
    StepStatus,
    UserDirectory,
)
from expense_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from expense_kernel.domain.currency import CurrencyInfo, CurrencyRegistry
from expense_kernel.domain.rule_validation import collect_rule_errors, validate_rule

__all__ = [
    "EXPENSE_TRANSITIONS",
    "OPEN_EXPENSE_STATUSES",
    "TERMINAL_EXPENSE_STATUSES",
    "ActionOutcome",
    "ApprovalAction",
    "ApprovalRule",
    "ApprovalStepInstance",
    "Clock",
    "Company",
    "CurrencyConverter",
    "CurrencyInfo",
    "CurrencyRegistry",
    "DeterministicClock",
    "DirectoryUser",
    "Expense",
    "ExpenseDraft",
    "ExpenseStatus",
    "HistoryAction",
    "HistoryEntry",
    "PendingApproval",
    "Role",
    "RuleCatalog",
    "RuleConditions",
    "RuleStep",
    "SequenceDecision",
    "StepStatus",
    "SystemClock",
    "collect_rule_errors",
    "validate_rule",
]
