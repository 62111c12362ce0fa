"""
Expense approval domain types (``expense_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for the expense approval workflow engine.  Defines the
expense status state machine, approval rules and their steps, materialized
per-approver step instances, the append-only history entry, and the
collaborator protocols (user directory, currency converter).

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``models/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* ``EXPENSE_TRANSITIONS`` defines the only valid status transitions.
  Terminal states (approved, rejected) have no outgoing edges.
* Step instances are grouped by ``sequence``; every instance in a group
  carries the same ``percentage_threshold`` (guaranteed by the planner,
  one RuleStep per sequence is enforced by rule validation).
* History entries are frozen; their metadata is exposed read-only.
* ``RuleCatalog.ordered()`` is deterministic: descending priority, ties
  broken by catalog (creation) order.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Protocol
from uuid import UUID


# =========================================================================
# Enumerations
# =========================================================================


class Role(str, Enum):
    """Directory roles usable in rule conditions and role-based approvers."""

    ADMIN = "admin"
    MANAGER = "manager"
    EMPLOYEE = "employee"


class ExpenseStatus(str, Enum):
    """Expense approval lifecycle states."""

    PENDING = "pending"
    PARTIALLY_APPROVED = "partially_approved"
    APPROVED = "approved"
    REJECTED = "rejected"


EXPENSE_TRANSITIONS: dict[ExpenseStatus, frozenset[ExpenseStatus]] = {
    ExpenseStatus.PENDING: frozenset({
        ExpenseStatus.PARTIALLY_APPROVED,
        ExpenseStatus.APPROVED,
        ExpenseStatus.REJECTED,
    }),
    ExpenseStatus.PARTIALLY_APPROVED: frozenset({
        ExpenseStatus.PARTIALLY_APPROVED,
        ExpenseStatus.APPROVED,
        ExpenseStatus.REJECTED,
    }),
    ExpenseStatus.APPROVED: frozenset(),
    ExpenseStatus.REJECTED: frozenset(),
}

TERMINAL_EXPENSE_STATUSES: frozenset[ExpenseStatus] = frozenset({
    ExpenseStatus.APPROVED,
    ExpenseStatus.REJECTED,
})

OPEN_EXPENSE_STATUSES: frozenset[ExpenseStatus] = frozenset({
    ExpenseStatus.PENDING,
    ExpenseStatus.PARTIALLY_APPROVED,
})


class StepStatus(str, Enum):
    """Status of a single approver's step instance."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SKIPPED = "skipped"


class ApprovalAction(str, Enum):
    """Actions an approver can take on their step instance."""

    APPROVE = "approve"
    REJECT = "reject"


class HistoryAction(str, Enum):
    """Audit trail entry types."""

    SUBMITTED = "submitted"
    STEP_APPROVED = "step_approved"
    SEQUENCE_COMPLETED = "sequence_completed"
    FULLY_APPROVED = "fully_approved"
    REJECTED = "rejected"


class SequenceDecision(str, Enum):
    """What the sequencer decided after an approver action."""

    AWAITING_APPROVALS = "awaiting_approvals"
    SEQUENCE_ADVANCED = "sequence_advanced"
    FULLY_APPROVED = "fully_approved"
    REJECTED = "rejected"


DEFAULT_STEP_NAME = "Manager Approval"
DEFAULT_THRESHOLD = 100


# =========================================================================
# Directory and company
# =========================================================================


@dataclass(frozen=True)
class DirectoryUser:
    """Identity record resolved from the user directory."""

    user_id: UUID
    company_id: UUID
    role: Role = Role.EMPLOYEE
    manager_id: UUID | None = None
    department: str | None = None
    is_active: bool = True
    name: str = ""


@dataclass(frozen=True)
class Company:
    """Company whose base currency expenses are converted into."""

    company_id: UUID
    base_currency: str
    name: str = ""


# =========================================================================
# Rules
# =========================================================================


@dataclass(frozen=True)
class RuleConditions:
    """Applicability conditions of a rule.  ``None``/empty = no constraint."""

    min_amount: Decimal | None = None
    max_amount: Decimal | None = None
    category: str | None = None
    department: str | None = None
    employee_roles: frozenset[Role] = frozenset()


@dataclass(frozen=True)
class RuleStep:
    """One phase of a rule.  Expanded into per-approver instances at submit."""

    name: str
    sequence: int
    is_manager_approver: bool = False
    specific_approvers: tuple[UUID, ...] = ()
    role_based_approvers: frozenset[Role] = frozenset()
    percentage_threshold: int = DEFAULT_THRESHOLD
    is_required: bool = True
    # Carried and persisted; the sequencer does not consult it.
    skip_if_previous_rejected: bool = True


@dataclass(frozen=True)
class ApprovalRule:
    """A company approval rule.

    ``priority`` determines evaluation order: higher number = evaluated
    first, first match wins.
    """

    rule_id: UUID
    company_id: UUID
    name: str
    priority: int = 0
    is_active: bool = True
    conditions: RuleConditions = field(default_factory=RuleConditions)
    steps: tuple[RuleStep, ...] = ()
    description: str = ""
    created_at: datetime | None = None

    def sorted_steps(self) -> tuple[RuleStep, ...]:
        """Steps in ascending sequence order (new tuple)."""
        return tuple(sorted(self.steps, key=lambda s: s.sequence))


@dataclass(frozen=True)
class RuleCatalog:
    """Read-only view over one company's approval rules.

    Equal priorities are ordered by ``created_at`` ascending; rules without
    a timestamp come last and keep catalog order (the sort is stable).
    """

    company_id: UUID
    rules: tuple[ApprovalRule, ...] = ()

    def ordered(self) -> tuple[ApprovalRule, ...]:
        """Active rules by descending priority, ties in creation order."""
        active = [r for r in self.rules if r.is_active]
        return tuple(sorted(
            active,
            key=lambda r: (
                -r.priority,
                r.created_at is None,
                r.created_at.timestamp() if r.created_at is not None else 0.0,
            ),
        ))

    def __len__(self) -> int:
        return len(self.rules)


# =========================================================================
# Expense aggregate
# =========================================================================


@dataclass(frozen=True)
class ApprovalStepInstance:
    """One approver's assignment within a sequence."""

    approver: UUID
    step_name: str
    sequence: int
    percentage_threshold: int = DEFAULT_THRESHOLD
    is_required: bool = True
    status: StepStatus = StepStatus.PENDING
    acted_at: datetime | None = None
    comment: str | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == StepStatus.PENDING


@dataclass(frozen=True)
class HistoryEntry:
    """Immutable audit trail entry."""

    action: HistoryAction
    actor_id: UUID
    at: datetime
    metadata: Mapping[str, Any] = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))


@dataclass(frozen=True)
class ExpenseDraft:
    """Employee-supplied expense fields prior to submission."""

    amount: Decimal
    currency: str
    category: str
    description: str = ""
    expense_date: date | None = None


@dataclass(frozen=True)
class Expense:
    """Immutable snapshot of an expense and its approval workflow.

    Engines return new snapshots; persistence writes them back.
    ``current_step_index`` is advisory only -- the authoritative position
    is derived from step statuses by the sequencer.
    """

    expense_id: UUID
    employee_id: UUID
    company_id: UUID
    amount: Decimal
    currency: str
    base_amount: Decimal
    base_currency: str
    category: str
    status: ExpenseStatus = ExpenseStatus.PENDING
    steps: tuple[ApprovalStepInstance, ...] = ()
    history: tuple[HistoryEntry, ...] = ()
    description: str = ""
    expense_date: date | None = None
    current_step_index: int = 0
    matched_rule_id: UUID | None = None
    version: int = 0
    created_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_EXPENSE_STATUSES

    def steps_for(self, sequence: int) -> tuple[ApprovalStepInstance, ...]:
        return tuple(s for s in self.steps if s.sequence == sequence)

    def approvers(self) -> frozenset[UUID]:
        return frozenset(s.approver for s in self.steps)


@dataclass(frozen=True)
class ActionOutcome:
    """Result of applying one approver action to an expense."""

    expense: Expense
    decision: SequenceDecision
    acted_sequence: int
    next_sequence: int | None = None
    skipped_approvers: tuple[UUID, ...] = ()


@dataclass(frozen=True)
class PendingApproval:
    """A step instance awaiting the given approver, with expense context."""

    expense_id: UUID
    employee_id: UUID
    amount: Decimal
    currency: str
    category: str
    step: ApprovalStepInstance


# =========================================================================
# Collaborator protocols
# =========================================================================


class UserDirectory(Protocol):
    """Identity resolution for specific, role-based and manager approvers."""

    def by_ids(self, ids: Iterable[UUID]) -> Sequence[DirectoryUser]:
        """Return the users whose ids are in ``ids`` (unknown ids omitted)."""
        ...

    def by_role(
        self, company_id: UUID, roles: Iterable[Role],
    ) -> Sequence[DirectoryUser]:
        """Return active company users holding any of ``roles``."""
        ...

    def reports_of(self, manager_id: UUID) -> Sequence[DirectoryUser]:
        """Return users whose manager is ``manager_id``."""
        ...


class CurrencyConverter(Protocol):
    """Converts amounts between currencies.  May raise on failure."""

    def convert(self, amount: Decimal, from_currency: str, to_currency: str) -> Decimal:
        ...
