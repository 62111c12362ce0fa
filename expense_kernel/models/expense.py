"""
Module: expense_kernel.models.expense
Responsibility: ORM persistence for expenses, their materialized approver
    step instances, and the append-only expense history.

Architecture position: Kernel > Models.  May import from db/base.py and
    kernel exceptions (domain DTOs are imported lazily inside to_dto).

Invariants enforced:
    - Status values are limited by a check constraint; transitions are
      enforced by the state machine engine before anything is written.
    - Optimistic concurrency: ``version`` is the mapper's version_id_col.
      Every UPDATE carries ``WHERE version = <loaded version>``; a lost
      race raises StaleDataError, which the service maps to
      ConcurrentModificationError.
    - No duplicate ``(approver, sequence)`` within an expense.
    - History rows are append-only: ORM listeners reject UPDATE/DELETE.

Failure modes:
    - IntegrityError on a duplicated approver within a sequence.
    - ImmutabilityViolationError on history UPDATE/DELETE.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from expense_kernel.db.base import Base, TrackedBase, UUIDString
from expense_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from expense_kernel.domain.approval import (
        ApprovalStepInstance,
        Expense,
        HistoryEntry,
    )


class ExpenseModel(TrackedBase):
    """Persistent expense with its approval workflow.

    Contract:
        ``id`` is the expense id.  Step instances are written once at
        submission and afterwards only change status in place.
    """

    __tablename__ = "expenses"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'partially_approved', 'approved', 'rejected')",
            name="ck_expenses_valid_status",
        ),
        CheckConstraint("version >= 1", name="ck_expenses_version_positive"),
        Index("ix_expenses_employee_created", "employee_id", "created_at"),
        Index("ix_expenses_company_created", "company_id", "created_at"),
    )

    employee_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    company_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    base_amount: Mapped[Decimal] = mapped_column(nullable=False)
    base_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    expense_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="pending")
    current_step_index: Mapped[int] = mapped_column(default=0, nullable=False)
    matched_rule_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    version: Mapped[int] = mapped_column(nullable=False, default=1)

    steps: Mapped[list["ExpenseApprovalStepModel"]] = relationship(
        "ExpenseApprovalStepModel",
        back_populates="expense",
        order_by="ExpenseApprovalStepModel.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    history: Mapped[list["ExpenseHistoryModel"]] = relationship(
        "ExpenseHistoryModel",
        back_populates="expense",
        order_by="ExpenseHistoryModel.position",
        cascade="all",
        lazy="selectin",
    )

    # The service assigns every new version itself.
    __mapper_args__ = {
        "version_id_col": version,
        "version_id_generator": False,
    }

    def __repr__(self) -> str:
        return (
            f"<Expense {self.id} {self.amount} {self.currency} "
            f"status={self.status} v{self.version}>"
        )

    def to_dto(self) -> Expense:
        """Convert ORM model to frozen domain DTO."""
        from expense_kernel.domain.approval import (
            Expense as ExpenseDTO,
            ExpenseStatus,
        )

        return ExpenseDTO(
            expense_id=self.id,
            employee_id=self.employee_id,
            company_id=self.company_id,
            amount=self.amount,
            currency=self.currency,
            base_amount=self.base_amount,
            base_currency=self.base_currency,
            category=self.category,
            status=ExpenseStatus(self.status),
            steps=tuple(s.to_dto() for s in self.steps),
            history=tuple(h.to_dto() for h in self.history),
            description=self.description,
            expense_date=self.expense_date,
            current_step_index=self.current_step_index,
            matched_rule_id=self.matched_rule_id,
            version=self.version,
            created_at=self.created_at,
        )

    @classmethod
    def from_dto(cls, dto: Expense) -> ExpenseModel:
        """Create ORM model (steps and history included) from domain DTO."""
        model = cls(
            id=dto.expense_id,
            employee_id=dto.employee_id,
            company_id=dto.company_id,
            amount=dto.amount,
            currency=dto.currency,
            base_amount=dto.base_amount,
            base_currency=dto.base_currency,
            category=dto.category,
            description=dto.description,
            expense_date=dto.expense_date,
            status=dto.status.value,
            current_step_index=dto.current_step_index,
            matched_rule_id=dto.matched_rule_id,
            version=dto.version,
        )
        if dto.created_at is not None:
            model.created_at = dto.created_at
        model.steps = [
            ExpenseApprovalStepModel.from_dto(step, position)
            for position, step in enumerate(dto.steps)
        ]
        model.history = [
            ExpenseHistoryModel.from_dto(entry, position)
            for position, entry in enumerate(dto.history)
        ]
        return model


class ExpenseApprovalStepModel(Base):
    """One approver's step instance within an expense."""

    __tablename__ = "expense_approval_steps"

    __table_args__ = (
        UniqueConstraint(
            "expense_id", "approver_id", "sequence",
            name="uq_expense_approval_steps_approver",
        ),
        UniqueConstraint(
            "expense_id", "position",
            name="uq_expense_approval_steps_position",
        ),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'skipped')",
            name="ck_expense_approval_steps_valid_status",
        ),
        # list_pending_for(): pending work by approver
        Index("ix_expense_approval_steps_approver_status", "approver_id", "status"),
    )

    expense_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("expenses.id"), nullable=False,
    )
    position: Mapped[int] = mapped_column(nullable=False)
    approver_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    step_name: Mapped[str] = mapped_column(String(200), nullable=False)
    sequence: Mapped[int] = mapped_column(nullable=False)
    percentage_threshold: Mapped[int] = mapped_column(default=100, nullable=False)
    is_required: Mapped[bool] = mapped_column(default=True, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    acted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)

    expense: Mapped["ExpenseModel"] = relationship(
        "ExpenseModel", back_populates="steps",
    )

    def __repr__(self) -> str:
        return (
            f"<ExpenseApprovalStep expense={self.expense_id} "
            f"approver={self.approver_id} seq={self.sequence} status={self.status}>"
        )

    def to_dto(self) -> ApprovalStepInstance:
        """Convert ORM model to frozen domain DTO."""
        from expense_kernel.domain.approval import ApprovalStepInstance, StepStatus

        return ApprovalStepInstance(
            approver=self.approver_id,
            step_name=self.step_name,
            sequence=self.sequence,
            percentage_threshold=self.percentage_threshold,
            is_required=self.is_required,
            status=StepStatus(self.status),
            acted_at=self.acted_at,
            comment=self.comment,
        )

    @classmethod
    def from_dto(cls, dto: ApprovalStepInstance, position: int) -> ExpenseApprovalStepModel:
        """Create ORM model from domain DTO."""
        return cls(
            position=position,
            approver_id=dto.approver,
            step_name=dto.step_name,
            sequence=dto.sequence,
            percentage_threshold=dto.percentage_threshold,
            is_required=dto.is_required,
            status=dto.status.value,
            acted_at=dto.acted_at,
            comment=dto.comment,
        )

    def apply_dto(self, dto: ApprovalStepInstance) -> None:
        """Copy the mutable fields of ``dto`` onto this row."""
        self.status = dto.status.value
        self.acted_at = dto.acted_at
        self.comment = dto.comment


class ExpenseHistoryModel(Base):
    """Persistent history entry. Append-only.

    Contract:
        History entries are immutable once created -- no UPDATE, no DELETE.
    """

    __tablename__ = "expense_history"

    __table_args__ = (
        UniqueConstraint("expense_id", "position", name="uq_expense_history_position"),
    )

    expense_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("expenses.id"), nullable=False,
    )
    position: Mapped[int] = mapped_column(nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    at: Mapped[datetime] = mapped_column(nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, default=dict, nullable=False,
    )

    expense: Mapped["ExpenseModel"] = relationship(
        "ExpenseModel", back_populates="history",
    )

    def __repr__(self) -> str:
        return (
            f"<ExpenseHistory expense={self.expense_id} "
            f"#{self.position} {self.action}>"
        )

    def to_dto(self) -> HistoryEntry:
        """Convert ORM model to frozen domain DTO."""
        from expense_kernel.domain.approval import HistoryAction, HistoryEntry

        return HistoryEntry(
            action=HistoryAction(self.action),
            actor_id=self.actor_id,
            at=self.at,
            metadata=dict(self.details or {}),
        )

    @classmethod
    def from_dto(cls, dto: HistoryEntry, position: int) -> ExpenseHistoryModel:
        """Create ORM model from domain DTO."""
        return cls(
            position=position,
            action=dto.action.value,
            actor_id=dto.actor_id,
            at=dto.at,
            details=dict(dto.metadata),
        )


# =============================================================================
# ORM-Level Immutability for History (Append-Only)
# =============================================================================


@event.listens_for(ExpenseHistoryModel, "before_update")
def prevent_history_update(mapper, connection, target):
    """Prevent updates to expense history records."""
    raise ImmutabilityViolationError(
        entity_type="ExpenseHistory",
        entity_id=str(target.id),
        reason="Expense history is append-only -- cannot modify",
    )


@event.listens_for(ExpenseHistoryModel, "before_delete")
def prevent_history_delete(mapper, connection, target):
    """Prevent deletion of expense history records."""
    raise ImmutabilityViolationError(
        entity_type="ExpenseHistory",
        entity_id=str(target.id),
        reason="Expense history is append-only -- cannot delete",
    )
