"""
Module: expense_kernel.models.approval_rule
Responsibility: ORM persistence for company approval rules and their steps.

Architecture position: Kernel > Models.  May import from db/base.py only
    (domain DTOs are imported lazily inside to_dto/from_dto).

Invariants enforced:
    - One step per sequence within a rule: UNIQUE(rule_id, sequence).
    - Thresholds stay within 1..100 and sequences are positive
      (check constraints back up the service-level validator).
    - Steps are owned by their rule: replaced wholesale on update and
      removed with it on delete.

Failure modes:
    - IntegrityError on duplicate sequence or out-of-range threshold.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    JSON,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from expense_kernel.db.base import Base, TrackedBase, UUIDString

if TYPE_CHECKING:
    from expense_kernel.domain.approval import ApprovalRule, RuleStep


class ApprovalRuleModel(TrackedBase):
    """Persistent approval rule.

    Contract:
        ``id`` is the rule id.  Conditions are stored as nullable columns;
        NULL (or an empty role list) means "no constraint".
    """

    __tablename__ = "approval_rules"

    __table_args__ = (
        CheckConstraint(
            "min_amount IS NULL OR max_amount IS NULL OR min_amount <= max_amount",
            name="ck_approval_rules_amount_range",
        ),
        # Catalog load: active rules of a company in evaluation order
        Index(
            "ix_approval_rules_company_priority",
            "company_id", "is_active", "priority", "created_at",
        ),
    )

    company_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    priority: Mapped[int] = mapped_column(default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)

    min_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    max_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    department: Mapped[str | None] = mapped_column(String(100), nullable=True)
    employee_roles: Mapped[list[str]] = mapped_column(
        JSON, default=list, nullable=False,
    )

    steps: Mapped[list["ApprovalRuleStepModel"]] = relationship(
        "ApprovalRuleStepModel",
        back_populates="rule",
        order_by="ApprovalRuleStepModel.sequence",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalRule {self.id} {self.name!r} "
            f"priority={self.priority} active={self.is_active}>"
        )

    def to_dto(self) -> ApprovalRule:
        """Convert ORM model to frozen domain DTO."""
        from expense_kernel.domain.approval import (
            ApprovalRule as ApprovalRuleDTO,
            Role,
            RuleConditions,
        )

        return ApprovalRuleDTO(
            rule_id=self.id,
            company_id=self.company_id,
            name=self.name,
            description=self.description,
            priority=self.priority,
            is_active=self.is_active,
            conditions=RuleConditions(
                min_amount=self.min_amount,
                max_amount=self.max_amount,
                category=self.category,
                department=self.department,
                employee_roles=frozenset(Role(r) for r in self.employee_roles or ()),
            ),
            steps=tuple(s.to_dto() for s in self.steps),
            created_at=self.created_at,
        )

    @classmethod
    def from_dto(cls, dto: ApprovalRule) -> ApprovalRuleModel:
        """Create ORM model (with steps) from domain DTO."""
        model = cls(id=dto.rule_id, company_id=dto.company_id)
        model.apply_dto(dto)
        if dto.created_at is not None:
            model.created_at = dto.created_at
        return model

    def apply_dto(self, dto: ApprovalRule) -> None:
        """Overwrite the editable fields from ``dto``, replacing the step rows.

        Callers updating a persisted rule must clear and flush the old steps
        first so the (rule_id, sequence) unique key is free again.
        """
        conditions = dto.conditions
        self.name = dto.name
        self.description = dto.description
        self.priority = dto.priority
        self.is_active = dto.is_active
        self.min_amount = conditions.min_amount
        self.max_amount = conditions.max_amount
        self.category = conditions.category
        self.department = conditions.department
        self.employee_roles = sorted(r.value for r in conditions.employee_roles)
        self.steps = [ApprovalRuleStepModel.from_dto(s) for s in dto.sorted_steps()]


class ApprovalRuleStepModel(Base):
    """One phase of an approval rule."""

    __tablename__ = "approval_rule_steps"

    __table_args__ = (
        UniqueConstraint("rule_id", "sequence", name="uq_approval_rule_steps_sequence"),
        CheckConstraint("sequence >= 1", name="ck_approval_rule_steps_sequence"),
        CheckConstraint(
            "percentage_threshold BETWEEN 1 AND 100",
            name="ck_approval_rule_steps_threshold",
        ),
    )

    rule_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_rules.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    sequence: Mapped[int] = mapped_column(nullable=False)
    is_manager_approver: Mapped[bool] = mapped_column(default=False, nullable=False)
    specific_approvers: Mapped[list[str]] = mapped_column(
        JSON, default=list, nullable=False,
    )
    role_based_approvers: Mapped[list[str]] = mapped_column(
        JSON, default=list, nullable=False,
    )
    percentage_threshold: Mapped[int] = mapped_column(default=100, nullable=False)
    is_required: Mapped[bool] = mapped_column(default=True, nullable=False)
    skip_if_previous_rejected: Mapped[bool] = mapped_column(
        default=True, nullable=False,
    )

    rule: Mapped["ApprovalRuleModel"] = relationship(
        "ApprovalRuleModel", back_populates="steps",
    )

    def __repr__(self) -> str:
        return f"<ApprovalRuleStep {self.name!r} seq={self.sequence}>"

    def to_dto(self) -> RuleStep:
        """Convert ORM model to frozen domain DTO."""
        from expense_kernel.domain.approval import Role, RuleStep as RuleStepDTO

        return RuleStepDTO(
            name=self.name,
            sequence=self.sequence,
            is_manager_approver=self.is_manager_approver,
            specific_approvers=tuple(UUID(a) for a in self.specific_approvers or ()),
            role_based_approvers=frozenset(
                Role(r) for r in self.role_based_approvers or ()
            ),
            percentage_threshold=self.percentage_threshold,
            is_required=self.is_required,
            skip_if_previous_rejected=self.skip_if_previous_rejected,
        )

    @classmethod
    def from_dto(cls, dto: RuleStep) -> ApprovalRuleStepModel:
        """Create ORM model from domain DTO."""
        return cls(
            name=dto.name,
            sequence=dto.sequence,
            is_manager_approver=dto.is_manager_approver,
            specific_approvers=[str(a) for a in dto.specific_approvers],
            role_based_approvers=sorted(r.value for r in dto.role_based_approvers),
            percentage_threshold=dto.percentage_threshold,
            is_required=dto.is_required,
            skip_if_previous_rejected=dto.skip_if_previous_rejected,
        )
