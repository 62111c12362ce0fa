"""
expense_kernel.services.rule_service -- Approval rule authoring.

Responsibility:
    Create, update, delete and read a company's approval rules.  Structural
    validation is delegated to the pure rule validator; this service adds
    the checks that need I/O (specific approvers must exist in the
    company's directory) and enforces company scoping.

Architecture position:
    Kernel > Services.  May import from domain/, models/, selectors/, db/.

Invariants enforced:
    - A persisted rule always passes ``validate_rule``.
    - Every specific approver resolves to a user of the rule's company.
    - A rule is only visible to, and editable by, its own company.

Failure modes:
    - RuleValidationError for structurally invalid rules.
    - UnknownApproverError for specific approvers outside the directory.
    - RuleNotFoundError for unknown rules or rules of another company.
"""

from __future__ import annotations

from dataclasses import replace
from uuid import UUID

from sqlalchemy.orm import Session

from expense_kernel.domain.approval import ApprovalRule, UserDirectory
from expense_kernel.domain.clock import Clock
from expense_kernel.domain.rule_validation import validate_rule
from expense_kernel.exceptions import RuleNotFoundError, UnknownApproverError
from expense_kernel.logging_config import LogContext, get_logger
from expense_kernel.models.approval_rule import ApprovalRuleModel
from expense_kernel.selectors.rule_selector import RuleSelector
from expense_kernel.services.base import BaseService

logger = get_logger("services.rule")


class RuleService(BaseService):
    """Manages the approval rules of a company."""

    def __init__(
        self,
        session: Session,
        directory: UserDirectory,
        clock: Clock | None = None,
    ) -> None:
        super().__init__(session, clock)
        self._directory = directory
        self._rules = RuleSelector(session)

    def create_rule(self, rule: ApprovalRule) -> ApprovalRule:
        """Validate and persist a new rule."""
        validate_rule(rule)
        self._check_approvers(rule)

        if rule.created_at is None:
            rule = replace(rule, created_at=self._clock.now())
        model = ApprovalRuleModel.from_dto(rule)
        self._session.add(model)
        self._session.flush()

        with LogContext.bind(company_id=str(rule.company_id)):
            logger.info(
                "approval_rule_created",
                extra={
                    "rule_id": str(rule.rule_id),
                    "rule_name": rule.name,
                    "priority": rule.priority,
                    "step_count": len(rule.steps),
                },
            )
        return model.to_dto()

    def update_rule(self, rule: ApprovalRule) -> ApprovalRule:
        """Replace the definition of an existing rule (steps included)."""
        model = self._load_rule_model(rule.company_id, rule.rule_id)
        validate_rule(rule)
        self._check_approvers(rule)

        # Old steps must be gone before new ones reuse their sequences.
        model.steps.clear()
        self._session.flush()
        model.apply_dto(rule)
        self._session.flush()

        with LogContext.bind(company_id=str(rule.company_id)):
            logger.info(
                "approval_rule_updated",
                extra={
                    "rule_id": str(rule.rule_id),
                    "rule_name": rule.name,
                    "is_active": rule.is_active,
                    "step_count": len(rule.steps),
                },
            )
        return model.to_dto()

    def delete_rule(self, company_id: UUID, rule_id: UUID) -> None:
        """Delete a rule.  Expenses keep their materialized steps."""
        model = self._load_rule_model(company_id, rule_id)
        self._session.delete(model)
        self._session.flush()

        with LogContext.bind(company_id=str(company_id)):
            logger.info("approval_rule_deleted", extra={"rule_id": str(rule_id)})

    def get_rule(self, company_id: UUID, rule_id: UUID) -> ApprovalRule:
        return self._load_rule_model(company_id, rule_id).to_dto()

    def list_rules(self, company_id: UUID) -> list[ApprovalRule]:
        """Highest priority first, newest first on equal priority."""
        return self._rules.list_for_company(company_id)

    def _load_rule_model(self, company_id: UUID, rule_id: UUID) -> ApprovalRuleModel:
        model = self._session.get(ApprovalRuleModel, rule_id)
        if model is None or model.company_id != company_id:
            raise RuleNotFoundError(str(rule_id))
        return model

    def _check_approvers(self, rule: ApprovalRule) -> None:
        wanted: list[UUID] = []
        for step in rule.steps:
            for approver in step.specific_approvers:
                if approver not in wanted:
                    wanted.append(approver)
        if not wanted:
            return

        known = {
            user.user_id
            for user in self._directory.by_ids(wanted)
            if user.company_id == rule.company_id
        }
        missing = [str(a) for a in wanted if a not in known]
        if missing:
            raise UnknownApproverError(rule.name, missing)
