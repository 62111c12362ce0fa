"""
Module: expense_kernel.selectors.rule_selector
Responsibility: Read access to company approval rules.

Invariants enforced:
    - Catalogs are company-scoped and loaded in creation order so that
      RuleCatalog.ordered() breaks priority ties deterministically.
"""

from uuid import UUID

from sqlalchemy import select

from expense_kernel.domain.approval import ApprovalRule, RuleCatalog
from expense_kernel.models.approval_rule import ApprovalRuleModel
from expense_kernel.selectors.base import BaseSelector


class RuleSelector(BaseSelector[ApprovalRuleModel]):
    """Queries over approval rules."""

    def get(self, rule_id: UUID) -> ApprovalRule | None:
        model = self.session.get(ApprovalRuleModel, rule_id)
        return model.to_dto() if model is not None else None

    def catalog_for(self, company_id: UUID) -> RuleCatalog:
        """All rules of ``company_id`` (active or not) in creation order."""
        stmt = (
            select(ApprovalRuleModel)
            .where(ApprovalRuleModel.company_id == company_id)
            .order_by(ApprovalRuleModel.created_at, ApprovalRuleModel.id)
        )
        models = self.session.execute(stmt).scalars().all()
        return RuleCatalog(
            company_id=company_id,
            rules=tuple(m.to_dto() for m in models),
        )

    def list_for_company(self, company_id: UUID) -> list[ApprovalRule]:
        """Rules for display: highest priority first, newest first on ties."""
        stmt = (
            select(ApprovalRuleModel)
            .where(ApprovalRuleModel.company_id == company_id)
            .order_by(
                ApprovalRuleModel.priority.desc(),
                ApprovalRuleModel.created_at.desc(),
            )
        )
        return [m.to_dto() for m in self.session.execute(stmt).scalars().all()]
