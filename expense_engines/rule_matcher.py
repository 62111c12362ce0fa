"""
expense_engines.rule_matcher -- Pure approval rule selection engine.

Responsibility:
    Select the approval rule that governs a submitted expense.  Rules are
    evaluated in catalog order (descending priority, creation order on
    ties) and the first rule whose conditions all pass wins.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import expense_kernel/domain/ types.

Invariants enforced:
    - Deterministic ordering: ``RuleCatalog.ordered()`` is the only source
      of evaluation order; inactive rules are never considered.
    - Absent conditions impose no constraint.  Amount bounds are inclusive.
    - Purity: no clock access, no I/O, no database.

Failure modes:
    - Returns None when no rule matches.  The fallback (manager approval or
      auto-approval) is applied by the step planner, not here.
"""

from __future__ import annotations

from decimal import Decimal

from expense_engines.tracer import traced_engine
from expense_kernel.domain.approval import (
    ApprovalRule,
    DirectoryUser,
    ExpenseDraft,
    RuleCatalog,
)


def rule_applies(
    rule: ApprovalRule,
    amount: Decimal,
    category: str,
    employee: DirectoryUser,
) -> bool:
    """Check whether every condition of ``rule`` holds for the inputs."""
    conditions = rule.conditions

    if conditions.min_amount is not None and amount < conditions.min_amount:
        return False
    if conditions.max_amount is not None and amount > conditions.max_amount:
        return False
    if conditions.category is not None and category != conditions.category:
        return False
    if (
        conditions.department is not None
        and employee.department != conditions.department
    ):
        return False
    if conditions.employee_roles and employee.role not in conditions.employee_roles:
        return False
    return True


@traced_engine("rule_matcher", "1.0", fingerprint_fields=("expense", "employee"))
def match_rule(
    expense: ExpenseDraft,
    employee: DirectoryUser,
    catalog: RuleCatalog,
    *,
    amount: Decimal | None = None,
) -> ApprovalRule | None:
    """Return the first applicable rule for ``expense``, or None.

    Args:
        expense: The submitted expense fields.
        employee: The submitting employee (role and department are matched).
        catalog: The company's rules.
        amount: Overrides ``expense.amount`` for the range check, e.g. the
            amount converted to the company's base currency.

    Returns:
        The matching ApprovalRule, or None when no rule applies.
    """
    compared = expense.amount if amount is None else amount
    for rule in catalog.ordered():
        if rule_applies(rule, compared, expense.category, employee):
            return rule
    return None
