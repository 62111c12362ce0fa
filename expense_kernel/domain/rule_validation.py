"""
Rule validation (``expense_kernel.domain.rule_validation``).

Structural checks on an ``ApprovalRule`` at authoring time.  Pure -- the
directory check for specific approvers lives in ``RuleService`` because
it needs I/O.

Failure modes
-------------
* ``RuleValidationError`` carrying every problem found, not just the first.
"""

from __future__ import annotations

from expense_kernel.domain.approval import ApprovalRule
from expense_kernel.exceptions import RuleValidationError


def _is_text(value: object) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def collect_rule_errors(rule: ApprovalRule) -> list[str]:
    """Return human-readable problems with ``rule`` (empty when valid)."""
    errors: list[str] = []

    if not _is_text(rule.name):
        errors.append("rule name is required")

    if not rule.steps:
        errors.append("at least one approval step is required")

    seen: set[int] = set()
    for index, step in enumerate(rule.steps):
        label = f"step[{index}]"
        if not _is_text(step.name):
            errors.append(f"{label}: name is required")
        if not _is_int(step.sequence):
            errors.append(f"{label}: sequence must be an integer")
        elif step.sequence < 1:
            errors.append(f"{label}: sequence must be positive")
        elif step.sequence in seen:
            errors.append(f"{label}: duplicate sequence {step.sequence}")
        else:
            seen.add(step.sequence)
        if not _is_int(step.percentage_threshold) or not 1 <= step.percentage_threshold <= 100:
            errors.append(
                f"{label}: percentage_threshold must be between 1 and 100"
            )

    conditions = rule.conditions
    if (
        conditions.min_amount is not None
        and conditions.max_amount is not None
        and conditions.min_amount > conditions.max_amount
    ):
        errors.append("conditions: min_amount exceeds max_amount")

    return errors


def validate_rule(rule: ApprovalRule) -> ApprovalRule:
    """Raise ``RuleValidationError`` if ``rule`` is malformed, else return it."""
    errors = collect_rule_errors(rule)
    if errors:
        raise RuleValidationError(rule.name, errors)
    return rule
