"""
expense_engines.step_planner -- Pure approval step expansion engine.

Responsibility:
    Materialize a matched rule into the per-approver step instances of a
    new expense.  Approvers come from three sources per rule step: the
    employee's manager, an explicit approver list, and directory roles.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Role membership is resolved by the caller (one batched directory query
    per planning call) and passed in as ``role_lookup``.

Invariants enforced:
    - The expense owner is never an approver.
    - No ``(approver, sequence)`` pair appears twice.
    - Every instance of a sequence carries that step's threshold.
    - Output is ordered by sequence ascending, then candidate order
      (manager, specific approvers, role members).

Failure modes:
    - A step with no resolvable approvers produces no instances, even when
      ``is_required``.  ``dropped_steps`` reports them so the caller can log.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from uuid import UUID

from expense_engines.tracer import traced_engine
from expense_kernel.domain.approval import (
    DEFAULT_STEP_NAME,
    DEFAULT_THRESHOLD,
    ApprovalRule,
    ApprovalStepInstance,
    DirectoryUser,
    Role,
    RuleStep,
    StepStatus,
)

RoleLookup = Mapping[Role, Sequence[UUID]]


def required_roles(rule: ApprovalRule | None) -> frozenset[Role]:
    """Roles whose members must be looked up to expand ``rule``."""
    if rule is None:
        return frozenset()
    roles: set[Role] = set()
    for step in rule.steps:
        roles.update(step.role_based_approvers)
    return frozenset(roles)


def _candidates(
    step: RuleStep,
    employee: DirectoryUser,
    role_lookup: RoleLookup,
) -> list[UUID]:
    candidates: list[UUID] = []
    if step.is_manager_approver and employee.manager_id is not None:
        candidates.append(employee.manager_id)
    candidates.extend(step.specific_approvers)
    # Sorted so role expansion order does not depend on set iteration.
    for role in sorted(step.role_based_approvers, key=lambda r: r.value):
        candidates.extend(role_lookup.get(role, ()))

    seen: set[UUID] = set()
    approvers: list[UUID] = []
    for approver in candidates:
        if approver == employee.user_id or approver in seen:
            continue
        seen.add(approver)
        approvers.append(approver)
    return approvers


@traced_engine("step_planner", "1.0", fingerprint_fields=("rule", "employee"))
def expand_steps(
    rule: ApprovalRule,
    employee: DirectoryUser,
    role_lookup: RoleLookup,
) -> tuple[ApprovalStepInstance, ...]:
    """Expand every step of ``rule`` into pending approver instances."""
    instances: list[ApprovalStepInstance] = []
    for step in rule.sorted_steps():
        for approver in _candidates(step, employee, role_lookup):
            instances.append(
                ApprovalStepInstance(
                    approver=approver,
                    step_name=step.name,
                    sequence=step.sequence,
                    percentage_threshold=step.percentage_threshold,
                    is_required=step.is_required,
                    status=StepStatus.PENDING,
                )
            )
    return tuple(instances)


def dropped_steps(
    rule: ApprovalRule,
    employee: DirectoryUser,
    role_lookup: RoleLookup,
) -> tuple[RuleStep, ...]:
    """Steps of ``rule`` that expand to no approvers."""
    return tuple(
        step
        for step in rule.sorted_steps()
        if not _candidates(step, employee, role_lookup)
    )


def default_steps(employee: DirectoryUser) -> tuple[ApprovalStepInstance, ...]:
    """Fallback plan: a single manager approval, or nothing (auto-approve)."""
    manager_id = employee.manager_id
    if manager_id is None or manager_id == employee.user_id:
        return ()
    return (
        ApprovalStepInstance(
            approver=manager_id,
            step_name=DEFAULT_STEP_NAME,
            sequence=1,
            percentage_threshold=DEFAULT_THRESHOLD,
            is_required=True,
            status=StepStatus.PENDING,
        ),
    )


def plan_approval(
    rule: ApprovalRule | None,
    employee: DirectoryUser,
    role_lookup: RoleLookup,
) -> tuple[ApprovalStepInstance, ...]:
    """Plan the step instances for a new expense.

    The fallback applies when no rule matched or the matched rule has no
    steps.  A rule whose steps all expand to nothing yields an empty plan
    and the expense is auto-approved.
    """
    if rule is None or not rule.steps:
        return default_steps(employee)
    return expand_steps(rule, employee, role_lookup)
