"""
expense_kernel.services.expense_approval_service -- Expense submission and approval.

Responsibility:
    Imperative shell around the approval engines.  Submission converts the
    amount, selects a rule, plans the approver steps and persists the new
    expense.  Approver actions load the expense under a row lock, apply the
    pure sequencer, and write the new snapshot back under an optimistic
    version check.  Also serves the read operations (pending work, expense
    views filtered by who is asking).

Architecture position:
    Kernel > Services.  May import from domain/, models/, selectors/, db/
    and the pure engines in expense_engines.

Invariants enforced:
    - Directory and currency calls happen before the expense row is locked.
    - Every status change is decided by the sequencer/state machine.
    - The expense row version is claimed before step or history rows are
      written, so a lost race writes nothing.
    - History rows are only appended.

Failure modes:
    - ExpenseNotFoundError if the expense does not exist.
    - ExpenseAlreadyResolvedError / StepAlreadyResolvedError on repeat or
      late actions; NotAuthorizedApproverError for non-approvers.
    - InvalidActionError for an unknown action.
    - ConcurrentModificationError when another action won the race.
    - ViewNotPermittedError when a viewer may not see an expense.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from expense_engines import history
from expense_engines.rule_matcher import match_rule
from expense_engines.sequencer import current_sequence, record_action
from expense_engines.state_machine import initial_status
from expense_engines.step_planner import dropped_steps, plan_approval, required_roles
from expense_kernel.domain.approval import (
    ApprovalAction,
    ApprovalRule,
    Company,
    CurrencyConverter,
    DirectoryUser,
    Expense,
    ExpenseDraft,
    ExpenseStatus,
    HistoryAction,
    PendingApproval,
    Role,
    SequenceDecision,
    UserDirectory,
)
from expense_kernel.domain.clock import Clock
from expense_kernel.exceptions import (
    ConcurrentModificationError,
    ExpenseNotFoundError,
    ViewNotPermittedError,
)
from expense_kernel.logging_config import LogContext, get_logger
from expense_kernel.models.expense import ExpenseHistoryModel, ExpenseModel
from expense_kernel.selectors.expense_selector import ExpenseSelector
from expense_kernel.selectors.rule_selector import RuleSelector
from expense_kernel.services.base import BaseService

logger = get_logger("services.expense_approval")


@dataclass(frozen=True)
class SubmissionResult:
    """Outcome of submitting an expense."""

    expense_id: UUID
    status: ExpenseStatus
    step_count: int
    matched_rule_id: UUID | None = None


@dataclass(frozen=True)
class ActionResult:
    """Outcome of one approver action."""

    expense_id: UUID
    status: ExpenseStatus
    decision: SequenceDecision
    current_sequence: int | None = None


class ExpenseApprovalService(BaseService):
    """Submits expenses and records approver actions."""

    def __init__(
        self,
        session: Session,
        directory: UserDirectory,
        converter: CurrencyConverter,
        clock: Clock | None = None,
        *,
        match_on_base_amount: bool = False,
    ) -> None:
        super().__init__(session, clock)
        self._directory = directory
        self._converter = converter
        self._match_on_base_amount = match_on_base_amount
        self._expenses = ExpenseSelector(session)
        self._rules = RuleSelector(session)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(
        self,
        draft: ExpenseDraft,
        employee: DirectoryUser,
        company: Company,
    ) -> SubmissionResult:
        """Create an expense and materialize its approval steps.

        An expense with nothing to approve (no matching rule and no manager,
        or every step unresolvable) is approved immediately.
        """
        with LogContext.bind(
            company_id=str(company.company_id), actor_id=str(employee.user_id),
        ):
            now = self._clock.now()
            base_amount = self._convert(draft, company.base_currency)

            catalog = self._rules.catalog_for(company.company_id)
            match_amount = base_amount if self._match_on_base_amount else draft.amount
            rule = match_rule(draft, employee, catalog, amount=match_amount)

            role_lookup = self._resolve_roles(company.company_id, rule)
            steps = plan_approval(rule, employee, role_lookup)
            if rule is not None and rule.steps:
                self._warn_dropped_steps(rule, employee, role_lookup)

            expense = Expense(
                expense_id=uuid4(),
                employee_id=employee.user_id,
                company_id=company.company_id,
                amount=draft.amount,
                currency=draft.currency,
                base_amount=base_amount,
                base_currency=company.base_currency,
                category=draft.category,
                status=initial_status(steps),
                steps=steps,
                description=draft.description,
                expense_date=draft.expense_date or now.date(),
                current_step_index=0,
                matched_rule_id=rule.rule_id if rule is not None else None,
                version=1,
                created_at=now,
            )
            expense = history.append(
                expense,
                HistoryAction.SUBMITTED,
                employee.user_id,
                {
                    "original_amount": f"{draft.amount} {draft.currency}",
                    "category": draft.category,
                },
                now,
            )

            self._session.add(ExpenseModel.from_dto(expense))
            self._session.flush()

            logger.info(
                "expense_submitted",
                extra={
                    "expense_id": str(expense.expense_id),
                    "amount": str(draft.amount),
                    "currency": draft.currency,
                    "base_amount": str(base_amount),
                    "matched_rule": rule.name if rule is not None else None,
                    "step_count": len(steps),
                    "status": expense.status.value,
                },
            )

            return SubmissionResult(
                expense_id=expense.expense_id,
                status=expense.status,
                step_count=len(steps),
                matched_rule_id=expense.matched_rule_id,
            )

    def _convert(self, draft: ExpenseDraft, base_currency: str) -> Decimal:
        if draft.currency.upper() == base_currency.upper():
            return draft.amount
        try:
            return self._converter.convert(draft.amount, draft.currency, base_currency)
        except Exception as exc:
            # Submission proceeds on the unconverted amount.
            logger.warning(
                "currency_conversion_failed",
                extra={
                    "from_currency": draft.currency,
                    "to_currency": base_currency,
                    "amount": str(draft.amount),
                    "error": str(exc),
                },
            )
            return draft.amount

    def _resolve_roles(
        self, company_id: UUID, rule: ApprovalRule | None,
    ) -> dict[Role, list[UUID]]:
        """One directory query for every role the rule needs."""
        roles = required_roles(rule)
        if not roles:
            return {}
        lookup: dict[Role, list[UUID]] = defaultdict(list)
        for user in self._directory.by_role(company_id, roles):
            lookup[user.role].append(user.user_id)
        return dict(lookup)

    def _warn_dropped_steps(
        self,
        rule: ApprovalRule,
        employee: DirectoryUser,
        role_lookup: dict[Role, list[UUID]],
    ) -> None:
        for step in dropped_steps(rule, employee, role_lookup):
            if step.is_required:
                logger.warning(
                    "required_step_dropped",
                    extra={
                        "rule_id": str(rule.rule_id),
                        "rule_name": rule.name,
                        "step_name": step.name,
                        "sequence": step.sequence,
                    },
                )

    # ------------------------------------------------------------------
    # Approver actions
    # ------------------------------------------------------------------

    def act(
        self,
        expense_id: UUID,
        actor_id: UUID,
        action: ApprovalAction | str,
        comment: str | None = None,
    ) -> ActionResult:
        """Record an approve/reject by ``actor_id`` on ``expense_id``."""
        with LogContext.bind(expense_id=str(expense_id), actor_id=str(actor_id)):
            model = self._load_expense_model(expense_id, for_update=True)
            before = model.to_dto()

            outcome = record_action(before, actor_id, action, comment, self._clock.now())
            after = outcome.expense

            self._claim_version(model, after)
            self._write_children(model, before, after)
            self._session.flush()

            logger.info(
                "expense_action_recorded",
                extra={
                    "action": ApprovalAction(action).value,
                    "decision": outcome.decision.value,
                    "acted_sequence": outcome.acted_sequence,
                    "next_sequence": outcome.next_sequence,
                    "skipped_count": len(outcome.skipped_approvers),
                    "from_status": before.status.value,
                    "to_status": after.status.value,
                },
            )

            return ActionResult(
                expense_id=expense_id,
                status=after.status,
                decision=outcome.decision,
                current_sequence=current_sequence(after),
            )

    def _load_expense_model(self, expense_id: UUID, for_update: bool = False) -> ExpenseModel:
        stmt = select(ExpenseModel).where(ExpenseModel.id == expense_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        model = self._session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise ExpenseNotFoundError(str(expense_id))
        return model

    def _claim_version(self, model: ExpenseModel, after: Expense) -> None:
        """Write the expense row first; a stale version fails here."""
        # A failed flush leaves the session unusable, so the error path must
        # not touch ``model`` again.
        expense_id = str(model.id)
        expected_version = model.version
        model.status = after.status.value
        model.current_step_index = after.current_step_index
        model.version = expected_version + 1
        try:
            self._session.flush()
        except StaleDataError as exc:
            logger.warning("expense_version_conflict", extra={"version": expected_version})
            raise ConcurrentModificationError(expense_id) from exc

    def _write_children(self, model: ExpenseModel, before: Expense, after: Expense) -> None:
        for step_model, old, new in zip(model.steps, before.steps, after.steps):
            if old != new:
                step_model.apply_dto(new)
        for position in range(len(before.history), len(after.history)):
            model.history.append(
                ExpenseHistoryModel.from_dto(after.history[position], position),
            )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_pending_for(self, user_id: UUID) -> list[PendingApproval]:
        """Instances awaiting ``user_id`` in each expense's current sequence."""
        pending: list[PendingApproval] = []
        for expense in self._expenses.with_pending_step_for(user_id):
            sequence = current_sequence(expense)
            if sequence is None:
                continue
            for step in expense.steps_for(sequence):
                if step.approver == user_id and step.is_pending:
                    pending.append(
                        PendingApproval(
                            expense_id=expense.expense_id,
                            employee_id=expense.employee_id,
                            amount=expense.amount,
                            currency=expense.currency,
                            category=expense.category,
                            step=step,
                        )
                    )
        return pending

    def get_expense(self, expense_id: UUID) -> Expense:
        expense = self._expenses.get(expense_id)
        if expense is None:
            raise ExpenseNotFoundError(str(expense_id))
        return expense

    def get_expense_for_viewer(self, expense_id: UUID, viewer: DirectoryUser) -> Expense:
        """Owner, a company admin, or a manager on the approval path may view."""
        expense = self.get_expense(expense_id)
        if not self._may_view(expense, viewer):
            raise ViewNotPermittedError(str(expense_id), str(viewer.user_id))
        return expense

    @staticmethod
    def _may_view(expense: Expense, viewer: DirectoryUser) -> bool:
        if expense.employee_id == viewer.user_id:
            return True
        if viewer.company_id != expense.company_id:
            return False
        if viewer.role == Role.ADMIN:
            return True
        return viewer.role == Role.MANAGER and viewer.user_id in expense.approvers()

    def list_for_employee(self, employee_id: UUID) -> list[Expense]:
        """Expenses submitted by ``employee_id``, newest first."""
        return self._expenses.for_employees([employee_id])

    def list_for_company(self, viewer: DirectoryUser) -> Sequence[Expense]:
        """Expenses visible to ``viewer``, newest first.

        Admins see the whole company, managers their own and their direct
        reports', everyone else their own.
        """
        if viewer.role == Role.ADMIN:
            return self._expenses.for_company(viewer.company_id)
        if viewer.role == Role.MANAGER:
            team = [u.user_id for u in self._directory.reports_of(viewer.user_id)]
            return self._expenses.for_employees([viewer.user_id, *team])
        return self._expenses.for_employees([viewer.user_id])
