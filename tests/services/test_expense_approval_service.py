"""
Integration tests for ExpenseApprovalService.

Runs against the session fixture (SQLite in-memory by default) and covers
submission, rule fallback, currency handling, the multi-sequence workflow,
pending queues and viewer permissions.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from expense_kernel.domain.approval import (
    ExpenseDraft,
    ExpenseStatus,
    HistoryAction,
    Role,
    RuleConditions,
    RuleStep,
    SequenceDecision,
    StepStatus,
)
from expense_kernel.exceptions import (
    ExpenseAlreadyResolvedError,
    ExpenseNotFoundError,
    ImmutabilityViolationError,
    InvalidActionError,
    NotAuthorizedApproverError,
    StepAlreadyResolvedError,
    ViewNotPermittedError,
)
from expense_kernel.models.expense import ExpenseModel
from expense_kernel.services.expense_approval_service import ExpenseApprovalService


def draft(amount="100", currency="USD", category="travel") -> ExpenseDraft:
    return ExpenseDraft(amount=Decimal(amount), currency=currency, category=category)


@pytest.fixture
def team(make_user):
    """A small org: admin, manager (reports to admin), employee, finance."""
    admin = make_user("Ada", Role.ADMIN)
    manager = make_user("Max", Role.MANAGER, manager=admin)
    employee = make_user("Eve", Role.EMPLOYEE, manager=manager)
    return {"admin": admin, "manager": manager, "employee": employee}


# =============================================================================
# Submission
# =============================================================================


class TestSubmit:
    def test_no_rule_falls_back_to_manager(self, approval_service, team, company):
        result = approval_service.submit(draft(), team["employee"], company)

        assert result.status == ExpenseStatus.PENDING
        assert result.step_count == 1
        assert result.matched_rule_id is None

        expense = approval_service.get_expense(result.expense_id)
        (step,) = expense.steps
        assert step.approver == team["manager"].user_id
        assert step.step_name == "Manager Approval"
        assert step.sequence == 1
        assert step.percentage_threshold == 100
        assert expense.version == 1

    def test_no_rule_and_no_manager_is_auto_approved(self, approval_service, make_user, company):
        loner = make_user("Lone", Role.EMPLOYEE)

        result = approval_service.submit(draft(), loner, company)

        assert result.status == ExpenseStatus.APPROVED
        assert result.step_count == 0
        expense = approval_service.get_expense(result.expense_id)
        assert [h.action for h in expense.history] == [HistoryAction.SUBMITTED]

    def test_submitted_history_entry(self, approval_service, team, company, deterministic_clock):
        result = approval_service.submit(draft("42.50", "USD", "meals"), team["employee"], company)

        entry = approval_service.get_expense(result.expense_id).history[0]
        assert entry.action == HistoryAction.SUBMITTED
        assert entry.actor_id == team["employee"].user_id
        assert entry.at == deterministic_clock.now()
        assert dict(entry.metadata) == {"original_amount": "42.50 USD", "category": "meals"}

    def test_matching_rule_materializes_steps(self, approval_service, rule_service, make_rule, team, make_user, company):
        finance_a = make_user("Fay", Role.ADMIN)
        rule = rule_service.create_rule(make_rule(
            "Travel",
            steps=(
                RuleStep(name="Manager", sequence=1, is_manager_approver=True),
                RuleStep(name="Finance", sequence=2, role_based_approvers=frozenset({Role.ADMIN}),
                         percentage_threshold=50),
            ),
            conditions=RuleConditions(category="travel"),
        ))

        result = approval_service.submit(draft(), team["employee"], company)

        assert result.matched_rule_id == rule.rule_id
        assert result.step_count == 3
        expense = approval_service.get_expense(result.expense_id)
        assert [(s.sequence, s.approver) for s in expense.steps] == [
            (1, team["manager"].user_id),
            (2, team["admin"].user_id),
            (2, finance_a.user_id),
        ]
        assert all(s.percentage_threshold == 50 for s in expense.steps_for(2))

    def test_rule_with_no_resolvable_approvers_auto_approves(
        self, approval_service, rule_service, make_rule, make_user, company, captured_logs,
    ):
        loner = make_user("Lone", Role.EMPLOYEE)
        rule_service.create_rule(make_rule(
            "Manager only",
            steps=(RuleStep(name="Manager", sequence=1, is_manager_approver=True),),
        ))

        result = approval_service.submit(draft(), loner, company)

        assert result.status == ExpenseStatus.APPROVED
        assert result.step_count == 0
        dropped = [r for r in captured_logs() if r["message"] == "required_step_dropped"]
        assert len(dropped) == 1
        assert dropped[0]["step_name"] == "Manager"

    def test_converts_to_company_base_currency(self, approval_service, team, company):
        result = approval_service.submit(draft("100", "EUR"), team["employee"], company)

        expense = approval_service.get_expense(result.expense_id)
        assert expense.amount == Decimal("100")
        assert expense.currency == "EUR"
        assert expense.base_amount == Decimal("200.00")
        assert expense.base_currency == "USD"

    def test_conversion_failure_keeps_original_amount(self, approval_service, team, company, captured_logs):
        result = approval_service.submit(draft("75", "GBP"), team["employee"], company)

        expense = approval_service.get_expense(result.expense_id)
        assert expense.base_amount == Decimal("75")
        assert result.status == ExpenseStatus.PENDING
        failures = [r for r in captured_logs() if r["message"] == "currency_conversion_failed"]
        assert failures and failures[0]["from_currency"] == "GBP"

    def test_rule_matches_submitted_amount_by_default(self, approval_service, rule_service, make_rule, team, company):
        rule_service.create_rule(make_rule(
            "Large",
            steps=(RuleStep(name="Admin", sequence=1, role_based_approvers=frozenset({Role.ADMIN})),),
            conditions=RuleConditions(min_amount=Decimal("150")),
        ))

        # 100 EUR is 200 USD, but matching uses the submitted 100.
        result = approval_service.submit(draft("100", "EUR"), team["employee"], company)

        assert result.matched_rule_id is None

    def test_rule_can_match_on_base_amount(
        self, session, directory, converter, deterministic_clock, rule_service, make_rule, team, company,
    ):
        rule = rule_service.create_rule(make_rule(
            "Large",
            steps=(RuleStep(name="Admin", sequence=1, role_based_approvers=frozenset({Role.ADMIN})),),
            conditions=RuleConditions(min_amount=Decimal("150")),
        ))
        service = ExpenseApprovalService(
            session, directory, converter, deterministic_clock, match_on_base_amount=True,
        )

        result = service.submit(draft("100", "EUR"), team["employee"], company)

        assert result.matched_rule_id == rule.rule_id

    def test_submit_logs_event(self, approval_service, team, company, captured_logs):
        approval_service.submit(draft(), team["employee"], company)

        submitted = [r for r in captured_logs() if r["message"] == "expense_submitted"]
        assert len(submitted) == 1
        assert submitted[0]["company_id"] == str(company.company_id)
        assert submitted[0]["step_count"] == 1


# =============================================================================
# Approver actions
# =============================================================================


class TestAct:
    @pytest.fixture
    def two_sequence_rule(self, rule_service, make_rule, make_user):
        finance = make_user("Fin", Role.ADMIN)
        rule_service.create_rule(make_rule(
            "Two step",
            steps=(
                RuleStep(name="Manager", sequence=1, is_manager_approver=True),
                RuleStep(name="Finance", sequence=2, specific_approvers=(finance.user_id,)),
            ),
        ))
        return finance

    def test_two_sequence_approval(self, approval_service, two_sequence_rule, team, company):
        finance = two_sequence_rule
        expense_id = approval_service.submit(draft(), team["employee"], company).expense_id

        first = approval_service.act(expense_id, team["manager"].user_id, "approve", "ok")
        assert first.status == ExpenseStatus.PARTIALLY_APPROVED
        assert first.decision == SequenceDecision.SEQUENCE_ADVANCED
        assert first.current_sequence == 2

        second = approval_service.act(expense_id, finance.user_id, "approve")
        assert second.status == ExpenseStatus.APPROVED
        assert second.decision == SequenceDecision.FULLY_APPROVED
        assert second.current_sequence is None

        expense = approval_service.get_expense(expense_id)
        assert expense.version == 3
        assert [h.action for h in expense.history] == [
            HistoryAction.SUBMITTED,
            HistoryAction.STEP_APPROVED,
            HistoryAction.SEQUENCE_COMPLETED,
            HistoryAction.STEP_APPROVED,
            HistoryAction.FULLY_APPROVED,
        ]
        assert all(s.status == StepStatus.APPROVED for s in expense.steps)

    def test_rejection_skips_remaining_steps(self, approval_service, two_sequence_rule, team, company):
        expense_id = approval_service.submit(draft(), team["employee"], company).expense_id

        result = approval_service.act(expense_id, team["manager"].user_id, "reject", "no receipt")

        assert result.status == ExpenseStatus.REJECTED
        expense = approval_service.get_expense(expense_id)
        assert [s.status for s in expense.steps] == [StepStatus.REJECTED, StepStatus.SKIPPED]
        assert expense.steps[0].comment == "no receipt"

    def test_later_sequence_approver_must_wait(self, approval_service, two_sequence_rule, team, company):
        expense_id = approval_service.submit(draft(), team["employee"], company).expense_id

        with pytest.raises(NotAuthorizedApproverError):
            approval_service.act(expense_id, two_sequence_rule.user_id, "approve")

    def test_double_approval_is_refused(self, approval_service, rule_service, make_rule, make_user, team, company):
        other = make_user("Olga", Role.ADMIN)
        rule_service.create_rule(make_rule(
            "Pair",
            steps=(RuleStep(
                name="Both", sequence=1,
                specific_approvers=(team["manager"].user_id, other.user_id),
            ),),
        ))
        expense_id = approval_service.submit(draft(), team["employee"], company).expense_id
        approval_service.act(expense_id, team["manager"].user_id, "approve")

        with pytest.raises(StepAlreadyResolvedError):
            approval_service.act(expense_id, team["manager"].user_id, "approve")

        expense = approval_service.get_expense(expense_id)
        assert expense.status == ExpenseStatus.PARTIALLY_APPROVED
        assert sum(1 for s in expense.steps if s.status == StepStatus.APPROVED) == 1

    def test_action_on_resolved_expense(self, approval_service, team, company):
        expense_id = approval_service.submit(draft(), team["employee"], company).expense_id
        approval_service.act(expense_id, team["manager"].user_id, "approve")

        with pytest.raises(ExpenseAlreadyResolvedError):
            approval_service.act(expense_id, team["manager"].user_id, "reject")

    def test_invalid_action(self, approval_service, team, company):
        expense_id = approval_service.submit(draft(), team["employee"], company).expense_id

        with pytest.raises(InvalidActionError):
            approval_service.act(expense_id, team["manager"].user_id, "escalate")

        assert approval_service.get_expense(expense_id).status == ExpenseStatus.PENDING

    def test_unknown_expense(self, approval_service, team):
        with pytest.raises(ExpenseNotFoundError):
            approval_service.act(uuid4(), team["manager"].user_id, "approve")

    def test_action_is_logged(self, approval_service, team, company, captured_logs):
        expense_id = approval_service.submit(draft(), team["employee"], company).expense_id
        approval_service.act(expense_id, team["manager"].user_id, "approve")

        recorded = [r for r in captured_logs() if r["message"] == "expense_action_recorded"]
        assert len(recorded) == 1
        assert recorded[0]["expense_id"] == str(expense_id)
        assert recorded[0]["decision"] == "fully_approved"
        assert recorded[0]["to_status"] == "approved"

    def test_history_rows_cannot_be_modified(self, approval_service, session, team, company):
        expense_id = approval_service.submit(draft(), team["employee"], company).expense_id
        model = session.get(ExpenseModel, expense_id)

        model.history[0].action = "rejected"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()


# =============================================================================
# Reads
# =============================================================================


class TestPendingQueue:
    def test_only_current_sequence_is_listed(self, approval_service, rule_service, make_rule, make_user, team, company):
        finance = make_user("Fin", Role.ADMIN)
        rule_service.create_rule(make_rule(
            "Two step",
            steps=(
                RuleStep(name="Manager", sequence=1, is_manager_approver=True),
                RuleStep(name="Finance", sequence=2, specific_approvers=(finance.user_id,)),
            ),
        ))
        expense_id = approval_service.submit(draft(), team["employee"], company).expense_id

        assert approval_service.list_pending_for(finance.user_id) == []
        (pending,) = approval_service.list_pending_for(team["manager"].user_id)
        assert pending.expense_id == expense_id
        assert pending.step.step_name == "Manager"

        approval_service.act(expense_id, team["manager"].user_id, "approve")

        assert approval_service.list_pending_for(team["manager"].user_id) == []
        (pending,) = approval_service.list_pending_for(finance.user_id)
        assert pending.step.sequence == 2
        assert pending.amount == Decimal("100")

    def test_resolved_expenses_drop_out(self, approval_service, team, company):
        expense_id = approval_service.submit(draft(), team["employee"], company).expense_id
        approval_service.act(expense_id, team["manager"].user_id, "reject")

        assert approval_service.list_pending_for(team["manager"].user_id) == []


class TestViewing:
    def test_owner_admin_and_approving_manager_may_view(self, approval_service, team, company):
        expense_id = approval_service.submit(draft(), team["employee"], company).expense_id

        for viewer in (team["employee"], team["admin"], team["manager"]):
            assert approval_service.get_expense_for_viewer(expense_id, viewer).expense_id == expense_id

    def test_unrelated_employee_may_not_view(self, approval_service, make_user, team, company):
        expense_id = approval_service.submit(draft(), team["employee"], company).expense_id
        colleague = make_user("Carl", Role.EMPLOYEE, manager=team["manager"])

        with pytest.raises(ViewNotPermittedError):
            approval_service.get_expense_for_viewer(expense_id, colleague)

    def test_manager_off_the_approval_path_may_not_view(self, approval_service, make_user, team, company):
        expense_id = approval_service.submit(draft(), team["employee"], company).expense_id
        other_manager = make_user("Mia", Role.MANAGER)

        with pytest.raises(ViewNotPermittedError):
            approval_service.get_expense_for_viewer(expense_id, other_manager)

    def test_admin_of_another_company_may_not_view(self, approval_service, make_user, team, company):
        expense_id = approval_service.submit(draft(), team["employee"], company).expense_id
        outsider = make_user("Oz", Role.ADMIN, company_id=uuid4())

        with pytest.raises(ViewNotPermittedError):
            approval_service.get_expense_for_viewer(expense_id, outsider)

    def test_listing_by_role(self, approval_service, make_user, team, company, deterministic_clock):
        other = make_user("Carl", Role.EMPLOYEE)
        mine = approval_service.submit(draft(), team["employee"], company).expense_id
        deterministic_clock.advance(60)
        theirs = approval_service.submit(draft(), other, company).expense_id
        deterministic_clock.advance(60)
        own_manager = approval_service.submit(draft(), team["manager"], company).expense_id

        admin_view = [e.expense_id for e in approval_service.list_for_company(team["admin"])]
        assert admin_view == [own_manager, theirs, mine]

        manager_view = [e.expense_id for e in approval_service.list_for_company(team["manager"])]
        assert manager_view == [own_manager, mine]

        employee_view = [e.expense_id for e in approval_service.list_for_company(team["employee"])]
        assert employee_view == [mine]

    def test_list_for_employee_newest_first(self, approval_service, team, company, deterministic_clock):
        first = approval_service.submit(draft("1"), team["employee"], company).expense_id
        deterministic_clock.advance(5)
        second = approval_service.submit(draft("2"), team["employee"], company).expense_id

        listed = approval_service.list_for_employee(team["employee"].user_id)

        assert [e.expense_id for e in listed] == [second, first]
