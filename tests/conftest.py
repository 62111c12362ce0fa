"""
Pytest fixtures for the expense approval test suite.

Provides:
- Database sessions with per-test rollback
- Directory/company/rule factories
- A deterministic clock and captured structured logs

Environment Variables:
- DATABASE_URL: database URL for the DB-backed tests.  Defaults to an
  in-memory SQLite database; set a PostgreSQL URL to exercise row locks.
"""

import json
import logging
import os
from collections.abc import Callable, Generator
from decimal import Decimal
from io import StringIO
from uuid import UUID, uuid4

import pytest
from sqlalchemy.orm import Session

from expense_kernel.db.engine import (
    create_tables,
    drop_tables,
    init_engine_from_url,
    reset_engine,
)
from expense_kernel.domain.approval import (
    ApprovalRule,
    Company,
    DirectoryUser,
    Role,
    RuleConditions,
    RuleStep,
)
from expense_kernel.domain.clock import DeterministicClock
from expense_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from expense_kernel.models.directory_user import DirectoryUserModel
from expense_kernel.selectors.directory import SqlUserDirectory
from expense_kernel.services.currency import StaticRateConverter
from expense_kernel.services.expense_approval_service import ExpenseApprovalService
from expense_kernel.services.rule_service import RuleService

DEFAULT_DATABASE_URL = "sqlite://"


def get_database_url() -> str:
    """Get database URL from environment, or use in-memory SQLite."""
    return os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture expense_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, approval_service):
            approval_service.submit(...)
            logs = captured_logs()
            assert any(r["message"] == "expense_submitted" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("expense_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture(scope="session")
def db_engine():
    """Single engine for the entire test session."""
    eng = init_engine_from_url(get_database_url(), echo=False, pool_size=5, max_overflow=5)
    yield eng
    reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create all tables once per session, drop once at end."""
    drop_tables()
    create_tables()
    yield
    drop_tables()


@pytest.fixture(scope="function")
def session(db_tables, db_engine) -> Generator[Session, None, None]:
    """Provide a database session for testing.

    The session joins an outer transaction on a dedicated connection; the
    outer transaction is rolled back at teardown, undoing ALL data changes
    made during the test.
    """
    conn = db_engine.connect()
    trans = conn.begin()
    sess = Session(bind=conn, join_transaction_mode="rollback_only", expire_on_commit=False)
    yield sess
    try:
        sess.close()
    finally:
        try:
            trans.rollback()
        finally:
            conn.close()


# =============================================================================
# Domain fixtures
# =============================================================================


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock()


@pytest.fixture
def company() -> Company:
    return Company(company_id=uuid4(), base_currency="USD", name="Acme")


@pytest.fixture
def make_user(session, company) -> Callable[..., DirectoryUser]:
    """Create a directory user in the test database and return its DTO."""

    def _make_user(
        name: str = "user",
        role: Role = Role.EMPLOYEE,
        manager: DirectoryUser | None = None,
        department: str | None = None,
        is_active: bool = True,
        company_id: UUID | None = None,
    ) -> DirectoryUser:
        user = DirectoryUser(
            user_id=uuid4(),
            company_id=company_id or company.company_id,
            role=role,
            manager_id=manager.user_id if manager is not None else None,
            department=department,
            is_active=is_active,
            name=name,
        )
        session.add(DirectoryUserModel.from_dto(user))
        session.flush()
        return user

    return _make_user


@pytest.fixture
def make_rule(company) -> Callable[..., ApprovalRule]:
    """Build (not persist) an ApprovalRule for the test company."""

    def _make_rule(
        name: str = "rule",
        steps: tuple[RuleStep, ...] = (),
        priority: int = 0,
        conditions: RuleConditions | None = None,
        is_active: bool = True,
    ) -> ApprovalRule:
        return ApprovalRule(
            rule_id=uuid4(),
            company_id=company.company_id,
            name=name,
            priority=priority,
            is_active=is_active,
            conditions=conditions or RuleConditions(),
            steps=steps,
        )

    return _make_rule


# =============================================================================
# Service fixtures
# =============================================================================


@pytest.fixture
def directory(session) -> SqlUserDirectory:
    return SqlUserDirectory(session)


@pytest.fixture
def converter() -> StaticRateConverter:
    return StaticRateConverter({"EUR": Decimal("0.5"), "INR": Decimal("80")}, pivot="USD")


@pytest.fixture
def approval_service(session, directory, converter, deterministic_clock) -> ExpenseApprovalService:
    return ExpenseApprovalService(session, directory, converter, deterministic_clock)


@pytest.fixture
def rule_service(session, directory, deterministic_clock) -> RuleService:
    return RuleService(session, directory, deterministic_clock)
