"""
Config -> Kernel bridges.

Functions that turn resolved ``EngineSettings`` into kernel objects.  They
live in expense_config because the kernel must never import expense_config.

Usage:
    from expense_config.bridges import build_approval_service, build_company

    settings = get_active_settings(...)
    with session_scope() as session:
        service = build_approval_service(session, settings)
        service.submit(draft, employee, build_company(company_id, settings))
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session

from expense_config.settings import EngineSettings
from expense_kernel.domain.approval import Company, UserDirectory
from expense_kernel.domain.clock import Clock
from expense_kernel.selectors.directory import SqlUserDirectory
from expense_kernel.services.currency import StaticRateConverter
from expense_kernel.services.expense_approval_service import ExpenseApprovalService


def build_rate_converter(settings: EngineSettings) -> StaticRateConverter:
    """Converter over the configured rate table, quoted against ``rate_pivot``."""
    return StaticRateConverter(settings.exchange_rates, settings.rate_pivot)


def build_company(
    company_id: UUID,
    settings: EngineSettings,
    base_currency: str | None = None,
    name: str = "",
) -> Company:
    """Company record; the base currency defaults to ``default_base_currency``."""
    return Company(
        company_id=company_id,
        base_currency=(base_currency or settings.default_base_currency).upper(),
        name=name,
    )


def build_approval_service(
    session: Session,
    settings: EngineSettings,
    *,
    directory: UserDirectory | None = None,
    clock: Clock | None = None,
) -> ExpenseApprovalService:
    """Approval service wired with the configured converter and matching mode.

    The directory defaults to the local ``directory_users`` table.
    """
    return ExpenseApprovalService(
        session,
        directory if directory is not None else SqlUserDirectory(session),
        build_rate_converter(settings),
        clock,
        match_on_base_amount=settings.match_on_base_amount,
    )
