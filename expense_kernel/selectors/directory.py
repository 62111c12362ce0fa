"""
Module: expense_kernel.selectors.directory
Responsibility: SQL-backed UserDirectory over the ``directory_users`` table.

Invariants enforced:
    - by_role() returns active users of the given company only.
    - Results are ordered by name then id, so role expansion is stable.
"""

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import select

from expense_kernel.domain.approval import DirectoryUser, Role
from expense_kernel.models.directory_user import DirectoryUserModel
from expense_kernel.selectors.base import BaseSelector


class SqlUserDirectory(BaseSelector[DirectoryUserModel]):
    """UserDirectory implementation reading the local directory table."""

    def get(self, user_id: UUID) -> DirectoryUser | None:
        model = self.session.get(DirectoryUserModel, user_id)
        return model.to_dto() if model is not None else None

    def by_ids(self, ids: Iterable[UUID]) -> list[DirectoryUser]:
        wanted = list(ids)
        if not wanted:
            return []
        stmt = (
            select(DirectoryUserModel)
            .where(DirectoryUserModel.id.in_(wanted))
            .order_by(DirectoryUserModel.name, DirectoryUserModel.id)
        )
        return [m.to_dto() for m in self.session.execute(stmt).scalars().all()]

    def by_role(self, company_id: UUID, roles: Iterable[Role]) -> list[DirectoryUser]:
        role_values = sorted(Role(r).value for r in roles)
        if not role_values:
            return []
        stmt = (
            select(DirectoryUserModel)
            .where(
                DirectoryUserModel.company_id == company_id,
                DirectoryUserModel.role.in_(role_values),
                DirectoryUserModel.is_active.is_(True),
            )
            .order_by(DirectoryUserModel.name, DirectoryUserModel.id)
        )
        return [m.to_dto() for m in self.session.execute(stmt).scalars().all()]

    def reports_of(self, manager_id: UUID) -> list[DirectoryUser]:
        stmt = (
            select(DirectoryUserModel)
            .where(DirectoryUserModel.manager_id == manager_id)
            .order_by(DirectoryUserModel.name, DirectoryUserModel.id)
        )
        return [m.to_dto() for m in self.session.execute(stmt).scalars().all()]
