"""
Module: expense_kernel.models.directory_user
Responsibility: ORM persistence for the user directory consulted when
    resolving manager, specific and role-based approvers.

Architecture position: Kernel > Models.  May import from db/base.py only.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from expense_kernel.db.base import TrackedBase, UUIDString

if TYPE_CHECKING:
    from expense_kernel.domain.approval import DirectoryUser


class DirectoryUserModel(TrackedBase):
    """Directory entry for one company user.  ``id`` is the user id."""

    __tablename__ = "directory_users"

    __table_args__ = (
        CheckConstraint(
            "role IN ('admin', 'manager', 'employee')",
            name="ck_directory_users_valid_role",
        ),
        Index("ix_directory_users_company_role", "company_id", "role", "is_active"),
        Index("ix_directory_users_manager", "manager_id"),
    )

    company_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    name: Mapped[str] = mapped_column(String(200), default="", nullable=False)
    role: Mapped[str] = mapped_column(String(20), default="employee", nullable=False)
    manager_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("directory_users.id"), nullable=True,
    )
    department: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<DirectoryUser {self.id} {self.name!r} role={self.role}>"

    def to_dto(self) -> DirectoryUser:
        """Convert ORM model to frozen domain DTO."""
        from expense_kernel.domain.approval import DirectoryUser as DirectoryUserDTO, Role

        return DirectoryUserDTO(
            user_id=self.id,
            company_id=self.company_id,
            role=Role(self.role),
            manager_id=self.manager_id,
            department=self.department,
            is_active=self.is_active,
            name=self.name,
        )

    @classmethod
    def from_dto(cls, dto: DirectoryUser) -> DirectoryUserModel:
        """Create ORM model from domain DTO."""
        return cls(
            id=dto.user_id,
            company_id=dto.company_id,
            name=dto.name,
            role=dto.role.value,
            manager_id=dto.manager_id,
            department=dto.department,
            is_active=dto.is_active,
        )
