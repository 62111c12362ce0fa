"""
expense_engines.history -- Append-only audit trail for expenses.

Entries are only ever appended.  The timestamp comes from the caller's
clock; this module never reads time itself.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import replace
from datetime import datetime
from typing import Any
from uuid import UUID

from expense_kernel.domain.approval import Expense, HistoryAction, HistoryEntry


def append(
    expense: Expense,
    action: HistoryAction,
    actor_id: UUID,
    metadata: Mapping[str, Any] | None,
    at: datetime,
) -> Expense:
    """Return a copy of ``expense`` with one more history entry."""
    entry = HistoryEntry(
        action=action,
        actor_id=actor_id,
        at=at,
        metadata=dict(metadata or {}),
    )
    return replace(expense, history=expense.history + (entry,))
