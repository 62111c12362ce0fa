"""
Module: expense_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    approval workflow engines.  This is the canonical import surface for
    the kernel services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import expense_kernel/domain and expense_kernel/exceptions
    (and sibling engine modules).  MUST NOT import services or selectors.

Invariants enforced:
    - Purity: engines NEVER call ``datetime.now()``.  Acting timestamps are
      passed in by services that own a Clock.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Engine invocations are traced via the ``@traced_engine`` decorator
    (see ``expense_engines.tracer``), emitting EXPENSE_ENGINE_TRACE log
    records with engine name, version, input fingerprint, and duration.

Usage:
    from expense_engines.rule_matcher import match_rule
    from expense_engines.step_planner import plan_approval, required_roles
    from expense_engines.sequencer import record_action, current_sequence
"""

from expense_engines.history import append as append_history
from expense_engines.rule_matcher import match_rule, rule_applies
from expense_engines.sequencer import (
    current_sequence,
    is_sequence_complete,
    next_sequence,
    record_action,
)
from expense_engines.state_machine import can_transition, initial_status, transition
from expense_engines.step_planner import (
    default_steps,
    dropped_steps,
    expand_steps,
    plan_approval,
    required_roles,
)
from expense_engines.tracer import traced_engine

__all__ = [
    "append_history",
    "can_transition",
    "current_sequence",
    "default_steps",
    "dropped_steps",
    "expand_steps",
    "initial_status",
    "is_sequence_complete",
    "match_rule",
    "next_sequence",
    "plan_approval",
    "record_action",
    "required_roles",
    "rule_applies",
    "traced_engine",
]
