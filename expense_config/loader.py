"""
Approval rule loader (``expense_config.loader``).

Responsibility
--------------
Load YAML approval-rule definitions and parse them into validated
``ApprovalRule`` values for one company.  Used by ``scripts/load_rules.py``
to seed or refresh a company's rule catalog from version-controlled files.

Architecture position
---------------------
**Config layer** -- infrastructure tooling.  Depends on kernel domain
types and the pure rule validator only; never on services or the DB.

Invariants enforced
-------------------
* Every returned rule has passed ``validate_rule``.
* Rule ids are stable: a rule without an explicit ``id`` gets a
  name-based UUID5 scoped to its company, so reloading the same file
  updates the same rules.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing or ill-typed keys, unknown roles, inexact numbers or
  booleans  -> ``RuleValidationError`` naming the offending field.
* Structurally invalid rule  -> ``RuleValidationError``.

File format
-----------
::

    rules:
      - name: Large travel
        priority: 10
        conditions:
          min_amount: "1000"
          category: travel
          employee_roles: [employee]
        steps:
          - name: Manager Approval
            sequence: 1
            is_manager_approver: true
          - name: Finance
            sequence: 2
            role_based_approvers: [admin]
            percentage_threshold: 50
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any
from uuid import NAMESPACE_URL, UUID, uuid5

import yaml

from expense_kernel.domain.approval import (
    DEFAULT_THRESHOLD,
    ApprovalRule,
    Role,
    RuleConditions,
    RuleStep,
)
from expense_kernel.domain.rule_validation import validate_rule
from expense_kernel.exceptions import RuleValidationError


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Postconditions:
        - Returns a ``dict`` (possibly empty if the YAML is empty).
    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    return data


def compute_checksum(data: Any) -> str:
    """Deterministic SHA-256 of parsed YAML content (for change detection)."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


_TRUE = frozenset({"1", "true", "yes", "on"})
_FALSE = frozenset({"0", "false", "no", "off", ""})

_UNNAMED = "<unnamed>"


def parse_bool(value: Any) -> bool:
    """Strict boolean: ``"false"`` is False, ``"maybe"`` is an error."""
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(f"Cannot parse boolean from {value!r}")


def parse_int(value: Any, field: str) -> int:
    """Integral value only; ``1.9`` and ``"2.5"`` are rejected, ``2.0`` is not."""
    if isinstance(value, bool):
        raise ValueError(f"{field}: expected an integer, got {value!r}")
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValueError(f"{field}: expected an integer, got {value!r}") from None
    if not number.is_finite() or number != number.to_integral_value():
        raise ValueError(f"{field}: expected an integer, got {value!r}")
    return int(number)


def parse_decimal(value: Any) -> Decimal | None:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Cannot parse amount from {value!r}") from None


def parse_roles(values: Any) -> frozenset[Role]:
    """Parse a list of role names (``None`` means no roles)."""
    if values is None:
        return frozenset()
    if isinstance(values, str):
        values = [values]
    return frozenset(Role(str(v).lower()) for v in values)


def parse_conditions(data: dict[str, Any] | None) -> RuleConditions:
    """Parse a RuleConditions from a dict (absent keys = no constraint)."""
    data = data or {}
    if not isinstance(data, dict):
        raise ValueError("conditions: expected a mapping")
    return RuleConditions(
        min_amount=parse_decimal(data.get("min_amount")),
        max_amount=parse_decimal(data.get("max_amount")),
        category=data.get("category"),
        department=data.get("department"),
        employee_roles=parse_roles(data.get("employee_roles")),
    )


def _required_name(data: dict[str, Any], what: str) -> str:
    if "name" not in data:
        raise ValueError(f"{what}: missing required key 'name'")
    name = data["name"]
    if not isinstance(name, str):
        raise ValueError(f"{what}: name must be a string, got {name!r}")
    return name


def parse_step(data: dict[str, Any], rule_name: str = _UNNAMED) -> RuleStep:
    """
    Parse a RuleStep from a dict.  ``name`` and ``sequence`` are required.

    Raises:
        RuleValidationError: for missing keys, non-string names, unknown
            roles, and numbers or booleans that do not parse exactly.
    """
    try:
        if not isinstance(data, dict):
            raise ValueError(f"step: expected a mapping, got {data!r}")
        name = _required_name(data, "step")
        if "sequence" not in data:
            raise ValueError(f"step {name!r}: missing required key 'sequence'")
        return RuleStep(
            name=name,
            sequence=parse_int(data["sequence"], f"step {name!r} sequence"),
            is_manager_approver=parse_bool(data.get("is_manager_approver", False)),
            specific_approvers=tuple(
                UUID(str(a)) for a in data.get("specific_approvers") or ()
            ),
            role_based_approvers=parse_roles(data.get("role_based_approvers")),
            percentage_threshold=parse_int(
                data.get("percentage_threshold", DEFAULT_THRESHOLD),
                f"step {name!r} percentage_threshold",
            ),
            is_required=parse_bool(data.get("is_required", True)),
            skip_if_previous_rejected=parse_bool(data.get("skip_if_previous_rejected", True)),
        )
    except ValueError as exc:
        raise RuleValidationError(rule_name, [str(exc)]) from exc


def rule_id_for(company_id: UUID, name: str) -> UUID:
    """Stable id for a rule defined by name in a company's rule file."""
    return uuid5(NAMESPACE_URL, f"expense-rule:{company_id}:{name}")


def parse_rule(data: dict[str, Any], company_id: UUID) -> ApprovalRule:
    """Parse and validate one ApprovalRule for ``company_id``."""
    name = _UNNAMED
    try:
        if not isinstance(data, dict):
            raise ValueError(f"rule: expected a mapping, got {data!r}")
        name = _required_name(data, "rule")
        rule_id = UUID(str(data["id"])) if data.get("id") else rule_id_for(company_id, name)
        priority = parse_int(data.get("priority", 0), "priority")
        is_active = parse_bool(data.get("is_active", True))
        conditions = parse_conditions(data.get("conditions"))
    except ValueError as exc:
        raise RuleValidationError(name, [str(exc)]) from exc

    rule = ApprovalRule(
        rule_id=rule_id,
        company_id=company_id,
        name=name,
        description=data.get("description") or "",
        priority=priority,
        is_active=is_active,
        conditions=conditions,
        steps=tuple(parse_step(s, name) for s in data.get("steps") or ()),
    )
    return validate_rule(rule)


def load_rules_file(path: Path | str, company_id: UUID) -> list[ApprovalRule]:
    """Load every rule in a YAML rule file, in file order."""
    data = load_yaml_file(Path(path))
    rules = [parse_rule(item, company_id) for item in data.get("rules") or ()]
    names = [r.name for r in rules]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ValueError(f"{path}: duplicate rule names: {', '.join(duplicates)}")
    return rules
