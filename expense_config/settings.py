"""
Engine settings (``expense_config.settings``).

Responsibility
--------------
Resolve the runtime settings of the approval engine from an optional YAML
file and ``EXPENSE_*`` environment variables.  Environment variables win
over the file; the file wins over the defaults.

Failure modes
-------------
* Missing settings file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unparseable value (e.g. ``EXPENSE_POOL_SIZE=many``)  -> ``ValueError``.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from decimal import Decimal
from pathlib import Path
from types import MappingProxyType
from typing import Any

from expense_config.loader import load_yaml_file, parse_bool

ENV_PREFIX = "EXPENSE_"


@dataclass(frozen=True)
class EngineSettings:
    """Resolved engine settings."""

    database_url: str = "sqlite:///expenses.db"
    echo_sql: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    log_level: str = "INFO"
    default_base_currency: str = "USD"
    # Compare rule amount bounds against the converted base amount.
    match_on_base_amount: bool = False
    rate_pivot: str = "USD"
    exchange_rates: Mapping[str, Decimal] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "exchange_rates", MappingProxyType(dict(self.exchange_rates)),
        )


def parse_rates(data: Mapping[str, Any] | None) -> dict[str, Decimal]:
    """Parse ``{code: rate}``; rates may be numbers or numeric strings."""
    rates: dict[str, Decimal] = {}
    for code, rate in (data or {}).items():
        rates[str(code).upper()] = Decimal(str(rate))
    return rates


def _coerce(name: str, value: Any) -> Any:
    if name in ("echo_sql", "match_on_base_amount"):
        return parse_bool(value)
    if name in ("pool_size", "max_overflow"):
        return int(value)
    if name == "exchange_rates":
        return parse_rates(value)
    if name in ("default_base_currency", "rate_pivot"):
        return str(value).upper()
    if name == "log_level":
        return str(value).upper()
    return str(value)


def load_settings(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> EngineSettings:
    """
    Build ``EngineSettings`` from defaults, an optional YAML file, and the
    environment.

    The YAML file is a flat mapping of setting names, e.g.::

        database_url: postgresql://expenses@localhost/expenses
        match_on_base_amount: true
        exchange_rates:
          EUR: "0.92"

    Each setting can be overridden by ``EXPENSE_<NAME>`` (upper case).
    ``exchange_rates`` is file-only.
    """
    env = os.environ if environ is None else environ
    values: dict[str, Any] = {}
    known = {f.name for f in fields(EngineSettings)}

    if path is not None:
        data = load_yaml_file(Path(path))
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(unknown)}")
        for name, value in data.items():
            values[name] = _coerce(name, value)

    for name in known - {"exchange_rates"}:
        raw = env.get(f"{ENV_PREFIX}{name.upper()}")
        if raw is not None:
            values[name] = _coerce(name, raw)

    return EngineSettings(**values)
