"""
expense_config -- engine settings and YAML approval-rule definitions.

Responsibility:
    Resolve runtime settings (``get_active_settings()``) and load
    version-controlled approval rules for a company (``load_rules_file()``).

Architecture position:
    Configuration -- sits above ``expense_kernel``.  The kernel MUST NEVER
    import from ``expense_config``.  ``expense_config.bridges`` turns the
    resolved settings into kernel objects (``build_approval_service()``
    wires ``match_on_base_amount`` and the configured exchange rates).

Audit relevance:
    Every ``get_active_settings()`` call emits an ``EXPENSE_CONFIG_TRACE``
    log entry with the source file, its checksum, and the effective
    matching mode, so an approval decision can be tied back to the
    settings that governed it.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path

from expense_config.bridges import build_approval_service, build_company, build_rate_converter
from expense_config.loader import (
    compute_checksum,
    load_rules_file,
    load_yaml_file,
    parse_conditions,
    parse_rule,
    parse_step,
)
from expense_config.settings import EngineSettings, load_settings

_logger = logging.getLogger("expense_kernel.config")


def get_active_settings(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> EngineSettings:
    """Load settings and emit EXPENSE_CONFIG_TRACE.

    Args:
        path: Optional YAML settings file.
        environ: Environment mapping (defaults to ``os.environ``).

    Returns:
        The resolved, frozen EngineSettings.
    """
    settings = load_settings(path, environ)
    checksum = compute_checksum(load_yaml_file(Path(path))) if path is not None else None
    _logger.info(
        "EXPENSE_CONFIG_TRACE",
        extra={
            "trace_type": "EXPENSE_CONFIG_TRACE",
            "settings_file": str(path) if path is not None else None,
            "checksum": checksum,
            "default_base_currency": settings.default_base_currency,
            "match_on_base_amount": settings.match_on_base_amount,
            "exchange_rate_count": len(settings.exchange_rates),
        },
    )
    return settings


__all__ = [
    "EngineSettings",
    "build_approval_service",
    "build_company",
    "build_rate_converter",
    "compute_checksum",
    "get_active_settings",
    "load_rules_file",
    "load_settings",
    "load_yaml_file",
    "parse_conditions",
    "parse_rule",
    "parse_step",
]
