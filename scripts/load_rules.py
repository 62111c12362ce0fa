#!/usr/bin/env python3
"""
Load approval rules from a YAML file into a company's rule catalog.

Rules are matched by id (explicit ``id`` or the stable name-based id), so
re-running the script with an edited file updates rules in place.

Usage:
    python3 scripts/load_rules.py --company-id <uuid> --file <path> [options]

Examples:
    # Validate the file only (no database access)
    python3 scripts/load_rules.py --company-id 7d4c... --file rules.yaml --check

    # Load into the database named by EXPENSE_DATABASE_URL / settings file
    python3 scripts/load_rules.py --company-id 7d4c... --file rules.yaml
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from uuid import UUID

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Load approval rules from YAML into the database.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--company-id",
        required=True,
        type=UUID,
        help="Company UUID the rules belong to.",
    )
    parser.add_argument(
        "--file",
        required=True,
        type=Path,
        help="Path to the YAML rule file.",
    )
    parser.add_argument(
        "--settings",
        type=Path,
        default=None,
        help="Optional YAML settings file (database_url etc.).",
    )
    parser.add_argument(
        "--db-url",
        default=None,
        help="Database URL (overrides settings and EXPENSE_DATABASE_URL).",
    )
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create missing tables before loading.",
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Parse and validate the file only; do not touch the database.",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    rule_path = args.file.resolve()
    if not rule_path.is_file():
        print(f"ERROR: File not found: {rule_path}", file=sys.stderr)
        return 1

    # Lazy imports so we fail fast on args first
    import yaml

    from expense_config import get_active_settings, load_rules_file
    from expense_kernel.db.engine import create_tables, init_engine_from_url, session_scope
    from expense_kernel.exceptions import ExpenseKernelError
    from expense_kernel.logging_config import configure_logging
    from expense_kernel.selectors.directory import SqlUserDirectory
    from expense_kernel.selectors.rule_selector import RuleSelector
    from expense_kernel.services.rule_service import RuleService

    try:
        rules = load_rules_file(rule_path, args.company_id)
    except (KeyError, ValueError, yaml.YAMLError, ExpenseKernelError) as e:
        print(f"ERROR: Invalid rule file: {e}", file=sys.stderr)
        return 1

    print(f"Parsed {len(rules)} rule(s) from {rule_path}")
    if args.check:
        for rule in rules:
            print(f"  [{rule.priority:>4}] {rule.name} ({len(rule.steps)} step(s))")
        return 0

    settings = get_active_settings(args.settings)
    configure_logging(level=settings.log_level)
    init_engine_from_url(
        args.db_url or settings.database_url,
        echo=settings.echo_sql,
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
    )
    if args.create_tables:
        create_tables()

    created = updated = 0
    try:
        with session_scope() as session:
            service = RuleService(session, SqlUserDirectory(session))
            existing = RuleSelector(session)
            for rule in rules:
                if existing.get(rule.rule_id) is None:
                    service.create_rule(rule)
                    created += 1
                else:
                    service.update_rule(rule)
                    updated += 1
    except ExpenseKernelError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    print(f"Created {created}, updated {updated} rule(s) for company {args.company_id}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
