#!/usr/bin/env python3
"""
Reconcile cached account balances and verify running balances for a company.

Compares every account's cached balance with its latest ledger running
balance and overwrites drifted caches.  With --verify, also replays each
account's ledger rows from zero and lists stored running balances that do
not match; --repair rewrites those rows.

Settings come from the YAML file named by --config (or LEDGER_KERNEL_CONFIG)
with the usual environment overrides; --database-url wins over both.

Usage:
    python scripts/reconcile_balances.py --company 0b6f...e1
    python scripts/reconcile_balances.py --company 0b6f...e1 --verify
    python scripts/reconcile_balances.py --company 0b6f...e1 --verify --repair
    python scripts/reconcile_balances.py --company 0b6f...e1 --types revenue expense --dry-run
"""

from __future__ import annotations

import argparse
import os
import sys
from dataclasses import replace
from uuid import UUID

# Allow importing ledger_kernel when run as a script from a checkout.
_script_dir = os.path.dirname(os.path.abspath(__file__))
_root = os.path.dirname(_script_dir)
if _root not in sys.path:
    sys.path.insert(0, _root)

from ledger_kernel.config import load_settings  # noqa: E402
from ledger_kernel.db.engine import init_engine_from_url, session_scope  # noqa: E402
from ledger_kernel.logging_config import configure_logging, get_logger  # noqa: E402
from ledger_kernel.models.account import AccountType  # noqa: E402
from ledger_kernel.services.ledger_store import LedgerStore  # noqa: E402
from ledger_kernel.services.reconciliation_service import ReconciliationService  # noqa: E402

logger = get_logger("scripts.reconcile_balances")


class _DryRun(Exception):
    """Raised inside the session scope to roll back a dry run."""


def _print_batch(result, stream) -> None:
    stream.write("\n  Cached balance reconciliation\n")
    stream.write("  " + "-" * 60 + "\n")
    stream.write(f"  Accounts checked: {result.total_accounts}\n")
    stream.write(f"  Reconciled:       {result.reconciled_count}\n")
    stream.write(f"  Unchanged:        {result.unchanged_count}\n")
    stream.write(f"  Failed:           {result.failed_count}\n")
    stream.write(f"  Total drift:      {result.total_drift}\n")
    for r in result.results:
        if r.reconciled:
            stream.write(
                f"    {r.account_code:<12} {r.previous_balance:>16} -> "
                f"{r.actual_balance:>16}  ({r.difference:+})\n"
            )
    for f in result.failures:
        stream.write(f"    {f.account_code:<12} FAILED {f.error_type}: {f.message}\n")
    stream.write("  " + "-" * 60 + "\n")


def _print_discrepancies(discrepancies, stream) -> None:
    stream.write("\n  Running balance verification\n")
    stream.write("  " + "-" * 60 + "\n")
    if not discrepancies:
        stream.write("  All running balances replay exactly.\n")
    for d in discrepancies:
        stream.write(
            f"    {d.entry_number:<16} {d.transaction_date}  stored {d.stored_balance:>14}  "
            f"expected {d.expected_balance:>14}\n"
        )
    stream.write("  " + "-" * 60 + "\n")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Reconcile cached account balances against the ledger"
    )
    parser.add_argument("--company", required=True, type=UUID, help="Company id")
    parser.add_argument("--config", default=None, help="Settings YAML file")
    parser.add_argument("--database-url", default=None, help="Overrides the configured URL")
    parser.add_argument(
        "--types",
        nargs="*",
        choices=[t.value for t in AccountType],
        default=None,
        help="Only reconcile these account types",
    )
    parser.add_argument(
        "--verify",
        action="store_true",
        help="Also replay running balances and report mismatches",
    )
    parser.add_argument(
        "--repair",
        action="store_true",
        help="With --verify, rewrite mismatched running balances",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report only; roll back every change",
    )
    args = parser.parse_args(argv)

    if args.repair and not args.verify:
        parser.error("--repair requires --verify")

    settings = load_settings(args.config)
    if args.database_url:
        settings = replace(settings, database_url=args.database_url)
    configure_logging(level=settings.log_level)
    init_engine_from_url(settings.database_url)

    exit_code = 0
    try:
        with session_scope() as session:
            reconciliation = ReconciliationService(session, settings)
            result = reconciliation.reconcile_all_account_balances(
                args.company, account_types=args.types
            )
            _print_batch(result, sys.stdout)
            if result.failed_count:
                exit_code = 1

            if args.verify:
                discrepancies = reconciliation.verify_running_balances(args.company)
                _print_discrepancies(discrepancies, sys.stdout)
                if discrepancies and args.repair:
                    store = LedgerStore(session, settings)
                    fixed = 0
                    for account_id in sorted({d.account_id for d in discrepancies}, key=str):
                        fixed += store.replay_running_balances(args.company, account_id)
                    sys.stdout.write(f"  Repaired {fixed} ledger row(s).\n")
                elif discrepancies:
                    exit_code = 1

            if args.dry_run:
                raise _DryRun
    except _DryRun:
        sys.stdout.write("  Dry run: changes rolled back.\n")

    logger.info(
        "reconcile_balances_finished",
        extra={"company_id": str(args.company), "exit_code": exit_code},
    )
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
