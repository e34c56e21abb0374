"""Operator commands.

Usage:
    python -m retail_ledger.cli seed-accounts
    python -m retail_ledger.cli reconcile [--kind party --kind account] [--dry-run]
"""

import argparse
import sys

from retail_ledger.core.logging import setup_logging
from retail_ledger.core.permissions import SYSTEM_ACTOR
from retail_ledger.db.database import SessionLocal, transaction
from retail_ledger.schemas.reconciliation import ALL_KINDS, ReconcileScope
from retail_ledger.services.general_ledger import seed_chart_of_accounts
from retail_ledger.services.reconciliation import reconcile


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="retail-ledger")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("seed-accounts", help="create the standard chart of accounts")

    run = commands.add_parser("reconcile", help="realign cached balances and costs with the ledgers")
    run.add_argument("--kind", action="append", choices=ALL_KINDS, dest="kinds")
    run.add_argument("--product", action="append", type=int, dest="product_ids")
    run.add_argument("--party", action="append", type=int, dest="party_ids")
    run.add_argument("--account", action="append", dest="account_codes")
    run.add_argument("--dry-run", action="store_true")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    setup_logging()
    db = SessionLocal()
    try:
        if args.command == "seed-accounts":
            with transaction(db):
                created = seed_chart_of_accounts(db)
            print(f"Created {created} accounts")
            return 0

        scope = ReconcileScope(
            kinds=args.kinds or list(ALL_KINDS),
            product_ids=args.product_ids,
            party_ids=args.party_ids,
            account_codes=args.account_codes,
            dry_run=args.dry_run,
        )
        report = reconcile(db, scope, SYSTEM_ACTOR)
        print(report.model_dump_json(indent=2))
        return 1 if report.failures else 0
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
