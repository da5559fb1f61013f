#!/usr/bin/env python3
"""
Run stock ledger maintenance tasks.

Subcommands map onto registered maintenance tasks:
    initialize -- ledger.initialize_movements (seed first rows from stock)
    repair     -- ledger.repair_movements     (back-calculate and replay)
    sync       -- stock.sync_with_batches     (aggregate := batch total)

Usage:
    python3 scripts/stock_maintenance.py initialize --day 2024-01-01
    python3 scripts/stock_maintenance.py repair --truth batches --dry-run
    python3 scripts/stock_maintenance.py sync --warehouse <uuid> --item <uuid>

Exit codes: 0 success, 1 one or more items failed, 2 usage error.
"""

import argparse
import dataclasses
import sys
from datetime import date
from pathlib import Path
from uuid import UUID

# Add project root to path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from stock_batch import MaintenanceRunner, default_task_registry
from stock_batch.domain.types import MaintenanceItemStatus
from stock_config import get_active_config
from stock_config.bridges import init_engine, ledger_policy

TASKS = {
    "initialize": "ledger.initialize_movements",
    "repair": "ledger.repair_movements",
    "sync": "stock.sync_with_batches",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Stock ledger maintenance")
    parser.add_argument("command", choices=sorted(TASKS), help="Maintenance task to run")
    parser.add_argument("--config", help="YAML overlay on top of the default configuration")
    parser.add_argument("--database-url", help="Override the configured database URL")
    parser.add_argument("--warehouse", type=UUID, help="Only this warehouse")
    parser.add_argument("--item", type=UUID, help="Only this item")
    parser.add_argument(
        "--day", type=date.fromisoformat, help="Bootstrap date for initialize (YYYY-MM-DD)",
    )
    parser.add_argument(
        "--truth", choices=("aggregate", "batches"), default="aggregate",
        help="Quantity the repaired ledger must close at",
    )
    parser.add_argument("--dry-run", action="store_true", help="Report without writing")
    return parser


def main(argv=None, session_factory=None) -> int:
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as exc:
        return int(exc.code or 0)

    try:
        config = get_active_config(args.config)
    except (FileNotFoundError, ValueError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 2

    if args.database_url:
        config = dataclasses.replace(
            config, database=dataclasses.replace(config.database, url=args.database_url),
        )

    if session_factory is None:
        from stock_kernel.db.engine import get_session_factory

        init_engine(config)
        session_factory = get_session_factory()

    parameters = {
        "warehouse_id": args.warehouse,
        "item_id": args.item,
        "day": args.day,
        "truth": args.truth,
        "dry_run": args.dry_run,
    }
    registry = default_task_registry(
        policy=ledger_policy(config), epsilon=config.ledger.drift_epsilon,
    )

    session = session_factory()
    try:
        result = MaintenanceRunner(session, registry).run(TASKS[args.command], parameters)
        if args.dry_run:
            session.rollback()
        else:
            session.commit()
    except Exception as exc:
        session.rollback()
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    finally:
        session.close()

    print(
        f"{result.task_type}: {result.status.value} "
        f"(total={result.total_items} succeeded={result.succeeded} "
        f"skipped={result.skipped} failed={result.failed})"
    )
    for item in result.item_results:
        if item.status == MaintenanceItemStatus.FAILED:
            print(f"  FAILED {item.item_key}: [{item.error_code}] {item.error_message}")
        elif item.status == MaintenanceItemStatus.SUCCEEDED:
            print(f"  {item.item_key}: {item.result_data}")
    if args.dry_run:
        print("Dry run: no changes written.")

    return 1 if result.failed else 0


if __name__ == "__main__":
    sys.exit(main())
