#!/usr/bin/env python3
"""
Print custody history from a SQL-backed store.

Usage:
    python3 scripts/view_history.py --config toolcrib_config/sets/postgres.yaml
    python3 scripts/view_history.py --config ... --item tool-1234 --days 30
    python3 scripts/view_history.py --config ... --batch BATCH_...
    python3 scripts/view_history.py --config ... --status tool-1234
"""

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

W = 96


def _print_entries(title: str, entries) -> None:
    print()
    print("=" * W)
    print(title.center(W))
    print("=" * W)
    if not entries:
        print("  No history entries found.")
        print()
        return

    print(f"  {'Timestamp':<26} {'Action':<9} {'Item':<14} {'By':<10} {'To':<10} {'Qty':>7}  Notes")
    print(f"  {'-'*26} {'-'*9} {'-'*14} {'-'*10} {'-'*10} {'-'*7}  {'-'*12}")
    for entry in entries:
        qty = "" if entry.quantity_change is None else f"{entry.quantity_change:+g}"
        item = entry.metadata.item_unique_id or entry.item_id
        print(
            f"  {entry.timestamp.isoformat(timespec='seconds'):<26} "
            f"{entry.action.value:<9} {item:<14} {entry.by_staff_uid:<10} "
            f"{entry.assigned_to_staff_uid or '':<10} {qty:>7}  {entry.notes or ''}"
        )
    print()


def main() -> int:
    parser = argparse.ArgumentParser(description="View custody history.")
    parser.add_argument("--config", type=Path, default=None, help="YAML config file")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--item", help="Show the history of one tool id")
    group.add_argument("--consumable", help="Show the history of one consumable id")
    group.add_argument("--batch", help="Show every entry of one batch id")
    group.add_argument("--status", help="Show the instant status of one tool id")
    parser.add_argument("--days", type=int, default=None, help="Days back (default from config)")
    parser.add_argument("--limit", type=int, default=None, help="Maximum entries")
    args = parser.parse_args()

    logging.disable(logging.CRITICAL)

    from datetime import timedelta

    from toolcrib_config import get_active_config
    from toolcrib_kernel.domain.types import ItemKind
    from toolcrib_kernel.exceptions import ToolCribError
    from toolcrib_services import CustodyAPI

    try:
        config = get_active_config(args.config)
        api = CustodyAPI.from_config(config)
    except Exception as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 1

    try:
        end = api.clock.now_utc()
        days = args.days or config.history.default_days_back
        start = end - timedelta(days=days)

        if args.status:
            view = api.tool_status(args.status)
            print()
            print(f"  {view.unique_id} ({view.item_id}): {view.status.value}")
            print(f"    holder:        {view.current_holder_uid or '-'}")
            print(f"    assigned to:   {view.last_assigned_to_name or '-'} "
                  f"({view.last_assigned_to_job_code or '-'}) by {view.last_assigned_by_name or '-'}")
            print(f"    assigned at:   {view.last_assigned_at or '-'}")
            print(f"    checked in at: {view.last_checkin_at or '-'} by {view.last_checkin_by_name or '-'}")
            print()
        elif args.item or args.consumable:
            kind = ItemKind.TOOL if args.item else ItemKind.CONSUMABLE
            item_id = args.item or args.consumable
            entries = api.query_item_history(item_id, start, end, args.limit, item_kind=kind)
            _print_entries(f"HISTORY: {item_id} (last {days} days)", entries)
        elif args.batch:
            entries = api.query_batch(args.batch, start, end)
            _print_entries(f"BATCH {args.batch}", entries)
        else:
            entries = api.query_global_history(start, end, args.limit)
            summary = api.history.summarize(entries)
            _print_entries(f"GLOBAL HISTORY (last {days} days)", entries)
            counts = ", ".join(f"{k}={v}" for k, v in summary["by_action"].items())
            print(f"  Total: {summary['total']} entries ({counts})")
            print()
        return 0
    except ToolCribError as exc:
        print(f"  ERROR [{exc.code}]: {exc}", file=sys.stderr)
        return 1
    finally:
        api.close()


if __name__ == "__main__":
    sys.exit(main())
