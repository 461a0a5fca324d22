#!/usr/bin/env python3
"""
Seed a custody store with staff, tools, consumables and a day of activity.

Writes the item and staff documents directly, then runs a handful of
checkouts, checkins, consumable moves and one scan batch through the
CustodyAPI so both history ledgers are populated.

Usage:
    python3 scripts/seed_data.py                       # default config (memory)
    python3 scripts/seed_data.py --config toolcrib_config/sets/postgres.yaml
"""

import argparse
import logging
import sys
from pathlib import Path
from uuid import uuid4

# ---------------------------------------------------------------------------
# Project root on sys.path
# ---------------------------------------------------------------------------
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

STAFF = [
    ("ADMIN1", "Alex Admin", "A-100", True),
    ("W1", "Wren Walker", "W-210", True),
    ("W2", "Sam Ortiz", "W-220", True),
    ("W3", "Robin Hale", "W-230", False),
]

TOOLS = [
    ("tool-1234", "T1234", "Impact Driver", "Makita", "XDT13"),
    ("tool-1235", "T1235", "Hammer Drill", "DeWalt", "DCD996"),
    ("tool-1236", "T1236", "Angle Grinder", "Bosch", "GWS13"),
    ("tool-1237", "T1237", "Torque Wrench", "Snap-on", "QD3R"),
]

CONSUMABLES = [
    ("cons-0001", "C0001", "Cutting Disc 115mm", "Bosch", "pieces", 40.0, 10.0),
    ("cons-0002", "C0002", "Wood Screw 4x40", "Spax", "boxes", 12.0, 3.0),
    ("cons-0003", "C0003", "Cable Tie 300mm", "Hellermann", "bags", 5.0, 5.0),
]


def _seed_documents(store) -> None:
    from toolcrib_kernel.domain.types import Consumable, ItemKind, Staff, Tool
    from toolcrib_kernel.store.layout import item_ref, staff_ref

    for uid, name, job_code, active in STAFF:
        store.set(staff_ref(uid), Staff(uid, name, job_code, active).to_document())
    for item_id, unique_id, name, brand, model in TOOLS:
        tool = Tool(item_id, unique_id, name=name, brand=brand, model=model)
        store.set(item_ref(ItemKind.TOOL, item_id), tool.to_document())
    for item_id, unique_id, name, brand, unit, qty, minimum in CONSUMABLES:
        consumable = Consumable(
            item_id, unique_id, name=name, brand=brand, unit=unit,
            current_quantity=qty, min_quantity=minimum,
        )
        store.set(item_ref(ItemKind.CONSUMABLE, item_id), consumable.to_document())


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed a custody store with demo data.")
    parser.add_argument("--config", type=Path, default=None, help="YAML config file")
    parser.add_argument("--quiet", action="store_true", help="Suppress structured log output")
    args = parser.parse_args()

    if args.quiet:
        logging.disable(logging.CRITICAL)

    from toolcrib_batch.domain.types import BatchType
    from toolcrib_config import get_active_config
    from toolcrib_kernel.logging_config import LogContext
    from toolcrib_services import CustodyAPI

    try:
        config = get_active_config(args.config)
        api = CustodyAPI.from_config(config)
    except Exception as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 1

    # Every line of one seeding run shares a correlation id.
    LogContext.set(correlation_id=f"seed-{uuid4().hex[:12]}")
    try:
        _seed_documents(api.store)

        api.checkout("tool-1234", staff_uid="W1", acting_staff_uid="ADMIN1", notes="Job 4411")
        api.checkout("tool-1235", staff_uid="W2", acting_staff_uid="ADMIN1")
        api.checkin("tool-1235", acting_staff_uid="ADMIN1")
        api.record_usage("cons-0001", 4, acting_staff_uid="ADMIN1", assigned_to_staff_uid="W1")
        api.record_restock("cons-0002", 6, acting_staff_uid="ADMIN1")

        api.start_batch(BatchType.CHECKOUT)
        api.scan_into_batch("TOOL#T1236")
        api.scan_into_batch("TOOL#T1237")
        report = api.submit_batch("ADMIN1", assign_to_staff_uid="W2", notes="Night shift")

        print()
        print(f"  Seeded {len(STAFF)} staff, {len(TOOLS)} tools, {len(CONSUMABLES)} consumables")
        print(f"  Batch {report.batch_id}: {report.status.value} "
              f"({report.succeeded}/{report.total_items} succeeded)")
        print(f"  Global entries today: {len(api.history.recent_transactions(days_back=1, limit=100))}")
        print()
        return 0
    finally:
        api.close()


if __name__ == "__main__":
    sys.exit(main())
