#!/usr/bin/env python3
"""
Print a valuation report: on-hand, reserved, average cost and layer value
per balance, flagging any balance whose open cost layers disagree with its
on-hand quantity.

Usage:
    python3 scripts/stock_report.py
    python3 scripts/stock_report.py --product P1 --warehouse W1
    python3 scripts/stock_report.py --json

Exit status is 2 when at least one balance is inconsistent.
"""

import argparse
import json
import logging
import sys
from decimal import Decimal
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

W = 96


def _row_dict(row) -> dict:
    return {
        "product_id": row.key.product_id,
        "warehouse_id": row.key.warehouse_id,
        "location_id": row.key.location_id,
        "on_hand_quantity": str(row.on_hand_quantity),
        "reserved_quantity": str(row.reserved_quantity),
        "average_unit_cost": str(row.average_unit_cost),
        "layered_quantity": str(row.layered_quantity),
        "layered_value": str(row.layered_value),
        "consistent": row.is_consistent,
    }


def print_report(rows) -> None:
    print("=" * W)
    print("  INVENTORY VALUATION".center(W))
    print("=" * W)
    print(
        f"  {'Key':<30} {'On hand':>12} {'Reserved':>12} "
        f"{'Avg cost':>12} {'Layer value':>16}  OK"
    )
    print("-" * W)
    total = Decimal("0")
    for row in rows:
        total += row.layered_value
        flag = "OK" if row.is_consistent else "!!"
        print(
            f"  {str(row.key):<30} {row.on_hand_quantity:>12.2f} "
            f"{row.reserved_quantity:>12.2f} {row.average_unit_cost:>12.4f} "
            f"{row.layered_value:>16.2f}  {flag}"
        )
    print("-" * W)
    print(f"  {'TOTAL':<30} {'':>12} {'':>12} {'':>12} {total:>16.2f}")
    print()


def main() -> int:
    parser = argparse.ArgumentParser(description="Print an inventory valuation report.")
    parser.add_argument("--config", type=str, default=None, help="Settings YAML")
    parser.add_argument("--db-url", type=str, default=None, help="Database URL")
    parser.add_argument("--product", type=str, default=None, help="Only this product")
    parser.add_argument("--warehouse", type=str, default=None, help="Only this warehouse")
    parser.add_argument(
        "--json", action="store_true",
        help="Output rows as JSON instead of a formatted table",
    )
    args = parser.parse_args()

    logging.disable(logging.CRITICAL)

    from stock_config import load_config
    from stock_kernel.db.engine import get_session, init_engine_from_url
    from stock_kernel.selectors import InventorySelector

    config = load_config(args.config)
    try:
        init_engine_from_url(args.db_url or config.database_url, echo=False)
    except Exception as exc:
        print(f"  ERROR: Could not connect: {exc}", file=sys.stderr)
        return 1

    session = get_session()
    try:
        rows = InventorySelector(session).valuation(
            product_id=args.product, warehouse_id=args.warehouse,
        )
    finally:
        session.close()

    if args.json:
        print(json.dumps([_row_dict(row) for row in rows], indent=2))
    else:
        print_report(rows)

    return 0 if all(row.is_consistent for row in rows) else 2


if __name__ == "__main__":
    sys.exit(main())
