#!/usr/bin/env python3
"""
Create (or recreate) the inventory tables.

Usage:
    python3 scripts/init_db.py
    python3 scripts/init_db.py --db-url sqlite:///stock.db
    python3 scripts/init_db.py --config settings.yaml --drop

The database URL comes from --db-url, else STOCK_DATABASE_URL, else the
config file (packaged defaults when --config is omitted).
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def main() -> int:
    parser = argparse.ArgumentParser(description="Create the inventory tables.")
    parser.add_argument(
        "--config", type=str, default=None,
        help="Settings YAML (default: packaged stock_config/defaults/inventory.yaml)",
    )
    parser.add_argument(
        "--db-url", type=str, default=None,
        help="Database URL; overrides the config file and STOCK_DATABASE_URL",
    )
    parser.add_argument(
        "--drop", action="store_true",
        help="Drop existing inventory tables first (destroys all data)",
    )
    args = parser.parse_args()

    from stock_config import load_config
    from stock_kernel.db.engine import create_tables, drop_tables, init_engine_from_url
    from stock_kernel.exceptions import ConfigurationError
    from stock_kernel.logging_config import configure_logging

    try:
        config = load_config(args.config)
    except ConfigurationError as exc:
        print(f"  ERROR: Invalid configuration: {exc}", file=sys.stderr)
        return 1

    configure_logging(level=config.log_level_value)

    url = args.db_url or config.database_url
    try:
        engine = init_engine_from_url(url, echo=config.echo_sql, pool_size=config.pool_size)
    except Exception as exc:
        print(f"  ERROR: Could not connect: {exc}", file=sys.stderr)
        return 1

    if args.drop:
        drop_tables(engine)
        print(f"  Dropped inventory tables on {engine.url.render_as_string(hide_password=True)}")
    create_tables(engine)
    print(f"  Inventory tables ready on {engine.url.render_as_string(hide_password=True)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
