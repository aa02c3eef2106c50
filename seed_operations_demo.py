"""Seed the OperationsDemo schema into a database reachable through SQLAlchemy.

Usage is intentionally minimal:

1. Run this script once; if the schema already exists, nothing happens.
   Without `--url` it creates a local SQLite file.
2. Run `python normalization_audit.py --url <same url>` to audit it by reflection.
"""
from __future__ import annotations

import argparse
import sys

from sqlalchemy import create_engine, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from operations_dataset_sql import OPERATIONS_DATASET_SQL
from schema_builder import split_statements


DEFAULT_URL = "sqlite:///operations_demo.db"
MARKER_TABLE = "work_order_parts"


def build_engine(url: str) -> Engine:
    return create_engine(url, future=True)


def schema_exists(engine: Engine) -> bool:
    return inspect(engine).has_table(MARKER_TABLE)


def seed(engine: Engine) -> bool:
    """Create and fill the demo tables. Returns False when they were already there."""
    if schema_exists(engine):
        print("[INFO] OperationsDemo already present; nothing to do.")
        return False

    print("[INFO] Seeding OperationsDemo...")
    with engine.begin() as conn:
        for i, statement in enumerate(split_statements(OPERATIONS_DATASET_SQL), start=1):
            print(f"[INFO] Executing statement {i}...", flush=True)
            conn.exec_driver_sql(statement)
    print("[INFO] Seeding complete.")
    return True


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed the OperationsDemo schema.")
    parser.add_argument("--url", default=DEFAULT_URL, help="SQLAlchemy URL of the target database (default: %(default)s)")
    args = parser.parse_args()

    try:
        seed(build_engine(args.url))
    except SQLAlchemyError as exc:
        print(f"[ERROR] Could not seed {args.url}. Check that the database is reachable and writable.")
        print(f"Details: {exc}")
        sys.exit(1)


if __name__ == "__main__":
    main()
