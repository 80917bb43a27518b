#!/usr/bin/env python3
"""Initialize the price catalog database with all migrations."""

import argparse
import sqlite3
from pathlib import Path

from datasette_price_catalog.migrations import check_schema, run_migrations


def init_db(db_path: Path) -> None:
    """Create (or upgrade) the database and print its schema state."""
    print(f"Initializing database: {db_path}")

    print("Running migrations...")
    applied = run_migrations(db_path, verbose=True)
    if applied:
        print(f"Applied {len(applied)} migration(s).")

    # Show final state
    conn = sqlite3.connect(db_path)
    try:
        cursor = conn.execute(
            "SELECT version, name, applied_ts FROM schema_migrations ORDER BY version"
        )
        print("\nSchema versions:")
        for row in cursor:
            print(f"  v{row[0]} {row[1]} applied at {row[2]}")

        cursor = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name"
        )
        tables = [row[0] for row in cursor if not row[0].startswith("sqlite_")]
        print(f"\nTables: {', '.join(tables)}")
    finally:
        conn.close()

    print(f"\nSchema is current at version {check_schema(db_path)}.")


def main() -> None:
    parser = argparse.ArgumentParser(description="Initialize the price catalog database")
    parser.add_argument(
        "--db",
        type=Path,
        default=Path("price_catalog.db"),
        help="Path to the SQLite database file (default: price_catalog.db)",
    )
    args = parser.parse_args()

    init_db(args.db)


if __name__ == "__main__":
    main()
