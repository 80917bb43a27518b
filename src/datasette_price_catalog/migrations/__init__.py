"""
Schema migrations for the price catalog database.

Each ``NNNN_description.sql`` file in this directory is one schema version.
Files are applied in version order, each inside its own transaction together
with its ``schema_migrations`` row, so a failing file leaves the database at
the previous version.
"""

import re
import sqlite3
from datetime import UTC, datetime
from pathlib import Path
from typing import NamedTuple

MIGRATIONS_DIR = Path(__file__).parent

_FILENAME = re.compile(r"^(\d{4})_([a-z0-9_]+)\.sql$")


class MigrationError(Exception):
    """A migration file is malformed or failed to apply."""


class SchemaVersionError(Exception):
    """The database schema does not match the migrations shipped with this code."""


class Migration(NamedTuple):
    version: int
    name: str
    path: Path


def discover_migrations(directory: Path = MIGRATIONS_DIR) -> list[Migration]:
    """Migration files in version order. Two files sharing a version is an error."""
    found: dict[int, Migration] = {}
    for path in directory.glob("*.sql"):
        match = _FILENAME.match(path.name)
        if not match:
            raise MigrationError(f"Unexpected file name in migrations: {path.name}")
        version = int(match.group(1))
        if version in found:
            raise MigrationError(
                f"Duplicate migration version {version}: {found[version].path.name}, {path.name}"
            )
        found[version] = Migration(version, match.group(2), path)
    return [found[v] for v in sorted(found)]


def latest_version(directory: Path = MIGRATIONS_DIR) -> int:
    migrations = discover_migrations(directory)
    return migrations[-1].version if migrations else 0


def _ensure_bookkeeping(conn: sqlite3.Connection) -> None:
    conn.execute("""
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version INTEGER PRIMARY KEY,
            name TEXT NOT NULL DEFAULT '',
            applied_ts TEXT NOT NULL
        )
    """)


def _applied_versions(conn: sqlite3.Connection) -> set[int]:
    exists = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'schema_migrations'"
    ).fetchone()
    if not exists:
        return set()
    return {row[0] for row in conn.execute("SELECT version FROM schema_migrations")}


def _apply(conn: sqlite3.Connection, migration: Migration) -> None:
    """Run one file and record it atomically."""
    sql = migration.path.read_text()
    try:
        conn.executescript(f"BEGIN IMMEDIATE;\n{sql}\n")
        conn.execute(
            "INSERT INTO schema_migrations (version, name, applied_ts) VALUES (?, ?, ?)",
            (migration.version, migration.name, datetime.now(UTC).isoformat()),
        )
        conn.execute("COMMIT")
    except sqlite3.Error as e:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise MigrationError(f"Migration {migration.path.name} failed: {e}") from e


def run_migrations(
    db_path: Path,
    verbose: bool = True,
    directory: Path = MIGRATIONS_DIR,
) -> list[int]:
    """
    Bring the database up to the latest schema, creating the file if needed.

    Returns the versions applied by this call (empty when already current).
    """
    migrations = discover_migrations(directory)
    conn = sqlite3.connect(db_path, isolation_level=None)
    applied = []
    try:
        _ensure_bookkeeping(conn)
        done = _applied_versions(conn)
        for migration in migrations:
            if migration.version in done:
                continue
            if verbose:
                print(f"  Applying migration {migration.version}: {migration.path.name}")
            _apply(conn, migration)
            applied.append(migration.version)
    finally:
        conn.close()

    if verbose and not applied:
        print(f"  Schema already at version {get_current_version(db_path)}.")
    return applied


def get_current_version(db_path: Path) -> int:
    """Highest applied version, or 0 for a missing or unmigrated database."""
    if not Path(db_path).exists():
        return 0
    conn = sqlite3.connect(db_path)
    try:
        applied = _applied_versions(conn)
    finally:
        conn.close()
    return max(applied, default=0)


def get_pending_versions(db_path: Path) -> list[int]:
    """Versions shipped with this code that the database has not applied."""
    if not Path(db_path).exists():
        return [m.version for m in discover_migrations()]
    conn = sqlite3.connect(db_path)
    try:
        done = _applied_versions(conn)
    finally:
        conn.close()
    return [m.version for m in discover_migrations() if m.version not in done]


def check_schema(db_path: Path) -> int:
    """
    Verify the database is exactly at the schema this code expects.

    Returns the current version. Raises SchemaVersionError when migrations
    are pending, or when the database was migrated by newer code.
    """
    current = get_current_version(db_path)
    latest = latest_version()
    if current > latest:
        raise SchemaVersionError(
            f"{db_path} is at schema version {current}, newer than this code ({latest})"
        )
    pending = get_pending_versions(db_path)
    if pending:
        raise SchemaVersionError(
            f"{db_path} has pending migrations {pending}; run scripts/init_db.py"
        )
    return current
