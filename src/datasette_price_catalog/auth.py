"""
Credential helpers for datasette-price-catalog.

Passwords are hashed with PBKDF2-SHA256 in the datasette-auth-passwords
format. The administrator account is synced from environment variables on
startup; client credentials live on the client record itself.
"""

import hashlib
import os
import secrets
import sqlite3
from datetime import UTC, datetime
from pathlib import Path

from price_moderation.models import Client

# PBKDF2 parameters (matching datasette-auth-passwords defaults)
HASH_ALGORITHM = "sha256"
HASH_ITERATIONS = 260000
HASH_SALT_LENGTH = 16
HASH_KEY_LENGTH = 32


def hash_password(password: str) -> str:
    """
    Hash a password using PBKDF2-SHA256.

    Returns a string in the format: pbkdf2_sha256$iterations$salt$hash
    """
    salt = secrets.token_hex(HASH_SALT_LENGTH)
    key = hashlib.pbkdf2_hmac(
        HASH_ALGORITHM,
        password.encode("utf-8"),
        salt.encode("utf-8"),
        HASH_ITERATIONS,
        dklen=HASH_KEY_LENGTH,
    )
    return f"pbkdf2_{HASH_ALGORITHM}${HASH_ITERATIONS}${salt}${key.hex()}"


def verify_password(password: str, password_hash: str) -> bool:
    """Check a password against a stored hash. Malformed hashes never match."""
    try:
        algorithm_part, iterations_str, salt, stored_hash = password_hash.split("$")
        if not algorithm_part.startswith("pbkdf2_"):
            return False

        key = hashlib.pbkdf2_hmac(
            algorithm_part[len("pbkdf2_") :],
            password.encode("utf-8"),
            salt.encode("utf-8"),
            int(iterations_str),
            dklen=len(bytes.fromhex(stored_hash)),
        )
        return secrets.compare_digest(key.hex(), stored_hash)

    except (ValueError, AttributeError):
        return False


def get_admin_account(db_path: Path, username: str) -> dict | None:
    """Get an administrator account by username."""
    if not db_path.exists():
        return None

    conn = sqlite3.connect(db_path)
    try:
        row = conn.execute(
            "SELECT username, password_hash, display_name FROM admin_accounts WHERE username = ?",
            (username,),
        ).fetchone()
        if row:
            return {
                "username": row[0],
                "password_hash": row[1],
                "display_name": row[2],
            }
        return None
    finally:
        conn.close()


def upsert_admin_account(
    db_path: Path,
    username: str,
    password_hash: str,
    display_name: str | None = None,
) -> None:
    """Create the administrator account, or replace its password and display name."""
    conn = sqlite3.connect(db_path)
    now = datetime.now(UTC).isoformat()

    try:
        conn.execute(
            """
            INSERT INTO admin_accounts (username, password_hash, display_name, created_ts)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(username) DO UPDATE SET
                password_hash = excluded.password_hash,
                display_name = excluded.display_name,
                updated_ts = ?
            """,
            (username, password_hash, display_name, now, now),
        )
        conn.commit()
    finally:
        conn.close()


def sync_admin_from_env(db_path: Path, verbose: bool = False) -> bool:
    """
    Sync the administrator account from environment variables.

    Reads PRICE_ADMIN_USERNAME (default: "admin"), PRICE_ADMIN_PASSWORD and
    PRICE_ADMIN_DISPLAY_NAME. Nothing happens unless the password is set.

    Returns True if an account was synced.
    """
    username = os.environ.get("PRICE_ADMIN_USERNAME", "admin")
    password = os.environ.get("PRICE_ADMIN_PASSWORD")
    display_name = os.environ.get("PRICE_ADMIN_DISPLAY_NAME", "Administrator")

    if not password:
        if verbose:
            print("  PRICE_ADMIN_PASSWORD not set, skipping admin account sync")
        return False

    upsert_admin_account(db_path, username, hash_password(password), display_name)

    if verbose:
        print(f"  Synced price catalog admin account: {username}")

    return True


def authenticate_admin(db_path: Path, username: str, password: str) -> dict | None:
    """Returns the admin account dict on success, None on failure."""
    account = get_admin_account(db_path, username)
    if account is None:
        return None

    if verify_password(password, account["password_hash"]):
        return account

    return None


def authenticate_client(client: Client | None, password: str) -> bool:
    """True if the client exists and the password matches its stored hash."""
    if client is None:
        return False
    return verify_password(password, client.password_hash)
