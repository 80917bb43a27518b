"""
Blacklist registry: time-bounded re-registration blocks keyed by contact.

Contact identifiers are compared by their digits only. An entry blocks
registration while it is active and its expiry is in the future; expired
entries stop blocking immediately, whether or not the sweeper has run.
"""

import logging
import sqlite3
from collections.abc import Callable
from datetime import datetime, timedelta

from .config import BlacklistConfig
from .contacts import normalize_contact
from .errors import NotFound
from .models import (
    BlacklistEntry,
    CatalogDatabase,
    EventType,
    new_id,
    to_ts,
    utc_now,
)

logger = logging.getLogger(__name__)


class BlacklistRegistry:
    """Stores and queries blacklist entries."""

    def __init__(
        self,
        db: CatalogDatabase,
        config: BlacklistConfig,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.config = config
        self.clock = clock

    def add(
        self,
        conn: sqlite3.Connection,
        contact: str,
        reason: str,
        now: datetime,
        client_id: str | None = None,
    ) -> BlacklistEntry | None:
        """
        Create or overwrite the entry for a contact within the caller's transaction.

        The entry becomes active and expires after the configured duration.
        Returns None when the contact has no digits to key on.
        """
        contact_key = normalize_contact(contact)
        if not contact_key:
            return None

        expires = now + timedelta(days=self.config.duration_days)
        conn.execute(
            """
            INSERT INTO blacklist_entries
                (entry_id, contact_key, reason, client_id, activated_ts, expires_ts, active)
            VALUES (?, ?, ?, ?, ?, ?, 1)
            ON CONFLICT(contact_key) DO UPDATE SET
                reason = excluded.reason,
                client_id = excluded.client_id,
                activated_ts = excluded.activated_ts,
                expires_ts = excluded.expires_ts,
                active = 1,
                released_ts = NULL,
                released_by = NULL
            """,
            (new_id(), contact_key, reason, client_id, to_ts(now), to_ts(expires)),
        )
        row = conn.execute(
            "SELECT * FROM blacklist_entries WHERE contact_key = ?",
            (contact_key,),
        ).fetchone()
        entry = BlacklistEntry(**dict(row))
        logger.info(f"Blacklisted contact {contact_key} until {entry.expires_ts}")
        return entry

    def is_blocked(self, contact: str | None) -> bool:
        """True iff an active, unexpired entry exists for the normalized contact."""
        contact_key = normalize_contact(contact)
        if not contact_key:
            return False

        with self.db.read() as conn:
            row = conn.execute(
                """
                SELECT 1 FROM blacklist_entries
                WHERE contact_key = ? AND active = 1 AND expires_ts > ?
                """,
                (contact_key, to_ts(self.clock())),
            ).fetchone()
        return row is not None

    def get(self, entry_id: str) -> BlacklistEntry | None:
        with self.db.read() as conn:
            row = conn.execute(
                "SELECT * FROM blacklist_entries WHERE entry_id = ?",
                (entry_id,),
            ).fetchone()
        return BlacklistEntry(**dict(row)) if row else None

    def get_by_contact(self, contact: str) -> BlacklistEntry | None:
        contact_key = normalize_contact(contact)
        if not contact_key:
            return None
        with self.db.read() as conn:
            row = conn.execute(
                "SELECT * FROM blacklist_entries WHERE contact_key = ?",
                (contact_key,),
            ).fetchone()
        return BlacklistEntry(**dict(row)) if row else None

    def list_entries(self, active_only: bool = True, limit: int = 200) -> list[BlacklistEntry]:
        """List entries, most recently activated first."""
        where = "WHERE active = 1" if active_only else ""
        with self.db.read() as conn:
            cursor = conn.execute(
                f"SELECT * FROM blacklist_entries {where} ORDER BY activated_ts DESC LIMIT ?",
                (limit,),
            )
            return [BlacklistEntry(**dict(row)) for row in cursor.fetchall()]

    def release(self, entry_id: str, moderator: str) -> BlacklistEntry:
        """
        Deactivate an entry before its natural expiry.

        Releasing an already inactive entry leaves it untouched.
        """
        now = self.clock()
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT * FROM blacklist_entries WHERE entry_id = ?",
                (entry_id,),
            ).fetchone()
            if row is None:
                raise NotFound(f"Blacklist entry not found: {entry_id}")

            cursor = conn.execute(
                """
                UPDATE blacklist_entries SET active = 0, released_ts = ?, released_by = ?
                WHERE entry_id = ? AND active = 1
                """,
                (to_ts(now), moderator, entry_id),
            )
            if cursor.rowcount:
                self.db.add_event(
                    conn,
                    EventType.BLACKLIST_RELEASED,
                    "blacklist_entry",
                    entry_id,
                    to_ts(now),
                    actor_id=moderator,
                    payload={"contact_key": row["contact_key"]},
                )
                logger.info(f"Blacklist entry {entry_id} released by {moderator}")

            row = conn.execute(
                "SELECT * FROM blacklist_entries WHERE entry_id = ?",
                (entry_id,),
            ).fetchone()
        return BlacklistEntry(**dict(row))

    def deactivate_expired(self, conn: sqlite3.Connection, now: datetime) -> list[str]:
        """Deactivate every active entry whose expiry has passed. Returns their ids."""
        ts = to_ts(now)
        cursor = conn.execute(
            "SELECT entry_id FROM blacklist_entries WHERE active = 1 AND expires_ts <= ?",
            (ts,),
        )
        entry_ids = [row[0] for row in cursor.fetchall()]
        if entry_ids:
            conn.execute(
                "UPDATE blacklist_entries SET active = 0 WHERE active = 1 AND expires_ts <= ?",
                (ts,),
            )
        return entry_ids
