"""
Trust ledger: per-client approval/rejection bookkeeping and block state.

All counter changes are in-SQL increments applied inside the caller's
transaction, so two rejections resolved at the same time cannot lose an
update to the streak.
"""

import logging
import sqlite3
from datetime import datetime

from .config import TrustConfig
from .models import BlockKind, Client, ClientTrustState, to_ts

logger = logging.getLogger(__name__)


class TrustLedger:
    """Reads and mutates the trust state embedded in client records."""

    def __init__(self, config: TrustConfig):
        self.config = config

    @staticmethod
    def fetch_client(conn: sqlite3.Connection, client_id: str) -> Client | None:
        row = conn.execute(
            "SELECT * FROM clients WHERE client_id = ?",
            (client_id,),
        ).fetchone()
        return Client(**dict(row)) if row else None

    def get_state(self, conn: sqlite3.Connection, client_id: str) -> ClientTrustState | None:
        client = self.fetch_client(conn, client_id)
        return client.trust if client else None

    def record_approval(self, conn: sqlite3.Connection, client_id: str) -> ClientTrustState | None:
        """Count an approval and reset the error streak. None if the client is gone."""
        cursor = conn.execute(
            """
            UPDATE clients SET
                total_approved = total_approved + 1,
                consecutive_errors = 0
            WHERE client_id = ?
            """,
            (client_id,),
        )
        if cursor.rowcount == 0:
            return None
        return self.get_state(conn, client_id)

    def record_rejection(
        self,
        conn: sqlite3.Connection,
        client_id: str,
        reason: str,
        now: datetime,
    ) -> tuple[ClientTrustState | None, bool]:
        """
        Count a rejection and extend the error streak.

        When the streak reaches the threshold and the client is not already
        blocked, the client is blocked with kind ``automatic``. A temporary
        block that has lapsed counts as not blocked.

        Returns (trust_state, auto_blocked). trust_state is None if the
        client record no longer exists.
        """
        cursor = conn.execute(
            """
            UPDATE clients SET
                total_rejected = total_rejected + 1,
                consecutive_errors = consecutive_errors + 1
            WHERE client_id = ?
            """,
            (client_id,),
        )
        if cursor.rowcount == 0:
            return None, False

        threshold = self.config.auto_block_threshold
        cursor = conn.execute(
            """
            UPDATE clients SET
                blocked = 1,
                block_kind = ?,
                block_reason = ?,
                blocked_ts = ?,
                block_expires_ts = NULL
            WHERE client_id = ? AND consecutive_errors >= ?
              AND (
                  blocked = 0
                  OR (block_kind = ? AND block_expires_ts IS NOT NULL AND block_expires_ts <= ?)
              )
            """,
            (
                BlockKind.AUTOMATIC.value,
                f"Automatic block after {threshold} consecutive rejections: {reason}",
                to_ts(now),
                client_id,
                threshold,
                BlockKind.TEMPORARY.value,
                to_ts(now),
            ),
        )
        auto_blocked = cursor.rowcount == 1
        if auto_blocked:
            logger.info(f"Client {client_id} automatically blocked after {threshold} rejections")

        return self.get_state(conn, client_id), auto_blocked

    def set_block(
        self,
        conn: sqlite3.Connection,
        client_id: str,
        kind: BlockKind,
        reason: str,
        now: datetime,
        expires: datetime | None = None,
    ) -> ClientTrustState | None:
        """Block a client with the given kind. Re-applying overwrites reason and expiry."""
        cursor = conn.execute(
            """
            UPDATE clients SET
                blocked = 1,
                block_kind = ?,
                block_reason = ?,
                blocked_ts = ?,
                block_expires_ts = ?
            WHERE client_id = ?
            """,
            (
                kind.value,
                reason,
                to_ts(now),
                to_ts(expires) if expires else None,
                client_id,
            ),
        )
        if cursor.rowcount == 0:
            return None
        return self.get_state(conn, client_id)

    def clear_block(self, conn: sqlite3.Connection, client_id: str) -> ClientTrustState | None:
        """Unblock a client and reset the error streak. Lifetime totals are kept."""
        cursor = conn.execute(
            """
            UPDATE clients SET
                blocked = 0,
                block_kind = ?,
                block_reason = '',
                blocked_ts = NULL,
                block_expires_ts = NULL,
                consecutive_errors = 0
            WHERE client_id = ?
            """,
            (BlockKind.NONE.value, client_id),
        )
        if cursor.rowcount == 0:
            return None
        return self.get_state(conn, client_id)
