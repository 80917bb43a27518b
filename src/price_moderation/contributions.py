"""
Contribution queue: client price submissions awaiting moderation.

Contributions are never deleted. The only mutation is the one-time
transition out of ``pending``, performed as a conditional write so that
concurrent decisions on the same contribution cannot both succeed.
"""

import logging
import sqlite3
from collections.abc import Callable
from datetime import datetime

from .config import ContributionsConfig
from .contacts import is_valid_reference, parse_price
from .errors import AlreadyDecided, Forbidden, InvalidInput, NotFound
from .models import (
    CatalogDatabase,
    Contribution,
    ContributionKind,
    ContributionStatus,
    EventType,
    new_id,
    to_ts,
    utc_now,
)
from .notifier import Notifier, NullNotifier
from .trust import TrustLedger

logger = logging.getLogger(__name__)


class ContributionQueue:
    """Submission and listing of contributions."""

    def __init__(
        self,
        db: CatalogDatabase,
        config: ContributionsConfig,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.config = config
        self.notifier = notifier or NullNotifier()
        self.clock = clock

    def submit(
        self,
        client_id: str,
        product_id: str,
        market_id: str,
        price,
        note: str = "",
        kind: str = ContributionKind.TEXT.value,
    ) -> Contribution:
        """
        Record a new pending contribution from a client.

        Raises InvalidInput for malformed references, a missing or
        non-positive price, or an unknown kind; NotFound for an unknown
        client; Forbidden if the client is blocked.
        """
        if not is_valid_reference(product_id):
            raise InvalidInput(f"Invalid product reference: {product_id!r}")
        if not is_valid_reference(market_id):
            raise InvalidInput(f"Invalid market reference: {market_id!r}")
        parsed_price = parse_price(price)
        if parsed_price is None:
            raise InvalidInput("price must be a positive number")
        try:
            contribution_kind = ContributionKind(kind or ContributionKind.TEXT.value)
        except ValueError:
            raise InvalidInput(f"Invalid contribution kind: {kind}") from None

        now = self.clock()
        with self.db.transaction() as conn:
            client = TrustLedger.fetch_client(conn, client_id)
            if client is None:
                raise NotFound(f"Client not found: {client_id}")
            if client.trust.is_effectively_blocked(now):
                raise Forbidden("Account is blocked from contributing")

            contribution = Contribution(
                contribution_id=new_id(),
                created_ts=to_ts(now),
                client_id=client_id,
                author=client.name,
                product_id=product_id,
                market_id=market_id,
                price=parsed_price,
                note=(note or "").strip(),
                kind=contribution_kind.value,
            )
            conn.execute(
                """
                INSERT INTO contributions
                    (contribution_id, created_ts, client_id, author, product_id,
                     market_id, price, note, kind, status)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 'pending')
                """,
                (
                    contribution.contribution_id,
                    contribution.created_ts,
                    contribution.client_id,
                    contribution.author,
                    contribution.product_id,
                    contribution.market_id,
                    contribution.price,
                    contribution.note,
                    contribution.kind,
                ),
            )
            self.db.add_event(
                conn,
                EventType.CONTRIBUTION_SUBMITTED,
                "contribution",
                contribution.contribution_id,
                contribution.created_ts,
                actor_id=f"client:{client_id}",
                payload={
                    "product_id": product_id,
                    "market_id": market_id,
                    "price": parsed_price,
                },
            )

        logger.info(f"Contribution {contribution.contribution_id} submitted by client {client_id}")
        self._notify("contribution.submitted", contribution.to_dict())
        return contribution

    def get(self, contribution_id: str) -> Contribution | None:
        with self.db.read() as conn:
            return self.fetch(conn, contribution_id)

    @staticmethod
    def fetch(conn: sqlite3.Connection, contribution_id: str) -> Contribution | None:
        row = conn.execute(
            "SELECT * FROM contributions WHERE contribution_id = ?",
            (contribution_id,),
        ).fetchone()
        return Contribution(**dict(row)) if row else None

    def list(
        self,
        status: str = ContributionStatus.PENDING.value,
        limit: int | None = None,
    ) -> list[Contribution]:
        """Contributions with the given status, newest first."""
        try:
            status = ContributionStatus(status).value
        except ValueError:
            raise InvalidInput(f"Invalid status: {status}") from None

        if limit is None:
            limit = self.config.default_list_limit
        if not 1 <= limit <= self.config.max_list_limit:
            raise InvalidInput(f"limit must be between 1 and {self.config.max_list_limit}")

        with self.db.read() as conn:
            cursor = conn.execute(
                """
                SELECT * FROM contributions
                WHERE status = ?
                ORDER BY created_ts DESC, rowid DESC
                LIMIT ?
                """,
                (status, limit),
            )
            return [Contribution(**dict(row)) for row in cursor.fetchall()]

    def mark_decided(
        self,
        conn: sqlite3.Connection,
        contribution_id: str,
        status: ContributionStatus,
        moderator: str,
        now: datetime,
        reason: str | None = None,
    ) -> Contribution:
        """
        Move a pending contribution to a terminal status.

        Single conditional write guarded by ``status = 'pending'``. Raises
        NotFound if the contribution does not exist and AlreadyDecided if
        it has left pending.
        """
        cursor = conn.execute(
            """
            UPDATE contributions SET
                status = ?,
                rejection_reason = ?,
                decided_ts = ?,
                decided_by = ?
            WHERE contribution_id = ? AND status = 'pending'
            """,
            (status.value, reason, to_ts(now), moderator, contribution_id),
        )
        contribution = self.fetch(conn, contribution_id)
        if contribution is None:
            raise NotFound(f"Contribution not found: {contribution_id}")
        if cursor.rowcount == 0:
            raise AlreadyDecided(
                f"Contribution {contribution_id} is already {contribution.status}"
            )
        return contribution

    def _notify(self, event: str, payload: dict) -> None:
        try:
            self.notifier.notify(event, payload)
        except Exception:
            logger.exception(f"Notifier failed for {event}")
