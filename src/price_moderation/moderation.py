"""
Moderation engine: decisions on contributions and administrative actions on clients.

Each operation runs in a single transaction covering the state change, its
side effects on prices, trust and blacklist, and the audit event. Notifications
go out only after the transaction has committed.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from .blacklist import BlacklistRegistry
from .contributions import ContributionQueue
from .errors import InvalidInput, NotFound
from .models import (
    BlockKind,
    CatalogDatabase,
    ClientTrustState,
    Contribution,
    ContributionStatus,
    EventType,
    PriceSource,
    to_ts,
    utc_now,
)
from .notifier import Notifier, NullNotifier
from .prices import PriceTable
from .trust import TrustLedger

logger = logging.getLogger(__name__)

DEFAULT_REJECTION_REASON = "Incorrect price"
MAX_BLOCK_DAYS = 3650
DEFAULT_BLOCK_REASON = "Blocked by administrator"


@dataclass
class ModerationResult:
    """Outcome of a decision on a contribution."""

    contribution: Contribution
    trust_state: ClientTrustState | None = None
    auto_blocked: bool = False

    def to_dict(self) -> dict:
        return {
            "contribution": self.contribution.to_dict(),
            "trust_state": self.trust_state.to_dict() if self.trust_state else None,
            "auto_blocked": self.auto_blocked,
        }


class ModerationEngine:
    """Approve/reject contributions; block, unblock and terminate clients."""

    def __init__(
        self,
        db: CatalogDatabase,
        queue: ContributionQueue,
        trust: TrustLedger,
        blacklist: BlacklistRegistry,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.queue = queue
        self.trust = trust
        self.blacklist = blacklist
        self.notifier = notifier or NullNotifier()
        self.clock = clock

    # -------------------------------------------------------------------------
    # Contribution decisions
    # -------------------------------------------------------------------------

    def approve(self, contribution_id: str, moderator: str) -> ModerationResult:
        """
        Approve a pending contribution.

        The contribution price becomes the current price for its
        (product, market) and the client's error streak resets.
        """
        now = self.clock()
        with self.db.transaction() as conn:
            contribution = self.queue.mark_decided(
                conn, contribution_id, ContributionStatus.APPROVED, moderator, now
            )
            PriceTable.upsert(
                conn,
                contribution.product_id,
                contribution.market_id,
                contribution.price,
                PriceSource.CLIENT,
                contribution.author,
                now,
            )
            trust_state = self.trust.record_approval(conn, contribution.client_id)
            self.db.add_event(
                conn,
                EventType.CONTRIBUTION_APPROVED,
                "contribution",
                contribution_id,
                to_ts(now),
                actor_id=moderator,
                payload={
                    "client_id": contribution.client_id,
                    "product_id": contribution.product_id,
                    "market_id": contribution.market_id,
                    "price": contribution.price,
                },
            )

        if trust_state is None:
            logger.warning(f"Client {contribution.client_id} no longer exists; trust update skipped")
        logger.info(f"Contribution {contribution_id} approved by {moderator}")

        result = ModerationResult(contribution, trust_state, False)
        self._notify("contribution.approved", result.to_dict())
        return result

    def reject(
        self,
        contribution_id: str,
        moderator: str,
        reason: str | None = None,
    ) -> ModerationResult:
        """
        Reject a pending contribution.

        No price is written. The client's streak grows by one and the client
        is blocked automatically once the streak reaches the threshold.
        """
        reason = (reason or "").strip() or DEFAULT_REJECTION_REASON
        now = self.clock()
        with self.db.transaction() as conn:
            contribution = self.queue.mark_decided(
                conn, contribution_id, ContributionStatus.REJECTED, moderator, now, reason
            )
            trust_state, auto_blocked = self.trust.record_rejection(
                conn, contribution.client_id, reason, now
            )
            self.db.add_event(
                conn,
                EventType.CONTRIBUTION_REJECTED,
                "contribution",
                contribution_id,
                to_ts(now),
                actor_id=moderator,
                payload={"client_id": contribution.client_id, "reason": reason},
            )
            if auto_blocked:
                self.db.add_event(
                    conn,
                    EventType.CLIENT_AUTO_BLOCKED,
                    "client",
                    contribution.client_id,
                    to_ts(now),
                    payload={"reason": trust_state.block_reason},
                )

        if trust_state is None:
            logger.warning(f"Client {contribution.client_id} no longer exists; trust update skipped")
        logger.info(f"Contribution {contribution_id} rejected by {moderator}: {reason}")

        result = ModerationResult(contribution, trust_state, auto_blocked)
        self._notify("contribution.rejected", result.to_dict())
        if auto_blocked:
            self._notify(
                "client.blocked",
                {
                    "client_id": contribution.client_id,
                    "block_kind": BlockKind.AUTOMATIC.value,
                    "reason": trust_state.block_reason,
                },
            )
        return result

    # -------------------------------------------------------------------------
    # Administrative client actions
    # -------------------------------------------------------------------------

    def block_temporary(
        self,
        client_id: str,
        days: int,
        reason: str,
        moderator: str,
    ) -> ClientTrustState:
        """Block a client for a number of days. Re-applying replaces the expiry."""
        if isinstance(days, bool) or not isinstance(days, int):
            raise InvalidInput("days must be an integer")
        if not 1 <= days <= MAX_BLOCK_DAYS:
            raise InvalidInput(f"days must be between 1 and {MAX_BLOCK_DAYS}")

        now = self.clock()
        expires = now + timedelta(days=days)
        reason = (reason or "").strip() or f"Temporary block for {days} days"
        return self._block(client_id, BlockKind.TEMPORARY, reason, moderator, now, expires)

    def block_permanent(self, client_id: str, reason: str, moderator: str) -> ClientTrustState:
        return self._block(client_id, BlockKind.PERMANENT, reason, moderator, self.clock())

    def _block(
        self,
        client_id: str,
        kind: BlockKind,
        reason: str,
        moderator: str,
        now: datetime,
        expires: datetime | None = None,
    ) -> ClientTrustState:
        reason = (reason or "").strip() or DEFAULT_BLOCK_REASON
        with self.db.transaction() as conn:
            state = self.trust.set_block(conn, client_id, kind, reason, now, expires)
            if state is None:
                raise NotFound(f"Client not found: {client_id}")
            self.db.add_event(
                conn,
                EventType.CLIENT_BLOCKED,
                "client",
                client_id,
                to_ts(now),
                actor_id=moderator,
                payload={
                    "block_kind": kind.value,
                    "reason": reason,
                    "expires_ts": state.block_expires_ts,
                },
            )

        logger.info(f"Client {client_id} blocked ({kind.value}) by {moderator}")
        self._notify(
            "client.blocked",
            {
                "client_id": client_id,
                "block_kind": kind.value,
                "reason": reason,
                "expires_ts": state.block_expires_ts,
            },
        )
        return state

    def unblock(self, client_id: str, moderator: str) -> ClientTrustState:
        """Lift any block and reset the streak. Blacklist entries are not touched."""
        now = self.clock()
        with self.db.transaction() as conn:
            state = self.trust.clear_block(conn, client_id)
            if state is None:
                raise NotFound(f"Client not found: {client_id}")
            self.db.add_event(
                conn,
                EventType.CLIENT_UNBLOCKED,
                "client",
                client_id,
                to_ts(now),
                actor_id=moderator,
            )

        logger.info(f"Client {client_id} unblocked by {moderator}")
        self._notify("client.unblocked", {"client_id": client_id})
        return state

    def terminate(self, client_id: str, reason: str, moderator: str):
        """
        Delete a client and blacklist its contact identifier.

        Both happen in one transaction. Returns the blacklist entry, or None
        when the client had no usable contact identifier.
        """
        reason = (reason or "").strip()
        now = self.clock()
        with self.db.transaction() as conn:
            client = self.trust.fetch_client(conn, client_id)
            if client is None:
                raise NotFound(f"Client not found: {client_id}")

            conn.execute("DELETE FROM clients WHERE client_id = ?", (client_id,))
            entry = self.blacklist.add(conn, client.phone, reason, now, client_id=client_id)
            self.db.add_event(
                conn,
                EventType.CLIENT_TERMINATED,
                "client",
                client_id,
                to_ts(now),
                actor_id=moderator,
                payload={"login": client.login, "reason": reason},
            )
            if entry is not None:
                self.db.add_event(
                    conn,
                    EventType.BLACKLIST_ADDED,
                    "blacklist_entry",
                    entry.entry_id,
                    to_ts(now),
                    actor_id=moderator,
                    payload={"contact_key": entry.contact_key, "expires_ts": entry.expires_ts},
                )

        if entry is None:
            logger.warning(f"Client {client_id} terminated without a contact to blacklist")
        logger.info(f"Client {client_id} terminated by {moderator}")

        self._notify(
            "client.terminated",
            {
                "client_id": client_id,
                "reason": reason,
                "blacklist_entry": entry.to_dict() if entry else None,
            },
        )
        return entry

    def _notify(self, event: str, payload: dict) -> None:
        try:
            self.notifier.notify(event, payload)
        except Exception:
            logger.exception(f"Notifier failed for {event}")
