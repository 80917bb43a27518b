"""
Data models and database plumbing for the price moderation core.
"""

import json
import secrets
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path

from .errors import Unavailable


class ContributionStatus(str, Enum):
    """Moderation status of a contribution. Approved and rejected are terminal."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ContributionKind(str, Enum):
    """How the client captured the observed price."""

    TEXT = "text"
    PHOTO = "photo"
    QR = "qr"
    REPORT = "report"


class PriceSource(str, Enum):
    """Who wrote the current price entry."""

    ADMIN = "admin"
    CLIENT = "client"
    MARKET = "market"


class BlockKind(str, Enum):
    """Why a client is blocked."""

    NONE = "none"
    AUTOMATIC = "automatic"
    TEMPORARY = "temporary"
    PERMANENT = "permanent"


class EventType(str, Enum):
    """Types of events in the moderation audit trail."""

    CONTRIBUTION_SUBMITTED = "contribution_submitted"
    CONTRIBUTION_APPROVED = "contribution_approved"
    CONTRIBUTION_REJECTED = "contribution_rejected"

    CLIENT_REGISTERED = "client_registered"
    CLIENT_AUTO_BLOCKED = "client_auto_blocked"
    CLIENT_BLOCKED = "client_blocked"
    CLIENT_UNBLOCKED = "client_unblocked"
    CLIENT_TERMINATED = "client_terminated"

    BLACKLIST_ADDED = "blacklist_added"
    BLACKLIST_RELEASED = "blacklist_released"
    BLACKLIST_SWEPT = "blacklist_swept"

    PRICE_SET = "price_set"


SYSTEM_ACTOR = "system:price-moderation"

# Upper bound for admin listings (clients, audit events)
MAX_LIST_LIMIT = 500


# -----------------------------------------------------------------------------
# Timestamps
# -----------------------------------------------------------------------------


def utc_now() -> datetime:
    """Default clock."""
    return datetime.now(UTC)


def to_ts(dt: datetime) -> str:
    """Format a datetime as a fixed-width UTC ISO string (sorts lexicographically)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat(timespec="microseconds")


def parse_ts(value: str | None) -> datetime | None:
    """Parse a stored timestamp back into an aware datetime."""
    if not value:
        return None
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def new_id() -> str:
    return secrets.token_hex(16)


# -----------------------------------------------------------------------------
# Records
# -----------------------------------------------------------------------------


@dataclass
class Contribution:
    """A client-submitted price observation."""

    contribution_id: str
    created_ts: str
    client_id: str
    author: str
    product_id: str
    market_id: str
    price: float
    note: str = ""
    kind: str = ContributionKind.TEXT.value
    status: str = ContributionStatus.PENDING.value
    rejection_reason: str | None = None
    decided_ts: str | None = None
    decided_by: str | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == ContributionStatus.PENDING.value

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class PriceEntry:
    """Authoritative current price for a product at a market."""

    product_id: str
    market_id: str
    price: float
    source: str
    author: str
    updated_ts: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ClientTrustState:
    """Approval/rejection bookkeeping embedded in the client record."""

    consecutive_errors: int = 0
    total_approved: int = 0
    total_rejected: int = 0
    blocked: bool = False
    block_kind: str = BlockKind.NONE.value
    block_reason: str = ""
    blocked_ts: str | None = None
    block_expires_ts: str | None = None

    def is_effectively_blocked(self, now: datetime) -> bool:
        """
        Check whether the block is in force at ``now``.

        A temporary block stops applying once its expiry has passed, even
        though the stored flag is only cleared by an administrator.
        """
        if not self.blocked:
            return False
        if self.block_kind == BlockKind.TEMPORARY.value:
            expires = parse_ts(self.block_expires_ts)
            return expires is None or expires > now
        return True

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Client:
    """A registered client account."""

    client_id: str
    created_ts: str
    name: str
    login: str
    email: str
    password_hash: str
    phone: str = ""
    contact_key: str = ""

    consecutive_errors: int = 0
    total_approved: int = 0
    total_rejected: int = 0
    blocked: bool = False
    block_kind: str = BlockKind.NONE.value
    block_reason: str = ""
    blocked_ts: str | None = None
    block_expires_ts: str | None = None

    def __post_init__(self):
        self.blocked = bool(self.blocked)

    @property
    def trust(self) -> ClientTrustState:
        return ClientTrustState(
            consecutive_errors=self.consecutive_errors,
            total_approved=self.total_approved,
            total_rejected=self.total_rejected,
            blocked=self.blocked,
            block_kind=self.block_kind,
            block_reason=self.block_reason,
            blocked_ts=self.blocked_ts,
            block_expires_ts=self.block_expires_ts,
        )

    def to_public_dict(self) -> dict:
        """Client fields safe to return over the API (no password hash)."""
        data = asdict(self)
        data.pop("password_hash")
        return data


@dataclass
class BlacklistEntry:
    """A time-bounded re-registration block for a contact identifier."""

    entry_id: str
    contact_key: str
    activated_ts: str
    expires_ts: str
    reason: str = ""
    client_id: str | None = None
    active: bool = True
    released_ts: str | None = None
    released_by: str | None = None

    def __post_init__(self):
        self.active = bool(self.active)

    def blocks_at(self, now: datetime) -> bool:
        """True while the entry is active and not yet expired."""
        return self.active and parse_ts(self.expires_ts) > now

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ModerationEvent:
    """An audit log entry."""

    event_id: str
    ts: str
    actor_id: str
    event_type: str
    subject_type: str
    subject_id: str
    payload_json: str | None = None

    @property
    def payload(self) -> dict | None:
        """Parse payload_json."""
        if self.payload_json:
            return json.loads(self.payload_json)
        return None

    def to_dict(self) -> dict:
        data = asdict(self)
        data.pop("payload_json")
        data["payload"] = self.payload
        return data


# -----------------------------------------------------------------------------
# Database
# -----------------------------------------------------------------------------


class CatalogDatabase:
    """
    Connection handling for the catalog database.

    Every write goes through ``transaction()``, which takes SQLite's write
    lock up front (BEGIN IMMEDIATE) so a decision and all of its side effects
    commit or roll back together. Connectivity failures surface as
    ``Unavailable``.
    """

    def __init__(self, db_path: Path, timeout: float = 30.0):
        self.db_path = Path(db_path)
        self.timeout = timeout

    def _connect(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(self.db_path, timeout=self.timeout, isolation_level=None)
        except sqlite3.OperationalError as e:
            raise Unavailable(f"Cannot open database {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def read(self) -> Iterator[sqlite3.Connection]:
        """Connection for read-only queries."""
        conn = self._connect()
        try:
            yield conn
        except sqlite3.OperationalError as e:
            raise Unavailable(f"Database unavailable: {e}") from e
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Connection inside an immediate write transaction."""
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.execute("COMMIT")
        except BaseException as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            if isinstance(e, sqlite3.OperationalError):
                raise Unavailable(f"Database unavailable: {e}") from e
            raise
        finally:
            conn.close()

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    @staticmethod
    def add_event(
        conn: sqlite3.Connection,
        event_type: EventType,
        subject_type: str,
        subject_id: str,
        ts: str,
        actor_id: str = SYSTEM_ACTOR,
        payload: dict | None = None,
    ) -> str:
        """Add an event to the audit trail within the caller's transaction."""
        event_id = new_id()
        conn.execute(
            """
            INSERT INTO moderation_events
                (event_id, ts, actor_id, event_type, subject_type, subject_id, payload_json)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event_id,
                ts,
                actor_id,
                event_type.value,
                subject_type,
                subject_id,
                json.dumps(payload) if payload else None,
            ),
        )
        return event_id

    def get_events(
        self,
        subject_type: str | None = None,
        subject_id: str | None = None,
        limit: int = 200,
    ) -> list[ModerationEvent]:
        """Get audit events, newest first, optionally for one subject."""
        clauses = []
        params: list = []
        if subject_type:
            clauses.append("subject_type = ?")
            params.append(subject_type)
        if subject_id:
            clauses.append("subject_id = ?")
            params.append(subject_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)

        with self.read() as conn:
            cursor = conn.execute(
                f"SELECT * FROM moderation_events {where} ORDER BY ts DESC, rowid DESC LIMIT ?",
                params,
            )
            return [ModerationEvent(**dict(row)) for row in cursor.fetchall()]
