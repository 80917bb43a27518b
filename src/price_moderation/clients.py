"""
Client accounts: registration and login eligibility.
"""

import logging
import sqlite3
from collections.abc import Callable
from datetime import datetime

from .blacklist import BlacklistRegistry
from .contacts import normalize_contact
from .errors import Conflict, Forbidden, InvalidInput
from .models import (
    MAX_LIST_LIMIT,
    BlockKind,
    CatalogDatabase,
    Client,
    EventType,
    new_id,
    parse_ts,
    to_ts,
    utc_now,
)

logger = logging.getLogger(__name__)


class ClientAccounts:
    """Creates and looks up client records."""

    def __init__(
        self,
        db: CatalogDatabase,
        blacklist: BlacklistRegistry,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.blacklist = blacklist
        self.clock = clock

    def register(
        self,
        name: str,
        login: str,
        email: str,
        phone: str,
        password_hash: str,
    ) -> Client:
        """
        Create a client account.

        Refused with Conflict while the phone number is blacklisted, or when
        the login or email is already taken.
        """
        name = (name or "").strip()
        login = (login or "").strip().lower()
        email = (email or "").strip().lower()
        phone = (phone or "").strip()

        missing = [
            field
            for field, value in (("name", name), ("login", login), ("email", email), ("phone", phone))
            if not value
        ]
        if missing:
            raise InvalidInput(f"Missing required fields: {', '.join(missing)}")
        if not password_hash:
            raise InvalidInput("password is required")

        contact_key = normalize_contact(phone)
        if not contact_key:
            raise InvalidInput("phone must contain digits")
        if self.blacklist.is_blocked(phone):
            raise Conflict("This phone number is blocked from registering")

        now = self.clock()
        client = Client(
            client_id=new_id(),
            created_ts=to_ts(now),
            name=name,
            login=login,
            email=email,
            phone=phone,
            contact_key=contact_key,
            password_hash=password_hash,
        )
        try:
            with self.db.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO clients
                        (client_id, created_ts, name, login, email, phone,
                         contact_key, password_hash)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        client.client_id,
                        client.created_ts,
                        client.name,
                        client.login,
                        client.email,
                        client.phone,
                        client.contact_key,
                        client.password_hash,
                    ),
                )
                self.db.add_event(
                    conn,
                    EventType.CLIENT_REGISTERED,
                    "client",
                    client.client_id,
                    client.created_ts,
                    actor_id=f"client:{client.client_id}",
                    payload={"login": login},
                )
        except sqlite3.IntegrityError:
            raise Conflict("A client with this login or email already exists") from None

        logger.info(f"Client {client.client_id} registered as {login}")
        return client

    def get(self, client_id: str) -> Client | None:
        with self.db.read() as conn:
            row = conn.execute(
                "SELECT * FROM clients WHERE client_id = ?",
                (client_id,),
            ).fetchone()
        return Client(**dict(row)) if row else None

    def get_by_login(self, login: str) -> Client | None:
        with self.db.read() as conn:
            row = conn.execute(
                "SELECT * FROM clients WHERE login = ?",
                ((login or "").strip().lower(),),
            ).fetchone()
        return Client(**dict(row)) if row else None

    def list(self, blocked_only: bool = False, limit: int = 200) -> list[Client]:
        """Clients newest first. ``blocked_only`` keeps those with the stored block flag set."""
        if not 1 <= limit <= MAX_LIST_LIMIT:
            raise InvalidInput(f"limit must be between 1 and {MAX_LIST_LIMIT}")

        where = "WHERE blocked = 1" if blocked_only else ""
        with self.db.read() as conn:
            cursor = conn.execute(
                f"SELECT * FROM clients {where} ORDER BY created_ts DESC, rowid DESC LIMIT ?",
                (limit,),
            )
            return [Client(**dict(row)) for row in cursor.fetchall()]

    def check_login_allowed(self, client: Client) -> None:
        """
        Raise Forbidden if the client may not log in.

        Permanent blocks always refuse login and temporary blocks refuse it
        until they expire. Automatic blocks still allow login so the client
        can see why submissions are refused.
        """
        if not client.blocked:
            return
        if client.block_kind == BlockKind.PERMANENT.value:
            raise Forbidden("Account is permanently blocked")
        if client.block_kind == BlockKind.TEMPORARY.value:
            expires = parse_ts(client.block_expires_ts)
            if expires is None or expires > self.clock():
                raise Forbidden(f"Account is blocked until {client.block_expires_ts}")
