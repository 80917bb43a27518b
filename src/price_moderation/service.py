"""
CatalogService: the single entry point to the moderation core.

Wires the components together over one database and one clock. The
Datasette plugin and the CLI runner both go through this class.
"""

from collections.abc import Callable
from datetime import datetime

from .blacklist import BlacklistRegistry
from .clients import ClientAccounts
from .config import ModerationConfig
from .contributions import ContributionQueue
from .errors import InvalidInput, NotFound
from .models import (
    MAX_LIST_LIMIT,
    BlacklistEntry,
    BlockKind,
    CatalogDatabase,
    Client,
    ClientTrustState,
    Contribution,
    ContributionStatus,
    ModerationEvent,
    PriceEntry,
    utc_now,
)
from .moderation import ModerationEngine, ModerationResult
from .notifier import Notifier, build_notifier
from .prices import PriceTable
from .sweeper import ExpirySweeper, SweepResult
from .trust import TrustLedger


class CatalogService:
    """Facade over the contribution, trust, blacklist and price components."""

    def __init__(
        self,
        config: ModerationConfig,
        db: CatalogDatabase | None = None,
        clock: Callable[[], datetime] | None = None,
        notifier: Notifier | None = None,
    ):
        self.config = config
        self.db = db or CatalogDatabase(config.db_path)
        self.clock = clock or utc_now
        self.notifier = notifier or build_notifier(config.notifier)

        self.trust = TrustLedger(config.trust)
        self.blacklist = BlacklistRegistry(self.db, config.blacklist, self.clock)
        self.prices = PriceTable(self.db, self.clock)
        self.clients = ClientAccounts(self.db, self.blacklist, self.clock)
        self.contributions = ContributionQueue(
            self.db, config.contributions, self.notifier, self.clock
        )
        self.moderation = ModerationEngine(
            self.db,
            self.contributions,
            self.trust,
            self.blacklist,
            self.notifier,
            self.clock,
        )
        self.sweeper = ExpirySweeper(self.db, self.blacklist, self.clock)

    @classmethod
    def from_config(
        cls,
        config: ModerationConfig,
        clock: Callable[[], datetime] | None = None,
        notifier: Notifier | None = None,
    ) -> "CatalogService":
        return cls(config, clock=clock, notifier=notifier)

    # -------------------------------------------------------------------------
    # Contributions
    # -------------------------------------------------------------------------

    def submit_contribution(
        self,
        client_id: str,
        product_id: str,
        market_id: str,
        price,
        note: str = "",
        kind: str = "text",
    ) -> Contribution:
        return self.contributions.submit(client_id, product_id, market_id, price, note, kind)

    def list_pending_contributions(self, limit: int | None = None) -> list[Contribution]:
        return self.contributions.list(ContributionStatus.PENDING.value, limit)

    def list_contributions(self, status: str, limit: int | None = None) -> list[Contribution]:
        return self.contributions.list(status, limit)

    def get_contribution(self, contribution_id: str) -> Contribution | None:
        return self.contributions.get(contribution_id)

    def approve_contribution(self, contribution_id: str, moderator: str) -> ModerationResult:
        return self.moderation.approve(contribution_id, moderator)

    def reject_contribution(
        self,
        contribution_id: str,
        moderator: str,
        reason: str | None = None,
    ) -> ModerationResult:
        return self.moderation.reject(contribution_id, moderator, reason)

    # -------------------------------------------------------------------------
    # Clients
    # -------------------------------------------------------------------------

    def register_client(
        self,
        name: str,
        login: str,
        email: str,
        phone: str,
        password_hash: str,
    ) -> Client:
        return self.clients.register(name, login, email, phone, password_hash)

    def get_client(self, client_id: str) -> Client | None:
        return self.clients.get(client_id)

    def list_clients(self, blocked_only: bool = False, limit: int = 200) -> list[Client]:
        return self.clients.list(blocked_only, limit)

    def get_client_by_login(self, login: str) -> Client | None:
        return self.clients.get_by_login(login)

    def check_login_allowed(self, client: Client) -> None:
        self.clients.check_login_allowed(client)

    def block_client(
        self,
        client_id: str,
        kind: str,
        moderator: str,
        reason: str = "",
        days: int | None = None,
    ) -> ClientTrustState:
        """Administrative block. ``kind`` is ``temporary`` (needs ``days``) or ``permanent``."""
        if kind == BlockKind.TEMPORARY.value:
            if days is None:
                raise InvalidInput("days is required for a temporary block")
            return self.moderation.block_temporary(client_id, days, reason, moderator)
        if kind == BlockKind.PERMANENT.value:
            return self.moderation.block_permanent(client_id, reason, moderator)
        raise InvalidInput(f"Invalid block kind: {kind}")

    def unblock_client(self, client_id: str, moderator: str) -> ClientTrustState:
        return self.moderation.unblock(client_id, moderator)

    def terminate_client(
        self,
        client_id: str,
        moderator: str,
        reason: str = "",
    ) -> BlacklistEntry | None:
        return self.moderation.terminate(client_id, reason, moderator)

    # -------------------------------------------------------------------------
    # Blacklist
    # -------------------------------------------------------------------------

    def is_contact_blacklisted(self, contact: str | None) -> bool:
        return self.blacklist.is_blocked(contact)

    def get_blacklist_entry(self, entry_id: str) -> BlacklistEntry:
        entry = self.blacklist.get(entry_id)
        if entry is None:
            raise NotFound(f"Blacklist entry not found: {entry_id}")
        return entry

    def list_blacklist_entries(self, active_only: bool = True) -> list[BlacklistEntry]:
        return self.blacklist.list_entries(active_only=active_only)

    def release_blacklist_entry(self, entry_id: str, moderator: str) -> BlacklistEntry:
        return self.blacklist.release(entry_id, moderator)

    def run_expiry_sweep(self) -> SweepResult:
        return self.sweeper.run_once()

    # -------------------------------------------------------------------------
    # Prices and audit trail
    # -------------------------------------------------------------------------

    def set_price(
        self,
        product_id: str,
        market_id: str,
        price,
        source: str,
        author: str,
    ) -> PriceEntry:
        return self.prices.set_price(product_id, market_id, price, source, author)

    def get_price(self, product_id: str, market_id: str) -> PriceEntry | None:
        return self.prices.get(product_id, market_id)

    def list_prices(self, product_id: str) -> list[PriceEntry]:
        return self.prices.list_for_product(product_id)

    def get_events(
        self,
        subject_type: str | None = None,
        subject_id: str | None = None,
        limit: int = 200,
    ) -> list[ModerationEvent]:
        """Audit events, newest first, optionally for one subject."""
        if not 1 <= limit <= MAX_LIST_LIMIT:
            raise InvalidInput(f"limit must be between 1 and {MAX_LIST_LIMIT}")
        return self.db.get_events(subject_type, subject_id, limit)
