"""Shared pytest fixtures for price catalog tests."""

from datetime import UTC, datetime, timedelta

import pytest
from datasette.app import Datasette

from datasette_price_catalog.auth import hash_password
from datasette_price_catalog.migrations import run_migrations
from price_moderation.config import ModerationConfig
from price_moderation.notifier import Notifier
from price_moderation.service import CatalogService


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime | None = None):
        self.now = now or datetime(2025, 3, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingNotifier(Notifier):
    """Keeps every notification in memory."""

    def __init__(self):
        self.events: list[tuple[str, dict]] = []

    def notify(self, event, payload):
        self.events.append((event, payload))

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self.events]


@pytest.fixture
def db_path(tmp_path):
    """Create a temporary database with full schema via migrations.

    This is the canonical way to get a test database - uses the same
    migration system as production.
    """
    db_file = tmp_path / "test_catalog.db"
    run_migrations(db_file, verbose=False)
    return db_file


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def config(db_path):
    return ModerationConfig(db_path=db_path)


@pytest.fixture
def service(config, clock, notifier):
    return CatalogService.from_config(config, clock=clock, notifier=notifier)


@pytest.fixture
def make_client(service):
    """Factory registering a client through the service."""
    counter = {"n": 0}

    def _make(phone: str | None = None, name: str = "Maria Silva", password: str = "secret123"):
        counter["n"] += 1
        n = counter["n"]
        return service.register_client(
            name,
            f"client{n}",
            f"client{n}@example.com",
            phone or f"+55 (11) 90000-{n:04d}",
            hash_password(password),
        )

    return _make


@pytest.fixture
def datasette(db_path):
    """Create a Datasette instance with the plugin configured."""
    db_name = db_path.stem

    return Datasette(
        [str(db_path)],
        metadata={
            # Raw tables are for administrators only; clients use the JSON routes
            "databases": {
                db_name: {
                    "allow": {"principal_type": "admin"},
                }
            },
            "plugins": {
                "datasette-price-catalog": {
                    "catalog_db_path": str(db_path),
                }
            },
        },
    )


@pytest.fixture
def admin_cookie(datasette):
    """Signed actor cookie for an administrator."""
    actor = {
        "id": "admin:admin",
        "principal_type": "admin",
        "principal_id": "admin",
        "display": "Administrator",
    }
    return datasette.sign({"a": actor}, "actor")


@pytest.fixture
def client_cookie(datasette):
    """Factory for a signed actor cookie for a client record."""

    def _cookie(client):
        actor = {
            "id": f"client:{client.client_id}",
            "principal_type": "client",
            "principal_id": client.client_id,
            "display": client.name,
        }
        return datasette.sign({"a": actor}, "actor")

    return _cookie
