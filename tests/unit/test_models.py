"""Tests for records, timestamps and the database helper."""

from datetime import UTC, datetime, timedelta, timezone

import pytest

from price_moderation.errors import Unavailable
from price_moderation.models import (
    CatalogDatabase,
    ClientTrustState,
    EventType,
    parse_ts,
    to_ts,
)

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


class TestTimestamps:
    def test_fixed_width_utc(self):
        assert to_ts(NOW) == "2025-03-01T12:00:00.000000+00:00"

    def test_other_timezones_converted(self):
        local = datetime(2025, 3, 1, 9, 0, tzinfo=timezone(timedelta(hours=-3)))

        assert to_ts(local) == to_ts(NOW)

    def test_lexicographic_order_matches_time_order(self):
        earlier = to_ts(NOW)
        later = to_ts(NOW + timedelta(microseconds=1))

        assert earlier < later

    def test_parse_roundtrip(self):
        assert parse_ts(to_ts(NOW)) == NOW
        assert parse_ts(None) is None


class TestTrustState:
    """Tests for effective block evaluation."""

    def test_not_blocked(self):
        assert ClientTrustState().is_effectively_blocked(NOW) is False

    @pytest.mark.parametrize("kind", ["automatic", "permanent"])
    def test_open_ended_blocks(self, kind):
        state = ClientTrustState(blocked=True, block_kind=kind)

        assert state.is_effectively_blocked(NOW + timedelta(days=10000)) is True

    def test_temporary_block_lapses(self):
        state = ClientTrustState(
            blocked=True,
            block_kind="temporary",
            block_expires_ts=to_ts(NOW + timedelta(days=1)),
        )

        assert state.is_effectively_blocked(NOW) is True
        assert state.is_effectively_blocked(NOW + timedelta(days=1)) is False


class TestCatalogDatabase:
    """Tests for transactions and error mapping."""

    def test_transaction_rolls_back_on_error(self, db_path):
        db = CatalogDatabase(db_path)

        with pytest.raises(ValueError), db.transaction() as conn:
            db.add_event(conn, EventType.PRICE_SET, "price_entry", "p:m", to_ts(NOW))
            raise ValueError("boom")

        assert db.get_events() == []

    def test_events_newest_first(self, db_path):
        db = CatalogDatabase(db_path)
        with db.transaction() as conn:
            db.add_event(conn, EventType.PRICE_SET, "price_entry", "a", to_ts(NOW))
            db.add_event(
                conn,
                EventType.PRICE_SET,
                "price_entry",
                "b",
                to_ts(NOW + timedelta(seconds=1)),
                payload={"price": 1.0},
            )

        events = db.get_events()

        assert [e.subject_id for e in events] == ["b", "a"]
        assert events[0].to_dict()["payload"] == {"price": 1.0}
        assert events[1].payload is None

    def test_unreachable_database(self, tmp_path):
        """A path that cannot be opened as a database surfaces as Unavailable."""
        db = CatalogDatabase(tmp_path)

        with pytest.raises(Unavailable), db.transaction():
            pass
