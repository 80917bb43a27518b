"""Unit tests for the contribution queue."""

import pytest

from price_moderation.errors import Forbidden, InvalidInput, NotFound


class TestSubmit:
    """Tests for contribution submission."""

    def test_submit_creates_pending_contribution(self, service, make_client, notifier):
        client = make_client(name="Ana Souza")

        contribution = service.submit_contribution(client.client_id, "rice-5kg", "market-1", "21,90")

        assert contribution.status == "pending"
        assert contribution.price == 21.9
        assert contribution.author == "Ana Souza"
        assert contribution.kind == "text"

        stored = service.get_contribution(contribution.contribution_id)
        assert stored == contribution
        assert notifier.names == ["contribution.submitted"]

    def test_submit_records_event(self, service, make_client):
        client = make_client()
        contribution = service.submit_contribution(client.client_id, "p1", "m1", 3.5)

        events = service.get_events("contribution", contribution.contribution_id)
        assert [e.event_type for e in events] == ["contribution_submitted"]
        assert events[0].actor_id == f"client:{client.client_id}"
        assert events[0].payload["price"] == 3.5

    def test_submit_with_kind_and_note(self, service, make_client):
        client = make_client()
        contribution = service.submit_contribution(
            client.client_id, "p1", "m1", 2, note="  promo  ", kind="photo"
        )

        assert contribution.kind == "photo"
        assert contribution.note == "promo"

    def test_unknown_client(self, service):
        with pytest.raises(NotFound):
            service.submit_contribution("no-such-client", "p1", "m1", 1.0)

    @pytest.mark.parametrize("price", [None, "", "abc", 0, -2, "nan"])
    def test_invalid_price(self, service, make_client, price):
        client = make_client()

        with pytest.raises(InvalidInput):
            service.submit_contribution(client.client_id, "p1", "m1", price)

        assert service.list_pending_contributions() == []

    @pytest.mark.parametrize("product_id,market_id", [("", "m1"), ("p1", ""), ("bad id", "m1")])
    def test_invalid_references(self, service, make_client, product_id, market_id):
        client = make_client()

        with pytest.raises(InvalidInput):
            service.submit_contribution(client.client_id, product_id, market_id, 1.0)

    def test_invalid_kind(self, service, make_client):
        client = make_client()

        with pytest.raises(InvalidInput):
            service.submit_contribution(client.client_id, "p1", "m1", 1.0, kind="video")

    def test_blocked_client_forbidden(self, service, make_client, notifier):
        client = make_client()
        service.block_client(client.client_id, "permanent", "admin:admin", reason="spam")

        with pytest.raises(Forbidden):
            service.submit_contribution(client.client_id, "p1", "m1", 1.0)

        assert service.list_pending_contributions() == []
        assert "contribution.submitted" not in notifier.names

    def test_active_temporary_block_forbidden(self, service, make_client, clock):
        client = make_client()
        service.block_client(client.client_id, "temporary", "admin:admin", days=3)

        clock.advance(days=2)
        with pytest.raises(Forbidden):
            service.submit_contribution(client.client_id, "p1", "m1", 1.0)

    def test_lapsed_temporary_block_allows_submission(self, service, make_client, clock):
        client = make_client()
        service.block_client(client.client_id, "temporary", "admin:admin", days=3)

        clock.advance(days=3, seconds=1)
        contribution = service.submit_contribution(client.client_id, "p1", "m1", 1.0)

        assert contribution.status == "pending"


class TestList:
    """Tests for listing the moderation queue."""

    def test_newest_first(self, service, make_client, clock):
        client = make_client()
        first = service.submit_contribution(client.client_id, "p1", "m1", 1.0)
        clock.advance(minutes=1)
        second = service.submit_contribution(client.client_id, "p2", "m1", 2.0)

        pending = service.list_pending_contributions()

        assert [c.contribution_id for c in pending] == [
            second.contribution_id,
            first.contribution_id,
        ]

    def test_decided_contributions_leave_pending_list(self, service, make_client):
        client = make_client()
        kept = service.submit_contribution(client.client_id, "p1", "m1", 1.0)
        decided = service.submit_contribution(client.client_id, "p2", "m1", 2.0)
        service.approve_contribution(decided.contribution_id, "admin:admin")

        assert [c.contribution_id for c in service.list_pending_contributions()] == [
            kept.contribution_id
        ]
        assert [c.contribution_id for c in service.list_contributions("approved")] == [
            decided.contribution_id
        ]

    def test_limit(self, service, make_client, clock):
        client = make_client()
        for i in range(3):
            service.submit_contribution(client.client_id, f"p{i}", "m1", 1.0)
            clock.advance(seconds=1)

        assert len(service.list_pending_contributions(limit=2)) == 2

    @pytest.mark.parametrize("limit", [0, -1, 501])
    def test_limit_out_of_range(self, service, limit):
        with pytest.raises(InvalidInput):
            service.list_pending_contributions(limit=limit)

    def test_invalid_status(self, service):
        with pytest.raises(InvalidInput):
            service.list_contributions("archived")

    def test_get_missing(self, service):
        assert service.get_contribution("missing") is None
