"""Unit tests for the blacklist registry."""

import pytest

from datasette_price_catalog.auth import hash_password
from price_moderation.errors import Conflict, NotFound


@pytest.fixture
def terminated_entry(service, make_client):
    client = make_client(phone="(75) 98888-7777")
    return service.terminate_client(client.client_id, "admin:admin", reason="fake prices")


class TestIsBlocked:
    """Tests for blacklist lookups."""

    @pytest.mark.parametrize(
        "contact",
        ["(75) 98888-7777", "75988887777", "75 98888 7777", "75.98888.7777", " 7598888-7777 "],
    )
    def test_formatting_variants_blocked(self, service, terminated_entry, contact):
        assert service.is_contact_blacklisted(contact) is True

    def test_other_number_not_blocked(self, service, terminated_entry):
        assert service.is_contact_blacklisted("(75) 98888-7778") is False

    @pytest.mark.parametrize("contact", [None, "", "   ", "n/a"])
    def test_blank_contacts_never_blocked(self, service, terminated_entry, contact):
        assert service.is_contact_blacklisted(contact) is False

    def test_expiry_without_sweep(self, service, terminated_entry, clock):
        """Expired entries stop blocking even though they are still flagged active."""
        clock.advance(days=59, hours=23)
        assert service.is_contact_blacklisted("75988887777") is True

        clock.advance(hours=1)
        assert service.is_contact_blacklisted("75988887777") is False
        assert service.get_blacklist_entry(terminated_entry.entry_id).active is True


class TestTerminateScenario:
    """End-to-end: terminate, refuse re-registration, accept after expiry."""

    def test_reregistration_blocked_then_allowed(self, service, terminated_entry, clock):
        def reregister():
            return service.register_client(
                "Returning",
                "returning",
                "returning@example.com",
                "75 98888 7777",
                hash_password("pw"),
            )

        clock.advance(days=1)
        with pytest.raises(Conflict):
            reregister()

        clock.advance(days=60)
        client = reregister()

        assert client.contact_key == "75988887777"


class TestRelease:
    """Tests for early release of blacklist entries."""

    def test_release(self, service, terminated_entry, clock):
        entry = service.release_blacklist_entry(terminated_entry.entry_id, "admin:admin")

        assert entry.active is False
        assert entry.released_by == "admin:admin"
        assert entry.released_ts is not None
        assert service.is_contact_blacklisted("75988887777") is False

    def test_release_is_idempotent(self, service, terminated_entry, clock):
        first = service.release_blacklist_entry(terminated_entry.entry_id, "admin:admin")
        clock.advance(hours=1)

        second = service.release_blacklist_entry(terminated_entry.entry_id, "admin:other")

        assert second.released_ts == first.released_ts
        assert second.released_by == "admin:admin"
        events = service.get_events("blacklist_entry", terminated_entry.entry_id)
        assert [e.event_type for e in events].count("blacklist_released") == 1

    def test_release_unknown(self, service):
        with pytest.raises(NotFound):
            service.release_blacklist_entry("missing", "admin:admin")


class TestListing:
    """Tests for listing entries."""

    def test_active_only(self, service, make_client):
        kept = service.terminate_client(make_client(phone="111").client_id, "admin:admin")
        released = service.terminate_client(make_client(phone="222").client_id, "admin:admin")
        service.release_blacklist_entry(released.entry_id, "admin:admin")

        active = service.list_blacklist_entries()
        everything = service.list_blacklist_entries(active_only=False)

        assert [e.entry_id for e in active] == [kept.entry_id]
        assert {e.entry_id for e in everything} == {kept.entry_id, released.entry_id}

    def test_get_unknown(self, service):
        with pytest.raises(NotFound):
            service.get_blacklist_entry("missing")
