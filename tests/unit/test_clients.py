"""Unit tests for client registration and login eligibility."""

import pytest

from datasette_price_catalog.auth import hash_password
from price_moderation.errors import Conflict, Forbidden, InvalidInput


def register(service, login="joao", email="joao@example.com", phone="(71) 99999-0000"):
    return service.register_client("João", login, email, phone, hash_password("pw"))


class TestRegister:
    """Tests for registration."""

    def test_register(self, service):
        client = register(service, login="  Joao ", email="JOAO@Example.com")

        assert client.login == "joao"
        assert client.email == "joao@example.com"
        assert client.contact_key == "71999990000"
        assert client.blocked is False
        assert client.consecutive_errors == 0
        assert service.get_client_by_login("JOAO").client_id == client.client_id

    def test_public_dict_hides_password(self, service):
        client = register(service)

        assert "password_hash" not in client.to_public_dict()

    def test_duplicate_login(self, service):
        register(service)

        with pytest.raises(Conflict):
            register(service, email="other@example.com", phone="71 98888 0000")

    def test_duplicate_email(self, service):
        register(service)

        with pytest.raises(Conflict):
            register(service, login="other", phone="71 98888 0000")

    @pytest.mark.parametrize("field", ["name", "login", "email", "phone"])
    def test_missing_fields(self, service, field):
        values = {
            "name": "João",
            "login": "joao",
            "email": "joao@example.com",
            "phone": "71999990000",
        }
        values[field] = "  "

        with pytest.raises(InvalidInput):
            service.register_client(password_hash=hash_password("pw"), **values)

    def test_digitless_phone(self, service):
        with pytest.raises(InvalidInput):
            register(service, phone="call me")

    def test_blacklisted_phone_conflict(self, service):
        client = register(service)
        service.terminate_client(client.client_id, "admin:admin")

        with pytest.raises(Conflict):
            register(service, login="joao2", email="joao2@example.com", phone="71-99999-0000")

    def test_registration_event(self, service):
        client = register(service)

        events = service.get_events("client", client.client_id)
        assert [e.event_type for e in events] == ["client_registered"]


class TestLoginAllowed:
    """Tests for login eligibility of blocked clients."""

    def test_unblocked(self, service):
        client = register(service)

        service.check_login_allowed(client)

    def test_permanent_block_refuses(self, service):
        client = register(service)
        service.block_client(client.client_id, "permanent", "admin:admin")

        with pytest.raises(Forbidden):
            service.check_login_allowed(service.get_client(client.client_id))

    def test_temporary_block_refuses_until_expiry(self, service, clock):
        client = register(service)
        service.block_client(client.client_id, "temporary", "admin:admin", days=2)
        blocked = service.get_client(client.client_id)

        with pytest.raises(Forbidden):
            service.check_login_allowed(blocked)

        clock.advance(days=2, seconds=1)
        service.check_login_allowed(blocked)

    def test_automatic_block_allows_login(self, service):
        client = register(service)
        for i in range(3):
            contribution = service.submit_contribution(client.client_id, f"p{i}", "m1", 1.0)
            service.reject_contribution(contribution.contribution_id, "admin:admin")

        service.check_login_allowed(service.get_client(client.client_id))


class TestListClients:
    """Tests for the administrator client listing."""

    def test_newest_first(self, service, make_client, clock):
        first = make_client()
        clock.advance(minutes=5)
        second = make_client()

        clients = service.list_clients()

        assert [c.client_id for c in clients] == [second.client_id, first.client_id]

    def test_blocked_only(self, service, make_client):
        make_client()
        blocked = make_client()
        service.block_client(blocked.client_id, "permanent", "admin:admin")

        clients = service.list_clients(blocked_only=True)

        assert [c.client_id for c in clients] == [blocked.client_id]

    def test_limit(self, service, make_client):
        for _ in range(3):
            make_client()

        assert len(service.list_clients(limit=2)) == 2

    @pytest.mark.parametrize("limit", [0, 501])
    def test_limit_out_of_range(self, service, limit):
        with pytest.raises(InvalidInput):
            service.list_clients(limit=limit)
