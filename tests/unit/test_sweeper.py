"""Unit tests for the blacklist expiry sweeper."""

import asyncio

import pytest

from price_moderation.sweeper import ExpirySweeper


class TestRunOnce:
    """Tests for a single sweep."""

    def test_nothing_to_sweep(self, service):
        result = service.run_expiry_sweep()

        assert result.deactivated == 0
        assert result.entry_ids == []
        assert service.get_events("blacklist") == []

    def test_deactivates_only_expired(self, service, make_client, clock):
        old = service.terminate_client(make_client(phone="111").client_id, "admin:admin")
        clock.advance(days=30)
        recent = service.terminate_client(make_client(phone="222").client_id, "admin:admin")
        clock.advance(days=31)

        result = service.run_expiry_sweep()

        assert result.deactivated == 1
        assert result.entry_ids == [old.entry_id]
        assert service.get_blacklist_entry(old.entry_id).active is False
        assert service.get_blacklist_entry(recent.entry_id).active is True

        events = service.get_events("blacklist", "expired")
        assert [e.event_type for e in events] == ["blacklist_swept"]
        assert events[0].payload == {"entry_ids": [old.entry_id]}

    def test_second_sweep_is_noop(self, service, make_client, clock):
        service.terminate_client(make_client(phone="111").client_id, "admin:admin")
        clock.advance(days=61)
        service.run_expiry_sweep()

        assert service.run_expiry_sweep().deactivated == 0

    def test_released_entries_untouched(self, service, make_client, clock):
        entry = service.terminate_client(make_client(phone="111").client_id, "admin:admin")
        service.release_blacklist_entry(entry.entry_id, "admin:admin")
        clock.advance(days=61)

        assert service.run_expiry_sweep().deactivated == 0

    def test_sweep_does_not_change_lookups(self, service, make_client, clock):
        service.terminate_client(make_client(phone="111").client_id, "admin:admin")
        clock.advance(days=61)
        before = service.is_contact_blacklisted("111")

        service.run_expiry_sweep()

        assert before is False
        assert service.is_contact_blacklisted("111") is False


class FlakySweeper(ExpirySweeper):
    """Fails on the first cycle, then stops the loop after the third."""

    def __init__(self):
        self.calls = 0

    def run_once(self):
        self.calls += 1
        if self.calls == 1:
            raise RuntimeError("database locked")
        if self.calls == 3:
            raise asyncio.CancelledError()


class TestRunForever:
    """Tests for the sweeper loop."""

    async def test_failure_does_not_stop_loop(self):
        sweeper = FlakySweeper()

        with pytest.raises(asyncio.CancelledError):
            await sweeper.run_forever(0)

        assert sweeper.calls == 3
