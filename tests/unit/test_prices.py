"""Unit tests for the price table."""

import pytest

from price_moderation.errors import InvalidInput


class TestSetPrice:
    """Tests for direct price writes."""

    def test_admin_price(self, service):
        entry = service.set_price("beans-1kg", "market-2", "8,49", "admin", "Administrator")

        assert entry.price == 8.49
        assert entry.source == "admin"
        assert service.get_price("beans-1kg", "market-2") == entry

    def test_market_price_overwrites(self, service, clock):
        service.set_price("beans-1kg", "market-2", 8.49, "admin", "Administrator")
        clock.advance(hours=1)

        entry = service.set_price("beans-1kg", "market-2", 7.99, "market", "Market Two")

        stored = service.get_price("beans-1kg", "market-2")
        assert stored == entry
        assert stored.source == "market"
        assert stored.author == "Market Two"

    def test_price_event(self, service):
        service.set_price("beans-1kg", "market-2", 8.49, "admin", "Administrator")

        events = service.get_events("price_entry", "beans-1kg:market-2")
        assert [e.event_type for e in events] == ["price_set"]
        assert events[0].payload == {"price": 8.49, "source": "admin"}

    @pytest.mark.parametrize(
        "product_id,market_id,price,source,author",
        [
            ("", "m1", 1.0, "admin", "A"),
            ("p1", "bad id", 1.0, "admin", "A"),
            ("p1", "m1", 0, "admin", "A"),
            ("p1", "m1", 1.0, "wholesaler", "A"),
            ("p1", "m1", 1.0, "admin", ""),
        ],
    )
    def test_invalid(self, service, product_id, market_id, price, source, author):
        with pytest.raises(InvalidInput):
            service.set_price(product_id, market_id, price, source, author)


class TestListPrices:
    def test_cheapest_first(self, service):
        service.set_price("milk", "m1", 5.0, "admin", "A")
        service.set_price("milk", "m2", 4.2, "market", "M2")
        service.set_price("bread", "m1", 1.0, "admin", "A")

        prices = service.list_prices("milk")

        assert [(p.market_id, p.price) for p in prices] == [("m2", 4.2), ("m1", 5.0)]

    def test_missing(self, service):
        assert service.get_price("nothing", "nowhere") is None
