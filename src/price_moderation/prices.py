"""
Price table: the current price per (product, market).

Writes are upserts. The last write wins regardless of the source or age of
the existing entry.
"""

import logging
import sqlite3
from collections.abc import Callable
from datetime import datetime

from .contacts import is_valid_reference, parse_price
from .errors import InvalidInput
from .models import CatalogDatabase, EventType, PriceEntry, PriceSource, to_ts, utc_now

logger = logging.getLogger(__name__)


class PriceTable:
    """Reads and writes price entries."""

    def __init__(self, db: CatalogDatabase, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.clock = clock

    @staticmethod
    def upsert(
        conn: sqlite3.Connection,
        product_id: str,
        market_id: str,
        price: float,
        source: PriceSource,
        author: str,
        now: datetime,
    ) -> PriceEntry:
        """Write the entry for (product, market) within the caller's transaction."""
        updated_ts = to_ts(now)
        conn.execute(
            """
            INSERT INTO price_entries (product_id, market_id, price, source, author, updated_ts)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(product_id, market_id) DO UPDATE SET
                price = excluded.price,
                source = excluded.source,
                author = excluded.author,
                updated_ts = excluded.updated_ts
            """,
            (product_id, market_id, price, source.value, author, updated_ts),
        )
        return PriceEntry(
            product_id=product_id,
            market_id=market_id,
            price=price,
            source=source.value,
            author=author,
            updated_ts=updated_ts,
        )

    def get(self, product_id: str, market_id: str) -> PriceEntry | None:
        with self.db.read() as conn:
            row = conn.execute(
                "SELECT * FROM price_entries WHERE product_id = ? AND market_id = ?",
                (product_id, market_id),
            ).fetchone()
        return PriceEntry(**dict(row)) if row else None

    def list_for_product(self, product_id: str) -> list[PriceEntry]:
        """All market prices for a product, cheapest first."""
        with self.db.read() as conn:
            cursor = conn.execute(
                "SELECT * FROM price_entries WHERE product_id = ? ORDER BY price ASC",
                (product_id,),
            )
            return [PriceEntry(**dict(row)) for row in cursor.fetchall()]

    def set_price(
        self,
        product_id: str,
        market_id: str,
        price,
        source: str,
        author: str,
    ) -> PriceEntry:
        """Direct price write by an administrator or a market."""
        if not is_valid_reference(product_id) or not is_valid_reference(market_id):
            raise InvalidInput("product_id and market_id must be well-formed references")
        parsed = parse_price(price)
        if parsed is None:
            raise InvalidInput("price must be a positive number")
        try:
            price_source = PriceSource(source)
        except ValueError:
            raise InvalidInput(f"Invalid source: {source}") from None
        if not author:
            raise InvalidInput("author is required")

        now = self.clock()
        with self.db.transaction() as conn:
            entry = self.upsert(conn, product_id, market_id, parsed, price_source, author, now)
            self.db.add_event(
                conn,
                EventType.PRICE_SET,
                "price_entry",
                f"{product_id}:{market_id}",
                to_ts(now),
                actor_id=author,
                payload={"price": parsed, "source": price_source.value},
            )
        logger.info(f"Price for {product_id} at {market_id} set to {parsed} by {author}")
        return entry
