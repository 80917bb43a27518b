"""
Expiry sweeper: periodic housekeeping for blacklist entries.

The sweeper only flips ``active`` on entries whose expiry has passed.
Registration checks compare against the expiry directly, so a late or
missed sweep never keeps a contact blocked.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from .blacklist import BlacklistRegistry
from .models import CatalogDatabase, EventType, to_ts, utc_now

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    """Summary of one sweep."""

    deactivated: int
    ran_ts: str
    entry_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "deactivated": self.deactivated,
            "ran_ts": self.ran_ts,
            "entry_ids": list(self.entry_ids),
        }


class ExpirySweeper:
    """Deactivates expired blacklist entries."""

    def __init__(
        self,
        db: CatalogDatabase,
        blacklist: BlacklistRegistry,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.blacklist = blacklist
        self.clock = clock

    def run_once(self) -> SweepResult:
        now = self.clock()
        with self.db.transaction() as conn:
            entry_ids = self.blacklist.deactivate_expired(conn, now)
            if entry_ids:
                self.db.add_event(
                    conn,
                    EventType.BLACKLIST_SWEPT,
                    "blacklist",
                    "expired",
                    to_ts(now),
                    payload={"entry_ids": entry_ids},
                )

        if entry_ids:
            logger.info(f"Deactivated {len(entry_ids)} expired blacklist entr(y/ies)")
        else:
            logger.debug("No expired blacklist entries")
        return SweepResult(deactivated=len(entry_ids), ran_ts=to_ts(now), entry_ids=entry_ids)

    async def run_forever(self, interval_seconds: float) -> None:
        """
        Sweep on a fixed interval for the lifetime of the process.

        A failed cycle is logged and the loop carries on.
        """
        logger.info(f"Blacklist sweeper running every {interval_seconds:g} seconds")
        while True:
            try:
                self.run_once()
            except Exception as e:
                logger.exception(f"Sweep failed: {e}")
            await asyncio.sleep(interval_seconds)
