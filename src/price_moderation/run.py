"""
CLI runner for the blacklist expiry sweeper.

Usage:
    python -m price_moderation.run [OPTIONS]

    # Deactivate expired blacklist entries once
    python -m price_moderation.run --once

    # Run as daemon on the configured interval
    python -m price_moderation.run --daemon
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from datasette_price_catalog.migrations import SchemaVersionError, check_schema

from .config import ModerationConfig
from .models import utc_now
from .service import CatalogService

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("price-moderation")


def run_once(config: ModerationConfig) -> int:
    """Run a single sweep. Returns the number of deactivated entries."""
    service = CatalogService.from_config(config)
    result = service.run_expiry_sweep()
    logger.info(f"Sweep at {result.ran_ts}: {result.deactivated} entr(y/ies) deactivated")
    return result.deactivated


async def run_daemon(config: ModerationConfig) -> None:
    """Sweep forever on the configured interval."""
    logger.info("Starting price-moderation sweeper daemon")
    logger.info(f"Database: {config.db_path}")
    logger.info(f"Running every {config.sweeper.interval_hours:g} hour(s)")

    service = CatalogService.from_config(config)
    await service.sweeper.run_forever(config.sweeper.interval_seconds)


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="price-moderation: blacklist expiry sweeper",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Sweep once
    python -m price_moderation.run --once

    # Run as daemon
    python -m price_moderation.run --daemon

    # Use a specific config file
    python -m price_moderation.run --config datasette.yaml --once
        """,
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=Path("datasette.yaml"),
        help="Path to config file (default: datasette.yaml)",
    )
    parser.add_argument(
        "--db",
        type=Path,
        help="Override database path from config",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Sweep expired entries once and exit",
    )
    parser.add_argument(
        "--daemon",
        action="store_true",
        help="Run as a daemon, sweeping on the configured interval",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show which entries would be deactivated without changing anything",
    )

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    config = ModerationConfig.from_yaml(args.config)
    if args.db:
        config.db_path = args.db

    logger.info(f"Config loaded from {args.config}")
    logger.info(f"Database: {config.db_path}")
    logger.info(
        f"Blacklist duration: {config.blacklist.duration_days} days, "
        f"auto-block threshold: {config.trust.auto_block_threshold}"
    )

    if not config.db_path.exists():
        logger.error(f"Database not found: {config.db_path}")
        logger.error("Run 'python scripts/init_db.py' first to create the database.")
        return 1

    try:
        version = check_schema(config.db_path)
    except SchemaVersionError as e:
        logger.error(str(e))
        return 1
    logger.info(f"Schema version: {version}")

    if args.dry_run:
        service = CatalogService.from_config(config)
        now = utc_now()
        expired = [e for e in service.list_blacklist_entries() if not e.blocks_at(now)]
        logger.info(f"Dry run: would deactivate {len(expired)} entr(y/ies)")
        for entry in expired:
            logger.info(f"  - {entry.entry_id}: {entry.contact_key} (expired {entry.expires_ts})")
        return 0

    if args.daemon:
        try:
            asyncio.run(run_daemon(config))
        except KeyboardInterrupt:
            logger.info("Daemon stopped by user")
        return 0

    if args.once:
        run_once(config)
        return 0

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
