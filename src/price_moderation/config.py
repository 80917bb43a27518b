"""
Configuration for the price moderation core.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

PLUGIN_NAME = "datasette-price-catalog"


@dataclass
class TrustConfig:
    """Client trust thresholds."""

    auto_block_threshold: int = 3  # Consecutive rejections before automatic block

    def __post_init__(self):
        if self.auto_block_threshold < 1:
            raise ValueError(
                f"trust.auto_block_threshold must be at least 1, got {self.auto_block_threshold}"
            )


@dataclass
class BlacklistConfig:
    """Re-registration blacklist settings."""

    duration_days: int = 60  # Two months

    def __post_init__(self):
        if self.duration_days < 1:
            raise ValueError(
                f"blacklist.duration_days must be at least 1, got {self.duration_days}"
            )


@dataclass
class SweeperConfig:
    """Expiry sweeper schedule."""

    interval_hours: float = 24.0
    run_in_process: bool = False  # Start the sweeper loop inside Datasette

    def __post_init__(self):
        if self.interval_hours <= 0:
            raise ValueError(
                f"sweeper.interval_hours must be positive, got {self.interval_hours}"
            )

    @property
    def interval_seconds(self) -> float:
        return self.interval_hours * 3600


@dataclass
class ContributionsConfig:
    """Moderation queue listing limits."""

    default_list_limit: int = 100
    max_list_limit: int = 500


@dataclass
class NotifierConfig:
    """Outbound notification webhook."""

    webhook_url: str | None = None
    secret: str | None = None
    secret_env: str | None = "PRICE_CATALOG_WEBHOOK_SECRET"
    timeout_seconds: float = 5.0

    def get_secret(self) -> str | None:
        """Get the signing secret from config or environment."""
        if self.secret:
            return self.secret
        if self.secret_env:
            return os.environ.get(self.secret_env)
        return None


@dataclass
class ModerationConfig:
    """Complete moderation configuration."""

    db_path: Path = field(default_factory=lambda: Path("price_catalog.db"))

    trust: TrustConfig = field(default_factory=TrustConfig)
    blacklist: BlacklistConfig = field(default_factory=BlacklistConfig)
    sweeper: SweeperConfig = field(default_factory=SweeperConfig)
    contributions: ContributionsConfig = field(default_factory=ContributionsConfig)
    notifier: NotifierConfig = field(default_factory=NotifierConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ModerationConfig":
        """Create config from a dictionary (e.g., the plugin section of datasette.yaml)."""
        config = cls()

        if "catalog_db_path" in data:
            config.db_path = Path(data["catalog_db_path"])

        if "trust" in data:
            trust = data["trust"] or {}
            config.trust = TrustConfig(
                auto_block_threshold=int(trust.get("auto_block_threshold", 3)),
            )

        if "blacklist" in data:
            bl = data["blacklist"] or {}
            config.blacklist = BlacklistConfig(
                duration_days=int(bl.get("duration_days", 60)),
            )

        if "sweeper" in data:
            sw = data["sweeper"] or {}
            config.sweeper = SweeperConfig(
                interval_hours=float(sw.get("interval_hours", 24.0)),
                run_in_process=bool(sw.get("run_in_process", False)),
            )

        if "contributions" in data:
            contrib = data["contributions"] or {}
            config.contributions = ContributionsConfig(
                default_list_limit=int(contrib.get("default_list_limit", 100)),
                max_list_limit=int(contrib.get("max_list_limit", 500)),
            )

        if "notifier" in data:
            notifier = data["notifier"] or {}
            config.notifier = NotifierConfig(
                webhook_url=notifier.get("webhook_url"),
                secret=notifier.get("secret"),
                secret_env=notifier.get("secret_env", "PRICE_CATALOG_WEBHOOK_SECRET"),
                timeout_seconds=float(notifier.get("timeout_seconds", 5.0)),
            )

        return config

    @classmethod
    def from_yaml(cls, path: Path) -> "ModerationConfig":
        """Load config from a YAML file (datasette.yaml format)."""
        if not path.exists():
            return cls()

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        plugin_config = (data.get("plugins") or {}).get(PLUGIN_NAME) or {}
        return cls.from_dict(plugin_config)

    def to_dict(self) -> dict[str, Any]:
        """Convert config to dictionary for JSON serialization (secrets omitted)."""
        return {
            "catalog_db_path": str(self.db_path),
            "trust": {
                "auto_block_threshold": self.trust.auto_block_threshold,
            },
            "blacklist": {
                "duration_days": self.blacklist.duration_days,
            },
            "sweeper": {
                "interval_hours": self.sweeper.interval_hours,
                "run_in_process": self.sweeper.run_in_process,
            },
            "contributions": {
                "default_list_limit": self.contributions.default_list_limit,
                "max_list_limit": self.contributions.max_list_limit,
            },
            "notifier": {
                "webhook_url": self.notifier.webhook_url,
                "timeout_seconds": self.notifier.timeout_seconds,
            },
        }
