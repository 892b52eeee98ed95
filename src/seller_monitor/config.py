"""Configuration settings for the Discogs seller monitor."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv


@dataclass(slots=True)
class DiscogsConfig:
    """Settings for talking to the Discogs API."""

    base_url: str = "https://api.discogs.com"
    user_agent: str = "SellerMonitor/1.0"
    request_timeout: float = 10.0
    """Upper bound, in seconds, for a single HTTP call."""

    consumer_key: str = ""
    consumer_secret: str = ""
    """OAuth 1.0a consumer credentials, only needed for signed requests."""


@dataclass(slots=True)
class ScanConfig:
    """Settings related to scanning seller inventories."""

    min_request_interval: float = 0.2
    """Minimum number of seconds between two outbound marketplace calls."""

    retry_attempts: int = 3
    retry_initial_delay: float = 5.0
    retry_max_delay: float = 60.0

    per_page: int = 100
    checkpoint_max_age_hours: int = 24
    inventory_cache_hours: int = 6
    stale_match_days: int = 30
    max_verifications_per_seller: int = 5
    master_refresh_days: int = 30


@dataclass(slots=True)
class PollingConfig:
    """Settings for the background scan scheduler."""

    interval_seconds: int = 3600
    """How frequently to check whether any seller is due for a scan."""

    enabled: bool = True


@dataclass(slots=True)
class AppConfig:
    """Top-level configuration for the application."""

    environment: Literal["development", "production"] = "development"
    data_directory: Path = field(default_factory=lambda: Path("data"))
    log_level: str = "INFO"
    discogs: DiscogsConfig = field(default_factory=DiscogsConfig)
    scan: ScanConfig = field(default_factory=ScanConfig)
    polling: PollingConfig = field(default_factory=PollingConfig)

    def ensure_data_directories(self) -> None:
        """Create data directories required by the application."""

        self.data_directory.mkdir(parents=True, exist_ok=True)
        (self.data_directory / "sellers" / "inventory-cache").mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_env(cls) -> AppConfig:
        """Build a configuration from environment variables (and a ``.env`` file)."""

        load_dotenv()
        config = cls()
        environment = os.getenv("SELLER_MONITOR_ENV", config.environment)
        if environment in ("development", "production"):
            config.environment = environment
        config.data_directory = Path(os.getenv("SELLER_MONITOR_DATA_DIR", str(config.data_directory)))
        config.log_level = os.getenv("SELLER_MONITOR_LOG_LEVEL", config.log_level).upper()

        config.discogs.base_url = os.getenv("DISCOGS_BASE_URL", config.discogs.base_url)
        config.discogs.user_agent = os.getenv("DISCOGS_USER_AGENT", config.discogs.user_agent)
        config.discogs.consumer_key = os.getenv("DISCOGS_CLIENT_ID", "")
        config.discogs.consumer_secret = os.getenv("DISCOGS_CLIENT_SECRET", "")

        interval = os.getenv("SELLER_MONITOR_REQUEST_INTERVAL")
        if interval:
            config.scan.min_request_interval = float(interval)
        poll_interval = os.getenv("SELLER_MONITOR_POLL_INTERVAL")
        if poll_interval:
            config.polling.interval_seconds = int(poll_interval)
        config.polling.enabled = os.getenv("SELLER_MONITOR_SCHEDULER", "on").lower() not in ("0", "off", "false")
        return config
