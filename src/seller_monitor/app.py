"""Application bootstrapper for the Discogs seller monitor."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import requests
from flask import Flask

from .api.auth import EnvTokenProvider, TokenProvider
from .api.client import DiscogsClient
from .api.rate_limit import RateLimiter
from .config import AppConfig
from .retry import RetryPolicy
from .scheduler.poller import PollingScheduler
from .services.inventory import InventoryPaginator
from .services.lifecycle import MatchLifecycleManager
from .services.match_engine import MatchEngine
from .services.release_resolver import ReleaseMasterResolver
from .services.scanner import ScanOrchestrator
from .services.seller_service import SellerMonitoringService
from .services.wishlist_service import WishlistService, WishlistSource
from .storage.json_store import JsonFileStore
from .storage.repository import SellerMonitoringRepository
from .web.app import create_app

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Runtime:
    service: SellerMonitoringService
    scanner: ScanOrchestrator
    wishlist: WishlistSource


def build_runtime(
    config: AppConfig,
    *,
    token_provider: Optional[TokenProvider] = None,
    wishlist: Optional[WishlistSource] = None,
    session: Optional[requests.Session] = None,
) -> Runtime:
    """Wire storage, the Discogs client and the services together."""

    config.ensure_data_directories()
    repository = SellerMonitoringRepository(JsonFileStore(config.data_directory))
    client = DiscogsClient(
        config.discogs,
        token_provider or EnvTokenProvider(),
        RateLimiter(config.scan.min_request_interval),
        session=session,
    )
    retry_policy = RetryPolicy(
        max_attempts=config.scan.retry_attempts,
        initial_delay=config.scan.retry_initial_delay,
        max_delay=config.scan.retry_max_delay,
    )
    wishlist = wishlist if wishlist is not None else WishlistService()

    resolver = ReleaseMasterResolver(
        client, repository, retry_policy, master_refresh_days=config.scan.master_refresh_days
    )
    lifecycle = MatchLifecycleManager(
        repository, client, retry_policy, stale_after=timedelta(days=config.scan.stale_match_days)
    )
    paginator = InventoryPaginator(
        client,
        repository,
        retry_policy,
        per_page=config.scan.per_page,
        checkpoint_max_age=timedelta(hours=config.scan.checkpoint_max_age_hours),
        snapshot_max_age=timedelta(hours=config.scan.inventory_cache_hours),
    )
    scanner = ScanOrchestrator(
        repository,
        client,
        wishlist,
        paginator,
        resolver,
        MatchEngine(max_verifications=config.scan.max_verifications_per_seller),
        lifecycle,
    )
    service = SellerMonitoringService(repository, client, wishlist, scanner, lifecycle, resolver)
    return Runtime(service=service, scanner=scanner, wishlist=wishlist)


def create_scan_scheduler(service: SellerMonitoringService, config: AppConfig) -> PollingScheduler:
    """Create the background scheduler that kicks off due scans."""

    def _task() -> None:
        status = service.start_scan()
        logger.info("Scheduled scan requested, status %s", status.status)

    scheduler = PollingScheduler(config.polling.interval_seconds, _task)
    if config.polling.enabled:
        scheduler.start()
    return scheduler


def bootstrap_app(config: Optional[AppConfig] = None) -> tuple[Flask, Runtime, PollingScheduler]:
    """Factory used by the entrypoint for running the JSON API."""

    config = config or AppConfig.from_env()
    runtime = build_runtime(config)
    scheduler = create_scan_scheduler(runtime.service, config)
    app = create_app(runtime.service)
    app.config["scheduler"] = scheduler
    return app, runtime, scheduler


def run() -> None:
    """Entrypoint used by the CLI to launch the API and scheduler."""

    config = AppConfig.from_env()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app, _, scheduler = bootstrap_app(config)
    try:
        app.run(debug=config.environment == "development", use_reloader=False)
    finally:
        scheduler.stop()


if __name__ == "__main__":  # pragma: no cover - manual execution only
    run()
