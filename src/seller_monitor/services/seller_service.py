"""Service layer for monitoring Discogs sellers."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, fields
from typing import Any, Optional

import requests

from ..api.client import DiscogsClient
from ..errors import (
    SellerAlreadyMonitoredError,
    SellerMonitorError,
    SellerNotFoundError,
    ValidationError,
)
from ..models import (
    CacheInfo,
    MonitoredSeller,
    ScanStatus,
    SellerMatch,
    SellerMonitoringSettings,
    VerificationResult,
    utcnow,
)
from ..retry import status_code_of
from ..storage.repository import SellerMonitoringRepository
from .lifecycle import MatchLifecycleManager
from .release_resolver import CacheRefreshResult, CacheStats, ReleaseMasterResolver
from .scanner import ScanOrchestrator
from .wishlist_service import WishlistSource, wanted_master_ids

logger = logging.getLogger(__name__)

USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

EDITABLE_SETTINGS = frozenset(
    item.name for item in fields(SellerMonitoringSettings) if item.name != "schema_version"
)


def validate_username(username: Any) -> str:
    if not isinstance(username, str) or not username.strip():
        raise ValidationError("Username is required")
    username = username.strip()
    if not USERNAME_PATTERN.match(username):
        raise ValidationError(
            "Invalid username format. Must be 1-64 characters: letters, numbers, underscore, or hyphen"
        )
    return username


@dataclass(slots=True)
class MatchesWithCacheInfo:
    matches: list[SellerMatch] = field(default_factory=list)
    cache_info: Optional[CacheInfo] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "matches": [match.to_dict() for match in self.matches],
            "cache_info": self.cache_info.to_dict() if self.cache_info else None,
        }


class SellerMonitoringService:
    """Facade over seller storage, scanning and match lifecycle."""

    def __init__(
        self,
        repository: SellerMonitoringRepository,
        client: DiscogsClient,
        wishlist: WishlistSource,
        scanner: ScanOrchestrator,
        lifecycle: MatchLifecycleManager,
        resolver: ReleaseMasterResolver,
    ) -> None:
        self.repository = repository
        self._client = client
        self._wishlist = wishlist
        self._scanner = scanner
        self._lifecycle = lifecycle
        self._resolver = resolver

    # Sellers

    def get_sellers(self) -> list[MonitoredSeller]:
        return self.repository.load_sellers()

    def add_seller(self, username: str, display_name: Optional[str] = None) -> MonitoredSeller:
        """Start monitoring ``username`` once Discogs confirms the user exists."""

        username = validate_username(username)
        sellers = self.repository.load_sellers()
        if any(seller.username.lower() == username.lower() for seller in sellers):
            raise SellerAlreadyMonitoredError(username)

        try:
            profile = self._client.get_user(username)
        except requests.HTTPError as exc:
            if status_code_of(exc) == 404:
                raise SellerNotFoundError(username) from exc
            raise ValidationError(f"Failed to validate seller: {exc}") from exc
        except requests.RequestException as exc:
            raise ValidationError(f"Failed to validate seller: {exc}") from exc

        seller = MonitoredSeller(
            username=profile.username,
            display_name=(display_name or "").strip() or profile.username,
            added_at=utcnow(),
            inventory_size=profile.inventory_count,
        )
        sellers.append(seller)
        self.repository.save_sellers(sellers)
        logger.info("Added seller: %s", seller.username)
        return seller

    def remove_seller(self, username: str) -> bool:
        """Stop monitoring ``username`` and drop its matches and cached pages."""

        sellers = self.repository.load_sellers()
        remaining = [seller for seller in sellers if seller.username.lower() != username.lower()]
        if len(remaining) == len(sellers):
            return False
        self.repository.save_sellers(remaining)

        try:
            self.repository.delete_checkpoint(username)
            self.repository.delete_snapshot(username)
        except (OSError, SellerMonitorError) as exc:
            logger.warning("Could not delete cached inventory for %s: %s", username, exc)

        store = self.repository.load_matches()
        store.matches = [match for match in store.matches if not match.belongs_to(username)]
        self.repository.save_matches(store)
        logger.info("Removed seller: %s", username)
        return True

    # Matches

    def get_all_matches(self) -> list[SellerMatch]:
        return self.repository.load_matches().matches

    def get_matches_by_seller(self, username: str) -> list[SellerMatch]:
        return self.repository.load_matches().for_seller(username)

    def get_all_matches_with_cache_info(self) -> MatchesWithCacheInfo:
        """Matches plus how stale the oldest full scan is."""

        store = self.repository.load_matches()
        settings = self.repository.load_settings()
        now = utcnow()
        scanned = [seller.last_scanned for seller in self.repository.load_sellers() if seller.last_scanned]
        oldest_scan_age = (now - min(scanned)).total_seconds() if scanned else 0.0
        max_age = settings.scan_frequency_days * 24 * 60 * 60
        return MatchesWithCacheInfo(
            matches=store.matches,
            cache_info=CacheInfo(
                last_updated=store.last_updated,
                oldest_scan_age=oldest_scan_age,
                next_scan_due=max(0.0, max_age - oldest_scan_age),
            ),
        )

    def mark_match_as_seen(self, match_id: str) -> bool:
        return self._lifecycle.mark_seen(match_id)

    def mark_match_as_notified(self, match_id: str) -> bool:
        return self._lifecycle.mark_notified(match_id)

    def remove_stale_matches(self) -> int:
        return self._lifecycle.remove_stale()

    def verify_and_update_match(self, match_id: str) -> VerificationResult:
        return self._lifecycle.verify_and_update(match_id)

    # Scanning

    def start_scan(self, force_fresh: bool = False) -> ScanStatus:
        return self._scanner.start_scan(force_fresh=force_fresh)

    def get_scan_status(self) -> ScanStatus:
        return self.repository.load_scan_status()

    # Settings

    def get_settings(self) -> SellerMonitoringSettings:
        return self.repository.load_settings()

    def save_settings(self, **changes: Any) -> SellerMonitoringSettings:
        """Merge ``changes`` into the stored settings."""

        unknown = set(changes) - EDITABLE_SETTINGS
        if unknown:
            raise ValidationError(f"Unknown settings: {', '.join(sorted(unknown))}")
        for name in ("scan_frequency_days", "quick_check_frequency_hours"):
            value = changes.get(name)
            if value is not None and (isinstance(value, bool) or not isinstance(value, int) or value < 1):
                raise ValidationError(f"{name} must be a positive integer")
        for name in ("notify_on_new_match", "vinyl_formats_only"):
            if name in changes and not isinstance(changes[name], bool):
                raise ValidationError(f"{name} must be true or false")

        settings = self.repository.load_settings()
        for name, value in changes.items():
            setattr(settings, name, value)
        self.repository.save_settings(settings)
        logger.info("Seller monitoring settings saved")
        return settings

    # Release cache

    def refresh_release_cache(self) -> CacheRefreshResult:
        """Pre-fetch every release of every wanted master."""

        masters = sorted(wanted_master_ids(self._wishlist))
        logger.info("Refreshing release cache for %s masters", len(masters))
        return self._resolver.warm_masters(masters)

    def get_release_cache_stats(self) -> CacheStats:
        return self._resolver.stats()
