"""Typed access to the seller monitor's JSON documents."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..models import (
    SETTINGS_SCHEMA_VERSION,
    InventoryCheckpoint,
    InventorySnapshot,
    MatchStore,
    MonitoredSeller,
    ScanStatus,
    SellerMatch,
    SellerMonitoringSettings,
    format_timestamp,
    parse_timestamp,
    utcnow,
)
from .json_store import JsonFileStore, sanitize_cache_key

logger = logging.getLogger(__name__)

SELLERS_FILE = "sellers/monitored-sellers.json"
MATCHES_FILE = "sellers/matches.json"
SCAN_STATUS_FILE = "sellers/scan-status.json"
SETTINGS_FILE = "sellers/settings.json"
INVENTORY_CACHE_DIR = "sellers/inventory-cache"
RELEASE_CACHE_FILE = "sellers/release-master-cache.json"

STORE_SCHEMA_VERSION = 1
RELEASE_CACHE_SCHEMA_VERSION = 2


@dataclass(slots=True)
class MasterReleases:
    releases: list[int] = field(default_factory=list)
    fetched_at: datetime | None = None


@dataclass(slots=True)
class ReleaseCacheDocument:
    """Persisted release -> master mapping plus its reverse index."""

    release_to_master: dict[int, int] = field(default_factory=dict)
    master_to_releases: dict[int, MasterReleases] = field(default_factory=dict)
    last_updated: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": RELEASE_CACHE_SCHEMA_VERSION,
            "release_to_master": {str(key): value for key, value in self.release_to_master.items()},
            "master_to_releases": {
                str(key): {"releases": list(entry.releases), "fetched_at": format_timestamp(entry.fetched_at)}
                for key, entry in self.master_to_releases.items()
            },
            "last_updated": format_timestamp(self.last_updated),
        }

    @classmethod
    def from_dict(cls, data: Any) -> ReleaseCacheDocument:
        if not isinstance(data, dict):
            return cls()
        last_updated = parse_timestamp(data.get("last_updated"))
        release_to_master: dict[int, int] = {}
        for key, value in (data.get("release_to_master") or {}).items():
            try:
                release_to_master[int(key)] = int(value)
            except (TypeError, ValueError):
                continue
        master_to_releases: dict[int, MasterReleases] = {}
        for key, value in (data.get("master_to_releases") or {}).items():
            try:
                master_id = int(key)
            except (TypeError, ValueError):
                continue
            # Older documents stored a bare list of release ids.
            if isinstance(value, list):
                master_to_releases[master_id] = MasterReleases(
                    releases=[int(item) for item in value], fetched_at=last_updated
                )
            elif isinstance(value, dict):
                master_to_releases[master_id] = MasterReleases(
                    releases=[int(item) for item in value.get("releases") or []],
                    fetched_at=parse_timestamp(value.get("fetched_at")),
                )
        return cls(
            release_to_master=release_to_master,
            master_to_releases=master_to_releases,
            last_updated=last_updated,
        )


class SellerMonitoringRepository:
    """Loads and saves sellers, matches, scan status, settings and caches."""

    def __init__(self, store: JsonFileStore) -> None:
        self._store = store

    @property
    def store(self) -> JsonFileStore:
        return self._store

    @staticmethod
    def checkpoint_path(username: str) -> str:
        return f"{INVENTORY_CACHE_DIR}/{sanitize_cache_key(username)}-partial.json"

    @staticmethod
    def snapshot_path(username: str) -> str:
        return f"{INVENTORY_CACHE_DIR}/{sanitize_cache_key(username)}.json"

    # Sellers

    def load_sellers(self) -> list[MonitoredSeller]:
        document = self._store.read_json(SELLERS_FILE)
        if not isinstance(document, dict) or document.get("schema_version") != STORE_SCHEMA_VERSION:
            return []
        return [MonitoredSeller.from_dict(entry) for entry in document.get("sellers") or []]

    def save_sellers(self, sellers: list[MonitoredSeller]) -> None:
        self._store.write_json(
            SELLERS_FILE,
            {"schema_version": STORE_SCHEMA_VERSION, "sellers": [seller.to_dict() for seller in sellers]},
        )

    # Matches

    def load_matches(self) -> MatchStore:
        document = self._store.read_json(MATCHES_FILE)
        if not isinstance(document, dict) or document.get("schema_version") != STORE_SCHEMA_VERSION:
            return MatchStore()
        return MatchStore(
            matches=[SellerMatch.from_dict(entry) for entry in document.get("matches") or []],
            last_updated=parse_timestamp(document.get("last_updated")) or utcnow(),
        )

    def save_matches(self, store: MatchStore, *, touch: bool = True) -> None:
        if touch:
            store.last_updated = utcnow()
        self._store.write_json(
            MATCHES_FILE,
            {
                "schema_version": STORE_SCHEMA_VERSION,
                "last_updated": format_timestamp(store.last_updated),
                "matches": [match.to_dict() for match in store.matches],
            },
        )

    # Scan status

    def load_scan_status(self) -> ScanStatus:
        document = self._store.read_json(SCAN_STATUS_FILE)
        if not isinstance(document, dict):
            return ScanStatus()
        return ScanStatus.from_dict(document)

    def save_scan_status(self, status: ScanStatus) -> None:
        self._store.write_json(SCAN_STATUS_FILE, status.to_dict())

    def update_scan_status(self, **changes: Any) -> ScanStatus:
        """Merge ``changes`` into the persisted status and return the result."""

        status = self.load_scan_status()
        for key, value in changes.items():
            setattr(status, key, value)
        self.save_scan_status(status)
        return status

    # Settings

    def load_settings(self) -> SellerMonitoringSettings:
        document = self._store.read_json(SETTINGS_FILE)
        if isinstance(document, dict) and document.get("schema_version") == SETTINGS_SCHEMA_VERSION:
            return SellerMonitoringSettings.from_dict(document)
        logger.debug("No usable settings document, using defaults")
        return SellerMonitoringSettings()

    def save_settings(self, settings: SellerMonitoringSettings) -> None:
        self._store.write_json(SETTINGS_FILE, settings.to_dict())

    # Inventory checkpoints

    def load_checkpoint(self, username: str) -> InventoryCheckpoint | None:
        document = self._store.read_json(self.checkpoint_path(username))
        if not isinstance(document, dict):
            return None
        return InventoryCheckpoint.from_dict(document)

    def save_checkpoint(self, username: str, checkpoint: InventoryCheckpoint) -> None:
        self._store.write_json(self.checkpoint_path(username), checkpoint.to_dict())

    def delete_checkpoint(self, username: str) -> None:
        self._store.delete(self.checkpoint_path(username))

    # Complete inventory snapshots

    def load_snapshot(self, username: str) -> InventorySnapshot | None:
        document = self._store.read_json(self.snapshot_path(username))
        if not isinstance(document, dict):
            return None
        return InventorySnapshot.from_dict(document)

    def save_snapshot(self, snapshot: InventorySnapshot) -> None:
        self._store.write_json(self.snapshot_path(snapshot.username), snapshot.to_dict())

    def delete_snapshot(self, username: str) -> None:
        self._store.delete(self.snapshot_path(username))

    # Release -> master cache

    def load_release_cache(self) -> ReleaseCacheDocument:
        return ReleaseCacheDocument.from_dict(self._store.read_json(RELEASE_CACHE_FILE))

    def save_release_cache(self, document: ReleaseCacheDocument) -> None:
        document.last_updated = utcnow()
        self._store.write_json(RELEASE_CACHE_FILE, document.to_dict())
