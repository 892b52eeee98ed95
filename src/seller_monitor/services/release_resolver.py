"""Resolves Discogs release ids to their master (release group) ids."""
from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, TypeVar

import requests

from ..api.client import DiscogsClient
from ..models import utcnow
from ..retry import RetryPolicy, with_retry
from ..storage.repository import MasterReleases, ReleaseCacheDocument, SellerMonitoringRepository

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class CacheRefreshResult:
    masters_processed: int
    releases_added: int
    stale_refreshed: int

    def to_dict(self) -> dict[str, int]:
        return {
            "masters_processed": self.masters_processed,
            "releases_added": self.releases_added,
            "stale_refreshed": self.stale_refreshed,
        }


@dataclass(slots=True)
class CacheStats:
    total_releases: int
    total_masters: int
    last_updated: Optional[datetime]
    stale_masters: int

    def to_dict(self) -> dict[str, object]:
        return {
            "total_releases": self.total_releases,
            "total_masters": self.total_masters,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
            "stale_masters": self.stale_masters,
        }


class ReleaseMasterResolver:
    """Release -> master lookups backed by a persistent, append-only cache.

    The inventory API never reports master ids, so each unknown release costs
    one ``/releases/{id}`` call. Resolved mappings never expire. New mappings
    are kept in memory until :meth:`flush`, which re-reads the document and
    merges under a lock so concurrently resolved keys are never dropped.
    """

    def __init__(
        self,
        client: DiscogsClient,
        repository: SellerMonitoringRepository,
        retry_policy: RetryPolicy,
        *,
        master_refresh_days: int = 30,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self._repository = repository
        self._retry_policy = retry_policy
        self._master_refresh = timedelta(days=master_refresh_days)
        self._sleep = sleep
        self._lock = threading.Lock()
        self._cache: ReleaseCacheDocument | None = None
        self._pending: dict[int, int] = {}
        self._pending_masters: dict[int, MasterReleases] = {}
        self._session_misses: set[int] = set()

    def _loaded(self) -> ReleaseCacheDocument:
        if self._cache is None:
            self._cache = self._repository.load_release_cache()
            logger.debug(
                "Loaded release cache: %s releases, %s masters",
                len(self._cache.release_to_master),
                len(self._cache.master_to_releases),
            )
        return self._cache

    def _retry(self, operation: Callable[[], T], context: str) -> T:
        return with_retry(operation, policy=self._retry_policy, context=context, sleep=self._sleep)

    def get(self, release_id: int) -> Optional[int]:
        """Cache-only lookup."""

        with self._lock:
            return self._loaded().release_to_master.get(release_id)

    def _record(self, release_id: int, master_id: int) -> None:
        cache = self._loaded()
        cache.release_to_master[release_id] = master_id
        self._pending[release_id] = master_id
        entry = cache.master_to_releases.setdefault(master_id, MasterReleases(fetched_at=None))
        if release_id not in entry.releases:
            entry.releases.append(release_id)

    def resolve(self, release_id: int) -> Optional[int]:
        """Return the master id for ``release_id``, or ``None`` if it has none.

        Lookup failures are logged and reported as ``None``; a missing
        credential is not a lookup failure and propagates.
        """

        cached = self.get(release_id)
        if cached is not None:
            return cached
        with self._lock:
            if release_id in self._session_misses:
                return None

        try:
            release = self._retry(
                lambda: self._client.get_release(release_id),
                context=f"release {release_id}",
            )
        except (requests.RequestException, ValueError) as exc:
            logger.debug("Failed to look up master for release %s: %s", release_id, exc)
            with self._lock:
                self._session_misses.add(release_id)
            return None

        with self._lock:
            if release.master_id is None:
                self._session_misses.add(release_id)
                return None
            self._record(release_id, release.master_id)
        return release.master_id

    def flush(self) -> int:
        """Persist pending mappings, merging with the stored document."""

        with self._lock:
            if not self._pending and not self._pending_masters:
                return 0
            stored = self._repository.load_release_cache()
            for release_id, master_id in self._pending.items():
                stored.release_to_master.setdefault(release_id, master_id)
                entry = stored.master_to_releases.setdefault(master_id, MasterReleases(fetched_at=None))
                if release_id not in entry.releases:
                    entry.releases.append(release_id)
            for master_id, fetched in self._pending_masters.items():
                entry = stored.master_to_releases.setdefault(master_id, MasterReleases())
                for release_id in fetched.releases:
                    if release_id not in entry.releases:
                        entry.releases.append(release_id)
                entry.fetched_at = fetched.fetched_at
            self._repository.save_release_cache(stored)
            written = len(self._pending)
            self._pending.clear()
            self._pending_masters.clear()
            self._cache = stored
        logger.debug("Saved release cache with %s new releases", written)
        return written

    def reset_session(self) -> None:
        """Forget per-scan negative lookups."""

        with self._lock:
            self._session_misses.clear()

    def _is_fresh(self, entry: MasterReleases | None, now: datetime) -> bool:
        if entry is None or not entry.releases or entry.fetched_at is None:
            return False
        return now - entry.fetched_at < self._master_refresh

    def is_complete_for(self, master_ids: Iterable[int]) -> bool:
        """``True`` when every master has freshly fetched versions cached.

        A release missing from a complete cache cannot belong to any of
        ``master_ids``, so scans can skip looking it up.
        """

        now = utcnow()
        with self._lock:
            cache = self._loaded()
            return all(self._is_fresh(cache.master_to_releases.get(master_id), now) for master_id in master_ids)

    def _fetch_versions(self, master_id: int) -> list[int]:
        release_ids: list[int] = []
        page = 1
        while True:
            versions = self._retry(
                lambda: self._client.get_master_versions(master_id, page),
                context=f"versions for master {master_id} page {page}",
            )
            release_ids.extend(versions.release_ids)
            if page >= versions.pages:
                break
            page += 1
        return release_ids

    def warm_masters(self, master_ids: Iterable[int], *, refresh_stale: bool = True) -> CacheRefreshResult:
        """Pre-populate the cache with every release of the given masters.

        Masters fetched within ``master_refresh_days`` are skipped; older ones
        are refetched (when ``refresh_stale``) to pick up new pressings.
        """

        now = utcnow()
        with self._lock:
            cache = self._loaded()
            start_count = len(cache.release_to_master)

        processed = 0
        stale_refreshed = 0
        for master_id in master_ids:
            with self._lock:
                existing = self._loaded().master_to_releases.get(master_id)
            if existing is not None and existing.releases and existing.fetched_at is not None:
                if self._is_fresh(existing, now) or not refresh_stale:
                    continue
                stale_refreshed += 1

            try:
                release_ids = self._fetch_versions(master_id)
            except (requests.RequestException, ValueError) as exc:
                logger.warning("Failed to fetch releases for master %s: %s", master_id, exc)
                continue

            with self._lock:
                for release_id in release_ids:
                    self._record(release_id, master_id)
                fetched = MasterReleases(releases=list(release_ids), fetched_at=utcnow())
                self._pending_masters[master_id] = fetched
                entry = self._loaded().master_to_releases.setdefault(master_id, MasterReleases())
                entry.fetched_at = fetched.fetched_at
            processed += 1
            if processed % 10 == 0:
                self.flush()
                logger.info("Cache refresh progress: %s masters processed", processed)

        self.flush()
        with self._lock:
            added = len(self._loaded().release_to_master) - start_count
        logger.info(
            "Release cache refresh complete: %s masters processed, %s stale refreshed, %s releases added",
            processed,
            stale_refreshed,
            added,
        )
        return CacheRefreshResult(masters_processed=processed, releases_added=added, stale_refreshed=stale_refreshed)

    def stats(self) -> CacheStats:
        now = utcnow()
        with self._lock:
            cache = self._loaded()
            stale = sum(1 for entry in cache.master_to_releases.values() if not self._is_fresh(entry, now))
            return CacheStats(
                total_releases=len(cache.release_to_master),
                total_masters=len(cache.master_to_releases),
                last_updated=cache.last_updated,
                stale_masters=stale,
            )
