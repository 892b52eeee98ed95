"""Page-by-page inventory fetching with resumable checkpoints."""
from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Literal, Optional

import requests

from ..api.client import DiscogsClient
from ..api.responses import InventoryPage
from ..errors import InventoryIncompleteError
from ..models import InventoryCheckpoint, InventoryItem, InventorySnapshot, utcnow
from ..retry import RetryPolicy, is_pagination_limit_error, with_retry
from ..storage.repository import SellerMonitoringRepository

logger = logging.getLogger(__name__)

PageCallback = Callable[[int, int], None]
FetchState = Literal["fresh", "resuming", "completed", "partial-saved"]

MAX_REVERSE_PAGES = 100


@dataclass(slots=True)
class InventoryFetchResult:
    items: list[InventoryItem] = field(default_factory=list)
    total_items: int = 0
    state: FetchState = "completed"
    complete: bool = True
    """``False`` when only the first ``pages_limit`` pages were requested."""
    resumed_from_page: Optional[int] = None
    from_snapshot: bool = False


class InventoryPaginator:
    """Fetches one seller's inventory, checkpointing progress between pages.

    A fetch is fresh (page 1), resuming (from a checkpoint), completed
    (checkpoint removed) or partial-saved (checkpoint written, error raised).
    Completed results report ``completed``; quick checks that read live pages
    report ``fresh``.

    A full fetch resumes from a checkpoint younger than ``checkpoint_max_age``
    and otherwise starts at page 1. When a page fails after all retries, the
    listings gathered so far are checkpointed and
    :class:`~seller_monitor.errors.InventoryIncompleteError` is raised so the
    next scan can pick up at the failed page.

    Every complete full fetch is also kept as a snapshot. While the snapshot is
    younger than ``snapshot_max_age``, quick checks are answered from it and
    full fetches only read newest-first pages until they reach a listing the
    snapshot already holds.
    """

    def __init__(
        self,
        client: DiscogsClient,
        repository: SellerMonitoringRepository,
        retry_policy: RetryPolicy,
        *,
        per_page: int = 100,
        checkpoint_max_age: timedelta = timedelta(hours=24),
        snapshot_max_age: timedelta = timedelta(hours=6),
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self._repository = repository
        self._retry_policy = retry_policy
        self._per_page = per_page
        self._checkpoint_max_age = checkpoint_max_age
        self._snapshot_max_age = snapshot_max_age
        self._sleep = sleep

    def load_checkpoint(self, username: str) -> InventoryCheckpoint | None:
        """Return a usable checkpoint, discarding one that has gone stale."""

        checkpoint = self._repository.load_checkpoint(username)
        if checkpoint is None:
            return None
        if utcnow() - checkpoint.saved_at >= self._checkpoint_max_age:
            logger.info("Discarding stale checkpoint for %s (%.1fh old)", username, checkpoint.age_hours())
            self._repository.delete_checkpoint(username)
            return None
        return checkpoint

    def load_snapshot(self, username: str) -> InventorySnapshot | None:
        """Return the last complete inventory if it is still fresh and not empty."""

        snapshot = self._repository.load_snapshot(username)
        if snapshot is None or not snapshot.items:
            return None
        if utcnow() - snapshot.fetched_at >= self._snapshot_max_age:
            logger.debug("Cached inventory for %s is %.1fh old, ignoring it", username, snapshot.age_hours())
            return None
        return snapshot

    def _fetch_page(self, username: str, page: int, sort_order: str = "desc") -> InventoryPage:
        return with_retry(
            lambda: self._client.get_inventory_page(
                username, page, per_page=self._per_page, sort_order=sort_order
            ),
            policy=self._retry_policy,
            context=f"inventory page {page} for {username}",
            sleep=self._sleep,
        )

    def _save_checkpoint(
        self, username: str, items: list[InventoryItem], last_completed_page: int, total_pages: int, total_items: int
    ) -> None:
        self._repository.save_checkpoint(
            username,
            InventoryCheckpoint(
                items=list(items),
                last_completed_page=last_completed_page,
                total_pages=total_pages,
                total_items=total_items,
                saved_at=utcnow(),
            ),
        )

    def _save_snapshot(self, username: str, items: list[InventoryItem], total_items: int) -> None:
        self._repository.save_snapshot(
            InventorySnapshot(username=username, items=list(items), total_items=total_items, fetched_at=utcnow())
        )

    def fetch(
        self,
        username: str,
        *,
        pages_limit: Optional[int] = None,
        on_page: Optional[PageCallback] = None,
        force_fresh: bool = False,
    ) -> InventoryFetchResult:
        """Fetch the inventory of ``username``.

        ``pages_limit`` turns the call into a quick check of the newest pages;
        quick checks never read or write checkpoints. ``force_fresh`` ignores
        the cached snapshot.
        """

        snapshot = None if force_fresh else self.load_snapshot(username)
        if snapshot is not None:
            if pages_limit is not None:
                logger.debug("Using cached inventory for quick check of %s", username)
                return InventoryFetchResult(
                    items=list(snapshot.items), total_items=snapshot.total_items, from_snapshot=True
                )
            return self._refresh_snapshot(username, snapshot, on_page)

        result = self._fetch_pages(username, pages_limit, on_page)
        if pages_limit is None:
            self._save_snapshot(username, result.items, result.total_items)
        return result

    def _refresh_snapshot(
        self, username: str, snapshot: InventorySnapshot, on_page: Optional[PageCallback]
    ) -> InventoryFetchResult:
        """Read newest-first pages until one overlaps the cached inventory."""

        logger.info("Checking for new listings of %s (have %s cached items)", username, len(snapshot.items))
        known = {item.listing_id for item in snapshot.items}
        new_items: list[InventoryItem] = []
        new_ids: set[int] = set()
        total_items = snapshot.total_items
        page = 1
        total_pages = 1
        while page <= total_pages:
            if on_page is not None:
                on_page(page, total_pages)
            try:
                result = self._fetch_page(username, page)
            except requests.RequestException as exc:
                if is_pagination_limit_error(exc):
                    logger.warning("Page limit reached while checking %s for new listings", username)
                    break
                raise
            total_pages = result.pages
            total_items = result.items_total
            if result.raw_count == 0:
                break
            overlap = False
            for item in result.listings:
                if item.listing_id in known:
                    overlap = True
                elif item.listing_id not in new_ids:
                    new_ids.add(item.listing_id)
                    new_items.append(item)
            if overlap:
                break
            page += 1

        if not new_items:
            logger.debug("No new listings for %s, using cached inventory", username)
            return InventoryFetchResult(items=list(snapshot.items), total_items=total_items, from_snapshot=True)

        logger.info("Found %s new listings for %s across %s page(s)", len(new_items), username, page)
        items = new_items + [item for item in snapshot.items if item.listing_id not in new_ids]
        self._save_snapshot(username, items, total_items)
        return InventoryFetchResult(items=items, total_items=total_items, from_snapshot=True)

    def _fetch_pages(
        self, username: str, pages_limit: Optional[int], on_page: Optional[PageCallback]
    ) -> InventoryFetchResult:
        full_fetch = pages_limit is None
        items: list[InventoryItem] = []
        page = 1
        total_pages = 1
        total_items = 0
        resumed_from: Optional[int] = None

        checkpoint = self.load_checkpoint(username) if full_fetch else None
        if checkpoint is not None:
            items.extend(checkpoint.items)
            page = checkpoint.last_completed_page + 1
            total_pages = checkpoint.total_pages
            total_items = checkpoint.total_items
            resumed_from = page
            logger.info(
                "Resuming scan for %s from page %s/%s (%s items already fetched)",
                username,
                page,
                total_pages,
                len(items),
            )
        last_completed = page - 1

        while page <= total_pages and (full_fetch or page <= pages_limit):
            if on_page is not None:
                on_page(page, total_pages)
            logger.debug("Fetching inventory page %s/%s for %s", page, total_pages, username)
            try:
                result = self._fetch_page(username, page)
            except requests.RequestException as exc:
                if is_pagination_limit_error(exc) and items:
                    items = self._fetch_remaining_oldest_first(username, items, total_items)
                    if full_fetch:
                        self._repository.delete_checkpoint(username)
                    return InventoryFetchResult(
                        items=items,
                        total_items=total_items,
                        state="completed" if full_fetch else "fresh",
                        complete=full_fetch,
                        resumed_from_page=resumed_from,
                    )
                if full_fetch and items:
                    self._save_checkpoint(username, items, last_completed, total_pages, total_items)
                    logger.warning(
                        "Partial scan for %s: %s items from %s/%s pages, will resume from page %s",
                        username,
                        len(items),
                        last_completed,
                        total_pages,
                        last_completed + 1,
                    )
                    raise InventoryIncompleteError(
                        username, list(items), last_completed, total_pages, total_items
                    ) from exc
                raise

            total_pages = result.pages
            total_items = result.items_total
            if result.raw_count == 0:
                break
            if len(result.listings) < result.raw_count:
                logger.debug(
                    "Skipped %s unusable listings on page %s for %s",
                    result.raw_count - len(result.listings),
                    page,
                    username,
                )
            items.extend(result.listings)
            last_completed = page
            if full_fetch and page < total_pages:
                self._save_checkpoint(username, items, last_completed, total_pages, total_items)
            page += 1

        if full_fetch:
            self._repository.delete_checkpoint(username)
        logger.debug("Fetched %s inventory items for %s", len(items), username)
        return InventoryFetchResult(
            items=items,
            total_items=total_items,
            state="completed" if full_fetch else "fresh",
            complete=full_fetch or last_completed >= total_pages,
            resumed_from_page=resumed_from,
        )

    def _fetch_remaining_oldest_first(
        self, username: str, items: list[InventoryItem], total_items: int
    ) -> list[InventoryItem]:
        """Work around the 100-page cap on other users' inventories.

        Listings beyond page 100 in newest-first order are the first pages in
        oldest-first order.
        """

        missing_items = total_items - len(items)
        missing_pages = math.ceil(missing_items / self._per_page) if missing_items > 0 else 0
        if missing_pages == 0:
            return items
        if missing_pages > MAX_REVERSE_PAGES:
            logger.warning(
                "Seller %s has %s items, beyond the combined page limit; %s items will be missing",
                username,
                total_items,
                missing_items - MAX_REVERSE_PAGES * self._per_page,
            )
            missing_pages = MAX_REVERSE_PAGES

        logger.info(
            "Page limit reached for %s, fetching %s remaining items (%s pages) oldest first",
            username,
            missing_items,
            missing_pages,
        )
        seen = {item.listing_id for item in items}
        merged = list(items)
        for page in range(1, missing_pages + 1):
            try:
                result = self._fetch_page(username, page, sort_order="asc")
            except requests.RequestException as exc:
                logger.error("Error fetching reverse page %s for %s: %s", page, username, exc)
                break
            for item in result.listings:
                if item.listing_id not in seen:
                    seen.add(item.listing_id)
                    merged.append(item)
        return merged
