"""Background scanning of every monitored seller."""
from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import Literal, Optional

from ..api.client import DiscogsClient
from ..errors import ConfigurationError, InventoryIncompleteError
from ..models import MonitoredSeller, ScanStatus, SellerMonitoringSettings, utcnow
from ..storage.repository import SellerMonitoringRepository
from .inventory import InventoryPaginator
from .lifecycle import MatchLifecycleManager
from .match_engine import MatchEngine, Resolver
from .release_resolver import ReleaseMasterResolver
from .wishlist_service import WishlistSource, wanted_master_ids

logger = logging.getLogger(__name__)

ScanMode = Literal["full", "quick"]

QUICK_CHECK_PAGES = 1


class ScanLock:
    """Single-flight guard for one orchestrator."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._running = False

    @property
    def running(self) -> bool:
        with self._lock:
            return self._running

    def try_acquire(self) -> bool:
        with self._lock:
            if self._running:
                return False
            self._running = True
            return True

    def release(self) -> None:
        with self._lock:
            self._running = False


def choose_scan_mode(
    seller: MonitoredSeller,
    settings: SellerMonitoringSettings,
    *,
    force_fresh: bool = False,
    now: Optional[datetime] = None,
) -> Optional[ScanMode]:
    """Decide whether ``seller`` needs a full scan, a quick check or nothing."""

    now = now or utcnow()
    if force_fresh or seller.last_scanned is None:
        return "full"
    if now - seller.last_scanned >= timedelta(days=settings.scan_frequency_days):
        return "full"
    if seller.last_quick_check is None:
        return "quick"
    if now - seller.last_quick_check >= timedelta(hours=settings.quick_check_frequency_hours):
        return "quick"
    return None


class ScanOrchestrator:
    """Runs scans of all monitored sellers, one at a time, on a worker thread.

    Only one scan runs per orchestrator. Progress is merged into the persisted
    scan status after every page and every seller so callers can poll it.
    """

    def __init__(
        self,
        repository: SellerMonitoringRepository,
        client: DiscogsClient,
        wishlist: WishlistSource,
        paginator: InventoryPaginator,
        resolver: ReleaseMasterResolver,
        engine: MatchEngine,
        lifecycle: MatchLifecycleManager,
    ) -> None:
        self._repository = repository
        self._client = client
        self._wishlist = wishlist
        self._paginator = paginator
        self._resolver = resolver
        self._engine = engine
        self._lifecycle = lifecycle
        self._lock = ScanLock()
        self._thread: threading.Thread | None = None

    @property
    def is_scanning(self) -> bool:
        return self._lock.running

    def start_scan(self, *, force_fresh: bool = False) -> ScanStatus:
        """Start a background scan, or report the one already running."""

        if not self._lock.try_acquire():
            logger.info("Scan already in progress")
            return self._repository.load_scan_status()

        try:
            status = self._mark_started()
            thread = threading.Thread(
                target=self._run_and_release,
                args=(force_fresh,),
                name="seller-scan",
                daemon=True,
            )
            self._thread = thread
            thread.start()
        except BaseException:
            self._lock.release()
            raise
        return status

    def run_scan(self, *, force_fresh: bool = False) -> ScanStatus:
        """Run a scan on the calling thread and return the final status."""

        if not self._lock.try_acquire():
            logger.info("Scan already in progress")
            return self._repository.load_scan_status()
        try:
            self._mark_started()
            return self._scan(force_fresh)
        finally:
            self._lock.release()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Join the background scan; ``True`` once no scan thread is alive."""

        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def _mark_started(self) -> ScanStatus:
        sellers = self._repository.load_sellers()
        return self._repository.update_scan_status(
            status="scanning",
            sellers_scanned=0,
            total_sellers=len(sellers),
            progress=0,
            new_matches=0,
            error=None,
            current_seller=None,
            current_page=None,
            total_pages=None,
        )

    def _run_and_release(self, force_fresh: bool) -> None:
        try:
            self._scan(force_fresh)
        except Exception as exc:
            logger.exception("Seller scan failed")
            self._repository.update_scan_status(status="error", error=str(exc), current_seller=None)
        finally:
            self._lock.release()

    def _finish(self, state: str, *, error: Optional[str] = None, **changes: object) -> ScanStatus:
        return self._repository.update_scan_status(
            status=state,
            progress=100,
            error=error,
            last_scan_timestamp=utcnow(),
            current_seller=None,
            current_page=None,
            total_pages=None,
            **changes,
        )

    def _scan(self, force_fresh: bool) -> ScanStatus:
        sellers = self._repository.load_sellers()
        if not sellers:
            logger.info("No sellers to scan")
            return self._finish("completed", sellers_scanned=0, total_sellers=0, new_matches=0)

        try:
            self._client.build_auth()
        except ConfigurationError as exc:
            logger.error("Cannot scan sellers: %s", exc)
            return self._finish("error", error=str(exc))

        settings = self._repository.load_settings()
        wanted = wanted_master_ids(self._wishlist)
        self._resolver.reset_session()
        resolve: Resolver = self._resolver.resolve
        if not wanted:
            logger.info("Wishlist has no masters, matching from the release cache only")
            resolve = self._resolver.get
        elif self._resolver.is_complete_for(wanted):
            logger.info("Release cache covers all %s wanted masters, skipping unknown releases", len(wanted))
            resolve = self._resolver.get
        logger.info(
            "Starting scan of %s sellers against %s wanted masters%s",
            len(sellers),
            len(wanted),
            " (force fresh)" if force_fresh else "",
        )

        total = len(sellers)
        new_matches = 0
        attempted = 0
        failed = 0
        last_error: Optional[str] = None
        for index, seller in enumerate(sellers, start=1):
            mode = choose_scan_mode(seller, settings, force_fresh=force_fresh)
            if mode is None:
                logger.info("Skipping %s, scanned recently", seller.username)
            else:
                attempted += 1
                self._repository.update_scan_status(current_seller=seller.username, current_page=None, total_pages=None)
                try:
                    new_matches += self._scan_seller(seller, mode, settings, wanted, resolve, force_fresh)
                except ConfigurationError as exc:
                    failed += 1
                    last_error = str(exc)
                    logger.error("Cannot scan seller %s: %s", seller.username, exc)
                except Exception as exc:
                    failed += 1
                    last_error = str(exc)
                    logger.exception("Error scanning seller %s", seller.username)
                finally:
                    self._resolver.flush()

            self._repository.update_scan_status(
                sellers_scanned=index,
                progress=int(index * 100 / total),
                new_matches=new_matches,
            )

        self._repository.save_sellers(self._merge_seller_updates(sellers))
        self._lifecycle.remove_stale()

        if attempted and failed == attempted:
            logger.error("Scan failed for all %s attempted sellers", attempted)
            return self._finish("error", error=last_error or "All sellers failed", new_matches=new_matches)

        logger.info(
            "Scan complete: %s sellers, %s attempted, %s failed, %s new matches",
            total,
            attempted,
            failed,
            new_matches,
        )
        return self._finish("completed", new_matches=new_matches, sellers_scanned=total)

    def _scan_seller(
        self,
        seller: MonitoredSeller,
        mode: ScanMode,
        settings: SellerMonitoringSettings,
        wanted: set[int],
        resolve: Resolver,
        force_fresh: bool = False,
    ) -> int:
        """Scan one seller and return the number of new matches."""

        full = mode == "full"
        logger.info("Scanning %s (%s)", seller.username, "full" if full else "quick check")

        def on_page(page: int, total_pages: int) -> None:
            self._repository.update_scan_status(current_page=page, total_pages=total_pages)

        partial = False
        try:
            fetched = self._paginator.fetch(
                seller.username,
                pages_limit=None if full else QUICK_CHECK_PAGES,
                on_page=on_page,
                force_fresh=force_fresh,
            )
            items = fetched.items
            total_items = fetched.total_items
        except InventoryIncompleteError as exc:
            logger.warning(
                "Inventory for %s incomplete (%s items), matching what was fetched", seller.username, len(exc.items)
            )
            items = exc.items
            total_items = exc.total_items
            partial = True

        store = self._repository.load_matches()
        result = self._engine.match(
            seller.username,
            items,
            wanted,
            store.matches,
            vinyl_only=settings.vinyl_formats_only,
            resolve=resolve,
        )
        active = self._engine.merge(
            store,
            seller.username,
            result,
            full_scan=full and not partial,
            verify=self._lifecycle.verify_listing,
        )
        self._repository.save_matches(store)

        now = utcnow()
        seller.inventory_size = total_items
        seller.match_count = active
        seller.last_quick_check = now
        if full and not partial:
            seller.last_scanned = now
        return len(result.new)

    def _merge_seller_updates(self, scanned: list[MonitoredSeller]) -> list[MonitoredSeller]:
        """Apply scan results to the stored seller list.

        Sellers removed while the scan was running stay removed; sellers added
        meanwhile are kept as stored.
        """

        by_name = {seller.username.lower(): seller for seller in scanned}
        merged: list[MonitoredSeller] = []
        for stored in self._repository.load_sellers():
            updated = by_name.get(stored.username.lower())
            if updated is None:
                merged.append(stored)
                continue
            stored.inventory_size = updated.inventory_size
            stored.match_count = updated.match_count
            stored.last_scanned = updated.last_scanned
            stored.last_quick_check = updated.last_quick_check
            merged.append(stored)
        return merged
