"""Status changes for persisted matches."""
from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import timedelta

import requests

from ..api.client import DiscogsClient
from ..errors import ConfigurationError
from ..models import ListingCheck, VerificationResult, utcnow
from ..retry import RetryPolicy, with_retry
from ..storage.repository import SellerMonitoringRepository

logger = logging.getLogger(__name__)

REACTIVATABLE_STATUSES = frozenset({"sold", "removed"})


class MatchLifecycleManager:
    """Marks matches seen or notified, prunes old sales and re-verifies listings."""

    def __init__(
        self,
        repository: SellerMonitoringRepository,
        client: DiscogsClient,
        retry_policy: RetryPolicy,
        *,
        stale_after: timedelta = timedelta(days=30),
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._repository = repository
        self._client = client
        self._retry_policy = retry_policy
        self._stale_after = stale_after
        self._sleep = sleep

    def mark_seen(self, match_id: str) -> bool:
        store = self._repository.load_matches()
        match = store.find(match_id)
        if match is None or match.status == "seen":
            return False
        match.status = "seen"
        match.status_changed_at = utcnow()
        self._repository.save_matches(store)
        logger.debug("Marked match %s as seen", match_id)
        return True

    def mark_notified(self, match_id: str) -> bool:
        store = self._repository.load_matches()
        match = store.find(match_id)
        if match is None or match.notified:
            return False
        match.notified = True
        self._repository.save_matches(store)
        logger.debug("Marked match %s as notified", match_id)
        return True

    def remove_stale(self) -> int:
        """Drop sold matches found at least ``stale_after`` ago."""

        store = self._repository.load_matches()
        cutoff = utcnow() - self._stale_after
        kept = [match for match in store.matches if match.status != "sold" or match.date_found > cutoff]
        removed = len(store.matches) - len(kept)
        if removed > 0:
            store.matches = kept
            self._repository.save_matches(store)
            logger.info("Pruned %s stale matches", removed)
        return removed

    def verify_listing(self, listing_id: int) -> ListingCheck:
        """Ask the marketplace whether ``listing_id`` is still listed."""

        try:
            available = with_retry(
                lambda: self._client.listing_exists(listing_id),
                policy=self._retry_policy,
                context=f"verify listing {listing_id}",
                sleep=self._sleep,
            )
        except (requests.RequestException, ConfigurationError, ValueError) as exc:
            logger.error("Error verifying listing %s: %s", listing_id, exc)
            return ListingCheck(available=False, error=str(exc) or "Failed to verify listing")
        return ListingCheck(available=available)

    def verify_and_update(self, match_id: str) -> VerificationResult:
        """Re-check one match against the marketplace.

        A listing that still exists reactivates a sold match. A listing that is
        gone confirms the current status. Either way the confidence becomes
        ``verified``. When the check itself fails nothing is written.
        """

        store = self._repository.load_matches()
        match = store.find(match_id)
        if match is None:
            logger.warning("Match %s not found", match_id)
            return VerificationResult(updated=False, status="not_found", error="Match not found")

        check = self.verify_listing(match.listing_id)
        if check.error is not None:
            return VerificationResult(updated=False, status=match.status, error=check.error)

        now = utcnow()
        previous_status = match.status
        if check.available and match.status in REACTIVATABLE_STATUSES:
            match.status = "active"
            match.status_changed_at = now
            logger.info("Match %s was marked %s but is still listed, reactivated", match_id, previous_status)
        match.status_confidence = "verified"
        match.last_verified_at = now
        self._repository.save_matches(store)

        changed = previous_status != match.status
        if changed:
            sellers = self._repository.load_sellers()
            for seller in sellers:
                if match.belongs_to(seller.username):
                    seller.match_count = store.active_count(seller.username)
                    self._repository.save_sellers(sellers)
                    break
        return VerificationResult(updated=changed, status=match.status)
