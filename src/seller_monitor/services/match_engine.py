"""Matches seller inventories against the wishlist."""
from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Optional

from ..formats import is_vinyl
from ..models import InventoryItem, ListingCheck, MatchStore, SellerMatch, utcnow

logger = logging.getLogger(__name__)

Resolver = Callable[[int], Optional[int]]
ListingVerifier = Callable[[int], ListingCheck]


@dataclass(slots=True)
class MatchResult:
    """Matches produced from one seller's inventory."""

    new: list[SellerMatch] = field(default_factory=list)
    updated: list[SellerMatch] = field(default_factory=list)
    listing_ids: set[int] = field(default_factory=set)
    skipped_formats: int = 0


class MatchEngine:
    """Cross-references listings with the wanted master ids.

    Match ids are the listing ids, so scanning the same listing again refreshes
    the existing match instead of adding a second one. Refreshes only touch
    price, currency and condition; status and the notified flag belong to the
    lifecycle manager.
    """

    def __init__(self, *, max_verifications: int = 5) -> None:
        self._max_verifications = max_verifications

    def match(
        self,
        seller_id: str,
        items: Iterable[InventoryItem],
        wanted_masters: set[int],
        existing: Iterable[SellerMatch],
        *,
        vinyl_only: bool,
        resolve: Resolver,
        now: Optional[datetime] = None,
    ) -> MatchResult:
        found_at = now or utcnow()
        existing_by_listing = {match.listing_id: match for match in existing if match.belongs_to(seller_id)}
        result = MatchResult()
        produced: set[int] = set()

        for item in items:
            result.listing_ids.add(item.listing_id)
            if item.listing_id in produced:
                continue
            if vinyl_only and not is_vinyl(item.format):
                result.skipped_formats += 1
                continue

            current = existing_by_listing.get(item.listing_id)
            if current is not None:
                result.updated.append(
                    replace(current, price=item.price, currency=item.currency, condition=item.condition)
                )
                produced.add(item.listing_id)
                continue

            master_id = resolve(item.release_id)
            if master_id is None or master_id not in wanted_masters:
                continue

            result.new.append(SellerMatch.from_item(seller_id, item, master_id, found_at))
            produced.add(item.listing_id)

        logger.info(
            "Matching complete for %s: %s listings, %s non-vinyl skipped, %s existing, %s new",
            seller_id,
            len(result.listing_ids),
            result.skipped_formats,
            len(result.updated),
            len(result.new),
        )
        return result

    def merge(
        self,
        store: MatchStore,
        seller_id: str,
        result: MatchResult,
        *,
        full_scan: bool,
        verify: Optional[ListingVerifier] = None,
        now: Optional[datetime] = None,
    ) -> int:
        """Apply ``result`` to ``store`` and return the seller's unsold match count.

        Only a full scan sees the whole inventory, so only a full scan marks
        vanished listings as sold.
        """

        changed_at = now or utcnow()
        updated_by_id = {match.id: match for match in result.updated}
        store.matches = [updated_by_id.get(match.id, match) for match in store.matches]
        known_ids = {match.id for match in store.matches}
        for match in result.new:
            if match.id not in known_ids:
                store.matches.append(match)
                known_ids.add(match.id)

        if full_scan:
            self._mark_disappeared(store, seller_id, result.listing_ids, verify, changed_at)

        return store.active_count(seller_id)

    def _mark_disappeared(
        self,
        store: MatchStore,
        seller_id: str,
        listing_ids: set[int],
        verify: Optional[ListingVerifier],
        changed_at: datetime,
    ) -> None:
        verified = 0
        for match in store.for_seller(seller_id):
            if match.status == "sold" or match.listing_id in listing_ids:
                continue

            confidence = "unverified"
            if verify is not None and verified < self._max_verifications:
                verified += 1
                check = verify(match.listing_id)
                if check.available:
                    logger.info(
                        "Listing %s missing from inventory but still available, keeping it", match.listing_id
                    )
                    continue
                if check.error is None:
                    confidence = "verified"

            match.status = "sold"
            match.status_confidence = confidence
            match.status_changed_at = changed_at
            match.last_verified_at = changed_at if confidence == "verified" else None
            logger.debug("Marked match %s as sold (%s)", match.id, confidence)
