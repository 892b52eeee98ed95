"""Typed views over Discogs API payloads.

The API is loosely typed: numbers arrive as strings, optional blocks are
missing, and listings occasionally lack a release. Everything is parsed here so
the rest of the code base only deals with the dataclasses below.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Optional

from ..formats import split_formats
from ..models import InventoryItem

LISTING_URL_TEMPLATE = "https://www.discogs.com/sell/item/{listing_id}"


@dataclass(frozen=True, slots=True)
class SellerProfile:
    username: str
    user_id: Optional[int]
    inventory_count: int


@dataclass(frozen=True, slots=True)
class InventoryPage:
    page: int
    pages: int
    items_total: int
    listings: list[InventoryItem] = field(default_factory=list)
    raw_count: int = 0
    """Listings in the payload, including ones that could not be parsed."""


@dataclass(frozen=True, slots=True)
class ReleaseInfo:
    release_id: int
    master_id: Optional[int]
    title: Optional[str] = None


@dataclass(frozen=True, slots=True)
class MasterVersionsPage:
    master_id: int
    page: int
    pages: int
    release_ids: list[int] = field(default_factory=list)


def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _as_float(value: Any) -> float:
    try:
        return float(value) if value is not None else 0.0
    except (TypeError, ValueError):
        return 0.0


def _as_mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _pagination(payload: Mapping[str, Any]) -> tuple[int, int]:
    pagination = _as_mapping(payload.get("pagination"))
    pages = _as_int(pagination.get("pages")) or 1
    items = _as_int(pagination.get("items")) or 0
    return max(pages, 1), max(items, 0)


def parse_seller_profile(payload: Any, requested: str) -> SellerProfile:
    data = _as_mapping(payload)
    return SellerProfile(
        username=str(data.get("username") or requested),
        user_id=_as_int(data.get("id")),
        inventory_count=_as_int(data.get("num_for_sale") or data.get("seller_num_for_sale")) or 0,
    )


def parse_listing(listing: Any) -> Optional[InventoryItem]:
    """Convert one inventory listing; ``None`` when it has no usable ids."""

    data = _as_mapping(listing)
    release = _as_mapping(data.get("release"))
    listing_id = _as_int(data.get("id"))
    release_id = _as_int(release.get("id"))
    if listing_id is None or release_id is None:
        return None

    price = _as_mapping(data.get("price"))
    format_field = release.get("format")
    if isinstance(format_field, list):
        formats = [str(token).strip() for token in format_field if str(token).strip()]
    else:
        formats = split_formats(format_field if isinstance(format_field, str) else None)

    return InventoryItem(
        listing_id=listing_id,
        release_id=release_id,
        artist=str(release.get("artist") or "Unknown Artist"),
        title=str(release.get("title") or "Unknown Title"),
        format=formats,
        condition=f"{data.get('condition') or '?'}/{data.get('sleeve_condition') or '?'}",
        price=_as_float(price.get("value")),
        currency=str(price.get("currency") or "USD"),
        listing_url=str(data.get("uri") or LISTING_URL_TEMPLATE.format(listing_id=listing_id)),
        cover_image=release.get("thumbnail") or None,
        listed_at=data.get("posted") or None,
    )


def parse_inventory_page(payload: Any, page: int) -> InventoryPage:
    data = _as_mapping(payload)
    pages, items_total = _pagination(data)
    raw_listings = data.get("listings")
    if not isinstance(raw_listings, list):
        raw_listings = []
    listings: list[InventoryItem] = []
    for raw in raw_listings:
        item = parse_listing(raw)
        if item is not None:
            listings.append(item)
    return InventoryPage(
        page=page, pages=pages, items_total=items_total, listings=listings, raw_count=len(raw_listings)
    )


def parse_release(payload: Any, release_id: int) -> ReleaseInfo:
    data = _as_mapping(payload)
    master_id = _as_int(data.get("master_id"))
    return ReleaseInfo(
        release_id=_as_int(data.get("id")) or release_id,
        master_id=master_id if master_id else None,
        title=data.get("title"),
    )


def parse_master_versions(payload: Any, master_id: int, page: int) -> MasterVersionsPage:
    data = _as_mapping(payload)
    pages, _ = _pagination(data)
    release_ids: list[int] = []
    versions = data.get("versions")
    if isinstance(versions, list):
        for version in versions:
            version_id = _as_int(_as_mapping(version).get("id"))
            if version_id is not None:
                release_ids.append(version_id)
    return MasterVersionsPage(master_id=master_id, page=page, pages=pages, release_ids=release_ids)
