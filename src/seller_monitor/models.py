"""Domain models used throughout the seller monitor."""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal, Optional

MatchStatus = Literal["active", "seen", "sold", "removed"]
StatusConfidence = Literal["verified", "unverified"]
ScanState = Literal["idle", "scanning", "completed", "error"]

SETTINGS_SCHEMA_VERSION = 1


def utcnow() -> datetime:
    return datetime.now(UTC)


def format_timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a stored ISO timestamp; naive values are taken to be UTC."""

    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


@dataclass(slots=True)
class MonitoredSeller:
    """A marketplace seller whose inventory is scanned for wishlist items."""

    username: str
    display_name: str
    added_at: datetime
    inventory_size: Optional[int] = None
    match_count: int = 0
    last_scanned: Optional[datetime] = None
    last_quick_check: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "username": self.username,
            "display_name": self.display_name,
            "added_at": format_timestamp(self.added_at),
            "inventory_size": self.inventory_size,
            "match_count": self.match_count,
            "last_scanned": format_timestamp(self.last_scanned),
            "last_quick_check": format_timestamp(self.last_quick_check),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> MonitoredSeller:
        return cls(
            username=str(data["username"]),
            display_name=str(data.get("display_name") or data["username"]),
            added_at=parse_timestamp(data.get("added_at")) or utcnow(),
            inventory_size=data.get("inventory_size"),
            match_count=int(data.get("match_count") or 0),
            last_scanned=parse_timestamp(data.get("last_scanned")),
            last_quick_check=parse_timestamp(data.get("last_quick_check")),
        )


@dataclass(slots=True)
class InventoryItem:
    """One listing from a seller's inventory, as needed for matching."""

    listing_id: int
    release_id: int
    artist: str
    title: str
    format: list[str] = field(default_factory=list)
    condition: str = "?/?"
    price: float = 0.0
    currency: str = "USD"
    listing_url: str = ""
    cover_image: Optional[str] = None
    listed_at: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> InventoryItem:
        return cls(
            listing_id=int(data["listing_id"]),
            release_id=int(data["release_id"]),
            artist=str(data.get("artist") or "Unknown Artist"),
            title=str(data.get("title") or "Unknown Title"),
            format=[str(token) for token in data.get("format") or []],
            condition=str(data.get("condition") or "?/?"),
            price=float(data.get("price") or 0.0),
            currency=str(data.get("currency") or "USD"),
            listing_url=str(data.get("listing_url") or ""),
            cover_image=data.get("cover_image"),
            listed_at=data.get("listed_at"),
        )


@dataclass(slots=True)
class SellerMatch:
    """A listing from a monitored seller whose master is on the wishlist."""

    id: str
    seller_id: str
    release_id: int
    master_id: int
    artist: str
    title: str
    format: list[str]
    condition: str
    price: float
    currency: str
    listing_url: str
    listing_id: int
    date_found: datetime
    notified: bool = False
    status: MatchStatus = "active"
    status_confidence: Optional[StatusConfidence] = None
    status_changed_at: Optional[datetime] = None
    last_verified_at: Optional[datetime] = None
    cover_image: Optional[str] = None

    @classmethod
    def from_item(
        cls, seller_id: str, item: InventoryItem, master_id: int, found_at: datetime | None = None
    ) -> SellerMatch:
        """Create a fresh match; the id is derived from the listing id alone."""

        return cls(
            id=str(item.listing_id),
            seller_id=seller_id,
            release_id=item.release_id,
            master_id=master_id,
            artist=item.artist,
            title=item.title,
            format=list(item.format),
            condition=item.condition,
            price=item.price,
            currency=item.currency,
            listing_url=item.listing_url,
            listing_id=item.listing_id,
            date_found=found_at or utcnow(),
            cover_image=item.cover_image,
        )

    def belongs_to(self, username: str) -> bool:
        return self.seller_id.lower() == username.lower()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "seller_id": self.seller_id,
            "release_id": self.release_id,
            "master_id": self.master_id,
            "artist": self.artist,
            "title": self.title,
            "format": list(self.format),
            "condition": self.condition,
            "price": self.price,
            "currency": self.currency,
            "listing_url": self.listing_url,
            "listing_id": self.listing_id,
            "date_found": format_timestamp(self.date_found),
            "notified": self.notified,
            "status": self.status,
            "status_confidence": self.status_confidence,
            "status_changed_at": format_timestamp(self.status_changed_at),
            "last_verified_at": format_timestamp(self.last_verified_at),
            "cover_image": self.cover_image,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SellerMatch:
        listing_id = int(data["listing_id"])
        return cls(
            id=str(data.get("id") or listing_id),
            seller_id=str(data["seller_id"]),
            release_id=int(data["release_id"]),
            master_id=int(data["master_id"]),
            artist=str(data.get("artist") or "Unknown Artist"),
            title=str(data.get("title") or "Unknown Title"),
            format=[str(token) for token in data.get("format") or []],
            condition=str(data.get("condition") or "?/?"),
            price=float(data.get("price") or 0.0),
            currency=str(data.get("currency") or "USD"),
            listing_url=str(data.get("listing_url") or ""),
            listing_id=listing_id,
            date_found=parse_timestamp(data.get("date_found")) or utcnow(),
            notified=bool(data.get("notified", False)),
            status=data.get("status") or "active",
            status_confidence=data.get("status_confidence"),
            status_changed_at=parse_timestamp(data.get("status_changed_at")),
            last_verified_at=parse_timestamp(data.get("last_verified_at")),
            cover_image=data.get("cover_image"),
        )


@dataclass(slots=True)
class InventoryCheckpoint:
    """Resumable progress for a seller's interrupted full inventory fetch."""

    items: list[InventoryItem]
    last_completed_page: int
    total_pages: int
    total_items: int
    saved_at: datetime

    def age_hours(self, now: datetime | None = None) -> float:
        return ((now or utcnow()) - self.saved_at).total_seconds() / 3600

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "last_completed_page": self.last_completed_page,
            "total_pages": self.total_pages,
            "total_items": self.total_items,
            "saved_at": format_timestamp(self.saved_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> InventoryCheckpoint:
        return cls(
            items=[InventoryItem.from_dict(item) for item in data.get("items") or []],
            last_completed_page=int(data.get("last_completed_page") or 0),
            total_pages=int(data.get("total_pages") or 1),
            total_items=int(data.get("total_items") or 0),
            saved_at=parse_timestamp(data.get("saved_at")) or datetime.fromtimestamp(0, tz=UTC),
        )


@dataclass(slots=True)
class InventorySnapshot:
    """The last complete inventory fetched for a seller."""

    username: str
    items: list[InventoryItem]
    total_items: int
    fetched_at: datetime

    def age_hours(self, now: datetime | None = None) -> float:
        return ((now or utcnow()) - self.fetched_at).total_seconds() / 3600

    def to_dict(self) -> dict[str, Any]:
        return {
            "username": self.username,
            "items": [item.to_dict() for item in self.items],
            "total_items": self.total_items,
            "fetched_at": format_timestamp(self.fetched_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> InventorySnapshot:
        return cls(
            username=str(data.get("username") or ""),
            items=[InventoryItem.from_dict(item) for item in data.get("items") or []],
            total_items=int(data.get("total_items") or 0),
            fetched_at=parse_timestamp(data.get("fetched_at")) or datetime.fromtimestamp(0, tz=UTC),
        )


@dataclass(slots=True)
class ScanStatus:
    """Progress of the (single) seller scan."""

    status: ScanState = "idle"
    sellers_scanned: int = 0
    total_sellers: int = 0
    progress: int = 0
    new_matches: int = 0
    last_scan_timestamp: Optional[datetime] = None
    error: Optional[str] = None
    current_seller: Optional[str] = None
    current_page: Optional[int] = None
    total_pages: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["last_scan_timestamp"] = format_timestamp(self.last_scan_timestamp)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ScanStatus:
        return cls(
            status=data.get("status") or "idle",
            sellers_scanned=int(data.get("sellers_scanned") or 0),
            total_sellers=int(data.get("total_sellers") or 0),
            progress=int(data.get("progress") or 0),
            new_matches=int(data.get("new_matches") or 0),
            last_scan_timestamp=parse_timestamp(data.get("last_scan_timestamp")),
            error=data.get("error"),
            current_seller=data.get("current_seller"),
            current_page=data.get("current_page"),
            total_pages=data.get("total_pages"),
        )


@dataclass(slots=True)
class SellerMonitoringSettings:
    """User-tunable scan settings."""

    scan_frequency_days: int = 7
    quick_check_frequency_hours: int = 24
    notify_on_new_match: bool = True
    vinyl_formats_only: bool = True
    schema_version: int = SETTINGS_SCHEMA_VERSION

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SellerMonitoringSettings:
        defaults = cls()
        return cls(
            scan_frequency_days=int(data.get("scan_frequency_days", defaults.scan_frequency_days)),
            quick_check_frequency_hours=int(
                data.get("quick_check_frequency_hours", defaults.quick_check_frequency_hours)
            ),
            notify_on_new_match=bool(data.get("notify_on_new_match", defaults.notify_on_new_match)),
            vinyl_formats_only=bool(data.get("vinyl_formats_only", defaults.vinyl_formats_only)),
            schema_version=SETTINGS_SCHEMA_VERSION,
        )


@dataclass(slots=True)
class CacheInfo:
    """Freshness of the match list, in seconds."""

    last_updated: Optional[datetime]
    oldest_scan_age: float
    next_scan_due: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "last_updated": format_timestamp(self.last_updated),
            "oldest_scan_age": self.oldest_scan_age,
            "next_scan_due": self.next_scan_due,
        }


@dataclass(slots=True)
class VerificationResult:
    """Outcome of re-checking a single match against the marketplace."""

    updated: bool
    status: str
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class MatchStore:
    """The persisted collection of matches across all sellers."""

    matches: list[SellerMatch] = field(default_factory=list)
    last_updated: datetime = field(default_factory=utcnow)

    def find(self, match_id: str) -> SellerMatch | None:
        for match in self.matches:
            if match.id == match_id:
                return match
        return None

    def for_seller(self, username: str) -> list[SellerMatch]:
        return [match for match in self.matches if match.belongs_to(username)]

    def active_count(self, username: str) -> int:
        return sum(1 for match in self.for_seller(username) if match.status != "sold")


@dataclass(slots=True)
class ListingCheck:
    """Result of asking the marketplace whether a listing still exists."""

    available: bool
    error: Optional[str] = None
