"""Service for managing the wishlist consulted during scans."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional, Protocol


@dataclass(slots=True)
class WishlistItem:
    """A wanted record; only items with a master id can be matched."""

    release_id: int
    artist: str
    title: str
    master_id: Optional[int] = None


class WishlistSource(Protocol):
    def get_wishlist_items(self) -> list[WishlistItem]: ...

    def get_local_want_list(self) -> list[WishlistItem]: ...


def wanted_master_ids(source: WishlistSource) -> set[int]:
    """Master ids from both the Discogs wishlist and the local want list."""

    masters: set[int] = set()
    for item in [*source.get_wishlist_items(), *source.get_local_want_list()]:
        if item.master_id:
            masters.add(item.master_id)
    return masters


@dataclass(slots=True)
class WishlistService:
    """Manages an in-memory wishlist and local want list."""

    items: dict[int, WishlistItem] = field(default_factory=dict)
    local_wants: dict[int, WishlistItem] = field(default_factory=dict)

    def add_item(self, release_id: int, artist: str, title: str, master_id: Optional[int] = None) -> WishlistItem:
        item = WishlistItem(release_id=release_id, artist=artist, title=title, master_id=master_id)
        self.items[release_id] = item
        return item

    def add_local_want(self, master_id: int, artist: str, title: str) -> WishlistItem:
        item = WishlistItem(release_id=0, artist=artist, title=title, master_id=master_id)
        self.local_wants[master_id] = item
        return item

    def remove_item(self, release_id: int) -> None:
        self.items.pop(release_id, None)

    def get_wishlist_items(self) -> list[WishlistItem]:
        return list(self.items.values())

    def get_local_want_list(self) -> list[WishlistItem]:
        return list(self.local_wants.values())

    def load(self, items: Iterable[WishlistItem]) -> None:
        self.items = {item.release_id: item for item in items}
