"""Exceptions raised by the seller monitor."""
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import InventoryItem


class SellerMonitorError(Exception):
    """Base class for all seller monitor errors."""


class ConfigurationError(SellerMonitorError):
    """Credentials are missing or unusable; a scan cannot start."""


class ValidationError(SellerMonitorError):
    """A caller supplied an invalid value."""


class SellerNotFoundError(SellerMonitorError):
    """The seller does not exist on Discogs."""

    def __init__(self, username: str) -> None:
        super().__init__(f"User not found on Discogs: {username}")
        self.username = username


class SellerAlreadyMonitoredError(SellerMonitorError):
    """The seller is already in the monitored list."""

    def __init__(self, username: str) -> None:
        super().__init__(f"Already monitoring this seller: {username}")
        self.username = username


class InventoryIncompleteError(SellerMonitorError):
    """An inventory fetch stopped part way; progress was checkpointed."""

    def __init__(
        self,
        username: str,
        items: list[InventoryItem],
        last_completed_page: int,
        total_pages: int,
        total_items: int,
    ) -> None:
        super().__init__(
            f"Inventory for {username} incomplete after page {last_completed_page}/{total_pages}"
        )
        self.username = username
        self.items = items
        self.last_completed_page = last_completed_page
        self.total_pages = total_pages
        self.total_items = total_items
        self.state = "partial-saved"
