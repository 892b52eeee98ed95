"""Client for interacting with the Discogs API."""
from __future__ import annotations

import logging
from typing import Any, Optional

import requests
from requests.auth import AuthBase

from ..config import DiscogsConfig
from .auth import TokenProvider, build_auth
from .rate_limit import RateLimiter
from .responses import (
    InventoryPage,
    MasterVersionsPage,
    ReleaseInfo,
    SellerProfile,
    parse_inventory_page,
    parse_master_versions,
    parse_release,
    parse_seller_profile,
)

logger = logging.getLogger(__name__)


class DiscogsClient:
    """Handles communication with the Discogs API.

    Every request waits on the shared :class:`RateLimiter` before it is
    dispatched, so calls are serialised no matter how many sellers are
    scanned. Authentication is resolved from the token provider on each
    request; a missing credential raises
    :class:`~seller_monitor.errors.ConfigurationError`. Non-2xx responses raise
    :class:`requests.HTTPError` so callers can classify them.
    """

    def __init__(
        self,
        config: DiscogsConfig,
        token_provider: TokenProvider,
        rate_limiter: RateLimiter,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._config = config
        self._token_provider = token_provider
        self._rate_limiter = rate_limiter
        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": config.user_agent})

    def build_auth(self) -> AuthBase:
        """Return the auth object for the currently stored credential."""

        return build_auth(
            self._token_provider.get_discogs_token(),
            self._config.consumer_key,
            self._config.consumer_secret,
        )

    def _get(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        auth = self.build_auth()
        url = f"{self._config.base_url.rstrip('/')}/{path.lstrip('/')}"
        self._rate_limiter.acquire()
        logger.debug("GET %s params=%s", url, params)
        response = self._session.get(
            url,
            params=params,
            auth=auth,
            timeout=self._config.request_timeout,
        )
        response.raise_for_status()
        if not response.content:
            return {}
        return response.json()

    def get_user(self, username: str) -> SellerProfile:
        payload = self._get(f"/users/{username}")
        return parse_seller_profile(payload, username)

    def get_inventory_page(
        self,
        username: str,
        page: int,
        *,
        per_page: int = 100,
        sort_order: str = "desc",
    ) -> InventoryPage:
        payload = self._get(
            f"/users/{username}/inventory",
            params={"page": page, "per_page": per_page, "sort": "listed", "sort_order": sort_order},
        )
        return parse_inventory_page(payload, page)

    def get_release(self, release_id: int) -> ReleaseInfo:
        payload = self._get(f"/releases/{release_id}")
        return parse_release(payload, release_id)

    def get_master_versions(self, master_id: int, page: int, *, per_page: int = 100) -> MasterVersionsPage:
        payload = self._get(f"/masters/{master_id}/versions", params={"page": page, "per_page": per_page})
        return parse_master_versions(payload, master_id, page)

    def listing_exists(self, listing_id: int) -> bool:
        """``True`` when the listing is still up, ``False`` on 404.

        Any other failure propagates.
        """

        try:
            self._get(f"/marketplace/listings/{listing_id}")
        except requests.HTTPError as exc:
            if exc.response is not None and exc.response.status_code == 404:
                return False
            raise
        return True
