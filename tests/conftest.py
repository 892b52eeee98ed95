from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import pytest
import requests

from seller_monitor.api.auth import StaticTokenProvider
from seller_monitor.api.client import DiscogsClient
from seller_monitor.api.rate_limit import RateLimiter
from seller_monitor.config import DiscogsConfig
from seller_monitor.retry import RetryPolicy
from seller_monitor.storage.json_store import JsonFileStore
from seller_monitor.storage.repository import SellerMonitoringRepository

BASE_URL = "https://api.discogs.test"


def json_response(status_code: int, payload: Any = None, url: str = BASE_URL) -> requests.Response:
    response = requests.Response()
    response.status_code = status_code
    response.url = url
    response.encoding = "utf-8"
    response._content = json.dumps(payload if payload is not None else {}).encode("utf-8")
    return response


class FakeSession:
    """Stands in for ``requests.Session``; ``handler(path, params)`` returns a response or an exception."""

    def __init__(self, handler: Callable[[str, dict[str, Any]], Any]) -> None:
        self.headers: dict[str, str] = {}
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.auth_seen: list[Any] = []
        self._handler = handler

    def get(self, url: str, params=None, auth=None, timeout=None) -> requests.Response:
        path = url.removeprefix(BASE_URL)
        params = dict(params or {})
        self.calls.append((path, params))
        self.auth_seen.append(auth)
        result = self._handler(path, params)
        if isinstance(result, BaseException):
            raise result
        return result

    def paths(self) -> list[str]:
        return [path for path, _ in self.calls]


def listing(listing_id: int, release_id: int, fmt: str = "LP, Album", price: float = 10.0) -> dict[str, Any]:
    return {
        "id": listing_id,
        "condition": "Very Good Plus (VG+)",
        "sleeve_condition": "Very Good (VG)",
        "price": {"value": price, "currency": "EUR"},
        "uri": f"https://www.discogs.com/sell/item/{listing_id}",
        "posted": "2024-01-01T00:00:00-08:00",
        "release": {
            "id": release_id,
            "artist": "Artist",
            "title": f"Title {release_id}",
            "format": fmt,
            "thumbnail": "",
        },
    }


def inventory_payload(listings: list[dict[str, Any]], page: int = 1, pages: int = 1, items: int | None = None):
    return {
        "pagination": {"page": page, "pages": pages, "items": len(listings) if items is None else items},
        "listings": listings,
    }


@pytest.fixture
def repository(tmp_path) -> SellerMonitoringRepository:
    return SellerMonitoringRepository(JsonFileStore(tmp_path))


@pytest.fixture
def retry_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, initial_delay=5.0, max_delay=60.0)


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def make_client() -> Callable[..., tuple[DiscogsClient, FakeSession]]:
    def factory(handler, token: str | None = "Discogs token=secret") -> tuple[DiscogsClient, FakeSession]:
        session = FakeSession(handler)
        client = DiscogsClient(
            DiscogsConfig(base_url=BASE_URL),
            StaticTokenProvider(token),
            RateLimiter(0),
            session=session,
        )
        return client, session

    return factory


@pytest.fixture
def payloads():
    class Payloads:
        listing = staticmethod(listing)
        inventory = staticmethod(inventory_payload)
        response = staticmethod(json_response)

    return Payloads
