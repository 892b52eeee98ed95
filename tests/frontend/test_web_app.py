from __future__ import annotations

import pytest

from seller_monitor.models import InventoryItem, MatchStore, MonitoredSeller, SellerMatch, utcnow
from seller_monitor.services.inventory import InventoryPaginator
from seller_monitor.services.lifecycle import MatchLifecycleManager
from seller_monitor.services.match_engine import MatchEngine
from seller_monitor.services.release_resolver import ReleaseMasterResolver
from seller_monitor.services.scanner import ScanOrchestrator
from seller_monitor.services.seller_service import SellerMonitoringService
from seller_monitor.services.wishlist_service import WishlistService
from seller_monitor.web.app import create_app


def discogs(payloads):
    def handler(path: str, params: dict):
        if path == "/users/vinylshop":
            return payloads.response(200, {"username": "VinylShop", "id": 1, "num_for_sale": 12})
        if path.startswith("/users/"):
            return payloads.response(404, {"message": "User does not exist or may have been deleted."})
        if path.startswith("/marketplace/listings/"):
            return payloads.response(200, {"id": int(path.rsplit("/", 1)[1])})
        return payloads.response(500, {"message": "unexpected"})

    return handler


@pytest.fixture
def web_app(make_client, repository, retry_policy, sleeps, payloads):
    client, _ = make_client(discogs(payloads))
    wishlist = WishlistService()
    resolver = ReleaseMasterResolver(client, repository, retry_policy, sleep=sleeps.append)
    lifecycle = MatchLifecycleManager(repository, client, retry_policy, sleep=sleeps.append)
    scanner = ScanOrchestrator(
        repository,
        client,
        wishlist,
        InventoryPaginator(client, repository, retry_policy, sleep=sleeps.append),
        resolver,
        MatchEngine(),
        lifecycle,
    )
    service = SellerMonitoringService(repository, client, wishlist, scanner, lifecycle, resolver)

    item = InventoryItem(listing_id=42, release_id=1, artist="Artist", title="Title", format=["LP"])
    sold = SellerMatch.from_item("VinylShop", item, 12345)
    sold.status = "sold"
    repository.save_matches(MatchStore(matches=[sold]))

    app = create_app(service)
    app.config.update(TESTING=True)
    return app, service, scanner


def test_add_and_list_sellers(web_app) -> None:
    app, _, _ = web_app
    client = app.test_client()

    created = client.post("/api/v1/sellers", json={"username": "vinylshop"})
    listed = client.get("/api/v1/sellers")

    assert created.status_code == 201
    assert created.get_json()["data"]["username"] == "VinylShop"
    body = listed.get_json()
    assert body["success"] is True
    assert body["total"] == 1
    assert body["data"][0]["inventory_size"] == 12


@pytest.mark.parametrize("field", ["display_name", "displayName"])
def test_add_seller_accepts_display_name_spellings(web_app, field) -> None:
    app, _, _ = web_app

    created = app.test_client().post("/api/v1/sellers", json={"username": "vinylshop", field: "Vinyl Shop Berlin"})

    assert created.status_code == 201
    assert created.get_json()["data"]["display_name"] == "Vinyl Shop Berlin"


@pytest.mark.parametrize(
    ("payload", "message"),
    [
        ({}, "Username is required"),
        ({"username": "bad name"}, "Invalid username format"),
        ({"username": "ghost"}, "User not found"),
    ],
)
def test_add_seller_errors_are_bad_requests(web_app, payload, message) -> None:
    app, _, _ = web_app
    client = app.test_client()

    response = client.post("/api/v1/sellers", json=payload)

    assert response.status_code == 400
    body = response.get_json()
    assert body["success"] is False
    assert message in body["error"]


def test_duplicate_seller_is_a_bad_request(web_app, repository) -> None:
    app, _, _ = web_app
    repository.save_sellers([MonitoredSeller(username="VinylShop", display_name="Vinyl", added_at=utcnow())])

    response = app.test_client().post("/api/v1/sellers", json={"username": "VINYLSHOP"})

    assert response.status_code == 400
    assert "Already monitoring" in response.get_json()["error"]


def test_remove_unknown_seller_is_not_found(web_app) -> None:
    app, _, _ = web_app

    response = app.test_client().delete("/api/v1/sellers/nobody")

    assert response.status_code == 404


def test_matches_with_cache_info(web_app) -> None:
    app, _, _ = web_app

    body = app.test_client().get("/api/v1/sellers/matches?includeCacheInfo=true").get_json()

    assert body["total"] == 1
    assert body["data"][0]["id"] == "42"
    assert set(body["cache_info"]) == {"last_updated", "oldest_scan_age", "next_scan_due"}


def test_verify_reactivates_sold_match(web_app) -> None:
    app, service, _ = web_app

    response = app.test_client().post("/api/v1/sellers/matches/42/verify")

    body = response.get_json()
    assert body["data"]["updated"] is True
    assert body["data"]["status"] == "active"
    assert body["message"] == "Match status updated to active"
    assert service.get_all_matches()[0].status_confidence == "verified"


def test_mark_seen(web_app) -> None:
    app, service, _ = web_app

    response = app.test_client().post("/api/v1/sellers/matches/42/seen")

    assert response.get_json()["data"]["updated"] is True
    assert service.get_all_matches()[0].status == "seen"


def test_settings_round_trip(web_app) -> None:
    app, _, _ = web_app
    client = app.test_client()

    saved = client.post("/api/v1/sellers/settings", json={"vinyl_formats_only": False})
    fetched = client.get("/api/v1/sellers/settings")

    assert saved.status_code == 200
    assert fetched.get_json()["data"]["vinyl_formats_only"] is False


def test_invalid_settings_are_rejected(web_app) -> None:
    app, _, _ = web_app

    response = app.test_client().post("/api/v1/sellers/settings", json={"scan_frequency_days": -1})

    assert response.status_code == 400


def test_scan_endpoints(web_app) -> None:
    app, _, scanner = web_app
    client = app.test_client()

    started = client.post("/api/v1/sellers/scan", json={})
    assert started.status_code == 202
    assert scanner.wait(5)
    status = client.get("/api/v1/sellers/scan/status").get_json()

    assert status["data"]["status"] == "completed"
    assert status["data"]["progress"] == 100


def test_cache_stats(web_app) -> None:
    app, _, _ = web_app

    body = app.test_client().get("/api/v1/sellers/cache/stats").get_json()

    assert body["data"]["total_releases"] == 0
