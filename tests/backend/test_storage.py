from __future__ import annotations

from datetime import UTC, datetime

import pytest

from seller_monitor.models import MonitoredSeller, SellerMonitoringSettings
from seller_monitor.storage.json_store import JsonFileStore, sanitize_cache_key
from seller_monitor.storage.repository import RELEASE_CACHE_FILE, SETTINGS_FILE, SellerMonitoringRepository


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("../../etc/passwd", "______etc_passwd"),
        ("User With Spaces", "user_with_spaces"),
        ("Vinyl-Shop_01", "vinyl-shop_01"),
    ],
)
def test_sanitize_cache_key(name: str, expected: str) -> None:
    assert sanitize_cache_key(name) == expected


def test_checkpoint_path_stays_inside_cache_directory() -> None:
    path = SellerMonitoringRepository.checkpoint_path("../../etc/passwd")

    assert path == "sellers/inventory-cache/______etc_passwd-partial.json"


def test_write_then_read_json(tmp_path) -> None:
    store = JsonFileStore(tmp_path)

    store.write_json("sellers/example.json", {"value": 1})

    assert store.read_json("sellers/example.json") == {"value": 1}
    assert store.list_files("sellers") == ["example.json"]
    assert store.read_json("sellers/missing.json") is None


def test_delete_missing_document_is_not_an_error(tmp_path) -> None:
    store = JsonFileStore(tmp_path)
    store.write_json("doc.json", [])

    store.delete("doc.json")
    store.delete("doc.json")

    assert not store.exists("doc.json")


def test_paths_outside_data_directory_are_rejected(tmp_path) -> None:
    store = JsonFileStore(tmp_path / "data")

    with pytest.raises(ValueError):
        store.read_json("../outside.json")


def test_sellers_round_trip_with_timestamps(repository: SellerMonitoringRepository) -> None:
    added = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)
    repository.save_sellers([MonitoredSeller(username="VinylShop", display_name="Vinyl Shop", added_at=added)])

    sellers = repository.load_sellers()

    assert len(sellers) == 1
    assert sellers[0].added_at == added
    assert sellers[0].last_scanned is None


def test_settings_with_unknown_schema_fall_back_to_defaults(repository: SellerMonitoringRepository) -> None:
    repository.store.write_json(SETTINGS_FILE, {"schema_version": 99, "scan_frequency_days": 1})

    assert repository.load_settings() == SellerMonitoringSettings()


def test_update_scan_status_merges_into_stored_document(repository: SellerMonitoringRepository) -> None:
    repository.update_scan_status(status="scanning", total_sellers=3)
    repository.update_scan_status(sellers_scanned=1, progress=33)

    status = repository.load_scan_status()

    assert status.status == "scanning"
    assert status.total_sellers == 3
    assert status.progress == 33


def test_release_cache_migrates_bare_release_lists(repository: SellerMonitoringRepository) -> None:
    repository.store.write_json(
        RELEASE_CACHE_FILE,
        {
            "release_to_master": {"1": 10, "2": 10},
            "master_to_releases": {"10": [1, 2]},
            "last_updated": "2024-01-01T00:00:00+00:00",
        },
    )

    cache = repository.load_release_cache()

    assert cache.release_to_master == {1: 10, 2: 10}
    assert cache.master_to_releases[10].releases == [1, 2]
    assert cache.master_to_releases[10].fetched_at == datetime(2024, 1, 1, tzinfo=UTC)
