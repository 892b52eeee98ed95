from __future__ import annotations

from datetime import timedelta

import pytest

from seller_monitor.errors import InventoryIncompleteError
from seller_monitor.models import InventoryCheckpoint, InventoryItem, InventorySnapshot, utcnow
from seller_monitor.services.inventory import InventoryPaginator


def item(listing_id: int) -> InventoryItem:
    return InventoryItem(listing_id=listing_id, release_id=listing_id * 10, artist="Artist", title="Title")


def paged_inventory(payloads, total_pages: int, per_page: int = 2, failing: dict[int, object] | None = None):
    """Handler serving ``total_pages`` newest-first pages of ``per_page`` listings."""

    failing = failing or {}
    total_items = total_pages * per_page

    def handler(path: str, params: dict):
        page = params["page"]
        if params["sort_order"] == "desc" and page in failing:
            return failing[page]
        start = (page - 1) * per_page + 1
        listings = [payloads.listing(n, n * 10) for n in range(start, start + per_page)]
        if params["sort_order"] == "asc":
            listings = [payloads.listing(n, n * 10) for n in range(total_items, total_items - per_page, -1)]
        return payloads.response(200, payloads.inventory(listings, page=page, pages=total_pages, items=total_items))

    return handler


@pytest.fixture
def make_paginator(make_client, repository, retry_policy, sleeps):
    def factory(handler, **kwargs):
        client, session = make_client(handler)
        paginator = InventoryPaginator(client, repository, retry_policy, per_page=2, sleep=sleeps.append, **kwargs)
        return paginator, session

    return factory


def requested_pages(session) -> list[int]:
    return [params["page"] for _, params in session.calls]


def test_full_fetch_walks_every_page_and_clears_checkpoint(make_paginator, payloads, repository) -> None:
    paginator, session = make_paginator(paged_inventory(payloads, total_pages=3))
    progress: list[tuple[int, int]] = []

    result = paginator.fetch("vinylshop", on_page=lambda page, total: progress.append((page, total)))

    assert requested_pages(session) == [1, 2, 3]
    assert [entry.listing_id for entry in result.items] == [1, 2, 3, 4, 5, 6]
    assert result.total_items == 6
    assert result.state == "completed"
    assert progress[-1] == (3, 3)
    assert repository.load_checkpoint("vinylshop") is None


def test_fresh_checkpoint_resumes_at_next_page(make_paginator, payloads, repository) -> None:
    repository.save_checkpoint(
        "vinylshop",
        InventoryCheckpoint(
            items=[item(1), item(2), item(3), item(4)],
            last_completed_page=2,
            total_pages=4,
            total_items=8,
            saved_at=utcnow() - timedelta(hours=1),
        ),
    )
    paginator, session = make_paginator(paged_inventory(payloads, total_pages=4))

    result = paginator.fetch("vinylshop")

    assert requested_pages(session)[0] == 3
    assert requested_pages(session) == [3, 4]
    assert result.resumed_from_page == 3
    assert result.state == "completed"
    assert len(result.items) == 8


def test_stale_checkpoint_is_ignored(make_paginator, payloads, repository) -> None:
    repository.save_checkpoint(
        "vinylshop",
        InventoryCheckpoint(
            items=[item(1), item(2)],
            last_completed_page=1,
            total_pages=2,
            total_items=4,
            saved_at=utcnow() - timedelta(hours=25),
        ),
    )
    paginator, session = make_paginator(paged_inventory(payloads, total_pages=2))

    result = paginator.fetch("vinylshop")

    assert requested_pages(session)[0] == 1
    assert result.resumed_from_page is None
    assert len(result.items) == 4


def test_failed_page_checkpoints_progress(make_paginator, payloads, repository) -> None:
    failure = payloads.response(500, {"message": "Internal error"})
    paginator, _ = make_paginator(paged_inventory(payloads, total_pages=3, failing={2: failure}))

    with pytest.raises(InventoryIncompleteError) as excinfo:
        paginator.fetch("vinylshop")

    assert excinfo.value.last_completed_page == 1
    assert excinfo.value.state == "partial-saved"
    assert [entry.listing_id for entry in excinfo.value.items] == [1, 2]
    checkpoint = repository.load_checkpoint("vinylshop")
    assert checkpoint is not None
    assert checkpoint.last_completed_page == 1
    assert checkpoint.total_pages == 3


def test_quick_check_reads_only_first_page_without_checkpoint(make_paginator, payloads, repository) -> None:
    paginator, session = make_paginator(paged_inventory(payloads, total_pages=3))

    result = paginator.fetch("vinylshop", pages_limit=1)

    assert requested_pages(session) == [1]
    assert result.complete is False
    assert result.state == "fresh"
    assert repository.load_checkpoint("vinylshop") is None


def test_pagination_limit_fetches_remainder_oldest_first(make_paginator, payloads, repository) -> None:
    limit = payloads.response(403, {"message": "Pagination above 100 disabled for inventories besides your own"})
    paginator, session = make_paginator(paged_inventory(payloads, total_pages=3, failing={3: limit}))

    result = paginator.fetch("vinylshop")

    assert [params["sort_order"] for _, params in session.calls] == ["desc", "desc", "desc", "asc"]
    assert sorted(entry.listing_id for entry in result.items) == [1, 2, 3, 4, 5, 6]
    assert repository.load_checkpoint("vinylshop") is None


def test_page_of_unusable_listings_does_not_end_pagination(make_paginator, payloads) -> None:
    pages = {
        1: [payloads.listing(1, 10), payloads.listing(2, 20)],
        2: [{"id": 3, "release": {}}, {"id": 4}],
        3: [payloads.listing(5, 50), payloads.listing(6, 60)],
    }

    def handler(path: str, params: dict):
        page = params["page"]
        return payloads.response(200, payloads.inventory(pages[page], page=page, pages=3, items=6))

    paginator, session = make_paginator(handler)

    result = paginator.fetch("vinylshop")

    assert requested_pages(session) == [1, 2, 3]
    assert [entry.listing_id for entry in result.items] == [1, 2, 5, 6]


def save_snapshot(repository, listing_ids: list[int], age: timedelta = timedelta(hours=1)) -> None:
    repository.save_snapshot(
        InventorySnapshot(
            username="vinylshop",
            items=[item(listing_id) for listing_id in listing_ids],
            total_items=len(listing_ids),
            fetched_at=utcnow() - age,
        )
    )


def test_complete_fetch_is_kept_as_snapshot(make_paginator, payloads, repository) -> None:
    paginator, _ = make_paginator(paged_inventory(payloads, total_pages=2))

    paginator.fetch("vinylshop")

    snapshot = repository.load_snapshot("vinylshop")
    assert snapshot is not None
    assert [entry.listing_id for entry in snapshot.items] == [1, 2, 3, 4]
    assert snapshot.total_items == 4


def test_quick_check_is_answered_from_fresh_snapshot(make_paginator, payloads, repository) -> None:
    save_snapshot(repository, [1, 2, 3])
    paginator, session = make_paginator(paged_inventory(payloads, total_pages=3))

    result = paginator.fetch("vinylshop", pages_limit=1)

    assert session.calls == []
    assert result.from_snapshot is True
    assert [entry.listing_id for entry in result.items] == [1, 2, 3]


def test_full_fetch_with_snapshot_stops_at_known_listings(make_paginator, payloads, repository) -> None:
    save_snapshot(repository, [3, 4, 5, 6])
    paginator, session = make_paginator(paged_inventory(payloads, total_pages=3))

    result = paginator.fetch("vinylshop")

    assert requested_pages(session) == [1, 2]
    assert [entry.listing_id for entry in result.items] == [1, 2, 3, 4, 5, 6]
    assert result.state == "completed"
    assert result.total_items == 6
    assert [entry.listing_id for entry in repository.load_snapshot("vinylshop").items] == [1, 2, 3, 4, 5, 6]


def test_force_fresh_ignores_snapshot(make_paginator, payloads, repository) -> None:
    save_snapshot(repository, [1, 2, 3, 4, 5, 6])
    paginator, session = make_paginator(paged_inventory(payloads, total_pages=3))

    result = paginator.fetch("vinylshop", force_fresh=True)

    assert requested_pages(session) == [1, 2, 3]
    assert result.from_snapshot is False


def test_stale_snapshot_is_ignored(make_paginator, payloads, repository) -> None:
    save_snapshot(repository, [1, 2], age=timedelta(hours=7))
    paginator, session = make_paginator(paged_inventory(payloads, total_pages=2))

    result = paginator.fetch("vinylshop", pages_limit=1)

    assert requested_pages(session) == [1]
    assert result.from_snapshot is False
