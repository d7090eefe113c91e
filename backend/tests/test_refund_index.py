from datetime import date
from zoneinfo import ZoneInfo

import pytest

from app.domain import listing
from app.domain.refunds import index as refund_index
from app.domain.refunds.schemas import (
    REFUNDS_INDEX_KEY,
    RefundClaim,
    RefundFilters,
    branch_index_key,
    refund_key,
)
from app.infra.kv import InMemoryKeyValueStore, StoreError


def _claim(claim_id: str, **fields) -> RefundClaim:
    defaults = {
        "status": "pending",
        "submitted_at": "2024-05-01T03:00:00.000Z",
        "submitted_by": "a0001",
        "submitted_by_branch": "울산",
        "company_name": "ABC Motors",
    }
    defaults.update(fields)
    return RefundClaim(id=claim_id, **defaults)


async def _seed(store: InMemoryKeyValueStore, claims: list[RefundClaim]) -> None:
    """Insert oldest first so the index reads newest first."""
    for claim in claims:
        await store.set(refund_key(claim.id), claim.to_stored_blob())
        await refund_index.add_to_indexes(store, claim)


@pytest.mark.anyio
async def test_filtered_pages_follow_index_order():
    store = InMemoryKeyValueStore()
    await _seed(store, [_claim(f"r{n}") for n in range(1, 6)])
    filters = RefundFilters(status="pending")

    first = await refund_index.list_refund_ids(store, filters, 1, 2)
    second = await refund_index.list_refund_ids(store, filters, 2, 2)

    assert first.ids == ["r5", "r4"]
    assert first.total_count == 5
    assert second.ids == ["r3", "r2"]
    assert second.total_count == 5


@pytest.mark.anyio
async def test_identity_filter_matches_filtered_path_on_small_index():
    store = InMemoryKeyValueStore()
    await _seed(store, [_claim(f"r{n}") for n in range(1, 8)])

    fast = await refund_index.list_refund_ids(store, RefundFilters(), 2, 3)
    scanned = await refund_index.list_refund_ids(store, RefundFilters(status="pending"), 2, 3)

    assert fast.ids == scanned.ids == ["r4", "r3", "r2"]
    assert fast.total_count == scanned.total_count == 7


@pytest.mark.anyio
async def test_pages_are_disjoint_and_cover_matches():
    store = InMemoryKeyValueStore()
    claims = [_claim(f"r{n}", status="approved" if n % 3 == 0 else "pending") for n in range(1, 21)]
    await _seed(store, claims)
    filters = RefundFilters(status="pending")

    seen: list[str] = []
    for page in range(1, 5):
        result = await refund_index.list_refund_ids(store, filters, page, 4)
        assert not set(result.ids) & set(seen)
        seen.extend(result.ids)

    expected = [f"r{n}" for n in range(20, 0, -1) if n % 3 != 0]
    assert seen == expected


@pytest.mark.anyio
async def test_scan_stops_at_window_cap():
    store = InMemoryKeyValueStore()
    # 3,000 ids; only positions 2,600-2,700 (0-based from the head) match.
    for n in range(3000):
        position = 2999 - n
        status = "approved" if 2600 <= position <= 2700 else "pending"
        claim = _claim(f"r{n}", status=status)
        await store.set(refund_key(claim.id), claim.to_stored_blob())
        await store.list_prepend(REFUNDS_INDEX_KEY, claim.id)

    result = await refund_index.list_refund_ids(store, RefundFilters(status="approved"), 1, 20)

    assert result.total_count == 0
    assert result.ids == []


@pytest.mark.anyio
async def test_scan_reads_at_most_max_windows():
    store = InMemoryKeyValueStore()
    await _seed(store, [_claim(f"r{n}") for n in range(1, 31)])

    result = await listing.scan_matching_ids(
        store,
        REFUNDS_INDEX_KEY,
        entity_key=refund_key,
        model=RefundClaim,
        predicate=lambda claim: True,
        collection="refunds",
        window_size=5,
        max_windows=3,
    )

    assert result.windows_read == 3
    assert result.matched_ids == [f"r{n}" for n in range(30, 15, -1)]


@pytest.mark.anyio
async def test_scan_skips_missing_and_unreadable_entities():
    store = InMemoryKeyValueStore()
    await _seed(store, [_claim("r1"), _claim("r2")])
    await store.list_prepend(REFUNDS_INDEX_KEY, "ghost")
    await store.list_prepend(REFUNDS_INDEX_KEY, "broken")
    await store.set(refund_key("broken"), {"id": "broken"})

    result = await refund_index.list_refund_ids(store, RefundFilters(status="pending"), 1, 10)

    assert result.ids == ["r2", "r1"]
    assert result.total_count == 2


@pytest.mark.anyio
async def test_branch_exclusion_applies_before_other_filters():
    store = InMemoryKeyValueStore()
    await _seed(
        store,
        [
            _claim("r1", submitted_by_branch="울산"),
            _claim("r2", submitted_by_branch="장한평"),
            _claim("r3", submitted_by_branch="kc"),
        ],
    )

    result = await refund_index.list_refund_ids(
        store, RefundFilters(exclude_branch="장한평"), 1, 10
    )

    assert result.ids == ["r3", "r1"]
    assert result.total_count == 2


@pytest.mark.anyio
async def test_scan_propagates_store_errors():
    class BrokenStore(InMemoryKeyValueStore):
        async def batch_get(self, keys):
            raise StoreError("batch failed")

    store = BrokenStore()
    await _seed(store, [_claim("r1")])

    with pytest.raises(StoreError):
        await refund_index.list_refund_ids(store, RefundFilters(status="pending"), 1, 10)


def test_date_range_uses_whole_days_in_zone():
    seoul = ZoneInfo("Asia/Seoul")
    predicate = refund_index.build_predicate(
        RefundFilters(from_date=date(2024, 5, 1), to_date=date(2024, 5, 1)), seoul
    )

    # 2024-05-01 23:30 in Seoul.
    assert predicate(_claim("r1", submitted_at="2024-05-01T14:30:00.000Z"))
    # 2024-05-02 00:30 in Seoul.
    assert not predicate(_claim("r2", submitted_at="2024-05-01T15:30:00.000Z"))
    assert not predicate(_claim("r3", submitted_at="not a date"))


def test_date_field_selects_refund_date():
    predicate = refund_index.build_predicate(
        RefundFilters(from_date=date(2024, 4, 1), to_date=date(2024, 4, 30), date_field="refundDate")
    )
    assert predicate(_claim("r1", refund_date="2024-04-15"))
    assert not predicate(_claim("r2", refund_date=None))


def test_field_filters_combine():
    predicate = refund_index.build_predicate(
        RefundFilters(
            company_name="abc",
            vehicle_number="12가-3456",
            refund_method="card",
            min_amount=1000,
            max_amount=5000,
        )
    )
    match = _claim(
        "r1", vehicle_number="12가 3456", refund_method="card", claim_amount=3000
    )
    assert predicate(match)
    assert not predicate(match.model_copy(update={"claim_amount": 6000}))
    assert not predicate(match.model_copy(update={"claim_amount": None}))
    assert not predicate(match.model_copy(update={"refund_method": "account"}))
    assert not predicate(match.model_copy(update={"company_name": "XYZ"}))


def test_acknowledged_filter():
    pending_ack = RefundFilters(acknowledged="pending")
    acknowledged = RefundFilters(acknowledged="acknowledged")
    rejected = _claim("r1", status="rejected")
    seen = _claim("r2", status="rejected", acknowledged_at="2024-05-02T00:00:00.000Z")

    assert refund_index.build_predicate(pending_ack)(rejected)
    assert not refund_index.build_predicate(pending_ack)(seen)
    assert refund_index.build_predicate(acknowledged)(seen)
    assert not refund_index.build_predicate(acknowledged)(rejected)


@pytest.mark.anyio
async def test_remove_from_indexes_drops_branch_entry():
    store = InMemoryKeyValueStore()
    claim = _claim("r1")
    await _seed(store, [claim])

    await refund_index.remove_from_indexes(store, claim)

    assert await store.list_range(REFUNDS_INDEX_KEY, 0, -1) == []
    assert await store.list_range(branch_index_key("울산"), 0, -1) == []
