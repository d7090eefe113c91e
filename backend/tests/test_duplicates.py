import hashlib

import pytest

from app.domain.refunds import duplicates
from app.domain.refunds.schemas import RefundClaim, refund_key
from app.infra.kv import InMemoryKeyValueStore, StoreError


class FailingStore(InMemoryKeyValueStore):
    async def get(self, key):
        raise StoreError("unavailable")

    async def set(self, key, value):
        raise StoreError("unavailable")

    async def delete(self, key):
        raise StoreError("unavailable")

    async def batch_get(self, keys):
        raise StoreError("unavailable")


def _claim(claim_id: str, **fields) -> RefundClaim:
    defaults = {
        "submitted_at": "2024-05-01T00:00:00.000Z",
        "submitted_by": "a0001",
        "vehicle_number": "12가3456",
        "company_name": "ABC Motors",
        "refund_method": "card",
        "claim_amount": 100000,
    }
    defaults.update(fields)
    return RefundClaim(id=claim_id, **defaults)


def test_duplicate_key_normalizes_identity_fields():
    first = duplicates.generate_duplicate_key(" 12가 3456", "ABC Motors", "Card", 100000)
    second = duplicates.generate_duplicate_key("12가3456", "abc motors", "card", 100000)
    assert first == second


def test_duplicate_key_hashes_pipe_joined_tuple():
    expected = hashlib.sha256("12가3456|ABCMOTORS|card|100000".encode("utf-8")).hexdigest()
    assert duplicates.generate_duplicate_key("12가 3456", "abc motors", "CARD", 100000) == (
        f"refund:dup:{expected}"
    )


def test_duplicate_key_differs_by_amount():
    assert duplicates.generate_duplicate_key("12가3456", "ABC", "card", 100000) != (
        duplicates.generate_duplicate_key("12가3456", "ABC", "card", 100001)
    )


@pytest.mark.parametrize(
    ("amount", "expected"),
    [
        (100000, "100000"),
        (100000.0, "100000"),
        (1500.5, "1500.5"),
        (None, "0"),
        (0, "0"),
        (0.000001, "0.000001"),
        (1e-7, "1e-7"),
        (1.5e-7, "1.5e-7"),
        (1e20, "100000000000000000000"),
        (1e21, "1e+21"),
        (10**21, "1e+21"),
        (-2.5e22, "-2.5e+22"),
    ],
)
def test_format_amount(amount, expected):
    assert duplicates.format_amount(amount) == expected


@pytest.mark.anyio
async def test_check_duplicate_returns_live_claim():
    store = InMemoryKeyValueStore()
    claim = _claim("refund_1")
    await store.set(refund_key(claim.id), claim.to_stored_blob())
    await duplicates.register_claim(store, claim)

    existing = await duplicates.check_duplicate(store, "12가 3456", "abc motors", "card", 100000)

    assert existing == "refund_1"


@pytest.mark.anyio
async def test_removed_key_no_longer_matches():
    store = InMemoryKeyValueStore()
    claim = _claim("refund_1")
    await store.set(refund_key(claim.id), claim.to_stored_blob())
    await duplicates.register_claim(store, claim)
    assert await duplicates.check_duplicate(store, "12가3456", "ABC Motors", "card", 100000) == "refund_1"

    await duplicates.remove_claim(store, claim)

    assert await duplicates.check_duplicate(store, "12가3456", "ABC Motors", "card", 100000) is None

@pytest.mark.anyio
async def test_check_duplicate_prunes_stale_pointer():
    store = InMemoryKeyValueStore()
    claim = _claim("refund_gone")
    await duplicates.register_claim(store, claim)
    dup_key = duplicates.generate_duplicate_key("12가3456", "ABC Motors", "card", 100000)

    assert await duplicates.check_duplicate(store, "12가3456", "ABC Motors", "card", 100000) is None
    assert await store.get(dup_key) is None


@pytest.mark.anyio
async def test_check_duplicate_skips_claims_without_company():
    store = InMemoryKeyValueStore()
    claim = _claim("refund_1", company_name=None)
    await store.set(refund_key(claim.id), claim.to_stored_blob())
    await duplicates.register_key(store, claim.id, "12가3456", "", "card", 100000)

    assert await duplicates.check_duplicate(store, "12가3456", "", "card", 100000) is None


@pytest.mark.anyio
async def test_duplicate_operations_fail_open():
    store = FailingStore()
    claim = _claim("refund_1")

    assert await duplicates.check_duplicate(store, "12가3456", "ABC Motors", "card", 100000) is None
    await duplicates.register_claim(store, claim)
    await duplicates.remove_claim(store, claim)
    annotated = await duplicates.annotate_list(store, [claim])

    assert annotated[0].is_duplicate is None


@pytest.mark.anyio
async def test_register_overwrites_pointer_with_latest_claim():
    store = InMemoryKeyValueStore()
    older = _claim("refund_1")
    newer = _claim("refund_2")
    await duplicates.register_claim(store, older)
    await duplicates.register_claim(store, newer)

    dup_key = duplicates.generate_duplicate_key("12가3456", "ABC Motors", "card", 100000)
    assert await store.get(dup_key) == "refund_2"


@pytest.mark.anyio
async def test_remove_only_if_owner_keeps_foreign_pointer():
    store = InMemoryKeyValueStore()
    older = _claim("refund_1")
    newer = _claim("refund_2")
    await duplicates.register_claim(store, newer)

    await duplicates.remove_claim(store, older, only_if_owner=older.id)

    dup_key = duplicates.generate_duplicate_key("12가3456", "ABC Motors", "card", 100000)
    assert await store.get(dup_key) == "refund_2"


@pytest.mark.anyio
async def test_annotate_list_flags_other_claims_only():
    store = InMemoryKeyValueStore()
    original = _claim("refund_1")
    repeat = _claim("refund_2")
    unrelated = _claim("refund_3", vehicle_number="99나9999")
    incomplete = _claim("refund_4", claim_amount=None)
    await duplicates.register_claim(store, repeat)

    annotated = await duplicates.annotate_list(store, [repeat, original, unrelated, incomplete])

    assert annotated[0].is_duplicate is None
    assert annotated[1].is_duplicate is True
    assert annotated[1].duplicate_refund_id == "refund_2"
    assert annotated[2].is_duplicate is None
    assert annotated[3].is_duplicate is None


def test_stored_blob_never_carries_annotation():
    claim = _claim("refund_1", is_duplicate=True, duplicate_refund_id="refund_0")
    blob = claim.to_stored_blob()
    assert "isDuplicate" not in blob
    assert "duplicateRefundId" not in blob
    assert blob["vehicleNumber"] == "12가3456"
