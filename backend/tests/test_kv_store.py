from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.infra.kv import (
    InMemoryKeyValueStore,
    RedisKeyValueStore,
    StoreError,
    create_kv_store,
    decode_value,
    encode_value,
)
from app.settings import Settings


def test_plain_strings_are_stored_raw():
    assert encode_value("refund_1") == "refund_1"
    assert decode_value("refund_1") == "refund_1"


def test_json_documents_round_trip():
    blob = {"id": "refund_1", "claimAmount": 100000, "receiptPhotos": ["a.jpg"]}
    assert decode_value(encode_value(blob)) == blob


@pytest.mark.anyio
async def test_list_operations_follow_redis_semantics():
    store = InMemoryKeyValueStore()
    for value in ["r1", "r2", "r3", "r2"]:
        await store.list_prepend("index", value)

    assert await store.list_range("index", 0, -1) == ["r2", "r3", "r2", "r1"]
    assert await store.list_range("index", 1, 2) == ["r3", "r2"]
    assert await store.list_range("index", 10, 20) == []
    assert await store.list_remove("index", "r2") == 2
    assert await store.list_length("index") == 2


@pytest.mark.anyio
async def test_batch_get_preserves_order_and_missing_keys():
    store = InMemoryKeyValueStore()
    await store.set("a", {"id": "a"})
    await store.set("c", "plain")

    assert await store.batch_get(["a", "b", "c"]) == [{"id": "a"}, None, "plain"]


@pytest.mark.anyio
async def test_expiring_values_report_ttl():
    store = InMemoryKeyValueStore()
    await store.set_with_expiry("session:abc", {"username": "a0001"}, 60)

    assert 0 < await store.get_remaining_ttl("session:abc") <= 60
    assert await store.get_remaining_ttl("missing") == -2
    await store.set("plain", "value")
    assert await store.get_remaining_ttl("plain") == -1


@pytest.mark.anyio
async def test_redis_errors_become_store_errors():
    client = AsyncMock()
    client.get.side_effect = RedisConnectionError("down")
    client.ping.side_effect = RedisConnectionError("down")
    store = RedisKeyValueStore(redis_client=client)

    with pytest.raises(StoreError):
        await store.get("refund:1")
    assert await store.ping() is False


@pytest.mark.anyio
async def test_redis_list_range_decodes_bytes():
    client = AsyncMock()
    client.lrange.return_value = [b"r2", "r1"]
    store = RedisKeyValueStore(redis_client=client)

    assert await store.list_range("refunds:index", 0, 249) == ["r2", "r1"]
    client.lrange.assert_awaited_once_with("refunds:index", 0, 249)


def test_factory_falls_back_to_memory_without_redis_url():
    app_settings = Settings(app_env="dev", redis_url=None)
    assert isinstance(create_kv_store(app_settings), InMemoryKeyValueStore)
