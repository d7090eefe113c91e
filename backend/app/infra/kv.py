"""Key-value store adapter.

Entities are stored as string-keyed blobs and collections as Redis lists of
ids. Plain strings are written raw; anything else is JSON-encoded, and JSON
objects/arrays are decoded again on read. The in-memory store applies the
same encoding so it behaves like Redis in dev and tests.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Iterable, Protocol, Sequence

import redis.asyncio as redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Raised when the backing store cannot serve a request."""


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any) -> None: ...

    async def delete(self, key: str) -> int: ...

    async def list_prepend(self, list_key: str, value: str) -> int: ...

    async def list_remove(self, list_key: str, value: str) -> int: ...

    async def list_length(self, list_key: str) -> int: ...

    async def list_range(self, list_key: str, start: int, end: int) -> list[str]: ...

    async def batch_get(self, keys: Sequence[str]) -> list[Any | None]: ...

    async def set_with_expiry(self, key: str, value: Any, ttl_seconds: int) -> None: ...

    async def get_remaining_ttl(self, key: str) -> int: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...


def encode_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def decode_value(raw: str | bytes | None) -> Any | None:
    if raw is None:
        return None
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    if raw[:1] in ("{", "["):
        try:
            return json.loads(raw)
        except ValueError:
            return raw
    return raw


class RedisKeyValueStore:
    def __init__(
        self,
        redis_url: str | None = None,
        *,
        redis_client: redis.Redis | None = None,
        socket_timeout: float = 5.0,
    ) -> None:
        if redis_client is None:
            if not redis_url:
                raise ValueError("redis_url or redis_client is required")
            redis_client = redis.from_url(
                redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_timeout=socket_timeout,
                socket_connect_timeout=socket_timeout,
            )
        self.redis = redis_client

    async def get(self, key: str) -> Any | None:
        try:
            raw = await self.redis.get(key)
        except RedisError as exc:
            raise StoreError(f"get failed for {key}") from exc
        return decode_value(raw)

    async def set(self, key: str, value: Any) -> None:
        try:
            await self.redis.set(key, encode_value(value))
        except RedisError as exc:
            raise StoreError(f"set failed for {key}") from exc

    async def delete(self, key: str) -> int:
        try:
            return int(await self.redis.delete(key))
        except RedisError as exc:
            raise StoreError(f"delete failed for {key}") from exc

    async def list_prepend(self, list_key: str, value: str) -> int:
        try:
            return int(await self.redis.lpush(list_key, value))
        except RedisError as exc:
            raise StoreError(f"lpush failed for {list_key}") from exc

    async def list_remove(self, list_key: str, value: str) -> int:
        try:
            return int(await self.redis.lrem(list_key, 0, value))
        except RedisError as exc:
            raise StoreError(f"lrem failed for {list_key}") from exc

    async def list_length(self, list_key: str) -> int:
        try:
            return int(await self.redis.llen(list_key) or 0)
        except RedisError as exc:
            raise StoreError(f"llen failed for {list_key}") from exc

    async def list_range(self, list_key: str, start: int, end: int) -> list[str]:
        try:
            values = await self.redis.lrange(list_key, start, end)
        except RedisError as exc:
            raise StoreError(f"lrange failed for {list_key}") from exc
        return [value.decode("utf-8") if isinstance(value, bytes) else value for value in values or []]

    async def batch_get(self, keys: Sequence[str]) -> list[Any | None]:
        if not keys:
            return []
        try:
            async with self.redis.pipeline(transaction=False) as pipe:
                for key in keys:
                    pipe.get(key)
                raw_values = await pipe.execute()
        except RedisError as exc:
            raise StoreError(f"pipeline get failed for {len(keys)} keys") from exc
        return [decode_value(raw) for raw in raw_values]

    async def set_with_expiry(self, key: str, value: Any, ttl_seconds: int) -> None:
        try:
            await self.redis.set(key, encode_value(value), ex=max(int(ttl_seconds), 1))
        except RedisError as exc:
            raise StoreError(f"setex failed for {key}") from exc

    async def get_remaining_ttl(self, key: str) -> int:
        try:
            return int(await self.redis.ttl(key))
        except RedisError as exc:
            raise StoreError(f"ttl failed for {key}") from exc

    async def ping(self) -> bool:
        try:
            return bool(await self.redis.ping())
        except RedisError:
            logger.warning("kv_ping_failed")
            return False

    async def close(self) -> None:
        try:
            await self.redis.aclose()
        except RedisError:
            logger.warning("kv_close_failed")


class InMemoryKeyValueStore:
    def __init__(self) -> None:
        self._values: dict[str, str] = {}
        self._lists: dict[str, list[str]] = {}
        self._expires_at: dict[str, float] = {}
        self._lock = asyncio.Lock()

    def _expire(self, key: str) -> None:
        deadline = self._expires_at.get(key)
        if deadline is not None and deadline <= time.monotonic():
            self._values.pop(key, None)
            self._expires_at.pop(key, None)

    async def get(self, key: str) -> Any | None:
        async with self._lock:
            self._expire(key)
            return decode_value(self._values.get(key))

    async def set(self, key: str, value: Any) -> None:
        async with self._lock:
            self._values[key] = encode_value(value)
            self._expires_at.pop(key, None)

    async def delete(self, key: str) -> int:
        async with self._lock:
            self._expire(key)
            removed = 0
            if self._values.pop(key, None) is not None:
                removed += 1
            if self._lists.pop(key, None) is not None:
                removed += 1
            self._expires_at.pop(key, None)
            return removed

    async def list_prepend(self, list_key: str, value: str) -> int:
        async with self._lock:
            items = self._lists.setdefault(list_key, [])
            items.insert(0, value)
            return len(items)

    async def list_remove(self, list_key: str, value: str) -> int:
        async with self._lock:
            items = self._lists.get(list_key, [])
            kept = [item for item in items if item != value]
            removed = len(items) - len(kept)
            if kept:
                self._lists[list_key] = kept
            else:
                self._lists.pop(list_key, None)
            return removed

    async def list_length(self, list_key: str) -> int:
        async with self._lock:
            return len(self._lists.get(list_key, []))

    async def list_range(self, list_key: str, start: int, end: int) -> list[str]:
        async with self._lock:
            items = self._lists.get(list_key, [])
            return list(_redis_slice(items, start, end))

    async def batch_get(self, keys: Sequence[str]) -> list[Any | None]:
        async with self._lock:
            results = []
            for key in keys:
                self._expire(key)
                results.append(decode_value(self._values.get(key)))
            return results

    async def set_with_expiry(self, key: str, value: Any, ttl_seconds: int) -> None:
        async with self._lock:
            self._values[key] = encode_value(value)
            self._expires_at[key] = time.monotonic() + max(int(ttl_seconds), 1)

    async def get_remaining_ttl(self, key: str) -> int:
        async with self._lock:
            self._expire(key)
            if key not in self._values and key not in self._lists:
                return -2
            deadline = self._expires_at.get(key)
            if deadline is None:
                return -1
            return max(int(deadline - time.monotonic()), 0)

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None

    async def flush(self) -> None:
        async with self._lock:
            self._values.clear()
            self._lists.clear()
            self._expires_at.clear()


def _redis_slice(items: list[str], start: int, end: int) -> Iterable[str]:
    length = len(items)
    if start < 0:
        start = max(length + start, 0)
    if end < 0:
        end = length + end
    if start >= length or end < start:
        return []
    return items[start : min(end, length - 1) + 1]


def create_kv_store(app_settings) -> KeyValueStore:
    if getattr(app_settings, "redis_url", None):
        return RedisKeyValueStore(
            app_settings.redis_url,
            socket_timeout=app_settings.redis_socket_timeout_seconds,
        )
    return InMemoryKeyValueStore()
