import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator


@dataclass
class StoredObject:
    key: str
    size: int
    content_type: str


class StorageBackend(ABC):
    """Abstract interface for blob storage of receipts, spreadsheets and work-log photos."""

    @abstractmethod
    async def put(
        self, *, key: str, body: AsyncIterator[bytes], content_type: str
    ) -> StoredObject:
        """Persist an object and return its metadata."""

    @abstractmethod
    async def read(self, *, key: str) -> bytes:
        """Return the object payload as bytes."""

    @abstractmethod
    async def delete(self, *, key: str) -> None:
        """Delete an object if it exists."""


class LocalStorageBackend(StorageBackend):
    def __init__(self, root: Path) -> None:
        self.root = root

    def _resolve(self, key: str, *, create_parents: bool) -> Path:
        cleaned = key.lstrip("/")
        root_resolved = self.root.resolve()
        path = (self.root / cleaned).resolve()
        if path != root_resolved and root_resolved not in path.parents:
            raise ValueError("Invalid storage key")
        if create_parents:
            path.parent.mkdir(parents=True, exist_ok=True)
        return path

    async def put(
        self, *, key: str, body: AsyncIterator[bytes], content_type: str
    ) -> StoredObject:
        path = self._resolve(key, create_parents=True)
        size = 0
        with path.open("wb") as f:
            async for chunk in body:
                size += len(chunk)
                f.write(chunk)
        return StoredObject(key=key.lstrip("/"), size=size, content_type=content_type)

    async def read(self, *, key: str) -> bytes:
        path = self._resolve(key, create_parents=False)
        if not path.is_file():
            raise FileNotFoundError(key)
        return await asyncio.to_thread(path.read_bytes)

    async def delete(self, *, key: str) -> None:
        path = self._resolve(key, create_parents=False)
        path.unlink(missing_ok=True)


class InMemoryStorageBackend(StorageBackend):
    def __init__(self) -> None:
        self._objects: dict[str, tuple[bytes, str]] = {}

    async def put(
        self, *, key: str, body: AsyncIterator[bytes], content_type: str
    ) -> StoredObject:
        data = bytearray()
        async for chunk in body:
            data.extend(chunk)
        payload = bytes(data)
        cleaned = key.lstrip("/")
        self._objects[cleaned] = (payload, content_type)
        return StoredObject(key=cleaned, size=len(payload), content_type=content_type)

    async def read(self, *, key: str) -> bytes:
        try:
            payload, _ = self._objects[key.lstrip("/")]
        except KeyError as exc:
            raise FileNotFoundError(key) from exc
        return payload

    async def delete(self, *, key: str) -> None:
        self._objects.pop(key.lstrip("/"), None)
