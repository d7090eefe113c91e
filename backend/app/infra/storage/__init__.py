from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable
from urllib.parse import unquote, urlparse
import logging

from app.infra.storage.backends import (
    InMemoryStorageBackend,
    LocalStorageBackend,
    StorageBackend,
    StoredObject,
)
from app.settings import settings

logger = logging.getLogger(__name__)

UPLOAD_ROUTE_PREFIX = "/v1/uploads/"


@dataclass
class BlobDeletionReport:
    deleted: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


def blob_key_from_reference(reference: str) -> str:
    """Map a stored blob reference (key, upload URL or absolute URL) to a storage key."""
    parsed = urlparse(reference)
    path = unquote(parsed.path) if parsed.scheme or parsed.netloc else reference
    if path.startswith(UPLOAD_ROUTE_PREFIX):
        path = path[len(UPLOAD_ROUTE_PREFIX) :]
    return path.lstrip("/")


async def delete_blobs(storage: StorageBackend, references: Iterable[str]) -> BlobDeletionReport:
    report = BlobDeletionReport()
    for reference in references:
        if not reference:
            continue
        try:
            await storage.delete(key=blob_key_from_reference(reference))
        except (OSError, ValueError):
            logger.warning("blob_delete_failed", extra={"extra": {"reference": reference}}, exc_info=True)
            report.failed.append(reference)
        else:
            report.deleted.append(reference)
    return report


def new_storage_backend(app_settings=None) -> StorageBackend:
    app_settings = app_settings or settings
    backend = app_settings.storage_backend.lower()
    if backend == "local":
        return LocalStorageBackend(Path(app_settings.upload_root))
    if backend == "memory":
        return InMemoryStorageBackend()
    raise RuntimeError(f"Unsupported storage backend: {backend}")


__all__ = [
    "BlobDeletionReport",
    "InMemoryStorageBackend",
    "LocalStorageBackend",
    "StorageBackend",
    "StoredObject",
    "blob_key_from_reference",
    "delete_blobs",
    "new_storage_backend",
]
