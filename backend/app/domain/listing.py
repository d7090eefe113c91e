"""Windowed pagination over list-backed id indexes.

The store has no server-side filtering, so filtered listings read the index
head in fixed windows, fetch each window's entities in one batched round trip
and filter in-process. The scan stops at the end of the index or after
MAX_WINDOWS windows, whichever comes first; matches beyond that horizon are
not counted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, TypeVar

from pydantic import BaseModel, ValidationError

from app.infra.kv import KeyValueStore
from app.infra.metrics import metrics

logger = logging.getLogger(__name__)

WINDOW_SIZE = 250
MAX_WINDOWS = 10

ModelT = TypeVar("ModelT", bound=BaseModel)


@dataclass
class IdPage:
    ids: list[str] = field(default_factory=list)
    total_count: int = 0


@dataclass
class ScanResult:
    matched_ids: list[str]
    windows_read: int


def page_bounds(page: int, page_size: int) -> tuple[int, int]:
    start = (page - 1) * page_size
    return start, start + page_size


def paginate(ids: list[str], page: int, page_size: int) -> IdPage:
    start, end = page_bounds(page, page_size)
    return IdPage(ids=ids[start:end], total_count=len(ids))


def parse_entity(model: type[ModelT], raw: object) -> ModelT | None:
    if not isinstance(raw, dict):
        return None
    try:
        return model.model_validate(raw)
    except ValidationError:
        logger.warning("list_entity_unreadable", extra={"extra": {"entity_id": raw.get("id")}})
        return None


async def fetch_index_page(
    store: KeyValueStore, index_key: str, page: int, page_size: int
) -> IdPage:
    start, end = page_bounds(page, page_size)
    total_count = await store.list_length(index_key)
    ids = await store.list_range(index_key, start, end - 1)
    return IdPage(ids=list(ids), total_count=total_count)


async def scan_matching_ids(
    store: KeyValueStore,
    index_key: str,
    *,
    entity_key: Callable[[str], str],
    model: type[ModelT],
    predicate: Callable[[ModelT], bool],
    collection: str,
    window_size: int = WINDOW_SIZE,
    max_windows: int = MAX_WINDOWS,
) -> ScanResult:
    """Collect ids of matching entities from the head of ``index_key``.

    Missing or unreadable entities are skipped. Store errors propagate so a
    caller never paginates over a partially read index.
    """
    matched: list[str] = []
    windows_read = 0
    for window in range(max_windows):
        window_start = window * window_size
        window_ids = await store.list_range(index_key, window_start, window_start + window_size - 1)
        if not window_ids:
            break
        windows_read += 1
        raw_entities = await store.batch_get([entity_key(entity_id) for entity_id in window_ids])
        for raw in raw_entities:
            entity = parse_entity(model, raw)
            if entity is not None and predicate(entity):
                matched.append(entity.id)
        if len(window_ids) < window_size:
            break
    metrics.record_list_scan(collection, windows_read)
    return ScanResult(matched_ids=matched, windows_read=windows_read)
