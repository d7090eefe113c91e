"""Work-log list index: the refund windowed scan with a fixed filter set."""

from __future__ import annotations

from typing import Callable

from app.domain import listing
from app.domain.worklogs.schemas import (
    WORKLOGS_INDEX_KEY,
    WorkLog,
    worklog_branch_index_key,
    worklog_key,
)
from app.infra.kv import KeyValueStore


def build_predicate(
    *,
    exclude_branch: str | None = None,
    from_date: str | None = None,
    to_date: str | None = None,
) -> Callable[[WorkLog], bool]:
    """Dates are zero-padded ``YYYY-MM-DD`` strings and compare lexicographically."""

    def matches(worklog: WorkLog) -> bool:
        if exclude_branch and worklog.branch_id == exclude_branch:
            return False
        if not worklog.date:
            return False
        if from_date and worklog.date < from_date:
            return False
        if to_date and worklog.date > to_date:
            return False
        return True

    return matches


async def list_worklog_ids(
    store: KeyValueStore,
    index_key: str,
    page: int,
    page_size: int,
    *,
    exclude_branch: str | None = None,
    from_date: str | None = None,
    to_date: str | None = None,
    window_size: int = listing.WINDOW_SIZE,
    max_windows: int = listing.MAX_WINDOWS,
) -> listing.IdPage:
    if not exclude_branch and not from_date and not to_date:
        return await listing.fetch_index_page(store, index_key, page, page_size)
    result = await listing.scan_matching_ids(
        store,
        index_key,
        entity_key=worklog_key,
        model=WorkLog,
        predicate=build_predicate(
            exclude_branch=exclude_branch, from_date=from_date, to_date=to_date
        ),
        collection="worklogs",
        window_size=window_size,
        max_windows=max_windows,
    )
    return listing.paginate(result.matched_ids, page, page_size)


async def add_to_indexes(store: KeyValueStore, worklog: WorkLog) -> None:
    await store.list_prepend(WORKLOGS_INDEX_KEY, worklog.id)
    if worklog.branch_id:
        await store.list_prepend(worklog_branch_index_key(worklog.branch_id), worklog.id)


async def remove_from_indexes(store: KeyValueStore, worklog: WorkLog) -> None:
    await store.list_remove(WORKLOGS_INDEX_KEY, worklog.id)
    if worklog.branch_id:
        await store.list_remove(worklog_branch_index_key(worklog.branch_id), worklog.id)


async def load_worklogs(store: KeyValueStore, ids: list[str]) -> list[WorkLog]:
    if not ids:
        return []
    raw_entities = await store.batch_get([worklog_key(worklog_id) for worklog_id in ids])
    worklogs = []
    for raw in raw_entities:
        worklog = listing.parse_entity(WorkLog, raw)
        if worklog is not None:
            worklogs.append(worklog)
    return worklogs
