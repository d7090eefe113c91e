import pytest

from app.domain.worklogs import index as worklog_index
from app.domain.worklogs.schemas import (
    WORKLOGS_INDEX_KEY,
    WorkLog,
    worklog_branch_index_key,
    worklog_key,
)
from app.infra.kv import InMemoryKeyValueStore


def _worklog(worklog_id: str, date: str, branch: str | None = "울산") -> WorkLog:
    return WorkLog(
        id=worklog_id,
        date=date,
        author_role="BRANCH",
        author_id="a0001",
        author_name="울산 성능장",
        branch_id=branch,
        created_at=f"{date}T09:00:00.000Z",
    )


async def _seed(store: InMemoryKeyValueStore, worklogs: list[WorkLog]) -> None:
    for worklog in worklogs:
        await store.set(worklog_key(worklog.id), worklog.to_blob())
        await worklog_index.add_to_indexes(store, worklog)


@pytest.mark.anyio
async def test_date_range_is_lexicographic_and_inclusive():
    store = InMemoryKeyValueStore()
    await _seed(
        store,
        [
            _worklog("w1", "2024-04-30"),
            _worklog("w2", "2024-05-01"),
            _worklog("w3", "2024-05-15"),
            _worklog("w4", "2024-05-31"),
            _worklog("w5", "2024-06-01"),
        ],
    )

    result = await worklog_index.list_worklog_ids(
        store, WORKLOGS_INDEX_KEY, 1, 10, from_date="2024-05-01", to_date="2024-05-31"
    )

    assert result.ids == ["w4", "w3", "w2"]
    assert result.total_count == 3


@pytest.mark.anyio
async def test_fast_path_without_criteria():
    store = InMemoryKeyValueStore()
    await _seed(store, [_worklog(f"w{n}", "2024-05-01") for n in range(1, 6)])

    result = await worklog_index.list_worklog_ids(store, WORKLOGS_INDEX_KEY, 2, 2)

    assert result.ids == ["w3", "w2"]
    assert result.total_count == 5


@pytest.mark.anyio
async def test_excluded_branch_is_hidden():
    store = InMemoryKeyValueStore()
    await _seed(
        store,
        [
            _worklog("w1", "2024-05-01", branch="울산"),
            _worklog("w2", "2024-05-01", branch="장한평"),
            _worklog("w3", "2024-05-02", branch=None),
        ],
    )

    result = await worklog_index.list_worklog_ids(
        store, WORKLOGS_INDEX_KEY, 1, 10, exclude_branch="장한평"
    )

    assert result.ids == ["w3", "w1"]


@pytest.mark.anyio
async def test_branch_index_only_lists_branch_entries():
    store = InMemoryKeyValueStore()
    await _seed(
        store,
        [_worklog("w1", "2024-05-01", branch="울산"), _worklog("w2", "2024-05-01", branch="kc")],
    )

    result = await worklog_index.list_worklog_ids(store, worklog_branch_index_key("kc"), 1, 10)

    assert result.ids == ["w2"]
    assert result.total_count == 1


def test_entries_without_date_never_match_a_range():
    predicate = worklog_index.build_predicate(from_date="2024-01-01")
    undated = _worklog("w1", "2024-05-01").model_copy(update={"date": None})
    assert not predicate(undated)
