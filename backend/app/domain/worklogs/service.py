from __future__ import annotations

import logging

from app.domain import listing
from app.domain.common import new_entity_id, utc_now_iso
from app.domain.errors import NotFoundError, PermissionDeniedError
from app.domain.users.schemas import SessionUser, UserRole
from app.domain.worklogs import index as worklog_index
from app.domain.worklogs.schemas import (
    WORKLOGS_INDEX_KEY,
    WorkLog,
    WorkLogCreateRequest,
    WorkLogUpdateRequest,
    worklog_branch_index_key,
    worklog_key,
)
from app.infra.kv import KeyValueStore, StoreError
from app.infra.metrics import metrics
from app.infra.storage import BlobDeletionReport, StorageBackend, delete_blobs

logger = logging.getLogger(__name__)


def index_key_for(user: SessionUser) -> str:
    if user.role == UserRole.BRANCH and user.branch_name:
        return worklog_branch_index_key(user.branch_name)
    return WORKLOGS_INDEX_KEY


async def get_worklog(store: KeyValueStore, worklog_id: str) -> WorkLog:
    worklog = listing.parse_entity(WorkLog, await store.get(worklog_key(worklog_id)))
    if worklog is None:
        raise NotFoundError(detail="Work log not found")
    return worklog


async def create_worklog(
    store: KeyValueStore, user: SessionUser, payload: WorkLogCreateRequest
) -> WorkLog:
    worklog = WorkLog(
        id=new_entity_id("worklog"),
        date=payload.date,
        author_role=user.role.value,
        author_id=user.username,
        author_name=user.name,
        branch_id=user.branch_name,
        note=payload.note,
        photo_urls=payload.photo_urls,
        worklog_paste_image_urls=payload.worklog_paste_image_urls or None,
        created_at=utc_now_iso(),
        status="pending",
    )
    await store.set(worklog_key(worklog.id), worklog.to_blob())
    try:
        await worklog_index.add_to_indexes(store, worklog)
    except StoreError:
        logger.warning(
            "worklog_index_add_failed", extra={"extra": {"worklog_id": worklog.id}}, exc_info=True
        )
        metrics.record_side_index_failure("worklog_index_add")
    logger.info(
        "worklog_created", extra={"extra": {"worklog_id": worklog.id, "username": user.username}}
    )
    return worklog


async def list_worklogs(
    store: KeyValueStore,
    index_key: str,
    page: int,
    page_size: int,
    *,
    exclude_branch: str | None = None,
    from_date: str | None = None,
    to_date: str | None = None,
) -> tuple[list[WorkLog], int]:
    id_page = await worklog_index.list_worklog_ids(
        store,
        index_key,
        page,
        page_size,
        exclude_branch=exclude_branch,
        from_date=from_date,
        to_date=to_date,
    )
    return await worklog_index.load_worklogs(store, id_page.ids), id_page.total_count


async def update_worklog(
    store: KeyValueStore, user: SessionUser, worklog_id: str, payload: WorkLogUpdateRequest
) -> WorkLog:
    worklog = await get_worklog(store, worklog_id)
    is_commander = user.role == UserRole.COMMANDER
    changes = payload.model_dump(exclude_unset=True)
    now = utc_now_iso()
    update: dict = {}

    if "note" in changes:
        if not is_commander and worklog.author_id != user.username:
            raise PermissionDeniedError(detail="Only the author can edit this note")
        update["note"] = changes["note"] or ""
    if changes.get("status") is not None:
        if not is_commander:
            raise PermissionDeniedError(detail="Only a commander can change work log status")
        update.update(status=changes["status"], status_updated_at=now)
    if "commander_comment" in changes:
        if not is_commander:
            raise PermissionDeniedError(detail="Only a commander can reply to work logs")
        update.update(commander_comment=changes["commander_comment"], commander_comment_at=now)

    updated = worklog.model_copy(update=update)
    await store.set(worklog_key(worklog_id), updated.to_blob())
    logger.info("worklog_updated", extra={"extra": {"worklog_id": worklog_id, "username": user.username}})
    return updated


async def delete_worklog(
    store: KeyValueStore, storage: StorageBackend, user: SessionUser, worklog_id: str
) -> BlobDeletionReport:
    worklog = await get_worklog(store, worklog_id)
    if user.role != UserRole.COMMANDER and worklog.author_id != user.username:
        raise PermissionDeniedError(detail="Only the author or a commander can delete this work log")

    report = await delete_blobs(storage, worklog.blob_references())
    await store.delete(worklog_key(worklog_id))
    try:
        await worklog_index.remove_from_indexes(store, worklog)
    except StoreError:
        logger.warning(
            "worklog_index_remove_failed", extra={"extra": {"worklog_id": worklog_id}}, exc_info=True
        )
        metrics.record_side_index_failure("worklog_index_remove")
    logger.info(
        "worklog_deleted",
        extra={"extra": {"worklog_id": worklog_id, "blobs_failed": len(report.failed)}},
    )
    return report
