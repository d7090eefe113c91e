import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.api.pagination import PageParams, list_envelope, page_params
from app.api.session_auth import require_session_user
from app.dependencies import get_kv_store, get_storage_backend
from app.domain.users.schemas import SessionUser
from app.domain.worklogs import service as worklog_service
from app.domain.worklogs.schemas import (
    WORKLOG_DATE_PATTERN,
    WorkLogCreatedResponse,
    WorkLogCreateRequest,
    WorkLogDeletedResponse,
    WorkLogUpdateRequest,
)
from app.infra.kv import KeyValueStore, StoreError
from app.infra.storage import StorageBackend

router = APIRouter(prefix="/v1/worklogs", tags=["worklogs"])
logger = logging.getLogger(__name__)


async def render_worklog_page(
    store: KeyValueStore,
    index_key: str,
    params: PageParams,
    *,
    exclude_branch: str | None = None,
    from_date: str | None = None,
    to_date: str | None = None,
) -> dict:
    try:
        worklogs, total_count = await worklog_service.list_worklogs(
            store,
            index_key,
            params.page,
            params.page_size,
            exclude_branch=exclude_branch,
            from_date=from_date,
            to_date=to_date,
        )
    except StoreError:
        logger.error("worklog_list_scan_failed", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="List retrieval failed"
        ) from None
    return list_envelope("worklogs", [worklog.to_blob() for worklog in worklogs], total_count, params)


@router.post("", response_model=WorkLogCreatedResponse)
async def create_worklog(
    payload: WorkLogCreateRequest,
    user: SessionUser = Depends(require_session_user),
    store: KeyValueStore = Depends(get_kv_store),
) -> WorkLogCreatedResponse:
    worklog = await worklog_service.create_worklog(store, user, payload)
    return WorkLogCreatedResponse(worklog_id=worklog.id)


@router.get("")
async def list_worklogs(
    from_date: str | None = Query(default=None, alias="from", pattern=WORKLOG_DATE_PATTERN),
    to_date: str | None = Query(default=None, alias="to", pattern=WORKLOG_DATE_PATTERN),
    params: PageParams = Depends(page_params),
    user: SessionUser = Depends(require_session_user),
    store: KeyValueStore = Depends(get_kv_store),
) -> dict:
    return await render_worklog_page(
        store,
        worklog_service.index_key_for(user),
        params,
        from_date=from_date,
        to_date=to_date,
    )


@router.patch("/{worklog_id}")
async def update_worklog(
    worklog_id: str,
    payload: WorkLogUpdateRequest,
    user: SessionUser = Depends(require_session_user),
    store: KeyValueStore = Depends(get_kv_store),
) -> dict:
    worklog = await worklog_service.update_worklog(store, user, worklog_id, payload)
    return {"success": True, "worklog": worklog.to_blob()}


@router.delete("/{worklog_id}", response_model=WorkLogDeletedResponse, response_model_exclude_none=True)
async def delete_worklog(
    worklog_id: str,
    user: SessionUser = Depends(require_session_user),
    store: KeyValueStore = Depends(get_kv_store),
    storage: StorageBackend = Depends(get_storage_backend),
) -> WorkLogDeletedResponse:
    report = await worklog_service.delete_worklog(store, storage, user, worklog_id)
    return WorkLogDeletedResponse(failed_photos=report.failed or None)
