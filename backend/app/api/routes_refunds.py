import logging
from datetime import date
from typing import Literal
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import JSONResponse

from app.api.pagination import PageParams, list_envelope, page_params
from app.api.session_auth import require_roles, require_session_user
from app.dependencies import get_app_settings, get_kv_store, get_storage_backend
from app.domain.common import utc_now
from app.domain.errors import DuplicateRefundError
from app.domain.refunds import export as refund_export
from app.domain.refunds import service as refund_service
from app.domain.refunds.schemas import (
    AcknowledgeResponse,
    BatchCreatedResponse,
    BatchRefundRequest,
    RefundActionRequest,
    RefundAdminUpdate,
    RefundCreatedResponse,
    RefundCreateRequest,
    RefundDeletedResponse,
    RefundFilters,
    RefundSuggestions,
    StatusChangeRequest,
)
from app.domain.users.schemas import SessionUser, UserRole
from app.infra.kv import KeyValueStore, StoreError
from app.infra.storage import StorageBackend

router = APIRouter(tags=["refunds"])
logger = logging.getLogger(__name__)

DUPLICATE_MESSAGE = "A refund with the same vehicle number, company, method and amount already exists."

require_commander = require_roles(UserRole.COMMANDER)
require_reviewer = require_roles(UserRole.COMMANDER, UserRole.STAFF)


def refund_filters(
    status_filter: str | None = Query(default=None, alias="status"),
    from_date: date | None = Query(default=None, alias="from"),
    to_date: date | None = Query(default=None, alias="to"),
    date_field: Literal["submittedAt", "refundDate"] = Query(default="submittedAt", alias="dateField"),
    submitter: str | None = Query(default=None),
    company_name: str | None = Query(default=None, alias="companyName"),
    vehicle_number: str | None = Query(default=None, alias="vehicleNumber"),
    refund_method: str | None = Query(default=None, alias="refundMethod"),
    refund_reason: str | None = Query(default=None, alias="refundReason"),
    min_amount: float | None = Query(default=None, alias="minAmount"),
    max_amount: float | None = Query(default=None, alias="maxAmount"),
    acknowledged: Literal["all", "acknowledged", "pending"] | None = Query(default=None),
) -> RefundFilters:
    return RefundFilters(
        status=status_filter,
        from_date=from_date,
        to_date=to_date,
        date_field=date_field,
        submitter=submitter,
        company_name=company_name,
        vehicle_number=vehicle_number,
        refund_method=refund_method,
        refund_reason=refund_reason,
        min_amount=min_amount,
        max_amount=max_amount,
        acknowledged=acknowledged,
    )


def filter_timezone(request: Request) -> ZoneInfo:
    return ZoneInfo(get_app_settings(request).filter_timezone)


async def render_refund_page(
    store: KeyValueStore, filters: RefundFilters, params: PageParams, tz: ZoneInfo
) -> dict:
    try:
        claims, total_count = await refund_service.list_refunds(
            store, filters, params.page, params.page_size, tz=tz
        )
    except StoreError:
        logger.error("refund_list_scan_failed", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="List retrieval failed"
        ) from None
    return list_envelope("refunds", [claim.to_blob() for claim in claims], total_count, params)


def duplicate_response(exc: DuplicateRefundError, *, batch: bool) -> JSONResponse:
    if batch:
        content = {
            "duplicate": True,
            "duplicates": exc.duplicates,
            "message": f"{len(exc.duplicates)} refund item(s) look like duplicates of existing claims.",
        }
    else:
        content = {
            "duplicate": True,
            "existingRefundId": exc.duplicates[0]["existingRefundId"],
            "message": DUPLICATE_MESSAGE,
        }
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=content)


@router.post("/v1/refunds", response_model=RefundCreatedResponse)
async def create_refund(
    payload: RefundCreateRequest,
    user: SessionUser = Depends(require_session_user),
    store: KeyValueStore = Depends(get_kv_store),
):
    try:
        claim = await refund_service.create_refund(store, user, payload)
    except DuplicateRefundError as exc:
        return duplicate_response(exc, batch=False)
    return RefundCreatedResponse(refund_id=claim.id)


@router.post("/v1/refunds/batch", response_model=BatchCreatedResponse)
async def create_refund_batch(
    payload: BatchRefundRequest,
    user: SessionUser = Depends(require_session_user),
    store: KeyValueStore = Depends(get_kv_store),
):
    try:
        claims = await refund_service.create_batch(store, user, payload)
    except DuplicateRefundError as exc:
        return duplicate_response(exc, batch=True)
    return BatchCreatedResponse(created_count=len(claims), created_ids=[claim.id for claim in claims])


@router.get("/v1/refunds")
async def list_refunds(
    filters: RefundFilters = Depends(refund_filters),
    params: PageParams = Depends(page_params),
    tz: ZoneInfo = Depends(filter_timezone),
    _user: SessionUser = Depends(require_session_user),
    store: KeyValueStore = Depends(get_kv_store),
) -> dict:
    return await render_refund_page(store, filters, params, tz)


@router.get("/v1/refunds/suggestions", response_model=RefundSuggestions)
async def refund_suggestions(
    request: Request,
    _user: SessionUser = Depends(require_session_user),
    store: KeyValueStore = Depends(get_kv_store),
) -> RefundSuggestions:
    app_settings = get_app_settings(request)
    return await refund_service.suggestions(
        store,
        batch_size=app_settings.suggestions_batch_size,
        max_batches=app_settings.suggestions_max_batches,
    )


@router.get("/v1/refunds/export.csv")
async def export_refunds(
    from_date: date | None = Query(default=None, alias="from"),
    to_date: date | None = Query(default=None, alias="to"),
    submitter: str | None = Query(default=None),
    company_name: str | None = Query(default=None, alias="companyName"),
    tz: ZoneInfo = Depends(filter_timezone),
    _user: SessionUser = Depends(require_reviewer),
    store: KeyValueStore = Depends(get_kv_store),
) -> Response:
    filters = RefundFilters(
        from_date=from_date, to_date=to_date, submitter=submitter, company_name=company_name
    )
    claims = await refund_export.export_claims(store, filters, tz=tz)
    filename = refund_export.export_filename(utc_now().date())
    return Response(
        content=refund_export.build_refunds_csv(claims),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@router.post("/v1/refunds/action")
async def process_refund(
    payload: RefundActionRequest,
    user: SessionUser = Depends(require_commander),
    store: KeyValueStore = Depends(get_kv_store),
) -> dict:
    await refund_service.apply_action(store, user, payload.refund_id, payload.action, payload.notes)
    return {"success": True}


@router.patch("/v1/refunds/{refund_id}")
async def update_refund(
    refund_id: str,
    payload: RefundAdminUpdate,
    user: SessionUser = Depends(require_commander),
    store: KeyValueStore = Depends(get_kv_store),
) -> dict:
    claim = await refund_service.admin_update(store, user, refund_id, payload)
    return {"success": True, "refund": claim.to_blob()}


@router.delete("/v1/refunds/{refund_id}", response_model=RefundDeletedResponse)
async def delete_refund(
    refund_id: str,
    user: SessionUser = Depends(require_commander),
    store: KeyValueStore = Depends(get_kv_store),
    storage: StorageBackend = Depends(get_storage_backend),
) -> RefundDeletedResponse:
    report = await refund_service.delete_refund(store, storage, user, refund_id)
    return RefundDeletedResponse(
        deleted_id=refund_id,
        deleted_photos=len(report.deleted),
        failed_photos=len(report.failed),
    )


@router.patch("/v1/refunds/{refund_id}/status")
async def change_refund_status(
    refund_id: str,
    payload: StatusChangeRequest,
    user: SessionUser = Depends(require_commander),
    store: KeyValueStore = Depends(get_kv_store),
) -> dict:
    claim = await refund_service.change_status(store, user, refund_id, payload.to_status, payload.reason)
    return {"success": True, "refund": claim.to_blob()}


@router.get("/v1/refunds/{refund_id}/status-logs")
async def refund_status_logs(
    refund_id: str,
    _user: SessionUser = Depends(require_reviewer),
    store: KeyValueStore = Depends(get_kv_store),
) -> dict:
    entries = await refund_service.list_status_logs(store, refund_id)
    return {"logs": [entry.to_blob() for entry in entries]}


@router.post("/v1/refunds/{refund_id}/acknowledge", response_model=AcknowledgeResponse)
async def acknowledge_refund(
    refund_id: str,
    user: SessionUser = Depends(require_roles(UserRole.BRANCH)),
    store: KeyValueStore = Depends(get_kv_store),
) -> AcknowledgeResponse:
    claim, already = await refund_service.acknowledge(store, user, refund_id)
    return AcknowledgeResponse(
        already_acknowledged=already,
        acknowledged_at=claim.acknowledged_at,
        acknowledged_by=claim.acknowledged_by,
    )
