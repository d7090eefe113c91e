from fastapi import APIRouter, Depends

from app.api.session_auth import require_branch_user
from app.dependencies import get_kv_store, get_storage_backend
from app.domain.refunds import service as refund_service
from app.domain.refunds.schemas import BranchRefundUpdate, RefundDeletedResponse
from app.domain.users.schemas import SessionUser
from app.infra.kv import KeyValueStore
from app.infra.storage import StorageBackend

router = APIRouter(prefix="/v1/branch", tags=["branch"])


@router.get("/refunds")
async def list_branch_refunds(
    user: SessionUser = Depends(require_branch_user),
    store: KeyValueStore = Depends(get_kv_store),
) -> dict:
    claims = await refund_service.list_branch_refunds(store, user.branch_name)
    return {"refunds": [claim.to_blob() for claim in claims]}


@router.patch("/refunds/{refund_id}")
async def update_branch_refund(
    refund_id: str,
    payload: BranchRefundUpdate,
    user: SessionUser = Depends(require_branch_user),
    store: KeyValueStore = Depends(get_kv_store),
) -> dict:
    claim = await refund_service.branch_update(store, user, refund_id, payload)
    return {"success": True, "refund": claim.to_blob()}


@router.delete("/refunds/{refund_id}", response_model=RefundDeletedResponse)
async def delete_branch_refund(
    refund_id: str,
    user: SessionUser = Depends(require_branch_user),
    store: KeyValueStore = Depends(get_kv_store),
    storage: StorageBackend = Depends(get_storage_backend),
) -> RefundDeletedResponse:
    report = await refund_service.delete_refund(
        store, storage, user, refund_id, require_branch_owner=True
    )
    return RefundDeletedResponse(
        deleted_id=refund_id,
        deleted_photos=len(report.deleted),
        failed_photos=len(report.failed),
    )
