from fastapi import APIRouter, Depends

from app.api.session_auth import require_roles
from app.dependencies import get_kv_store
from app.domain.refunds import service as refund_service
from app.domain.refunds.schemas import DashboardStats
from app.domain.users.schemas import SessionUser, UserRole
from app.infra.kv import KeyValueStore

router = APIRouter(prefix="/v1/dashboard", tags=["dashboard"])


@router.get("/stats", response_model=DashboardStats)
async def dashboard_stats(
    _user: SessionUser = Depends(require_roles(UserRole.COMMANDER, UserRole.STAFF)),
    store: KeyValueStore = Depends(get_kv_store),
) -> DashboardStats:
    return await refund_service.dashboard_stats(store)
