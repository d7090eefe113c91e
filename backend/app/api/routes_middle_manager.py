from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, Query, Request

from app.api.pagination import PageParams, page_params
from app.api.routes_refunds import filter_timezone, refund_filters, render_refund_page
from app.api.routes_worklogs import render_worklog_page
from app.api.session_auth import require_roles
from app.dependencies import get_app_settings, get_kv_store
from app.domain.refunds.schemas import RefundFilters
from app.domain.users.schemas import SessionUser, UserRole
from app.domain.worklogs.schemas import WORKLOG_DATE_PATTERN, WORKLOGS_INDEX_KEY
from app.infra.kv import KeyValueStore

router = APIRouter(prefix="/v1/middle-manager", tags=["middle-manager"])

require_middle_manager = require_roles(UserRole.MIDDLE_MANAGER)


@router.get("/refunds")
async def list_refunds(
    request: Request,
    filters: RefundFilters = Depends(refund_filters),
    params: PageParams = Depends(page_params),
    tz: ZoneInfo = Depends(filter_timezone),
    _user: SessionUser = Depends(require_middle_manager),
    store: KeyValueStore = Depends(get_kv_store),
) -> dict:
    excluded = get_app_settings(request).middle_manager_excluded_branch
    scoped = filters.model_copy(update={"exclude_branch": excluded})
    return await render_refund_page(store, scoped, params, tz)


@router.get("/worklogs")
async def list_worklogs(
    request: Request,
    from_date: str | None = Query(default=None, alias="from", pattern=WORKLOG_DATE_PATTERN),
    to_date: str | None = Query(default=None, alias="to", pattern=WORKLOG_DATE_PATTERN),
    params: PageParams = Depends(page_params),
    _user: SessionUser = Depends(require_middle_manager),
    store: KeyValueStore = Depends(get_kv_store),
) -> dict:
    return await render_worklog_page(
        store,
        WORKLOGS_INDEX_KEY,
        params,
        exclude_branch=get_app_settings(request).middle_manager_excluded_branch,
        from_date=from_date,
        to_date=to_date,
    )
