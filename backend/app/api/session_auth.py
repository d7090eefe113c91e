from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status

from app.dependencies import get_app_settings, get_kv_store
from app.domain.users import service as users_service
from app.domain.users.schemas import SessionUser, UserRole
from app.infra.kv import KeyValueStore
from app.infra.logging import update_log_context


def get_session_id(request: Request) -> str | None:
    cookie_name = get_app_settings(request).session_cookie_name
    return request.cookies.get(cookie_name) or None


async def require_session_user(
    request: Request, store: KeyValueStore = Depends(get_kv_store)
) -> SessionUser:
    cached = getattr(request.state, "session_user", None)
    if cached is not None:
        return cached
    session_id = get_session_id(request)
    if not session_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    user = await users_service.load_session(store, session_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Session expired")
    request.state.session_user = user
    request.state.session_id = session_id
    update_log_context(user_id=user.username, role=user.role.value, branch=user.branch_name)
    return user


def require_roles(*roles: UserRole):
    async def _require(user: SessionUser = Depends(require_session_user)) -> SessionUser:
        if user.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
        return user

    return _require


async def require_branch_user(
    user: SessionUser = Depends(require_roles(UserRole.BRANCH)),
) -> SessionUser:
    if not user.branch_name:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Branch account has no branch")
    return user
