import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse

from app.api.session_auth import get_session_id, require_session_user
from app.dependencies import get_app_settings, get_kv_store, get_password_hasher, get_user_roster
from app.domain.users import service as users_service
from app.domain.users.schemas import (
    ChangePasswordRequest,
    LoginRequest,
    LoginResponse,
    MeResponse,
    RosterEntry,
    SessionUser,
)
from app.infra.auth import PasswordHasher
from app.infra.kv import KeyValueStore, StoreError

router = APIRouter(prefix="/v1/auth", tags=["auth"])
logger = logging.getLogger(__name__)


@router.post("/login", response_model=LoginResponse)
async def login(
    payload: LoginRequest,
    request: Request,
    store: KeyValueStore = Depends(get_kv_store),
    hasher: PasswordHasher = Depends(get_password_hasher),
    roster: dict[str, RosterEntry] = Depends(get_user_roster),
) -> JSONResponse:
    app_settings = get_app_settings(request)
    try:
        user = await users_service.authenticate(
            store,
            hasher,
            roster,
            payload.username,
            payload.password,
            must_change_password_users=app_settings.must_change_password_users,
        )
    except users_service.InvalidCredentialsError:
        logger.info("login_failed")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid username or password"
        ) from None

    ttl = (
        app_settings.session_remember_me_ttl_seconds
        if payload.remember_me
        else app_settings.session_ttl_seconds
    )
    session_id = await users_service.open_session(store, user, ttl)
    logger.info("login_succeeded", extra={"extra": {"username": user.username, "role": user.role.value}})
    response = JSONResponse(LoginResponse(user=user).model_dump(by_alias=True, mode="json"))
    response.set_cookie(
        app_settings.session_cookie_name,
        session_id,
        max_age=ttl,
        httponly=True,
        secure=app_settings.secure_cookies,
        samesite="lax",
        path="/",
    )
    return response


@router.post("/logout")
async def logout(request: Request, store: KeyValueStore = Depends(get_kv_store)) -> JSONResponse:
    session_id = get_session_id(request)
    if session_id:
        await users_service.close_session(store, session_id)
    response = JSONResponse({"success": True})
    response.delete_cookie(get_app_settings(request).session_cookie_name, path="/")
    return response


@router.get("/me", response_model=MeResponse)
async def me(request: Request, store: KeyValueStore = Depends(get_kv_store)) -> MeResponse:
    session_id = get_session_id(request)
    if not session_id:
        return MeResponse(user=None)
    try:
        user = await users_service.load_session(store, session_id)
    except StoreError:
        logger.warning("session_lookup_failed", exc_info=True)
        return MeResponse(user=None)
    return MeResponse(user=user)


@router.post("/change-password")
async def change_password(
    payload: ChangePasswordRequest,
    request: Request,
    user: SessionUser = Depends(require_session_user),
    store: KeyValueStore = Depends(get_kv_store),
    hasher: PasswordHasher = Depends(get_password_hasher),
) -> dict:
    app_settings = get_app_settings(request)
    try:
        await users_service.change_password(
            store,
            hasher,
            request.state.session_id,
            user,
            payload.current_password,
            payload.new_password,
            min_length=app_settings.password_min_length,
            default_ttl_seconds=app_settings.session_ttl_seconds,
        )
    except users_service.InvalidCredentialsError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Current password is incorrect"
        ) from None
    return {"success": True}
