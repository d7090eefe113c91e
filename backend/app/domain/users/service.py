from __future__ import annotations

import json
import logging
import re
from functools import lru_cache
from pathlib import Path

from pydantic import TypeAdapter

from app.domain.common import new_session_id
from app.domain.errors import DomainError, NotFoundError
from app.domain.users.schemas import (
    RosterEntry,
    SessionUser,
    StoredUser,
    session_key,
    user_key,
)
from app.infra.auth import PasswordHasher
from app.infra.kv import KeyValueStore

logger = logging.getLogger(__name__)

_ACCOUNT_CODE = re.compile(r"(a\d{4})")
_USERNAME_NOISE = re.compile(r"[\s-]+")
_ROSTER_ADAPTER = TypeAdapter(list[RosterEntry])


class InvalidCredentialsError(Exception):
    pass


def normalize_username(value: str) -> str:
    """Branch account codes like ``a0012`` win over any surrounding text."""
    match = _ACCOUNT_CODE.search(value)
    if match:
        return match.group(1)
    return _USERNAME_NOISE.sub("", value.strip())


def _resolve_roster_path(path: str) -> Path:
    candidate = Path(path)
    if candidate.is_absolute() or candidate.exists():
        return candidate
    return Path(__file__).resolve().parents[3] / path


@lru_cache(maxsize=8)
def load_roster(path: str) -> dict[str, RosterEntry]:
    roster_path = _resolve_roster_path(path)
    entries = _ROSTER_ADAPTER.validate_python(json.loads(roster_path.read_text(encoding="utf-8")))
    logger.info("user_roster_loaded", extra={"extra": {"users": len(entries)}})
    return {entry.username: entry for entry in entries}


async def _load_stored_user(store: KeyValueStore, username: str) -> StoredUser | None:
    raw = await store.get(user_key(username))
    if not isinstance(raw, dict):
        return None
    return StoredUser.model_validate(raw)


async def authenticate(
    store: KeyValueStore,
    hasher: PasswordHasher,
    roster: dict[str, RosterEntry],
    username: str,
    password: str,
    *,
    must_change_password_users: set[str] | None = None,
) -> SessionUser:
    """Verify roster credentials and refresh the stored account record.

    The account is created from the roster on first login. Role, name and
    branch always follow the roster; the password is whatever was last set.
    """
    normalized = normalize_username(username)
    entry = roster.get(normalized)
    if entry is None:
        raise InvalidCredentialsError(normalized)

    stored = await _load_stored_user(store, normalized)
    if stored is None:
        stored = StoredUser(
            password=hasher.hash(entry.password),
            role=entry.role,
            name=entry.name,
            branch_name=entry.branch_name,
            must_change_password=normalized in (must_change_password_users or set()),
        )
        logger.info("user_record_created", extra={"extra": {"username": normalized}})
    else:
        stored = stored.model_copy(
            update={"role": entry.role, "name": entry.name, "branch_name": entry.branch_name}
        )

    valid, upgraded = hasher.verify(password, stored.password)
    if valid and upgraded:
        stored = stored.model_copy(update={"password": upgraded})
    await store.set(user_key(normalized), stored.to_blob())
    if not valid:
        raise InvalidCredentialsError(normalized)

    return SessionUser(
        username=normalized,
        role=stored.role,
        name=stored.name,
        branch_name=stored.branch_name,
        must_change_password=stored.must_change_password,
    )


async def open_session(store: KeyValueStore, user: SessionUser, ttl_seconds: int) -> str:
    session_id = new_session_id()
    await store.set_with_expiry(session_key(session_id), user.to_blob(), ttl_seconds)
    return session_id


async def load_session(store: KeyValueStore, session_id: str) -> SessionUser | None:
    raw = await store.get(session_key(session_id))
    if not isinstance(raw, dict):
        return None
    return SessionUser.model_validate(raw)


async def close_session(store: KeyValueStore, session_id: str) -> None:
    await store.delete(session_key(session_id))


async def change_password(
    store: KeyValueStore,
    hasher: PasswordHasher,
    session_id: str,
    user: SessionUser,
    current_password: str,
    new_password: str,
    *,
    min_length: int,
    default_ttl_seconds: int,
) -> SessionUser:
    if len(new_password) < min_length:
        raise DomainError(detail=f"New password must be at least {min_length} characters")
    stored = await _load_stored_user(store, user.username)
    if stored is None:
        raise NotFoundError(detail="User not found")
    valid, _ = hasher.verify(current_password, stored.password)
    if not valid:
        raise InvalidCredentialsError(user.username)

    stored = stored.model_copy(
        update={"password": hasher.hash(new_password), "must_change_password": False}
    )
    await store.set(user_key(user.username), stored.to_blob())

    refreshed = user.model_copy(update={"must_change_password": False})
    remaining = await store.get_remaining_ttl(session_key(session_id))
    ttl = remaining if remaining > 0 else default_ttl_seconds
    await store.set_with_expiry(session_key(session_id), refreshed.to_blob(), ttl)
    logger.info("password_changed", extra={"extra": {"username": user.username}})
    return refreshed
