from fastapi import Request

from app.domain.users.schemas import RosterEntry
from app.domain.users.service import load_roster
from app.infra.auth import PasswordHasher
from app.infra.kv import KeyValueStore
from app.infra.storage import StorageBackend
from app.settings import settings


def get_app_settings(request: Request):
    return getattr(request.app.state, "app_settings", None) or settings


def get_kv_store(request: Request) -> KeyValueStore:
    return request.app.state.services.kv


def get_storage_backend(request: Request) -> StorageBackend:
    return request.app.state.services.storage


def get_password_hasher(request: Request) -> PasswordHasher:
    return request.app.state.services.password_hasher


def get_user_roster(request: Request) -> dict[str, RosterEntry]:
    return load_roster(get_app_settings(request).user_roster_path)
