from __future__ import annotations

from enum import StrEnum

from pydantic import Field

from app.domain.common import CamelModel


def user_key(username: str) -> str:
    return f"user:{username}"


def session_key(session_id: str) -> str:
    return f"session:{session_id}"


class UserRole(StrEnum):
    COMMANDER = "COMMANDER"
    STAFF = "STAFF"
    BRANCH = "BRANCH"
    MIDDLE_MANAGER = "MIDDLE_MANAGER"


class RosterEntry(CamelModel):
    username: str
    password: str
    role: UserRole
    name: str
    branch_name: str | None = None


class StoredUser(CamelModel):
    """Account record kept under ``user:{username}``."""

    password: str
    role: UserRole
    name: str
    branch_name: str | None = None
    must_change_password: bool = False


class SessionUser(CamelModel):
    """Identity carried by a session; also the public user shape."""

    username: str
    role: UserRole
    name: str
    branch_name: str | None = None
    must_change_password: bool = False


class LoginRequest(CamelModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)
    remember_me: bool = False


class LoginResponse(CamelModel):
    success: bool = True
    user: SessionUser


class MeResponse(CamelModel):
    user: SessionUser | None = None


class ChangePasswordRequest(CamelModel):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=1)
