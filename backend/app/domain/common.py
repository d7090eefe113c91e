import secrets
import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for persisted blobs and payloads that use camelCase keys on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_blob(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def isoformat_z(value: datetime) -> str:
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def utc_now_iso() -> str:
    return isoformat_z(utc_now())


def new_entity_id(prefix: str) -> str:
    epoch_ms = int(utc_now().timestamp() * 1000)
    return f"{prefix}_{epoch_ms}_{uuid.uuid4().hex[:8]}"


def new_session_id() -> str:
    return secrets.token_urlsafe(32)
