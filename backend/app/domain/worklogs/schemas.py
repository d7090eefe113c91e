from __future__ import annotations

from pydantic import ConfigDict, Field, field_validator

from app.domain.common import CamelModel

WORKLOGS_INDEX_KEY = "worklogs:index"
WORKLOG_DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"


def worklog_key(worklog_id: str) -> str:
    return f"worklog:{worklog_id}"


def worklog_branch_index_key(branch: str) -> str:
    return f"worklogs:branch:{branch}"


class WorkLog(CamelModel):
    model_config = ConfigDict(extra="allow")

    id: str
    date: str | None = None
    author_role: str
    author_id: str
    author_name: str
    branch_id: str | None = None
    note: str | None = None
    photo_urls: list[str] = Field(default_factory=list)
    worklog_paste_image_urls: list[str] | None = None
    created_at: str
    status: str | None = "pending"
    status_updated_at: str | None = None
    commander_comment: str | None = None
    commander_comment_at: str | None = None

    def blob_references(self) -> list[str]:
        return list(self.photo_urls) + list(self.worklog_paste_image_urls or [])


class WorkLogCreateRequest(CamelModel):
    date: str = Field(pattern=WORKLOG_DATE_PATTERN)
    note: str | None = None
    photo_urls: list[str] = Field(default_factory=list)
    worklog_paste_image_urls: list[str] | None = None


class WorkLogUpdateRequest(CamelModel):
    note: str | None = None
    status: str | None = None
    commander_comment: str | None = None

    @field_validator("status")
    @classmethod
    def validate_status(cls, value: str | None) -> str | None:
        if value is not None and value not in {"pending", "approved", "rejected"}:
            raise ValueError("status must be pending, approved or rejected")
        return value


class WorkLogCreatedResponse(CamelModel):
    success: bool = True
    worklog_id: str


class WorkLogDeletedResponse(CamelModel):
    success: bool = True
    failed_photos: list[str] | None = None
