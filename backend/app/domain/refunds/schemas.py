from __future__ import annotations

from datetime import date
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.domain.common import CamelModel

REFUNDS_INDEX_KEY = "refunds:index"
OTHER_INSURANCE_PROVIDER = "기타(직접입력)"


def refund_key(refund_id: str) -> str:
    return f"refund:{refund_id}"


def branch_index_key(branch: str) -> str:
    return f"refunds:branch:{branch}"


def status_log_key(log_id: str) -> str:
    return f"status-log:{log_id}"


def status_logs_index_key(refund_id: str) -> str:
    return f"status-logs:{refund_id}"


class RefundStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class RefundType(StrEnum):
    SINGLE = "single"
    BULK = "bulk"
    BUNDLED = "bundled"


class RefundMethod(StrEnum):
    CARD = "card"
    ACCOUNT = "account"
    OFFSET = "offset"


RECEIPT_DATE_METHODS = {RefundMethod.CARD.value, RefundMethod.OFFSET.value}

Amount = int | float


class RefundClaim(CamelModel):
    """A refund claim as persisted under ``refund:{id}``."""

    model_config = ConfigDict(extra="allow")

    id: str
    type: str = RefundType.SINGLE.value
    status: RefundStatus = RefundStatus.PENDING
    submitted_at: str
    submitted_by: str
    submitted_by_name: str | None = None
    submitted_by_branch: str | None = None

    is_duplicate: bool | None = None
    duplicate_refund_id: str | None = None

    refund_date: str | None = None
    vehicle_number: str | None = None
    vin: str | None = None
    insurance_provider: str | None = None
    insurance_provider_etc: str | None = None
    insurance_company: str | None = None
    company_name: str | None = None
    dealer_name: str | None = None
    manager_name: str | None = None
    refund_method: str | None = None
    claim_amount: Amount | None = None
    refund_reason: str | None = None

    bank_name: str | None = None
    account_number: str | None = None
    account_holder: str | None = None

    receipt_date: str | None = None
    offset_reason: str | None = None
    receipt_photos: list[str] | None = None

    excel_file: str | None = None
    bundled_photos: list[str] | None = None

    processed_at: str | None = None
    processed_by: str | None = None
    approved_at: str | None = None
    notes: str | None = None
    updated_at: str | None = None
    updated_by: str | None = None

    acknowledged_at: str | None = None
    acknowledged_by: str | None = None

    @property
    def display_company(self) -> str:
        return self.company_name or self.insurance_company or ""

    def blob_references(self) -> list[str]:
        references = list(self.receipt_photos or []) + list(self.bundled_photos or [])
        if self.excel_file:
            references.append(self.excel_file)
        return references

    def to_stored_blob(self) -> dict:
        blob = self.to_blob()
        blob.pop("isDuplicate", None)
        blob.pop("duplicateRefundId", None)
        return blob


class StatusChangeLog(CamelModel):
    id: str
    refund_id: str
    changed_by: str
    changed_by_name: str
    changed_at: str
    from_status: RefundStatus
    to_status: RefundStatus
    reason: str


class RefundFilters(BaseModel):
    """Listing criteria; every field is optional and all are AND-combined."""

    status: str | None = None
    from_date: date | None = None
    to_date: date | None = None
    date_field: Literal["submittedAt", "refundDate"] = "submittedAt"
    submitter: str | None = None
    company_name: str | None = None
    vehicle_number: str | None = None
    refund_method: str | None = None
    refund_reason: str | None = None
    min_amount: float | None = None
    max_amount: float | None = None
    acknowledged: Literal["all", "acknowledged", "pending"] | None = None
    exclude_branch: str | None = None

    @field_validator("status", "submitter", "company_name", "vehicle_number", "refund_method", "refund_reason")
    @classmethod
    def blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        stripped = value.strip()
        return stripped or None

    def has_field_filters(self) -> bool:
        return any(
            [
                self.from_date is not None,
                self.to_date is not None,
                self.submitter,
                self.company_name,
                self.vehicle_number,
                self.refund_method and self.refund_method != "all",
                self.refund_reason and self.refund_reason != "all",
                self.min_amount is not None,
                self.max_amount is not None,
                self.acknowledged and self.acknowledged != "all",
            ]
        )

    def is_identity(self) -> bool:
        status_unbounded = not self.status or self.status == "all"
        return status_unbounded and not self.exclude_branch and not self.has_field_filters()


class RefundCreateRequest(CamelModel):
    type: RefundType = RefundType.SINGLE
    refund_date: str | None = None
    vehicle_number: str | None = None
    vin: str | None = None
    insurance_provider: str | None = None
    insurance_provider_etc: str | None = None
    company_name: str | None = None
    dealer_name: str | None = None
    manager_name: str | None = None
    refund_method: RefundMethod | None = None
    claim_amount: Amount | None = None
    refund_reason: str | None = None
    bank_name: str | None = None
    account_number: str | None = None
    account_holder: str | None = None
    receipt_date: str | None = None
    offset_reason: str | None = None
    receipt_photos: list[str] | None = None
    excel_file: str | None = None
    bundled_photos: list[str] | None = None
    notes: str | None = None
    force_create: bool = False


class BatchRefundHeader(CamelModel):
    insurance_provider: str | None = None
    insurance_provider_etc: str | None = None
    company_name: str | None = None
    dealer_name: str | None = None
    manager_name: str | None = None
    refund_method: RefundMethod | None = None
    bank_name: str | None = None
    account_number: str | None = None
    account_holder: str | None = None
    offset_reason: str | None = None


class BatchRefundItem(CamelModel):
    id: str | None = None
    refund_date: str | None = None
    vehicle_number: str | None = None
    vin: str | None = None
    claim_amount: Amount | None = None
    refund_reason: str | None = None
    receipt_date: str | None = None
    receipt_photos: list[str] | None = None


class BatchRefundRequest(CamelModel):
    header: BatchRefundHeader
    items: list[BatchRefundItem] = Field(default_factory=list)
    force_create: bool = False


class RefundAdminUpdate(CamelModel):
    type: RefundType | None = None
    refund_date: str | None = None
    vehicle_number: str | None = None
    vin: str | None = None
    insurance_provider: str | None = None
    insurance_provider_etc: str | None = None
    company_name: str | None = None
    dealer_name: str | None = None
    manager_name: str | None = None
    refund_method: RefundMethod | None = None
    claim_amount: Amount | None = None
    refund_reason: str | None = None
    bank_name: str | None = None
    account_number: str | None = None
    account_holder: str | None = None
    receipt_date: str | None = None
    offset_reason: str | None = None
    receipt_photos: list[str] | None = None
    notes: str | None = None


class BranchRefundUpdate(CamelModel):
    insurance_provider: str | None = None
    insurance_provider_etc: str | None = None
    company_name: str | None = None
    dealer_name: str | None = None
    refund_reason: str | None = None
    refund_method: RefundMethod | None = None
    claim_amount: Amount | None = None
    refund_date: str | None = None
    receipt_date: str | None = None
    bank_name: str | None = None
    account_number: str | None = None
    account_holder: str | None = None
    vin: str | None = None


class RefundActionRequest(CamelModel):
    refund_id: str
    action: Literal["approve", "reject"]
    notes: str | None = None


class StatusChangeRequest(CamelModel):
    to_status: RefundStatus
    reason: str


class RefundCreatedResponse(CamelModel):
    success: bool = True
    refund_id: str


class BatchCreatedResponse(CamelModel):
    success: bool = True
    created_count: int
    created_ids: list[str]


class RefundDeletedResponse(CamelModel):
    success: bool = True
    deleted_id: str
    deleted_photos: int
    failed_photos: int


class AcknowledgeResponse(CamelModel):
    success: bool = True
    already_acknowledged: bool = False
    acknowledged_at: str
    acknowledged_by: str | None = None


class DashboardStats(CamelModel):
    total_count: int = 0
    pending_count: int = 0
    approved_count: int = 0
    rejected_count: int = 0
    pending_ack_count: int = 0
    acknowledged_count: int = 0


class RefundSuggestions(CamelModel):
    company_names: list[str] = Field(default_factory=list)
    dealer_names: list[str] = Field(default_factory=list)
