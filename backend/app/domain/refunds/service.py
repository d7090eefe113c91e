from __future__ import annotations

import logging
from zoneinfo import ZoneInfo

from app.domain import listing
from app.domain.common import new_entity_id, utc_now_iso
from app.domain.errors import (
    DomainError,
    DuplicateRefundError,
    NotFoundError,
    PermissionDeniedError,
)
from app.domain.refunds import duplicates
from app.domain.refunds import index as refund_index
from app.domain.refunds.schemas import (
    OTHER_INSURANCE_PROVIDER,
    RECEIPT_DATE_METHODS,
    REFUNDS_INDEX_KEY,
    BatchRefundRequest,
    BranchRefundUpdate,
    DashboardStats,
    RefundAdminUpdate,
    RefundClaim,
    RefundCreateRequest,
    RefundFilters,
    RefundMethod,
    RefundStatus,
    RefundSuggestions,
    StatusChangeLog,
    branch_index_key,
    refund_key,
    status_log_key,
    status_logs_index_key,
)
from app.domain.users.schemas import SessionUser
from app.infra.kv import KeyValueStore, StoreError
from app.infra.metrics import metrics
from app.infra.storage import BlobDeletionReport, StorageBackend, delete_blobs

logger = logging.getLogger(__name__)

MIN_STATUS_REASON_LENGTH = 3
IDENTITY_FIELDS = ("vehicle_number", "company_name", "refund_method", "claim_amount")
BRANCH_EDITABLE_STATUSES = {RefundStatus.PENDING, RefundStatus.REJECTED}


def _blank(value: str | None) -> bool:
    return not (value or "").strip()


def _method_value(method: RefundMethod | str | None) -> str | None:
    if method is None:
        return None
    return method.value if isinstance(method, RefundMethod) else str(method)


async def get_claim(store: KeyValueStore, refund_id: str) -> RefundClaim:
    claim = listing.parse_entity(RefundClaim, await store.get(refund_key(refund_id)))
    if claim is None:
        raise NotFoundError(detail="Refund claim not found")
    return claim


async def save_claim(store: KeyValueStore, claim: RefundClaim) -> None:
    await store.set(refund_key(claim.id), claim.to_stored_blob())


async def _index_new_claim(store: KeyValueStore, claim: RefundClaim) -> None:
    try:
        await refund_index.add_to_indexes(store, claim)
    except StoreError:
        logger.warning(
            "refund_index_add_failed", extra={"extra": {"refund_id": claim.id}}, exc_info=True
        )
        metrics.record_side_index_failure("refund_index_add")


def _new_claim(user: SessionUser, **fields) -> RefundClaim:
    return RefundClaim(
        id=new_entity_id("refund"),
        status=RefundStatus.PENDING,
        submitted_at=utc_now_iso(),
        submitted_by=user.username,
        submitted_by_name=user.name,
        submitted_by_branch=user.branch_name,
        **fields,
    )


def validate_single_request(payload: RefundCreateRequest) -> None:
    if payload.type.value == "single":
        if _blank(payload.company_name):
            raise DomainError(detail="Company name is required")
        if _blank(payload.dealer_name):
            raise DomainError(detail="Dealer name is required")
        if _blank(payload.manager_name):
            raise DomainError(detail="Manager name is required")
    if payload.refund_method == RefundMethod.OFFSET and _blank(payload.offset_reason):
        raise DomainError(detail="Offset refunds require an offset reason")


async def create_refund(
    store: KeyValueStore, user: SessionUser, payload: RefundCreateRequest
) -> RefundClaim:
    validate_single_request(payload)
    method = _method_value(payload.refund_method)
    if not payload.force_create:
        existing_id = await duplicates.check_duplicate(
            store, payload.vehicle_number, payload.company_name, method, payload.claim_amount
        )
        if existing_id:
            raise DuplicateRefundError([{"existingRefundId": existing_id}])

    fields = payload.model_dump(exclude={"force_create"}, exclude_none=True)
    fields["type"] = payload.type.value
    if method is not None:
        fields["refund_method"] = method
    claim = _new_claim(user, **fields)

    await save_claim(store, claim)
    await _index_new_claim(store, claim)
    await duplicates.register_claim(store, claim)
    metrics.record_refund_event("created")
    logger.info(
        "refund_created",
        extra={"extra": {"refund_id": claim.id, "username": user.username}},
    )
    return claim


def _validate_batch_header(payload: BatchRefundRequest) -> None:
    header = payload.header
    if _blank(header.insurance_provider) or _blank(header.company_name) or header.refund_method is None:
        raise DomainError(detail="Insurance provider, company name and refund method are required")
    if header.insurance_provider == OTHER_INSURANCE_PROVIDER and _blank(header.insurance_provider_etc):
        raise DomainError(detail="Enter the insurance provider name")
    if header.refund_method == RefundMethod.ACCOUNT:
        if _blank(header.bank_name) or _blank(header.account_number) or _blank(header.account_holder):
            raise DomainError(detail="Account refunds require bank name, account number and holder")
    if header.refund_method == RefundMethod.OFFSET and _blank(header.offset_reason):
        raise DomainError(detail="Offset refunds require an offset reason")
    if not payload.items:
        raise DomainError(detail="At least one refund item is required")


async def _discard_claim(store: KeyValueStore, claim: RefundClaim) -> None:
    try:
        await store.delete(refund_key(claim.id))
    except StoreError:
        logger.warning(
            "refund_rollback_failed", extra={"extra": {"refund_id": claim.id}}, exc_info=True
        )
    await refund_index.remove_from_indexes(store, claim)
    await duplicates.remove_claim(store, claim, only_if_owner=claim.id)


async def create_batch(
    store: KeyValueStore, user: SessionUser, payload: BatchRefundRequest
) -> list[RefundClaim]:
    """Create one claim per item under a shared header, all or nothing.

    When any item fails, every claim this call created is removed again and
    the failures are reported as a DomainError.
    """
    _validate_batch_header(payload)
    header = payload.header
    method = _method_value(header.refund_method)

    if not payload.force_create:
        found = []
        for position, item in enumerate(payload.items):
            existing_id = await duplicates.check_duplicate(
                store, item.vehicle_number, header.company_name, method, item.claim_amount
            )
            if existing_id:
                found.append(
                    {
                        "index": position,
                        "vehicleNumber": item.vehicle_number,
                        "existingRefundId": existing_id,
                    }
                )
        if found:
            raise DuplicateRefundError(found)

    header_fields = header.model_dump(exclude_none=True)
    header_fields["refund_method"] = method
    created: list[RefundClaim] = []
    failed: list[dict] = []
    for position, item in enumerate(payload.items):
        try:
            if (
                _blank(item.refund_date)
                or _blank(item.vehicle_number)
                or not item.claim_amount
                or _blank(item.refund_reason)
            ):
                raise DomainError(detail="Required item fields are missing")
            if method in RECEIPT_DATE_METHODS and _blank(item.receipt_date):
                raise DomainError(detail="Card and offset refunds require a receipt date")
            if not item.receipt_photos:
                raise DomainError(detail="At least one receipt photo is required")

            claim = _new_claim(
                user,
                type="single",
                **header_fields,
                **item.model_dump(exclude={"id"}, exclude_none=True),
            )
            await save_claim(store, claim)
            await _index_new_claim(store, claim)
            await duplicates.register_claim(store, claim)
            created.append(claim)
        except DomainError as exc:
            failed.append({"index": position, "reason": exc.detail})
        except StoreError:
            logger.warning("batch_item_store_failed", extra={"extra": {"index": position}}, exc_info=True)
            failed.append({"index": position, "reason": "Store unavailable"})

    if failed:
        for claim in created:
            await _discard_claim(store, claim)
        logger.info(
            "refund_batch_rolled_back",
            extra={"extra": {"created": len(created), "failed": len(failed)}},
        )
        raise DomainError(
            detail="Some items failed; the whole batch was cancelled",
            title="Batch Rejected",
            errors=failed,
        )

    metrics.record_refund_event("created", len(created))
    logger.info(
        "refund_batch_created",
        extra={"extra": {"count": len(created), "username": user.username}},
    )
    return created


async def list_refunds(
    store: KeyValueStore,
    filters: RefundFilters,
    page: int,
    page_size: int,
    *,
    tz: ZoneInfo | None = None,
) -> tuple[list[RefundClaim], int]:
    id_page = await refund_index.list_refund_ids(store, filters, page, page_size, tz=tz)
    claims = await refund_index.load_claims(store, id_page.ids)
    return await duplicates.annotate_list(store, claims), id_page.total_count


async def list_branch_refunds(store: KeyValueStore, branch: str) -> list[RefundClaim]:
    claims = await refund_index.load_all_claims(store, branch_index_key(branch))
    return await duplicates.annotate_list(store, refund_index.newest_first(claims))


def _identity(claim: RefundClaim) -> tuple:
    return tuple(getattr(claim, field) for field in IDENTITY_FIELDS)


async def _save_with_identity_change(
    store: KeyValueStore, before: RefundClaim, after: RefundClaim
) -> None:
    await save_claim(store, after)
    if _identity(before) != _identity(after):
        await duplicates.remove_claim(store, before, only_if_owner=before.id)
        await duplicates.register_claim(store, after)


async def admin_update(
    store: KeyValueStore, user: SessionUser, refund_id: str, payload: RefundAdminUpdate
) -> RefundClaim:
    claim = await get_claim(store, refund_id)
    changes = payload.model_dump(exclude_unset=True)
    if "refund_method" in changes:
        changes["refund_method"] = _method_value(changes["refund_method"])
    if changes.get("type") is not None:
        changes["type"] = changes["type"].value
    else:
        changes.pop("type", None)
    if changes.get("claim_amount") is None:
        changes.pop("claim_amount", None)

    merged = claim.model_copy(update=changes)
    if merged.refund_method == RefundMethod.ACCOUNT.value:
        if _blank(merged.bank_name) or _blank(merged.account_number) or _blank(merged.account_holder):
            raise DomainError(detail="Account refunds require bank name, account number and holder")
    if merged.refund_method in RECEIPT_DATE_METHODS and _blank(merged.receipt_date):
        raise DomainError(detail="Card and offset refunds require a receipt date")

    updated = merged.model_copy(update={"updated_at": utc_now_iso(), "updated_by": user.username})
    await _save_with_identity_change(store, claim, updated)
    logger.info("refund_updated", extra={"extra": {"refund_id": refund_id, "username": user.username}})
    return updated


def _ensure_branch_owner(user: SessionUser, claim: RefundClaim) -> None:
    if not user.branch_name or claim.submitted_by_branch != user.branch_name:
        raise PermissionDeniedError(detail="Only the submitting branch may change this claim")


async def branch_update(
    store: KeyValueStore, user: SessionUser, refund_id: str, payload: BranchRefundUpdate
) -> RefundClaim:
    claim = await get_claim(store, refund_id)
    _ensure_branch_owner(user, claim)
    if claim.status not in BRANCH_EDITABLE_STATUSES:
        raise DomainError(detail="Only pending or rejected claims can be edited")

    changes = {key: value for key, value in payload.model_dump(exclude_unset=True).items() if value is not None}
    if "refund_method" in changes:
        changes["refund_method"] = _method_value(changes["refund_method"])
    if "claim_amount" in changes and changes["claim_amount"] < 0:
        raise DomainError(detail="Claim amount must not be negative")

    merged = claim.model_copy(update=changes)
    method = merged.refund_method
    if method == RefundMethod.ACCOUNT.value:
        if _blank(merged.account_number) or _blank(merged.account_holder):
            raise DomainError(detail="Account number and holder are required")
    if method in RECEIPT_DATE_METHODS and _blank(merged.receipt_date):
        raise DomainError(detail="Receipt date is required")

    cleared: dict = {}
    if method not in RECEIPT_DATE_METHODS:
        cleared["receipt_date"] = None
    if method != RefundMethod.ACCOUNT.value:
        cleared.update(bank_name=None, account_number=None, account_holder=None)
    updated = merged.model_copy(
        update={**cleared, "updated_at": utc_now_iso(), "updated_by": user.username}
    )
    await _save_with_identity_change(store, claim, updated)
    logger.info(
        "refund_branch_updated", extra={"extra": {"refund_id": refund_id, "username": user.username}}
    )
    return updated


async def delete_refund(
    store: KeyValueStore,
    storage: StorageBackend,
    user: SessionUser,
    refund_id: str,
    *,
    require_branch_owner: bool = False,
) -> BlobDeletionReport:
    claim = await get_claim(store, refund_id)
    if require_branch_owner:
        _ensure_branch_owner(user, claim)

    report = await delete_blobs(storage, claim.blob_references())
    await store.delete(refund_key(refund_id))
    await refund_index.remove_from_indexes(store, claim)
    await duplicates.remove_claim(store, claim)
    metrics.record_refund_event("deleted")
    logger.info(
        "refund_deleted",
        extra={
            "extra": {
                "refund_id": refund_id,
                "username": user.username,
                "blobs_deleted": len(report.deleted),
                "blobs_failed": len(report.failed),
            }
        },
    )
    return report


def _transition(claim: RefundClaim, to_status: RefundStatus, now: str, *, stamp_approval: bool) -> dict:
    changes: dict = {"status": to_status}
    if to_status == RefundStatus.APPROVED and stamp_approval:
        changes["approved_at"] = now
    if claim.status == RefundStatus.REJECTED and to_status != RefundStatus.REJECTED:
        changes["acknowledged_at"] = None
        changes["acknowledged_by"] = None
    return changes


async def apply_action(
    store: KeyValueStore, user: SessionUser, refund_id: str, action: str, notes: str | None
) -> RefundClaim:
    claim = await get_claim(store, refund_id)
    now = utc_now_iso()
    to_status = RefundStatus.APPROVED if action == "approve" else RefundStatus.REJECTED
    changes = _transition(
        claim, to_status, now, stamp_approval=claim.status != RefundStatus.APPROVED
    )
    changes.update(processed_at=now, processed_by=user.username, notes=notes or claim.notes)
    updated = claim.model_copy(update=changes)
    await save_claim(store, updated)
    metrics.record_refund_event(to_status.value)
    logger.info(
        "refund_processed",
        extra={"extra": {"refund_id": refund_id, "status": to_status.value, "username": user.username}},
    )
    return updated


async def change_status(
    store: KeyValueStore,
    user: SessionUser,
    refund_id: str,
    to_status: RefundStatus,
    reason: str,
) -> RefundClaim:
    """Administrator override from any status to any other, with an audit entry."""
    reason = reason.strip()
    if len(reason) < MIN_STATUS_REASON_LENGTH:
        raise DomainError(detail=f"Reason must be at least {MIN_STATUS_REASON_LENGTH} characters")
    claim = await get_claim(store, refund_id)
    if claim.status == to_status:
        raise DomainError(detail="Claim already has this status")

    now = utc_now_iso()
    log_entry = StatusChangeLog(
        id=new_entity_id("statuslog"),
        refund_id=refund_id,
        changed_by=user.username,
        changed_by_name=user.name,
        changed_at=now,
        from_status=claim.status,
        to_status=to_status,
        reason=reason,
    )
    await store.set(status_log_key(log_entry.id), log_entry.to_blob())
    await store.list_prepend(status_logs_index_key(refund_id), log_entry.id)

    changes = _transition(claim, to_status, now, stamp_approval=True)
    changes.update(processed_at=now, processed_by=user.username, updated_at=now, updated_by=user.username)
    updated = claim.model_copy(update=changes)
    await save_claim(store, updated)
    metrics.record_refund_event("status_override")
    logger.info(
        "refund_status_changed",
        extra={
            "extra": {
                "refund_id": refund_id,
                "from_status": claim.status.value,
                "to_status": to_status.value,
                "username": user.username,
            }
        },
    )
    return updated


async def list_status_logs(store: KeyValueStore, refund_id: str) -> list[StatusChangeLog]:
    await get_claim(store, refund_id)
    log_ids = await store.list_range(status_logs_index_key(refund_id), 0, -1)
    if not log_ids:
        return []
    raw_entries = await store.batch_get([status_log_key(log_id) for log_id in log_ids])
    entries = [listing.parse_entity(StatusChangeLog, raw) for raw in raw_entries]
    return [entry for entry in entries if entry is not None]


async def acknowledge(
    store: KeyValueStore, user: SessionUser, refund_id: str
) -> tuple[RefundClaim, bool]:
    """Record that the owning branch has seen a rejection.

    Returns the claim and whether it had already been acknowledged.
    """
    claim = await get_claim(store, refund_id)
    owns = claim.submitted_by == user.username or (
        user.branch_name is not None and claim.submitted_by_branch == user.branch_name
    )
    if not owns:
        raise PermissionDeniedError(detail="No access to this refund claim")
    if claim.status != RefundStatus.REJECTED:
        raise DomainError(detail="Only rejected claims can be acknowledged")
    if claim.acknowledged_at:
        return claim, True

    updated = claim.model_copy(
        update={"acknowledged_at": utc_now_iso(), "acknowledged_by": user.username}
    )
    await save_claim(store, updated)
    logger.info(
        "refund_acknowledged", extra={"extra": {"refund_id": refund_id, "username": user.username}}
    )
    return updated, False


async def dashboard_stats(store: KeyValueStore) -> DashboardStats:
    claims = await refund_index.load_all_claims(store)
    stats = DashboardStats(total_count=len(claims))
    for claim in claims:
        if claim.status == RefundStatus.PENDING:
            stats.pending_count += 1
        elif claim.status == RefundStatus.APPROVED:
            stats.approved_count += 1
        elif claim.status == RefundStatus.REJECTED:
            stats.rejected_count += 1
            if claim.acknowledged_at:
                stats.acknowledged_count += 1
            else:
                stats.pending_ack_count += 1
    return stats


async def suggestions(
    store: KeyValueStore, *, batch_size: int = 100, max_batches: int = 10
) -> RefundSuggestions:
    """Distinct company and dealer names from the newest claims."""
    company_names: set[str] = set()
    dealer_names: set[str] = set()
    try:
        for batch in range(max_batches):
            start = batch * batch_size
            ids = await store.list_range(REFUNDS_INDEX_KEY, start, start + batch_size - 1)
            if not ids:
                break
            try:
                raw_entities = await store.batch_get([refund_key(refund_id) for refund_id in ids])
            except StoreError:
                logger.warning("suggestions_batch_failed", extra={"extra": {"batch": batch}})
                raw_entities = []
            for raw in raw_entities:
                if not isinstance(raw, dict):
                    continue
                if isinstance(raw.get("companyName"), str) and raw["companyName"].strip():
                    company_names.add(raw["companyName"].strip())
                if isinstance(raw.get("dealerName"), str) and raw["dealerName"].strip():
                    dealer_names.add(raw["dealerName"].strip())
            if len(ids) < batch_size:
                break
    except StoreError:
        logger.warning("suggestions_failed", exc_info=True)
        return RefundSuggestions()
    return RefundSuggestions(company_names=sorted(company_names), dealer_names=sorted(dealer_names))
