"""Refund list index maintenance and filtered paging."""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, time, timezone
from typing import Callable
from zoneinfo import ZoneInfo

from app.domain import listing
from app.domain.refunds.schemas import (
    REFUNDS_INDEX_KEY,
    RefundClaim,
    RefundFilters,
    RefundStatus,
    branch_index_key,
    refund_key,
)
from app.infra.kv import KeyValueStore, StoreError
from app.infra.metrics import metrics

logger = logging.getLogger(__name__)

_VEHICLE_NOISE = re.compile(r"[\s-]")


def normalize_vehicle_number(value: str | None) -> str:
    return _VEHICLE_NOISE.sub("", value or "").lower()


def parse_timestamp(value: str | None, tz: ZoneInfo) -> datetime | None:
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed


def day_bounds(
    from_date: date | None, to_date: date | None, tz: ZoneInfo
) -> tuple[datetime | None, datetime | None]:
    start = datetime.combine(from_date, time.min, tzinfo=tz) if from_date else None
    end = datetime.combine(to_date, time(23, 59, 59, 999000), tzinfo=tz) if to_date else None
    return start, end


def build_predicate(filters: RefundFilters, tz: ZoneInfo | None = None) -> Callable[[RefundClaim], bool]:
    """Compile filters into a single claim predicate.

    Branch exclusion is evaluated before any other criterion. Claims without a
    parseable timestamp never satisfy a date bound, and claims without an
    amount never satisfy an amount bound.
    """
    tz = tz or ZoneInfo("UTC")
    start, end = day_bounds(filters.from_date, filters.to_date, tz)
    company_needle = filters.company_name.lower() if filters.company_name else None
    vehicle_needle = normalize_vehicle_number(filters.vehicle_number) if filters.vehicle_number else None

    def matches(claim: RefundClaim) -> bool:
        if filters.exclude_branch and claim.submitted_by_branch == filters.exclude_branch:
            return False
        if filters.status and filters.status != "all" and claim.status.value != filters.status:
            return False
        if start is not None or end is not None:
            raw = claim.refund_date if filters.date_field == "refundDate" else claim.submitted_at
            moment = parse_timestamp(raw, tz)
            if moment is None:
                return False
            if start is not None and moment < start:
                return False
            if end is not None and moment > end:
                return False
        if filters.submitter and claim.submitted_by != filters.submitter:
            return False
        if company_needle is not None and company_needle not in claim.display_company.lower():
            return False
        if vehicle_needle is not None and vehicle_needle not in normalize_vehicle_number(
            claim.vehicle_number
        ):
            return False
        if filters.refund_method and filters.refund_method != "all":
            if claim.refund_method != filters.refund_method:
                return False
        if filters.refund_reason and filters.refund_reason != "all":
            if claim.refund_reason != filters.refund_reason:
                return False
        if filters.min_amount is not None or filters.max_amount is not None:
            if claim.claim_amount is None:
                return False
            if filters.min_amount is not None and claim.claim_amount < filters.min_amount:
                return False
            if filters.max_amount is not None and claim.claim_amount > filters.max_amount:
                return False
        if filters.acknowledged == "acknowledged" and not claim.acknowledged_at:
            return False
        if filters.acknowledged == "pending":
            if claim.status != RefundStatus.REJECTED or claim.acknowledged_at:
                return False
        return True

    return matches


async def list_refund_ids(
    store: KeyValueStore,
    filters: RefundFilters,
    page: int,
    page_size: int,
    *,
    tz: ZoneInfo | None = None,
    window_size: int = listing.WINDOW_SIZE,
    max_windows: int = listing.MAX_WINDOWS,
) -> listing.IdPage:
    """Return one page of claim ids from the global index plus the match count.

    Without any criterion this is a direct slice of the index. Otherwise the
    index head is scanned in windows and the accumulated matches are paged.
    Store errors propagate.
    """
    if filters.is_identity():
        return await listing.fetch_index_page(store, REFUNDS_INDEX_KEY, page, page_size)
    result = await listing.scan_matching_ids(
        store,
        REFUNDS_INDEX_KEY,
        entity_key=refund_key,
        model=RefundClaim,
        predicate=build_predicate(filters, tz),
        collection="refunds",
        window_size=window_size,
        max_windows=max_windows,
    )
    return listing.paginate(result.matched_ids, page, page_size)


async def add_to_indexes(store: KeyValueStore, claim: RefundClaim) -> None:
    await store.list_prepend(REFUNDS_INDEX_KEY, claim.id)
    if claim.submitted_by_branch:
        await store.list_prepend(branch_index_key(claim.submitted_by_branch), claim.id)


async def remove_from_indexes(store: KeyValueStore, claim: RefundClaim) -> None:
    """Drop a claim id from the global and branch indexes, logging failures."""
    keys = [REFUNDS_INDEX_KEY]
    if claim.submitted_by_branch:
        keys.append(branch_index_key(claim.submitted_by_branch))
    for index_key in keys:
        try:
            await store.list_remove(index_key, claim.id)
        except StoreError:
            logger.warning(
                "refund_index_remove_failed",
                extra={"extra": {"refund_id": claim.id, "index": index_key}},
                exc_info=True,
            )
            metrics.record_side_index_failure("refund_index_remove")


async def load_claims(store: KeyValueStore, ids: list[str]) -> list[RefundClaim]:
    """Bulk-fetch claims in id order, skipping ids that no longer resolve."""
    if not ids:
        return []
    raw_entities = await store.batch_get([refund_key(refund_id) for refund_id in ids])
    claims = []
    for raw in raw_entities:
        claim = listing.parse_entity(RefundClaim, raw)
        if claim is not None:
            claims.append(claim)
    return claims


async def load_all_claims(store: KeyValueStore, index_key: str = REFUNDS_INDEX_KEY) -> list[RefundClaim]:
    ids = await store.list_range(index_key, 0, -1)
    return await load_claims(store, ids)


def newest_first(claims: list[RefundClaim]) -> list[RefundClaim]:
    epoch = datetime.min.replace(tzinfo=timezone.utc)
    utc = ZoneInfo("UTC")
    return sorted(
        claims,
        key=lambda claim: parse_timestamp(claim.submitted_at, utc) or epoch,
        reverse=True,
    )
