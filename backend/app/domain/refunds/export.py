from __future__ import annotations

import csv
import io
from datetime import date
from typing import Iterable
from zoneinfo import ZoneInfo

from app.domain.refunds import index as refund_index
from app.domain.refunds.schemas import OTHER_INSURANCE_PROVIDER, RefundClaim, RefundFilters
from app.infra.kv import KeyValueStore

_DANGEROUS_CSV_PREFIXES = ("=", "+", "-", "@", "\t")

EXPORT_HEADERS = [
    "청구ID",
    "유형",
    "상태",
    "제출자",
    "성능장",
    "환불신청일자",
    "차량번호",
    "차대번호",
    "보험사",
    "상사명",
    "딜러명",
    "환불수단",
    "총환불금액",
    "환불사유",
    "은행명",
    "계좌번호",
    "예금주",
    "환불일자",
    "제출일시",
    "처리일시",
    "처리메모",
]

TYPE_LABELS = {"single": "단건", "bulk": "일괄", "bundled": "묶음"}
STATUS_LABELS = {"pending": "대기중", "approved": "승인됨", "rejected": "거부됨"}
METHOD_LABELS = {"card": "카드", "account": "계좌", "offset": "상계"}


def _sanitize_row(values: Iterable[object]) -> list[str]:
    return [_safe_csv_value(value) for value in values]


def _safe_csv_value(value: object) -> str:
    text = "" if value is None else str(value)
    if not text:
        return ""
    if text.startswith(_DANGEROUS_CSV_PREFIXES):
        return f"'{text}"
    return text


def _insurance_provider(claim: RefundClaim) -> str:
    if claim.insurance_provider == OTHER_INSURANCE_PROVIDER:
        return claim.insurance_provider_etc or ""
    return claim.insurance_provider or ""


def export_row(claim: RefundClaim) -> list[str]:
    return _sanitize_row(
        [
            claim.id,
            TYPE_LABELS.get(claim.type, claim.type),
            STATUS_LABELS[claim.status.value],
            claim.submitted_by_name or claim.submitted_by,
            claim.submitted_by_branch,
            claim.refund_date,
            claim.vehicle_number,
            claim.vin,
            _insurance_provider(claim),
            claim.display_company,
            claim.dealer_name,
            METHOD_LABELS.get(claim.refund_method or "", ""),
            claim.claim_amount if claim.claim_amount else "",
            claim.refund_reason,
            claim.bank_name,
            claim.account_number,
            claim.account_holder,
            claim.receipt_date,
            claim.submitted_at,
            claim.processed_at,
            claim.notes,
        ]
    )


def build_refunds_csv(claims: Iterable[RefundClaim]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(_sanitize_row(EXPORT_HEADERS))
    for claim in claims:
        writer.writerow(export_row(claim))
    return buffer.getvalue()


async def export_claims(
    store: KeyValueStore, filters: RefundFilters, *, tz: ZoneInfo | None = None
) -> list[RefundClaim]:
    """All claims matching the export filters, newest submission first."""
    predicate = refund_index.build_predicate(filters, tz)
    claims = await refund_index.load_all_claims(store)
    return refund_index.newest_first([claim for claim in claims if predicate(claim)])


def export_filename(today: date) -> str:
    return f"refunds_{today.isoformat()}.csv"
