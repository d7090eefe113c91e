import csv
import io
from datetime import date

import pytest

from app.domain.refunds import export as refund_export
from app.domain.refunds import index as refund_index
from app.domain.refunds.schemas import OTHER_INSURANCE_PROVIDER, RefundClaim, RefundFilters, refund_key
from app.infra.kv import InMemoryKeyValueStore


def _claim(claim_id: str, **fields) -> RefundClaim:
    defaults = {
        "status": "pending",
        "submitted_at": "2024-05-01T03:00:00.000Z",
        "submitted_by": "a0001",
        "submitted_by_name": "울산 성능장",
        "submitted_by_branch": "울산",
        "company_name": "ABC Motors",
        "refund_method": "card",
        "claim_amount": 100000,
    }
    defaults.update(fields)
    return RefundClaim(id=claim_id, **defaults)


def _rows(content: str) -> list[list[str]]:
    return list(csv.reader(io.StringIO(content)))


def test_csv_uses_labels_and_neutralizes_formulas():
    claim = _claim(
        "r1",
        insurance_provider=OTHER_INSURANCE_PROVIDER,
        insurance_provider_etc="=HYPERLINK(\"x\")",
        notes="-memo",
    )

    rows = _rows(refund_export.build_refunds_csv([claim]))

    assert rows[0] == refund_export.EXPORT_HEADERS
    row = dict(zip(rows[0], rows[1]))
    assert row["상태"] == "대기중"
    assert row["환불수단"] == "카드"
    assert row["총환불금액"] == "100000"
    assert row["보험사"].startswith("'=")
    assert row["처리메모"] == "'-memo"


@pytest.mark.anyio
async def test_export_claims_filters_and_sorts_newest_first():
    store = InMemoryKeyValueStore()
    claims = [
        _claim("r1", submitted_at="2024-05-01T03:00:00.000Z"),
        _claim("r2", submitted_at="2024-05-03T03:00:00.000Z", company_name="XYZ"),
        _claim("r3", submitted_at="2024-05-02T03:00:00.000Z"),
    ]
    for claim in claims:
        await store.set(refund_key(claim.id), claim.to_stored_blob())
        await refund_index.add_to_indexes(store, claim)

    exported = await refund_export.export_claims(store, RefundFilters(company_name="abc"))

    assert [claim.id for claim in exported] == ["r3", "r1"]


def test_export_filename():
    assert refund_export.export_filename(date(2024, 5, 1)) == "refunds_2024-05-01.csv"
