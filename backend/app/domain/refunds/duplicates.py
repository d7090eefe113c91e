"""Duplicate-claim fingerprints.

A claim's identity for duplicate warnings is the tuple (vehicle number,
company name, refund method, claim amount). The tuple is normalized, hashed
with SHA-256 and stored as ``refund:dup:<hex>`` pointing at the most recently
registered claim id. Every operation here is best-effort: store failures are
logged and never reach the caller.
"""

from __future__ import annotations

import hashlib
import logging
import math
import re
from decimal import Decimal
from typing import Iterable

from app.domain.refunds.schemas import RefundClaim, refund_key
from app.infra.kv import KeyValueStore, StoreError
from app.infra.metrics import metrics

logger = logging.getLogger(__name__)

DUPLICATE_KEY_PREFIX = "refund:dup:"
_WHITESPACE = re.compile(r"\s")


def _shortest_digits(value: float) -> tuple[str, int]:
    """Shortest round-trip digits of a positive float and the decimal point position."""
    _, digit_tuple, exponent = Decimal(repr(value)).as_tuple()
    digits = "".join(str(digit) for digit in digit_tuple)
    return digits.rstrip("0"), len(digits) + exponent


def format_amount(amount: int | float | None) -> str:
    """Render an amount the way existing keys were written (``100000``, ``1500.5``).

    Follows JavaScript number formatting: plain digits from ``1e-6`` up to
    ``1e21``, exponent form such as ``1e-7`` or ``1e+21`` outside that range.
    """
    if amount is None:
        return "0"
    if isinstance(amount, bool):
        amount = int(amount)
    if isinstance(amount, int) and abs(amount) < 10**21:
        return str(amount)
    value = float(amount)
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    if value == 0:
        return "0"
    sign = "-" if value < 0 else ""
    digits, point = _shortest_digits(abs(value))
    if len(digits) <= point <= 21:
        return sign + digits + "0" * (point - len(digits))
    if 0 < point <= 21:
        return sign + digits[:point] + "." + digits[point:]
    if -6 < point <= 0:
        return sign + "0." + "0" * -point + digits
    exponent = point - 1
    mantissa = digits if len(digits) == 1 else digits[0] + "." + digits[1:]
    return f"{sign}{mantissa}e{'+' if exponent >= 0 else '-'}{abs(exponent)}"


def generate_duplicate_key(
    vehicle_number: str | None,
    company_name: str | None,
    refund_method: str | None,
    claim_amount: int | float | None,
) -> str:
    normalized = "|".join(
        [
            _WHITESPACE.sub("", vehicle_number or "").upper(),
            _WHITESPACE.sub("", company_name or "").upper(),
            (refund_method or "").lower(),
            format_amount(claim_amount),
        ]
    )
    digest = hashlib.sha256(normalized.encode("utf-8")).hexdigest()
    return f"{DUPLICATE_KEY_PREFIX}{digest}"


async def check_duplicate(
    store: KeyValueStore,
    vehicle_number: str | None,
    company_name: str | None,
    refund_method: str | None,
    claim_amount: int | float | None,
) -> str | None:
    """Return the id of a live claim sharing this tuple, or None.

    Pointers to claims that no longer exist are deleted on sight.
    """
    if not company_name:
        return None
    dup_key = generate_duplicate_key(vehicle_number, company_name, refund_method, claim_amount)
    try:
        existing_id = await store.get(dup_key)
        if not existing_id or not isinstance(existing_id, str):
            return None
        if await store.get(refund_key(existing_id)) is not None:
            logger.info(
                "duplicate_refund_detected",
                extra={"extra": {"existing_refund_id": existing_id}},
            )
            metrics.record_duplicate_detection("check")
            return existing_id
        await store.delete(dup_key)
        logger.info("duplicate_key_stale_pruned", extra={"extra": {"refund_id": existing_id}})
    except StoreError:
        logger.warning("duplicate_check_failed", exc_info=True)
        metrics.record_side_index_failure("duplicate_check")
    return None


async def register_key(
    store: KeyValueStore,
    refund_id: str,
    vehicle_number: str | None,
    company_name: str | None,
    refund_method: str | None,
    claim_amount: int | float | None,
) -> None:
    if not company_name:
        return
    dup_key = generate_duplicate_key(vehicle_number, company_name, refund_method, claim_amount)
    try:
        await store.set(dup_key, refund_id)
    except StoreError:
        logger.warning(
            "duplicate_key_register_failed",
            extra={"extra": {"refund_id": refund_id}},
            exc_info=True,
        )
        metrics.record_side_index_failure("duplicate_register")


async def remove_key(
    store: KeyValueStore,
    vehicle_number: str | None,
    company_name: str | None,
    refund_method: str | None,
    claim_amount: int | float | None,
    *,
    only_if_owner: str | None = None,
) -> None:
    """Delete the pointer for a tuple.

    With ``only_if_owner`` the pointer is kept when it belongs to another claim.
    """
    if not company_name:
        return
    dup_key = generate_duplicate_key(vehicle_number, company_name, refund_method, claim_amount)
    try:
        if only_if_owner is not None and await store.get(dup_key) != only_if_owner:
            return
        await store.delete(dup_key)
    except StoreError:
        logger.warning("duplicate_key_remove_failed", exc_info=True)
        metrics.record_side_index_failure("duplicate_remove")


async def register_claim(store: KeyValueStore, claim: RefundClaim) -> None:
    await register_key(
        store,
        claim.id,
        claim.vehicle_number,
        claim.company_name,
        claim.refund_method,
        claim.claim_amount,
    )


async def remove_claim(
    store: KeyValueStore, claim: RefundClaim, *, only_if_owner: str | None = None
) -> None:
    await remove_key(
        store,
        claim.vehicle_number,
        claim.company_name,
        claim.refund_method,
        claim.claim_amount,
        only_if_owner=only_if_owner,
    )


def _annotatable(claim: RefundClaim) -> bool:
    return bool(
        claim.vehicle_number and claim.company_name and claim.refund_method and claim.claim_amount
    )


async def annotate_list(store: KeyValueStore, claims: Iterable[RefundClaim]) -> list[RefundClaim]:
    """Flag claims whose duplicate pointer names a different claim.

    One batched lookup covers the whole list. Claims missing any identity
    field are returned untouched, and on store failure the list comes back
    unannotated.
    """
    claims = list(claims)
    positions: list[int] = []
    keys: list[str] = []
    for index, claim in enumerate(claims):
        if _annotatable(claim):
            positions.append(index)
            keys.append(
                generate_duplicate_key(
                    claim.vehicle_number,
                    claim.company_name,
                    claim.refund_method,
                    claim.claim_amount,
                )
            )
    if not keys:
        return claims
    try:
        pointers = await store.batch_get(keys)
    except StoreError:
        logger.warning("duplicate_annotate_failed", exc_info=True)
        metrics.record_side_index_failure("duplicate_annotate")
        return claims

    annotated = list(claims)
    flagged = 0
    for index, pointer in zip(positions, pointers):
        claim = claims[index]
        if isinstance(pointer, str) and pointer and pointer != claim.id:
            annotated[index] = claim.model_copy(
                update={"is_duplicate": True, "duplicate_refund_id": pointer}
            )
            flagged += 1
    if flagged:
        metrics.record_duplicate_detection("list", flagged)
    logger.debug(
        "duplicate_annotate_completed",
        extra={"extra": {"flagged": flagged, "checked": len(claims)}},
    )
    return annotated
