"""Merging of near-duplicate extracted line items."""

import logging
import re
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from ..models import LineItem

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")

# Fields that do not describe the payment fact itself
_PROVENANCE_FIELDS = {
    "document_id",
    "tenant_id",
    "page_number",
    "file_name",
    "created_at",
    "confidence_score",
    "check_number",
    "check_total_amount",
    "payment_method",
}

_CONTENT_FIELDS = tuple(name for name in LineItem.model_fields if name not in _PROVENANCE_FIELDS)


def _norm_text(value: Optional[str]) -> str:
    if not value:
        return ""
    return _WHITESPACE.sub(" ", value.strip()).upper()


def _norm_amount(value: Optional[Decimal]) -> str:
    if value is None:
        return ""
    return str(value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def dedup_key(item: LineItem) -> tuple[str, str, str, str, str]:
    """Identity used to detect duplicates: claim, patient, procedure, service date, paid."""
    return (
        _norm_text(item.claim_number),
        _norm_text(item.patient_name),
        _norm_text(item.cpt_code).replace(" ", ""),
        item.date_of_service.isoformat() if item.date_of_service else "",
        _norm_amount(item.paid_amount),
    )


def quality_score(item: LineItem) -> float:
    """Populated field count plus confidence/100."""
    populated = sum(1 for name in _CONTENT_FIELDS if getattr(item, name) not in (None, ""))
    return populated + (item.confidence_score or 0) / 100


def merge_items(first: LineItem, second: LineItem) -> LineItem:
    """Merge two duplicates: the higher-quality one wins, blanks are filled from the other.

    Ties go to the first item. Confidence is the max of both.
    """
    if quality_score(second) > quality_score(first):
        winner, loser = second, first
    else:
        winner, loser = first, second

    merged = winner.model_copy()
    for name in LineItem.model_fields:
        if getattr(merged, name) in (None, "") and getattr(loser, name) not in (None, ""):
            setattr(merged, name, getattr(loser, name))

    confidences = [c for c in (first.confidence_score, second.confidence_score) if c is not None]
    merged.confidence_score = max(confidences) if confidences else None
    return merged


def dedup_items(items: list[LineItem]) -> list[LineItem]:
    """Collapse items that share a dedup key, keeping first-appearance order.

    summary_total items are passed through untouched and never merged.
    """
    result: list[LineItem] = []
    positions: dict[tuple, int] = {}

    for item in items:
        if item.line_type == "summary_total":
            result.append(item)
            continue

        key = dedup_key(item)
        if key in positions:
            index = positions[key]
            result[index] = merge_items(result[index], item)
        else:
            positions[key] = len(result)
            result.append(item)

    merged = len(items) - len(result)
    if merged:
        logger.info(f"Merged {merged} duplicate line items ({len(items)} -> {len(result)})")
    return result
