"""Normalization of raw extraction payloads into LineItem records."""

import logging
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from pydantic import ValidationError

from ..models import AMOUNT_FIELDS, LineItem

logger = logging.getLogger(__name__)

LINE_TYPES = ("medical_service", "incentive_bonus", "adjustment", "summary_total")

_US_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")

_STRING_FIELDS = (
    "patient_name",
    "member_id",
    "cpt_code",
    "cpt_description",
    "rendering_provider_npi",
    "remark_code",
    "remark_reason",
    "claim_status",
    "claim_number",
    "payer_name",
    "payer_id",
)


def to_decimal(value) -> Decimal:
    """Coerce a nullable amount to Decimal (None -> 0)."""
    if value is None:
        return Decimal("0")
    return value if isinstance(value, Decimal) else Decimal(str(value))


def parse_currency(value: Any) -> Optional[Decimal]:
    """Parse "$1,234.56", "1234.56" or "($15.00)" into a Decimal; None if unusable."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        amount = Decimal(str(value))
        return amount if amount.is_finite() else None

    cleaned = str(value).replace("$", "").replace(",", "").strip()
    negative = cleaned.startswith("(") and cleaned.endswith(")")
    if negative:
        cleaned = cleaned[1:-1].strip()
    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    return -amount if negative else amount


def normalize_date(value: Any) -> Optional[date]:
    """Accept YYYY-MM-DD, MM/DD/YYYY or an ISO timestamp; None otherwise."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if not text or text.lower() == "null":
        return None

    match = _US_DATE.match(text)
    if match:
        month, day, year = (int(part) for part in match.groups())
        try:
            return date(year, month, day)
        except ValueError:
            return None

    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def _clean_string(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_confidence(value: Any) -> Optional[float]:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def normalize_item(raw: dict[str, Any]) -> LineItem:
    """Turn one raw extracted dict into a LineItem.

    Raises:
        pydantic.ValidationError: If the payload cannot form a line item
    """
    line_type = _clean_string(raw.get("line_type"))
    if line_type not in LINE_TYPES:
        line_type = "medical_service"

    fields: dict[str, Any] = {"line_type": line_type}
    for name in _STRING_FIELDS:
        fields[name] = _clean_string(raw.get(name))
    for name in AMOUNT_FIELDS:
        fields[name] = parse_currency(raw.get(name))
    fields["date_of_service"] = normalize_date(raw.get("date_of_service"))
    fields["payment_date"] = normalize_date(raw.get("payment_date"))
    fields["confidence_score"] = _parse_confidence(raw.get("confidence_score"))

    return LineItem(**fields)


def normalize_items(raw_items: list[Any]) -> list[LineItem]:
    """Normalize a raw item list, skipping entries that are not objects or fail validation."""
    items = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            logger.warning(f"Skipping non-object item at index {index}")
            continue
        try:
            items.append(normalize_item(raw))
        except ValidationError as e:
            logger.warning(f"Skipping invalid line item at index {index}: {e}")
    return items
