"""ANSI X12 835 (5010A1) electronic remittance encoder.

Builds one ST/SE transaction set per document and wraps all of them in a
single ISA/GS ... GE/IEA envelope. The encoder is pure: the clock and the
interchange control number are inputs, so the same documents always encode
to the same bytes.
"""

import re
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import NamedTuple, Optional
from uuid import UUID

from ..models import BillingProfile, LineItem

IMPLEMENTATION_GUIDE = "005010X221A1"
UNKNOWN_PAYER_NAME = "UNKNOWN PAYER"
UNKNOWN_PAYER_ID = "999999999"
UNKNOWN_CHECK_NUMBER = "UNKNOWN"
UNLISTED_PROCEDURE = "99999"

# Amounts at or below this are treated as zero
_MIN_AMOUNT = Decimal("0.005")
_CENT = Decimal("0.01")

# Element, segment, repetition and component separators, plus line breaks
_DELIMITERS = re.compile(r"[*~^:\r\n]+")

_REMARK_CODE = re.compile(r"^(CO|PR|OA|PI|CR)-?(\d+)$", re.IGNORECASE)

# Claim status → CLP02
_CLAIM_STATUS_CODES = {
    "paid": "1",
    "incentive paid": "1",
    "partially paid": "2",
    "denied": "4",
    "adjusted": "22",
}

# Highest priority first
_DOMINANT_STATUSES = ("denied", "adjusted", "partially paid")


class DocumentPayments(NamedTuple):
    """Payment items of one document plus its check summary row."""

    document_id: UUID
    items: list[LineItem]
    summary: Optional[LineItem] = None


class Interchange(NamedTuple):
    """An encoded 835 interchange."""

    content: str
    segments: list[str]
    transaction_count: int
    control_number: str


# ============================================================================
# Formatting helpers
# ============================================================================


def format_amount(value: Optional[Decimal]) -> str:
    if value is None:
        return "0"
    return str(Decimal(value).quantize(_CENT, rounding=ROUND_HALF_UP))


def format_date8(value: Optional[date]) -> str:
    return value.strftime("%Y%m%d") if value else ""


def element(value: Optional[str]) -> str:
    """Make free text safe to place in a data element."""
    if not value:
        return ""
    return " ".join(_DELIMITERS.sub(" ", str(value)).split())


def pad(value: str, length: int) -> str:
    return value.ljust(length)[:length]


def _amount(value: Optional[Decimal]) -> Decimal:
    return value if value is not None else Decimal("0")


def clean_payer_id(payer_id: str) -> str:
    return re.sub(r"[^0-9A-Za-z]", "", payer_id)


def clean_tax_id(tax_id: str) -> str:
    return re.sub(r"[^0-9]", "", tax_id)


def claim_status_code(status: Optional[str]) -> str:
    """Map a claim status to the CLP02 code (unknown statuses are processed as primary)."""
    return _CLAIM_STATUS_CODES.get((status or "").lower(), "1")


def dominant_claim_status(items: list[LineItem]) -> str:
    """Pick the claim status by priority: denied > adjusted > partially paid > paid."""
    statuses = {(item.claim_status or "").lower() for item in items}
    for status in _DOMINANT_STATUSES:
        if status in statuses:
            return status
    return "paid"


def parse_remark_code(code: Optional[str]) -> Optional[tuple[str, str]]:
    """Split a remark code like "CO-45" into (group, reason).

    Bare digits default to the CO group. Anything else is unparseable.
    """
    if not code:
        return None
    match = _REMARK_CODE.match(code)
    if match:
        return match.group(1).upper(), match.group(2)
    if code.isdigit():
        return "CO", code
    return None


def split_name(name: Optional[str]) -> tuple[str, str]:
    """Split "LAST, FIRST" or "FIRST LAST" into (last, first)."""
    if not name or not name.strip():
        return "UNKNOWN", "UNKNOWN"
    trimmed = name.strip()
    if "," in trimmed:
        last, rest = trimmed.split(",", 1)
        return last.strip(), rest.strip() or "UNKNOWN"
    parts = trimmed.split()
    if len(parts) == 1:
        return parts[0], "UNKNOWN"
    return parts[-1], " ".join(parts[:-1])


def group_by_claim(items: list[LineItem]) -> dict[str, list[LineItem]]:
    """Group items by claim key, keeping first-appearance order."""
    claims: dict[str, list[LineItem]] = {}
    for item in items:
        claims.setdefault(item.claim_key, []).append(item)
    return claims


# ============================================================================
# Segment builders
# ============================================================================


def adjustment_segments(item: LineItem) -> list[str]:
    """CAS segments for one service line.

    Granular categories (contractual, deductible, coinsurance, copay) each get
    their own segment, plus a remainder segment for any unexplained part of
    the total adjustment. Without granular data a single segment carries the
    whole adjustment.
    """
    billed = _amount(item.billed_amount)
    paid = _amount(item.paid_amount)
    total_adjustment = item.adjustment_amount or (billed - paid)
    remark = parse_remark_code(item.remark_code)

    granular = [
        ("CO", "45", _amount(item.contractual_adjustment)),
        ("PR", "1", _amount(item.deductible_amount)),
        ("PR", "2", _amount(item.coinsurance_amount)),
        ("PR", "3", _amount(item.copay_amount)),
    ]

    if not any(amount > _MIN_AMOUNT for _, _, amount in granular):
        if total_adjustment <= _MIN_AMOUNT:
            return []
        group, reason = remark or ("CO", "45")
        return [f"CAS*{group}*{reason}*{format_amount(total_adjustment)}~"]

    segments = [
        f"CAS*{group}*{reason}*{format_amount(amount)}~"
        for group, reason, amount in granular
        if amount > _MIN_AMOUNT
    ]
    remainder = total_adjustment - sum(amount for _, _, amount in granular)
    if remainder > _MIN_AMOUNT:
        group, reason = remark or ("OA", "23")
        segments.append(f"CAS*{group}*{reason}*{format_amount(remainder)}~")
    return segments


def service_segments(item: LineItem) -> list[str]:
    """SVC loop for one service line."""
    code = element(item.cpt_code)
    if not code or code == "MIPS_BONUS":
        code = UNLISTED_PROCEDURE
    segments = [f"SVC*HC:{code}*{format_amount(_amount(item.billed_amount))}*{format_amount(_amount(item.paid_amount))}~"]
    if item.date_of_service:
        segments.append(f"DTM*472*{format_date8(item.date_of_service)}~")
    segments.extend(adjustment_segments(item))
    if item.allowed_amount:
        segments.append(f"AMT*B6*{format_amount(item.allowed_amount)}~")
    return segments


def claim_segments(claim_key: str, items: list[LineItem]) -> list[str]:
    """CLP loop for one claim; claim totals are the sums of its service lines."""
    first = items[0]
    claim_number = element(first.claim_number or claim_key)
    last_name, first_name = split_name(element(first.patient_name))
    member_id = element(first.member_id)
    total_billed = sum((_amount(item.billed_amount) for item in items), Decimal("0"))
    total_paid = sum((_amount(item.paid_amount) for item in items), Decimal("0"))
    status_code = claim_status_code(dominant_claim_status(items))

    segments = [
        f"CLP*{claim_number}*{status_code}*{format_amount(total_billed)}*{format_amount(total_paid)}**MC*{member_id}~",
        f"NM1*QC*1*{last_name}*{first_name}****MI*{member_id}~",
    ]
    for item in items:
        segments.extend(service_segments(item))
    return segments


class RemittanceEncoder:
    """Serializes documents' payment items into one 835 interchange."""

    def __init__(self, profile: BillingProfile, now: datetime, control_number: Optional[int] = None):
        """Initialize encoder.

        Args:
            profile: Payee billing profile (tax id and NPI required)
            now: Generation timestamp used for envelope dates
            control_number: Interchange control number; derived from `now` if omitted
        """
        self.profile = profile
        self.now = now
        if control_number is None:
            control_number = int(now.timestamp() * 1000)
        self.control_number = str(control_number)[-9:].zfill(9)
        self.group_control = self.control_number[-4:]

    def transaction_body(self, payments: DocumentPayments) -> list[str]:
        """Segments between ST and SE for one document."""
        items = payments.items
        summary = payments.summary or LineItem(line_type="summary_total")
        first = items[0] if items else LineItem()
        profile = self.profile

        check_number = element(summary.remark_code) or UNKNOWN_CHECK_NUMBER
        payment_date = summary.payment_date or first.payment_date or self.now.date()
        payer_name = element(summary.payer_name or first.payer_name) or UNKNOWN_PAYER_NAME
        payer_id = clean_payer_id(summary.payer_id or first.payer_id or UNKNOWN_PAYER_ID)
        date8 = format_date8(payment_date)

        is_eft = "eft" in (summary.cpt_description or "").lower()
        method = "ACH*CTX*CCP" if is_eft else "CHK"

        segments = [
            f"BPR*I*{format_amount(_amount(summary.paid_amount))}*C*{method}************{date8}~",
            f"TRN*1*{check_number}*1{payer_id}~",
            f"DTM*405*{date8}~",
            f"N1*PR*{payer_name[:60]}*XV*{payer_id}~",
            f"N1*PE*{element(profile.name)[:60]}*XX*{element(profile.npi)}~",
        ]
        if profile.address_line1:
            second_line = f"*{element(profile.address_line2)}" if profile.address_line2 else ""
            segments.append(f"N3*{element(profile.address_line1)}{second_line}~")
        if profile.city and profile.state and profile.zip:
            segments.append(f"N4*{element(profile.city)}*{element(profile.state)}*{element(profile.zip)}~")
        segments.append(f"REF*TJ*{clean_tax_id(profile.tax_id)}~")

        for claim_key, claim_items in group_by_claim(items).items():
            segments.extend(claim_segments(claim_key, claim_items))
        return segments

    def encode(self, documents: list[DocumentPayments]) -> Interchange:
        """Encode documents with payment items; documents without items are skipped.

        Returns:
            Interchange: Content plus the segment list and transaction count
        """
        transactions: list[str] = []
        transaction_count = 0
        sender_id = UNKNOWN_PAYER_ID

        for payments in documents:
            if not payments.items:
                continue

            if transaction_count == 0:
                summary = payments.summary or LineItem(line_type="summary_total")
                sender_id = clean_payer_id(summary.payer_id or payments.items[0].payer_id or UNKNOWN_PAYER_ID)

            body = self.transaction_body(payments)
            transaction_count += 1
            st_number = f"{transaction_count:04d}"
            transactions.append(f"ST*835*{st_number}*{IMPLEMENTATION_GUIDE}~")
            transactions.extend(body)
            transactions.append(f"SE*{len(body) + 2}*{st_number}~")

        tax_id = clean_tax_id(self.profile.tax_id)
        date8 = self.now.strftime("%Y%m%d")
        time4 = self.now.strftime("%H%M")

        segments = [
            f"ISA*00*{pad('', 10)}*00*{pad('', 10)}*ZZ*{pad(sender_id, 15)}*ZZ*{pad(tax_id, 15)}"
            f"*{date8[2:]}*{time4}*^*00501*{self.control_number}*0*P*:~",
            f"GS*HP*{sender_id}*{tax_id}*{date8}*{time4}*{self.group_control}*X*{IMPLEMENTATION_GUIDE}~",
            *transactions,
            f"GE*{transaction_count}*{self.group_control}~",
            f"IEA*1*{self.control_number}~",
        ]
        return Interchange(
            content="\n".join(segments),
            segments=segments,
            transaction_count=transaction_count,
            control_number=self.control_number,
        )
