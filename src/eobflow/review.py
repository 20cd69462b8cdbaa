"""Line-item review: fetch, manual edits and exception evaluation."""

import logging
from typing import Any, Optional
from uuid import UUID

from .errors import DocumentNotFoundError, LineItemUpdateError
from .extraction import dedup_items
from .extraction.normalize import normalize_date, parse_currency
from .models import LineItem, LineItemUpdate, LineItemUpdateResult, ReviewResult
from .storage import AnalyticsClient, DatabaseClient
from .storage.analytics import EDITABLE_FIELDS

logger = logging.getLogger(__name__)


def _sort_key(item: LineItem) -> tuple:
    return (
        item.page_number or 0,
        item.patient_name or "",
        item.date_of_service.isoformat() if item.date_of_service else "",
        item.cpt_code or "",
    )


def coerce_field(field: str, value: Any) -> Any:
    """Coerce one edited value to the column type of an editable field.

    Raises:
        LineItemUpdateError: If the field is not editable or the value is invalid
    """
    kind = EDITABLE_FIELDS.get(field)
    if kind is None:
        raise LineItemUpdateError(f"Unknown fields: {field}")
    if value is None or value == "":
        return None

    if kind == "numeric":
        amount = parse_currency(value)
        if amount is None:
            raise LineItemUpdateError(f"Invalid numeric value for {field}: {value}")
        return amount
    if kind == "date":
        parsed = normalize_date(value)
        if parsed is None:
            raise LineItemUpdateError(f"Invalid date value for {field}: {value}")
        return parsed
    return str(value)


class ReviewService:
    """Reviewer-facing operations on a document's line items."""

    def __init__(self, db: DatabaseClient, analytics: AnalyticsClient, low_confidence_threshold: float = 85.0):
        self.db = db
        self.analytics = analytics
        self.low_confidence_threshold = low_confidence_threshold

    def fetch_line_items(self, document_id: UUID) -> list[LineItem]:
        """Payment items of a document, deduplicated across pages.

        Returns:
            list[LineItem]: Items ordered by page, patient, service date and procedure code
        """
        items = self.analytics.fetch_payment_items([document_id]).get(document_id, [])
        deduped = dedup_items(items)
        if len(deduped) < len(items):
            logger.info(f"Document {document_id}: merged {len(items) - len(deduped)} duplicate items")
        return sorted(deduped, key=_sort_key)

    def update_line_items(self, document_id: UUID, updates: list[LineItemUpdate]) -> list[LineItemUpdateResult]:
        """Apply field edits; a bad entry is reported without blocking the others.

        Exception evaluation re-runs afterwards.

        Args:
            document_id: Document whose items are edited
            updates: Edits keyed by (page, patient, procedure code, service date)

        Returns:
            list[LineItemUpdateResult]: Affected row count or error per entry
        """
        if not updates:
            raise ValueError("updates must not be empty")

        logger.info(f"Processing {len(updates)} updates for document {document_id}")
        results: list[LineItemUpdateResult] = []
        total_affected = 0

        for index, update in enumerate(updates):
            unknown = [field for field in update.fields if field not in EDITABLE_FIELDS]
            if unknown:
                results.append(LineItemUpdateResult(index=index, error=f"Unknown fields: {', '.join(unknown)}"))
                continue
            if not update.fields:
                results.append(LineItemUpdateResult(index=index, error="No valid fields to update"))
                continue

            try:
                values = {field: coerce_field(field, value) for field, value in update.fields.items()}
                affected = self.analytics.update_line_item(
                    document_id,
                    update.page_number,
                    update.patient_name,
                    update.cpt_code,
                    update.date_of_service,
                    values,
                )
            except Exception as e:
                logger.error(f"Update #{index} for document {document_id} failed: {e}")
                results.append(LineItemUpdateResult(index=index, error=str(e)))
                continue

            total_affected += affected
            results.append(LineItemUpdateResult(index=index, affected=affected))

        logger.info(f"Total rows affected for document {document_id}: {total_affected}")

        try:
            self.evaluate_document_exceptions(document_id)
        except Exception as e:
            logger.warning(f"Exception re-evaluation for document {document_id} failed: {e}")

        return results

    def evaluate_document_exceptions(self, document_id: UUID) -> ReviewResult:
        """Decide whether a document needs human review and persist the outcome.

        Returns:
            ReviewResult: Review status, reasons and found-revenue flag

        Raises:
            DocumentNotFoundError: Unknown document
        """
        document = self.db.get_document(document_id)
        if document is None:
            raise DocumentNotFoundError(f"Document {document_id} not found")

        reasons: list[str] = []

        reconciliation: Optional[dict] = self.analytics.get_reconciliation(document_id)
        if reconciliation is None:
            logger.warning(f"No reconciliation row found for document {document_id}")
        elif reconciliation["reconciliation_status"] == "unbalanced":
            reasons.append("math_variance")
            logger.info(f"math_variance: delta={reconciliation['reconciliation_delta']}")
        elif reconciliation["reconciliation_status"] == "no_check_total":
            reasons.append("no_check_total")

        signals = self.analytics.count_review_signals(document_id, self.low_confidence_threshold)
        if signals["missing_claim_id"] > 0:
            reasons.append("missing_claim_id")
        if signals["low_confidence"] > 0:
            reasons.append("low_confidence")
        if document.status == "partial_failure":
            reasons.append("partial_failure")

        has_found_revenue = signals["incentive_items"] > 0
        review_status = "needs_review" if reasons else "clear"

        self.db.update_review(document_id, review_status, reasons, has_found_revenue)
        logger.info(f"Document {document_id} review: {review_status} {reasons}")

        return ReviewResult(
            document_id=document_id,
            review_status=review_status,
            review_reasons=reasons,
            has_found_revenue=has_found_revenue,
        )
