"""Analytical line-item store using psycopg (PostgreSQL)."""

import logging
from collections import defaultdict
from typing import Any, Optional
from uuid import UUID

import psycopg
from psycopg import sql

from ..errors import PersistenceError
from ..models import LineItem
from .connection import PostgresClient

logger = logging.getLogger(__name__)

# Columns written by the worker
LINE_ITEM_COLUMNS = (
    "document_id",
    "tenant_id",
    "page_number",
    "file_name",
    "line_type",
    "patient_name",
    "member_id",
    "date_of_service",
    "cpt_code",
    "cpt_description",
    "billed_amount",
    "allowed_amount",
    "paid_amount",
    "patient_responsibility",
    "adjustment_amount",
    "deductible_amount",
    "coinsurance_amount",
    "copay_amount",
    "contractual_adjustment",
    "non_covered_amount",
    "rendering_provider_npi",
    "remark_code",
    "remark_reason",
    "claim_status",
    "claim_number",
    "payment_date",
    "payer_name",
    "payer_id",
    "confidence_score",
)

# Editable via line item updates, with the type each value is coerced to
EDITABLE_FIELDS: dict[str, str] = {
    "paid_amount": "numeric",
    "billed_amount": "numeric",
    "allowed_amount": "numeric",
    "adjustment_amount": "numeric",
    "patient_responsibility": "numeric",
    "deductible_amount": "numeric",
    "coinsurance_amount": "numeric",
    "copay_amount": "numeric",
    "contractual_adjustment": "numeric",
    "claim_number": "text",
    "claim_status": "text",
    "remark_code": "text",
    "remark_reason": "text",
    "cpt_code": "text",
    "cpt_description": "text",
    "patient_name": "text",
    "member_id": "text",
    "date_of_service": "date",
    "rendering_provider_npi": "text",
    "payer_name": "text",
    "payer_id": "text",
    "payment_date": "date",
    "line_type": "text",
}

_PAYMENT_ITEM_COLUMNS = ", ".join(LINE_ITEM_COLUMNS + ("check_number", "check_total_amount", "payment_method", "created_at"))


class AnalyticsClient(PostgresClient):
    """Wide line-item table plus the payment-items and reconciliation views."""

    # ========================================================================
    # Worker writes
    # ========================================================================

    def replace_page_items(self, document_id: UUID, page_number: int, items: list[LineItem]) -> int:
        """Replace the full item set of one (document, page).

        Delete and insert run in one transaction: either the page's items are
        fully replaced or nothing changes.

        Args:
            document_id: Document ID
            page_number: 1-based page number
            items: Deduplicated items for this page

        Returns:
            int: Number of rows inserted

        Raises:
            PersistenceError: If the write fails
        """
        insert = sql.SQL("INSERT INTO eob_line_items ({}) VALUES ({})").format(
            sql.SQL(", ").join(map(sql.Identifier, LINE_ITEM_COLUMNS)),
            sql.SQL(", ").join(sql.Placeholder() * len(LINE_ITEM_COLUMNS)),
        )
        values = [
            tuple(getattr(item, column) for column in LINE_ITEM_COLUMNS)
            for item in items
        ]

        try:
            with self.transaction() as conn:
                with conn.cursor() as cur:
                    cur.execute("""
                        DELETE FROM eob_line_items
                        WHERE document_id = %s AND page_number = %s
                    """, (document_id, page_number))
                    if cur.rowcount:
                        logger.info(f"Cleared {cur.rowcount} existing rows for document {document_id} page {page_number}")
                    if values:
                        cur.executemany(insert, values)
        except psycopg.Error as e:
            raise PersistenceError(f"Line item replace failed for page {page_number}: {e}") from e

        logger.info(f"Inserted {len(values)} line items for document {document_id} page {page_number}")
        return len(values)

    def delete_document_items(self, document_id: UUID) -> int:
        """Delete every line item of a document (reprocess only)."""
        with self.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM eob_line_items WHERE document_id = %s", (document_id,))
                deleted = cur.rowcount
        logger.warning(f"Deleted {deleted} line items for document {document_id}")
        return deleted

    # ========================================================================
    # Reads
    # ========================================================================

    def fetch_payment_items(self, document_ids: list[UUID]) -> dict[UUID, list[LineItem]]:
        """Non-summary items joined to their check totals, batched over documents.

        Returns:
            dict mapping document ID to items ordered by page, patient and claim
        """
        by_document: dict[UUID, list[LineItem]] = defaultdict(list)
        if not document_ids:
            return by_document

        with self.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(f"""
                    SELECT {_PAYMENT_ITEM_COLUMNS}
                    FROM eob_payment_items
                    WHERE document_id = ANY(%s)
                    ORDER BY document_id, page_number, patient_name, date_of_service, cpt_code, claim_number
                """, (list(document_ids),))
                rows = cur.fetchall()

        for row in rows:
            by_document[row["document_id"]].append(LineItem(**row))
        return by_document

    def fetch_check_summaries(self, document_ids: list[UUID]) -> dict[UUID, LineItem]:
        """Latest summary_total row per document (highest page number wins)."""
        summaries: dict[UUID, LineItem] = {}
        if not document_ids:
            return summaries

        with self.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    SELECT document_id, page_number, line_type, remark_code, paid_amount,
                           cpt_description, payment_date, payer_name, payer_id
                    FROM eob_line_items
                    WHERE document_id = ANY(%s) AND line_type = 'summary_total'
                    ORDER BY document_id, page_number DESC
                """, (list(document_ids),))
                rows = cur.fetchall()

        for row in rows:
            summaries.setdefault(row["document_id"], LineItem(**row))
        return summaries

    def get_reconciliation(self, document_id: UUID) -> Optional[dict[str, Any]]:
        """Check total vs. sum of paid amounts for one document."""
        with self.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    SELECT document_id, check_number, check_total_amount, sum_line_item_payments,
                           line_count, reconciliation_delta, reconciliation_status
                    FROM eob_reconciliation
                    WHERE document_id = %s
                """, (document_id,))
                return cur.fetchone()

    def count_review_signals(self, document_id: UUID, low_confidence_threshold: float) -> dict[str, int]:
        """Counts behind the review exceptions of one document."""
        with self.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    SELECT
                        count(*) FILTER (
                            WHERE line_type = 'medical_service'
                              AND (claim_number IS NULL OR claim_number = '')
                        ) AS missing_claim_id,
                        count(*) FILTER (
                            WHERE confidence_score IS NOT NULL AND confidence_score < %s
                        ) AS low_confidence,
                        count(*) FILTER (WHERE line_type = 'incentive_bonus') AS incentive_items
                    FROM eob_line_items
                    WHERE document_id = %s AND line_type <> 'summary_total'
                """, (low_confidence_threshold, document_id))
                row = cur.fetchone()
        return dict(row) if row else {"missing_claim_id": 0, "low_confidence": 0, "incentive_items": 0}

    # ========================================================================
    # Manual edits
    # ========================================================================

    def update_line_item(
        self,
        document_id: UUID,
        page_number: int,
        patient_name: Optional[str],
        cpt_code: Optional[str],
        date_of_service,
        values: dict[str, Any],
    ) -> int:
        """Apply already-coerced field values to rows matching the composite identity.

        Null identity parts match NULL columns.

        Returns:
            int: Number of rows updated
        """
        unknown = [field for field in values if field not in EDITABLE_FIELDS]
        if unknown:
            raise ValueError(f"Unknown fields: {', '.join(unknown)}")
        if not values:
            return 0

        statement = sql.SQL("""
            UPDATE eob_line_items
            SET {assignments}
            WHERE document_id = %s
              AND page_number = %s
              AND patient_name IS NOT DISTINCT FROM %s
              AND cpt_code IS NOT DISTINCT FROM %s
              AND date_of_service IS NOT DISTINCT FROM %s::date
        """).format(
            assignments=sql.SQL(", ").join(
                sql.SQL("{} = %s").format(sql.Identifier(field)) for field in values
            )
        )
        params = [*values.values(), document_id, page_number, patient_name, cpt_code, date_of_service]

        with self.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(statement, params)
                return cur.rowcount

