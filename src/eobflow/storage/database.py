"""Job store operations using psycopg (PostgreSQL)."""

import json
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

import psycopg

from ..errors import DocumentNotFoundError, ExportLockedError
from ..models import (
    BillingProfile,
    Document,
    ExportStamp,
    JobTransition,
    PageJob,
    PageSource,
    RollupResult,
    TERMINAL_DOCUMENT_STATUSES,
)
from ..rollup import decide_rollup
from .connection import PostgresClient
from .ledger import charge_credits, refund_credits

logger = logging.getLogger(__name__)

_DOCUMENT_COLUMNS = """
    id, tenant_id, file_name, status, total_pages, charged_pages, items_extracted,
    error_code, error_message, source_url, source_store, source_bucket, source_key,
    last_exported_at, export_batch_id, export_total_paid, export_total_patient_resp,
    export_claim_count, export_found_revenue_amount, export_found_revenue_count,
    has_found_revenue, review_status, review_reasons, created_at, updated_at
"""

_PAGE_JOB_COLUMNS = """
    id, document_id, tenant_id, page_number, total_pages, storage_bucket, storage_key,
    status, attempt_count, max_attempts, items_extracted, response_type, raw_response,
    error_message, completed_at, created_at, updated_at
"""


def _decimal_to_float(obj):
    """JSON serializer for Decimal objects.

    Args:
        obj: Object to serialize

    Returns:
        float: Decimal converted to float

    Raises:
        TypeError: If object is not Decimal
    """
    if isinstance(obj, Decimal):
        return float(obj)
    raise TypeError(f"Object of type {type(obj)} is not JSON serializable")


def _row_to_document(row: Optional[dict]) -> Optional[Document]:
    if not row:
        return None
    row = dict(row)
    row["review_reasons"] = row.get("review_reasons") or []
    return Document(**row)


class DatabaseClient(PostgresClient):
    """PostgreSQL job store client using psycopg."""

    # ========================================================================
    # Tenant Operations
    # ========================================================================

    def get_billing_profile(self, tenant_id: UUID) -> Optional[BillingProfile]:
        """Fetch the billing identity for a tenant.

        Args:
            tenant_id: Tenant ID

        Returns:
            Optional[BillingProfile]: Profile if the tenant exists, None otherwise
        """
        with self.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    SELECT id AS tenant_id, name, tax_id, npi,
                           address_line1, address_line2, city, state, zip
                    FROM tenants
                    WHERE id = %s
                """, (tenant_id,))
                row = cur.fetchone()
        return BillingProfile(**row) if row else None

    # ========================================================================
    # Document Operations
    # ========================================================================

    def create_document(self, tenant_id: UUID, file_name: Optional[str], source: PageSource) -> UUID:
        """Register an uploaded document in 'pending' and return its ID."""
        with self.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    INSERT INTO eob_documents
                        (tenant_id, file_name, status, source_url, source_store, source_bucket, source_key)
                    VALUES (%s, %s, 'pending', %s, %s, %s, %s)
                    RETURNING id
                """, (tenant_id, file_name, source.url, source.store, source.bucket, source.key))
                document_id = cur.fetchone()["id"]
        logger.info(f"Created document {document_id} for tenant {tenant_id}")
        return document_id

    def get_document(self, document_id: UUID) -> Optional[Document]:
        """Fetch document by ID.

        Args:
            document_id: Document ID to fetch

        Returns:
            Optional[Document]: Document if found, None otherwise
        """
        with self.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(f"SELECT {_DOCUMENT_COLUMNS} FROM eob_documents WHERE id = %s", (document_id,))
                row = cur.fetchone()
        return _row_to_document(row)

    def get_documents(self, document_ids: list[UUID]) -> list[Document]:
        """Fetch several documents, preserving the order of the requested IDs."""
        if not document_ids:
            return []
        with self.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"SELECT {_DOCUMENT_COLUMNS} FROM eob_documents WHERE id = ANY(%s)",
                    (list(document_ids),),
                )
                rows = cur.fetchall()
        by_id = {row["id"]: _row_to_document(row) for row in rows}
        return [by_id[doc_id] for doc_id in document_ids if doc_id in by_id]

    def charge_document(self, document_id: UUID, page_count: int) -> bool:
        """Charge the owning tenant for every page and move the document to 'queued'.

        A document that already holds credits (a re-run of the orchestration)
        is not charged again and keeps its status. A fresh charge always
        reopens the document, including one failed and refunded earlier,
        so rollup owns its status again.

        Args:
            document_id: Document being admitted
            page_count: Number of pages to charge

        Returns:
            bool: False if the tenant's balance is insufficient

        Raises:
            DocumentNotFoundError: If the document does not exist
        """
        with self.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    SELECT tenant_id, charged_pages
                    FROM eob_documents
                    WHERE id = %s
                    FOR UPDATE
                """, (document_id,))
                doc = cur.fetchone()
                if doc is None:
                    raise DocumentNotFoundError(f"Document {document_id} not found")

                fresh = doc["charged_pages"] == 0
                if fresh:
                    if not charge_credits(cur, doc["tenant_id"], page_count):
                        return False
                    charged = page_count
                else:
                    logger.info(f"Document {document_id} already charged for {doc['charged_pages']} pages")
                    charged = doc["charged_pages"]

                cur.execute("""
                    UPDATE eob_documents
                    SET total_pages = %s,
                        charged_pages = %s,
                        status = CASE WHEN %s OR status IN ('pending', 'queued') THEN 'queued' ELSE status END,
                        error_code = NULL,
                        error_message = NULL,
                        updated_at = now()
                    WHERE id = %s
                """, (page_count, charged, fresh, document_id))
        return True

    def mark_document_processing(self, document_id: UUID) -> bool:
        """Move a document from 'pending'/'queued' to 'processing'."""
        with self.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    UPDATE eob_documents
                    SET status = 'processing', updated_at = now()
                    WHERE id = %s AND status IN ('pending', 'queued')
                """, (document_id,))
                return cur.rowcount > 0

    def fail_document(self, document_id: UUID, error_code: str, error_message: str) -> int:
        """Fail a non-terminal document and refund every credit it still holds.

        Args:
            document_id: Document to fail
            error_code: Machine-readable error code
            error_message: Human-readable description

        Returns:
            int: Credits refunded
        """
        with self.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    SELECT tenant_id, status, charged_pages
                    FROM eob_documents
                    WHERE id = %s
                    FOR UPDATE
                """, (document_id,))
                doc = cur.fetchone()
                if doc is None or doc["status"] in TERMINAL_DOCUMENT_STATUSES:
                    return 0

                refunded = refund_credits(cur, doc["tenant_id"], doc["charged_pages"])
                cur.execute("""
                    UPDATE eob_documents
                    SET status = 'failed',
                        error_code = %s,
                        error_message = %s,
                        charged_pages = 0,
                        updated_at = now()
                    WHERE id = %s
                """, (error_code, error_message, document_id))

        logger.warning(f"Document {document_id} failed ({error_code}): {error_message}; refunded {refunded}")
        return refunded

    def rollup_document(self, document_id: UUID) -> Optional[RollupResult]:
        """Derive the document's status from its page jobs.

        The document row is locked for the duration, so concurrent rollups
        (two workers finishing the last pages, or a worker and the sweeper)
        serialize and only the first one to see a terminal count acts.
        Re-running against a terminal document changes nothing.

        Args:
            document_id: Document to roll up

        Returns:
            Optional[RollupResult]: None if the document does not exist
        """
        with self.transaction() as conn:
            with conn.cursor() as cur:
                return self._rollup(cur, document_id)

    def _rollup(self, cur: psycopg.Cursor, document_id: UUID) -> Optional[RollupResult]:
        cur.execute("""
            SELECT tenant_id, status, total_pages, charged_pages, items_extracted
            FROM eob_documents
            WHERE id = %s
            FOR UPDATE
        """, (document_id,))
        doc = cur.fetchone()
        if doc is None:
            logger.warning(f"Rollup skipped: document {document_id} not found")
            return None

        cur.execute("""
            SELECT
                count(*) AS job_count,
                count(*) FILTER (WHERE status = 'succeeded') AS succeeded_count,
                count(*) FILTER (WHERE status IN ('succeeded', 'failed')) AS terminal_count,
                coalesce(sum(items_extracted) FILTER (WHERE status = 'succeeded'), 0) AS items
            FROM eob_page_jobs
            WHERE document_id = %s
        """, (document_id,))
        counts = cur.fetchone()

        total_pages = doc["total_pages"] or counts["job_count"]
        result = RollupResult(
            document_id=document_id,
            status=doc["status"],
            succeeded_count=counts["succeeded_count"],
            terminal_count=counts["terminal_count"],
            total_pages=total_pages,
            items_extracted=counts["items"],
        )

        if doc["status"] in TERMINAL_DOCUMENT_STATUSES:
            result.items_extracted = doc["items_extracted"]
            return result

        decision = decide_rollup(counts["succeeded_count"], counts["terminal_count"], total_pages)
        if decision is None:
            # Progress only
            cur.execute("""
                UPDATE eob_documents
                SET items_extracted = %s, updated_at = now()
                WHERE id = %s
            """, (counts["items"], document_id))
            return result

        charged_pages = doc["charged_pages"]
        if decision.refund_all:
            result.credits_refunded = refund_credits(cur, doc["tenant_id"], charged_pages)
            charged_pages = 0

        cur.execute("""
            UPDATE eob_documents
            SET status = %s,
                items_extracted = %s,
                error_code = %s,
                error_message = %s,
                charged_pages = %s,
                updated_at = now()
            WHERE id = %s
        """, (
            decision.status,
            counts["items"],
            decision.error_code,
            decision.error_message,
            charged_pages,
            document_id,
        ))
        result.status = decision.status
        result.changed = True

        logger.info(
            f"Rolled up document {document_id}: {result.status} "
            f"({result.succeeded_count}/{result.total_pages} pages, {result.items_extracted} items, "
            f"refunded {result.credits_refunded})"
        )
        return result

    def list_stale_documents(self, older_than_sec: int, limit: int) -> list[Document]:
        """Documents stuck in 'queued'/'processing' with no update for a while."""
        with self.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(f"""
                    SELECT {_DOCUMENT_COLUMNS}
                    FROM eob_documents
                    WHERE status IN ('queued', 'processing')
                      AND updated_at < now() - make_interval(secs => %s)
                    ORDER BY updated_at
                    LIMIT %s
                """, (older_than_sec, limit))
                rows = cur.fetchall()
        return [_row_to_document(row) for row in rows]

    def reset_document(self, document_id: UUID):
        """Return a document to 'pending' with counters, review and export state cleared.

        Note:
            Credits already consumed by the previous run stay consumed.
        """
        with self.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    UPDATE eob_documents
                    SET status = 'pending',
                        total_pages = NULL,
                        charged_pages = 0,
                        items_extracted = 0,
                        error_code = NULL,
                        error_message = NULL,
                        has_found_revenue = false,
                        review_status = NULL,
                        review_reasons = '{}',
                        last_exported_at = NULL,
                        export_batch_id = NULL,
                        export_total_paid = NULL,
                        export_total_patient_resp = NULL,
                        export_claim_count = NULL,
                        export_found_revenue_amount = NULL,
                        export_found_revenue_count = NULL,
                        updated_at = now()
                    WHERE id = %s
                """, (document_id,))
        logger.info(f"Reset document {document_id} to pending")

    def update_review(
        self,
        document_id: UUID,
        review_status: str,
        review_reasons: list[str],
        has_found_revenue: bool,
    ):
        """Persist the outcome of exception evaluation."""
        with self.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    UPDATE eob_documents
                    SET review_status = %s,
                        review_reasons = %s,
                        has_found_revenue = %s,
                        updated_at = now()
                    WHERE id = %s
                """, (review_status, review_reasons, has_found_revenue, document_id))

    # ========================================================================
    # Export Stamp Operations
    # ========================================================================

    def stamp_exports(self, stamps: list[ExportStamp], batch_id: UUID, exported_at: datetime):
        """Lock exported documents and record their summary stats in one transaction.

        Only unlocked documents are stamped. If another export locked any of
        them first, the whole batch rolls back.

        Raises:
            ExportLockedError: If a document was already exported
        """
        if not stamps:
            return

        with self.transaction() as conn:
            with conn.cursor() as cur:
                for stamp in stamps:
                    cur.execute("""
                        UPDATE eob_documents
                        SET last_exported_at = %s,
                            export_batch_id = %s,
                            export_total_paid = %s,
                            export_total_patient_resp = %s,
                            export_claim_count = %s,
                            export_found_revenue_amount = %s,
                            export_found_revenue_count = %s,
                            updated_at = now()
                        WHERE id = %s AND last_exported_at IS NULL
                    """, (
                        exported_at,
                        batch_id,
                        stamp.total_paid,
                        stamp.patient_resp,
                        stamp.claim_count,
                        stamp.found_revenue_amount,
                        stamp.found_revenue_count,
                        stamp.document_id,
                    ))
                    if cur.rowcount == 0:
                        raise ExportLockedError(
                            f"Document {stamp.document_id} was exported concurrently; unlock it first"
                        )
        logger.info(f"Stamped {len(stamps)} documents with export batch {batch_id}")

    def unlock_export(self, document_id: UUID) -> bool:
        """Clear a document's export lock and stats so it can be exported again."""
        with self.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    UPDATE eob_documents
                    SET last_exported_at = NULL,
                        export_batch_id = NULL,
                        export_total_paid = NULL,
                        export_total_patient_resp = NULL,
                        export_claim_count = NULL,
                        export_found_revenue_amount = NULL,
                        export_found_revenue_count = NULL,
                        updated_at = now()
                    WHERE id = %s
                """, (document_id,))
                unlocked = cur.rowcount > 0
        if unlocked:
            logger.info(f"Unlocked export for document {document_id}")
        return unlocked

    # ========================================================================
    # Page Job Operations
    # ========================================================================

    def create_page_job(
        self,
        document_id: UUID,
        tenant_id: UUID,
        page_number: int,
        total_pages: int,
        storage_bucket: str,
        storage_key: str,
        max_attempts: int = 3,
    ) -> Optional[UUID]:
        """Create the page job for (document, page) unless it already exists.

        Returns:
            Optional[UUID]: ID of the new job, None if one already existed
        """
        with self.transaction() as conn:
            with conn.cursor() as cur:
                # ON CONFLICT DO NOTHING keeps jobs unique per (document, page) across re-runs
                cur.execute("""
                    INSERT INTO eob_page_jobs
                        (document_id, tenant_id, page_number, total_pages,
                         storage_bucket, storage_key, status, attempt_count, max_attempts)
                    VALUES (%s, %s, %s, %s, %s, %s, 'queued', 0, %s)
                    ON CONFLICT (document_id, page_number) DO NOTHING
                    RETURNING id
                """, (document_id, tenant_id, page_number, total_pages, storage_bucket, storage_key, max_attempts))
                row = cur.fetchone()
        return row["id"] if row else None

    def get_page_job(self, job_id: UUID) -> Optional[PageJob]:
        """Fetch page job by ID."""
        with self.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(f"SELECT {_PAGE_JOB_COLUMNS} FROM eob_page_jobs WHERE id = %s", (job_id,))
                row = cur.fetchone()
        return PageJob(**row) if row else None

    def list_page_jobs(self, document_id: UUID) -> list[PageJob]:
        """Fetch all page jobs of a document ordered by page number."""
        with self.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(f"""
                    SELECT {_PAGE_JOB_COLUMNS}
                    FROM eob_page_jobs
                    WHERE document_id = %s
                    ORDER BY page_number
                """, (document_id,))
                rows = cur.fetchall()
        return [PageJob(**row) for row in rows]

    def touch_page_job(self, job_id: UUID):
        """Refresh a queued job's updated_at so the sweeper leaves it alone while it runs."""
        with self.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    UPDATE eob_page_jobs
                    SET updated_at = now()
                    WHERE id = %s AND status = 'queued'
                """, (job_id,))

    def succeed_page_job(
        self,
        job_id: UUID,
        items_extracted: int,
        response_type: str,
        raw_response: Optional[dict[str, Any]] = None,
    ) -> Optional[JobTransition]:
        """Mark a job succeeded with its audit payload and roll up its document in the same transaction.

        A job already permanently failed is left as is.

        Returns:
            Optional[JobTransition]: None if the job does not exist or was already failed
        """
        with self.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    UPDATE eob_page_jobs
                    SET status = 'succeeded',
                        items_extracted = %s,
                        response_type = %s,
                        raw_response = %s,
                        error_message = NULL,
                        completed_at = now(),
                        updated_at = now()
                    WHERE id = %s AND status <> 'failed'
                    RETURNING document_id, status, attempt_count
                """, (
                    items_extracted,
                    response_type,
                    json.dumps(raw_response, default=_decimal_to_float) if raw_response is not None else None,
                    job_id,
                ))
                row = cur.fetchone()
                if row is None:
                    logger.warning(f"Page job {job_id} not marked succeeded (missing or already failed)")
                    return None

                logger.info(f"Page job {job_id} succeeded with {items_extracted} items ({response_type})")
                return JobTransition(
                    job_id=job_id,
                    status=row["status"],
                    attempt_count=row["attempt_count"],
                    rollup=self._rollup(cur, row["document_id"]),
                )

    def fail_page_job(self, job_id: UUID, error_message: str, permanent: bool = False) -> Optional[JobTransition]:
        """Record a failed attempt; a job that became terminal rolls up its document in the same transaction.

        The attempt counter always increases. The job becomes 'failed' once
        attempts reach max_attempts (or immediately when permanent), else
        'retryable'. Jobs already terminal are not touched.

        Args:
            job_id: Page job ID
            error_message: Error to record
            permanent: Skip the remaining attempt budget

        Returns:
            Optional[JobTransition]: None if the job is missing or already terminal
        """
        with self.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    UPDATE eob_page_jobs
                    SET attempt_count = attempt_count + 1,
                        status = CASE
                            WHEN %s OR attempt_count + 1 >= max_attempts THEN 'failed'
                            ELSE 'retryable'
                        END,
                        error_message = %s,
                        completed_at = CASE
                            WHEN %s OR attempt_count + 1 >= max_attempts THEN now()
                            ELSE NULL
                        END,
                        updated_at = now()
                    WHERE id = %s AND status IN ('queued', 'retryable')
                    RETURNING document_id, status, attempt_count
                """, (permanent, error_message[:2000], permanent, job_id))
                row = cur.fetchone()
                if row is None:
                    logger.warning(f"Page job {job_id} failure not recorded (missing or already terminal)")
                    return None

                logger.warning(
                    f"Page job {job_id} -> {row['status']} after attempt {row['attempt_count']}: {error_message}"
                )
                transition = JobTransition(job_id=job_id, status=row["status"], attempt_count=row["attempt_count"])
                if row["status"] == "failed":
                    transition.rollup = self._rollup(cur, row["document_id"])
                return transition

    def list_stale_queued_jobs(self, older_than_sec: int, limit: int) -> list[PageJob]:
        """Jobs left in 'queued' with no update past the staleness window."""
        with self.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(f"""
                    SELECT {_PAGE_JOB_COLUMNS}
                    FROM eob_page_jobs
                    WHERE status = 'queued'
                      AND updated_at < now() - make_interval(secs => %s)
                    ORDER BY updated_at
                    LIMIT %s
                """, (older_than_sec, limit))
                rows = cur.fetchall()
        return [PageJob(**row) for row in rows]

    def list_idle_retryable_jobs(self, cooldown_sec: int, limit: int) -> list[PageJob]:
        """Jobs in 'retryable' untouched for at least the cooldown."""
        with self.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(f"""
                    SELECT {_PAGE_JOB_COLUMNS}
                    FROM eob_page_jobs
                    WHERE status = 'retryable'
                      AND updated_at < now() - make_interval(secs => %s)
                    ORDER BY updated_at
                    LIMIT %s
                """, (cooldown_sec, limit))
                rows = cur.fetchall()
        return [PageJob(**row) for row in rows]

    def requeue_job(self, job_id: UUID) -> bool:
        """Move a 'retryable' job back to 'queued'. Returns False if it was not retryable."""
        with self.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    UPDATE eob_page_jobs
                    SET status = 'queued', updated_at = now()
                    WHERE id = %s AND status = 'retryable'
                """, (job_id,))
                return cur.rowcount > 0

    def delete_page_jobs(self, document_id: UUID) -> int:
        """Delete every page job of a document (reprocess only).

        Returns:
            int: Number of jobs deleted
        """
        with self.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM eob_page_jobs WHERE document_id = %s", (document_id,))
                deleted = cur.rowcount
        logger.warning(f"Deleted {deleted} page jobs for document {document_id}")
        return deleted
