"""Extraction worker: one page job from page object to persisted line items."""

import logging
from typing import Any, Optional

from ..errors import UpstreamError
from ..extraction import ExtractionClient, dedup_items, normalize_items
from ..metrics import MetricsCollector
from ..models import JobTransition, PageJobRef
from ..storage import AnalyticsClient, DatabaseClient, S3Client

logger = logging.getLogger(__name__)


class PageWorker:
    """Runs one page job through download, extraction, dedup and persistence."""

    def __init__(
        self,
        db: DatabaseClient,
        analytics: AnalyticsClient,
        storage: S3Client,
        extractor: ExtractionClient,
        review=None,
    ):
        """Initialize worker.

        Args:
            db: Job store client
            analytics: Line-item store client
            storage: Page object storage
            extractor: Extraction service client
            review: Optional ReviewService, evaluated once a document becomes terminal
        """
        self.db = db
        self.analytics = analytics
        self.storage = storage
        self.extractor = extractor
        self.review = review

    def process(self, ref: PageJobRef) -> dict[str, Any]:
        """Process one page job.

        Failures are recorded on the job (retryable or failed) and reported in
        the result rather than raised. Errors while recording success propagate,
        leaving the job queued for the sweeper.

        Args:
            ref: Page job reference

        Returns:
            dict: Outcome summary including job status and timings
        """
        job = self.db.get_page_job(ref.job_id)
        if job is None:
            logger.warning(f"Page job {ref.job_id} not found")
            return {"job_id": str(ref.job_id), "status": "not_found"}

        if job.status == "failed":
            logger.info(f"Page job {job.id} already failed permanently, skipping")
            return {"job_id": str(job.id), "status": "skipped", "reason": "failed"}

        self.db.touch_page_job(job.id)

        tenant_id = ref.tenant_id or job.tenant_id
        file_name = ref.file_name
        if file_name is None:
            document = self.db.get_document(job.document_id)
            file_name = document.file_name if document else None

        logger.info(f"Processing page {job.page_number}/{job.total_pages} of document {job.document_id} (job {job.id})")
        metrics = MetricsCollector()

        try:
            metrics.start_timer("download")
            page_bytes = self.storage.get(job.storage_key, bucket=job.storage_bucket)
            metrics.stop_timer("download")

            metrics.start_timer("extraction")
            response = self.extractor.extract_page(page_bytes, job.page_number)
            items = dedup_items(normalize_items(response.items))
            metrics.stop_timer("extraction")

            for item in items:
                item.document_id = job.document_id
                item.tenant_id = tenant_id
                item.page_number = job.page_number
                item.file_name = file_name

            metrics.start_timer("persist")
            self.analytics.replace_page_items(job.document_id, job.page_number, items)
            metrics.stop_timer("persist")

        except UpstreamError as e:
            logger.error(f"Page job {job.id} extraction failed: {e}", exc_info=True)
            transition = self.db.fail_page_job(job.id, str(e), permanent=not e.retryable)
            return self._result(job, transition, error=str(e))
        except Exception as e:
            logger.error(f"Page job {job.id} failed: {e}", exc_info=True)
            transition = self.db.fail_page_job(job.id, str(e))
            return self._result(job, transition, error=str(e))

        transition = self.db.succeed_page_job(job.id, len(items), response.response_type, response.raw)
        page_metrics = metrics.create_page_metrics(job.id, job.page_number, len(items))
        logger.info(
            f"Page {job.page_number} of document {job.document_id}: {len(items)} items "
            f"in {page_metrics.duration_sec:.2f}s"
        )
        result = self._result(job, transition, items_extracted=len(items), response_type=response.response_type)
        result["metrics"] = page_metrics.model_dump(mode="json")
        return result

    def _result(
        self,
        job,
        transition: Optional[JobTransition],
        items_extracted: int = 0,
        response_type: Optional[str] = None,
        error: Optional[str] = None,
    ) -> dict[str, Any]:
        result: dict[str, Any] = {
            "job_id": str(job.id),
            "document_id": str(job.document_id),
            "page_number": job.page_number,
            "status": transition.status if transition else "unchanged",
            "items_extracted": items_extracted,
        }
        if response_type:
            result["response_type"] = response_type
        if error:
            result["error"] = error

        rollup = transition.rollup if transition else None
        if rollup is not None:
            result["document_status"] = rollup.status
            if rollup.changed:
                self._evaluate_review(job.document_id)
        return result

    def _evaluate_review(self, document_id) -> None:
        if self.review is None:
            return
        try:
            self.review.evaluate_document_exceptions(document_id)
        except Exception as e:
            logger.warning(f"Review evaluation for document {document_id} failed: {e}")
