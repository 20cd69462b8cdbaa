"""Split & enqueue orchestrator: one document in, one queued page job per page out."""

import logging
import time
from typing import Callable, Optional
from uuid import UUID

import requests
from botocore.exceptions import BotoCoreError, ClientError

from ..errors import (
    AdmissionError,
    DocumentNotFoundError,
    DocumentTooLargeError,
    InsufficientCreditsError,
    InvalidSourceError,
    OrchestrationError,
)
from ..models import EnqueueResult, PageJob, PageJobRef, PageSource
from ..pdf import PdfSplitter
from ..storage import DatabaseClient, S3Client, page_key
from .dispatch import Dispatcher

logger = logging.getLogger(__name__)


class Orchestrator:
    """Admits a document, materializes its pages and fans out page jobs."""

    def __init__(
        self,
        db: DatabaseClient,
        pages: S3Client,
        pages_bucket: str,
        dispatcher: Dispatcher,
        source_stores: Optional[dict[str, S3Client]] = None,
        max_pages: int = 500,
        max_attempts: int = 3,
        batch_size: int = 5,
        batch_delay_sec: float = 2.5,
        download_timeout_sec: float = 60.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize orchestrator.

        Args:
            db: Job store client
            pages: Object storage holding page objects
            pages_bucket: Bucket for page objects
            dispatcher: Worker dispatcher
            source_stores: Object stores by source name ("uploads", "gcs")
            max_pages: Page ceiling per document
            max_attempts: Attempt budget of each page job
            batch_size: Jobs dispatched per batch
            batch_delay_sec: Delay between dispatch batches
            download_timeout_sec: Timeout for direct-URL downloads
            sleep: Sleep function (injectable for tests)
        """
        self.db = db
        self.pages = pages
        self.pages_bucket = pages_bucket
        self.dispatcher = dispatcher
        self.source_stores = source_stores or {}
        self.max_pages = max_pages
        self.max_attempts = max_attempts
        self.batch_size = max(1, batch_size)
        self.batch_delay_sec = batch_delay_sec
        self.download_timeout_sec = download_timeout_sec
        self._sleep = sleep

    def enqueue(self, document_id: UUID, source: PageSource, tenant_id: Optional[UUID] = None) -> EnqueueResult:
        """Split a document into page jobs and dispatch workers.

        Safe to re-run for the same document: existing page objects and jobs
        are reused and the tenant is charged only once.

        Args:
            document_id: Document to process
            source: Where the document bytes live
            tenant_id: Owning tenant (checked against the document when given)

        Returns:
            EnqueueResult: Counts of uploaded pages, created jobs and dispatches

        Raises:
            AdmissionError: Document rejected before any job exists (no refund needed)
            OrchestrationError: Split or enqueue failed; document failed and refunded
        """
        document = self.db.get_document(document_id)
        if document is None:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        if tenant_id is not None and document.tenant_id != tenant_id:
            raise AdmissionError(f"Document {document_id} does not belong to tenant {tenant_id}")
        tenant_id = document.tenant_id

        # Step 1: Admission
        logger.info(f"[1] Downloading document {document_id}")
        pdf_bytes = self._download(source)
        reader = PdfSplitter.open(pdf_bytes)
        page_count = PdfSplitter.count_pages(reader)
        logger.info(f"Document {document_id} has {page_count} pages")

        if page_count > self.max_pages:
            raise DocumentTooLargeError(page_count, self.max_pages)

        if not self.db.charge_document(document_id, page_count):
            raise InsufficientCreditsError(
                f"Tenant {tenant_id} has insufficient credits for {page_count} pages"
            )

        result = EnqueueResult(
            document_id=document_id,
            tenant_id=tenant_id,
            total_pages=page_count,
            charged=True,
        )

        # Step 2: Split, upload and create jobs
        logger.info(f"[2] Splitting {page_count} pages of document {document_id}")
        try:
            existing = set(self.pages.list(f"{document_id}/", bucket=self.pages_bucket))
            for page_number in range(1, page_count + 1):
                key = page_key(document_id, page_number)
                if key in existing:
                    logger.debug(f"Skipping upload for {key} (exists)")
                else:
                    self.pages.put(key, PdfSplitter.extract_page(reader, page_number), bucket=self.pages_bucket)
                    result.pages_uploaded += 1

                job_id = self.db.create_page_job(
                    document_id=document_id,
                    tenant_id=tenant_id,
                    page_number=page_number,
                    total_pages=page_count,
                    storage_bucket=self.pages_bucket,
                    storage_key=key,
                    max_attempts=self.max_attempts,
                )
                if job_id is None:
                    logger.debug(f"Job already exists for page {page_number}, skipping")
                else:
                    result.jobs_created += 1
        except Exception as e:
            logger.error(f"Split/enqueue failed for document {document_id}: {e}", exc_info=True)
            self.db.fail_document(
                document_id,
                "orchestration_failed",
                f"Failed to split and enqueue pages: {e}",
            )
            raise OrchestrationError(f"Split/enqueue failed for document {document_id}: {e}") from e

        # Step 3: Dispatch (failures here are left to the sweeper)
        logger.info(f"[3] Dispatching workers for document {document_id}")
        try:
            queued = [job for job in self.db.list_page_jobs(document_id) if job.status == "queued"]
            self._dispatch(queued, document.file_name, result)
            self.db.mark_document_processing(document_id)
            if not queued:
                # Nothing left to run; settle status and credits now
                self.db.rollup_document(document_id)
        except Exception as e:
            logger.warning(f"Dispatch phase for document {document_id} interrupted: {e}")
        logger.info(
            f"Document {document_id} enqueued: {result.pages_uploaded} pages uploaded, "
            f"{result.jobs_created} jobs created, {result.workers_triggered} workers triggered, "
            f"{result.dispatch_errors} dispatch errors"
        )
        return result

    def _dispatch(self, jobs: list[PageJob], file_name: Optional[str], result: EnqueueResult) -> None:
        batches = [jobs[i:i + self.batch_size] for i in range(0, len(jobs), self.batch_size)]
        for batch_num, batch in enumerate(batches, start=1):
            for job in batch:
                ref = PageJobRef(
                    job_id=job.id,
                    document_id=job.document_id,
                    page_number=job.page_number,
                    tenant_id=job.tenant_id,
                    file_name=file_name,
                )
                try:
                    accepted = self.dispatcher.submit(ref)
                except Exception as e:
                    logger.warning(f"Dispatch of page {job.page_number} raised: {e}")
                    accepted = False

                if accepted:
                    result.workers_triggered += 1
                else:
                    result.dispatch_errors += 1

            if batch_num < len(batches):
                self._sleep(self.batch_delay_sec)

    def _download(self, source: PageSource) -> bytes:
        try:
            if source.url:
                response = requests.get(source.url, timeout=self.download_timeout_sec)
                response.raise_for_status()
                return response.content

            store = self.source_stores.get(source.store)
            if store is None:
                raise InvalidSourceError(f"Object store '{source.store}' is not configured")
            return store.get(source.key, bucket=source.bucket)
        except requests.RequestException as e:
            raise InvalidSourceError(f"Failed to fetch PDF from {source.url}: {e}") from e
        except (ClientError, BotoCoreError) as e:
            raise InvalidSourceError(f"Failed to fetch PDF {source.store}/{source.key}: {e}") from e
