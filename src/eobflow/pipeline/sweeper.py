"""Recovery sweeper: re-fires lost or retryable page jobs and finalizes orphaned documents."""

import logging
import time
from typing import Callable
from uuid import UUID

from ..models import PageJob, PageJobRef, SweepCounts, SweepSummary
from ..storage import DatabaseClient
from .dispatch import Dispatcher

logger = logging.getLogger(__name__)


class Sweeper:
    """One idempotent repair pass over the job store.

    Only rows past a staleness window are touched, so a pass never races a
    worker that is still making progress on a fresh job.
    """

    def __init__(
        self,
        db: DatabaseClient,
        dispatcher: Dispatcher,
        batch_limit: int = 10,
        stale_queued_sec: int = 300,
        retry_cooldown_sec: int = 120,
        stale_document_sec: int = 300,
        dispatch_delay_sec: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.db = db
        self.dispatcher = dispatcher
        self.batch_limit = batch_limit
        self.stale_queued_sec = stale_queued_sec
        self.retry_cooldown_sec = retry_cooldown_sec
        self.stale_document_sec = stale_document_sec
        self.dispatch_delay_sec = dispatch_delay_sec
        self._sleep = sleep

    def sweep(self) -> SweepSummary:
        """Run all three repairs once.

        Returns:
            SweepSummary: Per-repair counts and credits refunded
        """
        summary = SweepSummary()
        dispatched: set[UUID] = set()

        logger.info("[1] Re-dispatching stuck queued jobs")
        stuck = self.db.list_stale_queued_jobs(self.stale_queued_sec, self.batch_limit)
        summary.stuck_queued = self._redispatch(stuck, dispatched, requeue=False)

        logger.info("[2] Re-dispatching idle retryable jobs")
        retryable = self.db.list_idle_retryable_jobs(self.retry_cooldown_sec, self.batch_limit)
        summary.retryable = self._redispatch(retryable, dispatched, requeue=True)

        logger.info("[3] Finalizing orphaned documents")
        self._finalize_orphans(summary)

        logger.info(
            f"Sweep complete: stuck_queued={summary.stuck_queued.model_dump()}, "
            f"retryable={summary.retryable.model_dump()}, "
            f"orphaned_docs={summary.orphaned_docs.model_dump()}, "
            f"credits_refunded={summary.credits_refunded}"
        )
        return summary

    def _redispatch(self, jobs: list[PageJob], dispatched: set[UUID], requeue: bool) -> SweepCounts:
        counts = SweepCounts(found=len(jobs))
        fired_any = False

        for job in jobs:
            if job.id in dispatched:
                continue
            if requeue and not self.db.requeue_job(job.id):
                logger.info(f"Job {job.id} no longer retryable, skipping")
                continue

            if fired_any:
                self._sleep(self.dispatch_delay_sec)
            fired_any = True
            dispatched.add(job.id)
            counts.fired += 1

            ref = PageJobRef(
                job_id=job.id,
                document_id=job.document_id,
                page_number=job.page_number,
                tenant_id=job.tenant_id,
            )
            try:
                result = self.dispatcher.run(ref)
            except Exception as e:
                logger.error(f"Re-dispatch of job {job.id} (page {job.page_number}) failed: {e}", exc_info=True)
                continue

            if isinstance(result, dict) and result.get("status") == "succeeded":
                counts.succeeded += 1
            logger.info(f"Re-dispatched job {job.id} (page {job.page_number}): {result}")

        return counts

    def _finalize_orphans(self, summary: SweepSummary) -> None:
        documents = self.db.list_stale_documents(self.stale_document_sec, self.batch_limit)
        summary.orphaned_docs.found = len(documents)

        for document in documents:
            try:
                rollup = self.db.rollup_document(document.id)
            except Exception as e:
                logger.error(f"Rollup of orphaned document {document.id} failed: {e}", exc_info=True)
                continue

            if rollup is None or not rollup.changed:
                continue

            if rollup.status == "completed":
                summary.orphaned_docs.completed += 1
            elif rollup.status == "partial_failure":
                summary.orphaned_docs.partial_failure += 1
            elif rollup.status == "failed":
                summary.orphaned_docs.failed += 1
            summary.credits_refunded += rollup.credits_refunded
            logger.info(f"Finalized orphaned document {document.id} as {rollup.status}")
