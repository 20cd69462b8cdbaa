"""Tests for the page extraction worker."""

from uuid import uuid4

import pytest

from eobflow.errors import MalformedResponseError, PersistenceError, UpstreamError
from eobflow.models import PageJobRef

from fakes import ref_for


@pytest.fixture
def enqueued(orchestrator, job_store, upload):
    """Enqueue an n-page document and return its page jobs."""
    def _enqueue(page_count: int):
        document_id = upload(page_count)
        orchestrator.enqueue(document_id, job_store.get_document(document_id).source)
        return document_id, job_store.jobs_of(document_id)
    return _enqueue


class TestProcess:

    def test_success_persists_items(self, worker, enqueued, job_store, analytics, tenant_id):
        document_id, jobs = enqueued(2)

        result = worker.process(ref_for(jobs[0]))

        assert result["status"] == "succeeded"
        assert result["items_extracted"] == 1
        assert result["response_type"] == "items_found"
        assert result["document_status"] == "processing"
        assert result["metrics"]["page_number"] == 1

        rows = analytics.items_of(document_id)
        assert len(rows) == 1
        assert rows[0].page_number == 1
        assert rows[0].tenant_id == tenant_id
        assert rows[0].file_name == "remit.pdf"
        assert rows[0].claim_number == "CLM-1"

        job = job_store.jobs[jobs[0].id]
        assert job.status == "succeeded"
        assert job.items_extracted == 1
        assert job.raw_response == {"id": "resp-1"}

    def test_last_page_completes_document_and_evaluates_review(self, worker, enqueued, job_store):
        document_id, jobs = enqueued(2)

        worker.process(ref_for(jobs[0]))
        result = worker.process(ref_for(jobs[1]))

        assert result["document_status"] == "completed"
        document = job_store.documents[document_id]
        assert document.status == "completed"
        assert document.items_extracted == 2
        worker.review.evaluate_document_exceptions.assert_called_once_with(document_id)

    def test_rerun_replaces_page_items(self, worker, enqueued, analytics):
        document_id, jobs = enqueued(1)

        worker.process(ref_for(jobs[0]))
        worker.process(ref_for(jobs[0]))

        assert analytics.replace_calls == 2
        assert len(analytics.items_of(document_id)) == 1

    def test_unknown_job(self, worker):
        ref = PageJobRef(job_id=uuid4(), document_id=uuid4(), page_number=1)

        assert worker.process(ref)["status"] == "not_found"

    def test_failed_job_is_skipped(self, worker, enqueued, job_store, mock_extractor):
        _, jobs = enqueued(1)
        job_store.set_job_status(jobs[0].id, "failed")

        result = worker.process(ref_for(jobs[0]))

        assert result["status"] == "skipped"
        mock_extractor.extract_page.assert_not_called()

    def test_review_failure_does_not_fail_the_job(self, worker, enqueued):
        _, jobs = enqueued(1)
        worker.review.evaluate_document_exceptions.side_effect = RuntimeError("review store down")

        result = worker.process(ref_for(jobs[0]))

        assert result["status"] == "succeeded"
        assert result["document_status"] == "completed"


class TestFailures:

    def test_rate_limit_is_retryable_until_attempts_run_out(self, worker, enqueued, job_store, mock_extractor, tenant_id):
        document_id, jobs = enqueued(1)
        mock_extractor.extract_page.side_effect = UpstreamError("HTTP 429", status_code=429, retryable=True)

        statuses = [worker.process(ref_for(jobs[0]))["status"] for _ in range(3)]

        assert statuses == ["retryable", "retryable", "failed"]
        assert job_store.jobs[jobs[0].id].attempt_count == 3
        document = job_store.documents[document_id]
        assert document.status == "failed"
        assert document.error_code == "all_pages_failed"
        assert job_store.balances[tenant_id] == 100

    def test_permanent_upstream_error_fails_immediately(self, worker, enqueued, job_store, mock_extractor):
        _, jobs = enqueued(2)
        mock_extractor.extract_page.side_effect = UpstreamError("HTTP 400: bad request", status_code=400)

        result = worker.process(ref_for(jobs[0]))

        assert result["status"] == "failed"
        assert "HTTP 400" in result["error"]
        assert job_store.jobs[jobs[0].id].attempt_count == 1

    def test_malformed_response_is_retryable(self, worker, enqueued, mock_extractor):
        _, jobs = enqueued(1)
        mock_extractor.extract_page.side_effect = MalformedResponseError("not json")

        assert worker.process(ref_for(jobs[0]))["status"] == "retryable"

    def test_missing_page_object_is_retryable(self, worker, enqueued, object_store):
        _, jobs = enqueued(1)
        object_store.objects.clear()

        assert worker.process(ref_for(jobs[0]))["status"] == "retryable"

    def test_persist_failure_is_retryable(self, worker, enqueued, analytics, job_store):
        _, jobs = enqueued(1)
        analytics.fail_writes = PersistenceError("insert failed")

        result = worker.process(ref_for(jobs[0]))

        assert result["status"] == "retryable"
        assert job_store.jobs[jobs[0].id].error_message == "insert failed"

    def test_partial_failure_keeps_credits(self, worker, enqueued, job_store, mock_extractor, tenant_id):
        document_id, jobs = enqueued(2)
        worker.process(ref_for(jobs[0]))
        mock_extractor.extract_page.side_effect = UpstreamError("HTTP 400", status_code=400)

        result = worker.process(ref_for(jobs[1]))

        assert result["document_status"] == "partial_failure"
        assert job_store.documents[document_id].error_message == "1 of 2 pages processed. 1 pages had errors."
        assert job_store.balances[tenant_id] == 98
