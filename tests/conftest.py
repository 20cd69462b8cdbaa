"""Pytest configuration and shared fixtures."""

from datetime import date
from decimal import Decimal
from unittest.mock import Mock
from uuid import UUID

import pytest

from eobflow.extraction import ExtractionClient
from eobflow.models import ExtractionResponse, LineItem
from eobflow.pipeline import Dispatcher, Orchestrator, PageWorker

from fakes import FakeAnalytics, FakeJobStore, FakeObjectStore, PAGES_BUCKET, make_pdf


@pytest.fixture
def job_store() -> FakeJobStore:
    return FakeJobStore()


@pytest.fixture
def analytics() -> FakeAnalytics:
    return FakeAnalytics()


@pytest.fixture
def object_store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
def tenant_id(job_store):
    return job_store.add_tenant(balance=100)


@pytest.fixture
def mock_extractor() -> Mock:
    """Create mock extraction client that finds one service line per page.

    Returns:
        Mock: Mocked ExtractionClient
    """
    extractor = Mock(spec=ExtractionClient)
    extractor.extract_page.side_effect = lambda page_bytes, page_number: ExtractionResponse(
        items=[{
            "line_type": "medical_service",
            "patient_name": "DOE, JANE",
            "member_id": "M100",
            "claim_number": f"CLM-{page_number}",
            "date_of_service": "2025-03-04",
            "cpt_code": "99213",
            "billed_amount": "$150.00",
            "paid_amount": "90.00",
            "confidence_score": 97,
        }],
        response_type="items_found",
        raw={"id": f"resp-{page_number}"},
    )
    return extractor


@pytest.fixture
def service_line():
    """Factory for medical_service line items."""
    def _make(**fields) -> LineItem:
        defaults = dict(
            line_type="medical_service",
            patient_name="DOE, JANE",
            member_id="M100",
            claim_number="CLM-1",
            date_of_service=date(2025, 3, 4),
            cpt_code="99213",
            billed_amount=Decimal("150.00"),
            paid_amount=Decimal("90.00"),
            claim_status="Paid",
            confidence_score=97.0,
        )
        defaults.update(fields)
        return LineItem(**defaults)
    return _make


# ============================================================================
# Pipeline fixtures
# ============================================================================


@pytest.fixture
def dispatcher() -> Mock:
    dispatcher = Mock(spec=Dispatcher)
    dispatcher.submit.return_value = True
    return dispatcher


@pytest.fixture
def orchestrator(job_store, object_store, dispatcher) -> Orchestrator:
    return Orchestrator(
        job_store,
        object_store,
        PAGES_BUCKET,
        dispatcher,
        source_stores={"uploads": object_store},
        max_pages=10,
        batch_size=2,
        batch_delay_sec=2.5,
        sleep=Mock(),
    )


@pytest.fixture
def upload(job_store, object_store, tenant_id):
    """Register a document and store an n-page PDF as its source."""
    def _upload(page_count: int, tenant=None, **fields) -> UUID:
        document_id = job_store.add_document(tenant or tenant_id, **fields)
        document = job_store.documents[document_id]
        object_store.put(document.source_key, make_pdf(page_count), bucket=document.source_bucket)
        return document_id
    return _upload


@pytest.fixture
def worker(job_store, analytics, object_store, mock_extractor) -> PageWorker:
    return PageWorker(job_store, analytics, object_store, mock_extractor, review=Mock())

