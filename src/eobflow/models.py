"""Pydantic models aligned with the PostgreSQL schema and internal processing."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


DocumentStatus = Literal["pending", "queued", "processing", "completed", "partial_failure", "failed"]
PageJobStatus = Literal["queued", "retryable", "failed", "succeeded"]
LineType = Literal["medical_service", "incentive_bonus", "adjustment", "summary_total"]
SourceStore = Literal["uploads", "gcs"]

TERMINAL_DOCUMENT_STATUSES = ("completed", "partial_failure", "failed")
TERMINAL_JOB_STATUSES = ("succeeded", "failed")

# Dollar-amount columns of a line item
AMOUNT_FIELDS = (
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
)


# ============================================================================
# Database Models (aligned with PostgreSQL schema)
# ============================================================================


class BillingProfile(BaseModel):
    """Tenant billing identity used in the remittance payee loop."""

    tenant_id: UUID
    name: str
    tax_id: Optional[str] = None
    npi: Optional[str] = None
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class Document(BaseModel):
    """One uploaded remittance document (eob_documents row)."""

    id: UUID
    tenant_id: UUID
    file_name: Optional[str] = None
    status: DocumentStatus = "pending"
    total_pages: Optional[int] = None
    charged_pages: int = 0
    items_extracted: int = 0
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    # Source descriptor, kept for reprocessing
    source_url: Optional[str] = None
    source_store: Optional[SourceStore] = None
    source_bucket: Optional[str] = None
    source_key: Optional[str] = None

    # Export lock + summary stats
    last_exported_at: Optional[datetime] = None
    export_batch_id: Optional[UUID] = None
    export_total_paid: Optional[Decimal] = None
    export_total_patient_resp: Optional[Decimal] = None
    export_claim_count: Optional[int] = None
    export_found_revenue_amount: Optional[Decimal] = None
    export_found_revenue_count: Optional[int] = None

    # Review
    has_found_revenue: bool = False
    review_status: Optional[str] = None
    review_reasons: list[str] = Field(default_factory=list)

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_DOCUMENT_STATUSES

    @property
    def is_export_locked(self) -> bool:
        return self.last_exported_at is not None

    @property
    def source(self) -> Optional["PageSource"]:
        """Stored source descriptor, or None if the document never recorded one."""
        if not self.source_url and not (self.source_store and self.source_key):
            return None
        return PageSource(
            url=self.source_url,
            store=self.source_store,
            bucket=self.source_bucket,
            key=self.source_key,
        )


class PageJob(BaseModel):
    """One unit of work per (document, page) (eob_page_jobs row)."""

    id: UUID
    document_id: UUID
    tenant_id: UUID
    page_number: int
    total_pages: int
    storage_bucket: str
    storage_key: str
    status: PageJobStatus = "queued"
    attempt_count: int = 0
    max_attempts: int = 3
    items_extracted: Optional[int] = None
    response_type: Optional[str] = None
    raw_response: Optional[dict[str, Any]] = None
    error_message: Optional[str] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES


class LineItem(BaseModel):
    """One extracted payment/adjustment fact (eob_line_items row)."""

    document_id: Optional[UUID] = None
    tenant_id: Optional[UUID] = None
    page_number: Optional[int] = None
    file_name: Optional[str] = None

    line_type: LineType = "medical_service"
    patient_name: Optional[str] = None
    member_id: Optional[str] = None
    date_of_service: Optional[date] = None
    cpt_code: Optional[str] = None
    cpt_description: Optional[str] = None

    billed_amount: Optional[Decimal] = None
    allowed_amount: Optional[Decimal] = None
    paid_amount: Optional[Decimal] = None
    patient_responsibility: Optional[Decimal] = None
    adjustment_amount: Optional[Decimal] = None

    # Granular breakdown
    deductible_amount: Optional[Decimal] = None
    coinsurance_amount: Optional[Decimal] = None
    copay_amount: Optional[Decimal] = None
    contractual_adjustment: Optional[Decimal] = None
    non_covered_amount: Optional[Decimal] = None

    rendering_provider_npi: Optional[str] = None
    remark_code: Optional[str] = None
    remark_reason: Optional[str] = None
    claim_status: Optional[str] = None

    # Claim linkage
    claim_number: Optional[str] = None
    payment_date: Optional[date] = None
    payer_name: Optional[str] = None
    payer_id: Optional[str] = None

    confidence_score: Optional[float] = None

    # Populated by the eob_payment_items view only
    check_number: Optional[str] = None
    check_total_amount: Optional[Decimal] = None
    payment_method: Optional[str] = None

    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def claim_key(self) -> str:
        """Grouping identity: claim number, else patient + member."""
        return self.claim_number or f"{self.patient_name}_{self.member_id}"


# ============================================================================
# Processing Models (not stored in database)
# ============================================================================


class PageSource(BaseModel):
    """Where the original document bytes live."""

    url: Optional[str] = None
    store: Optional[SourceStore] = None
    bucket: Optional[str] = None
    key: Optional[str] = None

    @model_validator(mode="after")
    def _one_source(self) -> "PageSource":
        if not self.url and not (self.store and self.key):
            raise ValueError("PageSource needs a url or a store + key")
        return self


class PageJobRef(BaseModel):
    """Worker invocation payload: addressable by job, document, page and tenant."""

    job_id: UUID
    document_id: UUID
    page_number: int
    tenant_id: Optional[UUID] = None
    file_name: Optional[str] = None


class ExtractionResponse(BaseModel):
    """Result of one extraction-service call for one page."""

    items: list[dict[str, Any]] = Field(default_factory=list)
    response_type: str = "items_found"
    raw: dict[str, Any] = Field(default_factory=dict)


class RollupResult(BaseModel):
    """Outcome of a document rollup."""

    document_id: UUID
    status: DocumentStatus
    succeeded_count: int
    terminal_count: int
    total_pages: int
    items_extracted: int = 0
    credits_refunded: int = 0
    changed: bool = False


class JobTransition(BaseModel):
    """A page job's state after a worker outcome was recorded."""

    job_id: UUID
    status: PageJobStatus
    attempt_count: int
    rollup: Optional[RollupResult] = None


class EnqueueResult(BaseModel):
    """Summary returned by the split & enqueue orchestrator."""

    document_id: UUID
    tenant_id: UUID
    total_pages: int
    pages_uploaded: int = 0
    jobs_created: int = 0
    workers_triggered: int = 0
    dispatch_errors: int = 0
    charged: bool = False


class SweepCounts(BaseModel):
    found: int = 0
    fired: int = 0
    succeeded: int = 0


class OrphanCounts(BaseModel):
    found: int = 0
    completed: int = 0
    partial_failure: int = 0
    failed: int = 0


class SweepSummary(BaseModel):
    """Outcome of one recovery sweep pass."""

    stuck_queued: SweepCounts = Field(default_factory=SweepCounts)
    retryable: SweepCounts = Field(default_factory=SweepCounts)
    orphaned_docs: OrphanCounts = Field(default_factory=OrphanCounts)
    credits_refunded: int = 0


class ExportStamp(BaseModel):
    """Per-document summary stats written when a remittance file is generated."""

    document_id: UUID
    total_paid: Decimal = Decimal("0")
    patient_resp: Decimal = Decimal("0")
    claim_count: int = 0
    found_revenue_amount: Decimal = Decimal("0")
    found_revenue_count: int = 0


class RemittanceFile(BaseModel):
    """Generated 835 content plus export metadata."""

    file_name: str
    content: str
    transaction_count: int
    segment_count: int
    batch_id: Optional[UUID] = None
    exported_at: Optional[datetime] = None
    stamps: list[ExportStamp] = Field(default_factory=list)


class LineItemUpdate(BaseModel):
    """Field-level edit keyed by composite row identity."""

    page_number: int
    patient_name: Optional[str] = None
    cpt_code: Optional[str] = None
    date_of_service: Optional[date] = None
    fields: dict[str, Any]


class LineItemUpdateResult(BaseModel):
    index: int
    affected: int = 0
    error: Optional[str] = None


class ReviewResult(BaseModel):
    """Outcome of exception evaluation for one document."""

    document_id: UUID
    review_status: str
    review_reasons: list[str] = Field(default_factory=list)
    has_found_revenue: bool = False


# ============================================================================
# Metrics Models
# ============================================================================


class PageJobMetrics(BaseModel):
    """Timing for one page job run."""

    job_id: UUID
    page_number: int
    items_extracted: int = 0
    duration_sec: float = 0.0
    download_time_sec: float = 0.0
    extraction_time_sec: float = 0.0
    persist_time_sec: float = 0.0
