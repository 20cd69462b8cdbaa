"""EOB extraction pipeline - scanned remittance PDFs in, X12 835 files out."""

# Models
from .models import (
    # Database models
    BillingProfile,
    Document,
    PageJob,
    LineItem,
    # Processing models
    PageSource,
    PageJobRef,
    ExtractionResponse,
    RollupResult,
    JobTransition,
    EnqueueResult,
    SweepSummary,
    ExportStamp,
    RemittanceFile,
    LineItemUpdate,
    LineItemUpdateResult,
    ReviewResult,
    # Metrics
    PageJobMetrics,
)

# Extraction
from .extraction import ExtractionClient

# Pipeline
from .pipeline import (
    LocalDispatcher,
    ModalDispatcher,
    Orchestrator,
    PageWorker,
    Sweeper,
    reprocess_document,
)

# Remittance
from .remittance import RemittanceEncoder, RemittanceExporter

# Review
from .review import ReviewService

# Storage
from .storage import AnalyticsClient, CreditLedger, DatabaseClient, S3Client

# Configuration
from .config import Config
from .services import Services

__version__ = "0.1.0"

__all__ = [
    # Models
    "BillingProfile",
    "Document",
    "PageJob",
    "LineItem",
    "PageSource",
    "PageJobRef",
    "ExtractionResponse",
    "RollupResult",
    "JobTransition",
    "EnqueueResult",
    "SweepSummary",
    "ExportStamp",
    "RemittanceFile",
    "LineItemUpdate",
    "LineItemUpdateResult",
    "ReviewResult",
    "PageJobMetrics",
    # Components
    "ExtractionClient",
    "LocalDispatcher",
    "ModalDispatcher",
    "Orchestrator",
    "PageWorker",
    "Sweeper",
    "reprocess_document",
    "RemittanceEncoder",
    "RemittanceExporter",
    "ReviewService",
    "AnalyticsClient",
    "CreditLedger",
    "DatabaseClient",
    "S3Client",
    "Config",
    "Services",
]
