"""Error taxonomy for the extraction pipeline and remittance export."""

from typing import Optional


class EobFlowError(Exception):
    """Base error for all eobflow exceptions."""


# ============================================================================
# Admission (rejected before any page job exists)
# ============================================================================


class AdmissionError(EobFlowError):
    """Raised when a document is rejected before fan-out."""


class InvalidSourceError(AdmissionError):
    """Raised when the source document cannot be fetched or parsed."""


class DocumentTooLargeError(AdmissionError):
    """Raised when the page count exceeds the configured ceiling."""

    def __init__(self, page_count: int, limit: int):
        super().__init__(f"PDF has {page_count} pages, exceeds maximum limit of {limit} pages")
        self.page_count = page_count
        self.limit = limit


class InsufficientCreditsError(AdmissionError):
    """Raised when the tenant cannot pay for every page."""


# ============================================================================
# Extraction
# ============================================================================


class ExtractionError(EobFlowError):
    """Raised when the extraction service call fails."""

    retryable: bool = True


class UpstreamError(ExtractionError):
    """Error response from the extraction service."""

    def __init__(self, message: str, status_code: Optional[int] = None, retryable: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class MalformedResponseError(ExtractionError):
    """Raised when the service answers with a payload we cannot parse."""


# ============================================================================
# Persistence / orchestration
# ============================================================================


class PersistenceError(EobFlowError):
    """Raised when a storage or analytical-store write fails."""


class OrchestrationError(EobFlowError):
    """Raised when splitting or enqueueing fails before dispatch."""


class DocumentNotFoundError(EobFlowError):
    """Raised when a document id does not resolve."""


class DocumentBusyError(EobFlowError):
    """Raised when an operation needs a terminal document but it is still running."""


class LineItemUpdateError(EobFlowError):
    """Raised when a line item edit is invalid."""


# ============================================================================
# Remittance export
# ============================================================================


class ExportError(EobFlowError):
    """Raised when a remittance file cannot be generated."""


class IncompleteBillingProfileError(ExportError):
    """Raised when the tenant profile lacks a tax id or provider id."""


class ExportLockedError(ExportError):
    """Raised when a document was already exported and not unlocked."""


class DocumentNotReadyError(ExportError):
    """Raised when a document has not reached a terminal status."""


class NoExportableDataError(ExportError):
    """Raised when no selected document has payment items."""
