"""Document reprocess: wipe a terminal document's results and run it again."""

import logging
from uuid import UUID

from ..errors import DocumentBusyError, DocumentNotFoundError, InvalidSourceError
from ..models import EnqueueResult
from ..storage import AnalyticsClient, DatabaseClient
from .orchestrator import Orchestrator

logger = logging.getLogger(__name__)


def reprocess_document(
    document_id: UUID,
    db: DatabaseClient,
    analytics: AnalyticsClient,
    orchestrator: Orchestrator,
) -> EnqueueResult:
    """Start a fresh processing lifecycle for a finished document.

    Line items and page jobs of the previous run are deleted, the document
    is reset to 'pending' and the orchestrator re-runs from the stored
    source descriptor. The new run is charged again.

    Args:
        document_id: Document to reprocess
        db: Job store client
        analytics: Line-item store client
        orchestrator: Orchestrator used for the new run

    Returns:
        EnqueueResult: Outcome of the new enqueue

    Raises:
        DocumentNotFoundError: Unknown document
        DocumentBusyError: Document is still being processed
        InvalidSourceError: Document has no stored source to reprocess from
    """
    document = db.get_document(document_id)
    if document is None:
        raise DocumentNotFoundError(f"Document {document_id} not found")
    if not document.is_terminal:
        raise DocumentBusyError(f"Document {document_id} is still {document.status}, cannot reprocess")

    source = document.source
    if source is None:
        raise InvalidSourceError(f"Document {document_id} has no stored source")

    logger.info(f"Reprocessing document {document_id} (was {document.status})")
    analytics.delete_document_items(document_id)
    db.delete_page_jobs(document_id)
    db.reset_document(document_id)

    return orchestrator.enqueue(document_id, source, tenant_id=document.tenant_id)
