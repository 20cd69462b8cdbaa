"""Worker function for processing one page job."""

import logging
from typing import Optional

from eobflow import PageJobRef, Services
from eobflow.config import Config

logger = logging.getLogger(__name__)


def process_page(
    job_id: str,
    document_id: str,
    page_number: int,
    config: Config,
    tenant_id: Optional[str] = None,
    file_name: Optional[str] = None,
) -> dict:
    """Process a single page job.

    Args:
        job_id: Page job ID
        document_id: Owning document ID
        page_number: 1-based page number
        config: Application configuration
        tenant_id: Owning tenant ID
        file_name: Original document file name (stamped onto line items)

    Returns:
        dict: Worker result (job status, items extracted, document status, timings)
    """
    ref = PageJobRef(
        job_id=job_id,
        document_id=document_id,
        page_number=page_number,
        tenant_id=tenant_id,
        file_name=file_name,
    )

    services = Services(config)
    try:
        result = services.worker.process(ref)
    finally:
        services.close()

    logger.info(
        f"Page job {job_id} (page {page_number}): status={result.get('status')}, "
        f"items={result.get('items_extracted', 0)}"
    )
    return result
