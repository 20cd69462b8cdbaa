"""EOB pipeline on Modal - page workers, document enqueue, periodic sweep and 835 generation."""

import logging
import sys
from pathlib import Path
from typing import Optional

import modal

# Create Modal app
app = modal.App("eobflow")

# Create image with all dependencies
image = (
    modal.Image.debian_slim(python_version="3.12")
    .pip_install(
        "psycopg[binary]==3.2.3",
        "boto3==1.41.2",
        "openai==1.59.5",
        "pydantic==2.12.4",
        "requests==2.32.3",
        "pypdf==5.1.0",
    )
    .add_local_dir(Path(__file__).parent.parent / "src" / "eobflow", "/root/eobflow")
    .add_local_file(Path(__file__).parent / "worker.py", "/root/worker.py")
)

# Modal secrets
secrets = [modal.Secret.from_name("eobflow-secrets")]


@app.function(
    image=image,
    secrets=secrets,
    timeout=600,
    retries=0,
)
def process_page_job(
    job_id: str,
    document_id: str,
    page_number: int,
    tenant_id: Optional[str] = None,
    file_name: Optional[str] = None,
) -> dict:
    """Extract one page.

    Retries are owned by the job store (attempt budget + sweeper), so Modal
    itself never retries this function.

    Args:
        job_id: Page job ID
        document_id: Owning document ID
        page_number: 1-based page number
        tenant_id: Owning tenant ID
        file_name: Original document file name

    Returns:
        dict: Worker result
    """
    sys.path.insert(0, "/root")

    from eobflow.config import Config
    from worker import process_page

    logging.basicConfig(level=logging.INFO)

    config = Config.from_env()
    return process_page(
        job_id=job_id,
        document_id=document_id,
        page_number=page_number,
        config=config,
        tenant_id=tenant_id,
        file_name=file_name,
    )


@app.function(
    image=image,
    secrets=secrets,
    timeout=1800,
)
def enqueue_document(
    document_id: str,
    tenant_id: Optional[str] = None,
    source_url: Optional[str] = None,
    source_store: Optional[str] = None,
    source_bucket: Optional[str] = None,
    source_key: Optional[str] = None,
) -> dict:
    """Split a document into page jobs and spawn one worker per page.

    The source defaults to the descriptor stored on the document.

    Args:
        document_id: Document ID
        tenant_id: Owning tenant ID (checked against the document)
        source_url: Direct download URL
        source_store: Object store name ("uploads" or "gcs")
        source_bucket: Bucket within the object store
        source_key: Object key within the object store

    Returns:
        dict: Enqueue result, or an error description
    """
    sys.path.insert(0, "/root")

    from uuid import UUID

    from eobflow import PageSource, Services
    from eobflow.config import Config
    from eobflow.errors import AdmissionError, OrchestrationError

    logging.basicConfig(level=logging.INFO)
    logger = logging.getLogger(__name__)

    config = Config.from_env()
    services = Services(config)

    try:
        if source_url or source_key:
            source = PageSource(url=source_url, store=source_store, bucket=source_bucket, key=source_key)
        else:
            document = services.db.get_document(document_id)
            source = document.source if document else None
            if source is None:
                return {"error": f"Document {document_id} has no source"}

        result = services.orchestrator.enqueue(
            UUID(document_id),
            source,
            tenant_id=UUID(tenant_id) if tenant_id else None,
        )
        return result.model_dump(mode="json")

    except AdmissionError as e:
        logger.warning(f"Document {document_id} rejected: {e}")
        return {"error": str(e), "error_type": type(e).__name__}
    except OrchestrationError as e:
        logger.error(f"Document {document_id} orchestration failed: {e}")
        return {"error": str(e), "error_type": type(e).__name__}
    finally:
        services.close()


@app.function(
    image=image,
    secrets=secrets,
    schedule=modal.Cron("*/5 * * * *"),
    timeout=1800,
)
def sweep() -> dict:
    """Recovery sweep: re-dispatch stuck and retryable jobs, finalize orphaned documents."""
    sys.path.insert(0, "/root")

    from eobflow import Services
    from eobflow.config import Config

    logging.basicConfig(level=logging.INFO)
    logger = logging.getLogger(__name__)

    logger.info("=" * 80)
    logger.info("SWEEP STARTED")
    logger.info("=" * 80)

    config = Config.from_env()
    services = Services(config)
    try:
        summary = services.sweeper.sweep()
    finally:
        services.close()

    logger.info("=" * 80)
    logger.info("SWEEP COMPLETE")
    logger.info("=" * 80)

    return summary.model_dump(mode="json")


@app.function(
    image=image,
    secrets=secrets,
    timeout=600,
)
def generate_remittance(tenant_id: str, document_ids: list[str], batch: Optional[bool] = None) -> dict:
    """Generate an 835 file for terminal documents and lock them for export.

    Returns:
        dict: File name, content and export metadata, or an error description
    """
    sys.path.insert(0, "/root")

    from uuid import UUID

    from eobflow import Services
    from eobflow.config import Config
    from eobflow.errors import EobFlowError

    logging.basicConfig(level=logging.INFO)
    logger = logging.getLogger(__name__)

    config = Config.from_env()
    services = Services(config)
    try:
        remittance = services.exporter.generate(
            UUID(tenant_id),
            [UUID(document_id) for document_id in document_ids],
            batch=batch,
        )
        return remittance.model_dump(mode="json")
    except EobFlowError as e:
        logger.error(f"835 generation failed: {e}")
        return {"error": str(e), "error_type": type(e).__name__}
    finally:
        services.close()


@app.local_entrypoint()
def main(document_id: str = "", sweep_only: bool = False):
    """Local entrypoint for testing.

    Usage:
        modal run modal/scheduler.py --document-id <uuid>
        modal run modal/scheduler.py --sweep-only
    """
    if sweep_only or not document_id:
        print("Running sweep...")
        result = sweep.remote()
    else:
        print(f"Enqueueing document {document_id}...")
        result = enqueue_document.remote(document_id=document_id)
    print(f"\nResult: {result}")
