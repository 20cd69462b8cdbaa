"""Remittance export: fetch reconciled documents, encode an 835 and stamp the export lock."""

import logging
import re
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional
from uuid import UUID, uuid4

from ..errors import (
    DocumentNotFoundError,
    DocumentNotReadyError,
    ExportError,
    ExportLockedError,
    IncompleteBillingProfileError,
    NoExportableDataError,
)
from ..models import Document, ExportStamp, LineItem, RemittanceFile
from ..storage import AnalyticsClient, DatabaseClient
from .encoder import DocumentPayments, RemittanceEncoder

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def compute_export_stamp(document_id: UUID, items: list[LineItem]) -> ExportStamp:
    """Summary stats recorded on a document when it is exported."""
    incentives = [item for item in items if item.line_type == "incentive_bonus"]
    return ExportStamp(
        document_id=document_id,
        total_paid=sum((item.paid_amount or Decimal("0") for item in items), Decimal("0")),
        patient_resp=sum((item.patient_responsibility or Decimal("0") for item in items), Decimal("0")),
        claim_count=len({item.claim_key for item in items}),
        found_revenue_amount=sum((item.paid_amount or Decimal("0") for item in incentives), Decimal("0")),
        found_revenue_count=len(incentives),
    )


def remittance_file_name(document: Optional[Document], document_id: UUID, batch: bool, transaction_count: int, now: datetime) -> str:
    if batch:
        return f"batch-835-{now.strftime('%Y-%m-%d')}-{transaction_count}docs.835"
    base_name = (document.file_name if document and document.file_name else str(document_id))
    return f"{re.sub(r'[.]pdf$', '', base_name, flags=re.IGNORECASE)}.835"


class RemittanceExporter:
    """Generates 835 files for a tenant's terminal documents."""

    def __init__(
        self,
        db: DatabaseClient,
        analytics: AnalyticsClient,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.db = db
        self.analytics = analytics
        self._clock = clock

    def generate(self, tenant_id: UUID, document_ids: list[UUID], batch: Optional[bool] = None) -> RemittanceFile:
        """Encode one transaction set per document and lock the exported documents.

        Args:
            tenant_id: Owning tenant (payee)
            document_ids: Documents to export, in output order
            batch: Batch mode skips documents without payment items; defaults
                to True when more than one document is given

        Returns:
            RemittanceFile: 835 content, file name and export metadata

        Raises:
            IncompleteBillingProfileError: Tenant lacks a tax id or NPI
            DocumentNotReadyError: A document has not reached a terminal status
            ExportLockedError: A document was already exported
            NoExportableDataError: Nothing to encode
        """
        if not document_ids:
            raise ValueError("At least one document id is required")
        if batch is None:
            batch = len(document_ids) > 1

        profile = self.db.get_billing_profile(tenant_id)
        if profile is None:
            raise ExportError(f"Billing profile for tenant {tenant_id} not found")
        if not profile.tax_id or not profile.npi:
            raise IncompleteBillingProfileError(
                "Tax ID and NPI are required for 835 generation. Please update your billing profile."
            )

        documents = {document.id: document for document in self.db.get_documents(document_ids)}
        for document_id in document_ids:
            document = documents.get(document_id)
            if document is None or document.tenant_id != tenant_id:
                raise DocumentNotFoundError(f"Document {document_id} not found")
            if not document.is_terminal:
                raise DocumentNotReadyError(f"Document {document_id} is still {document.status}")
            if document.is_export_locked:
                raise ExportLockedError(
                    f"Document {document_id} was exported at {document.last_exported_at}; unlock it first"
                )

        items_by_document = self.analytics.fetch_payment_items(document_ids)
        summaries = self.analytics.fetch_check_summaries(document_ids)

        payments: list[DocumentPayments] = []
        stamps: list[ExportStamp] = []
        for document_id in document_ids:
            items = items_by_document.get(document_id, [])
            if not items:
                if not batch:
                    raise NoExportableDataError(
                        "This document has no extracted payment items to generate an 835 file."
                    )
                logger.info(f"Skipping {document_id}: no line items")
                continue
            payments.append(DocumentPayments(document_id, items, summaries.get(document_id)))
            stamps.append(compute_export_stamp(document_id, items))

        if not payments:
            raise NoExportableDataError("None of the selected documents have extracted payment items.")

        now = self._clock()
        interchange = RemittanceEncoder(profile, now).encode(payments)
        file_name = remittance_file_name(
            documents.get(document_ids[0]), document_ids[0], batch, interchange.transaction_count, now
        )

        batch_id = uuid4()
        self.db.stamp_exports(stamps, batch_id, now)

        logger.info(
            f"Generated {'batch' if batch else 'single'} 835: {interchange.transaction_count} transactions, "
            f"{len(interchange.segments)} segments, batch_id={batch_id}"
        )
        return RemittanceFile(
            file_name=file_name,
            content=interchange.content,
            transaction_count=interchange.transaction_count,
            segment_count=len(interchange.segments),
            batch_id=batch_id,
            exported_at=now,
            stamps=stamps,
        )

    def unlock(self, document_id: UUID) -> bool:
        """Clear a document's export lock so it can be exported again."""
        return self.db.unlock_export(document_id)
