"""Wiring of clients and pipeline components from a Config."""

from functools import cached_property
from typing import Any

from .config import Config
from .extraction import ExtractionClient
from .models import PageJobRef
from .pipeline import Dispatcher, LocalDispatcher, ModalDispatcher, Orchestrator, PageWorker, Sweeper
from .remittance import RemittanceExporter
from .review import ReviewService
from .storage import AnalyticsClient, CreditLedger, DatabaseClient, S3Client


class Services:
    """Lazily builds every component an entrypoint needs.

    Example:
        services = Services(Config.from_env())
        try:
            services.orchestrator.enqueue(document_id, source)
        finally:
            services.close()
    """

    def __init__(self, config: Config):
        self.config = config

    # ========================================================================
    # Clients
    # ========================================================================

    @cached_property
    def db(self) -> DatabaseClient:
        return DatabaseClient(self.config.database_url)

    @cached_property
    def ledger(self) -> CreditLedger:
        return CreditLedger(self.db)

    @cached_property
    def analytics(self) -> AnalyticsClient:
        return AnalyticsClient(self.config.analytics_url)

    @cached_property
    def storage(self) -> S3Client:
        return S3Client(
            endpoint_url=self.config.s3_endpoint,
            access_key_id=self.config.aws_access_key_id,
            secret_access_key=self.config.aws_secret_access_key,
            default_bucket=self.config.pages_bucket,
        )

    @cached_property
    def source_stores(self) -> dict[str, S3Client]:
        stores = {
            "uploads": S3Client(
                endpoint_url=self.config.s3_endpoint,
                access_key_id=self.config.aws_access_key_id,
                secret_access_key=self.config.aws_secret_access_key,
                default_bucket=self.config.uploads_bucket,
            )
        }
        if self.config.gcs_enabled:
            stores["gcs"] = S3Client(
                endpoint_url=self.config.gcs_endpoint,
                access_key_id=self.config.gcs_access_key_id,
                secret_access_key=self.config.gcs_secret_access_key,
            )
        return stores

    @cached_property
    def extractor(self) -> ExtractionClient:
        return ExtractionClient(
            api_url=self.config.extraction_api_url,
            api_key=self.config.extraction_api_key,
            model_name=self.config.extraction_model,
            timeout=self.config.extraction_timeout_sec,
            max_retries=self.config.extraction_max_retries,
            retry_base_sec=self.config.extraction_retry_base_sec,
            retry_multiplier=self.config.extraction_retry_multiplier,
        )

    # ========================================================================
    # Components
    # ========================================================================

    @cached_property
    def review(self) -> ReviewService:
        return ReviewService(self.db, self.analytics, self.config.low_confidence_threshold)

    @cached_property
    def worker(self) -> PageWorker:
        return PageWorker(self.db, self.analytics, self.storage, self.extractor, review=self.review)

    @cached_property
    def dispatcher(self) -> Dispatcher:
        if self.config.dispatch_mode == "local":
            return LocalDispatcher(self._process_isolated)
        if self.config.dispatch_mode == "modal":
            return ModalDispatcher(self.config.modal_app_name, accept_timeout_sec=self.config.dispatch_timeout_sec)
        raise ValueError(f"Unknown dispatch mode: {self.config.dispatch_mode}")

    @cached_property
    def orchestrator(self) -> Orchestrator:
        return Orchestrator(
            db=self.db,
            pages=self.storage,
            pages_bucket=self.config.pages_bucket,
            dispatcher=self.dispatcher,
            source_stores=self.source_stores,
            max_pages=self.config.max_pages_per_doc,
            max_attempts=self.config.page_max_attempts,
            batch_size=self.config.dispatch_batch_size,
            batch_delay_sec=self.config.dispatch_batch_delay_sec,
        )

    @cached_property
    def sweeper(self) -> Sweeper:
        return Sweeper(
            db=self.db,
            dispatcher=self.dispatcher,
            batch_limit=self.config.sweep_batch_limit,
            stale_queued_sec=self.config.sweep_stale_queued_sec,
            retry_cooldown_sec=self.config.sweep_retry_cooldown_sec,
            stale_document_sec=self.config.sweep_stale_document_sec,
            dispatch_delay_sec=self.config.sweep_dispatch_delay_sec,
        )

    @cached_property
    def exporter(self) -> RemittanceExporter:
        return RemittanceExporter(self.db, self.analytics)

    def _process_isolated(self, ref: PageJobRef) -> dict[str, Any]:
        """Run one page job on clients of its own.

        Local workers run on a thread pool and psycopg connections must not
        be shared between threads, so every job gets fresh Services.
        """
        services = Services(self.config)
        try:
            return services.worker.process(ref)
        finally:
            services.close()

    def close(self):
        """Close whatever was opened."""
        if "dispatcher" in self.__dict__:
            self.dispatcher.close()
        for name in ("db", "analytics"):
            if name in self.__dict__:
                self.__dict__[name].close()
