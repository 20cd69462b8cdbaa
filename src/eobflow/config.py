"""Configuration management for the eobflow pipeline."""

import os
from dataclasses import dataclass
from typing import Optional


@dataclass
class Config:
    """Application configuration loaded from environment variables."""

    # Database (job store + credit ledger)
    database_url: str

    # S3/R2
    s3_endpoint: str
    aws_access_key_id: str
    aws_secret_access_key: str

    # Extraction service (OpenAI-compatible)
    extraction_api_url: str
    extraction_api_key: str

    # Analytical store (line items); defaults to database_url
    analytics_database_url: Optional[str] = None

    # Buckets
    pages_bucket: str = "eob-pages"
    uploads_bucket: str = "eob-uploads"

    # Google Cloud Storage via the S3 interoperability endpoint
    gcs_endpoint: str = "https://storage.googleapis.com"
    gcs_access_key_id: Optional[str] = None
    gcs_secret_access_key: Optional[str] = None

    extraction_model: str = "gemini-2.0-flash"
    extraction_timeout_sec: float = 120.0
    extraction_max_retries: int = 2
    extraction_retry_base_sec: float = 10.0
    extraction_retry_multiplier: float = 1.5

    # Orchestration
    max_pages_per_doc: int = 500
    page_max_attempts: int = 3
    dispatch_batch_size: int = 5
    dispatch_batch_delay_sec: float = 2.5
    dispatch_timeout_sec: float = 10.0
    dispatch_mode: str = "modal"
    modal_app_name: str = "eobflow"

    # Sweeper
    sweep_batch_limit: int = 10
    sweep_stale_queued_sec: int = 300
    sweep_retry_cooldown_sec: int = 120
    sweep_stale_document_sec: int = 300
    sweep_dispatch_delay_sec: float = 5.0

    # Review
    low_confidence_threshold: float = 85.0

    @property
    def analytics_url(self) -> str:
        return self.analytics_database_url or self.database_url

    @property
    def gcs_enabled(self) -> bool:
        return bool(self.gcs_access_key_id and self.gcs_secret_access_key)

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables.

        Returns:
            Config: Configuration object

        Raises:
            ValueError: If required environment variables are missing
        """
        required_vars = [
            "DATABASE_URL",
            "S3_ENDPOINT",
            "AWS_ACCESS_KEY_ID",
            "AWS_SECRET_ACCESS_KEY",
            "EXTRACTION_API_URL",
            "EXTRACTION_API_KEY",
        ]

        missing = [var for var in required_vars if not os.getenv(var)]
        if missing:
            raise ValueError(f"Missing required environment variables: {', '.join(missing)}")

        return cls(
            database_url=os.getenv("DATABASE_URL"),
            s3_endpoint=os.getenv("S3_ENDPOINT"),
            aws_access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
            aws_secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
            extraction_api_url=os.getenv("EXTRACTION_API_URL"),
            extraction_api_key=os.getenv("EXTRACTION_API_KEY"),
            analytics_database_url=os.getenv("ANALYTICS_DATABASE_URL"),
            pages_bucket=os.getenv("PAGES_BUCKET", "eob-pages"),
            uploads_bucket=os.getenv("UPLOADS_BUCKET", "eob-uploads"),
            gcs_endpoint=os.getenv("GCS_ENDPOINT", "https://storage.googleapis.com"),
            gcs_access_key_id=os.getenv("GCS_ACCESS_KEY_ID"),
            gcs_secret_access_key=os.getenv("GCS_SECRET_ACCESS_KEY"),
            extraction_model=os.getenv("EXTRACTION_MODEL", "gemini-2.0-flash"),
            extraction_timeout_sec=float(os.getenv("EXTRACTION_TIMEOUT_SEC", "120")),
            extraction_max_retries=int(os.getenv("EXTRACTION_MAX_RETRIES", "2")),
            extraction_retry_base_sec=float(os.getenv("EXTRACTION_RETRY_BASE_SEC", "10")),
            extraction_retry_multiplier=float(os.getenv("EXTRACTION_RETRY_MULTIPLIER", "1.5")),
            max_pages_per_doc=int(os.getenv("MAX_PAGES_PER_DOC", "500")),
            page_max_attempts=int(os.getenv("PAGE_MAX_ATTEMPTS", "3")),
            dispatch_batch_size=int(os.getenv("DISPATCH_BATCH_SIZE", "5")),
            dispatch_batch_delay_sec=float(os.getenv("DISPATCH_BATCH_DELAY_SEC", "2.5")),
            dispatch_timeout_sec=float(os.getenv("DISPATCH_TIMEOUT_SEC", "10")),
            dispatch_mode=os.getenv("DISPATCH_MODE", "modal"),
            modal_app_name=os.getenv("MODAL_APP_NAME", "eobflow"),
            sweep_batch_limit=int(os.getenv("SWEEP_BATCH_LIMIT", "10")),
            sweep_stale_queued_sec=int(os.getenv("SWEEP_STALE_QUEUED_SEC", "300")),
            sweep_retry_cooldown_sec=int(os.getenv("SWEEP_RETRY_COOLDOWN_SEC", "120")),
            sweep_stale_document_sec=int(os.getenv("SWEEP_STALE_DOCUMENT_SEC", "300")),
            sweep_dispatch_delay_sec=float(os.getenv("SWEEP_DISPATCH_DELAY_SEC", "5")),
            low_confidence_threshold=float(os.getenv("LOW_CONFIDENCE_THRESHOLD", "85")),
        )
