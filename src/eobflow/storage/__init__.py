"""Storage layer for the job store, credit ledger, line items and page objects."""

from .analytics import AnalyticsClient
from .database import DatabaseClient
from .ledger import CreditLedger
from .objects import S3Client, page_key

__all__ = ["AnalyticsClient", "DatabaseClient", "CreditLedger", "S3Client", "page_key"]
