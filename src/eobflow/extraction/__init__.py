"""Extraction service client, payload normalization and duplicate merging."""

from .client import ExtractionClient
from .dedup import dedup_items
from .normalize import normalize_items

__all__ = ["ExtractionClient", "dedup_items", "normalize_items"]
