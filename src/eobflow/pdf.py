"""PDF page counting and single-page splitting with pypdf."""

import io
import logging

from pypdf import PdfReader, PdfWriter
from pypdf.errors import PdfReadError

from .errors import InvalidSourceError

logger = logging.getLogger(__name__)


class PdfSplitter:
    """Split a multi-page PDF into one-page PDFs."""

    @staticmethod
    def open(pdf_bytes: bytes) -> PdfReader:
        """Parse PDF bytes.

        Raises:
            InvalidSourceError: If the bytes are not a readable PDF
        """
        try:
            return PdfReader(io.BytesIO(pdf_bytes))
        except (PdfReadError, ValueError, OSError) as e:
            raise InvalidSourceError(f"Could not parse PDF: {e}") from e

    @staticmethod
    def count_pages(reader: PdfReader) -> int:
        """Return the number of pages of a parsed PDF.

        Raises:
            InvalidSourceError: If the PDF is unreadable or has no pages
        """
        try:
            count = len(reader.pages)
        except PdfReadError as e:
            raise InvalidSourceError(f"Could not read PDF pages: {e}") from e
        if count == 0:
            raise InvalidSourceError("PDF has no pages")
        return count

    @staticmethod
    def extract_page(reader: PdfReader, page_number: int) -> bytes:
        """Write one page (1-based) as a standalone PDF."""
        writer = PdfWriter()
        writer.add_page(reader.pages[page_number - 1])
        buffer = io.BytesIO()
        writer.write(buffer)
        return buffer.getvalue()
