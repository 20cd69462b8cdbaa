"""835 remittance encoding and export."""

from .encoder import DocumentPayments, RemittanceEncoder
from .export import RemittanceExporter

__all__ = ["DocumentPayments", "RemittanceEncoder", "RemittanceExporter"]
