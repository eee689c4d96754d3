"""
Extraction strategies.

One strategy per format family, behind a uniform contract:
- XMLDocumentExtractor: CAMT.052/053, UBL 2.1, UN/CEFACT CII
- CSVStatementExtractor: bank CSV exports
- PDFDocumentExtractor: PDF text layer + text backend, page by page for statements
- ImageDocumentExtractor: images + vision backend
"""

from .base import BaseStrategy
from .csv_statement import CSVStatementExtractor
from .image_document import ImageDocumentExtractor
from .parsing import parse_amount, parse_date
from .pdf_document import PDFDocumentExtractor, read_pdf_pages, read_pdf_text
from .router import StrategyRouter
from .xml_document import XMLDocumentExtractor

__all__ = [
    "BaseStrategy",
    "CSVStatementExtractor",
    "ImageDocumentExtractor",
    "PDFDocumentExtractor",
    "StrategyRouter",
    "XMLDocumentExtractor",
    "parse_amount",
    "parse_date",
    "read_pdf_pages",
    "read_pdf_text",
]
