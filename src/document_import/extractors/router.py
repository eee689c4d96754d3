"""
Strategy router - maps a format family to its extraction strategy.

The strategy set is closed: exactly one strategy per FormatFamily, chosen
once per attempt from the upload's extension (or mime type). There is no
probing and no fallback to another strategy mid-extraction.
"""

import logging
from decimal import Decimal
from typing import Optional

from ..backends.base import TextBackend, VisionBackend
from ..detection.formats import FormatFamily, format_family
from ..errors import UnsupportedDocumentError
from ..schemas.validation import DEFAULT_TOLERANCE
from .base import BaseStrategy
from .csv_statement import CSVStatementExtractor
from .image_document import ImageDocumentExtractor
from .pdf_document import PDFDocumentExtractor
from .xml_document import XMLDocumentExtractor

logger = logging.getLogger(__name__)


class StrategyRouter:
    """
    Routes extraction to the strategy for a format family.

    1. XML   -> CAMT statements, UBL / CII e-invoices
    2. CSV   -> bank exports
    3. PDF   -> text layer + text backend (vision re-read of unbalanced pages)
    4. IMAGE -> vision backend
    """

    def __init__(
        self,
        text_backend: TextBackend,
        vision_backend: VisionBackend,
        tolerance: Decimal = DEFAULT_TOLERANCE,
    ):
        """Initialize the fixed strategy table."""
        self.strategies: dict[FormatFamily, BaseStrategy] = {
            FormatFamily.XML: XMLDocumentExtractor(tolerance=tolerance),
            FormatFamily.CSV: CSVStatementExtractor(tolerance=tolerance),
            FormatFamily.PDF: PDFDocumentExtractor(
                text_backend, vision_backend, tolerance=tolerance
            ),
            FormatFamily.IMAGE: ImageDocumentExtractor(vision_backend, tolerance=tolerance),
        }

    def for_family(self, family: FormatFamily) -> BaseStrategy:
        return self.strategies[family]

    def select(self, filename: Optional[str], mime_type: Optional[str] = None) -> BaseStrategy:
        """
        Select the strategy for an upload.

        Raises:
            UnsupportedDocumentError: If the format family is unknown
        """
        family = format_family(filename, mime_type)
        if family is None:
            raise UnsupportedDocumentError(
                f"No extraction strategy for {filename!r} ({mime_type or 'unknown type'})"
            )
        strategy = self.strategies[family]
        logger.debug("Selected %s strategy for %r", strategy.name, filename)
        return strategy
