"""
Base extraction strategy and the uniform extraction contract.

    extract(file_bytes, document_type) -> ExtractionResult | ExtractionFailure

Concrete strategies implement `_extract` and may raise ExtractionError
subclasses freely; `extract` guarantees that nothing escapes: every error is
turned into an ExtractionFailure with operator-readable diagnostics, and every
success gets its arithmetic self-check applied.
"""

import logging
from abc import ABC, abstractmethod
from decimal import Decimal

from ..detection.formats import FormatFamily
from ..errors import ExtractionError
from ..schemas.extraction import (
    DocumentType,
    ExtractionFailure,
    ExtractionOutcome,
    ExtractionResult,
    FailureKind,
)
from ..schemas.validation import DEFAULT_TOLERANCE, apply_arithmetic_checks

logger = logging.getLogger(__name__)


class BaseStrategy(ABC):
    """
    Base class for all extraction strategies.

    Each strategy handles exactly one format family:
    - Structured XML (CAMT statements, UBL/CII e-invoices)
    - Delimited text (CSV bank exports)
    - PDF text layer + text model
    - Image + vision model
    """

    #: Document types this strategy can produce
    supported_types: frozenset[DocumentType] = frozenset(DocumentType)

    #: Advisory confidence attached to successful results
    base_confidence: float = 0.5

    def __init__(self, tolerance: Decimal = DEFAULT_TOLERANCE):
        self.tolerance = tolerance

    @property
    @abstractmethod
    def name(self) -> str:
        """Strategy name for logging and provenance."""
        pass

    @property
    @abstractmethod
    def family(self) -> FormatFamily:
        """Format family handled by this strategy."""
        pass

    @abstractmethod
    def _extract(self, file_bytes: bytes, document_type: DocumentType) -> ExtractionResult:
        """
        Extract structured data.

        Raises:
            ExtractionError: Any expected failure (unreadable, timeout, backend)
        """
        pass

    def extract(self, file_bytes: bytes, document_type: DocumentType) -> ExtractionOutcome:
        """
        Run the strategy. Never raises.

        Args:
            file_bytes: Raw uploaded content
            document_type: Detected or user-chosen document type

        Returns:
            ExtractionResult on success, ExtractionFailure otherwise
        """
        if document_type not in self.supported_types:
            supported = ", ".join(sorted(t.value for t in self.supported_types))
            return ExtractionFailure(
                kind=FailureKind.UNSUPPORTED,
                message=(
                    f"{self.family.value} files cannot be imported as "
                    f"{document_type.value} (supported: {supported})"
                ),
                source=self.name,
            )
        if not file_bytes:
            return ExtractionFailure(
                kind=FailureKind.UNREADABLE, message="File is empty", source=self.name
            )

        try:
            result = self._extract(file_bytes, document_type)
        except ExtractionError as e:
            logger.info("%s failed (%s): %s", self.name, e.kind, e.message)
            return ExtractionFailure(
                kind=FailureKind(e.kind),
                message=e.message,
                source=self.name,
                diagnostics=e.diagnostics,
            )
        except Exception as e:
            logger.exception("Unexpected error in %s strategy", self.name)
            return ExtractionFailure(
                kind=FailureKind.UNREADABLE,
                message=f"Unexpected error while reading document: {type(e).__name__}: {e}",
                source=self.name,
            )

        result.document_type = document_type
        result.source = self.name
        if not result.confidence:
            result.confidence = self.base_confidence
        return apply_arithmetic_checks(result, self.tolerance)
