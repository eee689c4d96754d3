"""
Image extractor.

Sends the image to the vision backend with the same fixed schema as the PDF
path. The mime type is sniffed from the file's magic bytes.
"""

import logging

from ..backends.base import VisionBackend
from ..backends.prompts import InvoicePrompt, StatementPrompt
from ..detection.formats import FormatFamily
from ..errors import DocumentUnreadableError
from ..schemas.extraction import DocumentType, ExtractionResult
from .base import BaseStrategy
from .llm_schema import normalize_invoice, normalize_statement

logger = logging.getLogger(__name__)


def sniff_image_mime_type(file_bytes: bytes) -> str:
    """
    Detect the image mime type from magic bytes.

    Raises:
        DocumentUnreadableError: If the content is not a supported image
    """
    if file_bytes.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if file_bytes.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if file_bytes[:4] == b"RIFF" and file_bytes[8:12] == b"WEBP":
        return "image/webp"
    if file_bytes[4:8] == b"ftyp" and file_bytes[8:12] in (b"heic", b"heix", b"mif1", b"msf1"):
        return "image/heic"
    raise DocumentUnreadableError(
        "File content is not a PNG, JPEG, WEBP or HEIC image",
        diagnostics=[f"first bytes: {file_bytes[:12]!r}"],
    )


class ImageDocumentExtractor(BaseStrategy):
    """Extractor for photographed or scanned documents."""

    base_confidence = 0.60

    def __init__(self, vision_backend: VisionBackend, **kwargs):
        super().__init__(**kwargs)
        self.vision_backend = vision_backend
        self._statement_prompt = StatementPrompt()
        self._invoice_prompt = InvoicePrompt()

    @property
    def name(self) -> str:
        return "image"

    @property
    def family(self) -> FormatFamily:
        return FormatFamily.IMAGE

    def _extract(self, file_bytes: bytes, document_type: DocumentType) -> ExtractionResult:
        mime_type = sniff_image_mime_type(file_bytes)

        if document_type == DocumentType.BANK_STATEMENT:
            prompt = self._statement_prompt
        else:
            prompt = self._invoice_prompt

        logger.debug("Sending %s image (%d bytes) to the vision backend", mime_type, len(file_bytes))
        response = self.vision_backend.complete_json_with_image(
            prompt.system_prompt, prompt.image_instruction, file_bytes, mime_type
        )

        if document_type == DocumentType.BANK_STATEMENT:
            statement, diagnostics = normalize_statement(response)
            return ExtractionResult(
                document_type=document_type, statement=statement, diagnostics=diagnostics
            )
        invoice, diagnostics = normalize_invoice(response)
        return ExtractionResult(
            document_type=document_type, invoice=invoice, diagnostics=diagnostics
        )
