"""
Document-text (PDF) extractor.

Reads the PDF text layer page by page with pdfplumber and asks the text
backend for the fixed statement / invoice schema.

Bank statements go to the model one page per call. Every page is audited on
its own (page start balance + movements == page end balance); a page that
fails the audit is rendered to PNG and re-read by the vision backend along
with the first answer. Pages that still do not add up are kept and flagged
in the warnings for the reviewer.

Invoices are sent in one call with the text of all pages. Scanned PDFs
without a text layer are reported as unreadable (upload page images instead).
"""

import io
import logging
from typing import Any, Optional

import pdfplumber

from ..backends.base import TextBackend, VisionBackend
from ..backends.prompts import InvoicePrompt, StatementPrompt
from ..detection.formats import FormatFamily
from ..errors import DocumentUnreadableError, ExtractionError
from ..schemas.extraction import DocumentType, ExtractionResult, StatementData
from ..schemas.validation import check_statement_balance
from .base import BaseStrategy
from .llm_schema import normalize_invoice, normalize_statement

logger = logging.getLogger(__name__)

# Render resolution for pages re-read by the vision backend (DPI)
PAGE_IMAGE_RESOLUTION = 150


def read_pdf_pages(file_bytes: bytes, max_pages: Optional[int] = None) -> list[str]:
    """
    Extract the text layer of each PDF page.

    Args:
        file_bytes: PDF content
        max_pages: Only read the first N pages (None = all)

    Returns:
        One stripped string per page, empty for pages without text

    Raises:
        DocumentUnreadableError: If the file is not a readable PDF
    """
    try:
        with pdfplumber.open(io.BytesIO(file_bytes)) as pdf:
            pages = pdf.pages if max_pages is None else pdf.pages[:max_pages]
            return [(page.extract_text() or "").strip() for page in pages]
    except Exception as e:  # pdfminer raises a variety of parser errors
        raise DocumentUnreadableError(f"Not a readable PDF: {type(e).__name__}: {e}")


def read_pdf_text(file_bytes: bytes, max_pages: Optional[int] = None) -> str:
    """Extract the text layer of a PDF as one string, pages separated by a blank line."""
    return "\n\n".join(text for text in read_pdf_pages(file_bytes, max_pages) if text)


def render_pdf_page(
    file_bytes: bytes, page_number: int, resolution: int = PAGE_IMAGE_RESOLUTION
) -> bytes:
    """
    Render one page (1-based) to PNG.

    Raises:
        DocumentUnreadableError: If the page cannot be rendered
    """
    buffer = io.BytesIO()
    try:
        with pdfplumber.open(io.BytesIO(file_bytes)) as pdf:
            pdf.pages[page_number - 1].to_image(resolution=resolution).save(buffer, format="PNG")
    except Exception as e:
        raise DocumentUnreadableError(
            f"Cannot render PDF page {page_number}: {type(e).__name__}: {e}"
        )
    return buffer.getvalue()


def _has_page_balances(page: StatementData) -> bool:
    return page.opening_balance is not None and page.closing_balance is not None


class PDFDocumentExtractor(BaseStrategy):
    """Extractor for PDFs with a text layer."""

    base_confidence = 0.70

    def __init__(
        self,
        text_backend: TextBackend,
        vision_backend: Optional[VisionBackend] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.text_backend = text_backend
        self.vision_backend = vision_backend
        self._statement_prompt = StatementPrompt()
        self._invoice_prompt = InvoicePrompt()

    @property
    def name(self) -> str:
        return "pdf"

    @property
    def family(self) -> FormatFamily:
        return FormatFamily.PDF

    def _extract(self, file_bytes: bytes, document_type: DocumentType) -> ExtractionResult:
        pages = read_pdf_pages(file_bytes)
        if not any(pages):
            raise DocumentUnreadableError(
                "PDF has no text layer",
                diagnostics=["The PDF is probably scanned; upload the pages as images instead"],
            )

        if document_type == DocumentType.BANK_STATEMENT:
            return self._extract_statement(file_bytes, pages)

        text = "\n\n".join(page for page in pages if page)
        logger.debug("Sending %d chars of PDF text to the text backend", len(text))
        response = self.text_backend.complete_json(
            self._invoice_prompt.system_prompt, self._invoice_prompt.format_user_message(text)
        )
        invoice, diagnostics = normalize_invoice(response)
        return ExtractionResult(
            document_type=document_type, invoice=invoice, diagnostics=diagnostics
        )

    def _extract_statement(self, file_bytes: bytes, pages: list[str]) -> ExtractionResult:
        """Extract a statement page by page, auditing each page's balance."""
        prompt = self._statement_prompt
        statement: Optional[StatementData] = None
        diagnostics: list[str] = []
        warnings: list[str] = []

        for page_number, text in enumerate(pages, start=1):
            if not text:
                diagnostics.append(f"page {page_number}: no text layer, skipped")
                continue

            logger.debug(
                "Sending page %d/%d (%d chars) to the text backend",
                page_number,
                len(pages),
                len(text),
            )
            response = self.text_backend.complete_json(
                prompt.system_prompt, prompt.format_page_message(text, page_number, len(pages))
            )
            page, notes = normalize_statement(response)
            diagnostics.extend(f"page {page_number}: {note}" for note in notes)

            page = self._audit_page(
                file_bytes, page_number, text, response, page, diagnostics, warnings
            )
            statement = _merge_page(statement, page)

        return ExtractionResult(
            document_type=DocumentType.BANK_STATEMENT,
            statement=statement,
            diagnostics=diagnostics,
            warnings=warnings,
        )

    def _audit_page(
        self,
        file_bytes: bytes,
        page_number: int,
        text: str,
        response: dict[str, Any],
        page: StatementData,
        diagnostics: list[str],
        warnings: list[str],
    ) -> StatementData:
        """Check one page's balance; re-read it with the vision backend on mismatch."""
        if not _has_page_balances(page):
            diagnostics.append(f"page {page_number}: no page balances, page math not checked")
            return page

        valid, mismatch = check_statement_balance(page, self.tolerance)
        if valid:
            diagnostics.append(
                f"page {page_number}: balance verified ({len(page.transactions)} transactions)"
            )
            return page

        diagnostics.append(f"page {page_number}: {mismatch}")
        repaired = self._repair_page(file_bytes, page_number, text, response, page, diagnostics)
        if repaired is not None:
            page = repaired
            valid, mismatch = check_statement_balance(page, self.tolerance)
            if valid:
                diagnostics.append(
                    f"page {page_number}: balance verified after vision re-read "
                    f"({len(page.transactions)} transactions)"
                )
                return page

        logger.info("Statement page %d still unbalanced", page_number)
        warnings.append(f"Page {page_number} needs review: {mismatch}")
        return page

    def _repair_page(
        self,
        file_bytes: bytes,
        page_number: int,
        text: str,
        response: dict[str, Any],
        page: StatementData,
        diagnostics: list[str],
    ) -> Optional[StatementData]:
        """Re-read an unbalanced page from its image. Returns None when not possible."""
        if self.vision_backend is None:
            diagnostics.append(f"page {page_number}: no vision backend to re-read the page")
            return None

        prompt = self._statement_prompt
        try:
            image = render_pdf_page(file_bytes, page_number)
            repaired_response = self.vision_backend.complete_json_with_image(
                prompt.system_prompt,
                prompt.format_repair_instruction(text, page_number, response),
                image,
                "image/png",
            )
        except ExtractionError as e:
            logger.warning("Vision re-read of page %d failed: %s", page_number, e.message)
            diagnostics.append(f"page {page_number}: vision re-read failed: {e.message}")
            return None

        repaired, notes = normalize_statement(repaired_response)
        diagnostics.extend(f"page {page_number}: vision: {note}" for note in notes)
        # Balances the vision model left out stay as read from the text
        if repaired.opening_balance is None:
            repaired.opening_balance = page.opening_balance
        if repaired.closing_balance is None:
            repaired.closing_balance = page.closing_balance
        return repaired


def _merge_page(statement: Optional[StatementData], page: StatementData) -> StatementData:
    """Append a page: opening balance from the first page, closing from the last."""
    if statement is None:
        return page
    statement.transactions.extend(page.transactions)
    statement.closing_balance = page.closing_balance
    statement.account_iban = statement.account_iban or page.account_iban
    return statement
