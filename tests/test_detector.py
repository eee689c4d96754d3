"""Tests for document type detection."""

import pytest

from document_import.detection import (
    DetectionResult,
    FormatFamily,
    detect,
    format_family,
    manual_override,
    resolve_extension,
)
from document_import.detection.detector import fold_text
from document_import.schemas import DocumentType


class TestExtensionRules:
    """Exact-extension rules."""

    def test_xml_is_statement(self):
        result = detect("export.xml")
        assert result.document_type == DocumentType.BANK_STATEMENT
        assert result.confidence == 0.95

    def test_csv_is_statement(self):
        result = detect("transactions.CSV")
        assert result.document_type == DocumentType.BANK_STATEMENT
        assert result.confidence == 0.85

    @pytest.mark.parametrize("filename", ["a.jpg", "a.jpeg", "a.png", "a.heic", "a.webp"])
    def test_images_are_invoices(self, filename):
        result = detect(filename)
        assert result.document_type == DocumentType.INVOICE
        assert result.confidence == 0.80

    @pytest.mark.parametrize(
        "filename", ["a.pdf", "a.xml", "a.csv", "a.jpg", "a.jpeg", "a.png", "a.heic", "a.webp"]
    )
    def test_every_supported_extension_yields_a_type(self, filename):
        result = detect(filename)
        assert isinstance(result, DetectionResult)
        assert result.document_type in DocumentType
        assert 0 < result.confidence <= 1


class TestFilenameRules:
    """Filename vocabulary applies to PDFs."""

    def test_statement_keyword(self):
        result = detect("Izvod_2024_03.pdf")
        assert result.document_type == DocumentType.BANK_STATEMENT
        assert result.confidence == 0.95
        assert "izvod" in result.reason

    def test_bank_keyword_lower_confidence(self):
        result = detect("bank-march.pdf")
        assert result.document_type == DocumentType.BANK_STATEMENT
        assert result.confidence == 0.90

    def test_accented_invoice_keyword(self):
        result = detect("Račun-2024-118.pdf")
        assert result.document_type == DocumentType.INVOICE
        assert result.confidence == 0.90

    def test_highest_confidence_wins(self):
        # "statement" (0.95) beats "bank" (0.90)
        result = detect("bank_statement.pdf")
        assert result.confidence == 0.95
        assert "statement" in result.reason

    @pytest.mark.parametrize(
        "filename", ["accountant_invoice.pdf", "Bankett-Rechnung.pdf", "bankomat-receipt.pdf"]
    )
    def test_keywords_match_whole_words(self, filename):
        result = detect(filename)
        assert result.document_type == DocumentType.INVOICE
        assert result.confidence == 0.90

    def test_digits_separate_keywords(self):
        result = detect("izvod2024-03.pdf")
        assert result.document_type == DocumentType.BANK_STATEMENT
        assert result.confidence == 0.95

    def test_keywords_ignored_for_csv(self):
        result = detect("invoice_export.csv")
        assert result.document_type == DocumentType.BANK_STATEMENT


class TestContentAndDefault:
    """Content vocabulary and fallback."""

    def test_content_bank_vocabulary(self):
        sample = "Account statement\nOpening balance 100,00\nClosing balance 130,00"
        result = detect("scan.pdf", content_sample=sample)
        assert result.document_type == DocumentType.BANK_STATEMENT
        assert result.confidence == 0.75

    def test_content_invoice_vocabulary(self):
        sample = "RECHNUNG\nRechnungsnummer 42\nMwSt 19%\nTotal amount 119,00"
        result = detect("scan.pdf", content_sample=sample)
        assert result.document_type == DocumentType.INVOICE
        assert result.confidence == 0.75

    def test_content_tie_has_no_signal(self):
        sample = "invoice\nopening balance"
        result = detect("scan.pdf", content_sample=sample)
        assert result.confidence == 0.50

    def test_default_is_invoice(self):
        result = detect("scan.pdf")
        assert result.document_type == DocumentType.INVOICE
        assert result.confidence == 0.50
        assert result.reason == "no signal, default type"

    def test_never_raises_on_odd_input(self):
        result = detect(None, None, b"\xff\xfe\x00garbage")
        assert result.document_type == DocumentType.INVOICE

    def test_mime_type_when_extension_missing(self):
        result = detect("upload", "application/xml")
        assert result.document_type == DocumentType.BANK_STATEMENT
        assert result.confidence == 0.95


class TestManualOverride:
    def test_override(self):
        result = manual_override(DocumentType.EXPENSE)
        assert result.document_type == DocumentType.EXPENSE
        assert result.confidence == 1.0
        assert result.reason == "manual override"


class TestFormats:
    """Format family resolution."""

    def test_extension_families(self):
        assert format_family("a.xml") == FormatFamily.XML
        assert format_family("a.csv") == FormatFamily.CSV
        assert format_family("a.pdf") == FormatFamily.PDF
        assert format_family("a.heic") == FormatFamily.IMAGE

    def test_mime_fallback(self):
        assert format_family("blob", "text/csv; charset=utf-8") == FormatFamily.CSV
        assert format_family("blob", "image/gif") == FormatFamily.IMAGE

    def test_unknown(self):
        assert format_family("a.exe") is None
        assert format_family(None, None) is None

    def test_resolve_extension(self):
        assert resolve_extension("Scan.JPG", None) == "jpg"
        assert resolve_extension("upload", "application/pdf") == "pdf"
        assert resolve_extension("upload", None) == ""

    def test_fold_text(self):
        assert fold_text("Račun Đurđa") == "racun durda"
