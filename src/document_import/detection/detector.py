"""
Document type detection.

Classifies an upload as BANK_STATEMENT or INVOICE from cheap signals, in
descending trust:

1. Exact extension (xml, csv, images)
2. Filename vocabulary (PDFs only)
3. Content vocabulary (text sample of the document)
4. Default: INVOICE @ 0.50

All candidate rules are evaluated and the highest confidence wins; on a tie
the earlier rule wins. Detection is pure, deterministic and never raises:
ambiguity is expressed as low confidence, never as "unknown".
"""

import logging
import re
import unicodedata
from dataclasses import dataclass
from typing import Any, Optional, Union

from ..schemas.extraction import DocumentType
from .formats import FormatFamily, file_extension, format_family

logger = logging.getLogger(__name__)

DEFAULT_TYPE = DocumentType.INVOICE
DEFAULT_CONFIDENCE = 0.50
CONTENT_CONFIDENCE = 0.75
MANUAL_OVERRIDE_CONFIDENCE = 1.0

# Extension rules: family -> (type, confidence)
FAMILY_RULES = {
    FormatFamily.XML: (DocumentType.BANK_STATEMENT, 0.95),
    FormatFamily.CSV: (DocumentType.BANK_STATEMENT, 0.85),
    FormatFamily.IMAGE: (DocumentType.INVOICE, 0.80),
}

# Filename vocabulary for PDFs (matched on accent-folded, lowercased stem)
FILENAME_KEYWORDS: list[tuple[str, DocumentType, float]] = [
    ("izvod", DocumentType.BANK_STATEMENT, 0.95),
    ("statement", DocumentType.BANK_STATEMENT, 0.95),
    ("kontoauszug", DocumentType.BANK_STATEMENT, 0.95),
    ("camt", DocumentType.BANK_STATEMENT, 0.95),
    ("bank", DocumentType.BANK_STATEMENT, 0.90),
    ("promet", DocumentType.BANK_STATEMENT, 0.90),
    ("account", DocumentType.BANK_STATEMENT, 0.90),
    ("racun", DocumentType.INVOICE, 0.90),
    ("invoice", DocumentType.INVOICE, 0.90),
    ("faktura", DocumentType.INVOICE, 0.90),
    ("rechnung", DocumentType.INVOICE, 0.90),
    ("receipt", DocumentType.INVOICE, 0.90),
    ("ponuda", DocumentType.INVOICE, 0.90),
]

# Content vocabulary (accent-folded, lowercased)
BANK_CONTENT_KEYWORDS = [
    "izvod",
    "account statement",
    "bank statement",
    "kontoauszug",
    "opening balance",
    "closing balance",
    "pocetno stanje",
    "zavrsno stanje",
    "novo stanje",
    "prethodno stanje",
    "alter kontostand",
    "neuer kontostand",
    "promet po racunu",
    "bktocstmrstmt",
]

INVOICE_CONTENT_KEYWORDS = [
    "invoice",
    "racun br",
    "broj racuna",
    "faktura",
    "rechnung",
    "rechnungsnummer",
    "due date",
    "rok placanja",
    "dospijece",
    "subtotal",
    "pdv",
    "vat",
    "mwst",
    "total amount",
    "ukupno za platiti",
    "receipt",
]


@dataclass
class DetectionResult:
    """Outcome of type detection."""

    document_type: DocumentType
    confidence: float
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "document_type": self.document_type.value,
            "confidence": self.confidence,
            "reason": self.reason,
        }


def fold_text(value: str) -> str:
    """Lowercase and strip diacritics (račun -> racun, Kontoauszüge -> kontoauszuge)."""
    decomposed = unicodedata.normalize("NFKD", value)
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    return stripped.replace("đ", "d").replace("Đ", "d").lower()


def _count_keywords(text: str, keywords: list[str]) -> int:
    return sum(1 for keyword in keywords if re.search(rf"\b{re.escape(keyword)}\b", text))


def _filename_candidates(filename: str) -> list[DetectionResult]:
    stem = fold_text(filename.rsplit(".", 1)[0])
    candidates = []
    for keyword, doc_type, confidence in FILENAME_KEYWORDS:
        # Whole words only: "_", "-" and digits separate, letters do not
        if re.search(rf"(?<![a-z]){re.escape(keyword)}(?![a-z])", stem):
            candidates.append(
                DetectionResult(doc_type, confidence, f"filename contains '{keyword}'")
            )
    return candidates


def _content_candidate(content_sample: Union[str, bytes]) -> Optional[DetectionResult]:
    if isinstance(content_sample, bytes):
        content_sample = content_sample.decode("utf-8", errors="ignore")
    text = fold_text(content_sample)
    bank_hits = _count_keywords(text, BANK_CONTENT_KEYWORDS)
    invoice_hits = _count_keywords(text, INVOICE_CONTENT_KEYWORDS)
    if bank_hits > invoice_hits:
        return DetectionResult(
            DocumentType.BANK_STATEMENT,
            CONTENT_CONFIDENCE,
            f"content matches {bank_hits} bank statement keyword(s)",
        )
    if invoice_hits > bank_hits:
        return DetectionResult(
            DocumentType.INVOICE,
            CONTENT_CONFIDENCE,
            f"content matches {invoice_hits} invoice keyword(s)",
        )
    return None


def detect(
    filename: Optional[str],
    mime_type: Optional[str] = None,
    content_sample: Union[str, bytes, None] = None,
) -> DetectionResult:
    """
    Detect the document type of an upload.

    Args:
        filename: Original filename (may be empty)
        mime_type: Declared mime type (used when the extension is missing)
        content_sample: Text sample of the document, if available

    Returns:
        DetectionResult with type, confidence in [0, 1] and a reason
    """
    candidates: list[DetectionResult] = []
    try:
        family = format_family(filename, mime_type)
        if family in FAMILY_RULES:
            doc_type, confidence = FAMILY_RULES[family]
            ext = file_extension(filename) or mime_type
            candidates.append(DetectionResult(doc_type, confidence, f"extension '{ext}'"))

        if family == FormatFamily.PDF and filename:
            candidates.extend(_filename_candidates(filename))

        if content_sample:
            content = _content_candidate(content_sample)
            if content:
                candidates.append(content)
    except Exception as e:  # detection must never fail an upload
        logger.warning("Type detection error for %r: %s", filename, e)

    if not candidates:
        return DetectionResult(DEFAULT_TYPE, DEFAULT_CONFIDENCE, "no signal, default type")

    # max() keeps the first of equal-confidence candidates
    best = max(candidates, key=lambda c: c.confidence)
    logger.debug(
        "Detected %s @ %.2f for %r (%s)",
        best.document_type.value,
        best.confidence,
        filename,
        best.reason,
    )
    return best


def manual_override(document_type: DocumentType) -> DetectionResult:
    """Detection result for a user-chosen type."""
    return DetectionResult(document_type, MANUAL_OVERRIDE_CONFIDENCE, "manual override")
