"""
Delimited-text (CSV) bank statement extractor.

Bank CSV exports differ in delimiter, encoding, header language and number
notation. The extractor:
- decodes UTF-8 (with BOM), then CP1250, then Latin-1
- sniffs the delimiter among , ; tab |
- finds the header row (banks often prepend account info lines)
- maps columns through a Croatian / English / German alias table
- skips malformed rows, recording "row N: ..." diagnostics

Direction comes from an indicator column when present, otherwise from the
amount's sign (or from separate debit/credit columns). CSV exports carry no
balances, so the balance check does not apply.
"""

import csv
import io
import logging
from decimal import Decimal
from typing import Optional

from ..detection.detector import fold_text
from ..detection.formats import FormatFamily
from ..errors import DocumentUnreadableError
from ..schemas.extraction import (
    Direction,
    DocumentType,
    ExtractionResult,
    StatementData,
    StatementTransaction,
)
from .base import BaseStrategy
from .parsing import parse_amount, parse_date

logger = logging.getLogger(__name__)

ENCODINGS = ["utf-8-sig", "cp1250", "latin-1"]
DELIMITERS = ",;\t|"
HEADER_SEARCH_ROWS = 20

# Canonical column -> accepted header names (accent-folded, lowercase)
COLUMN_ALIASES: dict[str, list[str]] = {
    "date": [
        "datum", "date", "datum knjizenja", "datum izvrsenja", "datum transakcije",
        "booking date", "transaction date", "value date", "buchungstag", "buchungsdatum",
        "valutadatum",
    ],
    "description": [
        "opis", "description", "opis placanja", "opis transakcije", "svrha",
        "svrha placanja", "purpose", "verwendungszweck", "buchungstext", "details",
        "memo", "narrative",
    ],
    "amount": ["iznos", "amount", "betrag", "iznos transakcije", "umsatz"],
    "debit": ["isplata", "duguje", "teret", "debit", "soll", "withdrawal", "odljev"],
    "credit": ["uplata", "potrazuje", "korist", "credit", "haben", "deposit", "priljev"],
    "direction": ["smjer", "direction", "d/c", "dr/cr", "debit/credit", "cdtdbtind", "soll/haben"],
    "reference": [
        "referenca", "reference", "poziv na broj", "poziv na broj primatelja",
        "poziv na broj platitelja", "ref", "end to end id", "endtoendid",
    ],
    "counterparty": [
        "naziv", "primatelj", "platitelj", "primatelj/platitelj", "counterparty",
        "payee", "partner", "name", "auftraggeber", "empfanger",
        "auftraggeber/empfanger", "beguenstigter/zahlungspflichtiger",
    ],
    "iban": ["iban", "iban primatelja", "iban platitelja", "counterparty iban", "kontonummer"],
    "currency": ["valuta", "currency", "wahrung", "waehrung"],
}

DEBIT_MARKERS = {"d", "dr", "dbit", "debit", "isplata", "teret", "s", "soll", "-", "out", "outgoing"}
CREDIT_MARKERS = {"c", "cr", "crdt", "credit", "uplata", "korist", "h", "haben", "+", "in", "incoming"}


def _decode(file_bytes: bytes) -> tuple[str, str]:
    for encoding in ENCODINGS:
        try:
            return file_bytes.decode(encoding), encoding
        except UnicodeDecodeError:
            continue
    # latin-1 decodes any byte sequence
    raise DocumentUnreadableError("Could not decode CSV file")


def _sniff_delimiter(text: str) -> str:
    sample = "\n".join(text.splitlines()[:HEADER_SEARCH_ROWS])
    try:
        return csv.Sniffer().sniff(sample, delimiters=DELIMITERS).delimiter
    except csv.Error:
        # Preamble lines defeat the sniffer; fall back to the most frequent candidate
        return max(DELIMITERS, key=sample.count)


def map_columns(header: list[str]) -> dict[str, int]:
    """Map canonical column names to header positions (first match wins)."""
    mapping: dict[str, int] = {}
    folded = [fold_text(h).strip().strip('"') for h in header]
    for column, aliases in COLUMN_ALIASES.items():
        for index, name in enumerate(folded):
            if name in aliases and index not in mapping.values():
                mapping[column] = index
                break
    return mapping


def _has_required_columns(mapping: dict[str, int]) -> bool:
    has_amount = "amount" in mapping or ("debit" in mapping and "credit" in mapping)
    return "date" in mapping and "description" in mapping and has_amount


def _direction_from_marker(value: str) -> Optional[Direction]:
    marker = fold_text(value).strip()
    if marker in DEBIT_MARKERS:
        return Direction.OUTGOING
    if marker in CREDIT_MARKERS:
        return Direction.INCOMING
    return None


class CSVStatementExtractor(BaseStrategy):
    """Extractor for CSV bank exports."""

    supported_types = frozenset({DocumentType.BANK_STATEMENT})
    base_confidence = 0.85

    @property
    def name(self) -> str:
        return "csv"

    @property
    def family(self) -> FormatFamily:
        return FormatFamily.CSV

    def _extract(self, file_bytes: bytes, document_type: DocumentType) -> ExtractionResult:
        text, encoding = _decode(file_bytes)
        diagnostics: list[str] = []
        if encoding != "utf-8-sig":
            diagnostics.append(f"decoded as {encoding}")

        delimiter = _sniff_delimiter(text)
        rows = list(csv.reader(io.StringIO(text), delimiter=delimiter))

        header_index = None
        mapping: dict[str, int] = {}
        for index, row in enumerate(rows[:HEADER_SEARCH_ROWS]):
            mapping = map_columns(row)
            if _has_required_columns(mapping):
                header_index = index
                break

        if header_index is None:
            found = rows[0] if rows else []
            raise DocumentUnreadableError(
                "CSV must have date, description and amount columns",
                diagnostics=[f"first row: {found}", f"delimiter: {delimiter!r}"],
            )
        if header_index > 0:
            diagnostics.append(f"skipped {header_index} line(s) before the header")

        statement = StatementData()
        currency: Optional[str] = None
        width = max(mapping.values()) + 1

        for offset, row in enumerate(rows[header_index + 1 :], start=header_index + 2):
            if not any(cell.strip() for cell in row):
                continue
            if len(row) < width:
                diagnostics.append(
                    f"row {offset}: expected at least {width} columns, got {len(row)}"
                )
                continue
            tx = self._parse_row(row, mapping, offset, diagnostics)
            if tx is None:
                continue
            statement.transactions.append(tx)
            if currency is None and "currency" in mapping:
                currency = row[mapping["currency"]].strip().upper() or None

        if not statement.transactions:
            raise DocumentUnreadableError(
                "CSV contains no valid transactions", diagnostics=diagnostics
            )

        statement.currency = currency or "EUR"
        logger.debug(
            "Parsed CSV with %d transactions (%d diagnostics)",
            len(statement.transactions),
            len(diagnostics),
        )
        return ExtractionResult(
            document_type=document_type, statement=statement, diagnostics=diagnostics
        )

    def _parse_row(
        self,
        row: list[str],
        mapping: dict[str, int],
        row_number: int,
        diagnostics: list[str],
    ) -> Optional[StatementTransaction]:
        def cell(column: str) -> str:
            return row[mapping[column]].strip() if column in mapping else ""

        raw_date = cell("date")
        date = parse_date(raw_date)
        if date is None:
            diagnostics.append(f"row {row_number}: invalid date {raw_date!r}")
            return None

        try:
            amount = self._signed_amount(cell, mapping)
        except ValueError as e:
            diagnostics.append(f"row {row_number}: {e}")
            return None

        direction = None
        if "direction" in mapping:
            direction = _direction_from_marker(cell("direction"))
        if direction is None:
            direction = Direction.INCOMING if amount >= 0 else Direction.OUTGOING

        return StatementTransaction(
            date=date,
            description=cell("description") or cell("counterparty"),
            amount=abs(amount),
            direction=direction,
            counterparty_name=cell("counterparty") or None,
            counterparty_iban=cell("iban").replace(" ", "") or None,
            reference=cell("reference") or None,
        )

    @staticmethod
    def _signed_amount(cell, mapping: dict[str, int]) -> Decimal:
        if "amount" in mapping:
            raw = cell("amount")
            try:
                return parse_amount(raw)
            except ValueError:
                raise ValueError(f"invalid amount {raw!r}")

        raw_debit, raw_credit = cell("debit"), cell("credit")
        try:
            debit = abs(parse_amount(raw_debit)) if raw_debit else Decimal("0")
            credit = abs(parse_amount(raw_credit)) if raw_credit else Decimal("0")
        except ValueError:
            raise ValueError(f"invalid debit/credit amount {raw_debit!r} / {raw_credit!r}")
        if not raw_debit and not raw_credit:
            raise ValueError("no debit or credit amount")
        return credit - debit
