"""
Extraction result schema.

The structured output of every extraction strategy, and the payload a user
reviews, edits and finally confirms. Amounts are Decimal in memory and
decimal strings in JSON; dates are ISO strings (YYYY-MM-DD).

Amount convention:
- StatementTransaction.amount is always positive; the sign lives in `direction`
- Invoice amounts are as printed on the document (credit notes may be negative)
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional, Union


class DocumentType(str, Enum):
    """Document category produced by detection (or chosen by the user)."""

    BANK_STATEMENT = "BANK_STATEMENT"
    INVOICE = "INVOICE"
    EXPENSE = "EXPENSE"  # receipts; extracted with the invoice schema


class Direction(str, Enum):
    """Money flow direction of a bank transaction."""

    INCOMING = "INCOMING"
    OUTGOING = "OUTGOING"


class FailureKind(str, Enum):
    """Why an extraction attempt failed."""

    TIMEOUT = "TIMEOUT"
    BACKEND = "BACKEND"
    UNREADABLE = "UNREADABLE"
    UNSUPPORTED = "UNSUPPORTED"


def to_decimal(value: Any) -> Optional[Decimal]:
    """Convert a JSON value to Decimal. None and "" stay None.

    Raises:
        ValueError: If the value is not a number
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"not a number: {value!r}")
    if isinstance(value, float):
        value = repr(value)
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValueError(f"not a number: {value!r}")
    if not result.is_finite():
        raise ValueError(f"not a finite number: {value!r}")
    return result


def _dec_str(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


@dataclass
class StatementTransaction:
    """A single bank statement line."""

    date: Optional[str]
    description: str
    amount: Decimal
    direction: Direction
    counterparty_name: Optional[str] = None
    counterparty_iban: Optional[str] = None
    reference: Optional[str] = None

    @property
    def signed_amount(self) -> Decimal:
        return self.amount if self.direction == Direction.INCOMING else -self.amount

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date,
            "description": self.description,
            "amount": _dec_str(self.amount),
            "direction": self.direction.value,
            "counterparty_name": self.counterparty_name,
            "counterparty_iban": self.counterparty_iban,
            "reference": self.reference,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StatementTransaction":
        return cls(
            date=data.get("date"),
            description=data.get("description") or "",
            amount=to_decimal(data.get("amount")) or Decimal("0"),
            direction=Direction(data.get("direction") or Direction.OUTGOING.value),
            counterparty_name=data.get("counterparty_name"),
            counterparty_iban=data.get("counterparty_iban"),
            reference=data.get("reference"),
        )


@dataclass
class StatementData:
    """Bank statement header and transaction list."""

    opening_balance: Optional[Decimal] = None
    closing_balance: Optional[Decimal] = None
    currency: str = "EUR"
    account_iban: Optional[str] = None
    statement_date: Optional[str] = None
    transactions: list[StatementTransaction] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "opening_balance": _dec_str(self.opening_balance),
            "closing_balance": _dec_str(self.closing_balance),
            "currency": self.currency,
            "account_iban": self.account_iban,
            "statement_date": self.statement_date,
            "transactions": [tx.to_dict() for tx in self.transactions],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StatementData":
        return cls(
            opening_balance=to_decimal(data.get("opening_balance")),
            closing_balance=to_decimal(data.get("closing_balance")),
            currency=data.get("currency") or "EUR",
            account_iban=data.get("account_iban"),
            statement_date=data.get("statement_date"),
            transactions=[
                StatementTransaction.from_dict(tx) for tx in data.get("transactions") or []
            ],
        )


@dataclass
class InvoiceLine:
    """Invoice line item."""

    description: str
    amount: Decimal
    quantity: Optional[Decimal] = None
    unit_price: Optional[Decimal] = None
    tax_rate: Optional[Decimal] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "description": self.description,
            "quantity": _dec_str(self.quantity),
            "unit_price": _dec_str(self.unit_price),
            "tax_rate": _dec_str(self.tax_rate),
            "amount": _dec_str(self.amount),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InvoiceLine":
        return cls(
            description=data.get("description") or "",
            amount=to_decimal(data.get("amount")) or Decimal("0"),
            quantity=to_decimal(data.get("quantity")),
            unit_price=to_decimal(data.get("unit_price")),
            tax_rate=to_decimal(data.get("tax_rate")),
        )


@dataclass
class InvoiceData:
    """Invoice (or receipt) header, totals and line items."""

    vendor_name: Optional[str] = None
    vendor_tax_id: Optional[str] = None
    vendor_address: Optional[str] = None
    vendor_iban: Optional[str] = None
    invoice_number: Optional[str] = None
    issue_date: Optional[str] = None
    due_date: Optional[str] = None
    currency: str = "EUR"
    subtotal: Optional[Decimal] = None
    tax_amount: Optional[Decimal] = None
    total_amount: Optional[Decimal] = None
    payment_reference: Optional[str] = None
    lines: list[InvoiceLine] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "vendor_name": self.vendor_name,
            "vendor_tax_id": self.vendor_tax_id,
            "vendor_address": self.vendor_address,
            "vendor_iban": self.vendor_iban,
            "invoice_number": self.invoice_number,
            "issue_date": self.issue_date,
            "due_date": self.due_date,
            "currency": self.currency,
            "subtotal": _dec_str(self.subtotal),
            "tax_amount": _dec_str(self.tax_amount),
            "total_amount": _dec_str(self.total_amount),
            "payment_reference": self.payment_reference,
            "lines": [line.to_dict() for line in self.lines],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InvoiceData":
        return cls(
            vendor_name=data.get("vendor_name"),
            vendor_tax_id=data.get("vendor_tax_id"),
            vendor_address=data.get("vendor_address"),
            vendor_iban=data.get("vendor_iban"),
            invoice_number=data.get("invoice_number"),
            issue_date=data.get("issue_date"),
            due_date=data.get("due_date"),
            currency=data.get("currency") or "EUR",
            subtotal=to_decimal(data.get("subtotal")),
            tax_amount=to_decimal(data.get("tax_amount")),
            total_amount=to_decimal(data.get("total_amount")),
            payment_reference=data.get("payment_reference"),
            lines=[InvoiceLine.from_dict(line) for line in data.get("lines") or []],
        )


@dataclass
class ExtractionResult:
    """Successful extraction.

    Exactly one of `statement` / `invoice` is set, matching document_type.
    An arithmetic mismatch is NOT a failure: arithmetic_valid is False and a
    warning explains the difference.
    """

    document_type: DocumentType
    statement: Optional[StatementData] = None
    invoice: Optional[InvoiceData] = None
    arithmetic_valid: bool = True
    source: str = ""
    confidence: float = 0.0
    diagnostics: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    ok = True

    @property
    def data(self) -> Union[StatementData, InvoiceData, None]:
        return self.statement if self.statement is not None else self.invoice

    def to_dict(self) -> dict[str, Any]:
        return {
            "document_type": self.document_type.value,
            "statement": self.statement.to_dict() if self.statement else None,
            "invoice": self.invoice.to_dict() if self.invoice else None,
            "arithmetic_valid": self.arithmetic_valid,
            "source": self.source,
            "confidence": self.confidence,
            "diagnostics": list(self.diagnostics),
            "warnings": list(self.warnings),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExtractionResult":
        statement = data.get("statement")
        invoice = data.get("invoice")
        return cls(
            document_type=DocumentType(data["document_type"]),
            statement=StatementData.from_dict(statement) if statement else None,
            invoice=InvoiceData.from_dict(invoice) if invoice else None,
            arithmetic_valid=bool(data.get("arithmetic_valid", True)),
            source=data.get("source", ""),
            confidence=float(data.get("confidence", 0.0)),
            diagnostics=list(data.get("diagnostics") or []),
            warnings=list(data.get("warnings") or []),
        )


@dataclass
class ExtractionFailure:
    """Structured failure returned by a strategy instead of raising."""

    kind: FailureKind
    message: str
    source: str = ""
    diagnostics: list[str] = field(default_factory=list)

    ok = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "source": self.source,
            "diagnostics": list(self.diagnostics),
        }


ExtractionOutcome = Union[ExtractionResult, ExtractionFailure]
