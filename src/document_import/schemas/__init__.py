"""
Schemas for extraction results, payload validation and natural keys.
"""

from .extraction import (
    Direction,
    DocumentType,
    ExtractionFailure,
    ExtractionOutcome,
    ExtractionResult,
    FailureKind,
    InvoiceData,
    InvoiceLine,
    StatementData,
    StatementTransaction,
)
from .natural_keys import (
    invoice_natural_key,
    statement_natural_key,
    transaction_natural_keys,
)
from .validation import (
    apply_arithmetic_checks,
    check_invoice_totals,
    check_statement_balance,
    validate_payload,
)

__all__ = [
    "Direction",
    "DocumentType",
    "ExtractionFailure",
    "ExtractionOutcome",
    "ExtractionResult",
    "FailureKind",
    "InvoiceData",
    "InvoiceLine",
    "StatementData",
    "StatementTransaction",
    "invoice_natural_key",
    "statement_natural_key",
    "transaction_natural_keys",
    "apply_arithmetic_checks",
    "check_invoice_totals",
    "check_statement_balance",
    "validate_payload",
]
