"""
Payload validation and arithmetic self-checks.

Two distinct concerns:
- Structural validation (validate_payload): does a (possibly user-edited)
  payload have the shape and value types we can persist? Returns a list of
  errors prefixed with the field path, e.g. "transactions[2].amount: ...".
- Arithmetic checks: do the extracted numbers agree with each other?
  A mismatch is a warning on an otherwise successful extraction.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Optional

from .extraction import (
    Direction,
    DocumentType,
    ExtractionResult,
    InvoiceData,
    StatementData,
    to_decimal,
)

DEFAULT_TOLERANCE = Decimal("0.01")

# Free-text fields; None is allowed, anything else must be a str
STATEMENT_TEXT_FIELDS = ["currency", "account_iban"]
TRANSACTION_TEXT_FIELDS = ["description", "counterparty_name", "counterparty_iban", "reference"]
INVOICE_TEXT_FIELDS = [
    "vendor_name",
    "vendor_tax_id",
    "vendor_address",
    "vendor_iban",
    "invoice_number",
    "currency",
    "payment_reference",
]


def _check_date(value: Any, path: str, errors: list[str], required: bool = False) -> None:
    if value is None or value == "":
        if required:
            errors.append(f"{path}: is required")
        return
    if not isinstance(value, str):
        errors.append(f"{path}: must be a YYYY-MM-DD string")
        return
    try:
        date.fromisoformat(value)
    except ValueError:
        errors.append(f"{path}: invalid date '{value}' (expected YYYY-MM-DD)")


def _check_string(value: Any, path: str, errors: list[str]) -> None:
    if value is not None and not isinstance(value, str):
        errors.append(f"{path}: must be a string")


def _check_amount(
    value: Any,
    path: str,
    errors: list[str],
    required: bool = False,
    non_negative: bool = False,
) -> None:
    if value is None or value == "":
        if required:
            errors.append(f"{path}: is required")
        return
    try:
        amount = to_decimal(value)
    except ValueError:
        errors.append(f"{path}: not a valid number '{value}'")
        return
    if non_negative and amount is not None and amount < 0:
        errors.append(f"{path}: must not be negative")


def _validate_statement(payload: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    _check_amount(payload.get("opening_balance"), "opening_balance", errors)
    _check_amount(payload.get("closing_balance"), "closing_balance", errors)
    _check_date(payload.get("statement_date"), "statement_date", errors)
    for name in STATEMENT_TEXT_FIELDS:
        _check_string(payload.get(name), name, errors)

    transactions = payload.get("transactions")
    if not isinstance(transactions, list):
        errors.append("transactions: must be a list")
        return errors

    for i, tx in enumerate(transactions):
        prefix = f"transactions[{i}]"
        if not isinstance(tx, dict):
            errors.append(f"{prefix}: must be an object")
            continue
        _check_date(tx.get("date"), f"{prefix}.date", errors, required=True)
        _check_amount(
            tx.get("amount"), f"{prefix}.amount", errors, required=True, non_negative=True
        )
        direction = tx.get("direction")
        if direction not in {d.value for d in Direction}:
            errors.append(f"{prefix}.direction: must be INCOMING or OUTGOING")
        for name in TRANSACTION_TEXT_FIELDS:
            _check_string(tx.get(name), f"{prefix}.{name}", errors)
    return errors


def _validate_invoice(payload: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    if not (payload.get("vendor_name") or payload.get("vendor_tax_id")):
        errors.append("vendor_name: vendor name or tax id is required")
    for name in INVOICE_TEXT_FIELDS:
        _check_string(payload.get(name), name, errors)
    _check_date(payload.get("issue_date"), "issue_date", errors)
    _check_date(payload.get("due_date"), "due_date", errors)
    _check_amount(payload.get("subtotal"), "subtotal", errors)
    _check_amount(payload.get("tax_amount"), "tax_amount", errors)
    _check_amount(payload.get("total_amount"), "total_amount", errors, required=True)

    lines = payload.get("lines") or []
    if not isinstance(lines, list):
        errors.append("lines: must be a list")
        return errors
    for i, line in enumerate(lines):
        prefix = f"lines[{i}]"
        if not isinstance(line, dict):
            errors.append(f"{prefix}: must be an object")
            continue
        _check_string(line.get("description"), f"{prefix}.description", errors)
        _check_amount(line.get("amount"), f"{prefix}.amount", errors, required=True)
        _check_amount(line.get("quantity"), f"{prefix}.quantity", errors)
        _check_amount(line.get("unit_price"), f"{prefix}.unit_price", errors)
        _check_amount(line.get("tax_rate"), f"{prefix}.tax_rate", errors)
    return errors


def validate_payload(document_type: DocumentType, payload: Any) -> list[str]:
    """
    Validate a statement or invoice payload dict.

    Args:
        document_type: Type the payload must conform to
        payload: StatementData.to_dict() / InvoiceData.to_dict() shaped dict

    Returns:
        List of validation errors (empty if valid)
    """
    if not isinstance(payload, dict):
        return ["payload: must be an object"]
    if document_type == DocumentType.BANK_STATEMENT:
        return _validate_statement(payload)
    return _validate_invoice(payload)


def check_statement_balance(
    statement: StatementData, tolerance: Decimal = DEFAULT_TOLERANCE
) -> tuple[bool, Optional[str]]:
    """
    Check opening + Σ(signed amounts) == closing.

    Statements without both balances cannot be checked and count as valid.

    Returns:
        (valid, warning message or None)
    """
    if statement.opening_balance is None or statement.closing_balance is None:
        return True, None

    movement = sum((tx.signed_amount for tx in statement.transactions), Decimal("0"))
    computed = statement.opening_balance + movement
    difference = computed - statement.closing_balance
    if abs(difference) < tolerance:
        return True, None
    return False, (
        f"Balance mismatch: opening {statement.opening_balance} + movements {movement} "
        f"= {computed}, but closing balance is {statement.closing_balance} "
        f"(difference {difference})"
    )


def check_invoice_totals(
    invoice: InvoiceData, tolerance: Decimal = DEFAULT_TOLERANCE
) -> tuple[bool, Optional[str]]:
    """
    Check subtotal + tax == total.

    Missing tax counts as zero; invoices without subtotal or total count as valid.

    Returns:
        (valid, warning message or None)
    """
    if invoice.subtotal is None or invoice.total_amount is None:
        return True, None

    tax = invoice.tax_amount or Decimal("0")
    computed = invoice.subtotal + tax
    difference = computed - invoice.total_amount
    if abs(difference) < tolerance:
        return True, None
    return False, (
        f"Totals mismatch: subtotal {invoice.subtotal} + tax {tax} = {computed}, "
        f"but total is {invoice.total_amount} (difference {difference})"
    )


def apply_arithmetic_checks(
    result: ExtractionResult, tolerance: Decimal = DEFAULT_TOLERANCE
) -> ExtractionResult:
    """Set arithmetic_valid on a result and record a warning on mismatch."""
    if result.statement is not None:
        valid, warning = check_statement_balance(result.statement, tolerance)
    elif result.invoice is not None:
        valid, warning = check_invoice_totals(result.invoice, tolerance)
    else:
        valid, warning = True, None

    result.arithmetic_valid = valid
    if warning:
        result.warnings.append(warning)
    return result
