"""
Normalization of model output into the extraction schema.

Text and vision backends are asked for the same JSON schema (see
backends.prompts), so one normalizer serves both. Models are untrusted:
every field is coerced, and anything dropped or defaulted is reported as a
diagnostic.
"""

from decimal import Decimal
from typing import Any, Optional

from ..schemas.extraction import (
    Direction,
    InvoiceData,
    InvoiceLine,
    StatementData,
    StatementTransaction,
)
from .parsing import parse_date, safe_amount

INCOMING_MARKERS = {"INCOMING", "CREDIT", "CRDT", "IN", "UPLATA"}


def _str_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _first_present(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


def normalize_statement(data: dict[str, Any]) -> tuple[StatementData, list[str]]:
    """
    Build StatementData from a model response.

    Returns:
        (statement, diagnostics)
    """
    diagnostics: list[str] = []
    statement = StatementData(
        opening_balance=safe_amount(_first_present(data, "pageStartBalance", "openingBalance")),
        closing_balance=safe_amount(_first_present(data, "pageEndBalance", "closingBalance")),
        currency=(_str_or_none(data.get("currency")) or "EUR").upper(),
        account_iban=_str_or_none(data.get("accountIban")),
    )

    raw_transactions = data.get("transactions")
    if not isinstance(raw_transactions, list):
        diagnostics.append("response has no transaction list")
        raw_transactions = []

    for index, raw in enumerate(raw_transactions, start=1):
        if not isinstance(raw, dict):
            diagnostics.append(f"transaction {index}: not an object, skipped")
            continue
        amount = safe_amount(raw.get("amount"))
        if amount is None:
            diagnostics.append(f"transaction {index}: invalid amount {raw.get('amount')!r}, skipped")
            continue

        date = parse_date(_str_or_none(raw.get("date")))
        if date is None:
            diagnostics.append(f"transaction {index}: missing or invalid date, needs review")

        direction_marker = (_str_or_none(raw.get("direction")) or "").upper()
        if direction_marker in INCOMING_MARKERS:
            direction = Direction.INCOMING
        else:
            direction = Direction.OUTGOING
            if not direction_marker:
                diagnostics.append(f"transaction {index}: no direction, assumed OUTGOING")

        statement.transactions.append(
            StatementTransaction(
                date=date,
                description=_str_or_none(raw.get("description")) or "",
                amount=abs(amount),
                direction=direction,
                counterparty_name=_str_or_none(_first_present(raw, "payee", "counterpartyName")),
                counterparty_iban=_str_or_none(raw.get("counterpartyIban")),
                reference=_str_or_none(raw.get("reference")),
            )
        )

    return statement, diagnostics


def normalize_invoice(data: dict[str, Any]) -> tuple[InvoiceData, list[str]]:
    """
    Build InvoiceData from a model response.

    Missing subtotal defaults to the sum of line amounts; missing total to
    subtotal + tax; missing currency to EUR.

    Returns:
        (invoice, diagnostics)
    """
    diagnostics: list[str] = []
    vendor = _dict(data.get("vendor"))
    header = _dict(data.get("invoice"))
    payment = _dict(data.get("payment"))

    lines: list[InvoiceLine] = []
    raw_lines = data.get("lineItems") or []
    if not isinstance(raw_lines, list):
        diagnostics.append("lineItems is not a list, ignored")
        raw_lines = []
    for index, raw in enumerate(raw_lines, start=1):
        if not isinstance(raw, dict):
            diagnostics.append(f"line {index}: not an object, skipped")
            continue
        quantity = safe_amount(raw.get("quantity"))
        unit_price = safe_amount(raw.get("unitPrice"))
        amount = safe_amount(raw.get("amount"))
        if amount is None and quantity is not None and unit_price is not None:
            amount = quantity * unit_price
        if amount is None:
            diagnostics.append(f"line {index}: no amount, skipped")
            continue
        lines.append(
            InvoiceLine(
                description=_str_or_none(raw.get("description")) or "",
                amount=amount,
                quantity=quantity,
                unit_price=unit_price,
                tax_rate=safe_amount(raw.get("taxRate")),
            )
        )

    subtotal = safe_amount(data.get("subtotal"))
    if subtotal is None and lines:
        subtotal = sum((line.amount for line in lines), Decimal("0"))
        diagnostics.append("subtotal missing, computed from line items")
    tax_amount = safe_amount(data.get("taxAmount"))
    total = safe_amount(data.get("totalAmount"))
    if total is None and subtotal is not None:
        total = subtotal + (tax_amount or Decimal("0"))
        diagnostics.append("total missing, computed as subtotal + tax")

    reference = _str_or_none(payment.get("reference"))
    model = _str_or_none(payment.get("model"))
    if reference and model:
        reference = f"{model} {reference}"

    issue_date = parse_date(_str_or_none(header.get("issueDate")))
    if header.get("issueDate") and issue_date is None:
        diagnostics.append(f"invalid issue date {header.get('issueDate')!r}")

    invoice = InvoiceData(
        vendor_name=_str_or_none(vendor.get("name")),
        vendor_tax_id=_str_or_none(vendor.get("oib")),
        vendor_address=_str_or_none(vendor.get("address")),
        vendor_iban=_str_or_none(payment.get("iban")) or _str_or_none(vendor.get("iban")),
        invoice_number=_str_or_none(header.get("number")),
        issue_date=issue_date,
        due_date=parse_date(_str_or_none(header.get("dueDate"))),
        currency=(_str_or_none(data.get("currency")) or "EUR").upper(),
        subtotal=subtotal,
        tax_amount=tax_amount,
        total_amount=total,
        payment_reference=reference,
        lines=lines,
    )
    if not (invoice.vendor_name or invoice.vendor_tax_id):
        diagnostics.append("vendor not recognized, needs review")
    return invoice, diagnostics
