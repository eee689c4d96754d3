"""
Natural key generation (CRITICAL).

This module defines THE deterministic natural keys used to recognize that two
submissions describe the same real-world document or transaction. This is the
ONLY way to generate natural keys in the system.

Natural Key Formats:
1. Bank statement:   stmt:{checksum}
   - checksum = SHA256 of the uploaded file content
2. Bank transaction: tx:{hash[:32]}
   - with provider reference:    SHA256(account|ref|reference)
   - without provider reference: SHA256(account|date|signed amount|counterparty|description)
   - identical lines inside one statement get an occurrence suffix: tx:{hash}#2
3. Invoice/expense:  inv:{hash[:32]}
   - SHA256(kind|vendor tax id or vendor name|invoice number|total)

Keys must be:
- Stable: Same inputs always produce same output
- Tenant-agnostic: tenant scoping is applied by the store's UNIQUE constraint
- Reproducible: Can be regenerated from a stored payload
"""

import hashlib
import re
from decimal import Decimal
from typing import Optional

from .extraction import DocumentType, InvoiceData, StatementData, StatementTransaction

# Length of the hash prefix to use
HASH_PREFIX_LENGTH = 32

STATEMENT_KEY_PREFIX = "stmt:"
TRANSACTION_KEY_PREFIX = "tx:"
INVOICE_KEY_PREFIX = "inv:"
OCCURRENCE_SEPARATOR = "#"


def _normalize_amount(amount: Optional[Decimal]) -> str:
    """Normalize amount to 2 decimal places for hashing."""
    if amount is None:
        return ""
    return f"{amount:.2f}"


def _normalize_string(value: Optional[str]) -> str:
    """Normalize a string for hashing (lowercase, collapse whitespace)."""
    if not value:
        return ""
    return re.sub(r"\s+", " ", value.strip().lower())


def _normalize_identifier(value: Optional[str]) -> str:
    """Normalize IBANs, tax ids and references (drop spaces and dashes)."""
    if not value:
        return ""
    return re.sub(r"[\s\-]", "", value).upper()


def _hash(canonical: str) -> str:
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:HASH_PREFIX_LENGTH]


def statement_natural_key(content_checksum: str) -> str:
    """Natural key of a bank statement (the uploaded file's checksum)."""
    return f"{STATEMENT_KEY_PREFIX}{content_checksum}"


def transaction_base_key(tx: StatementTransaction, account_iban: Optional[str] = None) -> str:
    """
    Natural key of one transaction, without occurrence suffix.

    The provider reference wins when present; otherwise the key is built from
    date, signed amount, counterparty and description.
    """
    account = _normalize_identifier(account_iban)
    reference = _normalize_identifier(tx.reference)
    if reference:
        canonical = f"{account}|ref|{reference}"
    else:
        counterparty = _normalize_identifier(tx.counterparty_iban) or _normalize_string(
            tx.counterparty_name
        )
        canonical = (
            f"{account}|{tx.date or ''}|{_normalize_amount(tx.signed_amount)}|"
            f"{counterparty}|{_normalize_string(tx.description)}"
        )
    return f"{TRANSACTION_KEY_PREFIX}{_hash(canonical)}"


def transaction_natural_keys(statement: StatementData) -> list[str]:
    """
    Natural keys for every transaction of a statement, in order.

    Two identical lines inside one statement (e.g. two equal card payments on
    the same day) are distinct transactions: the second gets "#2", the third
    "#3", and so on.

    Returns:
        One key per transaction, all distinct
    """
    seen: dict[str, int] = {}
    keys = []
    for tx in statement.transactions:
        base = transaction_base_key(tx, statement.account_iban)
        seen[base] = seen.get(base, 0) + 1
        if seen[base] == 1:
            keys.append(base)
        else:
            keys.append(f"{base}{OCCURRENCE_SEPARATOR}{seen[base]}")
    return keys


def invoice_natural_key(invoice: InvoiceData, document_type: DocumentType) -> str:
    """
    Natural key of an invoice or expense.

    Vendor identity is the tax id when present, else the normalized name.
    """
    vendor = _normalize_identifier(invoice.vendor_tax_id) or _normalize_string(
        invoice.vendor_name
    )
    canonical = (
        f"{document_type.value}|{vendor}|{_normalize_identifier(invoice.invoice_number)}|"
        f"{_normalize_amount(invoice.total_amount)}"
    )
    return f"{INVOICE_KEY_PREFIX}{_hash(canonical)}"
