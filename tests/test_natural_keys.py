"""Tests for natural key generation."""

from decimal import Decimal

from document_import.schemas import (
    Direction,
    DocumentType,
    InvoiceData,
    StatementData,
    StatementTransaction,
)
from document_import.schemas.natural_keys import (
    invoice_natural_key,
    statement_natural_key,
    transaction_base_key,
    transaction_natural_keys,
)

IBAN = "HR1210010051863000160"


def tx(description="Card payment", amount="20.00", direction=Direction.OUTGOING, **kwargs):
    return StatementTransaction("2024-03-10", description, Decimal(amount), direction, **kwargs)


class TestTransactionKeys:
    """Tests for transaction natural keys."""

    def test_deterministic(self):
        assert transaction_base_key(tx(), IBAN) == transaction_base_key(tx(), IBAN)
        assert transaction_base_key(tx(), IBAN).startswith("tx:")

    def test_formatting_insensitive(self):
        a = transaction_base_key(tx(description="Card  Payment "), IBAN)
        b = transaction_base_key(tx(description="card payment"), "HR12 1001 0051 8630 0016 0")
        assert a == b

    def test_direction_matters(self):
        outgoing = transaction_base_key(tx(), IBAN)
        incoming = transaction_base_key(tx(direction=Direction.INCOMING), IBAN)
        assert outgoing != incoming

    def test_account_matters(self):
        assert transaction_base_key(tx(), IBAN) != transaction_base_key(tx(), "DE89370400440532013000")

    def test_reference_wins(self):
        a = transaction_base_key(tx(reference="REF-001", description="first"), IBAN)
        b = transaction_base_key(tx(reference="REF001", description="second", amount="99"), IBAN)
        assert a == b

    def test_identical_lines_get_occurrence_suffix(self):
        statement = StatementData(account_iban=IBAN, transactions=[tx(), tx(), tx(amount="5.00"), tx()])

        keys = transaction_natural_keys(statement)

        base = transaction_base_key(tx(), IBAN)
        assert keys[0] == base
        assert keys[1] == f"{base}#2"
        assert keys[3] == f"{base}#3"
        assert len(set(keys)) == 4


class TestDocumentKeys:
    """Tests for statement and invoice natural keys."""

    def test_statement_key_is_checksum(self):
        assert statement_natural_key("abc123") == "stmt:abc123"

    def test_invoice_key_prefers_tax_id(self):
        a = InvoiceData(vendor_name="Acme", vendor_tax_id="DE 123", invoice_number="1", total_amount=Decimal("10"))
        b = InvoiceData(vendor_name="ACME GmbH", vendor_tax_id="DE123", invoice_number="1", total_amount=Decimal("10.00"))
        assert invoice_natural_key(a, DocumentType.INVOICE) == invoice_natural_key(b, DocumentType.INVOICE)

    def test_invoice_key_depends_on_kind_and_total(self):
        invoice = InvoiceData(vendor_name="Shop", invoice_number="7", total_amount=Decimal("10"))
        other_total = InvoiceData(vendor_name="Shop", invoice_number="7", total_amount=Decimal("11"))

        key = invoice_natural_key(invoice, DocumentType.INVOICE)
        assert key.startswith("inv:")
        assert key != invoice_natural_key(invoice, DocumentType.EXPENSE)
        assert key != invoice_natural_key(other_total, DocumentType.INVOICE)
