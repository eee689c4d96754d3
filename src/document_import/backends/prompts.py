"""Prompt templates for AI-backed extraction.

Both backends (text and vision) are asked for the same fixed JSON schema per
document type, so a single normalizer handles their output.
Prompts are versioned to support cache invalidation.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

# Prompt version for cache invalidation
# v1.1: Ask for page start/end balances separately from opening/closing
# v1.2: One call per statement page, vision re-read of unbalanced pages
PROMPT_VERSION = "v1.2"


@dataclass
class StatementPrompt:
    """Prompt template for bank statement extraction.

    Attributes:
        version: Prompt version for cache invalidation.
        system_prompt: System message defining the output schema.
        page_template: User message template for one page of text layer.
        image_instruction: User message accompanying an image.
        repair_template: Vision instruction for re-reading an unbalanced page.
    """

    version: str = PROMPT_VERSION

    system_prompt: str = """You are a precise bank statement parser.
Extract every transaction from the bank statement you are given.

Rules:
1. Amounts are positive numbers; put the sign in "direction"
2. "direction" is "INCOMING" for credits (money in) and "OUTGOING" for debits
3. Dates use the format YYYY-MM-DD
4. Use null for values that are not printed on the document
5. Do not invent transactions, do not merge or split lines

Respond with JSON only, in exactly this format:
{
    "openingBalance": 1000.00,
    "closingBalance": 1130.00,
    "pageStartBalance": null,
    "pageEndBalance": null,
    "currency": "EUR",
    "accountIban": "HR1210010051863000160",
    "transactions": [
        {
            "date": "2025-01-15",
            "description": "Payment description",
            "amount": 50.00,
            "direction": "INCOMING",
            "payee": "Counterparty name",
            "counterpartyIban": null,
            "reference": null
        }
    ]
}"""

    page_template: str = """Extract transactions from page {page_number} of {page_count} of this bank statement.
Put the balance carried into this page in "pageStartBalance" and the balance
at the bottom of this page in "pageEndBalance".

Page text:
{text}"""

    image_instruction: str = (
        "Extract transactions from this bank statement image. Return valid JSON only."
    )

    repair_template: str = """The balances of page {page_number} do not add up with the transactions read from its text.
Use the page image to correct multi-line transactions, amounts, directions and balances.
Return the complete corrected page as valid JSON only.

RAW_PAGE_TEXT:
{text}

PREVIOUS_JSON:
{previous}"""

    def format_page_message(self, text: str, page_number: int, page_count: int) -> str:
        """Format the user message for one page of a statement."""
        return self.page_template.format(
            text=text.strip(), page_number=page_number, page_count=page_count
        )

    def format_repair_instruction(
        self, text: str, page_number: int, previous: dict[str, Any]
    ) -> str:
        """Format the vision instruction for re-reading an unbalanced page."""
        return self.repair_template.format(
            page_number=page_number,
            text=text.strip(),
            previous=json.dumps(previous, ensure_ascii=False, default=str),
        )


@dataclass
class InvoicePrompt:
    """Prompt template for invoice / receipt extraction."""

    version: str = PROMPT_VERSION

    system_prompt: str = """You are a precise invoice and receipt parser.
Extract the vendor, invoice header, line items and totals from the document.

Rules:
1. Amounts are numbers with a dot as decimal separator
2. "subtotal" is the amount before tax, "totalAmount" the amount payable
3. Dates use the format YYYY-MM-DD
4. "oib" is the vendor's tax identification number (OIB, VAT ID, USt-IdNr.)
5. Use null for values that are not printed on the document

Respond with JSON only, in exactly this format:
{
    "vendor": {"name": "Vendor d.o.o.", "oib": "12345678901", "address": null, "iban": null, "bankName": null},
    "invoice": {"number": "1-1-1", "issueDate": "2025-01-15", "dueDate": null, "deliveryDate": null},
    "lineItems": [
        {"description": "Item", "quantity": 1, "unitPrice": 100.00, "taxRate": 25, "amount": 100.00}
    ],
    "subtotal": 100.00,
    "taxAmount": 25.00,
    "totalAmount": 125.00,
    "currency": "EUR",
    "payment": {"iban": null, "model": null, "reference": null}
}"""

    text_template: str = """Extract invoice data from this document.

Document text:
{text}"""

    image_instruction: str = (
        "Extract invoice data from this document image. Return valid JSON only."
    )

    def format_user_message(self, text: str) -> str:
        """Format the user message for an invoice text layer."""
        return self.text_template.format(text=text.strip())
