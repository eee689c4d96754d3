"""
Structured XML extractor.

Supports:
- ISO 20022 CAMT.053 (BkToCstmrStmt) and CAMT.052 (BkToCstmrAcctRpt)
  bank statements, any schema version
- UBL 2.1 Invoice / CreditNote
- UN/CEFACT Cross Industry Invoice (ZUGFeRD / Factur-X / XRechnung CII)

Namespaces are stripped after parsing so one set of paths serves every
schema version. These formats give the highest confidence because the data
is structured, not recognized.
"""

import logging
from decimal import Decimal
from typing import Optional
from xml.etree import ElementTree as ET

from ..detection.formats import FormatFamily
from ..errors import DocumentUnreadableError
from ..schemas.extraction import (
    Direction,
    DocumentType,
    ExtractionResult,
    InvoiceData,
    InvoiceLine,
    StatementData,
    StatementTransaction,
)
from .base import BaseStrategy
from .parsing import parse_amount, parse_date, safe_amount

logger = logging.getLogger(__name__)

OPENING_BALANCE_CODES = ("OPBD", "PRCD")
CLOSING_BALANCE_CODES = ("CLBD",)
INVOICE_ROOTS = ("Invoice", "CreditNote", "CrossIndustryInvoice")


def _strip_namespaces(root: ET.Element) -> ET.Element:
    for elem in root.iter():
        if isinstance(elem.tag, str) and "}" in elem.tag:
            elem.tag = elem.tag.split("}", 1)[1]
    return root


def _text(elem: Optional[ET.Element], path: str) -> Optional[str]:
    """Stripped text at path, None if missing or blank."""
    if elem is None:
        return None
    found = elem.find(path)
    if found is None or found.text is None:
        return None
    value = found.text.strip()
    return value or None


def _first_text(elem: Optional[ET.Element], *paths: str) -> Optional[str]:
    for path in paths:
        value = _text(elem, path)
        if value:
            return value
    return None


class XMLDocumentExtractor(BaseStrategy):
    """
    Extractor for structured XML uploads.

    BANK_STATEMENT -> CAMT; INVOICE / EXPENSE -> UBL or CII.
    """

    base_confidence = 0.95

    @property
    def name(self) -> str:
        return "xml"

    @property
    def family(self) -> FormatFamily:
        return FormatFamily.XML

    def _extract(self, file_bytes: bytes, document_type: DocumentType) -> ExtractionResult:
        try:
            root = _strip_namespaces(ET.fromstring(file_bytes))
        except ET.ParseError as e:
            raise DocumentUnreadableError(f"Invalid XML: {e}")

        if document_type == DocumentType.BANK_STATEMENT:
            statement, diagnostics = self._parse_camt(root)
            return ExtractionResult(
                document_type=document_type, statement=statement, diagnostics=diagnostics
            )

        if root.tag in ("Invoice", "CreditNote"):
            invoice, diagnostics = self._parse_ubl(root)
        elif root.tag == "CrossIndustryInvoice":
            invoice, diagnostics = self._parse_cii(root)
        else:
            hint = []
            if root.tag == "Document":
                hint.append("The file looks like a CAMT bank statement; change the type to BANK_STATEMENT")
            raise DocumentUnreadableError(
                f"XML root <{root.tag}> is not a UBL or CII e-invoice", diagnostics=hint
            )
        return ExtractionResult(
            document_type=document_type, invoice=invoice, diagnostics=diagnostics
        )

    # ------------------------------------------------------------------
    # CAMT.052 / CAMT.053
    # ------------------------------------------------------------------

    def _parse_camt(self, root: ET.Element) -> tuple[StatementData, list[str]]:
        statements = root.findall(".//BkToCstmrStmt/Stmt") or root.findall(
            ".//BkToCstmrAcctRpt/Rpt"
        )
        if not statements:
            hint = []
            if root.tag in INVOICE_ROOTS:
                hint.append("The file looks like an e-invoice; change the type to INVOICE")
            raise DocumentUnreadableError(
                f"XML <{root.tag}> is not a CAMT.052/053 statement "
                "(no BkToCstmrStmt/Stmt or BkToCstmrAcctRpt/Rpt element)",
                diagnostics=hint,
            )

        diagnostics: list[str] = []
        data = StatementData(
            account_iban=_first_text(statements[0], "Acct/Id/IBAN", "Acct/Id/Othr/Id"),
            currency=_text(statements[0], "Acct/Ccy") or "EUR",
            statement_date=parse_date(_text(statements[0], "CreDtTm")),
        )

        entry_no = 0
        for stmt_index, stmt in enumerate(statements):
            for bal in stmt.findall("Bal"):
                code = _first_text(bal, "Tp/CdOrPrtry/Cd", "Tp/CdOrPrtry/Prtry")
                amount = self._signed_balance(bal)
                if amount is None:
                    continue
                if code in OPENING_BALANCE_CODES and stmt_index == 0:
                    data.opening_balance = amount
                    ccy = bal.find("Amt")
                    if ccy is not None and ccy.get("Ccy") and not _text(stmt, "Acct/Ccy"):
                        data.currency = ccy.get("Ccy")
                elif code in CLOSING_BALANCE_CODES:
                    data.closing_balance = amount

            for entry in stmt.findall("Ntry"):
                entry_no += 1
                tx = self._parse_entry(entry, entry_no, diagnostics)
                if tx is not None:
                    data.transactions.append(tx)

        if len(statements) > 1:
            diagnostics.append(f"{len(statements)} statements in file, entries combined")
        logger.debug("Parsed CAMT statement with %d entries", len(data.transactions))
        return data, diagnostics

    @staticmethod
    def _signed_balance(bal: ET.Element) -> Optional[Decimal]:
        amount = safe_amount(_text(bal, "Amt"))
        if amount is None:
            return None
        if _text(bal, "CdtDbtInd") == "DBIT":
            amount = -amount
        return amount

    def _parse_entry(
        self, entry: ET.Element, entry_no: int, diagnostics: list[str]
    ) -> Optional[StatementTransaction]:
        raw_amount = _text(entry, "Amt")
        try:
            amount = abs(parse_amount(raw_amount))
        except ValueError:
            diagnostics.append(f"entry {entry_no}: invalid amount {raw_amount!r}, skipped")
            return None

        indicator = _text(entry, "CdtDbtInd")
        direction = Direction.INCOMING if indicator == "CRDT" else Direction.OUTGOING
        if indicator not in ("CRDT", "DBIT"):
            diagnostics.append(f"entry {entry_no}: missing CdtDbtInd, assumed debit")

        date = parse_date(
            _first_text(entry, "BookgDt/Dt", "BookgDt/DtTm", "ValDt/Dt", "ValDt/DtTm")
        )
        if date is None:
            diagnostics.append(f"entry {entry_no}: no booking or value date")

        details = entry.find("NtryDtls/TxDtls")
        unstructured = []
        if details is not None:
            unstructured = [
                u.text.strip() for u in details.findall("RmtInf/Ustrd") if u.text and u.text.strip()
            ]
        description = _text(entry, "AddtlNtryInf") or " ".join(unstructured)

        # The counterparty is the creditor for debits and the debtor for credits
        if direction == Direction.OUTGOING:
            party_order = ("Cdtr", "Dbtr")
        else:
            party_order = ("Dbtr", "Cdtr")
        counterparty_name = None
        counterparty_iban = None
        for party in party_order:
            counterparty_name = counterparty_name or _first_text(
                details, f"RltdPties/{party}/Nm", f"RltdPties/{party}/Pty/Nm"
            )
            counterparty_iban = counterparty_iban or _text(
                details, f"RltdPties/{party}Acct/Id/IBAN"
            )

        end_to_end = _text(details, "Refs/EndToEndId")
        if end_to_end == "NOTPROVIDED":
            end_to_end = None
        reference = (
            _text(entry, "NtryRef")
            or end_to_end
            or _text(entry, "AcctSvcrRef")
            or _text(details, "Refs/AcctSvcrRef")
        )

        return StatementTransaction(
            date=date,
            description=description,
            amount=amount,
            direction=direction,
            counterparty_name=counterparty_name,
            counterparty_iban=counterparty_iban,
            reference=reference,
        )

    # ------------------------------------------------------------------
    # UBL 2.1
    # ------------------------------------------------------------------

    def _parse_ubl(self, root: ET.Element) -> tuple[InvoiceData, list[str]]:
        diagnostics: list[str] = []
        supplier = root.find("AccountingSupplierParty/Party")
        payment = root.find("PaymentMeans")
        totals = root.find("LegalMonetaryTotal")

        street = _text(supplier, "PostalAddress/StreetName")
        city = _text(supplier, "PostalAddress/CityName")
        address = ", ".join(part for part in (street, city) if part) or None

        invoice = InvoiceData(
            vendor_name=_first_text(
                supplier, "PartyName/Name", "PartyLegalEntity/RegistrationName"
            ),
            vendor_tax_id=_first_text(
                supplier, "PartyTaxScheme/CompanyID", "PartyLegalEntity/CompanyID"
            ),
            vendor_address=address,
            vendor_iban=_text(payment, "PayeeFinancialAccount/ID"),
            invoice_number=_text(root, "ID"),
            issue_date=parse_date(_text(root, "IssueDate")),
            due_date=parse_date(_first_text(root, "DueDate", "PaymentMeans/PaymentDueDate")),
            currency=_text(root, "DocumentCurrencyCode") or "EUR",
            subtotal=safe_amount(_text(totals, "TaxExclusiveAmount")),
            tax_amount=safe_amount(_text(root, "TaxTotal/TaxAmount")),
            total_amount=safe_amount(
                _first_text(totals, "TaxInclusiveAmount", "PayableAmount")
            ),
            payment_reference=_text(payment, "PaymentID"),
        )

        line_tag = "CreditNoteLine" if root.tag == "CreditNote" else "InvoiceLine"
        quantity_tag = "CreditedQuantity" if root.tag == "CreditNote" else "InvoicedQuantity"
        for position, line in enumerate(root.findall(line_tag), start=1):
            amount = safe_amount(_text(line, "LineExtensionAmount"))
            if amount is None:
                diagnostics.append(f"line {position}: missing LineExtensionAmount, skipped")
                continue
            invoice.lines.append(
                InvoiceLine(
                    description=_first_text(line, "Item/Name", "Item/Description") or "",
                    amount=amount,
                    quantity=safe_amount(_text(line, quantity_tag)),
                    unit_price=safe_amount(_text(line, "Price/PriceAmount")),
                    tax_rate=safe_amount(_text(line, "Item/ClassifiedTaxCategory/Percent")),
                )
            )

        if invoice.total_amount is None:
            diagnostics.append("no TaxInclusiveAmount or PayableAmount found")
        return invoice, diagnostics

    # ------------------------------------------------------------------
    # UN/CEFACT CII
    # ------------------------------------------------------------------

    def _parse_cii(self, root: ET.Element) -> tuple[InvoiceData, list[str]]:
        diagnostics: list[str] = []
        transaction = root.find("SupplyChainTradeTransaction")
        seller = root.find(
            "SupplyChainTradeTransaction/ApplicableHeaderTradeAgreement/SellerTradeParty"
        )
        settlement = root.find("SupplyChainTradeTransaction/ApplicableHeaderTradeSettlement")
        summation = (
            settlement.find("SpecifiedTradeSettlementHeaderMonetarySummation")
            if settlement is not None
            else None
        )

        line_one = _text(seller, "PostalTradeAddress/LineOne")
        city = _text(seller, "PostalTradeAddress/CityName")
        address = ", ".join(part for part in (line_one, city) if part) or None

        subtotal = safe_amount(
            _first_text(summation, "TaxBasisTotalAmount", "LineTotalAmount")
        )
        invoice = InvoiceData(
            vendor_name=_text(seller, "Name"),
            vendor_tax_id=_first_text(
                seller, "SpecifiedTaxRegistration/ID", "SpecifiedLegalOrganization/ID"
            ),
            vendor_address=address,
            vendor_iban=_text(
                settlement,
                "SpecifiedTradeSettlementPaymentMeans/PayeePartyCreditorFinancialAccount/IBANID",
            ),
            invoice_number=_text(root, "ExchangedDocument/ID"),
            issue_date=parse_date(_text(root, "ExchangedDocument/IssueDateTime/DateTimeString")),
            due_date=parse_date(
                _text(settlement, "SpecifiedTradePaymentTerms/DueDateDateTime/DateTimeString")
            ),
            currency=_text(settlement, "InvoiceCurrencyCode") or "EUR",
            subtotal=subtotal,
            tax_amount=safe_amount(_text(summation, "TaxTotalAmount")),
            total_amount=safe_amount(_text(summation, "GrandTotalAmount")),
            payment_reference=_text(settlement, "PaymentReference"),
        )

        items = transaction.findall("IncludedSupplyChainTradeLineItem") if transaction is not None else []
        for position, item in enumerate(items, start=1):
            amount = safe_amount(
                _text(
                    item,
                    "SpecifiedLineTradeSettlement/"
                    "SpecifiedTradeSettlementLineMonetarySummation/LineTotalAmount",
                )
            )
            if amount is None:
                diagnostics.append(f"line {position}: missing LineTotalAmount, skipped")
                continue
            invoice.lines.append(
                InvoiceLine(
                    description=_text(item, "SpecifiedTradeProduct/Name") or "",
                    amount=amount,
                    quantity=safe_amount(
                        _text(item, "SpecifiedLineTradeDelivery/BilledQuantity")
                    ),
                    unit_price=safe_amount(
                        _text(
                            item,
                            "SpecifiedLineTradeAgreement/NetPriceProductTradePrice/ChargeAmount",
                        )
                    ),
                    tax_rate=safe_amount(
                        _text(
                            item,
                            "SpecifiedLineTradeSettlement/ApplicableTradeTax/RateApplicablePercent",
                        )
                    ),
                )
            )

        if invoice.total_amount is None:
            diagnostics.append("no GrandTotalAmount found")
        return invoice, diagnostics
