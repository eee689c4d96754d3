"""Test fixtures and utilities."""

import io
import time
from pathlib import Path

import pytest
from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from document_import.config import Config, StorageConfig
from document_import.extractors.router import StrategyRouter
from document_import.services.orchestrator import ImportJobService
from document_import.state_store import StateStore
from document_import.storage import LocalObjectStore

TENANT = "tenant-a"
OTHER_TENANT = "tenant-b"


def camt_statement(closing: str = "130.00") -> bytes:
    """CAMT.053 statement: opening 100, +50 credit, -20 debit."""
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<Document xmlns="urn:iso:std:iso:20022:tech:xsd:camt.053.001.02">
  <BkToCstmrStmt>
    <GrpHdr>
      <MsgId>MSG-2024-03</MsgId>
      <CreDtTm>2024-03-31T18:00:00</CreDtTm>
    </GrpHdr>
    <Stmt>
      <Id>STMT-2024-03</Id>
      <CreDtTm>2024-03-31T18:00:00</CreDtTm>
      <Acct>
        <Id><IBAN>HR1210010051863000160</IBAN></Id>
        <Ccy>EUR</Ccy>
      </Acct>
      <Bal>
        <Tp><CdOrPrtry><Cd>OPBD</Cd></CdOrPrtry></Tp>
        <Amt Ccy="EUR">100.00</Amt>
        <CdtDbtInd>CRDT</CdtDbtInd>
        <Dt><Dt>2024-03-01</Dt></Dt>
      </Bal>
      <Bal>
        <Tp><CdOrPrtry><Cd>CLBD</Cd></CdOrPrtry></Tp>
        <Amt Ccy="EUR">{closing}</Amt>
        <CdtDbtInd>CRDT</CdtDbtInd>
        <Dt><Dt>2024-03-31</Dt></Dt>
      </Bal>
      <Ntry>
        <NtryRef>REF-001</NtryRef>
        <Amt Ccy="EUR">50.00</Amt>
        <CdtDbtInd>CRDT</CdtDbtInd>
        <BookgDt><Dt>2024-03-05</Dt></BookgDt>
        <ValDt><Dt>2024-03-05</Dt></ValDt>
        <NtryDtls>
          <TxDtls>
            <RltdPties>
              <Dbtr><Nm>Acme d.o.o.</Nm></Dbtr>
              <DbtrAcct><Id><IBAN>HR6623400091110651272</IBAN></Id></DbtrAcct>
            </RltdPties>
            <RmtInf><Ustrd>Invoice 42 payment</Ustrd></RmtInf>
          </TxDtls>
        </NtryDtls>
      </Ntry>
      <Ntry>
        <Amt Ccy="EUR">20.00</Amt>
        <CdtDbtInd>DBIT</CdtDbtInd>
        <AcctSvcrRef>SVC-002</AcctSvcrRef>
        <BookgDt><Dt>2024-03-10</Dt></BookgDt>
        <AddtlNtryInf>Card payment COFFEE BAR</AddtlNtryInf>
        <NtryDtls>
          <TxDtls>
            <Refs><EndToEndId>NOTPROVIDED</EndToEndId></Refs>
            <RltdPties>
              <Cdtr><Nm>Coffee Bar</Nm></Cdtr>
            </RltdPties>
          </TxDtls>
        </NtryDtls>
      </Ntry>
    </Stmt>
  </BkToCstmrStmt>
</Document>
""".encode("utf-8")


SAMPLE_UBL_INVOICE = b"""<?xml version="1.0" encoding="UTF-8"?>
<Invoice xmlns="urn:oasis:names:specification:ubl:schema:xsd:Invoice-2"
         xmlns:cac="urn:oasis:names:specification:ubl:schema:xsd:CommonAggregateComponents-2"
         xmlns:cbc="urn:oasis:names:specification:ubl:schema:xsd:CommonBasicComponents-2">
  <cbc:ID>INV-2024-001</cbc:ID>
  <cbc:IssueDate>2024-03-15</cbc:IssueDate>
  <cbc:DueDate>2024-04-14</cbc:DueDate>
  <cbc:DocumentCurrencyCode>EUR</cbc:DocumentCurrencyCode>
  <cac:AccountingSupplierParty>
    <cac:Party>
      <cac:PartyName><cbc:Name>Acme Supplies GmbH</cbc:Name></cac:PartyName>
      <cac:PostalAddress>
        <cbc:StreetName>Hauptstrasse 1</cbc:StreetName>
        <cbc:CityName>Berlin</cbc:CityName>
      </cac:PostalAddress>
      <cac:PartyTaxScheme>
        <cbc:CompanyID>DE123456789</cbc:CompanyID>
        <cac:TaxScheme><cbc:ID>VAT</cbc:ID></cac:TaxScheme>
      </cac:PartyTaxScheme>
    </cac:Party>
  </cac:AccountingSupplierParty>
  <cac:PaymentMeans>
    <cbc:PaymentMeansCode>58</cbc:PaymentMeansCode>
    <cbc:PaymentID>RF18539007547034</cbc:PaymentID>
    <cac:PayeeFinancialAccount><cbc:ID>DE89370400440532013000</cbc:ID></cac:PayeeFinancialAccount>
  </cac:PaymentMeans>
  <cac:TaxTotal>
    <cbc:TaxAmount currencyID="EUR">19.00</cbc:TaxAmount>
  </cac:TaxTotal>
  <cac:LegalMonetaryTotal>
    <cbc:LineExtensionAmount currencyID="EUR">100.00</cbc:LineExtensionAmount>
    <cbc:TaxExclusiveAmount currencyID="EUR">100.00</cbc:TaxExclusiveAmount>
    <cbc:TaxInclusiveAmount currencyID="EUR">119.00</cbc:TaxInclusiveAmount>
    <cbc:PayableAmount currencyID="EUR">119.00</cbc:PayableAmount>
  </cac:LegalMonetaryTotal>
  <cac:InvoiceLine>
    <cbc:ID>1</cbc:ID>
    <cbc:InvoicedQuantity unitCode="C62">2</cbc:InvoicedQuantity>
    <cbc:LineExtensionAmount currencyID="EUR">100.00</cbc:LineExtensionAmount>
    <cac:Item>
      <cbc:Name>Printer paper</cbc:Name>
      <cac:ClassifiedTaxCategory>
        <cbc:ID>S</cbc:ID>
        <cbc:Percent>19</cbc:Percent>
      </cac:ClassifiedTaxCategory>
    </cac:Item>
    <cac:Price><cbc:PriceAmount currencyID="EUR">50.00</cbc:PriceAmount></cac:Price>
  </cac:InvoiceLine>
</Invoice>
"""

SAMPLE_CII_INVOICE = b"""<?xml version="1.0" encoding="UTF-8"?>
<rsm:CrossIndustryInvoice
    xmlns:rsm="urn:un:unece:uncefact:data:standard:CrossIndustryInvoice:100"
    xmlns:ram="urn:un:unece:uncefact:data:standard:ReusableAggregateBusinessInformationEntity:100"
    xmlns:udt="urn:un:unece:uncefact:data:standard:UnqualifiedDataType:100">
  <rsm:ExchangedDocument>
    <ram:ID>CII-77</ram:ID>
    <ram:IssueDateTime><udt:DateTimeString format="102">20240315</udt:DateTimeString></ram:IssueDateTime>
  </rsm:ExchangedDocument>
  <rsm:SupplyChainTradeTransaction>
    <ram:IncludedSupplyChainTradeLineItem>
      <ram:SpecifiedTradeProduct><ram:Name>Consulting</ram:Name></ram:SpecifiedTradeProduct>
      <ram:SpecifiedLineTradeAgreement>
        <ram:NetPriceProductTradePrice><ram:ChargeAmount>150.00</ram:ChargeAmount></ram:NetPriceProductTradePrice>
      </ram:SpecifiedLineTradeAgreement>
      <ram:SpecifiedLineTradeDelivery>
        <ram:BilledQuantity unitCode="HUR">4</ram:BilledQuantity>
      </ram:SpecifiedLineTradeDelivery>
      <ram:SpecifiedLineTradeSettlement>
        <ram:ApplicableTradeTax><ram:RateApplicablePercent>25</ram:RateApplicablePercent></ram:ApplicableTradeTax>
        <ram:SpecifiedTradeSettlementLineMonetarySummation>
          <ram:LineTotalAmount>600.00</ram:LineTotalAmount>
        </ram:SpecifiedTradeSettlementLineMonetarySummation>
      </ram:SpecifiedLineTradeSettlement>
    </ram:IncludedSupplyChainTradeLineItem>
    <ram:ApplicableHeaderTradeAgreement>
      <ram:SellerTradeParty>
        <ram:Name>Savjetovanje d.o.o.</ram:Name>
        <ram:PostalTradeAddress>
          <ram:LineOne>Ilica 1</ram:LineOne>
          <ram:CityName>Zagreb</ram:CityName>
        </ram:PostalTradeAddress>
        <ram:SpecifiedTaxRegistration><ram:ID schemeID="VA">HR12345678901</ram:ID></ram:SpecifiedTaxRegistration>
      </ram:SellerTradeParty>
    </ram:ApplicableHeaderTradeAgreement>
    <ram:ApplicableHeaderTradeSettlement>
      <ram:PaymentReference>HR00 2024-77</ram:PaymentReference>
      <ram:InvoiceCurrencyCode>EUR</ram:InvoiceCurrencyCode>
      <ram:SpecifiedTradeSettlementPaymentMeans>
        <ram:PayeePartyCreditorFinancialAccount><ram:IBANID>HR1723600001101234565</ram:IBANID></ram:PayeePartyCreditorFinancialAccount>
      </ram:SpecifiedTradeSettlementPaymentMeans>
      <ram:SpecifiedTradePaymentTerms>
        <ram:DueDateDateTime><udt:DateTimeString format="102">20240414</udt:DateTimeString></ram:DueDateDateTime>
      </ram:SpecifiedTradePaymentTerms>
      <ram:SpecifiedTradeSettlementHeaderMonetarySummation>
        <ram:LineTotalAmount>600.00</ram:LineTotalAmount>
        <ram:TaxBasisTotalAmount>600.00</ram:TaxBasisTotalAmount>
        <ram:TaxTotalAmount currencyID="EUR">150.00</ram:TaxTotalAmount>
        <ram:GrandTotalAmount>750.00</ram:GrandTotalAmount>
      </ram:SpecifiedTradeSettlementHeaderMonetarySummation>
    </ram:ApplicableHeaderTradeSettlement>
  </rsm:SupplyChainTradeTransaction>
</rsm:CrossIndustryInvoice>
"""

# Three valid rows and one row with an unparseable date
SAMPLE_CSV = (
    b"date,description,amount\n"
    b"2024-03-01,Salary March,1500.00\n"
    b"2024-03-02,Grocery store,-45.20\n"
    b"not-a-date,Broken row,10.00\n"
    b"2024-03-03,Electricity bill,-80.00\n"
)

# Croatian bank export: semicolons, European amounts, CP1250
SAMPLE_CSV_HR = (
    "Izvod po računu HR1210010051863000160\n"
    "Datum;Opis plaćanja;Iznos;Poziv na broj\n"
    "01.03.2024.;Uplata plaće;1.500,00;HR00 123\n"
    "05.03.2024.;Račun za struju;80,00-;HR01 456\n"
).encode("cp1250")

CSV_WITHOUT_AMOUNT = b"date,description,note\n2024-03-01,Salary,hello\n"

STATEMENT_RESPONSE = {
    "openingBalance": 100.00,
    "closingBalance": 130.00,
    "currency": "EUR",
    "accountIban": "HR1210010051863000160",
    "transactions": [
        {
            "date": "2024-03-05",
            "description": "Invoice 42 payment",
            "amount": 50.00,
            "direction": "INCOMING",
            "payee": "Acme d.o.o.",
            "counterpartyIban": None,
            "reference": None,
        },
        {
            "date": "2024-03-10",
            "description": "Card payment",
            "amount": 20.00,
            "direction": "OUTGOING",
            "payee": "Coffee Bar",
            "counterpartyIban": None,
            "reference": None,
        },
    ],
}

INVOICE_RESPONSE = {
    "vendor": {"name": "Konzum d.d.", "oib": "29955634590", "address": "Zagreb"},
    "invoice": {"number": "R-2024-118", "issueDate": "2024-11-18", "dueDate": None},
    "lineItems": [
        {"description": "Butter 250g", "quantity": 1, "unitPrice": 2.49, "taxRate": 25, "amount": 2.49},
        {"description": "Bread", "quantity": 2, "unitPrice": 1.50, "taxRate": 25, "amount": 3.00},
    ],
    "subtotal": 5.49,
    "taxAmount": 1.37,
    "totalAmount": 6.86,
    "currency": "eur",
    "payment": {"iban": None, "model": "HR00", "reference": "118-2024"},
}

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64
JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 64


def make_pdf_pages(pages: list[list[str]]) -> bytes:
    """Multi-page PDF with a text layer, one list of lines per page."""
    buffer = io.BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=A4)
    for lines in pages:
        y = 800
        for line in lines:
            pdf.drawString(50, y, line)
            y -= 14
        pdf.showPage()
    pdf.save()
    return buffer.getvalue()


def make_pdf(lines: list[str]) -> bytes:
    """Single-page PDF with a text layer (no lines = blank page, like a scan)."""
    return make_pdf_pages([lines])


def statement_page(start, end, *transactions) -> dict:
    """Model response for one statement page; transactions are (amount, direction)."""
    return {
        "pageStartBalance": start,
        "pageEndBalance": end,
        "currency": "EUR",
        "transactions": [
            {
                "date": "2024-03-05",
                "description": f"Transaction {index}",
                "amount": amount,
                "direction": direction,
            }
            for index, (amount, direction) in enumerate(transactions, start=1)
        ],
    }


class FakeTextBackend:
    """In-process text backend returning canned responses in order.

    The last response is repeated once the list is exhausted. Exceptions in
    the list are raised instead of returned.
    """

    def __init__(self, responses=None, delay: float = 0.0):
        self.responses = list(responses or [STATEMENT_RESPONSE])
        self.delay = delay
        self.calls: list[tuple[str, str]] = []

    def _next(self):
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]

    def complete_json(self, system_prompt: str, user_message: str) -> dict:
        self.calls.append((system_prompt, user_message))
        if self.delay:
            time.sleep(self.delay)
        response = self._next()
        if isinstance(response, Exception):
            raise response
        return response


class FakeVisionBackend(FakeTextBackend):
    """In-process vision backend."""

    def __init__(self, responses=None, delay: float = 0.0):
        super().__init__(responses or [INVOICE_RESPONSE], delay)
        self.images: list[tuple[bytes, str]] = []

    def complete_json_with_image(
        self, system_prompt: str, instruction: str, image_bytes: bytes, mime_type: str
    ) -> dict:
        self.images.append((image_bytes, mime_type))
        return self.complete_json(system_prompt, instruction)


@pytest.fixture
def temp_db(tmp_path: Path) -> Path:
    """Temporary database path."""
    return tmp_path / "test_state.db"


@pytest.fixture
def store(temp_db: Path) -> StateStore:
    """Fresh state store."""
    return StateStore(temp_db)


@pytest.fixture
def object_store(tmp_path: Path) -> LocalObjectStore:
    return LocalObjectStore(tmp_path / "objects")


@pytest.fixture
def make_service(tmp_path: Path):
    """Factory for ImportJobService wired to fakes, with fast polling."""
    created: list[ImportJobService] = []

    def factory(
        text_backend=None,
        vision_backend=None,
        **pipeline_overrides,
    ) -> ImportJobService:
        config = Config(
            storage=StorageConfig(root_dir=tmp_path / "objects"),
            state_db_path=tmp_path / "state.db",
        )
        config.pipeline.attempt_timeout_seconds = 5.0
        config.pipeline.poll_interval_seconds = 0.01
        for key, value in pipeline_overrides.items():
            setattr(config.pipeline, key, value)

        router = StrategyRouter(
            text_backend or FakeTextBackend(), vision_backend or FakeVisionBackend()
        )
        service = ImportJobService(
            store=StateStore(config.state_db_path),
            object_store=LocalObjectStore(config.storage.root_dir),
            router=router,
            config=config,
        )
        created.append(service)
        return service

    yield factory

    for service in created:
        service.shutdown()
