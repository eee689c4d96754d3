"""Tests for confirmation and duplicate prevention."""

import pytest

from conftest import (
    JPEG_BYTES,
    SAMPLE_CSV,
    SAMPLE_UBL_INVOICE,
    TENANT,
    camt_statement,
)
from document_import.errors import (
    CommitValidationError,
    DuplicateRecordError,
    InvalidTransitionError,
    ProblemCategory,
)
from document_import.state_store import JobStatus

EMPTY_COUNTS = {"bank_statements": 0, "bank_transactions": 0, "invoices": 0}


def ready_job(service, content, filename, **kwargs):
    receipt = service.create(TENANT, content, filename, **kwargs)
    view = service.wait_for_settled(TENANT, receipt.job_id, timeout=5)
    assert view.status == JobStatus.READY_FOR_REVIEW
    return view


class TestStatementConfirmation:
    """Confirming bank statements."""

    def test_confirm_csv_statement(self, make_service):
        service = make_service()
        view = ready_job(service, SAMPLE_CSV, "export.csv")

        refs = service.confirm(TENANT, view.job_id)

        assert [r.kind for r in refs] == ["BANK_STATEMENT"] + ["BANK_TRANSACTION"] * 3
        assert refs[0].natural_key.startswith("stmt:")
        assert service.get_status(TENANT, view.job_id).status == JobStatus.CONFIRMED
        assert service.store.count_records(TENANT) == {
            "bank_statements": 1,
            "bank_transactions": 3,
            "invoices": 0,
        }

    def test_same_statement_twice_is_duplicate(self, make_service):
        service = make_service()
        first = ready_job(service, camt_statement(), "izvod.xml")
        service.confirm(TENANT, first.job_id)
        counts = service.store.count_records(TENANT)

        second = ready_job(service, camt_statement(), "izvod-copy.xml")
        assert second.problem == ProblemCategory.DUPLICATE

        with pytest.raises(DuplicateRecordError) as exc_info:
            service.confirm(TENANT, second.job_id)

        assert exc_info.value.record_kind == "BANK_STATEMENT"
        assert service.get_status(TENANT, second.job_id).status == JobStatus.READY_FOR_REVIEW
        assert service.store.count_records(TENANT) == counts

    def test_overlapping_transactions_are_duplicates(self, make_service):
        service = make_service()
        first = ready_job(service, camt_statement(), "march.xml")
        service.confirm(TENANT, first.job_id)

        # Different file (different closing balance), same transactions
        second = ready_job(service, camt_statement(closing="100.00"), "march-v2.xml")
        with pytest.raises(DuplicateRecordError) as exc_info:
            service.confirm(TENANT, second.job_id)

        assert exc_info.value.record_kind == "BANK_TRANSACTION"
        assert service.store.count_records(TENANT)["bank_statements"] == 1

    def test_double_confirm(self, make_service):
        service = make_service()
        view = ready_job(service, camt_statement(), "izvod.xml")
        service.confirm(TENANT, view.job_id)

        with pytest.raises(InvalidTransitionError) as exc_info:
            service.confirm(TENANT, view.job_id)
        assert exc_info.value.current_status == "CONFIRMED"

    def test_identical_rows_both_kept(self, make_service):
        service = make_service()
        content = (
            b"date,description,amount\n"
            b"2024-03-01,Coffee,-2.50\n"
            b"2024-03-01,Coffee,-2.50\n"
        )
        view = ready_job(service, content, "coffee.csv")

        refs = service.confirm(TENANT, view.job_id)

        assert len(refs) == 3
        assert refs[2].natural_key == refs[1].natural_key + "#2"


class TestEditedPayload:
    """Confirming with reviewer edits."""

    def test_invalid_edit_rejected(self, make_service):
        service = make_service()
        view = ready_job(service, SAMPLE_CSV, "export.csv")
        edited = view.result["statement"]
        edited["transactions"][0]["amount"] = "-1"
        edited["transactions"][2]["date"] = ""

        with pytest.raises(CommitValidationError) as exc_info:
            service.confirm(TENANT, view.job_id, edited)

        assert exc_info.value.errors == [
            "transactions[0].amount: must not be negative",
            "transactions[2].date: is required",
        ]
        assert service.get_status(TENANT, view.job_id).status == JobStatus.READY_FOR_REVIEW
        assert service.store.count_records(TENANT) == EMPTY_COUNTS

    def test_valid_edit_committed(self, make_service):
        service = make_service()
        view = ready_job(service, SAMPLE_CSV, "export.csv")
        edited = view.result["statement"]
        edited["transactions"][1]["description"] = "Groceries"
        edited["transactions"][1]["amount"] = "45.00"

        refs = service.confirm(TENANT, view.job_id, edited)

        stored = service.store.get_transactions(TENANT, refs[0].record_id)
        assert stored[1]["description"] == "Groceries"
        assert stored[1]["amount"] == "45.00"
        confirmed = service.get_status(TENANT, view.job_id)
        assert "payload edited during review" in confirmed.diagnostics

    def test_whole_result_accepted_as_edit(self, make_service):
        service = make_service()
        view = ready_job(service, camt_statement(), "izvod.xml")

        refs = service.confirm(TENANT, view.job_id, view.result)

        assert len(refs) == 3

    def test_edit_revalidates_arithmetic(self, make_service):
        service = make_service()
        view = ready_job(service, camt_statement(closing="100.00"), "izvod.xml")
        edited = view.result["statement"]
        edited["closing_balance"] = "130.00"

        service.confirm(TENANT, view.job_id, edited)

        result = service.get_status(TENANT, view.job_id).result
        assert result["arithmetic_valid"] is True

    def test_non_text_transaction_fields_rejected(self, make_service):
        service = make_service()
        view = ready_job(service, SAMPLE_CSV, "export.csv")
        edited = view.result["statement"]
        edited["transactions"][0]["counterparty_name"] = {"name": "x"}
        edited["transactions"][1]["reference"] = 42
        edited["currency"] = 978

        with pytest.raises(CommitValidationError) as exc_info:
            service.confirm(TENANT, view.job_id, edited)

        assert exc_info.value.errors == [
            "currency: must be a string",
            "transactions[0].counterparty_name: must be a string",
            "transactions[1].reference: must be a string",
        ]
        assert service.get_status(TENANT, view.job_id).status == JobStatus.READY_FOR_REVIEW
        assert service.store.count_records(TENANT) == EMPTY_COUNTS

    def test_non_text_invoice_fields_rejected(self, make_service):
        service = make_service()
        view = ready_job(service, SAMPLE_UBL_INVOICE, "einvoice.xml", type_override="INVOICE")
        edited = view.result["invoice"]
        edited["vendor_name"] = 12345
        edited["invoice_number"] = 1001
        edited["lines"][0]["description"] = ["Printer", "paper"]

        with pytest.raises(CommitValidationError) as exc_info:
            service.confirm(TENANT, view.job_id, edited)

        assert exc_info.value.errors == [
            "vendor_name: must be a string",
            "invoice_number: must be a string",
            "lines[0].description: must be a string",
        ]
        assert service.store.count_records(TENANT) == EMPTY_COUNTS


class TestInvoiceConfirmation:
    """Confirming invoices and expenses."""

    def test_confirm_ubl_invoice(self, make_service):
        service = make_service()
        view = ready_job(service, SAMPLE_UBL_INVOICE, "einvoice.xml", type_override="INVOICE")

        (ref,) = service.confirm(TENANT, view.job_id)

        assert ref.kind == "INVOICE"
        invoice = service.store.get_invoice(TENANT, ref.record_id)
        assert invoice["invoice_number"] == "INV-2024-001"
        assert invoice["total_amount"] == "119.00"
        assert [line["description"] for line in invoice["lines"]] == ["Printer paper"]

    def test_same_invoice_twice(self, make_service):
        service = make_service()
        first = ready_job(service, SAMPLE_UBL_INVOICE, "a.xml", type_override="INVOICE")
        service.confirm(TENANT, first.job_id)
        second = ready_job(service, SAMPLE_UBL_INVOICE, "b.xml", type_override="INVOICE")

        with pytest.raises(DuplicateRecordError) as exc_info:
            service.confirm(TENANT, second.job_id)
        assert exc_info.value.record_kind == "INVOICE"

    def test_confirm_expense(self, make_service):
        service = make_service()
        view = ready_job(service, JPEG_BYTES, "receipt.jpg", type_override="EXPENSE")

        (ref,) = service.confirm(TENANT, view.job_id)

        assert ref.kind == "EXPENSE"
        assert service.store.get_invoice(TENANT, ref.record_id)["record_kind"] == "EXPENSE"

    def test_invoice_without_vendor_rejected(self, make_service):
        service = make_service()
        view = ready_job(service, SAMPLE_UBL_INVOICE, "einvoice.xml", type_override="INVOICE")
        edited = view.result["invoice"]
        edited["vendor_name"] = None
        edited["vendor_tax_id"] = None

        with pytest.raises(CommitValidationError):
            service.confirm(TENANT, view.job_id, edited)
