"""Tests for state store."""

import json
from decimal import Decimal

import pytest

from conftest import OTHER_TENANT, TENANT
from document_import.errors import DuplicateRecordError, InvalidTransitionError, JobNotFoundError
from document_import.schemas import (
    Direction,
    DocumentType,
    InvoiceData,
    InvoiceLine,
    StatementData,
    StatementTransaction,
)
from document_import.state_store import TRANSITIONS, JobStatus, StateStore
from document_import.state_store.migrations import MigrationRunner, get_all_migrations


def create_job(store, tenant=TENANT, checksum="abc123", document_type=DocumentType.BANK_STATEMENT):
    return store.create_job(
        tenant_id=tenant,
        filename="izvod.xml",
        mime_type="application/xml",
        file_size=1024,
        storage_key=f"{tenant}/2024/03/31/{checksum}.xml",
        content_checksum=checksum,
        document_type=document_type,
        detection_confidence=0.95,
        detection_reason="structured XML",
    )


def make_ready(store, job, payload="{}"):
    assert store.begin_attempt(job.tenant_id, job.id) == 1
    assert store.transition_job(
        job.tenant_id,
        job.id,
        [JobStatus.PROCESSING],
        JobStatus.READY_FOR_REVIEW,
        extracted_payload=payload,
    )


def make_statement() -> StatementData:
    return StatementData(
        opening_balance=Decimal("100.00"),
        closing_balance=Decimal("130.00"),
        account_iban="HR1210010051863000160",
        transactions=[
            StatementTransaction("2024-03-05", "In", Decimal("50.00"), Direction.INCOMING),
            StatementTransaction("2024-03-10", "Out", Decimal("20.00"), Direction.OUTGOING),
        ],
    )


class TestStateStore:
    """Tests for SQLite state store."""

    def test_init_creates_db(self, temp_db):
        """Initializing creates database file."""
        StateStore(temp_db)
        assert temp_db.exists()

    def test_init_creates_tables(self, store):
        """All required tables are created."""
        conn = store._get_connection()
        try:
            tables = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
            table_names = [t[0] for t in tables]

            assert "import_jobs" in table_names
            assert "bank_statements" in table_names
            assert "bank_transactions" in table_names
            assert "invoices" in table_names
            assert "invoice_lines" in table_names
        finally:
            conn.close()

    def test_reopen_is_idempotent(self, temp_db):
        store = StateStore(temp_db)
        job = create_job(store)

        reopened = StateStore(temp_db)
        assert reopened.get_job(TENANT, job.id) is not None


class TestMigrations:
    """Tests for the migration runner."""

    def test_all_migrations_applied(self, store):
        conn = store._get_connection()
        try:
            runner = MigrationRunner(conn)
            expected = {m.version for m in get_all_migrations()}
            assert runner.get_applied_versions() == expected
            assert runner.get_current_version() == max(expected)
            assert runner.run_pending() == []
        finally:
            conn.close()

    def test_rollback_to_zero(self, store):
        conn = store._get_connection()
        try:
            runner = MigrationRunner(conn)
            runner.rollback_to(0)

            tables = {t[0] for t in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
            assert "bank_statements" not in tables
            assert "import_jobs" in tables
            assert runner.get_current_version() == 0
        finally:
            conn.close()

    def test_migrations_skipped_when_disabled(self, temp_db):
        store = StateStore(temp_db, run_migrations=False)
        conn = store._get_connection()
        try:
            tables = {t[0] for t in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
            assert "import_jobs" in tables
            assert "invoices" not in tables
        finally:
            conn.close()


class TestJobOperations:
    """Tests for job CRUD and transitions."""

    def test_create_job(self, store):
        job = create_job(store)

        assert job.status == JobStatus.PENDING
        assert job.attempt == 0
        assert job.document_type == DocumentType.BANK_STATEMENT
        assert job.error_details == []
        assert job.result is None

    def test_jobs_are_tenant_scoped(self, store):
        job = create_job(store)

        assert store.get_job(OTHER_TENANT, job.id) is None
        with pytest.raises(JobNotFoundError):
            store.require_job(OTHER_TENANT, job.id)
        assert store.list_jobs(OTHER_TENANT) == []
        assert not store.transition_job(
            OTHER_TENANT, job.id, [JobStatus.PENDING], JobStatus.PROCESSING
        )

    def test_list_jobs_newest_first(self, store):
        first = create_job(store, checksum="one")
        second = create_job(store, checksum="two")

        jobs = store.list_jobs(TENANT)
        assert [j.id for j in jobs] == [second.id, first.id]
        assert store.list_jobs(TENANT, status=JobStatus.FAILED) == []
        assert len(store.list_jobs(TENANT, limit=1)) == 1

    def test_transition_is_compare_and_swap(self, store):
        job = create_job(store)

        assert store.begin_attempt(TENANT, job.id) == 1
        # Second caller loses the race
        assert store.begin_attempt(TENANT, job.id) is None

        job = store.get_job(TENANT, job.id)
        assert job.status == JobStatus.PROCESSING
        assert job.attempt == 1

    def test_begin_attempt_reports_its_own_attempt(self, store):
        job = create_job(store)
        stale = store.get_job(TENANT, job.id)

        # Another caller runs attempt 1 to failure and retries meanwhile
        assert store.begin_attempt(TENANT, job.id) == 1
        store.transition_job(TENANT, job.id, [JobStatus.PROCESSING], JobStatus.FAILED)
        store.transition_job(TENANT, job.id, [JobStatus.FAILED], JobStatus.PENDING)

        assert stale.attempt == 0
        assert store.begin_attempt(TENANT, job.id) == 2
        assert store.transition_job(
            TENANT, job.id, [JobStatus.PROCESSING], JobStatus.FAILED, expected_attempt=2
        )

    def test_expected_attempt_guard(self, store):
        job = create_job(store)
        store.begin_attempt(TENANT, job.id)

        assert not store.transition_job(
            TENANT, job.id, [JobStatus.PROCESSING], JobStatus.FAILED, expected_attempt=2
        )
        assert store.transition_job(
            TENANT,
            job.id,
            [JobStatus.PROCESSING],
            JobStatus.FAILED,
            expected_attempt=1,
            error_kind="TIMEOUT",
            error_message="too slow",
            error_details=["attempt 1"],
        )

        job = store.get_job(TENANT, job.id)
        assert job.status == JobStatus.FAILED
        assert job.error_kind == "TIMEOUT"
        assert job.error_details == ["attempt 1"]

    def test_illegal_transition_rejected(self, store):
        job = create_job(store)
        with pytest.raises(ValueError):
            store.transition_job(TENANT, job.id, [JobStatus.PENDING], JobStatus.CONFIRMED)
        with pytest.raises(ValueError):
            store.transition_job(TENANT, job.id, [JobStatus.CONFIRMED], JobStatus.PENDING)

    def test_unknown_field_rejected(self, store):
        job = create_job(store)
        with pytest.raises(ValueError):
            store.transition_job(
                TENANT, job.id, [JobStatus.PENDING], JobStatus.PROCESSING, tenant_id="evil"
            )

    def test_terminal_statuses_have_no_exits(self):
        for status in JobStatus:
            assert status.is_terminal == (TRANSITIONS[status] == frozenset())

    def test_enum_fields_stored_as_values(self, store):
        job = create_job(store)
        make_ready(store, job)

        store.transition_job(
            TENANT,
            job.id,
            [JobStatus.READY_FOR_REVIEW],
            JobStatus.PENDING,
            document_type=DocumentType.INVOICE,
            detection_confidence=1.0,
        )

        job = store.get_job(TENANT, job.id)
        assert job.document_type == DocumentType.INVOICE
        assert job.detection_confidence == 1.0

    def test_find_job_by_checksum(self, store):
        first = create_job(store, checksum="same")
        second = create_job(store, checksum="same")
        create_job(store, tenant=OTHER_TENANT, checksum="same")

        found = store.find_job_by_checksum(TENANT, "same", exclude_job_id=second.id)
        assert found.id == first.id
        assert store.find_job_by_checksum(TENANT, "other") is None

    def test_stale_and_pending_queries(self, store):
        pending = create_job(store, checksum="p")
        running = create_job(store, tenant=OTHER_TENANT, checksum="r")
        store.transition_job(
            OTHER_TENANT,
            running.id,
            [JobStatus.PENDING],
            JobStatus.PROCESSING,
            started_at="2024-01-01T00:00:00.000000Z",
        )

        stale = store.get_stale_processing_jobs("2024-01-02T00:00:00.000000Z")
        assert [j.id for j in stale] == [running.id]
        assert store.get_stale_processing_jobs("2023-12-31T00:00:00.000000Z") == []
        assert [j.id for j in store.get_pending_jobs()] == [pending.id]

    def test_delete_job(self, store):
        job = create_job(store)
        assert store.count_jobs_with_storage_key(job.storage_key) == 1

        assert store.delete_job(TENANT, job.id)
        assert store.get_job(TENANT, job.id) is None
        assert store.count_jobs_with_storage_key(job.storage_key) == 0

    def test_get_stats(self, store):
        create_job(store, checksum="a")
        job = create_job(store, checksum="b")
        make_ready(store, job)
        create_job(store, tenant=OTHER_TENANT, checksum="c")

        stats = store.get_stats(TENANT)
        assert stats["PENDING"] == 1
        assert stats["READY_FOR_REVIEW"] == 1
        assert stats["CONFIRMED"] == 0
        assert store.get_stats()["PENDING"] == 2


class TestRecordOperations:
    """Tests for confirmation and domain records."""

    def test_commit_statement(self, store):
        job = create_job(store)
        make_ready(store, job)

        refs = store.commit_statement(
            TENANT, job.id, '{"ok": true}', make_statement(), True, "stmt:abc123", ["tx:1", "tx:2"]
        )

        assert [r.kind for r in refs] == ["BANK_STATEMENT", "BANK_TRANSACTION", "BANK_TRANSACTION"]
        assert store.get_job(TENANT, job.id).status == JobStatus.CONFIRMED
        assert store.get_records_for_job(TENANT, job.id) == refs

        transactions = store.get_transactions(TENANT, refs[0].record_id)
        assert [t["amount"] for t in transactions] == ["50.00", "20.00"]
        assert transactions[1]["direction"] == "OUTGOING"
        assert store.count_records(TENANT) == {
            "bank_statements": 1,
            "bank_transactions": 2,
            "invoices": 0,
        }
        assert store.count_records(OTHER_TENANT)["bank_statements"] == 0

    def test_commit_requires_ready(self, store):
        job = create_job(store)

        with pytest.raises(InvalidTransitionError) as exc_info:
            store.commit_statement(TENANT, job.id, "{}", make_statement(), True, "stmt:x", ["tx:1", "tx:2"])

        assert exc_info.value.current_status == "PENDING"
        assert store.count_records(TENANT)["bank_statements"] == 0

    def test_commit_unknown_job(self, store):
        with pytest.raises(JobNotFoundError):
            store.commit_statement(TENANT, "missing", "{}", make_statement(), True, "stmt:x", ["a", "b"])

    def test_duplicate_rolls_back_everything(self, store):
        first = create_job(store, checksum="one")
        make_ready(store, first)
        store.commit_statement(TENANT, first.id, "{}", make_statement(), True, "stmt:one", ["tx:1", "tx:2"])

        second = create_job(store, checksum="two")
        make_ready(store, second)
        with pytest.raises(DuplicateRecordError) as exc_info:
            store.commit_statement(
                TENANT, second.id, "{}", make_statement(), True, "stmt:two", ["tx:3", "tx:2"]
            )

        assert exc_info.value.record_kind == "BANK_TRANSACTION"
        assert exc_info.value.natural_key == "tx:2"
        assert store.get_job(TENANT, second.id).status == JobStatus.READY_FOR_REVIEW
        assert store.count_records(TENANT) == {
            "bank_statements": 1,
            "bank_transactions": 2,
            "invoices": 0,
        }

    def test_same_key_other_tenant_allowed(self, store):
        for tenant in (TENANT, OTHER_TENANT):
            job = create_job(store, tenant=tenant)
            make_ready(store, job)
            store.commit_statement(tenant, job.id, "{}", make_statement(), True, "stmt:abc", ["tx:1", "tx:2"])

        assert store.count_records(OTHER_TENANT)["bank_transactions"] == 2

    def test_commit_invoice_with_lines(self, store):
        job = create_job(store, document_type=DocumentType.EXPENSE)
        make_ready(store, job)
        invoice = InvoiceData(
            vendor_name="Konzum d.d.",
            total_amount=Decimal("6.86"),
            lines=[
                InvoiceLine("Butter", Decimal("2.49")),
                InvoiceLine("Bread", Decimal("3.00"), quantity=Decimal("2")),
            ],
        )

        (ref,) = store.commit_invoice(
            TENANT, job.id, json.dumps({}), invoice, DocumentType.EXPENSE, True, "inv:1"
        )

        assert ref.kind == "EXPENSE"
        stored = store.get_invoice(TENANT, ref.record_id)
        assert stored["record_kind"] == "EXPENSE"
        assert stored["total_amount"] == "6.86"
        assert [line["description"] for line in stored["lines"]] == ["Butter", "Bread"]
        assert store.get_invoice(OTHER_TENANT, ref.record_id) is None

    def test_confirmed_job_not_deletable(self, store):
        job = create_job(store, document_type=DocumentType.INVOICE)
        make_ready(store, job)
        store.commit_invoice(
            TENANT,
            job.id,
            "{}",
            InvoiceData(vendor_name="A", total_amount=Decimal("1.00")),
            DocumentType.INVOICE,
            True,
            "inv:2",
        )

        assert not store.delete_job(TENANT, job.id)
