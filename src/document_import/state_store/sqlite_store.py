"""
SQLite-based state store implementation.

Tables:
- import_jobs: One row per uploaded file, tracking its lifecycle
- bank_statements / bank_transactions: Confirmed statement records
- invoices / invoice_lines: Confirmed invoice and expense records

Every read and write is scoped by tenant_id. Job status changes are
compare-and-swap updates (UPDATE ... WHERE status IN (...)), which makes
transitions on one job mutually exclusive across threads and processes.
"""

import json
import logging
import sqlite3
import uuid
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from ..errors import DuplicateRecordError, InvalidTransitionError, JobNotFoundError
from ..schemas.extraction import (
    DocumentType,
    ExtractionResult,
    InvoiceData,
    StatementData,
)

logger = logging.getLogger(__name__)


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


def _dec(value) -> Optional[str]:
    return None if value is None else str(value)


class JobStatus(str, Enum):
    """Status of an import job."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    READY_FOR_REVIEW = "READY_FOR_REVIEW"
    FAILED = "FAILED"
    CONFIRMED = "CONFIRMED"
    REJECTED = "REJECTED"

    @property
    def is_active(self) -> bool:
        """Still moving through the pipeline (clients should keep polling)."""
        return self in (JobStatus.PENDING, JobStatus.PROCESSING)

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.CONFIRMED, JobStatus.REJECTED)


# Allowed status transitions (the job state machine)
TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING}),
    JobStatus.PROCESSING: frozenset({JobStatus.READY_FOR_REVIEW, JobStatus.FAILED}),
    JobStatus.READY_FOR_REVIEW: frozenset(
        {JobStatus.CONFIRMED, JobStatus.REJECTED, JobStatus.PENDING}
    ),
    JobStatus.FAILED: frozenset({JobStatus.PENDING}),
    JobStatus.CONFIRMED: frozenset(),
    JobStatus.REJECTED: frozenset(),
}

# Columns transition_job may set besides status/updated_at
_UPDATABLE_JOB_FIELDS = {
    "document_type",
    "detection_confidence",
    "detection_reason",
    "extracted_payload",
    "error_message",
    "error_kind",
    "error_details",
    "started_at",
    "finished_at",
}


@dataclass
class ImportJobRecord:
    """Record of an import job."""

    id: str
    tenant_id: str
    filename: str
    mime_type: Optional[str]
    file_size: int
    storage_key: str
    content_checksum: str
    document_type: DocumentType
    detection_confidence: float
    detection_reason: Optional[str]
    status: JobStatus
    extracted_payload: Optional[str]  # ExtractionResult JSON
    error_message: Optional[str]
    error_kind: Optional[str]
    error_details: list[str]
    attempt: int
    created_at: str  # ISO timestamp
    updated_at: str
    started_at: Optional[str]
    finished_at: Optional[str]

    @property
    def result(self) -> Optional[ExtractionResult]:
        if not self.extracted_payload:
            return None
        return ExtractionResult.from_dict(json.loads(self.extracted_payload))

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ImportJobRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            tenant_id=row["tenant_id"],
            filename=row["filename"],
            mime_type=row["mime_type"],
            file_size=row["file_size"],
            storage_key=row["storage_key"],
            content_checksum=row["content_checksum"],
            document_type=DocumentType(row["document_type"]),
            detection_confidence=row["detection_confidence"],
            detection_reason=row["detection_reason"],
            status=JobStatus(row["status"]),
            extracted_payload=row["extracted_payload"],
            error_message=row["error_message"],
            error_kind=row["error_kind"],
            error_details=json.loads(row["error_details"]) if row["error_details"] else [],
            attempt=row["attempt"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            started_at=row["started_at"],
            finished_at=row["finished_at"],
        )


@dataclass
class RecordRef:
    """Reference to a domain record created by a confirmation."""

    kind: str  # BANK_STATEMENT, BANK_TRANSACTION, INVOICE, EXPENSE
    record_id: int
    natural_key: str

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "record_id": self.record_id, "natural_key": self.natural_key}


class StateStore:
    """
    SQLite-based state store for the import pipeline.

    Provides persistent tracking of:
    - Import jobs and their status history fields
    - Confirmed domain records (statements, transactions, invoices, expenses)

    Uses one short-lived connection per transaction; safe to share between
    worker threads.
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path | str, run_migrations: bool = True):
        """
        Initialize state store.

        Args:
            db_path: Path to SQLite database file
            run_migrations: Whether to run pending migrations (default True)
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        if run_migrations:
            self._run_migrations()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """
            )

            # Import jobs table
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS import_jobs (
                    id TEXT PRIMARY KEY,
                    tenant_id TEXT NOT NULL,
                    filename TEXT NOT NULL,
                    mime_type TEXT,
                    file_size INTEGER NOT NULL,
                    storage_key TEXT NOT NULL,
                    content_checksum TEXT NOT NULL,
                    document_type TEXT NOT NULL,
                    detection_confidence REAL NOT NULL,
                    detection_reason TEXT,
                    status TEXT NOT NULL,
                    extracted_payload TEXT,  -- ExtractionResult JSON
                    error_message TEXT,
                    error_kind TEXT,  -- TIMEOUT, BACKEND, UNREADABLE, UNSUPPORTED
                    error_details TEXT,  -- JSON array of diagnostics
                    attempt INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    started_at TEXT,
                    finished_at TEXT
                )
            """
            )

            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_import_jobs_tenant ON import_jobs(tenant_id, created_at)"
            )
            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,)
            )

    def _run_migrations(self) -> None:
        """Run pending database migrations."""
        from .migrations import MigrationRunner

        conn = self._get_connection()
        try:
            runner = MigrationRunner(conn)
            runner.run_pending()
        finally:
            conn.close()

    # Job methods

    def create_job(
        self,
        tenant_id: str,
        filename: str,
        mime_type: Optional[str],
        file_size: int,
        storage_key: str,
        content_checksum: str,
        document_type: DocumentType,
        detection_confidence: float,
        detection_reason: Optional[str] = None,
    ) -> ImportJobRecord:
        """Insert a new job in PENDING."""
        job_id = uuid.uuid4().hex
        now = _utc_now()

        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO import_jobs
                (id, tenant_id, filename, mime_type, file_size, storage_key, content_checksum,
                 document_type, detection_confidence, detection_reason, status, attempt,
                 created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?)
            """,
                (
                    job_id,
                    tenant_id,
                    filename,
                    mime_type,
                    file_size,
                    storage_key,
                    content_checksum,
                    document_type.value,
                    detection_confidence,
                    detection_reason,
                    JobStatus.PENDING.value,
                    now,
                    now,
                ),
            )
            row = conn.execute("SELECT * FROM import_jobs WHERE id = ?", (job_id,)).fetchone()
        return ImportJobRecord.from_row(row)

    def get_job(self, tenant_id: str, job_id: str) -> Optional[ImportJobRecord]:
        """Get a job by id, scoped to the tenant."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM import_jobs WHERE id = ? AND tenant_id = ?", (job_id, tenant_id)
            ).fetchone()
        return ImportJobRecord.from_row(row) if row else None

    def require_job(self, tenant_id: str, job_id: str) -> ImportJobRecord:
        """Get a job or raise JobNotFoundError."""
        job = self.get_job(tenant_id, job_id)
        if job is None:
            raise JobNotFoundError(job_id, tenant_id)
        return job

    def list_jobs(
        self,
        tenant_id: str,
        status: Optional[JobStatus] = None,
        limit: int = 100,
    ) -> list[ImportJobRecord]:
        """List a tenant's jobs, newest first."""
        query = "SELECT * FROM import_jobs WHERE tenant_id = ?"
        params: list[Any] = [tenant_id]
        if status is not None:
            query += " AND status = ?"
            params.append(status.value)
        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)

        with self._transaction() as conn:
            rows = conn.execute(query, params).fetchall()
        return [ImportJobRecord.from_row(row) for row in rows]

    def find_job_by_checksum(
        self, tenant_id: str, content_checksum: str, exclude_job_id: Optional[str] = None
    ) -> Optional[ImportJobRecord]:
        """Most recent job of the tenant with the same content checksum."""
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT * FROM import_jobs
                WHERE tenant_id = ? AND content_checksum = ? AND id != ?
                ORDER BY created_at DESC LIMIT 1
            """,
                (tenant_id, content_checksum, exclude_job_id or ""),
            ).fetchone()
        return ImportJobRecord.from_row(row) if row else None

    def transition_job(
        self,
        tenant_id: str,
        job_id: str,
        from_statuses: Iterable[JobStatus],
        to_status: JobStatus,
        expected_attempt: Optional[int] = None,
        **fields: Any,
    ) -> bool:
        """
        Compare-and-swap a job's status.

        The update only applies if the job is currently in one of
        `from_statuses` (and, if given, at `expected_attempt`). Callers that
        lose the race get False and must re-read the job.

        Args:
            tenant_id: Owning tenant
            job_id: Job id
            from_statuses: Statuses the job must currently be in
            to_status: New status
            expected_attempt: Only update this attempt (guards late results)
            **fields: Extra columns to set (see _UPDATABLE_JOB_FIELDS)

        Returns:
            True if this call performed the transition
        """
        from_statuses = list(from_statuses)
        for status in from_statuses:
            if to_status not in TRANSITIONS[status]:
                raise ValueError(f"Illegal transition {status.value} -> {to_status.value}")
        unknown = set(fields) - _UPDATABLE_JOB_FIELDS
        if unknown:
            raise ValueError(f"Unknown job fields: {sorted(unknown)}")

        assignments = ["status = ?", "updated_at = ?"]
        params: list[Any] = [to_status.value, _utc_now()]
        for column, value in fields.items():
            assignments.append(f"{column} = ?")
            if isinstance(value, Enum):
                value = value.value
            elif column == "error_details" and value is not None:
                value = json.dumps(value)
            params.append(value)

        placeholders = ", ".join("?" for _ in from_statuses)
        query = (
            f"UPDATE import_jobs SET {', '.join(assignments)} "
            f"WHERE id = ? AND tenant_id = ? AND status IN ({placeholders})"
        )
        params.extend([job_id, tenant_id])
        params.extend(status.value for status in from_statuses)
        if expected_attempt is not None:
            query += " AND attempt = ?"
            params.append(expected_attempt)

        with self._transaction() as conn:
            cursor = conn.execute(query, params)
            changed = cursor.rowcount == 1

        if changed:
            logger.debug("Job %s -> %s", job_id, to_status.value)
        return changed

    def begin_attempt(self, tenant_id: str, job_id: str) -> Optional[int]:
        """
        Move a PENDING job to PROCESSING and open a new attempt.

        The attempt number is read back inside the same transaction, so it is
        the one this call created even if other callers retried the job since
        it was last read.

        Returns:
            The new attempt number, or None if the job was not PENDING
        """
        now = _utc_now()
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE import_jobs
                SET status = ?, attempt = attempt + 1, updated_at = ?,
                    started_at = ?, finished_at = NULL
                WHERE id = ? AND tenant_id = ? AND status = ?
                """,
                (
                    JobStatus.PROCESSING.value,
                    now,
                    now,
                    job_id,
                    tenant_id,
                    JobStatus.PENDING.value,
                ),
            )
            if cursor.rowcount != 1:
                return None
            row = conn.execute(
                "SELECT attempt FROM import_jobs WHERE id = ?", (job_id,)
            ).fetchone()

        logger.debug("Job %s -> PROCESSING (attempt %d)", job_id, row["attempt"])
        return row["attempt"]

    def get_stale_processing_jobs(self, started_before: str) -> list[ImportJobRecord]:
        """PROCESSING jobs (any tenant) whose attempt started before the cutoff."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM import_jobs
                WHERE status = ? AND (started_at IS NULL OR started_at < ?)
                ORDER BY started_at
            """,
                (JobStatus.PROCESSING.value, started_before),
            ).fetchall()
        return [ImportJobRecord.from_row(row) for row in rows]

    def get_pending_jobs(self, limit: int = 100) -> list[ImportJobRecord]:
        """PENDING jobs (any tenant), oldest first."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM import_jobs WHERE status = ? ORDER BY created_at LIMIT ?",
                (JobStatus.PENDING.value, limit),
            ).fetchall()
        return [ImportJobRecord.from_row(row) for row in rows]

    def count_jobs_with_storage_key(self, storage_key: str) -> int:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM import_jobs WHERE storage_key = ?", (storage_key,)
            ).fetchone()
        return row[0]

    def delete_job(self, tenant_id: str, job_id: str) -> bool:
        """Delete a job unless it is CONFIRMED (confirmed records keep their job)."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM import_jobs WHERE id = ? AND tenant_id = ? AND status != ?",
                (job_id, tenant_id, JobStatus.CONFIRMED.value),
            )
            return cursor.rowcount == 1

    def get_stats(self, tenant_id: Optional[str] = None) -> dict[str, int]:
        """Job counts per status."""
        query = "SELECT status, COUNT(*) AS n FROM import_jobs"
        params: tuple = ()
        if tenant_id is not None:
            query += " WHERE tenant_id = ?"
            params = (tenant_id,)
        query += " GROUP BY status"

        stats = {status.value: 0 for status in JobStatus}
        with self._transaction() as conn:
            for row in conn.execute(query, params).fetchall():
                stats[row["status"]] = row["n"]
        return stats

    # Confirmation (domain records)

    def _confirm_job(
        self, conn: sqlite3.Connection, tenant_id: str, job_id: str, payload_json: str
    ) -> None:
        """CAS READY_FOR_REVIEW -> CONFIRMED inside an open transaction."""
        now = _utc_now()
        cursor = conn.execute(
            """
            UPDATE import_jobs
            SET status = ?, extracted_payload = ?, updated_at = ?, finished_at = ?
            WHERE id = ? AND tenant_id = ? AND status = ?
        """,
            (
                JobStatus.CONFIRMED.value,
                payload_json,
                now,
                now,
                job_id,
                tenant_id,
                JobStatus.READY_FOR_REVIEW.value,
            ),
        )
        if cursor.rowcount == 1:
            return

        row = conn.execute(
            "SELECT status FROM import_jobs WHERE id = ? AND tenant_id = ?", (job_id, tenant_id)
        ).fetchone()
        if row is None:
            raise JobNotFoundError(job_id, tenant_id)
        raise InvalidTransitionError(job_id, "confirm", row["status"])

    @staticmethod
    def _existing_record_id(
        conn: sqlite3.Connection, table: str, tenant_id: str, natural_key: str
    ) -> Optional[int]:
        row = conn.execute(
            f"SELECT id FROM {table} WHERE tenant_id = ? AND natural_key = ?",
            (tenant_id, natural_key),
        ).fetchone()
        return row["id"] if row else None

    def _insert_unique(
        self,
        conn: sqlite3.Connection,
        table: str,
        kind: str,
        tenant_id: str,
        natural_key: str,
        columns: dict[str, Any],
    ) -> int:
        """Insert a record, mapping a natural-key conflict to DuplicateRecordError."""
        existing = self._existing_record_id(conn, table, tenant_id, natural_key)
        if existing is not None:
            raise DuplicateRecordError(kind, natural_key, existing)

        values = {"tenant_id": tenant_id, "natural_key": natural_key, **columns}
        names = ", ".join(values)
        placeholders = ", ".join("?" for _ in values)
        try:
            cursor = conn.execute(
                f"INSERT INTO {table} ({names}) VALUES ({placeholders})", list(values.values())
            )
        except sqlite3.IntegrityError:
            # Lost a race with a concurrent confirm
            existing = self._existing_record_id(conn, table, tenant_id, natural_key)
            if existing is None:
                raise
            raise DuplicateRecordError(kind, natural_key, existing)
        return cursor.lastrowid

    def commit_statement(
        self,
        tenant_id: str,
        job_id: str,
        payload_json: str,
        statement: StatementData,
        arithmetic_valid: bool,
        statement_key: str,
        transaction_keys: list[str],
    ) -> list[RecordRef]:
        """
        Atomically confirm a job and persist its statement + transactions.

        Raises:
            InvalidTransitionError: Job is not READY_FOR_REVIEW
            DuplicateRecordError: A natural key already exists for the tenant
        """
        if len(transaction_keys) != len(statement.transactions):
            raise ValueError("one natural key per transaction is required")

        now = _utc_now()
        refs: list[RecordRef] = []
        with self._transaction() as conn:
            self._confirm_job(conn, tenant_id, job_id, payload_json)

            statement_id = self._insert_unique(
                conn,
                "bank_statements",
                "BANK_STATEMENT",
                tenant_id,
                statement_key,
                {
                    "import_job_id": job_id,
                    "account_iban": statement.account_iban,
                    "currency": statement.currency,
                    "opening_balance": _dec(statement.opening_balance),
                    "closing_balance": _dec(statement.closing_balance),
                    "statement_date": statement.statement_date,
                    "arithmetic_valid": int(arithmetic_valid),
                    "transaction_count": len(statement.transactions),
                    "created_at": now,
                },
            )
            refs.append(RecordRef("BANK_STATEMENT", statement_id, statement_key))

            for tx, key in zip(statement.transactions, transaction_keys):
                tx_id = self._insert_unique(
                    conn,
                    "bank_transactions",
                    "BANK_TRANSACTION",
                    tenant_id,
                    key,
                    {
                        "statement_id": statement_id,
                        "import_job_id": job_id,
                        "booking_date": tx.date,
                        "description": tx.description,
                        "amount": _dec(tx.amount),
                        "direction": tx.direction.value,
                        "counterparty_name": tx.counterparty_name,
                        "counterparty_iban": tx.counterparty_iban,
                        "reference": tx.reference,
                        "currency": statement.currency,
                        "created_at": now,
                    },
                )
                refs.append(RecordRef("BANK_TRANSACTION", tx_id, key))

        logger.info(
            "Confirmed job %s: statement %d with %d transactions",
            job_id,
            statement_id,
            len(transaction_keys),
        )
        return refs

    def commit_invoice(
        self,
        tenant_id: str,
        job_id: str,
        payload_json: str,
        invoice: InvoiceData,
        record_kind: DocumentType,
        arithmetic_valid: bool,
        natural_key: str,
    ) -> list[RecordRef]:
        """
        Atomically confirm a job and persist its invoice/expense + lines.

        Raises:
            InvalidTransitionError: Job is not READY_FOR_REVIEW
            DuplicateRecordError: The natural key already exists for the tenant
        """
        now = _utc_now()
        with self._transaction() as conn:
            self._confirm_job(conn, tenant_id, job_id, payload_json)

            invoice_id = self._insert_unique(
                conn,
                "invoices",
                record_kind.value,
                tenant_id,
                natural_key,
                {
                    "import_job_id": job_id,
                    "record_kind": record_kind.value,
                    "vendor_name": invoice.vendor_name,
                    "vendor_tax_id": invoice.vendor_tax_id,
                    "vendor_address": invoice.vendor_address,
                    "vendor_iban": invoice.vendor_iban,
                    "invoice_number": invoice.invoice_number,
                    "issue_date": invoice.issue_date,
                    "due_date": invoice.due_date,
                    "currency": invoice.currency,
                    "subtotal": _dec(invoice.subtotal),
                    "tax_amount": _dec(invoice.tax_amount),
                    "total_amount": _dec(invoice.total_amount),
                    "payment_reference": invoice.payment_reference,
                    "arithmetic_valid": int(arithmetic_valid),
                    "created_at": now,
                },
            )

            for position, line in enumerate(invoice.lines, start=1):
                conn.execute(
                    """
                    INSERT INTO invoice_lines
                    (invoice_id, position, description, quantity, unit_price, tax_rate, amount)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                    (
                        invoice_id,
                        position,
                        line.description,
                        _dec(line.quantity),
                        _dec(line.unit_price),
                        _dec(line.tax_rate),
                        _dec(line.amount),
                    ),
                )

        logger.info("Confirmed job %s: %s %d", job_id, record_kind.value, invoice_id)
        return [RecordRef(record_kind.value, invoice_id, natural_key)]

    def get_records_for_job(self, tenant_id: str, job_id: str) -> list[RecordRef]:
        """All domain records created from a job."""
        refs: list[RecordRef] = []
        with self._transaction() as conn:
            for row in conn.execute(
                "SELECT id, natural_key FROM bank_statements WHERE tenant_id = ? AND import_job_id = ?",
                (tenant_id, job_id),
            ):
                refs.append(RecordRef("BANK_STATEMENT", row["id"], row["natural_key"]))
            for row in conn.execute(
                "SELECT id, natural_key FROM bank_transactions "
                "WHERE tenant_id = ? AND import_job_id = ? ORDER BY id",
                (tenant_id, job_id),
            ):
                refs.append(RecordRef("BANK_TRANSACTION", row["id"], row["natural_key"]))
            for row in conn.execute(
                "SELECT id, record_kind, natural_key FROM invoices "
                "WHERE tenant_id = ? AND import_job_id = ?",
                (tenant_id, job_id),
            ):
                refs.append(RecordRef(row["record_kind"], row["id"], row["natural_key"]))
        return refs

    def get_transactions(self, tenant_id: str, statement_id: int) -> list[dict[str, Any]]:
        """Transactions of a confirmed statement."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM bank_transactions WHERE tenant_id = ? AND statement_id = ? ORDER BY id",
                (tenant_id, statement_id),
            ).fetchall()
        return [dict(row) for row in rows]

    def get_invoice(self, tenant_id: str, invoice_id: int) -> Optional[dict[str, Any]]:
        """A confirmed invoice/expense with its lines."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM invoices WHERE tenant_id = ? AND id = ?", (tenant_id, invoice_id)
            ).fetchone()
            if not row:
                return None
            lines = conn.execute(
                "SELECT * FROM invoice_lines WHERE invoice_id = ? ORDER BY position",
                (invoice_id,),
            ).fetchall()
        result = dict(row)
        result["lines"] = [dict(line) for line in lines]
        return result

    def count_records(self, tenant_id: str) -> dict[str, int]:
        """Number of domain records per table for a tenant."""
        counts = {}
        with self._transaction() as conn:
            for table in ("bank_statements", "bank_transactions", "invoices"):
                row = conn.execute(
                    f"SELECT COUNT(*) FROM {table} WHERE tenant_id = ?", (tenant_id,)
                ).fetchone()
                counts[table] = row[0]
        return counts
