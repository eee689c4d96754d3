"""
Confirmation committer.

Turns a reviewed (optionally edited) extraction result into domain records:
- Re-validates the payload with the same structural rules as extraction
- Derives per-tenant natural keys for duplicate prevention
- Persists parent + children and confirms the job in one transaction
"""

import json
import logging
from decimal import Decimal
from typing import Any, Optional

from ..errors import CommitValidationError, InvalidTransitionError
from ..schemas.extraction import (
    DocumentType,
    ExtractionResult,
    InvoiceData,
    StatementData,
)
from ..schemas.natural_keys import (
    invoice_natural_key,
    statement_natural_key,
    transaction_natural_keys,
)
from ..schemas.validation import DEFAULT_TOLERANCE, apply_arithmetic_checks, validate_payload
from ..state_store.sqlite_store import ImportJobRecord, JobStatus, RecordRef, StateStore

logger = logging.getLogger(__name__)


class ConfirmationCommitter:
    """Persists confirmed extraction results as domain records."""

    def __init__(self, store: StateStore, tolerance: Decimal = DEFAULT_TOLERANCE):
        self.store = store
        self.tolerance = tolerance

    @staticmethod
    def _unwrap(document_type: DocumentType, payload: dict[str, Any]) -> Any:
        """Accept either the data dict or a whole ExtractionResult dict."""
        key = "statement" if document_type == DocumentType.BANK_STATEMENT else "invoice"
        if isinstance(payload, dict) and "document_type" in payload and key in payload:
            return payload[key]
        return payload

    def build_result(
        self, job: ImportJobRecord, edited_payload: Optional[dict[str, Any]] = None
    ) -> ExtractionResult:
        """
        Build the result that will be committed.

        Raises:
            CommitValidationError: Payload is structurally invalid
        """
        base = job.result
        if base is None:
            raise CommitValidationError(["payload: job has no extraction result"])
        if edited_payload is None:
            payload = base.data.to_dict() if base.data is not None else None
        else:
            payload = self._unwrap(job.document_type, edited_payload)

        errors = validate_payload(job.document_type, payload)
        if errors:
            raise CommitValidationError(errors)

        try:
            if job.document_type == DocumentType.BANK_STATEMENT:
                result = ExtractionResult(
                    document_type=job.document_type, statement=StatementData.from_dict(payload)
                )
            else:
                result = ExtractionResult(
                    document_type=job.document_type, invoice=InvoiceData.from_dict(payload)
                )
        except (ValueError, KeyError, TypeError) as e:
            raise CommitValidationError([f"payload: {e}"])

        result.source = base.source
        result.confidence = base.confidence
        result.diagnostics = list(base.diagnostics)
        if edited_payload is not None:
            result.diagnostics.append("payload edited during review")
        return apply_arithmetic_checks(result, self.tolerance)

    def commit(
        self,
        job: ImportJobRecord,
        edited_payload: Optional[dict[str, Any]] = None,
    ) -> list[RecordRef]:
        """
        Commit a READY_FOR_REVIEW job.

        Args:
            job: The job being confirmed (tenant is taken from the job)
            edited_payload: Reviewer-edited statement/invoice dict, or None to
                commit the extraction as is

        Returns:
            References to every created record

        Raises:
            InvalidTransitionError: Job is not READY_FOR_REVIEW
            CommitValidationError: Edited payload failed validation
            DuplicateRecordError: A natural key already exists for the tenant
        """
        if job.status != JobStatus.READY_FOR_REVIEW:
            raise InvalidTransitionError(job.id, "confirm", job.status.value)

        result = self.build_result(job, edited_payload)
        payload_json = json.dumps(result.to_dict())

        if result.statement is not None:
            refs = self.store.commit_statement(
                tenant_id=job.tenant_id,
                job_id=job.id,
                payload_json=payload_json,
                statement=result.statement,
                arithmetic_valid=result.arithmetic_valid,
                statement_key=statement_natural_key(job.content_checksum),
                transaction_keys=transaction_natural_keys(result.statement),
            )
        else:
            refs = self.store.commit_invoice(
                tenant_id=job.tenant_id,
                job_id=job.id,
                payload_json=payload_json,
                invoice=result.invoice,
                record_kind=job.document_type,
                arithmetic_valid=result.arithmetic_valid,
                natural_key=invoice_natural_key(result.invoice, job.document_type),
            )

        logger.info("Committed %d records for job %s", len(refs), job.id)
        return refs
