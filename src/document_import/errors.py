"""
Exception hierarchy for the import pipeline.

- Upload/state errors are raised synchronously to the caller.
- Extraction errors are raised inside strategies and backends only; they are
  always normalized into an ExtractionFailure and the job's error fields.
- Commit errors are fatal to a single confirm call; the job stays reviewable.
"""

from enum import Enum
from typing import Optional


class ProblemCategory(str, Enum):
    """User-visible problem categories."""

    UNREADABLE = "UNREADABLE"  # could not read the document
    INCONSISTENT = "INCONSISTENT"  # read, but numbers don't add up
    DUPLICATE = "DUPLICATE"  # already imported

    @property
    def message(self) -> str:
        return PROBLEM_MESSAGES[self]


PROBLEM_MESSAGES = {
    ProblemCategory.UNREADABLE: "Could not read the document",
    ProblemCategory.INCONSISTENT: "Document read but internally inconsistent",
    ProblemCategory.DUPLICATE: "Already imported",
}


class ImportPipelineError(Exception):
    """Base exception for all import pipeline errors."""

    pass


class UploadValidationError(ImportPipelineError):
    """Uploaded content was rejected before a job was created."""

    pass


class JobNotFoundError(ImportPipelineError):
    """No job with this id exists for the tenant."""

    def __init__(self, job_id: str, tenant_id: str):
        self.job_id = job_id
        self.tenant_id = tenant_id
        super().__init__(f"Import job {job_id} not found for tenant {tenant_id}")


class InvalidTransitionError(ImportPipelineError):
    """Requested operation is not allowed in the job's current status."""

    def __init__(self, job_id: str, operation: str, current_status: str):
        self.job_id = job_id
        self.operation = operation
        self.current_status = current_status
        super().__init__(
            f"Cannot {operation} import job {job_id} while it is {current_status}"
        )


class ExtractionError(ImportPipelineError):
    """Base for errors raised while extracting a document."""

    kind = "BACKEND"

    def __init__(self, message: str, diagnostics: Optional[list[str]] = None):
        self.message = message
        self.diagnostics = list(diagnostics or [])
        super().__init__(message)


class ExtractionTimeout(ExtractionError):
    """An external call or the whole attempt exceeded its time budget."""

    kind = "TIMEOUT"


class ExtractionBackendError(ExtractionError):
    """The text/vision backend failed or returned something unusable."""

    kind = "BACKEND"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        diagnostics: Optional[list[str]] = None,
    ):
        self.status_code = status_code
        super().__init__(message, diagnostics)


class DocumentUnreadableError(ExtractionError):
    """The document could not be parsed at all."""

    kind = "UNREADABLE"


class UnsupportedDocumentError(ExtractionError):
    """The format family cannot produce the requested document type."""

    kind = "UNSUPPORTED"


class CommitError(ImportPipelineError):
    """Base for errors raised while committing a reviewed result."""

    pass


class CommitValidationError(CommitError):
    """Edited payload failed structural validation."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("Payload validation failed: " + "; ".join(errors))


class DuplicateRecordError(CommitError):
    """A record with the same natural key already exists for the tenant."""

    def __init__(self, record_kind: str, natural_key: str, conflicting_record_id: int):
        self.record_kind = record_kind
        self.natural_key = natural_key
        self.conflicting_record_id = conflicting_record_id
        super().__init__(
            f"{record_kind} already imported as record {conflicting_record_id}"
        )
