"""
Import job orchestrator.

Drives each upload through:
    PENDING -> PROCESSING -> READY_FOR_REVIEW | FAILED
    READY_FOR_REVIEW -> CONFIRMED | REJECTED | PENDING (change type)
    FAILED -> PENDING (retry / change type)

Extraction runs on a worker pool, detached from upload. Every status change
is a compare-and-swap in the state store, so concurrent callers (two retries,
a late worker result, crash recovery) cannot both win.
"""

import json
import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Optional, Union

from ..backends.cache import ResponseCache
from ..backends.text_backend import OpenAICompatibleTextBackend
from ..backends.vision_backend import OllamaVisionBackend
from ..config import Config
from ..detection.detector import DetectionResult, detect, manual_override
from ..detection.formats import FormatFamily, format_family, resolve_extension
from ..errors import (
    DocumentUnreadableError,
    InvalidTransitionError,
    ProblemCategory,
    UnsupportedDocumentError,
    UploadValidationError,
)
from ..extractors.pdf_document import read_pdf_text
from ..extractors.router import StrategyRouter
from ..schemas.extraction import (
    DocumentType,
    ExtractionFailure,
    ExtractionOutcome,
    FailureKind,
)
from ..state_store.sqlite_store import (
    ImportJobRecord,
    JobStatus,
    RecordRef,
    StateStore,
)
from ..storage.object_store import (
    LocalObjectStore,
    ObjectNotFoundError,
    ObjectStore,
    build_object_key,
    compute_checksum,
)
from .committer import ConfirmationCommitter

logger = logging.getLogger(__name__)

# Progress shown to polling clients
PROGRESS = {
    JobStatus.PENDING: 10,
    JobStatus.PROCESSING: 50,
}


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


@dataclass
class UploadReceipt:
    """Returned by create(): the new job and what detection decided."""

    job_id: str
    status: JobStatus
    document_type: DocumentType
    confidence: float
    reason: str
    previous_job_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "status": self.status.value,
            "document_type": self.document_type.value,
            "confidence": self.confidence,
            "reason": self.reason,
            "previous_job_id": self.previous_job_id,
        }


@dataclass
class JobStatusView:
    """Poll response for one job."""

    job_id: str
    filename: str
    status: JobStatus
    document_type: DocumentType
    confidence: float
    progress: int
    attempt: int
    poll_after_seconds: Optional[float] = None
    result: Optional[dict[str, Any]] = None
    error_message: Optional[str] = None
    error_kind: Optional[str] = None
    diagnostics: list[str] = field(default_factory=list)
    problem: Optional[ProblemCategory] = None

    @property
    def is_settled(self) -> bool:
        return self.poll_after_seconds is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "filename": self.filename,
            "status": self.status.value,
            "document_type": self.document_type.value,
            "confidence": self.confidence,
            "progress": self.progress,
            "attempt": self.attempt,
            "poll_after_seconds": self.poll_after_seconds,
            "result": self.result,
            "error_message": self.error_message,
            "error_kind": self.error_kind,
            "diagnostics": list(self.diagnostics),
            "problem": self.problem.value if self.problem else None,
            "problem_message": self.problem.message if self.problem else None,
        }


class ImportJobService:
    """
    Service for the import job lifecycle.

    Owns two thread pools: one runs attempts (load bytes, pick strategy,
    record outcome), the other runs the strategy itself so that an attempt
    can be abandoned after attempt_timeout_seconds.
    """

    def __init__(
        self,
        store: StateStore,
        object_store: ObjectStore,
        router: StrategyRouter,
        config: Config,
    ):
        """
        Initialize the import job service.

        Args:
            store: State store for jobs and domain records
            object_store: Storage for uploaded bytes
            router: Format family -> extraction strategy table
            config: Application configuration
        """
        self.store = store
        self.objects = object_store
        self.router = router
        self.config = config
        self.committer = ConfirmationCommitter(
            store, Decimal(config.pipeline.arithmetic_tolerance)
        )

        workers = config.pipeline.max_workers
        self._workers = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="import-job")
        self._extractors = ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="import-extract"
        )
        self._closeables: list[Any] = []

    @classmethod
    def from_config(cls, config: Config) -> "ImportJobService":
        """Wire the production store, object store and backends."""
        text_backend = OpenAICompatibleTextBackend(
            config.text_backend, cache=ResponseCache(config.text_backend.cache_ttl_seconds)
        )
        vision_backend = OllamaVisionBackend(
            config.vision_backend, cache=ResponseCache(config.vision_backend.cache_ttl_seconds)
        )
        router = StrategyRouter(
            text_backend, vision_backend, Decimal(config.pipeline.arithmetic_tolerance)
        )
        service = cls(
            store=StateStore(config.state_db_path),
            object_store=LocalObjectStore(config.storage.root_dir),
            router=router,
            config=config,
        )
        service._closeables = [text_backend, vision_backend]
        return service

    # Upload

    def _validate_upload(
        self,
        content: bytes,
        filename: str,
        mime_type: Optional[str],
        type_override: Union[DocumentType, str, None],
    ) -> tuple[str, Optional[DocumentType]]:
        """Return the normalized extension and override, or raise UploadValidationError."""
        upload = self.config.upload
        if not content:
            raise UploadValidationError(f"File {filename!r} is empty")
        if len(content) > upload.max_bytes:
            raise UploadValidationError(
                f"File {filename!r} is {len(content)} bytes; the limit is {upload.max_bytes}"
            )
        extension = resolve_extension(filename, mime_type)
        if extension not in upload.allowed_extensions:
            allowed = ", ".join(upload.allowed_extensions)
            raise UploadValidationError(
                f"File type {extension or 'unknown'!r} is not allowed (allowed: {allowed})"
            )
        if not type_override:
            return extension, None
        try:
            return extension, DocumentType(type_override)
        except ValueError:
            allowed = ", ".join(t.value for t in DocumentType)
            raise UploadValidationError(
                f"Unknown document type {type_override!r} (allowed: {allowed})"
            )

    def _detect(
        self,
        content: bytes,
        filename: str,
        mime_type: Optional[str],
        type_override: Optional[DocumentType],
    ) -> DetectionResult:
        if type_override:
            return manual_override(type_override)

        sample = None
        if format_family(filename, mime_type) == FormatFamily.PDF:
            try:
                sample = read_pdf_text(content, max_pages=1)
            except DocumentUnreadableError as e:
                logger.debug("No text sample for %r: %s", filename, e)
        return detect(filename, mime_type, sample)

    def create(
        self,
        tenant_id: str,
        content: bytes,
        filename: str,
        mime_type: Optional[str] = None,
        type_override: Union[DocumentType, str, None] = None,
    ) -> UploadReceipt:
        """
        Accept an upload and create its import job.

        Returns immediately; extraction is started in the background when
        pipeline.auto_start is enabled.

        Raises:
            UploadValidationError: Empty, too large, disallowed file type or
                unknown type override
        """
        extension, override = self._validate_upload(content, filename, mime_type, type_override)

        checksum = compute_checksum(content)
        try:
            storage_key = build_object_key(tenant_id, checksum, extension)
        except ValueError as e:
            raise UploadValidationError(str(e))
        self.objects.put(storage_key, content)

        detection = self._detect(content, filename, mime_type, override)
        previous = self.store.find_job_by_checksum(tenant_id, checksum)

        job = self.store.create_job(
            tenant_id=tenant_id,
            filename=filename,
            mime_type=mime_type,
            file_size=len(content),
            storage_key=storage_key,
            content_checksum=checksum,
            document_type=detection.document_type,
            detection_confidence=detection.confidence,
            detection_reason=detection.reason,
        )
        logger.info(
            "Created import job %s for %r: %s @ %.2f (%s)",
            job.id,
            filename,
            detection.document_type.value,
            detection.confidence,
            detection.reason,
        )
        if previous:
            logger.info("Job %s has the same content as job %s", job.id, previous.id)

        if self.config.pipeline.auto_start:
            self._trigger(tenant_id, job.id)

        return UploadReceipt(
            job_id=job.id,
            status=job.status,
            document_type=detection.document_type,
            confidence=detection.confidence,
            reason=detection.reason,
            previous_job_id=previous.id if previous else None,
        )

    # Extraction attempts

    def start(self, tenant_id: str, job_id: str) -> "Future[Optional[JobStatus]]":
        """
        Move a PENDING job to PROCESSING and run one extraction attempt.

        Returns:
            Future resolving to the status the attempt recorded, or None if
            the result was discarded (job moved on meanwhile)

        Raises:
            JobNotFoundError: Unknown job for this tenant
            InvalidTransitionError: Job is not PENDING
        """
        self.store.require_job(tenant_id, job_id)
        attempt = self.store.begin_attempt(tenant_id, job_id)
        if attempt is None:
            current = self.store.require_job(tenant_id, job_id)
            raise InvalidTransitionError(job_id, "start", current.status.value)

        logger.info("Starting extraction of job %s (attempt %d)", job_id, attempt)
        return self._workers.submit(self._run_attempt, tenant_id, job_id, attempt)

    def _trigger(self, tenant_id: str, job_id: str) -> Optional["Future[Optional[JobStatus]]"]:
        """start(), tolerating a concurrent caller that started the job first."""
        try:
            return self.start(tenant_id, job_id)
        except InvalidTransitionError as e:
            logger.debug("Job %s not started: %s", job_id, e)
            return None

    def _run_attempt(self, tenant_id: str, job_id: str, attempt: int) -> Optional[JobStatus]:
        job = self.store.get_job(tenant_id, job_id)
        if job is None:
            logger.info("Job %s was deleted before extraction", job_id)
            return None

        outcome: ExtractionOutcome
        try:
            outcome = self._extract(job)
        except Exception as e:
            logger.exception("Extraction attempt %d of job %s crashed", attempt, job_id)
            outcome = ExtractionFailure(
                kind=FailureKind.BACKEND, message=f"Internal error: {type(e).__name__}: {e}"
            )
        return self._record_outcome(tenant_id, job_id, attempt, outcome)

    def _extract(self, job: ImportJobRecord) -> ExtractionOutcome:
        try:
            strategy = self.router.select(job.filename, job.mime_type)
        except UnsupportedDocumentError as e:
            return ExtractionFailure(kind=FailureKind.UNSUPPORTED, message=e.message)
        try:
            content = self.objects.get(job.storage_key)
        except ObjectNotFoundError:
            return ExtractionFailure(
                kind=FailureKind.UNREADABLE,
                message="Stored file is missing",
                source=strategy.name,
            )

        timeout = self.config.pipeline.attempt_timeout_seconds
        future = self._extractors.submit(strategy.extract, content, job.document_type)
        try:
            return future.result(timeout=timeout)
        except FutureTimeout:
            future.cancel()
            logger.warning("Job %s: %s extraction exceeded %gs", job.id, strategy.name, timeout)
            return ExtractionFailure(
                kind=FailureKind.TIMEOUT,
                message=f"Extraction did not finish within {timeout:g} seconds",
                source=strategy.name,
            )

    def _record_outcome(
        self, tenant_id: str, job_id: str, attempt: int, outcome: ExtractionOutcome
    ) -> Optional[JobStatus]:
        """Store the outcome if this attempt still owns the job."""
        if outcome.ok:
            status = JobStatus.READY_FOR_REVIEW
            fields = {
                "extracted_payload": json.dumps(outcome.to_dict()),
                "error_message": None,
                "error_kind": None,
                "error_details": None,
            }
        else:
            status = JobStatus.FAILED
            fields = {
                "extracted_payload": None,
                "error_message": outcome.message,
                "error_kind": outcome.kind,
                "error_details": outcome.diagnostics,
            }

        recorded = self.store.transition_job(
            tenant_id,
            job_id,
            [JobStatus.PROCESSING],
            status,
            expected_attempt=attempt,
            finished_at=_utc_now(),
            **fields,
        )
        if not recorded:
            logger.info("Discarding late result of job %s attempt %d", job_id, attempt)
            return None

        if outcome.ok:
            logger.info("Job %s ready for review (%s)", job_id, outcome.source)
        else:
            logger.info("Job %s failed (%s): %s", job_id, outcome.kind.value, outcome.message)
        return status

    # User actions

    def retry(self, tenant_id: str, job_id: str) -> Optional["Future[Optional[JobStatus]]"]:
        """
        Re-run extraction of a FAILED job.

        Raises:
            InvalidTransitionError: Job is not FAILED
        """
        job = self.store.require_job(tenant_id, job_id)
        reset = self.store.transition_job(
            tenant_id,
            job_id,
            [JobStatus.FAILED],
            JobStatus.PENDING,
            error_message=None,
            error_kind=None,
            error_details=None,
        )
        if not reset:
            current = self.store.require_job(tenant_id, job_id)
            raise InvalidTransitionError(job_id, "retry", current.status.value)

        logger.info("Retrying job %s (after attempt %d)", job_id, job.attempt)
        return self._trigger(tenant_id, job_id)

    def change_type(
        self, tenant_id: str, job_id: str, document_type: Union[DocumentType, str]
    ) -> Optional["Future[Optional[JobStatus]]"]:
        """
        Override the detected type and re-run extraction.

        Raises:
            InvalidTransitionError: Job is not READY_FOR_REVIEW or FAILED
        """
        document_type = DocumentType(document_type)
        override = manual_override(document_type)
        changed = self.store.transition_job(
            tenant_id,
            job_id,
            [JobStatus.READY_FOR_REVIEW, JobStatus.FAILED],
            JobStatus.PENDING,
            document_type=override.document_type,
            detection_confidence=override.confidence,
            detection_reason=override.reason,
            extracted_payload=None,
            error_message=None,
            error_kind=None,
            error_details=None,
        )
        if not changed:
            current = self.store.require_job(tenant_id, job_id)
            raise InvalidTransitionError(job_id, "change type of", current.status.value)

        logger.info("Job %s type changed to %s", job_id, document_type.value)
        return self._trigger(tenant_id, job_id)

    def confirm(
        self,
        tenant_id: str,
        job_id: str,
        edited_payload: Optional[dict[str, Any]] = None,
    ) -> list[RecordRef]:
        """
        Confirm a reviewed job and create its domain records.

        On any error the job stays READY_FOR_REVIEW.

        Raises:
            InvalidTransitionError: Job is not READY_FOR_REVIEW
            CommitValidationError: Edited payload is invalid
            DuplicateRecordError: Already imported
        """
        job = self.store.require_job(tenant_id, job_id)
        return self.committer.commit(job, edited_payload)

    def reject(self, tenant_id: str, job_id: str) -> None:
        """
        Discard a reviewed job. The stored file is kept.

        Raises:
            InvalidTransitionError: Job is not READY_FOR_REVIEW
        """
        rejected = self.store.transition_job(
            tenant_id,
            job_id,
            [JobStatus.READY_FOR_REVIEW],
            JobStatus.REJECTED,
            extracted_payload=None,
            finished_at=_utc_now(),
        )
        if not rejected:
            current = self.store.require_job(tenant_id, job_id)
            raise InvalidTransitionError(job_id, "reject", current.status.value)
        logger.info("Job %s rejected", job_id)

    def delete(self, tenant_id: str, job_id: str) -> bool:
        """
        Delete a job and, if no other job references it, its stored file.

        Raises:
            InvalidTransitionError: Job is CONFIRMED
        """
        job = self.store.require_job(tenant_id, job_id)
        if job.status == JobStatus.CONFIRMED:
            raise InvalidTransitionError(job_id, "delete", job.status.value)
        if not self.store.delete_job(tenant_id, job_id):
            return False
        if self.store.count_jobs_with_storage_key(job.storage_key) == 0:
            self.objects.delete(job.storage_key)
        logger.info("Deleted job %s", job_id)
        return True

    # Status / polling

    def _problem(self, job: ImportJobRecord) -> Optional[ProblemCategory]:
        if job.status == JobStatus.FAILED:
            return ProblemCategory.UNREADABLE
        if job.status == JobStatus.READY_FOR_REVIEW:
            result = job.result
            if result is not None and not result.arithmetic_valid:
                return ProblemCategory.INCONSISTENT
            previous = self.store.find_job_by_checksum(
                job.tenant_id, job.content_checksum, exclude_job_id=job.id
            )
            if previous is not None and previous.status == JobStatus.CONFIRMED:
                return ProblemCategory.DUPLICATE
        return None

    def get_status(self, tenant_id: str, job_id: str) -> JobStatusView:
        """Cheap, idempotent status lookup for polling clients."""
        job = self.store.require_job(tenant_id, job_id)
        result = job.result
        diagnostics = list(result.diagnostics) if result else list(job.error_details)
        return JobStatusView(
            job_id=job.id,
            filename=job.filename,
            status=job.status,
            document_type=job.document_type,
            confidence=job.detection_confidence,
            progress=PROGRESS.get(job.status, 100),
            attempt=job.attempt,
            poll_after_seconds=(
                self.config.pipeline.poll_interval_seconds if job.status.is_active else None
            ),
            result=result.to_dict() if result else None,
            error_message=job.error_message,
            error_kind=job.error_kind,
            diagnostics=diagnostics,
            problem=self._problem(job),
        )

    def wait_for_settled(
        self,
        tenant_id: str,
        job_id: str,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
    ) -> JobStatusView:
        """
        Poll until the job leaves PENDING/PROCESSING or the timeout expires.

        Returns the last status seen; check `is_settled` after a timeout.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            view = self.get_status(tenant_id, job_id)
            if view.is_settled:
                return view
            delay = poll_interval or view.poll_after_seconds
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return view
                delay = min(delay, remaining)
            time.sleep(delay)

    def list_jobs(
        self, tenant_id: str, status: Union[JobStatus, str, None] = None, limit: int = 100
    ) -> list[ImportJobRecord]:
        return self.store.list_jobs(
            tenant_id, JobStatus(status) if status else None, limit=limit
        )

    # Recovery

    def recover_stale(self, older_than: Optional[timedelta] = None) -> list[str]:
        """
        Fail PROCESSING jobs whose attempt started too long ago.

        Used after a crash: no worker will ever complete those attempts.
        A worker that does finish later finds the attempt already closed and
        its result is discarded.

        Returns:
            Ids of the recovered jobs
        """
        if older_than is None:
            older_than = timedelta(minutes=self.config.pipeline.stale_processing_minutes)
        cutoff = datetime.now(timezone.utc) - older_than
        cutoff_iso = cutoff.isoformat(timespec="microseconds").replace("+00:00", "Z")

        recovered = []
        for job in self.store.get_stale_processing_jobs(cutoff_iso):
            failed = self.store.transition_job(
                job.tenant_id,
                job.id,
                [JobStatus.PROCESSING],
                JobStatus.FAILED,
                expected_attempt=job.attempt,
                error_message="Extraction was interrupted; retry the import",
                error_kind=FailureKind.TIMEOUT,
                finished_at=_utc_now(),
            )
            if failed:
                logger.warning("Recovered stale job %s (attempt %d)", job.id, job.attempt)
                recovered.append(job.id)
        return recovered

    def resume_pending(self, limit: int = 100) -> list[str]:
        """Start PENDING jobs left behind (e.g. auto-start disabled or a restart)."""
        started = []
        for job in self.store.get_pending_jobs(limit=limit):
            if self._trigger(job.tenant_id, job.id) is not None:
                started.append(job.id)
        return started

    def shutdown(self, wait: bool = True) -> None:
        """Stop the worker pools and close backend clients."""
        self._workers.shutdown(wait=wait)
        self._extractors.shutdown(wait=wait, cancel_futures=not wait)
        for closeable in self._closeables:
            closeable.close()

    def __enter__(self) -> "ImportJobService":
        return self

    def __exit__(self, *args) -> None:
        self.shutdown()
