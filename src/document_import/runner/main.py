"""
CLI main entry point.
"""

import argparse
import json
import logging
import mimetypes
import sys
from datetime import timedelta
from pathlib import Path

from ..config import Config, create_default_config, load_config
from ..errors import (
    CommitValidationError,
    DuplicateRecordError,
    ImportPipelineError,
    UploadValidationError,
)
from ..schemas.extraction import DocumentType
from ..services.orchestrator import ImportJobService, JobStatusView
from ..state_store.sqlite_store import JobStatus

logger = logging.getLogger(__name__)

STATUS_ICONS = {
    JobStatus.PENDING: "⏳",
    JobStatus.PROCESSING: "⚙️ ",
    JobStatus.READY_FOR_REVIEW: "📝",
    JobStatus.FAILED: "❌",
    JobStatus.CONFIRMED: "✓",
    JobStatus.REJECTED: "🗑️ ",
}


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="document-import",
        description="Import bank statements, invoices and receipts for review",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--tenant",
        type=str,
        default="local",
        help="Tenant id (default: local)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("init-config", help="Write a default config file")

    # upload command
    upload_parser = subparsers.add_parser("upload", help="Import a document")
    upload_parser.add_argument("path", type=Path, help="File to import")
    upload_parser.add_argument(
        "--type",
        dest="document_type",
        choices=[t.value for t in DocumentType],
        help="Skip detection and import as this type",
    )
    upload_parser.add_argument(
        "--wait",
        type=float,
        default=None,
        metavar="SECONDS",
        help="Wait for extraction and print the result",
    )

    # status command
    status_parser = subparsers.add_parser("status", help="Show a job, or overall statistics")
    status_parser.add_argument("job_id", nargs="?", help="Job id (omit for statistics)")

    # list command
    list_parser = subparsers.add_parser("list", help="List import jobs")
    list_parser.add_argument(
        "--status",
        choices=[s.value for s in JobStatus],
        help="Only jobs in this status",
    )
    list_parser.add_argument(
        "--limit",
        type=int,
        default=50,
        help="Maximum jobs to list (default: 50)",
    )

    # confirm command
    confirm_parser = subparsers.add_parser("confirm", help="Confirm a reviewed job")
    confirm_parser.add_argument("job_id")
    confirm_parser.add_argument(
        "--payload",
        type=Path,
        help="JSON file with the edited statement/invoice data",
    )

    reject_parser = subparsers.add_parser("reject", help="Discard a reviewed job")
    reject_parser.add_argument("job_id")

    retry_parser = subparsers.add_parser("retry", help="Re-run extraction of a failed job")
    retry_parser.add_argument("job_id")

    change_parser = subparsers.add_parser("change-type", help="Re-extract as another type")
    change_parser.add_argument("job_id")
    change_parser.add_argument("document_type", choices=[t.value for t in DocumentType])

    # recover command
    recover_parser = subparsers.add_parser(
        "recover", help="Fail stale PROCESSING jobs and restart PENDING ones"
    )
    recover_parser.add_argument(
        "--older-than",
        type=int,
        default=None,
        metavar="MINUTES",
        help="Staleness threshold (default: pipeline.stale_processing_minutes)",
    )

    return parser


def print_status(view: JobStatusView) -> None:
    """Print a job status block."""
    icon = STATUS_ICONS.get(view.status, "•")
    print(f"{icon} [{view.job_id}] {view.filename}")
    print(f"   Status:     {view.status.value} ({view.progress}%)")
    print(f"   Type:       {view.document_type.value} @ {view.confidence:.2f}")
    print(f"   Attempt:    {view.attempt}")
    if view.problem:
        print(f"   Problem:    {view.problem.message}")
    if view.error_message:
        print(f"   Error:      {view.error_kind}: {view.error_message}")
    for line in view.diagnostics:
        print(f"   - {line}")
    if view.result:
        print(json.dumps(view.result, indent=2, ensure_ascii=False))


def cmd_init_config(config_path: Path) -> int:
    """Write a default config file."""
    if config_path.exists():
        print(f"⚠️  {config_path} already exists, not overwriting")
        return 1
    create_default_config(config_path)
    print(f"✓ Wrote {config_path}")
    return 0


def cmd_upload(
    service: ImportJobService,
    tenant_id: str,
    path: Path,
    document_type: str | None,
    wait: float | None,
) -> int:
    """Import a file."""
    if not path.is_file():
        print(f"❌ No such file: {path}")
        return 1

    mime_type, _ = mimetypes.guess_type(path.name)
    try:
        receipt = service.create(
            tenant_id,
            path.read_bytes(),
            path.name,
            mime_type=mime_type,
            type_override=document_type,
        )
    except UploadValidationError as e:
        print(f"❌ Upload rejected: {e}")
        return 1

    print(f"📄 Job {receipt.job_id}")
    print(f"   Detected: {receipt.document_type.value} @ {receipt.confidence:.2f} ({receipt.reason})")
    if receipt.previous_job_id:
        print(f"   ⚠️  Same file was uploaded before as job {receipt.previous_job_id}")

    if wait is None:
        return 0

    view = service.wait_for_settled(tenant_id, receipt.job_id, timeout=wait)
    print_status(view)
    if not view.is_settled:
        print("⚠️  Still processing, check again with 'status'")
        return 0
    return 1 if view.status == JobStatus.FAILED else 0


def cmd_status(service: ImportJobService, tenant_id: str, job_id: str | None) -> int:
    """Show one job, or job statistics."""
    if job_id:
        print_status(service.get_status(tenant_id, job_id))
        return 0

    stats = service.store.get_stats(tenant_id)
    records = service.store.count_records(tenant_id)

    print("\n📊 Import Status")
    print("=" * 40)
    for status in JobStatus:
        print(f"  {status.value:<20} {stats[status.value]}")
    print("-" * 40)
    print(f"  Bank statements:     {records['bank_statements']}")
    print(f"  Bank transactions:   {records['bank_transactions']}")
    print(f"  Invoices/expenses:   {records['invoices']}")
    print()
    return 0


def cmd_list(service: ImportJobService, tenant_id: str, status: str | None, limit: int) -> int:
    """List jobs."""
    jobs = service.list_jobs(tenant_id, status=status, limit=limit)
    for job in jobs:
        icon = STATUS_ICONS.get(job.status, "•")
        print(
            f"  {icon} [{job.id}] {job.filename}  "
            f"{job.status.value}  {job.document_type.value} @ {job.detection_confidence:.2f}"
        )
    print(f"\n✓ {len(jobs)} job(s)")
    return 0


def cmd_confirm(
    service: ImportJobService, tenant_id: str, job_id: str, payload_path: Path | None
) -> int:
    """Confirm a job."""
    edited = None
    if payload_path:
        try:
            edited = json.loads(payload_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            print(f"❌ Cannot read payload: {e}")
            return 1

    try:
        refs = service.confirm(tenant_id, job_id, edited)
    except CommitValidationError as e:
        print("❌ Payload is invalid:")
        for error in e.errors:
            print(f"   - {error}")
        return 1
    except DuplicateRecordError as e:
        print(f"❌ Already imported: {e.record_kind} record {e.conflicting_record_id}")
        return 1

    print(f"✓ Confirmed job {job_id}: {len(refs)} record(s) created")
    for ref in refs:
        print(f"   {ref.kind} #{ref.record_id}")
    return 0


def cmd_recover(service: ImportJobService, older_than: int | None) -> int:
    """Recover stale and pending jobs."""
    threshold = timedelta(minutes=older_than) if older_than is not None else None
    recovered = service.recover_stale(threshold)
    resumed = service.resume_pending()
    print(f"✓ Failed {len(recovered)} stale job(s), restarted {len(resumed)} pending job(s)")
    return 0


def run_command(service: ImportJobService, parsed: argparse.Namespace) -> int:
    """Dispatch a job command."""
    tenant = parsed.tenant
    if parsed.command == "upload":
        return cmd_upload(service, tenant, parsed.path, parsed.document_type, parsed.wait)
    elif parsed.command == "status":
        return cmd_status(service, tenant, parsed.job_id)
    elif parsed.command == "list":
        return cmd_list(service, tenant, parsed.status, parsed.limit)
    elif parsed.command == "confirm":
        return cmd_confirm(service, tenant, parsed.job_id, parsed.payload)
    elif parsed.command == "reject":
        service.reject(tenant, parsed.job_id)
        print(f"✓ Rejected job {parsed.job_id}")
        return 0
    elif parsed.command == "retry":
        service.retry(tenant, parsed.job_id)
        print(f"✓ Retrying job {parsed.job_id}")
        return 0
    elif parsed.command == "change-type":
        service.change_type(tenant, parsed.job_id, parsed.document_type)
        print(f"✓ Re-extracting job {parsed.job_id} as {parsed.document_type}")
        return 0
    elif parsed.command == "recover":
        return cmd_recover(service, parsed.older_than)
    return 1


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    if parsed.command == "init-config":
        return cmd_init_config(parsed.config)

    # Load config
    try:
        config: Config = load_config(parsed.config)
    except Exception as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    errors = config.validate()
    if errors:
        print("❌ Invalid configuration:")
        for error in errors:
            print(f"   - {error}")
        return 1

    service = ImportJobService.from_config(config)
    try:
        return run_command(service, parsed)
    except ImportPipelineError as e:
        print(f"❌ {e}")
        return 1
    finally:
        # Waits for extraction started by this command
        service.shutdown()


if __name__ == "__main__":
    sys.exit(main())
