"""Import pipeline services: job orchestration and confirmation."""

from .committer import ConfirmationCommitter
from .orchestrator import ImportJobService, JobStatusView, UploadReceipt

__all__ = ["ConfirmationCommitter", "ImportJobService", "JobStatusView", "UploadReceipt"]
