"""
State Store (SQLite-based).

Persistent tracking of:
- Import jobs and their lifecycle
- Confirmed domain records (statements, transactions, invoices, expenses)

Enforces per-tenant uniqueness of record natural keys.
"""

from .sqlite_store import (
    TRANSITIONS,
    ImportJobRecord,
    JobStatus,
    RecordRef,
    StateStore,
)

__all__ = [
    "TRANSITIONS",
    "ImportJobRecord",
    "JobStatus",
    "RecordRef",
    "StateStore",
]
