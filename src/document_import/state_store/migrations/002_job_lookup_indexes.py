"""
Migration 002: Job lookup indexes.

Duplicate-upload hints look jobs up by checksum; recovery scans by status.
"""

import sqlite3

VERSION = 2
NAME = "job_lookup_indexes"


def upgrade(conn: sqlite3.Connection) -> None:
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_import_jobs_checksum "
        "ON import_jobs(tenant_id, content_checksum)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_import_jobs_status ON import_jobs(status, started_at)"
    )


def downgrade(conn: sqlite3.Connection) -> None:
    conn.execute("DROP INDEX IF EXISTS idx_import_jobs_checksum")
    conn.execute("DROP INDEX IF EXISTS idx_import_jobs_status")
