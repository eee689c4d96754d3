"""
Migration runner for versioned database schema changes.

Migration modules live next to this file and are named {version}_{name}.py,
e.g. 001_domain_records.py. Each one defines:
- VERSION: int
- NAME: str
- upgrade(conn: Connection) -> None
- downgrade(conn: Connection) -> None  (optional)
"""

import importlib
import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

MIGRATIONS_PACKAGE = "document_import.state_store.migrations"


@dataclass
class Migration:
    """One schema migration."""

    version: int
    name: str
    upgrade: Callable[[sqlite3.Connection], None]
    downgrade: Callable[[sqlite3.Connection], None] | None


def get_all_migrations() -> list[Migration]:
    """Load every migration module, sorted by version."""
    migrations = []
    for py_file in sorted(Path(__file__).parent.glob("[0-9][0-9][0-9]_*.py")):
        module = importlib.import_module(f"{MIGRATIONS_PACKAGE}.{py_file.stem}")
        migrations.append(
            Migration(
                version=module.VERSION,
                name=module.NAME,
                upgrade=module.upgrade,
                downgrade=getattr(module, "downgrade", None),
            )
        )
    return sorted(migrations, key=lambda m: m.version)


class MigrationRunner:
    """
    Applies pending migrations on a connection.

    A failed migration is rolled back and re-raised; the store must not start
    on a half-migrated schema.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS migrations (
                version INTEGER PRIMARY KEY,
                name TEXT NOT NULL,
                applied_at TEXT NOT NULL
            )
        """
        )
        self.conn.commit()

    def get_applied_versions(self) -> set[int]:
        cursor = self.conn.execute("SELECT version FROM migrations")
        return {row[0] for row in cursor.fetchall()}

    def get_current_version(self) -> int:
        """Highest applied version (0 for a fresh database)."""
        result = self.conn.execute("SELECT MAX(version) FROM migrations").fetchone()[0]
        return result if result is not None else 0

    def apply_migration(self, migration: Migration) -> None:
        logger.info("Applying migration %03d: %s", migration.version, migration.name)
        try:
            migration.upgrade(self.conn)
            applied_at = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
            self.conn.execute(
                "INSERT INTO migrations (version, name, applied_at) VALUES (?, ?, ?)",
                (migration.version, migration.name, applied_at),
            )
            self.conn.commit()
        except Exception as e:
            self.conn.rollback()
            logger.error("Migration %03d failed: %s", migration.version, e)
            raise

    def rollback_migration(self, migration: Migration) -> None:
        if migration.downgrade is None:
            raise NotImplementedError(
                f"Migration {migration.version} ({migration.name}) does not support rollback"
            )

        logger.info("Rolling back migration %03d: %s", migration.version, migration.name)
        try:
            migration.downgrade(self.conn)
            self.conn.execute("DELETE FROM migrations WHERE version = ?", (migration.version,))
            self.conn.commit()
        except Exception as e:
            self.conn.rollback()
            logger.error("Rollback of migration %03d failed: %s", migration.version, e)
            raise

    def run_pending(self) -> list[int]:
        """Apply all pending migrations; returns the versions applied."""
        applied = self.get_applied_versions()
        pending = [m for m in get_all_migrations() if m.version not in applied]

        for migration in pending:
            self.apply_migration(migration)

        if pending:
            logger.info("Applied %d migrations", len(pending))
        return [m.version for m in pending]

    def rollback_to(self, target_version: int) -> None:
        """Roll back applied migrations above target_version, newest first."""
        applied = self.get_applied_versions()
        for migration in reversed(get_all_migrations()):
            if migration.version > target_version and migration.version in applied:
                self.rollback_migration(migration)
