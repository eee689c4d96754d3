"""
Versioned schema migrations for the import state store.

Applied in version order on StateStore start-up and recorded in the
`migrations` table.
"""

from .runner import Migration, MigrationRunner, get_all_migrations

__all__ = ["Migration", "MigrationRunner", "get_all_migrations"]
