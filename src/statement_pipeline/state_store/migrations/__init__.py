"""
Database migrations for the SQLite state store.

Migrations are applied in version order and recorded in a migrations table.
"""

from .runner import MigrationRunner, get_all_migrations

__all__ = ["MigrationRunner", "get_all_migrations"]
