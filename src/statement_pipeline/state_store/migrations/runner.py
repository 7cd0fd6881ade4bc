"""
Versioned schema migrations.

Files are named {version}_{name}.py (e.g. 001_retry_scheduling.py) and define:
- VERSION: int
- NAME: str
- upgrade(conn) -> None
"""

import importlib
import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

PACKAGE = "statement_pipeline.state_store.migrations"


@dataclass
class Migration:
    version: int
    name: str
    upgrade: Callable[[sqlite3.Connection], None]


def get_all_migrations() -> list[Migration]:
    """Load every migration module in this package, sorted by version."""
    found = []
    for py_file in sorted(Path(__file__).parent.glob("[0-9][0-9][0-9]_*.py")):
        module = importlib.import_module(f"{PACKAGE}.{py_file.stem}")
        found.append(
            Migration(
                version=module.VERSION,
                name=module.NAME,
                upgrade=module.upgrade,
            )
        )
    return sorted(found, key=lambda m: m.version)


class MigrationRunner:
    """Applies pending migrations and records them in a `migrations` table."""

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

    def applied_versions(self) -> set[int]:
        cursor = self.conn.execute("SELECT version FROM migrations")
        return {row[0] for row in cursor.fetchall()}

    def pending(self) -> list[Migration]:
        applied = self.applied_versions()
        return [m for m in get_all_migrations() if m.version not in applied]

    def status(self) -> list[tuple[int, str, bool]]:
        """(version, name, applied) for every known migration."""
        applied = self.applied_versions()
        return [(m.version, m.name, m.version in applied) for m in get_all_migrations()]

    def apply(self, migration: Migration) -> None:
        logger.info(f"Applying migration {migration.version:03d}_{migration.name}")
        try:
            migration.upgrade(self.conn)
            self.conn.execute(
                "INSERT INTO migrations (version, name, applied_at) VALUES (?, ?, ?)",
                (migration.version, migration.name, datetime.now(timezone.utc).isoformat()),
            )
            self.conn.commit()
        except Exception as e:
            self.conn.rollback()
            logger.error(f"Migration {migration.version} failed: {e}")
            raise

    def run_pending(self) -> list[int]:
        """Apply all pending migrations. Returns the versions applied."""
        applied = []
        for migration in self.pending():
            self.apply(migration)
            applied.append(migration.version)
        if applied:
            logger.info(f"Applied {len(applied)} migrations: {applied}")
        else:
            logger.debug("No pending migrations")
        return applied
