"""
Migration 001: Retry scheduling columns on upload.

Adds attempt_count and next_retry_at for scheduled re-queues of
overloaded-service failures, and error_code for the stable failure code
shown next to last_error.
"""

import sqlite3

VERSION = 1
NAME = "retry_scheduling"

COLUMNS = {
    "attempt_count": "INTEGER NOT NULL DEFAULT 0",
    "next_retry_at": "TEXT",
    "error_code": "TEXT",
}


def upgrade(conn: sqlite3.Connection) -> None:
    """Add retry columns to upload."""
    cursor = conn.execute("PRAGMA table_info(upload)")
    existing = {row[1] for row in cursor.fetchall()}

    for column, definition in COLUMNS.items():
        if column not in existing:
            conn.execute(f"ALTER TABLE upload ADD COLUMN {column} {definition}")
