"""
Migration 002: Indexes for the job sweeper.

The sweeper scans queued jobs by status and processing uploads by their
heartbeat timestamp.
"""

import sqlite3

VERSION = 2
NAME = "job_queue_indexes"


def upgrade(conn: sqlite3.Connection) -> None:
    conn.execute("CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(status, created_at)")
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_upload_status_updated ON upload(status, updated_at)"
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_upload_next_retry ON upload(next_retry_at)")
