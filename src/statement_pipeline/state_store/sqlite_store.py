"""
SQLite-based state store implementation.

Tables:
- upload: One row per submitted statement (status, stage, progress)
- jobs: Processing attempts for an upload
- statement_extract: The live result of a successful run
- transaction_extract: Normalized transactions of an extract
- subscription_items: Subscription candidates of an extract

Every write is a single-row conditional UPDATE, an INSERT, or a DELETE by
upload_id, so callers never depend on multi-row transactions.
"""

import json
import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from ..schemas import JobStatus, StatementExtract, SubscriptionCandidate, Transaction, UploadStatus


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_timestamp(value: Optional[datetime] = None) -> str:
    """ISO timestamp in UTC; all stored timestamps share this format."""
    return (value or utc_now()).astimezone(timezone.utc).isoformat()


def new_id() -> str:
    return uuid.uuid4().hex


@dataclass
class UploadRecord:
    """Record of an uploaded statement."""

    id: str
    owner_ref: Optional[str]
    file_refs: list[str]
    mime_type: Optional[str]
    status: UploadStatus
    stage: str
    progress: int
    extract_ref: Optional[str]
    trace_id: str
    attempt_count: int
    next_retry_at: Optional[str]
    last_error: Optional[str]
    error_code: Optional[str]
    created_at: str
    updated_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "UploadRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            owner_ref=row["owner_ref"],
            file_refs=json.loads(row["file_refs"]) if row["file_refs"] else [],
            mime_type=row["mime_type"],
            status=UploadStatus(row["status"]),
            stage=row["stage"],
            progress=row["progress"],
            extract_ref=row["extract_ref"],
            trace_id=row["trace_id"],
            attempt_count=row["attempt_count"],
            next_retry_at=row["next_retry_at"],
            last_error=row["last_error"],
            error_code=row["error_code"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "owner_ref": self.owner_ref,
            "file_refs": self.file_refs,
            "mime_type": self.mime_type,
            "status": self.status.value,
            "stage": self.stage,
            "progress": self.progress,
            "extract_ref": self.extract_ref,
            "trace_id": self.trace_id,
            "attempt_count": self.attempt_count,
            "next_retry_at": self.next_retry_at,
            "last_error": self.last_error,
            "error_code": self.error_code,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class JobRecord:
    """Record of a processing job."""

    id: str
    upload_id: str
    status: JobStatus
    attempts: int
    last_error: Optional[str]
    created_at: str
    updated_at: str
    started_at: Optional[str] = None
    finished_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "JobRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            upload_id=row["upload_id"],
            status=JobStatus(row["status"]),
            attempts=row["attempts"],
            last_error=row["last_error"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            started_at=row["started_at"],
            finished_at=row["finished_at"],
        )


@dataclass
class ExtractRecord:
    """Record of a stored statement extract."""

    id: str
    upload_id: str
    period: str
    currency: str
    confidence_score: float
    confidence_grade: str
    summary: dict[str, Any]
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ExtractRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            upload_id=row["upload_id"],
            period=row["period"],
            currency=row["currency"],
            confidence_score=row["confidence_score"],
            confidence_grade=row["confidence_grade"],
            summary=json.loads(row["summary_json"]),
            created_at=row["created_at"],
        )


class StateStore:
    """
    SQLite-based state store for the pipeline.

    Provides persistent tracking of:
    - Uploads and their progress
    - Jobs (claim, completion, failure, re-queue)
    - Statement extracts with transactions and subscriptions

    Safe for concurrent workers: job claims are conditional updates.
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path | str, run_migrations: bool = True):
        """
        Initialize state store.

        Args:
            db_path: Path to SQLite database file
            run_migrations: Whether to run pending migrations (default True)
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        if run_migrations:
            self._run_migrations()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path), timeout=5.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            # Schema version tracking
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """
            )

            # Uploads
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS upload (
                    id TEXT PRIMARY KEY,
                    owner_ref TEXT,
                    file_refs TEXT NOT NULL,  -- JSON array of object keys
                    mime_type TEXT,
                    status TEXT NOT NULL DEFAULT 'pending',
                    stage TEXT NOT NULL DEFAULT 'pending',
                    progress INTEGER NOT NULL DEFAULT 0,
                    extract_ref TEXT,
                    trace_id TEXT NOT NULL,
                    last_error TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """
            )

            # Jobs
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS jobs (
                    id TEXT PRIMARY KEY,
                    upload_id TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'queued',
                    attempts INTEGER NOT NULL DEFAULT 0,
                    last_error TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    started_at TEXT,
                    finished_at TEXT,
                    FOREIGN KEY (upload_id) REFERENCES upload(id) ON DELETE CASCADE
                )
            """
            )

            # Statement extracts
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS statement_extract (
                    id TEXT PRIMARY KEY,
                    upload_id TEXT NOT NULL,
                    period TEXT NOT NULL,
                    currency TEXT NOT NULL,
                    confidence_score REAL NOT NULL,
                    confidence_grade TEXT NOT NULL,
                    summary_json TEXT NOT NULL,  -- full extract (totals, insights, ...)
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (upload_id) REFERENCES upload(id) ON DELETE CASCADE
                )
            """
            )

            # Normalized transactions
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS transaction_extract (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    statement_extract_id TEXT NOT NULL,
                    upload_id TEXT NOT NULL,
                    position INTEGER NOT NULL,
                    date TEXT NOT NULL,
                    merchant TEXT NOT NULL,
                    normalized_merchant TEXT NOT NULL,
                    category TEXT NOT NULL,
                    amount_minor INTEGER NOT NULL,
                    currency TEXT NOT NULL,
                    running_balance_minor INTEGER,
                    description TEXT,
                    FOREIGN KEY (statement_extract_id)
                        REFERENCES statement_extract(id) ON DELETE CASCADE
                )
            """
            )

            # Subscription candidates
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS subscription_items (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    statement_extract_id TEXT NOT NULL,
                    upload_id TEXT NOT NULL,
                    merchant TEXT NOT NULL,
                    normalized_merchant TEXT NOT NULL,
                    amount_minor INTEGER NOT NULL,
                    currency TEXT NOT NULL,
                    interval TEXT NOT NULL,
                    occurrences INTEGER NOT NULL,
                    last_seen_date TEXT NOT NULL,
                    next_expected_date TEXT,
                    confidence REAL NOT NULL,
                    evidence_json TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (statement_extract_id)
                        REFERENCES statement_extract(id) ON DELETE CASCADE
                )
            """
            )

            # Create indexes
            conn.execute("CREATE INDEX IF NOT EXISTS idx_jobs_upload_id ON jobs(upload_id)")
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_statement_extract_upload_id "
                "ON statement_extract(upload_id)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_transaction_extract_upload_id "
                "ON transaction_extract(upload_id)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_subscription_items_upload_id "
                "ON subscription_items(upload_id)"
            )

            # Set schema version
            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,)
            )

    def _run_migrations(self) -> None:
        """Run pending database migrations."""
        from .migrations import MigrationRunner

        conn = self._get_connection()
        try:
            runner = MigrationRunner(conn)
            runner.run_pending()
        finally:
            conn.close()

    def migration_status(self) -> list[tuple[int, str, bool]]:
        """(version, name, applied) for every known migration."""
        from .migrations import MigrationRunner

        conn = self._get_connection()
        try:
            return MigrationRunner(conn).status()
        finally:
            conn.close()

    # Intake methods

    def create_upload(
        self,
        file_refs: list[str],
        mime_type: Optional[str] = None,
        owner_ref: Optional[str] = None,
        trace_id: Optional[str] = None,
        upload_id: Optional[str] = None,
    ) -> str:
        """Create an upload in 'pending'. Returns the upload ID."""
        upload_id = upload_id or new_id()
        now = to_timestamp()
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO upload (
                    id, owner_ref, file_refs, mime_type, status, stage, progress,
                    trace_id, created_at, updated_at
                ) VALUES (?, ?, ?, ?, 'pending', 'pending', 0, ?, ?, ?)
                """,
                (
                    upload_id,
                    owner_ref,
                    json.dumps(list(file_refs)),
                    mime_type,
                    trace_id or new_id()[:12],
                    now,
                    now,
                ),
            )
        return upload_id

    def create_job(self, upload_id: str, job_id: Optional[str] = None) -> str:
        """Queue a job for an upload. Returns the job ID."""
        job_id = job_id or new_id()
        now = to_timestamp()
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO jobs (id, upload_id, status, attempts, created_at, updated_at)
                VALUES (?, ?, 'queued', 0, ?, ?)
                """,
                (job_id, upload_id, now, now),
            )
        return job_id

    # Upload methods

    def get_upload(self, upload_id: str) -> Optional[UploadRecord]:
        """Get upload by ID."""
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM upload WHERE id = ?", (upload_id,)).fetchone()
            return UploadRecord.from_row(row) if row else None

    def begin_upload_run(self, upload_id: str) -> bool:
        """
        Mark the upload as processing for a new run.

        Progress restarts at 0 unless the upload is already processing
        (a re-queued run continues where the last one left off).
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE upload
                SET progress = CASE WHEN status = 'processing' THEN progress ELSE 0 END,
                    status = 'processing',
                    stage = 'starting',
                    next_retry_at = NULL,
                    updated_at = ?
                WHERE id = ?
                """,
                (to_timestamp(), upload_id),
            )
            return cursor.rowcount > 0

    def update_upload_progress(self, upload_id: str, stage: str, progress: int) -> bool:
        """Set the stage label; progress only ever moves forward."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE upload
                SET stage = ?, progress = MAX(progress, ?), updated_at = ?
                WHERE id = ? AND status = 'processing'
                """,
                (stage, progress, to_timestamp(), upload_id),
            )
            return cursor.rowcount > 0

    def touch_upload(self, upload_id: str) -> bool:
        """Refresh the liveness timestamp of a processing upload."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE upload SET updated_at = ? WHERE id = ? AND status = 'processing'",
                (to_timestamp(), upload_id),
            )
            return cursor.rowcount > 0

    def complete_upload(self, upload_id: str, extract_id: str) -> bool:
        """Finalize a successful run (done implies extract_ref)."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE upload
                SET status = 'done', stage = 'done', progress = 100, extract_ref = ?,
                    last_error = NULL, error_code = NULL, next_retry_at = NULL,
                    updated_at = ?
                WHERE id = ?
                """,
                (extract_id, to_timestamp(), upload_id),
            )
            return cursor.rowcount > 0

    def fail_upload(self, upload_id: str, error: str, error_code: str) -> bool:
        """Finalize a failed run (error implies last_error)."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE upload
                SET status = 'error', stage = 'error', last_error = ?, error_code = ?,
                    next_retry_at = NULL, updated_at = ?
                WHERE id = ?
                """,
                (error or "Unknown error", error_code, to_timestamp(), upload_id),
            )
            return cursor.rowcount > 0

    def schedule_upload_retry(
        self, upload_id: str, error: str, error_code: str, next_retry_at: datetime
    ) -> bool:
        """Leave the upload processing with a scheduled retry."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE upload
                SET stage = 'retry_scheduled', attempt_count = attempt_count + 1,
                    next_retry_at = ?, last_error = ?, error_code = ?, updated_at = ?
                WHERE id = ? AND status = 'processing'
                """,
                (to_timestamp(next_retry_at), error, error_code, to_timestamp(), upload_id),
            )
            return cursor.rowcount > 0

    # Job methods

    def get_job(self, job_id: str) -> Optional[JobRecord]:
        """Get job by ID."""
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
            return JobRecord.from_row(row) if row else None

    def claim_job(self, job_id: str) -> bool:
        """
        Atomically move a job from queued to processing.

        Returns:
            True if this caller now owns the job, False if it was not queued
        """
        now = to_timestamp()
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE jobs
                SET status = 'processing', attempts = attempts + 1,
                    started_at = ?, updated_at = ?
                WHERE id = ? AND status = 'queued'
                """,
                (now, now, job_id),
            )
            return cursor.rowcount == 1

    def complete_job(self, job_id: str) -> bool:
        now = to_timestamp()
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE jobs
                SET status = 'done', last_error = NULL, finished_at = ?, updated_at = ?
                WHERE id = ? AND status = 'processing'
                """,
                (now, now, job_id),
            )
            return cursor.rowcount > 0

    def fail_job(self, job_id: str, error: str) -> bool:
        now = to_timestamp()
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE jobs
                SET status = 'error', last_error = ?, finished_at = ?, updated_at = ?
                WHERE id = ? AND status = 'processing'
                """,
                (error or "Unknown error", now, now, job_id),
            )
            return cursor.rowcount > 0

    def requeue_job(self, job_id: str, error: str) -> bool:
        """Return a processing job to the queue (scheduled retry or stale recovery)."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE jobs
                SET status = 'queued', last_error = ?, updated_at = ?
                WHERE id = ? AND status = 'processing'
                """,
                (error, to_timestamp(), job_id),
            )
            return cursor.rowcount > 0

    def get_due_jobs(self, now: Optional[datetime] = None, limit: int = 10) -> list[JobRecord]:
        """Queued jobs whose upload has no pending retry delay."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT jobs.* FROM jobs
                JOIN upload ON upload.id = jobs.upload_id
                WHERE jobs.status = 'queued'
                  AND (upload.next_retry_at IS NULL OR upload.next_retry_at <= ?)
                ORDER BY jobs.created_at
                LIMIT ?
                """,
                (to_timestamp(now), limit),
            ).fetchall()
            return [JobRecord.from_row(row) for row in rows]

    def get_stale_jobs(self, cutoff: datetime) -> list[JobRecord]:
        """Processing jobs whose upload heartbeat is older than ``cutoff``."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT jobs.* FROM jobs
                JOIN upload ON upload.id = jobs.upload_id
                WHERE jobs.status = 'processing' AND upload.updated_at < ?
                ORDER BY jobs.updated_at
                """,
                (to_timestamp(cutoff),),
            ).fetchall()
            return [JobRecord.from_row(row) for row in rows]

    # Extract methods

    def delete_extracts_for_upload(self, upload_id: str) -> int:
        """Delete every extract (and dependent rows) of an upload. Returns extracts deleted."""
        with self._transaction() as conn:
            conn.execute("DELETE FROM transaction_extract WHERE upload_id = ?", (upload_id,))
            conn.execute("DELETE FROM subscription_items WHERE upload_id = ?", (upload_id,))
            cursor = conn.execute("DELETE FROM statement_extract WHERE upload_id = ?", (upload_id,))
            return cursor.rowcount

    def insert_extract(self, extract_id: str, extract: StatementExtract) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO statement_extract (
                    id, upload_id, period, currency, confidence_score, confidence_grade,
                    summary_json, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    extract_id,
                    extract.upload_id,
                    extract.period,
                    extract.currency,
                    extract.confidence.score,
                    extract.confidence.grade.value,
                    json.dumps(extract.to_dict()),
                    to_timestamp(),
                ),
            )

    def insert_transactions(
        self,
        extract_id: str,
        upload_id: str,
        transactions: list[Transaction],
        start_position: int = 0,
    ) -> int:
        """Insert one batch of transactions. Returns rows inserted."""
        rows = [
            (
                extract_id,
                upload_id,
                start_position + offset,
                tx.date.isoformat(),
                tx.merchant,
                tx.normalized_merchant,
                tx.category,
                tx.amount_minor,
                tx.currency,
                tx.running_balance_minor,
                tx.description,
            )
            for offset, tx in enumerate(transactions)
        ]
        with self._transaction() as conn:
            conn.executemany(
                """
                INSERT INTO transaction_extract (
                    statement_extract_id, upload_id, position, date, merchant,
                    normalized_merchant, category, amount_minor, currency,
                    running_balance_minor, description
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )
        return len(rows)

    def insert_subscriptions(
        self, extract_id: str, upload_id: str, subscriptions: list[SubscriptionCandidate]
    ) -> int:
        now = to_timestamp()
        rows = [
            (
                extract_id,
                upload_id,
                sub.merchant,
                sub.normalized_merchant,
                sub.amount_minor,
                sub.currency,
                sub.interval.value,
                sub.occurrences,
                sub.last_seen_date.isoformat(),
                sub.next_expected_date.isoformat() if sub.next_expected_date else None,
                sub.confidence,
                json.dumps(sub.evidence.to_dict()),
                now,
            )
            for sub in subscriptions
        ]
        with self._transaction() as conn:
            conn.executemany(
                """
                INSERT INTO subscription_items (
                    statement_extract_id, upload_id, merchant, normalized_merchant,
                    amount_minor, currency, interval, occurrences, last_seen_date,
                    next_expected_date, confidence, evidence_json, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )
        return len(rows)

    def get_extract(self, extract_id: str) -> Optional[ExtractRecord]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM statement_extract WHERE id = ?", (extract_id,)
            ).fetchone()
            return ExtractRecord.from_row(row) if row else None

    def get_transactions(self, extract_id: str) -> list[dict[str, Any]]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM transaction_extract "
                "WHERE statement_extract_id = ? ORDER BY position",
                (extract_id,),
            ).fetchall()
            return [dict(row) for row in rows]

    def get_subscriptions(self, extract_id: str) -> list[dict[str, Any]]:
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM subscription_items
                WHERE statement_extract_id = ?
                ORDER BY confidence DESC, normalized_merchant
                """,
                (extract_id,),
            ).fetchall()
            return [dict(row) for row in rows]

    def count_rows(self, table: str, upload_id: str) -> int:
        """Row count of an extract table for one upload."""
        if table not in ("statement_extract", "transaction_extract", "subscription_items"):
            raise ValueError(f"Unknown table: {table}")
        with self._transaction() as conn:
            row = conn.execute(
                f"SELECT COUNT(*) FROM {table} WHERE upload_id = ?", (upload_id,)
            ).fetchone()
            return row[0]

    def get_stats(self) -> dict[str, Any]:
        """Get pipeline statistics."""
        with self._transaction() as conn:
            uploads = {
                row["status"]: row["n"]
                for row in conn.execute(
                    "SELECT status, COUNT(*) AS n FROM upload GROUP BY status"
                ).fetchall()
            }
            jobs = {
                row["status"]: row["n"]
                for row in conn.execute(
                    "SELECT status, COUNT(*) AS n FROM jobs GROUP BY status"
                ).fetchall()
            }
            extracts = conn.execute("SELECT COUNT(*) FROM statement_extract").fetchone()[0]

        return {
            "uploads": {status.value: uploads.get(status.value, 0) for status in UploadStatus},
            "jobs": {status.value: jobs.get(status.value, 0) for status in JobStatus},
            "extracts_total": extracts,
        }
