"""
Tests for the SQLite state store, migrations and extract persistence.
"""

import sqlite3
from datetime import date, timedelta

import pytest

from statement_pipeline.errors import PersistenceError
from statement_pipeline.schemas import JobStatus, UploadStatus
from statement_pipeline.state_store import ExtractPersister, StateStore
from statement_pipeline.state_store.migrations import MigrationRunner, get_all_migrations
from statement_pipeline.state_store.sqlite_store import utc_now

from conftest import make_extract, make_transaction


def month_of_transactions(count: int = 7) -> list:
    start = date(2024, 3, 1)
    return [
        make_transaction(start + timedelta(days=i), f"SHOP {i}", "-5.00", "Shopping")
        for i in range(count)
    ]


@pytest.fixture
def upload_and_job(store):
    upload_id = store.create_upload(["u/1.pdf"], mime_type="application/pdf", owner_ref="user-1")
    job_id = store.create_job(upload_id)
    return upload_id, job_id


class FlakyStore(StateStore):
    """Fails selected writes a fixed number of times."""

    def __init__(self, db_path, failures=0, error=sqlite3.OperationalError, fail_on_call=1):
        super().__init__(db_path)
        self.failures = failures
        self.error = error
        self.fail_on_call = fail_on_call
        self.transaction_calls = 0

    def insert_transactions(self, extract_id, upload_id, transactions, start_position=0):
        self.transaction_calls += 1
        if self.transaction_calls >= self.fail_on_call and self.failures > 0:
            self.failures -= 1
            raise self.error("database is locked")
        return super().insert_transactions(extract_id, upload_id, transactions, start_position)


class TestMigrations:
    """Tests for versioned migrations."""

    def test_all_applied_on_init(self, store):
        status = store.migration_status()

        assert [version for version, _, _ in status] == [1, 2]
        assert all(applied for _, _, applied in status)

    def test_retry_columns_exist(self, temp_db, store):
        conn = sqlite3.connect(temp_db)
        columns = {row[1] for row in conn.execute("PRAGMA table_info(upload)")}
        conn.close()

        assert {"attempt_count", "next_retry_at", "error_code"} <= columns

    def test_rerun_is_noop(self, temp_db, store):
        conn = sqlite3.connect(temp_db)
        try:
            assert MigrationRunner(conn).run_pending() == []
        finally:
            conn.close()

    def test_migrations_sorted(self):
        versions = [m.version for m in get_all_migrations()]
        assert versions == sorted(versions)


class TestUploadsAndJobs:
    """Tests for the upload and job lifecycle."""

    def test_create(self, store, upload_and_job):
        upload_id, job_id = upload_and_job

        upload = store.get_upload(upload_id)
        job = store.get_job(job_id)

        assert upload.status == UploadStatus.PENDING
        assert upload.file_refs == ["u/1.pdf"]
        assert upload.progress == 0
        assert upload.attempt_count == 0
        assert upload.trace_id
        assert job.status == JobStatus.QUEUED
        assert job.attempts == 0

    def test_claim_is_exclusive(self, store, upload_and_job):
        _, job_id = upload_and_job

        assert store.claim_job(job_id) is True
        assert store.claim_job(job_id) is False
        job = store.get_job(job_id)
        assert job.status == JobStatus.PROCESSING
        assert job.attempts == 1
        assert job.started_at is not None

    def test_claim_from_two_connections(self, temp_db, store, upload_and_job):
        _, job_id = upload_and_job
        other = StateStore(temp_db, run_migrations=False)

        results = [store.claim_job(job_id), other.claim_job(job_id)]

        assert results.count(True) == 1

    def test_progress_never_decreases(self, store, upload_and_job):
        upload_id, _ = upload_and_job
        store.begin_upload_run(upload_id)

        store.update_upload_progress(upload_id, "extracting", 35)
        store.update_upload_progress(upload_id, "downloading", 15)

        upload = store.get_upload(upload_id)
        assert upload.progress == 35
        assert upload.stage == "downloading"

    def test_progress_ignored_unless_processing(self, store, upload_and_job):
        upload_id, _ = upload_and_job

        assert store.update_upload_progress(upload_id, "extracting", 35) is False
        assert store.get_upload(upload_id).progress == 0

    def test_begin_run_keeps_progress_when_resuming(self, store, upload_and_job):
        upload_id, _ = upload_and_job
        store.begin_upload_run(upload_id)
        store.update_upload_progress(upload_id, "extracting", 35)

        store.begin_upload_run(upload_id)

        assert store.get_upload(upload_id).progress == 35

    def test_complete_and_fail(self, store, upload_and_job):
        upload_id, job_id = upload_and_job
        store.claim_job(job_id)
        store.begin_upload_run(upload_id)

        store.complete_job(job_id)
        store.complete_upload(upload_id, "extract-1")

        upload = store.get_upload(upload_id)
        assert upload.status == UploadStatus.DONE
        assert upload.progress == 100
        assert upload.extract_ref == "extract-1"
        assert store.get_job(job_id).status == JobStatus.DONE

        other_upload = store.create_upload(["u/2.pdf"])
        store.fail_upload(other_upload, "HTTP 502", "extraction_unavailable")
        failed = store.get_upload(other_upload)
        assert failed.status == UploadStatus.ERROR
        assert failed.last_error == "HTTP 502"
        assert failed.error_code == "extraction_unavailable"

    def test_scheduled_retry_and_due_jobs(self, store, upload_and_job):
        upload_id, job_id = upload_and_job
        store.claim_job(job_id)
        store.begin_upload_run(upload_id)
        retry_at = utc_now() + timedelta(seconds=60)

        store.schedule_upload_retry(upload_id, "HTTP 429", "extraction_unavailable", retry_at)
        store.requeue_job(job_id, "HTTP 429")

        upload = store.get_upload(upload_id)
        assert upload.status == UploadStatus.PROCESSING
        assert upload.stage == "retry_scheduled"
        assert upload.attempt_count == 1
        assert upload.next_retry_at is not None
        assert store.get_due_jobs() == []
        due = store.get_due_jobs(now=retry_at + timedelta(seconds=1))
        assert [job.id for job in due] == [job_id]

    def test_stale_jobs(self, store, upload_and_job):
        upload_id, job_id = upload_and_job
        store.claim_job(job_id)
        store.begin_upload_run(upload_id)

        assert store.get_stale_jobs(utc_now() - timedelta(minutes=5)) == []
        stale = store.get_stale_jobs(utc_now() + timedelta(seconds=1))
        assert [job.id for job in stale] == [job_id]

    def test_stats(self, store, upload_and_job):
        stats = store.get_stats()

        assert stats["uploads"]["pending"] == 1
        assert stats["jobs"]["queued"] == 1
        assert stats["extracts_total"] == 0

    def test_count_rows_rejects_unknown_table(self, store):
        with pytest.raises(ValueError):
            store.count_rows("upload; DROP TABLE jobs", "x")


class TestExtractPersister:
    """Tests for idempotent extract persistence."""

    def test_persist_and_read_back(self, store, upload_and_job):
        upload_id, _ = upload_and_job
        transactions = month_of_transactions()

        extract_id = ExtractPersister(store).persist(
            make_extract(upload_id, transactions), transactions, []
        )

        record = store.get_extract(extract_id)
        assert record.upload_id == upload_id
        assert record.period == "March 2024"
        assert record.summary["totals"]["outflow_exact"] == "35.00"
        rows = store.get_transactions(extract_id)
        assert [row["position"] for row in rows] == list(range(7))
        assert rows[0]["amount_minor"] == -500

    def test_batches_preserve_order(self, store, upload_and_job):
        upload_id, _ = upload_and_job
        transactions = month_of_transactions(7)

        extract_id = ExtractPersister(store, batch_size=3).persist(
            make_extract(upload_id, transactions), transactions, []
        )

        rows = store.get_transactions(extract_id)
        assert [row["merchant"] for row in rows] == [f"SHOP {i}" for i in range(7)]

    def test_rerun_replaces_previous_extract(self, store, upload_and_job):
        upload_id, _ = upload_and_job
        transactions = month_of_transactions()
        persister = ExtractPersister(store)

        first = persister.persist(make_extract(upload_id, transactions), transactions, [])
        second = persister.persist(make_extract(upload_id, transactions), transactions, [])

        assert first != second
        assert store.count_rows("statement_extract", upload_id) == 1
        assert store.count_rows("transaction_extract", upload_id) == 7
        assert store.get_extract(first) is None

    def test_subscriptions_persisted(self, store, upload_and_job):
        upload_id, _ = upload_and_job
        transactions = [
            make_transaction(date(2024, 1, 5), "NETFLIX.COM", "-15.99", "Subscriptions"),
            make_transaction(date(2024, 2, 4), "NETFLIX.COM", "-15.99", "Subscriptions"),
            make_transaction(date(2024, 3, 6), "NETFLIX.COM", "-15.99", "Subscriptions"),
        ]
        extract = make_extract(upload_id, transactions)

        extract_id = ExtractPersister(store).persist(
            extract, transactions, extract.subscriptions
        )

        subs = store.get_subscriptions(extract_id)
        assert len(subs) == 1
        assert subs[0]["normalized_merchant"] == "NETFLIX COM"
        assert subs[0]["interval"] == "monthly"

    def test_transient_lock_is_retried(self, temp_db):
        store = FlakyStore(temp_db, failures=1)
        upload_id = store.create_upload(["u/1.pdf"])
        transactions = month_of_transactions()
        sleeps = []

        ExtractPersister(store, sleep=sleeps.append).persist(
            make_extract(upload_id, transactions), transactions, []
        )

        assert sleeps == [0.2]
        assert store.count_rows("transaction_extract", upload_id) == 7

    def test_failure_leaves_no_partial_rows(self, temp_db):
        store = FlakyStore(
            temp_db, failures=1, error=sqlite3.IntegrityError, fail_on_call=2
        )
        upload_id = store.create_upload(["u/1.pdf"])
        transactions = month_of_transactions(7)

        with pytest.raises(PersistenceError):
            ExtractPersister(store, batch_size=3).persist(
                make_extract(upload_id, transactions), transactions, []
            )

        assert store.count_rows("statement_extract", upload_id) == 0
        assert store.count_rows("transaction_extract", upload_id) == 0

    def test_exhausted_retries(self, temp_db):
        store = FlakyStore(temp_db, failures=10)
        upload_id = store.create_upload(["u/1.pdf"])
        transactions = month_of_transactions()

        with pytest.raises(PersistenceError):
            ExtractPersister(store, sleep=lambda s: None).persist(
                make_extract(upload_id, transactions), transactions, []
            )
        assert store.count_rows("statement_extract", upload_id) == 0
