"""
Job coordinator - drives one upload through the staged pipeline.

Stage sequence (progress is written before each stage starts):
    starting -> downloading -> extracting -> normalizing -> reconciling
    -> detecting_subscriptions -> scoring -> saving -> done

Write ordering between the two rows a client can see:
- success: job first, upload last
- failure: upload first, job last

``run_job`` never raises; every outcome ends in a stored status.
"""

import logging
import time
from collections import Counter
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Optional

from ..budget import Deadline
from ..config import PipelineConfig
from ..confidence import ConfidenceScorer
from ..errors import FetchTransientError, PipelineError, ServiceUnavailableError
from ..extraction import ExtractionRouter
from ..normalize import TransactionNormalizer
from ..reconciliation import ReconciliationEngine
from ..schemas import JobStatus, StatementExtract
from ..state_store import ExtractPersister, JobRecord, StateStore, UploadRecord
from ..state_store.sqlite_store import utc_now
from ..storage import DocumentFetcher
from ..subscriptions import SubscriptionDetector
from ..summary import build_summary
from .heartbeat import Heartbeat

logger = logging.getLogger(__name__)

INTERNAL_ERROR_CODE = "internal_error"

STAGES = {
    "starting": 5,
    "downloading": 15,
    "extracting": 35,
    "normalizing": 60,
    "reconciling": 70,
    "detecting_subscriptions": 78,
    "scoring": 85,
    "saving": 92,
}


class TraceLogger(logging.LoggerAdapter):
    """Prefixes every message with the upload's trace id."""

    def process(self, msg, kwargs):
        return f"[{self.extra['trace_id']}] {msg}", kwargs


class JobCoordinator:
    """
    Runs jobs end to end against the state store.

    Stateless between calls: several coordinators may run different jobs
    concurrently, and the conditional claim keeps any job from running twice.
    """

    def __init__(
        self,
        store: StateStore,
        fetcher: DocumentFetcher,
        router: ExtractionRouter,
        persister: Optional[ExtractPersister] = None,
        normalizer: Optional[TransactionNormalizer] = None,
        reconciler: Optional[ReconciliationEngine] = None,
        detector: Optional[SubscriptionDetector] = None,
        scorer: Optional[ConfidenceScorer] = None,
        pipeline: Optional[PipelineConfig] = None,
        default_currency: str = "SGD",
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.fetcher = fetcher
        self.router = router
        self.pipeline = pipeline or PipelineConfig()
        self.persister = persister or ExtractPersister(
            store, batch_size=self.pipeline.transaction_batch_size
        )
        self.normalizer = normalizer or TransactionNormalizer(default_currency)
        self.reconciler = reconciler or ReconciliationEngine()
        self.detector = detector or SubscriptionDetector()
        self.scorer = scorer or ConfidenceScorer(
            expected_transactions=self.pipeline.expected_transactions
        )
        self.default_currency = default_currency
        self._clock = clock
        self._now = now

    def run_job(self, job_id: str) -> Optional[JobStatus]:
        """
        Run one job to a stored outcome.

        Returns:
            The job's status after this call (QUEUED when a retry was
            scheduled or is not yet due), or None for an unknown job.
        """
        job = self.store.get_job(job_id)
        if job is None:
            logger.warning(f"Job {job_id} not found")
            return None
        if job.status != JobStatus.QUEUED:
            logger.info(f"Job {job_id} is already {job.status.value}; nothing to do")
            return job.status

        upload = self.store.get_upload(job.upload_id)
        if upload is None:
            logger.error(f"Job {job_id} references missing upload {job.upload_id}")
            if self.store.claim_job(job_id):
                self.store.fail_job(job_id, f"Upload {job.upload_id} not found")
            return JobStatus.ERROR

        if upload.next_retry_at and datetime.fromisoformat(upload.next_retry_at) > self._now():
            logger.debug(f"Job {job_id} not due until {upload.next_retry_at}")
            return JobStatus.QUEUED

        if not self.store.claim_job(job_id):
            current = self.store.get_job(job_id)
            logger.info(f"Job {job_id} was claimed by another worker")
            return current.status if current else None

        log = TraceLogger(logger, {"trace_id": upload.trace_id})
        return self._run_claimed(job, upload, log)

    def _run_claimed(
        self, job: JobRecord, upload: UploadRecord, log: logging.LoggerAdapter
    ) -> JobStatus:
        started = self._clock()
        log.info(f"Job {job.id} started for upload {upload.id} (attempt {job.attempts + 1})")

        try:
            self.store.begin_upload_run(upload.id)
            deadline = Deadline(self.pipeline.job_timeout_seconds, clock=self._clock)
            with Heartbeat(
                lambda: self.store.touch_upload(upload.id),
                self.pipeline.heartbeat_interval_seconds,
                name=f"heartbeat-{job.id[:8]}",
            ):
                extract_id = self._run_stages(upload, deadline, log)
        except PipelineError as e:
            return self._handle_failure(job, upload, e, log)
        except Exception as e:
            log.exception(f"Unexpected error in job {job.id}")
            return self._fail(job, upload, str(e) or type(e).__name__, INTERNAL_ERROR_CODE, log)

        try:
            self.store.complete_job(job.id)
            self.store.complete_upload(upload.id, extract_id)
        except Exception as e:
            log.exception("Could not record job success")
            message = f"Could not record result: {e}"
            return self._fail(job, upload, message, INTERNAL_ERROR_CODE, log)

        log.info(f"Job {job.id} done in {self._clock() - started:.1f}s (extract {extract_id})")
        return JobStatus.DONE

    def _stage(self, upload_id: str, stage: str, deadline: Deadline, log) -> None:
        deadline.check()
        self.store.update_upload_progress(upload_id, stage, STAGES[stage])
        log.info(f"Stage {stage} ({STAGES[stage]}%, {deadline.elapsed:.1f}s elapsed)")

    def _run_stages(self, upload: UploadRecord, deadline: Deadline, log) -> str:
        self._stage(upload.id, "starting", deadline, log)

        self._stage(upload.id, "downloading", deadline, log)
        documents = [
            self.fetcher.fetch(ref, timeout=deadline.cap(self.fetcher.timeout, "Download"))
            for ref in upload.file_refs
        ]
        log.info(f"Fetched {len(documents)} file(s), {sum(d.size for d in documents)} bytes")

        self._stage(upload.id, "extracting", deadline, log)
        extraction = self.router.extract(documents, upload.mime_type, deadline=deadline)

        self._stage(upload.id, "normalizing", deadline, log)
        normalized = self.normalizer.normalize(extraction.transactions)
        transactions = normalized.transactions
        stats = replace(
            extraction.stats,
            transaction_count=len(transactions),
            dropped_count=normalized.dropped_count,
        )

        self._stage(upload.id, "reconciling", deadline, log)
        reconciliation = self.reconciler.reconcile(transactions, extraction.balances)
        log.info(
            f"Reconciliation {reconciliation.method.value}: ok={reconciliation.ok} "
            f"delta={reconciliation.delta_minor}"
        )

        self._stage(upload.id, "detecting_subscriptions", deadline, log)
        subscriptions = self.detector.detect(transactions)

        self._stage(upload.id, "scoring", deadline, log)
        confidence = self.scorer.score(stats, reconciliation, subscriptions)
        log.info(f"Confidence {confidence.score:.2f} ({confidence.grade.value})")

        extract = StatementExtract(
            upload_id=upload.id,
            summary=build_summary(transactions, subscriptions),
            confidence=confidence,
            reconciliation=reconciliation,
            subscriptions=subscriptions,
            stats=stats,
            currency=self._dominant_currency(transactions),
        )

        self._stage(upload.id, "saving", deadline, log)
        return self.persister.persist(extract, transactions, subscriptions)

    def _dominant_currency(self, transactions) -> str:
        if not transactions:
            return self.default_currency
        return Counter(tx.currency for tx in transactions).most_common(1)[0][0]

    def _is_requeueable(self, error: PipelineError) -> bool:
        if isinstance(error, FetchTransientError):
            return True
        return (
            isinstance(error, ServiceUnavailableError)
            and error.status_code in self.pipeline.requeue_statuses
        )

    def requeue_delay(self, attempt: int) -> float:
        """Delay before re-queued attempt number ``attempt`` (0-based)."""
        return min(
            self.pipeline.requeue_max_delay_seconds,
            self.pipeline.requeue_base_delay_seconds * (2**attempt),
        )

    def _handle_failure(
        self, job: JobRecord, upload: UploadRecord, error: PipelineError, log
    ) -> JobStatus:
        if self._is_requeueable(error):
            current = self.store.get_upload(upload.id)
            attempt = current.attempt_count if current else upload.attempt_count
            if attempt < self.pipeline.max_requeue_attempts:
                delay = self.requeue_delay(attempt)
                next_retry_at = self._now() + timedelta(seconds=delay)
                try:
                    self.store.schedule_upload_retry(
                        upload.id, error.message, error.code, next_retry_at
                    )
                    self.store.requeue_job(job.id, error.message)
                except Exception:
                    log.exception("Could not schedule retry")
                    return self._fail(job, upload, error.message, error.code, log)
                log.warning(
                    f"{error.message}; re-queued (attempt {attempt + 1}/"
                    f"{self.pipeline.max_requeue_attempts}) in {delay:.0f}s"
                )
                return JobStatus.QUEUED
            log.warning(f"Re-queue ceiling of {self.pipeline.max_requeue_attempts} reached")

        return self._fail(job, upload, error.message, error.code, log)

    def _fail(
        self, job: JobRecord, upload: UploadRecord, message: str, code: str, log
    ) -> JobStatus:
        log.error(f"Job {job.id} failed ({code}): {message}")
        try:
            self.store.fail_upload(upload.id, message, code)
        except Exception:
            log.exception("Could not mark upload failed")
        try:
            self.store.fail_job(job.id, message)
        except Exception:
            log.exception("Could not mark job failed")
        return JobStatus.ERROR
