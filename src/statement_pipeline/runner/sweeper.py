"""
Self-healing job sweeper.

Re-drives work the normal trigger path may have lost:
- queued jobs whose scheduled retry is due
- processing jobs whose worker stopped sending heartbeats
"""

import logging
import time
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Optional

from ..errors import WorkerLostError
from ..schemas import JobStatus
from ..state_store import StateStore
from ..state_store.sqlite_store import utc_now
from .coordinator import JobCoordinator

logger = logging.getLogger(__name__)


class JobSweeper:
    """Runs due jobs and recovers stale ones."""

    def __init__(
        self,
        store: StateStore,
        coordinator: JobCoordinator,
        stale_after_seconds: float = 300.0,
        max_requeue_attempts: int = 8,
        now: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.coordinator = coordinator
        self.stale_after_seconds = stale_after_seconds
        self.max_requeue_attempts = max_requeue_attempts
        self._now = now

    def recover_stale(self, stale_after_seconds: Optional[float] = None) -> list[str]:
        """
        Return processing jobs without a recent heartbeat to the queue.

        A job already claimed more than ``max_requeue_attempts`` times is
        failed instead, so a document that keeps killing its worker stops.

        Returns:
            IDs of the jobs that were re-queued
        """
        threshold = self.stale_after_seconds if stale_after_seconds is None else stale_after_seconds
        cutoff = self._now() - timedelta(seconds=threshold)

        recovered = []
        for job in self.store.get_stale_jobs(cutoff):
            if job.attempts > self.max_requeue_attempts:
                self._give_up(job, threshold)
                continue
            if self.store.requeue_job(job.id, f"No heartbeat for {threshold:.0f}s; re-queued"):
                logger.warning(f"Recovered stale job {job.id} (upload {job.upload_id})")
                recovered.append(job.id)
        return recovered

    def _give_up(self, job, threshold: float) -> None:
        error = WorkerLostError(
            f"No heartbeat for {threshold:.0f}s after {job.attempts} attempts; giving up"
        )
        logger.error(f"Stale job {job.id} (upload {job.upload_id}) failed: {error.message}")
        self.store.fail_upload(job.upload_id, error.message, error.code)
        self.store.fail_job(job.id, error.message)

    def run_due(self, limit: int = 10) -> dict[str, int]:
        """
        Run queued jobs whose retry time has come.

        Returns:
            Count of jobs per resulting status
        """
        counts: dict[str, int] = {}
        for job in self.store.get_due_jobs(self._now(), limit=limit):
            status = self.coordinator.run_job(job.id)
            key = status.value if isinstance(status, JobStatus) else "missing"
            counts[key] = counts.get(key, 0) + 1
        if counts:
            logger.info(f"Sweep finished: {counts}")
        return counts

    def sweep(self, limit: int = 10) -> dict[str, int]:
        """Recover stale jobs, then run everything that is due."""
        recovered = self.recover_stale()
        counts = self.run_due(limit)
        if recovered:
            counts["recovered"] = len(recovered)
        return counts

    def run_forever(
        self,
        interval_seconds: float = 5.0,
        limit: int = 10,
        should_stop: Callable[[], bool] = lambda: False,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Sweep on a fixed interval until ``should_stop`` returns True."""
        logger.info(f"Worker started, sweeping every {interval_seconds:.0f}s")
        while not should_stop():
            try:
                self.sweep(limit)
            except Exception as e:
                logger.error(f"Error in sweep loop: {e}", exc_info=True)
            sleep(interval_seconds)
        logger.info("Worker stopped")
