"""
Idempotent persistence of a statement extract.

Re-running the same upload replaces its previous extract: prior rows are
deleted by upload_id before the new ones are inserted, so a retried save
never duplicates transactions or subscriptions. Each write is retried on
transient SQLite errors (locked / busy database).
"""

import logging
import sqlite3
import time
from collections.abc import Callable
from typing import Optional, TypeVar

from ..errors import PersistenceError
from ..extraction.retry import RetryExhaustedError, RetryPolicy, call_with_retry
from ..schemas import StatementExtract, SubscriptionCandidate, Transaction
from .sqlite_store import StateStore, new_id

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_BATCH_SIZE = 500


class ExtractPersister:
    """Writes an extract with its transactions and subscriptions."""

    def __init__(
        self,
        store: StateStore,
        batch_size: int = MAX_BATCH_SIZE,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.batch_size = max(1, min(batch_size, MAX_BATCH_SIZE))
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=3, base_delay=0.2, max_delay=2.0
        )
        self._sleep = sleep

    def persist(
        self,
        extract: StatementExtract,
        transactions: list[Transaction],
        subscriptions: list[SubscriptionCandidate],
    ) -> str:
        """
        Replace the upload's extract with this one.

        Returns:
            ID of the new statement_extract row

        Raises:
            PersistenceError: A write kept failing
        """
        upload_id = extract.upload_id
        extract_id = new_id()

        deleted = self._write(
            "delete previous extract", lambda: self.store.delete_extracts_for_upload(upload_id)
        )
        if deleted:
            logger.info(f"Replacing {deleted} previous extract(s) of upload {upload_id}")

        try:
            self._write("insert extract", lambda: self.store.insert_extract(extract_id, extract))
            for start in range(0, len(transactions), self.batch_size):
                batch = transactions[start : start + self.batch_size]
                self._write(
                    f"insert transactions {start}-{start + len(batch) - 1}",
                    lambda: self.store.insert_transactions(extract_id, upload_id, batch, start),
                )
            if subscriptions:
                self._write(
                    "insert subscriptions",
                    lambda: self.store.insert_subscriptions(extract_id, upload_id, subscriptions),
                )
        except PersistenceError:
            self._discard_partial(upload_id)
            raise

        logger.info(
            f"Saved extract {extract_id}: {len(transactions)} transactions, "
            f"{len(subscriptions)} subscriptions"
        )
        return extract_id

    def _write(self, description: str, fn: Callable[[], T]) -> T:
        try:
            return call_with_retry(
                lambda attempt: fn(),
                self.retry_policy,
                is_retryable=lambda e: isinstance(e, sqlite3.OperationalError),
                sleep=self._sleep,
                description=f"Store write ({description})",
            )
        except RetryExhaustedError as e:
            raise PersistenceError(f"Could not {description}: {e.last_error}") from e
        except sqlite3.Error as e:
            raise PersistenceError(f"Could not {description}: {e}") from e

    def _discard_partial(self, upload_id: str) -> None:
        try:
            self.store.delete_extracts_for_upload(upload_id)
        except sqlite3.Error as e:
            logger.error(f"Could not remove partial extract of upload {upload_id}: {e}")
