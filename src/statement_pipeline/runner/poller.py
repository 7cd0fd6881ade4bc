"""
Client-side polling for upload status.

A slow job is not a failed job: once the soft timeout passes the poller
keeps waiting with a growing interval instead of giving up.
"""

import logging
import time
from collections.abc import Callable
from typing import Optional

from ..schemas import UploadStatus
from ..state_store import StateStore, UploadRecord

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = (UploadStatus.DONE, UploadStatus.ERROR)


class UploadPoller:
    """Polls an upload until it reaches done or error."""

    def __init__(
        self,
        store: StateStore,
        interval_seconds: float = 1.5,
        soft_timeout_seconds: float = 180.0,
        max_interval_seconds: float = 15.0,
        hard_limit_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.interval_seconds = interval_seconds
        self.soft_timeout_seconds = soft_timeout_seconds
        self.max_interval_seconds = max_interval_seconds
        self.hard_limit_seconds = hard_limit_seconds
        self._clock = clock
        self._sleep = sleep

    def wait(
        self,
        upload_id: str,
        on_update: Optional[Callable[[UploadRecord], None]] = None,
    ) -> Optional[UploadRecord]:
        """
        Block until the upload is terminal.

        Returns:
            The terminal upload, the last observed one if the hard limit was
            hit, or None if the upload does not exist
        """
        started = self._clock()
        interval = self.interval_seconds
        warned = False
        last_seen: Optional[tuple[str, int]] = None

        while True:
            upload = self.store.get_upload(upload_id)
            if upload is None:
                return None

            if on_update is not None and (upload.stage, upload.progress) != last_seen:
                on_update(upload)
                last_seen = (upload.stage, upload.progress)

            if upload.status in TERMINAL_STATUSES:
                return upload

            elapsed = self._clock() - started
            if self.hard_limit_seconds is not None and elapsed >= self.hard_limit_seconds:
                logger.warning(f"Stopped polling upload {upload_id} after {elapsed:.0f}s")
                return upload

            if elapsed >= self.soft_timeout_seconds:
                if not warned:
                    logger.info(
                        f"Upload {upload_id} still {upload.status.value} after "
                        f"{elapsed:.0f}s; backing off"
                    )
                    warned = True
                interval = min(self.max_interval_seconds, interval * 2)

            self._sleep(interval)
