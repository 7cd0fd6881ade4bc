"""
Background heartbeat for long-running stages.

While a stage is in flight a daemon thread refreshes the upload's
updated_at every few seconds, so the sweeper can tell a slow job from a
dead worker.
"""

import logging
import threading
from collections.abc import Callable
from typing import Optional

logger = logging.getLogger(__name__)


class Heartbeat:
    """
    Calls ``beat`` every ``interval`` seconds until stopped.

    Usage:
        with Heartbeat(lambda: store.touch_upload(upload_id), 10.0):
            run_stage()
    """

    def __init__(self, beat: Callable[[], object], interval: float, name: str = "heartbeat"):
        self.beat = beat
        self.interval = interval
        self.name = name
        self.beats = 0
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=max(1.0, self.interval))
            self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _loop(self) -> None:
        # Event.wait doubles as an interruptible sleep
        while not self._stop.wait(self.interval):
            try:
                self.beat()
                self.beats += 1
            except Exception as e:
                logger.warning(f"Heartbeat {self.name} failed: {e}")

    def __enter__(self) -> "Heartbeat":
        self.start()
        return self

    def __exit__(self, *args) -> None:
        self.stop()
