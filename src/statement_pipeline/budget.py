"""
Wall-clock budget for one job run.
"""

import time
from collections.abc import Callable
from typing import Optional

from .errors import ProcessingTimeoutError


class Deadline:
    """
    A fixed budget measured on a monotonic clock.

    Every external call caps its own timeout with ``cap()`` so no single
    call can outlive the job, and stage boundaries call ``check()``.
    """

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic):
        self.seconds = seconds
        self._clock = clock
        self._started_at = clock()

    @property
    def elapsed(self) -> float:
        return self._clock() - self._started_at

    def remaining(self) -> float:
        return max(0.0, self.seconds - self.elapsed)

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0.0

    def check(self, what: str = "Job") -> None:
        """Raise ProcessingTimeoutError if the budget is used up."""
        if self.expired:
            raise ProcessingTimeoutError(
                f"{what} exceeded the {self.seconds:.0f}s processing budget"
            )

    def cap(self, timeout: Optional[float], what: str = "Job") -> float:
        """Return ``timeout`` clamped to the remaining budget."""
        self.check(what)
        remaining = self.remaining()
        return remaining if timeout is None else min(timeout, remaining)
