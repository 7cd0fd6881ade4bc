"""
Bounded retry with exponential backoff.

Shared by the extraction service client (429/5xx/transport failures) and
the persister (transient store errors). Delays are deterministic and
non-decreasing: ``min(max_delay, base_delay * 2 ** (attempt - 1))``.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Optional, TypeVar

from ..budget import Deadline
from ..errors import ProcessingTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})


class RetryExhaustedError(Exception):
    """Every attempt failed with a retryable error."""

    def __init__(self, last_error: Exception, attempts: int):
        self.last_error = last_error
        self.attempts = attempts
        super().__init__(f"Gave up after {attempts} attempts: {last_error}")


@dataclass
class RetryPolicy:
    """Attempt ceiling and backoff curve."""

    max_attempts: int = 4
    base_delay: float = 0.5
    max_delay: float = 8.0

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after failed attempt number ``attempt`` (1-based)."""
        return min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))

    def delays(self) -> list[float]:
        """All delays a fully failing call would wait, in order."""
        return [self.delay_for(a) for a in range(1, self.max_attempts)]


def call_with_retry(
    fn: Callable[[int], T],
    policy: RetryPolicy,
    is_retryable: Callable[[Exception], bool],
    sleep: Callable[[float], None] = time.sleep,
    deadline: Optional[Deadline] = None,
    description: str = "call",
) -> T:
    """
    Call ``fn(attempt)`` until it succeeds or the attempt ceiling is hit.

    Non-retryable exceptions propagate immediately. A backoff sleep that
    would run past ``deadline`` raises ProcessingTimeoutError instead.

    Raises:
        RetryExhaustedError: All attempts failed with retryable errors
    """
    attempt = 1
    while True:
        try:
            return fn(attempt)
        except Exception as e:
            if not is_retryable(e):
                raise
            if attempt >= policy.max_attempts:
                raise RetryExhaustedError(e, attempt) from e

            delay = policy.delay_for(attempt)
            if deadline is not None and deadline.remaining() <= delay:
                raise ProcessingTimeoutError(
                    f"{description} still failing after {attempt} attempts "
                    f"with no time left to retry: {e}"
                ) from e

            logger.warning(
                "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                description,
                attempt,
                policy.max_attempts,
                e,
                delay,
            )
            sleep(delay)
            attempt += 1
