"""Extraction service client.

Talks to an Ollama-compatible ``/api/chat`` endpoint with a strict JSON
output schema. All calls share one retry path:
- text: recovered statement text in the user message
- vision: page images attached to the user message
- page selection: which pages of a long statement hold transaction tables

Privacy constraints:
- Never log prompts or statement content at INFO level
- Response bodies are only logged (truncated) at DEBUG level
"""

from __future__ import annotations

import base64
import logging
import time
from collections.abc import Callable
from typing import Optional

import httpx

from ..budget import Deadline
from ..errors import (
    ExtractionServiceError,
    MalformedOutputError,
    ProcessingTimeoutError,
    ServiceUnavailableError,
)
from .prompts import PageSelectionPrompt, StatementPrompt
from .retry import RETRYABLE_STATUSES, RetryExhaustedError, RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)


class TransientServiceFailure(Exception):
    """A single attempt failed in a way worth retrying."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ExtractionServiceClient:
    """Client for the external extraction model.

    Features:
    - Bounded retry with exponential backoff on 429/5xx and transport errors
    - Timeouts clamped to the remaining job budget
    - Optional auth header for proxied deployments
    """

    def __init__(
        self,
        base_url: str,
        model_text: str,
        model_vision: str,
        auth_header: Optional[str] = None,
        timeout_seconds: float = 120.0,
        retry_policy: Optional[RetryPolicy] = None,
        prompt: Optional[StatementPrompt] = None,
        page_prompt: Optional[PageSelectionPrompt] = None,
        sleep: Callable[[float], None] = time.sleep,
        client: Optional[httpx.Client] = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Service URL (localhost, LAN, or remote).
            model_text: Model used for the text route.
            model_vision: Vision-capable model used for images.
            auth_header: "Bearer <token>" or "Header-Name: value".
            timeout_seconds: Per-call read timeout.
            retry_policy: Attempt ceiling and backoff curve.
            prompt: Prompt template.
            page_prompt: Prompt for picking transaction pages of long statements.
            sleep: Backoff sleep (injectable for tests).
            client: Pre-built httpx client (tests inject a MockTransport).
        """
        self.base_url = base_url.rstrip("/")
        self.model_text = model_text
        self.model_vision = model_vision
        self.timeout_seconds = timeout_seconds
        self.retry_policy = retry_policy or RetryPolicy()
        self.prompt = prompt or StatementPrompt()
        self.page_prompt = page_prompt or PageSelectionPrompt()
        self._sleep = sleep

        headers = {}
        if auth_header:
            # Support formats: "Bearer token" or "Custom-Header: value"
            if ":" in auth_header:
                key, value = auth_header.split(":", 1)
                headers[key.strip()] = value.strip()
            else:
                headers["Authorization"] = auth_header

        self._client = client or httpx.Client(
            timeout=httpx.Timeout(
                connect=10.0,
                read=float(timeout_seconds),
                write=30.0,
                pool=10.0,
            ),
            headers=headers,
        )
        if client is not None and headers:
            self._client.headers.update(headers)

    def extract_text(
        self, text: str, currency: str, deadline: Optional[Deadline] = None
    ) -> str:
        """Send recovered statement text; return the raw model output."""
        messages = [
            {"role": "system", "content": self.prompt.system_prompt},
            {"role": "user", "content": self.prompt.format_text_message(text, currency)},
        ]
        return self._chat(self.model_text, messages, deadline)

    def extract_images(
        self,
        images: list[bytes],
        currency: str,
        hint_text: Optional[str] = None,
        deadline: Optional[Deadline] = None,
    ) -> str:
        """Send page images (PNG/JPEG bytes); return the raw model output."""
        messages = [
            {"role": "system", "content": self.prompt.system_prompt},
            {
                "role": "user",
                "content": self.prompt.format_vision_message(currency, hint_text),
                "images": [base64.b64encode(img).decode("ascii") for img in images],
            },
        ]
        return self._chat(self.model_vision, messages, deadline)

    def identify_pages(self, pages: list[str], deadline: Optional[Deadline] = None) -> str:
        """Ask which pages hold transaction tables; return the raw model output."""
        messages = [
            {"role": "system", "content": self.page_prompt.system_prompt},
            {"role": "user", "content": self.page_prompt.format_pages_message(pages)},
        ]
        return self._chat(self.model_text, messages, deadline, schema=self.page_prompt.schema)

    def _chat(
        self,
        model: str,
        messages: list[dict],
        deadline: Optional[Deadline],
        schema: Optional[dict] = None,
    ) -> str:
        payload = {
            "model": model,
            "messages": messages,
            "stream": False,
            "format": schema or self.prompt.schema,
            "options": {"temperature": 0},
        }

        def attempt(number: int) -> str:
            timeout = (
                deadline.cap(self.timeout_seconds, "Extraction")
                if deadline is not None
                else self.timeout_seconds
            )
            logger.debug(
                "Calling extraction model %s (attempt %d, timeout %.0fs)", model, number, timeout
            )
            return self._post_once(payload, timeout)

        try:
            content = call_with_retry(
                attempt,
                self.retry_policy,
                is_retryable=lambda e: isinstance(e, TransientServiceFailure),
                sleep=self._sleep,
                deadline=deadline,
                description=f"Extraction call to {model}",
            )
        except RetryExhaustedError as e:
            last = e.last_error
            status = getattr(last, "status_code", None)
            cause = f"HTTP {status}" if status else str(last)
            raise ServiceUnavailableError(
                f"Extraction service unavailable after {e.attempts} attempts (last error: {cause})",
                status_code=status,
                attempts=e.attempts,
            ) from last

        logger.debug("Extraction model %s returned %d chars", model, len(content))
        return content

    def _post_once(self, payload: dict, timeout: float) -> str:
        url = f"{self.base_url}/api/chat"
        try:
            response = self._client.post(
                url,
                json=payload,
                timeout=httpx.Timeout(
                    connect=min(10.0, timeout), read=timeout, write=30.0, pool=10.0
                ),
            )
        except httpx.TimeoutException as e:
            raise ProcessingTimeoutError(
                f"Extraction request timed out after {timeout:.0f}s"
            ) from e
        except httpx.TransportError as e:
            raise TransientServiceFailure(f"Connection to extraction service failed: {e}") from e

        if response.status_code in RETRYABLE_STATUSES:
            raise TransientServiceFailure(
                f"Extraction service returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        if response.is_error:
            logger.debug("Extraction error body: %s", response.text[:500])
            raise ExtractionServiceError(
                f"Extraction service returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise MalformedOutputError(f"Extraction service returned non-JSON body: {e}") from e

        message = data.get("message") if isinstance(data, dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str) or not content.strip():
            raise MalformedOutputError("Extraction service returned an empty message")
        return content

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> ExtractionServiceClient:
        return self

    def __exit__(self, *args) -> None:
        self.close()
