"""
Document fetcher.

Resolves a stored file reference to raw bytes through a short-lived signed
URL. Connection failures and 5xx responses are retried at the HTTP adapter
level with a small fixed count; what remains after that is reported as a
typed error for the coordinator to classify.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..errors import (
    DocumentNotFoundError,
    EmptyDocumentError,
    FetchError,
    FetchTransientError,
    ProcessingTimeoutError,
)
from .object_storage import ObjectStorage

logger = logging.getLogger(__name__)

NOT_FOUND_STATUSES = frozenset({403, 404, 410})
TRANSIENT_STATUSES = frozenset({408, 429, 500, 502, 503, 504})


@dataclass
class FetchedDocument:
    """Raw bytes of one stored file."""

    file_ref: str
    content: bytes
    content_type: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.content)


class DocumentFetcher:
    """
    Downloads uploaded files from object storage.

    Features:
    - Signed URL per fetch (never long-lived credentials on the wire)
    - Automatic retry with backoff for connection errors and 5xx
    - Timeout expiry surfaces as ProcessingTimeoutError
    """

    DEFAULT_TIMEOUT = 15.0
    CONNECT_TIMEOUT = 5.0

    def __init__(
        self,
        storage: ObjectStorage,
        bucket: str,
        ttl_seconds: int = 600,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = 2,
        backoff_factor: float = 0.3,
    ):
        """
        Initialize the fetcher.

        Args:
            storage: Signed URL provider
            bucket: Bucket holding uploaded statements
            ttl_seconds: Signed URL lifetime
            timeout: Read timeout in seconds
            max_retries: Retry attempts for transient failures
            backoff_factor: Backoff factor for retries
        """
        self.storage = storage
        self.bucket = bucket
        self.ttl_seconds = ttl_seconds
        self.timeout = timeout

        # Configure session with retry
        self.session = requests.Session()
        retry_strategy = Retry(
            total=max_retries,
            connect=max_retries,
            read=False,  # read timeouts are fatal, never retried
            status=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[500, 502, 503, 504],
            allowed_methods=["GET"],
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def fetch(self, file_ref: str, timeout: Optional[float] = None) -> FetchedDocument:
        """
        Download one file.

        Args:
            file_ref: Object key (no bucket name)
            timeout: Override for the read timeout, e.g. the remaining job budget

        Returns:
            FetchedDocument with non-empty content

        Raises:
            DocumentNotFoundError: Object missing or not readable (fatal)
            FetchTransientError: Network/5xx failure after retries
            EmptyDocumentError: Zero-byte object
            ProcessingTimeoutError: Download exceeded the timeout
        """
        url = self.storage.signed_url(self.bucket, file_ref, self.ttl_seconds)
        read_timeout = min(self.timeout, timeout) if timeout is not None else self.timeout
        connect_timeout = min(self.CONNECT_TIMEOUT, read_timeout)

        logger.debug(f"Fetching {file_ref} (timeout {read_timeout:.1f}s)")
        try:
            response = self.session.get(url, timeout=(connect_timeout, read_timeout))
        except requests.exceptions.Timeout as e:
            raise ProcessingTimeoutError(
                f"Download of {file_ref} timed out after {read_timeout:.0f}s"
            ) from e
        except requests.exceptions.ConnectionError as e:
            raise FetchTransientError(f"Failed to download {file_ref}: {e}") from e
        except requests.exceptions.RequestException as e:
            raise FetchError(f"Download of {file_ref} failed: {e}") from e

        if response.status_code in NOT_FOUND_STATUSES:
            raise DocumentNotFoundError(file_ref, status_code=response.status_code)
        if response.status_code in TRANSIENT_STATUSES:
            raise FetchTransientError(
                f"Storage returned HTTP {response.status_code} for {file_ref}"
            )
        if not response.ok:
            raise FetchError(f"Storage returned HTTP {response.status_code} for {file_ref}")

        content = response.content
        if not content:
            raise EmptyDocumentError(f"Downloaded file {file_ref} is empty")

        content_type = response.headers.get("Content-Type")
        logger.info(f"Fetched {file_ref}: {len(content)} bytes ({content_type or 'unknown type'})")
        return FetchedDocument(file_ref=file_ref, content=content, content_type=content_type)

    def close(self) -> None:
        self.session.close()
