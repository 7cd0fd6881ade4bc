"""
Extraction module.

Routes an upload to the text or vision route of the extraction service,
with bounded retries, tolerant JSON recovery and strict payload validation.
"""

from .inspection import DocumentKind, inspect_document
from .json_recovery import JSONRecoveryError, extract_json
from .retry import RetryExhaustedError, RetryPolicy, call_with_retry
from .router import ExtractionRouter
from .service import ExtractionServiceClient

__all__ = [
    "DocumentKind",
    "ExtractionRouter",
    "ExtractionServiceClient",
    "JSONRecoveryError",
    "RetryExhaustedError",
    "RetryPolicy",
    "call_with_retry",
    "extract_json",
    "inspect_document",
]
