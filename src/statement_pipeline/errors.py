"""
Typed pipeline errors.

Lower components raise these; only the job coordinator decides whether a
failure is fatal or gets re-queued. Every error carries a stable ``code``
that is stored on the upload as the user-facing classification.
"""

from typing import Optional


class PipelineError(Exception):
    """Base exception for all pipeline errors."""

    code = "pipeline_error"
    user_message = "We couldn't process this statement."

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


# Fetch / storage


class FetchError(PipelineError):
    """Downloading a stored document failed."""

    code = "fetch_failed"
    user_message = "We couldn't read the uploaded file."


class DocumentNotFoundError(FetchError):
    """The object does not exist (or is not readable) in storage. Fatal."""

    code = "document_not_found"
    user_message = "The uploaded file could not be found. Please upload it again."

    def __init__(self, file_ref: str, status_code: Optional[int] = None):
        self.file_ref = file_ref
        self.status_code = status_code
        suffix = f" (HTTP {status_code})" if status_code else ""
        super().__init__(f"Document not found: {file_ref}{suffix}")


class FetchTransientError(FetchError):
    """Network-level failure after the fetch layer's own retries."""

    code = "storage_unavailable"
    user_message = "Storage is temporarily unavailable. We'll retry shortly."


class EmptyDocumentError(FetchError):
    """The download succeeded but returned zero bytes."""

    code = "empty_document"
    user_message = "The uploaded file is empty."


# Extraction service


class ExtractionServiceError(PipelineError):
    """The extraction service rejected or failed the request."""

    code = "extraction_failed"
    user_message = "We couldn't extract transactions from this statement."

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ServiceUnavailableError(ExtractionServiceError):
    """Retryable failures persisted through every in-call attempt."""

    code = "extraction_unavailable"
    user_message = "The extraction service is busy. Please try again later."

    def __init__(self, message: str, status_code: Optional[int] = None, attempts: int = 0):
        self.attempts = attempts
        super().__init__(message, status_code=status_code)


class ExtractionRefusedError(ExtractionServiceError):
    """The model explicitly declined to process the document."""

    code = "extraction_refused"
    user_message = "This document doesn't look like a bank statement we can read."


class MalformedOutputError(PipelineError):
    """Service output could not be parsed as JSON, even after recovery."""

    code = "malformed_output"
    user_message = "We couldn't parse the extracted statement data."


class SchemaValidationError(MalformedOutputError):
    """Service output parsed but does not match the transaction schema."""

    code = "schema_validation_failed"

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        super().__init__(f"{path}: {message}" if path else message)


class UnsupportedDocumentError(PipelineError):
    """Document has no readable text and is not an image."""

    code = "unsupported_document"
    user_message = "This file type isn't supported. Upload a PDF or a photo of your statement."


class ProcessingTimeoutError(PipelineError):
    """A fetch, extraction or the whole job ran out of time."""

    code = "file_too_complex"
    user_message = "This file is too complex to process in time. Try a smaller statement."


class PersistenceError(PipelineError):
    """Writing results to the store failed after I/O-level retries."""

    code = "persistence_failed"
    user_message = "We couldn't save the results. Please try again."


class WorkerLostError(PipelineError):
    """A job kept losing its worker mid-run and ran out of re-drives."""

    code = "worker_lost"
    user_message = "Processing this statement keeps failing. Try a smaller statement."
