"""
State store for uploads, jobs and extracts.

SQLite-backed; each upload has at most one live extract.
"""

from .persistence import ExtractPersister
from .sqlite_store import ExtractRecord, JobRecord, StateStore, UploadRecord

__all__ = ["ExtractPersister", "ExtractRecord", "JobRecord", "StateStore", "UploadRecord"]
