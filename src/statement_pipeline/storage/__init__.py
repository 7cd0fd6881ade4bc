"""
Object storage access and document download.
"""

from .fetcher import DocumentFetcher, FetchedDocument
from .object_storage import ObjectStorage, S3ObjectStorage

__all__ = [
    "DocumentFetcher",
    "FetchedDocument",
    "ObjectStorage",
    "S3ObjectStorage",
]
