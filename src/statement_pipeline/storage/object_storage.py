"""
Object storage access.

The pipeline only ever asks storage for a short-lived signed URL; the bytes
are then downloaded over plain HTTP by the DocumentFetcher.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..errors import FetchError

logger = logging.getLogger(__name__)


class ObjectStorage(ABC):
    """Anything that can mint a signed GET URL for an object key."""

    @abstractmethod
    def signed_url(self, bucket: str, object_key: str, ttl_seconds: int) -> str:
        """
        Return a URL that allows GET on the object for ``ttl_seconds``.

        Object keys are opaque and never contain the bucket name.
        """
        pass


class S3ObjectStorage(ObjectStorage):
    """S3-compatible storage (AWS, MinIO, R2) via boto3 presigned URLs."""

    def __init__(
        self,
        endpoint_url: Optional[str] = None,
        region: Optional[str] = None,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        client=None,
    ):
        """
        Initialize the S3 client.

        Args:
            endpoint_url: Custom endpoint for S3-compatible stores
            region: Bucket region
            access_key: Access key id (falls back to the boto3 credential chain)
            secret_key: Secret key
            client: Pre-built boto3 S3 client (tests)
        """
        self.s3 = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            region_name=region,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
        )

    def signed_url(self, bucket: str, object_key: str, ttl_seconds: int) -> str:
        key = object_key.lstrip("/")
        if key.startswith(f"{bucket}/"):
            # Keys are stored without the bucket; tolerate legacy prefixed refs
            key = key[len(bucket) + 1 :]
        try:
            return self.s3.generate_presigned_url(
                "get_object",
                Params={"Bucket": bucket, "Key": key},
                ExpiresIn=ttl_seconds,
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to sign URL for {bucket}/{key}: {e}")
            raise FetchError(f"Could not create signed URL for {key}: {e}") from e
