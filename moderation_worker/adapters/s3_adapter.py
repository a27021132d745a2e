"""
AWS S3 adapter for object storage.

Stores uploaded videos, extracted frames and screenshots in S3.
"""

import boto3
import logging
from urllib.parse import urlparse, unquote, quote
from botocore.exceptions import BotoCoreError, ClientError

from .base import StorageAdapter, with_unique_suffix
from ..exceptions import StorageError

logger = logging.getLogger("moderation_worker")


class S3StorageAdapter(StorageAdapter):
    """AWS S3 implementation of storage adapter"""

    def __init__(self, bucket: str, region: str = "us-east-1", prefix: str = "video-moderation/",
                 public_acl: bool = False, client=None):
        self.bucket = bucket
        self.region = region
        self.prefix = prefix
        self.public_acl = public_acl
        self.s3 = client

    def connect(self):
        """Initialize S3 client"""
        if self.s3 is not None:
            return
        try:
            self.s3 = boto3.client('s3', region_name=self.region)
            logger.info(f"S3 storage connected to bucket: {self.bucket}")
        except Exception as e:
            logger.error(f"Failed to connect to S3: {e}")
            raise

    @property
    def base_url(self) -> str:
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com"

    def put(self, name: str, data: bytes, content_type: str,
            public: bool = True, unique_suffix: bool = True) -> str:
        key = f"{self.prefix}{with_unique_suffix(name) if unique_suffix else name}"

        extra = {}
        if public and self.public_acl:
            extra['ACL'] = 'public-read'

        try:
            self.s3.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                **extra
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error storing object {key} in S3: {e}")
            raise StorageError(f"Error storing object {key}: {e}") from e

        logger.debug(f"Stored {len(data)} bytes as s3://{self.bucket}/{key}")
        return f"{self.base_url}/{quote(key)}"

    def fetch(self, url: str) -> bytes:
        key = self._key_from_url(url)
        try:
            response = self.s3.get_object(Bucket=self.bucket, Key=key)
            return response['Body'].read()
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error fetching object {key} from S3: {e}")
            raise StorageError(f"Error fetching object {key}: {e}") from e

    def delete(self, url: str) -> None:
        key = self._key_from_url(url)
        try:
            self.s3.delete_object(Bucket=self.bucket, Key=key)
            logger.info(f"Deleted s3://{self.bucket}/{key}")
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error deleting object {key} from S3: {e}")
            raise StorageError(f"Error deleting object {key}: {e}") from e

    def _key_from_url(self, url: str) -> str:
        """Accepts both https URLs returned by put() and s3:// URLs"""
        parsed = urlparse(url)
        if parsed.scheme == 's3':
            if parsed.netloc != self.bucket:
                raise StorageError(f"URL does not belong to bucket {self.bucket}: {url}")
            return unquote(parsed.path.lstrip('/'))

        if not url.startswith(f"{self.base_url}/"):
            raise StorageError(f"URL does not belong to bucket {self.bucket}: {url}")
        return unquote(parsed.path.lstrip('/'))

    def close(self):
        """Close S3 connection"""
        self.s3 = None
        logger.info("S3 storage connection closed")

