"""
S3-backed storage for event images.
"""

import asyncio
import logging
import os
import uuid
from typing import Optional
from urllib.parse import urlparse

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..config import Settings
from ..utils.exceptions import DependencyError, ValidationError
from ..utils.retry import retry_on_dependency_error

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_TYPES = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
}


class S3ImageStore:
    """Uploads and deletes event images in an S3 bucket.

    boto3 is blocking, so calls run in a worker thread.
    """

    key_prefix = "events/"

    def __init__(self, settings: Settings, client=None):
        self.settings = settings
        self.bucket = settings.s3_bucket_name
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client(
                "s3",
                region_name=self.settings.s3_region,
                endpoint_url=self.settings.s3_endpoint_url,
            )
        return self._client

    def validate(self, data: bytes, mime_type: Optional[str]) -> str:
        """Return the file extension for an acceptable image, else raise."""
        if mime_type not in ALLOWED_IMAGE_TYPES:
            raise ValidationError(
                f"Unsupported image type: {mime_type}",
                field_errors={"file": [f"must be one of {', '.join(sorted(ALLOWED_IMAGE_TYPES))}"]}
            )
        if not data:
            raise ValidationError("Image file is empty", field_errors={"file": ["empty"]})
        if len(data) > self.settings.max_image_bytes:
            raise ValidationError(
                "Image file is too large",
                field_errors={"file": [f"must be at most {self.settings.max_image_bytes} bytes"]}
            )
        return ALLOWED_IMAGE_TYPES[mime_type]

    async def upload(self, data: bytes, filename: str, mime_type: str) -> str:
        """Store an image and return its public URL."""
        extension = self.validate(data, mime_type)
        if not self.bucket:
            raise DependencyError("image storage", "no bucket configured")

        original_ext = os.path.splitext(filename or "")[1].lstrip(".").lower()
        key = f"{self.key_prefix}{uuid.uuid4()}.{original_ext or extension}"

        await self._put_object(key, data, mime_type)
        logger.info("Uploaded event image %s (%d bytes)", key, len(data))
        return self.url_for(key)

    async def delete(self, url: str) -> None:
        if not self.bucket:
            raise DependencyError("image storage", "no bucket configured")
        key = self.key_from_url(url)
        await self._delete_object(key)
        logger.info("Deleted event image %s", key)

    def url_for(self, key: str) -> str:
        if self.settings.s3_endpoint_url:
            return f"{self.settings.s3_endpoint_url.rstrip('/')}/{self.bucket}/{key}"
        return f"https://{self.bucket}.s3.amazonaws.com/{key}"

    def key_from_url(self, url: str) -> str:
        """Accepts a full virtual-host or path-style URL, or a bare key."""
        parsed = urlparse(url)
        if not parsed.scheme:
            return url.lstrip("/")
        path = parsed.path.lstrip("/")
        if path.startswith(f"{self.bucket}/"):
            path = path[len(self.bucket) + 1:]
        return path

    @retry_on_dependency_error((BotoCoreError, ClientError), service_name="image storage")
    async def _put_object(self, key: str, data: bytes, mime_type: str) -> None:
        await asyncio.to_thread(
            self.client.put_object,
            Bucket=self.bucket,
            Key=key,
            Body=data,
            ContentType=mime_type,
        )

    @retry_on_dependency_error((BotoCoreError, ClientError), service_name="image storage")
    async def _delete_object(self, key: str) -> None:
        await asyncio.to_thread(self.client.delete_object, Bucket=self.bucket, Key=key)
