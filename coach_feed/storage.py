"""Blob storage for chat attachments (MinIO or S3)."""

import mimetypes
import uuid
from contextlib import AsyncExitStack
from typing import Any, Optional, Protocol

import aioboto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import StorageConfig
from .errors import StorageError
from .logger import get_logger

logger = get_logger(__name__)


class BlobStorage(Protocol):
    async def upload(self, data: bytes, content_type: str, owner_id: Optional[str] = None) -> str:
        """Store ``data`` and return its public URL."""

    async def delete(self, url: str) -> None: ...


def _extension(content_type: str) -> str:
    extension = mimetypes.guess_extension(content_type.split(";")[0].strip())
    if extension == ".jpe":
        return ".jpg"
    return extension or ".bin"


class S3BlobStorage:
    """BlobStorage on an S3-compatible bucket.

    Objects are stored under ``<prefix>/<owner>/<uuid><ext>`` and served from
    ``<public_url>/<key>``.
    """

    def __init__(self, config: StorageConfig) -> None:
        self.config = config
        self.session = aioboto3.Session()
        self._boto_config = BotoConfig(signature_version="s3v4")
        self._client: Optional[Any] = None
        self._exit_stack: Optional[AsyncExitStack] = None

    async def _get_client(self) -> Any:
        """Create the S3 client on first use and reuse it afterwards"""
        if self._client is None:
            self._exit_stack = AsyncExitStack()
            self._client = await self._exit_stack.enter_async_context(
                self.session.client(
                    service_name="s3",
                    endpoint_url=self.config.endpoint_url,
                    aws_access_key_id=self.config.access_key,
                    aws_secret_access_key=self.config.secret_key,
                    region_name=self.config.region,
                    config=self._boto_config,
                )
            )
            logger.info(f"S3 client initialized for {self.config.endpoint_url}")
        return self._client

    async def close(self) -> None:
        if self._exit_stack is not None:
            await self._exit_stack.aclose()
            self._client = None
            self._exit_stack = None

    def public_url(self, key: str) -> str:
        return f"{self.config.public_url.rstrip('/')}/{key}"

    def key_for(self, url: str) -> str:
        base = self.config.public_url.rstrip("/") + "/"
        if not url.startswith(base):
            raise StorageError(f"URL is not served by this storage: {url}")
        return url[len(base):]

    async def upload(self, data: bytes, content_type: str, owner_id: Optional[str] = None) -> str:
        parts = [self.config.prefix] if self.config.prefix else []
        if owner_id:
            parts.append(owner_id)
        parts.append(f"{uuid.uuid4().hex}{_extension(content_type)}")
        key = "/".join(parts)

        try:
            s3 = await self._get_client()
            await s3.put_object(
                Bucket=self.config.bucket_name,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to upload {key}: {e}")
            raise StorageError(f"Failed to upload attachment: {e}") from e

        url = self.public_url(key)
        logger.info(f"Uploaded {len(data)} bytes to {key}")
        return url

    async def delete(self, url: str) -> None:
        key = self.key_for(url)
        try:
            s3 = await self._get_client()
            await s3.delete_object(Bucket=self.config.bucket_name, Key=key)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to delete {key}: {e}")
            raise StorageError(f"Failed to delete attachment: {e}") from e
        logger.info(f"Deleted {key}")
