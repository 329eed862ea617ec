"""Object storage abstraction for S3-compatible CDN origins.

This module provides an abstract interface for the object operations the
upload pipeline needs, with a concrete implementation on the MinIO SDK,
which speaks to any S3-compatible endpoint (Backblaze B2, MinIO, AWS S3).
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from functools import partial

from minio import Minio
from minio.error import S3Error

from assetsync.core.config import StorageSettings

logger = logging.getLogger(__name__)

# Thread pool for running sync MinIO operations in async context
_executor = ThreadPoolExecutor(max_workers=10, thread_name_prefix="minio_")

SHA1_METADATA_KEY = "sha1"

_NOT_FOUND_CODES = ("NoSuchKey", "NoSuchObject", "ResourceNotFound")


@dataclass
class StoredObject:
    """Metadata of an object already present in the bucket."""

    key: str
    size: int
    etag: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def sha1(self) -> str | None:
        return self.metadata.get(SHA1_METADATA_KEY)


@dataclass
class PutResult:
    key: str
    etag: str | None = None
    version_id: str | None = None


class ObjectStorageClient(ABC):
    """Abstract interface for object storage operations."""

    @abstractmethod
    async def put_file(
        self,
        bucket: str,
        key: str,
        file_path: str,
        content_type: str = "application/octet-stream",
        metadata: dict[str, str] | None = None,
    ) -> PutResult:
        """Upload a local file.

        Args:
            bucket: Bucket name
            key: Object key (path in storage)
            file_path: Local file to upload
            content_type: MIME type of the content
            metadata: User metadata stored with the object

        Raises:
            ObjectStorageError: If upload fails
        """
        ...

    @abstractmethod
    async def stat_object(self, bucket: str, key: str) -> StoredObject | None:
        """Return object metadata, or None if the object does not exist."""
        ...

    @abstractmethod
    async def delete_object(self, bucket: str, key: str) -> None:
        """Delete an object. Does not raise if it doesn't exist."""
        ...

    @abstractmethod
    async def bucket_exists(self, bucket: str) -> bool:
        ...


class ObjectStorageError(Exception):
    """Base exception for object storage operations."""
    pass


def _normalize_metadata(raw) -> dict[str, str]:
    """Strip the ``x-amz-meta-`` prefix and lowercase user metadata keys."""
    result: dict[str, str] = {}
    if not raw:
        return result
    for key, value in raw.items():
        lowered = key.lower()
        if lowered.startswith("x-amz-meta-"):
            result[lowered[len("x-amz-meta-"):]] = value
    return result


class MinIOClient(ObjectStorageClient):
    """MinIO SDK implementation of ObjectStorageClient.

    Uses sync minio SDK with async wrappers via ThreadPoolExecutor.
    """

    def __init__(
        self,
        endpoint: str,
        access_key: str,
        secret_key: str,
        secure: bool = True,
        region: str | None = None,
    ):
        self._client = Minio(
            endpoint,
            access_key=access_key,
            secret_key=secret_key,
            secure=secure,
            region=region,
        )

    @classmethod
    def from_settings(cls, settings: StorageSettings) -> MinIOClient:
        return cls(
            endpoint=settings.endpoint,
            access_key=settings.access_key,
            secret_key=settings.secret_key,
            secure=settings.secure,
            region=settings.region,
        )

    def _run_sync(self, func, *args, **kwargs):
        """Run a sync function in the thread pool."""
        loop = asyncio.get_event_loop()
        return loop.run_in_executor(_executor, partial(func, *args, **kwargs))

    async def put_file(
        self,
        bucket: str,
        key: str,
        file_path: str,
        content_type: str = "application/octet-stream",
        metadata: dict[str, str] | None = None,
    ) -> PutResult:
        """Upload a local file to the bucket."""
        try:
            result = await self._run_sync(
                self._client.fput_object,
                bucket,
                key,
                file_path,
                content_type=content_type,
                metadata=metadata,
            )
            logger.debug(f"Uploaded object: {bucket}/{key} from {file_path}")
            return PutResult(
                key=key,
                etag=getattr(result, "etag", None),
                version_id=getattr(result, "version_id", None),
            )
        except S3Error as e:
            logger.error(f"Failed to upload {bucket}/{key}: {e}")
            raise ObjectStorageError(f"Failed to upload object: {e}") from e
        except Exception as e:
            logger.error(f"Unexpected error uploading {bucket}/{key}: {e}")
            raise ObjectStorageError(f"Failed to upload object: {e}") from e

    async def stat_object(self, bucket: str, key: str) -> StoredObject | None:
        """Fetch object metadata from the bucket."""
        try:
            info = await self._run_sync(self._client.stat_object, bucket, key)
        except S3Error as e:
            if e.code in _NOT_FOUND_CODES:
                return None
            logger.error(f"Failed to stat {bucket}/{key}: {e}")
            raise ObjectStorageError(f"Failed to stat object: {e}") from e
        except Exception as e:
            logger.error(f"Unexpected error stating {bucket}/{key}: {e}")
            raise ObjectStorageError(f"Failed to stat object: {e}") from e

        return StoredObject(
            key=key,
            size=info.size or 0,
            etag=info.etag,
            metadata=_normalize_metadata(info.metadata),
        )

    async def delete_object(self, bucket: str, key: str) -> None:
        """Delete object from the bucket (idempotent)."""
        try:
            await self._run_sync(self._client.remove_object, bucket, key)
            logger.debug(f"Deleted object: {bucket}/{key}")
        except S3Error as e:
            if e.code in _NOT_FOUND_CODES:
                logger.debug(f"Object already deleted: {bucket}/{key}")
                return
            logger.error(f"Failed to delete {bucket}/{key}: {e}")
            raise ObjectStorageError(f"Failed to delete object: {e}") from e
        except Exception as e:
            logger.error(f"Unexpected error deleting {bucket}/{key}: {e}")
            raise ObjectStorageError(f"Failed to delete object: {e}") from e

    async def bucket_exists(self, bucket: str) -> bool:
        try:
            return await self._run_sync(self._client.bucket_exists, bucket)
        except S3Error as e:
            logger.error(f"Failed to check bucket {bucket}: {e}")
            raise ObjectStorageError(f"Failed to check bucket: {e}") from e
        except Exception as e:
            logger.error(f"Unexpected error checking bucket {bucket}: {e}")
            raise ObjectStorageError(f"Failed to check bucket: {e}") from e
