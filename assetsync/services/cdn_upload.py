"""CDN upload service on top of the object storage client.

Files are stored under ``StorageSettings.build_full_path(remote_path)``
with their SHA-1 recorded as object metadata, which lets a later upload
of identical bytes be skipped after a single metadata lookup.
"""

import asyncio
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

from assetsync.core.config import StorageSettings
from assetsync.services.integrity import file_digest
from assetsync.services.object_storage import (
    SHA1_METADATA_KEY,
    MinIOClient,
    ObjectStorageClient,
    ObjectStorageError,
    StoredObject,
)
from assetsync.services.worker_pool import BoundedWorkerPool

logger = logging.getLogger(__name__)

CONTENT_TYPES: dict[str, str] = {
    ".json": "application/json",
    ".glb": "model/gltf-binary",
    ".gltf": "model/gltf+json",
    ".ktx2": "image/ktx2",
    ".basis": "image/basis",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
    ".bin": "application/octet-stream",
    ".txt": "text/plain",
    ".html": "text/html",
    ".css": "text/css",
    ".js": "application/javascript",
}


def get_content_type(file_path: str) -> str:
    return CONTENT_TYPES.get(PurePosixPath(file_path).suffix.lower(), "application/octet-stream")


@dataclass
class ObjectUploadResult:
    """Outcome of uploading one file."""

    local_path: str
    remote_path: str
    success: bool = False
    skipped: bool = False
    file_id: str | None = None
    cdn_url: str | None = None
    content_sha1: str | None = None
    content_length: int = 0
    error_message: str | None = None


@dataclass
class UploadProgress:
    current_file: str
    current_file_index: int
    total_files: int
    bytes_uploaded: int
    total_bytes: int
    status: str

    @property
    def percent_complete(self) -> float:
        if self.total_files <= 0:
            return 0.0
        return self.current_file_index / self.total_files * 100


@dataclass
class ObjectBatchResult:
    success_count: int = 0
    skipped_count: int = 0
    failed_count: int = 0
    total_bytes_uploaded: int = 0
    duration: float = 0.0
    errors: list[str] = field(default_factory=list)
    results: list[ObjectUploadResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed_count == 0 and not self.errors


class CdnUploadService:
    """Uploads files to the CDN origin bucket."""

    def __init__(
        self,
        settings: StorageSettings,
        client: ObjectStorageClient | None = None,
    ):
        self.settings = settings
        self._client = client
        self._authorized = False

    @property
    def is_authorized(self) -> bool:
        return self._authorized and self._client is not None

    async def authorize(self, settings: StorageSettings | None = None) -> bool:
        """Validate settings and check that the bucket is reachable."""
        if settings is not None:
            self.settings = settings
            self._client = None
        self._authorized = False

        if not self.settings.is_valid:
            logger.error("CDN storage settings are invalid")
            return False

        if self._client is None:
            self._client = MinIOClient.from_settings(self.settings)

        try:
            exists = await self._client.bucket_exists(self.settings.bucket)
        except ObjectStorageError as e:
            logger.error(f"CDN authorization error: {e}")
            return False

        if not exists:
            logger.error(f"CDN bucket does not exist: {self.settings.bucket}")
            return False

        self._authorized = True
        logger.info(f"CDN storage authorized for bucket {self.settings.bucket}")
        return True

    async def get_file_info(self, remote_path: str) -> StoredObject | None:
        """Stored metadata of a remote object, or None if absent or not authorized."""
        if not self.is_authorized:
            return None
        full_path = self.settings.build_full_path(remote_path)
        return await self._client.stat_object(self.settings.bucket, full_path)

    async def upload_file(
        self,
        local_path: str,
        remote_path: str,
        content_type: str | None = None,
    ) -> ObjectUploadResult:
        """Upload one file. Never raises for transfer failures."""
        result = ObjectUploadResult(local_path=local_path, remote_path=remote_path)

        if not self.is_authorized:
            result.error_message = "Not authorized"
            return result

        path = Path(local_path)
        if not path.is_file():
            result.error_message = f"File not found: {local_path}"
            return result

        full_path = self.settings.build_full_path(remote_path)
        try:
            sha1 = await file_digest(path, "sha1")

            if self.settings.skip_existing:
                existing = await self.get_file_info(remote_path)
                if existing is not None and existing.sha1 == sha1:
                    logger.debug(f"Skipping {remote_path} - file exists with same hash")
                    result.success = True
                    result.skipped = True
                    result.file_id = existing.etag
                    result.content_sha1 = sha1
                    result.content_length = existing.size
                    result.cdn_url = self.settings.build_cdn_url(remote_path)
                    return result

            put = await self._client.put_file(
                self.settings.bucket,
                full_path,
                str(path),
                content_type=content_type or get_content_type(local_path),
                metadata={SHA1_METADATA_KEY: sha1},
            )
        except (ObjectStorageError, OSError) as e:
            logger.error(f"Upload error: {local_path}: {e}")
            result.error_message = str(e)
            return result

        result.success = True
        result.file_id = put.version_id or put.etag
        result.content_sha1 = sha1
        result.content_length = path.stat().st_size
        result.cdn_url = self.settings.build_cdn_url(remote_path)
        logger.info(f"Uploaded: {remote_path} ({result.content_length} bytes)")
        return result

    async def upload_batch(
        self,
        files: Iterable[tuple[str, str]],
        on_progress: Callable[[UploadProgress], None] | None = None,
    ) -> ObjectBatchResult:
        """Upload ``(local_path, remote_path)`` pairs with bounded concurrency."""
        file_list = list(files)
        result = ObjectBatchResult()
        started = time.monotonic()
        lock = asyncio.Lock()
        processed = 0

        total_bytes = sum(Path(local).stat().st_size for local, _ in file_list if Path(local).is_file())

        async def upload_one(pair: tuple[str, str]) -> ObjectUploadResult:
            nonlocal processed
            local_path, remote_path = pair
            upload_result = await self.upload_file(local_path, remote_path)

            async with lock:
                processed += 1
                result.results.append(upload_result)
                if upload_result.success:
                    if upload_result.skipped:
                        result.skipped_count += 1
                    else:
                        result.success_count += 1
                        result.total_bytes_uploaded += upload_result.content_length
                else:
                    result.failed_count += 1
                    if upload_result.error_message:
                        result.errors.append(f"{local_path}: {upload_result.error_message}")

                if on_progress:
                    on_progress(
                        UploadProgress(
                            current_file=local_path,
                            current_file_index=processed,
                            total_files=len(file_list),
                            bytes_uploaded=result.total_bytes_uploaded,
                            total_bytes=total_bytes,
                            status="Uploaded" if upload_result.success else "Failed",
                        )
                    )
            return upload_result

        pool = BoundedWorkerPool(max(1, self.settings.max_concurrent_uploads), name="cdn-uploads")
        await pool.map(upload_one, file_list)

        result.duration = time.monotonic() - started
        logger.info(
            f"Batch upload complete: {result.success_count} uploaded, {result.skipped_count} skipped, "
            f"{result.failed_count} failed in {result.duration:.1f}s"
        )
        return result

    async def upload_directory(
        self,
        local_directory: str,
        remote_prefix: str = "",
        pattern: str = "*",
        recursive: bool = True,
        on_progress: Callable[[UploadProgress], None] | None = None,
    ) -> ObjectBatchResult:
        """Upload every file under a directory, keeping relative paths."""
        root = Path(local_directory)
        if not root.is_dir():
            return ObjectBatchResult(errors=[f"Directory not found: {local_directory}"])

        candidates = root.rglob(pattern) if recursive else root.glob(pattern)
        pairs = []
        for file_path in sorted(candidates):
            if not file_path.is_file():
                continue
            relative = file_path.relative_to(root).as_posix()
            remote = f"{remote_prefix.rstrip('/')}/{relative}" if remote_prefix else relative
            pairs.append((str(file_path), remote))

        return await self.upload_batch(pairs, on_progress)

    async def delete_file(self, remote_path: str) -> bool:
        if not self.is_authorized:
            return False
        full_path = self.settings.build_full_path(remote_path)
        try:
            await self._client.delete_object(self.settings.bucket, full_path)
        except ObjectStorageError as e:
            logger.error(f"Failed to delete {full_path}: {e}")
            return False
        logger.info(f"Deleted: {full_path}")
        return True
