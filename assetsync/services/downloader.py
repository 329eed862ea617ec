"""Single-resource download with local retries and integrity classification."""

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

import aiofiles
import httpx

from assetsync.core.config import Settings
from assetsync.core.exceptions import NetworkError
from assetsync.models.resource import DownloadStatus, Resource, ResourceKind, is_status
from assetsync.services.events import StatusEventBus
from assetsync.services.integrity import DEFAULT_SIZE_TOLERANCE, classify_download
from assetsync.services.manifest_store import ManifestStore, sanitize_path
from assetsync.services.playcanvas import PlayCanvasService
from assetsync.services.retry import RetryPolicy, Sleep, retry_async

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 8192

# Transport, HTTP status and filesystem errors are retried locally
RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (OSError, httpx.HTTPError, NetworkError)


@dataclass
class ResourceDownloadResult:
    """Outcome of downloading one resource."""

    success: bool
    status: str
    attempts: int = 1
    error: str | None = None


class ResourceDownloader:
    """Downloads one resource to its resolved local path."""

    def __init__(
        self,
        api: PlayCanvasService,
        store: ManifestStore,
        events: StatusEventBus | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        retry_policy: RetryPolicy | None = None,
        size_tolerance: float = DEFAULT_SIZE_TOLERANCE,
        sleep: Sleep | None = None,
    ):
        self.api = api
        self.store = store
        self.events = events or StatusEventBus()
        self.chunk_size = chunk_size
        self.retry_policy = retry_policy or RetryPolicy.fixed(5, 2.0, retry_on=RETRYABLE_ERRORS)
        self.size_tolerance = size_tolerance
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        api: PlayCanvasService,
        events: StatusEventBus | None = None,
        sleep: Sleep | None = None,
    ) -> "ResourceDownloader":
        return cls(
            api=api,
            store=ManifestStore(settings.projects_root),
            events=events,
            chunk_size=settings.download_chunk_size,
            retry_policy=RetryPolicy.fixed(
                settings.download_max_attempts,
                settings.download_retry_delay,
                retry_on=RETRYABLE_ERRORS,
            ),
            size_tolerance=settings.download_size_tolerance,
            sleep=sleep,
        )

    def ensure_path(
        self,
        resource: Resource,
        project_name: str,
        folder_paths: Mapping[int, str],
    ) -> str:
        """Resolve ``resource.path`` from the folder layout if it is unset."""
        if resource.path:
            return resource.path

        if resource.kind is ResourceKind.MATERIAL:
            file_name = f"{sanitize_path(resource.name) or 'Unknown'}.json"
        else:
            file_name = sanitize_path(resource.name) or "Unknown"
            extension = (resource.extension or "").lower()
            if extension and not file_name.lower().endswith(extension):
                file_name += extension

        resource.path = str(self.store.resource_path(project_name, folder_paths, file_name, resource.parent))
        return resource.path

    async def download(
        self,
        resource: Resource,
        project_name: str,
        folder_paths: Mapping[int, str],
    ) -> ResourceDownloadResult:
        """Download a resource according to its kind."""
        if resource.kind is ResourceKind.MATERIAL:
            return await self.download_material(resource, project_name, folder_paths)

        if not resource.url:
            await self.populate_metadata(resource)
        self.ensure_path(resource, project_name, folder_paths)
        return await self.download_file(resource)

    async def populate_metadata(self, resource: Resource) -> None:
        """Fill url, hash and size from ``GET /assets/{id}``."""
        detail = await self.api.get_asset(resource.id)
        if detail.file is None:
            return
        if detail.file.url:
            resource.url = self.api.resolve_file_url(detail.file.url)
        if detail.file.hash:
            resource.hash = detail.file.hash
        if detail.file.size is not None:
            resource.size = detail.file.size

    async def download_material(
        self,
        resource: Resource,
        project_name: str,
        folder_paths: Mapping[int, str],
    ) -> ResourceDownloadResult:
        """Save the full asset JSON of a material as ``{name}.json``."""
        path = Path(self.ensure_path(resource, project_name, folder_paths))
        try:
            detail = await self.api.get_asset(resource.id)
            path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(detail.raw, indent=2, ensure_ascii=False))
        except Exception as e:
            logger.error(f"Failed to download material {resource!r}: {e}")
            self.events.set_status(resource, DownloadStatus.ERROR)
            return ResourceDownloadResult(False, DownloadStatus.ERROR, 1, str(e))

        resource.download_progress = 100.0
        self.events.set_status(resource, DownloadStatus.DOWNLOADED)
        return ResourceDownloadResult(True, DownloadStatus.DOWNLOADED, 1)

    async def download_file(self, resource: Resource) -> ResourceDownloadResult:
        """Stream a file to disk, retrying transport and filesystem errors."""
        if not resource.path:
            self.events.set_status(resource, DownloadStatus.ERROR)
            return ResourceDownloadResult(False, DownloadStatus.ERROR, 0, "Resource path is missing")
        if not resource.url:
            self.events.set_status(resource, DownloadStatus.ERROR)
            return ResourceDownloadResult(False, DownloadStatus.ERROR, 0, "Resource URL is missing")

        attempts = 0

        async def attempt_download(attempt: int) -> str:
            nonlocal attempts
            attempts = attempt
            return await self._stream_once(resource, attempt)

        kwargs = {"sleep": self._sleep} if self._sleep else {}
        try:
            status = await retry_async(
                attempt_download,
                self.retry_policy,
                description=f"Download of {resource.name}",
                **kwargs,
            )
        except self.retry_policy.retry_on as e:
            self.events.set_status(resource, DownloadStatus.ERROR)
            return ResourceDownloadResult(False, DownloadStatus.ERROR, attempts, str(e))

        resource.download_progress = 100.0
        self.events.set_status(resource, status)
        return ResourceDownloadResult(is_status(status, DownloadStatus.DOWNLOADED), status, attempts)

    async def _stream_once(self, resource: Resource, attempt: int) -> str:
        self.events.set_status(resource, DownloadStatus.DOWNLOADING)
        resource.download_progress = 0.0

        path = Path(resource.path)
        async with self.api.client() as client:
            async with client.stream("GET", resource.url) as response:
                if not response.is_success:
                    raise NetworkError(
                        f"Failed to download resource: {response.status_code}",
                        url=resource.url,
                        retry_count=attempt,
                    )

                total_bytes = int(response.headers.get("content-length") or 0)
                path.parent.mkdir(parents=True, exist_ok=True)

                written = 0
                async with aiofiles.open(path, "wb") as f:
                    async for chunk in response.aiter_bytes(self.chunk_size):
                        await f.write(chunk)
                        written += len(chunk)
                        if total_bytes > 0:
                            resource.download_progress = round(written / total_bytes * 100, 2)

        if not path.is_file():
            raise FileNotFoundError(f"File was expected but not found: {path}")

        logger.debug(f"Wrote {written} bytes to {path}")
        return await classify_download(resource, total_bytes, self.size_tolerance)
