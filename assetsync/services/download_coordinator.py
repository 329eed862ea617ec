"""Batch download coordination with bounded concurrency and batch-level retries.

One call to ``download_assets``:

1. filters the input down to resources whose status requires a download,
2. runs up to ``batch_attempts`` passes over the remaining set through a
   bounded worker pool,
3. waits ``base_delay * 2 ** (attempt - 1)`` between passes,
4. reports counts derived from the final resource statuses.

A failing resource never aborts the batch. Only configuration problems
end the call early, and they are reported in the result rather than
raised. ``asyncio.CancelledError`` propagates untouched.
"""

import asyncio
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

from assetsync.core.config import Settings
from assetsync.core.exceptions import ConfigurationError
from assetsync.models.resource import DownloadStatus, Resource
from assetsync.services.downloader import ResourceDownloader
from assetsync.services.events import StatusEventBus
from assetsync.services.retry import RetryPolicy, Sleep
from assetsync.services.worker_pool import BoundedWorkerPool

logger = logging.getLogger(__name__)


@dataclass
class DownloadContext:
    """What to download and where it belongs."""

    resources: list[Resource]
    project_name: str
    folder_paths: Mapping[int, str] = field(default_factory=dict)


@dataclass
class DownloadBatchResult:
    succeeded: int = 0
    failed: int = 0
    total: int = 0


@dataclass
class AssetDownloadResult:
    success: bool
    message: str
    batch: DownloadBatchResult = field(default_factory=DownloadBatchResult)


@dataclass
class DownloadProgress:
    """Reported once per resource per pass, after its attempt finishes."""

    resource: Resource
    completed: int
    total: int
    attempt: int


class DownloadCoordinator:
    """Reconciles a resource set against disk by downloading what is missing."""

    def __init__(
        self,
        downloader: ResourceDownloader,
        concurrency: int = 16,
        batch_policy: RetryPolicy | None = None,
        sleep: Sleep = asyncio.sleep,
        on_pool_change: Callable[[int], None] | None = None,
    ):
        self.downloader = downloader
        self.concurrency = concurrency
        self.batch_policy = batch_policy or RetryPolicy.exponential(3, 1.0)
        self._sleep = sleep
        self._on_pool_change = on_pool_change

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        downloader: ResourceDownloader,
        sleep: Sleep = asyncio.sleep,
    ) -> "DownloadCoordinator":
        return cls(
            downloader=downloader,
            concurrency=settings.download_concurrency,
            batch_policy=RetryPolicy.exponential(
                settings.download_batch_attempts,
                settings.download_batch_base_delay,
            ),
            sleep=sleep,
        )

    @property
    def events(self) -> StatusEventBus:
        return self.downloader.events

    def _validate(self, context: DownloadContext) -> None:
        if not self.downloader.api.api_key:
            raise ConfigurationError("PlayCanvas API key is missing")
        if not context.project_name:
            raise ConfigurationError("Project name is missing")
        if not str(self.downloader.store.projects_root):
            raise ConfigurationError("Projects root is missing")

    async def download_assets(
        self,
        context: DownloadContext,
        on_progress: Callable[[DownloadProgress], None] | None = None,
    ) -> AssetDownloadResult:
        """Download every resource of ``context`` that requires it."""
        try:
            self._validate(context)
        except ConfigurationError as e:
            logger.error(f"Download aborted: {e}")
            return AssetDownloadResult(False, str(e), DownloadBatchResult(0, 0, 0))

        downloadable = [resource for resource in context.resources if resource.requires_download]
        if not downloadable:
            logger.info("No resources require download")
            return AssetDownloadResult(True, "No resources require download", DownloadBatchResult(0, 0, 0))

        for resource in downloadable:
            self.downloader.ensure_path(resource, context.project_name, context.folder_paths)

        total = len(downloadable)
        logger.info(f"Downloading {total} resources for {context.project_name}")

        remaining = downloadable
        max_attempts = self.batch_policy.max_attempts
        for attempt in range(1, max_attempts + 1):
            await self._run_pass(remaining, context, attempt, on_progress)

            remaining = [resource for resource in remaining if resource.requires_download]
            if not remaining:
                break
            if attempt < max_attempts:
                delay = self.batch_policy.delay_for(attempt)
                logger.warning(
                    f"{len(remaining)} resources still need download after pass {attempt}. "
                    f"Retrying in {delay:.1f}s..."
                )
                await self._sleep(delay)

        succeeded = sum(1 for resource in downloadable if resource.is_downloaded)
        failed = total - succeeded
        batch = DownloadBatchResult(succeeded=succeeded, failed=failed, total=total)

        if not remaining and failed == 0:
            message = f"Downloaded {succeeded} resources"
            logger.info(message)
            return AssetDownloadResult(True, message, batch)

        message = f"Failed to download {failed} of {total} resources"
        logger.error(message)
        return AssetDownloadResult(False, message, batch)

    async def _run_pass(
        self,
        resources: list[Resource],
        context: DownloadContext,
        attempt: int,
        on_progress: Callable[[DownloadProgress], None] | None,
    ) -> None:
        completed = 0
        lock = asyncio.Lock()
        total = len(resources)

        async def download_one(resource: Resource) -> None:
            nonlocal completed
            try:
                await self.downloader.download(resource, context.project_name, context.folder_paths)
            except Exception as e:
                logger.error(f"Error downloading {resource!r}: {e}")
                self.events.set_status(resource, DownloadStatus.ERROR)

            async with lock:
                completed += 1
                finished = completed
            if on_progress:
                on_progress(DownloadProgress(resource, finished, total, attempt))

        pool = BoundedWorkerPool(self.concurrency, name="downloads", on_change=self._on_pool_change)
        await pool.map(download_one, resources)
