"""Upload coordination between local resources, the CDN and the upload ledger.

Remote layout is ``{project}/[{model}/]{subfolder}/{filename}`` where the
subfolder depends only on the file extension. An upload is skipped when
the file's SHA-1 matches the resource's ``uploaded_hash`` or the newest
successful ledger entry for the same local path.
"""

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path, PurePosixPath

from assetsync.core.config import Settings
from assetsync.core.exceptions import TransferStateError
from assetsync.models.resource import Resource, UploadStatus, is_status
from assetsync.schemas.transfer import UploadRecordCreate, UploadRecordRead
from assetsync.services.cdn_upload import CdnUploadService, ObjectUploadResult, UploadProgress
from assetsync.services.events import StatusEventBus
from assetsync.services.integrity import file_digest
from assetsync.services.transfer_state import TransferStateStore
from assetsync.services.worker_pool import BoundedWorkerPool

logger = logging.getLogger(__name__)

SUBFOLDERS: dict[str, str] = {
    ".ktx2": "textures",
    ".png": "textures",
    ".jpg": "textures",
    ".jpeg": "textures",
    ".glb": "models",
    ".gltf": "models",
    ".json": "materials",
}
DEFAULT_SUBFOLDER = "assets"

UPLOADABLE_EXTENSIONS = frozenset({".ktx2", ".glb", ".gltf", ".json", ".bin", ".png", ".jpg", ".jpeg"})

HASH_MATCH_MESSAGE = "Already uploaded (hash match)"


def build_remote_path(local_path: str, project_name: str, model_name: str | None = None) -> str:
    """Map a local file to its remote object path."""
    file_name = Path(local_path).name
    subfolder = SUBFOLDERS.get(Path(local_path).suffix.lower(), DEFAULT_SUBFOLDER)
    if model_name:
        return f"{project_name}/{model_name}/{subfolder}/{file_name}"
    return f"{project_name}/{subfolder}/{file_name}"


def is_uploadable_file(file_path: str | Path) -> bool:
    return PurePosixPath(str(file_path)).suffix.lower() in UPLOADABLE_EXTENSIONS


async def compute_file_hash(file_path: str | Path) -> str:
    """SHA-1 of the file contents, lowercase hex."""
    return await file_digest(file_path, "sha1")


def _same_hash(left: str | None, right: str | None) -> bool:
    return bool(left) and bool(right) and left.lower() == right.lower()


@dataclass
class UploadOutcome:
    """Result of uploading one resource or file."""

    success: bool
    remote_path: str | None = None
    cdn_url: str | None = None
    content_hash: str | None = None
    file_id: str | None = None
    content_length: int = 0
    error: str | None = None
    skipped: bool = False


@dataclass
class BatchOutcome:
    uploaded_count: int = 0
    skipped_count: int = 0
    failed_count: int = 0
    message: str = ""
    results: list[UploadOutcome] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed_count == 0


@dataclass
class ResourceUploadProgress:
    completed: int
    total: int
    resource: Resource | None
    percent: float


class UploadCoordinator:
    """Pushes local resources to the CDN, skipping unchanged content."""

    def __init__(
        self,
        uploader: CdnUploadService,
        store: TransferStateStore,
        events: StatusEventBus | None = None,
        concurrency: int = 1,
        on_pool_change: Callable[[int], None] | None = None,
    ):
        self.uploader = uploader
        self.store = store
        self.events = events or StatusEventBus()
        self.concurrency = concurrency
        self._on_pool_change = on_pool_change

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        events: StatusEventBus | None = None,
    ) -> "UploadCoordinator":
        return cls(
            uploader=CdnUploadService(settings.storage_settings()),
            store=TransferStateStore.from_settings(settings),
            events=events,
        )

    @property
    def is_authorized(self) -> bool:
        return self.uploader.is_authorized

    async def initialize(self) -> bool:
        """Prepare the ledger and authorize against the CDN store.

        A ledger that cannot be opened is logged and tolerated: uploads
        still work, they just cannot be deduplicated across restarts.
        """
        try:
            await self.store.initialize()
        except TransferStateError as e:
            logger.warning(f"Upload ledger unavailable, continuing without it: {e}")

        if not self.uploader.settings.is_valid:
            logger.warning("CDN credentials not configured")
            return False
        return await self.uploader.authorize()

    async def _save_record(self, record: UploadRecordCreate) -> None:
        try:
            await self.store.save_upload(record)
        except TransferStateError as e:
            logger.warning(f"Failed to save upload record for {record.local_path}: {e}")

    async def _record_result(
        self,
        local_path: str,
        result: ObjectUploadResult,
        project_name: str,
    ) -> None:
        if result.success:
            record = UploadRecordCreate(
                local_path=local_path,
                remote_path=result.remote_path,
                content_hash=result.content_sha1 or "",
                content_length=result.content_length,
                cdn_url=result.cdn_url or "",
                status="Uploaded",
                remote_file_id=result.file_id,
                project_name=project_name,
            )
        else:
            record = UploadRecordCreate(
                local_path=local_path,
                remote_path=result.remote_path,
                status="Failed",
                project_name=project_name,
                error_message=result.error_message,
            )
        await self._save_record(record)

    async def _ledger_match(self, resource: Resource, current_hash: str) -> UploadRecordRead | None:
        """Return the ledger entry proving this content is uploaded, if any.

        Ledger errors count as "no match" so the file is uploaded again.
        """
        try:
            if not await self.store.is_uploaded(resource.path, current_hash):
                return None
            return await self.store.get_last_successful(resource.path)
        except TransferStateError as e:
            logger.warning(f"Failed to check upload state for {resource.path}: {e}")
            return None

    async def _fail_resource(
        self,
        resource: Resource,
        project_name: str,
        model_name: str | None,
        error: Exception,
    ) -> UploadOutcome:
        """Mark a resource failed after a local error and record the attempt."""
        logger.error(f"Upload error for {resource!r}: {error}")
        resource.upload_progress = 0.0
        self.events.set_upload_status(resource, UploadStatus.UPLOAD_FAILED)
        remote_path = build_remote_path(resource.path, project_name, model_name)
        await self._save_record(
            UploadRecordCreate(
                local_path=resource.path,
                remote_path=remote_path,
                status="Failed",
                project_name=project_name,
                error_message=str(error),
            )
        )
        return UploadOutcome(success=False, remote_path=remote_path, error=str(error))

    def _apply_record(self, resource: Resource, record: UploadRecordRead) -> None:
        resource.uploaded_hash = record.content_hash
        resource.remote_url = record.cdn_url or None
        resource.last_uploaded_at = record.uploaded_at

    async def upload_resource(
        self,
        resource: Resource,
        project_name: str,
        model_name: str | None = None,
    ) -> UploadOutcome:
        """Upload one resource unless its current content is already uploaded."""
        if not resource.path or not Path(resource.path).is_file():
            return UploadOutcome(success=False, error="File not found")

        remote_path = build_remote_path(resource.path, project_name, model_name)
        current_hash = await compute_file_hash(resource.path)

        if _same_hash(resource.uploaded_hash, current_hash):
            self.events.set_upload_status(resource, UploadStatus.UPLOADED)
            return UploadOutcome(
                success=True,
                remote_path=remote_path,
                cdn_url=resource.remote_url,
                content_hash=current_hash,
                error=HASH_MATCH_MESSAGE,
                skipped=True,
            )

        record = await self._ledger_match(resource, current_hash)
        if record is not None:
            self._apply_record(resource, record)
            self.events.set_upload_status(resource, UploadStatus.UPLOADED)
            logger.debug(f"Skipping {resource.name}: ledger hash match")
            return UploadOutcome(
                success=True,
                remote_path=record.remote_path,
                cdn_url=record.cdn_url or None,
                content_hash=current_hash,
                file_id=record.remote_file_id,
                error=HASH_MATCH_MESSAGE,
                skipped=True,
            )

        resource.upload_progress = 0.0
        self.events.set_upload_status(resource, UploadStatus.UPLOADING)

        result = await self.uploader.upload_file(resource.path, remote_path)
        await self._record_result(resource.path, result, project_name)

        if not result.success:
            resource.upload_progress = 0.0
            self.events.set_upload_status(resource, UploadStatus.UPLOAD_FAILED)
            logger.error(f"Upload failed: {resource.name} - {result.error_message}")
            return UploadOutcome(success=False, remote_path=remote_path, error=result.error_message)

        resource.uploaded_hash = result.content_sha1 or current_hash
        resource.remote_url = result.cdn_url
        resource.last_uploaded_at = datetime.now(UTC)
        resource.upload_progress = 100.0
        self.events.set_upload_status(resource, UploadStatus.UPLOADED)
        logger.info(f"Uploaded: {resource.name} -> {remote_path}")

        return UploadOutcome(
            success=True,
            remote_path=remote_path,
            cdn_url=result.cdn_url,
            content_hash=resource.uploaded_hash,
            file_id=result.file_id,
            content_length=result.content_length,
            skipped=result.skipped,
        )

    async def upload_resources(
        self,
        resources: Iterable[Resource],
        project_name: str,
        model_name: str | None = None,
        on_progress: Callable[[ResourceUploadProgress], None] | None = None,
    ) -> BatchOutcome:
        """Upload a set of resources.

        Every uploadable resource is marked ``Queued`` before the first
        transfer starts. One failure never stops the rest of the batch.
        """
        resource_list = list(resources)
        outcome = BatchOutcome()
        queued: list[Resource] = []

        for resource in resource_list:
            if not resource.path or not Path(resource.path).is_file():
                continue
            try:
                needs_upload = await self.should_upload(resource)
            except OSError as e:
                outcome.failed_count += 1
                outcome.results.append(await self._fail_resource(resource, project_name, model_name, e))
                continue
            if needs_upload:
                self.events.set_upload_status(resource, UploadStatus.QUEUED)
                queued.append(resource)
            else:
                self.events.set_upload_status(resource, UploadStatus.UPLOADED)
                outcome.skipped_count += 1

        lock = asyncio.Lock()
        processed = len(resource_list) - len(queued)
        total = len(resource_list)

        async def upload_one(resource: Resource) -> None:
            nonlocal processed
            try:
                result = await self.upload_resource(resource, project_name, model_name)
            except (OSError, TransferStateError) as e:
                result = await self._fail_resource(resource, project_name, model_name, e)

            async with lock:
                outcome.results.append(result)
                if not result.success:
                    outcome.failed_count += 1
                elif result.skipped:
                    outcome.skipped_count += 1
                else:
                    outcome.uploaded_count += 1
                processed += 1
                completed = processed

            if on_progress:
                on_progress(ResourceUploadProgress(completed, total, resource, 100.0))

        pool = BoundedWorkerPool(self.concurrency, name="uploads", on_change=self._on_pool_change)
        await pool.map(upload_one, queued)

        outcome.message = (
            f"Uploaded: {outcome.uploaded_count}, Skipped: {outcome.skipped_count}, "
            f"Failed: {outcome.failed_count}"
        )
        logger.info(f"Upload batch complete. {outcome.message}")
        return outcome

    async def upload_model_export(
        self,
        export_path: str,
        project_name: str,
        model_name: str,
        on_progress: Callable[[ResourceUploadProgress], None] | None = None,
    ) -> BatchOutcome:
        """Upload every allowed file under an export directory."""
        root = Path(export_path)
        if not root.is_dir():
            return BatchOutcome(failed_count=1, message="Export directory not found")

        files = [
            (str(path), f"{project_name}/{model_name}/{path.relative_to(root).as_posix()}")
            for path in sorted(root.rglob("*"))
            if path.is_file() and is_uploadable_file(path)
        ]
        logger.info(f"Uploading {len(files)} files from {export_path}")

        def report(progress: UploadProgress) -> None:
            if on_progress:
                on_progress(
                    ResourceUploadProgress(
                        progress.current_file_index,
                        progress.total_files,
                        None,
                        progress.percent_complete,
                    )
                )

        batch = await self.uploader.upload_batch(files, report)

        results: list[UploadOutcome] = []
        for result in batch.results:
            await self._record_result(result.local_path, result, project_name)
            results.append(
                UploadOutcome(
                    success=result.success,
                    remote_path=result.remote_path,
                    cdn_url=result.cdn_url,
                    content_hash=result.content_sha1,
                    file_id=result.file_id,
                    content_length=result.content_length,
                    error=result.error_message,
                    skipped=result.skipped,
                )
            )

        message = (
            f"Model export upload complete. Uploaded: {batch.success_count}, "
            f"Skipped: {batch.skipped_count}, Failed: {batch.failed_count}"
        )
        logger.info(message)
        return BatchOutcome(
            uploaded_count=batch.success_count,
            skipped_count=batch.skipped_count,
            failed_count=batch.failed_count,
            message=message,
            results=results,
        )

    async def should_upload(self, resource: Resource) -> bool:
        """True if the file exists and its content is not known to be uploaded."""
        if not resource.path or not Path(resource.path).is_file():
            return False

        current_hash = await compute_file_hash(resource.path)
        if _same_hash(resource.uploaded_hash, current_hash):
            return False

        return await self._ledger_match(resource, current_hash) is None

    async def restore_upload_state(self, resource: Resource) -> None:
        """Hydrate upload fields of a resource from the ledger.

        The resource becomes ``Uploaded``, or ``Outdated`` when the file on
        disk no longer matches the uploaded content.
        """
        if not resource.path:
            return

        try:
            record = await self.store.get_last_successful(resource.path)
        except TransferStateError as e:
            logger.warning(f"Failed to restore upload state for {resource.path}: {e}")
            return

        if record is None:
            return

        self._apply_record(resource, record)
        status = UploadStatus.UPLOADED
        if Path(resource.path).is_file():
            try:
                current_hash = await compute_file_hash(resource.path)
            except OSError as e:
                logger.warning(f"Cannot hash {resource.path}, marking outdated: {e}")
                current_hash = ""
            if not _same_hash(current_hash, record.content_hash):
                status = UploadStatus.OUTDATED
        self.events.set_upload_status(resource, status)

    async def restore_upload_states(self, resources: Iterable[Resource]) -> int:
        """Restore every resource; returns how many ended up ``Uploaded``."""
        restored = 0
        for resource in resources:
            await self.restore_upload_state(resource)
            if is_status(resource.upload_status, UploadStatus.UPLOADED):
                restored += 1
        return restored

    async def get_upload_record_count(self) -> int:
        try:
            return await self.store.get_count()
        except TransferStateError as e:
            logger.debug(f"Failed to get upload record count: {e}")
            return 0

    async def get_upload_history(self, offset: int = 0, limit: int = 100) -> list[UploadRecordRead]:
        try:
            page = await self.store.get_page(offset, limit)
        except TransferStateError as e:
            logger.debug(f"Failed to get upload history: {e}")
            return []
        return page.items
