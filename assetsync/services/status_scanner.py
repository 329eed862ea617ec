"""Reconciles resource download statuses with files actually on disk."""

import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from assetsync.models.resource import (
    DownloadStatus,
    Resource,
    ResourceKind,
    is_local_status,
    is_status,
)
from assetsync.services.events import StatusEventBus
from assetsync.services.folder_watcher import FilesDeletionDetected

logger = logging.getLogger(__name__)


def _normalize(path: str) -> str:
    return os.path.normcase(os.path.normpath(path))


@dataclass
class ScanResult:
    checked_count: int = 0
    missing_files_count: int = 0
    updated_count: int = 0
    updated_names: list[str] = field(default_factory=list)


@dataclass
class DeletedPathsSyncResult:
    deleted_paths: list[str] = field(default_factory=list)
    updated_count: int = 0
    full_rescan: bool = False
    scan: ScanResult | None = None


class FileStatusScanner:
    """Moves resources between local and remote statuses as files come and go.

    - a resource in a local status whose file is gone becomes ``Missing``
    - an ``On Server`` resource whose file exists becomes ``Downloaded``
    """

    def __init__(self, events: StatusEventBus | None = None):
        self.events = events or StatusEventBus()

    def scan(self, resources: Iterable[Resource]) -> ScanResult:
        result = ScanResult()

        for resource in resources:
            if not resource.path:
                continue
            result.checked_count += 1

            path = Path(resource.path)
            exists = path.is_file()
            if not exists:
                result.missing_files_count += 1
                logger.debug(f"Missing {resource.kind.value}: '{resource.name}', status='{resource.status}'")

            if not exists and is_local_status(resource.status):
                logger.info(f"Updating '{resource.name}' from '{resource.status}' to '{DownloadStatus.MISSING}'")
                self.events.set_status(resource, DownloadStatus.MISSING)
            elif exists and is_status(resource.status, DownloadStatus.ON_SERVER):
                logger.info(f"Updating '{resource.name}' from '{resource.status}' to '{DownloadStatus.DOWNLOADED}'")
                if resource.size <= 0 and resource.kind is not ResourceKind.MATERIAL:
                    resource.size = path.stat().st_size
                self.events.set_status(resource, DownloadStatus.DOWNLOADED)
            else:
                continue

            result.updated_count += 1
            result.updated_names.append(resource.name or "Unknown")

        logger.info(
            f"Checked {result.checked_count} assets, {result.missing_files_count} missing, "
            f"updated {result.updated_count}"
        )
        return result

    def process_deleted_paths(self, deleted_paths: Iterable[str], resources: Iterable[Resource]) -> int:
        """Mark resources whose file was reported deleted as ``Missing``."""
        deleted = {_normalize(path) for path in deleted_paths if path}
        if not deleted:
            return 0

        logger.info(f"Processing {len(deleted)} deleted paths")
        updated = 0
        for resource in resources:
            if not resource.path or _normalize(resource.path) not in deleted:
                continue
            if is_local_status(resource.status):
                logger.info(f"File deleted: '{resource.name}' -> '{DownloadStatus.MISSING}'")
                self.events.set_status(resource, DownloadStatus.MISSING)
                updated += 1

        if updated:
            logger.info(f"Detected {updated} deleted files, updated statuses")
        return updated

    def apply_deletion_event(
        self,
        event: FilesDeletionDetected,
        resources: Iterable[Resource],
    ) -> DeletedPathsSyncResult:
        """Apply one watcher notification to the resource set."""
        resource_list = list(resources)
        if event.requires_full_rescan:
            scan = self.scan(resource_list)
            return DeletedPathsSyncResult(updated_count=scan.updated_count, full_rescan=True, scan=scan)

        updated = self.process_deleted_paths(event.deleted_paths, resource_list)
        return DeletedPathsSyncResult(deleted_paths=list(event.deleted_paths), updated_count=updated)
