"""Sync engine services."""

from assetsync.services.cdn_upload import CdnUploadService
from assetsync.services.download_coordinator import (
    AssetDownloadResult,
    DownloadBatchResult,
    DownloadContext,
    DownloadCoordinator,
)
from assetsync.services.downloader import ResourceDownloader
from assetsync.services.events import ResourceStatusChanged, StatusEventBus
from assetsync.services.folder_watcher import FilesDeletionDetected, FolderWatcher
from assetsync.services.manifest_store import ManifestStore, compute_manifest_hash
from assetsync.services.manifest_sync import ManifestSyncService, ProjectSyncRequest, build_folder_paths
from assetsync.services.playcanvas import PlayCanvasService
from assetsync.services.status_scanner import FileStatusScanner
from assetsync.services.transfer_state import TransferStateStore
from assetsync.services.upload_coordinator import (
    BatchOutcome,
    UploadCoordinator,
    UploadOutcome,
    build_remote_path,
)

__all__ = [
    "AssetDownloadResult",
    "BatchOutcome",
    "CdnUploadService",
    "DownloadBatchResult",
    "DownloadContext",
    "DownloadCoordinator",
    "FileStatusScanner",
    "FilesDeletionDetected",
    "FolderWatcher",
    "ManifestStore",
    "ManifestSyncService",
    "PlayCanvasService",
    "ProjectSyncRequest",
    "ResourceDownloader",
    "ResourceStatusChanged",
    "StatusEventBus",
    "TransferStateStore",
    "UploadCoordinator",
    "UploadOutcome",
    "build_folder_paths",
    "build_remote_path",
    "compute_manifest_hash",
]
