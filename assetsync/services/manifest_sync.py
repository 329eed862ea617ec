"""Manifest synchronization: fetch, diff, folder layout and resource building."""

import logging
from collections.abc import AsyncIterator, Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Any

from assetsync.core.config import Settings
from assetsync.models.resource import (
    DownloadStatus,
    MaterialInfo,
    ModelInfo,
    Resource,
    ResourceKind,
    TextureInfo,
)
from assetsync.schemas.playcanvas import AssetSummary
from assetsync.services.integrity import DEFAULT_SIZE_TOLERANCE, probe_local_status
from assetsync.services.manifest_store import ManifestStore, compute_manifest_hash, sanitize_path
from assetsync.services.playcanvas import PlayCanvasService
from assetsync.services.worker_pool import BoundedWorkerPool

logger = logging.getLogger(__name__)

TEXTURE_EXTENSIONS = frozenset({".png", ".jpg", ".jpeg"})
EXCLUDED_TEXTURE_EXTENSIONS = frozenset({".hdr", ".avif"})
MODEL_EXTENSIONS = frozenset({".fbx", ".obj", ".glb", ".gltf"})
MODEL_ASSET_TYPES = frozenset({"scene", "model", "container"})
IGNORED_ASSET_TYPES = frozenset({"script", "wasm", "cubemap", "folder"})

# Variant blocks checked in order when reading texture dimensions
TEXTURE_VARIANTS = ("webp", "jpg", "png", "original")


class SyncStage(str, Enum):
    FETCHING_ASSETS = "fetching_assets"
    COMPLETED = "completed"


@dataclass
class ProjectSyncRequest:
    project_id: str
    branch_id: str
    project_name: str


@dataclass
class ProjectSyncProgress:
    stage: SyncStage
    processed: int
    total: int


@dataclass
class ProjectSyncResult:
    """Outcome of a manifest sync."""

    project_name: str
    project_folder: Path
    assets: list[AssetSummary] = field(default_factory=list)
    folder_paths: dict[int, str] = field(default_factory=dict)
    manifest_hash: str = ""


def build_folder_paths(entries: Iterable[AssetSummary]) -> dict[int, str]:
    """Resolve every folder id to its relative path.

    Resolution is memoized so each id is resolved once. A parent that is
    unknown, or that leads back into a folder still being resolved,
    contributes an empty prefix instead of looping.
    """
    folders = {entry.id: entry for entry in entries if entry.is_folder}
    paths: dict[int, str] = {}
    resolving: set[int] = set()

    def resolve(folder_id: int) -> str:
        if folder_id in paths:
            return paths[folder_id]
        folder = folders.get(folder_id)
        if folder is None or folder_id in resolving:
            return ""

        resolving.add(folder_id)
        try:
            name = sanitize_path(folder.name)
            parent_path = resolve(folder.parent) if folder.parent is not None else ""
        finally:
            resolving.discard(folder_id)

        full_path = f"{parent_path}/{name}" if parent_path else name
        paths[folder_id] = sanitize_path(full_path)
        return paths[folder_id]

    for folder_id in folders:
        resolve(folder_id)

    logger.info(f"Built {len(paths)} folder paths")
    return paths


def _file_extension(url: str | None) -> str:
    if not url:
        return ""
    return PurePosixPath(url.split("?")[0]).suffix.lower()


def _texture_info(entry: AssetSummary) -> TextureInfo:
    file_data = entry.raw.get("file") if isinstance(entry.raw.get("file"), dict) else {}
    variants = file_data.get("variants") if isinstance(file_data.get("variants"), dict) else {}
    for variant_name in TEXTURE_VARIANTS:
        variant = variants.get(variant_name)
        if isinstance(variant, dict):
            width, height = variant.get("width"), variant.get("height")
            if isinstance(width, int) and isinstance(height, int):
                return TextureInfo(width=width, height=height)
    if entry.file and entry.file.width and entry.file.height:
        return TextureInfo(width=entry.file.width, height=entry.file.height)
    return TextureInfo()


class ManifestSyncService:
    """Fetches the remote manifest and reconciles it with the local cache."""

    def __init__(
        self,
        api: PlayCanvasService,
        store: ManifestStore,
        processing_concurrency: int = 16,
        size_tolerance: float = DEFAULT_SIZE_TOLERANCE,
    ):
        self.api = api
        self.store = store
        self.processing_concurrency = processing_concurrency
        self.size_tolerance = size_tolerance

    @classmethod
    def from_settings(cls, settings: Settings, api: PlayCanvasService | None = None) -> "ManifestSyncService":
        return cls(
            api=api or PlayCanvasService.from_settings(settings),
            store=ManifestStore(settings.projects_root),
            processing_concurrency=settings.asset_processing_concurrency,
            size_tolerance=settings.download_size_tolerance,
        )

    def fetch_manifest(self, project_id: str, branch_id: str) -> AsyncIterator[AssetSummary]:
        """Lazily iterate the remote manifest, one page at a time."""
        return self.api.iter_assets(project_id, branch_id)

    async def _fetch_all(
        self,
        project_id: str,
        branch_id: str,
        on_progress: Callable[[ProjectSyncProgress], None] | None = None,
    ) -> list[AssetSummary]:
        assets: list[AssetSummary] = []
        async for asset in self.fetch_manifest(project_id, branch_id):
            assets.append(asset)
            if on_progress:
                on_progress(ProjectSyncProgress(SyncStage.FETCHING_ASSETS, len(assets), len(assets)))
        return assets

    async def has_updates(self, project_name: str, project_id: str, branch_id: str) -> bool:
        """Compare the cached manifest with a fresh fetch.

        A missing or unreadable cache always counts as an update.
        """
        try:
            cached = await self.store.load(project_name)
        except ValueError as e:
            logger.warning(f"Cached manifest for {project_name} is unreadable, treating as stale: {e}")
            cached = None

        if cached is None:
            logger.info(f"No cached manifest for {project_name}")
            return True

        fresh = await self._fetch_all(project_id, branch_id)
        cached_hash = compute_manifest_hash(cached)
        fresh_hash = compute_manifest_hash(asset.to_json_dict() for asset in fresh)

        changed = cached_hash != fresh_hash
        logger.info(f"Manifest check for {project_name}: {'changed' if changed else 'up to date'}")
        return changed

    async def sync_project(
        self,
        request: ProjectSyncRequest,
        on_progress: Callable[[ProjectSyncProgress], None] | None = None,
    ) -> ProjectSyncResult:
        """Fetch the manifest, resolve folders and refresh the local cache."""
        logger.info(f"Fetching assets for project {request.project_id} / branch {request.branch_id}")
        assets = await self._fetch_all(request.project_id, request.branch_id, on_progress)

        folder_paths = build_folder_paths(assets)
        await self.store.save(request.project_name, assets)

        if on_progress:
            on_progress(ProjectSyncProgress(SyncStage.COMPLETED, len(assets), len(assets)))

        return ProjectSyncResult(
            project_name=request.project_name,
            project_folder=self.store.project_folder(request.project_name),
            assets=assets,
            folder_paths=folder_paths,
            manifest_hash=compute_manifest_hash(asset.to_json_dict() for asset in assets),
        )

    def resource_from_entry(
        self,
        entry: AssetSummary,
        project_name: str,
        folder_paths: dict[int, str],
    ) -> Resource | None:
        """Map one manifest entry to a Resource, or None for unsupported entries."""
        asset_type = entry.type.lower()
        if asset_type in IGNORED_ASSET_TYPES:
            return None

        if asset_type == "material":
            name = sanitize_path(entry.name) or "Unknown"
            return Resource(
                id=entry.id,
                name=name,
                kind=ResourceKind.MATERIAL,
                path=str(self.store.resource_path(project_name, folder_paths, f"{name}.json", entry.parent)),
                extension=".json",
                parent=entry.parent,
                status=DownloadStatus.ON_SERVER,
                payload=MaterialInfo(),
            )

        if entry.file is None or not entry.file.url:
            logger.debug(f"Skipping asset {entry.id}: no file URL")
            return None

        url = self.api.resolve_file_url(entry.file.url)
        extension = _file_extension(url)
        file_name = sanitize_path(entry.name) or "Unknown"

        if asset_type == "texture":
            if extension not in TEXTURE_EXTENSIONS or extension in EXCLUDED_TEXTURE_EXTENSIONS:
                logger.debug(f"Unsupported texture format: {entry.id} {extension}")
                return None
            kind = ResourceKind.TEXTURE
            payload: Any = _texture_info(entry)
        elif asset_type in MODEL_ASSET_TYPES:
            if extension not in MODEL_EXTENSIONS:
                logger.debug(f"Unsupported model format: {entry.id} {extension}")
                return None
            kind = ResourceKind.MODEL
            payload = ModelInfo(source_filename=entry.file.filename)
        else:
            logger.debug(f"Unsupported asset type or format: {asset_type} - {extension}")
            return None

        return Resource(
            id=entry.id,
            name=file_name.split(".")[0],
            kind=kind,
            path=str(self.store.resource_path(project_name, folder_paths, file_name, entry.parent)),
            url=url.split("?")[0] if url else None,
            extension=extension,
            size=entry.file.size or 0,
            hash=entry.file.hash or None,
            parent=entry.parent,
            status=DownloadStatus.ON_SERVER,
            payload=payload,
        )

    async def build_resources(
        self,
        entries: Iterable[AssetSummary],
        project_name: str,
        folder_paths: dict[int, str],
    ) -> list[Resource]:
        """Build resources for a manifest and seed their status from disk.

        Local probing runs under the asset processing gate, independent of
        the download and upload gates.
        """
        resources: list[Resource] = []
        for entry in entries:
            resource = self.resource_from_entry(entry, project_name, folder_paths)
            if resource is not None:
                resources.append(resource)

        async def probe(resource: Resource) -> Resource:
            resource.status = await probe_local_status(resource, self.size_tolerance)
            return resource

        pool = BoundedWorkerPool(self.processing_concurrency, name="asset-processing")
        results = await pool.map(probe, resources)

        for resource, result in zip(resources, results):
            if isinstance(result, BaseException):
                logger.error(f"Failed to probe local file for {resource!r}: {result}")
                resource.status = DownloadStatus.ERROR

        counts: dict[ResourceKind, int] = {}
        for resource in resources:
            counts[resource.kind] = counts.get(resource.kind, 0) + 1
        logger.info(
            f"Processed {counts.get(ResourceKind.TEXTURE, 0)} textures, "
            f"{counts.get(ResourceKind.MODEL, 0)} models, "
            f"{counts.get(ResourceKind.MATERIAL, 0)} materials"
        )
        return resources
