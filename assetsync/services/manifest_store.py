"""Local cache of the project manifest and resource path layout.

The cached manifest lives at ``{projects_root}/{project}/assets_list.json``
as indented JSON. Change detection compares a SHA-256 digest of a
canonical serialization: entries sorted by id, keys sorted, compact
separators. Reordering entries therefore does not count as a change,
while any field change does.
"""

import hashlib
import json
import logging
import re
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

import aiofiles

from assetsync.schemas.playcanvas import AssetSummary

logger = logging.getLogger(__name__)

ASSETS_LIST_FILENAME = "assets_list.json"
ASSETS_DIRECTORY_NAME = "assets"


def sanitize_path(path: str | None) -> str:
    """Strip line breaks and surrounding whitespace from a path segment."""
    if path is None or not path.strip():
        return ""
    return path.replace("\r", "").replace("\n", "").strip()


def safe_path_parts(path: str | None) -> list[str]:
    """Split a relative path into segments that stay under their root.

    Both separator styles split. Empty, ``.`` and ``..`` segments are dropped.
    """
    parts = (part.strip() for part in re.split(r"[\\/]", sanitize_path(path)))
    return [part for part in parts if part not in ("", ".", "..")]


def _entry_sort_key(entry: Mapping[str, Any]) -> tuple[int, str]:
    raw_id = entry.get("id")
    if isinstance(raw_id, int):
        return (0, f"{raw_id:020d}")
    return (1, str(raw_id))


def canonical_manifest_bytes(entries: Iterable[Mapping[str, Any]]) -> bytes:
    ordered = sorted((dict(entry) for entry in entries), key=_entry_sort_key)
    return json.dumps(
        ordered,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


def compute_manifest_hash(entries: Iterable[Mapping[str, Any]]) -> str:
    """Digest a manifest independently of its entry order."""
    return hashlib.sha256(canonical_manifest_bytes(entries)).hexdigest()


class ManifestStore:
    """Reads and writes the cached manifest of each project."""

    def __init__(self, projects_root: str | Path):
        self.projects_root = Path(projects_root)

    def project_folder(self, project_name: str) -> Path:
        return self.projects_root / project_name

    def manifest_path(self, project_name: str) -> Path:
        return self.project_folder(project_name) / ASSETS_LIST_FILENAME

    def assets_folder(self, project_name: str) -> Path:
        return self.project_folder(project_name) / ASSETS_DIRECTORY_NAME

    async def save(self, project_name: str, entries: Iterable[AssetSummary | Mapping[str, Any]]) -> Path:
        """Write the manifest as indented JSON, replacing any previous cache."""
        path = self.manifest_path(project_name)
        path.parent.mkdir(parents=True, exist_ok=True)

        payload = [
            entry.to_json_dict() if isinstance(entry, AssetSummary) else dict(entry)
            for entry in entries
        ]
        async with aiofiles.open(path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(payload, indent=2, ensure_ascii=False))

        logger.info(f"Assets list saved to {path} ({len(payload)} entries)")
        return path

    async def load(self, project_name: str) -> list[dict[str, Any]] | None:
        """Return the cached manifest, or None if there is no usable cache.

        Raises:
            ValueError: If the cache exists but is not a JSON array.
        """
        path = self.manifest_path(project_name)
        if not path.exists():
            return None

        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            content = await f.read()

        if not content.strip():
            return None

        data = json.loads(content)
        if not isinstance(data, list):
            raise ValueError(f"Cached manifest is not a JSON array: {path}")
        return data

    async def load_summaries(self, project_name: str) -> list[AssetSummary] | None:
        data = await self.load(project_name)
        if data is None:
            return None
        return [AssetSummary.from_api(item) for item in data]

    def resource_path(
        self,
        project_name: str,
        folder_paths: Mapping[int, str],
        file_name: str | None,
        parent_id: int | None,
    ) -> Path:
        """Compute where a resource lives on disk.

        Pure: the directory is created by whoever writes the file. Folder and
        file names are reduced to safe segments, so the result always stays
        under the assets folder.
        """
        if not project_name:
            raise ValueError("project_name must not be empty")

        target = self.assets_folder(project_name)
        if parent_id is not None:
            folder = folder_paths.get(parent_id)
            if folder:
                target = target.joinpath(*safe_path_parts(folder))
        return target / ("_".join(safe_path_parts(file_name)) or "Unknown")
