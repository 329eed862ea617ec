"""Trackable asset entities and their transfer status vocabulary.

A ``Resource`` is the local representation of one remote asset. Texture,
model and material resources share the same core record and differ only in
``kind`` and the optional kind-specific ``payload``.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class ResourceKind(str, Enum):
    """Kind tag for a resource."""

    TEXTURE = "texture"
    MODEL = "model"
    MATERIAL = "material"


class DownloadStatus:
    """Download-side status values."""

    ON_SERVER = "On Server"
    DOWNLOADING = "Downloading"
    DOWNLOADED = "Downloaded"
    EMPTY_FILE = "Empty File"
    CORRUPTED = "Corrupted"
    SIZE_MISMATCH = "Size Mismatch"
    ERROR = "Error"
    MISSING = "Missing"
    HASH_ERROR = "Hash ERROR"
    READY = "Ready"


class UploadStatus:
    """Upload-side status values."""

    OUTDATED = "Outdated"
    QUEUED = "Queued"
    UPLOADING = "Uploading"
    UPLOADED = "Uploaded"
    UPLOAD_FAILED = "Upload Failed"


# Compared case-insensitively; an empty status is also downloadable.
DOWNLOADABLE_STATUSES = frozenset(
    status.lower()
    for status in (
        DownloadStatus.ON_SERVER,
        DownloadStatus.MISSING,
        DownloadStatus.ERROR,
        DownloadStatus.SIZE_MISMATCH,
        DownloadStatus.CORRUPTED,
        DownloadStatus.EMPTY_FILE,
        DownloadStatus.HASH_ERROR,
        DownloadStatus.READY,
    )
)

# Statuses that claim the file is present on disk.
LOCAL_STATUSES = frozenset(
    status.lower()
    for status in (
        DownloadStatus.DOWNLOADED,
        DownloadStatus.SIZE_MISMATCH,
        DownloadStatus.HASH_ERROR,
        DownloadStatus.EMPTY_FILE,
        DownloadStatus.CORRUPTED,
    )
)


@dataclass(frozen=True)
class TextureInfo:
    width: int | None = None
    height: int | None = None


@dataclass(frozen=True)
class ModelInfo:
    source_filename: str | None = None


@dataclass(frozen=True)
class MaterialInfo:
    shader: str | None = None
    texture_ids: tuple[int, ...] = ()


ResourcePayload = TextureInfo | ModelInfo | MaterialInfo


@dataclass(eq=False)
class Resource:
    """A tracked asset with download and upload state.

    ``eq=False`` keeps identity semantics so resources can live in sets and
    dict keys while their mutable status changes.
    """

    id: int
    name: str | None
    kind: ResourceKind = ResourceKind.TEXTURE
    path: str | None = None
    url: str | None = None
    extension: str | None = None
    size: int = 0
    hash: str | None = None
    parent: int | None = None
    status: str | None = None
    download_progress: float = 0.0

    upload_status: str | None = None
    upload_progress: float = 0.0
    uploaded_hash: str | None = None
    remote_url: str | None = None
    last_uploaded_at: datetime | None = None

    payload: ResourcePayload | None = field(default=None, repr=False)

    @property
    def requires_download(self) -> bool:
        return requires_download(self.status)

    @property
    def is_downloaded(self) -> bool:
        return is_status(self.status, DownloadStatus.DOWNLOADED)

    def __repr__(self) -> str:
        return f"<Resource {self.kind.value}:{self.id} {self.name!r} status={self.status!r}>"


def is_status(value: str | None, expected: str) -> bool:
    """Case-insensitive status comparison."""
    return (value or "").lower() == expected.lower()


def requires_download(status: str | None) -> bool:
    """Return True when a resource in ``status`` belongs in the download set."""
    if status is None or not status.strip():
        return True
    return status.lower() in DOWNLOADABLE_STATUSES


def is_local_status(status: str | None) -> bool:
    return bool(status) and status.lower() in LOCAL_STATUSES
