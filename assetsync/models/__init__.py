"""Domain entities and SQLAlchemy models."""

from assetsync.models.resource import (
    DownloadStatus,
    MaterialInfo,
    ModelInfo,
    Resource,
    ResourceKind,
    TextureInfo,
    UploadStatus,
    requires_download,
)
from assetsync.models.upload_record import UploadRecord

__all__ = [
    "Resource",
    "ResourceKind",
    "TextureInfo",
    "ModelInfo",
    "MaterialInfo",
    "DownloadStatus",
    "UploadStatus",
    "requires_download",
    "UploadRecord",
]
