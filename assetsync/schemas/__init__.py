"""Pydantic schemas for API payloads and ledger records."""

from assetsync.schemas.common import BaseSchema, Page
from assetsync.schemas.playcanvas import (
    AssetDetail,
    AssetFileInfo,
    AssetSummary,
    BranchInfo,
    ProjectInfo,
)
from assetsync.schemas.transfer import UploadRecordCreate, UploadRecordRead

__all__ = [
    "BaseSchema",
    "Page",
    "ProjectInfo",
    "BranchInfo",
    "AssetFileInfo",
    "AssetSummary",
    "AssetDetail",
    "UploadRecordCreate",
    "UploadRecordRead",
]
