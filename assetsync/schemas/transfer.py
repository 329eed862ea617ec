"""Upload ledger schemas."""

from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, Field

from assetsync.schemas.common import BaseSchema

UploadRecordStatus = Literal["Uploaded", "Failed"]


class UploadRecordCreate(BaseModel):
    """An upload attempt to append to the ledger."""

    local_path: str
    remote_path: str
    content_hash: str = ""
    content_length: int = 0
    uploaded_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    cdn_url: str = ""
    status: UploadRecordStatus = "Uploaded"
    remote_file_id: str | None = None
    project_name: str | None = None
    error_message: str | None = None


class UploadRecordRead(BaseSchema):
    """A ledger row as returned to callers."""

    id: int
    local_path: str
    remote_path: str
    content_hash: str
    content_length: int
    uploaded_at: datetime
    cdn_url: str
    status: str
    remote_file_id: str | None = None
    project_name: str | None = None
    error_message: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == "Uploaded"
