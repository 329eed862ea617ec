"""Upload ledger model for storing CDN upload attempts."""

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from assetsync.models.base import BaseModelNoUpdate, utcnow


class UploadRecord(BaseModelNoUpdate):
    """One upload attempt, successful or not.

    Rows are appended and never mutated. The most recent row for a local
    path is the current upload state of that file.

    Status values: 'Uploaded', 'Failed'
    """

    __tablename__ = "upload_history"
    __table_args__ = (
        Index("idx_upload_history_local_path", "local_path"),
        Index("idx_upload_history_remote_path", "remote_path"),
        Index("idx_upload_history_project_name", "project_name"),
        Index("idx_upload_history_content_hash", "content_hash"),
    )

    local_path: Mapped[str] = mapped_column(Text, nullable=False)
    remote_path: Mapped[str] = mapped_column(Text, nullable=False)
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    content_length: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    cdn_url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="Uploaded")
    remote_file_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    project_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<UploadRecord {self.local_path} -> {self.remote_path} status={self.status}>"
