"""Persistent ledger of upload attempts.

Every upload attempt, successful or not, is appended as an
``UploadRecord``. Rows are never updated or deleted. The newest
successful row for a local path is what lets an unchanged file skip a
re-upload after a restart.

All database failures surface as ``TransferStateError`` so callers can
treat the ledger as unknown and fall back to re-uploading.
"""

import asyncio
import logging

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from assetsync.core.config import Settings
from assetsync.core.database import create_ledger_engine, create_session_maker, init_db
from assetsync.core.exceptions import TransferStateError
from assetsync.models.upload_record import UploadRecord
from assetsync.schemas.common import Page
from assetsync.schemas.transfer import UploadRecordCreate, UploadRecordRead

logger = logging.getLogger(__name__)

UPLOADED = "Uploaded"


class TransferStateStore:
    """Append-only upload history backed by an embedded database."""

    def __init__(self, engine: AsyncEngine):
        self._engine = engine
        self._session_maker: async_sessionmaker[AsyncSession] = create_session_maker(engine)
        self._write_lock = asyncio.Lock()
        self._initialized = False

    @classmethod
    def from_url(cls, database_url: str) -> "TransferStateStore":
        return cls(create_ledger_engine(database_url))

    @classmethod
    def from_settings(cls, settings: Settings) -> "TransferStateStore":
        return cls.from_url(settings.ledger_database_url)

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Create the ledger table and indexes if they do not exist."""
        try:
            await init_db(self._engine)
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Failed to initialize upload ledger: {e}")
            raise TransferStateError(f"Failed to initialize upload ledger: {e}") from e
        self._initialized = True
        logger.info("Upload ledger initialized")

    async def close(self) -> None:
        await self._engine.dispose()

    async def save_upload(self, record: UploadRecordCreate) -> int:
        """Append an upload attempt and return its row id."""
        async with self._write_lock:
            try:
                async with self._session_maker() as session:
                    row = UploadRecord(**record.model_dump())
                    session.add(row)
                    await session.commit()
                    logger.debug(f"Saved upload record {row.id}: {record.local_path} ({record.status})")
                    return row.id
            except SQLAlchemyError as e:
                logger.error(f"Failed to save upload record for {record.local_path}: {e}")
                raise TransferStateError(f"Failed to save upload record: {e}") from e

    async def _fetch_one(self, statement) -> UploadRecordRead | None:
        try:
            async with self._session_maker() as session:
                result = await session.execute(statement)
                row = result.scalars().first()
        except SQLAlchemyError as e:
            logger.error(f"Upload ledger query failed: {e}")
            raise TransferStateError(f"Upload ledger query failed: {e}") from e
        return UploadRecordRead.model_validate(row) if row is not None else None

    async def _fetch_all(self, statement) -> list[UploadRecordRead]:
        try:
            async with self._session_maker() as session:
                result = await session.execute(statement)
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            logger.error(f"Upload ledger query failed: {e}")
            raise TransferStateError(f"Upload ledger query failed: {e}") from e
        return [UploadRecordRead.model_validate(row) for row in rows]

    @staticmethod
    def _newest_first(statement):
        return statement.order_by(UploadRecord.uploaded_at.desc(), UploadRecord.id.desc())

    async def get_by_local_path(self, local_path: str) -> UploadRecordRead | None:
        """Most recent attempt for a local path, whatever its status."""
        statement = self._newest_first(select(UploadRecord).where(UploadRecord.local_path == local_path))
        return await self._fetch_one(statement.limit(1))

    async def get_last_successful(self, local_path: str) -> UploadRecordRead | None:
        statement = self._newest_first(
            select(UploadRecord).where(
                UploadRecord.local_path == local_path,
                UploadRecord.status == UPLOADED,
            )
        )
        return await self._fetch_one(statement.limit(1))

    async def get_by_remote_path(self, remote_path: str) -> UploadRecordRead | None:
        statement = self._newest_first(select(UploadRecord).where(UploadRecord.remote_path == remote_path))
        return await self._fetch_one(statement.limit(1))

    async def get_by_project(self, project_name: str) -> list[UploadRecordRead]:
        statement = self._newest_first(select(UploadRecord).where(UploadRecord.project_name == project_name))
        return await self._fetch_all(statement)

    async def is_uploaded(self, local_path: str, content_hash: str) -> bool:
        """True if the newest successful upload of ``local_path`` had this hash."""
        if not content_hash:
            return False
        record = await self.get_last_successful(local_path)
        if record is None:
            return False
        return record.content_hash.lower() == content_hash.lower()

    async def get_count(self) -> int:
        try:
            async with self._session_maker() as session:
                result = await session.execute(select(func.count()).select_from(UploadRecord))
                return int(result.scalar_one())
        except SQLAlchemyError as e:
            logger.error(f"Upload ledger count failed: {e}")
            raise TransferStateError(f"Upload ledger count failed: {e}") from e

    async def get_page(self, offset: int = 0, limit: int = 50) -> Page[UploadRecordRead]:
        """Return a slice of the history, newest first."""
        if offset < 0 or limit < 1:
            raise ValueError(f"Invalid page bounds: offset={offset}, limit={limit}")
        statement = self._newest_first(select(UploadRecord)).offset(offset).limit(limit)
        items = await self._fetch_all(statement)
        total = await self.get_count()
        return Page[UploadRecordRead](items=items, offset=offset, limit=limit, total=total)
