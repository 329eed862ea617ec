"""Base model with common fields."""

from datetime import UTC, datetime

from sqlalchemy import DateTime, Integer
from sqlalchemy.orm import Mapped, mapped_column

from assetsync.core.database import Base


def utcnow() -> datetime:
    return datetime.now(UTC)


class IntegerIdMixin:
    """Mixin for an autoincrement integer primary key."""

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )


class BaseModelNoUpdate(Base, IntegerIdMixin):
    """Base model with integer primary key and created_at only (no updated_at).

    Used for append-only tables whose rows are never modified.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
