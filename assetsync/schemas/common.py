"""Common schemas and utilities."""

from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict

T = TypeVar("T")


class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )


class Page(BaseModel, Generic[T]):
    """A slice of an ordered collection."""

    items: list[T]
    offset: int
    limit: int
    total: int
