"""PlayCanvas API payload schemas."""

from typing import Any

from pydantic import BaseModel, Field, field_validator


class ProjectInfo(BaseModel):
    """A project visible to the authenticated user."""

    id: str
    name: str

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> str:
        return str(value)


class BranchInfo(BaseModel):
    """A branch of a project."""

    id: str
    name: str

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> str:
        return str(value)


class AssetFileInfo(BaseModel):
    """The ``file`` block of an asset."""

    size: int | None = None
    hash: str | None = None
    filename: str | None = None
    url: str | None = None
    width: int | None = None
    height: int | None = None


class AssetSummary(BaseModel):
    """One manifest entry as returned by ``GET /projects/{id}/assets``.

    ``raw`` keeps the exact JSON object so the cached manifest can be
    written back without losing fields this engine does not model.
    """

    id: int
    type: str
    name: str | None = None
    path: list[int] | None = None
    parent: int | None = None
    file: AssetFileInfo | None = None
    raw: dict[str, Any] = Field(default_factory=dict, repr=False)

    @field_validator("parent", mode="before")
    @classmethod
    def normalize_parent(cls, value: Any) -> int | None:
        # The API uses 0 or null for root-level assets
        if value in (None, "", 0, "0"):
            return None
        return int(value)

    @field_validator("path", mode="before")
    @classmethod
    def normalize_path(cls, value: Any) -> list[int] | None:
        if value is None or isinstance(value, list):
            return value
        return None

    @property
    def is_folder(self) -> bool:
        return self.type.lower() == "folder"

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "AssetSummary":
        """Parse an API object, keeping the original JSON in ``raw``."""
        return cls.model_validate({**data, "raw": data})

    def to_json_dict(self) -> dict[str, Any]:
        return self.raw or self.model_dump(exclude={"raw"}, exclude_none=True)


class AssetDetail(BaseModel):
    """Full asset JSON as returned by ``GET /assets/{id}``."""

    id: int
    type: str
    name: str | None = None
    file: AssetFileInfo | None = None
    data: dict[str, Any] | None = None
    raw: dict[str, Any] = Field(default_factory=dict, repr=False)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "AssetDetail":
        return cls.model_validate({**data, "raw": data})
