"""Engine configuration settings."""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


def _find_env_file() -> str | None:
    """Find .env file in common locations.

    Checks (in order):
    1. .env (current working directory)
    2. ~/.assetsync.env (per-user settings)
    3. None (rely on environment variables only)
    """
    candidates = [
        Path(".env"),
        Path.home() / ".assetsync.env",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class StorageSettings(BaseModel):
    """Connection and layout settings for the CDN-backed object store."""

    endpoint: str = ""
    access_key: str = ""
    secret_key: str = ""
    bucket: str = ""
    region: str | None = None
    secure: bool = True
    path_prefix: str = ""
    cdn_base_url: str = ""
    max_concurrent_uploads: int = 4
    skip_existing: bool = True

    @property
    def is_valid(self) -> bool:
        return bool(self.endpoint and self.access_key and self.secret_key and self.bucket)

    def build_full_path(self, relative_path: str) -> str:
        """Prefix a remote path with ``path_prefix`` unless it already carries it."""
        normalized = relative_path.lstrip("/")
        if not self.path_prefix:
            return normalized
        prefix = self.path_prefix.rstrip("/")
        lowered = normalized.lower()
        if lowered.startswith(prefix.lower() + "/") or lowered == prefix.lower():
            return normalized
        return f"{prefix}/{normalized}"

    def build_cdn_url(self, relative_path: str) -> str:
        full_path = self.build_full_path(relative_path)
        if not self.cdn_base_url:
            return full_path
        return f"{self.cdn_base_url.rstrip('/')}/{full_path}"


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=_find_env_file(),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Local working folder
    projects_root: str = "./projects"

    # PlayCanvas API
    playcanvas_base_url: str = "https://playcanvas.com"
    playcanvas_api_key: str = ""
    playcanvas_username: str = ""
    manifest_page_size: int = 1000
    http_connect_timeout: float = 30.0
    http_read_timeout: float = 120.0

    # Concurrency gates (independent of each other)
    asset_processing_concurrency: int = 16
    download_concurrency: int = 16
    upload_concurrency: int = 4

    # Downloads
    download_chunk_size: int = 8192
    download_max_attempts: int = 5
    download_retry_delay: float = 2.0
    download_batch_attempts: int = 3
    download_batch_base_delay: float = 1.0
    download_size_tolerance: float = 0.05

    # CDN object store (S3-compatible, e.g. Backblaze B2)
    cdn_endpoint: str = ""
    cdn_access_key: str = ""
    cdn_secret_key: str = ""
    cdn_bucket: str = ""
    cdn_region: str | None = None
    cdn_secure: bool = True
    cdn_path_prefix: str = ""
    cdn_base_url: str = ""
    cdn_skip_existing: bool = True

    # Upload ledger
    ledger_database_url: str = Field(default="sqlite+aiosqlite:///./upload_state.db")

    # Folder watcher
    watcher_debounce_seconds: float = 0.5

    @model_validator(mode="after")
    def validate_engine_settings(self) -> "Settings":
        """Reject unusable limits and warn about missing credentials.

        Missing credentials are not fatal here: the coordinators report
        them as configuration failures at call time.
        """
        errors: list[str] = []

        for name in (
            "manifest_page_size",
            "asset_processing_concurrency",
            "download_concurrency",
            "upload_concurrency",
            "download_chunk_size",
            "download_max_attempts",
            "download_batch_attempts",
        ):
            if getattr(self, name) < 1:
                errors.append(f"{name.upper()} must be at least 1")

        if not 0 <= self.download_size_tolerance < 1:
            errors.append("DOWNLOAD_SIZE_TOLERANCE must be in the range [0, 1)")

        if self.download_retry_delay < 0 or self.download_batch_base_delay < 0:
            errors.append("Retry delays must not be negative")

        if errors:
            error_msg = "Configuration errors:\n" + "\n".join(f"  - {e}" for e in errors)
            raise ValueError(error_msg)

        if not self.playcanvas_api_key:
            logger.warning("CONFIG WARNING: PLAYCANVAS_API_KEY is not set. Manifest sync will fail.")
        if not self.storage_settings().is_valid:
            logger.warning(
                "CONFIG WARNING: CDN credentials incomplete. Set CDN_ENDPOINT, "
                "CDN_ACCESS_KEY, CDN_SECRET_KEY and CDN_BUCKET to enable uploads."
            )

        return self

    def storage_settings(self) -> StorageSettings:
        """Build the object store settings value passed to the upload service."""
        return StorageSettings(
            endpoint=self.cdn_endpoint,
            access_key=self.cdn_access_key,
            secret_key=self.cdn_secret_key,
            bucket=self.cdn_bucket,
            region=self.cdn_region,
            secure=self.cdn_secure,
            path_prefix=self.cdn_path_prefix,
            cdn_base_url=self.cdn_base_url,
            max_concurrent_uploads=self.upload_concurrency,
            skip_existing=self.cdn_skip_existing,
        )

    def project_folder(self, project_name: str) -> Path:
        return Path(self.projects_root) / project_name


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
