"""Shared fixtures for the sync engine tests."""

from pathlib import Path

import pytest
import pytest_asyncio

from assetsync.core.config import Settings, StorageSettings
from assetsync.models.resource import DownloadStatus, Resource, ResourceKind
from assetsync.services.events import ResourceStatusChanged, StatusEventBus
from assetsync.services.object_storage import (
    ObjectStorageClient,
    ObjectStorageError,
    PutResult,
    StoredObject,
)
from assetsync.services.transfer_state import TransferStateStore


# =============================================================================
# Fakes
# =============================================================================


class InMemoryObjectStorage(ObjectStorageClient):
    """Object store double that keeps objects in a dict and counts calls."""

    def __init__(self, bucket: str = "assets-bucket"):
        self.buckets = {bucket}
        self.objects: dict[str, StoredObject] = {}
        self.put_calls: list[str] = []
        self.fail_keys: set[str] = set()

    async def put_file(self, bucket, key, file_path, content_type="application/octet-stream", metadata=None):
        self.put_calls.append(key)
        if key in self.fail_keys:
            raise ObjectStorageError(f"Failed to upload object: {key}")
        size = Path(file_path).stat().st_size
        etag = f"etag-{len(self.put_calls)}"
        self.objects[key] = StoredObject(key=key, size=size, etag=etag, metadata=dict(metadata or {}))
        return PutResult(key=key, etag=etag, version_id=f"v{len(self.put_calls)}")

    async def stat_object(self, bucket, key):
        return self.objects.get(key)

    async def delete_object(self, bucket, key):
        self.objects.pop(key, None)

    async def bucket_exists(self, bucket):
        return bucket in self.buckets


class RecordingListener:
    """Collects every status event published on a bus."""

    def __init__(self):
        self.events: list[ResourceStatusChanged] = []

    def __call__(self, event: ResourceStatusChanged) -> None:
        self.events.append(event)

    def statuses(self, channel: str | None = None) -> list[str | None]:
        return [event.status for event in self.events if channel is None or event.channel == channel]


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def projects_root(tmp_path) -> Path:
    root = tmp_path / "projects"
    root.mkdir()
    return root


@pytest.fixture
def settings(projects_root, tmp_path) -> Settings:
    return Settings(
        projects_root=str(projects_root),
        playcanvas_base_url="https://playcanvas.test",
        playcanvas_api_key="test-api-key",
        cdn_endpoint="s3.test.local",
        cdn_access_key="access",
        cdn_secret_key="secret",
        cdn_bucket="assets-bucket",
        cdn_base_url="https://cdn.test.local",
        ledger_database_url=f"sqlite+aiosqlite:///{tmp_path / 'ledger' / 'upload_state.db'}",
    )


@pytest.fixture
def storage_settings() -> StorageSettings:
    return StorageSettings(
        endpoint="s3.test.local",
        access_key="access",
        secret_key="secret",
        bucket="assets-bucket",
        cdn_base_url="https://cdn.test.local",
        max_concurrent_uploads=2,
    )


@pytest.fixture
def object_storage() -> InMemoryObjectStorage:
    return InMemoryObjectStorage()


@pytest.fixture
def events() -> StatusEventBus:
    return StatusEventBus()


@pytest.fixture
def listener(events) -> RecordingListener:
    recorder = RecordingListener()
    events.subscribe(recorder)
    return recorder


@pytest_asyncio.fixture
async def ledger(tmp_path):
    """A ledger on a real SQLite file, initialized and disposed per test."""
    store = TransferStateStore.from_url(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    await store.initialize()
    yield store
    await store.close()


def make_resource(
    resource_id: int = 1,
    name: str = "brick",
    kind: ResourceKind = ResourceKind.TEXTURE,
    path: Path | str | None = None,
    status: str | None = DownloadStatus.ON_SERVER,
    **kwargs,
) -> Resource:
    return Resource(
        id=resource_id,
        name=name,
        kind=kind,
        path=str(path) if path is not None else None,
        status=status,
        **kwargs,
    )
