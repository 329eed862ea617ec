"""Tests for upload coordination, dedup and ledger integration.

Tests cover:
- Remote path mapping
- Idempotent upload via the in-memory hash short-circuit
- Dedup surviving a restart through the ledger
- Ledger failures falling back to uploading
- Batch tallies, queueing and the upload concurrency bound
- Restoring upload state from the ledger
"""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from assetsync.core.config import StorageSettings
from assetsync.core.exceptions import TransferStateError
from assetsync.models.resource import UploadStatus
from assetsync.services.cdn_upload import CdnUploadService
from assetsync.services.events import StatusEventBus
from assetsync.services.upload_coordinator import (
    HASH_MATCH_MESSAGE,
    UploadCoordinator,
    build_remote_path,
    compute_file_hash,
    is_uploadable_file,
)

from conftest import InMemoryObjectStorage, RecordingListener, make_resource


async def make_coordinator(storage_settings, object_storage, ledger, events=None, concurrency=1, on_pool_change=None):
    uploader = CdnUploadService(storage_settings, client=object_storage)
    coordinator = UploadCoordinator(
        uploader,
        ledger,
        events=events,
        concurrency=concurrency,
        on_pool_change=on_pool_change,
    )
    assert await coordinator.initialize()
    return coordinator


def texture_file(tmp_path, name="brick.ktx2", content=b"ktx2-bytes") -> Path:
    path = tmp_path / "work" / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return path


# =============================================================================
# Remote path mapping
# =============================================================================


class TestBuildRemotePath:
    @pytest.mark.parametrize(
        "file_name,subfolder",
        [
            ("a.ktx2", "textures"),
            ("a.png", "textures"),
            ("a.JPG", "textures"),
            ("a.jpeg", "textures"),
            ("a.glb", "models"),
            ("a.gltf", "models"),
            ("a.json", "materials"),
            ("a.xyz", "assets"),
            ("a.bin", "assets"),
        ],
    )
    def test_subfolder_by_extension(self, file_name, subfolder):
        assert build_remote_path(f"/work/{file_name}", "Demo") == f"Demo/{subfolder}/{file_name}"

    def test_with_model_segment(self):
        assert build_remote_path("/work/crate.glb", "Demo", "Crate") == "Demo/Crate/models/crate.glb"

    def test_without_model_segment(self):
        assert build_remote_path("/work/wall.json", "Demo", None) == "Demo/materials/wall.json"

    @pytest.mark.parametrize("name,allowed", [("a.ktx2", True), ("a.bin", True), ("a.fbx", False), ("a.txt", False)])
    def test_uploadable_extensions(self, name, allowed):
        assert is_uploadable_file(name) is allowed


# =============================================================================
# Single resource
# =============================================================================


class TestUploadResource:
    @pytest.mark.asyncio
    async def test_uploads_and_records(self, storage_settings, object_storage, ledger, tmp_path):
        events = StatusEventBus()
        recorder = RecordingListener()
        events.subscribe(recorder)
        coordinator = await make_coordinator(storage_settings, object_storage, ledger, events)
        path = texture_file(tmp_path)
        resource = make_resource(path=path)

        outcome = await coordinator.upload_resource(resource, "Demo")

        assert outcome.success
        assert outcome.remote_path == "Demo/textures/brick.ktx2"
        assert outcome.cdn_url == "https://cdn.test.local/Demo/textures/brick.ktx2"
        assert resource.uploaded_hash == await compute_file_hash(path)
        assert resource.remote_url == outcome.cdn_url
        assert resource.last_uploaded_at is not None
        assert recorder.statuses("upload") == [UploadStatus.UPLOADING, UploadStatus.UPLOADED]

        saved = await ledger.get_by_local_path(str(path))
        assert saved.status == "Uploaded"
        assert saved.content_hash == resource.uploaded_hash
        assert saved.project_name == "Demo"

    @pytest.mark.asyncio
    async def test_second_upload_is_hash_match(self, storage_settings, object_storage, ledger, tmp_path):
        coordinator = await make_coordinator(storage_settings, object_storage, ledger)
        resource = make_resource(path=texture_file(tmp_path))

        first = await coordinator.upload_resource(resource, "Demo")
        second = await coordinator.upload_resource(resource, "Demo")

        assert first.success and not first.skipped
        assert second.success and second.skipped
        assert second.error == HASH_MATCH_MESSAGE
        assert object_storage.put_calls == ["Demo/textures/brick.ktx2"]

    @pytest.mark.asyncio
    async def test_dedup_survives_restart(self, storage_settings, object_storage, ledger, tmp_path):
        path = texture_file(tmp_path)
        coordinator = await make_coordinator(storage_settings, object_storage, ledger)
        await coordinator.upload_resource(make_resource(path=path), "Demo")

        fresh_storage = InMemoryObjectStorage()
        restarted = await make_coordinator(storage_settings, fresh_storage, ledger)
        fresh = make_resource(path=path)

        assert await restarted.should_upload(fresh) is False
        outcome = await restarted.upload_resource(fresh, "Demo")

        assert outcome.skipped
        assert fresh_storage.put_calls == []
        assert fresh.uploaded_hash == await compute_file_hash(path)
        assert fresh.upload_status == UploadStatus.UPLOADED

    @pytest.mark.asyncio
    async def test_changed_file_is_uploaded_again(self, storage_settings, object_storage, ledger, tmp_path):
        path = texture_file(tmp_path)
        coordinator = await make_coordinator(storage_settings, object_storage, ledger)
        resource = make_resource(path=path)
        await coordinator.upload_resource(resource, "Demo")

        path.write_bytes(b"ktx2-bytes-v2")

        assert await coordinator.should_upload(resource) is True
        outcome = await coordinator.upload_resource(resource, "Demo")
        assert outcome.success and not outcome.skipped
        assert len(object_storage.put_calls) == 2

    @pytest.mark.asyncio
    async def test_ledger_failure_means_upload(self, storage_settings, object_storage, ledger, tmp_path):
        path = texture_file(tmp_path)
        coordinator = await make_coordinator(storage_settings, object_storage, ledger)
        await coordinator.upload_resource(make_resource(path=path), "Demo")

        ledger.is_uploaded = AsyncMock(side_effect=TransferStateError("database is locked"))
        resource = make_resource(path=path)

        assert await coordinator.should_upload(resource) is True
        outcome = await coordinator.upload_resource(resource, "Demo")

        assert outcome.success
        assert await ledger.get_count() == 2

    @pytest.mark.asyncio
    async def test_failed_upload_is_recorded(self, storage_settings, object_storage, ledger, tmp_path):
        path = texture_file(tmp_path)
        object_storage.fail_keys.add("Demo/textures/brick.ktx2")
        coordinator = await make_coordinator(storage_settings, object_storage, ledger)
        resource = make_resource(path=path)

        outcome = await coordinator.upload_resource(resource, "Demo")

        assert not outcome.success
        assert resource.upload_status == UploadStatus.UPLOAD_FAILED
        saved = await ledger.get_by_local_path(str(path))
        assert saved.status == "Failed"
        assert saved.error_message

    @pytest.mark.asyncio
    async def test_missing_file(self, storage_settings, object_storage, ledger, tmp_path):
        coordinator = await make_coordinator(storage_settings, object_storage, ledger)

        outcome = await coordinator.upload_resource(make_resource(path=tmp_path / "nope.png"), "Demo")

        assert not outcome.success
        assert outcome.error == "File not found"


# =============================================================================
# Batches
# =============================================================================


class TestUploadResources:
    @pytest.mark.asyncio
    async def test_batch_counts_and_queue(self, storage_settings, object_storage, ledger, tmp_path):
        events = StatusEventBus()
        recorder = RecordingListener()
        events.subscribe(recorder)
        coordinator = await make_coordinator(storage_settings, object_storage, ledger, events)

        resources = [make_resource(index, path=texture_file(tmp_path, f"t{index}.ktx2", bytes([index]) * 8)) for index in range(1, 4)]
        await coordinator.upload_resource(resources[0], "Demo")
        object_storage.fail_keys.add("Demo/textures/t3.ktx2")

        outcome = await coordinator.upload_resources(resources, "Demo")

        assert outcome.uploaded_count == 1
        assert outcome.skipped_count == 1
        assert outcome.failed_count == 1
        assert not outcome.success
        assert outcome.message == "Uploaded: 1, Skipped: 1, Failed: 1"

        queued = [event.resource.id for event in recorder.events if event.status == UploadStatus.QUEUED]
        assert sorted(queued) == [2, 3]
        first_uploading = next(i for i, e in enumerate(recorder.events) if e.status == UploadStatus.UPLOADING and e.resource.id != 1)
        last_queued = max(i for i, e in enumerate(recorder.events) if e.status == UploadStatus.QUEUED)
        assert last_queued < first_uploading

    @pytest.mark.asyncio
    async def test_all_succeed(self, storage_settings, object_storage, ledger, tmp_path):
        coordinator = await make_coordinator(storage_settings, object_storage, ledger)
        resources = [make_resource(index, path=texture_file(tmp_path, f"m{index}.json", b"{}" + bytes([index]))) for index in range(3)]

        outcome = await coordinator.upload_resources(resources, "Demo", model_name="Crate")

        assert outcome.success
        assert outcome.uploaded_count == 3
        assert sorted(object_storage.put_calls) == [f"Demo/Crate/materials/m{index}.json" for index in range(3)]
        assert await ledger.get_count() == 3

    @pytest.mark.asyncio
    async def test_concurrency_bound(self, storage_settings, ledger, tmp_path):
        observed = []

        class SlowStorage(InMemoryObjectStorage):
            async def put_file(self, *args, **kwargs):
                await asyncio.sleep(0.005)
                return await super().put_file(*args, **kwargs)

        coordinator = await make_coordinator(
            storage_settings, SlowStorage(), ledger, concurrency=2, on_pool_change=observed.append
        )
        resources = [make_resource(index, path=texture_file(tmp_path, f"c{index}.glb", bytes([index]) * 4)) for index in range(8)]

        outcome = await coordinator.upload_resources(resources, "Demo")

        assert outcome.uploaded_count == 8
        assert max(observed) == 2

    @pytest.mark.asyncio
    async def test_default_batch_is_sequential(self, storage_settings, object_storage, ledger, tmp_path):
        observed = []
        coordinator = await make_coordinator(storage_settings, object_storage, ledger, on_pool_change=observed.append)
        resources = [make_resource(index, path=texture_file(tmp_path, f"s{index}.glb", bytes([index]) * 4)) for index in range(4)]

        outcome = await coordinator.upload_resources(resources, "Demo")

        assert outcome.uploaded_count == 4
        assert max(observed) == 1

    @pytest.mark.asyncio
    async def test_progress_reports_completion(self, storage_settings, object_storage, ledger, tmp_path):
        coordinator = await make_coordinator(storage_settings, object_storage, ledger)
        resources = [make_resource(index, path=texture_file(tmp_path, f"p{index}.png", bytes([index]))) for index in range(3)]
        progress = []

        await coordinator.upload_resources(resources, "Demo", on_progress=progress.append)

        assert [p.completed for p in progress] == [1, 2, 3]
        assert {p.total for p in progress} == {3}

    @pytest.mark.asyncio
    async def test_unreadable_file_fails_alone(self, storage_settings, object_storage, ledger, tmp_path, monkeypatch):
        bad = texture_file(tmp_path, "bad.ktx2", b"locked")
        good = texture_file(tmp_path, "good.ktx2", b"fine")
        real_hash = compute_file_hash

        async def guarded_hash(file_path):
            if Path(file_path) == bad:
                raise PermissionError(13, "Permission denied", str(file_path))
            return await real_hash(file_path)

        monkeypatch.setattr("assetsync.services.upload_coordinator.compute_file_hash", guarded_hash)
        coordinator = await make_coordinator(storage_settings, object_storage, ledger)
        resources = [make_resource(1, path=bad), make_resource(2, path=good)]

        outcome = await coordinator.upload_resources(resources, "Demo")

        assert outcome.uploaded_count == 1
        assert outcome.failed_count == 1
        assert object_storage.put_calls == ["Demo/textures/good.ktx2"]
        assert resources[0].upload_status == UploadStatus.UPLOAD_FAILED
        assert resources[1].upload_status == UploadStatus.UPLOADED

        failed = await ledger.get_by_local_path(str(bad))
        assert failed.status == "Failed"
        assert failed.remote_path == "Demo/textures/bad.ktx2"
        assert "Permission denied" in failed.error_message


class TestUploadModelExport:
    @pytest.mark.asyncio
    async def test_uploads_allowed_files(self, storage_settings, object_storage, ledger, tmp_path):
        export = tmp_path / "export"
        (export / "textures").mkdir(parents=True)
        (export / "crate.glb").write_bytes(b"glb")
        (export / "textures" / "albedo.ktx2").write_bytes(b"ktx")
        (export / "notes.txt").write_bytes(b"skip me")
        coordinator = await make_coordinator(storage_settings, object_storage, ledger)

        outcome = await coordinator.upload_model_export(str(export), "Demo", "Crate")

        assert outcome.success
        assert outcome.uploaded_count == 2
        assert sorted(object_storage.put_calls) == ["Demo/Crate/crate.glb", "Demo/Crate/textures/albedo.ktx2"]
        assert await ledger.get_count() == 2

    @pytest.mark.asyncio
    async def test_missing_directory(self, storage_settings, object_storage, ledger, tmp_path):
        coordinator = await make_coordinator(storage_settings, object_storage, ledger)

        outcome = await coordinator.upload_model_export(str(tmp_path / "none"), "Demo", "Crate")

        assert not outcome.success


# =============================================================================
# Restore and history
# =============================================================================


class TestRestoreUploadState:
    @pytest.mark.asyncio
    async def test_restores_uploaded_and_outdated(self, storage_settings, object_storage, ledger, tmp_path):
        coordinator = await make_coordinator(storage_settings, object_storage, ledger)
        same = texture_file(tmp_path, "same.ktx2", b"same")
        changed = texture_file(tmp_path, "changed.ktx2", b"before")
        await coordinator.upload_resources([make_resource(1, path=same), make_resource(2, path=changed)], "Demo")
        changed.write_bytes(b"after")

        fresh = [make_resource(1, path=same), make_resource(2, path=changed), make_resource(3, path=tmp_path / "x.png")]
        restored = await coordinator.restore_upload_states(fresh)

        assert restored == 1
        assert fresh[0].upload_status == UploadStatus.UPLOADED
        assert fresh[0].remote_url == "https://cdn.test.local/Demo/textures/same.ktx2"
        assert fresh[1].upload_status == UploadStatus.OUTDATED
        assert fresh[2].upload_status is None

    @pytest.mark.asyncio
    async def test_unreadable_file_restores_as_outdated(self, storage_settings, object_storage, ledger, tmp_path, monkeypatch):
        coordinator = await make_coordinator(storage_settings, object_storage, ledger)
        bad = texture_file(tmp_path, "bad.ktx2", b"locked")
        good = texture_file(tmp_path, "good.ktx2", b"fine")
        await coordinator.upload_resources([make_resource(1, path=bad), make_resource(2, path=good)], "Demo")
        real_hash = compute_file_hash

        async def guarded_hash(file_path):
            if Path(file_path) == bad:
                raise PermissionError(13, "Permission denied", str(file_path))
            return await real_hash(file_path)

        monkeypatch.setattr("assetsync.services.upload_coordinator.compute_file_hash", guarded_hash)
        fresh = [make_resource(1, path=bad), make_resource(2, path=good)]

        restored = await coordinator.restore_upload_states(fresh)

        assert restored == 1
        assert fresh[0].upload_status == UploadStatus.OUTDATED
        assert fresh[1].upload_status == UploadStatus.UPLOADED

    @pytest.mark.asyncio
    async def test_history_and_count(self, storage_settings, object_storage, ledger, tmp_path):
        coordinator = await make_coordinator(storage_settings, object_storage, ledger)
        await coordinator.upload_resource(make_resource(path=texture_file(tmp_path)), "Demo")

        assert await coordinator.get_upload_record_count() == 1
        history = await coordinator.get_upload_history()
        assert history[0].remote_path == "Demo/textures/brick.ktx2"

    @pytest.mark.asyncio
    async def test_history_tolerates_ledger_errors(self, storage_settings, object_storage, ledger):
        coordinator = await make_coordinator(storage_settings, object_storage, ledger)
        ledger.get_count = AsyncMock(side_effect=TransferStateError("gone"))
        ledger.get_page = AsyncMock(side_effect=TransferStateError("gone"))

        assert await coordinator.get_upload_record_count() == 0
        assert await coordinator.get_upload_history() == []

    @pytest.mark.asyncio
    async def test_initialize_without_credentials(self, ledger):
        coordinator = UploadCoordinator(CdnUploadService(StorageSettings()), ledger)

        assert await coordinator.initialize() is False
        assert not coordinator.is_authorized

    @pytest.mark.asyncio
    async def test_from_settings_uploads_batches_one_at_a_time(self, settings):
        coordinator = UploadCoordinator.from_settings(settings)
        try:
            assert coordinator.concurrency == 1
            assert coordinator.uploader.settings.max_concurrent_uploads == settings.upload_concurrency
        finally:
            await coordinator.store.close()
