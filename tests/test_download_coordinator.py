"""Tests for batch download coordination.

Tests cover:
- Filtering to the downloadable set and the "nothing to do" result
- Batch-level retry bound and exponential backoff between passes
- Partial failure isolation
- Concurrency bound of the download gate
"""

import asyncio

import httpx
import pytest

from assetsync.models.resource import DownloadStatus
from assetsync.services.download_coordinator import DownloadContext, DownloadCoordinator
from assetsync.services.downloader import RETRYABLE_ERRORS, ResourceDownloader
from assetsync.services.events import StatusEventBus
from assetsync.services.manifest_store import ManifestStore
from assetsync.services.playcanvas import PlayCanvasService
from assetsync.services.retry import RetryPolicy

from conftest import RecordingListener, make_resource


class RecordingSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_coordinator(projects_root, handler, concurrency=4, api_key="token", on_pool_change=None, events=None):
    api = PlayCanvasService(api_key, base_url="https://playcanvas.test", transport=httpx.MockTransport(handler))
    downloader = ResourceDownloader(
        api,
        ManifestStore(projects_root),
        events=events,
        retry_policy=RetryPolicy.fixed(1, 0.0, retry_on=RETRYABLE_ERRORS),
        sleep=RecordingSleep(),
    )
    sleep = RecordingSleep()
    coordinator = DownloadCoordinator(
        downloader,
        concurrency=concurrency,
        batch_policy=RetryPolicy.exponential(3, 1.0),
        sleep=sleep,
        on_pool_change=on_pool_change,
    )
    return coordinator, sleep


def resources_for(count: int, **kwargs):
    return [
        make_resource(index, name=f"tex{index}", extension=".png", url=f"https://files.test/tex{index}.png", **kwargs)
        for index in range(1, count + 1)
    ]


def ok_handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, content=b"payload")


# =============================================================================
# Filtering and validation
# =============================================================================


class TestDownloadSet:
    @pytest.mark.asyncio
    async def test_nothing_to_download_is_success(self, projects_root):
        coordinator, sleep = make_coordinator(projects_root, ok_handler)
        resources = resources_for(3, status=DownloadStatus.DOWNLOADED)

        result = await coordinator.download_assets(DownloadContext(resources, "Demo"))

        assert result.success
        assert result.message == "No resources require download"
        assert result.batch.total == 0
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_only_downloadable_resources_are_fetched(self, projects_root):
        requested = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(request.url.path)
            return httpx.Response(200, content=b"payload")

        coordinator, _ = make_coordinator(projects_root, handler)
        resources = resources_for(3)
        resources[1].status = DownloadStatus.DOWNLOADED

        result = await coordinator.download_assets(DownloadContext(resources, "Demo"))

        assert result.success
        assert result.batch.total == 2
        assert sorted(requested) == ["/tex1.png", "/tex3.png"]

    @pytest.mark.asyncio
    async def test_paths_are_resolved_under_project(self, projects_root):
        coordinator, _ = make_coordinator(projects_root, ok_handler)
        resources = resources_for(1, parent=7)

        await coordinator.download_assets(DownloadContext(resources, "Demo", {7: "Env/Textures"}))

        expected = projects_root / "Demo" / "assets" / "Env" / "Textures" / "tex1.png"
        assert resources[0].path == str(expected)
        assert expected.read_bytes() == b"payload"

    @pytest.mark.asyncio
    async def test_missing_api_key_fails_fast(self, projects_root):
        requested = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(request)
            return httpx.Response(200, content=b"payload")

        coordinator, _ = make_coordinator(projects_root, handler, api_key="")

        result = await coordinator.download_assets(DownloadContext(resources_for(2), "Demo"))

        assert not result.success
        assert "API key" in result.message
        assert result.batch.total == 0
        assert requested == []

    @pytest.mark.asyncio
    async def test_missing_project_name_fails_fast(self, projects_root):
        coordinator, _ = make_coordinator(projects_root, ok_handler)

        result = await coordinator.download_assets(DownloadContext(resources_for(1), ""))

        assert not result.success
        assert "Project name" in result.message


# =============================================================================
# Batch retries and failure isolation
# =============================================================================


class TestBatchRetries:
    @pytest.mark.asyncio
    async def test_always_failing_source_runs_three_passes(self, projects_root):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(500)

        coordinator, sleep = make_coordinator(projects_root, handler)
        resources = resources_for(2)

        result = await coordinator.download_assets(DownloadContext(resources, "Demo"))

        assert not result.success
        assert len(requests) == 6
        assert sleep.delays == [1.0, 2.0]
        assert result.batch.failed == result.batch.total == 2
        assert result.batch.succeeded == 0
        assert all(resource.status == DownloadStatus.ERROR for resource in resources)
        assert result.message == "Failed to download 2 of 2 resources"

    @pytest.mark.asyncio
    async def test_recovered_resource_is_not_revisited(self, projects_root):
        hits: dict[str, int] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            hits[request.url.path] = hits.get(request.url.path, 0) + 1
            if request.url.path == "/tex2.png" and hits[request.url.path] == 1:
                return httpx.Response(503)
            return httpx.Response(200, content=b"payload")

        coordinator, sleep = make_coordinator(projects_root, handler)

        result = await coordinator.download_assets(DownloadContext(resources_for(3), "Demo"))

        assert result.success
        assert result.message == "Downloaded 3 resources"
        assert hits == {"/tex1.png": 1, "/tex2.png": 2, "/tex3.png": 1}
        assert sleep.delays == [1.0]

    @pytest.mark.asyncio
    async def test_one_raising_resource_does_not_abort_batch(self, projects_root):
        coordinator, _ = make_coordinator(projects_root, ok_handler)
        resources = resources_for(5)
        original = coordinator.downloader.download

        async def flaky_download(resource, project_name, folder_paths):
            if resource.id == 3:
                raise RuntimeError("unexpected failure")
            return await original(resource, project_name, folder_paths)

        coordinator.downloader.download = flaky_download

        result = await coordinator.download_assets(DownloadContext(resources, "Demo"))

        assert not result.success
        assert result.batch.succeeded == 4
        assert result.batch.failed == 1
        assert resources[2].status == DownloadStatus.ERROR
        assert all(r.status == DownloadStatus.DOWNLOADED for r in resources if r.id != 3)

    @pytest.mark.asyncio
    async def test_status_events_are_emitted_per_transition(self, projects_root):
        events = StatusEventBus()
        recorder = RecordingListener()
        events.subscribe(recorder)
        coordinator, _ = make_coordinator(projects_root, ok_handler, events=events)

        await coordinator.download_assets(DownloadContext(resources_for(2), "Demo"))

        assert recorder.statuses().count(DownloadStatus.DOWNLOADING) == 2
        assert recorder.statuses().count(DownloadStatus.DOWNLOADED) == 2

    @pytest.mark.asyncio
    async def test_progress_is_reported_per_resource(self, projects_root):
        coordinator, _ = make_coordinator(projects_root, ok_handler)
        progress = []

        await coordinator.download_assets(DownloadContext(resources_for(3), "Demo"), on_progress=progress.append)

        assert sorted(p.completed for p in progress) == [1, 2, 3]
        assert {p.total for p in progress} == {3}
        assert {p.attempt for p in progress} == {1}


# =============================================================================
# Concurrency
# =============================================================================


class TestConcurrencyBound:
    @pytest.mark.asyncio
    async def test_in_flight_downloads_never_exceed_width(self, projects_root):
        observed = []

        async def slow_handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(0.005)
            return httpx.Response(200, content=b"payload")

        coordinator, _ = make_coordinator(
            projects_root, slow_handler, concurrency=3, on_pool_change=observed.append
        )

        result = await coordinator.download_assets(DownloadContext(resources_for(12), "Demo"))

        assert result.success
        assert max(observed) == 3

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, projects_root):
        started = asyncio.Event()

        async def hanging_handler(request: httpx.Request) -> httpx.Response:
            started.set()
            await asyncio.sleep(10)
            return httpx.Response(200, content=b"payload")

        coordinator, _ = make_coordinator(projects_root, hanging_handler)
        task = asyncio.create_task(coordinator.download_assets(DownloadContext(resources_for(2), "Demo")))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
