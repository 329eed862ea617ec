"""PlayCanvas REST API client for manifest and asset metadata."""

import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx

from assetsync.core.config import Settings
from assetsync.core.exceptions import (
    AssetNotFoundError,
    ConfigurationError,
    NetworkError,
    PlayCanvasAPIError,
    PlayCanvasAuthenticationError,
    PlayCanvasNotFoundError,
    PlayCanvasRateLimitError,
)
from assetsync.schemas.playcanvas import AssetDetail, AssetSummary, BranchInfo, ProjectInfo

logger = logging.getLogger(__name__)


class PlayCanvasService:
    """Service for interacting with the PlayCanvas REST API."""

    BASE_URL = "https://playcanvas.com"
    # Timeout configuration: 30s connect, 120s read
    DEFAULT_TIMEOUT = httpx.Timeout(connect=30.0, read=120.0, write=30.0, pool=30.0)
    DEFAULT_PAGE_SIZE = 1000

    def __init__(
        self,
        api_key: str,
        base_url: str | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        timeout: httpx.Timeout | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the client.

        Args:
            api_key: PlayCanvas API token sent as a bearer credential.
            base_url: Site root; API calls go to ``{base_url}/api``.
            page_size: Number of manifest entries requested per page.
            timeout: httpx timeout configuration.
            transport: Optional transport override (used by tests).
        """
        if page_size < 1:
            raise ValueError(f"page_size must be at least 1, got: {page_size}")
        self.api_key = api_key
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.page_size = page_size
        self.timeout = timeout or self.DEFAULT_TIMEOUT
        self._transport = transport

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "PlayCanvasService":
        return cls(
            api_key=settings.playcanvas_api_key,
            base_url=settings.playcanvas_base_url,
            page_size=settings.manifest_page_size,
            timeout=httpx.Timeout(
                connect=settings.http_connect_timeout,
                read=settings.http_read_timeout,
                write=settings.http_connect_timeout,
                pool=settings.http_connect_timeout,
            ),
            transport=transport,
        )

    @property
    def api_url(self) -> str:
        return f"{self.base_url}/api"

    def _get_headers(self) -> dict[str, str]:
        """Get headers for PlayCanvas API requests."""
        if not self.api_key:
            raise ConfigurationError("PlayCanvas API key is not configured")
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "application/json",
        }

    def client(self) -> httpx.AsyncClient:
        """Create an authenticated client; callers use it as a context manager."""
        return httpx.AsyncClient(
            headers=self._get_headers(),
            timeout=self.timeout,
            transport=self._transport,
            follow_redirects=True,
        )

    def _handle_response_error(self, response: httpx.Response) -> None:
        """Handle PlayCanvas API error responses.

        Raises:
            PlayCanvasAuthenticationError: When the API key is rejected (401).
            PlayCanvasNotFoundError: When the resource is missing (404).
            PlayCanvasRateLimitError: When rate limited (429).
            PlayCanvasAPIError: For other API errors.
        """
        if response.is_success:
            return

        status_code = response.status_code

        if status_code == 401:
            raise PlayCanvasAuthenticationError()

        if status_code == 404:
            raise PlayCanvasNotFoundError()

        if status_code == 429:
            retry_after = None
            header = response.headers.get("retry-after")
            if header:
                try:
                    retry_after = float(header)
                except ValueError:
                    retry_after = None
            raise PlayCanvasRateLimitError(retry_after=retry_after)

        try:
            error_data = response.json()
            message = error_data.get("error") or error_data.get("message") or response.text
        except ValueError:
            message = response.text or f"PlayCanvas API error: {status_code}"

        raise PlayCanvasAPIError(str(message), status_code=status_code)

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        url = f"{self.api_url}{path}"
        try:
            async with self.client() as client:
                response = await client.get(url, params=params)
                self._handle_response_error(response)
                return response.json()
        except httpx.TimeoutException as e:
            raise NetworkError(f"PlayCanvas API request timed out: {e}", url=url) from e
        except httpx.TransportError as e:
            raise NetworkError(f"PlayCanvas API request failed: {e}", url=url) from e

    async def get_user_id(self, username: str) -> str:
        """Resolve a username to its numeric user id."""
        data = await self._get_json(f"/users/{username}")
        user_id = data.get("id") if isinstance(data, dict) else None
        if user_id is None:
            raise PlayCanvasAPIError("User ID not found in response", status_code=502)
        return str(user_id)

    async def get_projects(self, user_id: str) -> list[ProjectInfo]:
        """List the projects owned by a user."""
        data = await self._get_json(f"/users/{user_id}/projects")
        return [ProjectInfo.model_validate(item) for item in data.get("result", [])]

    async def get_branches(self, project_id: str) -> list[BranchInfo]:
        """List the branches of a project."""
        data = await self._get_json(f"/projects/{project_id}/branches")
        return [BranchInfo.model_validate(item) for item in data.get("result", [])]

    async def iter_assets(self, project_id: str, branch_id: str) -> AsyncIterator[AssetSummary]:
        """Yield every manifest entry of a project branch, page by page.

        Pages of ``page_size`` entries are requested until a page comes back
        short. The iterator is not resumable: a fetch interrupted mid-way
        has to start again from the first page.
        """
        skip = 0
        while True:
            data = await self._get_json(
                f"/projects/{project_id}/assets",
                params={"branch": branch_id, "skip": skip, "limit": self.page_size},
            )
            page = data.get("result", []) if isinstance(data, dict) else []
            logger.debug(f"Fetched {len(page)} assets for project {project_id} (skip={skip})")

            for item in page:
                yield AssetSummary.from_api(item)

            if len(page) < self.page_size:
                return
            skip += len(page)

    async def get_asset(self, asset_id: int) -> AssetDetail:
        """Fetch the full JSON of one asset."""
        try:
            data = await self._get_json(f"/assets/{asset_id}")
        except PlayCanvasNotFoundError as e:
            raise AssetNotFoundError(asset_id) from e
        return AssetDetail.from_api(data)

    def resolve_file_url(self, relative_url: str | None) -> str | None:
        """Turn the ``file.url`` of an asset into an absolute download URL."""
        if not relative_url:
            return None
        if relative_url.startswith(("http://", "https://")):
            return relative_url
        return f"{self.base_url}/{relative_url.lstrip('/')}"
