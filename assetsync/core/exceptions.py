"""Exception taxonomy for the sync engine.

Coordinators catch these at the per-resource boundary and turn them into
resource statuses or result messages. Hash and size mismatches are not
exceptions: they are download statuses. Only configuration errors and
``asyncio.CancelledError`` are allowed to end a whole call early.
"""


class AssetSyncError(Exception):
    """Base exception for sync engine errors."""

    pass


class ConfigurationError(AssetSyncError):
    """Raised when credentials or required paths are missing."""

    pass


class NetworkError(AssetSyncError):
    """Raised when a transfer fails at the transport level."""

    def __init__(self, message: str, url: str | None = None, retry_count: int = 0):
        self.url = url
        self.retry_count = retry_count
        super().__init__(message)

    def __str__(self) -> str:
        base = super().__str__()
        if self.url:
            return f"{base} (url={self.url}, retries={self.retry_count})"
        return base


class AssetNotFoundError(AssetSyncError):
    """Raised when an asset id is unknown to the remote API."""

    def __init__(self, asset_id: int | str):
        self.asset_id = asset_id
        super().__init__(f"Asset not found: {asset_id}")


class PlayCanvasAPIError(AssetSyncError):
    """Base exception for PlayCanvas API errors."""

    def __init__(self, message: str, status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class PlayCanvasAuthenticationError(PlayCanvasAPIError):
    """Raised when the API key is rejected."""

    def __init__(self, message: str = "PlayCanvas authentication failed. Check the API key."):
        super().__init__(message, status_code=401)


class PlayCanvasNotFoundError(PlayCanvasAPIError):
    """Raised when a user, project, branch or asset does not exist."""

    def __init__(self, message: str = "Resource not found or access denied."):
        super().__init__(message, status_code=404)


class PlayCanvasRateLimitError(PlayCanvasAPIError):
    """Raised when the API rate limit is exceeded."""

    def __init__(self, retry_after: float | None = None):
        self.retry_after = retry_after
        if retry_after:
            message = f"PlayCanvas API rate limit exceeded. Retry in {retry_after:.0f}s."
        else:
            message = "PlayCanvas API rate limit exceeded. Please try again later."
        super().__init__(message, status_code=429)


class TransferStateError(AssetSyncError):
    """Raised when the upload ledger cannot be read or written."""

    pass
