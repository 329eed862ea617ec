"""File digests and on-disk status classification.

Manifest hashes are MD5 (what the remote API publishes); upload dedup
uses SHA-1 (what the object store records). Digests are computed in a
worker thread so large files do not block the event loop.
"""

import asyncio
import hashlib
import logging
from pathlib import Path

from assetsync.models.resource import DownloadStatus, Resource, ResourceKind

logger = logging.getLogger(__name__)

DEFAULT_SIZE_TOLERANCE = 0.05


def _digest_file(path: Path, algorithm: str) -> str:
    with open(path, "rb") as f:
        return hashlib.file_digest(f, algorithm).hexdigest()


async def file_digest(path: str | Path, algorithm: str) -> str:
    """Return the lowercase hex digest of a file."""
    return await asyncio.to_thread(_digest_file, Path(path), algorithm)


async def md5_matches(path: str | Path, expected_hash: str) -> bool:
    actual = await file_digest(path, "md5")
    return actual.lower() == expected_hash.strip().lower()


def within_tolerance(actual: int, expected: int, tolerance: float = DEFAULT_SIZE_TOLERANCE) -> bool:
    """True if ``actual`` is within ``expected * (1 ± tolerance)``, bounds inclusive."""
    return expected * (1 - tolerance) <= actual <= expected * (1 + tolerance)


async def classify_download(
    resource: Resource,
    content_length: int = 0,
    tolerance: float = DEFAULT_SIZE_TOLERANCE,
) -> str:
    """Classify a freshly written file.

    Order of checks: empty file, declared hash, declared size, the
    response ``Content-Length``. With none of these available the file is
    accepted and its observed size recorded on the resource.
    """
    path = Path(resource.path)
    observed = path.stat().st_size

    if observed == 0:
        return DownloadStatus.EMPTY_FILE

    if resource.hash:
        if await md5_matches(path, resource.hash):
            return DownloadStatus.DOWNLOADED
        logger.error(f"{resource.name} hash mismatch for file: {path}, expected hash: {resource.hash}")
        return DownloadStatus.CORRUPTED

    if resource.size > 0:
        if within_tolerance(observed, resource.size, tolerance):
            return DownloadStatus.DOWNLOADED
        logger.error(f"{resource.name} size mismatch: on disk {observed}, expected {resource.size}")
        return DownloadStatus.SIZE_MISMATCH

    if content_length > 0:
        if within_tolerance(observed, content_length, tolerance):
            resource.size = content_length
            return DownloadStatus.DOWNLOADED
        return DownloadStatus.SIZE_MISMATCH

    resource.size = observed
    return DownloadStatus.DOWNLOADED


async def probe_local_status(resource: Resource, tolerance: float = DEFAULT_SIZE_TOLERANCE) -> str:
    """Derive the starting status of a resource from what is already on disk.

    A file that passes the size check but fails an exact size plus MD5
    check is reported as ``Hash ERROR`` so it re-enters the download set.
    Materials are accepted as soon as a non-empty file exists.
    """
    if not resource.path:
        return DownloadStatus.ON_SERVER

    path = Path(resource.path)
    if not path.is_file():
        return DownloadStatus.ON_SERVER

    observed = path.stat().st_size
    if observed == 0:
        return DownloadStatus.EMPTY_FILE

    if resource.kind is ResourceKind.MATERIAL:
        return DownloadStatus.DOWNLOADED

    if resource.size <= 0:
        resource.size = observed
        return DownloadStatus.DOWNLOADED

    if not within_tolerance(observed, resource.size, tolerance):
        logger.warning(f"{resource.name} size mismatch: on disk {observed}, expected {resource.size}")
        return DownloadStatus.SIZE_MISMATCH

    if resource.hash:
        intact = observed == resource.size and await md5_matches(path, resource.hash)
        if not intact:
            logger.warning(f"{resource.name} hash mismatch for file: {path}")
            return DownloadStatus.HASH_ERROR

    return DownloadStatus.DOWNLOADED
