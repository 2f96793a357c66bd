"""Source fetching into the shared download cache.

This module handles:
- Cache lookup by source file name in SRC_DIR
- Checksum verification of cached and freshly downloaded files
- Mirror fallback when the primary URL fails
- Per-file locking so concurrent workers never download the same file twice
"""

from __future__ import annotations

import fcntl
import logging
import os
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path

from autobuilder.builds.artifacts import compute_file_hash
from autobuilder.errors import FetchError
from autobuilder.recipes.schema import Recipe

logger = logging.getLogger(__name__)

# (url, dest_path) -> success
Downloader = Callable[[str, Path], bool]


@contextmanager
def cache_lock(src_dir: Path, filename: str) -> Iterator[None]:
    """Hold an exclusive lock on one download cache entry.

    Uses a file-based lock, so it also serializes workers in other
    processes sharing the same SRC_DIR.

    Args:
        src_dir: Download cache directory.
        filename: Cached file name to lock.

    Yields:
        None when lock is acquired.
    """
    lock_dir = src_dir / ".locks"
    lock_dir.mkdir(parents=True, exist_ok=True)
    lock_file = lock_dir / f"{filename}.lock"

    fd = os.open(str(lock_file), os.O_RDWR | os.O_CREAT, 0o600)
    try:
        fcntl.flock(fd, fcntl.LOCK_EX)
        logger.debug("Cache lock acquired for %s", filename)
        yield
    finally:
        fcntl.flock(fd, fcntl.LOCK_UN)
        os.close(fd)


def mirror_urls(url: str, mirrors: Sequence[str]) -> list[str]:
    """Candidate URLs: the primary first, then the file name under each mirror.

    Args:
        url: Primary source URL.
        mirrors: Mirror base URLs.

    Returns:
        Deduplicated candidate URLs in try order.
    """
    filename = url.rstrip("/").rsplit("/", 1)[-1]
    candidates = [url]
    for base in mirrors:
        candidate = f"{base.rstrip('/')}/{filename}"
        if candidate not in candidates:
            candidates.append(candidate)
    return candidates


def verify_checksum(path: Path, expected: str) -> bool:
    """Check a file's SHA-256 against an expected hex digest."""
    return compute_file_hash(path) == expected.lower()


def _download(
    urls: Sequence[str],
    dest: Path,
    downloader: Downloader,
) -> str:
    for candidate in urls:
        logger.info("Downloading %s -> %s", candidate, dest)
        if downloader(candidate, dest) and dest.is_file():
            return candidate
        dest.unlink(missing_ok=True)
        logger.warning("Download failed from %s", candidate)
    raise FetchError(
        f"Download failed for {dest.name} from {len(urls)} location(s)",
        code="download_failed",
    )


def fetch_source(
    recipe: Recipe,
    src_dir: Path,
    downloader: Downloader | None,
    mirrors: Sequence[str] = (),
) -> Path:
    """Make the recipe's source archive available in the download cache.

    A cached file is reused when no checksum is declared or when it
    verifies; a cached file failing verification is discarded and
    downloaded again once.

    Args:
        recipe: Recipe whose source to fetch.
        src_dir: Shared download cache directory.
        downloader: Callable performing the transfer, or None.
        mirrors: Mirror base URLs tried after the primary URL.

    Returns:
        Path to the verified source archive.

    Raises:
        FetchError: If there is no URL or downloader, or the transfer or
            verification fails.
    """
    if not recipe.url:
        raise FetchError(f"Package {recipe.name} has no URL", code="no_url")

    filename = recipe.source_filename
    if not filename:
        raise FetchError(f"Cannot derive a file name from {recipe.url}", code="no_url")

    src_dir.mkdir(parents=True, exist_ok=True)
    dest = src_dir / filename

    with cache_lock(src_dir, filename):
        if dest.is_file():
            if not recipe.sha256:
                logger.info("Using cached %s (no sha provided)", dest)
                return dest
            if verify_checksum(dest, recipe.sha256):
                logger.info("Using cached %s (sha ok)", dest)
                return dest
            logger.warning("Cached %s failed checksum, will redownload", dest)
            dest.unlink()

        if downloader is None:
            raise FetchError("No downloader available", code="no_downloader")

        used_url = _download(mirror_urls(recipe.url, mirrors), dest, downloader)

        if recipe.sha256 and not verify_checksum(dest, recipe.sha256):
            dest.unlink(missing_ok=True)
            raise FetchError(
                f"Checksum mismatch for {filename} from {used_url}: "
                f"expected {recipe.sha256}",
                code="checksum_mismatch",
            )

    return dest


__all__ = [
    "Downloader",
    "cache_lock",
    "fetch_source",
    "mirror_urls",
    "verify_checksum",
]
