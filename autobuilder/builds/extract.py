"""Source archive extraction.

Recognized suffixes are unpacked in-process (``tarfile``/``zipfile``);
anything else is handed to the configured tar binary for format
auto-detection.
"""

from __future__ import annotations

import logging
import subprocess
import tarfile
import zipfile
from pathlib import Path, PurePosixPath

from autobuilder.errors import ExtractError

logger = logging.getLogger(__name__)

TAR_MODES = {
    ".tar.gz": "r:gz",
    ".tgz": "r:gz",
    ".tar.xz": "r:xz",
    ".tar.bz2": "r:bz2",
}


def archive_kind(archive_path: Path) -> str:
    """Classify an archive by its file name suffix.

    Returns:
        One of the TAR_MODES keys, ``.zip``, or ``auto``.
    """
    name = archive_path.name.lower()
    for suffix in TAR_MODES:
        if name.endswith(suffix):
            return suffix
    if name.endswith(".zip"):
        return ".zip"
    return "auto"


def _check_member(name: str) -> None:
    member_path = PurePosixPath(name)
    if member_path.is_absolute() or ".." in member_path.parts:
        raise ExtractError(
            f"Refusing to extract {name}: path traversal detected",
            code="path_traversal",
        )


def _extract_zip(archive_path: Path, dest_dir: Path) -> None:
    with zipfile.ZipFile(archive_path) as zf:
        for name in zf.namelist():
            _check_member(name)
        zf.extractall(dest_dir)


def _extract_with_tar_bin(archive_path: Path, dest_dir: Path, tar_bin: str) -> None:
    result = subprocess.run(
        [tar_bin, "-xf", str(archive_path), "-C", str(dest_dir)],
        capture_output=True,
        text=True,
        check=False,
    )
    if result.returncode != 0:
        raise ExtractError(
            f"Failed to extract {archive_path.name}: {result.stderr.strip()}",
            code="tar_error",
        )


def extract_archive(
    archive_path: Path,
    dest_dir: Path,
    tar_bin: str = "tar",
) -> Path:
    """Extract a source archive into a fresh directory.

    Args:
        archive_path: Path to the archive file.
        dest_dir: Destination directory; must not already contain files.
        tar_bin: tar executable for unrecognized suffixes.

    Returns:
        The destination directory.

    Raises:
        ExtractError: If the archive is unsupported, corrupt or unsafe.
    """
    logger.info("Extracting %s to %s", archive_path.name, dest_dir)

    if dest_dir.exists() and any(dest_dir.iterdir()):
        raise ExtractError(f"Extraction directory {dest_dir} is not empty")
    dest_dir.mkdir(parents=True, exist_ok=True)

    kind = archive_kind(archive_path)
    try:
        if kind in TAR_MODES:
            with tarfile.open(archive_path, TAR_MODES[kind]) as tar:
                for member in tar.getmembers():
                    _check_member(member.name)
                tar.extractall(dest_dir, filter="data")
        elif kind == ".zip":
            _extract_zip(archive_path, dest_dir)
        else:
            _extract_with_tar_bin(archive_path, dest_dir, tar_bin)

    except (tarfile.TarError, zipfile.BadZipFile, EOFError) as e:
        raise ExtractError(
            f"Failed to extract {archive_path.name}: {e}",
            code="corrupt_archive",
        ) from e
    except OSError as e:
        raise ExtractError(
            f"OS error extracting {archive_path.name}: {e}",
            code="os_error",
        ) from e

    return dest_dir


def locate_source_root(extract_root: Path) -> Path:
    """Find the source root inside an extraction directory.

    The first directory at depth 1 (in name order) is the source root,
    which handles the usual ``<name>-<version>/`` top-level directory; if
    the archive had no top-level directory the extraction root is used.

    Args:
        extract_root: Directory the archive was unpacked into.

    Returns:
        Path to the source root.
    """
    for entry in sorted(extract_root.iterdir()):
        if entry.is_dir():
            return entry
    return extract_root


__all__ = ["TAR_MODES", "archive_kind", "extract_archive", "locate_source_root"]
