"""Artifact packaging and manifest generation.

This module handles:
- Archiving a job's destination root into one compressed artifact
- Computing checksums from the artifact's actual bytes
- Generating and atomically writing provenance manifests
- Listing and re-verifying stored artifacts

Artifact names encode package, version and job id, so repeated or
concurrent builds of the same package never overwrite each other.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import subprocess
import tarfile
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any

from autobuilder.builds.events import utc_timestamp
from autobuilder.errors import PackagingError
from autobuilder.recipes.schema import Recipe
from autobuilder.types import ArtifactInfo, Compression

logger = logging.getLogger(__name__)

# Default chunk size for hashing
HASH_CHUNK_SIZE = 64 * 1024  # 64KB

MANIFEST_SUFFIX = ".manifest.json"

ARCHIVE_SUFFIXES = {
    Compression.ZSTD: ".tar.zst",
    Compression.XZ: ".tar.xz",
    Compression.GZIP: ".tar.gz",
}


def compute_file_hash(
    file_path: Path,
    chunk_size: int = HASH_CHUNK_SIZE,
) -> str:
    """Compute SHA-256 hash of a file.

    Args:
        file_path: Path to the file.
        chunk_size: Size of chunks for streaming hash.

    Returns:
        SHA-256 hex digest.
    """
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def artifact_basename(recipe: Recipe, job_id: str) -> str:
    """Return the collision-free artifact stem ``<pkg>-<version>-<jobid>``."""
    return f"{recipe.name}-{recipe.version}-{job_id}"


def _archive_with_tarfile(source_dir: Path, output: Path, mode: str) -> None:
    with tarfile.open(output, mode) as tar:
        for entry in sorted(source_dir.iterdir()):
            tar.add(entry, arcname=f"./{entry.name}")


def _archive_with_zstd(
    source_dir: Path,
    output: Path,
    tar_bin: str,
    zstd_bin: str,
) -> None:
    """Run ``tar -cf - . | zstd -q -o <output>``.

    tar's stderr goes to a temporary file, never a pipe.
    """
    try:
        with tempfile.TemporaryFile() as tar_err:
            tar_proc = subprocess.Popen(
                [tar_bin, "-cf", "-", "-C", str(source_dir), "."],
                stdout=subprocess.PIPE,
                stderr=tar_err,
            )
            try:
                zstd_proc = subprocess.run(
                    [zstd_bin, "-q", "-f", "-o", str(output)],
                    stdin=tar_proc.stdout,
                    capture_output=True,
                    check=False,
                )
            finally:
                if tar_proc.stdout is not None:
                    tar_proc.stdout.close()
                tar_rc = tar_proc.wait()
            tar_err.seek(0)
            tar_stderr = tar_err.read()
    except OSError as e:
        raise PackagingError(f"Failed to run archiver: {e}", code="archiver_missing") from e

    if tar_rc != 0:
        raise PackagingError(
            f"{tar_bin} exited {tar_rc}: {tar_stderr.decode(errors='replace').strip()}"
        )
    if zstd_proc.returncode != 0:
        raise PackagingError(
            f"{zstd_bin} exited {zstd_proc.returncode}: "
            f"{zstd_proc.stderr.decode(errors='replace').strip()}"
        )


def package_tree(
    source_dir: Path,
    output_path: Path,
    compression: Compression = Compression.ZSTD,
    tar_bin: str = "tar",
    zstd_bin: str = "zstd",
) -> tuple[str, int]:
    """Archive a directory tree into one compressed file.

    The archive is written under a temporary name and renamed into place,
    so a partially written artifact is never visible.

    Args:
        source_dir: Directory to archive (the destination root).
        output_path: Final artifact path.
        compression: Compression format.
        tar_bin: tar executable (zstd only).
        zstd_bin: zstd executable (zstd only).

    Returns:
        Tuple of (SHA-256 of the artifact bytes, size in bytes).

    Raises:
        PackagingError: If archiving or compression fails.
    """
    if not source_dir.is_dir():
        raise PackagingError(f"Nothing to package: {source_dir} is not a directory")

    output_path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = output_path.with_name(output_path.name + ".tmp")

    try:
        if compression is Compression.ZSTD:
            _archive_with_zstd(source_dir, tmp_path, tar_bin, zstd_bin)
        elif compression is Compression.XZ:
            _archive_with_tarfile(source_dir, tmp_path, "w:xz")
        else:
            _archive_with_tarfile(source_dir, tmp_path, "w:gz")

        if not tmp_path.is_file() or tmp_path.stat().st_size == 0:
            raise PackagingError(f"Archiver produced no output for {output_path.name}")

        tmp_path.replace(output_path)
    except (tarfile.TarError, OSError) as e:
        raise PackagingError(f"Failed to package {source_dir}: {e}") from e
    finally:
        tmp_path.unlink(missing_ok=True)

    sha256 = compute_file_hash(output_path)
    size_bytes = output_path.stat().st_size
    logger.info(
        "Packaged %s (%d bytes, sha256: %s)",
        output_path.name,
        size_bytes,
        sha256[:16] + "...",
    )
    return sha256, size_bytes


def generate_manifest(
    recipe: Recipe,
    artifact: ArtifactInfo,
    build_start: datetime,
    status: str = "SUCCESS",
) -> dict[str, Any]:
    """Generate a provenance manifest binding an artifact to its recipe.

    Args:
        recipe: Recipe the artifact was built from.
        artifact: Packaged artifact.
        build_start: UTC start time of the job.
        status: Job status recorded in the manifest.

    Returns:
        Manifest dictionary suitable for JSON serialization.
    """
    return {
        "name": recipe.title,
        "pkg": recipe.name,
        "version": recipe.version,
        "jobid": artifact.job_id,
        "artifact": str(artifact.path),
        "artifact_sha256": artifact.sha256,
        "source": recipe.url,
        "source_sha256": recipe.sha256,
        "build_system": artifact.build_system,
        "build_start": utc_timestamp(build_start),
        "status": status,
    }


def write_manifest(
    manifest: dict[str, Any],
    output_path: Path,
) -> Path:
    """Atomically write a manifest to a JSON file.

    Args:
        manifest: Manifest dictionary.
        output_path: Output file path.

    Returns:
        Path to written manifest file.
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(
        dir=output_path.parent, prefix=".manifest-", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(manifest, f, indent=2)
            f.write("\n")
        os.replace(tmp_name, output_path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise

    logger.info("Wrote manifest to %s", output_path)
    return output_path


def load_manifest(path: Path) -> dict[str, Any]:
    """Load a manifest JSON file."""
    with path.open(encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object in {path}")
    return data


def verify_manifest(path: Path) -> bool:
    """Re-hash a manifest's artifact and compare with the recorded digest.

    Args:
        path: Manifest path.

    Returns:
        True if the artifact exists, is non-empty and matches its digest.
    """
    manifest = load_manifest(path)
    artifact = Path(manifest.get("artifact", ""))
    if not artifact.is_file() or artifact.stat().st_size == 0:
        logger.warning("Artifact missing or empty for manifest %s", path)
        return False
    actual = compute_file_hash(artifact)
    if actual != manifest.get("artifact_sha256"):
        logger.warning("Digest mismatch for %s: manifest says %s, got %s",
                       artifact, manifest.get("artifact_sha256"), actual)
        return False
    return True


class ArtifactStore:
    """Write-once store of packaged artifacts and their manifests."""

    def __init__(
        self,
        artifact_dir: Path,
        compression: Compression = Compression.ZSTD,
        tar_bin: str = "tar",
        zstd_bin: str = "zstd",
    ) -> None:
        self.artifact_dir = artifact_dir
        self.compression = compression
        self.tar_bin = tar_bin
        self.zstd_bin = zstd_bin

    def artifact_path(self, recipe: Recipe, job_id: str) -> Path:
        """Path of the artifact for a job."""
        suffix = ARCHIVE_SUFFIXES[self.compression]
        return self.artifact_dir / f"{artifact_basename(recipe, job_id)}{suffix}"

    def manifest_path(self, recipe: Recipe, job_id: str) -> Path:
        """Path of the manifest for a job."""
        return self.artifact_dir / f"{artifact_basename(recipe, job_id)}{MANIFEST_SUFFIX}"

    def package(
        self,
        recipe: Recipe,
        job_id: str,
        dest_dir: Path,
        build_system: str,
    ) -> ArtifactInfo:
        """Archive a destination root into this job's artifact.

        Raises:
            PackagingError: If archiving fails.
        """
        path = self.artifact_path(recipe, job_id)
        sha256, size_bytes = package_tree(
            dest_dir,
            path,
            compression=self.compression,
            tar_bin=self.tar_bin,
            zstd_bin=self.zstd_bin,
        )
        return ArtifactInfo(
            path=path,
            sha256=sha256,
            size_bytes=size_bytes,
            job_id=job_id,
            package=recipe.name,
            version=recipe.version,
            build_system=build_system,
        )

    def record(
        self,
        recipe: Recipe,
        artifact: ArtifactInfo,
        build_start: datetime,
    ) -> Path:
        """Write the manifest for an existing artifact.

        Raises:
            PackagingError: If the artifact is missing.
        """
        if not artifact.path.is_file():
            raise PackagingError(f"Artifact {artifact.path} does not exist")
        manifest = generate_manifest(recipe, artifact, build_start)
        return write_manifest(manifest, self.manifest_path(recipe, artifact.job_id))

    def list_manifests(self, package: str | None = None) -> list[dict[str, Any]]:
        """Load all manifests, oldest first, optionally for one package."""
        if not self.artifact_dir.is_dir():
            return []
        manifests = []
        for path in sorted(self.artifact_dir.glob(f"*{MANIFEST_SUFFIX}")):
            data = load_manifest(path)
            if package is None or data.get("pkg") == package:
                manifests.append(data)
        manifests.sort(key=lambda m: (m.get("build_start", ""), m.get("jobid", "")))
        return manifests


__all__ = [
    "ARCHIVE_SUFFIXES",
    "ArtifactStore",
    "HASH_CHUNK_SIZE",
    "MANIFEST_SUFFIX",
    "artifact_basename",
    "compute_file_hash",
    "generate_manifest",
    "load_manifest",
    "package_tree",
    "verify_manifest",
    "write_manifest",
]
