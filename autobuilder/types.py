"""Shared type definitions for autobuilder.

This module contains enums and dataclasses shared across subpackages to
avoid circular imports.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class BuildSystem(str, Enum):
    """Build system used to configure, compile and install a package."""

    AUTOTOOLS = "autotools"
    CMAKE = "cmake"
    MESON = "meson"
    MAKEFILE = "makefile"
    UNKNOWN = "unknown"


class PipelineState(str, Enum):
    """State of a build job inside the per-package pipeline."""

    START = "start"
    FETCHED = "fetched"
    EXTRACTED = "extracted"
    PATCHED = "patched"
    DETECTED = "detected"
    INSTALLED = "installed"
    PACKAGED = "packaged"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Whether no further transition is possible."""
        return self in (PipelineState.DONE, PipelineState.FAILED)


class JobStatus(str, Enum):
    """Status of a build job as recorded in the history ledger."""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ScheduleMode(str, Enum):
    """Strategy used to hand packages to workers."""

    STATIC = "static"
    READY_QUEUE = "ready-queue"


class Compression(str, Enum):
    """Compression used for packaged artifacts."""

    ZSTD = "zstd"
    XZ = "xz"
    GZIP = "gz"


@dataclass
class ArtifactInfo:
    """Information about a packaged build artifact."""

    path: Path
    sha256: str
    size_bytes: int
    job_id: str
    package: str
    version: str
    build_system: str


@dataclass
class JobResult:
    """Outcome of one build job (one attempt)."""

    package: str
    job_id: str
    attempt: int
    state: PipelineState
    artifact: ArtifactInfo | None = None
    manifest_path: Path | None = None
    error_code: str | None = None
    error_message: str | None = None
    exit_code: int | None = None
    details: dict[str, object] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        """Whether the job reached DONE."""
        return self.state is PipelineState.DONE


__all__ = [
    "ArtifactInfo",
    "BuildSystem",
    "Compression",
    "JobResult",
    "JobStatus",
    "PipelineState",
    "ScheduleMode",
]
