"""Build job identity and workspace.

A BuildJob is one attempt to build one recipe. Every job gets a unique id
(UTC timestamp + package name + random suffix) that qualifies its working
directory, destination root, log files and artifact names, so concurrent
workers and retries never collide.
"""

from __future__ import annotations

import logging
import shutil
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from autobuilder.types import PipelineState

logger = logging.getLogger(__name__)


def new_job_id(package: str, now: datetime | None = None) -> str:
    """Create a job id unique across workers and retries.

    Args:
        package: Package name.
        now: Timestamp override (defaults to current UTC time).

    Returns:
        Job id like ``20250101120000-bc-1a2b3c4d5e6f``.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    return f"{now:%Y%m%d%H%M%S}-{package}-{uuid.uuid4().hex[:12]}"


@dataclass
class BuildJob:
    """One build attempt and its isolated workspace.

    Attributes:
        package: Package name.
        job_id: Unique job id.
        attempt: 1-based attempt number.
        work_dir: Isolated per-job working directory.
        log_json: Structured (JSONL) event log.
        log_text: Human-readable log, also receiving tool output.
        state: Current pipeline state.
        started_at: UTC time the job was created.
    """

    package: str
    job_id: str
    attempt: int
    work_dir: Path
    log_json: Path
    log_text: Path
    state: PipelineState = PipelineState.START
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def create(
        cls,
        package: str,
        work_root: Path,
        log_dir: Path,
        attempt: int = 1,
    ) -> BuildJob:
        """Allocate a new job and create its directories.

        Args:
            package: Package name.
            work_root: WORK_DIR holding all per-job directories.
            log_dir: LOG_DIR for job logs.
            attempt: 1-based attempt number.

        Returns:
            New BuildJob in START state.
        """
        job_id = new_job_id(package)
        work_dir = work_root / f"{package}-{job_id}"
        work_dir.mkdir(parents=True, exist_ok=False)
        log_dir.mkdir(parents=True, exist_ok=True)
        return cls(
            package=package,
            job_id=job_id,
            attempt=attempt,
            work_dir=work_dir,
            log_json=log_dir / f"{package}-{job_id}.jsonl",
            log_text=log_dir / f"{package}-{job_id}.log",
        )

    @property
    def extract_dir(self) -> Path:
        """Directory the source archive is unpacked into."""
        return self.work_dir / "src"

    @property
    def dest_dir(self) -> Path:
        """Isolated install destination root (DESTDIR)."""
        return self.work_dir / "destdir"

    @property
    def is_terminal(self) -> bool:
        """Whether the job reached DONE or FAILED."""
        return self.state.is_terminal

    def remove_work_dir(self) -> None:
        """Delete the per-job working directory."""
        if self.work_dir.exists():
            shutil.rmtree(self.work_dir, ignore_errors=True)
            logger.debug("Removed work directory %s", self.work_dir)


__all__ = ["BuildJob", "new_job_id"]
