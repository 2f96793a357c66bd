"""Build history ORM models.

This module defines the JobRecord and ArtifactRecord models recording
every build attempt and every packaged artifact.
"""

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from autobuilder.db import Base
from autobuilder.types import JobStatus


class JobRecord(Base):
    """ORM model for one build attempt.

    Attributes:
        id: Primary key.
        job_id: Unique job id.
        package: Package name.
        version: Package version.
        attempt: 1-based attempt number.
        status: running, succeeded or failed.
        state: Last pipeline state reached.
        build_system: Build system used, once detected.
        started_at: Job start time (UTC).
        finished_at: Job finish time (UTC).
        error_code: Error code if failed.
        error_message: Error message if failed.
        exit_code: Sub-step exit code for build failures.
        log_path: Path to the job's text log.
    """

    __tablename__ = "job_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    package: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    version: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    attempt: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=JobStatus.RUNNING.value, index=True
    )
    state: Mapped[str] = mapped_column(String(20), nullable=False, default="start")
    build_system: Mapped[str | None] = mapped_column(String(20), nullable=True)

    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    error_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    exit_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    log_path: Mapped[str | None] = mapped_column(String(500), nullable=True)

    artifacts: Mapped[list["ArtifactRecord"]] = relationship(
        "ArtifactRecord", back_populates="job", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        """Return string representation of JobRecord."""
        return (
            f"<JobRecord(job_id='{self.job_id}', package='{self.package}', "
            f"attempt={self.attempt}, status='{self.status}')>"
        )

    def is_succeeded(self) -> bool:
        """Check if this job succeeded."""
        return self.status == JobStatus.SUCCEEDED.value


class ArtifactRecord(Base):
    """ORM model for a packaged artifact.

    Attributes:
        id: Primary key.
        job_record_id: Foreign key to JobRecord.
        path: Artifact file path.
        manifest_path: Manifest file path.
        size_bytes: Artifact size in bytes.
        sha256: SHA-256 of the artifact.
    """

    __tablename__ = "artifact_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_record_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("job_records.id"), nullable=False, index=True
    )
    path: Mapped[str] = mapped_column(String(500), nullable=False)
    manifest_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    sha256: Mapped[str] = mapped_column(String(64), nullable=False)

    job: Mapped["JobRecord"] = relationship("JobRecord", back_populates="artifacts")

    def __repr__(self) -> str:
        """Return string representation of ArtifactRecord."""
        return f"<ArtifactRecord(path='{self.path}', sha256='{self.sha256[:16]}...')>"


__all__ = ["ArtifactRecord", "JobRecord"]
