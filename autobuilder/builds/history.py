"""Build history ledger.

Records every build attempt and every packaged artifact in the SQLite
database under DB_DIR. Each call opens its own short session, so worker
threads can record concurrently through one shared ledger.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload, sessionmaker

from autobuilder.builds.jobs import BuildJob
from autobuilder.builds.models import ArtifactRecord, JobRecord
from autobuilder.db import create_all_tables, get_engine, get_session, get_session_factory
from autobuilder.types import JobResult, JobStatus

logger = logging.getLogger(__name__)


class JobNotFoundError(Exception):
    """Raised when a job is not found in the ledger."""

    def __init__(self, job_id: str, code: str = "job_not_found") -> None:
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id
        self.code = code


class BuildHistory:
    """Thread-safe recorder of build attempts and artifacts."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    @classmethod
    def open(cls, db_url: str) -> BuildHistory:
        """Open (and create if needed) the ledger database.

        Args:
            db_url: SQLAlchemy database URL.

        Returns:
            BuildHistory bound to the database.
        """
        engine = get_engine(db_url)
        create_all_tables(engine)
        return cls(get_session_factory(engine))

    def record_start(self, job: BuildJob, version: str = "") -> None:
        """Record a job entering the pipeline."""
        with get_session(self._session_factory) as session:
            session.add(
                JobRecord(
                    job_id=job.job_id,
                    package=job.package,
                    version=version,
                    attempt=job.attempt,
                    status=JobStatus.RUNNING.value,
                    state=job.state.value,
                    started_at=job.started_at,
                    log_path=str(job.log_text),
                )
            )

    def record_finish(self, result: JobResult, build_system: str | None = None) -> None:
        """Record a job's terminal outcome and its artifact, if any.

        Raises:
            JobNotFoundError: If the job was never recorded as started.
        """
        with get_session(self._session_factory) as session:
            record = session.execute(
                select(JobRecord).where(JobRecord.job_id == result.job_id)
            ).scalar_one_or_none()
            if record is None:
                raise JobNotFoundError(result.job_id)

            record.status = (
                JobStatus.SUCCEEDED.value if result.success else JobStatus.FAILED.value
            )
            record.state = result.state.value
            record.finished_at = datetime.now(timezone.utc)
            record.build_system = build_system
            record.error_code = result.error_code
            record.error_message = result.error_message
            record.exit_code = result.exit_code

            if result.artifact is not None:
                record.artifacts.append(
                    ArtifactRecord(
                        path=str(result.artifact.path),
                        manifest_path=str(result.manifest_path)
                        if result.manifest_path
                        else None,
                        size_bytes=result.artifact.size_bytes,
                        sha256=result.artifact.sha256,
                    )
                )

    def list_jobs(
        self,
        package: str | None = None,
        status: JobStatus | None = None,
        limit: int = 50,
    ) -> list[JobRecord]:
        """List job records, newest first.

        Args:
            package: Filter by package name.
            status: Filter by status.
            limit: Maximum results to return.

        Returns:
            List of JobRecord instances with artifacts loaded.
        """
        stmt = select(JobRecord).options(selectinload(JobRecord.artifacts))
        if package is not None:
            stmt = stmt.where(JobRecord.package == package)
        if status is not None:
            stmt = stmt.where(JobRecord.status == status.value)
        stmt = stmt.order_by(JobRecord.id.desc()).limit(limit)

        with get_session(self._session_factory) as session:
            return list(session.execute(stmt).scalars().all())

    def get_job(self, job_id: str) -> JobRecord:
        """Get a job record by job id.

        Raises:
            JobNotFoundError: If not found.
        """
        stmt = (
            select(JobRecord)
            .options(selectinload(JobRecord.artifacts))
            .where(JobRecord.job_id == job_id)
        )
        with get_session(self._session_factory) as session:
            record = session.execute(stmt).scalar_one_or_none()
        if record is None:
            raise JobNotFoundError(job_id)
        return record

    def summary(self) -> dict[str, Any]:
        """Latest status per package."""
        latest: dict[str, str] = {}
        with get_session(self._session_factory) as session:
            rows = session.execute(
                select(JobRecord.package, JobRecord.status).order_by(JobRecord.id)
            ).all()
        for package, status in rows:
            latest[package] = status
        return {
            "packages": latest,
            "succeeded": sorted(p for p, s in latest.items() if s == JobStatus.SUCCEEDED.value),
            "failed": sorted(p for p, s in latest.items() if s == JobStatus.FAILED.value),
        }


__all__ = ["BuildHistory", "JobNotFoundError"]
