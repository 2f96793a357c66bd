"""Per-package build pipeline.

One ``BuildPipeline.run`` call is one build job::

    START -> FETCHED -> EXTRACTED -> PATCHED -> DETECTED
          -> INSTALLED -> PACKAGED -> DONE

with FAILED reachable from any state. Every transition appends one
structured and one human-readable log line. Any error raised once the job
exists is turned into a FAILED JobResult (unexpected ones under the code
``unexpected_error``), so the history ledger always sees a terminal state.
"""

from __future__ import annotations

import logging
from pathlib import Path

from autobuilder.builds.artifacts import ArtifactStore
from autobuilder.builds.detect import choose_build_system
from autobuilder.builds.events import (
    PHASE_BUILD,
    PHASE_DETECT,
    PHASE_DONE,
    PHASE_EXTRACT,
    PHASE_FETCH,
    PHASE_PACKAGE,
    PHASE_PATCH,
    PHASE_START,
    JobLog,
)
from autobuilder.builds.extract import extract_archive, locate_source_root
from autobuilder.builds.fetch import Downloader, fetch_source
from autobuilder.builds.history import BuildHistory
from autobuilder.builds.jobs import BuildJob
from autobuilder.builds.patches import apply_patches
from autobuilder.builds.runner import run_build
from autobuilder.config import Settings
from autobuilder.console import Console
from autobuilder.errors import BuildError, BuildJobError
from autobuilder.recipes.schema import Recipe
from autobuilder.types import BuildSystem, JobResult, PipelineState

logger = logging.getLogger(__name__)

# Phase running while the job sits in each state
_PHASE_OF_STATE = {
    PipelineState.START: PHASE_FETCH,
    PipelineState.FETCHED: PHASE_EXTRACT,
    PipelineState.EXTRACTED: PHASE_PATCH,
    PipelineState.PATCHED: PHASE_DETECT,
    PipelineState.DETECTED: PHASE_BUILD,
    PipelineState.INSTALLED: PHASE_PACKAGE,
    PipelineState.PACKAGED: PHASE_DONE,
}


class BuildPipeline:
    """Drives one recipe through fetch, build, package and manifest."""

    def __init__(
        self,
        settings: Settings,
        console: Console | None = None,
        downloader: Downloader | None = None,
        history: BuildHistory | None = None,
        artifact_store: ArtifactStore | None = None,
    ) -> None:
        self.settings = settings
        self.console = console or Console()
        self.downloader = downloader
        self.history = history
        self.artifact_store = artifact_store or ArtifactStore(
            settings.artifact_dir,
            compression=settings.artifact_compression,
            tar_bin=settings.tar_bin,
            zstd_bin=settings.zstd_bin,
        )

    def patch_dir(self, recipe: Recipe) -> Path:
        """Per-package patch directory (may not exist)."""
        return self.settings.pkg_dir / recipe.name / "patches"

    def run(self, recipe: Recipe, attempt: int = 1) -> JobResult:
        """Run one build job for a recipe.

        Args:
            recipe: Recipe to build.
            attempt: 1-based attempt number.

        Returns:
            JobResult in DONE or FAILED state.
        """
        settings = self.settings

        job = BuildJob.create(recipe.name, settings.work_dir, settings.log_dir, attempt)
        logger.info("Building %s (job %s, attempt %d)", recipe.name, job.job_id, attempt)
        log = JobLog(recipe.name, job.job_id, job.log_json, job.log_text)
        log.event(
            PHASE_START,
            f"=== BUILD START {recipe.name} (job {job.job_id}) attempt {attempt} ===",
            attempt=attempt,
        )
        if self.history is not None:
            self.history.record_start(job, version=recipe.version)

        build_system: BuildSystem | None = None
        try:
            source = fetch_source(
                recipe, settings.src_dir, self.downloader, settings.mirror_list
            )
            job.state = PipelineState.FETCHED
            log.event(PHASE_FETCH, f"Fetched {source}", level="INFO", src=str(source))

            extract_root = extract_archive(source, job.extract_dir, settings.tar_bin)
            source_root = locate_source_root(extract_root)
            job.state = PipelineState.EXTRACTED
            log.event(
                PHASE_EXTRACT,
                f"Extracted to {extract_root}",
                level="INFO",
                srcdir=str(source_root),
            )

            results = apply_patches(self.patch_dir(recipe), source_root, job.log_text)
            failed = [r.patch.name for r in results if not r.applied]
            job.state = PipelineState.PATCHED
            log.event(
                PHASE_PATCH,
                f"Applied {len(results) - len(failed)}/{len(results)} patches"
                + (f"; failed: {', '.join(failed)}" if failed else ""),
                level="WARN" if failed else "INFO",
            )
            for name in failed:
                self.console.warn(f"{recipe.name}: patch {name} failed (continuing)")

            build_system = choose_build_system(recipe.build_hint, source_root)
            job.state = PipelineState.DETECTED
            log.event(
                PHASE_DETECT,
                f"Detected build system: {build_system.value}",
                build_system=build_system.value,
            )

            built = run_build(
                build_system,
                source_root,
                job.dest_dir,
                job.log_text,
                cflags=settings.cflags,
                makeflags=settings.makeflags or "",
                bootstrap_mode=settings.bootstrap_mode,
                timeout=settings.build_timeout,
            )
            job.state = PipelineState.INSTALLED
            log.event(
                PHASE_BUILD,
                f"Installed into {job.dest_dir} ({', '.join(built.steps)})",
                level="INFO",
                rc=0,
                steps=built.steps,
                seconds=round((built.finished_at - built.started_at).total_seconds(), 3),
            )

            artifact = self.artifact_store.package(
                recipe, job.job_id, job.dest_dir, build_system.value
            )
            job.state = PipelineState.PACKAGED
            log.event(
                PHASE_PACKAGE,
                f"Packaged artifact {artifact.path}",
                artifact=str(artifact.path),
                sha256=artifact.sha256,
            )

            manifest_path = self.artifact_store.record(recipe, artifact, job.started_at)
            job.state = PipelineState.DONE
            log.event(
                PHASE_DONE,
                f"BUILD SUCCESS: {recipe.name} -> {artifact.path}",
                artifact=str(artifact.path),
                manifest=str(manifest_path),
            )
            self.console.ok(f"{recipe.name} built: {artifact.path.name}")
            result = JobResult(
                package=recipe.name,
                job_id=job.job_id,
                attempt=attempt,
                state=PipelineState.DONE,
                artifact=artifact,
                manifest_path=manifest_path,
            )

        except BuildJobError as e:
            exit_code = e.exit_code if isinstance(e, BuildError) else None
            result = self._fail(recipe, job, log, e, e.code, exit_code)

        except Exception as e:
            logger.exception(
                "Unexpected error building %s (job %s)", recipe.name, job.job_id
            )
            result = self._fail(recipe, job, log, e, "unexpected_error", None)

        finally:
            if job.is_terminal and settings.remove_work_dirs:
                job.remove_work_dir()

        if self.history is not None:
            self.history.record_finish(
                result, build_system.value if build_system else None
            )
        return result

    def _fail(
        self,
        recipe: Recipe,
        job: BuildJob,
        log: JobLog,
        error: Exception,
        code: str,
        exit_code: int | None,
    ) -> JobResult:
        """Log the terminal error event and mark the job FAILED."""
        log.event(
            _PHASE_OF_STATE.get(job.state, PHASE_DONE),
            f"{type(error).__name__}: {error}",
            level="ERROR",
            code=code,
            rc=exit_code,
            state=job.state.value,
        )
        self.console.error(f"{recipe.name} (attempt {job.attempt}) failed: {error}")
        result = JobResult(
            package=recipe.name,
            job_id=job.job_id,
            attempt=job.attempt,
            state=PipelineState.FAILED,
            error_code=code,
            error_message=str(error),
            exit_code=exit_code,
            details={"failed_after": job.state.value},
        )
        job.state = PipelineState.FAILED
        return result


__all__ = ["BuildPipeline"]
