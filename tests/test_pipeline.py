"""Tests for the per-package build pipeline and the engine entry points.

The build step itself is replaced with a fake that installs a file into
the destination root, so no compiler or make is needed.
"""

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest
from conftest import make_tarball, sha256_of, write_recipe

from autobuilder.builds.artifacts import verify_manifest
from autobuilder.builds.events import read_events
from autobuilder.builds.history import BuildHistory
from autobuilder.builds.pipeline import BuildPipeline
from autobuilder.builds.runner import BuildResult
from autobuilder.config import Settings
from autobuilder.engine import BuildEngine, build_one, resolve, schedule
from autobuilder.errors import BuildError, NoPackagesError
from autobuilder.recipes import Recipe
from autobuilder.scheduler import RetryPolicy
from autobuilder.types import BuildSystem, JobResult, JobStatus, PipelineState


class FakeDownloader:
    def __init__(self, payload: bytes | None):
        self.payload = payload
        self.calls: list[str] = []

    def __call__(self, url: str, dest: Path) -> bool:
        self.calls.append(url)
        if self.payload is None:
            return False
        dest.write_bytes(self.payload)
        return True


@pytest.fixture
def fake_build(monkeypatch: pytest.MonkeyPatch) -> list[dict]:
    """Replace run_build with a fake installing usr/bin/<name>."""
    calls: list[dict] = []

    def run_build(build_system, source_root, dest_dir, log_path, **kwargs):
        calls.append({"build_system": build_system, "source_root": source_root, **kwargs})
        (dest_dir / "usr" / "bin").mkdir(parents=True, exist_ok=True)
        (dest_dir / "usr" / "bin" / source_root.name).write_text("binary")
        now = datetime.now(timezone.utc)
        return BuildResult(
            build_system=build_system,
            dest_dir=dest_dir,
            log_path=log_path,
            steps=["compile", "install"],
            started_at=now,
            finished_at=now,
        )

    monkeypatch.setattr("autobuilder.builds.pipeline.run_build", run_build)
    return calls


@pytest.fixture
def failing_build(monkeypatch: pytest.MonkeyPatch) -> None:
    """Replace run_build with a fake failing at compile with exit code 2."""

    def run_build(build_system, source_root, dest_dir, log_path, **kwargs):
        raise BuildError("compile failed with exit code 2", exit_code=2, step="compile")

    monkeypatch.setattr("autobuilder.builds.pipeline.run_build", run_build)


class TestBuildPipeline:
    """Tests for BuildPipeline.run."""

    def test_success(
        self,
        settings: Settings,
        hello_recipe: Recipe,
        source_tarball: bytes,
        fake_build: list[dict],
    ):
        """A good recipe ends DONE with a verified artifact and manifest."""
        settings.ensure_dirs()
        pipeline = BuildPipeline(settings, downloader=FakeDownloader(source_tarball))
        result = pipeline.run(hello_recipe)

        assert result.success
        assert result.state is PipelineState.DONE
        assert result.artifact is not None and result.manifest_path is not None
        assert result.artifact.path.parent == settings.artifact_dir
        assert result.artifact.path.name == f"hello-1.0-{result.job_id}.tar.gz"
        assert verify_manifest(result.manifest_path)

        manifest = json.loads(result.manifest_path.read_text())
        assert manifest["artifact_sha256"] == result.artifact.sha256
        assert manifest["source_sha256"] == hello_recipe.sha256
        assert manifest["build_system"] == "makefile"
        assert manifest["status"] == "SUCCESS"

        assert fake_build[0]["build_system"] is BuildSystem.MAKEFILE
        assert fake_build[0]["source_root"].name == "hello-1.0"
        assert fake_build[0]["cflags"] == settings.cflags

    def test_events_follow_transitions(
        self,
        settings: Settings,
        hello_recipe: Recipe,
        source_tarball: bytes,
        fake_build: list[dict],
    ):
        """Each transition writes one structured event and one text line."""
        pipeline = BuildPipeline(settings, downloader=FakeDownloader(source_tarball))
        result = pipeline.run(hello_recipe)

        json_log = settings.log_dir / f"hello-{result.job_id}.jsonl"
        text_log = settings.log_dir / f"hello-{result.job_id}.log"
        events = read_events(json_log)
        assert [e["phase"] for e in events] == [
            "start",
            "fetch",
            "extract",
            "patch",
            "detect",
            "build",
            "package",
            "done",
        ]
        for event in events:
            assert event["pkg"] == "hello"
            assert event["job"] == result.job_id
            assert event["ts"].endswith("Z")
        build_event = next(e for e in events if e["phase"] == "build")
        assert build_event["steps"] == ["compile", "install"]
        assert build_event["seconds"] == 0
        assert events[-1]["artifact"] == str(result.artifact.path)
        assert "BUILD SUCCESS" in text_log.read_text()

    def test_work_dir_kept_by_default(
        self,
        settings: Settings,
        hello_recipe: Recipe,
        source_tarball: bytes,
        fake_build: list[dict],
    ):
        """With KEEP_WORK the per-job directory survives."""
        result = BuildPipeline(settings, downloader=FakeDownloader(source_tarball)).run(
            hello_recipe
        )
        assert (settings.work_dir / f"hello-{result.job_id}").is_dir()

    def test_work_dir_removed(
        self,
        tmp_path: Path,
        hello_recipe: Recipe,
        source_tarball: bytes,
        fake_build: list[dict],
    ):
        """With KEEP_WORK=no the per-job directory is removed."""
        settings = Settings(root=tmp_path / "ab", artifact_compression="gz", keep_work=False)
        result = BuildPipeline(settings, downloader=FakeDownloader(source_tarball)).run(
            hello_recipe
        )
        assert result.success
        assert not (settings.work_dir / f"hello-{result.job_id}").exists()

    def test_fetch_failure(self, settings: Settings, hello_recipe: Recipe):
        """An unreachable source fails the job in the fetch phase."""
        result = BuildPipeline(settings, downloader=FakeDownloader(None)).run(hello_recipe)
        assert result.state is PipelineState.FAILED
        assert result.error_code == "download_failed"
        assert result.details["failed_after"] == "start"

        events = read_events(settings.log_dir / f"hello-{result.job_id}.jsonl")
        assert events[-1]["phase"] == "fetch"
        assert events[-1]["level"] == "ERROR"
        assert list(settings.artifact_dir.glob("*")) == []

    def test_build_failure_keeps_exit_code(
        self,
        settings: Settings,
        hello_recipe: Recipe,
        source_tarball: bytes,
        failing_build: None,
    ):
        """A failing build step reports its exit code and writes no manifest."""
        settings.ensure_dirs()
        result = BuildPipeline(settings, downloader=FakeDownloader(source_tarball)).run(
            hello_recipe
        )
        assert not result.success
        assert result.exit_code == 2
        assert result.error_code == "build_failed"

        events = read_events(settings.log_dir / f"hello-{result.job_id}.jsonl")
        assert events[-1]["phase"] == "build"
        assert events[-1]["rc"] == 2
        assert list(settings.artifact_dir.glob("*.manifest.json")) == []

    def test_unknown_build_system(self, settings: Settings, tmp_path: Path):
        """A source tree without markers fails detection."""
        payload = make_tarball({"README": "nothing to build"})
        recipe = Recipe(
            name="odd",
            version="1",
            url="https://example.com/odd-1.tar.gz",
            sha256=sha256_of(payload),
        )
        result = BuildPipeline(settings, downloader=FakeDownloader(payload)).run(recipe)
        assert result.error_code == "unknown_build_system"
        assert result.details["failed_after"] == "patched"

    def test_history_records_attempt(
        self,
        settings: Settings,
        hello_recipe: Recipe,
        source_tarball: bytes,
        fake_build: list[dict],
    ):
        """The ledger records the job and its artifact."""
        settings.ensure_dirs()
        history = BuildHistory.open(settings.db_url)
        result = build_one(
            hello_recipe,
            settings,
            downloader=FakeDownloader(source_tarball),
            history=history,
        )

        record = history.get_job(result.job_id)
        assert record.status == JobStatus.SUCCEEDED.value
        assert record.build_system == "makefile"
        assert record.artifacts[0].sha256 == result.artifact.sha256


class TestEngine:
    """Tests for BuildEngine and the module-level entry points."""

    def test_resolve_and_schedule(self):
        """resolve and schedule compose into a full run."""
        recipes = {
            "a": Recipe(name="a", build_deps="b"),
            "b": Recipe(name="b"),
        }
        order = resolve(recipes)
        assert order == ["b", "a"]

        built: list[str] = []

        def build_fn(name, attempt):
            built.append(name)
            return JobResult(name, f"j-{name}", attempt, PipelineState.DONE)

        report = schedule(order, 1, build_fn, RetryPolicy(1, 0, sleep=lambda s: None))
        assert built == ["b", "a"]
        assert report.succeeded == ["b", "a"]

    def test_run_builds_every_recipe(
        self, settings: Settings, source_tarball: bytes, fake_build: list[dict]
    ):
        """A run builds each package and reports successes."""
        digest = sha256_of(source_tarball)
        for name in ("hello", "world"):
            write_recipe(
                settings.pkg_dir,
                name,
                VERSION="1.0",
                URL=f"https://example.com/{name}-1.0.tar.gz",
                SHA256=digest,
                BUILD_HINT="makefile",
            )
        engine = BuildEngine(settings, downloader=FakeDownloader(source_tarball))
        report = engine.run()
        assert sorted(report.succeeded) == ["hello", "world"]
        assert len(engine.pipeline.artifact_store.list_manifests()) == 2

    def test_retries_then_fails(self, settings: Settings):
        """An unreachable source is attempted RETRY_LIMIT times with backoff."""
        settings = settings.model_copy(update={"retry_backoff": 5})
        write_recipe(settings.pkg_dir, "gone", URL="https://example.com/gone.tar.gz")
        sleeps: list[float] = []
        downloader = FakeDownloader(None)
        engine = BuildEngine(settings, downloader=downloader, sleep=sleeps.append)

        report = engine.run()
        assert report.failed == ["gone"]
        assert report.attempts == {"gone": 2}
        assert sleeps == [5, 10]
        assert len(downloader.calls) == 2

    def test_no_packages(self, settings: Settings):
        """An empty package directory aborts the run."""
        with pytest.raises(NoPackagesError):
            BuildEngine(settings, downloader=FakeDownloader(None)).run()

    def test_clean_on_start(self, settings: Settings, fake_build: list[dict]):
        """CLEAN_ON_START empties WORK_DIR before building."""
        settings = settings.model_copy(update={"clean_on_start": True, "retry_limit": 0})
        settings.ensure_dirs()
        stale = settings.work_dir / "stale-job"
        stale.mkdir()
        write_recipe(settings.pkg_dir, "x", URL="https://example.com/x.tar.gz")

        report = BuildEngine(settings, downloader=FakeDownloader(None)).run()
        assert not stale.exists()
        assert report.failed == ["x"]
        assert report.attempts == {"x": 0}

    def test_crashing_downloader_is_retried(self, settings: Settings):
        """An unexpected error counts as a failed attempt and still reaches the ledger."""
        settings = settings.model_copy(update={"retry_limit": 3, "retry_backoff": 1})
        settings.ensure_dirs()
        write_recipe(settings.pkg_dir, "bad", URL="https://example.com/bad.tar.gz")

        def crashing_downloader(url: str, dest: Path) -> bool:
            raise RuntimeError("decoder exploded")

        history = BuildHistory.open(settings.db_url)
        sleeps: list[float] = []
        engine = BuildEngine(
            settings,
            downloader=crashing_downloader,
            history=history,
            sleep=sleeps.append,
        )

        report = engine.run()
        assert report.failed == ["bad"]
        assert report.attempts == {"bad": 3}
        assert sleeps == [1, 2, 3]
        assert report.results["bad"].error_code == "unexpected_error"

        jobs = history.list_jobs(package="bad")
        assert [j.attempt for j in jobs] == [3, 2, 1]
        assert {j.status for j in jobs} == {JobStatus.FAILED.value}
        assert {j.error_code for j in jobs} == {"unexpected_error"}

        events = read_events(settings.log_dir / f"bad-{jobs[0].job_id}.jsonl")
        assert events[-1]["phase"] == "fetch"
        assert events[-1]["level"] == "ERROR"
        assert events[-1]["code"] == "unexpected_error"
