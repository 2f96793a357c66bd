"""Top-level build entry points.

``resolve``, ``schedule`` and ``build_one`` are the three seams used by the
CLI and by tests; ``BuildEngine`` wires them to a Settings instance for a
full run.
"""

from __future__ import annotations

import logging
import shutil
import time
from collections.abc import Callable, Mapping, Sequence

from autobuilder.builds.fetch import Downloader
from autobuilder.builds.history import BuildHistory
from autobuilder.builds.pipeline import BuildPipeline
from autobuilder.config import Settings
from autobuilder.console import Console
from autobuilder.errors import NoPackagesError, RecipeError
from autobuilder.recipes import Recipe, RecipeStore, load_recipes
from autobuilder.resolver import in_store_deps, resolve_with_report
from autobuilder.scheduler import BuildFn, RetryPolicy, ScheduleReport, Scheduler
from autobuilder.types import JobResult, ScheduleMode

logger = logging.getLogger(__name__)


def resolve(recipes: Mapping[str, Recipe]) -> list[str]:
    """Compute the build order for a recipe set."""
    return resolve_with_report(recipes).order


def schedule(
    order: Sequence[str],
    worker_count: int,
    build_fn: BuildFn,
    policy: RetryPolicy | None = None,
    mode: ScheduleMode = ScheduleMode.STATIC,
    deps: Mapping[str, Sequence[str]] | None = None,
) -> ScheduleReport:
    """Build an order on a fixed pool of workers and wait for them all.

    Args:
        order: Resolved build order.
        worker_count: Number of worker threads.
        build_fn: Called as ``build_fn(name, attempt)`` for each attempt.
        policy: Retry policy (default: 2 attempts, 5s backoff).
        mode: Scheduling mode.
        deps: In-set build dependencies per package (ready-queue mode).

    Returns:
        ScheduleReport listing succeeded and failed packages.
    """
    if policy is None:
        policy = RetryPolicy(max_attempts=2, backoff=5)
    return Scheduler(worker_count, build_fn, policy, mode=mode, deps=deps).run(order)


def build_one(
    recipe: Recipe,
    settings: Settings,
    console: Console | None = None,
    downloader: Downloader | None = None,
    history: BuildHistory | None = None,
    attempt: int = 1,
) -> JobResult:
    """Run a single build attempt for one recipe."""
    pipeline = BuildPipeline(
        settings, console=console, downloader=downloader, history=history
    )
    return pipeline.run(recipe, attempt=attempt)


class BuildEngine:
    """Runs the whole build for one configuration."""

    def __init__(
        self,
        settings: Settings,
        console: Console | None = None,
        downloader: Downloader | None = None,
        history: BuildHistory | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings
        self.console = console or Console(timeout=settings.download_timeout)
        self.downloader = downloader or self.console.download_with_progress
        self.history = history
        self.sleep = sleep
        self._recipes: RecipeStore | None = None
        self._pipeline: BuildPipeline | None = None

    @property
    def recipes(self) -> RecipeStore:
        """Recipes loaded from PKG_DIR.

        Raises:
            NoPackagesError: If PKG_DIR holds no recipes.
        """
        if self._recipes is None:
            recipes = load_recipes(self.settings.pkg_dir)
            if not recipes:
                raise NoPackagesError(f"No packages found in {self.settings.pkg_dir}")
            self._recipes = recipes
        return self._recipes

    @property
    def pipeline(self) -> BuildPipeline:
        """Shared pipeline used by every worker."""
        if self._pipeline is None:
            self._pipeline = BuildPipeline(
                self.settings,
                console=self.console,
                downloader=self.downloader,
                history=self.history,
            )
        return self._pipeline

    def get_recipe(self, name: str) -> Recipe:
        """Look up one recipe.

        Raises:
            RecipeError: If the package is unknown.
        """
        try:
            return self.recipes[name]
        except KeyError:
            raise RecipeError(
                f"Package {name} not found in {self.settings.pkg_dir}",
                code="unknown_package",
            ) from None

    def build_attempt(self, name: str, attempt: int) -> JobResult:
        """Build function handed to the scheduler."""
        return self.pipeline.run(self.recipes[name], attempt=attempt)

    def clean_work(self) -> int:
        """Remove everything under WORK_DIR.

        Returns:
            Number of entries removed.
        """
        work_dir = self.settings.work_dir
        if not work_dir.is_dir():
            return 0
        removed = 0
        for entry in work_dir.iterdir():
            if entry.is_dir() and not entry.is_symlink():
                shutil.rmtree(entry)
            else:
                entry.unlink()
            removed += 1
        logger.info("Removed %d entries from %s", removed, work_dir)
        return removed

    def order(self) -> list[str]:
        """Resolved build order of the loaded recipes."""
        return resolve(self.recipes)

    def run(self) -> ScheduleReport:
        """Build every recipe.

        Raises:
            NoPackagesError: If PKG_DIR holds no recipes.
        """
        settings = self.settings
        settings.ensure_dirs()
        recipes = self.recipes

        if settings.clean_on_start:
            self.console.info("Cleaning work dir (CLEAN_ON_START=yes)")
            self.clean_work()

        resolution = resolve_with_report(recipes)
        if resolution.degraded:
            self.console.warn(
                "Dependency cycle or unresolved deps; appended: "
                + " ".join(resolution.unresolved)
            )
        self.console.info("Build order resolved: " + " ".join(resolution.order))

        policy = RetryPolicy(
            max_attempts=settings.retry_limit,
            backoff=settings.retry_backoff,
            sleep=self.sleep,
        )
        deps = {name: in_store_deps(recipe, recipes) for name, recipe in recipes.items()}
        report = schedule(
            resolution.order,
            settings.parallelism,
            self.build_attempt,
            policy=policy,
            mode=settings.schedule_mode,
            deps=deps,
        )

        self.console.info("All workers finished.")
        if report.succeeded:
            self.console.ok("Succeeded: " + " ".join(report.succeeded))
        if report.failed:
            self.console.error("Failed: " + " ".join(report.failed))
        return report


def run_all(
    settings: Settings,
    console: Console | None = None,
    downloader: Downloader | None = None,
    history: BuildHistory | None = None,
) -> ScheduleReport:
    """Load, resolve and build every recipe for a configuration."""
    return BuildEngine(
        settings, console=console, downloader=downloader, history=history
    ).run()


__all__ = ["BuildEngine", "build_one", "resolve", "run_all", "schedule"]
