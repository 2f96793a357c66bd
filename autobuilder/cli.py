"""Thin CLI wrapper for autobuilder.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from autobuilder import __version__
from autobuilder.config import (
    DEFAULT_CONFIG_FILE,
    Settings,
    get_settings,
    load_settings,
    print_settings_json,
)
from autobuilder.console import Console as StatusConsole
from autobuilder.console import setup_logging
from autobuilder.errors import ConfigError, NoPackagesError, RecipeError
from autobuilder.types import ScheduleMode

app = typer.Typer(
    name="autobuilder",
    help="Auto Builder - build packages from source recipes into artifacts",
    no_args_is_help=True,
)
console = Console()

MASTER_CONF_TEMPLATE = """\
# master.conf - single-file configuration
ROOT = ./auto-builder
ARCH = x86-64
MODE = native
PARALLELISM = 2
SRC_DIR = ${ROOT}/sources
WORK_DIR = ${ROOT}/work
ARTIFACT_DIR = ${ROOT}/artifacts
LOG_DIR = ${ROOT}/logs
DB_DIR = ${ROOT}/db
PKG_DIR = ${ROOT}/packages
MIRRORS = https://ftp.gnu.org/gnu
RETRY_LIMIT = 2
RETRY_BACKOFF = 5
CFLAGS = -O2 -pipe
MAKEFLAGS = -j2
CLEAN_ON_START = no
KEEP_LOGS = yes
KEEP_WORK = yes
ALLOW_CROSS = false
BOOTSTRAP_MODE = auto
TAR_BIN = tar
ZSTD_BIN = zstd
ARTIFACT_COMPRESSION = zstd
SCHEDULE_MODE = static
BUILD_TIMEOUT =
DOWNLOAD_TIMEOUT = 3600
LOG_LEVEL = INFO
"""

SAMPLE_RECIPE = """\
NAME = bc
VERSION = 1.08.2
URL = https://ftp.gnu.org/gnu/bc/bc-1.08.2.tar.xz
# SHA256 = <fill in to verify downloads>
BUILD_DEPS = readline
RUN_DEPS =
BUILD_HINT = autotools
STAGE = 1
PRIORITY = normal
"""

ConfigOption = Annotated[
    Path,
    typer.Option("--config", "-c", help="Run configuration file"),
]
JsonOption = Annotated[
    bool,
    typer.Option("--json", help="Output as JSON"),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"autobuilder version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """Auto Builder - build packages from source recipes into artifacts."""


def _load_settings(config_path: Path, **overrides: object) -> Settings:
    """Load settings or exit with code 1 on a configuration error."""
    try:
        return load_settings(config_path, **overrides)
    except ConfigError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1) from None


def _print_json(data: object) -> None:
    console.print(json.dumps(data, indent=2), soft_wrap=True, markup=False, highlight=False)


def _setup(settings: Settings) -> None:
    setup_logging(settings.log_level)
    settings.ensure_dirs()


def _status_console(settings: Settings) -> StatusConsole:
    verbosity = 2 if settings.log_level == "DEBUG" else 1
    return StatusConsole(verbosity=verbosity, timeout=settings.download_timeout)


@app.command()
def init(
    config_path: ConfigOption = Path(DEFAULT_CONFIG_FILE),
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Overwrite an existing configuration"),
    ] = False,
) -> None:
    """Create master.conf, the state directories and a sample recipe."""
    if config_path.exists() and not force:
        console.print(f"[red]{config_path} already exists (use --force)[/red]")
        raise typer.Exit(code=1)

    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(MASTER_CONF_TEMPLATE, encoding="utf-8")
    settings = _load_settings(config_path)
    settings.ensure_dirs()

    sample = settings.pkg_dir / "bc" / "desc.txt"
    if not sample.exists():
        sample.parent.mkdir(parents=True, exist_ok=True)
        sample.write_text(SAMPLE_RECIPE, encoding="utf-8")

    console.print(f"[green]Created {config_path}[/green]")
    console.print(f"  Root:            {settings.root}")
    console.print(f"  Sample package:  {sample}")
    console.print("Run 'autobuilder run' to build every package.")


@app.command()
def run(
    config_path: ConfigOption = Path(DEFAULT_CONFIG_FILE),
    parallelism: Annotated[
        int | None,
        typer.Option("--parallelism", "-j", help="Override PARALLELISM", min=1),
    ] = None,
    schedule_mode: Annotated[
        ScheduleMode | None,
        typer.Option("--schedule-mode", help="Override SCHEDULE_MODE"),
    ] = None,
    json_output: JsonOption = False,
) -> None:
    """Build every package under PKG_DIR in dependency order.

    Package failures are reported but do not change the exit code; only
    configuration errors and an empty recipe set exit with code 1.
    """
    from autobuilder.builds.history import BuildHistory
    from autobuilder.engine import BuildEngine

    settings = _load_settings(
        config_path, parallelism=parallelism, schedule_mode=schedule_mode
    )
    _setup(settings)

    engine = BuildEngine(
        settings,
        console=_status_console(settings),
        history=BuildHistory.open(settings.db_url),
    )
    try:
        report = engine.run()
    except NoPackagesError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        _print_json(report.to_dict())
    else:
        console.print(
            f"[bold]{len(report.succeeded)} succeeded, {len(report.failed)} failed[/bold]"
        )


@app.command()
def build(
    package: Annotated[str, typer.Argument(help="Package to build")],
    config_path: ConfigOption = Path(DEFAULT_CONFIG_FILE),
    json_output: JsonOption = False,
) -> None:
    """Build a single package once, ignoring its dependencies."""
    from autobuilder.builds.history import BuildHistory
    from autobuilder.engine import BuildEngine, build_one

    settings = _load_settings(config_path)
    _setup(settings)

    status_console = _status_console(settings)
    engine = BuildEngine(settings, console=status_console)
    try:
        recipe = engine.get_recipe(package)
    except (NoPackagesError, RecipeError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1) from None

    result = build_one(
        recipe,
        settings,
        console=status_console,
        downloader=engine.downloader,
        history=BuildHistory.open(settings.db_url),
    )

    if json_output:
        output = {
            "package": result.package,
            "job_id": result.job_id,
            "state": result.state.value,
            "artifact": str(result.artifact.path) if result.artifact else None,
            "manifest": str(result.manifest_path) if result.manifest_path else None,
            "error_code": result.error_code,
            "error_message": result.error_message,
            "exit_code": result.exit_code,
        }
        _print_json(output)
    elif result.artifact is not None:
        console.print(f"[green]Built {package}: {result.artifact.path}[/green]")
    else:
        console.print(f"[red]Build of {package} failed: {result.error_message}[/red]")

    if not result.success:
        raise typer.Exit(code=1)


@app.command()
def order(
    config_path: ConfigOption = Path(DEFAULT_CONFIG_FILE),
    json_output: JsonOption = False,
) -> None:
    """Show the resolved build order."""
    from autobuilder.recipes import load_recipes
    from autobuilder.resolver import resolve_with_report

    settings = _load_settings(config_path)
    recipes = load_recipes(settings.pkg_dir)
    if not recipes:
        console.print(f"[red]Error: No packages found in {settings.pkg_dir}[/red]")
        raise typer.Exit(code=1)

    resolution = resolve_with_report(recipes)
    if json_output:
        _print_json({"order": resolution.order, "unresolved": resolution.unresolved})
        return

    for i, name in enumerate(resolution.order, 1):
        marker = " [yellow](unresolved)[/yellow]" if name in resolution.unresolved else ""
        console.print(f"  {i:3d}. {name} {recipes[name].version}{marker}")


@app.command()
def status(
    config_path: ConfigOption = Path(DEFAULT_CONFIG_FILE),
    limit: Annotated[
        int,
        typer.Option("--limit", "-l", help="Maximum number of recent jobs"),
    ] = 10,
    json_output: JsonOption = False,
) -> None:
    """Show known packages, artifacts and recent jobs."""
    from autobuilder.builds.artifacts import ArtifactStore
    from autobuilder.builds.history import BuildHistory
    from autobuilder.recipes import load_recipes

    settings = _load_settings(config_path)
    settings.ensure_dirs()

    recipes = load_recipes(settings.pkg_dir)
    manifests = ArtifactStore(settings.artifact_dir).list_manifests()
    history = BuildHistory.open(settings.db_url)
    jobs = history.list_jobs(limit=limit)
    latest = history.summary()["packages"]

    if json_output:
        output = {
            "packages": sorted(recipes),
            "artifacts": manifests,
            "latest": latest,
            "jobs": [
                {
                    "job_id": j.job_id,
                    "package": j.package,
                    "attempt": j.attempt,
                    "status": j.status,
                    "state": j.state,
                    "started_at": j.started_at.isoformat() if j.started_at else None,
                    "finished_at": j.finished_at.isoformat() if j.finished_at else None,
                    "error_code": j.error_code,
                    "exit_code": j.exit_code,
                }
                for j in jobs
            ],
        }
        _print_json(output)
        return

    console.print(f"[bold]Packages known:[/bold] {' '.join(sorted(recipes)) or '(none)'}")
    for name, state in sorted(latest.items()):
        color = {"succeeded": "green", "failed": "red"}.get(state, "blue")
        console.print(f"  {name}: [{color}]{state}[/{color}]")
    console.print()
    console.print(f"[bold]Artifacts in {settings.artifact_dir}:[/bold]")
    if not manifests:
        console.print("  (none)")
    for m in manifests:
        console.print(f"  {Path(m['artifact']).name}  {m['artifact_sha256'][:16]}...")
    console.print()
    console.print("[bold]Recent jobs:[/bold]")
    if not jobs:
        console.print("  (none)")
    for j in jobs:
        color = {"succeeded": "green", "failed": "red"}.get(j.status, "blue")
        console.print(
            f"  [{color}]{j.status:9s}[/{color}] {j.package} (attempt {j.attempt}) {j.job_id}"
        )


@app.command()
def verify(
    config_path: ConfigOption = Path(DEFAULT_CONFIG_FILE),
) -> None:
    """Re-hash every artifact and compare with its manifest."""
    from autobuilder.builds.artifacts import MANIFEST_SUFFIX, verify_manifest

    settings = _load_settings(config_path)
    manifests = sorted(settings.artifact_dir.glob(f"*{MANIFEST_SUFFIX}"))

    bad = 0
    for path in manifests:
        if verify_manifest(path):
            console.print(f"  [green]OK[/green]   {path.name}")
        else:
            console.print(f"  [red]FAIL[/red] {path.name}")
            bad += 1

    console.print(f"[bold]{len(manifests) - bad}/{len(manifests)} verified[/bold]")
    if bad:
        raise typer.Exit(code=1)


@app.command()
def clean(
    config_path: ConfigOption = Path(DEFAULT_CONFIG_FILE),
) -> None:
    """Remove work directory contents (keeps sources and artifacts)."""
    from autobuilder.engine import BuildEngine

    settings = _load_settings(config_path)
    settings.ensure_dirs()
    removed = BuildEngine(settings).clean_work()
    console.print(f"Removed {removed} entries from {settings.work_dir}")


@app.command()
def config(
    config_path: ConfigOption = Path(DEFAULT_CONFIG_FILE),
    json_output: JsonOption = False,
) -> None:
    """Show effective configuration."""
    if config_path.exists():
        settings = _load_settings(config_path)
    else:
        settings = get_settings()

    if json_output:
        console.print(
            print_settings_json(settings), soft_wrap=True, markup=False, highlight=False
        )
        return

    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Root:                {settings.root}")
    console.print(f"  Packages:            {settings.pkg_dir}")
    console.print(f"  Sources cache:       {settings.src_dir}")
    console.print(f"  Work directory:      {settings.work_dir}")
    console.print(f"  Artifacts directory: {settings.artifact_dir}")
    console.print(f"  Log directory:       {settings.log_dir}")
    console.print(f"  Database URL:        {settings.db_url}")
    console.print()
    console.print("[bold]Scheduling:[/bold]")
    console.print(f"  Parallelism:         {settings.parallelism}")
    console.print(f"  Schedule mode:       {settings.schedule_mode.value}")
    console.print(f"  Retry limit:         {settings.retry_limit}")
    console.print(f"  Retry backoff:       {settings.retry_backoff}s")
    console.print()
    console.print("[bold]Toolchain:[/bold]")
    console.print(f"  CFLAGS:              {settings.cflags}")
    console.print(f"  MAKEFLAGS:           {settings.makeflags}")
    console.print(f"  Compression:         {settings.artifact_compression.value}")
    console.print(f"  Bootstrap mode:      {settings.bootstrap_mode}")
    console.print()
    console.print("[bold]Timeouts (seconds):[/bold]")
    console.print(f"  Download timeout:    {settings.download_timeout}")
    console.print(f"  Build timeout:       {settings.build_timeout or 'none'}")


if __name__ == "__main__":
    app()
