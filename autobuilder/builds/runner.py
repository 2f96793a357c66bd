"""Build runner for build-system adapters.

This module handles:
- Composing configure/compile/install commands per build system
- Executing sub-steps with subprocess
- Capturing stdout/stderr to the job's text log
- Installing into an isolated destination root, never the live filesystem
"""

from __future__ import annotations

import logging
import os
import re
import shlex
import subprocess
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from autobuilder.errors import BuildError
from autobuilder.types import BuildSystem

logger = logging.getLogger(__name__)

INSTALL_PREFIX = "/usr"

_JOBS_RE = re.compile(r"(?:^|\s)(?:-j\s*|--jobs[= ])(\d+)")


@dataclass
class BuildStep:
    """One build sub-step.

    Attributes:
        name: Step name (bootstrap, configure, compile, install).
        argv: Command and arguments.
        cwd: Working directory.
        env: Extra environment variables for this step.
    """

    name: str
    argv: list[str]
    cwd: Path
    env: dict[str, str] = field(default_factory=dict)


@dataclass
class BuildResult:
    """Result of a successful build and install.

    Attributes:
        build_system: Build system used.
        dest_dir: Destination root holding the installed tree.
        log_path: Path to the build log file.
        steps: Names of the steps that ran.
        started_at: Build start time.
        finished_at: Build finish time.
    """

    build_system: BuildSystem
    dest_dir: Path
    log_path: Path
    steps: list[str]
    started_at: datetime
    finished_at: datetime


def jobs_from_makeflags(makeflags: str) -> int | None:
    """Extract the ``-jN`` parallelism from MAKEFLAGS, if any."""
    match = _JOBS_RE.search(makeflags)
    return int(match.group(1)) if match else None


def needs_bootstrap(source_root: Path, bootstrap_mode: str = "auto") -> bool:
    """Whether the autotools bootstrap script should run.

    ``auto`` runs ``autogen.sh`` only when there is no ``configure`` yet,
    ``always`` runs it whenever present, ``never`` skips it.
    """
    if bootstrap_mode == "never" or not (source_root / "autogen.sh").is_file():
        return False
    if bootstrap_mode == "always":
        return True
    return not (source_root / "configure").is_file()


def compose_steps(
    build_system: BuildSystem,
    source_root: Path,
    dest_dir: Path,
    makeflags: str = "",
    bootstrap_mode: str = "auto",
) -> list[BuildStep]:
    """Compose the sub-steps for a build system.

    Args:
        build_system: Build system to drive.
        source_root: Source tree root.
        dest_dir: Isolated destination root (DESTDIR).
        makeflags: Flags passed to make (e.g. ``-j4``).
        bootstrap_mode: auto, always or never (autotools only).

    Returns:
        Steps in execution order.

    Raises:
        BuildError: If the build system has no adapter.
    """
    make_args = shlex.split(makeflags)
    destdir_arg = f"DESTDIR={dest_dir}"
    steps: list[BuildStep] = []

    if build_system is BuildSystem.AUTOTOOLS:
        if needs_bootstrap(source_root, bootstrap_mode):
            steps.append(BuildStep("bootstrap", ["sh", "./autogen.sh"], source_root))
        steps.append(
            BuildStep(
                "configure",
                ["sh", "./configure", f"--prefix={INSTALL_PREFIX}"],
                source_root,
            )
        )
        steps.append(BuildStep("compile", ["make", *make_args], source_root))
        steps.append(BuildStep("install", ["make", destdir_arg, "install"], source_root))

    elif build_system is BuildSystem.CMAKE:
        build_dir = source_root / "build"
        steps.append(
            BuildStep(
                "configure",
                [
                    "cmake",
                    "-S",
                    str(source_root),
                    "-B",
                    str(build_dir),
                    f"-DCMAKE_INSTALL_PREFIX={INSTALL_PREFIX}",
                ],
                source_root,
            )
        )
        steps.append(BuildStep("compile", ["make", *make_args], build_dir))
        steps.append(BuildStep("install", ["make", destdir_arg, "install"], build_dir))

    elif build_system is BuildSystem.MESON:
        ninja_jobs = jobs_from_makeflags(makeflags)
        jobs_args = ["-j", str(ninja_jobs)] if ninja_jobs else []
        steps.append(
            BuildStep(
                "configure",
                ["meson", "setup", "builddir", f"--prefix={INSTALL_PREFIX}"],
                source_root,
            )
        )
        steps.append(
            BuildStep("compile", ["ninja", "-C", "builddir", *jobs_args], source_root)
        )
        steps.append(
            BuildStep(
                "install",
                ["ninja", "-C", "builddir", "install"],
                source_root,
                env={"DESTDIR": str(dest_dir)},
            )
        )

    elif build_system is BuildSystem.MAKEFILE:
        steps.append(BuildStep("compile", ["make", *make_args], source_root))
        steps.append(BuildStep("install", ["make", destdir_arg, "install"], source_root))

    else:
        raise BuildError(
            f"No build adapter for {build_system.value}",
            code="no_adapter",
        )

    return steps


def run_step(
    step: BuildStep,
    log_path: Path,
    env: dict[str, str],
    timeout: int | None = None,
) -> int:
    """Execute one sub-step with output appended to the log.

    Args:
        step: Step to run.
        log_path: Text log receiving stdout/stderr.
        env: Full process environment.
        timeout: Timeout in seconds (None = no timeout).

    Returns:
        The process exit code.

    Raises:
        BuildError: If the step times out or cannot be started.
    """
    cmd_str = shlex.join(step.argv)
    logger.info("Executing %s: %s", step.name, cmd_str)

    step_env = dict(env)
    step_env.update(step.env)

    with log_path.open("a", encoding="utf-8") as log_file:
        log_file.write(f"# [{step.name}] {cmd_str}\n")
        log_file.write(f"# CWD: {step.cwd}\n")
        log_file.flush()
        try:
            result = subprocess.run(
                step.argv,
                cwd=step.cwd,
                stdout=log_file,
                stderr=subprocess.STDOUT,
                timeout=timeout,
                env=step_env,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            log_file.write(f"\n# TIMEOUT after {timeout} seconds\n")
            raise BuildError(
                f"{step.name} timed out after {timeout} seconds",
                exit_code=-1,
                step=step.name,
                code="build_timeout",
            ) from e
        except OSError as e:
            log_file.write(f"\n# Failed to execute: {e}\n")
            raise BuildError(
                f"Failed to execute {step.name}: {e}",
                exit_code=127,
                step=step.name,
                code="execution_error",
            ) from e

        log_file.write(f"# [{step.name}] exit code: {result.returncode}\n")
    return result.returncode


def run_build(
    build_system: BuildSystem,
    source_root: Path,
    dest_dir: Path,
    log_path: Path,
    cflags: str = "",
    makeflags: str = "",
    bootstrap_mode: str = "auto",
    timeout: int | None = None,
    env_override: dict[str, str] | None = None,
) -> BuildResult:
    """Configure, compile and install a source tree into a destination root.

    Args:
        build_system: Build system to drive.
        source_root: Source tree root.
        dest_dir: Isolated destination root.
        log_path: Text log receiving tool output.
        cflags: CFLAGS exported to the tools.
        makeflags: MAKEFLAGS exported and passed to make.
        bootstrap_mode: auto, always or never.
        timeout: Per-step timeout in seconds (None = no timeout).
        env_override: Optional environment variable overrides.

    Returns:
        BuildResult on success.

    Raises:
        BuildError: On the first sub-step exiting non-zero, preserving
            its exit code.
    """
    dest_dir.mkdir(parents=True, exist_ok=True)
    steps = compose_steps(build_system, source_root, dest_dir, makeflags, bootstrap_mode)

    env = dict(os.environ)
    env.update({"CFLAGS": cflags, "MAKEFLAGS": makeflags, "DESTDIR": str(dest_dir)})
    if env_override:
        env.update(env_override)

    started_at = datetime.now(timezone.utc)
    ran: list[str] = []
    for step in steps:
        exit_code = run_step(step, log_path, env, timeout=timeout)
        ran.append(step.name)
        if exit_code != 0:
            message = f"{step.name} failed with exit code {exit_code}"
            logger.error("%s. See log: %s", message, log_path)
            raise BuildError(message, exit_code=exit_code, step=step.name)

    return BuildResult(
        build_system=build_system,
        dest_dir=dest_dir,
        log_path=log_path,
        steps=ran,
        started_at=started_at,
        finished_at=datetime.now(timezone.utc),
    )


__all__ = [
    "BuildResult",
    "BuildStep",
    "INSTALL_PREFIX",
    "compose_steps",
    "jobs_from_makeflags",
    "needs_bootstrap",
    "run_build",
    "run_step",
]
