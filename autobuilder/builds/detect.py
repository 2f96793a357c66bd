"""Build system detection."""

from __future__ import annotations

import logging
from pathlib import Path

from autobuilder.errors import UnknownBuildSystemError
from autobuilder.types import BuildSystem

logger = logging.getLogger(__name__)

# Marker files in priority order
MARKERS: list[tuple[BuildSystem, tuple[str, ...]]] = [
    (BuildSystem.AUTOTOOLS, ("configure",)),
    (BuildSystem.CMAKE, ("CMakeLists.txt",)),
    (BuildSystem.MESON, ("meson.build",)),
    (BuildSystem.MAKEFILE, ("Makefile", "GNUmakefile")),
]


def detect_build_system(source_root: Path) -> BuildSystem:
    """Probe a source tree for build system marker files.

    Args:
        source_root: Source tree root.

    Returns:
        The first matching build system, or UNKNOWN.
    """
    for system, markers in MARKERS:
        if any((source_root / m).is_file() for m in markers):
            return system
    return BuildSystem.UNKNOWN


def choose_build_system(hint: BuildSystem | None, source_root: Path) -> BuildSystem:
    """Pick the build system for a job: an explicit hint wins.

    Args:
        hint: Recipe build hint, or None.
        source_root: Source tree root probed when there is no hint.

    Returns:
        The chosen build system.

    Raises:
        UnknownBuildSystemError: If the result is UNKNOWN.
    """
    system = hint if hint is not None else detect_build_system(source_root)
    if system is BuildSystem.UNKNOWN:
        raise UnknownBuildSystemError(f"No build system detected in {source_root}")
    logger.debug("Build system for %s: %s", source_root, system.value)
    return system


__all__ = ["MARKERS", "choose_build_system", "detect_build_system"]
