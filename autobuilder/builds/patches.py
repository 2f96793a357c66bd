"""Per-package patch application.

Patches live in ``<PKG_DIR>/<pkg>/patches`` and are applied with
``patch -p1`` in lexical order. A failing patch is logged and skipped;
it never fails the job.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class PatchResult:
    """Outcome of applying one patch file."""

    patch: Path
    applied: bool
    exit_code: int | None = None


def list_patches(patch_dir: Path) -> list[Path]:
    """Patch files in a directory, in lexical order."""
    if not patch_dir.is_dir():
        return []
    return sorted(p for p in patch_dir.iterdir() if p.is_file())


def apply_patches(
    patch_dir: Path,
    source_root: Path,
    log_path: Path,
    patch_bin: str = "patch",
) -> list[PatchResult]:
    """Apply every patch in a directory against the source root.

    Args:
        patch_dir: Directory holding patch files (may not exist).
        source_root: Source tree to patch.
        log_path: Text log receiving the patch tool output.
        patch_bin: patch executable.

    Returns:
        One PatchResult per patch file, in application order.
    """
    results: list[PatchResult] = []
    for patch in list_patches(patch_dir):
        try:
            with log_path.open("a", encoding="utf-8") as log_file:
                log_file.write(f"# patch -p1 < {patch}\n")
                log_file.flush()
                proc = subprocess.run(
                    [patch_bin, "-p1", "-i", str(patch)],
                    cwd=source_root,
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                    check=False,
                )
            exit_code: int | None = proc.returncode
        except OSError as e:
            logger.warning("Cannot run %s for %s: %s", patch_bin, patch.name, e)
            exit_code = None

        applied = exit_code == 0
        if not applied:
            logger.warning("Patch %s failed (rc=%s), continuing", patch.name, exit_code)
        results.append(PatchResult(patch=patch, applied=applied, exit_code=exit_code))
    return results


__all__ = ["PatchResult", "apply_patches", "list_patches"]
