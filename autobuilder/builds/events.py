"""Per-job event logging.

Every pipeline transition appends one machine-readable JSON line to the
job's ``.jsonl`` log and one human-readable line to its ``.log`` file.
Both files are job-id qualified, so no locking is needed between workers.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

# Phase names used in structured events
PHASE_START = "start"
PHASE_FETCH = "fetch"
PHASE_EXTRACT = "extract"
PHASE_PATCH = "patch"
PHASE_DETECT = "detect"
PHASE_BUILD = "build"
PHASE_PACKAGE = "package"
PHASE_DONE = "done"


def utc_timestamp(now: datetime | None = None) -> str:
    """Format a UTC timestamp as ``YYYY-MM-DDTHH:MM:SSZ``."""
    if now is None:
        now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%SZ")


class JobLog:
    """Structured and text log targets for one build job."""

    def __init__(self, package: str, job_id: str, json_path: Path, text_path: Path):
        self.package = package
        self.job_id = job_id
        self.json_path = json_path
        self.text_path = text_path

    def event(
        self,
        phase: str,
        message: str,
        level: str | None = None,
        **fields: Any,
    ) -> dict[str, Any]:
        """Append one structured event and one text line.

        Args:
            phase: Pipeline phase name.
            message: Human-readable message (also stored as ``msg``).
            level: Optional level (INFO, ERROR).
            **fields: Extra event fields (artifact, sha256, rc, ...).

        Returns:
            The structured event written.
        """
        record: dict[str, Any] = {
            "ts": utc_timestamp(),
            "pkg": self.package,
            "job": self.job_id,
            "phase": phase,
        }
        if level:
            record["level"] = level
        record["msg"] = message
        record.update({k: v for k, v in fields.items() if v is not None})

        with self.json_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(record, default=str) + "\n")
        self.write(message)

        log_level = logging.ERROR if level == "ERROR" else logging.DEBUG
        logger.log(log_level, "[%s %s] %s: %s", self.package, self.job_id, phase, message)
        return record

    def write(self, line: str) -> None:
        """Append a raw line to the text log."""
        with self.text_path.open("a", encoding="utf-8") as f:
            f.write(line.rstrip("\n") + "\n")


def read_events(json_path: Path) -> list[dict[str, Any]]:
    """Read all structured events from a job log.

    Args:
        json_path: Path to a ``.jsonl`` log.

    Returns:
        Events in write order.
    """
    events: list[dict[str, Any]] = []
    with json_path.open(encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line:
                events.append(json.loads(line))
    return events


__all__ = [
    "JobLog",
    "PHASE_BUILD",
    "PHASE_DETECT",
    "PHASE_DONE",
    "PHASE_EXTRACT",
    "PHASE_FETCH",
    "PHASE_PACKAGE",
    "PHASE_PATCH",
    "PHASE_START",
    "read_events",
    "utc_timestamp",
]
