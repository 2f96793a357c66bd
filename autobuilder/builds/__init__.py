"""Build job module.

This module handles:
- Fetching and verifying source archives
- Extraction, patching and build system detection
- Running build adapters into an isolated destination root
- Artifact packaging and manifest generation
- The build history ledger
"""

from autobuilder.builds.models import ArtifactRecord, JobRecord

__all__ = ["ArtifactRecord", "JobRecord"]

# Submodules are imported directly, e.g. autobuilder.builds.pipeline
