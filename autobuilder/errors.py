"""Error taxonomy for autobuilder.

Every error carries a stable ``code`` for structured logging and for the
build history ledger. Job-level errors derive from ``BuildJobError`` and
are caught at the worker boundary, where the retry policy applies; only
``ConfigError`` and ``NoPackagesError`` abort a whole run.
"""

from __future__ import annotations

# Error code constants
CONFIG_ERROR = "config_error"
NO_PACKAGES = "no_packages"
RECIPE_ERROR = "recipe_error"
FETCH_ERROR = "fetch_error"
EXTRACT_ERROR = "extract_error"
BUILD_ERROR = "build_failed"
UNKNOWN_BUILD_SYSTEM = "unknown_build_system"
PACKAGING_ERROR = "packaging_error"


class AutoBuilderError(Exception):
    """Base error for all autobuilder failures."""

    def __init__(self, message: str, code: str = "autobuilder_error") -> None:
        """Initialize AutoBuilderError.

        Args:
            message: Error description.
            code: Error code for structured error handling.
        """
        super().__init__(message)
        self.code = code


class ConfigError(AutoBuilderError):
    """Raised when run configuration is missing or invalid. Fatal."""

    def __init__(self, message: str, code: str = CONFIG_ERROR) -> None:
        super().__init__(message, code)


class NoPackagesError(AutoBuilderError):
    """Raised when the recipe directory yields no packages. Fatal."""

    def __init__(self, message: str, code: str = NO_PACKAGES) -> None:
        super().__init__(message, code)


class RecipeError(AutoBuilderError):
    """Raised when a recipe descriptor cannot be parsed or validated."""

    def __init__(self, message: str, code: str = RECIPE_ERROR) -> None:
        super().__init__(message, code)


class ResolutionWarning(UserWarning):
    """Emitted when dependency resolution degrades (cycle or stuck names)."""


class BuildJobError(AutoBuilderError):
    """Base for errors that fail a single build job. Retryable."""


class FetchError(BuildJobError):
    """Raised when source download or checksum verification fails."""

    def __init__(self, message: str, code: str = FETCH_ERROR) -> None:
        super().__init__(message, code)


class ExtractError(BuildJobError):
    """Raised when a source archive is unsupported or corrupt."""

    def __init__(self, message: str, code: str = EXTRACT_ERROR) -> None:
        super().__init__(message, code)


class BuildError(BuildJobError):
    """Raised when a build sub-step exits non-zero.

    Attributes:
        exit_code: Exit code of the failing sub-step.
        step: Name of the failing sub-step (configure, compile, ...).
    """

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        step: str | None = None,
        code: str = BUILD_ERROR,
    ) -> None:
        super().__init__(message, code)
        self.exit_code = exit_code
        self.step = step


class UnknownBuildSystemError(BuildJobError):
    """Raised when no hint is given and no build system marker is found."""

    def __init__(self, message: str, code: str = UNKNOWN_BUILD_SYSTEM) -> None:
        super().__init__(message, code)


class PackagingError(BuildJobError):
    """Raised when archiving or compressing the destination root fails."""

    def __init__(self, message: str, code: str = PACKAGING_ERROR) -> None:
        super().__init__(message, code)


__all__ = [
    "AutoBuilderError",
    "BuildError",
    "BuildJobError",
    "ConfigError",
    "ExtractError",
    "FetchError",
    "NoPackagesError",
    "PackagingError",
    "RecipeError",
    "ResolutionWarning",
    "UnknownBuildSystemError",
]
