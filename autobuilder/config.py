"""Configuration settings for autobuilder.

Uses pydantic-settings for config parsing from environment variables and
defaults, layered under an optional ``master.conf`` run configuration file
(``KEY = VALUE`` lines with ``${VAR}`` substitution).

Configuration precedence: CLI flags > config file > env vars > defaults.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Literal

from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from autobuilder.errors import ConfigError
from autobuilder.types import Compression, ScheduleMode

DEFAULT_CONFIG_FILE = "master.conf"

_ASSIGNMENT_RE = re.compile(r"^([A-Za-z0-9_]+)\s*=\s*(.*)$")
_VAR_RE = re.compile(r"\$\{([A-Za-z0-9_]+)\}")

# Directory keys resolved against the config file location when relative
PATH_FIELDS = (
    "root",
    "src_dir",
    "work_dir",
    "artifact_dir",
    "log_dir",
    "db_dir",
    "pkg_dir",
)


class Settings(BaseSettings):
    """Run configuration.

    Settings are loaded from environment variables with the AUTOBUILD_
    prefix. Values from a run configuration file override the environment;
    CLI flags can override both at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="AUTOBUILD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    root: Path = Field(
        default=Path("./auto-builder"),
        description="Root directory for all build state",
    )
    src_dir: Path = Field(
        default=Path("sources"), description="Shared source download cache"
    )
    work_dir: Path = Field(
        default=Path("work"), description="Per-job working directories"
    )
    artifact_dir: Path = Field(
        default=Path("artifacts"), description="Packaged artifacts and manifests"
    )
    log_dir: Path = Field(
        default=Path("logs"), description="Per-job structured and text logs"
    )
    db_dir: Path = Field(
        default=Path("db"), description="Build history database directory"
    )
    pkg_dir: Path = Field(
        default=Path("packages"),
        description="Recipe directory, one subdirectory per package",
    )

    # Target
    arch: str = Field(default="x86-64", description="Target architecture")
    mode: str = Field(default="native", description="Build mode (native, cross)")
    allow_cross: bool = Field(default=False, description="Allow cross builds")
    bootstrap_mode: str = Field(default="auto", description="Bootstrap mode")

    # Scheduling
    parallelism: int = Field(default=2, ge=1, description="Number of workers")
    schedule_mode: ScheduleMode = Field(
        default=ScheduleMode.STATIC,
        description="static (round-robin buckets) or ready-queue",
    )
    retry_limit: int = Field(default=2, ge=0, description="Attempts per package")
    retry_backoff: int = Field(
        default=5, ge=0, description="Backoff base in seconds (attempt * base)"
    )

    # Toolchain
    cflags: str = Field(default="-O2 -pipe", description="CFLAGS for builds")
    makeflags: str | None = Field(
        default=None, description="MAKEFLAGS for builds (default -j<PARALLELISM>)"
    )
    tar_bin: str = Field(default="tar", description="tar executable")
    zstd_bin: str = Field(default="zstd", description="zstd executable")
    artifact_compression: Compression = Field(
        default=Compression.ZSTD, description="Artifact compression (zstd, xz, gz)"
    )

    # Fetching
    mirrors: str = Field(
        default="", description="Space/comma separated mirror base URLs"
    )
    download_timeout: int = Field(
        default=3600, ge=1, description="Timeout for source downloads (seconds)"
    )
    build_timeout: int | None = Field(
        default=None, ge=1, description="Timeout per build sub-step (None = none)"
    )

    # Housekeeping
    clean_on_start: bool = Field(
        default=False, description="Empty WORK_DIR before a run"
    )
    keep_logs: bool = Field(default=True, description="Keep job logs and work dirs")
    keep_work: bool = Field(default=True, description="Keep per-job work dirs")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: Any) -> Any:
        """Accept lowercase level names."""
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator("build_timeout", "makeflags", mode="before")
    @classmethod
    def empty_is_unset(cls, v: Any) -> Any:
        """Treat empty strings as unset."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def derive_directories(self) -> Settings:
        """Place directories not set explicitly below ROOT and derive MAKEFLAGS."""
        for name in PATH_FIELDS:
            if name != "root" and name not in self.model_fields_set:
                setattr(self, name, self.root / getattr(self, name))
        if self.makeflags is None:
            self.makeflags = f"-j{self.parallelism}"
        return self

    @property
    def mirror_list(self) -> list[str]:
        """Mirror base URLs in configured order."""
        return [m for m in re.split(r"[\s,]+", self.mirrors) if m]

    @property
    def remove_work_dirs(self) -> bool:
        """Whether per-job work directories are removed once terminal."""
        return not self.keep_work or not self.keep_logs

    @property
    def db_url(self) -> str:
        """SQLite URL of the build history database."""
        return f"sqlite:///{self.db_dir / 'autobuilder.sqlite'}"

    def ensure_dirs(self) -> None:
        """Create every state directory."""
        for name in PATH_FIELDS:
            getattr(self, name).mkdir(parents=True, exist_ok=True)


def parse_config_text(
    text: str,
    environ: dict[str, str] | None = None,
) -> dict[str, str]:
    """Parse ``KEY = VALUE`` lines with ``${VAR}`` substitution.

    ``#`` starts a comment running to end of line; blank lines are skipped.
    ``${VAR}`` is replaced by an earlier key from the same text, else by
    the environment, else by the empty string.

    Args:
        text: Config file content.
        environ: Environment used for substitution (defaults to os.environ).

    Returns:
        Ordered mapping of keys to substituted values.
    """
    if environ is None:
        environ = dict(os.environ)

    values: dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.split("#", 1)[0].strip()
        if not line:
            continue
        match = _ASSIGNMENT_RE.match(line)
        if not match:
            continue
        key, value = match.group(1), match.group(2).strip()

        def _substitute(m: re.Match[str]) -> str:
            name = m.group(1)
            if name in values:
                return values[name]
            return environ.get(name, "")

        values[key] = _VAR_RE.sub(_substitute, value)
    return values


def load_config_file(path: Path) -> dict[str, str]:
    """Load a run configuration file.

    Args:
        path: Path to the ``master.conf`` file.

    Returns:
        Ordered mapping of keys to substituted values.

    Raises:
        ConfigError: If the file does not exist or cannot be read.
    """
    if not path.is_file():
        raise ConfigError(f"Config file '{path}' not found. Run 'autobuilder init'.")
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    return parse_config_text(text)


def load_settings(
    config_file: Path | None = None,
    **overrides: Any,
) -> Settings:
    """Build Settings from an optional config file plus overrides.

    Empty values in the file are treated as unset so defaults apply.
    Relative directories are resolved against the config file directory.

    Args:
        config_file: Optional path to a run configuration file.
        **overrides: Field values taking precedence over everything else.

    Returns:
        Validated Settings instance.

    Raises:
        ConfigError: If the file is missing or any value is invalid.
    """
    values: dict[str, Any] = {}
    if config_file is not None:
        raw = load_config_file(config_file)
        base = config_file.resolve().parent
        for key, value in raw.items():
            if value == "":
                continue
            name = key.lower()
            if name in PATH_FIELDS and not Path(value).is_absolute():
                values[name] = base / value
            else:
                values[name] = value

    values.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return Settings(**values)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


def get_settings() -> Settings:
    """Get settings from environment and defaults only.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = [
    "DEFAULT_CONFIG_FILE",
    "Settings",
    "get_settings",
    "load_config_file",
    "load_settings",
    "parse_config_text",
    "print_settings_json",
]
