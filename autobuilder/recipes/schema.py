"""Pydantic model for package recipes.

A Recipe is an immutable, flat attribute record describing one buildable
package. Dependency lists accept space- or comma-separated strings.
"""

import re
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from autobuilder.types import BuildSystem

NAME_PATTERN = re.compile(r"^[A-Za-z0-9_.+\-]+$")
SHA256_PATTERN = re.compile(r"^[0-9a-f]{64}$")


def split_names(value: str) -> tuple[str, ...]:
    """Split a space/comma separated name list, dropping empties and duplicates."""
    seen: dict[str, None] = {}
    for token in re.split(r"[\s,]+", value):
        if token:
            seen.setdefault(token, None)
    return tuple(seen)


class Recipe(BaseModel):
    """Immutable description of one buildable package.

    Attributes:
        name: Package key (recipe directory name), the store identity.
        display_name: NAME from the descriptor, if it differs from the key.
        version: Upstream version string.
        url: Source archive URL.
        sha256: Expected source SHA-256 (empty if not declared).
        build_deps: Names needed at build time.
        run_deps: Names needed at runtime (recorded, never resolved).
        build_hint: Explicit build system, or None to auto-detect.
        stage: Bootstrap stage number.
        priority: Free-form priority label.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: Annotated[str, Field(min_length=1)]
    display_name: str = ""
    version: str = ""
    url: str = ""
    sha256: str = ""
    build_deps: tuple[str, ...] = ()
    run_deps: tuple[str, ...] = ()
    build_hint: BuildSystem | None = None
    stage: int = 0
    priority: str = "normal"

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate the package name is filesystem safe."""
        if not NAME_PATTERN.match(v):
            raise ValueError(
                f"name must contain only letters, digits, '_', '.', '+', '-': '{v}'"
            )
        return v

    @field_validator("build_deps", "run_deps", mode="before")
    @classmethod
    def parse_dependency_list(cls, v: Any) -> Any:
        """Accept space/comma separated strings as well as sequences."""
        if v is None:
            return ()
        if isinstance(v, str):
            return split_names(v)
        return v

    @field_validator("build_hint", mode="before")
    @classmethod
    def parse_build_hint(cls, v: Any) -> Any:
        """Treat an empty hint as unset."""
        if isinstance(v, str):
            v = v.strip().lower()
            return v or None
        return v

    @field_validator("sha256", mode="before")
    @classmethod
    def normalize_sha256(cls, v: Any) -> Any:
        """Lowercase the checksum; an empty value means no verification."""
        if v is None:
            return ""
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("stage", mode="before")
    @classmethod
    def parse_stage(cls, v: Any) -> Any:
        """Treat an empty stage as 0."""
        if isinstance(v, str) and not v.strip():
            return 0
        return v

    @property
    def title(self) -> str:
        """Human-facing package name."""
        return self.display_name or self.name

    @property
    def has_checksum(self) -> bool:
        """Whether the recipe declares a well-formed source checksum."""
        return bool(SHA256_PATTERN.match(self.sha256))

    @property
    def source_filename(self) -> str:
        """File name the source is cached under in the download cache."""
        return self.url.rstrip("/").rsplit("/", 1)[-1].split("?", 1)[0]


__all__ = ["NAME_PATTERN", "Recipe", "split_names"]
