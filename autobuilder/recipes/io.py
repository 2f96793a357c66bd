"""Recipe descriptor parsing.

A descriptor is a ``desc.txt`` file holding ``KEY = VALUE`` lines.
``#`` starts a comment running to end of line, blank lines are ignored and
unknown keys are skipped.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from autobuilder.errors import RecipeError
from autobuilder.recipes.schema import Recipe

logger = logging.getLogger(__name__)

DESCRIPTOR_NAME = "desc.txt"

_LINE_RE = re.compile(r"^([A-Za-z0-9_]+)\s*=\s*(.*)$")

# Descriptor key -> Recipe field
KEY_MAP = {
    "NAME": "display_name",
    "VERSION": "version",
    "URL": "url",
    "SHA256": "sha256",
    "SHA": "sha256",
    "BUILD_DEPS": "build_deps",
    "RUN_DEPS": "run_deps",
    "BUILD_HINT": "build_hint",
    "STAGE": "stage",
    "PRIORITY": "priority",
}


def parse_descriptor_text(text: str) -> dict[str, str]:
    """Parse descriptor content into Recipe field values.

    Args:
        text: Descriptor file content.

    Returns:
        Dictionary keyed by Recipe field name. Later keys win.
    """
    data: dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.split("#", 1)[0].strip()
        if not line:
            continue
        match = _LINE_RE.match(line)
        if not match:
            logger.debug("Ignoring malformed descriptor line: %r", raw)
            continue
        key, value = match.group(1).upper(), match.group(2).strip()
        field_name = KEY_MAP.get(key)
        if field_name is None:
            continue
        data[field_name] = value
    return data


def parse_recipe_data(data: dict[str, Any], default_name: str) -> Recipe:
    """Validate parsed descriptor values into a Recipe.

    Args:
        data: Values keyed by Recipe field name.
        default_name: Package key (recipe directory name).

    Returns:
        Validated Recipe.

    Raises:
        RecipeError: If the values do not form a valid recipe.
    """
    values = {k: v for k, v in data.items() if v != "" or k == "sha256"}
    values["name"] = default_name
    if values.get("display_name") == default_name:
        del values["display_name"]
    try:
        recipe = Recipe.model_validate(values)
    except ValidationError as e:
        raise RecipeError(f"Invalid recipe '{default_name}': {e}") from e

    if recipe.sha256 and not recipe.has_checksum:
        logger.warning(
            "Recipe %s declares a malformed SHA256 (%d chars); fetch will fail",
            recipe.name,
            len(recipe.sha256),
        )
    return recipe


def load_recipe_file(path: Path, default_name: str | None = None) -> Recipe:
    """Load and validate a recipe from a descriptor file.

    Args:
        path: Path to the descriptor.
        default_name: Package key (defaults to the
            parent directory name).

    Returns:
        Validated Recipe.

    Raises:
        RecipeError: If the file cannot be read or validated.
    """
    if default_name is None:
        default_name = path.parent.name
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise RecipeError(f"Cannot read recipe {path}: {e}") from e
    return parse_recipe_data(parse_descriptor_text(text), default_name)


def recipe_to_descriptor(recipe: Recipe) -> str:
    """Render a Recipe back into descriptor text.

    Args:
        recipe: Recipe to render.

    Returns:
        Descriptor content.
    """
    lines = [
        f"NAME = {recipe.title}",
        f"VERSION = {recipe.version}",
        f"URL = {recipe.url}",
        f"SHA256 = {recipe.sha256}",
        f"BUILD_DEPS = {' '.join(recipe.build_deps)}",
        f"RUN_DEPS = {' '.join(recipe.run_deps)}",
        f"BUILD_HINT = {recipe.build_hint.value if recipe.build_hint else ''}",
        f"STAGE = {recipe.stage}",
        f"PRIORITY = {recipe.priority}",
    ]
    return "\n".join(lines) + "\n"


__all__ = [
    "DESCRIPTOR_NAME",
    "load_recipe_file",
    "parse_descriptor_text",
    "parse_recipe_data",
    "recipe_to_descriptor",
]
