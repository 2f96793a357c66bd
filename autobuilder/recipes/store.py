"""Recipe store.

Loads every ``<PKG_DIR>/<pkg>/desc.txt`` into an immutable, name-keyed
mapping. The store is read-only after load and safe to share between
worker threads without locking.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping
from pathlib import Path
from types import MappingProxyType

from autobuilder.errors import RecipeError
from autobuilder.recipes.io import DESCRIPTOR_NAME, load_recipe_file
from autobuilder.recipes.schema import Recipe

logger = logging.getLogger(__name__)


class RecipeStore(Mapping[str, Recipe]):
    """Immutable mapping from package name to Recipe."""

    def __init__(self, recipes: Iterable[Recipe] = ()) -> None:
        table: dict[str, Recipe] = {}
        for recipe in recipes:
            if recipe.name in table:
                raise RecipeError(f"Duplicate recipe name: {recipe.name}")
            table[recipe.name] = recipe
        self._recipes: Mapping[str, Recipe] = MappingProxyType(table)

    def __getitem__(self, name: str) -> Recipe:
        return self._recipes[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._recipes)

    def __len__(self) -> int:
        return len(self._recipes)

    def __repr__(self) -> str:
        return f"<RecipeStore({len(self)} recipes)>"


def load_recipes(pkg_dir: Path, strict: bool = False) -> RecipeStore:
    """Load all recipes below a package directory.

    Each immediate subdirectory holding a ``desc.txt`` is one package; its
    directory name is the store key. Subdirectories without a descriptor
    are skipped with a warning, as are invalid descriptors unless
    ``strict`` is set.

    Args:
        pkg_dir: Recipe root directory.
        strict: Raise on the first invalid recipe instead of skipping it.

    Returns:
        RecipeStore with every loaded recipe.

    Raises:
        RecipeError: If ``strict`` and a descriptor is invalid.
    """
    recipes: list[Recipe] = []
    if not pkg_dir.is_dir():
        logger.warning("Package directory does not exist: %s", pkg_dir)
        return RecipeStore()

    for entry in sorted(pkg_dir.iterdir()):
        if not entry.is_dir():
            continue
        descriptor = entry / DESCRIPTOR_NAME
        if not descriptor.is_file():
            logger.warning("%s missing, skipping", descriptor)
            continue
        try:
            recipes.append(load_recipe_file(descriptor, default_name=entry.name))
        except RecipeError as e:
            if strict:
                raise
            logger.error("Skipping recipe %s: %s", entry.name, e)

    logger.info("Loaded %d recipes from %s", len(recipes), pkg_dir)
    return RecipeStore(recipes)


__all__ = ["RecipeStore", "load_recipes"]
