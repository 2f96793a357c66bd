"""Recipe loading module.

This module handles:
- Recipe schema validation (pydantic)
- Parsing ``desc.txt`` descriptors
- The immutable, name-keyed RecipeStore
"""

from autobuilder.recipes.schema import Recipe
from autobuilder.recipes.store import RecipeStore, load_recipes

__all__ = ["Recipe", "RecipeStore", "load_recipes"]
