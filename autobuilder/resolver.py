"""Build-time dependency resolution.

Greedy fixed-point topological sort: repeatedly scan the pending names and
move every name whose in-store build dependencies are already resolved.
Dependencies naming packages outside the store count as satisfied. If a
scan makes no progress (cycle), the remaining names are appended once and a
ResolutionWarning is emitted instead of failing.
"""

from __future__ import annotations

import logging
import warnings
from collections.abc import Mapping
from dataclasses import dataclass, field

from autobuilder.errors import ResolutionWarning
from autobuilder.recipes.schema import Recipe

logger = logging.getLogger(__name__)


@dataclass
class Resolution:
    """Result of a dependency resolution.

    Attributes:
        order: Every package name exactly once, dependencies first where
            resolvable.
        unresolved: Names appended after resolution stalled, in order.
    """

    order: list[str] = field(default_factory=list)
    unresolved: list[str] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        """Whether a cycle or stuck dependency forced best-effort ordering."""
        return bool(self.unresolved)


def in_store_deps(recipe: Recipe, recipes: Mapping[str, Recipe]) -> list[str]:
    """Build dependencies of a recipe that are themselves in the store."""
    return [d for d in recipe.build_deps if d in recipes and d != recipe.name]


def resolve_with_report(recipes: Mapping[str, Recipe]) -> Resolution:
    """Compute a build order and report whether it degraded.

    Args:
        recipes: Name-keyed recipes.

    Returns:
        Resolution with the order and any unresolved names.
    """
    names = sorted(recipes)
    pending = set(names)
    resolved: set[str] = set()
    result = Resolution()

    progress = True
    while pending and progress:
        progress = False
        for name in names:
            if name not in pending:
                continue
            if all(dep in resolved for dep in in_store_deps(recipes[name], recipes)):
                result.order.append(name)
                resolved.add(name)
                pending.discard(name)
                progress = True

    if pending:
        result.unresolved = [name for name in names if name in pending]
        result.order.extend(result.unresolved)
        message = (
            "Unresolved dependencies or cycle detected; appending "
            f"{', '.join(result.unresolved)} in arbitrary order"
        )
        logger.warning(message)
        warnings.warn(message, ResolutionWarning, stacklevel=2)

    return result


def resolve(recipes: Mapping[str, Recipe]) -> list[str]:
    """Compute a linear build order respecting build-time dependencies.

    Args:
        recipes: Name-keyed recipes.

    Returns:
        Every package name exactly once.
    """
    return resolve_with_report(recipes).order


__all__ = ["Resolution", "in_store_deps", "resolve", "resolve_with_report"]
