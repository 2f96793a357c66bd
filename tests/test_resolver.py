"""Tests for build-time dependency resolution."""

import itertools
import warnings

import pytest

from autobuilder.errors import ResolutionWarning
from autobuilder.recipes import Recipe, RecipeStore
from autobuilder.resolver import in_store_deps, resolve, resolve_with_report


def store(**deps: str) -> RecipeStore:
    """Build a store from name=build_deps pairs."""
    return RecipeStore(Recipe(name=name, build_deps=d) for name, d in deps.items())


def assert_deps_first(order: list[str], recipes: RecipeStore) -> None:
    position = {name: i for i, name in enumerate(order)}
    for name, recipe in recipes.items():
        for dep in in_store_deps(recipe, recipes):
            assert position[dep] < position[name], f"{dep} must precede {name}"


class TestResolve:
    """Tests for resolve."""

    def test_dependency_first(self):
        """A depends on B: B is built first."""
        assert resolve(store(A="B", B="")) == ["B", "A"]

    def test_independent_sorted(self):
        """Independent recipes come out in sorted name order."""
        assert resolve(store(c="", a="", b="")) == ["a", "b", "c"]

    def test_external_deps_are_satisfied(self):
        """Dependencies outside the store do not block resolution."""
        recipes = store(bc="readline glibc")
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            assert resolve(recipes) == ["bc"]

    def test_self_dependency_ignored(self):
        """A recipe depending on itself is still resolvable."""
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            assert resolve(store(a="a")) == ["a"]

    def test_chain(self):
        """Transitive chains are ordered deepest first."""
        assert resolve(store(app="lib", lib="base", base="")) == ["base", "lib", "app"]

    def test_empty(self):
        """An empty store resolves to an empty order."""
        assert resolve(RecipeStore()) == []

    @pytest.mark.parametrize(
        "names",
        list(itertools.permutations(["d", "c", "b", "a"])),
    )
    def test_acyclic_property(self, names):
        """Every in-store dependency precedes its dependent, for any naming."""
        # names[i] depends on every name after it
        deps = {n: " ".join(names[i + 1 :]) for i, n in enumerate(names)}
        recipes = store(**deps)
        order = resolve(recipes)
        assert sorted(order) == sorted(names)
        assert_deps_first(order, recipes)


class TestCycles:
    """Tests for degraded resolution."""

    def test_cycle_warns_and_lists_each_once(self):
        """A cycle emits a ResolutionWarning and appends remaining names once."""
        recipes = store(a="b", b="a", c="")
        with pytest.warns(ResolutionWarning):
            result = resolve_with_report(recipes)
        assert result.order == ["c", "a", "b"]
        assert result.unresolved == ["a", "b"]
        assert result.degraded
        assert len(result.order) == len(set(result.order)) == 3

    def test_dependent_of_cycle_is_unresolved(self):
        """Recipes depending on a cycle are appended too, never dropped."""
        recipes = store(a="b", b="a", x="a", y="")
        with pytest.warns(ResolutionWarning):
            order = resolve(recipes)
        assert order[0] == "y"
        assert sorted(order) == ["a", "b", "x", "y"]

    def test_no_warning_when_resolved(self):
        """A clean resolution is not degraded."""
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            result = resolve_with_report(store(a="", b="a"))
        assert not result.degraded
        assert result.order == ["a", "b"]
