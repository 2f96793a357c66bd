"""auto-builder - Build orchestration for declarative package recipes.

This package loads package recipes, resolves their build-time dependency
order, and drives every package through a fetch/extract/build/package
pipeline across a fixed pool of concurrent workers.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
