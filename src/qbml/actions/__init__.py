"""Action vocabulary: registry, normalizer, and named-argument conversion."""

from __future__ import annotations

from .arguments import to_positional
from .registry import ActionRegistry

__all__ = ["ActionRegistry", "to_positional"]
