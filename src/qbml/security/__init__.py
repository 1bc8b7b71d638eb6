"""Security policy enforcement for QBML.

``patterns`` holds the data-driven dangerous-pattern catalog; the validator
lives in ``qbml.security.validator``.
"""

from __future__ import annotations

from .patterns import DEFAULT_PATTERNS, DangerousPattern, DangerousPatternCatalog, PatternMatch

__all__ = [
    "DEFAULT_PATTERNS",
    "DangerousPattern",
    "DangerousPatternCatalog",
    "PatternMatch",
]
