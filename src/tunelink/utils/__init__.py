"""Utility functions for tunelink.

Available via `from tunelink.utils import ...` for power users.
Not re-exported at the top-level `tunelink` package.
"""

from tunelink.utils.url import (
    MAX_URL_LENGTH,
    LinkParser,
    canonical_link,
    is_supported_url,
    parse_link,
    resolve_short_link,
)

__all__ = [
    "MAX_URL_LENGTH",
    "LinkParser",
    "canonical_link",
    "is_supported_url",
    "parse_link",
    "resolve_short_link",
]
