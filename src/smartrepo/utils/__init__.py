"""
smartrepo Utilities.
"""

from smartrepo.utils.paths import MISSING, chunked, get_path, is_nullish, set_path, unset_path

__all__ = [
    "MISSING",
    "chunked",
    "get_path",
    "is_nullish",
    "set_path",
    "unset_path",
]
