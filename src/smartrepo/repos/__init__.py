"""
smartrepo Repositories Module.

Contains the store-agnostic repository base, the in-process backend, and
lazy accessors for the MongoDB and Firestore backends.
"""

from smartrepo.repos.base import SmartRepo, apply_projection
from smartrepo.repos.memory import MemoryRepo
from smartrepo.repos.specs import FilterSpec, Specification, combine_specs
from smartrepo.repos.stream import QueryStream

__all__ = [
    "SmartRepo",
    "MemoryRepo",
    "QueryStream",
    "Specification",
    "FilterSpec",
    "combine_specs",
    "apply_projection",
]


# Lazy imports for store backends to avoid requiring every driver
def get_mongo_repo():
    """Get the MongoDB repository class."""
    from smartrepo.repos.mongo import MongoRepo
    return MongoRepo


def get_firestore_repo():
    """Get the Firestore repository class."""
    from smartrepo.repos.firestore import FirestoreRepo
    return FirestoreRepo
