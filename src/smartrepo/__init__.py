"""
smartrepo - scoped document repositories with keyset pagination.

smartrepo gives MongoDB and Cloud Firestore collections one CRUD and query
surface, layering soft delete, version counters, audit timestamps,
provenance tracing and tenant-style scoping on top of each store's native
operations, with stable cursor pagination over any multi-field sort.
"""

__version__ = "0.1.0"

from smartrepo.core.config import RepoConfig, TimestampKeys, TraceStrategy
from smartrepo.core.dsl import Page, SortDirection, UpdateOperation
from smartrepo.core.errors import (
    ConfigurationError,
    CreateManyPartialFailure,
    ErrorKind,
    InvalidCursorError,
    ScopeBreachError,
    SmartRepoError,
    StoreUnavailableError,
    ValidationError,
)
from smartrepo.repos import (
    FilterSpec,
    MemoryRepo,
    QueryStream,
    SmartRepo,
    Specification,
    combine_specs,
)

__all__ = [
    # Version
    "__version__",
    # Config
    "RepoConfig",
    "TimestampKeys",
    "TraceStrategy",
    # DSL
    "Page",
    "SortDirection",
    "UpdateOperation",
    # Repositories
    "SmartRepo",
    "MemoryRepo",
    "QueryStream",
    "Specification",
    "FilterSpec",
    "combine_specs",
    # Errors
    "ErrorKind",
    "SmartRepoError",
    "InvalidCursorError",
    "StoreUnavailableError",
    "ScopeBreachError",
    "ValidationError",
    "ConfigurationError",
    "CreateManyPartialFailure",
]
