"""
smartrepo Core Module.

Contains the configuration model, request/result schemas and the error
taxonomy.
"""

from smartrepo.core.config import RepoConfig, RepoSettings, TimestampKeys, TraceStrategy, WriteOp
from smartrepo.core.dsl import (
    Filter,
    Page,
    Projection,
    SortDirection,
    UpdateOperation,
    validate_filter,
)
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

__all__ = [
    # Config
    "RepoConfig",
    "RepoSettings",
    "TimestampKeys",
    "TraceStrategy",
    "WriteOp",
    # DSL
    "Filter",
    "Page",
    "Projection",
    "SortDirection",
    "UpdateOperation",
    "validate_filter",
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
