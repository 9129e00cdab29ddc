"""
Error taxonomy for smartrepo.

All smartrepo errors inherit from SmartRepoError and include:
- An ErrorKind code for programmatic handling
- A human-readable message
- Optional details for logging and debugging
"""

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Error codes callers can match on instead of checking exception types."""

    SMARTREPO_ERROR = "SMARTREPO_ERROR"
    INVALID_CURSOR = "INVALID_CURSOR"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"
    SCOPE_BREACH = "SCOPE_BREACH"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    PARTIAL_FAILURE = "PARTIAL_FAILURE"


class SmartRepoError(Exception):
    """
    Base class for all smartrepo errors.

    Attributes:
        code: ErrorKind for programmatic handling
        message: Human-readable error message
        details: Additional error context
    """

    code: ErrorKind = ErrorKind.SMARTREPO_ERROR

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert error to a dictionary for serialization."""
        return {
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
        }


class InvalidCursorError(SmartRepoError):
    """
    A pagination cursor could not be used.

    Raised both for tokens that do not decode and for anchors that no longer
    resolve to a visible document. The message is identical in every case so
    that callers cannot probe for documents outside their scope.
    """

    code = ErrorKind.INVALID_CURSOR

    def __init__(self, **kwargs: Any) -> None:
        super().__init__("Invalid cursor", **kwargs)


class StoreUnavailableError(SmartRepoError):
    """The underlying document store could not be reached or timed out."""

    code = ErrorKind.STORE_UNAVAILABLE

    def __init__(self, operation: str, **kwargs: Any) -> None:
        super().__init__(
            f"Store unavailable during '{operation}'",
            details={"operation": operation},
            **kwargs,
        )


class ScopeBreachError(SmartRepoError):
    """A filter contradicts the repository scope."""

    code = ErrorKind.SCOPE_BREACH

    def __init__(self, operation: str, **kwargs: Any) -> None:
        super().__init__(
            f"Scope breach detected in {operation} filter",
            details={"operation": operation},
            **kwargs,
        )


class ValidationError(SmartRepoError):
    """Input validation failed."""

    code = ErrorKind.VALIDATION_ERROR

    def __init__(
        self,
        message: str,
        field: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            message,
            details={"field": field} if field else {},
            **kwargs,
        )


class ConfigurationError(SmartRepoError):
    """The repository configuration is inconsistent."""

    code = ErrorKind.CONFIGURATION_ERROR


class CreateManyPartialFailure(SmartRepoError):
    """
    Only some documents of a create_many call were written.

    Attributes:
        inserted_ids: Ids that were written, in input order
        failed_ids: Ids that failed or were never attempted
    """

    code = ErrorKind.PARTIAL_FAILURE

    def __init__(
        self,
        inserted_ids: list[Any],
        failed_ids: list[Any],
        **kwargs: Any,
    ) -> None:
        total = len(inserted_ids) + len(failed_ids)
        super().__init__(
            f"create_many partially inserted {len(inserted_ids)}/{total} entities",
            details={"inserted": len(inserted_ids), "failed": len(failed_ids)},
            **kwargs,
        )
        self.inserted_ids = list(inserted_ids)
        self.failed_ids = list(failed_ids)
