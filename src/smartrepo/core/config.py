"""
Repository configuration.

RepoConfig is the user-facing, immutable description of what a repository
manages on top of plain documents (timestamps, versions, soft delete,
tracing, identity). RepoSettings compiles it together with the scope and
trace context into the derived key sets and helpers the backends share.
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

from smartrepo.core.errors import ConfigurationError, ValidationError

SOFT_DELETE_KEY = "_deleted"
DEFAULT_VERSION_KEY = "_version"
DEFAULT_CREATED_AT_KEY = "_createdAt"
DEFAULT_UPDATED_AT_KEY = "_updatedAt"
DEFAULT_DELETED_AT_KEY = "_deletedAt"
DEFAULT_TRACE_KEY = "_trace"


class WriteOp(str, Enum):
    """Write operations that receive bookkeeping."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class TraceStrategy(str, Enum):
    """How trace entries are recorded on a document."""

    LATEST = "latest"  # Overwrite with the most recent entry
    BOUNDED = "bounded"  # Keep the last trace_limit entries
    UNBOUNDED = "unbounded"  # Keep every entry


class TimestampKeys(BaseModel):
    """Custom field names for audit timestamps."""

    created_at: str | None = None
    updated_at: str | None = None
    deleted_at: str | None = None

    model_config = {"frozen": True}


class RepoConfig(BaseModel):
    """
    Repository configuration.

    Example:
        RepoConfig(soft_delete=True, trace_timestamps=True, version=True)
    """

    id_key: str = Field(default="id", description="Public id field name")
    mirror_id: bool = Field(
        default=False, description="Also store the id inside the document body"
    )
    identity: Literal["synced", "detached"] = Field(
        default="synced",
        description="synced: store id is the public id; detached: separate internal id",
    )
    generate_id: Literal["server"] | Callable[[], Any] = Field(
        default="server", description="'server' or a zero-argument id factory"
    )
    soft_delete: bool = Field(default=False)
    trace_timestamps: Literal[True, "server"] | Callable[[], datetime] | None = Field(
        default=None,
        description="True for client clock, 'server' for store time, or a clock callable",
    )
    timestamp_keys: TimestampKeys | None = Field(default=None)
    version: Literal[True] | str | None = Field(
        default=None, description="True for the default version key, or a field name"
    )
    trace_key: str = Field(default=DEFAULT_TRACE_KEY)
    trace_strategy: TraceStrategy = Field(default=TraceStrategy.LATEST)
    trace_limit: int | None = Field(default=None, ge=1)
    cursor_secret: str | None = Field(
        default=None, description="Key used to sign pagination cursors"
    )

    model_config = {"frozen": True, "arbitrary_types_allowed": True}


@dataclass(frozen=True)
class RepoSettings:
    """
    Derived, validated view of a RepoConfig plus scope and trace context.

    Built once per repository and never mutated.
    """

    config: RepoConfig
    scope: Mapping[str, Any]
    trace_context: Mapping[str, Any] | None
    readonly_keys: frozenset[str]
    hidden_keys: frozenset[str]
    timestamps: Any = None
    version_key: str | None = None
    created_at_key: str = DEFAULT_CREATED_AT_KEY
    updated_at_key: str = DEFAULT_UPDATED_AT_KEY
    deleted_at_key: str = DEFAULT_DELETED_AT_KEY
    scope_keys: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def build(
        cls,
        config: RepoConfig | None = None,
        scope: Mapping[str, Any] | None = None,
        trace_context: Mapping[str, Any] | None = None,
    ) -> "RepoSettings":
        """
        Validate the configuration and compute managed key sets.

        Raises:
            ConfigurationError: on duplicate managed keys, readonly keys in
                scope, non-primitive scope values or a bounded trace
                strategy without trace_limit.
        """
        config = config or RepoConfig()
        scope = dict(scope or {})

        if config.trace_strategy == TraceStrategy.BOUNDED and not config.trace_limit:
            raise ConfigurationError(
                'trace_limit is required when trace_strategy is "bounded"'
            )

        keys = config.timestamp_keys
        timestamps = config.trace_timestamps
        if timestamps is None and keys is not None:
            timestamps = True

        readonly = {config.id_key, "_id"}
        hidden: set[str] = set()
        configured: list[str] = []

        created_at = (keys and keys.created_at) or DEFAULT_CREATED_AT_KEY
        updated_at = (keys and keys.updated_at) or DEFAULT_UPDATED_AT_KEY
        deleted_at = (keys and keys.deleted_at) or DEFAULT_DELETED_AT_KEY

        if timestamps is not None:
            for key, custom in (
                (created_at, keys and keys.created_at),
                (updated_at, keys and keys.updated_at),
                (deleted_at, keys and keys.deleted_at),
            ):
                readonly.add(key)
                configured.append(key)
                if not custom:
                    hidden.add(key)

        if config.soft_delete:
            readonly.add(SOFT_DELETE_KEY)
            hidden.add(SOFT_DELETE_KEY)
            configured.append(SOFT_DELETE_KEY)

        version_key = None
        if config.version is not None:
            version_key = DEFAULT_VERSION_KEY if config.version is True else config.version
            readonly.add(version_key)
            configured.append(version_key)
            if config.version is True:
                hidden.add(version_key)

        # Tracing is always available per operation via merge_trace
        readonly.add(config.trace_key)
        configured.append(config.trace_key)
        if config.trace_key == DEFAULT_TRACE_KEY:
            hidden.add(config.trace_key)

        in_scope = sorted(k for k in scope if k in readonly)
        if in_scope:
            raise ConfigurationError(f"Readonly fields found in scope: {', '.join(in_scope)}")

        invalid = sorted(
            k
            for k, v in scope.items()
            if v is not None and (not isinstance(v, (str, int, float, bool)))
        )
        if invalid:
            raise ConfigurationError(
                f"Invalid scope values for keys [{', '.join(invalid)}]. "
                "Scope values must be primitives (str | int | float | bool). "
                'Flatten nested scope fields (e.g. use "tenantId" instead of "tenant.id").'
            )

        duplicates = sorted({k for k in configured if configured.count(k) > 1})
        if duplicates:
            raise ConfigurationError(
                f"Duplicate keys found in repository configuration: {', '.join(duplicates)}. "
                "Keys for timestamps, versioning, tracing and soft delete must be unique."
            )

        return cls(
            config=config,
            scope={k: v for k, v in scope.items() if v is not None},
            trace_context=dict(trace_context) if trace_context is not None else None,
            readonly_keys=frozenset(readonly),
            hidden_keys=frozenset(hidden),
            timestamps=timestamps,
            version_key=version_key,
            created_at_key=created_at,
            updated_at_key=updated_at,
            deleted_at_key=deleted_at,
            scope_keys=frozenset(scope),
        )

    @property
    def id_key(self) -> str:
        return self.config.id_key

    @property
    def soft_delete(self) -> bool:
        return self.config.soft_delete

    @property
    def timestamps_enabled(self) -> bool:
        return self.timestamps is not None

    @property
    def server_timestamps(self) -> bool:
        return self.timestamps == "server"

    def is_readonly(self, key: str) -> bool:
        return key.split(".", 1)[0] in self.readonly_keys

    def is_hidden(self, key: str) -> bool:
        return key in self.hidden_keys

    def now(self) -> datetime | None:
        """Client-side timestamp for bookkeeping, or None for server/disabled timestamps."""
        if self.timestamps is True:
            return datetime.now(timezone.utc)
        if callable(self.timestamps):
            return self.timestamps()
        return None

    def build_trace(
        self,
        op: WriteOp,
        merge_trace: Mapping[str, Any] | None = None,
        server_timestamp: Any = None,
    ) -> dict[str, Any] | None:
        """
        Build the trace entry for a write.

        Returns None when neither a repository trace context nor a
        per-operation merge_trace was supplied.
        """
        if self.trace_context is None and not merge_trace:
            return None
        context = {**(self.trace_context or {}), **(merge_trace or {})}

        if self.server_timestamps:
            at = server_timestamp
        elif callable(self.timestamps):
            at = self.timestamps()
        else:
            at = datetime.now(timezone.utc)

        entry = {**context, "_op": op.value}
        if at is not None:
            entry["_at"] = at
        return entry

    def strip_managed(self, entity: Mapping[str, Any]) -> dict[str, Any]:
        """Drop readonly (repository-managed) fields from caller input."""
        return {k: v for k, v in entity.items() if not self.is_readonly(k)}

    def validate_no_readonly(self, keys: list[str], operation: str) -> None:
        """
        Reject writes to managed fields.

        Updates and unsets may not touch scope fields either.
        """
        conflicting = [k for k in keys if self.is_readonly(k)]
        if operation in ("update", "unset"):
            conflicting += [k for k in keys if k in self.scope_keys]
        if conflicting:
            raise ValidationError(
                f"Cannot {operation} readonly properties: {', '.join(conflicting)}",
                field=conflicting[0],
            )

    def validate_scope_properties(self, entity: Mapping[str, Any], operation: str) -> None:
        """Reject entities whose scope fields disagree with the repository scope."""
        for key, expected in self.scope.items():
            if key in entity and entity[key] != expected:
                raise ValidationError(
                    f"Cannot {operation} entity: scope property '{key}' must be "
                    f"'{expected}', got '{entity[key]}'",
                    field=key,
                )

    def scope_breach(self, filter: Mapping[str, Any] | None) -> bool:
        """True when the filter asks for a value the scope excludes."""
        data = filter or {}
        return any(key in data and data[key] != value for key, value in self.scope.items())

    def strip_hidden(self, doc: Mapping[str, Any]) -> dict[str, Any]:
        return {k: v for k, v in doc.items() if not self.is_hidden(k)}
