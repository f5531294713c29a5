"""Error taxonomy for the Availability Group join workflow."""

from __future__ import annotations

from enum import Enum


class AgErrorKind(str, Enum):
    """Kinds of failures raised or collected while adding databases to an AG."""

    CONNECTION_FAILED = "ConnectionFailed"
    NOT_FOUND = "NotFound"
    DATABASE_NOT_FOUND = "DatabaseNotFound"
    REPLICA_NOT_FOUND = "ReplicaNotFound"
    WRONG_REPLICA = "WrongReplica"
    REPLICA_UNREACHABLE = "ReplicaUnreachable"
    UNSUPPORTED_FEATURE = "UnsupportedFeature"
    INVALID_RECOVERY_MODEL = "InvalidRecoveryModel"
    INVALID_DATABASE_STATE = "InvalidDatabaseState"
    INVALID_BACKUP_CHAIN = "InvalidBackupChain"
    ALREADY_JOINED = "AlreadyJoined"
    REPLICA_DATABASE_CONFLICT = "ReplicaDatabaseConflict"
    CONFLICTING_RESTORE_SOURCE = "ConflictingRestoreSource"
    MISSING_BACKUP_SOURCE = "MissingBackupSource"
    NO_BACKUP_AVAILABLE_FOR_SEEDING = "NoBackupAvailableForSeeding"
    REPLICA_ALTER_FAILED = "ReplicaAlterFailed"
    BACKUP_FAILED = "BackupFailed"
    RESTORE_FAILED = "RestoreFailed"
    JOIN_FAILED = "JoinFailed"
    JOIN_TIMEOUT = "JoinTimeout"
    UNEXPECTED_AVAILABILITY_MODE = "UnexpectedAvailabilityMode"
    SEEDING_FAILED = "SeedingFailed"
    SYNC_TIMEOUT = "SyncTimeout"
    QUERY_FAILED = "QueryFailed"
    CANCELLED = "Cancelled"


# Kinds that make the whole AG or primary connection unusable, or stop the run.
_FATAL_KINDS = frozenset(
    {
        AgErrorKind.CONNECTION_FAILED,
        AgErrorKind.NOT_FOUND,
        AgErrorKind.WRONG_REPLICA,
        AgErrorKind.REPLICA_UNREACHABLE,
        AgErrorKind.UNSUPPORTED_FEATURE,
        AgErrorKind.CANCELLED,
    }
)


class AgJoinError(RuntimeError):
    """
    Raised (or collected) when a step of the AG join workflow fails.

    Attributes:
        kind: Failure category.
        message: Human-readable description, including observed vs expected state.
        database: Database the failure relates to, if any.
        replica: Replica the failure relates to, if any.
        phase: Workflow phase the failure happened in, filled in by the workflow.
    """

    def __init__(
        self,
        kind: AgErrorKind,
        message: str,
        *,
        database: str | None = None,
        replica: str | None = None,
        phase: str | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.database = database
        self.replica = replica
        self.phase = phase

    @property
    def is_fatal(self) -> bool:
        """True when the failure should abort the whole invocation."""
        return self.kind in _FATAL_KINDS and self.replica is None

    def __str__(self) -> str:
        where = []
        if self.database:
            where.append(f"database={self.database}")
        if self.replica:
            where.append(f"replica={self.replica}")
        if self.phase:
            where.append(f"phase={self.phase}")
        prefix = f"[{self.kind.value}]"
        if where:
            prefix = f"{prefix} ({', '.join(where)})"
        return f"{prefix} {self.message}"
