"""Core Availability Group domain models.

This module defines the transient data structures used while adding a
database to an Availability Group, plus the server interface the workflow
talks to. Everything here lives for one command invocation only and is
intentionally free of driver (pyodbc) types and CLI concerns.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Mapping, Protocol


class ReplicaRole(str, Enum):
    """Role of a replica inside an Availability Group."""

    PRIMARY = "Primary"
    SECONDARY = "Secondary"
    RESOLVING = "Resolving"
    UNKNOWN = "Unknown"


class ConnectionState(str, Enum):
    """Connection state of a replica as seen from the primary."""

    CONNECTED = "Connected"
    DISCONNECTED = "Disconnected"
    UNKNOWN = "Unknown"


class AvailabilityMode(str, Enum):
    """
    Commit mode of a replica.

    Values:
        ASYNCHRONOUS_COMMIT: The primary does not wait for the secondary.
        SYNCHRONOUS_COMMIT: The primary waits for the secondary to harden the log.
        CONFIGURATION_ONLY: Replica only holds AG configuration metadata.
        UNKNOWN: Value reported by the server could not be mapped.
    """

    ASYNCHRONOUS_COMMIT = "AsynchronousCommit"
    SYNCHRONOUS_COMMIT = "SynchronousCommit"
    CONFIGURATION_ONLY = "ConfigurationOnly"
    UNKNOWN = "Unknown"


class SeedingMode(str, Enum):
    """How a secondary obtains its initial copy of a database."""

    AUTOMATIC = "Automatic"
    MANUAL = "Manual"


class RecoveryModel(str, Enum):
    FULL = "Full"
    BULK_LOGGED = "BulkLogged"
    SIMPLE = "Simple"


class DatabaseStatus(str, Enum):
    """Database state as reported by sys.databases (ONLINE maps to NORMAL)."""

    NORMAL = "Normal"
    RESTORING = "Restoring"
    RECOVERING = "Recovering"
    RECOVERY_PENDING = "RecoveryPending"
    SUSPECT = "Suspect"
    EMERGENCY = "Emergency"
    OFFLINE = "Offline"
    UNKNOWN = "Unknown"


class BackupType(str, Enum):
    FULL = "Full"
    DIFFERENTIAL = "Differential"
    LOG = "Log"


class SynchronizationState(str, Enum):
    """Catch-up status of a database on a replica relative to the primary."""

    NOT_SYNCHRONIZING = "NotSynchronizing"
    SYNCHRONIZING = "Synchronizing"
    SYNCHRONIZED = "Synchronized"
    REVERTING = "Reverting"
    INITIALIZING = "Initializing"


class AgDatabaseState(str, Enum):
    """Lifecycle of an availability-database object (created -> existing)."""

    PENDING = "Pending"
    EXISTING = "Existing"


@dataclass(frozen=True)
class ReplicaInfo:
    """
    One replica of an Availability Group.

    Attributes:
        name: Replica (server) name as registered in the AG.
        role: Current role of the replica.
        connection_state: Whether the primary can currently reach the replica.
        availability_mode: Synchronous or asynchronous commit.
        seeding_mode: Configured seeding mode of the replica.
    """

    name: str
    role: ReplicaRole
    connection_state: ConnectionState
    availability_mode: AvailabilityMode
    seeding_mode: SeedingMode


@dataclass(frozen=True)
class AvailabilityGroupInfo:
    """
    Snapshot of an Availability Group as seen from one connected instance.

    Attributes:
        name: Availability Group name.
        local_replica_role: Role of the instance this snapshot was read from.
        primary_replica: Name of the replica currently acting as primary.
        replicas: All replicas registered in the AG.
        database_names: Databases that are already members of the AG.
    """

    name: str
    local_replica_role: ReplicaRole
    primary_replica: str | None
    replicas: tuple[ReplicaInfo, ...] = ()
    database_names: tuple[str, ...] = ()

    def replica(self, name: str) -> ReplicaInfo | None:
        """Return the replica with the given name (case-insensitive)."""
        want = name.lower()
        for r in self.replicas:
            if r.name.lower() == want:
                return r
        return None

    def secondary_replicas(self) -> list[ReplicaInfo]:
        """Return every replica except the current primary."""
        primary = (self.primary_replica or "").lower()
        return [r for r in self.replicas if r.name.lower() != primary]

    def has_database(self, database: str) -> bool:
        want = database.lower()
        return any(d.lower() == want for d in self.database_names)


@dataclass(frozen=True)
class DatabaseInfo:
    """Lightweight representation of a database on one instance."""

    name: str
    recovery_model: RecoveryModel
    status: DatabaseStatus
    last_backup_date: datetime | None = None
    availability_group: str | None = None


@dataclass(frozen=True)
class AvailabilityDatabaseInfo:
    """State of an availability-database object on one replica."""

    name: str
    state: AgDatabaseState
    is_joined: bool = False
    synchronization_state: SynchronizationState = SynchronizationState.NOT_SYNCHRONIZING


@dataclass(frozen=True)
class BackupRecord:
    """A backup artifact that can be restored on a secondary."""

    database: str
    backup_type: BackupType
    path: str
    finish_date: datetime | None = None


@dataclass(frozen=True)
class SeedingStats:
    """Row of the automatic seeding statistics view for one database/replica."""

    transferred_bytes: int = 0
    total_bytes: int = 0
    estimated_completion: datetime | None = None
    failure_message: str | None = None

    @property
    def percent_complete(self) -> float:
        if self.total_bytes <= 0:
            return 0.0
        return min(100.0, 100.0 * self.transferred_bytes / self.total_bytes)


@dataclass(frozen=True)
class DatabaseJoinRequest:
    """
    Unit of work: one database to add to one Availability Group.

    Created by the prerequisite checker once every check passed, and
    consumed by one pass through the join workflow.

    Attributes:
        availability_group: Availability Group name.
        database: Database name.
        seeding_mode: Desired seeding mode, or None to keep what replicas have.
        shared_path: Directory reachable by every replica for backup files.
        use_last_backup: Restore from the existing backup chain instead of
            taking new backups.
        secondaries: Secondary replicas in scope, in iteration order.
        restore_needed: Replica name -> whether a manual restore is required.
        seeding_modes: Replica name -> effective seeding mode (requested mode,
            else the replica's configured mode).
        backups: Backups to restore (only set with use_last_backup).
    """

    availability_group: str
    database: str
    seeding_mode: SeedingMode | None = None
    shared_path: str | None = None
    use_last_backup: bool = False
    secondaries: tuple[str, ...] = ()
    restore_needed: Mapping[str, bool] = field(default_factory=dict)
    seeding_modes: Mapping[str, SeedingMode] = field(default_factory=dict)
    backups: tuple[BackupRecord, ...] = ()

    @property
    def replicas_needing_restore(self) -> list[str]:
        return [name for name in self.secondaries if self.restore_needed.get(name)]


@dataclass(frozen=True)
class JoinResult:
    """Output record for one joined database on one replica."""

    computer_name: str
    instance_name: str
    sql_instance: str
    availability_group: str
    database: str
    local_replica_role: ReplicaRole
    is_joined: bool
    synchronization_state: SynchronizationState


class AgServer(Protocol):
    """Interface for one administrative connection to a SQL Server instance."""

    sql_instance: str
    computer_name: str
    instance_name: str
    version_major: int

    def get_availability_group(self, name: str) -> AvailabilityGroupInfo | None:
        """Return the AG snapshot, or None if the AG does not exist here."""
        ...

    def get_database(self, name: str) -> DatabaseInfo | None:
        """Return the database, or None if it does not exist here."""
        ...

    def list_databases(self) -> list[DatabaseInfo]:
        """Return every user database on the instance."""
        ...

    def get_backup_history(self, database: str) -> list[BackupRecord]:
        """Return the most recent full backup and every backup taken after it."""
        ...

    def set_seeding_mode(self, ag: str, replica: str, mode: SeedingMode) -> None:
        """Alter the seeding mode of a replica (issued on the primary)."""
        ...

    def grant_create_any_database(self, ag: str) -> None:
        """Allow automatic seeding to create databases on this instance."""
        ...

    def add_availability_database(self, ag: str, database: str) -> None:
        """Create the availability-database object (issued on the primary)."""
        ...

    def join_availability_database(self, ag: str, database: str) -> None:
        """Join a restored database to the AG (issued on a secondary)."""
        ...

    def get_availability_database(
        self, ag: str, database: str
    ) -> AvailabilityDatabaseInfo | None:
        """Return a fresh read of the availability-database object."""
        ...

    def get_seeding_stats(self, database: str, remote_machine: str) -> SeedingStats | None:
        """Return the latest seeding statistics row, if any."""
        ...

    def backup_database(
        self, database: str, backup_type: BackupType, directory: str
    ) -> BackupRecord:
        """Back up a database into a directory and return the artifact."""
        ...

    def restore_database(
        self, database: str, backups: list[BackupRecord], *, no_recovery: bool = True
    ) -> None:
        """Restore backup artifacts in order onto this instance."""
        ...

    def close(self) -> None:
        ...
