"""Prerequisite checks for adding a database to an Availability Group.

The checks are split in two levels:

- `check_availability_group` validates the AG itself (exists, connected to
  the primary, every replica connected, feature support). A failure here
  makes the whole invocation pointless, so it raises.
- `check_database` validates one database against the AG and every
  secondary in scope. Failures are collected and returned so a batch can
  continue with its other databases.

Neither function mutates remote state; running them twice against an
unchanged AG gives the same decision and the same RestoreNeeded mapping.

Known limitation: the "already joined" guard is AG-wide. A database that is
already a member of the AG cannot be added to a newly added replica with
this workflow.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from sqlops.core.errors import AgErrorKind, AgJoinError
from sqlops.core.models import (
    AgServer,
    AvailabilityGroupInfo,
    BackupType,
    ConnectionState,
    DatabaseInfo,
    DatabaseJoinRequest,
    DatabaseStatus,
    RecoveryModel,
    ReplicaRole,
    SeedingMode,
)
from sqlops.core.replicas import ReplicaConnections

logger = logging.getLogger(__name__)

# SQL Server 2016 introduced automatic seeding.
MIN_AUTOMATIC_SEEDING_VERSION = 13


@dataclass(frozen=True)
class PrerequisiteResult:
    """
    Outcome of checking one database.

    Exactly one of `request` and `failures` is populated.
    """

    database: str
    request: DatabaseJoinRequest | None = None
    failures: tuple[AgJoinError, ...] = ()

    @property
    def ok(self) -> bool:
        return self.request is not None and not self.failures

    @property
    def failure_kinds(self) -> list[AgErrorKind]:
        return [f.kind for f in self.failures]


def check_availability_group(
    primary: AgServer,
    ag_name: str,
    *,
    seeding_mode: SeedingMode | None = None,
) -> AvailabilityGroupInfo:
    """
    Validate the Availability Group on the primary connection.

    Raises:
        AgJoinError: NOT_FOUND, WRONG_REPLICA, REPLICA_UNREACHABLE or
            UNSUPPORTED_FEATURE.
    """
    ag = primary.get_availability_group(ag_name)
    if ag is None:
        raise AgJoinError(
            AgErrorKind.NOT_FOUND,
            f"Availability Group {ag_name} not found on {primary.sql_instance}.",
        )

    if ag.local_replica_role != ReplicaRole.PRIMARY:
        raise AgJoinError(
            AgErrorKind.WRONG_REPLICA,
            f"{primary.sql_instance} is {ag.local_replica_role.value} for {ag.name}, "
            f"not Primary. Connect to the primary replica {ag.primary_replica} instead.",
        )

    unreachable = [
        f"{r.name} ({r.connection_state.value})"
        for r in ag.replicas
        if r.connection_state != ConnectionState.CONNECTED
    ]
    if unreachable:
        raise AgJoinError(
            AgErrorKind.REPLICA_UNREACHABLE,
            f"Not all replicas of {ag.name} are connected: {', '.join(unreachable)}.",
        )

    if (
        seeding_mode == SeedingMode.AUTOMATIC
        and primary.version_major < MIN_AUTOMATIC_SEEDING_VERSION
    ):
        raise AgJoinError(
            AgErrorKind.UNSUPPORTED_FEATURE,
            "Automatic seeding requires SQL Server 2016 or later; "
            f"{primary.sql_instance} runs major version {primary.version_major}.",
        )

    return ag


def resolve_secondaries(
    ag: AvailabilityGroupInfo,
    secondaries: Iterable[str] | None = None,
) -> tuple[list[str], list[AgJoinError]]:
    """
    Return the secondary replica names in scope, plus failures for unknown names.

    Without an explicit list, every replica except the primary is in scope.
    """
    if not secondaries:
        return [r.name for r in ag.secondary_replicas()], []

    names: list[str] = []
    failures: list[AgJoinError] = []
    primary = (ag.primary_replica or "").lower()
    for wanted in secondaries:
        replica = ag.replica(wanted)
        if replica is None:
            failures.append(
                AgJoinError(
                    AgErrorKind.REPLICA_NOT_FOUND,
                    f"{wanted} is not a replica of {ag.name}.",
                    replica=wanted,
                )
            )
        elif replica.name.lower() == primary:
            failures.append(
                AgJoinError(
                    AgErrorKind.WRONG_REPLICA,
                    f"{wanted} is the primary replica of {ag.name}, not a secondary.",
                    replica=wanted,
                )
            )
        elif replica.name not in names:
            names.append(replica.name)
    return names, failures


def _never_backed_up(db: DatabaseInfo) -> bool:
    # SMO reports year 1 for "never"; msdb returns NULL.
    return db.last_backup_date is None or db.last_backup_date.year <= datetime.min.year


def _effective_seeding_mode(
    ag: AvailabilityGroupInfo, replica: str, desired: SeedingMode | None
) -> SeedingMode:
    if desired is not None:
        logger.debug("%s: using requested seeding mode %s", replica, desired.value)
        return desired
    info = ag.replica(replica)
    mode = info.seeding_mode if info else SeedingMode.MANUAL
    logger.debug("%s: using configured seeding mode %s", replica, mode.value)
    return mode


def _check_replica(
    server: AgServer,
    ag: AvailabilityGroupInfo,
    replica: str,
    database: str,
    *,
    seeding_mode: SeedingMode,
    use_last_backup: bool,
) -> tuple[bool, list[AgJoinError]]:
    """Check one secondary; return (restore_needed, failures)."""
    failures: list[AgJoinError] = []

    replica_ag = server.get_availability_group(ag.name)
    if replica_ag is None:
        failures.append(
            AgJoinError(
                AgErrorKind.REPLICA_NOT_FOUND,
                f"Availability Group {ag.name} not found on {server.sql_instance}.",
                database=database,
                replica=replica,
            )
        )
    elif replica_ag.local_replica_role != ReplicaRole.SECONDARY:
        failures.append(
            AgJoinError(
                AgErrorKind.WRONG_REPLICA,
                f"{server.sql_instance} reports role "
                f"{replica_ag.local_replica_role.value} for {ag.name}, expected Secondary.",
                database=database,
                replica=replica,
            )
        )

    if (
        seeding_mode == SeedingMode.AUTOMATIC
        and server.version_major < MIN_AUTOMATIC_SEEDING_VERSION
    ):
        failures.append(
            AgJoinError(
                AgErrorKind.UNSUPPORTED_FEATURE,
                f"Automatic seeding requires SQL Server 2016 or later; {server.sql_instance} "
                f"runs major version {server.version_major}.",
                database=database,
                replica=replica,
            )
        )

    already_restoring = False
    replica_db = server.get_database(database)
    if replica_db is not None:
        if replica_db.status != DatabaseStatus.RESTORING:
            failures.append(
                AgJoinError(
                    AgErrorKind.REPLICA_DATABASE_CONFLICT,
                    f"Database {database} already exists on {replica} with status "
                    f"{replica_db.status.value}; it must be Restoring to be joined.",
                    database=database,
                    replica=replica,
                )
            )
        elif use_last_backup:
            failures.append(
                AgJoinError(
                    AgErrorKind.CONFLICTING_RESTORE_SOURCE,
                    f"Database {database} is already restoring on {replica}; "
                    "it cannot be combined with restoring the last backups.",
                    database=database,
                    replica=replica,
                )
            )
        else:
            already_restoring = True
            logger.debug("%s: %s already present in Restoring state", replica, database)

    restore_needed = seeding_mode == SeedingMode.MANUAL and not already_restoring
    if seeding_mode != SeedingMode.MANUAL:
        logger.debug("%s: no restore needed, seeding mode is %s", replica, seeding_mode.value)
    elif already_restoring:
        logger.debug("%s: no restore needed, database is already restoring", replica)
    else:
        logger.debug("%s: restore needed (manual seeding)", replica)
    return restore_needed, failures


def check_database(
    primary: AgServer,
    ag: AvailabilityGroupInfo,
    database: str,
    *,
    replicas: ReplicaConnections,
    secondaries: Iterable[str] | None = None,
    seeding_mode: SeedingMode | None = None,
    shared_path: str | None = None,
    use_last_backup: bool = False,
) -> PrerequisiteResult:
    """
    Check whether one database can be added to the Availability Group.

    The database checks are hard stops in order (exists, full recovery,
    normal status, backup chain, not already joined). After those, every
    secondary in scope is evaluated even if some fail, so that all problems
    are reported in one pass.

    Args:
        primary: Connection to the primary replica.
        ag: AG snapshot returned by `check_availability_group`.
        database: Database to add.
        replicas: Secondary connections owned by the invocation.
        secondaries: Explicit secondaries; defaults to every non-primary replica.
        seeding_mode: Desired seeding mode; None keeps the replicas' configuration.
        shared_path: Directory for new backups, reachable by every replica.
        use_last_backup: Restore the existing backup chain instead.

    Returns:
        A PrerequisiteResult with a DatabaseJoinRequest, or with failures.
    """

    def fail(kind: AgErrorKind, message: str) -> PrerequisiteResult:
        return PrerequisiteResult(
            database=database,
            failures=(AgJoinError(kind, message, database=database),),
        )

    db = primary.get_database(database)
    if db is None:
        return fail(
            AgErrorKind.DATABASE_NOT_FOUND,
            f"Database {database} not found on {primary.sql_instance}.",
        )
    if db.recovery_model != RecoveryModel.FULL:
        return fail(
            AgErrorKind.INVALID_RECOVERY_MODEL,
            f"Database {database} uses recovery model {db.recovery_model.value}; "
            "Full is required.",
        )
    if db.status != DatabaseStatus.NORMAL:
        return fail(
            AgErrorKind.INVALID_DATABASE_STATE,
            f"Database {database} has status {db.status.value}; Normal is required.",
        )

    backups = ()
    if use_last_backup:
        history = primary.get_backup_history(database)
        if not history or history[-1].backup_type != BackupType.LOG:
            last = history[-1].backup_type.value if history else "none"
            return fail(
                AgErrorKind.INVALID_BACKUP_CHAIN,
                f"Last backup of {database} must be a log backup (found: {last}).",
            )
        backups = tuple(history)

    if ag.has_database(database) or (
        db.availability_group and db.availability_group.lower() == ag.name.lower()
    ):
        return fail(
            AgErrorKind.ALREADY_JOINED,
            f"Database {database} is already a member of {ag.name}.",
        )

    names, failures = resolve_secondaries(ag, secondaries)
    for failure in failures:
        failure.database = database

    restore_needed: dict[str, bool] = {}
    modes: dict[str, SeedingMode] = {}
    for name in names:
        try:
            server = replicas.get(name)
        except AgJoinError as exc:
            logger.warning("%s", exc)
            failures.append(
                AgJoinError(exc.kind, exc.message, database=database, replica=name)
            )
            continue

        mode = _effective_seeding_mode(ag, name, seeding_mode)
        try:
            needed, replica_failures = _check_replica(
                server,
                ag,
                name,
                database,
                seeding_mode=mode,
                use_last_backup=use_last_backup,
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("Checking %s on %s failed: %s", database, name, exc)
            failures.append(
                AgJoinError(
                    AgErrorKind.QUERY_FAILED,
                    f"Checking {database} on {name} failed: {exc}",
                    database=database,
                    replica=name,
                )
            )
            continue
        failures.extend(replica_failures)
        if not replica_failures:
            modes[name] = mode
            restore_needed[name] = needed

    if any(restore_needed.values()) and not shared_path and not use_last_backup:
        needing = ", ".join(n for n, v in restore_needed.items() if v)
        failures.append(
            AgJoinError(
                AgErrorKind.MISSING_BACKUP_SOURCE,
                f"Replicas {needing} need a restore of {database}; "
                "provide a shared path or use the last backups.",
                database=database,
            )
        )

    if (
        modes
        and all(m == SeedingMode.AUTOMATIC for m in modes.values())
        and _never_backed_up(db)
    ):
        failures.append(
            AgJoinError(
                AgErrorKind.NO_BACKUP_AVAILABLE_FOR_SEEDING,
                f"Database {database} has never been backed up; take a full backup "
                "before adding it with automatic seeding.",
                database=database,
            )
        )

    if failures:
        return PrerequisiteResult(database=database, failures=tuple(failures))

    request = DatabaseJoinRequest(
        availability_group=ag.name,
        database=db.name,
        seeding_mode=seeding_mode,
        shared_path=shared_path,
        use_last_backup=use_last_backup,
        secondaries=tuple(names),
        restore_needed=restore_needed,
        seeding_modes=modes,
        backups=backups,
    )
    logger.debug(
        "%s: prerequisites passed, restore needed on %s",
        database,
        request.replicas_needing_restore or "no replica",
    )
    return PrerequisiteResult(database=database, request=request)
