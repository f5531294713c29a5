"""Entry points for testing and adding databases to an Availability Group.

This module wires the individual phases together:

    prerequisites -> seeding mode -> backup/restore -> join primary
    -> join secondaries -> wait for synchronization

Databases are processed strictly one after another. A failure scoped to a
database (or to one of its replicas) is recorded in the report and the
batch moves on. This includes unexpected driver errors, which are recorded
as QueryFailed. A failure that makes the AG or the primary connection
unusable raises when found before the first database; once the batch has
started it stops the batch and is returned in the report instead.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from sqlops.core.backup import restore_to_replicas
from sqlops.core.config import AgJoinConfig
from sqlops.core.errors import AgErrorKind, AgJoinError
from sqlops.core.join import join_primary, join_result, join_secondaries
from sqlops.core.models import (
    AgServer,
    AvailabilityGroupInfo,
    DatabaseJoinRequest,
    JoinResult,
    ReplicaInfo,
    ReplicaRole,
    SeedingMode,
)
from sqlops.core.prerequisites import (
    PrerequisiteResult,
    check_availability_group,
    check_database,
)
from sqlops.core.replicas import ConnectFn, ReplicaConnections
from sqlops.core.seeding import reconcile_seeding_modes
from sqlops.core.sync import ProgressCallback, wait_for_synchronization

logger = logging.getLogger(__name__)

PHASE_PREREQUISITES = "prerequisites"
PHASE_SEEDING_MODE = "seeding-mode"
PHASE_RESTORE = "backup-restore"
PHASE_JOIN_PRIMARY = "join-primary"
PHASE_JOIN_SECONDARY = "join-secondary"
PHASE_SYNCHRONIZE = "synchronize"


@dataclass(frozen=True)
class AgHealthReport:
    """Result of testing an Availability Group without adding databases."""

    computer_name: str
    instance_name: str
    sql_instance: str
    availability_group: str
    local_replica_role: ReplicaRole
    replicas: tuple[ReplicaInfo, ...]
    database_names: tuple[str, ...]


@dataclass
class AddDatabaseReport:
    """
    Outcome of one add-database invocation.

    Attributes:
        availability_group: Availability Group name.
        results: One record per joined database per replica.
        failures: Every recorded failure, with database / replica / phase.
        aborted: True when a fatal failure stopped the batch early; the
            failure is the last entry of `failures`.
    """

    availability_group: str
    results: list[JoinResult] = field(default_factory=list)
    failures: list[AgJoinError] = field(default_factory=list)
    aborted: bool = False

    @property
    def ok(self) -> bool:
        return not self.failures and not self.aborted

    def failed_databases(self) -> list[str]:
        seen: list[str] = []
        for f in self.failures:
            if f.database and f.database not in seen:
                seen.append(f.database)
        return seen

    def results_for(self, database: str) -> list[JoinResult]:
        return [r for r in self.results if r.database.lower() == database.lower()]


class _DatabaseAborted(Exception):
    """Internal signal: stop processing the current database."""


def _record(report: AddDatabaseReport, failures: Iterable[AgJoinError], phase: str) -> None:
    failures = list(failures)
    for failure in failures:
        failure.phase = failure.phase or phase
        logger.warning("%s", failure)
        report.failures.append(failure)
    if failures:
        raise _DatabaseAborted()


def _run(
    report: AddDatabaseReport,
    database: str,
    phase: str,
    fn: Callable[..., Any],
    *args: Any,
    **kwargs: Any,
) -> Any:
    """
    Call one phase for `database`, turning its errors into recorded failures.

    Fatal `AgJoinError`s get the database and phase attached and propagate.
    Any other error, including unexpected driver errors, is recorded for
    this database only and `_DatabaseAborted` is raised.
    """
    try:
        return fn(*args, **kwargs)
    except AgJoinError as exc:
        exc.database = exc.database or database
        exc.phase = exc.phase or phase
        if exc.is_fatal:
            raise
        failure = exc
    except Exception as exc:  # noqa: BLE001
        logger.debug("%s: %s raised", database, phase, exc_info=True)
        failure = AgJoinError(
            AgErrorKind.QUERY_FAILED,
            f"Unexpected error during {phase}: {exc}",
            database=database,
        )
    _record(report, [failure], phase)


def _read_availability_group(
    primary: AgServer, ag_name: str, seeding_mode: SeedingMode | None = None
) -> AvailabilityGroupInfo:
    try:
        return check_availability_group(primary, ag_name, seeding_mode=seeding_mode)
    except AgJoinError:
        raise
    except Exception as exc:
        raise AgJoinError(
            AgErrorKind.QUERY_FAILED,
            f"Reading {ag_name} on {primary.sql_instance} failed: {exc}",
        ) from exc


def availability_group_health(primary: AgServer, ag_name: str) -> AgHealthReport:
    """
    Check that an Availability Group is healthy and `primary` is its primary.

    Raises:
        AgJoinError: NOT_FOUND, WRONG_REPLICA, REPLICA_UNREACHABLE, or
            QUERY_FAILED when the AG cannot be read at all.
    """
    ag = _read_availability_group(primary, ag_name)
    return AgHealthReport(
        computer_name=primary.computer_name,
        instance_name=primary.instance_name,
        sql_instance=primary.sql_instance,
        availability_group=ag.name,
        local_replica_role=ag.local_replica_role,
        replicas=ag.replicas,
        database_names=ag.database_names,
    )


def preflight_databases(
    primary: AgServer,
    ag_name: str,
    databases: Iterable[str],
    *,
    connect: ConnectFn,
    secondaries: Iterable[str] | None = None,
    seeding_mode: SeedingMode | None = None,
    shared_path: str | None = None,
    use_last_backup: bool = False,
) -> list[PrerequisiteResult]:
    """
    Run the prerequisite checks for each database without changing anything.

    A database whose checks hit an unexpected driver error gets a
    QUERY_FAILED result; the other databases are still checked.

    Raises:
        AgJoinError: For AG-wide problems (see `check_availability_group`).
    """
    ag = _read_availability_group(primary, ag_name, seeding_mode)
    secondaries = list(secondaries or [])
    results: list[PrerequisiteResult] = []
    with ReplicaConnections(connect) as replicas:
        for database in databases:
            try:
                result = check_database(
                    primary,
                    ag,
                    database,
                    replicas=replicas,
                    secondaries=secondaries,
                    seeding_mode=seeding_mode,
                    shared_path=shared_path,
                    use_last_backup=use_last_backup,
                )
            except Exception as exc:  # noqa: BLE001
                logger.warning("%s: prerequisite check failed: %s", database, exc)
                failure = AgJoinError(
                    AgErrorKind.QUERY_FAILED,
                    f"Checking {database} failed: {exc}",
                    database=database,
                    phase=PHASE_PREREQUISITES,
                )
                result = PrerequisiteResult(database=database, failures=(failure,))
            results.append(result)
    return results


def _process_database(
    primary: AgServer,
    replicas: ReplicaConnections,
    ag: AvailabilityGroupInfo,
    request: DatabaseJoinRequest,
    report: AddDatabaseReport,
    config: AgJoinConfig,
    *,
    no_wait: bool,
    cancel: threading.Event | None,
    on_progress: ProgressCallback | None,
) -> None:
    database = request.database

    failures = _run(
        report, database, PHASE_SEEDING_MODE, reconcile_seeding_modes, primary, replicas, request
    )
    _record(report, failures, PHASE_SEEDING_MODE)
    failures = _run(
        report, database, PHASE_RESTORE, restore_to_replicas, primary, replicas, request
    )
    _record(report, failures, PHASE_RESTORE)

    report.results.append(
        _run(
            report,
            database,
            PHASE_JOIN_PRIMARY,
            join_primary,
            primary,
            request,
            config,
            cancel=cancel,
        )
    )

    outcomes = _run(
        report,
        database,
        PHASE_JOIN_SECONDARY,
        join_secondaries,
        replicas,
        ag,
        request,
        config,
        cancel=cancel,
    )
    joined = [o for o in outcomes if o.ok]
    if no_wait or any(not o.ok for o in outcomes):
        report.results.extend(o.result for o in joined if o.result is not None)
    _record(report, [o.error for o in outcomes if o.error is not None], PHASE_JOIN_SECONDARY)
    if no_wait:
        logger.info("%s: not waiting for synchronization", database)
        return

    targets = {o.replica: o.target_state for o in joined if o.target_state is not None}
    try:
        observed = _run(
            report,
            database,
            PHASE_SYNCHRONIZE,
            wait_for_synchronization,
            primary,
            replicas,
            request,
            targets,
            config,
            cancel=cancel,
            on_progress=on_progress,
        )
    except _DatabaseAborted:
        # the joins went through; report them with their join-time state
        report.results.extend(o.result for o in joined if o.result is not None)
        raise

    for outcome in joined:
        info = observed.get(outcome.replica)
        if info is not None:
            report.results.append(
                join_result(
                    replicas.get(outcome.replica),
                    request.availability_group,
                    ReplicaRole.SECONDARY,
                    info,
                )
            )
        elif outcome.result is not None:
            report.results.append(outcome.result)


def add_databases(
    primary: AgServer,
    ag_name: str,
    databases: Iterable[str],
    *,
    connect: ConnectFn,
    secondaries: Iterable[str] | None = None,
    seeding_mode: SeedingMode | None = None,
    shared_path: str | None = None,
    use_last_backup: bool = False,
    no_wait: bool = False,
    config: AgJoinConfig | None = None,
    cancel: threading.Event | None = None,
    on_progress: ProgressCallback | None = None,
) -> AddDatabaseReport:
    """
    Add databases to an Availability Group, one after another.

    Args:
        primary: Connection to the primary replica (owned by the caller).
        ag_name: Availability Group name.
        databases: Databases to add.
        connect: Factory opening a connection to a secondary replica by name.
        secondaries: Explicit secondaries; defaults to every non-primary replica.
        seeding_mode: Desired seeding mode; applied permanently to the replicas.
        shared_path: Directory for new full/log backups, reachable by replicas.
        use_last_backup: Restore the existing backup chain instead.
        no_wait: Return right after the join, without waiting for synchronization.
        config: Timeouts and poll interval; defaults to AgJoinConfig().
        cancel: Optional event stopping any wait loop at its next iteration.
        on_progress: Optional observer for automatic seeding progress.

    Returns:
        AddDatabaseReport with per-replica results and per-database failures.
        A fatal failure after the first database started stops the batch;
        it is recorded in the report and `aborted` is set.

    Raises:
        AgJoinError: For AG-wide failures found before any database is touched.
    """
    config = config or AgJoinConfig()
    secondaries = list(secondaries or [])
    ag = _read_availability_group(primary, ag_name, seeding_mode)
    report = AddDatabaseReport(availability_group=ag.name)

    with ReplicaConnections(connect) as replicas:
        for database in databases:
            logger.info("%s: adding to %s", database, ag.name)
            try:
                # membership changes with every database added, so re-read the AG
                ag = _run(
                    report,
                    database,
                    PHASE_PREREQUISITES,
                    check_availability_group,
                    primary,
                    ag.name,
                    seeding_mode=seeding_mode,
                )
                prereq = _run(
                    report,
                    database,
                    PHASE_PREREQUISITES,
                    check_database,
                    primary,
                    ag,
                    database,
                    replicas=replicas,
                    secondaries=secondaries,
                    seeding_mode=seeding_mode,
                    shared_path=shared_path,
                    use_last_backup=use_last_backup,
                )
                _record(report, prereq.failures, PHASE_PREREQUISITES)
                _process_database(
                    primary,
                    replicas,
                    ag,
                    prereq.request,
                    report,
                    config,
                    no_wait=no_wait,
                    cancel=cancel,
                    on_progress=on_progress,
                )
            except _DatabaseAborted:
                logger.warning("%s: skipped remaining steps", database)
                continue
            except AgJoinError as exc:
                logger.error("%s; remaining databases not processed", exc)
                report.failures.append(exc)
                report.aborted = True
                break

    return report
