"""Primary and secondary join operators.

Creating an availability-database object is asynchronous on the server
side: after the ALTER statement returns, the object has to be polled until
it exists. Both operators use the same existing-state timeout and poll
interval from AgJoinConfig.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from sqlops.core.config import AgJoinConfig
from sqlops.core.errors import AgErrorKind, AgJoinError
from sqlops.core.models import (
    AgDatabaseState,
    AgServer,
    AvailabilityDatabaseInfo,
    AvailabilityGroupInfo,
    AvailabilityMode,
    DatabaseJoinRequest,
    JoinResult,
    ReplicaRole,
    SeedingMode,
    SynchronizationState,
)
from sqlops.core.polling import wait_until
from sqlops.core.replicas import ReplicaConnections

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SecondaryJoinOutcome:
    """Per-replica result of the secondary join phase."""

    replica: str
    target_state: SynchronizationState | None = None
    result: JoinResult | None = None
    error: AgJoinError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def target_synchronization_state(mode: AvailabilityMode) -> SynchronizationState:
    """
    Return the synchronization state a secondary must reach for its commit mode.

    Raises:
        AgJoinError: With kind UNEXPECTED_AVAILABILITY_MODE for any mode other
            than asynchronous or synchronous commit.
    """
    if mode == AvailabilityMode.ASYNCHRONOUS_COMMIT:
        return SynchronizationState.SYNCHRONIZING
    if mode == AvailabilityMode.SYNCHRONOUS_COMMIT:
        return SynchronizationState.SYNCHRONIZED
    raise AgJoinError(
        AgErrorKind.UNEXPECTED_AVAILABILITY_MODE,
        f"Unexpected availability mode {mode.value}; cannot determine the "
        "target synchronization state.",
    )


def join_result(
    server: AgServer,
    ag_name: str,
    role: ReplicaRole,
    info: AvailabilityDatabaseInfo,
) -> JoinResult:
    """Build the output record for one replica."""
    return JoinResult(
        computer_name=server.computer_name,
        instance_name=server.instance_name,
        sql_instance=server.sql_instance,
        availability_group=ag_name,
        database=info.name,
        local_replica_role=role,
        is_joined=info.is_joined,
        synchronization_state=info.synchronization_state,
    )


def wait_for_existing(
    server: AgServer,
    ag_name: str,
    database: str,
    config: AgJoinConfig,
    *,
    cancel: threading.Event | None = None,
) -> AvailabilityDatabaseInfo | None:
    """Poll until the availability-database object exists; None on timeout."""
    seen: list[AvailabilityDatabaseInfo] = []

    def _exists() -> bool:
        info = server.get_availability_database(ag_name, database)
        if info is not None and info.state == AgDatabaseState.EXISTING:
            seen.append(info)
            return True
        return False

    if wait_until(
        _exists,
        timeout=config.existing_timeout,
        interval=config.poll_interval,
        cancel=cancel,
    ):
        return seen[-1]
    return None


def join_primary(
    primary: AgServer,
    request: DatabaseJoinRequest,
    config: AgJoinConfig,
    *,
    cancel: threading.Event | None = None,
) -> JoinResult:
    """
    Add the database to the AG on the primary and wait until it exists.

    Raises:
        AgJoinError: JOIN_FAILED if the server rejects the statement,
            JOIN_TIMEOUT if the object does not exist within the timeout.
    """
    ag_name, database = request.availability_group, request.database
    logger.info("%s: adding %s to %s", primary.sql_instance, database, ag_name)
    try:
        primary.add_availability_database(ag_name, database)
    except AgJoinError:
        raise
    except Exception as exc:  # noqa: BLE001
        raise AgJoinError(
            AgErrorKind.JOIN_FAILED,
            f"Adding {database} to {ag_name} on {primary.sql_instance} failed: {exc}",
            database=database,
        ) from exc

    info = wait_for_existing(primary, ag_name, database, config, cancel=cancel)
    if info is None:
        raise AgJoinError(
            AgErrorKind.JOIN_TIMEOUT,
            f"{database} did not reach state Existing on {primary.sql_instance} "
            f"within {config.existing_timeout:g}s.",
            database=database,
        )
    return join_result(primary, ag_name, ReplicaRole.PRIMARY, info)


def _join_secondary(
    server: AgServer,
    ag: AvailabilityGroupInfo,
    replica: str,
    request: DatabaseJoinRequest,
    config: AgJoinConfig,
    cancel: threading.Event | None,
) -> SecondaryJoinOutcome:
    database = request.database
    info = wait_for_existing(server, ag.name, database, config, cancel=cancel)
    if info is None:
        raise AgJoinError(
            AgErrorKind.JOIN_TIMEOUT,
            f"{database} did not reach state Existing on {replica} "
            f"within {config.existing_timeout:g}s.",
        )

    replica_info = ag.replica(replica)
    mode = replica_info.availability_mode if replica_info else AvailabilityMode.UNKNOWN
    target = target_synchronization_state(mode)

    seeding = request.seeding_modes.get(replica, SeedingMode.MANUAL)
    if seeding != SeedingMode.AUTOMATIC:
        logger.info("%s: joining %s to %s", replica, database, ag.name)
        try:
            server.join_availability_database(ag.name, database)
        except Exception as exc:  # noqa: BLE001
            raise AgJoinError(
                AgErrorKind.JOIN_FAILED,
                f"Joining {database} to {ag.name} on {replica} failed: {exc}",
            ) from exc
        info = server.get_availability_database(ag.name, database) or info

    return SecondaryJoinOutcome(
        replica=replica,
        target_state=target,
        result=join_result(server, ag.name, ReplicaRole.SECONDARY, info),
    )


def join_secondaries(
    replicas: ReplicaConnections,
    ag: AvailabilityGroupInfo,
    request: DatabaseJoinRequest,
    config: AgJoinConfig,
    *,
    cancel: threading.Event | None = None,
) -> list[SecondaryJoinOutcome]:
    """
    Join the database on every secondary in scope.

    For each secondary:
      1) wait until the availability-database object exists there
      2) derive the target synchronization state from its availability mode
      3) with manual seeding, issue the explicit join

    Every secondary is attempted; failures are returned per replica.
    """
    outcomes: list[SecondaryJoinOutcome] = []
    for name in request.secondaries:
        try:
            server = replicas.get(name)
            outcomes.append(_join_secondary(server, ag, name, request, config, cancel))
        except AgJoinError as exc:
            if exc.kind == AgErrorKind.CANCELLED:
                raise
            exc.database = exc.database or request.database
            exc.replica = exc.replica or name
            logger.warning("%s", exc)
            outcomes.append(SecondaryJoinOutcome(replica=name, error=exc))
        except Exception as exc:  # noqa: BLE001
            err = AgJoinError(
                AgErrorKind.JOIN_FAILED,
                f"Joining {request.database} on {name} failed: {exc}",
                database=request.database,
                replica=name,
            )
            logger.warning("%s", err)
            outcomes.append(SecondaryJoinOutcome(replica=name, error=err))
    return outcomes
