"""Seeding-mode reconciliation for the replicas of an Availability Group.

The desired seeding mode is applied as the ongoing policy of each replica;
it is not reverted once the database has been added.
"""

from __future__ import annotations

import logging

from sqlops.core.errors import AgErrorKind, AgJoinError
from sqlops.core.models import AgServer, DatabaseJoinRequest, SeedingMode
from sqlops.core.replicas import ReplicaConnections

logger = logging.getLogger(__name__)


def reconcile_seeding_modes(
    primary: AgServer,
    replicas: ReplicaConnections,
    request: DatabaseJoinRequest,
) -> list[AgJoinError]:
    """
    Bring every secondary's seeding mode in line with the requested mode.

    For each secondary whose current mode differs:
      1) alter the replica's seeding mode on the primary
      2) for Automatic, grant CREATE ANY DATABASE on the secondary

    Replicas already in the requested mode are left untouched, so running
    this twice issues no second alter. A failing replica does not stop the
    others.

    Returns:
        One REPLICA_ALTER_FAILED error per replica that could not be altered.
    """
    desired = request.seeding_mode
    if desired is None:
        return []

    ag_name = request.availability_group
    ag = primary.get_availability_group(ag_name)
    failures: list[AgJoinError] = []

    for name in request.secondaries:
        info = ag.replica(name) if ag else None
        if info is not None and info.seeding_mode == desired:
            logger.debug("%s: seeding mode already %s", name, desired.value)
            continue

        current = info.seeding_mode.value if info else "unknown"
        logger.info("%s: changing seeding mode from %s to %s", name, current, desired.value)
        try:
            primary.set_seeding_mode(ag_name, name, desired)
            if desired == SeedingMode.AUTOMATIC:
                replicas.get(name).grant_create_any_database(ag_name)
        except Exception as exc:  # noqa: BLE001
            logger.warning("%s: failed to set seeding mode: %s", name, exc)
            failures.append(
                AgJoinError(
                    AgErrorKind.REPLICA_ALTER_FAILED,
                    f"Failed to set seeding mode {desired.value} on {name}: {exc}",
                    database=request.database,
                    replica=name,
                )
            )

    return failures
