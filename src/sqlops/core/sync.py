"""Synchronization waiter.

After the join, each secondary moves from Waiting to Synced once it reports
IsJoined and its target synchronization state (Synchronizing for
asynchronous commit, Synchronized for synchronous commit). SQL Server owns
the synchronization itself; a timeout here only stops waiting, it does not
roll anything back.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Mapping

from sqlops.core.config import AgJoinConfig
from sqlops.core.errors import AgErrorKind, AgJoinError
from sqlops.core.models import (
    AgServer,
    AvailabilityDatabaseInfo,
    DatabaseJoinRequest,
    SeedingMode,
    SeedingStats,
    SynchronizationState,
)
from sqlops.core.polling import wait_until
from sqlops.core.replicas import ReplicaConnections

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SeedingProgress:
    """Observed automatic seeding progress for one database on one replica."""

    replica: str
    database: str
    stats: SeedingStats


ProgressCallback = Callable[[SeedingProgress], None]


def machine_name(replica: str) -> str:
    """Return the machine part of a replica name (`HOST\\INSTANCE` -> `HOST`)."""
    return replica.split("\\", 1)[0].split(",", 1)[0]


def is_synced(
    info: AvailabilityDatabaseInfo | None, target: SynchronizationState
) -> bool:
    return info is not None and info.is_joined and info.synchronization_state == target


def wait_for_synchronization(
    primary: AgServer,
    replicas: ReplicaConnections,
    request: DatabaseJoinRequest,
    targets: Mapping[str, SynchronizationState],
    config: AgJoinConfig,
    *,
    cancel: threading.Event | None = None,
    on_progress: ProgressCallback | None = None,
) -> dict[str, AvailabilityDatabaseInfo]:
    """
    Block until every secondary reached its target synchronization state.

    Every poll refreshes the availability-database object of each replica
    still waiting. For automatic-seeding replicas, the seeding statistics on
    the primary are read as well: a failure message aborts immediately, and
    percent complete / ETA is handed to `on_progress` when seeding reporting
    is enabled.

    Args:
        primary: Connection to the primary replica.
        replicas: Secondary connections.
        request: Database being added.
        targets: Replica name -> target synchronization state.
        config: Timeouts and poll interval.
        cancel: Optional cancellation event.
        on_progress: Optional observer for seeding progress.

    Returns:
        The last observed availability-database state per replica.

    Raises:
        AgJoinError: SEEDING_FAILED, SYNC_TIMEOUT, or QUERY_FAILED when a
            state read fails.
    """
    database = request.database
    ag_name = request.availability_group
    waiting = dict(targets)
    observed: dict[str, AvailabilityDatabaseInfo] = {}

    def _read(name: str, fn: Callable, *args):
        try:
            return fn(*args)
        except AgJoinError:
            raise
        except Exception as exc:
            raise AgJoinError(
                AgErrorKind.QUERY_FAILED,
                f"Reading state of {database} on {name} failed: {exc}",
                database=database,
                replica=name,
            ) from exc

    def _poll() -> bool:
        for name in list(waiting):
            info = _read(
                name, replicas.get(name).get_availability_database, ag_name, database
            )
            if info is not None:
                observed[name] = info
            if is_synced(info, waiting[name]):
                logger.info("%s: %s is %s", name, database, waiting[name].value)
                del waiting[name]
                continue

            if request.seeding_modes.get(name) != SeedingMode.AUTOMATIC:
                continue
            stats = _read(
                name, primary.get_seeding_stats, database, machine_name(name)
            )
            if stats is None:
                continue
            if stats.failure_message:
                raise AgJoinError(
                    AgErrorKind.SEEDING_FAILED,
                    f"Automatic seeding of {database} to {name} failed: "
                    f"{stats.failure_message}",
                    database=database,
                    replica=name,
                )
            if config.report_seeding and on_progress is not None:
                on_progress(SeedingProgress(replica=name, database=database, stats=stats))
        return not waiting

    if not wait_until(
        _poll,
        timeout=config.sync_timeout,
        interval=config.poll_interval,
        cancel=cancel,
    ):
        details = ", ".join(
            f"{name} (joined={observed[name].is_joined if name in observed else False}, "
            f"state={observed[name].synchronization_state.value if name in observed else 'missing'}, "
            f"expected={target.value})"
            for name, target in waiting.items()
        )
        raise AgJoinError(
            AgErrorKind.SYNC_TIMEOUT,
            f"{database} did not synchronize within {config.sync_timeout:g}s: {details}.",
            database=database,
        )
    return observed
