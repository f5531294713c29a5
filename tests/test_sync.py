from dataclasses import replace
from datetime import datetime

import pytest
from fakes import FakeCluster

from sqlops.core.config import AgJoinConfig
from sqlops.core.errors import AgErrorKind, AgJoinError
from sqlops.core.models import (
    AgDatabaseState,
    AvailabilityDatabaseInfo,
    DatabaseJoinRequest,
    SeedingMode,
    SeedingStats,
    SynchronizationState,
)
from sqlops.core.replicas import ReplicaConnections
from sqlops.core.sync import is_synced, machine_name, wait_for_synchronization

FAST = AgJoinConfig(existing_timeout=0, sync_timeout=0, poll_interval=0)


def _request(seeding=SeedingMode.AUTOMATIC, secondaries=("SQL2",)) -> DatabaseJoinRequest:
    return DatabaseJoinRequest(
        availability_group="AG1",
        database="DB1",
        secondaries=secondaries,
        seeding_modes={name: seeding for name in secondaries},
    )


def _set_state(cluster, replica, state, *, joined=True):
    cluster[replica].ag_databases["DB1"] = AvailabilityDatabaseInfo(
        name="DB1",
        state=AgDatabaseState.EXISTING,
        is_joined=joined,
        synchronization_state=state,
    )


@pytest.mark.parametrize(
    ("replica", "expected"),
    [("SQL2", "SQL2"), ("SQL2\\INST", "SQL2"), ("sql2.corp,1433", "sql2.corp")],
)
def test_machine_name(replica, expected):
    assert machine_name(replica) == expected


def test_is_synced_requires_joined_and_target_state():
    info = AvailabilityDatabaseInfo(
        "DB1", AgDatabaseState.EXISTING, True, SynchronizationState.SYNCHRONIZING
    )
    assert is_synced(info, SynchronizationState.SYNCHRONIZING)
    assert not is_synced(info, SynchronizationState.SYNCHRONIZED)
    assert not is_synced(replace(info, is_joined=False), SynchronizationState.SYNCHRONIZING)
    assert not is_synced(None, SynchronizationState.SYNCHRONIZING)


def test_returns_observed_state_once_synced():
    cluster = FakeCluster(secondaries=("SQL2", "SQL3"))
    _set_state(cluster, "SQL2", SynchronizationState.SYNCHRONIZING)
    _set_state(cluster, "SQL3", SynchronizationState.SYNCHRONIZED)
    targets = {
        "SQL2": SynchronizationState.SYNCHRONIZING,
        "SQL3": SynchronizationState.SYNCHRONIZED,
    }

    with ReplicaConnections(cluster.connect) as replicas:
        observed = wait_for_synchronization(
            cluster.primary,
            replicas,
            _request(SeedingMode.MANUAL, ("SQL2", "SQL3")),
            targets,
            FAST,
        )

    assert set(observed) == {"SQL2", "SQL3"}
    assert observed["SQL3"].synchronization_state == SynchronizationState.SYNCHRONIZED


def test_timeout_reports_waiting_replicas():
    cluster = FakeCluster(secondaries=("SQL2", "SQL3"))
    _set_state(cluster, "SQL2", SynchronizationState.SYNCHRONIZED)
    _set_state(cluster, "SQL3", SynchronizationState.NOT_SYNCHRONIZING)
    targets = {
        "SQL2": SynchronizationState.SYNCHRONIZED,
        "SQL3": SynchronizationState.SYNCHRONIZED,
    }

    with ReplicaConnections(cluster.connect) as replicas:
        with pytest.raises(AgJoinError) as exc_info:
            wait_for_synchronization(
                cluster.primary,
                replicas,
                _request(SeedingMode.MANUAL, ("SQL2", "SQL3")),
                targets,
                FAST,
            )

    err = exc_info.value
    assert err.kind == AgErrorKind.SYNC_TIMEOUT
    assert "SQL3" in err.message
    assert "NotSynchronizing" in err.message
    assert "SQL2 (" not in err.message


def test_seeding_failure_aborts_immediately():
    cluster = FakeCluster()
    _set_state(cluster, "SQL2", SynchronizationState.NOT_SYNCHRONIZING, joined=False)
    cluster.primary.seeding[("DB1", "SQL2")] = SeedingStats(
        transferred_bytes=10, total_bytes=100, failure_message="disk full"
    )
    slow = replace(FAST, sync_timeout=3600)

    with ReplicaConnections(cluster.connect) as replicas:
        with pytest.raises(AgJoinError) as exc_info:
            wait_for_synchronization(
                cluster.primary,
                replicas,
                _request(),
                {"SQL2": SynchronizationState.SYNCHRONIZING},
                slow,
            )

    assert exc_info.value.kind == AgErrorKind.SEEDING_FAILED
    assert exc_info.value.replica == "SQL2"
    assert "disk full" in exc_info.value.message


def test_seeding_failure_detected_even_without_reporting():
    cluster = FakeCluster()
    cluster.primary.seeding[("DB1", "SQL2")] = SeedingStats(failure_message="timeout")
    quiet = replace(FAST, report_seeding=False, sync_timeout=3600)
    seen = []

    with ReplicaConnections(cluster.connect) as replicas:
        with pytest.raises(AgJoinError) as exc_info:
            wait_for_synchronization(
                cluster.primary,
                replicas,
                _request(),
                {"SQL2": SynchronizationState.SYNCHRONIZING},
                quiet,
                on_progress=seen.append,
            )

    assert exc_info.value.kind == AgErrorKind.SEEDING_FAILED
    assert seen == []


def test_progress_is_reported_while_seeding():
    cluster = FakeCluster()
    stats = SeedingStats(
        transferred_bytes=25,
        total_bytes=100,
        estimated_completion=datetime(2030, 1, 1),
    )
    cluster.primary.seeding[("DB1", "SQL2")] = stats
    seen = []

    with ReplicaConnections(cluster.connect) as replicas:
        with pytest.raises(AgJoinError):
            wait_for_synchronization(
                cluster.primary,
                replicas,
                _request(),
                {"SQL2": SynchronizationState.SYNCHRONIZING},
                FAST,
                on_progress=seen.append,
            )

    assert len(seen) == 1
    assert seen[0].replica == "SQL2"
    assert seen[0].stats.percent_complete == 25.0


def test_manual_replicas_do_not_query_seeding_stats():
    cluster = FakeCluster()
    cluster.primary.seeding[("DB1", "SQL2")] = SeedingStats(failure_message="stale")

    with ReplicaConnections(cluster.connect) as replicas:
        with pytest.raises(AgJoinError) as exc_info:
            wait_for_synchronization(
                cluster.primary,
                replicas,
                _request(SeedingMode.MANUAL),
                {"SQL2": SynchronizationState.SYNCHRONIZING},
                FAST,
            )

    assert exc_info.value.kind == AgErrorKind.SYNC_TIMEOUT


@pytest.mark.parametrize(
    ("server", "read"),
    [("SQL2", "get_availability_database"), ("SQL1", "get_seeding_stats")],
)
def test_driver_error_becomes_query_failed_for_the_database(server, read):
    cluster = FakeCluster()
    _set_state(cluster, "SQL2", SynchronizationState.NOT_SYNCHRONIZING, joined=False)
    cluster[server].failing_reads.add((read, "DB1"))

    with ReplicaConnections(cluster.connect) as replicas:
        with pytest.raises(AgJoinError) as exc_info:
            wait_for_synchronization(
                cluster.primary,
                replicas,
                _request(),
                {"SQL2": SynchronizationState.SYNCHRONIZING},
                FAST,
            )

    err = exc_info.value
    assert (err.kind, err.database, err.replica) == (AgErrorKind.QUERY_FAILED, "DB1", "SQL2")
    assert read in err.message
    assert not err.is_fatal
