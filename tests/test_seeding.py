from fakes import FakeCluster

from sqlops.core.errors import AgErrorKind
from sqlops.core.models import DatabaseJoinRequest, SeedingMode
from sqlops.core.replicas import ReplicaConnections
from sqlops.core.seeding import reconcile_seeding_modes


def _request(mode, secondaries=("SQL2", "SQL3")) -> DatabaseJoinRequest:
    return DatabaseJoinRequest(
        availability_group="AG1",
        database="DB1",
        seeding_mode=mode,
        secondaries=secondaries,
    )


def test_no_requested_mode_changes_nothing():
    cluster = FakeCluster(secondaries=("SQL2", "SQL3"))
    with ReplicaConnections(cluster.connect) as replicas:
        failures = reconcile_seeding_modes(cluster.primary, replicas, _request(None))
    assert failures == []
    assert cluster.primary.mutations == []
    assert cluster.connects == []


def test_automatic_alters_mismatched_replicas_and_grants():
    cluster = FakeCluster(secondaries=("SQL2", "SQL3"))
    cluster.update_replica("SQL3", seeding_mode=SeedingMode.AUTOMATIC)

    with ReplicaConnections(cluster.connect) as replicas:
        failures = reconcile_seeding_modes(
            cluster.primary, replicas, _request(SeedingMode.AUTOMATIC)
        )

    assert failures == []
    assert cluster.primary.mutations == [
        ("set_seeding_mode", "SQL2", SeedingMode.AUTOMATIC)
    ]
    assert cluster["SQL2"].mutations == [("grant_create_any_database", "AG1")]
    assert cluster["SQL3"].mutations == []


def test_second_run_issues_no_alter():
    cluster = FakeCluster(secondaries=("SQL2", "SQL3"))
    with ReplicaConnections(cluster.connect) as replicas:
        reconcile_seeding_modes(cluster.primary, replicas, _request(SeedingMode.AUTOMATIC))
        cluster.primary.mutations.clear()
        reconcile_seeding_modes(cluster.primary, replicas, _request(SeedingMode.AUTOMATIC))

    assert cluster.primary.mutations == []
    assert cluster.replicas["SQL2"].seeding_mode == SeedingMode.AUTOMATIC


def test_manual_does_not_grant():
    cluster = FakeCluster(seeding_mode=SeedingMode.AUTOMATIC)
    with ReplicaConnections(cluster.connect) as replicas:
        reconcile_seeding_modes(
            cluster.primary, replicas, _request(SeedingMode.MANUAL, ("SQL2",))
        )
    assert cluster.primary.mutations == [("set_seeding_mode", "SQL2", SeedingMode.MANUAL)]
    assert cluster.connects == []


def test_failing_replica_does_not_stop_the_others():
    cluster = FakeCluster(secondaries=("SQL2", "SQL3"))
    cluster["SQL2"].failing.add("grant_create_any_database")

    with ReplicaConnections(cluster.connect) as replicas:
        failures = reconcile_seeding_modes(
            cluster.primary, replicas, _request(SeedingMode.AUTOMATIC)
        )

    assert [(f.kind, f.replica) for f in failures] == [
        (AgErrorKind.REPLICA_ALTER_FAILED, "SQL2")
    ]
    assert cluster["SQL3"].mutations == [("grant_create_any_database", "AG1")]
