from datetime import datetime

import pytest
from fakes import FakeCluster

from sqlops.core.errors import AgErrorKind, AgJoinError
from sqlops.core.models import (
    BackupRecord,
    BackupType,
    ConnectionState,
    DatabaseInfo,
    DatabaseStatus,
    RecoveryModel,
    ReplicaRole,
    SeedingMode,
)
from sqlops.core.prerequisites import (
    check_availability_group,
    check_database,
    resolve_secondaries,
)
from sqlops.core.replicas import ReplicaConnections


def _check(cluster: FakeCluster, database: str = "DB1", **kwargs):
    ag = check_availability_group(
        cluster.primary, cluster.ag_name, seeding_mode=kwargs.get("seeding_mode")
    )
    with ReplicaConnections(cluster.connect) as replicas:
        return check_database(cluster.primary, ag, database, replicas=replicas, **kwargs)


def _all_mutations(cluster: FakeCluster) -> list[tuple]:
    return [m for server in cluster.servers.values() for m in server.mutations]


def test_check_availability_group_not_found():
    cluster = FakeCluster()
    with pytest.raises(AgJoinError) as exc_info:
        check_availability_group(cluster.primary, "OTHER")
    assert exc_info.value.kind == AgErrorKind.NOT_FOUND
    assert exc_info.value.is_fatal


def test_check_availability_group_on_secondary_names_the_primary():
    cluster = FakeCluster()
    with pytest.raises(AgJoinError) as exc_info:
        check_availability_group(cluster["SQL2"], "AG1")
    assert exc_info.value.kind == AgErrorKind.WRONG_REPLICA
    assert "SQL1" in exc_info.value.message


def test_check_availability_group_requires_connected_replicas():
    cluster = FakeCluster(secondaries=("SQL2", "SQL3"))
    cluster.update_replica("SQL3", connection_state=ConnectionState.DISCONNECTED)
    with pytest.raises(AgJoinError) as exc_info:
        check_availability_group(cluster.primary, "AG1")
    assert exc_info.value.kind == AgErrorKind.REPLICA_UNREACHABLE
    assert "SQL3" in exc_info.value.message


def test_check_availability_group_automatic_seeding_needs_2016():
    cluster = FakeCluster(version_major=12)
    with pytest.raises(AgJoinError) as exc_info:
        check_availability_group(cluster.primary, "AG1", seeding_mode=SeedingMode.AUTOMATIC)
    assert exc_info.value.kind == AgErrorKind.UNSUPPORTED_FEATURE

    ag = check_availability_group(cluster.primary, "AG1", seeding_mode=SeedingMode.MANUAL)
    assert ag.local_replica_role == ReplicaRole.PRIMARY


def test_resolve_secondaries_defaults_to_all_non_primary_replicas():
    cluster = FakeCluster(secondaries=("SQL2", "SQL3"))
    names, failures = resolve_secondaries(cluster.snapshot("SQL1"))
    assert names == ["SQL2", "SQL3"]
    assert failures == []


def test_resolve_secondaries_reports_unknown_and_primary_names():
    cluster = FakeCluster(secondaries=("SQL2", "SQL3"))
    names, failures = resolve_secondaries(
        cluster.snapshot("SQL1"), ["sql3", "SQL9", "SQL1"]
    )
    assert names == ["SQL3"]
    assert [f.kind for f in failures] == [
        AgErrorKind.REPLICA_NOT_FOUND,
        AgErrorKind.WRONG_REPLICA,
    ]


def test_missing_backup_source_for_manual_seeding():
    cluster = FakeCluster()
    cluster.add_database("DB1", last_backup_date=None)

    result = _check(cluster)

    assert not result.ok
    assert result.failure_kinds == [AgErrorKind.MISSING_BACKUP_SOURCE]
    assert "SQL2" in result.failures[0].message
    assert _all_mutations(cluster) == []


def test_shared_path_makes_manual_seeding_pass():
    cluster = FakeCluster()
    cluster.add_database("DB1", last_backup_date=None)

    result = _check(cluster, shared_path="\\\\share\\backups")

    assert result.ok
    assert result.request.restore_needed == {"SQL2": True}
    assert result.request.seeding_modes == {"SQL2": SeedingMode.MANUAL}
    assert result.request.replicas_needing_restore == ["SQL2"]


def test_already_joined_stops_without_mutations():
    cluster = FakeCluster()
    cluster.add_database("DB1")
    cluster.members.append("DB1")

    result = _check(cluster, shared_path="\\\\share\\backups")

    assert result.failure_kinds == [AgErrorKind.ALREADY_JOINED]
    assert _all_mutations(cluster) == []


@pytest.mark.parametrize(
    ("recovery_model", "status", "kind"),
    [
        (RecoveryModel.SIMPLE, DatabaseStatus.NORMAL, AgErrorKind.INVALID_RECOVERY_MODEL),
        (RecoveryModel.BULK_LOGGED, DatabaseStatus.NORMAL, AgErrorKind.INVALID_RECOVERY_MODEL),
        (RecoveryModel.FULL, DatabaseStatus.OFFLINE, AgErrorKind.INVALID_DATABASE_STATE),
    ],
)
def test_database_checks_are_hard_stops(recovery_model, status, kind):
    cluster = FakeCluster()
    cluster.add_database("DB1", recovery_model=recovery_model, status=status)
    cluster.unreachable.add("SQL2")

    result = _check(cluster)

    assert result.failure_kinds == [kind]
    # hard stops come before any secondary is contacted
    assert cluster.connects == []


def test_database_not_found():
    cluster = FakeCluster()
    result = _check(cluster, database="NOPE")
    assert result.failure_kinds == [AgErrorKind.DATABASE_NOT_FOUND]
    assert result.request is None


def test_use_last_backup_requires_log_backup_last():
    cluster = FakeCluster()
    cluster.add_database("DB1")
    cluster.primary.history["DB1"] = [
        BackupRecord("DB1", BackupType.FULL, "X:\\DB1.bak"),
    ]

    result = _check(cluster, use_last_backup=True)

    assert result.failure_kinds == [AgErrorKind.INVALID_BACKUP_CHAIN]


def test_use_last_backup_carries_backup_chain():
    cluster = FakeCluster()
    cluster.add_database("DB1")
    chain = [
        BackupRecord("DB1", BackupType.FULL, "X:\\DB1.bak"),
        BackupRecord("DB1", BackupType.LOG, "X:\\DB1.trn"),
    ]
    cluster.primary.history["DB1"] = chain

    result = _check(cluster, use_last_backup=True)

    assert result.ok
    assert list(result.request.backups) == chain


def test_replica_database_conflict_when_not_restoring():
    cluster = FakeCluster()
    cluster.add_database("DB1")
    cluster["SQL2"].databases["DB1"] = DatabaseInfo(
        "DB1", RecoveryModel.FULL, DatabaseStatus.NORMAL
    )

    result = _check(cluster, shared_path="\\\\share\\backups")

    assert result.failure_kinds == [AgErrorKind.REPLICA_DATABASE_CONFLICT]
    assert result.failures[0].replica == "SQL2"


def test_restoring_copy_skips_restore():
    cluster = FakeCluster()
    cluster.add_database("DB1")
    cluster["SQL2"].databases["DB1"] = DatabaseInfo(
        "DB1", RecoveryModel.FULL, DatabaseStatus.RESTORING
    )

    result = _check(cluster)

    assert result.ok
    assert result.request.restore_needed == {"SQL2": False}


def test_restoring_copy_conflicts_with_use_last_backup():
    cluster = FakeCluster()
    cluster.add_database("DB1")
    cluster.primary.history["DB1"] = [
        BackupRecord("DB1", BackupType.FULL, "X:\\DB1.bak"),
        BackupRecord("DB1", BackupType.LOG, "X:\\DB1.trn"),
    ]
    cluster["SQL2"].databases["DB1"] = DatabaseInfo(
        "DB1", RecoveryModel.FULL, DatabaseStatus.RESTORING
    )

    result = _check(cluster, use_last_backup=True)

    assert result.failure_kinds == [AgErrorKind.CONFLICTING_RESTORE_SOURCE]


def test_automatic_seeding_needs_no_restore():
    cluster = FakeCluster(seeding_mode=SeedingMode.AUTOMATIC)
    cluster.add_database("DB1")

    result = _check(cluster)

    assert result.ok
    assert result.request.restore_needed == {"SQL2": False}
    assert result.request.seeding_modes == {"SQL2": SeedingMode.AUTOMATIC}


@pytest.mark.parametrize("last_backup_date", [None, datetime(1, 1, 1)])
def test_automatic_seeding_needs_a_prior_backup(last_backup_date):
    cluster = FakeCluster()
    cluster.add_database("DB1", last_backup_date=last_backup_date)

    result = _check(cluster, seeding_mode=SeedingMode.AUTOMATIC)

    assert result.failure_kinds == [AgErrorKind.NO_BACKUP_AVAILABLE_FOR_SEEDING]


def test_automatic_seeding_on_old_secondary_is_unsupported():
    cluster = FakeCluster(secondaries=("SQL2", "SQL3"))
    cluster["SQL3"].version_major = 12
    cluster.add_database("DB1")

    result = _check(cluster, seeding_mode=SeedingMode.AUTOMATIC)

    assert result.failure_kinds == [AgErrorKind.UNSUPPORTED_FEATURE]
    assert result.failures[0].replica == "SQL3"


def test_all_replica_failures_are_reported_in_one_pass():
    cluster = FakeCluster(secondaries=("SQL2", "SQL3", "SQL4"))
    cluster.add_database("DB1")
    cluster.unreachable.add("SQL2")
    cluster["SQL3"].has_ag = False

    result = _check(cluster, shared_path="\\\\share\\backups")

    assert sorted((f.replica, f.kind) for f in result.failures) == [
        ("SQL2", AgErrorKind.REPLICA_UNREACHABLE),
        ("SQL3", AgErrorKind.REPLICA_NOT_FOUND),
    ]
    assert all(f.database == "DB1" for f in result.failures)
    assert not result.ok


def test_check_is_repeatable_and_read_only():
    cluster = FakeCluster(secondaries=("SQL2", "SQL3"))
    cluster.add_database("DB1")
    cluster.update_replica("SQL3", seeding_mode=SeedingMode.AUTOMATIC)

    first = _check(cluster, shared_path="\\\\share\\backups")
    second = _check(cluster, shared_path="\\\\share\\backups")

    assert first.ok and second.ok
    assert first.request.restore_needed == {"SQL2": True, "SQL3": False}
    assert first.request == second.request
    assert _all_mutations(cluster) == []


def test_driver_error_on_one_replica_does_not_hide_the_others():
    cluster = FakeCluster(secondaries=("SQL2", "SQL3", "SQL4"))
    cluster.add_database("DB1")
    cluster["SQL3"].failing_reads.add("get_database")
    cluster["SQL4"].databases["DB1"] = DatabaseInfo(
        name="DB1", recovery_model=RecoveryModel.FULL, status=DatabaseStatus.NORMAL
    )

    result = _check(cluster, shared_path="\\\\share\\backups")

    assert [(f.replica, f.kind) for f in result.failures] == [
        ("SQL3", AgErrorKind.QUERY_FAILED),
        ("SQL4", AgErrorKind.REPLICA_DATABASE_CONFLICT),
    ]
    assert "get_database failed on SQL3" in result.failures[0].message
    assert result.failures[0].database == "DB1"
