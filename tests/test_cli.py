import pytest
from fakes import FakeCluster
from typer.testing import CliRunner

from sqlops.cli.cli import app
from sqlops.core.models import ConnectionState

runner = CliRunner()


@pytest.fixture
def cluster(monkeypatch: pytest.MonkeyPatch) -> FakeCluster:
    cluster = FakeCluster()
    cluster.add_database("DB1")
    monkeypatch.setattr(
        "sqlops.cli.common.context.connect",
        lambda name, credential=None: cluster.connect(name),
    )
    monkeypatch.setattr("sqlops.cli.commands.ag.configure_logging", lambda verbose: None)
    return cluster


def test_ag_test_reports_healthy_group(cluster: FakeCluster):
    result = runner.invoke(app, ["ag", "--sql-instance", "SQL1", "test", "-a", "AG1"])

    assert result.exit_code == 0, result.output
    assert "SQL2" in result.output
    assert cluster.primary.closed


def test_ag_test_fails_on_secondary(cluster: FakeCluster):
    result = runner.invoke(app, ["ag", "--sql-instance", "SQL2", "test", "-a", "AG1"])

    assert result.exit_code == 1
    assert "WrongReplica" in result.output
    assert "--sql-instance set to the primary replica" in result.output


def test_ag_test_with_database_reports_prerequisites(cluster: FakeCluster):
    result = runner.invoke(
        app, ["ag", "--sql-instance", "SQL1", "test", "-a", "AG1", "-d", "DB1"]
    )

    assert result.exit_code == 1
    assert "Cannot add: DB1" in result.output
    assert cluster.primary.mutations == []


def test_ag_add_database(cluster: FakeCluster):
    result = runner.invoke(
        app,
        [
            "ag",
            "--sql-instance",
            "SQL1",
            "add-database",
            "-a",
            "AG1",
            "-d",
            "DB1",
            "--shared-path",
            "\\\\share\\backups",
            "--no-confirm",
            "--no-progress",
            "--existing-timeout",
            "0",
            "--sync-timeout",
            "0",
        ],
    )

    assert result.exit_code == 0, result.output
    assert cluster.members == ["DB1"]
    assert cluster["SQL2"].closed


def test_ag_requires_sql_instance(cluster: FakeCluster, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("SQLOPS_SQL_INSTANCE", raising=False)
    result = runner.invoke(app, ["ag", "test", "-a", "AG1"])

    assert result.exit_code == 2
    assert cluster.connects == []


def _add_args(*databases: str) -> list[str]:
    args = ["ag", "--sql-instance", "SQL1", "add-database", "-a", "AG1"]
    for name in databases:
        args += ["-d", name]
    return args + [
        "--shared-path",
        "\\\\share\\backups",
        "--no-confirm",
        "--no-progress",
        "--existing-timeout",
        "0",
        "--sync-timeout",
        "0",
    ]


def test_ag_add_database_stopped_mid_batch_still_shows_results(cluster: FakeCluster):
    cluster.add_database("DB2")
    added = cluster.on_database_added

    def add_then_disconnect(database):
        added(database)
        cluster.update_replica("SQL2", connection_state=ConnectionState.DISCONNECTED)

    cluster.on_database_added = add_then_disconnect

    result = runner.invoke(app, _add_args("DB1", "DB2"))

    assert result.exit_code == 1
    assert "Availability databases" in result.output
    assert "ReplicaUnreachable" in result.output
    assert "Stopped at DB2" in result.output
    assert cluster.members == ["DB1"]


def test_ag_add_database_reports_failed_databases(cluster: FakeCluster):
    cluster["SQL2"].failing.add("restore_database")

    result = runner.invoke(app, _add_args("DB1"))

    assert result.exit_code == 1
    assert "Failed: DB1" in result.output
