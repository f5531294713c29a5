from datetime import datetime

from sqlops.cli.tui import (
    _MAX_DB_NAME_WIDTH,
    _database_choice_title,
    _truncate,
    eligible_databases,
)
from sqlops.core.models import DatabaseInfo, DatabaseStatus, RecoveryModel


def _db(name: str, **kwargs) -> DatabaseInfo:
    kwargs.setdefault("recovery_model", RecoveryModel.FULL)
    kwargs.setdefault("status", DatabaseStatus.NORMAL)
    return DatabaseInfo(name=name, **kwargs)


def test_database_choice_title_aligns_last_backup_column():
    first = _database_choice_title(
        _db("alpha", last_backup_date=datetime(2024, 5, 1, 8, 30)), name_width=12
    )
    second = _database_choice_title(_db("beta"), name_width=12)

    assert first.startswith("alpha")
    assert first.endswith("(last full: 2024-05-01 08:30)")
    assert second.endswith("(last full: never)")
    assert first.index("(last full: ") == second.index("(last full: ")


def test_database_choice_title_truncates_long_names():
    long_name = "x" * (_MAX_DB_NAME_WIDTH + 10)
    rendered = _database_choice_title(_db(long_name), name_width=_MAX_DB_NAME_WIDTH)

    assert "..." in rendered
    assert _truncate(long_name, _MAX_DB_NAME_WIDTH).endswith("...")


def test_eligible_databases_filters_candidates():
    dbs = [
        _db("ok"),
        _db("simple", recovery_model=RecoveryModel.SIMPLE),
        _db("offline", status=DatabaseStatus.OFFLINE),
        _db("member", availability_group="AG1"),
    ]
    assert [d.name for d in eligible_databases(dbs)] == ["ok"]
