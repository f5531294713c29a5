"""Terminal UI utilities for SQL Server operations tooling."""

from __future__ import annotations

import questionary

from sqlops.cli.common.output import out
from sqlops.core.models import DatabaseInfo, DatabaseStatus, RecoveryModel

_MAX_DB_NAME_WIDTH = 96


def _truncate(text: str, max_len: int) -> str:
    """Return text capped at max_len characters using an ASCII ellipsis."""
    if max_len <= 3 or len(text) <= max_len:
        return text[:max_len]
    return f"{text[: max_len - 3]}..."


def eligible_databases(databases: list[DatabaseInfo]) -> list[DatabaseInfo]:
    """Keep databases that could join an AG: full recovery, online, not in an AG."""
    return [
        db
        for db in databases
        if db.recovery_model == RecoveryModel.FULL
        and db.status == DatabaseStatus.NORMAL
        and not db.availability_group
    ]


def _database_choice_title(db: DatabaseInfo, *, name_width: int) -> str:
    """Format one database choice as `<name>  (last full: <date>)` with aligned column."""
    short_name = _truncate(db.name, _MAX_DB_NAME_WIDTH)
    last = db.last_backup_date.strftime("%Y-%m-%d %H:%M") if db.last_backup_date else "never"
    return f"{short_name.ljust(name_width)}  (last full: {last})"


def select_databases(databases: list[DatabaseInfo]) -> list[str]:
    """Display a checkbox prompt to select databases from a list.

    Args:
        databases: Candidate databases.

    Returns:
        Names of the selected databases, or an empty list if none selected.
    """
    shown_names = [_truncate(db.name, _MAX_DB_NAME_WIDTH) for db in databases]
    name_width = max((len(name) for name in shown_names), default=0)

    choices = [
        questionary.Choice(
            title=_database_choice_title(db, name_width=name_width),
            value=db.name,
        )
        for db in databases
    ]

    return out.select_many("Select databases:", choices)
