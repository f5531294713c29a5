from __future__ import annotations

import logging
import ntpath
from datetime import datetime
from enum import Enum
from typing import TypeVar

import pyodbc

from sqlops.core.models import (
    AgDatabaseState,
    AvailabilityDatabaseInfo,
    AvailabilityGroupInfo,
    AvailabilityMode,
    BackupRecord,
    BackupType,
    ConnectionState,
    DatabaseInfo,
    DatabaseStatus,
    RecoveryModel,
    ReplicaInfo,
    ReplicaRole,
    SeedingMode,
    SeedingStats,
    SynchronizationState,
)

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Enum)

_BACKUP_TYPE_CODES = {
    "D": BackupType.FULL,
    "I": BackupType.DIFFERENTIAL,
    "L": BackupType.LOG,
}

_BACKUP_EXTENSIONS = {
    BackupType.FULL: "bak",
    BackupType.DIFFERENTIAL: "dif",
    BackupType.LOG: "trn",
}

_SERVER_QUERY = """
SELECT
    CAST(SERVERPROPERTY('ProductVersion') AS nvarchar(128)),
    CAST(SERVERPROPERTY('MachineName') AS nvarchar(128)),
    CAST(SERVERPROPERTY('InstanceName') AS nvarchar(128))
"""

_AG_QUERY = """
SELECT ag.group_id, ag.name, ars.role_desc, ags.primary_replica
FROM sys.availability_groups AS ag
LEFT JOIN sys.dm_hadr_availability_group_states AS ags
    ON ags.group_id = ag.group_id
LEFT JOIN sys.dm_hadr_availability_replica_states AS ars
    ON ars.group_id = ag.group_id AND ars.is_local = 1
WHERE ag.name = ?
"""

_REPLICAS_QUERY = """
SELECT ar.replica_server_name, ars.role_desc, ars.connected_state_desc,
       ar.availability_mode_desc, {seeding_column}
FROM sys.availability_replicas AS ar
LEFT JOIN sys.dm_hadr_availability_replica_states AS ars
    ON ars.replica_id = ar.replica_id
WHERE ar.group_id = ?
ORDER BY ar.replica_server_name
"""

_AG_DATABASES_QUERY = """
SELECT database_name
FROM sys.availability_databases_cluster
WHERE group_id = ?
ORDER BY database_name
"""

_DATABASE_QUERY = """
SELECT d.name, d.recovery_model_desc, d.state_desc,
       (SELECT MAX(b.backup_finish_date)
          FROM msdb.dbo.backupset AS b
         WHERE b.database_name = d.name AND b.type = 'D') AS last_backup_date,
       ag.name
FROM sys.databases AS d
LEFT JOIN sys.dm_hadr_database_replica_states AS drs
    ON drs.database_id = d.database_id AND drs.is_local = 1
LEFT JOIN sys.availability_groups AS ag
    ON ag.group_id = drs.group_id
"""

_BACKUP_HISTORY_QUERY = """
SELECT b.type, mf.physical_device_name, b.backup_finish_date
FROM msdb.dbo.backupset AS b
JOIN msdb.dbo.backupmediafamily AS mf
    ON mf.media_set_id = b.media_set_id
WHERE b.database_name = ?
  AND b.is_copy_only = 0
  AND b.backup_finish_date >= (
        SELECT MAX(f.backup_finish_date)
          FROM msdb.dbo.backupset AS f
         WHERE f.database_name = ? AND f.type = 'D' AND f.is_copy_only = 0)
ORDER BY b.backup_finish_date, b.backup_set_id
"""

_AG_DATABASE_QUERY = """
SELECT adc.database_name,
       drcs.is_database_joined,
       drs.synchronization_state_desc
FROM sys.availability_databases_cluster AS adc
JOIN sys.availability_groups AS ag
    ON ag.group_id = adc.group_id
LEFT JOIN sys.dm_hadr_availability_replica_states AS ars
    ON ars.group_id = ag.group_id AND ars.is_local = 1
LEFT JOIN sys.dm_hadr_database_replica_cluster_states AS drcs
    ON drcs.group_database_id = adc.group_database_id
   AND drcs.replica_id = ars.replica_id
LEFT JOIN sys.dm_hadr_database_replica_states AS drs
    ON drs.group_database_id = adc.group_database_id AND drs.is_local = 1
WHERE ag.name = ? AND adc.database_name = ?
"""

_SEEDING_STATS_QUERY = """
SELECT TOP (1) transferred_size_bytes, database_size_bytes,
       estimate_time_complete_utc, failure_message
FROM sys.dm_hadr_physical_seeding_stats
WHERE local_database_name = ? AND remote_machine_name = ?
ORDER BY start_time_utc DESC
"""


def quote_name(name: str) -> str:
    """Quote a SQL Server identifier (QUOTENAME semantics)."""
    return "[" + name.replace("]", "]]") + "]"


def quote_literal(value: str) -> str:
    """Quote a Unicode string literal for DDL that cannot take parameters."""
    return "N'" + value.replace("'", "''") + "'"


def enum_from_desc(enum_cls: type[E], desc: str | None, default: E) -> E:
    """
    Map a catalog-view `*_desc` value onto an enum member.

    Comparison ignores case, spaces and underscores, so that
    `ASYNCHRONOUS_COMMIT` maps to `AsynchronousCommit` and
    `NOT SYNCHRONIZING` maps to `NotSynchronizing`.
    """
    if not desc:
        return default
    key = desc.replace("_", "").replace(" ", "").lower()
    for member in enum_cls:
        if str(member.value).lower() == key:
            return member
    return default


def _database_status(state_desc: str | None) -> DatabaseStatus:
    if (state_desc or "").upper() == "ONLINE":
        return DatabaseStatus.NORMAL
    return enum_from_desc(DatabaseStatus, state_desc, DatabaseStatus.UNKNOWN)


def _major_version(product_version: str | None) -> int:
    try:
        return int((product_version or "0").split(".", 1)[0])
    except ValueError:
        return 0


class SqlServerAdapter:
    """Adapter around one pyodbc connection to a SQL Server instance."""

    def __init__(self, conn: pyodbc.Connection, sql_instance: str) -> None:
        self.conn = conn
        self.sql_instance = sql_instance
        row = self._fetchone(_SERVER_QUERY)
        self.version_major = _major_version(row[0] if row else None)
        self.computer_name = (row[1] if row else None) or sql_instance.split("\\")[0]
        self.instance_name = (row[2] if row else None) or "MSSQLSERVER"

    def _fetchone(self, sql: str, *params):
        cursor = self.conn.cursor()
        try:
            cursor.execute(sql, *params)
            return cursor.fetchone()
        finally:
            cursor.close()

    def _fetchall(self, sql: str, *params) -> list:
        cursor = self.conn.cursor()
        try:
            cursor.execute(sql, *params)
            return cursor.fetchall()
        finally:
            cursor.close()

    def _execute(self, sql: str, *params) -> None:
        """Run a statement and drain every result set / info message."""
        logger.debug("%s: %s", self.sql_instance, " ".join(sql.split()))
        cursor = self.conn.cursor()
        try:
            cursor.execute(sql, *params)
            while cursor.nextset():
                pass
        finally:
            cursor.close()

    def get_availability_group(self, name: str) -> AvailabilityGroupInfo | None:
        """Return the AG snapshot as seen from this instance."""
        row = self._fetchone(_AG_QUERY, name)
        if not row:
            return None
        group_id, ag_name, local_role, primary_replica = row

        # seeding_mode_desc only exists from SQL Server 2016 on
        seeding_column = (
            "ar.seeding_mode_desc" if self.version_major >= 13 else "'MANUAL'"
        )
        replicas = tuple(
            ReplicaInfo(
                name=r[0],
                role=enum_from_desc(ReplicaRole, r[1], ReplicaRole.UNKNOWN),
                connection_state=enum_from_desc(
                    ConnectionState, r[2], ConnectionState.UNKNOWN
                ),
                availability_mode=enum_from_desc(
                    AvailabilityMode, r[3], AvailabilityMode.UNKNOWN
                ),
                seeding_mode=enum_from_desc(SeedingMode, r[4], SeedingMode.MANUAL),
            )
            for r in self._fetchall(
                _REPLICAS_QUERY.format(seeding_column=seeding_column), group_id
            )
        )
        databases = tuple(r[0] for r in self._fetchall(_AG_DATABASES_QUERY, group_id))
        return AvailabilityGroupInfo(
            name=ag_name,
            local_replica_role=enum_from_desc(ReplicaRole, local_role, ReplicaRole.UNKNOWN),
            primary_replica=primary_replica,
            replicas=replicas,
            database_names=databases,
        )

    def _database_from_row(self, row) -> DatabaseInfo:
        return DatabaseInfo(
            name=row[0],
            recovery_model=enum_from_desc(RecoveryModel, row[1], RecoveryModel.SIMPLE),
            status=_database_status(row[2]),
            last_backup_date=row[3],
            availability_group=row[4],
        )

    def get_database(self, name: str) -> DatabaseInfo | None:
        row = self._fetchone(_DATABASE_QUERY + " WHERE d.name = ?", name)
        return self._database_from_row(row) if row else None

    def list_databases(self) -> list[DatabaseInfo]:
        """Return user databases (system databases excluded)."""
        rows = self._fetchall(
            _DATABASE_QUERY + " WHERE d.database_id > 4 ORDER BY d.name"
        )
        return [self._database_from_row(r) for r in rows]

    def get_backup_history(self, database: str) -> list[BackupRecord]:
        """Return the last full backup and every backup taken after it."""
        rows = self._fetchall(_BACKUP_HISTORY_QUERY, database, database)
        out: list[BackupRecord] = []
        for code, path, finished in rows:
            backup_type = _BACKUP_TYPE_CODES.get((code or "").upper())
            if backup_type is None or not path:
                continue
            out.append(
                BackupRecord(
                    database=database,
                    backup_type=backup_type,
                    path=path,
                    finish_date=finished,
                )
            )
        return out

    def set_seeding_mode(self, ag: str, replica: str, mode: SeedingMode) -> None:
        self._execute(
            f"ALTER AVAILABILITY GROUP {quote_name(ag)} "
            f"MODIFY REPLICA ON {quote_literal(replica)} "
            f"WITH (SEEDING_MODE = {mode.value.upper()})"
        )

    def grant_create_any_database(self, ag: str) -> None:
        self._execute(
            f"ALTER AVAILABILITY GROUP {quote_name(ag)} GRANT CREATE ANY DATABASE"
        )

    def add_availability_database(self, ag: str, database: str) -> None:
        self._execute(
            f"ALTER AVAILABILITY GROUP {quote_name(ag)} ADD DATABASE {quote_name(database)}"
        )

    def join_availability_database(self, ag: str, database: str) -> None:
        self._execute(
            f"ALTER DATABASE {quote_name(database)} "
            f"SET HADR AVAILABILITY GROUP = {quote_name(ag)}"
        )

    def get_availability_database(
        self, ag: str, database: str
    ) -> AvailabilityDatabaseInfo | None:
        row = self._fetchone(_AG_DATABASE_QUERY, ag, database)
        if not row:
            return None
        return AvailabilityDatabaseInfo(
            name=row[0],
            state=AgDatabaseState.EXISTING,
            is_joined=bool(row[1]),
            synchronization_state=enum_from_desc(
                SynchronizationState,
                row[2],
                SynchronizationState.NOT_SYNCHRONIZING,
            ),
        )

    def get_seeding_stats(self, database: str, remote_machine: str) -> SeedingStats | None:
        row = self._fetchone(_SEEDING_STATS_QUERY, database, remote_machine)
        if not row:
            return None
        return SeedingStats(
            transferred_bytes=int(row[0] or 0),
            total_bytes=int(row[1] or 0),
            estimated_completion=row[2],
            failure_message=row[3] or None,
        )

    def backup_database(
        self, database: str, backup_type: BackupType, directory: str
    ) -> BackupRecord:
        """Take a full or log backup into `directory` (as seen by this instance)."""
        stamp = datetime.now().strftime("%Y%m%d%H%M%S")
        file_name = f"{database}_{backup_type.value.lower()}_{stamp}.{_BACKUP_EXTENSIONS[backup_type]}"
        path = ntpath.join(directory, file_name)
        if backup_type == BackupType.LOG:
            statement = "BACKUP LOG"
            options = "INIT, CHECKSUM"
        elif backup_type == BackupType.DIFFERENTIAL:
            statement = "BACKUP DATABASE"
            options = "INIT, CHECKSUM, DIFFERENTIAL"
        else:
            statement = "BACKUP DATABASE"
            options = "INIT, CHECKSUM"
        self._execute(
            "DECLARE @path nvarchar(4000) = ?; "
            f"{statement} {quote_name(database)} TO DISK = @path WITH {options}",
            path,
        )
        return BackupRecord(
            database=database,
            backup_type=backup_type,
            path=path,
            finish_date=datetime.now(),
        )

    def restore_database(
        self, database: str, backups: list[BackupRecord], *, no_recovery: bool = True
    ) -> None:
        """Restore backups in order; the first one replaces any existing copy."""
        recovery = "NORECOVERY" if no_recovery else "RECOVERY"
        for i, backup in enumerate(backups):
            statement = "RESTORE LOG" if backup.backup_type == BackupType.LOG else "RESTORE DATABASE"
            options = recovery if i else f"{recovery}, REPLACE"
            self._execute(
                "DECLARE @path nvarchar(4000) = ?; "
                f"{statement} {quote_name(database)} FROM DISK = @path WITH {options}",
                backup.path,
            )

    def close(self) -> None:
        try:
            self.conn.close()
        except pyodbc.Error:
            logger.debug("Ignoring error while closing %s", self.sql_instance)
