"""Backup and restore for secondaries that are seeded manually.

Only replicas marked as needing a restore are touched. The backups either
come from a fresh full + log backup taken on the primary into the shared
path, or from the existing chain in msdb history (use-last-backup). Every
restore runs WITH NORECOVERY so the copy can be joined afterwards.
"""

from __future__ import annotations

import logging

from sqlops.core.errors import AgErrorKind, AgJoinError
from sqlops.core.models import AgServer, BackupRecord, BackupType, DatabaseJoinRequest
from sqlops.core.replicas import ReplicaConnections

logger = logging.getLogger(__name__)


def take_seeding_backups(primary: AgServer, request: DatabaseJoinRequest) -> list[BackupRecord]:
    """
    Take one full and then one log backup of the database on the primary.

    The log backup runs after the full backup has finished, so together they
    form a restorable chain.

    Raises:
        AgJoinError: With kind BACKUP_FAILED.
    """
    if not request.shared_path:
        raise AgJoinError(
            AgErrorKind.MISSING_BACKUP_SOURCE,
            "No shared path to back up into.",
            database=request.database,
        )
    backups: list[BackupRecord] = []
    for backup_type in (BackupType.FULL, BackupType.LOG):
        logger.info(
            "%s: taking %s backup into %s",
            request.database,
            backup_type.value.lower(),
            request.shared_path,
        )
        try:
            backups.append(
                primary.backup_database(request.database, backup_type, request.shared_path)
            )
        except Exception as exc:  # noqa: BLE001
            raise AgJoinError(
                AgErrorKind.BACKUP_FAILED,
                f"{backup_type.value} backup of {request.database} on "
                f"{primary.sql_instance} failed: {exc}",
                database=request.database,
            ) from exc
    return backups


def restore_to_replicas(
    primary: AgServer,
    replicas: ReplicaConnections,
    request: DatabaseJoinRequest,
) -> list[AgJoinError]:
    """
    Prime every replica that needs a manual restore.

    Uses the backups found by the prerequisite check (use-last-backup), or
    takes new ones into the shared path. Each replica restores with
    NORECOVERY; a failure on one replica does not stop the others.

    Returns:
        BACKUP_FAILED (alone) or one RESTORE_FAILED per failing replica.
    """
    targets = request.replicas_needing_restore
    if not targets:
        return []

    backups = list(request.backups)
    if not backups:
        try:
            backups = take_seeding_backups(primary, request)
        except AgJoinError as exc:
            return [exc]

    failures: list[AgJoinError] = []
    for name in targets:
        logger.info("%s: restoring %s with NORECOVERY", name, request.database)
        try:
            replicas.get(name).restore_database(request.database, backups, no_recovery=True)
        except Exception as exc:  # noqa: BLE001
            logger.warning("%s: restore of %s failed: %s", name, request.database, exc)
            failures.append(
                AgJoinError(
                    AgErrorKind.RESTORE_FAILED,
                    f"Restoring {request.database} on {name} failed: {exc}",
                    database=request.database,
                    replica=name,
                )
            )
    return failures
