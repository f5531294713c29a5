"""Application context management for the CLI."""

from __future__ import annotations

from dataclasses import dataclass, field

from sqlops.cli.common.exits import EXIT_USAGE, die, exit_from_error
from sqlops.core.auth import SqlCredential, connect
from sqlops.core.config import AgJoinConfig
from sqlops.core.errors import AgJoinError
from sqlops.core.models import AgServer


@dataclass
class AgAppContext:
    """
    Application context for Availability Group commands.

    The primary connection is opened on first use and closed by `close()`;
    secondary connections are opened and owned by the core workflow.
    """

    sql_instance: str | None
    credential: SqlCredential | None
    secondary_credential: SqlCredential | None
    config: AgJoinConfig
    _primary: AgServer | None = field(default=None, repr=False)

    @property
    def primary(self) -> AgServer:
        """Return the primary connection, connecting (or exiting) on first use."""
        if self._primary is None:
            if not self.sql_instance:
                die("Missing primary instance. Provide it via --sql-instance.", code=EXIT_USAGE)
            try:
                self._primary = connect(self.sql_instance, self.credential)
            except AgJoinError as exc:
                exit_from_error(exc)
        return self._primary

    def connect_secondary(self, replica: str) -> AgServer:
        """Connect factory handed to the workflow for secondary replicas."""
        return connect(replica, self.secondary_credential or self.credential)

    def close(self) -> None:
        if self._primary is not None:
            self._primary.close()
            self._primary = None


def _credential(user: str | None, password: str | None) -> SqlCredential | None:
    if not user:
        return None
    return SqlCredential(user=user, password=password or "")


def build_ag_context(
    sql_instance: str | None,
    *,
    sql_user: str | None = None,
    sql_password: str | None = None,
    secondary_user: str | None = None,
    secondary_password: str | None = None,
) -> AgAppContext:
    """Build the context for AG commands.

    Args:
        sql_instance: Instance expected to be the primary replica.
        sql_user: Optional SQL login for the primary.
        sql_password: Password of `sql_user`.
        secondary_user: Optional SQL login for the secondaries.
        secondary_password: Password of `secondary_user`.

    Returns:
        AgAppContext: Context with credentials and environment configuration.
    """
    return AgAppContext(
        sql_instance=sql_instance,
        credential=_credential(sql_user, sql_password),
        secondary_credential=_credential(secondary_user, secondary_password),
        config=AgJoinConfig.from_env(),
    )
