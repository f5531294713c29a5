"""Ownership of the secondary replica connections of one invocation."""

from __future__ import annotations

import logging
from typing import Callable

from sqlops.core.errors import AgErrorKind, AgJoinError
from sqlops.core.models import AgServer

logger = logging.getLogger(__name__)

ConnectFn = Callable[[str], AgServer]


class ReplicaConnections:
    """
    Map of replica name -> open connection, owned by one invocation.

    Connections are opened on first use and reused by every phase and every
    database of the invocation. A replica that failed to connect is not
    retried; the same failure is returned again. All connections are closed
    by `close()` (or on leaving the `with` block).
    """

    def __init__(self, connect: ConnectFn) -> None:
        self._connect = connect
        self._open: dict[str, AgServer] = {}
        self._failed: dict[str, AgJoinError] = {}

    def get(self, replica: str) -> AgServer:
        """
        Return the connection for a replica, opening it if needed.

        Raises:
            AgJoinError: With kind REPLICA_UNREACHABLE if connecting failed.
        """
        key = replica.lower()
        if key in self._open:
            return self._open[key]
        if key in self._failed:
            raise self._failed[key]
        try:
            server = self._connect(replica)
        except AgJoinError as exc:
            err = AgJoinError(
                AgErrorKind.REPLICA_UNREACHABLE,
                f"Cannot connect to replica {replica}: {exc.message}",
                replica=replica,
            )
            self._failed[key] = err
            raise err from exc
        self._open[key] = server
        return server

    def close(self) -> None:
        """Close every connection opened through this map."""
        for name, server in list(self._open.items()):
            try:
                server.close()
            except Exception:  # noqa: BLE001
                logger.debug("Failed to close connection to %s", name, exc_info=True)
        self._open.clear()
        self._failed.clear()

    def __enter__(self) -> ReplicaConnections:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
