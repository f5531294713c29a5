"""Connection helpers for SQL Server.

This module centralizes creation of administrative pyodbc connections and
applies small normalization rules to instance names so the same replica is
always addressed the same way.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

import pyodbc

from sqlops.core.adapters.sqlserver import SqlServerAdapter
from sqlops.core.errors import AgErrorKind, AgJoinError

logger = logging.getLogger(__name__)

_DRIVER_ENV = "SQLOPS_ODBC_DRIVER"
_TRUST_CERT_ENV = "SQLOPS_TRUST_SERVER_CERTIFICATE"
_DEFAULT_DRIVER = "ODBC Driver 18 for SQL Server"
_LOGIN_TIMEOUT_SECONDS = 15

# SQL Server 2012 introduced Availability Groups.
MIN_AG_VERSION = 11


@dataclass(frozen=True)
class SqlCredential:
    """SQL authentication login. Without one, Windows authentication is used."""

    user: str
    password: str


def normalize_instance(sql_instance: str) -> str:
    """
    Normalize a SQL Server instance name.

    - Strips surrounding whitespace and a `tcp:` prefix
    - Turns `host:port` into the ODBC `host,port` form
    - Drops a trailing `\\MSSQLSERVER` (the default instance)
    """
    name = sql_instance.strip()
    if name.lower().startswith("tcp:"):
        name = name[4:]
    if ":" in name and "," not in name and "\\" not in name:
        host, port = name.rsplit(":", 1)
        if port.isdigit():
            name = f"{host},{port}"
    if name.upper().endswith("\\MSSQLSERVER"):
        name = name[: -len("\\MSSQLSERVER")]
    return name


def build_connection_string(
    sql_instance: str, credential: SqlCredential | None = None
) -> str:
    """Return the ODBC connection string for an administrative connection."""
    driver = os.getenv(_DRIVER_ENV) or _DEFAULT_DRIVER
    trust = os.getenv(_TRUST_CERT_ENV, "yes").strip().lower() in {"1", "true", "yes"}
    parts = [
        f"DRIVER={{{driver}}}",
        f"SERVER={normalize_instance(sql_instance)}",
        "DATABASE=master",
        "APP=sqlops",
    ]
    if credential:
        parts.append(f"UID={credential.user}")
        parts.append("PWD={" + credential.password.replace("}", "}}") + "}")
    else:
        parts.append("Trusted_Connection=yes")
    if trust:
        parts.append("TrustServerCertificate=yes")
    return ";".join(parts) + ";"


def connect(
    sql_instance: str,
    credential: SqlCredential | None = None,
    *,
    min_version: int = MIN_AG_VERSION,
) -> SqlServerAdapter:
    """
    Open an administrative connection to a SQL Server instance.

    Args:
        sql_instance: Instance name (`host`, `host\\instance` or `host,port`).
        credential: Optional SQL login; Windows authentication otherwise.
        min_version: Minimum supported major version.

    Returns:
        A connected SqlServerAdapter. The caller owns it and must close it.

    Raises:
        AgJoinError: With kind CONNECTION_FAILED if the instance is unreachable,
            its server properties cannot be read, or it is older than
            `min_version`.
    """
    name = normalize_instance(sql_instance)
    logger.debug("Connecting to %s", name)
    try:
        conn = pyodbc.connect(
            build_connection_string(name, credential),
            autocommit=True,
            timeout=_LOGIN_TIMEOUT_SECONDS,
        )
    except pyodbc.Error as exc:
        raise AgJoinError(
            AgErrorKind.CONNECTION_FAILED,
            f"Failure connecting to {name}: {exc}",
        ) from exc

    try:
        adapter = SqlServerAdapter(conn, sql_instance=name)
    except pyodbc.Error as exc:
        try:
            conn.close()
        except pyodbc.Error:
            logger.debug("Ignoring error while closing %s", name, exc_info=True)
        raise AgJoinError(
            AgErrorKind.CONNECTION_FAILED,
            f"Failure reading server properties of {name}: {exc}",
        ) from exc

    if adapter.version_major < min_version:
        adapter.close()
        raise AgJoinError(
            AgErrorKind.CONNECTION_FAILED,
            f"{name} runs SQL Server major version {adapter.version_major}; "
            f"version {min_version} or later is required.",
        )
    return adapter
