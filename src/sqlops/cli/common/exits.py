"""Exit codes and exit helpers for the sqlops CLI.

Codes: 0 success, 1 any failure, 2 usage error, 130 interrupted or cancelled.
"""

from __future__ import annotations

from typing import NoReturn

import typer

from sqlops.cli.common.output import out
from sqlops.core.errors import AgErrorKind, AgJoinError
from sqlops.core.workflow import AddDatabaseReport

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130

_HINTS = {
    AgErrorKind.CONNECTION_FAILED: "Check the instance name, the credentials and SQLOPS_ODBC_DRIVER.",
    AgErrorKind.WRONG_REPLICA: "Run the command with --sql-instance set to the primary replica.",
    AgErrorKind.REPLICA_UNREACHABLE: "Run `sqlops ag test` to see the state of every replica.",
    AgErrorKind.UNSUPPORTED_FEATURE: "Use --seeding-mode Manual with --shared-path instead.",
}


def _code_for(exc: AgJoinError) -> int:
    return EXIT_INTERRUPTED if exc.kind == AgErrorKind.CANCELLED else EXIT_FAILED


def ok_exit(msg: str | None = None) -> NoReturn:
    """Exit successfully with an optional informational message."""
    if msg:
        out.info(msg)
    raise typer.Exit(EXIT_OK)


def die(msg: str, code: int = EXIT_FAILED) -> NoReturn:
    """Exit with an error message and optional exit code."""
    out.error(msg)
    raise typer.Exit(code)


def warn_exit(msg: str, code: int = EXIT_OK) -> NoReturn:
    """Exit with a warning message and optional exit code."""
    out.warn(msg)
    raise typer.Exit(code)


def exit_from_error(exc: AgJoinError) -> NoReturn:
    """Print a workflow error, with a hint for the common operator mistakes, and exit."""
    out.error(str(exc))
    hint = _HINTS.get(exc.kind)
    if hint:
        out.info(hint)
    raise typer.Exit(_code_for(exc)) from exc


def exit_interrupted(exc: KeyboardInterrupt) -> NoReturn:
    out.warn("Interrupted. Statements already sent keep running on the server.")
    raise typer.Exit(EXIT_INTERRUPTED) from exc


def exit_from_report(report: AddDatabaseReport) -> None:
    """
    Exit non-zero when an add-database run recorded failures.

    An aborted run names the database it stopped at; the databases after it
    were never attempted. Returns normally when the run succeeded.
    """
    if report.aborted:
        last = report.failures[-1]
        die(
            f"Stopped at {last.database or report.availability_group} after a fatal "
            f"{last.kind.value} error; remaining databases were not processed.",
            code=_code_for(last),
        )
    if report.failures:
        die(f"Failed: {', '.join(report.failed_databases())}")
