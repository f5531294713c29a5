"""CLI application for SQL Server operations tooling."""

import typer

from sqlops.cli.commands.ag import ag_app

app = typer.Typer(
    help="sqlops - SQL Server operations tooling",
    no_args_is_help=True,
)

app.add_typer(
    ag_app,
    name="ag",
    help="Test Availability Groups / add databases to them.",
)


if __name__ == "__main__":
    app()
