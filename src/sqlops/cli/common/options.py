"""Common CLI options for the CLI."""

import typer

SqlInstanceOpt = typer.Option(
    None,
    "--sql-instance",
    "-s",
    help="Primary replica instance (host, host\\instance or host,port)",
    envvar="SQLOPS_SQL_INSTANCE",
)

SqlUserOpt = typer.Option(
    None,
    "--sql-user",
    help="SQL login for the primary (Windows authentication when omitted)",
    envvar="SQLOPS_SQL_USER",
)

SqlPasswordOpt = typer.Option(
    None,
    "--sql-password",
    help="Password for --sql-user",
    envvar="SQLOPS_SQL_PASSWORD",
    show_default=False,
)

SecondaryUserOpt = typer.Option(
    None,
    "--secondary-user",
    help="SQL login for the secondaries (defaults to --sql-user)",
    envvar="SQLOPS_SECONDARY_USER",
)

SecondaryPasswordOpt = typer.Option(
    None,
    "--secondary-password",
    help="Password for --secondary-user",
    envvar="SQLOPS_SECONDARY_PASSWORD",
    show_default=False,
)

VerboseOpt = typer.Option(
    0,
    "--verbose",
    "-v",
    count=True,
    help="Increase log output (-v progress, -vv diagnostics)",
)

AvailabilityGroupOpt = typer.Option(
    ...,
    "--availability-group",
    "-a",
    help="Availability Group name",
)

DatabaseOpt = typer.Option(
    [],
    "--database",
    "-d",
    help="Database to add. This is reusable.",
    show_default=False,
)

SecondaryOpt = typer.Option(
    [],
    "--secondary",
    help="Secondary replica to include (default: all). This is reusable.",
    show_default=False,
)

SeedingModeOpt = typer.Option(
    None,
    "--seeding-mode",
    case_sensitive=False,
    help="Seeding mode to apply to the secondaries (kept after the command)",
)

SharedPathOpt = typer.Option(
    None,
    "--shared-path",
    help="Directory reachable by all replicas for full/log backups",
)

UseLastBackupOpt = typer.Option(
    False,
    "--use-last-backup",
    help="Restore the last full backup and following log backups",
)

NoWaitOpt = typer.Option(
    False,
    "--no-wait",
    help="Don't wait for the secondaries to synchronize",
)

ConfirmOpt = typer.Option(
    True,
    "--confirm/--no-confirm",
    help="Ask for confirmation before changing the Availability Group",
)

ExistingTimeoutOpt = typer.Option(
    None,
    "--existing-timeout",
    help="Seconds to wait for the availability database to exist (default 60)",
)

SyncTimeoutOpt = typer.Option(
    None,
    "--sync-timeout",
    help="Seconds to wait for synchronization (default 86400)",
)

PollIntervalOpt = typer.Option(
    None,
    "--poll-interval-ms",
    help="Milliseconds between two polls (default 100)",
)

ProgressOpt = typer.Option(
    True,
    "--progress/--no-progress",
    help="Show automatic seeding progress",
)
