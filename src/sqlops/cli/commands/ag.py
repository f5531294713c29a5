"""Commands for testing Availability Groups and adding databases to them."""

import typer

from sqlops.cli.common.context import AgAppContext, build_ag_context
from sqlops.cli.common.exits import (
    die,
    exit_from_error,
    exit_from_report,
    exit_interrupted,
    ok_exit,
    warn_exit,
)
from sqlops.cli.common.logs import configure_logging
from sqlops.cli.common.options import (
    AvailabilityGroupOpt,
    ConfirmOpt,
    DatabaseOpt,
    ExistingTimeoutOpt,
    NoWaitOpt,
    PollIntervalOpt,
    ProgressOpt,
    SecondaryOpt,
    SecondaryPasswordOpt,
    SecondaryUserOpt,
    SeedingModeOpt,
    SharedPathOpt,
    SqlInstanceOpt,
    SqlPasswordOpt,
    SqlUserOpt,
    SyncTimeoutOpt,
    UseLastBackupOpt,
    VerboseOpt,
)
from sqlops.cli.common.output import out
from sqlops.cli.common.progress import seeding_progress
from sqlops.cli.tui import eligible_databases, select_databases
from sqlops.core.errors import AgJoinError
from sqlops.core.models import SeedingMode
from sqlops.core.workflow import (
    add_databases,
    availability_group_health,
    preflight_databases,
)

ag_app = typer.Typer(
    help="Availability Group operations.",
    no_args_is_help=False,
    invoke_without_command=True,
)


@ag_app.callback()
def _init(
    ctx: typer.Context,
    sql_instance: str | None = SqlInstanceOpt,
    sql_user: str | None = SqlUserOpt,
    sql_password: str | None = SqlPasswordOpt,
    secondary_user: str | None = SecondaryUserOpt,
    secondary_password: str | None = SecondaryPasswordOpt,
    verbose: int = VerboseOpt,
):
    """Initialize the Availability Group context."""
    configure_logging(verbose)
    ctx.obj = build_ag_context(
        sql_instance,
        sql_user=sql_user,
        sql_password=sql_password,
        secondary_user=secondary_user,
        secondary_password=secondary_password,
    )
    ctx.call_on_close(ctx.obj.close)
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit(0)


@ag_app.command("test")
def check(
    ctx: typer.Context,
    availability_group: str = AvailabilityGroupOpt,
    database: list[str] = DatabaseOpt,
    secondary: list[str] = SecondaryOpt,
    seeding_mode: SeedingMode | None = SeedingModeOpt,
    shared_path: str | None = SharedPathOpt,
    use_last_backup: bool = UseLastBackupOpt,
):
    """
    Test an Availability Group and, optionally, whether databases can be added.
    """
    appctx: AgAppContext = ctx.obj
    primary = appctx.primary

    try:
        with out.status("Checking availability group..."):
            health = availability_group_health(primary, availability_group)
    except AgJoinError as exc:
        exit_from_error(exc)

    out.header(f"Availability Group {health.availability_group}")
    out.kv(
        {
            "Instance": health.sql_instance,
            "Role": health.local_replica_role.value,
            "Databases": ", ".join(health.database_names) or "-",
        }
    )
    out.replicas_table(health.replicas)

    if not database:
        out.success(f"{health.availability_group} is healthy")
        return

    try:
        with out.status("Checking databases..."):
            results = preflight_databases(
                primary,
                availability_group,
                database,
                connect=appctx.connect_secondary,
                secondaries=secondary,
                seeding_mode=seeding_mode,
                shared_path=shared_path,
                use_last_backup=use_last_backup,
            )
    except AgJoinError as exc:
        exit_from_error(exc)

    out.prerequisites_table(results)
    failed = [r.database for r in results if not r.ok]
    if failed:
        die(f"Cannot add: {', '.join(failed)}")
    out.success(f"All {len(results)} database(s) can be added")


@ag_app.command("add-database")
def add_database(
    ctx: typer.Context,
    availability_group: str = AvailabilityGroupOpt,
    database: list[str] = DatabaseOpt,
    secondary: list[str] = SecondaryOpt,
    seeding_mode: SeedingMode | None = SeedingModeOpt,
    shared_path: str | None = SharedPathOpt,
    use_last_backup: bool = UseLastBackupOpt,
    no_wait: bool = NoWaitOpt,
    confirm: bool = ConfirmOpt,
    existing_timeout: float | None = ExistingTimeoutOpt,
    sync_timeout: float | None = SyncTimeoutOpt,
    poll_interval_ms: int | None = PollIntervalOpt,
    progress: bool = ProgressOpt,
):
    """
    Add databases to an Availability Group and wait for them to synchronize.
    """
    appctx: AgAppContext = ctx.obj
    primary = appctx.primary

    databases = list(database)
    if not databases:
        with out.status("Loading databases..."):
            candidates = eligible_databases(primary.list_databases())
        if not candidates:
            warn_exit("No eligible databases found", code=0)
        databases = select_databases(candidates)
        if not databases:
            warn_exit("No databases selected", code=0)

    config = appctx.config.with_overrides(
        existing_timeout=existing_timeout,
        sync_timeout=sync_timeout,
        poll_interval=poll_interval_ms / 1000 if poll_interval_ms is not None else None,
        report_seeding=None if progress else False,
    )

    out.header("Add databases")
    out.kv(
        {
            "Availability Group": availability_group,
            "Primary": primary.sql_instance,
            "Databases": ", ".join(databases),
            "Secondaries": ", ".join(secondary) or "all",
            "Seeding mode": seeding_mode.value if seeding_mode else "as configured",
        }
    )

    if confirm and not out.confirm(
        f"Add {len(databases)} database(s) to {availability_group}?"
    ):
        ok_exit("Cancelled")

    try:
        with seeding_progress(enabled=config.report_seeding and not no_wait) as on_progress:
            report = add_databases(
                primary,
                availability_group,
                databases,
                connect=appctx.connect_secondary,
                secondaries=secondary,
                seeding_mode=seeding_mode,
                shared_path=shared_path,
                use_last_backup=use_last_backup,
                no_wait=no_wait,
                config=config,
                on_progress=on_progress,
            )
    except AgJoinError as exc:
        exit_from_error(exc)
    except KeyboardInterrupt as exc:
        exit_interrupted(exc)

    if report.results:
        out.join_results_table(report.results)

    if report.failures:
        out.failures_table(report.failures)
    exit_from_report(report)

    out.success(f"Added {len(databases)} database(s) to {report.availability_group}")
