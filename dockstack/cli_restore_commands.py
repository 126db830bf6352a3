"""Restore and container entrypoint CLI commands."""
import os
import shutil
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

# Module-level console instance (will be set by register function)
console: Console = Console()

SCHEDULER = "supercronic"


def run(
    dry_run: Optional[bool] = typer.Option(None, "--dry-run/--no-dry-run", help="Prepare the chain without copying it back (default: MYSQL_RESTORE_DRY_RUN)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Restore the backup chain found in the restore directory.

    The database server must be stopped. An empty restore directory is
    not an error.
    """
    from dockstack.backup import RestoreManager
    from dockstack.cli_support import handle_cli_error, load_backup_settings, print_info, print_success
    from dockstack.core.errors import DockstackError

    try:
        result = RestoreManager(load_backup_settings()).run_requested_restore(dry_run=dry_run)
    except DockstackError as e:
        handle_cli_error(e, console, verbose)

    if result is None:
        print_info(console, "Nothing restored")
    elif result.dry_run:
        print_success(console, f"Chain prepared (dry run): {' -> '.join(str(a.id) for a in result.chain)}")
    else:
        print_success(console, f"Restored {len(result.chain)} artifact(s) into {result.data_dir}")


def chain(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Show the chain a restore would replay, without touching anything."""
    from dockstack.backup import resolve_restore_chain
    from dockstack.cli_support import handle_cli_error, load_backup_settings, print_info
    from dockstack.core.errors import DockstackError

    try:
        settings = load_backup_settings()
        artifacts = resolve_restore_chain(settings.restore_dir)
    except DockstackError as e:
        handle_cli_error(e, console, verbose)

    if not artifacts:
        print_info(console, f"No restore chain in {settings.restore_dir}")
        return

    table = Table(title=f"Restore chain in {settings.restore_dir}")
    table.add_column("#", justify="right")
    table.add_column("Kind", style="cyan")
    table.add_column("Name", style="bold")
    table.add_column("Archived")

    for position, artifact in enumerate(artifacts, start=1):
        table.add_row(str(position), artifact.kind.value, str(artifact.id), "yes" if artifact.archived else "")

    console.print(table)


def dumps(
    database: Optional[str] = typer.Option(None, "--database", "-d", help="Target database (default: MYSQL_DATABASE / POSTGRES_DB)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Load every SQL dump in the restore directory into the database."""
    from dockstack.backup import RestoreManager
    from dockstack.cli_support import handle_cli_error, load_backup_settings, print_info, print_success
    from dockstack.core.errors import DockstackError

    try:
        restored = RestoreManager(load_backup_settings()).restore_dumps(database)
    except DockstackError as e:
        handle_cli_error(e, console, verbose)

    if restored:
        print_success(console, f"Restored {len(restored)} dump(s)")
    else:
        print_info(console, "Nothing restored")


def entrypoint(
    cron_file: Path = typer.Argument(..., help="Cron file handed to supercronic"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Container entrypoint: restore if requested, then run the scheduler.

    Replaces this process with `supercronic CRON_FILE`.
    """
    from dockstack.backup import RestoreManager
    from dockstack.cli_support import handle_cli_error, load_backup_settings, print_info
    from dockstack.core.config import is_mock
    from dockstack.core.errors import DockstackError

    try:
        RestoreManager(load_backup_settings()).run_requested_restore()
    except DockstackError as e:
        handle_cli_error(e, console, verbose)

    scheduler = shutil.which(SCHEDULER)
    if is_mock():
        print_info(console, f"MOCK: Would exec {SCHEDULER} {cron_file}")
        return
    if scheduler is None:
        handle_cli_error(RuntimeError(f"{SCHEDULER} not found in PATH"), console, verbose)

    print_info(console, f"Starting {SCHEDULER} with cron file: {cron_file}")
    os.execv(scheduler, [SCHEDULER, str(cron_file)])


def register_restore_commands(app: typer.Typer, shared_console: Console):
    """Register restore commands and the entrypoint with the main Typer app."""
    global console
    console = shared_console

    restore_app = typer.Typer(help="Restore backup chains and SQL dumps")
    restore_app.command(name="run")(run)
    restore_app.command()(chain)
    restore_app.command()(dumps)

    app.add_typer(restore_app, name="restore")
    app.command()(entrypoint)
