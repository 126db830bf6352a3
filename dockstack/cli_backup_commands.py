"""Backup CLI commands (run, prune, list)."""
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from dockstack.models.artifact import ArtifactKind

# Module-level console instance (will be set by register function)
console: Console = Console()


def run(
    kind: ArtifactKind = typer.Argument(..., help="Backup type: full, incremental or dump"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Create a backup (skipped if another backup holds the lock).

    Old artifacts are pruned first; pruning never removes the last full
    backup inside the retention window.
    """
    from dockstack.backup import BackupManager
    from dockstack.cli_support import handle_cli_error, load_backup_settings, print_info, print_success
    from dockstack.core.errors import DockstackError

    try:
        manager = BackupManager(load_backup_settings())
        created = manager.run(kind)
    except DockstackError as e:
        handle_cli_error(e, console, verbose)

    if created is None:
        print_info(console, "Backup skipped: another backup is running")
        return
    print_success(console, f"Backup created: {created}")


def prune(
    days: Optional[int] = typer.Option(None, "--days", "-d", help="Retention window in days (default: MYSQL_BACKUP_RETENTION_DAYS)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Delete artifacts older than the retention window."""
    from dockstack.backup import BackupManager
    from dockstack.cli_support import handle_cli_error, load_backup_settings, print_info, print_success
    from dockstack.core.errors import DockstackError

    try:
        deleted = BackupManager(load_backup_settings()).prune_old_artifacts(days)
    except DockstackError as e:
        handle_cli_error(e, console, verbose)

    if deleted:
        print_success(console, f"Pruned {len(deleted)} artifact(s)")
    else:
        print_info(console, "Nothing pruned")


def list_backups(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """List backup artifacts in the backup directory."""
    from dockstack.backup import list_artifacts
    from dockstack.backup.manager import file_age_days
    from dockstack.cli_support import handle_cli_error, load_backup_settings, print_info, print_warning
    from dockstack.core.errors import DockstackError
    from dockstack.core.lock import check_lock_status

    try:
        settings = load_backup_settings()
    except DockstackError as e:
        handle_cli_error(e, console, verbose)

    holder = check_lock_status(settings.backup_lock_file)
    if holder:
        print_warning(console, f"Backup in progress: PID {holder['pid']} since {holder['time']} ({holder['lock_file']})")

    artifacts = list_artifacts(settings.backup_dir)
    if not artifacts:
        print_info(console, f"No backups found in {settings.backup_dir}")
        return

    table = Table(title=f"Backups in {settings.backup_dir}")
    table.add_column("Kind", style="cyan")
    table.add_column("Name", style="bold")
    table.add_column("Age (days)", justify="right")
    table.add_column("Path", style="dim")

    for artifact in artifacts:
        table.add_row(
            artifact.kind.value,
            str(artifact.id),
            f"{file_age_days(artifact.path):.1f}",
            str(artifact.path),
        )

    console.print(table)


def register_backup_commands(app: typer.Typer, shared_console: Console):
    """Register backup commands with the main Typer app."""
    global console
    console = shared_console

    backup_app = typer.Typer(help="Create, prune and list database backups")
    backup_app.command(name="run")(run)
    backup_app.command()(prune)
    backup_app.command(name="list")(list_backups)

    app.add_typer(backup_app, name="backup")
