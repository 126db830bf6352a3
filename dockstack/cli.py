#!/usr/bin/env python3
"""dockstack CLI - compose stacks from templates, back up their databases."""

import typer
from rich.console import Console

from dockstack import __version__
from dockstack.cli_assemble_commands import register_assemble_commands
from dockstack.cli_backup_commands import register_backup_commands
from dockstack.cli_restore_commands import register_restore_commands
from dockstack.core.logger import console as log_console

app = typer.Typer(
    name="dockstack",
    help="""dockstack - Docker Compose stacks from reusable service templates

Quick start:
  dockstack assemble ./myapp          # Build docker-compose.main.yaml and .env
  dockstack assemble ./myapp --force  # Apply template updates
  dockstack backup run incremental    # Back up the database
  dockstack restore chain             # Show what a restore would replay
""",
    add_completion=False,
)

console: Console = log_console


def version_callback(value: bool):
    if value:
        console.print(f"dockstack {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(False, "--version", callback=version_callback, is_eager=True, help="Show version and exit"),
):
    pass


# Attach modular subcommands
register_assemble_commands(app, console)
register_backup_commands(app, console)
register_restore_commands(app, console)

if __name__ == "__main__":
    app()
