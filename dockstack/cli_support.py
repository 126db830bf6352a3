"""Shared utilities for dockstack CLI modules."""
from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape

from dockstack.core.config import RUN_DIR, AssemblerSettings, BackupSettings

LOG_SUBDIR = "logs"


def setup_file_logging(project_dir: Path, verbose: bool = False, retention: int = 2) -> Optional[Path]:
    """Log the run to <project>/.run.conf/logs/run.<timestamp>.log."""
    from dockstack.core.logger import setup_file_logging as _setup_file_logging
    return _setup_file_logging(Path(project_dir) / RUN_DIR / LOG_SUBDIR, verbose=verbose, retention=retention)


def load_assembler_settings(
    repo: Optional[str] = None,
    ref: Optional[str] = None,
    subpath: Optional[str] = None,
) -> AssemblerSettings:
    """Settings from the environment, overridden by explicit CLI options."""
    settings = AssemblerSettings.from_env()
    if repo:
        settings.template_repo = repo
    if ref:
        settings.template_ref = ref
    if subpath:
        settings.template_subpath = subpath
    return settings


def load_backup_settings() -> BackupSettings:
    return BackupSettings.from_env()


def confirm_action(message: str, yes_flag: bool = False, mock: bool = False) -> bool:
    """Prompt user for confirmation unless --yes or mock mode.

    Returns:
        True if confirmed, False otherwise
    """
    if yes_flag or mock:
        return True
    return typer.confirm(message)


def handle_cli_error(
    e: Exception,
    console: Console,
    verbose: bool = False,
    exit_code: int = 1
) -> None:
    """Handle CLI errors with consistent formatting.

    Args:
        e: Exception to handle
        console: Rich console for output
        verbose: Show exception traceback if True
        exit_code: Exit code to use
    """
    print_error(console, escape(str(e)))
    if verbose:
        console.print_exception()
    raise typer.Exit(exit_code)


def print_success(console: Console, message: str, prefix: str = "✓") -> None:
    """Print success message with consistent formatting.

    Args:
        console: Rich console for output
        message: Success message
        prefix: Prefix symbol (default: ✓)
    """
    console.print(f"[green]{prefix}[/green] {message}")


def print_error(console: Console, message: str, prefix: str = "✗") -> None:
    """Print error message with consistent formatting."""
    console.print(f"[red]{prefix}[/red] {message}")


def print_warning(console: Console, message: str, prefix: str = "⚠") -> None:
    console.print(f"[yellow]{prefix}[/yellow] {message}")


def print_info(console: Console, message: str, prefix: str = "ℹ") -> None:
    console.print(f"[cyan]{prefix}[/cyan] {message}")
