"""Template assembly CLI command."""
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

# Module-level console instance (will be set by register function)
console: Console = Console()


def assemble(
    project_dir: Path = typer.Argument(Path("."), help="Project directory containing docker-compose.app.yaml"),
    force: bool = typer.Option(False, "--force", "-f", help="Re-copy template files and update the lock"),
    dry_run: bool = typer.Option(False, "--dry-run", "-n", help="Show what would change without writing"),
    update: bool = typer.Option(False, "--update", "-u", help="Pull the images of all services afterwards"),
    delete: bool = typer.Option(False, "--delete", help="Delete the project's named volumes afterwards"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask before deleting volumes"),
    repo: Optional[str] = typer.Option(None, "--repo", help="Template repository URL"),
    ref: Optional[str] = typer.Option(None, "--ref", help="Template branch or tag (default: remote HEAD)"),
    subpath: Optional[str] = typer.Option(None, "--subpath", help="Directory holding the templates"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Assemble docker-compose.main.yaml and .env from service templates.

    Reads x-required-services from docker-compose.app.yaml, copies each
    template's compose fragment, secrets and scripts, merges environment
    files (first definition wins) and records the template revision in
    .run.conf/template.lock.
    """
    from dockstack.assembler import TemplateAssembler, TemplateFetcher
    from dockstack.assembler.docker_ops import DockerOperations
    from dockstack.cli_support import (
        confirm_action,
        handle_cli_error,
        load_assembler_settings,
        print_info,
        print_success,
        print_warning,
        setup_file_logging,
    )
    from dockstack.core.config import is_mock
    from dockstack.core.errors import ConfigError, DockstackError
    from dockstack.core.logger import teardown_file_logging
    from dockstack.models.template import LockState

    mock = is_mock()
    project_dir = project_dir.resolve()

    try:
        if not project_dir.is_dir():
            raise ConfigError(f"Project directory {project_dir} does not exist")

        settings = load_assembler_settings(repo, ref, subpath)
        if not dry_run:
            setup_file_logging(project_dir, verbose=verbose, retention=settings.log_retention)

        if delete and not dry_run:
            if not confirm_action(f"Delete the named volumes of {project_dir.name}?", yes_flag=yes, mock=mock):
                print_info(console, "Volume deletion cancelled")
                delete = False

        if dry_run:
            print_warning(console, "DRY RUN - no files will be written")

        assembler = TemplateAssembler(
            project_dir,
            settings=settings,
            fetcher=TemplateFetcher(mock=mock),
            docker=DockerOperations(mock=mock or dry_run),
            force=force,
            dry_run=dry_run,
        )
        result = assembler.run(update_images=update, delete_volumes=delete)
    except DockstackError as e:
        handle_cli_error(e, console, verbose)
    finally:
        teardown_file_logging()

    if result.lock_state == LockState.STALE and not force:
        print_warning(console, "Template updates available. Run with --force to apply.")
    if result.missing_fragments:
        print_warning(console, f"Missing compose fragments: {', '.join(result.missing_fragments)}")

    verb = "Checked" if dry_run else "Assembled"
    print_success(
        console,
        f"{verb} {len(result.services)} service(s) from template revision {result.revision[:12]}",
    )


def register_assemble_commands(app: typer.Typer, shared_console: Console):
    """Register the assemble command with the main Typer app."""
    global console
    console = shared_console

    app.command()(assemble)
