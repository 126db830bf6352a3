"""Template assembly: fetch, copy, merge, lock.

Produces docker-compose.main.yaml and .env for a project from the
templates named in its x-required-services list, without overwriting
per-service files the user has customized unless a refresh is forced.
"""
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from dockstack.assembler.assets import backup_project_files, copy_service_assets, fragment_name
from dockstack.assembler.descriptor import (
    list_fragment_files,
    load_yaml,
    merge_descriptor,
    render_descriptor,
    resolve_required_services,
)
from dockstack.assembler.docker_ops import DockerOperations
from dockstack.assembler.env_merge import merge_env, read_env_values
from dockstack.assembler.fetcher import TemplateFetcher
from dockstack.assembler.lockfile import check_lock, read_lock, write_lock
from dockstack.core.config import (
    LOCAL_ENV_FILE,
    LOCK_FILE_NAME,
    MAIN_DESCRIPTOR,
    MERGED_DESCRIPTOR,
    MERGED_ENV_FILE,
    RUN_DIR,
    AssemblerSettings,
)
from dockstack.core.errors import ConfigError, CopyError
from dockstack.core.logger import get_logger
from dockstack.models.template import EnvMergeResult, LockState, TemplateSnapshot, TemplateSource

logger = get_logger(__name__)


@dataclass
class AssemblyResult:
    """Outcome of one assembly run."""
    revision: str
    lock_state: LockState
    services: List[str]
    written: List[Path] = field(default_factory=list)
    env_merged: bool = False
    lock_written: bool = False
    missing_fragments: List[str] = field(default_factory=list)
    descriptor: Dict[str, Any] = field(default_factory=dict)


class TemplateAssembler:
    """Assembles one project directory from remote service templates."""

    def __init__(
        self,
        project_dir: Path,
        settings: Optional[AssemblerSettings] = None,
        fetcher: Optional[TemplateFetcher] = None,
        docker: Optional[DockerOperations] = None,
        force: bool = False,
        dry_run: bool = False,
    ):
        self.project_dir = Path(project_dir).resolve()
        self.settings = settings or AssemblerSettings()
        self.fetcher = fetcher or TemplateFetcher()
        self.docker = docker or DockerOperations()
        self.force = force
        self.dry_run = dry_run

    @property
    def run_dir(self) -> Path:
        return self.project_dir / RUN_DIR

    @property
    def lock_path(self) -> Path:
        return self.run_dir / LOCK_FILE_NAME

    @property
    def main_descriptor(self) -> Path:
        return self.project_dir / MAIN_DESCRIPTOR

    @property
    def merged_descriptor(self) -> Path:
        return self.project_dir / MERGED_DESCRIPTOR

    @property
    def local_env(self) -> Path:
        return self.project_dir / LOCAL_ENV_FILE

    @property
    def merged_env(self) -> Path:
        return self.project_dir / MERGED_ENV_FILE

    def template_source(self) -> TemplateSource:
        try:
            return TemplateSource(
                url=self.settings.template_repo,
                ref=self.settings.template_ref,
                subpath=self.settings.template_subpath,
            )
        except ValidationError as e:
            raise ConfigError(f"Invalid template source: {e.errors()[0]['msg']}")

    def run(self, update_images: bool = False, delete_volumes: bool = False) -> AssemblyResult:
        """Run the full assembly.

        The lock is written last, and only for an initial run or a forced
        refresh, so a failure in any earlier step leaves it untouched.
        """
        if not self.project_dir.is_dir():
            raise ConfigError(f"Project directory {self.project_dir} does not exist")

        services = sorted(resolve_required_services(self.main_descriptor))
        logger.info(f"Required services: {', '.join(services)}")

        with tempfile.TemporaryDirectory(prefix="dockstack-templates-") as cache_dir:
            snapshot = self.fetcher.fetch(self.template_source(), Path(cache_dir))
            lock_state = self.check_template_state(snapshot.revision)
            result = AssemblyResult(revision=snapshot.revision, lock_state=lock_state, services=services)

            if self.force and lock_state != LockState.INITIAL:
                self.backup_existing_files()

            for service in services:
                result.written.extend(copy_service_assets(
                    snapshot.template_dir(service),
                    service,
                    self.project_dir,
                    force=self.force,
                    dry_run=self.dry_run,
                ))

            result.env_merged = self.merge_env_files(snapshot, services) is not None
            result.descriptor = self.merge_compose_files()

            if lock_state == LockState.INITIAL or self.force:
                if self.dry_run:
                    logger.info(f"DRY-RUN: Would update lockfile to {snapshot.revision}")
                else:
                    write_lock(self.lock_path, snapshot.revision)
                    result.lock_written = True
                    logger.info(f"Updated lockfile: {self.lock_path}")

        result.missing_fragments = self.verify_fragments(services)

        if update_images:
            self.pull_images(result.descriptor)
        if delete_volumes:
            self.delete_volumes(result.descriptor)

        return result

    def check_template_state(self, revision: str) -> LockState:
        state = check_lock(self.lock_path, revision)
        if state == LockState.INITIAL:
            logger.info("First run detected: copying template files")
        elif state == LockState.UP_TO_DATE:
            logger.info(f"Templates already up-to-date (lockfile: {self.lock_path})")
        elif self.force:
            logger.warning("Template updates available: refreshing files (--force)")
        else:
            logger.info("Template updates available. Run with --force to apply.")
        return state

    def backup_existing_files(self) -> List[Path]:
        """Back up compose and env files before a forced refresh."""
        files = list_fragment_files(self.project_dir, exclude=self.merged_descriptor)
        if self.merged_env.is_file():
            files.append(self.merged_env)

        if self.dry_run:
            for path in files:
                logger.info(f"DRY-RUN: Would back up {path.name}")
            return []

        previous = read_lock(self.lock_path) or "unknown"
        return backup_project_files(
            files,
            self.run_dir / "backup",
            previous,
            max_backups=self.settings.max_backups,
        )

    def merge_env_files(self, snapshot: TemplateSnapshot, services: List[str]) -> Optional[EnvMergeResult]:
        """Merge app.env and each template .env into .env.

        Returns:
            The merge result, or None when an existing .env was kept
        """
        if self.merged_env.is_file() and not self.local_env.exists():
            if self.dry_run:
                logger.info(f"DRY-RUN: Would rename legacy {self.merged_env.name} to {self.local_env.name}")
            else:
                try:
                    self.merged_env.rename(self.local_env)
                except OSError as e:
                    raise CopyError(f"Failed to rename {self.merged_env} to {self.local_env}: {e}")
                logger.info(f"Found legacy {self.merged_env.name} - renamed to {self.local_env.name}")

        if self.merged_env.is_file() and not self.force:
            logger.info(f"{self.merged_env.name} already exists - skipping merge (use --force to override)")
            return None

        result = merge_env(
            [(self.local_env, f"local {self.local_env.name}")],
            [(snapshot.template_dir(service) / ".env", f"template {service}") for service in services],
        )

        if self.dry_run:
            logger.info(f"DRY-RUN: Would write {len(result.seen)} variable(s) to {self.merged_env.name}")
            return result

        try:
            if not self.local_env.exists():
                # an existing app.env marks .env as generated output
                self.local_env.touch()
                logger.info(f"Created empty {self.local_env.name} for local overrides")
            self.merged_env.write_text(result.render())
        except OSError as e:
            raise CopyError(f"Failed to write {self.merged_env}: {e}")
        logger.info(f"Merged {len(result.seen)} variable(s) into {self.merged_env.name}")
        return result

    def merge_compose_files(self) -> Dict[str, Any]:
        """Merge every project fragment into docker-compose.main.yaml."""
        fragment_files = list_fragment_files(self.project_dir, exclude=self.merged_descriptor)
        merged = merge_descriptor(None, [load_yaml(path) for path in fragment_files])

        if self.dry_run:
            logger.info(f"DRY-RUN: Would write {self.merged_descriptor.name} from {len(fragment_files)} fragment(s)")
            return merged

        try:
            self.merged_descriptor.write_text(render_descriptor(merged))
        except OSError as e:
            raise CopyError(f"Failed to write {self.merged_descriptor}: {e}")
        logger.info(f"Created merged compose file: {self.merged_descriptor.name}")
        return merged

    def verify_fragments(self, services: List[str]) -> List[str]:
        """Return required services whose fragment is missing."""
        missing = []
        for service in services:
            path = self.project_dir / fragment_name(service)
            if path.is_file():
                logger.debug(f"Found: {path.name}")
                continue
            missing.append(service)
            if self.dry_run:
                logger.warning(f"DRY-RUN: {path.name} would be missing")
            else:
                logger.error(f"Missing {path.name}. Re-run with --force.")
        return missing

    def _env_values(self) -> Dict[str, str]:
        if not self.merged_env.is_file():
            raise ConfigError(f"{self.merged_env} not found. Cannot resolve image variables.")
        return read_env_values(self.merged_env)

    def pull_images(self, descriptor: Dict[str, Any]) -> Dict[str, bool]:
        logger.info(f"Pulling images for services in {self.merged_descriptor.name}")
        return self.docker.pull_images(descriptor, self._env_values())

    def delete_volumes(self, descriptor: Dict[str, Any]) -> List[str]:
        env_values = read_env_values(self.merged_env) if self.merged_env.is_file() else {}
        project_name = (
            env_values.get("COMPOSE_PROJECT_NAME")
            or os.environ.get("COMPOSE_PROJECT_NAME")
            or self.project_dir.name
        )
        logger.info(f"Deleting volumes of project {project_name}")
        return self.docker.delete_volumes(descriptor, project_name)
