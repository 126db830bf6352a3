"""Restoring a database from a full/incremental chain or from SQL dumps."""
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from dockstack.backup.catalog import resolve_restore_chain
from dockstack.backup.tools import DatabaseTool, get_database_tool
from dockstack.core.config import BackupSettings, is_mock
from dockstack.core.errors import ChainInconsistentError, ConfigError, LockHeldError, PreconditionError
from dockstack.core.lock import operation_lock
from dockstack.core.logger import get_logger
from dockstack.models.artifact import Artifact, ArtifactKind
from dockstack.models.state import RestoreState

logger = get_logger(__name__)

STAGING_DIR = ".staging"
DUMP_PATTERNS = ("*.sql", "*.sql.gz")


@dataclass
class RestoreResult:
    """Outcome of one chain restore."""
    chain: List[Artifact]
    prepared_dir: Path
    data_dir: Path
    dry_run: bool
    copied_back: bool = False


class RestoreManager:
    """Replays backup chains found in settings.restore_dir."""

    def __init__(self, settings: BackupSettings, tool: Optional[DatabaseTool] = None):
        self.settings = settings
        if tool is None:
            if settings.credentials is None:
                raise ConfigError("Database credentials are not configured")
            tool = get_database_tool(settings.engine, settings.credentials, mock=is_mock())
        self.tool = tool
        self.state = RestoreState.IDLE

    @property
    def restore_dir(self) -> Path:
        return Path(self.settings.restore_dir)

    @property
    def staging_dir(self) -> Path:
        return self.restore_dir / STAGING_DIR

    def restore_requested(self) -> bool:
        """A restore is requested when the restore directory is non-empty."""
        if not self.restore_dir.is_dir():
            return False
        return any(path.name != STAGING_DIR for path in self.restore_dir.iterdir())

    def run_requested_restore(self, dry_run: Optional[bool] = None) -> Optional[RestoreResult]:
        """Restore from restore_dir if anything was placed there.

        An empty or missing restore directory, a directory without
        full/incremental artifacts, and a held restore lock all end the
        run successfully without restoring.
        """
        if not self.restore_requested():
            logger.info("No restore requested.")
            return None

        logger.info(f"Restore requested from {self.restore_dir}. The database MUST NOT be running.")
        try:
            with operation_lock(self.settings.restore_lock_file):
                chain = resolve_restore_chain(self.restore_dir)
                if not chain:
                    logger.info(f"No full or incremental backups in {self.restore_dir}, nothing to restore")
                    return None
                return self.perform_restore(chain, dry_run=dry_run)
        except LockHeldError as e:
            logger.warning(f"Restore lock found, skipping to avoid a duplicate restore: {e}")
            return None

    def check_preconditions(self, data_dir: Path) -> None:
        """Require a stopped database and a writable data directory.

        Raises:
            PreconditionError: If a check fails
        """
        if self.tool.server_running():
            raise PreconditionError(
                f"{self.tool.engine} at {self.tool.credentials.host} appears to be running. "
                f"Stop it before restoring."
            )

        probe = data_dir if data_dir.exists() else data_dir.parent
        if not os.access(probe, os.W_OK):
            raise PreconditionError(f"Data directory {data_dir} is not writable")

    def perform_restore(
        self,
        chain: List[Artifact],
        target_data_dir: Optional[Path] = None,
        dry_run: Optional[bool] = None,
    ) -> RestoreResult:
        """Prepare a chain and copy it into the data directory.

        The full artifact is prepared in place, then each incremental is
        applied to it in ascending order. With dry_run the chain is
        prepared but the data directory is left untouched.

        Raises:
            ChainInconsistentError: Chain empty or not starting with a full
            PreconditionError: Database running or data directory unwritable
            ToolFailureError: Any backup tool step failed
        """
        data_dir = Path(target_data_dir) if target_data_dir else Path(self.settings.data_dir)
        dry_run = self.settings.restore_dry_run if dry_run is None else dry_run
        self.state = RestoreState.IDLE

        if not chain or chain[0].kind != ArtifactKind.FULL:
            self.state = RestoreState.ABORTED
            raise ChainInconsistentError("Restore chain must start with a full backup")
        if not self.tool.supports_physical:
            self.state = RestoreState.ABORTED
            raise ConfigError(f"{self.tool.engine} cannot restore physical backups; use 'restore dumps'")

        try:
            self.check_preconditions(data_dir)
        except PreconditionError:
            self.state = RestoreState.ABORTED
            raise

        self.state = RestoreState.CHAIN_RESOLVED
        logger.info(f"Restore chain: {' -> '.join(str(a.id) for a in chain)}")

        try:
            paths = [self._materialize(artifact) for artifact in chain]
            base = paths[0]

            self.state = RestoreState.PREPARING
            self.tool.decompress(base)
            logger.info(f"Preparing FULL backup: {chain[0].id}")
            self.tool.prepare(base)
            for artifact, path in zip(chain[1:], paths[1:]):
                self.tool.decompress(path)
                logger.info(f"Preparing INCREMENTAL backup: {artifact.id}")
                self.tool.prepare(base, incremental_dir=path)

            result = RestoreResult(chain=chain, prepared_dir=base, data_dir=data_dir, dry_run=dry_run)
            if dry_run:
                logger.info("Restore dry run enabled. No copy-back performed.")
                self.state = RestoreState.DONE
                return result

            self.state = RestoreState.COPYING_BACK
            try:
                data_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise PreconditionError(f"Cannot create data directory {data_dir}: {e}")
            self.tool.clear_directory(data_dir)
            logger.info(f"Deleted old database files in {data_dir}")
            self.tool.copy_back(base, data_dir)
            self.tool.fix_ownership(data_dir, self.settings.data_owner)
            logger.info(f"Changed ownership of {data_dir} to {self.settings.data_owner}")

            result.copied_back = True
            self.state = RestoreState.DONE
            logger.info("✓ Restore completed successfully")
            return result
        except BaseException:
            self.state = RestoreState.ABORTED
            raise
        finally:
            shutil.rmtree(self.staging_dir, ignore_errors=True)

    def _materialize(self, artifact: Artifact) -> Path:
        """Directory holding an artifact's files, extracting archives first."""
        if not artifact.archived:
            return artifact.path

        dest = self.staging_dir / artifact.id.name
        logger.info(f"Extracting {artifact.path.name}")
        self.tool.extract_archive(artifact.path, dest)

        # archives may wrap their files in a single top-level directory
        entries = list(dest.iterdir()) if dest.is_dir() else []
        if len(entries) == 1 and entries[0].is_dir():
            return entries[0]
        return dest

    def find_dumps(self) -> List[Path]:
        """SQL dumps in restore_dir (and its dumps/ subdirectory) in name order."""
        found = set()
        for directory in (self.restore_dir, self.restore_dir / "dumps"):
            if not directory.is_dir():
                continue
            for pattern in DUMP_PATTERNS:
                found.update(p for p in directory.glob(pattern) if p.is_file())
        return sorted(found, key=lambda p: p.name)

    def restore_dumps(self, database: Optional[str] = None) -> List[Path]:
        """Load every SQL dump into a freshly recreated database.

        Returns:
            Dump files restored, in order

        Raises:
            ConfigError: No database name configured
            PreconditionError: Database not reachable
            ToolFailureError: A dump failed to load
        """
        database = database or self.tool.credentials.database
        if not database:
            raise ConfigError("No database configured for dump restore (set MYSQL_DATABASE or POSTGRES_DB)")

        dumps = self.find_dumps()
        if not dumps:
            logger.info(f"No SQL dumps found in {self.restore_dir}, nothing to restore")
            return []

        if not self.tool.ping():
            raise PreconditionError(f"Database at {self.tool.credentials.host} is not reachable")

        try:
            with operation_lock(self.settings.restore_lock_file):
                self.tool.recreate_database(database)
                for dump in dumps:
                    logger.info(f"Restoring from {dump.name}")
                    self.tool.load_dump(dump, database)
                    logger.info(f"Restored: {dump.name}")
        except LockHeldError as e:
            logger.warning(f"Restore already running, skipping: {e}")
            return []

        logger.info(f"✓ Restored {len(dumps)} dump(s) into {database}")
        return dumps
