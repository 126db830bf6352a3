"""Creating and pruning backup artifacts."""
import shutil
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Union

from dockstack.backup.catalog import (
    KIND_DIRS,
    check_contiguous,
    incrementals_for,
    latest_full,
    list_artifacts,
    next_full_id,
    next_incremental_id,
    physical_artifacts,
)
from dockstack.backup.tools import DatabaseTool, get_database_tool
from dockstack.core.config import BackupSettings, is_mock
from dockstack.core.errors import ConfigError, LockHeldError, PreconditionError
from dockstack.core.lock import operation_lock
from dockstack.core.logger import get_logger
from dockstack.models.artifact import Artifact, ArtifactId, ArtifactKind
from dockstack.models.state import BackupState

logger = get_logger(__name__)

SECONDS_PER_DAY = 86400


def _discard(path: Path) -> None:
    if path.is_dir():
        shutil.rmtree(path, ignore_errors=True)
    else:
        path.unlink(missing_ok=True)


def _make_dir(path: Path, exist_ok: bool = False) -> None:
    try:
        path.mkdir(parents=True, exist_ok=exist_ok)
    except OSError as e:
        raise PreconditionError(f"Cannot create backup directory {path}: {e}")


class BackupManager:
    """Runs full, incremental and dump backups into settings.backup_dir.

    Layout:
        full/<YYYYMMDD>_<NN>/
        incremental/<YYYYMMDD>_<NN>_<MM>/
        dumps/<database>_<YYYYMMDD>_<HHMMSS>.sql.gz
    """

    def __init__(
        self,
        settings: BackupSettings,
        tool: Optional[DatabaseTool] = None,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings
        if tool is None:
            if settings.credentials is None:
                raise ConfigError("Database credentials are not configured")
            tool = get_database_tool(
                settings.engine,
                settings.credentials,
                mock=is_mock(),
                compress_threads=settings.compress_threads,
                parallel=settings.parallel,
            )
        self.tool = tool
        self._now = now or datetime.now
        self.state = BackupState.IDLE

    @property
    def backup_dir(self) -> Path:
        return Path(self.settings.backup_dir)

    def kind_dir(self, kind: ArtifactKind) -> Path:
        return self.backup_dir / KIND_DIRS[kind]

    def artifacts(self) -> List[Artifact]:
        return list_artifacts(self.backup_dir)

    def run(self, kind: Union[str, ArtifactKind]) -> Optional[Union[ArtifactId, Path]]:
        """Scheduled entry point: lock, check, prune, then back up.

        A held lock means another run is active; this run is skipped and
        counts as a success. Nothing is pruned when the database is
        unreachable or the backup directory is short on space.

        Returns:
            The new artifact identity (full/incremental), the dump path,
            or None when skipped
        """
        try:
            kind = ArtifactKind(kind)
        except ValueError:
            raise ConfigError(f"Unknown backup type '{kind}' (use full, incremental or dump)")

        try:
            with operation_lock(self.settings.backup_lock_file):
                logger.info(f"Starting {kind.value} backup into {self.backup_dir}")
                database = self._dump_database(None) if kind == ArtifactKind.DUMP else None
                self.check_preconditions()
                self.prune_old_artifacts()
                if kind == ArtifactKind.FULL:
                    return self._create_full()
                if kind == ArtifactKind.INCREMENTAL:
                    return self._create_incremental()
                return self._create_dump(database)
        except LockHeldError as e:
            logger.warning(f"Backup already running, skipping: {e}")
            return None

    def check_preconditions(self) -> None:
        """Require free space in the backup directory and a reachable database.

        Raises:
            PreconditionError: If a check fails
        """
        self.state = BackupState.IDLE
        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            self._checks_failed()
            raise PreconditionError(f"Cannot create backup directory {self.backup_dir}: {e}")

        free_mb = self.tool.free_space_mb(self.backup_dir)
        if free_mb < self.settings.min_free_mb:
            self._checks_failed()
            raise PreconditionError(
                f"Not enough free space in {self.backup_dir}: "
                f"{free_mb} MB available, {self.settings.min_free_mb} MB required"
            )

        if not self.tool.ping():
            self._checks_failed()
            raise PreconditionError(f"Database at {self.tool.credentials.host} is not reachable")

        self.state = BackupState.CHECKS_PASSED
        logger.debug(f"Preconditions passed ({free_mb} MB free)")

    def _checks_failed(self) -> None:
        self.state = BackupState.CHECKS_FAILED

    def create_full_backup(self) -> ArtifactId:
        """Take and verify a new full backup."""
        self.check_preconditions()
        return self._create_full()

    def create_incremental_backup(self) -> ArtifactId:
        """Take an incremental on top of the latest full.

        With no full backup yet, a full backup is taken instead.

        Raises:
            ChainInconsistentError: Existing incrementals of the base have a gap
        """
        self.check_preconditions()
        return self._create_incremental()

    def _create_full(self) -> ArtifactId:
        return self._full_backup(self.artifacts())

    def _create_incremental(self) -> ArtifactId:
        artifacts = [a for a in physical_artifacts(self.artifacts()) if not a.archived]

        base = latest_full(artifacts)
        if base is None:
            logger.warning("No full backup found - creating a full backup instead of an incremental")
            return self._full_backup(artifacts)

        chain = incrementals_for(artifacts, base.id)
        check_contiguous(base.id, chain)
        delta_base = chain[-1] if chain else base

        artifact_id = next_incremental_id(artifacts, base.id)
        logger.info(f"Incremental backup {artifact_id} based on {delta_base.id}")
        return self._physical_backup(artifact_id, delta_base.path)

    def _full_backup(self, artifacts: List[Artifact]) -> ArtifactId:
        artifact_id = next_full_id(artifacts, self._now().strftime("%Y%m%d"))
        logger.info(f"Full backup {artifact_id}")
        return self._physical_backup(artifact_id)

    def _physical_backup(self, artifact_id: ArtifactId, basedir: Optional[Path] = None) -> ArtifactId:
        target = self.kind_dir(artifact_id.kind) / artifact_id.name
        _make_dir(target)

        self.state = BackupState.BACKUP_IN_PROGRESS
        try:
            self.tool.backup(target, incremental_basedir=basedir)
            logger.info(f"Verifying {target}")
            self.tool.prepare(target, read_only=True)
        except BaseException:
            self.state = BackupState.ABORTED
            logger.error(f"Backup {artifact_id} failed - removing {target}")
            _discard(target)
            raise

        self.state = BackupState.VERIFIED
        logger.info(f"✓ Backup {artifact_id} written to {target}")
        self.state = BackupState.DONE
        return artifact_id

    def create_dump_backup(self, database: Optional[str] = None) -> Path:
        """Write a gzip-compressed logical dump of one database.

        Returns:
            Path of the dump file
        """
        database = self._dump_database(database)
        self.check_preconditions()
        return self._create_dump(database)

    def _dump_database(self, database: Optional[str]) -> str:
        database = database or self.tool.credentials.database
        if not database:
            raise ConfigError("No database configured for dump backups (set MYSQL_DATABASE or POSTGRES_DB)")
        return database

    def _create_dump(self, database: str) -> Path:
        now = self._now()
        artifact_id = ArtifactId.dump(database, now.strftime("%Y%m%d"), now.strftime("%H%M%S"))
        dump_dir = self.kind_dir(ArtifactKind.DUMP)
        _make_dir(dump_dir, exist_ok=True)
        out_file = dump_dir / artifact_id.name

        self.state = BackupState.BACKUP_IN_PROGRESS
        logger.info(f"Dumping database {database} to {out_file}")
        try:
            self.tool.dump(database, out_file)
        except BaseException:
            self.state = BackupState.ABORTED
            _discard(out_file)
            raise

        self.state = BackupState.DONE
        logger.info(f"✓ Dump written to {out_file}")
        return out_file

    def prune_old_artifacts(self, retention_days: Optional[int] = None) -> List[Path]:
        """Delete artifacts older than the retention window.

        Nothing is deleted unless at least one full backup is inside the
        window.

        Returns:
            Paths deleted
        """
        days = self.settings.retention_days if retention_days is None else retention_days
        cutoff = self._now().timestamp() - days * SECONDS_PER_DAY
        artifacts = self.artifacts()
        if not artifacts:
            logger.info(f"No backups found in {self.backup_dir}, nothing to prune")
            return []

        def age_ok(artifact: Artifact) -> bool:
            return artifact.path.stat().st_mtime >= cutoff

        if not any(age_ok(a) for a in artifacts if a.kind == ArtifactKind.FULL):
            logger.warning(
                f"No full backup newer than {days} day(s) in {self.backup_dir} - skipping prune"
            )
            return []

        deleted = []
        for artifact in artifacts:
            if age_ok(artifact):
                continue
            logger.info(f"Pruning {artifact.kind.value} backup {artifact.id}")
            _discard(artifact.path)
            deleted.append(artifact.path)

        if deleted:
            logger.info(f"Pruned {len(deleted)} artifact(s) older than {days} day(s)")
        return deleted


def file_age_days(path: Path) -> float:
    return (time.time() - Path(path).stat().st_mtime) / SECONDS_PER_DAY
