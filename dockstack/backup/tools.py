"""Wrappers around the external database backup CLIs.

All real work (hot backup, prepare, copy-back, logical dump) is done by
the engine's own tools. These classes only build the command lines, run
them, and turn non-zero exits into ToolFailureError.
"""
import abc
import gzip
import os
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Dict, List, Optional

from dockstack.core.config import DatabaseCredentials
from dockstack.core.errors import ConfigError, PreconditionError, ToolFailureError
from dockstack.core.logger import get_logger

logger = get_logger(__name__)

STDERR_TAIL = 2000


class DatabaseTool(abc.ABC):
    """Base wrapper: subprocess plumbing shared by all engines."""

    engine = "database"
    server_process = ""
    supports_physical = False

    def __init__(
        self,
        credentials: DatabaseCredentials,
        mock: bool = False,
        compress_threads: int = 4,
        parallel: int = 4,
    ):
        self.credentials = credentials
        self.mock = mock
        self.compress_threads = compress_threads
        self.parallel = parallel

    def _env(self) -> Optional[Dict[str, str]]:
        return None

    def _run(self, cmd: List[str], description: str, check: bool = True) -> subprocess.CompletedProcess:
        """Run a command; the description is logged instead of the command
        line so credentials never reach the logs.

        Raises:
            ToolFailureError: If check is set and the command fails
        """
        if self.mock:
            logger.info(f"MOCK: Would run {description}")
            return subprocess.CompletedProcess(cmd, 0, "", "")

        logger.debug(f"Running {description}")
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, check=False, env=self._env())
        except FileNotFoundError:
            raise ToolFailureError(f"{cmd[0]} not found - cannot run {description}", returncode=127)

        if check and result.returncode != 0:
            stderr = (result.stderr or "").strip()[-STDERR_TAIL:]
            raise ToolFailureError(
                f"{description} failed (exit {result.returncode}): {stderr or 'no output'}",
                returncode=result.returncode,
                stderr=stderr,
            )
        return result

    # Health checks

    @abc.abstractmethod
    def ping_command(self) -> List[str]:
        """Command whose zero exit means the server answers."""

    def ping(self) -> bool:
        """True if the database server answers."""
        if self.mock:
            logger.info(f"MOCK: Would ping {self.engine} at {self.credentials.host}")
            return True
        try:
            result = self._run(self.ping_command(), f"{self.engine} ping", check=False)
        except ToolFailureError:
            return False
        return result.returncode == 0

    def process_running(self) -> bool:
        """True if a server process is visible in the local process table."""
        if self.mock or not self.server_process:
            return False
        try:
            result = subprocess.run(['pgrep', '-x', self.server_process], capture_output=True, check=False)
        except FileNotFoundError:
            logger.warning("pgrep not available, skipping process table check")
            return False
        return result.returncode == 0

    def server_running(self) -> bool:
        """Ping probe or process-table hit."""
        if self.mock:
            logger.info(f"MOCK: Would check that {self.engine} is stopped")
            return False
        return self.ping() or self.process_running()

    def free_space_mb(self, path: Path) -> int:
        return shutil.disk_usage(path).free // (1024 * 1024)

    # Logical dumps

    @abc.abstractmethod
    def dump_command(self, database: str) -> List[str]:
        """Command writing an SQL dump of database to stdout."""

    @abc.abstractmethod
    def load_command(self, database: str) -> List[str]:
        """Command reading SQL for database from stdin."""

    def dump(self, database: str, out_file: Path) -> None:
        """Stream a logical dump through gzip -9 into out_file.

        Raises:
            ToolFailureError: If the dump tool exits non-zero
        """
        if self.mock:
            logger.info(f"MOCK: Would dump {database} to {out_file}")
            return

        cmd = self.dump_command(database)
        try:
            with tempfile.TemporaryFile() as err, gzip.open(out_file, 'wb', compresslevel=9) as gz:
                try:
                    proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=err, env=self._env())
                except FileNotFoundError:
                    raise ToolFailureError(f"{cmd[0]} not found - cannot dump {database}", returncode=127)
                shutil.copyfileobj(proc.stdout, gz)
                proc.stdout.close()
                returncode = proc.wait()
                if returncode != 0:
                    err.seek(0)
                    stderr = err.read().decode(errors='replace').strip()[-STDERR_TAIL:]
                    raise ToolFailureError(
                        f"{cmd[0]} failed for {database} (exit {returncode}): {stderr or 'no output'}",
                        returncode=returncode,
                        stderr=stderr,
                    )
        except OSError as e:
            raise ToolFailureError(f"Cannot write dump {out_file}: {e}")

    def recreate_database(self, database: str) -> None:
        """Drop and recreate a database before a logical restore."""
        logger.debug(f"{self.engine} dumps recreate their own objects, nothing to drop")

    def load_dump(self, dump_file: Path, database: str) -> None:
        """Feed a (optionally gzipped) SQL dump to the client.

        Raises:
            ToolFailureError: If the client exits non-zero
        """
        if self.mock:
            logger.info(f"MOCK: Would load {dump_file.name} into {database}")
            return

        cmd = self.load_command(database)
        try:
            opener = gzip.open if dump_file.name.endswith('.gz') else open
            with tempfile.TemporaryFile() as err, opener(dump_file, 'rb') as src:
                try:
                    proc = subprocess.Popen(cmd, stdin=subprocess.PIPE, stdout=subprocess.DEVNULL, stderr=err, env=self._env())
                except FileNotFoundError:
                    raise ToolFailureError(f"{cmd[0]} not found - cannot restore {dump_file.name}", returncode=127)
                try:
                    shutil.copyfileobj(src, proc.stdin)
                except BrokenPipeError:
                    pass
                finally:
                    proc.stdin.close()
                returncode = proc.wait()
                if returncode != 0:
                    err.seek(0)
                    stderr = err.read().decode(errors='replace').strip()[-STDERR_TAIL:]
                    raise ToolFailureError(
                        f"Restore of {dump_file.name} failed (exit {returncode}): {stderr or 'no output'}",
                        returncode=returncode,
                        stderr=stderr,
                    )
        except OSError as e:
            raise ToolFailureError(f"Cannot read dump {dump_file}: {e}")

    # Physical backups

    def _require_physical(self, operation: str):
        if not self.supports_physical:
            raise ConfigError(f"{self.engine} does not support {operation}; use dump backups")

    def backup(self, target_dir: Path, incremental_basedir: Optional[Path] = None) -> None:
        self._require_physical("physical backups")

    def prepare(self, target_dir: Path, incremental_dir: Optional[Path] = None, read_only: bool = False) -> None:
        self._require_physical("prepare")

    def decompress(self, target_dir: Path) -> None:
        self._require_physical("decompress")

    def copy_back(self, prepared_dir: Path, data_dir: Path) -> None:
        self._require_physical("copy-back")

    def extract_archive(self, archive: Path, dest: Path) -> None:
        """Unpack a zstd-compressed tar archive into dest."""
        try:
            dest.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PreconditionError(f"Cannot create staging directory {dest}: {e}")
        self._run(
            ['tar', '--use-compress-program=zstd', '-xf', str(archive), '-C', str(dest)],
            f"extract {archive.name}",
        )

    def fix_ownership(self, path: Path, owner: str) -> None:
        self._run(['chown', '-R', owner, str(path)], f"chown {owner} {path}")

    def clear_directory(self, path: Path) -> None:
        """Delete everything inside path, keeping the directory itself."""
        if self.mock:
            logger.info(f"MOCK: Would delete the contents of {path}")
            return
        try:
            for child in Path(path).iterdir():
                if child.is_dir() and not child.is_symlink():
                    shutil.rmtree(child)
                else:
                    child.unlink()
        except OSError as e:
            raise PreconditionError(f"Cannot clear {path}: {e}")


class MariaDBTool(DatabaseTool):
    """mariadb-backup / mariadb-dump / mariadb-admin wrapper."""

    engine = "mariadb"
    server_process = "mariadbd"
    supports_physical = True

    def _auth_args(self) -> List[str]:
        return [
            f"--host={self.credentials.host}",
            f"--user={self.credentials.user}",
            f"--password={self.credentials.read_password()}",
        ]

    def ping_command(self) -> List[str]:
        return ['mariadb-admin', 'ping', '--silent', *self._auth_args()]

    def dump_command(self, database: str) -> List[str]:
        return [
            'mariadb-dump',
            *self._auth_args(),
            '--databases', database,
            '--single-transaction',
            '--routines',
            '--triggers',
        ]

    def load_command(self, database: str) -> List[str]:
        return ['mariadb', *self._auth_args(), database]

    def recreate_database(self, database: str) -> None:
        logger.info(f"Dropping and recreating database '{database}'")
        self._run(
            ['mariadb', *self._auth_args(), '-e',
             f"DROP DATABASE IF EXISTS `{database}`; CREATE DATABASE `{database}`;"],
            f"recreate database {database}",
        )

    def backup(self, target_dir: Path, incremental_basedir: Optional[Path] = None) -> None:
        cmd = [
            'mariadb-backup',
            '--backup',
            f"--target-dir={target_dir}",
            *self._auth_args(),
            '--compress',
            f"--compress-threads={self.compress_threads}",
            f"--parallel={self.parallel}",
        ]
        if incremental_basedir is not None:
            cmd.append(f"--incremental-basedir={incremental_basedir}")
        kind = "incremental" if incremental_basedir is not None else "full"
        self._run(cmd, f"mariadb-backup {kind} backup into {target_dir}")

    def prepare(self, target_dir: Path, incremental_dir: Optional[Path] = None, read_only: bool = False) -> None:
        cmd = ['mariadb-backup', '--prepare', f"--target-dir={target_dir}"]
        if incremental_dir is not None:
            cmd.append(f"--incremental-dir={incremental_dir}")
        if read_only:
            cmd.append('--read-only')
        self._run(cmd, f"mariadb-backup prepare of {incremental_dir or target_dir}")

    def decompress(self, target_dir: Path) -> None:
        if not any(Path(target_dir).rglob('*.qp')):
            logger.info(f"No compressed files found in {target_dir}")
            return
        logger.info(f"Decompressing backup directory: {target_dir}")
        self._run(
            ['mariadb-backup', '--decompress', f"--target-dir={target_dir}"],
            f"mariadb-backup decompress of {target_dir}",
        )

    def copy_back(self, prepared_dir: Path, data_dir: Path) -> None:
        self._run(
            ['mariadb-backup', '--copy-back', f"--target-dir={prepared_dir}", f"--datadir={data_dir}"],
            f"mariadb-backup copy-back into {data_dir}",
        )


class PostgresTool(DatabaseTool):
    """pg_dump / psql / pg_isready wrapper (logical backups only)."""

    engine = "postgresql"
    server_process = "postgres"
    supports_physical = False

    def _env(self) -> Optional[Dict[str, str]]:
        env = dict(os.environ)
        password = self.credentials.read_password()
        if password:
            env['PGPASSWORD'] = password
        return env

    def _conn_args(self) -> List[str]:
        return ['-h', self.credentials.host, '-U', self.credentials.user]

    def ping_command(self) -> List[str]:
        return ['pg_isready', '-q', *self._conn_args()]

    def dump_command(self, database: str) -> List[str]:
        return ['pg_dump', *self._conn_args(), '--clean', '--if-exists', database]

    def load_command(self, database: str) -> List[str]:
        return ['psql', *self._conn_args(), '-v', 'ON_ERROR_STOP=1', '-d', database]


def get_database_tool(
    engine: str,
    credentials: DatabaseCredentials,
    mock: bool = False,
    compress_threads: int = 4,
    parallel: int = 4,
) -> DatabaseTool:
    """Return the tool wrapper for an engine name."""
    tools = {'mariadb': MariaDBTool, 'postgresql': PostgresTool}
    if engine not in tools:
        raise ConfigError(f"Unsupported database engine '{engine}'")
    return tools[engine](credentials, mock=mock, compress_threads=compress_threads, parallel=parallel)
