"""dockstack runtime configuration and settings."""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dockstack.core.errors import ConfigError

DEFAULT_TEMPLATE_REPO = "https://github.com/saervices/Docker"

# Project directory layout
MAIN_DESCRIPTOR = "docker-compose.app.yaml"
MERGED_DESCRIPTOR = "docker-compose.main.yaml"
FRAGMENT_GLOB = "docker-compose.*.yaml"
LOCAL_ENV_FILE = "app.env"
MERGED_ENV_FILE = ".env"
RUN_DIR = ".run.conf"
LOCK_FILE_NAME = "template.lock"
SECRETS_DIR = "secrets"
SCRIPTS_DIR = "scripts"
REQUIRED_SERVICES_KEY = "x-required-services"


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got '{value}'")


def is_mock() -> bool:
    """Return True when external tools should only be logged, not run."""
    return os.environ.get("DOCKSTACK_MOCK") == "1"


@dataclass
class AssemblerSettings:
    """Settings for template assembly.

    Attributes:
        template_repo: Git URL of the template repository
        template_ref: Branch or tag to fetch (None = remote default branch)
        template_subpath: Subtree holding the templates
        max_backups: Rotated copies kept per compose/env file
        log_retention: Run logs kept in .run.conf/logs
    """

    template_repo: str = DEFAULT_TEMPLATE_REPO
    template_ref: Optional[str] = None
    template_subpath: str = "templates"
    max_backups: int = 2
    log_retention: int = 2

    @classmethod
    def from_env(cls) -> "AssemblerSettings":
        """Create settings from environment variables.

        Environment variables:
            DOCKSTACK_TEMPLATE_REPO, DOCKSTACK_TEMPLATE_REF,
            DOCKSTACK_TEMPLATE_SUBPATH, DOCKSTACK_MAX_BACKUPS,
            DOCKSTACK_LOG_RETENTION
        """
        return cls(
            template_repo=os.getenv("DOCKSTACK_TEMPLATE_REPO", DEFAULT_TEMPLATE_REPO),
            template_ref=os.getenv("DOCKSTACK_TEMPLATE_REF") or None,
            template_subpath=os.getenv("DOCKSTACK_TEMPLATE_SUBPATH", "templates"),
            max_backups=_env_int("DOCKSTACK_MAX_BACKUPS", cls.max_backups),
            log_retention=_env_int("DOCKSTACK_LOG_RETENTION", cls.log_retention),
        )


@dataclass
class DatabaseCredentials:
    """Connection details for the database being backed up."""

    host: str
    user: str
    password_file: Optional[Path] = None
    database: Optional[str] = None

    def read_password(self) -> str:
        """Return the password stored in password_file (empty if unset)."""
        if self.password_file is None:
            return ""
        try:
            return Path(self.password_file).read_text().strip()
        except OSError as e:
            raise ConfigError(f"Cannot read password file {self.password_file}: {e}")


@dataclass
class BackupSettings:
    """Settings for backup and restore runs."""

    engine: str = "mariadb"
    credentials: Optional[DatabaseCredentials] = None
    backup_dir: Path = Path("/backup")
    restore_dir: Path = Path("/restore")
    data_dir: Path = Path("/var/lib/mysql")
    data_owner: str = "mysql:mysql"
    retention_days: int = 7
    compress_threads: int = 4
    parallel: int = 4
    min_free_mb: int = 10240
    restore_dry_run: bool = False
    backup_lock_file: Path = Path("/tmp/backup.lock")
    restore_lock_file: Path = Path("/tmp/restore.lock")

    @classmethod
    def from_env(cls) -> "BackupSettings":
        """Create settings from environment variables.

        MariaDB reads MYSQL_* variables, PostgreSQL reads POSTGRES_*
        variables; DOCKSTACK_DB_ENGINE selects between them.
        """
        engine = os.getenv("DOCKSTACK_DB_ENGINE", "mariadb").strip().lower()
        if engine not in {"mariadb", "postgresql"}:
            raise ConfigError(f"Unsupported DOCKSTACK_DB_ENGINE '{engine}' (use mariadb or postgresql)")

        if engine == "mariadb":
            password_file = os.getenv("MYSQL_ROOT_PASSWORD_FILE")
            credentials = DatabaseCredentials(
                host=os.getenv("MYSQL_DB_HOST", "mariadb"),
                user=os.getenv("MYSQL_ROOT_USER", "root"),
                password_file=Path(password_file) if password_file else None,
                database=os.getenv("MYSQL_DATABASE") or None,
            )
            data_dir = Path(os.getenv("DATA_DIR", "/var/lib/mysql"))
            data_owner = os.getenv("DOCKSTACK_DATA_OWNER", "mysql:mysql")
        else:
            password_file = os.getenv("POSTGRES_PASSWORD_FILE")
            credentials = DatabaseCredentials(
                host=os.getenv("POSTGRES_HOST", "postgresql"),
                user=os.getenv("POSTGRES_USER", "postgres"),
                password_file=Path(password_file) if password_file else None,
                database=os.getenv("POSTGRES_DB") or None,
            )
            data_dir = Path(os.getenv("DATA_DIR", "/var/lib/postgresql/data"))
            data_owner = os.getenv("DOCKSTACK_DATA_OWNER", "postgres:postgres")

        return cls(
            engine=engine,
            credentials=credentials,
            backup_dir=Path(os.getenv("BACKUP_DIR", "/backup")),
            restore_dir=Path(os.getenv("RESTORE_DIR", "/restore")),
            data_dir=data_dir,
            data_owner=data_owner,
            retention_days=_env_int("MYSQL_BACKUP_RETENTION_DAYS", cls.retention_days),
            compress_threads=_env_int("MYSQL_BACKUP_COMPRESS_THREADS", cls.compress_threads),
            parallel=_env_int("MYSQL_BACKUP_PARALLEL", cls.parallel),
            min_free_mb=_env_int("MYSQL_BACKUP_MIN_FREE_MB", cls.min_free_mb),
            restore_dry_run=_env_bool("MYSQL_RESTORE_DRY_RUN"),
            backup_lock_file=Path(os.getenv("BACKUP_LOCK_FILE", "/tmp/backup.lock")),
            restore_lock_file=Path(os.getenv("RESTORE_LOCK_FILE", "/tmp/restore.lock")),
        )
