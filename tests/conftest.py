"""Shared test fixtures for dockstack tests."""
import gzip
import shutil
from pathlib import Path
from typing import List, Optional

import pytest

from dockstack.assembler.fetcher import TemplateFetcher
from dockstack.backup.tools import DatabaseTool
from dockstack.core.config import AssemblerSettings, BackupSettings, DatabaseCredentials
from dockstack.core.errors import ToolFailureError
from dockstack.models.template import TemplateSnapshot

REDIS_FRAGMENT = """\
services:
  redis:
    image: redis:${REDIS_VERSION:-7}
    restart: unless-stopped
    volumes:
      - redis-data:/data
volumes:
  redis-data: {}
"""

POSTGRES_FRAGMENT = """\
services:
  postgresql:
    image: postgres:${POSTGRES_VERSION}
    environment:
      POSTGRES_PASSWORD_FILE: /run/secrets/pg_password
    secrets:
      - pg_password
    volumes:
      - pg-data:/var/lib/postgresql/data
volumes:
  pg-data: {}
secrets:
  pg_password:
    file: ./secrets/pg_password.txt
"""

APP_DESCRIPTOR = """\
x-required-services:
  - redis
  - postgresql
services:
  app:
    image: example/app:latest
    depends_on:
      - redis
      - postgresql
"""


class StaticFetcher(TemplateFetcher):
    """Serves templates from a local directory at a fixed revision."""

    def __init__(self, templates_root: Path, revision: str = "a" * 40):
        super().__init__(mock=False)
        self.templates_root = Path(templates_root)
        self.revision = revision
        self.calls = 0

    def fetch(self, source, dest):
        self.calls += 1
        root = Path(dest) / source.subpath
        shutil.copytree(self.templates_root, root)
        return TemplateSnapshot(revision=self.revision, root=root, source=source)


class FakeTool(DatabaseTool):
    """In-process stand-in for the database CLIs.

    Physical backups write a marker file into the target directory, dumps
    write a tiny gzip file. Every call is recorded in `calls`.
    """

    engine = "fake"
    supports_physical = True

    def __init__(
        self,
        reachable: bool = True,
        running: bool = False,
        free_mb: int = 100000,
        fail_on: Optional[str] = None,
        database: Optional[str] = "shop",
    ):
        super().__init__(DatabaseCredentials(host="db", user="root", database=database))
        self.reachable = reachable
        self.running = running
        self.free_mb = free_mb
        self.fail_on = fail_on
        self.calls: List[tuple] = []

    def _maybe_fail(self, operation: str):
        if self.fail_on == operation:
            raise ToolFailureError(f"{operation} failed", returncode=1, stderr="simulated")

    def ping_command(self):
        return ['true']

    def dump_command(self, database):
        return ['true']

    def load_command(self, database):
        return ['true']

    def ping(self) -> bool:
        self.calls.append(('ping',))
        return self.reachable

    def process_running(self) -> bool:
        return self.running

    def free_space_mb(self, path) -> int:
        return self.free_mb

    def backup(self, target_dir, incremental_basedir=None):
        self.calls.append(('backup', Path(target_dir), incremental_basedir))
        (Path(target_dir) / "xtrabackup_checkpoints").write_text("backup_type = full-backuped\n")
        self._maybe_fail('backup')

    def prepare(self, target_dir, incremental_dir=None, read_only=False):
        self.calls.append(('prepare', Path(target_dir), incremental_dir, read_only))
        self._maybe_fail('prepare')

    def decompress(self, target_dir):
        self.calls.append(('decompress', Path(target_dir)))

    def copy_back(self, prepared_dir, data_dir):
        self.calls.append(('copy_back', Path(prepared_dir), Path(data_dir)))
        (Path(data_dir) / "ibdata1").write_text("restored")

    def fix_ownership(self, path, owner):
        self.calls.append(('chown', Path(path), owner))

    def extract_archive(self, archive, dest):
        self.calls.append(('extract', Path(archive), Path(dest)))
        inner = Path(dest) / Path(archive).name.split('.')[0]
        inner.mkdir(parents=True, exist_ok=True)
        (inner / "xtrabackup_checkpoints").write_text("extracted\n")

    def dump(self, database, out_file):
        self.calls.append(('dump', database, Path(out_file)))
        with gzip.open(out_file, 'wb') as f:
            f.write(b"CREATE TABLE t (id int);\n")
        self._maybe_fail('dump')

    def recreate_database(self, database):
        self.calls.append(('recreate', database))

    def load_dump(self, dump_file, database):
        self.calls.append(('load', Path(dump_file).name, database))
        self._maybe_fail('load')

    def called(self, name: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == name]


@pytest.fixture
def templates_root(tmp_path):
    """Template tree with redis and postgresql templates."""
    root = tmp_path / "remote" / "templates"

    redis = root / "redis"
    redis.mkdir(parents=True)
    (redis / "docker-compose.redis.yaml").write_text(REDIS_FRAGMENT)
    (redis / ".env").write_text("# Redis\nREDIS_VERSION=7\nTZ=Europe/Berlin\n")

    postgres = root / "postgresql"
    (postgres / "secrets").mkdir(parents=True)
    (postgres / "scripts").mkdir()
    (postgres / "docker-compose.postgresql.yaml").write_text(POSTGRES_FRAGMENT)
    (postgres / ".env").write_text("# PostgreSQL\nPOSTGRES_VERSION = 16\nTZ=UTC\nREDIS_VERSION=6\n")
    (postgres / "secrets" / "pg_password.txt").write_text("template-secret\n")
    (postgres / "scripts" / "initdb.sh").write_text("#!/bin/sh\necho init\n")

    return root


@pytest.fixture
def project_dir(tmp_path):
    """Project directory requiring redis and postgresql."""
    project = tmp_path / "myapp"
    project.mkdir()
    (project / "docker-compose.app.yaml").write_text(APP_DESCRIPTOR)
    (project / "app.env").write_text("# Local overrides\nTZ=America/New_York\nAPP_PORT=8080\n")
    return project


@pytest.fixture
def fetcher(templates_root):
    return StaticFetcher(templates_root)


@pytest.fixture
def assembler_settings():
    return AssemblerSettings(template_repo="https://example.com/templates.git")


@pytest.fixture
def backup_settings(tmp_path):
    """Backup settings rooted in tmp_path."""
    return BackupSettings(
        engine="mariadb",
        credentials=DatabaseCredentials(host="db", user="root", database="shop"),
        backup_dir=tmp_path / "backup",
        restore_dir=tmp_path / "restore",
        data_dir=tmp_path / "data",
        data_owner="mysql:mysql",
        retention_days=7,
        min_free_mb=1024,
        backup_lock_file=tmp_path / "locks" / "backup.lock",
        restore_lock_file=tmp_path / "locks" / "restore.lock",
    )


@pytest.fixture
def fake_tool():
    return FakeTool()
