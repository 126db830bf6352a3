"""Tests for settings loaded from the environment."""
from pathlib import Path

import pytest

from dockstack.core.config import AssemblerSettings, BackupSettings, DEFAULT_TEMPLATE_REPO, is_mock
from dockstack.core.errors import ConfigError

BACKUP_VARS = [
    "DOCKSTACK_DB_ENGINE", "MYSQL_DB_HOST", "MYSQL_ROOT_USER", "MYSQL_ROOT_PASSWORD_FILE",
    "MYSQL_DATABASE", "MYSQL_BACKUP_RETENTION_DAYS", "MYSQL_BACKUP_MIN_FREE_MB",
    "MYSQL_RESTORE_DRY_RUN", "BACKUP_DIR", "DATA_DIR", "POSTGRES_DB", "POSTGRES_USER",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in BACKUP_VARS + ["DOCKSTACK_TEMPLATE_REPO", "DOCKSTACK_TEMPLATE_REF", "DOCKSTACK_MAX_BACKUPS"]:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestAssemblerSettings:
    def test_defaults(self, clean_env):
        settings = AssemblerSettings.from_env()

        assert settings.template_repo == DEFAULT_TEMPLATE_REPO
        assert settings.template_ref is None
        assert settings.template_subpath == "templates"
        assert settings.max_backups == 2

    def test_overrides(self, clean_env):
        clean_env.setenv("DOCKSTACK_TEMPLATE_REF", "v2")
        clean_env.setenv("DOCKSTACK_MAX_BACKUPS", "5")

        settings = AssemblerSettings.from_env()

        assert settings.template_ref == "v2"
        assert settings.max_backups == 5

    def test_bad_integer(self, clean_env):
        clean_env.setenv("DOCKSTACK_MAX_BACKUPS", "many")

        with pytest.raises(ConfigError, match="DOCKSTACK_MAX_BACKUPS"):
            AssemblerSettings.from_env()


class TestBackupSettings:
    """Test engine selection and MYSQL_*/POSTGRES_* variables."""

    def test_mariadb_defaults(self, clean_env):
        settings = BackupSettings.from_env()

        assert settings.engine == "mariadb"
        assert settings.credentials.host == "mariadb"
        assert settings.credentials.user == "root"
        assert settings.credentials.password_file is None
        assert settings.retention_days == 7
        assert settings.min_free_mb == 10240
        assert settings.data_dir == Path("/var/lib/mysql")
        assert settings.restore_dry_run is False

    def test_mariadb_variables(self, clean_env, tmp_path):
        clean_env.setenv("MYSQL_ROOT_PASSWORD_FILE", str(tmp_path / "pw"))
        clean_env.setenv("MYSQL_DATABASE", "shop")
        clean_env.setenv("MYSQL_BACKUP_RETENTION_DAYS", "14")
        clean_env.setenv("MYSQL_RESTORE_DRY_RUN", "true")
        clean_env.setenv("BACKUP_DIR", str(tmp_path))

        settings = BackupSettings.from_env()

        assert settings.credentials.password_file == tmp_path / "pw"
        assert settings.credentials.database == "shop"
        assert settings.retention_days == 14
        assert settings.restore_dry_run is True
        assert settings.backup_dir == tmp_path

    def test_postgresql(self, clean_env):
        clean_env.setenv("DOCKSTACK_DB_ENGINE", "PostgreSQL")
        clean_env.setenv("POSTGRES_DB", "shop")

        settings = BackupSettings.from_env()

        assert settings.engine == "postgresql"
        assert settings.credentials.user == "postgres"
        assert settings.credentials.database == "shop"
        assert settings.data_owner == "postgres:postgres"

    def test_unknown_engine(self, clean_env):
        clean_env.setenv("DOCKSTACK_DB_ENGINE", "oracle")

        with pytest.raises(ConfigError, match="oracle"):
            BackupSettings.from_env()

    def test_unreadable_password_file(self, clean_env, tmp_path):
        clean_env.setenv("MYSQL_ROOT_PASSWORD_FILE", str(tmp_path / "missing"))

        with pytest.raises(ConfigError, match="Cannot read password file"):
            BackupSettings.from_env().credentials.read_password()


def test_mock_flag(monkeypatch):
    monkeypatch.setenv("DOCKSTACK_MOCK", "1")
    assert is_mock()
    monkeypatch.setenv("DOCKSTACK_MOCK", "0")
    assert not is_mock()
