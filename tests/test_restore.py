"""Tests for chain and dump restores."""
import pytest

from conftest import FakeTool
from dockstack.backup.catalog import resolve_restore_chain
from dockstack.backup.restore import RestoreManager
from dockstack.core.errors import ChainInconsistentError, ConfigError, PreconditionError
from dockstack.models.state import RestoreState


def _chain_dir(settings, *names):
    for name in names:
        (settings.restore_dir / name).mkdir(parents=True)
    return resolve_restore_chain(settings.restore_dir)


class TestPerformRestore:
    """Test prepare ordering, copy-back and preconditions."""

    @pytest.mark.parametrize("dry_run", [True, False])
    def test_refuses_when_database_answers(self, backup_settings, dry_run):
        chain = _chain_dir(backup_settings, "20250101_01")
        manager = RestoreManager(backup_settings, tool=FakeTool(reachable=True))

        with pytest.raises(PreconditionError, match="running"):
            manager.perform_restore(chain, dry_run=dry_run)

        assert manager.state == RestoreState.ABORTED

    def test_refuses_when_process_running(self, backup_settings):
        chain = _chain_dir(backup_settings, "20250101_01")
        tool = FakeTool(reachable=False, running=True)

        with pytest.raises(PreconditionError):
            RestoreManager(backup_settings, tool=tool).perform_restore(chain)
        assert tool.called('prepare') == []

    def test_prepares_chain_in_order(self, backup_settings):
        chain = _chain_dir(backup_settings, "20250101_01", "20250101_01_01", "20250101_01_02")
        tool = FakeTool(reachable=False)
        base = backup_settings.restore_dir / "20250101_01"

        result = RestoreManager(backup_settings, tool=tool).perform_restore(chain, dry_run=True)

        assert tool.called('prepare') == [
            ('prepare', base, None, False),
            ('prepare', base, backup_settings.restore_dir / "20250101_01_01", False),
            ('prepare', base, backup_settings.restore_dir / "20250101_01_02", False),
        ]
        assert result.dry_run and not result.copied_back
        assert tool.called('copy_back') == []

    def test_copy_back_replaces_data_dir(self, backup_settings):
        chain = _chain_dir(backup_settings, "20250101_01")
        data_dir = backup_settings.data_dir
        (data_dir / "old_db").mkdir(parents=True)
        (data_dir / "ib_logfile0").write_text("old")
        tool = FakeTool(reachable=False)
        manager = RestoreManager(backup_settings, tool=tool)

        result = manager.perform_restore(chain)

        assert result.copied_back
        assert sorted(p.name for p in data_dir.iterdir()) == ["ibdata1"]
        assert tool.called('chown') == [('chown', data_dir, "mysql:mysql")]
        assert manager.state == RestoreState.DONE

    def test_dry_run_default_from_settings(self, backup_settings):
        chain = _chain_dir(backup_settings, "20250101_01")
        backup_settings.restore_dry_run = True
        tool = FakeTool(reachable=False)

        result = RestoreManager(backup_settings, tool=tool).perform_restore(chain)

        assert result.dry_run
        assert tool.called('copy_back') == []

    def test_archives_extracted_to_staging(self, backup_settings):
        backup_settings.restore_dir.mkdir(parents=True)
        (backup_settings.restore_dir / "full_20250101_01.zst").write_bytes(b"")
        (backup_settings.restore_dir / "incremental_20250101_01_01.zst").write_bytes(b"")
        chain = resolve_restore_chain(backup_settings.restore_dir)
        tool = FakeTool(reachable=False)

        RestoreManager(backup_settings, tool=tool).perform_restore(chain, dry_run=True)

        staging = backup_settings.restore_dir / ".staging"
        assert [c[1].name for c in tool.called('extract')] == [
            "full_20250101_01.zst",
            "incremental_20250101_01_01.zst",
        ]
        prepared = tool.called('prepare')[0][1]
        assert prepared == staging / "20250101_01" / "full_20250101_01"
        assert not staging.exists()

    def test_chain_must_start_with_full(self, backup_settings):
        chain = _chain_dir(backup_settings, "20250101_01", "20250101_01_01")

        with pytest.raises(ChainInconsistentError):
            RestoreManager(backup_settings, tool=FakeTool(reachable=False)).perform_restore(chain[1:])

    def test_engine_without_physical_backups(self, backup_settings):
        chain = _chain_dir(backup_settings, "20250101_01")
        tool = FakeTool(reachable=False)
        tool.supports_physical = False

        with pytest.raises(ConfigError):
            RestoreManager(backup_settings, tool=tool).perform_restore(chain)


class TestRequestedRestore:
    """Test the container-start restore trigger."""

    def test_missing_directory_is_noop(self, backup_settings):
        tool = FakeTool(reachable=False)
        assert RestoreManager(backup_settings, tool=tool).run_requested_restore() is None
        assert tool.calls == []

    def test_empty_directory_is_noop(self, backup_settings):
        backup_settings.restore_dir.mkdir(parents=True)
        assert RestoreManager(backup_settings, tool=FakeTool(reachable=False)).run_requested_restore() is None

    def test_no_chain_is_noop(self, backup_settings):
        backup_settings.restore_dir.mkdir(parents=True)
        (backup_settings.restore_dir / "notes.txt").write_text("hello")

        assert RestoreManager(backup_settings, tool=FakeTool(reachable=False)).run_requested_restore() is None
        assert not backup_settings.restore_lock_file.exists()

    def test_held_lock_skips(self, backup_settings):
        _chain_dir(backup_settings, "20250101_01")
        backup_settings.restore_lock_file.parent.mkdir(parents=True)
        backup_settings.restore_lock_file.write_text("1\nnow\n")
        tool = FakeTool(reachable=False)

        assert RestoreManager(backup_settings, tool=tool).run_requested_restore() is None
        assert tool.called('prepare') == []

    def test_restores_and_releases_lock(self, backup_settings):
        _chain_dir(backup_settings, "20250101_01", "20250101_01_01")
        tool = FakeTool(reachable=False)

        result = RestoreManager(backup_settings, tool=tool).run_requested_restore(dry_run=False)

        assert [str(a.id) for a in result.chain] == ["20250101_01", "20250101_01_01"]
        assert result.copied_back
        assert not backup_settings.restore_lock_file.exists()

    def test_gap_is_fatal(self, backup_settings):
        _chain_dir(backup_settings, "20250101_01", "20250101_01_02")

        with pytest.raises(ChainInconsistentError):
            RestoreManager(backup_settings, tool=FakeTool(reachable=False)).run_requested_restore()
        assert not backup_settings.restore_lock_file.exists()


class TestRestoreDumps:
    def test_loads_dumps_in_name_order(self, backup_settings):
        backup_settings.restore_dir.mkdir(parents=True)
        for name in ("shop_20250102_010000.sql.gz", "shop_20250101_010000.sql.gz", "extra.sql"):
            (backup_settings.restore_dir / name).write_bytes(b"")
        tool = FakeTool()

        restored = RestoreManager(backup_settings, tool=tool).restore_dumps()

        assert [p.name for p in restored] == [
            "extra.sql",
            "shop_20250101_010000.sql.gz",
            "shop_20250102_010000.sql.gz",
        ]
        assert tool.called('recreate') == [('recreate', 'shop')]
        assert [c[1] for c in tool.called('load')] == [p.name for p in restored]

    def test_no_dumps(self, backup_settings):
        backup_settings.restore_dir.mkdir(parents=True)
        tool = FakeTool()

        assert RestoreManager(backup_settings, tool=tool).restore_dumps() == []
        assert tool.called('recreate') == []

    def test_requires_reachable_database(self, backup_settings):
        backup_settings.restore_dir.mkdir(parents=True)
        (backup_settings.restore_dir / "shop_20250101_010000.sql.gz").write_bytes(b"")

        with pytest.raises(PreconditionError):
            RestoreManager(backup_settings, tool=FakeTool(reachable=False)).restore_dumps()
