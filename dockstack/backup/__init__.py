"""Backup creation, artifact catalog and restore for database containers."""
from dockstack.backup.catalog import list_artifacts, resolve_restore_chain
from dockstack.backup.manager import BackupManager
from dockstack.backup.restore import RestoreManager, RestoreResult
from dockstack.backup.tools import DatabaseTool, MariaDBTool, PostgresTool, get_database_tool

__all__ = [
    'BackupManager',
    'DatabaseTool',
    'MariaDBTool',
    'PostgresTool',
    'RestoreManager',
    'RestoreResult',
    'get_database_tool',
    'list_artifacts',
    'resolve_restore_chain',
]
