"""Per-invocation state machines for backup and restore runs."""
from enum import Enum


class BackupState(str, Enum):
    """Backup run states.

    Idle -> ChecksPassed -> BackupInProgress -> Verified -> Done
    Idle -> ChecksFailed -> Aborted
    """
    IDLE = "idle"
    CHECKS_PASSED = "checks_passed"
    CHECKS_FAILED = "checks_failed"
    BACKUP_IN_PROGRESS = "backup_in_progress"
    VERIFIED = "verified"
    DONE = "done"
    ABORTED = "aborted"


class RestoreState(str, Enum):
    """Restore run states.

    Idle -> ChainResolved -> Preparing -> CopyingBack -> Done
    Idle -> Aborted
    """
    IDLE = "idle"
    CHAIN_RESOLVED = "chain_resolved"
    PREPARING = "preparing"
    COPYING_BACK = "copying_back"
    DONE = "done"
    ABORTED = "aborted"
