"""Template lock: the commit hash a project was assembled from."""
from pathlib import Path
from typing import Optional

from dockstack.core.errors import CopyError
from dockstack.models.template import LockState


def read_lock(lock_path: Path) -> Optional[str]:
    """Return the locked revision, or None if no lock exists."""
    lock_path = Path(lock_path)
    if not lock_path.is_file():
        return None
    return lock_path.read_text().strip() or None


def check_lock(lock_path: Path, resolved_revision: str) -> LockState:
    """Compare the lock with a freshly fetched revision.

    Absent lock means INITIAL, equal means UP_TO_DATE, different means
    STALE. Acting on STALE requires an explicit force from the caller.
    """
    current = read_lock(lock_path)
    if current is None:
        return LockState.INITIAL
    if current == resolved_revision:
        return LockState.UP_TO_DATE
    return LockState.STALE


def write_lock(lock_path: Path, revision: str) -> None:
    """Persist the revision, replacing the lock atomically."""
    lock_path = Path(lock_path)
    tmp_path = lock_path.with_name(lock_path.name + ".tmp")
    try:
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path.write_text(f"{revision}\n")
        tmp_path.replace(lock_path)
    except OSError as e:
        raise CopyError(f"Failed to write template lock {lock_path}: {e}")
