"""Marker-file locking for backup and restore invocations.

A held lock is simply the presence of the lock file. There is no TTL: a
crashed process that could not clean up blocks later runs until the file
is removed by hand, so release must happen on every exit path.
"""
import os
import signal
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from dockstack.core.errors import LockHeldError, PreconditionError
from dockstack.core.logger import get_logger

logger = get_logger(__name__)


def _raise_system_exit(signum, frame):
    raise SystemExit(128 + signum)


class OperationLock:
    """Exclusive marker file guarding one kind of operation."""

    def __init__(self, lock_file: Path, handle_signals: bool = True):
        """Initialize lock.

        Args:
            lock_file: Path to the marker file (e.g. /tmp/backup.lock)
            handle_signals: Convert SIGTERM into SystemExit while held so
                the release in __exit__/finally still runs
        """
        self.lock_file = Path(lock_file)
        self.handle_signals = handle_signals
        self.held = False
        self._previous_handler = None

    def acquire(self) -> bool:
        """Acquire the lock.

        Returns:
            True if lock acquired successfully

        Raises:
            LockHeldError: If the lock file already exists
        """
        try:
            self.lock_file.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PreconditionError(f"Cannot create lock directory {self.lock_file.parent}: {e}")

        try:
            fd = os.open(self.lock_file, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o600)
        except FileExistsError:
            lock_info = read_lock_info(self.lock_file)
            raise LockHeldError(
                f"Lock file {self.lock_file} exists "
                f"(PID {lock_info['pid']} since {lock_info['time']}). "
                f"Remove it if no other run is active."
            )
        except OSError as e:
            raise PreconditionError(f"Cannot create lock file {self.lock_file}: {e}")

        with os.fdopen(fd, "w") as f:
            f.write(f"{os.getpid()}\n")
            f.write(f"{time.strftime('%Y-%m-%d %H:%M:%S')}\n")

        self.held = True
        self._install_signal_handler()
        logger.debug(f"Acquired lock: {self.lock_file}")
        return True

    def release(self):
        """Release the lock and remove the marker file."""
        if not self.held:
            return

        self._restore_signal_handler()
        try:
            self.lock_file.unlink(missing_ok=True)
            logger.debug(f"Released lock: {self.lock_file}")
        except OSError as e:
            logger.warning(f"Could not remove lock file {self.lock_file}: {e}")
        finally:
            self.held = False

    def _install_signal_handler(self):
        if not self.handle_signals:
            return
        try:
            self._previous_handler = signal.signal(signal.SIGTERM, _raise_system_exit)
        except ValueError:
            # signal handlers can only be set from the main thread
            self._previous_handler = None

    def _restore_signal_handler(self):
        if self._previous_handler is None:
            return
        try:
            signal.signal(signal.SIGTERM, self._previous_handler)
        except ValueError:
            pass
        self._previous_handler = None

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False


@contextmanager
def operation_lock(lock_file: Path, handle_signals: bool = True):
    """Context manager for exclusive backup/restore runs.

    Usage:
        with operation_lock(Path("/tmp/backup.lock")):
            ...

    Raises:
        LockHeldError: If another run holds the lock
    """
    lock = OperationLock(lock_file, handle_signals=handle_signals)
    lock.acquire()
    try:
        yield lock
    finally:
        lock.release()


def read_lock_info(lock_file: Path) -> dict:
    """Read PID and start time recorded in a lock file."""
    try:
        lines = Path(lock_file).read_text().splitlines()
    except OSError:
        lines = []

    if len(lines) >= 2:
        return {'pid': lines[0].strip(), 'time': lines[1].strip()}
    return {'pid': 'unknown', 'time': 'unknown'}


def check_lock_status(lock_file: Path) -> Optional[dict]:
    """Check if a lock is currently held.

    Returns:
        Dict with lock info if the marker exists, None if free
    """
    lock_path = Path(lock_file)
    if not lock_path.exists():
        return None
    info = read_lock_info(lock_path)
    info['lock_file'] = str(lock_path)
    return info
