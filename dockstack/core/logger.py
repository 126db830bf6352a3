"""Unified logging for dockstack with console and per-run file output."""
import logging
import time
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

console = Console()

LOG_PREFIX = "run."
LOG_SUFFIX = ".log"
DEFAULT_LOG_RETENTION = 2

# Track the active file handler so repeated setup calls are no-ops
_file_handler: Optional[logging.FileHandler] = None


def setup_file_logging(
    log_dir: Path,
    verbose: bool = False,
    retention: int = DEFAULT_LOG_RETENTION,
) -> Optional[Path]:
    """Set up a timestamped run log for dockstack operations.

    Args:
        log_dir: Directory holding run.<timestamp>.log files
        verbose: Enable debug-level logging
        retention: Number of run logs to keep (older ones are deleted)

    Returns:
        Path of the log file in use, or None if file logging is unavailable

    Note:
        Falls back to console-only logging if log_dir is not writable.
    """
    global _file_handler

    if _file_handler is not None:
        return Path(_file_handler.baseFilename)

    log_dir = Path(log_dir)
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
    except OSError:
        get_logger(__name__).warning(f"Cannot create log directory {log_dir}, logging to console only")
        return None

    timestamp = time.strftime("%Y-%m-%d_%H-%M-%S")
    log_file = log_dir / f"{LOG_PREFIX}{timestamp}{LOG_SUFFIX}"

    root_logger = logging.getLogger("dockstack")
    file_handler = logging.FileHandler(log_file)
    file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    file_handler.setFormatter(logging.Formatter(
        "%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    root_logger.addHandler(file_handler)
    root_logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    _file_handler = file_handler

    prune_run_logs(log_dir, retention)
    root_logger.debug(f"dockstack logging initialized: {log_file}")
    return log_file


def teardown_file_logging() -> None:
    """Detach and close the run log handler."""
    global _file_handler

    if _file_handler is None:
        return
    logging.getLogger("dockstack").removeHandler(_file_handler)
    _file_handler.close()
    _file_handler = None


def prune_run_logs(log_dir: Path, retention: int = DEFAULT_LOG_RETENTION) -> int:
    """Delete run logs beyond the newest `retention` files.

    Returns:
        Number of log files deleted
    """
    logs = sorted(
        Path(log_dir).glob(f"{LOG_PREFIX}*{LOG_SUFFIX}"),
        key=lambda p: p.stat().st_mtime,
        reverse=True,
    )
    deleted = 0
    for old_log in logs[max(retention, 1):]:
        old_log.unlink(missing_ok=True)
        deleted += 1
    return deleted


def get_logger(name: str) -> logging.Logger:
    """Get a configured logger instance with console output.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger with Rich console handler

    Note:
        File logging must be enabled separately via setup_file_logging()
    """
    logger = logging.getLogger(name)

    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        handler = RichHandler(console=console, show_path=False)
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)

    return logger
