"""Error taxonomy for dockstack operations.

Every fatal condition raises a subclass of DockstackError. The CLI turns
these into a single prefixed diagnostic line and a non-zero exit status.
"""


class DockstackError(Exception):
    """Base class for all dockstack failures."""
    pass


class ConfigError(DockstackError):
    """Missing or empty required declarations, or invalid settings."""
    pass


class FetchError(DockstackError):
    """Remote template retrieval failed."""
    pass


class NotFoundError(DockstackError):
    """A requested template path or file does not exist."""
    pass


class MergeConflictError(DockstackError):
    """Conflicting values that cannot be merged.

    Duplicate environment variables are warnings, never this error.
    """
    pass


class CopyError(DockstackError):
    """A filesystem copy into the project directory failed."""
    pass


class ChainInconsistentError(DockstackError):
    """Gap or missing base in a full/incremental backup chain."""
    pass


class PreconditionError(DockstackError):
    """Database still running, insufficient disk space, or unwritable target."""
    pass


class ToolFailureError(DockstackError):
    """An external backup, restore or dump command exited non-zero."""

    def __init__(self, message: str, returncode: int = 1, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class LockHeldError(DockstackError):
    """Another invocation holds the operation lock."""
    pass
