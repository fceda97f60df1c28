"""
Exception types raised by the retention safe.
"""


class SafeError(Exception):
    """Base class for all safe errors."""


class ConfigurationError(SafeError, ValueError):
    """Invalid slot counts or an unusable safe directory."""


class NotTrackedError(SafeError, LookupError):
    """The operation needs a file table for a path that has none."""

    def __init__(self, path):
        super().__init__(f"file is not tracked by this safe: {path}")
        self.path = path


class SafeIOError(SafeError, OSError):
    """A filesystem operation (copy, read, write, delete) failed."""


class PersistenceFormatError(SafeError, ValueError):
    """A persisted file table could not be parsed."""

    def __init__(self, path, reason: str):
        super().__init__(f"malformed file table {path}: {reason}")
        self.path = path
        self.reason = reason
