"""
Storage components of layersafe: slot schedules, per-file tables and the safe.
"""

from layersafe.storage.safe_errors import (
    SafeError,
    ConfigurationError,
    NotTrackedError,
    SafeIOError,
    PersistenceFormatError,
)
from layersafe.storage.slot_schedule import SlotSchedule, SlotKind, Slot
from layersafe.storage.file_table import FileTable
from layersafe.storage.retention_safe import RetentionSafe

__all__ = [
    "SafeError",
    "ConfigurationError",
    "NotTrackedError",
    "SafeIOError",
    "PersistenceFormatError",
    "SlotSchedule",
    "SlotKind",
    "Slot",
    "FileTable",
    "RetentionSafe",
]
