"""
Data models for the retention safe.

Plain records returned by the safe's reporting operations.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List


@dataclass
class TrackedFileStats:
    """Storage statistics for one tracked source file."""
    source_path: Path
    token: str
    copies: List[Path]
    size_bytes: int
    slot_times: Dict[str, int]


@dataclass
class SafeStats:
    """Storage statistics for a whole safe."""
    directory: Path
    slot_count: int
    tracked_files: int
    total_copies: int
    total_size_bytes: int
    files: List[TrackedFileStats] = field(default_factory=list)
