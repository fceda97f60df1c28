"""
Per-file slot table of the retention safe.

A FileTable records which stored copy (identified by its epoch-millisecond
timestamp) occupies each slot of the schedule for one tracked source file,
runs the promotion algorithm over that ladder and persists itself as a
small line-oriented text file.
"""

import re
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set, TYPE_CHECKING

import structlog

from layersafe.storage.file_ops import (
    copy_file_name,
    copy_with_mtime,
    delete_file,
    storage_token,
    table_file_name,
)
from layersafe.storage.safe_errors import (
    ConfigurationError,
    PersistenceFormatError,
    SafeIOError,
)
from layersafe.storage.slot_schedule import SlotSchedule

if TYPE_CHECKING:
    from layersafe.monitoring.safe_metrics import SafeMetrics

logger = structlog.get_logger(__name__)

MS_PER_DAY = 24 * 60 * 60 * 1000
ENGINE_NAME = "layersafe"
FORMAT_VERSION = 0
HEADER = f"# {ENGINE_NAME} file-table, {FORMAT_VERSION}"

_HEADER_RE = re.compile(rf"^# {ENGINE_NAME} file-table, (\d+)$")
_SLOT_LINE_RE = re.compile(r"^([^\t#][^\t]*)\t(\d+)$")


class FileTable:
    """
    Slot bookkeeping for a single tracked source file.

    Slots hold epoch-millisecond timestamps, 0 meaning empty. Several slots
    may reference the same timestamp and therefore the same physical copy;
    a copy is deleted only once no slot references it any more.
    """

    def __init__(self, source_path: Path, directory: Path, schedule: SlotSchedule,
                 clock: Callable[[], int], metrics: Optional["SafeMetrics"] = None,
                 token: Optional[str] = None):
        self.source_path = source_path
        self.directory = directory
        self.schedule = schedule
        self.token = token or storage_token(source_path)
        self._clock = clock
        self._metrics = metrics
        self._times: List[int] = [0] * schedule.slot_count
        self._table_path: Optional[Path] = None

    @property
    def table_path(self) -> Path:
        if self._table_path is None:
            self._table_path = self.directory / table_file_name(self.token, self.source_path)
        return self._table_path

    @property
    def slot_times(self) -> Dict[str, int]:
        """Snapshot of label -> timestamp for every slot."""
        return dict(zip(self.schedule.labels, self._times))

    def copy_path(self, time_ms: int) -> Path:
        return self.directory / copy_file_name(self.token, time_ms)

    def referenced_times(self) -> Set[int]:
        return {t for t in self._times if t}

    def distinct_copies(self) -> int:
        return len(self.referenced_times())

    def is_empty(self) -> bool:
        return not any(self._times)

    def age(self, time_ms: int, now: Optional[int] = None) -> int:
        """
        Elapsed whole days between ``time_ms`` and now.

        An empty slot (0) has age 0; any stored copy is at least 1 day old so
        that it leaves its origin slot on the next promotion.
        """
        if time_ms == 0:
            return 0
        if now is None:
            now = self._clock()
        return max(1, (now - time_ms) // MS_PER_DAY)

    def promote(self) -> bool:
        """
        Settle the slot ladder for the current time.

        Scans from the oldest slot down to slot 1 and draws up the younger
        neighbour's timestamp into every slot that is empty or whose occupant
        exceeded the slot's maximum age. Scans repeat until nothing moves.
        Copies no longer referenced afterwards are deleted.

        Returns:
            True if any slot changed or any copy was deleted.
        """
        now = self._clock()
        before = self.referenced_times()
        draw_ups = 0

        moved = True
        while moved:
            moved = False
            for i in range(len(self._times) - 1, 0, -1):
                current = self._times[i]
                younger = self._times[i - 1]
                if younger == 0 or younger == current:
                    continue
                current_age = self.age(current, now)
                if current and current_age <= self.schedule.max_age(i):
                    continue
                if current and self.age(younger, now) >= current_age:
                    continue
                self._times[i] = younger
                draw_ups += 1
                moved = True
                logger.debug("Drew up slot",
                             source=str(self.source_path),
                             slot=self.schedule.label(i),
                             time=younger)

        deleted = self._delete_copies(before - self.referenced_times())

        if self._metrics is not None:
            self._metrics.record_promotion(draw_ups, deleted)
        return draw_ups > 0 or deleted > 0

    def store(self, source: Path) -> Path:
        """
        Copy ``source`` into the youngest slot, timestamped now.

        Returns:
            Path of the newly created copy file.
        """
        if not self._times:
            raise ConfigurationError("schedule has no slots, nothing can be stored")

        self.promote()
        prior = self._times[0]
        now = self._clock()
        target = self.copy_path(now)
        copy_with_mtime(source, target, now)
        self._times[0] = now
        logger.info("Stored file copy", source=str(self.source_path), copy=target.name)

        self.promote()
        if prior and prior not in self._times:
            deleted = self._delete_copies({prior})
            if deleted and self._metrics is not None:
                self._metrics.record_copies_deleted(deleted)
        return target

    def history(self) -> List[Path]:
        """Copy files youngest first, consecutive duplicates collapsed."""
        result = []
        last = None
        for t in self._times:
            if t == 0:
                continue
            if t != last:
                result.append(self.copy_path(t))
            last = t
        return result

    def drop_missing_copies(self) -> int:
        """Empty every slot whose copy file no longer exists on disk."""
        missing = {t for t in self.referenced_times() if not self.copy_path(t).is_file()}
        if not missing:
            return 0
        self._times = [0 if t in missing else t for t in self._times]
        logger.warning("Dropped slots with missing copies",
                       source=str(self.source_path), count=len(missing))
        return len(missing)

    def discard(self) -> int:
        """Delete every stored copy and the table file."""
        deleted = self._delete_copies(self.referenced_times())
        self._times = [0] * len(self._times)
        delete_file(self.table_path)
        return deleted

    def _delete_copies(self, times: Set[int]) -> int:
        deleted = 0
        for t in sorted(times):
            path = self.copy_path(t)
            if delete_file(path):
                deleted += 1
                logger.debug("Deleted copy", source=str(self.source_path), copy=path.name)
        return deleted

    # Persistence

    def to_text(self) -> str:
        lines = [
            HEADER,
            f"file = {self.source_path}",
            f"token = {self.token}",
        ]
        for label, t in sorted(zip(self.schedule.labels, self._times)):
            lines.append(f"{label}\t{t}")
        return "\n".join(lines) + "\n"

    def write(self) -> Path:
        """Persist the table to its table file."""
        path = self.table_path
        try:
            path.write_text(self.to_text(), encoding="utf-8")
        except OSError as e:
            raise SafeIOError(f"failed to write file table {path}: {e}") from e
        return path

    @classmethod
    def read(cls, table_path: Path, directory: Path, schedule: SlotSchedule,
             clock: Callable[[], int],
             metrics: Optional["SafeMetrics"] = None) -> Optional["FileTable"]:
        """
        Load a table file.

        Returns:
            The table, or None when ``table_path`` does not exist.

        Raises:
            PersistenceFormatError: The file is not a valid table file.
            SafeIOError: The file exists but cannot be read.
        """
        try:
            text = table_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except UnicodeDecodeError as e:
            raise PersistenceFormatError(table_path, f"not UTF-8 text ({e})") from e
        except OSError as e:
            raise SafeIOError(f"failed to read file table {table_path}: {e}") from e

        lines = text.splitlines()
        header = _HEADER_RE.match(lines[0].strip()) if lines else None
        if header is None:
            raise PersistenceFormatError(table_path, "missing or mismatched header line")
        if int(header.group(1)) != FORMAT_VERSION:
            raise PersistenceFormatError(
                table_path, f"unsupported format version {header.group(1)}")

        source = None
        token = None
        times: Dict[str, int] = {}
        for line in lines[1:]:
            if not line.strip() or line.startswith("#"):
                continue
            key, sep, value = line.partition(" = ")
            if sep and key.strip() == "file":
                source = value.strip()
                continue
            if sep and key.strip() == "token":
                token = value.strip()
                continue
            match = _SLOT_LINE_RE.match(line.rstrip("\r\n"))
            if match:
                times[match.group(1)] = int(match.group(2))

        if not source:
            raise PersistenceFormatError(table_path, "no source file entry")

        table = cls(Path(source), directory, schedule, clock, metrics, token=token)
        table._table_path = table_path
        for label, t in times.items():
            if label in schedule:
                table._times[schedule.index_of(label)] = t
        return table

    def __repr__(self) -> str:
        return f"FileTable(source={str(self.source_path)!r}, token={self.token!r})"
