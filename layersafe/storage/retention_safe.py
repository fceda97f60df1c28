"""
Retention safe - the directory-level entry point of layersafe.

A RetentionSafe owns a storage directory and a slot schedule and keeps one
FileTable per tracked source file. Every public operation runs under the
safe's lock; file tables are never handed out to callers.
"""

import os
import threading
import time
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

import structlog

from layersafe.monitoring.safe_metrics import SafeMetrics
from layersafe.storage.file_ops import (
    TABLE_SUFFIX,
    canonical_path,
    file_size,
    delete_file,
    parse_copy_file_name,
    storage_token,
    table_file_name,
)
from layersafe.storage.file_table import FileTable
from layersafe.storage.safe_errors import (
    ConfigurationError,
    NotTrackedError,
    PersistenceFormatError,
    SafeError,
    SafeIOError,
)
from layersafe.storage.safe_models import SafeStats, TrackedFileStats
from layersafe.storage.slot_schedule import SlotSchedule

logger = structlog.get_logger(__name__)


class RetentionSafe:
    """
    Stores security copies of files in a day/month/year history frame.

    Each call to ``store_file`` puts a new copy into the youngest slot of the
    file's table and promotes older copies up the ladder, expiring what no
    slot holds any more. ``promote`` advances the ladder for elapsed time
    without a new version.

    Files are identified by their canonical absolute path.
    """

    def __init__(self, directory, days: int = 6, months: int = 5, years: int = 3,
                 name: Optional[str] = None, metrics: Optional[SafeMetrics] = None):
        self.schedule = SlotSchedule(days, months, years)
        self.directory = self._prepare_directory(directory)
        self.name = name
        self.metrics = metrics

        self._lock = threading.RLock()
        self._time_now = 0
        self._tables: Dict[Path, FileTable] = {}

        self._load_tables()
        logger.info("Retention safe opened",
                    directory=str(self.directory),
                    schedule=repr(self.schedule),
                    tracked_files=len(self._tables))

    @staticmethod
    def _prepare_directory(directory) -> Path:
        if directory is None:
            raise ConfigurationError("safe directory is None")
        path = Path(directory).expanduser()
        try:
            path.mkdir(parents=True, exist_ok=True)
        except FileExistsError as e:
            raise ConfigurationError(f"safe directory is not a directory: {path}") from e
        except OSError as e:
            raise ConfigurationError(f"cannot create safe directory {path}: {e}") from e
        if not path.is_dir():
            raise ConfigurationError(f"safe directory is not a directory: {path}")
        if not os.access(path, os.W_OK | os.X_OK):
            raise ConfigurationError(f"safe directory is not writable: {path}")
        return path.resolve()

    def _new_table(self, source: Path) -> FileTable:
        return FileTable(source, self.directory, self.schedule, self.now_ms, self.metrics)

    def _load_tables(self):
        """Read every persisted file table in the directory, skipping bad ones."""
        for table_path in sorted(self.directory.glob(f"*{TABLE_SUFFIX}")):
            try:
                table = FileTable.read(table_path, self.directory, self.schedule,
                                       self.now_ms, self.metrics)
            except (PersistenceFormatError, SafeIOError) as e:
                logger.warning("Skipping unreadable file table",
                               table=table_path.name, error=str(e))
                continue
            if table is None:
                continue
            if table.drop_missing_copies():
                try:
                    table.write()
                except SafeIOError as e:
                    logger.warning("Could not rewrite file table after dropping missing copies",
                                   table=table_path.name, error=str(e))
            self._tables[table.source_path] = table

        self.purge_orphans()
        self._update_tracked_gauge()

    def _update_tracked_gauge(self):
        if self.metrics is not None:
            self.metrics.set_tracked_files(len(self._tables))

    # Clock

    def now_ms(self) -> int:
        """Current time in epoch milliseconds, honouring the time override."""
        return self._time_now or int(time.time() * 1000)

    def set_time_now(self, time_ms: int):
        """
        Fix "now" to ``time_ms`` (epoch milliseconds) for all calculations.
        A value of 0 returns to the wall clock.
        """
        if time_ms < 0:
            raise ValueError(f"time must not be negative: {time_ms}")
        self._time_now = int(time_ms)

    def get_time_now(self) -> int:
        """The time override, or 0 when the wall clock is in use."""
        return self._time_now

    # Schedule accessors

    @property
    def slot_count(self) -> int:
        return self.schedule.slot_count

    @property
    def max_ages(self) -> Tuple[int, ...]:
        return self.schedule.max_ages

    @property
    def labels(self) -> Tuple[str, ...]:
        return self.schedule.labels

    # Operations

    def store_file(self, path) -> Path:
        """
        Store a new copy of ``path`` timestamped now.

        Returns:
            Path of the stored copy inside the safe directory.

        Raises:
            SafeIOError: The source cannot be read or the copy cannot be
                written or persisted.
        """
        source = canonical_path(path)
        with self._lock:
            table = self._tables.get(source)
            if table is None:
                table = self._new_table(source)

            start = time.perf_counter()
            try:
                copy = table.store(source)
            except SafeError as e:
                if self.metrics is not None:
                    self.metrics.record_store_failure(e)
                raise

            if source not in self._tables:
                self._tables[source] = table
                self._update_tracked_gauge()
            table.write()

            if self.metrics is not None:
                self.metrics.record_store(time.perf_counter() - start)
            return copy

    def promote(self, path=None) -> bool:
        """
        Promote the table of ``path``, or of every tracked file when no path
        is given, and persist the promoted tables.

        Returns:
            True if any table changed.

        Raises:
            NotTrackedError: ``path`` is given but not tracked.
        """
        with self._lock:
            if path is None:
                changed = False
                for table in list(self._tables.values()):
                    changed = self._promote_table(table) or changed
                return changed

            source = canonical_path(path)
            table = self._tables.get(source)
            if table is None:
                raise NotTrackedError(source)
            return self._promote_table(table)

    def _promote_table(self, table: FileTable) -> bool:
        changed = table.promote()
        table.write()
        if changed:
            logger.debug("Promoted file table", source=str(table.source_path))
        return changed

    def clear_file(self, path) -> bool:
        """
        Remove all stored copies and the table of ``path``.

        Returns:
            False if the path was not tracked.
        """
        if path is None:
            return False
        source = canonical_path(path)
        with self._lock:
            table = self._tables.get(source)
            if table is None:
                return False
            deleted = table.discard()
            del self._tables[source]
            self._update_tracked_gauge()
            if self.metrics is not None and deleted:
                self.metrics.record_copies_deleted(deleted)
            logger.info("Cleared file", source=str(source), copies_deleted=deleted)
            return True

    def clear(self):
        """Remove every tracked file from the safe."""
        with self._lock:
            for source in list(self._tables):
                self.clear_file(source)

    def contains(self, path) -> bool:
        if path is None:
            return False
        source = canonical_path(path)
        with self._lock:
            return source in self._tables

    def get_history(self, path) -> List[Path]:
        """Stored copies of ``path``, youngest first; empty if untracked."""
        if path is None:
            return []
        source = canonical_path(path)
        with self._lock:
            table = self._tables.get(source)
            return table.history() if table is not None else []

    def get_files(self) -> Set[Path]:
        """The set of tracked source paths."""
        with self._lock:
            return set(self._tables)

    def get_slot_times(self, path) -> Dict[str, int]:
        """Snapshot of slot label -> timestamp for a tracked file."""
        source = canonical_path(path)
        with self._lock:
            table = self._tables.get(source)
            if table is None:
                raise NotTrackedError(source)
            return table.slot_times

    def reload_file(self, path) -> bool:
        """
        Re-read the persisted table of ``path`` from disk.

        Returns:
            False if no table file exists (the path is then no longer tracked).

        Raises:
            PersistenceFormatError: The table file is malformed.
        """
        source = canonical_path(path)
        with self._lock:
            current = self._tables.get(source)
            if current is not None:
                table_path = current.table_path
            else:
                table_path = self.directory / table_file_name(storage_token(source), source)

            table = FileTable.read(table_path, self.directory, self.schedule,
                                   self.now_ms, self.metrics)
            if table is None:
                self._tables.pop(source, None)
            else:
                self._tables[table.source_path] = table
            self._update_tracked_gauge()
            return table is not None

    def purge_orphans(self) -> int:
        """
        Delete copy files of tracked files that no slot references, such as
        copies left behind when a table could not be persisted.

        Returns:
            Number of files deleted.
        """
        with self._lock:
            by_token = {table.token: table for table in self._tables.values()}
            try:
                entries = list(self.directory.iterdir())
            except OSError as e:
                raise SafeIOError(f"cannot list safe directory {self.directory}: {e}") from e

            removed = 0
            for entry in entries:
                parsed = parse_copy_file_name(entry.name)
                if parsed is None:
                    continue
                token, time_ms = parsed
                table = by_token.get(token)
                if table is None or time_ms in table.referenced_times():
                    continue
                if delete_file(entry):
                    removed += 1
                    logger.info("Purged orphaned copy", copy=entry.name)

            if removed and self.metrics is not None:
                self.metrics.record_copies_deleted(removed)
            return removed

    # Reporting

    def get_stats(self) -> SafeStats:
        with self._lock:
            files = []
            for source, table in sorted(self._tables.items()):
                copies = table.history()
                files.append(TrackedFileStats(
                    source_path=source,
                    token=table.token,
                    copies=copies,
                    size_bytes=sum(file_size(c) for c in copies),
                    slot_times=table.slot_times,
                ))
            return SafeStats(
                directory=self.directory,
                slot_count=self.slot_count,
                tracked_files=len(files),
                total_copies=sum(len(f.copies) for f in files),
                total_size_bytes=sum(f.size_bytes for f in files),
                files=files,
            )

    def report(self) -> str:
        """Human-readable listing of the schedule and all stored copies."""
        stats = self.get_stats()
        lines = [
            f"# REPORT: RetentionSafe, {self.schedule.days} days, "
            f"{self.schedule.months} months, {self.schedule.years} years, "
            f"directory = {self.directory}",
            f'    "{self.name or ""}", {self.slot_count} slots, '
            f"max ages = [{', '.join(str(a) for a in self.max_ages)}]",
        ]
        for entry in stats.files:
            lines.append(f"    file = {entry.source_path}")
            for copy in entry.copies:
                lines.append(f"       {copy.name}")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return f"RetentionSafe(directory={str(self.directory)!r}, schedule={self.schedule!r})"
