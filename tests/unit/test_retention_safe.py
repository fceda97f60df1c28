"""
Unit tests for the Retention Safe.

Tests tracking, persistence across instances, clearing and error handling.
"""

import shutil
import tempfile
import threading
import unittest
from pathlib import Path
from unittest.mock import patch

from prometheus_client import CollectorRegistry

from layersafe.monitoring.safe_metrics import SafeMetrics
from layersafe.storage.file_table import FileTable, HEADER, MS_PER_DAY
from layersafe.storage.retention_safe import RetentionSafe
from layersafe.storage.safe_errors import (
    ConfigurationError,
    NotTrackedError,
    PersistenceFormatError,
    SafeIOError,
)

T0 = 1_700_000_000_000
HALF_HOUR = 30 * 60 * 1000


class RetentionSafeTestCase(unittest.TestCase):
    """Shared fixtures for retention safe tests."""

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.safe_dir = self.temp_dir / "safe"
        self.work_dir = self.temp_dir / "work"
        self.work_dir.mkdir()
        self.file_a = self._make_source("a.txt", "alpha")
        self.file_b = self._make_source("b.txt", "beta")
        self.safe = self._open_safe()

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def _make_source(self, name: str, content: str) -> Path:
        path = self.work_dir / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        return path

    def _open_safe(self, **kwargs) -> RetentionSafe:
        kwargs.setdefault("days", 4)
        kwargs.setdefault("months", 3)
        kwargs.setdefault("years", 3)
        safe = RetentionSafe(self.safe_dir, **kwargs)
        safe.set_time_now(T0)
        return safe


class TestRetentionSafeConstruction(RetentionSafeTestCase):
    """Test safe construction."""

    def test_creates_directory(self):
        self.assertTrue(self.safe_dir.is_dir())
        self.assertEqual(self.safe.directory, self.safe_dir.resolve())
        self.assertEqual(self.safe.get_files(), set())

    def test_schedule_accessors(self):
        self.assertEqual(self.safe.slot_count, 10)
        self.assertEqual(self.safe.max_ages, (1, 2, 3, 4, 30, 60, 90, 365, 730, 1095))
        self.assertEqual(self.safe.labels[0], "D-1")
        self.assertEqual(self.safe.labels[-1], "Y-3")

    def test_default_schedule(self):
        safe = RetentionSafe(self.temp_dir / "default")
        self.assertEqual(safe.slot_count, 14)
        self.assertIsNone(safe.name)

    def test_invalid_slot_configuration(self):
        with self.assertRaises(ConfigurationError):
            RetentionSafe(self.temp_dir / "bad", days=30, months=12, years=0)
        with self.assertRaises(ConfigurationError):
            RetentionSafe(self.temp_dir / "bad", days=360, months=0, years=1)

    def test_directory_is_a_file(self):
        not_a_dir = self.temp_dir / "plain-file"
        not_a_dir.write_text("x")

        with self.assertRaises(ConfigurationError):
            RetentionSafe(not_a_dir)

    def test_directory_none(self):
        with self.assertRaises(ConfigurationError):
            RetentionSafe(None)


class TestRetentionSafeClock(RetentionSafeTestCase):
    """Test the time override."""

    def test_time_override(self):
        self.assertEqual(self.safe.get_time_now(), T0)
        self.assertEqual(self.safe.now_ms(), T0)

    def test_zero_resumes_wall_clock(self):
        self.safe.set_time_now(0)

        self.assertEqual(self.safe.get_time_now(), 0)
        self.assertGreater(self.safe.now_ms(), T0)

    def test_negative_time_rejected(self):
        with self.assertRaises(ValueError):
            self.safe.set_time_now(-1)
        self.assertEqual(self.safe.get_time_now(), T0)


class TestRetentionSafeOperations(RetentionSafeTestCase):
    """Test store, promote, query and clear operations."""

    def test_store_tracks_file(self):
        copy = self.safe.store_file(self.file_a)

        self.assertTrue(copy.is_file())
        self.assertEqual(copy.parent, self.safe.directory)
        self.assertTrue(self.safe.contains(self.file_a))
        self.assertFalse(self.safe.contains(self.file_b))
        self.assertEqual(self.safe.get_files(), {self.file_a.resolve()})
        self.assertEqual(self.safe.get_history(self.file_a), [copy])
        self.assertEqual(len(list(self.safe.directory.glob("*.ftab"))), 1)

    def test_relative_and_absolute_paths_are_the_same_file(self):
        self.safe.store_file(self.file_a)
        (self.work_dir / "sub").mkdir()
        alias = self.work_dir / "sub" / ".." / "a.txt"

        self.assertTrue(self.safe.contains(alias))
        self.assertEqual(len(self.safe.get_files()), 1)

    def test_same_name_in_different_directories(self):
        other = self._make_source("nested/a.txt", "other alpha")
        self.safe.store_file(self.file_a)
        self.safe.store_file(other)

        self.assertEqual(len(self.safe.get_files()), 2)
        self.assertEqual(self.safe.get_history(other)[0].read_text(), "other alpha")
        self.assertEqual(self.safe.get_history(self.file_a)[0].read_text(), "alpha")

    def test_contains_and_history_for_absent_arguments(self):
        self.assertFalse(self.safe.contains(None))
        self.assertEqual(self.safe.get_history(None), [])
        self.assertEqual(self.safe.get_history(self.file_b), [])

    def test_store_missing_source(self):
        with self.assertRaises(SafeIOError):
            self.safe.store_file(self.work_dir / "missing.txt")
        self.assertEqual(self.safe.get_files(), set())

    def test_promote_untracked_file(self):
        with self.assertRaises(NotTrackedError):
            self.safe.promote(self.file_a)

    def test_promote_single_and_all(self):
        self.safe.store_file(self.file_a)
        self.safe.store_file(self.file_b)
        self.safe.set_time_now(T0 + MS_PER_DAY + HALF_HOUR)
        self.safe.store_file(self.file_a)
        self.safe.store_file(self.file_b)

        self.safe.set_time_now(T0 + 3 * MS_PER_DAY + HALF_HOUR)
        self.assertTrue(self.safe.promote(self.file_a))
        self.assertFalse(self.safe.promote(self.file_a))
        self.assertTrue(self.safe.promote())
        self.assertFalse(self.safe.promote())

    def test_get_slot_times(self):
        self.safe.store_file(self.file_a)

        times = self.safe.get_slot_times(self.file_a)
        self.assertEqual(set(times.values()), {T0})
        with self.assertRaises(NotTrackedError):
            self.safe.get_slot_times(self.file_b)

    def test_clear_file(self):
        self.safe.store_file(self.file_a)
        self.safe.set_time_now(T0 + MS_PER_DAY + HALF_HOUR)
        self.safe.store_file(self.file_a)
        self.safe.store_file(self.file_b)
        history = self.safe.get_history(self.file_a)

        self.assertTrue(self.safe.clear_file(self.file_a))

        self.assertFalse(self.safe.contains(self.file_a))
        self.assertTrue(all(not p.exists() for p in history))
        self.assertTrue(self.safe.contains(self.file_b))
        self.assertEqual(len(list(self.safe.directory.glob("*.ftab"))), 1)

    def test_clear_untracked_file_is_noop(self):
        self.assertFalse(self.safe.clear_file(self.file_a))
        self.assertFalse(self.safe.clear_file(None))

    def test_clear_all(self):
        self.safe.store_file(self.file_a)
        self.safe.store_file(self.file_b)

        self.safe.clear()

        self.assertEqual(self.safe.get_files(), set())
        self.assertEqual(list(self.safe.directory.iterdir()), [])

    def test_concurrent_stores(self):
        sources = [self._make_source(f"f{i}.txt", str(i)) for i in range(8)]
        errors = []

        def worker(path):
            try:
                for _ in range(5):
                    self.safe.store_file(path)
                    self.safe.get_history(path)
                    self.safe.get_files()
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(p,)) for p in sources]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(errors, [])
        self.assertEqual(self.safe.get_files(), {p.resolve() for p in sources})
        for p in sources:
            self.assertEqual(len(self.safe.get_history(p)), 1)


class TestRetentionSafePersistence(RetentionSafeTestCase):
    """Test loading persisted tables at startup and on request."""

    def test_tables_survive_reopen(self):
        self.safe.store_file(self.file_a)
        self.safe.set_time_now(T0 + MS_PER_DAY + HALF_HOUR)
        self.safe.store_file(self.file_a)
        self.safe.store_file(self.file_b)

        reopened = self._open_safe()

        self.assertEqual(reopened.get_files(), self.safe.get_files())
        self.assertEqual(reopened.get_history(self.file_a), self.safe.get_history(self.file_a))
        self.assertEqual(reopened.get_slot_times(self.file_b), self.safe.get_slot_times(self.file_b))

    def test_corrupt_table_is_skipped(self):
        self.safe.store_file(self.file_a)
        (self.safe.directory / "0000 -- junk.ftab").write_text("not a table\n", encoding="utf-8")

        reopened = self._open_safe()

        self.assertEqual(reopened.get_files(), {self.file_a.resolve()})

    def test_missing_copies_are_dropped_on_load(self):
        self.safe.store_file(self.file_a)
        self.safe.set_time_now(T0 + MS_PER_DAY + HALF_HOUR)
        self.safe.store_file(self.file_a)
        oldest = self.safe.get_history(self.file_a)[-1]
        oldest.unlink()

        reopened = self._open_safe()

        history = reopened.get_history(self.file_a)
        self.assertEqual(len(history), 1)
        self.assertTrue(history[0].is_file())

    def test_rewrite_failure_on_load_keeps_table(self):
        self.safe.store_file(self.file_a)
        self.safe.set_time_now(T0 + MS_PER_DAY + HALF_HOUR)
        self.safe.store_file(self.file_a)
        self.safe.store_file(self.file_b)
        self.safe.get_history(self.file_a)[-1].unlink()

        with patch.object(FileTable, "write", side_effect=SafeIOError("disk full")):
            reopened = self._open_safe()

        self.assertEqual(reopened.get_files(), {self.file_a.resolve(), self.file_b.resolve()})
        self.assertEqual(len(reopened.get_history(self.file_a)), 1)

    def test_orphaned_copies_are_purged(self):
        copy = self.safe.store_file(self.file_a)
        token = copy.name.split(" -- ")[0]
        orphan = self.safe.directory / f"{token} -- {T0 - 5000}.dat"
        orphan.write_text("left over")
        foreign = self.safe.directory / f"ffffffffffffffff -- {T0}.dat"
        foreign.write_text("unknown token")

        self.assertEqual(self.safe.purge_orphans(), 1)
        self.assertFalse(orphan.exists())
        self.assertTrue(foreign.exists())
        self.assertTrue(copy.exists())

    def test_orphans_purged_at_startup(self):
        copy = self.safe.store_file(self.file_a)
        token = copy.name.split(" -- ")[0]
        orphan = self.safe.directory / f"{token} -- {T0 + 7}.dat"
        orphan.write_text("left over")

        self._open_safe()

        self.assertFalse(orphan.exists())

    def test_reload_file(self):
        self.safe.store_file(self.file_a)
        reopened = self._open_safe()
        reopened.set_time_now(T0 + MS_PER_DAY + HALF_HOUR)
        reopened.store_file(self.file_a)

        self.assertTrue(self.safe.reload_file(self.file_a))
        self.assertEqual(self.safe.get_history(self.file_a), reopened.get_history(self.file_a))

    def test_reload_untracked_without_table(self):
        self.assertFalse(self.safe.reload_file(self.file_b))
        self.assertFalse(self.safe.contains(self.file_b))

    def test_reload_surfaces_format_errors(self):
        self.safe.store_file(self.file_a)
        table_file = next(self.safe.directory.glob("*.ftab"))
        table_file.write_text("broken\n", encoding="utf-8")

        with self.assertRaises(PersistenceFormatError):
            self.safe.reload_file(self.file_a)

    def test_table_file_contents(self):
        self.safe.store_file(self.file_a)
        table_file = next(self.safe.directory.glob("*.ftab"))

        lines = table_file.read_text(encoding="utf-8").splitlines()
        self.assertEqual(lines[0], HEADER)
        self.assertEqual(lines[1], f"file = {self.file_a.resolve()}")
        self.assertTrue(table_file.name.endswith(" -- a.txt.ftab"))


class TestRetentionSafeReporting(RetentionSafeTestCase):
    """Test stats, report and metrics."""

    def test_stats(self):
        self.safe.store_file(self.file_a)
        self.safe.set_time_now(T0 + MS_PER_DAY + HALF_HOUR)
        self.safe.store_file(self.file_a)
        self.safe.store_file(self.file_b)

        stats = self.safe.get_stats()

        self.assertEqual(stats.tracked_files, 2)
        self.assertEqual(stats.total_copies, 3)
        self.assertEqual(stats.total_size_bytes, len("alpha") * 2 + len("beta"))
        self.assertEqual(stats.slot_count, 10)

    def test_report(self):
        self.safe.name = "Aberystwyth"
        copy = self.safe.store_file(self.file_a)

        report = self.safe.report()

        self.assertIn("4 days, 3 months, 3 years", report)
        self.assertIn('"Aberystwyth"', report)
        self.assertIn(f"file = {self.file_a.resolve()}", report)
        self.assertIn(copy.name, report)

    def test_metrics(self):
        registry = CollectorRegistry()
        metrics = SafeMetrics(safe_label="test", registry=registry)
        safe = RetentionSafe(self.temp_dir / "metered", 4, 3, 3, metrics=metrics)
        safe.set_time_now(T0)

        safe.store_file(self.file_a)
        safe.set_time_now(T0 + MS_PER_DAY + HALF_HOUR)
        safe.store_file(self.file_a)
        safe.set_time_now(T0 + 2 * MS_PER_DAY + HALF_HOUR)
        safe.store_file(self.file_a)

        self.assertEqual(metrics.get_value('layersafe_stores_total'), 3)
        self.assertEqual(metrics.get_value('layersafe_tracked_files'), 1)
        self.assertGreaterEqual(metrics.get_value('layersafe_draw_ups_total'), 9)
        self.assertEqual(metrics.get_value('layersafe_copies_deleted_total'), 1)

        with self.assertRaises(SafeIOError):
            safe.store_file(self.work_dir / "missing.txt")
        self.assertEqual(
            metrics.get_value('layersafe_store_failures_total', error_type='SafeIOError'), 1)
