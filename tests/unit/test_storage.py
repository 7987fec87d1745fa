"""
Unit tests for the proxy storage layer.
"""

import gzip
import json
import os
import threading
import time

import pytest

from proxy.storage import (
    EVENT_INDEX, EVENT_LOG, IMPLEMENTATION_SLOT, STATE_SECTION,
    FileLock, IntegrityError, JSONStorage, LockTimeoutError, ProxyStorage
)


class TestFileLock:
    """Test file locking mechanism."""

    @pytest.fixture
    def temp_file(self, tmp_path):
        path = tmp_path / "data.json"
        path.write_text("{}")
        return path

    def test_file_lock_creation(self, temp_file):
        """Test file lock creation."""
        lock = FileLock(temp_file)

        assert lock.lock_file_path == temp_file.with_suffix(temp_file.suffix + '.lock')
        assert not lock.is_locked()

    def test_file_lock_acquire_release(self, temp_file):
        """Test lock acquisition and release."""
        lock = FileLock(temp_file)

        assert lock.acquire()
        assert lock.is_locked()
        assert lock.lock_file_path.exists()

        lock.release()
        assert not lock.is_locked()
        assert not lock.lock_file_path.exists()

    def test_file_lock_context_manager(self, temp_file):
        """Test file lock as context manager."""
        lock = FileLock(temp_file)

        with lock:
            assert lock.is_locked()

        assert not lock.is_locked()

    def test_file_lock_timeout(self, temp_file):
        """Test that a held lock times out a second holder."""
        holder = FileLock(temp_file)
        waiter = FileLock(temp_file, timeout=0.1)

        with holder:
            with pytest.raises(LockTimeoutError):
                waiter.acquire()

    def test_concurrent_file_locking(self, temp_file):
        """Test that threads holding the lock never interleave."""
        results = []
        errors = []

        def worker_thread(thread_id):
            try:
                with FileLock(temp_file):
                    results.append(f"thread_{thread_id}_start")
                    time.sleep(0.02)
                    results.append(f"thread_{thread_id}_end")
            except Exception as e:
                errors.append(f"thread_{thread_id}: {e}")

        threads = [threading.Thread(target=worker_thread, args=(i,)) for i in range(5)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert len(results) == 10

        for i in range(5):
            start_idx = results.index(f"thread_{i}_start")
            assert results[start_idx + 1] == f"thread_{i}_end"

    def test_stale_lock_is_recovered(self, temp_file):
        """A lock file left by a dead holder does not block later callers."""
        lock = FileLock(temp_file, timeout=2.0)
        lock.lock_file_path.write_text("")
        old = time.time() - 60
        os.utime(lock.lock_file_path, (old, old))

        assert lock.acquire()
        assert lock.is_locked()
        lock.release()
        assert not lock.lock_file_path.exists()

    def test_old_lock_held_by_live_holder_is_kept(self, temp_file):
        holder = FileLock(temp_file)
        waiter = FileLock(temp_file, timeout=0.2)

        with holder:
            old = time.time() - 60
            os.utime(holder.lock_file_path, (old, old))

            with pytest.raises(LockTimeoutError):
                waiter.acquire()
            assert holder.lock_file_path.exists()

    def test_fresh_unheld_lock_is_not_cleared_early(self, temp_file):
        lock = FileLock(temp_file, timeout=0.2, stale_after=30.0)
        lock.lock_file_path.write_text("")

        with pytest.raises(LockTimeoutError):
            lock.acquire()


class TestJSONStorage:
    """Test JSON storage functionality."""

    @pytest.fixture
    def json_storage(self, tmp_path):
        return JSONStorage(tmp_path / "test.json", backup_count=3)

    def test_initializes_empty_file(self, json_storage):
        assert json_storage.exists()
        assert json_storage.read() == {}

    def test_write_and_read(self, json_storage):
        checksum = json_storage.write({"key": "value", "count": 3})

        assert len(checksum) == 64
        assert json_storage.read() == {"key": "value", "count": 3}
        assert json_storage.verify(checksum)
        assert not json_storage.verify("0" * 64)

    def test_update_applies_function(self, json_storage):
        json_storage.write({"count": 1})

        json_storage.update(lambda data: {**data, "count": data["count"] + 1})

        assert json_storage.read() == {"count": 2}

    def test_update_failure_leaves_file_untouched(self, json_storage):
        """Exceptions from the updater propagate and nothing is written."""
        json_storage.write({"count": 1})
        before = json_storage.file_path.read_bytes()

        class Boom(Exception):
            pass

        def updater(data):
            data["count"] = 99
            raise Boom("rejected")

        with pytest.raises(Boom):
            json_storage.update(updater)

        assert json_storage.file_path.read_bytes() == before
        assert not json_storage.file_path.with_suffix('.json.lock').exists()

    def test_corrupt_file_raises_integrity_error(self, json_storage):
        json_storage.file_path.write_text("{not json")

        with pytest.raises(IntegrityError):
            json_storage.read()
        assert not json_storage.verify()

    def test_backups_are_rotated(self, json_storage):
        for i in range(5):
            json_storage.write({"version": i}, create_backup=True)

        backups = json_storage.list_backups()
        assert len(backups) == 3

        # Newest backup holds the state before the last write
        assert json.loads(backups[0].read_text()) == {"version": 3}

    def test_restore_backup(self, json_storage):
        json_storage.write({"version": 1})
        json_storage.write({"version": 2}, create_backup=True)

        backup = json_storage.list_backups()[0]
        timestamp = backup.stem[len("test_"):]

        assert json_storage.restore_backup(timestamp)
        assert json_storage.read() == {"version": 1}
        assert not json_storage.restore_backup("19700101_000000000000")

    def test_compressed_storage(self, tmp_path):
        storage = JSONStorage(tmp_path / "compressed.json", compressed=True)
        storage.write({"key": "value"})

        with gzip.open(storage.file_path, 'rb') as f:
            assert json.loads(f.read()) == {"key": "value"}
        assert storage.read() == {"key": "value"}


class TestProxyStorage:
    """Test the proxy storage document."""

    def test_load_normalizes_sections(self, proxy_storage):
        document = proxy_storage.load()

        assert document[IMPLEMENTATION_SLOT] is None
        assert document[STATE_SECTION] == {}
        assert document[EVENT_LOG] == []
        assert proxy_storage.get_implementation_slot() is None

    def test_transact_persists_and_returns(self, proxy_storage):
        def func(document):
            document[STATE_SECTION]["counter"] = 7
            return "done"

        assert proxy_storage.transact(func) == "done"
        assert proxy_storage.load()[STATE_SECTION] == {"counter": 7}

    def test_transact_failure_reverts(self, proxy_storage):
        proxy_storage.transact(lambda d: d[STATE_SECTION].update(counter=1))

        def func(document):
            document[STATE_SECTION]["counter"] = 2
            document[EVENT_LOG].append({"name": "Partial"})
            raise RuntimeError("revert")

        with pytest.raises(RuntimeError):
            proxy_storage.transact(func)

        document = proxy_storage.load()
        assert document[STATE_SECTION] == {"counter": 1}
        assert document[EVENT_LOG] == []
        assert proxy_storage.read_events() == []

    def test_backup_timestamps(self, proxy_storage):
        proxy_storage.transact(lambda d: None, create_backup=True)

        timestamps = proxy_storage.list_backups()
        assert len(timestamps) == 1
        assert proxy_storage.restore_backup(timestamps[0])

    def test_storage_info(self, proxy_storage):
        info = proxy_storage.get_storage_info()

        assert info['exists'] is True
        assert info['compressed'] is False
        assert info['file_path'].endswith("proxy.json")
        assert info['size_bytes'] > 0

    def test_events_go_to_separate_log(self, proxy_storage):
        def func(document):
            document[EVENT_LOG].append({"name": "First"})
            document[EVENT_LOG].append({"name": "Second"})

        proxy_storage.transact(func)
        proxy_storage.transact(lambda d: d[EVENT_LOG].append({"name": "Third"}))

        assert [e["name"] for e in proxy_storage.read_events()] == ["First", "Second", "Third"]
        assert proxy_storage.load()[EVENT_INDEX]['count'] == 3

        on_disk = json.loads(proxy_storage.json_storage.file_path.read_text())
        assert EVENT_LOG not in on_disk

    def test_next_event_sequence(self, proxy_storage):
        proxy_storage.transact(lambda d: d[EVENT_LOG].append({"name": "First"}))

        document = proxy_storage.load()
        assert ProxyStorage.next_event_sequence(document) == 1
        document[EVENT_LOG].append({"name": "Pending"})
        assert ProxyStorage.next_event_sequence(document) == 2

    def test_uncommitted_event_bytes_are_dropped(self, proxy_storage):
        """Log bytes past the committed size are ignored and then truncated."""
        proxy_storage.transact(lambda d: d[EVENT_LOG].append({"name": "Committed"}))
        with open(proxy_storage.event_log_path, 'ab') as f:
            f.write(b'{"name": "Orphan"}\n{"trunc')

        assert [e["name"] for e in proxy_storage.read_events()] == ["Committed"]

        proxy_storage.transact(lambda d: d[EVENT_LOG].append({"name": "Next"}))

        assert [e["name"] for e in proxy_storage.read_events()] == ["Committed", "Next"]
        assert b"Orphan" not in proxy_storage.event_log_path.read_bytes()

    def test_restore_rewinds_event_log(self, proxy_storage):
        proxy_storage.transact(lambda d: d[EVENT_LOG].append({"name": "Before"}))
        proxy_storage.transact(lambda d: d[EVENT_LOG].append({"name": "After"}),
                               create_backup=True)

        assert proxy_storage.restore_backup(proxy_storage.list_backups()[0])

        assert [e["name"] for e in proxy_storage.read_events()] == ["Before"]
