"""
UniChat Profile - Proxy Storage Backend

This module provides the durable storage owned by the proxy: JSON persistence
with file locking, atomic read-modify-write transactions, optional compression
and backups. The implementation slot lives in its own section of the document
so that logic upgrades never collide with business data.
"""

import fcntl
import gzip
import hashlib
import json
import logging
import os
import shutil
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from threading import RLock
from typing import Any, Callable, Dict, List, Optional, Union


logger = logging.getLogger(__name__)

IMPLEMENTATION_SLOT = "implementation"
STATE_SECTION = "state"
EVENT_LOG = "events"
EVENT_INDEX = "event_log"


class StorageError(Exception):
    """Base storage exception."""
    pass


class LockTimeoutError(StorageError):
    """Lock acquisition timeout exception."""
    pass


class IntegrityError(StorageError):
    """File integrity check failure exception."""
    pass


class FileLock:
    """
    Lock file guarding a storage file across threads and processes.

    The holder keeps an exclusive ``flock`` on the lock file. A lock file that
    nobody holds a ``flock`` on was left behind by a process that died while
    holding it; once older than ``stale_after`` seconds it is removed.
    """

    def __init__(self, file_path: Union[str, Path], timeout: float = 30.0,
                 stale_after: float = 1.0):
        self.file_path = Path(file_path)
        self.lock_file_path = self.file_path.with_suffix(self.file_path.suffix + '.lock')
        self.timeout = timeout
        self.stale_after = stale_after
        self.lock_fd = None
        self._thread_lock = RLock()

    def is_locked(self) -> bool:
        """Check whether this instance holds the lock."""
        return self.lock_fd is not None

    def acquire(self) -> bool:
        """Acquire file lock with timeout."""
        with self._thread_lock:
            if self.lock_fd is not None:
                return True  # Already locked by this instance

            start_time = time.time()

            while time.time() - start_time < self.timeout:
                try:
                    fd = os.open(
                        str(self.lock_file_path),
                        os.O_CREAT | os.O_EXCL | os.O_RDWR
                    )
                except FileExistsError:
                    if not self._clear_stale_lock():
                        time.sleep(0.01)
                    continue
                except OSError as e:
                    raise StorageError(f"Failed to acquire lock: {e}")

                # Blocks only while another acquirer inspects the new file
                fcntl.flock(fd, fcntl.LOCK_EX)
                if not self._still_linked(fd):
                    os.close(fd)
                    continue

                self.lock_fd = fd
                return True

            raise LockTimeoutError(f"Failed to acquire lock within {self.timeout} seconds")

    def _still_linked(self, fd: int) -> bool:
        try:
            current = os.stat(self.lock_file_path)
        except FileNotFoundError:
            return False
        opened = os.fstat(fd)
        return (current.st_ino, current.st_dev) == (opened.st_ino, opened.st_dev)

    def _clear_stale_lock(self) -> bool:
        """Remove a lock file whose holder is gone. Returns True if removed."""
        try:
            fd = os.open(str(self.lock_file_path), os.O_RDWR)
        except FileNotFoundError:
            return True
        except OSError:
            return False

        try:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except OSError:
                return False  # A live holder has it

            if not self._still_linked(fd):
                return False  # Removed or replaced while we looked
            if time.time() - os.fstat(fd).st_mtime < self.stale_after:
                return False  # Creator may not have locked it yet

            os.unlink(self.lock_file_path)
            logger.warning(f"Removed stale lock {self.lock_file_path}")
            return True
        finally:
            os.close(fd)

    def release(self) -> None:
        """Release file lock."""
        with self._thread_lock:
            if self.lock_fd is None:
                return

            try:
                os.unlink(self.lock_file_path)
                fcntl.flock(self.lock_fd, fcntl.LOCK_UN)
                os.close(self.lock_fd)
            except OSError as e:
                logger.warning(f"Failed to release lock {self.lock_file_path}: {e}")
            finally:
                self.lock_fd = None

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()


class JSONStorage:
    """Locked JSON storage with atomic writes, compression and backups."""

    def __init__(
        self,
        file_path: Union[str, Path],
        compressed: bool = False,
        backup_count: int = 5,
        lock_timeout: float = 30.0
    ):
        self.file_path = Path(file_path)
        self.compressed = compressed
        self.backup_count = backup_count
        self.lock_timeout = lock_timeout

        self.file_path.parent.mkdir(parents=True, exist_ok=True)

        if not self.file_path.exists():
            self._write_file({})

    @property
    def backup_dir(self) -> Path:
        return self.file_path.parent / 'backups'

    def _calculate_checksum(self, data: bytes) -> str:
        """Calculate SHA-256 checksum of data."""
        return hashlib.sha256(data).hexdigest()

    def _read_file(self) -> bytes:
        """Read raw file data."""
        if self.compressed:
            with gzip.open(self.file_path, 'rb') as f:
                return f.read()
        with open(self.file_path, 'rb') as f:
            return f.read()

    def _write_file(self, data: Dict[str, Any]) -> bytes:
        """Write data to file atomically and return the bytes written."""
        json_data = json.dumps(data, indent=2, default=str).encode('utf-8')

        temp_file = self.file_path.with_suffix(self.file_path.suffix + '.tmp')

        try:
            if self.compressed:
                with gzip.open(temp_file, 'wb') as f:
                    f.write(json_data)
            else:
                with open(temp_file, 'wb') as f:
                    f.write(json_data)

            temp_file.replace(self.file_path)

        except OSError as e:
            if temp_file.exists():
                temp_file.unlink()
            raise StorageError(f"Failed to write file: {e}")

        return json_data

    def _decode(self, data: bytes) -> Dict[str, Any]:
        if not data:
            return {}
        try:
            return json.loads(data.decode('utf-8'))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise IntegrityError(f"Invalid JSON data: {e}")

    def _create_backup(self) -> Optional[Path]:
        """Create timestamped backup of current file."""
        if not self.file_path.exists():
            return None

        timestamp = datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S%f')
        backup_path = self.backup_dir / f"{self.file_path.stem}_{timestamp}{self.file_path.suffix}"
        backup_path.parent.mkdir(parents=True, exist_ok=True)

        shutil.copy2(self.file_path, backup_path)
        self._cleanup_old_backups()
        return backup_path

    def _cleanup_old_backups(self) -> None:
        """Remove old backup files beyond backup_count."""
        for backup_file in self.list_backups()[self.backup_count:]:
            try:
                backup_file.unlink()
            except OSError as e:
                logger.warning(f"Failed to remove old backup {backup_file}: {e}")

    @contextmanager
    def _lock_context(self):
        """Hold the file lock for the duration of the block."""
        lock = FileLock(self.file_path, timeout=self.lock_timeout)
        with lock:
            yield

    def read(self) -> Dict[str, Any]:
        """Read and deserialize data from storage."""
        with self._lock_context():
            try:
                return self._decode(self._read_file())
            except OSError as e:
                raise StorageError(f"Failed to read storage: {e}")

    def read_with(self, reader_func: Callable[[Dict[str, Any]], Any]) -> Any:
        """Read data and pass it to ``reader_func`` while still holding the lock."""
        with self._lock_context():
            try:
                data = self._decode(self._read_file())
            except OSError as e:
                raise StorageError(f"Failed to read storage: {e}")
            return reader_func(data)

    def write(self, data: Dict[str, Any], create_backup: bool = False) -> str:
        """Write data to storage atomically."""
        with self._lock_context():
            if create_backup:
                self._create_backup()
            return self._calculate_checksum(self._write_file(data))

    def update(self, updater_func: Callable[[Dict[str, Any]], Dict[str, Any]],
               create_backup: bool = False) -> str:
        """
        Read, transform and write back under a single lock.

        Exceptions raised by ``updater_func`` propagate unchanged and leave
        the file untouched.
        """
        with self._lock_context():
            try:
                current_data = self._decode(self._read_file())
            except OSError as e:
                raise StorageError(f"Failed to read storage: {e}")

            updated_data = updater_func(current_data)

            if create_backup:
                self._create_backup()
            return self._calculate_checksum(self._write_file(updated_data))

    def exists(self) -> bool:
        """Check if storage file exists."""
        return self.file_path.exists()

    def size(self) -> int:
        """Get storage file size in bytes."""
        if not self.file_path.exists():
            return 0
        return self.file_path.stat().st_size

    def verify(self, expected_checksum: Optional[str] = None) -> bool:
        """Verify file integrity."""
        if not self.file_path.exists():
            return False

        try:
            data = self._read_file()
            self._decode(data)
        except (OSError, IntegrityError):
            return False

        if expected_checksum:
            return self._calculate_checksum(data) == expected_checksum
        return True

    def list_backups(self) -> List[Path]:
        """List available backup files, newest first."""
        if not self.backup_dir.exists():
            return []

        pattern = f"{self.file_path.stem}_*{self.file_path.suffix}"
        backup_files = list(self.backup_dir.glob(pattern))
        backup_files.sort(key=lambda p: p.name, reverse=True)
        return backup_files

    def restore_backup(self, backup_timestamp: str) -> bool:
        """Restore from a specific backup."""
        backup_path = self.backup_dir / f"{self.file_path.stem}_{backup_timestamp}{self.file_path.suffix}"

        if not backup_path.exists():
            return False

        with self._lock_context():
            self._create_backup()
            shutil.copy2(backup_path, self.file_path)
            return True


class ProxyStorage:
    """
    Storage owned by the proxy: implementation slot, state and event log.

    The document holds the slot, the state and an index of the committed
    event log. Events themselves go to an append-only JSON lines file next to
    it, so a commit writes only the new events. Bytes past the committed size
    belong to a call that never committed and are dropped on the next commit.
    """

    def __init__(
        self,
        storage_dir: Union[str, Path] = "profile_data",
        compressed: bool = False,
        backup_count: int = 5,
        lock_timeout: float = 30.0,
        filename: str = "proxy.json",
        event_filename: str = "events.jsonl"
    ):
        self.storage_dir = Path(storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True)

        self.json_storage = JSONStorage(
            self.storage_dir / filename,
            compressed=compressed,
            backup_count=backup_count,
            lock_timeout=lock_timeout
        )
        self.event_log_path = self.storage_dir / event_filename

    @staticmethod
    def _normalize(data: Dict[str, Any]) -> Dict[str, Any]:
        data.setdefault(IMPLEMENTATION_SLOT, None)
        data.setdefault(STATE_SECTION, {})
        data.setdefault(EVENT_INDEX, {'count': 0, 'size': 0})
        # Events emitted by the call in progress; committed by ``transact``
        data[EVENT_LOG] = []
        return data

    @staticmethod
    def next_event_sequence(document: Dict[str, Any]) -> int:
        """Sequence number for the next event appended to ``document``."""
        return document[EVENT_INDEX]['count'] + len(document[EVENT_LOG])

    def _append_events(self, document: Dict[str, Any]) -> None:
        pending = document.pop(EVENT_LOG)
        if not pending:
            return

        index = document[EVENT_INDEX]
        lines = b"".join(
            json.dumps(event, default=str).encode('utf-8') + b"\n" for event in pending
        )

        try:
            with open(self.event_log_path, 'ab') as f:
                f.truncate(index['size'])
                f.write(lines)
        except OSError as e:
            raise StorageError(f"Failed to append events: {e}")

        document[EVENT_INDEX] = {
            'count': index['count'] + len(pending),
            'size': index['size'] + len(lines),
        }

    def load(self) -> Dict[str, Any]:
        """Load the storage document."""
        return self._normalize(self.json_storage.read())

    def transact(self, func: Callable[[Dict[str, Any]], Any], create_backup: bool = False) -> Any:
        """
        Apply ``func`` to a freshly loaded document and persist the result.

        The document is written only if ``func`` returns normally, so a failing
        call leaves no partial mutation behind. Events ``func`` adds to the
        document's event section are appended to the event log.
        """
        outcome: Dict[str, Any] = {}

        def updater(data: Dict[str, Any]) -> Dict[str, Any]:
            document = self._normalize(data)
            outcome['value'] = func(document)
            self._append_events(document)
            return document

        self.json_storage.update(updater, create_backup=create_backup)
        return outcome['value']

    def read_events(self) -> List[Dict[str, Any]]:
        """Read the committed event log."""
        def reader(data: Dict[str, Any]) -> List[Dict[str, Any]]:
            size = self._normalize(data)[EVENT_INDEX]['size']
            if not size:
                return []
            try:
                with open(self.event_log_path, 'rb') as f:
                    raw = f.read(size)
            except OSError as e:
                raise StorageError(f"Failed to read event log: {e}")
            try:
                return [json.loads(line) for line in raw.splitlines() if line]
            except json.JSONDecodeError as e:
                raise IntegrityError(f"Invalid event log: {e}")

        return self.json_storage.read_with(reader)

    def get_implementation_slot(self) -> Optional[Dict[str, Any]]:
        """Return the implementation slot, or None before deployment."""
        return self.load()[IMPLEMENTATION_SLOT]

    def list_backups(self) -> List[str]:
        """List available backup timestamps."""
        prefix = f"{self.json_storage.file_path.stem}_"
        return [backup.stem[len(prefix):] for backup in self.json_storage.list_backups()]

    def restore_backup(self, timestamp: str) -> bool:
        """Restore the storage document from backup. The event log rewinds with it."""
        return self.json_storage.restore_backup(timestamp)

    def get_storage_info(self) -> Dict[str, Any]:
        """Get storage information."""
        return {
            'file_path': str(self.json_storage.file_path),
            'compressed': self.json_storage.compressed,
            'size_bytes': self.json_storage.size(),
            'exists': self.json_storage.exists(),
            'backup_count': len(self.json_storage.list_backups()),
            'event_log_path': str(self.event_log_path),
        }
