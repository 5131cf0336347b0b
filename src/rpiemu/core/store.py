"""Shared state storage for cooperating rpiemu processes.

Every record lives under a ``(namespace, key)`` pair. Each operation is
individually atomic; there is no multi-record transaction. Callers that need
to serialize a read-check-write sequence take the per-key mutex, which is
non-blocking: a busy mutex means another process is deciding about that key
right now.

``FileStore`` is what launchers use in production. ``MemoryStore`` keeps the
same semantics inside one process for tests and embedding.
"""

import contextlib
import fcntl
import os
import tempfile
import threading
from collections.abc import Iterator
from datetime import datetime
from pathlib import Path
from typing import ContextManager, Protocol

from ..errors import WriteRaceError

RECORD_SUFFIX = ".json"
MUTEX_SUFFIX = ".mutex"


class Store(Protocol):
    """Storage capability injected into the lock manager and registry."""

    def read(self, namespace: str, key: str) -> str | None: ...

    def write(self, namespace: str, key: str, data: str) -> None: ...

    def create(self, namespace: str, key: str, data: str) -> bool: ...

    def delete(self, namespace: str, key: str) -> bool: ...

    def keys(self, namespace: str) -> list[str]: ...

    def modified_at(self, namespace: str, key: str) -> datetime | None: ...

    def mutex(self, namespace: str, key: str) -> ContextManager[bool]: ...


class FileStore:
    """Store backed by a directory tree, one JSON file per record.

    Writes go to a temporary file first and are then renamed (replace) or
    hard-linked (exclusive create) into place, so a reader never sees a
    partially written record. Mutexes are ``flock`` locks on sidecar files.
    """

    def __init__(self, root: Path):
        self.root = root

    def _dir(self, namespace: str) -> Path:
        path = self.root / namespace
        path.mkdir(parents=True, exist_ok=True)
        return path

    def _record_path(self, namespace: str, key: str) -> Path:
        return self._dir(namespace) / f"{key}{RECORD_SUFFIX}"

    def _write_temp(self, directory: Path, key: str, data: str) -> str:
        fd, tmp = tempfile.mkstemp(dir=directory, prefix=f".{key}.", suffix=".tmp")
        try:
            os.write(fd, data.encode())
        finally:
            os.close(fd)
        return tmp

    def read(self, namespace: str, key: str) -> str | None:
        try:
            return self._record_path(namespace, key).read_text()
        except FileNotFoundError:
            return None

    def write(self, namespace: str, key: str, data: str) -> None:
        """Replace a record atomically.

        Raises:
            WriteRaceError: If the temporary file vanished before the rename
        """
        path = self._record_path(namespace, key)
        tmp = self._write_temp(path.parent, key, data)
        try:
            os.replace(tmp, path)
        except FileNotFoundError as e:
            raise WriteRaceError(f"Concurrent write to {namespace}/{key} collided") from e
        finally:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(tmp)

    def create(self, namespace: str, key: str, data: str) -> bool:
        """Create a record only if none exists.

        Returns:
            True if the record was created, False if one already exists
        """
        path = self._record_path(namespace, key)
        tmp = self._write_temp(path.parent, key, data)
        try:
            os.link(tmp, path)
            return True
        except FileExistsError:
            return False
        finally:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(tmp)

    def delete(self, namespace: str, key: str) -> bool:
        try:
            self._record_path(namespace, key).unlink()
            return True
        except FileNotFoundError:
            return False

    def keys(self, namespace: str) -> list[str]:
        return sorted(p.stem for p in self._dir(namespace).glob(f"*{RECORD_SUFFIX}"))

    def modified_at(self, namespace: str, key: str) -> datetime | None:
        try:
            mtime = self._record_path(namespace, key).stat().st_mtime
        except FileNotFoundError:
            return None
        return datetime.fromtimestamp(mtime)

    @contextlib.contextmanager
    def mutex(self, namespace: str, key: str) -> Iterator[bool]:
        """Try to take the exclusive lock for a key without waiting.

        Yields:
            True while the lock is held, False if another holder has it
        """
        path = self._dir(namespace) / f"{key}{MUTEX_SUFFIX}"
        with open(path, "a") as handle:
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                yield False
                return
            try:
                yield True
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


class MemoryStore:
    """In-process Store with the same atomicity and mutex semantics."""

    def __init__(self) -> None:
        self._records: dict[tuple[str, str], tuple[str, datetime]] = {}
        self._mutexes: dict[tuple[str, str], threading.Lock] = {}
        self._guard = threading.Lock()

    def read(self, namespace: str, key: str) -> str | None:
        with self._guard:
            record = self._records.get((namespace, key))
        return record[0] if record else None

    def write(self, namespace: str, key: str, data: str) -> None:
        with self._guard:
            self._records[(namespace, key)] = (data, datetime.now())

    def create(self, namespace: str, key: str, data: str) -> bool:
        with self._guard:
            if (namespace, key) in self._records:
                return False
            self._records[(namespace, key)] = (data, datetime.now())
            return True

    def delete(self, namespace: str, key: str) -> bool:
        with self._guard:
            return self._records.pop((namespace, key), None) is not None

    def keys(self, namespace: str) -> list[str]:
        with self._guard:
            return sorted(key for ns, key in self._records if ns == namespace)

    def modified_at(self, namespace: str, key: str) -> datetime | None:
        with self._guard:
            record = self._records.get((namespace, key))
        return record[1] if record else None

    @contextlib.contextmanager
    def mutex(self, namespace: str, key: str) -> Iterator[bool]:
        with self._guard:
            lock = self._mutexes.setdefault((namespace, key), threading.Lock())
        if not lock.acquire(blocking=False):
            yield False
            return
        try:
            yield True
        finally:
            lock.release()
