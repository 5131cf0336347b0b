"""Per-port lock records for cross-process port reservation.

Each reserved port has one PortLock record naming the instance and the pid
that reserved it. Decisions about a port are serialized through the store's
per-port mutex; records are only created or removed while that mutex
is held.

A record whose pid is dead is stale: acquisition deletes it and retries
once, and any caller may release it.
"""

import contextlib
import logging
import os
import time
from collections.abc import Iterator
from datetime import datetime

from pydantic import ValidationError

from ..constants import MUTEX_RETRY_INTERVAL, MUTEX_WAIT_SECONDS, PORTS_NAMESPACE
from ..models import PortLock
from .liveness import ProcessLiveness
from .store import Store

logger = logging.getLogger(__name__)


def lock_key(port: int) -> str:
    """Store key for a port's lock record."""
    return f"port_{port}"


def _port_from_key(key: str) -> int | None:
    prefix, _, number = key.partition("_")
    if prefix != "port" or not number.isdigit():
        return None
    return int(number)


class PortLockManager:
    """Acquire and release port locks on behalf of one process."""

    def __init__(self, store: Store, liveness: ProcessLiveness, pid: int | None = None):
        self.store = store
        self.liveness = liveness
        self.pid = os.getpid() if pid is None else pid

    def get_lock(self, port: int) -> PortLock | None:
        """Get the lock record for a port.

        Returns:
            The PortLock, or None if there is none or it is corrupted
        """
        content = self.store.read(PORTS_NAMESPACE, lock_key(port))
        if content is None:
            return None
        try:
            return PortLock.model_validate_json(content)
        except ValidationError:
            logger.warning(f"Ignoring corrupted lock record for port {port}")
            return None

    def list_locks(self) -> list[PortLock]:
        locks = []
        for port in self.locked_ports():
            lock = self.get_lock(port)
            if lock is not None:
                locks.append(lock)
        return locks

    def locked_ports(self) -> list[int]:
        """Ports with a lock record, readable or not."""
        ports = []
        for key in self.store.keys(PORTS_NAMESPACE):
            port = _port_from_key(key)
            if port is not None:
                ports.append(port)
        return sorted(ports)

    def lock_age_seconds(self, port: int, now: datetime | None = None) -> float | None:
        """Age from the record's acquired_at, or the record mtime if unreadable."""
        now = now or datetime.now()
        lock = self.get_lock(port)
        if lock is not None:
            return (now - lock.acquired_at).total_seconds()
        modified = self.store.modified_at(PORTS_NAMESPACE, lock_key(port))
        if modified is None:
            return None
        return (now - modified).total_seconds()

    def is_stale(self, lock: PortLock) -> bool:
        """A lock is stale once the process that took it is gone."""
        return not self.liveness.is_alive(lock.pid)

    def acquire_lock(self, port: int, instance_id: str) -> bool:
        """Reserve a port for an instance.

        Never waits: a busy mutex or a live lock record means the port is
        taken, even when the record belongs to this same process.

        Args:
            port: Port to reserve
            instance_id: Instance the port is reserved for

        Returns:
            True if the lock was created, False if the port is held
        """
        key = lock_key(port)
        with self.store.mutex(PORTS_NAMESPACE, key) as held:
            if not held:
                logger.debug(f"Port {port}: another process is deciding, skipping")
                return False

            existing = self.get_lock(port)
            if existing is not None:
                if not self.is_stale(existing):
                    return False
                logger.info(
                    f"Removing stale lock on port {port} "
                    f"(instance {existing.instance_id}, dead pid {existing.pid})"
                )
                self.store.delete(PORTS_NAMESPACE, key)
            elif self.store.read(PORTS_NAMESPACE, key) is not None:
                # Unreadable record: only the garbage collector may clear it
                return False

            lock = PortLock(port=port, instance_id=instance_id, pid=self.pid)
            if not self.store.create(PORTS_NAMESPACE, key, lock.model_dump_json(indent=2)):
                return False
            logger.debug(f"Port {port}: locked for {instance_id}")
            return True

    @contextlib.contextmanager
    def _deciding(self, port: int) -> Iterator[bool]:
        """Hold a port's mutex, waiting briefly while another process has it.

        Yields:
            True while the mutex is held, False if it stayed busy
        """
        key = lock_key(port)
        deadline = time.monotonic() + MUTEX_WAIT_SECONDS
        while True:
            with self.store.mutex(PORTS_NAMESPACE, key) as held:
                if held or time.monotonic() >= deadline:
                    yield held
                    return
            time.sleep(MUTEX_RETRY_INTERVAL)

    def release_lock(self, port: int, instance_id: str | None = None) -> bool:
        """Release a port lock if the caller may do so.

        Permitted when the caller's pid took the lock, when the caller acts
        for the instance named in the record, or when the recorded pid is
        dead. A live lock of an unrelated instance is left untouched. The
        record is read and checked under the port's mutex, so a lock that
        replaced a stale one in the meantime is never removed.

        Args:
            port: Port to release
            instance_id: Instance the caller acts for, if any

        Returns:
            True if the record was removed
        """
        with self._deciding(port) as held:
            if not held:
                logger.warning(f"Not releasing port {port}: another process is deciding")
                return False

            existing = self.get_lock(port)
            if existing is None:
                return False

            owned = existing.pid == self.pid or (
                instance_id is not None and existing.instance_id == instance_id
            )
            if not owned and not self.is_stale(existing):
                logger.warning(
                    f"Not releasing port {port}: held by instance {existing.instance_id} "
                    f"(pid {existing.pid})"
                )
                return False
            return self.store.delete(PORTS_NAMESPACE, lock_key(port))

    def release_orphan(
        self,
        port: int,
        known_instances: set[str],
        max_age: float,
        now: datetime | None = None,
    ) -> bool:
        """Remove a lock no registered instance claims, once older than max_age.

        Unreadable records count as orphans and are aged by file time.

        Returns:
            True if the record was removed
        """
        with self._deciding(port) as held:
            if not held:
                return False
            lock = self.get_lock(port)
            if lock is not None and lock.instance_id in known_instances:
                return False
            age = self.lock_age_seconds(port, now)
            if age is None or age <= max_age:
                return False
            return self.store.delete(PORTS_NAMESPACE, lock_key(port))

    def force_release(self, port: int) -> bool:
        """Remove a port's lock record regardless of its owner."""
        with self._deciding(port) as held:
            if not held:
                logger.warning(f"Not releasing port {port}: another process is deciding")
                return False
            return self.store.delete(PORTS_NAMESPACE, lock_key(port))
