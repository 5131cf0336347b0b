"""Tests for port lock manager."""

import contextlib
import os
from datetime import datetime, timedelta
from unittest import mock

from conftest import OTHER_OWNER_PID, FakeLiveness

from rpiemu.core.lock_manager import PortLockManager, lock_key
from rpiemu.core.store import FileStore
from rpiemu.models import PortLock

DEAD_PID = 99999


def _write_lock(store: FileStore, port: int, instance_id: str, pid: int, **kwargs) -> None:
    lock = PortLock(port=port, instance_id=instance_id, pid=pid, **kwargs)
    store.write("ports", lock_key(port), lock.model_dump_json())


class TestAcquireLock:
    """Tests for acquire_lock."""

    def test_acquire_creates_record(self, store: FileStore, liveness: FakeLiveness) -> None:
        """Acquiring writes a lock naming the instance and this pid."""
        locks = PortLockManager(store, liveness)
        assert locks.acquire_lock(2222, "debian_1") is True

        lock = locks.get_lock(2222)
        assert lock is not None
        assert lock.instance_id == "debian_1"
        assert lock.pid == os.getpid()

    def test_record_file_location(self, store: FileStore, liveness: FakeLiveness) -> None:
        """Lock records live at ports/port_<n>.json under the state dir."""
        PortLockManager(store, liveness).acquire_lock(2222, "debian_1")
        path = store.root / "ports" / "port_2222.json"
        assert path.exists()
        assert PortLock.model_validate_json(path.read_text()).port == 2222

    def test_acquire_fails_if_held_by_live_process(
        self, store: FileStore, liveness: FakeLiveness
    ) -> None:
        """A live lock of another process blocks acquisition."""
        _write_lock(store, 2222, "other", OTHER_OWNER_PID)
        locks = PortLockManager(store, liveness)
        assert locks.acquire_lock(2222, "debian_1") is False
        assert locks.get_lock(2222).instance_id == "other"

    def test_acquire_fails_if_held_by_same_process(
        self, store: FileStore, liveness: FakeLiveness
    ) -> None:
        """Locks are not reentrant, even for the pid that holds them."""
        locks = PortLockManager(store, liveness)
        assert locks.acquire_lock(2222, "debian_1") is True
        assert locks.acquire_lock(2222, "debian_2") is False

    def test_acquire_reclaims_stale_lock(self, store: FileStore, liveness: FakeLiveness) -> None:
        """A lock whose pid is dead is replaced."""
        _write_lock(store, 2222, "crashed", DEAD_PID)
        locks = PortLockManager(store, liveness)
        assert locks.acquire_lock(2222, "debian_1") is True
        assert locks.get_lock(2222).instance_id == "debian_1"

    def test_acquire_fails_on_unreadable_record(
        self, store: FileStore, liveness: FakeLiveness
    ) -> None:
        """A corrupted record is left for garbage collection."""
        store.write("ports", lock_key(2222), "not json")
        locks = PortLockManager(store, liveness)
        assert locks.acquire_lock(2222, "debian_1") is False

    def test_acquire_fails_while_mutex_busy(
        self, store: FileStore, liveness: FakeLiveness
    ) -> None:
        """Another process deciding about the port means it is taken."""
        locks = PortLockManager(store, liveness)
        with store.mutex("ports", lock_key(2222)):
            assert locks.acquire_lock(2222, "debian_1") is False
        assert locks.get_lock(2222) is None


class TestReleaseLock:
    """Tests for release_lock and force_release."""

    def test_release_own_lock(self, store: FileStore, liveness: FakeLiveness) -> None:
        """The pid that took a lock may release it."""
        locks = PortLockManager(store, liveness)
        locks.acquire_lock(2222, "debian_1")
        assert locks.release_lock(2222) is True
        assert locks.get_lock(2222) is None

    def test_release_missing_lock(self, store: FileStore, liveness: FakeLiveness) -> None:
        """Releasing a free port reports False."""
        assert PortLockManager(store, liveness).release_lock(2222) is False

    def test_release_refuses_live_foreign_lock(
        self, store: FileStore, liveness: FakeLiveness
    ) -> None:
        """Another live instance's lock is left untouched."""
        _write_lock(store, 2222, "other", OTHER_OWNER_PID)
        locks = PortLockManager(store, liveness)
        assert locks.release_lock(2222) is False
        assert locks.release_lock(2222, instance_id="debian_1") is False
        assert locks.get_lock(2222) is not None

    def test_release_for_matching_instance(
        self, store: FileStore, liveness: FakeLiveness
    ) -> None:
        """Acting for the recorded instance allows release."""
        _write_lock(store, 2222, "other", OTHER_OWNER_PID)
        locks = PortLockManager(store, liveness)
        assert locks.release_lock(2222, instance_id="other") is True

    def test_release_stale_foreign_lock(self, store: FileStore, liveness: FakeLiveness) -> None:
        """Anyone may release a lock whose pid is dead."""
        _write_lock(store, 2222, "crashed", DEAD_PID)
        assert PortLockManager(store, liveness).release_lock(2222) is True

    def test_force_release(self, store: FileStore, liveness: FakeLiveness) -> None:
        """force_release ignores ownership."""
        _write_lock(store, 2222, "other", OTHER_OWNER_PID)
        locks = PortLockManager(store, liveness)
        assert locks.force_release(2222) is True
        assert locks.force_release(2222) is False


class TestLockQueries:
    """Tests for listing and ageing locks."""

    def test_locked_ports_includes_unreadable(
        self, store: FileStore, liveness: FakeLiveness
    ) -> None:
        """locked_ports sees every record; list_locks only readable ones."""
        locks = PortLockManager(store, liveness)
        locks.acquire_lock(5900, "debian_1")
        locks.acquire_lock(2222, "debian_1")
        store.write("ports", lock_key(3389), "garbage")
        store.write("ports", "unrelated", "x")

        assert locks.locked_ports() == [2222, 3389, 5900]
        assert [lock.port for lock in locks.list_locks()] == [2222, 5900]

    def test_lock_age_from_acquired_at(self, store: FileStore, liveness: FakeLiveness) -> None:
        """Age comes from the record's timestamp."""
        acquired = datetime.now() - timedelta(hours=2)
        _write_lock(store, 2222, "old", OTHER_OWNER_PID, acquired_at=acquired)
        locks = PortLockManager(store, liveness)
        assert locks.lock_age_seconds(2222, acquired + timedelta(seconds=30)) == 30

    def test_lock_age_unreadable_uses_mtime(
        self, store: FileStore, liveness: FakeLiveness
    ) -> None:
        """Unreadable records are aged by modification time."""
        store.write("ports", lock_key(2222), "garbage")
        age = PortLockManager(store, liveness).lock_age_seconds(2222)
        assert age is not None
        assert age < 60

    def test_lock_age_missing(self, store: FileStore, liveness: FakeLiveness) -> None:
        """No record, no age."""
        assert PortLockManager(store, liveness).lock_age_seconds(2222) is None

    def test_is_stale(self, store: FileStore) -> None:
        """Staleness follows the recorded pid's liveness."""
        liveness = FakeLiveness({1234})
        locks = PortLockManager(store, liveness)
        lock = PortLock(port=2222, instance_id="a", pid=1234)
        assert locks.is_stale(lock) is False
        liveness.kill(1234)
        assert locks.is_stale(lock) is True


class LivenessWithHook(FakeLiveness):
    """Runs a callback the first time a given pid is checked."""

    def __init__(self, alive: set[int], pid: int, hook):
        super().__init__(alive)
        self.pid = pid
        self.hook = hook

    def is_alive(self, pid: int) -> bool:
        if pid == self.pid and self.hook is not None:
            hook, self.hook = self.hook, None
            hook()
        return super().is_alive(pid)


class TestReleaseUnderMutex:
    """Release decisions and deletes happen under the port's mutex."""

    def test_acquire_during_stale_release_cannot_be_deleted(self, store: FileStore) -> None:
        """A lock taken while a stale one is being released survives."""
        _write_lock(store, 2222, "instance_a", DEAD_PID)
        other = PortLockManager(store, FakeLiveness({8888}), pid=8888)
        acquired = []

        def acquire_for_b() -> None:
            acquired.append(other.acquire_lock(2222, "instance_b"))

        releaser_liveness = LivenessWithHook({os.getpid(), 8888}, DEAD_PID, acquire_for_b)
        releaser = PortLockManager(store, releaser_liveness)

        assert releaser.release_lock(2222) is True
        assert acquired == [False]
        assert releaser.get_lock(2222) is None

        assert other.acquire_lock(2222, "instance_b") is True
        assert releaser.release_lock(2222) is False
        assert releaser.get_lock(2222).instance_id == "instance_b"

    def test_release_rechecks_record_under_mutex(self, store: FileStore) -> None:
        """The record checked is the one present once the mutex is held."""
        _write_lock(store, 2222, "instance_a", DEAD_PID)
        locks = PortLockManager(store, FakeLiveness({os.getpid(), 8888}))
        real_mutex = store.mutex

        def mutex(namespace, key):
            _write_lock(store, 2222, "instance_b", 8888)
            return real_mutex(namespace, key)

        with mock.patch.object(store, "mutex", side_effect=mutex):
            assert locks.release_lock(2222) is False
        assert locks.get_lock(2222).instance_id == "instance_b"

    def test_release_waits_for_busy_mutex(self, store: FileStore, liveness: FakeLiveness) -> None:
        """A mutex that stays busy leaves the record in place."""
        _write_lock(store, 2222, "crashed", DEAD_PID)
        locks = PortLockManager(store, liveness)
        with (
            mock.patch("rpiemu.core.lock_manager.MUTEX_WAIT_SECONDS", 0.05),
            store.mutex("ports", lock_key(2222)),
        ):
            assert locks.release_lock(2222) is False
            assert locks.force_release(2222) is False
            assert locks.release_orphan(2222, set(), 0) is False
        assert locks.get_lock(2222) is not None

    def test_release_retries_until_mutex_free(
        self, store: FileStore, liveness: FakeLiveness
    ) -> None:
        """A briefly busy mutex is retried."""
        _write_lock(store, 2222, "crashed", DEAD_PID)
        locks = PortLockManager(store, liveness)
        real_mutex = store.mutex
        attempts = []

        @contextlib.contextmanager
        def busy():
            yield False

        def mutex(namespace, key):
            attempts.append(key)
            if len(attempts) == 1:
                return busy()
            return real_mutex(namespace, key)

        with mock.patch.object(store, "mutex", side_effect=mutex):
            assert locks.release_lock(2222) is True
        assert len(attempts) == 2


class TestReleaseOrphan:
    """Tests for release_orphan."""

    def test_old_orphan_removed(self, store: FileStore, liveness: FakeLiveness) -> None:
        acquired = datetime.now() - timedelta(hours=2)
        _write_lock(store, 2222, "gone", OTHER_OWNER_PID, acquired_at=acquired)
        locks = PortLockManager(store, liveness)
        assert locks.release_orphan(2222, set(), 3600) is True
        assert locks.get_lock(2222) is None

    def test_young_orphan_kept(self, store: FileStore, liveness: FakeLiveness) -> None:
        """A lock taken moments ago may still be getting its descriptor."""
        _write_lock(store, 2222, "starting", OTHER_OWNER_PID)
        locks = PortLockManager(store, liveness)
        assert locks.release_orphan(2222, set(), 3600) is False
        assert locks.get_lock(2222) is not None

    def test_registered_instance_kept(self, store: FileStore, liveness: FakeLiveness) -> None:
        acquired = datetime.now() - timedelta(hours=2)
        _write_lock(store, 2222, "debian_1", OTHER_OWNER_PID, acquired_at=acquired)
        locks = PortLockManager(store, liveness)
        assert locks.release_orphan(2222, {"debian_1"}, 3600) is False

    def test_missing_record(self, store: FileStore, liveness: FakeLiveness) -> None:
        assert PortLockManager(store, liveness).release_orphan(2222, set(), 0) is False
