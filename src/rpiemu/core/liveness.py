"""Process liveness checks."""

from typing import Protocol

import psutil


class ProcessLiveness(Protocol):
    """Answers whether a process id still refers to a running process."""

    def is_alive(self, pid: int) -> bool: ...


class OsProcessLiveness:
    """Liveness from the host process table.

    Zombies count as dead: an emulator that exited but was not reaped yet
    holds no sockets any more.
    """

    def is_alive(self, pid: int) -> bool:
        if pid <= 0:
            return False
        try:
            return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
        except psutil.NoSuchProcess:
            return False
        except psutil.AccessDenied:
            # Exists but belongs to another user
            return True
