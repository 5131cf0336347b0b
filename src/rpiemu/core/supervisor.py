"""Emulator supervision: record the pid, watch it, release on exit.

The supervisor runs in the launcher process for the lifetime of one
emulator. Whatever ends the emulator (normal exit, crash, external kill,
Ctrl-C or SIGTERM to the launcher), the instance's ports are released
before the launcher returns.
"""

import contextlib
import logging
import signal
import subprocess
import time
from collections.abc import Iterator

import psutil

from ..constants import GRACEFUL_SHUTDOWN_TIMEOUT, POLL_INTERVAL
from ..errors import RegistryError
from ..models import InstanceDescriptor
from .allocator import Allocator

logger = logging.getLogger(__name__)

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class SupervisorInterrupted(Exception):
    """Raised inside the supervision loop when a termination signal arrives."""

    def __init__(self, signum: int):
        super().__init__(f"Interrupted by signal {signum}")
        self.signum = signum


def terminate_pid(pid: int, grace_period: float = GRACEFUL_SHUTDOWN_TIMEOUT) -> bool:
    """Send SIGTERM, wait up to grace_period, then SIGKILL.

    Returns:
        True if a process was found and stopped, False if it was already gone
    """
    try:
        proc = psutil.Process(pid)
        logger.info(f"Sending TERM signal to emulator process {pid}")
        proc.terminate()
        try:
            proc.wait(timeout=grace_period)
        except psutil.TimeoutExpired:
            logger.warning(f"Emulator {pid} did not exit after {grace_period}s, force killing")
            proc.kill()
            proc.wait(timeout=grace_period)
    except psutil.NoSuchProcess:
        return False
    return True


def stop_instance(
    allocator: Allocator,
    descriptor: InstanceDescriptor,
    grace_period: float = GRACEFUL_SHUTDOWN_TIMEOUT,
) -> bool:
    """Terminate an instance's emulator and release its ports.

    Returns:
        True if the instance was released
    """
    if not descriptor.is_pending and allocator.liveness.is_alive(descriptor.emulator_pid):
        terminate_pid(descriptor.emulator_pid, grace_period)
    return allocator.release_instance(descriptor.instance_id, force=True)


class InstanceSupervisor:
    """Supervise the emulator of one allocated instance.

    Args:
        allocator: Allocator sharing the instance's store
        instance_id: Instance being supervised
        poll_interval: Seconds between liveness checks
        grace_period: Seconds between SIGTERM and SIGKILL on shutdown
    """

    def __init__(
        self,
        allocator: Allocator,
        instance_id: str,
        poll_interval: float = POLL_INTERVAL,
        grace_period: float = GRACEFUL_SHUTDOWN_TIMEOUT,
    ):
        self.allocator = allocator
        self.instance_id = instance_id
        self.poll_interval = poll_interval
        self.grace_period = grace_period
        self._interrupted: int | None = None

    def attach(self, pid: int) -> InstanceDescriptor:
        """Record the emulator pid in place of PENDING."""
        return self.allocator.registry.set_emulator_pid(self.instance_id, pid)

    def release(self) -> bool:
        released = self.allocator.release_instance(self.instance_id)
        if not released and self.allocator.registry.get(self.instance_id) is not None:
            logger.warning(f"Instance {self.instance_id} left for its owner to clean up")
        return released

    def _on_signal(self, signum: int, frame: object) -> None:
        if self._interrupted is not None:
            return
        self._interrupted = signum
        raise SupervisorInterrupted(signum)

    @contextlib.contextmanager
    def _supervising(self) -> Iterator[None]:
        """Turn SIGINT/SIGTERM into SupervisorInterrupted, then release on exit.

        Signals are ignored while the instance is released, so cleanup is
        never cut short, and the previous handlers are restored afterwards.
        """
        previous = {sig: signal.signal(sig, self._on_signal) for sig in HANDLED_SIGNALS}
        try:
            yield
        finally:
            for sig in HANDLED_SIGNALS:
                signal.signal(sig, signal.SIG_IGN)
            try:
                self.release()
            finally:
                for sig, handler in previous.items():
                    signal.signal(sig, handler)

    def terminate(self, process: subprocess.Popen) -> None:
        """Stop a spawned emulator: SIGTERM, wait, then SIGKILL."""
        if process.poll() is not None:
            return
        logger.info(f"Sending TERM signal to emulator process {process.pid}")
        process.terminate()
        try:
            process.wait(timeout=self.grace_period)
        except subprocess.TimeoutExpired:
            logger.warning(
                f"Emulator {process.pid} did not exit after {self.grace_period}s, force killing"
            )
            process.kill()
            process.wait()

    def run(self, argv: list[str], env: dict[str, str] | None = None) -> int:
        """Spawn the emulator and supervise it until it exits.

        Returns:
            The emulator's exit code, or 128 + signal number if the
            launcher was interrupted
        """
        process = subprocess.Popen(argv, env=env)
        logger.info(f"Started emulator for {self.instance_id} (pid {process.pid})")
        with self._supervising():
            try:
                self.attach(process.pid)
                while True:
                    try:
                        code = process.wait(timeout=self.poll_interval)
                        break
                    except subprocess.TimeoutExpired:
                        continue
                logger.info(f"Emulator exited with code {code}, cleaning up {self.instance_id}")
                return code
            except SupervisorInterrupted as e:
                logger.warning(f"Received signal {e.signum}, shutting down emulator")
                self.terminate(process)
                return 128 + e.signum
            except RegistryError:
                self.terminate(process)
                raise

    def watch(self, pid: int) -> int:
        """Supervise an emulator started by someone else.

        Returns:
            0 once the process is gone, or 128 + signal number if interrupted
        """
        liveness = self.allocator.liveness
        with self._supervising():
            try:
                self.attach(pid)
                while liveness.is_alive(pid):
                    time.sleep(self.poll_interval)
                logger.info(f"Emulator process {pid} has terminated, cleaning up")
                return 0
            except SupervisorInterrupted as e:
                logger.warning(f"Received signal {e.signum}, shutting down emulator {pid}")
                terminate_pid(pid, self.grace_period)
                return 128 + e.signum
