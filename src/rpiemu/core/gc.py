"""Reclaim allocations left behind by crashed or killed processes."""

import logging
from datetime import datetime

from ..config import RpiEmuConfig
from ..models import InstanceDescriptor, SweepResult
from .allocator import Allocator

logger = logging.getLogger(__name__)


class GarbageCollector:
    """Sweep stale descriptors and orphan port locks.

    Safe to run next to live instances: it only touches records whose
    processes are provably dead or that outlived the retention threshold.
    """

    def __init__(self, allocator: Allocator, config: RpiEmuConfig | None = None):
        self.allocator = allocator
        self.config = config or allocator.config

    @property
    def retention_seconds(self) -> int:
        return self.config.retention_seconds

    def is_stale(self, descriptor: InstanceDescriptor, now: datetime | None = None) -> bool:
        """Stale when owner and emulator are both gone, or past retention.

        A PENDING emulator counts as gone once its owner is dead: nobody is
        left to start it.
        """
        liveness = self.allocator.liveness
        owner_dead = not liveness.is_alive(descriptor.owner_pid)
        emulator_dead = descriptor.is_pending or not liveness.is_alive(descriptor.emulator_pid)
        if owner_dead and emulator_dead:
            return True
        return descriptor.age_seconds(now) > self.retention_seconds

    def sweep(self) -> SweepResult:
        """Reclaim stale instances, then orphan locks older than retention.

        Returns:
            What was reclaimed; ``result.count`` is the total
        """
        result = SweepResult()
        now = datetime.now()
        registry = self.allocator.registry
        locks = self.allocator.locks

        for descriptor in registry.list_all():
            if not self.is_stale(descriptor, now):
                continue
            logger.info(
                f"Found stale instance {descriptor.instance_id} "
                f"(owner: {descriptor.owner_pid}, emulator: {descriptor.emulator_pid})"
            )
            for port in descriptor.allocated_ports:
                locks.release_lock(port, descriptor.instance_id)
            registry.delete(descriptor.instance_id)
            result.instances.append(descriptor.instance_id)

        known = {d.instance_id for d in registry.list_all()}
        for port in locks.locked_ports():
            if not locks.release_orphan(port, known, self.retention_seconds, now):
                continue
            logger.info(f"Removed stale lock file for port {port}")
            result.locks.append(port)

        if result.count:
            logger.info(f"Cleaned up {result.count} stale instances/locks")
        else:
            logger.info("No stale instances found")
        return result
