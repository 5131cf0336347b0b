"""Core allocation logic for rpiemu.

- store: atomic record storage shared between processes (FileStore, MemoryStore)
- liveness: process liveness checks
- port_probe: host-wide port usage detection
- lock_manager: per-port lock records
- registry: instance descriptors
- allocator: transactional allocation, release and preview
- gc: stale allocation sweeps
- reporting: instance listings and port usage
- supervisor: emulator supervision and shutdown
"""

from pathlib import Path

from ..config import RpiEmuConfig
from .allocator import (
    AUTO,
    AllocationHandle,
    Allocator,
    generate_instance_id,
    parse_port_request,
)
from .gc import GarbageCollector
from .liveness import OsProcessLiveness, ProcessLiveness
from .lock_manager import PortLockManager
from .port_probe import PortProbe
from .registry import InstanceRegistry
from .reporting import instance_status, list_instances, port_usage_summary
from .store import FileStore, MemoryStore, Store
from .supervisor import InstanceSupervisor, SupervisorInterrupted, stop_instance, terminate_pid


def build_allocator(config: RpiEmuConfig, owner_pid: int | None = None) -> Allocator:
    """Allocator on the configured state directory with host probes."""
    return Allocator(
        config,
        store=FileStore(Path(config.state_dir)),
        probe=PortProbe(config.probe),
        liveness=OsProcessLiveness(),
        owner_pid=owner_pid,
    )


__all__ = [
    "AUTO",
    "AllocationHandle",
    "Allocator",
    "FileStore",
    "GarbageCollector",
    "InstanceRegistry",
    "InstanceSupervisor",
    "MemoryStore",
    "OsProcessLiveness",
    "PortLockManager",
    "PortProbe",
    "ProcessLiveness",
    "Store",
    "SupervisorInterrupted",
    "build_allocator",
    "generate_instance_id",
    "instance_status",
    "list_instances",
    "parse_port_request",
    "port_usage_summary",
    "stop_instance",
    "terminate_pid",
]
