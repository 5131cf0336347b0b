"""Pydantic data models for rpiemu state.

This package defines the records shared between cooperating processes:
- Service classes and their forwarded ports (ServiceClass)
- Per-port lock records (PortLock)
- Instance descriptors and their derived status (InstanceDescriptor, InstanceStatus)
- The typed hand-off passed to a launched emulator (AllocationResult)
- Reporting snapshots (InstanceSnapshot, PortUsageSummary, SweepResult)

Example:
    >>> from rpiemu.models import PortLock
    >>> lock = PortLock(port=2222, instance_id="jessie_1", pid=4242)
    >>> lock.model_dump_json()
"""

from .instance import (
    AllocationResult,
    InstanceDescriptor,
    InstanceSnapshot,
    InstanceStatus,
)
from .lock import PortLock
from .service import ServiceClass
from .usage import PortUsageSummary, ServiceUsage, SweepResult

__all__ = [
    "AllocationResult",
    "InstanceDescriptor",
    "InstanceSnapshot",
    "InstanceStatus",
    "PortLock",
    "PortUsageSummary",
    "ServiceClass",
    "ServiceUsage",
    "SweepResult",
]
