"""Snapshots of registered instances and port usage."""

from ..config import RpiEmuConfig
from ..models import (
    InstanceDescriptor,
    InstanceSnapshot,
    InstanceStatus,
    PortUsageSummary,
    ServiceClass,
    ServiceUsage,
)
from .liveness import ProcessLiveness
from .registry import InstanceRegistry


def instance_status(descriptor: InstanceDescriptor, liveness: ProcessLiveness) -> InstanceStatus:
    if descriptor.is_pending:
        return InstanceStatus.STARTING
    if liveness.is_alive(descriptor.emulator_pid):
        return InstanceStatus.RUNNING
    return InstanceStatus.STOPPED


def list_instances(
    registry: InstanceRegistry, liveness: ProcessLiveness
) -> list[InstanceSnapshot]:
    """Every registered instance with its current status, oldest first."""
    return [
        InstanceSnapshot(descriptor=d, status=instance_status(d, liveness))
        for d in registry.list_all()
    ]


def port_usage_summary(
    registry: InstanceRegistry, liveness: ProcessLiveness, config: RpiEmuConfig
) -> PortUsageSummary:
    """Count active allocations per service class.

    STOPPED instances are left out; they only wait for cleanup.
    """
    counts = dict.fromkeys(ServiceClass, 0)
    active = 0
    for snapshot in list_instances(registry, liveness):
        if snapshot.status == InstanceStatus.STOPPED:
            continue
        active += 1
        for service in snapshot.descriptor.service_ports():
            counts[service] += 1

    services = []
    for service in ServiceClass:
        candidates = config.port_range(service)
        services.append(
            ServiceUsage(
                service=service,
                in_use=counts[service],
                range_start=candidates.start,
                range_end=candidates.stop - 1,
            )
        )
    return PortUsageSummary(active_instances=active, services=services)
