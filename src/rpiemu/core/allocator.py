"""Transactional port allocation for emulator instances.

An allocation takes one port lock per requested service, in the fixed order
ssh, vnc, rdp, wayvnc, then records the instance in the registry. If any
service cannot be satisfied, every lock taken during the call is released
before the error propagates: callers never observe a partial allocation.
"""

import logging
import os
import random
import re
import time
from types import TracebackType
from typing import Protocol

from ..config import RpiEmuConfig
from ..errors import ExhaustedRangeError, PortUnavailableError, RegistryError
from ..models import AllocationResult, InstanceDescriptor, ServiceClass
from .liveness import ProcessLiveness
from .lock_manager import PortLockManager
from .registry import InstanceRegistry
from .store import Store

logger = logging.getLogger(__name__)

AUTO = "auto"

PortRequest = int | str | None


class PortChecker(Protocol):
    def is_port_in_use(self, port: int) -> bool: ...


def parse_port_request(value: PortRequest) -> int | None:
    """Normalize a port request: None means auto-allocate.

    Raises:
        ValueError: If the value is neither "auto" nor a valid port number
    """
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if value == "" or value.lower() == AUTO:
            return None
        if not value.isdigit():
            raise ValueError(f"Invalid port {value!r}: expected a number or 'auto'")
        value = int(value)
    if not 1 <= value <= 65535:
        raise ValueError(f"Invalid port {value}: must be between 1 and 65535")
    return value


def generate_instance_id(distro: str) -> str:
    """Generate a unique instance ID: <distro>_<nanoseconds>_<random>."""
    slug = re.sub(r"[^A-Za-z0-9.-]+", "-", distro).strip("-.") or "instance"
    return f"{slug}_{time.time_ns()}_{random.randint(1000, 9999)}"


class AllocationHandle:
    """Scoped ownership of an allocation.

    Releases the instance when the ``with`` block exits, however it exits,
    unless ownership was handed on with detach().
    """

    def __init__(self, allocator: "Allocator", descriptor: InstanceDescriptor):
        self.allocator = allocator
        self.descriptor = descriptor
        self._active = True

    @property
    def instance_id(self) -> str:
        return self.descriptor.instance_id

    @property
    def result(self) -> AllocationResult:
        return self.descriptor.to_result()

    def release(self) -> bool:
        if not self._active:
            return False
        self._active = False
        return self.allocator.release_instance(self.instance_id)

    def detach(self) -> InstanceDescriptor:
        """Stop managing the allocation; someone else releases it now."""
        self._active = False
        return self.descriptor

    def __enter__(self) -> "AllocationHandle":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()


class Allocator:
    """Allocate and release ports for emulator instances.

    Args:
        config: Port ranges and limits
        store: Shared state backend
        probe: Host port checker
        liveness: Process liveness checker
        owner_pid: Process recorded as owner of new locks and descriptors
    """

    def __init__(
        self,
        config: RpiEmuConfig,
        store: Store,
        probe: PortChecker,
        liveness: ProcessLiveness,
        owner_pid: int | None = None,
    ):
        self.config = config
        self.probe = probe
        self.liveness = liveness
        self.owner_pid = os.getpid() if owner_pid is None else owner_pid
        self.locks = PortLockManager(store, liveness, pid=self.owner_pid)
        self.registry = InstanceRegistry(store)

    def allocate(
        self,
        instance_id: str,
        enable_vnc: bool = False,
        enable_rdp: bool = False,
        enable_wayvnc: bool = False,
        ssh: PortRequest = AUTO,
        vnc: PortRequest = AUTO,
        rdp: PortRequest = AUTO,
        wayvnc: PortRequest = AUTO,
    ) -> InstanceDescriptor:
        """Reserve ports for an instance and record it.

        Calling again for an instance that is already registered returns
        the existing descriptor unchanged.

        Args:
            instance_id: Unique instance ID
            enable_vnc: Allocate a VNC port
            enable_rdp: Allocate an RDP port
            enable_wayvnc: Allocate a WayVNC port
            ssh: Requested SSH port, or "auto"
            vnc: Requested VNC port, or "auto"
            rdp: Requested RDP port, or "auto"
            wayvnc: Requested WayVNC port, or "auto"

        Returns:
            The instance descriptor, emulator pid PENDING

        Raises:
            PortUnavailableError: A requested port is taken or requested twice
            ExhaustedRangeError: No free port left in a service's range
            ValueError: A requested port is not a valid port number
        """
        existing = self.registry.get(instance_id)
        if existing is not None:
            logger.info(f"Ports already allocated for instance {instance_id}, reusing them")
            return existing

        requests = {ServiceClass.SSH: parse_port_request(ssh)}
        if enable_vnc:
            requests[ServiceClass.VNC] = parse_port_request(vnc)
        if enable_rdp:
            requests[ServiceClass.RDP] = parse_port_request(rdp)
        if enable_wayvnc:
            requests[ServiceClass.WAYVNC] = parse_port_request(wayvnc)
        self._reject_duplicates(requests)

        assigned: dict[ServiceClass, int] = {}
        try:
            for service, requested in requests.items():
                if requested is None:
                    port = self._acquire_auto(service, instance_id, set(assigned.values()))
                else:
                    port = self._acquire_explicit(service, requested, instance_id)
                assigned[service] = port

            descriptor = InstanceDescriptor(
                instance_id=instance_id,
                owner_pid=self.owner_pid,
                **{service.port_field: port for service, port in assigned.items()},
            )
            self.registry.create(descriptor)
        except RegistryError:
            self._rollback(instance_id, assigned)
            concurrent = self.registry.get(instance_id)
            if concurrent is None:
                raise
            return concurrent
        except BaseException:
            self._rollback(instance_id, assigned)
            raise

        logger.info(f"Port allocation successful for instance {instance_id}:")
        for service, port in assigned.items():
            logger.info(f"  {service.label}: {port}")
        return descriptor

    def reserve(self, instance_id: str, **kwargs) -> AllocationHandle:
        """Allocate and wrap the result in a handle that releases on exit."""
        return AllocationHandle(self, self.allocate(instance_id, **kwargs))

    def _reject_duplicates(self, requests: dict[ServiceClass, int | None]) -> None:
        seen: dict[int, ServiceClass] = {}
        for service, port in requests.items():
            if port is None:
                continue
            if port in seen:
                raise PortUnavailableError(
                    f"Port {port} requested for both {seen[port].label} and {service.label}",
                    service=service.value,
                    port=port,
                )
            seen[port] = service

    def _acquire_explicit(self, service: ServiceClass, port: int, instance_id: str) -> int:
        if self.probe.is_port_in_use(port) or not self.locks.acquire_lock(port, instance_id):
            raise PortUnavailableError(
                f"Requested {service.label} port {port} is already in use",
                service=service.value,
                port=port,
            )
        return port

    def _acquire_auto(self, service: ServiceClass, instance_id: str, taken: set[int]) -> int:
        candidates = self.config.port_range(service)
        for port in candidates:
            if port in taken or self.probe.is_port_in_use(port):
                continue
            if self.locks.acquire_lock(port, instance_id):
                return port
        raise ExhaustedRangeError(
            f"Could not find available {service.label} port "
            f"in {candidates.start}-{candidates.stop - 1}",
            service=service.value,
        )

    def _rollback(self, instance_id: str, assigned: dict[ServiceClass, int]) -> None:
        for port in assigned.values():
            self.locks.release_lock(port, instance_id)
        if assigned:
            logger.debug(f"Rolled back ports {sorted(assigned.values())} for {instance_id}")

    def release_instance(self, instance_id: str, force: bool = False) -> bool:
        """Release every port of an instance and delete its descriptor.

        Does nothing while a different, live owner holds the instance and
        its emulator (if started) is still running, unless force is set.

        Returns:
            True if the instance was released
        """
        descriptor = self.registry.get(instance_id)
        if descriptor is None:
            return False

        is_owner = descriptor.owner_pid == self.owner_pid
        owner_dead = not self.liveness.is_alive(descriptor.owner_pid)
        emulator_exited = not descriptor.is_pending and not self.liveness.is_alive(
            descriptor.emulator_pid
        )
        if not (force or is_owner or owner_dead or emulator_exited):
            logger.info(
                f"Instance {instance_id} owned by process {descriptor.owner_pid}, "
                "not cleaning up"
            )
            return False

        for port in descriptor.allocated_ports:
            if self.locks.release_lock(port, instance_id):
                logger.debug(f"Released port {port}")
        self.registry.delete(instance_id)
        logger.info(f"Cleaned up instance {instance_id}")
        return True

    def preview(
        self,
        enable_vnc: bool = False,
        enable_rdp: bool = False,
        enable_wayvnc: bool = False,
    ) -> dict[ServiceClass, int | None]:
        """Ports an auto-allocation would pick right now, without locking them.

        Returns:
            Port per enabled service, None where the range is exhausted
        """
        services = [ServiceClass.SSH]
        if enable_vnc:
            services.append(ServiceClass.VNC)
        if enable_rdp:
            services.append(ServiceClass.RDP)
        if enable_wayvnc:
            services.append(ServiceClass.WAYVNC)

        picked: dict[ServiceClass, int | None] = {}
        for service in services:
            picked[service] = None
            for port in self.config.port_range(service):
                if port in picked.values() or self.probe.is_port_in_use(port):
                    continue
                lock = self.locks.get_lock(port)
                if lock is None or self.locks.is_stale(lock):
                    picked[service] = port
                    break
        return picked
