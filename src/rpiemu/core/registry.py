"""Instance registry shared by allocator, supervisor and front-end processes."""

import logging

from pydantic import ValidationError

from ..constants import INSTANCES_NAMESPACE, MAX_WRITE_RETRIES, PENDING
from ..errors import RegistryError, WriteRaceError
from ..models import InstanceDescriptor
from ..models.instance import validate_instance_id
from .store import Store

logger = logging.getLogger(__name__)


class InstanceRegistry:
    """Create/read/update/delete instance descriptors keyed by instance ID."""

    def __init__(self, store: Store):
        self.store = store

    def _write(self, descriptor: InstanceDescriptor) -> None:
        data = descriptor.model_dump_json(indent=2)
        for attempt in range(1, MAX_WRITE_RETRIES + 1):
            try:
                self.store.write(INSTANCES_NAMESPACE, descriptor.instance_id, data)
                return
            except WriteRaceError:
                logger.debug(
                    f"Write of {descriptor.instance_id} collided (attempt {attempt}), retrying"
                )
        raise RegistryError(
            f"Failed to write instance {descriptor.instance_id} "
            f"after {MAX_WRITE_RETRIES} attempts"
        )

    def create(self, descriptor: InstanceDescriptor) -> InstanceDescriptor:
        """Persist a new descriptor.

        Raises:
            RegistryError: If a record for the instance already exists
        """
        data = descriptor.model_dump_json(indent=2)
        if not self.store.create(INSTANCES_NAMESPACE, descriptor.instance_id, data):
            raise RegistryError(f"Instance already registered: {descriptor.instance_id}")
        return descriptor

    def get(self, instance_id: str) -> InstanceDescriptor | None:
        """Get a descriptor.

        Returns:
            The descriptor, or None if missing or unreadable
        """
        validate_instance_id(instance_id)
        content = self.store.read(INSTANCES_NAMESPACE, instance_id)
        if content is None:
            return None
        try:
            return InstanceDescriptor.model_validate_json(content)
        except ValidationError:
            logger.warning(f"Ignoring corrupted record for instance {instance_id}")
            return None

    def list_all(self) -> list[InstanceDescriptor]:
        """All readable descriptors, oldest first."""
        descriptors = []
        for key in self.store.keys(INSTANCES_NAMESPACE):
            try:
                descriptor = self.get(key)
            except ValueError:
                logger.warning(f"Ignoring instance record with invalid name: {key!r}")
                continue
            if descriptor is not None:
                descriptors.append(descriptor)
        return sorted(descriptors, key=lambda d: d.created_at)

    def set_emulator_pid(self, instance_id: str, pid: int) -> InstanceDescriptor:
        """Replace the PENDING emulator pid with the real one.

        Raises:
            RegistryError: If the instance is unknown or already has another pid
        """
        descriptor = self.get(instance_id)
        if descriptor is None:
            raise RegistryError(f"Instance not found: {instance_id}")
        if descriptor.emulator_pid == pid:
            return descriptor
        if descriptor.emulator_pid != PENDING:
            raise RegistryError(
                f"Instance {instance_id} already runs emulator pid {descriptor.emulator_pid}"
            )
        updated = descriptor.model_copy(update={"emulator_pid": pid})
        self._write(updated)
        logger.info(f"Instance {instance_id}: emulator pid {pid}")
        return updated

    def delete(self, instance_id: str) -> bool:
        validate_instance_id(instance_id)
        return self.store.delete(INSTANCES_NAMESPACE, instance_id)

    def find_by_port(self, port: int) -> InstanceDescriptor | None:
        """Find the instance holding a port."""
        for descriptor in self.list_all():
            if port in descriptor.allocated_ports:
                return descriptor
        return None
