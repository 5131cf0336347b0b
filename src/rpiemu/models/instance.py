"""Instance descriptor and hand-off models."""

import json
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from ..constants import PENDING
from .service import ServiceClass

INSTANCE_ID_CHARS = frozenset("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789_.-")


def validate_instance_id(value: str) -> str:
    """Reject instance IDs that cannot be used as a record file name."""
    if not value or value.startswith(".") or not set(value) <= INSTANCE_ID_CHARS:
        raise ValueError(
            f"Invalid instance ID {value!r}: use letters, digits, '_', '.' and '-' only"
        )
    return value


class InstanceStatus(str, Enum):
    """Lifecycle state derived from the recorded emulator pid."""

    STARTING = "STARTING"
    RUNNING = "RUNNING"
    STOPPED = "STOPPED"


class _PortFields(BaseModel):
    instance_id: str
    ssh_port: int = Field(ge=1, le=65535)
    vnc_port: int | None = Field(default=None, ge=1, le=65535)
    rdp_port: int | None = Field(default=None, ge=1, le=65535)
    wayvnc_port: int | None = Field(default=None, ge=1, le=65535)

    @field_validator("instance_id")
    @classmethod
    def check_instance_id(cls, value: str) -> str:
        return validate_instance_id(value)

    def port_for(self, service: ServiceClass) -> int | None:
        """Get the port assigned to a service, None if it is not enabled."""
        return getattr(self, service.port_field)

    def service_ports(self) -> dict[ServiceClass, int]:
        """Assigned ports keyed by service, in allocation order."""
        ports = {}
        for service in ServiceClass:
            port = self.port_for(service)
            if port is not None:
                ports[service] = port
        return ports


class InstanceDescriptor(_PortFields):
    """Registry record for one running or starting emulation.

    Attributes:
        instance_id: Unique ID (distro, timestamp and random suffix).
        ssh_port: Forwarded SSH port (always present).
        vnc_port: Forwarded VNC port, if enabled.
        rdp_port: Forwarded RDP port, if enabled.
        wayvnc_port: Forwarded WayVNC port, if enabled.
        allocated_ports: Every port above, used for bulk release.
        created_at: When the allocation succeeded.
        emulator_pid: Emulator process ID, or "PENDING" until it starts.
        owner_pid: Process that performed the allocation.
    """

    allocated_ports: list[int] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.now)
    emulator_pid: int | Literal["PENDING"] = PENDING
    owner_pid: int

    @model_validator(mode="after")
    def check_allocated_ports(self) -> "InstanceDescriptor":
        expected = sorted(self.service_ports().values())
        if not self.allocated_ports:
            self.allocated_ports = expected
        elif sorted(self.allocated_ports) != expected:
            raise ValueError(
                f"allocated_ports {self.allocated_ports} does not match "
                f"assigned ports {expected}"
            )
        return self

    @property
    def is_pending(self) -> bool:
        return self.emulator_pid == PENDING

    def age_seconds(self, now: datetime | None = None) -> float:
        """Seconds since the allocation was recorded."""
        return ((now or datetime.now()) - self.created_at).total_seconds()

    def to_result(self) -> "AllocationResult":
        return AllocationResult(
            instance_id=self.instance_id,
            ssh_port=self.ssh_port,
            vnc_port=self.vnc_port,
            rdp_port=self.rdp_port,
            wayvnc_port=self.wayvnc_port,
        )


class AllocationResult(_PortFields):
    """Ports and instance ID handed to a launched emulator process.

    Travels as a small JSON file, as argv placeholders or as the
    ``ALLOCATED_*_PORT``/``INSTANCE_ID`` environment names shell
    launchers expect.
    """

    def to_env(self) -> dict[str, str]:
        """Environment names for shell launchers; disabled services are empty."""
        env = {"INSTANCE_ID": self.instance_id}
        for service in ServiceClass:
            port = self.port_for(service)
            env[service.env_var] = "" if port is None else str(port)
        return env

    def format_args(self, argv: list[str]) -> list[str]:
        """Substitute {ssh_port}, {vnc_port}, ... and {instance_id} in argv."""
        values = {"instance_id": self.instance_id}
        for service in ServiceClass:
            port = self.port_for(service)
            values[service.port_field] = "" if port is None else str(port)
        return [arg.format(**values) for arg in argv]

    def write(self, path: Path) -> Path:
        """Write the result as JSON, replacing the destination atomically."""
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(f".{path.name}.tmp")
        tmp.write_text(self.model_dump_json(indent=2))
        tmp.replace(path)
        return path

    @classmethod
    def load(cls, path: Path) -> "AllocationResult":
        return cls.model_validate(json.loads(path.read_text()))


class InstanceSnapshot(BaseModel):
    """Descriptor plus the status observed when the snapshot was taken."""

    descriptor: InstanceDescriptor
    status: InstanceStatus
