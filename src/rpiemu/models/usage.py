"""Reporting models for port usage and cleanup sweeps."""

from pydantic import BaseModel, Field

from .service import ServiceClass


class ServiceUsage(BaseModel):
    """Active allocations and configured range for one service class."""

    service: ServiceClass
    in_use: int = Field(default=0, description="Ports held by active instances")
    range_start: int
    range_end: int = Field(description="Last candidate port (inclusive)")


class PortUsageSummary(BaseModel):
    """Counts of active allocations per service class.

    An instance is active while its emulator pid is PENDING or alive.
    """

    active_instances: int = 0
    services: list[ServiceUsage] = Field(default_factory=list)

    def usage_for(self, service: ServiceClass) -> ServiceUsage:
        for usage in self.services:
            if usage.service == service:
                return usage
        raise KeyError(service)


class SweepResult(BaseModel):
    """What a garbage-collection sweep reclaimed."""

    instances: list[str] = Field(default_factory=list, description="Reclaimed instance IDs")
    locks: list[int] = Field(default_factory=list, description="Deleted orphan lock ports")

    @property
    def count(self) -> int:
        return len(self.instances) + len(self.locks)
