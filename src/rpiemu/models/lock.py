"""Port lock model.

One record per reserved port, written to ``<state_dir>/ports/port_<n>.json``.
The embedded pid decides whether the record is still valid: a lock whose
process is gone is abandoned and may be reclaimed by any caller.
"""

from datetime import datetime

from pydantic import BaseModel, Field


class PortLock(BaseModel):
    """Reservation of a single host port.

    Attributes:
        port: Reserved TCP port.
        instance_id: Instance the port is reserved for.
        acquired_at: When the lock was created.
        pid: Process that performed the reservation.
    """

    port: int = Field(ge=1, le=65535, description="Reserved TCP port")
    instance_id: str = Field(description="Owning instance ID")
    acquired_at: datetime = Field(default_factory=datetime.now)
    pid: int = Field(description="Process ID that acquired the lock")
