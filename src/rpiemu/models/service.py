"""Service classes forwarded from an emulated instance."""

from enum import Enum


class ServiceClass(str, Enum):
    """A forwarded service; declaration order is the allocation order."""

    SSH = "ssh"
    VNC = "vnc"
    RDP = "rdp"
    WAYVNC = "wayvnc"

    @property
    def label(self) -> str:
        return _LABELS[self]

    @property
    def port_field(self) -> str:
        """Name of the descriptor attribute holding this service's port."""
        return f"{self.value}_port"

    @property
    def env_var(self) -> str:
        return f"ALLOCATED_{self.value.upper()}_PORT"


_LABELS = {
    ServiceClass.SSH: "SSH",
    ServiceClass.VNC: "VNC",
    ServiceClass.RDP: "RDP",
    ServiceClass.WAYVNC: "WayVNC",
}
