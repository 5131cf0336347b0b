"""Errors raised by rpiemu."""


class RpiEmuError(Exception):
    """Base exception for rpiemu errors."""


class ConfigError(RpiEmuError):
    """Raised when the configuration file cannot be loaded."""


class AllocationError(RpiEmuError):
    """Raised when ports for an instance cannot be allocated.

    Any locks taken during the failed request have already been released
    by the time this propagates.
    """

    def __init__(self, message: str, service: str | None = None, port: int | None = None):
        super().__init__(message)
        self.service = service
        self.port = port


class PortUnavailableError(AllocationError):
    """Raised when an explicitly requested port is in use or cannot be locked."""


class ExhaustedRangeError(AllocationError):
    """Raised when auto-allocation finds no free port in a service's range."""


class RegistryError(RpiEmuError):
    """Raised when an instance record cannot be persisted or mutated."""


class WriteRaceError(RegistryError):
    """Raised by a store when an atomic write collides with another writer."""
