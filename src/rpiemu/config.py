"""Configuration management for rpiemu."""

import os
import tomllib
from pathlib import Path

import tomli_w
from pydantic import BaseModel, Field, ValidationError, model_validator

from .constants import (
    DEFAULT_RDP_BASE,
    DEFAULT_SSH_BASE,
    DEFAULT_STATE_DIR,
    DEFAULT_VNC_BASE,
    DEFAULT_WAYVNC_BASE,
    GRACEFUL_SHUTDOWN_TIMEOUT,
    MAX_INSTANCES,
    POLL_INTERVAL,
    PROBE_CONNECT_TIMEOUT,
    RETENTION_SECONDS,
)
from .errors import ConfigError
from .models import ServiceClass

CONFIG_ENV_VAR = "RPIEMU_CONFIG"


class PortsConfig(BaseModel):
    """Base port per service class."""

    ssh_base: int = Field(default=DEFAULT_SSH_BASE, ge=1, le=65535)
    vnc_base: int = Field(default=DEFAULT_VNC_BASE, ge=1, le=65535)
    rdp_base: int = Field(default=DEFAULT_RDP_BASE, ge=1, le=65535)
    wayvnc_base: int = Field(default=DEFAULT_WAYVNC_BASE, ge=1, le=65535)

    def base_for(self, service: ServiceClass) -> int:
        """Get the base port for a service class."""
        return getattr(self, f"{service.value}_base")


class ProbeConfig(BaseModel):
    """Which port-probe strategies run, and how long a connect may take."""

    connect_timeout: float = Field(default=PROBE_CONNECT_TIMEOUT, gt=0)
    check_socket_table: bool = True
    check_connect: bool = True
    check_processes: bool = True


class SupervisorConfig(BaseModel):
    """Timings for emulator supervision."""

    poll_interval: float = Field(default=POLL_INTERVAL, gt=0)
    grace_period: float = Field(default=GRACEFUL_SHUTDOWN_TIMEOUT, ge=0)


class LoggingConfig(BaseModel):
    """Optional log file written alongside console output."""

    file: str = ""


class RpiEmuConfig(BaseModel):
    """Root configuration for rpiemu."""

    state_dir: Path = Path(DEFAULT_STATE_DIR)
    max_instances: int = Field(default=MAX_INSTANCES, ge=1)
    retention_seconds: int = Field(default=RETENTION_SECONDS, ge=1)
    ports: PortsConfig = Field(default_factory=PortsConfig)
    probe: ProbeConfig = Field(default_factory=ProbeConfig)
    supervisor: SupervisorConfig = Field(default_factory=SupervisorConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def check_ranges(self) -> "RpiEmuConfig":
        for service in ServiceClass:
            last = self.ports.base_for(service) + self.max_instances - 1
            if last > 65535:
                raise ValueError(
                    f"{service.label} range ends at {last}, beyond 65535; "
                    "lower max_instances or the base port"
                )
        return self

    def port_range(self, service: ServiceClass) -> range:
        """Candidate ports scanned for a service during auto-allocation."""
        base = self.ports.base_for(service)
        return range(base, base + self.max_instances)


def default_config_path() -> Path:
    """Resolve the config path from $RPIEMU_CONFIG or the user config dir."""
    env = os.environ.get(CONFIG_ENV_VAR)
    if env:
        return Path(env)
    return Path.home() / ".config" / "rpiemu" / "config.toml"


def load_config(config_path: Path | None = None) -> RpiEmuConfig:
    """Load config from a TOML file.

    Args:
        config_path: Path to config.toml, resolved via default_config_path() if None

    Returns:
        Loaded configuration, or defaults if the file doesn't exist

    Raises:
        ConfigError: If the file is not valid TOML or fails validation
    """
    if config_path is None:
        config_path = default_config_path()
    if not config_path.exists():
        return RpiEmuConfig()
    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
        return RpiEmuConfig.model_validate(data)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {config_path}: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {config_path}:\n{e}") from e


def write_config_template(config_path: Path) -> Path:
    """Write default config.toml template.

    Args:
        config_path: Destination file; parent directories are created

    Returns:
        Path to the written config file
    """
    config_path.parent.mkdir(parents=True, exist_ok=True)
    template = {
        "state_dir": DEFAULT_STATE_DIR,
        "max_instances": MAX_INSTANCES,
        "retention_seconds": RETENTION_SECONDS,
        "ports": {
            "ssh_base": DEFAULT_SSH_BASE,
            "vnc_base": DEFAULT_VNC_BASE,
            "rdp_base": DEFAULT_RDP_BASE,
            "wayvnc_base": DEFAULT_WAYVNC_BASE,
        },
        "probe": {
            "connect_timeout": PROBE_CONNECT_TIMEOUT,
            "check_socket_table": True,
            "check_connect": True,
            "check_processes": True,
        },
        "supervisor": {
            "poll_interval": POLL_INTERVAL,
            "grace_period": GRACEFUL_SHUTDOWN_TIMEOUT,
        },
        "logging": {"file": ""},
    }
    with open(config_path, "wb") as f:
        tomli_w.dump(template, f)
    return config_path


# Configuration loaded by the CLI main callback
_active: RpiEmuConfig | None = None
_active_path: Path | None = None


def get_active_config() -> RpiEmuConfig:
    """Get the configuration selected on the command line.

    Falls back to load_config() when the CLI has not set one.
    """
    if _active is None:
        return load_config()
    return _active


def get_active_config_path() -> Path:
    """Get the config file path selected on the command line."""
    return _active_path or default_config_path()


def set_active_config(config: RpiEmuConfig | None, path: Path | None = None) -> None:
    """Set the configuration used by commands. Called by CLI main callback."""
    global _active, _active_path
    _active = config
    _active_path = path
