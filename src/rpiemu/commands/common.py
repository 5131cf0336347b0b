"""Helpers shared by CLI commands."""

from ..config import RpiEmuConfig, get_active_config
from ..core import Allocator, build_allocator
from ..errors import AllocationError, ExhaustedRangeError, PortUnavailableError
from ..models import AllocationResult, ServiceClass
from ..output import OutputContext


def open_allocator(owner_pid: int | None = None) -> tuple[RpiEmuConfig, Allocator]:
    config = get_active_config()
    return config, build_allocator(config, owner_pid=owner_pid)


def report_allocation_failure(
    ctx: OutputContext, error: AllocationError, config: RpiEmuConfig
) -> None:
    """Explain a failed allocation and how to get out of it."""
    ctx.error(
        f"Failed to allocate required ports: {error}",
        {"service": error.service, "port": error.port},
    )
    hints = []
    if isinstance(error, PortUnavailableError):
        hints.append("Use auto-allocation instead of a specific port")
        hints.append(f"Free port {error.port} or pick another one")
    if isinstance(error, ExhaustedRangeError):
        hints.append(f"Close some running instances (max: {config.max_instances} per service)")
    hints.append("Clean up stale instances: rpiemu cleanup")
    ctx.hints(hints)


def print_connection_info(ctx: OutputContext, result: AllocationResult) -> None:
    ctx.print(f"[bold]Instance:[/bold] {result.instance_id}")
    for service, port in result.service_ports().items():
        if service == ServiceClass.SSH:
            ctx.print(f"  {service.label}: ssh -p {port} pi@localhost")
        else:
            ctx.print(f"  {service.label}: localhost:{port}")
