"""Launch and supervise emulator processes."""

import os
from pathlib import Path

import typer
from pydantic import ValidationError

from ..config import RpiEmuConfig
from ..core import (
    AUTO,
    Allocator,
    GarbageCollector,
    InstanceSupervisor,
    generate_instance_id,
)
from ..errors import AllocationError, RegistryError
from ..models import AllocationResult
from ..output import get_output_context
from .common import open_allocator, print_connection_info, report_allocation_failure

COMMAND_NOT_FOUND = 127


def _supervisor(
    allocator: Allocator, config: RpiEmuConfig, instance_id: str
) -> InstanceSupervisor:
    return InstanceSupervisor(
        allocator,
        instance_id,
        poll_interval=config.supervisor.poll_interval,
        grace_period=config.supervisor.grace_period,
    )


def _run_emulator(
    allocator: Allocator,
    config: RpiEmuConfig,
    result: AllocationResult,
    argv: list[str],
) -> int:
    ctx = get_output_context()
    try:
        args = result.format_args(argv)
    except (KeyError, IndexError, ValueError) as e:
        ctx.error(f"Invalid placeholder in emulator command: {e}")
        return 2

    print_connection_info(ctx, result)
    env = {**os.environ, **result.to_env()}
    try:
        return _supervisor(allocator, config, result.instance_id).run(args, env=env)
    except FileNotFoundError:
        ctx.error(f"Emulator command not found: {args[0]}")
        return COMMAND_NOT_FOUND


def launch(
    distro: str = typer.Argument(..., help="Distribution name, used in the instance ID"),
    argv: list[str] = typer.Argument(
        ...,
        help="Emulator command after '--'; {ssh_port}, {vnc_port}, {rdp_port}, "
        "{wayvnc_port} and {instance_id} are substituted",
    ),
    vnc: bool = typer.Option(False, "--vnc", help="Allocate a VNC port"),
    rdp: bool = typer.Option(False, "--rdp", help="Allocate an RDP port"),
    wayvnc: bool = typer.Option(False, "--wayvnc", help="Allocate a WayVNC port"),
    ssh_port: str = typer.Option(AUTO, "--ssh-port", "-p", help="SSH port or 'auto'"),
    vnc_port: str = typer.Option(AUTO, "--vnc-port", help="VNC port or 'auto'"),
    rdp_port: str = typer.Option(AUTO, "--rdp-port", help="RDP port or 'auto'"),
    wayvnc_port: str = typer.Option(AUTO, "--wayvnc-port", help="WayVNC port or 'auto'"),
    allocation: Path | None = typer.Option(
        None,
        "--allocation",
        "-a",
        help="Use ports pre-allocated with 'rpiemu allocate --output'",
    ),
) -> None:
    """Allocate ports, start the emulator and release the ports when it exits."""
    ctx = get_output_context()
    config, allocator = open_allocator()
    GarbageCollector(allocator).sweep()

    if allocation is not None:
        try:
            result = AllocationResult.load(allocation)
        except (OSError, ValueError, ValidationError) as e:
            ctx.error(f"Cannot read allocation file {allocation}: {e}")
            raise typer.Exit(1) from None
        if allocator.registry.get(result.instance_id) is None:
            ctx.error(f"Instance {result.instance_id} is not allocated (anymore)")
            raise typer.Exit(1)
        ctx.print(f"Using pre-allocated ports for instance {result.instance_id}")
        code = _run_emulator(allocator, config, result, argv)
    else:
        try:
            handle = allocator.reserve(
                generate_instance_id(distro),
                enable_vnc=vnc,
                enable_rdp=rdp,
                enable_wayvnc=wayvnc,
                ssh=ssh_port,
                vnc=vnc_port,
                rdp=rdp_port,
                wayvnc=wayvnc_port,
            )
        except ValueError as e:
            raise typer.BadParameter(str(e)) from None
        except AllocationError as e:
            report_allocation_failure(ctx, e, config)
            raise typer.Exit(1) from None
        with handle:
            code = _run_emulator(allocator, config, handle.result, argv)

    if code != 0:
        raise typer.Exit(code)


def supervise(
    instance_id: str = typer.Argument(..., help="Allocated instance to supervise"),
    pid: int = typer.Option(..., "--pid", help="Emulator process ID"),
) -> None:
    """Watch an emulator started elsewhere and release its ports when it exits."""
    ctx = get_output_context()
    config, allocator = open_allocator()

    try:
        code = _supervisor(allocator, config, instance_id).watch(pid)
    except ValueError as e:
        raise typer.BadParameter(str(e)) from None
    except RegistryError as e:
        ctx.error(str(e))
        raise typer.Exit(1) from None
    if code != 0:
        raise typer.Exit(code)
