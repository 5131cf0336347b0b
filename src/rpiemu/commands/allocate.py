"""Allocation commands: allocate, preview and release."""

import os
import shlex
from pathlib import Path

import typer

from ..core import AUTO, generate_instance_id
from ..errors import AllocationError
from ..output import get_output_context
from .common import open_allocator, print_connection_info, report_allocation_failure


def allocate(
    distro: str = typer.Argument(..., help="Distribution name, used in the instance ID"),
    instance_id: str | None = typer.Option(
        None,
        "--instance-id",
        "-i",
        help="Instance ID (generated from the distro if omitted)",
    ),
    vnc: bool = typer.Option(False, "--vnc", help="Allocate a VNC port"),
    rdp: bool = typer.Option(False, "--rdp", help="Allocate an RDP port"),
    wayvnc: bool = typer.Option(False, "--wayvnc", help="Allocate a WayVNC port"),
    ssh_port: str = typer.Option(AUTO, "--ssh-port", "-p", help="SSH port or 'auto'"),
    vnc_port: str = typer.Option(AUTO, "--vnc-port", help="VNC port or 'auto'"),
    rdp_port: str = typer.Option(AUTO, "--rdp-port", help="RDP port or 'auto'"),
    wayvnc_port: str = typer.Option(AUTO, "--wayvnc-port", help="WayVNC port or 'auto'"),
    owner_pid: int | None = typer.Option(
        None,
        "--owner-pid",
        help="Process owning the allocation (default: the calling shell)",
    ),
    output: Path | None = typer.Option(
        None,
        "--output",
        "-o",
        help="Write the allocation as JSON for the emulator launcher",
    ),
    env: bool = typer.Option(
        False,
        "--env",
        help="Print shell export lines (INSTANCE_ID, ALLOCATED_*_PORT)",
    ),
) -> None:
    """Reserve ports for a new emulator instance."""
    ctx = get_output_context()
    config, allocator = open_allocator(owner_pid if owner_pid is not None else os.getppid())
    instance_id = instance_id or generate_instance_id(distro)

    try:
        descriptor = allocator.allocate(
            instance_id,
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

    result = descriptor.to_result()
    if output is not None:
        result.write(output)

    if env:
        for name, value in result.to_env().items():
            typer.echo(f"export {name}={shlex.quote(value)}")
        return

    ctx.print_json(result.model_dump())
    print_connection_info(ctx, result)
    if output is not None:
        ctx.print(f"Allocation written to {output}")


def preview(
    vnc: bool = typer.Option(False, "--vnc", help="Include a VNC port"),
    rdp: bool = typer.Option(False, "--rdp", help="Include an RDP port"),
    wayvnc: bool = typer.Option(False, "--wayvnc", help="Include a WayVNC port"),
) -> None:
    """Show which ports auto-allocation would pick right now."""
    ctx = get_output_context()
    _, allocator = open_allocator()
    picked = allocator.preview(enable_vnc=vnc, enable_rdp=rdp, enable_wayvnc=wayvnc)

    ctx.print_json({service.value: port for service, port in picked.items()})
    ctx.print("[bold]Port allocation preview:[/bold]")
    for service, port in picked.items():
        ctx.print(f"  {service.label} Port: {port if port is not None else 'N/A'}")
    ctx.print("\nNote: Actual ports may differ if these become unavailable before launch.")


def release(
    instance_id: str = typer.Argument(..., help="Instance to release"),
    owner_pid: int | None = typer.Option(
        None,
        "--owner-pid",
        help="Process owning the allocation (default: the calling shell)",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Release even if a live owner still holds the instance",
    ),
) -> None:
    """Release an instance's ports and forget it."""
    ctx = get_output_context()
    _, allocator = open_allocator(owner_pid if owner_pid is not None else os.getppid())

    try:
        descriptor = allocator.registry.get(instance_id)
    except ValueError as e:
        raise typer.BadParameter(str(e)) from None
    if descriptor is None:
        ctx.error(f"Instance not found: {instance_id}")
        raise typer.Exit(1)

    if not allocator.release_instance(instance_id, force=force):
        ctx.error(
            f"Instance {instance_id} is owned by live process {descriptor.owner_pid}",
            {"instance_id": instance_id, "owner_pid": descriptor.owner_pid},
        )
        ctx.hints(["Stop the owning launcher first, or pass --force"])
        raise typer.Exit(1)

    ctx.success(
        f"Released instance {instance_id}",
        {"instance_id": instance_id, "ports": descriptor.allocated_ports},
    )
