"""Instance management commands: list, usage, cleanup, kill and kill-all."""

import typer

from ..core import GarbageCollector, list_instances, port_usage_summary, stop_instance
from ..models import InstanceStatus
from ..output import get_output_context
from .common import open_allocator

STATUS_STYLES = {
    InstanceStatus.STARTING: "yellow",
    InstanceStatus.RUNNING: "green",
    InstanceStatus.STOPPED: "red",
}


def list_cmd() -> None:
    """List registered emulator instances."""
    ctx = get_output_context()
    _, allocator = open_allocator()
    snapshots = list_instances(allocator.registry, allocator.liveness)

    ctx.print_json(
        [
            {
                "instance_id": s.descriptor.instance_id,
                "status": s.status.value,
                "emulator_pid": s.descriptor.emulator_pid,
                "owner_pid": s.descriptor.owner_pid,
                "created_at": s.descriptor.created_at.isoformat(),
                "ports": {k.value: v for k, v in s.descriptor.service_ports().items()},
            }
            for s in snapshots
        ]
    )
    if not snapshots:
        ctx.print("No active instances found.")
        return

    rows = []
    for s in snapshots:
        d = s.descriptor
        style = STATUS_STYLES[s.status]
        rows.append(
            [
                d.instance_id,
                f"[{style}]{s.status.value}[/{style}]",
                str(d.emulator_pid),
                str(d.owner_pid),
                d.created_at.strftime("%Y-%m-%d %H:%M:%S"),
                ", ".join(f"{svc.label} {port}" for svc, port in d.service_ports().items()),
            ]
        )
    ctx.table(
        "Active QEMU instances",
        ["Instance", "Status", "PID", "Owner", "Created", "Ports"],
        rows,
    )


def usage() -> None:
    """Show port usage per service and the configured ranges."""
    ctx = get_output_context()
    config, allocator = open_allocator()
    summary = port_usage_summary(allocator.registry, allocator.liveness, config)

    ctx.print_json(summary.model_dump(mode="json"))
    ctx.print(f"[bold]Active instances:[/bold] {summary.active_instances}")
    ctx.table(
        "Port usage",
        ["Service", "In use", "Range"],
        [
            [u.service.label, str(u.in_use), f"{u.range_start}-{u.range_end}"]
            for u in summary.services
        ],
    )


def cleanup() -> None:
    """Reclaim stale instances and orphan port locks."""
    ctx = get_output_context()
    _, allocator = open_allocator()
    result = GarbageCollector(allocator).sweep()

    ctx.print_json({**result.model_dump(), "count": result.count})
    if result.count:
        ctx.print(f"[green]Cleaned up {result.count} stale instances/locks[/green]")
        for instance_id in result.instances:
            ctx.print(f"  instance {instance_id}")
        for port in result.locks:
            ctx.print(f"  lock on port {port}")
    else:
        ctx.print("No stale instances found")


def kill(
    target: str = typer.Argument(..., help="Instance ID or its SSH port"),
) -> None:
    """Terminate one instance's emulator and release its ports."""
    ctx = get_output_context()
    config, allocator = open_allocator()

    if target.isdigit():
        descriptor = allocator.registry.find_by_port(int(target))
    else:
        try:
            descriptor = allocator.registry.get(target)
        except ValueError as e:
            raise typer.BadParameter(str(e)) from None
    if descriptor is None:
        ctx.error(f"No instance found for {target}")
        raise typer.Exit(1)

    stop_instance(allocator, descriptor, config.supervisor.grace_period)
    ctx.success(
        f"Instance {descriptor.instance_id} has been terminated",
        {"instance_id": descriptor.instance_id},
    )


def kill_all(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Terminate every registered instance and clear all port locks."""
    ctx = get_output_context()
    config, allocator = open_allocator()

    if not yes and not typer.confirm("Kill ALL running QEMU instances?"):
        raise typer.Exit(1)

    stopped = []
    for descriptor in allocator.registry.list_all():
        stop_instance(allocator, descriptor, config.supervisor.grace_period)
        stopped.append(descriptor.instance_id)
    cleared = [
        port for port in allocator.locks.locked_ports() if allocator.locks.force_release(port)
    ]

    ctx.success(
        f"Terminated {len(stopped)} instances, cleared {len(cleared)} port locks",
        {"instances": stopped, "locks": cleared},
    )
