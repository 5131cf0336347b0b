"""rpiemu CLI: port allocation for concurrent Raspberry Pi OS emulations."""

from pathlib import Path

import typer
from rich.console import Console

from rpiemu import __version__

from .commands import (
    allocate,
    cleanup,
    init,
    kill,
    kill_all,
    launch,
    list_cmd,
    preview,
    release,
    supervise,
    usage,
)
from .config import default_config_path, load_config, set_active_config
from .errors import ConfigError
from .logging import configure_logging
from .output import OutputContext, set_output_context


def _version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"rpiemu {__version__}")
        raise typer.Exit()


app = typer.Typer(
    name="rpiemu",
    help="Allocate forwarded ports for concurrent QEMU Raspberry Pi OS instances",
    no_args_is_help=True,
)


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    config_path: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="Config file (default: $RPIEMU_CONFIG or ~/.config/rpiemu/config.toml)",
    ),
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase verbosity (-v, -vv)",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        "-q",
        help="Suppress non-error output",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output in JSON format for automation",
    ),
    no_color: bool = typer.Option(
        False,
        "--no-color",
        help="Disable colored output",
    ),
) -> None:
    """rpiemu - port and instance management for QEMU emulations."""
    config_path = config_path or default_config_path()
    ctx = OutputContext(console=Console(no_color=no_color), json_mode=json_output)
    set_output_context(ctx)

    try:
        config = load_config(config_path)
    except ConfigError as e:
        ctx.error(str(e))
        raise typer.Exit(2) from None

    configure_logging(
        verbosity=verbose,
        quiet=quiet or json_output,
        no_color=no_color,
        log_file=Path(config.logging.file) if config.logging.file else None,
    )
    set_active_config(config, config_path)


app.command()(init)
app.command()(allocate)
app.command()(preview)
app.command()(release)
app.command("list")(list_cmd)
app.command()(usage)
app.command()(cleanup)
app.command()(kill)
app.command("kill-all")(kill_all)
app.command()(launch)
app.command()(supervise)
