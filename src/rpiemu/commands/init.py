"""Init command: write a configuration template."""

from ..config import get_active_config_path, write_config_template
from ..output import get_output_context


def init() -> None:
    """Write a config.toml template with the default ports and limits."""
    ctx = get_output_context()
    config_path = get_active_config_path()

    if config_path.exists():
        ctx.print(f"[yellow]Config already exists:[/yellow] {config_path}")
        return

    write_config_template(config_path)
    ctx.success(f"Created config template: {config_path}", {"path": str(config_path)})
