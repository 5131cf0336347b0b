"""CLI command implementations for rpiemu.

This package contains the implementation of each CLI command,
separated from the CLI framework setup in cli.py.
"""

from .allocate import allocate, preview, release
from .init import init
from .instances import cleanup, kill, kill_all, list_cmd, usage
from .launch import launch, supervise

__all__ = [
    "allocate",
    "cleanup",
    "init",
    "kill",
    "kill_all",
    "launch",
    "list_cmd",
    "preview",
    "release",
    "supervise",
    "usage",
]
