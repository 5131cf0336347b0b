"""Shared test fixtures for rpiemu tests."""

import os
from pathlib import Path

import pytest
from typer.testing import CliRunner

from rpiemu.config import RpiEmuConfig
from rpiemu.core import Allocator, FileStore

OTHER_OWNER_PID = 51001


class FakeLiveness:
    """Liveness with an explicit set of running pids.

    The test process itself starts out alive; everything else is dead
    until added.
    """

    def __init__(self, alive: set[int] | None = None):
        self.alive = {os.getpid()} if alive is None else set(alive)

    def is_alive(self, pid: int) -> bool:
        return pid in self.alive

    def start(self, pid: int) -> None:
        self.alive.add(pid)

    def kill(self, pid: int) -> None:
        self.alive.discard(pid)


class StaticProbe:
    """Port probe reporting a fixed set of busy ports."""

    def __init__(self, busy: set[int] | None = None):
        self.busy = set(busy or ())
        self.checked: list[int] = []

    def is_port_in_use(self, port: int) -> bool:
        self.checked.append(port)
        return port in self.busy


@pytest.fixture
def runner() -> CliRunner:
    """Create CLI test runner."""
    return CliRunner()


@pytest.fixture
def config(tmp_path: Path) -> RpiEmuConfig:
    """Default port layout with state in a temporary directory."""
    return RpiEmuConfig(state_dir=tmp_path / "state")


@pytest.fixture
def store(config: RpiEmuConfig) -> FileStore:
    return FileStore(config.state_dir)


@pytest.fixture
def liveness() -> FakeLiveness:
    return FakeLiveness({os.getpid(), OTHER_OWNER_PID})


@pytest.fixture
def probe() -> StaticProbe:
    return StaticProbe()


@pytest.fixture
def allocator(
    config: RpiEmuConfig, store: FileStore, probe: StaticProbe, liveness: FakeLiveness
) -> Allocator:
    """Allocator owned by the test process."""
    return Allocator(config, store, probe, liveness)


@pytest.fixture
def other_allocator(
    config: RpiEmuConfig, store: FileStore, probe: StaticProbe, liveness: FakeLiveness
) -> Allocator:
    """Allocator acting for a different live process on the same store."""
    return Allocator(config, store, probe, liveness, owner_pid=OTHER_OWNER_PID)


@pytest.fixture
def cli_config(tmp_path: Path) -> Path:
    """Config file for CLI tests: temporary state dir, uncommon port bases."""
    config_path = tmp_path / "config.toml"
    config_path.write_text(
        f"""state_dir = "{tmp_path / 'state'}"
max_instances = 20

[ports]
ssh_base = 42220
vnc_base = 43900
rdp_base = 43389
wayvnc_base = 43950

[probe]
connect_timeout = 0.2

[supervisor]
poll_interval = 0.05
grace_period = 2.0
"""
    )
    return config_path
