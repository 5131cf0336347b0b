"""Detect whether a host TCP port is taken by any process.

No single check is authoritative everywhere: the socket table may be
unreadable without privileges, a connect only succeeds once the listener
accepts, and a freshly started QEMU has its forwards in argv before the
sockets show up. A port counts as in use if any enabled check says so.
"""

import logging
import socket

import psutil

from ..config import ProbeConfig
from ..constants import HOSTFWD_MARKER

logger = logging.getLogger(__name__)


class PortProbe:
    """Host-wide port usage checks."""

    def __init__(self, config: ProbeConfig | None = None, host: str = "127.0.0.1"):
        self.config = config or ProbeConfig()
        self.host = host

    def is_port_in_use(self, port: int) -> bool:
        if self.config.check_socket_table and port in self.listening_ports():
            logger.debug(f"Port {port}: found in listening socket table")
            return True
        if self.config.check_connect and self.accepts_connection(port):
            logger.debug(f"Port {port}: accepted a connection on {self.host}")
            return True
        if self.config.check_processes and self.forwarded_by_emulator(port):
            logger.debug(f"Port {port}: claimed by an emulator command line")
            return True
        return False

    def listening_ports(self) -> set[int]:
        """Ports with a socket in LISTEN state (empty if the table is unreadable)."""
        try:
            connections = psutil.net_connections(kind="inet")
        except psutil.AccessDenied:
            logger.debug("Socket table not readable, skipping")
            return set()
        return {
            conn.laddr.port
            for conn in connections
            if conn.laddr and conn.status == psutil.CONN_LISTEN
        }

    def accepts_connection(self, port: int) -> bool:
        try:
            with socket.create_connection((self.host, port), timeout=self.config.connect_timeout):
                return True
        except OSError:
            return False

    def forwarded_by_emulator(self, port: int) -> bool:
        """True if a running process forwards the port via QEMU hostfwd."""
        marker = HOSTFWD_MARKER.format(port=port)
        for proc in psutil.process_iter(["cmdline"]):
            cmdline = proc.info.get("cmdline") or []
            if any(marker in arg for arg in cmdline):
                return True
        return False
