"""Constants for rpiemu."""

# Default forwarded-port bases per service
DEFAULT_SSH_BASE = 2222
DEFAULT_VNC_BASE = 5900
DEFAULT_RDP_BASE = 3389
DEFAULT_WAYVNC_BASE = 5901

# Candidates scanned per service during auto-allocation
MAX_INSTANCES = 50

# Age after which descriptors and orphan locks are reclaimed (seconds)
RETENTION_SECONDS = 3600  # 1 hour

DEFAULT_STATE_DIR = "/tmp/rpi-qemu"
PORTS_NAMESPACE = "ports"
INSTANCES_NAMESPACE = "instances"

# Port probe connect timeout (seconds)
PROBE_CONNECT_TIMEOUT = 1.0

# Supervisor timings (seconds)
POLL_INTERVAL = 1.0
GRACEFUL_SHUTDOWN_TIMEOUT = 10.0

# Sentinel stored until the emulator process has started
PENDING = "PENDING"

# Marker QEMU user-mode networking puts in argv for each forwarded port
HOSTFWD_MARKER = "hostfwd=tcp::{port}-"

MAX_WRITE_RETRIES = 3

# How long release and cleanup wait for a busy per-port mutex (seconds)
MUTEX_WAIT_SECONDS = 1.0
MUTEX_RETRY_INTERVAL = 0.01
