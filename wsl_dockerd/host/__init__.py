"""
Host side - credential sync, persisted Docker environment facts and the
daemon smoke test
"""

from wsl_dockerd.host.environment import (
    EnvFileEnvironment,
    HostEnvironment,
    MemoryEnvironment,
    WindowsUserEnvironment,
    apply_endpoint,
    get_host_environment,
    read_endpoint,
)
from wsl_dockerd.host.smoke import PingResult, ping_daemon
from wsl_dockerd.host.sync import SyncResult, restrict_private_key, sync, verify_bundle

__all__ = [
    "EnvFileEnvironment",
    "HostEnvironment",
    "MemoryEnvironment",
    "PingResult",
    "SyncResult",
    "WindowsUserEnvironment",
    "apply_endpoint",
    "get_host_environment",
    "ping_daemon",
    "read_endpoint",
    "restrict_private_key",
    "sync",
    "verify_bundle",
]
