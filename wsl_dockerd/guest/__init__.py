"""
Guest environment access - shells that run scripts inside the Linux guest
and the precondition probes built on them
"""

from wsl_dockerd.guest.probe import (
    guest_present,
    list_wsl_distributions,
    require_guest,
    service_active,
    service_exists,
    systemd_active,
)
from wsl_dockerd.guest.shell import (
    GuestShell,
    SudoShell,
    WslShell,
    get_guest_shell,
    windows_to_wsl_path,
)

__all__ = [
    "GuestShell",
    "SudoShell",
    "WslShell",
    "get_guest_shell",
    "guest_present",
    "list_wsl_distributions",
    "require_guest",
    "service_active",
    "service_exists",
    "systemd_active",
    "windows_to_wsl_path",
]
