"""
Guest environment probes.

These answer the precondition questions asked before any privileged
session runs: is there a guest at all, is systemd managing it, and does
the daemon's service unit exist.
"""

import logging
import os
import platform
import shlex
import subprocess

from wsl_dockerd.core.exceptions import PreconditionError
from wsl_dockerd.guest.shell import CREATION_FLAGS, GuestShell, WslShell

logger = logging.getLogger(__name__)


def list_wsl_distributions(wsl_executable: str = "wsl", timeout: float = 30) -> list[str]:
    """
    List installed WSL distributions.

    Returns:
        Distribution names, empty when WSL is missing or not on Windows
    """
    if platform.system() != "Windows":
        return []

    try:
        result = subprocess.run(
            [wsl_executable, "--list", "--quiet"],
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
            env={**os.environ, "WSL_UTF8": "1"},
            creationflags=CREATION_FLAGS,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired, OSError) as e:
        logger.info(f"WSL distribution listing failed: {e}")
        return []

    if result.returncode != 0:
        logger.info(f"WSL distribution listing failed: {result.stderr[:100] if result.stderr else 'no error'}")
        return []

    # Older wsl.exe ignores WSL_UTF8 and pads with NULs
    names = [line.replace("\x00", "").strip() for line in result.stdout.splitlines()]
    return [name for name in names if name]


def guest_present(shell: GuestShell, timeout: float = 30) -> bool:
    """Check that the guest exists and can run a trivial command."""
    if isinstance(shell, WslShell):
        distros = list_wsl_distributions(shell.wsl_executable, timeout=timeout)
        if not distros:
            logger.info("No WSL distributions installed")
            return False
        if shell.distro and shell.distro not in distros:
            logger.info(f"WSL distribution {shell.distro!r} not found in {distros}")
            return False

    try:
        result = shell.run("true", timeout=timeout)
    except subprocess.TimeoutExpired:
        logger.info(f"[{shell.name}] Guest did not answer within {timeout}s")
        return False
    return result.returncode == 0


def systemd_active(shell: GuestShell, timeout: float = 30) -> bool:
    """Check that systemd is the guest's service manager."""
    try:
        result = shell.run("test -d /run/systemd/system", timeout=timeout)
    except subprocess.TimeoutExpired:
        return False
    return result.returncode == 0


def service_exists(shell: GuestShell, service: str, timeout: float = 30) -> bool:
    """Check that the service unit is known to systemd."""
    try:
        result = shell.run(f"systemctl cat {shlex.quote(service)}.service >/dev/null 2>&1", timeout=timeout)
    except subprocess.TimeoutExpired:
        return False
    return result.returncode == 0


def service_active(shell: GuestShell, service: str, timeout: float = 30) -> bool:
    """Check `systemctl is-active` for the service."""
    try:
        result = shell.run(f"systemctl is-active --quiet {shlex.quote(service)}", timeout=timeout)
    except subprocess.TimeoutExpired:
        logger.info(f"[{shell.name}] is-active check for {service} timed out")
        return False
    return result.returncode == 0


def require_guest(shell: GuestShell, service: str, timeout: float = 30) -> None:
    """
    Gate provisioning on the guest preconditions.

    Raises:
        PreconditionError: guest absent, systemd not running, or unit missing
    """
    if not guest_present(shell, timeout=timeout):
        raise PreconditionError(
            f"No usable guest environment ({shell.name})",
            recovery_hint="Install a WSL distribution (wsl --install) or pass --distro with an installed one",
        )
    logger.info(f"✓ Guest reachable: {shell.name}")

    if not systemd_active(shell, timeout=timeout):
        raise PreconditionError(
            "systemd is not running in the guest",
            recovery_hint="Add '[boot]\\nsystemd=true' to /etc/wsl.conf and run 'wsl --shutdown'",
        )
    logger.info("✓ systemd active in guest")

    if not service_exists(shell, service, timeout=timeout):
        raise PreconditionError(f"Service unit '{service}.service' not found in the guest")
    logger.info(f"✓ Service unit present: {service}.service")
