"""
Guest command execution for wsl-dockerd.

Handles:
- Running bash scripts inside a WSL distribution from a Windows host
- Running bash scripts on a local Linux guest (optionally through sudo)
- Path conversion between Windows and WSL

Scripts are always fed to `bash -s` on stdin, so a whole privileged session
is one process and one privilege escalation.
"""

import logging
import os
import platform
import shutil
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path

logger = logging.getLogger(__name__)

# Windows-specific subprocess flag to hide console window
# On non-Windows platforms, use 0 (no flags)
CREATION_FLAGS = (
    subprocess.CREATE_NO_WINDOW if platform.system() == "Windows" else 0
)


def windows_to_wsl_path(windows_path: Path | str) -> str:
    """
    Convert a Windows path to a WSL path.

    Example: C:\\Users\\name\\folder -> /mnt/c/Users/name/folder
    """
    path_str = str(windows_path)

    # Handle already-unix paths
    if path_str.startswith("/"):
        return path_str

    # Convert drive letter (e.g., C: -> /mnt/c)
    if len(path_str) >= 2 and path_str[1] == ":":
        drive = path_str[0].lower()
        rest = path_str[2:].replace("\\", "/")
        return f"/mnt/{drive}{rest}"

    # Just convert backslashes
    return path_str.replace("\\", "/")


class GuestShell(ABC):
    """Something that can run bash scripts inside the guest Linux environment."""

    name: str = "guest"

    @abstractmethod
    def command(self, privileged: bool = False) -> list[str]:
        """Argument vector that starts `bash -s` in the guest."""

    @abstractmethod
    def to_guest_path(self, host_path: Path | str) -> str:
        """Translate a host path into the path the guest sees."""

    def environment(self) -> dict[str, str] | None:
        """Process environment for the launcher, None to inherit."""
        return None

    def run(
        self,
        script: str,
        privileged: bool = False,
        timeout: float | None = None,
    ) -> subprocess.CompletedProcess:
        """
        Run a bash script in the guest.

        Args:
            script: Script text, fed on stdin
            privileged: Run as root (one escalation for the whole script)
            timeout: Seconds before the process is killed

        Returns:
            CompletedProcess with text stdout/stderr. A launcher that cannot
            be found yields returncode 127 instead of raising.
        """
        cmd = self.command(privileged=privileged)
        logger.debug(f"[{self.name}] Running ({'root' if privileged else 'user'}): {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd,
                input=script,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout,
                env=self.environment(),
                creationflags=CREATION_FLAGS,
            )
        except FileNotFoundError as e:
            logger.info(f"[{self.name}] Launcher not found: {e}")
            return subprocess.CompletedProcess(cmd, 127, "", str(e))

        logger.debug(
            f"[{self.name}] returncode={result.returncode}, "
            f"stdout={result.stdout[-500:] if result.stdout else ''}, "
            f"stderr={result.stderr[-500:] if result.stderr else ''}"
        )
        return result


class WslShell(GuestShell):
    """Runs scripts in a WSL distribution via wsl.exe."""

    def __init__(self, distro: str | None = None, wsl_executable: str = "wsl"):
        self.distro = distro
        self.wsl_executable = wsl_executable
        self.name = f"wsl:{distro}" if distro else "wsl"

    def command(self, privileged: bool = False) -> list[str]:
        cmd = [self.wsl_executable]
        if self.distro:
            cmd += ["-d", self.distro]
        if privileged:
            cmd += ["-u", "root"]
        return cmd + ["--", "bash", "-s"]

    def to_guest_path(self, host_path: Path | str) -> str:
        return windows_to_wsl_path(host_path)

    def environment(self) -> dict[str, str] | None:
        # wsl.exe writes UTF-16 unless told otherwise
        return {**os.environ, "WSL_UTF8": "1"}


class SudoShell(GuestShell):
    """Runs scripts on the local Linux machine, escalating through sudo."""

    name = "local"

    def __init__(self, sudo_executable: str = "sudo"):
        self.sudo_executable = sudo_executable

    def command(self, privileged: bool = False) -> list[str]:
        if privileged and os.geteuid() != 0:
            return [self.sudo_executable, "bash", "-s"]
        return ["bash", "-s"]

    def to_guest_path(self, host_path: Path | str) -> str:
        return str(Path(host_path).resolve())


def get_guest_shell(distro: str | None = None) -> GuestShell:
    """
    Pick the guest shell for the current host.

    Windows hosts talk to a WSL distribution; Linux hosts (including a
    shell already inside WSL) configure the local daemon through sudo.
    """
    if platform.system() == "Windows":
        wsl_path = shutil.which("wsl")
        logger.info(f"Using WSL guest shell (wsl at {wsl_path}, distro={distro or 'default'})")
        return WslShell(distro=distro, wsl_executable=wsl_path or "wsl")

    logger.info("Using local guest shell via sudo")
    return SudoShell()
