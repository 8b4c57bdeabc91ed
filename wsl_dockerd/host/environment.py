"""
Host environment facts

Persists DOCKER_HOST, DOCKER_TLS_VERIFY and DOCKER_CERT_PATH for the host
user. Everything that touches real OS state sits behind HostEnvironment, so
the TLS/insecure consistency rule in apply_endpoint() can be exercised
against an in-memory store.
"""

import logging
import os
import platform
import re
import shlex
from abc import ABC, abstractmethod
from pathlib import Path

from wsl_dockerd.core.config import Settings
from wsl_dockerd.core.exceptions import HostSyncError
from wsl_dockerd.core.paths import get_env_file
from wsl_dockerd.security.models import (
    ALL_FACTS,
    DOCKER_CERT_PATH,
    DOCKER_HOST,
    DOCKER_TLS_VERIFY,
    EndpointConfig,
)

logger = logging.getLogger(__name__)

# DOCKER_TLS_VERIFY must never be recorded without DOCKER_CERT_PATH
SET_ORDER = (DOCKER_HOST, DOCKER_CERT_PATH, DOCKER_TLS_VERIFY)


class HostEnvironment(ABC):
    """Persistent per-user environment variable store"""

    name: str = "environment"

    @abstractmethod
    def get(self, name: str) -> str | None:
        """Return the persisted value, or None when unset."""

    @abstractmethod
    def set(self, name: str, value: str) -> None:
        """Persist a value."""

    @abstractmethod
    def unset(self, name: str) -> None:
        """Remove a value; unsetting a missing name is not an error."""

    def snapshot(self) -> dict[str, str]:
        """Current values of every DOCKER_* fact this tool manages."""
        values = {}
        for fact in ALL_FACTS:
            value = self.get(fact)
            if value is not None:
                values[fact] = value
        return values


class MemoryEnvironment(HostEnvironment):
    """Dict-backed store for dry runs and tests"""

    name = "memory"

    def __init__(self, initial: dict[str, str] | None = None):
        self.values: dict[str, str] = dict(initial or {})

    def get(self, name: str) -> str | None:
        return self.values.get(name)

    def set(self, name: str, value: str) -> None:
        self.values[name] = value

    def unset(self, name: str) -> None:
        self.values.pop(name, None)


_EXPORT_LINE = re.compile(r"^export (?P<name>[A-Za-z_][A-Za-z0-9_]*)=(?P<value>.*)$")


class EnvFileEnvironment(HostEnvironment):
    """
    Env file for POSIX hosts

    Written as `export NAME=value` lines so it can be sourced from a shell
    profile. Optionally mirrors changes into os.environ for the current
    process.
    """

    name = "env-file"

    def __init__(self, path: Path, mirror_process: bool = False):
        self.path = path
        self.mirror_process = mirror_process

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        values = {}
        for line in self.path.read_text(encoding="utf-8").splitlines():
            match = _EXPORT_LINE.match(line.strip())
            if match:
                parsed = shlex.split(match.group("value"))
                values[match.group("name")] = parsed[0] if parsed else ""
        return values

    def _save(self, values: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        lines = ["# Managed by wsl-dockerd; source this file from your shell profile"]
        lines += [f"export {name}={shlex.quote(value)}" for name, value in sorted(values.items())]
        self.path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        logger.debug(f"Environment file saved: {self.path}")

    def get(self, name: str) -> str | None:
        return self._load().get(name)

    def set(self, name: str, value: str) -> None:
        values = self._load()
        values[name] = value
        self._save(values)
        if self.mirror_process:
            os.environ[name] = value

    def unset(self, name: str) -> None:
        values = self._load()
        if values.pop(name, None) is not None:
            self._save(values)
        if self.mirror_process:
            os.environ.pop(name, None)


class WindowsUserEnvironment(HostEnvironment):
    """
    User-scope variables in HKCU\\Environment

    Changes are broadcast with WM_SETTINGCHANGE so new shells pick them up,
    and mirrored into os.environ for the current process.
    """

    name = "windows-user"
    REGISTRY_PATH = "Environment"

    def get(self, name: str) -> str | None:
        import winreg

        try:
            with winreg.OpenKey(winreg.HKEY_CURRENT_USER, self.REGISTRY_PATH, 0, winreg.KEY_READ) as key:
                value, _ = winreg.QueryValueEx(key, name)
                return value
        except FileNotFoundError:
            return None

    def set(self, name: str, value: str) -> None:
        import winreg

        with winreg.OpenKey(winreg.HKEY_CURRENT_USER, self.REGISTRY_PATH, 0, winreg.KEY_SET_VALUE) as key:
            winreg.SetValueEx(key, name, 0, winreg.REG_SZ, value)
        os.environ[name] = value
        self._broadcast()

    def unset(self, name: str) -> None:
        import winreg

        try:
            with winreg.OpenKey(winreg.HKEY_CURRENT_USER, self.REGISTRY_PATH, 0, winreg.KEY_SET_VALUE) as key:
                winreg.DeleteValue(key, name)
        except FileNotFoundError:
            pass
        os.environ.pop(name, None)
        self._broadcast()

    @staticmethod
    def _broadcast() -> None:
        import ctypes
        from ctypes import wintypes

        HWND_BROADCAST = 0xFFFF
        WM_SETTINGCHANGE = 0x001A
        SMTO_ABORTIFHUNG = 0x0002
        ctypes.windll.user32.SendMessageTimeoutW(
            HWND_BROADCAST,
            WM_SETTINGCHANGE,
            0,
            "Environment",
            SMTO_ABORTIFHUNG,
            5000,
            ctypes.byref(wintypes.DWORD()),
        )


def get_host_environment(settings: Settings, mirror_process: bool = True) -> HostEnvironment:
    """Pick the persistent environment store for this host."""
    if platform.system() == "Windows":
        return WindowsUserEnvironment()
    return EnvFileEnvironment(get_env_file(settings.state_dir), mirror_process=mirror_process)


def apply_endpoint(env: HostEnvironment, endpoint: EndpointConfig) -> dict[str, str]:
    """
    Record an endpoint's facts on the host.

    Facts the endpoint does not own are removed before anything is set, so
    TLS and insecure facts never coexist. DOCKER_TLS_VERIFY is written last;
    if a write fails, the facts written so far are removed again.

    Returns:
        The facts now recorded

    Raises:
        HostSyncError: If the store cannot be updated
    """
    facts = endpoint.environment()
    stale = [name for name in ALL_FACTS if name not in facts]
    written: list[str] = []
    try:
        for name in stale:
            if env.get(name) is not None:
                logger.info(f"Clearing stale {name} from {env.name}")
            env.unset(name)
        for name in SET_ORDER:
            if name not in facts:
                continue
            env.set(name, facts[name])
            written.append(name)
            logger.info(f"Set {name}={facts[name]} ({env.name})")
    except OSError as e:
        _rollback(env, written)
        raise HostSyncError(f"Failed to record Docker environment in {env.name}: {e}") from e
    return facts


def _rollback(env: HostEnvironment, written: list[str]) -> None:
    for name in reversed(written):
        try:
            env.unset(name)
        except OSError as e:
            logger.error(f"Could not remove {name} from {env.name} after a failed update: {e}")


def read_endpoint(env: HostEnvironment) -> EndpointConfig | None:
    """
    Rebuild the recorded endpoint from persisted facts.

    Returns:
        EndpointConfig, or None when nothing is recorded

    Raises:
        HostSyncError: If the persisted facts contradict each other
    """
    address = env.get(DOCKER_HOST)
    verify = env.get(DOCKER_TLS_VERIFY)
    cert_path = env.get(DOCKER_CERT_PATH)

    if address is None:
        if verify is not None or cert_path is not None:
            raise HostSyncError(
                "TLS settings are recorded without DOCKER_HOST",
                recovery_hint="Rerun 'wsl-dockerd setup' to rewrite the Docker environment",
            )
        return None

    # The docker CLI enables verification for any non-empty value, "0" included
    tls = bool(verify)
    if tls != (cert_path is not None):
        raise HostSyncError(
            f"Inconsistent Docker environment: DOCKER_TLS_VERIFY={verify!r}, DOCKER_CERT_PATH={cert_path!r}",
            recovery_hint="Rerun 'wsl-dockerd setup' to rewrite the Docker environment",
        )
    try:
        return EndpointConfig(
            address=address,
            tls=tls,
            cert_path=Path(cert_path) if cert_path is not None else None,
        )
    except ValueError as e:
        raise HostSyncError(f"Recorded Docker environment is invalid: {e}") from e
