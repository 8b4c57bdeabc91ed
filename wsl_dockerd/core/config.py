"""
Configuration management

Centralized settings using Pydantic BaseSettings for type-safe configuration
with environment variable support.

Every setting can be overridden with a WSL_DOCKERD_ prefixed environment
variable or a .env file in the working directory, e.g.:
- WSL_DOCKERD_DISTRO=Ubuntu-24.04
- WSL_DOCKERD_TLS_PORT=2376
- WSL_DOCKERD_HOST_CERT_DIR=C:\\Users\\me\\.docker\\wsl
"""

import logging
from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError
from .paths import get_default_cert_dir, get_default_state_dir

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    wsl-dockerd settings with environment variable support
    """

    # Guest
    distro: str | None = None  # None = default WSL distribution
    service_name: str = "docker"
    dockerd_path: str = "/usr/bin/dockerd"
    containerd_socket: str = "/run/containerd/containerd.sock"
    guest_cert_dir: str = "/etc/docker/certs"
    override_path: str = "/etc/systemd/system/docker.service.d/override.conf"

    # Endpoint
    tls_port: int = 2376
    insecure_port: int = 2375
    host_address: str = "localhost"

    # Host
    host_cert_dir: Path = get_default_cert_dir()
    state_dir: Path = get_default_state_dir()

    # Certificates
    ca_validity_days: int = 3650
    cert_validity_days: int = 3650
    key_bits: int = 4096

    # Timing (seconds)
    settle_seconds: float = 3.0
    session_timeout: int = 900
    probe_timeout: int = 30
    ping_timeout: float = 10.0

    model_config = SettingsConfigDict(
        env_prefix="WSL_DOCKERD_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("tls_port", "insecure_port")
    @classmethod
    def _valid_port(cls, value: int) -> int:
        if not 0 < value < 65536:
            raise ValueError(f"port out of range: {value}")
        return value

    @field_validator("guest_cert_dir", "override_path")
    @classmethod
    def _absolute_guest_path(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError(f"guest path must be absolute: {value}")
        return value.rstrip("/") or "/"

    @field_validator("host_cert_dir", "state_dir", mode="before")
    @classmethod
    def _non_empty_host_dir(cls, value):
        # An empty override would resolve to the working directory
        if isinstance(value, (str, Path)) and str(value).strip() in ("", "."):
            raise ValueError("host directory must not be empty")
        return value

    @model_validator(mode="after")
    def _distinct_ports(self) -> "Settings":
        if self.tls_port == self.insecure_port:
            raise ValueError("tls_port and insecure_port must differ")
        return self


# Singleton pattern for settings
_settings: Settings | None = None


def get_settings() -> Settings:
    """
    Get application settings (singleton)

    Returns:
        Settings instance

    Raises:
        ConfigurationError: If the environment holds invalid overrides
    """
    global _settings
    if _settings is None:
        try:
            _settings = Settings()
        except ValueError as e:
            raise ConfigurationError(f"Invalid settings: {e}") from e
        logger.debug(f"Loaded settings: {_settings!r}")
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next get_settings() reloads them."""
    global _settings
    _settings = None
