"""
Host-side path resolution for wsl-dockerd.

All writable locations live under the user's home directory so the tool
never needs elevated rights on the host. Both can be overridden through
settings (see core.config).
"""

from pathlib import Path


def get_default_state_dir() -> Path:
    """
    Get the default state directory (~/.wsl-dockerd).

    Holds the persisted environment file used on POSIX hosts.
    """
    return Path.home() / ".wsl-dockerd"


def get_default_cert_dir() -> Path:
    """
    Get the default host certificate directory (~/.docker/wsl-dockerd).

    This is the directory DOCKER_CERT_PATH points at in TLS mode.
    """
    return Path.home() / ".docker" / "wsl-dockerd"


def get_env_file(state_dir: Path) -> Path:
    """Get the env file that records DOCKER_* facts on POSIX hosts."""
    return state_dir / "docker.env"
