"""
Core infrastructure - settings, paths and the base exception hierarchy
"""

from wsl_dockerd.core.config import Settings, get_settings, reset_settings
from wsl_dockerd.core.exceptions import (
    ConfigurationError,
    HostSyncError,
    PreconditionError,
    WslDockerdError,
)

__all__ = [
    "ConfigurationError",
    "HostSyncError",
    "PreconditionError",
    "Settings",
    "WslDockerdError",
    "get_settings",
    "reset_settings",
]
