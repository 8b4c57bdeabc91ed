"""
Base exception hierarchy

Provides a consistent exception structure across wsl-dockerd
with clear error messages and recovery hints.
"""


class WslDockerdError(Exception):
    """
    Base exception for all wsl-dockerd errors

    Attributes:
        message: Error message
        component: Component that raised the error
        recovery_hint: Optional hint for recovery
    """

    def __init__(self, message: str, component: str = "", recovery_hint: str = ""):
        self.message = message
        self.component = component
        self.recovery_hint = recovery_hint
        super().__init__(message)

    def __str__(self) -> str:
        msg = super().__str__()
        if self.component:
            msg = f"[{self.component}] {msg}"
        if self.recovery_hint:
            msg += f"\n💡 Recovery: {self.recovery_hint}"
        return msg


class ConfigurationError(WslDockerdError):
    """Configuration-related errors"""

    def __init__(self, message: str, recovery_hint: str = ""):
        super().__init__(
            message,
            component="Configuration",
            recovery_hint=recovery_hint or "Check your .env file and WSL_DOCKERD_* variables",
        )


class PreconditionError(WslDockerdError):
    """Guest environment or daemon service is missing (fatal, never retried)"""

    def __init__(self, message: str, recovery_hint: str = ""):
        super().__init__(
            message,
            component="Guest",
            recovery_hint=recovery_hint
            or "Install Docker Engine in the guest and enable systemd, then rerun setup",
        )


class HostSyncError(WslDockerdError):
    """
    Copying certificates or recording environment facts on the host failed

    The guest daemon is already configured when this is raised, so nothing
    on the guest side is rolled back.
    """

    def __init__(self, message: str, recovery_hint: str = ""):
        super().__init__(
            message,
            component="Host",
            recovery_hint=recovery_hint
            or "Fix the host permission problem and rerun setup; the guest daemon is already configured",
        )
