"""
Provisioning exceptions

One class per session phase so callers can tell exactly where a privileged
session stopped and print guidance for that step.
"""

from wsl_dockerd.core.exceptions import WslDockerdError
from wsl_dockerd.security.models import Phase


class ProvisionError(WslDockerdError):
    """
    A privileged session step failed and the remaining steps were skipped

    Attributes:
        phase: Phase whose step failed
        inconsistent: True when the daemon configuration on disk may not
            match the running daemon
        output: Captured session output, for logs
    """

    phase: Phase

    def __init__(
        self,
        message: str,
        recovery_hint: str = "",
        inconsistent: bool = False,
        output: str = "",
    ):
        self.inconsistent = inconsistent
        self.output = output
        super().__init__(message, component=self.phase.value, recovery_hint=recovery_hint)


class ToolingInstallError(ProvisionError):
    """openssl could not be installed in the guest"""

    phase = Phase.TOOLING_INSTALL

    def __init__(self, message: str, recovery_hint: str = "", **kwargs):
        super().__init__(
            message,
            recovery_hint=recovery_hint or "Install openssl in the guest manually and rerun setup",
            **kwargs,
        )


class CertGenerationError(ProvisionError):
    """Key or certificate generation failed; the previous bundle is untouched"""

    phase = Phase.CERT_GENERATION

    def __init__(self, message: str, recovery_hint: str = "", **kwargs):
        super().__init__(
            message,
            recovery_hint=recovery_hint or "Check guest disk space and openssl output, then rerun setup",
            **kwargs,
        )


class ConfigWriteError(ProvisionError):
    """The systemd override file could not be written"""

    phase = Phase.CONFIG_WRITE

    def __init__(self, message: str, recovery_hint: str = "", **kwargs):
        super().__init__(
            message,
            recovery_hint=recovery_hint or "Write the docker.service override by hand and restart docker",
            **kwargs,
        )


class ServiceReloadError(ProvisionError):
    """systemctl daemon-reload failed"""

    phase = Phase.SERVICE_RELOAD

    def __init__(self, message: str, recovery_hint: str = "", **kwargs):
        super().__init__(
            message,
            recovery_hint=recovery_hint or "Run 'sudo systemctl daemon-reload' in the guest and check its output",
            **kwargs,
        )


class ServiceRestartError(ProvisionError):
    """
    Restarting the daemon failed after its configuration was rewritten

    The daemon may be down, or still running the previous configuration.
    """

    phase = Phase.SERVICE_RESTART

    def __init__(self, message: str, recovery_hint: str = "", **kwargs):
        kwargs.setdefault("inconsistent", True)
        super().__init__(
            message,
            recovery_hint=recovery_hint
            or "Inspect 'journalctl -u docker' in the guest; the new configuration is already on disk",
            **kwargs,
        )


class CertStageError(ProvisionError):
    """Exported certificates could not be copied where the host can read them"""

    phase = Phase.CERT_STAGE

    def __init__(self, message: str, recovery_hint: str = "", **kwargs):
        super().__init__(
            message,
            recovery_hint=recovery_hint
            or "The daemon is configured; copy ca.pem and cert.pem from the guest certificate directory by hand",
            **kwargs,
        )


PHASE_ERRORS: dict[Phase, type[ProvisionError]] = {
    cls.phase: cls
    for cls in (
        ToolingInstallError,
        CertGenerationError,
        ConfigWriteError,
        ServiceReloadError,
        ServiceRestartError,
        CertStageError,
    )
}


def error_for_phase(phase: Phase, message: str, **kwargs) -> ProvisionError:
    """Build the ProvisionError subclass for a failed phase."""
    return PHASE_ERRORS[phase](message, **kwargs)
