"""
TLS certificate provisioning and security-mode transitions
"""

from wsl_dockerd.security.exceptions import (
    CertGenerationError,
    CertStageError,
    ConfigWriteError,
    ProvisionError,
    ServiceReloadError,
    ServiceRestartError,
    ToolingInstallError,
)
from wsl_dockerd.security.models import CertificateBundle, EndpointConfig, Phase, SecurityMode
from wsl_dockerd.security.provisioner import ProvisionResult, build_steps, endpoint_for_mode, provision
from wsl_dockerd.security.selector import confirm, resolve_answer, select_security_mode
from wsl_dockerd.security.session import PrivilegedSession, Step

__all__ = [
    "CertGenerationError",
    "CertStageError",
    "CertificateBundle",
    "ConfigWriteError",
    "EndpointConfig",
    "Phase",
    "PrivilegedSession",
    "ProvisionError",
    "ProvisionResult",
    "SecurityMode",
    "ServiceReloadError",
    "ServiceRestartError",
    "Step",
    "ToolingInstallError",
    "build_steps",
    "confirm",
    "endpoint_for_mode",
    "provision",
    "resolve_answer",
    "select_security_mode",
]
