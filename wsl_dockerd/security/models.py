"""
Security data models

SecurityMode is chosen once per run and drives everything downstream.
EndpointConfig is derived from it and is the only value the host side ever
persists, so its validation is where the TLS/insecure consistency rule
lives.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

# Host environment facts owned by an endpoint
DOCKER_HOST = "DOCKER_HOST"
DOCKER_TLS_VERIFY = "DOCKER_TLS_VERIFY"
DOCKER_CERT_PATH = "DOCKER_CERT_PATH"

TLS_FACTS = (DOCKER_TLS_VERIFY, DOCKER_CERT_PATH)
ALL_FACTS = (DOCKER_HOST, *TLS_FACTS)


class SecurityMode(str, Enum):
    """How the daemon endpoint is exposed"""

    TLS = "tls"
    INSECURE = "insecure"

    @property
    def is_tls(self) -> bool:
        return self is SecurityMode.TLS

    @property
    def bind_address(self) -> str:
        """Address dockerd listens on inside the guest"""
        return "127.0.0.1" if self.is_tls else "0.0.0.0"

    @property
    def url_scheme(self) -> str:
        """Scheme for talking HTTP to the daemon API"""
        return "https" if self.is_tls else "http"


class Phase(str, Enum):
    """Phases of a privileged provisioning session, in execution order"""

    TOOLING_INSTALL = "tooling-install"
    CERT_GENERATION = "cert-generation"
    CONFIG_WRITE = "config-write"
    SERVICE_RELOAD = "service-reload"
    SERVICE_RESTART = "service-restart"
    CERT_STAGE = "cert-stage"


class EndpointConfig(BaseModel):
    """
    Connection facts for the daemon, as the host should record them

    Attributes:
        address: Docker host URL, e.g. tcp://localhost:2376
        tls: Whether DOCKER_TLS_VERIFY applies
        cert_path: Host directory holding ca.pem/cert.pem[/key.pem] (TLS only)
    """

    model_config = ConfigDict(frozen=True)

    address: str
    tls: bool
    cert_path: Path | None = None

    @field_validator("cert_path", mode="before")
    @classmethod
    def _no_empty_path(cls, value):
        # Path("") silently becomes "."
        if isinstance(value, (str, Path)) and str(value).strip() in ("", "."):
            raise ValueError("certificate path must not be empty")
        return value

    @model_validator(mode="after")
    def _consistent_tls_state(self) -> "EndpointConfig":
        if not self.address.startswith("tcp://"):
            raise ValueError(f"address must be a tcp:// URL, got {self.address!r}")
        if self.tls and self.cert_path is None:
            raise ValueError("TLS endpoint requires a certificate path")
        if not self.tls and self.cert_path is not None:
            raise ValueError("insecure endpoint must not carry a certificate path")
        return self

    @classmethod
    def for_mode(
        cls,
        mode: SecurityMode,
        host: str,
        port: int,
        cert_path: Path | None = None,
    ) -> "EndpointConfig":
        """Build the endpoint a security mode implies"""
        return cls(
            address=f"tcp://{host}:{port}",
            tls=mode.is_tls,
            cert_path=cert_path if mode.is_tls else None,
        )

    @property
    def mode(self) -> SecurityMode:
        return SecurityMode.TLS if self.tls else SecurityMode.INSECURE

    @property
    def host(self) -> str:
        return urlparse(self.address).hostname or ""

    @property
    def port(self) -> int | None:
        return urlparse(self.address).port

    def environment(self) -> dict[str, str]:
        """
        Host environment facts this endpoint owns

        Facts missing from the result must be absent on the host.
        """
        facts = {DOCKER_HOST: self.address}
        if self.tls:
            facts[DOCKER_TLS_VERIFY] = "1"
            facts[DOCKER_CERT_PATH] = str(self.cert_path)
        return facts


@dataclass(frozen=True)
class CertificateBundle:
    """
    Layout of the guest certificate directory

    The CA key and server key never leave the guest; exported_names() is
    all that may be staged for the host, and key.pem only with consent.
    """

    directory: str

    CA_CERT = "ca.pem"
    CA_KEY = "ca-key.pem"
    SERVER_CERT = "server-cert.pem"
    SERVER_KEY = "server-key.pem"
    CLIENT_CERT = "cert.pem"
    CLIENT_KEY = "key.pem"

    PRIVATE_KEYS = (CA_KEY, SERVER_KEY, CLIENT_KEY)
    CERTIFICATES = (CA_CERT, SERVER_CERT, CLIENT_CERT)
    NEVER_EXPORTED = (CA_KEY, SERVER_KEY)

    def path(self, name: str) -> str:
        return f"{self.directory}/{name}"

    def exported_names(self, include_client_key: bool) -> list[str]:
        names = [self.CA_CERT, self.CLIENT_CERT]
        if include_client_key:
            names.append(self.CLIENT_KEY)
        return names
