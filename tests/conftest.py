"""
Shared fixtures: settings pointing at tmp_path, a scripted guest shell,
and real certificate bundles built with cryptography.
"""

import subprocess
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from wsl_dockerd.core.config import Settings
from wsl_dockerd.guest.shell import GuestShell


class FakeShell(GuestShell):
    """
    Guest shell that records scripts instead of running them

    privileged_returncode is returned for privileged runs; probe_returncodes
    maps a substring of an unprivileged script to its return code (default 0).
    """

    name = "fake"

    def __init__(self, privileged_returncode=0, probe_returncodes=None, stderr=""):
        self.privileged_returncode = privileged_returncode
        self.probe_returncodes = probe_returncodes or {}
        self.stderr = stderr
        self.calls: list[tuple[str, bool]] = []

    def command(self, privileged=False):
        return ["bash", "-s"]

    def to_guest_path(self, host_path):
        return "/guest" + Path(host_path).as_posix()

    def run(self, script, privileged=False, timeout=None):
        self.calls.append((script, privileged))
        if privileged:
            code = self.privileged_returncode
        else:
            code = next(
                (rc for needle, rc in self.probe_returncodes.items() if needle in script),
                0,
            )
        return subprocess.CompletedProcess(self.command(privileged), code, "", self.stderr if code else "")

    @property
    def privileged_scripts(self):
        return [script for script, privileged in self.calls if privileged]


@pytest.fixture
def fake_shell():
    return FakeShell()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        host_cert_dir=tmp_path / "host-certs",
        state_dir=tmp_path / "state",
        settle_seconds=0,
    )


def _name(common_name: str) -> x509.Name:
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])


def _issue(subject_cn, subject_key, issuer_cn, issuer_key, is_ca):
    now = datetime.now(timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(_name(subject_cn))
        .issuer_name(_name(issuer_cn))
        .public_key(subject_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=1))
        .not_valid_after(now + timedelta(days=30))
        .add_extension(x509.BasicConstraints(ca=is_ca, path_length=None), critical=True)
        .sign(issuer_key, hashes.SHA256())
    )


def _pem_key(key) -> bytes:
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )


@dataclass
class Bundle:
    """A staged bundle as provisioning would leave it"""

    directory: Path
    ca_pem: bytes
    cert_pem: bytes
    key_pem: bytes
    ca_key_pem: bytes


def write_bundle(directory: Path, include_key: bool = True) -> Bundle:
    """Generate a CA and a client certificate signed by it into directory."""
    directory.mkdir(parents=True, exist_ok=True)
    ca_key = ec.generate_private_key(ec.SECP256R1())
    ca = _issue("wsl-dockerd internal CA", ca_key, "wsl-dockerd internal CA", ca_key, is_ca=True)
    client_key = ec.generate_private_key(ec.SECP256R1())
    client = _issue("client", client_key, "wsl-dockerd internal CA", ca_key, is_ca=False)

    bundle = Bundle(
        directory=directory,
        ca_pem=ca.public_bytes(serialization.Encoding.PEM),
        cert_pem=client.public_bytes(serialization.Encoding.PEM),
        key_pem=_pem_key(client_key),
        ca_key_pem=_pem_key(ca_key),
    )
    (directory / "ca.pem").write_bytes(bundle.ca_pem)
    (directory / "cert.pem").write_bytes(bundle.cert_pem)
    if include_key:
        (directory / "key.pem").write_bytes(bundle.key_pem)
    return bundle


@pytest.fixture
def staged_bundle(tmp_path):
    return write_bundle(tmp_path / "staging")


@pytest.fixture
def bundle_factory():
    return write_bundle


@pytest.fixture
def shell_factory():
    return FakeShell
