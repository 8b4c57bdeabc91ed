"""
Host credential sync

Moves the minimum trust material from the staging directory into the host
certificate directory, locks down the client key when it is copied, and
records the endpoint facts.
"""

import getpass
import logging
import os
import platform
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization

from wsl_dockerd.core.config import Settings, get_settings
from wsl_dockerd.core.exceptions import HostSyncError
from wsl_dockerd.guest.shell import CREATION_FLAGS
from wsl_dockerd.host.environment import HostEnvironment, apply_endpoint
from wsl_dockerd.security.models import CertificateBundle, EndpointConfig, SecurityMode
from wsl_dockerd.security.provisioner import endpoint_for_mode

logger = logging.getLogger(__name__)

HOST_FILES = (CertificateBundle.CA_CERT, CertificateBundle.CLIENT_CERT, CertificateBundle.CLIENT_KEY)


@dataclass
class SyncResult:
    """Files touched by a sync and the endpoint it recorded"""

    endpoint: EndpointConfig
    copied: list[Path] = field(default_factory=list)
    removed: list[Path] = field(default_factory=list)


def _load_certificate(path: Path) -> x509.Certificate:
    try:
        return x509.load_pem_x509_certificate(path.read_bytes())
    except FileNotFoundError as e:
        raise HostSyncError(f"Staged certificate missing: {path}") from e
    except ValueError as e:
        raise HostSyncError(f"Not a PEM certificate: {path}") from e


def verify_bundle(directory: Path, include_key: bool = False) -> None:
    """
    Check staged trust material before it is copied.

    - ca.pem is self-signed, cert.pem is issued by it
    - key.pem (when expected) belongs to cert.pem
    - the CA key and server key are not among the staged files

    Raises:
        HostSyncError: If any check fails
    """
    for name in CertificateBundle.NEVER_EXPORTED:
        if (directory / name).exists():
            raise HostSyncError(
                f"Refusing to sync: {name} must never leave the guest but was found in {directory}",
                recovery_hint=f"Delete {directory / name} and rerun setup",
            )

    ca = _load_certificate(directory / CertificateBundle.CA_CERT)
    client = _load_certificate(directory / CertificateBundle.CLIENT_CERT)

    try:
        ca.verify_directly_issued_by(ca)
    except (ValueError, TypeError, InvalidSignature) as e:
        raise HostSyncError(f"ca.pem is not a self-signed CA certificate: {e}") from e

    try:
        client.verify_directly_issued_by(ca)
    except (ValueError, TypeError, InvalidSignature) as e:
        raise HostSyncError(
            "cert.pem was not issued by the staged ca.pem",
            recovery_hint="Rerun setup so both files come from the same provisioning run",
        ) from e

    if include_key:
        key_path = directory / CertificateBundle.CLIENT_KEY
        try:
            key = serialization.load_pem_private_key(key_path.read_bytes(), password=None)
        except FileNotFoundError as e:
            raise HostSyncError(f"Staged client key missing: {key_path}") from e
        except (ValueError, TypeError) as e:
            raise HostSyncError(f"Not an unencrypted PEM private key: {key_path}") from e

        spki = serialization.PublicFormat.SubjectPublicKeyInfo
        der = serialization.Encoding.DER
        if key.public_key().public_bytes(der, spki) != client.public_key().public_bytes(der, spki):
            raise HostSyncError("key.pem does not match cert.pem")

    logger.info(f"✓ Staged bundle verified: {directory}")


def restrict_private_key(path: Path) -> None:
    """
    Limit a private key to the current host user.

    Windows: drop inherited ACL entries and grant read to the user only.
    POSIX: mode 0600.

    Raises:
        HostSyncError: If permissions cannot be applied
    """
    if platform.system() == "Windows":
        user = os.environ.get("USERNAME") or getpass.getuser()
        cmd = ["icacls", str(path), "/inheritance:r", "/grant:r", f"{user}:(R)"]
        logger.debug(f"Restricting key: {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=30,
                creationflags=CREATION_FLAGS,
            )
        except (FileNotFoundError, subprocess.TimeoutExpired, OSError) as e:
            raise HostSyncError(f"icacls failed for {path}: {e}") from e
        if result.returncode != 0:
            raise HostSyncError(
                f"icacls failed for {path}: {result.stderr.strip() or result.stdout.strip()}"
            )
    else:
        try:
            path.chmod(0o600)
        except OSError as e:
            raise HostSyncError(f"Cannot restrict permissions on {path}: {e}") from e

    logger.info(f"✓ Private key restricted to current user: {path}")


def _remove(path: Path, removed: list[Path]) -> None:
    if not path.exists():
        return
    path.unlink()
    removed.append(path)
    logger.info(f"Removed {path}")


def sync(
    bundle_location: Path | None,
    mode: SecurityMode,
    copy_private_key: bool,
    environment: HostEnvironment,
    settings: Settings | None = None,
) -> SyncResult:
    """
    Copy authorized credential material to the host and record the endpoint.

    Args:
        bundle_location: Staging directory from provisioning (TLS only)
        mode: Security mode that was provisioned
        copy_private_key: Copy key.pem as well; otherwise any old copy is removed
        environment: Host environment store to record facts in
        settings: Settings (defaults to get_settings())

    Returns:
        SyncResult with the recorded endpoint

    Raises:
        HostSyncError: Filesystem, permission or environment failure
    """
    settings = settings or get_settings()
    cert_dir = settings.host_cert_dir
    endpoint = endpoint_for_mode(mode, settings)
    result = SyncResult(endpoint=endpoint)

    try:
        if not mode.is_tls:
            # Nothing from an earlier TLS bundle may outlive the switch
            for name in HOST_FILES:
                _remove(cert_dir / name, result.removed)
        else:
            if bundle_location is None:
                raise HostSyncError("TLS sync needs the staged certificate directory")
            verify_bundle(bundle_location, include_key=copy_private_key)
            cert_dir.mkdir(parents=True, exist_ok=True)

            for name in (CertificateBundle.CA_CERT, CertificateBundle.CLIENT_CERT):
                target = cert_dir / name
                _remove(target, [])
                shutil.copyfile(bundle_location / name, target)
                target.chmod(0o644)
                result.copied.append(target)
                logger.info(f"Copied {name} -> {target}")

            key_target = cert_dir / CertificateBundle.CLIENT_KEY
            _remove(key_target, result.removed)
            if copy_private_key:
                shutil.copyfile(bundle_location / CertificateBundle.CLIENT_KEY, key_target)
                restrict_private_key(key_target)
                result.copied.append(key_target)
                logger.info(f"Copied key.pem -> {key_target}")
    except OSError as e:
        raise HostSyncError(f"Failed to update {cert_dir}: {e}") from e

    apply_endpoint(environment, endpoint)
    return result
