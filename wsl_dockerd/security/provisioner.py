"""
Certificate & endpoint provisioner

Brings the guest dockerd to a running state bound to the address a
SecurityMode implies:

- INSECURE: tcp://0.0.0.0:<insecure_port>, no TLS flags
- TLS: tcp://127.0.0.1:<tls_port> with --tlsverify, using a CA, server and
  client certificate generated fresh on every run

All guest work for one transition runs as a single PrivilegedSession.
Certificates are generated into a sibling directory and swapped in as the
last command of the cert-generation step, so a failure there leaves the
previous bundle (and the running daemon) untouched.
"""

import logging
import shlex
import time
from dataclasses import dataclass, field
from ipaddress import ip_address
from pathlib import Path
from typing import Callable

from wsl_dockerd.core.config import Settings, get_settings
from wsl_dockerd.guest.probe import service_active
from wsl_dockerd.guest.shell import GuestShell
from wsl_dockerd.security.models import CertificateBundle, EndpointConfig, Phase, SecurityMode
from wsl_dockerd.security.session import PrivilegedSession, Step

logger = logging.getLogger(__name__)

CA_COMMON_NAME = "wsl-dockerd internal CA"
SERVER_COMMON_NAME = "localhost"
CLIENT_COMMON_NAME = "client"


@dataclass
class ProvisionResult:
    """
    Outcome of a completed provisioning session

    Attributes:
        endpoint: Connection facts the host should record
        staged: File names copied to the staging directory
        service_active: Result of the post-restart is-active poll
    """

    endpoint: EndpointConfig
    staged: list[str] = field(default_factory=list)
    service_active: bool = False


def endpoint_for_mode(mode: SecurityMode, settings: Settings) -> EndpointConfig:
    """Endpoint the host records for a mode under the given settings."""
    port = settings.tls_port if mode.is_tls else settings.insecure_port
    return EndpointConfig.for_mode(
        mode,
        host=settings.host_address,
        port=port,
        cert_path=settings.host_cert_dir,
    )


def _printf_file(path: str, lines: list[str]) -> str:
    quoted = " ".join(shlex.quote(line) for line in lines)
    return f"printf '%s\\n' {quoted} > {shlex.quote(path)}"


def subject_alt_names(host_address: str) -> str:
    """SAN list for the server certificate: loopback, localhost, and the configured host"""
    names = ["DNS:localhost", "IP:127.0.0.1"]
    extra = f"DNS:{host_address}"
    try:
        extra = f"IP:{ip_address(host_address)}"
    except ValueError:
        pass
    if extra not in names and host_address:
        names.append(extra)
    return ",".join(names)


def exec_start(mode: SecurityMode, settings: Settings) -> str:
    """The single binding ExecStart line for the daemon override."""
    bundle = CertificateBundle(settings.guest_cert_dir)
    port = settings.tls_port if mode.is_tls else settings.insecure_port
    args = [
        settings.dockerd_path,
        "-H", "fd://",
        "-H", f"tcp://{mode.bind_address}:{port}",
    ]
    if mode.is_tls:
        args += [
            "--tlsverify",
            f"--tlscacert={bundle.path(bundle.CA_CERT)}",
            f"--tlscert={bundle.path(bundle.SERVER_CERT)}",
            f"--tlskey={bundle.path(bundle.SERVER_KEY)}",
        ]
    args.append(f"--containerd={settings.containerd_socket}")
    return "ExecStart=" + " ".join(args)


def override_contents(mode: SecurityMode, settings: Settings) -> list[str]:
    """Lines of the systemd drop-in; the empty ExecStart= clears the packaged one."""
    return ["[Service]", "ExecStart=", exec_start(mode, settings)]


def tooling_step() -> Step:
    install = (
        "command -v openssl >/dev/null 2>&1 || { "
        "if command -v apt-get >/dev/null 2>&1; then "
        "DEBIAN_FRONTEND=noninteractive apt-get update -qq && "
        "DEBIAN_FRONTEND=noninteractive apt-get install -y -qq openssl; "
        "elif command -v dnf >/dev/null 2>&1; then dnf install -y -q openssl; "
        "elif command -v zypper >/dev/null 2>&1; then zypper --non-interactive install openssl; "
        "else echo 'no supported package manager found' >&2; false; fi; }"
    )
    return Step(Phase.TOOLING_INSTALL, "Ensure openssl is installed", (install, "command -v openssl >/dev/null"))


def cert_generation_step(settings: Settings) -> Step:
    final_dir = settings.guest_cert_dir
    work_dir = f"{final_dir}.new"
    b = CertificateBundle(work_dir)
    q = shlex.quote
    bits = settings.key_bits
    ca_days = settings.ca_validity_days
    days = settings.cert_validity_days
    server_ext = f"{work_dir}/server-ext.cnf"
    client_ext = f"{work_dir}/client-ext.cnf"

    def sign(csr: str, out: str, ext: str) -> str:
        return (
            f"openssl x509 -req -days {days} -sha256 -in {q(csr)} "
            f"-CA {q(b.path(b.CA_CERT))} -CAkey {q(b.path(b.CA_KEY))} -CAcreateserial "
            f"-out {q(out)} -extfile {q(ext)}"
        )

    commands = (
        f"rm -rf {q(work_dir)}",
        f"mkdir -p -m 0755 {q(work_dir)}",
        # CA
        f"openssl genrsa -out {q(b.path(b.CA_KEY))} {bits}",
        f"openssl req -new -x509 -days {ca_days} -sha256 -key {q(b.path(b.CA_KEY))} "
        f"-subj {q('/CN=' + CA_COMMON_NAME)} -out {q(b.path(b.CA_CERT))}",
        # Server
        f"openssl genrsa -out {q(b.path(b.SERVER_KEY))} {bits}",
        f"openssl req -new -sha256 -key {q(b.path(b.SERVER_KEY))} "
        f"-subj {q('/CN=' + SERVER_COMMON_NAME)} -out {q(work_dir + '/server.csr')}",
        _printf_file(server_ext, [
            f"subjectAltName = {subject_alt_names(settings.host_address)}",
            "extendedKeyUsage = serverAuth",
        ]),
        sign(f"{work_dir}/server.csr", b.path(b.SERVER_CERT), server_ext),
        # Client
        f"openssl genrsa -out {q(b.path(b.CLIENT_KEY))} {bits}",
        f"openssl req -new -sha256 -key {q(b.path(b.CLIENT_KEY))} "
        f"-subj {q('/CN=' + CLIENT_COMMON_NAME)} -out {q(work_dir + '/client.csr')}",
        _printf_file(client_ext, ["extendedKeyUsage = clientAuth"]),
        sign(f"{work_dir}/client.csr", b.path(b.CLIENT_CERT), client_ext),
        # Both leaves must chain to this CA
        f"openssl verify -CAfile {q(b.path(b.CA_CERT))} "
        f"{q(b.path(b.SERVER_CERT))} {q(b.path(b.CLIENT_CERT))} >/dev/null",
        f"rm -f {q(work_dir)}/server.csr {q(work_dir)}/client.csr "
        f"{q(server_ext)} {q(client_ext)} {q(work_dir)}/ca.srl",
        "chmod 0400 " + " ".join(q(b.path(name)) for name in b.PRIVATE_KEYS),
        "chmod 0444 " + " ".join(q(b.path(name)) for name in b.CERTIFICATES),
        # Replace the previous bundle wholesale
        f"rm -rf {q(final_dir)}",
        f"mv {q(work_dir)} {q(final_dir)}",
    )
    return Step(Phase.CERT_GENERATION, "Generate CA, server and client certificates", commands)


def config_write_step(mode: SecurityMode, settings: Settings) -> Step:
    override = settings.override_path
    override_dir = override.rsplit("/", 1)[0] or "/"
    return Step(
        Phase.CONFIG_WRITE,
        f"Write daemon override binding {mode.bind_address}",
        (
            f"mkdir -p {shlex.quote(override_dir)}",
            _printf_file(override, override_contents(mode, settings)),
        ),
    )


def service_reload_step() -> Step:
    return Step(Phase.SERVICE_RELOAD, "Reload systemd units", ("systemctl daemon-reload",))


def service_restart_step(settings: Settings) -> Step:
    return Step(
        Phase.SERVICE_RESTART,
        f"Restart {settings.service_name}",
        (f"systemctl restart {shlex.quote(settings.service_name)}",),
    )


def cert_stage_step(settings: Settings, staging_dir: str, export_client_key: bool) -> Step:
    bundle = CertificateBundle(settings.guest_cert_dir)
    q = shlex.quote
    stage = q(staging_dir)
    names = bundle.exported_names(include_client_key=export_client_key)
    commands = [
        f"mkdir -p {stage}",
        f"rm -f {stage}/{bundle.CLIENT_KEY}",
        "cp -f " + " ".join(q(bundle.path(name)) for name in names) + f" {stage}/",
        f"chmod 0644 {stage}/{bundle.CA_CERT} {stage}/{bundle.CLIENT_CERT}",
    ]
    if export_client_key:
        commands.append(f"chmod 0600 {stage}/{bundle.CLIENT_KEY}")
    # Hand the copies to whoever owns the staging directory; drvfs mounts ignore ownership
    commands.append(
        f"{{ chown --reference={stage} "
        + " ".join(f"{stage}/{name}" for name in names)
        + " 2>/dev/null || true; }"
    )
    return Step(Phase.CERT_STAGE, "Stage certificates for the host", tuple(commands))


def build_steps(
    mode: SecurityMode,
    settings: Settings,
    staging_dir: str | None = None,
    export_client_key: bool = False,
) -> list[Step]:
    """
    Ordered session steps for a mode transition.

    Args:
        mode: Target security mode
        settings: Paths, ports and certificate parameters
        staging_dir: Guest path to copy exported certificates into (TLS only)
        export_client_key: Also stage key.pem
    """
    if not mode.is_tls:
        return [
            config_write_step(mode, settings),
            service_reload_step(),
            service_restart_step(settings),
        ]

    steps = [
        tooling_step(),
        cert_generation_step(settings),
        config_write_step(mode, settings),
        service_reload_step(),
        service_restart_step(settings),
    ]
    if staging_dir is not None:
        steps.append(cert_stage_step(settings, staging_dir, export_client_key))
    return steps


def provision(
    mode: SecurityMode,
    shell: GuestShell,
    settings: Settings | None = None,
    staging_dir: Path | None = None,
    export_client_key: bool = False,
    sleep: Callable[[float], None] = time.sleep,
) -> ProvisionResult:
    """
    Provision the guest daemon for a security mode.

    Preconditions (guest present, systemd running, service unit exists) are
    the caller's job; see guest.probe.require_guest.

    Args:
        mode: Target security mode
        shell: Guest shell to run the privileged session through
        settings: Settings (defaults to get_settings())
        staging_dir: Host directory to stage exported certificates into
        export_client_key: Stage key.pem as well (TLS only)
        sleep: Settle-delay function, replaceable in tests

    Returns:
        ProvisionResult with the endpoint and the post-restart service state

    Raises:
        ProvisionError: Subclass naming the failed phase
        PreconditionError: The privileged session could not start
    """
    settings = settings or get_settings()
    if not mode.is_tls:
        export_client_key = False

    guest_staging = shell.to_guest_path(staging_dir) if staging_dir is not None else None
    steps = build_steps(mode, settings, guest_staging, export_client_key)
    session = PrivilegedSession(shell, steps, timeout=settings.session_timeout)
    session.run()

    logger.info(f"Waiting {settings.settle_seconds}s for {settings.service_name} to settle")
    sleep(settings.settle_seconds)
    active = service_active(shell, settings.service_name, timeout=settings.probe_timeout)
    if active:
        logger.info(f"✓ {settings.service_name} is active")
    else:
        logger.warning(f"{settings.service_name} is not active after restart")

    endpoint = endpoint_for_mode(mode, settings)
    staged = []
    if mode.is_tls and staging_dir is not None:
        staged = CertificateBundle(settings.guest_cert_dir).exported_names(export_client_key)

    return ProvisionResult(endpoint=endpoint, staged=staged, service_active=active)
