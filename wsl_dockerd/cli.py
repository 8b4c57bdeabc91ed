"""
Command-line interface for wsl-dockerd
"""

import logging
import shutil
import sys
import tempfile
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from wsl_dockerd import __version__

console = Console()
logger = logging.getLogger(__name__)


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
def main(verbose: bool) -> None:
    """wsl-dockerd - expose a guest Docker daemon to this host"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _load_settings(distro: str | None):
    from wsl_dockerd.core.config import get_settings
    from wsl_dockerd.core.exceptions import ConfigurationError

    try:
        settings = get_settings()
    except ConfigurationError as e:
        console.print(f"\n[bold red]❌ {e}[/bold red]\n")
        sys.exit(2)
    if distro:
        settings = settings.model_copy(update={"distro": distro})
    return settings


@main.command()
@click.option("--tls/--insecure", "use_tls", default=None, help="Security mode (prompted when omitted)")
@click.option(
    "--copy-key/--no-copy-key",
    default=None,
    help="Copy the client private key to this host (TLS only, prompted when omitted)",
)
@click.option("--distro", default=None, help="WSL distribution (default: WSL default)")
@click.option("--check/--no-check", default=True, help="Ping the daemon when done")
@click.option("--yes", "-y", "assume_defaults", is_flag=True, help="Take the default answer instead of prompting")
def setup(
    use_tls: bool | None,
    copy_key: bool | None,
    distro: str | None,
    check: bool,
    assume_defaults: bool,
) -> None:
    """Provision the guest daemon endpoint and configure this host"""
    from wsl_dockerd.core.exceptions import HostSyncError, PreconditionError
    from wsl_dockerd.guest.probe import require_guest
    from wsl_dockerd.guest.shell import get_guest_shell
    from wsl_dockerd.host.environment import get_host_environment
    from wsl_dockerd.host.smoke import ping_daemon
    from wsl_dockerd.host.sync import sync
    from wsl_dockerd.security.exceptions import ProvisionError
    from wsl_dockerd.security.models import SecurityMode
    from wsl_dockerd.security.provisioner import provision
    from wsl_dockerd.security.selector import COPY_KEY_QUESTION, confirm, select_security_mode

    settings = _load_settings(distro)
    shell = get_guest_shell(settings.distro)

    console.print(
        Panel.fit(
            "[bold cyan]wsl-dockerd setup[/bold cyan]\n"
            f"Guest: {shell.name}   Service: {settings.service_name}",
            border_style="cyan",
        )
    )

    try:
        require_guest(shell, settings.service_name, timeout=settings.probe_timeout)
    except PreconditionError as e:
        console.print(f"\n[bold red]❌ {e}[/bold red]\n")
        sys.exit(2)

    if use_tls is not None:
        mode = SecurityMode.TLS if use_tls else SecurityMode.INSECURE
    elif assume_defaults:
        mode = SecurityMode.TLS
    else:
        mode = select_security_mode()

    copy_private_key = False
    if mode.is_tls:
        if copy_key is not None:
            copy_private_key = copy_key
        elif not assume_defaults:
            copy_private_key = confirm(COPY_KEY_QUESTION, default=False)
    elif copy_key:
        console.print("[yellow]⚠️  --copy-key ignored: no certificates in insecure mode[/yellow]")

    if not mode.is_tls:
        console.print(
            "[yellow]⚠️  The daemon will accept unauthenticated connections on "
            f"0.0.0.0:{settings.insecure_port}[/yellow]"
        )

    staging_dir = Path(tempfile.mkdtemp(prefix="wsl-dockerd-")) if mode.is_tls else None
    try:
        console.print(f"\n[bold]Provisioning {mode.value} endpoint...[/bold]")
        try:
            result = provision(
                mode,
                shell,
                settings=settings,
                staging_dir=staging_dir,
                export_client_key=copy_private_key,
            )
        except ProvisionError as e:
            console.print(f"\n[bold red]❌ Provisioning failed in phase '{e.phase.value}'[/bold red]")
            console.print(f"   {e.message}")
            if e.inconsistent:
                console.print(
                    "[bold yellow]⚠️  Daemon state is inconsistent: its configuration changed "
                    "but it may not be running it[/bold yellow]"
                )
            if e.recovery_hint:
                console.print(f"💡 {e.recovery_hint}\n")
            sys.exit(1)
        except PreconditionError as e:
            console.print(f"\n[bold red]❌ {e}[/bold red]\n")
            sys.exit(2)

        if result.service_active:
            console.print(f"✅ {settings.service_name} is active in the guest")
        else:
            console.print(
                f"[yellow]⚠️  {settings.service_name} is not active after restart "
                f"(check 'journalctl -u {settings.service_name}' in the guest)[/yellow]"
            )

        try:
            sync_result = sync(
                staging_dir,
                mode,
                copy_private_key,
                environment=get_host_environment(settings),
                settings=settings,
            )
        except HostSyncError as e:
            console.print(f"\n[bold red]❌ {e}[/bold red]\n")
            sys.exit(1)
    finally:
        if staging_dir is not None:
            shutil.rmtree(staging_dir, ignore_errors=True)

    for path in sync_result.copied:
        console.print(f"✅ Copied [green]{path}[/green]")
    for path in sync_result.removed:
        console.print(f"🗑️  Removed [dim]{path}[/dim]")
    for name, value in sync_result.endpoint.environment().items():
        console.print(f"✅ {name}=[cyan]{value}[/cyan]")

    if check:
        ping = ping_daemon(sync_result.endpoint, timeout=settings.ping_timeout)
        if ping.ok:
            console.print(f"✅ Daemon reachable: {ping.detail}")
        elif ping.skipped:
            console.print(f"[dim]Connectivity check skipped: {ping.detail}[/dim]")
        else:
            console.print(f"[yellow]⚠️  Daemon not reachable from this host: {ping.detail}[/yellow]")

    console.print("\n[bold green]✅ Setup complete![/bold green]")
    console.print("[dim]Open a new terminal to pick up the Docker environment.[/dim]\n")


@main.command()
@click.option("--distro", default=None, help="WSL distribution (default: WSL default)")
def status(distro: str | None) -> None:
    """Show the recorded endpoint and guest daemon state"""
    from wsl_dockerd.core.exceptions import HostSyncError
    from wsl_dockerd.guest.probe import service_active
    from wsl_dockerd.guest.shell import get_guest_shell
    from wsl_dockerd.host.environment import get_host_environment, read_endpoint
    from wsl_dockerd.security.models import CertificateBundle

    settings = _load_settings(distro)
    env = get_host_environment(settings, mirror_process=False)

    try:
        endpoint = read_endpoint(env)
    except HostSyncError as e:
        console.print(f"\n[bold red]❌ {e}[/bold red]\n")
        sys.exit(1)

    table = Table(title="wsl-dockerd Status", show_header=True, header_style="bold cyan")
    table.add_column("Check", style="white")
    table.add_column("Value", style="dim")
    table.add_column("Status", style="white")

    if endpoint is None:
        table.add_row("Endpoint", "not configured", "⚠️")
    else:
        table.add_row("Mode", endpoint.mode.value, "✅" if endpoint.tls else "⚠️")
        for name, value in endpoint.environment().items():
            table.add_row(name, value, "✅")
        if endpoint.tls:
            for name in (CertificateBundle.CA_CERT, CertificateBundle.CLIENT_CERT, CertificateBundle.CLIENT_KEY):
                present = (endpoint.cert_path / name).exists()
                table.add_row(name, str(endpoint.cert_path / name), "✅" if present else "➖")

    shell = get_guest_shell(settings.distro)
    active = service_active(shell, settings.service_name, timeout=settings.probe_timeout)
    table.add_row(f"{settings.service_name} ({shell.name})", "active" if active else "inactive", "✅" if active else "❌")

    console.print()
    console.print(table)
    console.print()


@main.command()
def check() -> None:
    """Ping the daemon at the recorded endpoint"""
    from wsl_dockerd.core.exceptions import HostSyncError
    from wsl_dockerd.host.environment import get_host_environment, read_endpoint
    from wsl_dockerd.host.smoke import ping_daemon

    settings = _load_settings(None)
    try:
        endpoint = read_endpoint(get_host_environment(settings, mirror_process=False))
    except HostSyncError as e:
        console.print(f"\n[bold red]❌ {e}[/bold red]\n")
        sys.exit(1)

    if endpoint is None:
        console.print("\n[yellow]No endpoint recorded yet[/yellow]")
        console.print("Configure one with: [cyan]wsl-dockerd setup[/cyan]\n")
        sys.exit(1)

    ping = ping_daemon(endpoint, timeout=settings.ping_timeout)
    if ping.ok:
        console.print(f"\n✅ {endpoint.address}: {ping.detail}\n")
    elif ping.skipped:
        console.print(f"\n[dim]{endpoint.address}: {ping.detail}[/dim]\n")
    else:
        console.print(f"\n[bold red]❌ {endpoint.address}: {ping.detail}[/bold red]\n")
        sys.exit(1)


if __name__ == "__main__":
    main()
