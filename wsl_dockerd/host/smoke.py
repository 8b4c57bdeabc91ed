"""
Connectivity smoke test

Pings the daemon API (GET /_ping) at the recorded endpoint, using the host
certificate directory for mutual TLS.
"""

import logging
import ssl
from dataclasses import dataclass

import httpx

from wsl_dockerd.security.models import CertificateBundle, EndpointConfig

logger = logging.getLogger(__name__)


@dataclass
class PingResult:
    """Outcome of a daemon ping"""

    ok: bool
    detail: str
    skipped: bool = False


def ping_url(endpoint: EndpointConfig) -> str:
    return f"{endpoint.mode.url_scheme}://{endpoint.host}:{endpoint.port}/_ping"


def ping_daemon(endpoint: EndpointConfig, timeout: float = 10.0) -> PingResult:
    """
    Ping the daemon at an endpoint.

    A TLS endpoint without a host-side key.pem cannot authenticate, so the
    check is skipped rather than failed.

    Returns:
        PingResult; network and TLS errors are reported, not raised
    """
    url = ping_url(endpoint)
    client_kwargs: dict = {"timeout": timeout}

    if endpoint.tls:
        cert_dir = endpoint.cert_path
        ca = cert_dir / CertificateBundle.CA_CERT
        cert = cert_dir / CertificateBundle.CLIENT_CERT
        key = cert_dir / CertificateBundle.CLIENT_KEY
        if not key.exists():
            logger.info(f"No client key in {cert_dir}; skipping TLS ping")
            return PingResult(
                ok=False,
                skipped=True,
                detail="client key not on this host; use docker inside the guest",
            )
        try:
            context = ssl.create_default_context(cafile=str(ca))
            context.load_cert_chain(certfile=str(cert), keyfile=str(key))
        except OSError as e:
            logger.warning(f"Cannot load client certificates from {cert_dir}: {e}")
            return PingResult(ok=False, detail=f"unusable certificates in {cert_dir}: {e}")
        client_kwargs["verify"] = context

    logger.info(f"Pinging daemon at {url}")
    try:
        with httpx.Client(**client_kwargs) as client:
            response = client.get(url)
            response.raise_for_status()
    except httpx.TimeoutException:
        logger.warning(f"Daemon ping timed out: {url}")
        return PingResult(ok=False, detail=f"timed out after {timeout}s")
    except httpx.HTTPStatusError as e:
        logger.warning(f"Daemon ping failed: HTTP {e.response.status_code}")
        return PingResult(ok=False, detail=f"HTTP {e.response.status_code}")
    except httpx.HTTPError as e:
        logger.warning(f"Daemon ping failed: {e}")
        return PingResult(ok=False, detail=str(e) or e.__class__.__name__)

    version = response.headers.get("API-Version", "")
    detail = f"{response.text.strip() or 'OK'}" + (f" (API {version})" if version else "")
    logger.info(f"✓ Daemon answered: {detail}")
    return PingResult(ok=True, detail=detail)
