"""
Tests for the daemon ping

httpx.Client is patched with a factory that keeps the caller's arguments
but routes requests through a MockTransport.
"""

from pathlib import Path
from unittest.mock import patch

import httpx
import pytest

from wsl_dockerd.host.smoke import ping_daemon, ping_url
from wsl_dockerd.security.models import EndpointConfig, SecurityMode

RealClient = httpx.Client


def mock_client(handler, seen):
    def factory(**kwargs):
        seen.update(kwargs)
        return RealClient(transport=httpx.MockTransport(handler), timeout=kwargs.get("timeout"))

    return factory


def insecure_endpoint(port=2375):
    return EndpointConfig.for_mode(SecurityMode.INSECURE, "localhost", port)


class TestPingUrl:
    def test_insecure(self):
        assert ping_url(insecure_endpoint()) == "http://localhost:2375/_ping"

    def test_tls(self):
        endpoint = EndpointConfig.for_mode(SecurityMode.TLS, "localhost", 2376, Path("/certs"))

        assert ping_url(endpoint) == "https://localhost:2376/_ping"


class TestPingDaemon:
    """Tests for ping_daemon"""

    def test_ok(self):
        seen = {}

        def handler(request):
            assert request.url.path == "/_ping"
            return httpx.Response(200, text="OK", headers={"API-Version": "1.45"})

        with patch("httpx.Client", side_effect=mock_client(handler, seen)):
            result = ping_daemon(insecure_endpoint(), timeout=3)

        assert result.ok is True
        assert result.detail == "OK (API 1.45)"
        assert seen["timeout"] == 3
        assert "verify" not in seen

    def test_http_error_status(self):
        with patch("httpx.Client", side_effect=mock_client(lambda r: httpx.Response(500), {})):
            result = ping_daemon(insecure_endpoint())

        assert result.ok is False
        assert result.detail == "HTTP 500"

    def test_connection_refused(self):
        def handler(request):
            raise httpx.ConnectError("Connection refused", request=request)

        with patch("httpx.Client", side_effect=mock_client(handler, {})):
            result = ping_daemon(insecure_endpoint())

        assert result.ok is False
        assert result.skipped is False
        assert "refused" in result.detail

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with patch("httpx.Client", side_effect=mock_client(handler, {})):
            result = ping_daemon(insecure_endpoint(), timeout=2)

        assert result.ok is False
        assert "timed out" in result.detail

    def test_tls_without_key_is_skipped(self, tmp_path, bundle_factory):
        bundle = bundle_factory(tmp_path / "certs", include_key=False)
        endpoint = EndpointConfig.for_mode(SecurityMode.TLS, "localhost", 2376, bundle.directory)

        with patch("httpx.Client") as mock_client_class:
            result = ping_daemon(endpoint)

        assert result.skipped is True
        assert result.ok is False
        mock_client_class.assert_not_called()

    def test_tls_presents_client_certificate(self, tmp_path, bundle_factory):
        bundle = bundle_factory(tmp_path / "certs")
        endpoint = EndpointConfig.for_mode(SecurityMode.TLS, "localhost", 2376, bundle.directory)
        seen = {}

        def handler(request):
            assert request.url.scheme == "https"
            return httpx.Response(200, text="OK")

        with patch("httpx.Client", side_effect=mock_client(handler, seen)):
            result = ping_daemon(endpoint)

        assert result.ok is True
        assert seen["verify"] is not None

    def test_tls_unreadable_key(self, tmp_path, bundle_factory):
        bundle = bundle_factory(tmp_path / "certs")
        (bundle.directory / "key.pem").write_text("garbage")
        endpoint = EndpointConfig.for_mode(SecurityMode.TLS, "localhost", 2376, bundle.directory)

        with patch("httpx.Client") as mock_client_class:
            result = ping_daemon(endpoint)

        assert result.ok is False
        assert result.skipped is False
        mock_client_class.assert_not_called()


@pytest.mark.parametrize("port", [2375, 12375])
def test_ping_targets_endpoint_port(port):
    seen_urls = []

    def handler(request):
        seen_urls.append(str(request.url))
        return httpx.Response(200, text="OK")

    with patch("httpx.Client", side_effect=mock_client(handler, {})):
        ping_daemon(insecure_endpoint(port))

    assert seen_urls == [f"http://localhost:{port}/_ping"]
