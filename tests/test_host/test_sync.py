"""
Tests for host credential sync
"""

import platform
import stat
from unittest.mock import MagicMock, patch

import pytest

from wsl_dockerd.core.exceptions import HostSyncError
from wsl_dockerd.host.environment import MemoryEnvironment
from wsl_dockerd.host.sync import restrict_private_key, sync, verify_bundle
from wsl_dockerd.security.models import SecurityMode


class TestVerifyBundle:
    """Tests for staged bundle verification"""

    def test_valid_bundle(self, staged_bundle):
        verify_bundle(staged_bundle.directory, include_key=True)

    def test_cert_from_another_ca_is_rejected(self, tmp_path, bundle_factory):
        first = bundle_factory(tmp_path / "first")
        second = bundle_factory(tmp_path / "second")
        (first.directory / "ca.pem").write_bytes(second.ca_pem)

        with pytest.raises(HostSyncError) as exc_info:
            verify_bundle(first.directory)

        assert "not issued by" in str(exc_info.value)

    def test_mismatched_key_is_rejected(self, tmp_path, bundle_factory):
        first = bundle_factory(tmp_path / "first")
        second = bundle_factory(tmp_path / "second")
        (first.directory / "key.pem").write_bytes(second.key_pem)

        with pytest.raises(HostSyncError) as exc_info:
            verify_bundle(first.directory, include_key=True)

        assert "does not match" in str(exc_info.value)

    def test_key_not_checked_without_consent(self, tmp_path, bundle_factory):
        bundle = bundle_factory(tmp_path / "stage", include_key=False)

        verify_bundle(bundle.directory, include_key=False)

    def test_missing_key_with_consent(self, tmp_path, bundle_factory):
        bundle = bundle_factory(tmp_path / "stage", include_key=False)

        with pytest.raises(HostSyncError):
            verify_bundle(bundle.directory, include_key=True)

    @pytest.mark.parametrize("name", ["ca-key.pem", "server-key.pem"])
    def test_staged_guest_only_key_is_rejected(self, staged_bundle, name):
        (staged_bundle.directory / name).write_bytes(staged_bundle.ca_key_pem)

        with pytest.raises(HostSyncError) as exc_info:
            verify_bundle(staged_bundle.directory)

        assert name in str(exc_info.value)

    def test_garbage_certificate(self, staged_bundle):
        (staged_bundle.directory / "cert.pem").write_text("not a certificate")

        with pytest.raises(HostSyncError):
            verify_bundle(staged_bundle.directory)

    def test_missing_ca(self, staged_bundle):
        (staged_bundle.directory / "ca.pem").unlink()

        with pytest.raises(HostSyncError):
            verify_bundle(staged_bundle.directory)


class TestSyncTls:
    """Tests for TLS sync"""

    def test_copies_bundle_with_key(self, staged_bundle, settings):
        env = MemoryEnvironment()

        result = sync(staged_bundle.directory, SecurityMode.TLS, True, env, settings=settings)

        cert_dir = settings.host_cert_dir
        assert (cert_dir / "ca.pem").read_bytes() == staged_bundle.ca_pem
        assert (cert_dir / "cert.pem").read_bytes() == staged_bundle.cert_pem
        assert (cert_dir / "key.pem").read_bytes() == staged_bundle.key_pem
        assert [p.name for p in result.copied] == ["ca.pem", "cert.pem", "key.pem"]
        assert env.values == {
            "DOCKER_HOST": "tcp://localhost:2376",
            "DOCKER_TLS_VERIFY": "1",
            "DOCKER_CERT_PATH": str(cert_dir),
        }

    @pytest.mark.skipif(platform.system() == "Windows", reason="POSIX permission bits")
    def test_key_is_owner_only(self, staged_bundle, settings):
        sync(staged_bundle.directory, SecurityMode.TLS, True, MemoryEnvironment(), settings=settings)

        mode = stat.S_IMODE((settings.host_cert_dir / "key.pem").stat().st_mode)
        assert mode == 0o600

    def test_without_key_removes_stale_copy(self, staged_bundle, settings):
        """Test declining the key removes a key.pem left by an earlier run"""
        cert_dir = settings.host_cert_dir
        cert_dir.mkdir(parents=True)
        (cert_dir / "key.pem").write_text("old key")

        result = sync(staged_bundle.directory, SecurityMode.TLS, False, MemoryEnvironment(), settings=settings)

        assert not (cert_dir / "key.pem").exists()
        assert cert_dir / "key.pem" in result.removed
        assert (cert_dir / "ca.pem").exists()

    def test_rerun_replaces_old_bundle(self, tmp_path, bundle_factory, settings):
        old = bundle_factory(tmp_path / "old")
        new = bundle_factory(tmp_path / "new")
        env = MemoryEnvironment()

        sync(old.directory, SecurityMode.TLS, True, env, settings=settings)
        sync(new.directory, SecurityMode.TLS, True, env, settings=settings)

        assert (settings.host_cert_dir / "ca.pem").read_bytes() == new.ca_pem
        assert (settings.host_cert_dir / "key.pem").read_bytes() == new.key_pem

    def test_invalid_bundle_leaves_host_untouched(self, tmp_path, bundle_factory, settings):
        first = bundle_factory(tmp_path / "first")
        second = bundle_factory(tmp_path / "second")
        (first.directory / "ca.pem").write_bytes(second.ca_pem)
        env = MemoryEnvironment()

        with pytest.raises(HostSyncError):
            sync(first.directory, SecurityMode.TLS, True, env, settings=settings)

        assert not settings.host_cert_dir.exists()
        assert env.values == {}

    def test_tls_requires_bundle(self, settings):
        with pytest.raises(HostSyncError):
            sync(None, SecurityMode.TLS, False, MemoryEnvironment(), settings=settings)


class TestSyncInsecure:
    """Tests for insecure sync"""

    def test_clears_tls_state(self, staged_bundle, settings):
        """Test switching from TLS to insecure leaves only DOCKER_HOST"""
        env = MemoryEnvironment()
        sync(staged_bundle.directory, SecurityMode.TLS, True, env, settings=settings)

        result = sync(None, SecurityMode.INSECURE, False, env, settings=settings)

        assert env.values == {"DOCKER_HOST": "tcp://localhost:2375"}
        for name in ("ca.pem", "cert.pem", "key.pem"):
            assert not (settings.host_cert_dir / name).exists()
        assert len(result.removed) == 3
        assert result.copied == []

    def test_fresh_host(self, settings):
        result = sync(None, SecurityMode.INSECURE, True, MemoryEnvironment(), settings=settings)

        assert result.endpoint.address == "tcp://localhost:2375"
        assert result.endpoint.cert_path is None
        assert result.removed == []


class TestRestrictPrivateKey:
    """Tests for key permission hardening"""

    def test_windows_uses_icacls(self, tmp_path):
        key = tmp_path / "key.pem"
        key.write_text("key")
        completed = MagicMock(returncode=0, stdout="", stderr="")

        with patch("platform.system", return_value="Windows"), patch.dict(
            "os.environ", {"USERNAME": "alice"}
        ), patch("subprocess.run", return_value=completed) as mock_run:
            restrict_private_key(key)

        cmd = mock_run.call_args[0][0]
        assert cmd == ["icacls", str(key), "/inheritance:r", "/grant:r", "alice:(R)"]

    def test_windows_icacls_failure(self, tmp_path):
        key = tmp_path / "key.pem"
        key.write_text("key")
        completed = MagicMock(returncode=5, stdout="", stderr="Access is denied.")

        with patch("platform.system", return_value="Windows"), patch(
            "subprocess.run", return_value=completed
        ):
            with pytest.raises(HostSyncError) as exc_info:
                restrict_private_key(key)

        assert "Access is denied" in str(exc_info.value)

    def test_missing_file_on_posix(self, tmp_path):
        with patch("platform.system", return_value="Linux"):
            with pytest.raises(HostSyncError):
                restrict_private_key(tmp_path / "absent.pem")
