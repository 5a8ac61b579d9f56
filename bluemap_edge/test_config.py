from dataclasses import FrozenInstanceError
from pathlib import Path

import pytest

from bluemap_edge.config import ServerConfig, format_authority
from bluemap_edge.errors import ConfigurationError


class TestDefaults:
    def test_defaults_match_bluemap_setup(self, bluemap_dir):
        config = ServerConfig(asset_root=bluemap_dir)

        assert config.listen_host == "0.0.0.0"
        assert config.listen_port == 31283
        assert config.upstream_host == "127.0.0.1"
        assert config.upstream_port == 8100
        assert config.tls_enabled is False

    def test_derived_paths(self, bluemap_dir):
        config = ServerConfig(asset_root=bluemap_dir)

        assert config.web_root == bluemap_dir / "web"
        assert config.index_file == bluemap_dir / "web" / "index.html"

    def test_config_is_immutable(self, bluemap_dir):
        config = ServerConfig(asset_root=bluemap_dir)

        with pytest.raises(FrozenInstanceError):
            config.upstream_port = 9000


class TestUpstreamOrigin:
    def test_host_and_port_joined(self, bluemap_dir):
        config = ServerConfig(
            asset_root=bluemap_dir, upstream_host="10.1.2.3", upstream_port=8200
        )
        assert config.upstream_origin == "10.1.2.3:8200"

    def test_origin_is_stable(self, bluemap_dir):
        config = ServerConfig(asset_root=bluemap_dir)
        assert config.upstream_origin == config.upstream_origin == "127.0.0.1:8100"

    def test_ipv6_is_bracketed(self):
        assert format_authority("::1", 8100) == "[::1]:8100"

    def test_hostname_unchanged(self):
        assert format_authority("bluemap.internal", 8100) == "bluemap.internal:8100"


class TestFromValues:
    def test_relative_path_made_absolute(self, bluemap_dir, monkeypatch):
        monkeypatch.chdir(bluemap_dir.parent)

        config = ServerConfig.from_values("bluemap")

        assert config.asset_root.is_absolute()
        assert config.asset_root == bluemap_dir

    def test_explicit_values_win(self, bluemap_dir):
        config = ServerConfig.from_values(
            str(bluemap_dir),
            listen_host="127.0.0.1",
            listen_port=8443,
            upstream_host="192.168.0.10",
            upstream_port=8101,
            tls_cert_path="/etc/tls/cert.pem",
            tls_key_path="/etc/tls/key.pem",
            upstream_timeout=12.5,
            metrics_enabled=True,
        )

        assert config.listen_port == 8443
        assert config.upstream_origin == "192.168.0.10:8101"
        assert config.tls_cert_path == Path("/etc/tls/cert.pem")
        assert config.tls_enabled is True
        assert config.upstream_timeout == 12.5
        assert config.metrics_enabled is True

    def test_falls_back_to_environment_defaults(self, bluemap_dir, monkeypatch):
        monkeypatch.setattr("bluemap_edge.vars.BLUEMAP_PORT", 8765)
        monkeypatch.setattr("bluemap_edge.vars.TLS_CERT", "")

        config = ServerConfig.from_values(str(bluemap_dir))

        assert config.upstream_port == 8765
        assert config.tls_cert_path is None

    def test_empty_tls_values_mean_no_tls(self, bluemap_dir):
        config = ServerConfig.from_values(
            str(bluemap_dir), tls_cert_path="", tls_key_path=""
        )
        assert config.tls_enabled is False

    def test_missing_directory_argument(self):
        with pytest.raises(ConfigurationError, match="No Bluemap data directory"):
            ServerConfig.from_values("")


class TestValidate:
    def test_valid_directory(self, bluemap_dir):
        ServerConfig(asset_root=bluemap_dir).validate()

    def test_not_a_directory(self, tmp_path):
        missing = tmp_path / "nope"

        with pytest.raises(ConfigurationError) as exc_info:
            ServerConfig(asset_root=missing).validate()

        assert str(missing) in str(exc_info.value)

    def test_missing_index_file(self, bluemap_dir):
        (bluemap_dir / "web" / "index.html").unlink()

        with pytest.raises(ConfigurationError) as exc_info:
            ServerConfig(asset_root=bluemap_dir).validate()

        assert "valid Bluemap data directory" in str(exc_info.value)
        assert str(bluemap_dir) in str(exc_info.value)

    def test_pointing_at_web_directory_is_rejected(self, bluemap_dir):
        with pytest.raises(ConfigurationError, match="root directory"):
            ServerConfig(asset_root=bluemap_dir / "web").validate()

    def test_index_must_be_a_file(self, tmp_path):
        (tmp_path / "web" / "index.html").mkdir(parents=True)

        with pytest.raises(ConfigurationError):
            ServerConfig(asset_root=tmp_path).validate()

    def test_certificate_without_key(self, bluemap_dir):
        config = ServerConfig(asset_root=bluemap_dir, tls_cert_path=Path("c.pem"))

        with pytest.raises(ConfigurationError, match="TLS key is missing"):
            config.validate()

    def test_key_without_certificate(self, bluemap_dir):
        config = ServerConfig(asset_root=bluemap_dir, tls_key_path=Path("k.pem"))

        with pytest.raises(ConfigurationError, match="TLS certificate is missing"):
            config.validate()

    @pytest.mark.parametrize("port", [0, -1, 65536])
    def test_invalid_listen_port(self, bluemap_dir, port):
        with pytest.raises(ConfigurationError, match="listen port"):
            ServerConfig(asset_root=bluemap_dir, listen_port=port).validate()

    def test_invalid_upstream_port(self, bluemap_dir):
        with pytest.raises(ConfigurationError, match="Bluemap port"):
            ServerConfig(asset_root=bluemap_dir, upstream_port=70000).validate()

    def test_empty_upstream_host(self, bluemap_dir):
        with pytest.raises(ConfigurationError, match="Bluemap host"):
            ServerConfig(asset_root=bluemap_dir, upstream_host=" ").validate()

    def test_non_positive_timeout(self, bluemap_dir):
        with pytest.raises(ConfigurationError, match="timeout"):
            ServerConfig(asset_root=bluemap_dir, upstream_timeout=0).validate()
