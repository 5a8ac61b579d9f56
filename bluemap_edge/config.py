import ipaddress
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import bluemap_edge.vars as env
from bluemap_edge.errors import ConfigurationError

logger = logging.getLogger("uvicorn.error")


def _optional_path(value) -> Optional[Path]:
    if value is None or value == "":
        return None
    return Path(value).expanduser()


def format_authority(host: str, port: int) -> str:
    """Join host and port into an authority, bracketing IPv6 literals."""
    try:
        if ipaddress.ip_address(host).version == 6:
            return f"[{host}]:{port}"
    except ValueError:
        pass
    return f"{host}:{port}"


@dataclass(frozen=True)
class ServerConfig:
    """Startup configuration, built once and shared read-only afterwards."""

    asset_root: Path
    listen_host: str = "0.0.0.0"
    listen_port: int = 31283
    upstream_host: str = "127.0.0.1"
    upstream_port: int = 8100
    tls_cert_path: Optional[Path] = None
    tls_key_path: Optional[Path] = None
    upstream_timeout: float = 300.0
    metrics_enabled: bool = False

    @classmethod
    def from_values(
        cls,
        asset_root,
        listen_host: Optional[str] = None,
        listen_port: Optional[int] = None,
        upstream_host: Optional[str] = None,
        upstream_port: Optional[int] = None,
        tls_cert_path=None,
        tls_key_path=None,
        upstream_timeout: Optional[float] = None,
        metrics_enabled: Optional[bool] = None,
    ) -> "ServerConfig":
        """Build a config from raw CLI/environment values, falling back to vars."""
        if not asset_root:
            raise ConfigurationError("No Bluemap data directory was provided")
        return cls(
            asset_root=Path(asset_root).expanduser().absolute(),
            listen_host=listen_host if listen_host is not None else env.HOST,
            listen_port=listen_port if listen_port is not None else env.PORT,
            upstream_host=(
                upstream_host if upstream_host is not None else env.BLUEMAP_HOST
            ),
            upstream_port=(
                upstream_port if upstream_port is not None else env.BLUEMAP_PORT
            ),
            tls_cert_path=_optional_path(
                tls_cert_path if tls_cert_path is not None else env.TLS_CERT
            ),
            tls_key_path=_optional_path(
                tls_key_path if tls_key_path is not None else env.TLS_KEY
            ),
            upstream_timeout=(
                upstream_timeout
                if upstream_timeout is not None
                else env.PROXY_TIMEOUT
            ),
            metrics_enabled=(
                metrics_enabled
                if metrics_enabled is not None
                else env.METRICS_ENABLED
            ),
        )

    @property
    def web_root(self) -> Path:
        return self.asset_root / "web"

    @property
    def index_file(self) -> Path:
        return self.web_root / "index.html"

    @property
    def upstream_origin(self) -> str:
        return format_authority(self.upstream_host, self.upstream_port)

    @property
    def tls_enabled(self) -> bool:
        return self.tls_cert_path is not None and self.tls_key_path is not None

    def validate(self) -> None:
        """
        Check the startup invariants. Must run before any listener is bound.

        Raises:
            ConfigurationError: describing the first violated invariant
        """
        if not self.asset_root.is_dir():
            raise ConfigurationError(
                f"Provided BLUEMAP_DIR is not a valid directory: {self.asset_root}"
            )
        # A Bluemap data directory is recognised by its web/index.html
        if not self.index_file.is_file():
            raise ConfigurationError(
                "Provided BLUEMAP_DIR does not look like a valid Bluemap data "
                "directory. Did you point it to the root directory? "
                f"Provided path: {self.asset_root}"
            )

        if (self.tls_cert_path is None) != (self.tls_key_path is None):
            missing = "key" if self.tls_key_path is None else "certificate"
            raise ConfigurationError(
                f"TLS {missing} is missing: both a certificate and a key are "
                "required to enable TLS"
            )

        for name, host in (
            ("listen host", self.listen_host),
            ("Bluemap host", self.upstream_host),
        ):
            if not host or not host.strip():
                raise ConfigurationError(f"The {name} must not be empty")

        for name, port in (
            ("listen port", self.listen_port),
            ("Bluemap port", self.upstream_port),
        ):
            if not 0 < port < 65536:
                raise ConfigurationError(f"Invalid {name}: {port}")

        if self.upstream_timeout <= 0:
            raise ConfigurationError(
                f"Proxy timeout must be positive, got {self.upstream_timeout}"
            )

        logger.debug(f"Configuration validated: {self}")
