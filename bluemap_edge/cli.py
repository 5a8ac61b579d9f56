import argparse
import logging
import sys
from typing import Optional, Sequence

import bluemap_edge.vars as env
from bluemap_edge import __version__
from bluemap_edge.config import ServerConfig
from bluemap_edge.errors import ConfigurationError
from bluemap_edge.server import serve

logger = logging.getLogger("uvicorn.error")

LOG_LEVELS = ["critical", "error", "warning", "info", "debug", "trace"]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bluemap-edge",
        description=(
            "Serve a Bluemap web application and proxy its live data "
            "to Bluemap's integrated live server."
        ),
    )
    parser.add_argument(
        "bluemap_dir",
        nargs="?",
        default=env.BLUEMAP_DIR or None,
        help="Path to Bluemap's data directory (default: $BLUEMAP_DIR)",
    )

    # Listener
    parser.add_argument("--host", default=env.HOST, help="Host to listen on")
    parser.add_argument(
        "-p", "--port", type=int, default=env.PORT, help="Port to listen on"
    )

    # Bluemap's live server
    parser.add_argument(
        "--bluemap-host", default=env.BLUEMAP_HOST, help="Bluemap's live server host"
    )
    parser.add_argument(
        "--bluemap-port",
        type=int,
        default=env.BLUEMAP_PORT,
        help="Bluemap's live server port",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=env.PROXY_TIMEOUT,
        help="Seconds to wait on the live server before answering 504",
    )

    # TLS
    parser.add_argument(
        "--tls-cert",
        default=env.TLS_CERT or None,
        help="TLS certificate file (PEM). Requires --tls-key",
    )
    parser.add_argument(
        "--tls-key",
        default=env.TLS_KEY or None,
        help="TLS key file (PEM). Requires --tls-cert",
    )

    parser.add_argument(
        "--metrics",
        action="store_true",
        default=env.METRICS_ENABLED,
        help="Expose Prometheus metrics on /metrics",
    )
    parser.add_argument(
        "--log-level", choices=LOG_LEVELS, default=env.LOG_LEVEL, help="Log level"
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    return parser


def config_from_args(args: argparse.Namespace) -> ServerConfig:
    return ServerConfig.from_values(
        args.bluemap_dir,
        listen_host=args.host,
        listen_port=args.port,
        upstream_host=args.bluemap_host,
        upstream_port=args.bluemap_port,
        tls_cert_path=args.tls_cert or "",
        tls_key_path=args.tls_key or "",
        upstream_timeout=args.timeout,
        metrics_enabled=args.metrics,
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = config_from_args(args)
        serve(config, log_level=args.log_level)
    except ConfigurationError as e:
        logging.basicConfig(level=logging.ERROR)
        logger.error(f"Cannot start bluemap-edge: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
