import logging
import ssl
from contextlib import asynccontextmanager
from typing import Optional, Sequence

import uvicorn
from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SpanExporter,
    SpanExportResult,
)
from prometheus_client import CollectorRegistry, Info
from prometheus_fastapi_instrumentator import Instrumentator

from bluemap_edge import __version__
from bluemap_edge.assets import AssetStore
from bluemap_edge.config import ServerConfig, format_authority
from bluemap_edge.errors import ConfigurationError
from bluemap_edge.routes import router
from bluemap_edge.upstream import UpstreamClient
from bluemap_edge.vars import LOG_LEVEL, OTLP_ENDPOINT, OTLP_HEADERS, SERVICE_NAME

logger = logging.getLogger("uvicorn.error")


class FilteringSpanExporter(SpanExporter):
    """
    Wrapper exporter that filters out noisy ASGI body spans from streaming responses.
    Every relayed tile chunk would otherwise become its own span.
    """

    def __init__(self, exporter: SpanExporter):
        self.exporter = exporter

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        filtered_spans = [
            span
            for span in spans
            if not (
                span.attributes
                and span.attributes.get("asgi.event.type") == "http.response.body"
            )
        ]
        if filtered_spans:
            return self.exporter.export(filtered_spans)
        return SpanExportResult.SUCCESS

    def shutdown(self):
        return self.exporter.shutdown()

    def force_flush(self, timeout_millis: int = 30000):
        return self.exporter.force_flush(timeout_millis)


def parse_otlp_headers(raw: str) -> Optional[dict]:
    """Parse `key=value,key2=value2` into exporter metadata."""
    if not raw:
        return None
    headers = {}
    for item in raw.split(","):
        key, sep, value = item.partition("=")
        if sep and key.strip():
            headers[key.strip().lower()] = value.strip()
    return headers or None


def configure_tracing(service_name: str = SERVICE_NAME) -> TracerProvider:
    """Install the process-wide tracer provider; spans export only with OTLP_ENDPOINT."""
    tracer_provider = TracerProvider(
        resource=Resource.create({"service.name": service_name})
    )
    if OTLP_ENDPOINT:
        otlp_exporter = OTLPSpanExporter(
            endpoint=OTLP_ENDPOINT,
            headers=parse_otlp_headers(OTLP_HEADERS),
        )
        tracer_provider.add_span_processor(
            BatchSpanProcessor(FilteringSpanExporter(otlp_exporter))
        )
        logger.info(f"Exporting traces to {OTLP_ENDPOINT}")
    trace.set_tracer_provider(tracer_provider)
    return tracer_provider


def create_app(
    config: ServerConfig, upstream: Optional[UpstreamClient] = None
) -> FastAPI:
    """
    Build the ASGI application for a validated configuration.

    The asset store and the upstream client are created here, once, and
    handed to the handlers through app.state.
    """
    if upstream is None:
        upstream = UpstreamClient(
            config.upstream_origin, timeout=config.upstream_timeout
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await upstream.aclose()

    app = FastAPI(
        title=SERVICE_NAME,
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.asset_store = AssetStore(config.web_root)
    app.state.upstream = upstream

    registry = CollectorRegistry()
    instrumentator = Instrumentator(registry=registry)
    instrumentator.instrument(app)
    if config.metrics_enabled:
        # Registered ahead of the catch-all route so it is reachable
        instrumentator.expose(app, include_in_schema=False)
    app_info = Info("bluemap_edge_app_info", "Application Info", registry=registry)
    app_info.info({"app_name": SERVICE_NAME, "version": __version__})

    FastAPIInstrumentor.instrument_app(app)

    app.include_router(router)
    return app


def check_tls_material(config: ServerConfig) -> None:
    """
    Load the certificate and key once so broken TLS material stops startup.

    uvicorn loads the pair again itself when it binds; nothing is kept here.
    """
    if not config.tls_enabled:
        return
    context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
    try:
        context.load_cert_chain(
            certfile=str(config.tls_cert_path), keyfile=str(config.tls_key_path)
        )
    except (OSError, ssl.SSLError) as e:
        raise ConfigurationError(
            f"Cannot load TLS certificate {config.tls_cert_path} "
            f"with key {config.tls_key_path}: {e}"
        ) from e


def build_server(
    config: ServerConfig, app: FastAPI, log_level: str = LOG_LEVEL
) -> uvicorn.Server:
    ssl_options = {}
    if config.tls_enabled:
        ssl_options = {
            "ssl_certfile": str(config.tls_cert_path),
            "ssl_keyfile": str(config.tls_key_path),
        }
    uvicorn_config = uvicorn.Config(
        app,
        host=config.listen_host,
        port=config.listen_port,
        log_level=log_level,
        proxy_headers=False,
        **ssl_options,
    )
    return uvicorn.Server(uvicorn_config)


def listen_url(config: ServerConfig) -> str:
    scheme = "https" if config.tls_enabled else "http"
    return f"{scheme}://{format_authority(config.listen_host, config.listen_port)}"


def serve(config: ServerConfig, log_level: str = LOG_LEVEL) -> None:
    """
    Validate the configuration and serve until the process is stopped.

    Raises:
        ConfigurationError: before anything is bound when the configuration
            or the TLS material is unusable
    """
    config.validate()
    check_tls_material(config)

    app = create_app(config)
    # uvicorn.Config configures logging, so it has to exist before we log
    server = build_server(config, app, log_level=log_level)
    configure_tracing()

    logger.info(f"Using Bluemap data directory: {config.asset_root}")
    logger.info(f"Proxying live data to http://{config.upstream_origin}")
    logger.info(f"Using TLS: {config.tls_enabled}")
    logger.debug(f"Trying to bind to port {config.listen_port}")
    logger.info(f"Starting listener on {listen_url(config)}")

    server.run()
