import logging
import re
from typing import AsyncIterator, Dict, Iterable, List, Tuple

import httpx
from fastapi import Request
from fastapi.responses import PlainTextResponse, Response, StreamingResponse
from opentelemetry import trace
from starlette.background import BackgroundTask

from bluemap_edge.errors import HeaderTranslationError
from bluemap_edge.upstream import UpstreamClient
from bluemap_edge.utils.exception_logging import log_exception_with_details

tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

# /maps/{world}/live and everything below it
LIVE_DATA_PATH = re.compile(r"/maps/[^/]+/live(?:/.*)?", re.DOTALL)

# Hop-by-hop headers that should NOT be forwarded (RFC 9110 section 7.6.1)
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "proxy-connection",
    "te",
    "trailer",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

# Replaced by the upstream client itself
CLIENT_OWNED_HEADERS = {"host", "user-agent"}

# RFC 9110 token characters for field names
_FIELD_NAME = re.compile(rb"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")
# Visible ASCII, obs-text, SP and HTAB; no CR, LF, NUL or other controls
_FIELD_VALUE = re.compile(rb"^[\t\x20-\x7e\x80-\xff]*$")


def is_live_data_path(path: str) -> bool:
    return LIVE_DATA_PATH.fullmatch(path) is not None


def get_path_and_query(request: Request) -> str:
    """Return the request target exactly as the client sent it."""
    raw_path = request.scope.get("raw_path")
    if raw_path:
        path = raw_path.split(b"?", 1)[0].decode("latin-1")
    else:
        path = request.url.path
    query_string = request.scope.get("query_string", b"").decode("latin-1")
    if query_string:
        path = f"{path}?{query_string}"
    return path


def prepare_headers(request: Request) -> Dict[str, str]:
    """
    Prepare headers for forwarding to the live server.
    Removes hop-by-hop headers and adds proxy headers.
    """
    headers = {}

    connection_tokens = {
        token.strip().lower()
        for token in request.headers.get("connection", "").split(",")
        if token.strip()
    }
    for name, value in request.headers.items():
        name_lower = name.lower()
        if name_lower in HOP_BY_HOP_HEADERS or name_lower in connection_tokens:
            continue
        if name_lower in CLIENT_OWNED_HEADERS:
            continue
        if name_lower in headers:
            separator = "; " if name_lower == "cookie" else ", "
            headers[name_lower] = f"{headers[name_lower]}{separator}{value}"
        else:
            headers[name_lower] = value

    client_ip = request.client.host if request.client else "unknown"
    existing_xff = headers.get("x-forwarded-for", "")
    headers["x-forwarded-for"] = f"{existing_xff}, {client_ip}".strip(", ")
    headers["x-forwarded-host"] = request.headers.get("host", "")
    headers["x-forwarded-proto"] = request.url.scheme
    headers["x-real-ip"] = client_ip

    # Relayed bytes must not carry an encoding the client never asked for
    if "accept-encoding" not in headers:
        headers["accept-encoding"] = "identity"

    return headers


def has_request_body(request: Request) -> bool:
    if "transfer-encoding" in request.headers:
        return True
    try:
        return int(request.headers.get("content-length", "0")) > 0
    except ValueError:
        return False


def translate_headers(raw_headers: Iterable[Tuple[bytes, bytes]]) -> List[Tuple[bytes, bytes]]:
    """
    Re-validate the live server's response headers for the ASGI side.

    Names are lower-cased as ASGI requires; values are passed through
    byte for byte. Repeated headers keep their order.

    Raises:
        HeaderTranslationError: for the first name or value that is not
            valid HTTP field syntax
    """
    translated = []
    for name, value in raw_headers:
        if not _FIELD_NAME.match(name):
            raise HeaderTranslationError(name, "not a valid field name")
        if not _FIELD_VALUE.match(value):
            raise HeaderTranslationError(name, "value contains control characters")
        name = name.lower()
        if name.decode("ascii") in HOP_BY_HOP_HEADERS:
            continue
        translated.append((name, value))
    return translated


async def stream_response(response: httpx.Response, target_url: str) -> AsyncIterator[bytes]:
    """
    Relay the live server's body as it arrives, without decoding it.
    """
    try:
        async for chunk in response.aiter_raw():
            yield chunk
    except httpx.HTTPError as e:
        # Headers are already sent, so the stream can only be aborted
        log_exception_with_details(
            logger, f"[LiveData] Stream from {target_url} broke off:", e
        )
        raise
    finally:
        await response.aclose()


def _error_response(status_code: int, reason: str) -> Response:
    return PlainTextResponse(reason, status_code=status_code)


async def forward_live_data(request: Request, upstream: UpstreamClient) -> Response:
    """
    Forward a live data request to Bluemap and stream the answer back.

    Status, headers and body are relayed unchanged. Failures to talk to
    Bluemap are logged and answered with 502/504; their details never
    reach the client.
    """
    path_and_query = get_path_and_query(request)
    target_url = upstream.build_url(path_and_query)

    with tracer.start_as_current_span("proxy_live_data") as span:
        span.set_attribute("proxy.target_url", target_url)
        span.set_attribute("proxy.method", request.method)

        logger.debug(f"Proxying {request.method} {path_and_query} -> {target_url}")

        headers = prepare_headers(request)
        content = request.stream() if has_request_body(request) else None

        try:
            response = await upstream.open_stream(
                request.method, path_and_query, headers, content
            )
        except httpx.TimeoutException as e:
            log_exception_with_details(
                logger, f"[LiveData] Timeout while fetching {target_url}:", e
            )
            span.set_attribute("proxy.error", "timeout")
            return _error_response(504, "Gateway Timeout")
        except httpx.ConnectError as e:
            log_exception_with_details(
                logger, f"[LiveData] Cannot connect to Bluemap at {target_url}:", e
            )
            span.set_attribute("proxy.error", "connection_failed")
            return _error_response(502, "Bad Gateway")
        except httpx.HTTPError as e:
            log_exception_with_details(
                logger, f"[LiveData] Error while fetching {target_url}:", e
            )
            span.set_attribute("proxy.error", type(e).__name__)
            return _error_response(502, "Bad Gateway")

        span.set_attribute("proxy.status_code", response.status_code)

        try:
            raw_headers = translate_headers(response.headers.raw)
        except HeaderTranslationError as e:
            await response.aclose()
            log_exception_with_details(
                logger, f"[LiveData] Unusable response from {target_url}:", e
            )
            span.set_attribute("proxy.error", "invalid_header")
            return _error_response(502, "Bad Gateway")

        proxied = StreamingResponse(
            stream_response(response, target_url),
            status_code=response.status_code,
            background=BackgroundTask(response.aclose),
        )
        proxied.raw_headers = raw_headers
        return proxied
