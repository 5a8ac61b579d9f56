import gzip
from pathlib import Path
from typing import Callable, List

import httpx
from fastapi.testclient import TestClient

INDEX_HTML = b"<!DOCTYPE html><html><body>Bluemap</body></html>"
APP_JS = b"console.log('bluemap');\n" * 64
# Stand-in bytes; the asset store never looks inside precompressed files
APP_JS_ZSTD = b"\x28\xb5\x2f\xfd zstd payload"


def build_bluemap_dir(base: Path) -> Path:
    """Lay out a minimal Bluemap data directory with a few precompressed assets."""
    root = base / "bluemap"
    web = root / "web"
    (web / "assets").mkdir(parents=True)
    (web / "maps" / "world1").mkdir(parents=True)

    (web / "index.html").write_bytes(INDEX_HTML)
    (web / "assets" / "app.js").write_bytes(APP_JS)
    (web / "assets" / "app.js.gz").write_bytes(gzip.compress(APP_JS))
    (web / "assets" / "app.js.zst").write_bytes(APP_JS_ZSTD)
    (web / "maps" / "world1" / "settings.json").write_bytes(b'{"name": "world1"}')
    (web / "maps" / "world1" / "index.html").write_bytes(b"<html>world1</html>")

    (root / "secret.txt").write_bytes(b"not for the web")
    return root


def live_response(status_code: int = 200, body: bytes = b"", headers=None) -> httpx.Response:
    """A response whose body is still unread, as it is when it comes off a socket."""
    return httpx.Response(status_code, headers=headers, stream=httpx.ByteStream(body))


class FakeBluemap:
    """Records what reaches the live server and answers with a canned response."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.bodies: List[bytes] = []
        self.respond: Callable[[httpx.Request], httpx.Response] = (
            lambda request: live_response(200, b"live")
        )

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        self.bodies.append(await request.aread())
        return self.respond(request)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def fetch_raw(test_client: TestClient, path: str, accept_encoding: str = "identity"):
    """GET a path and return (response, undecoded body bytes)."""
    with test_client.stream(
        "GET", path, headers={"Accept-Encoding": accept_encoding}
    ) as response:
        body = b"".join(response.iter_raw())
    return response, body
