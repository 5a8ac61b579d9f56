import logging
import mimetypes
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from fastapi import Request
from fastapi.responses import FileResponse, PlainTextResponse, RedirectResponse, Response
from starlette.concurrency import run_in_threadpool

from bluemap_edge.errors import AssetNotFound, AssetReadError

logger = logging.getLogger("uvicorn.error")

INDEX_FILE = "index.html"

# Server preference, most preferred first: (content-coding, file suffix)
PRECOMPRESSED_ENCODINGS = (
    ("zstd", ".zst"),
    ("gzip", ".gz"),
)

ALLOWED_METHODS = ("GET", "HEAD")

# Platform mime tables disagree on these
mimetypes.add_type("application/json", ".json")
mimetypes.add_type("text/javascript", ".js")


@dataclass(frozen=True)
class ResolvedAsset:
    path: Path
    stat_result: os.stat_result
    media_type: str
    content_encoding: Optional[str] = None


def parse_accept_encoding(header: Optional[str]) -> List[str]:
    """
    Return the precompressed encodings acceptable to the client, best first.

    Encodings are ordered by q-value; equal q-values keep the server
    preference order. "q=0" excludes an encoding and "*" stands for every
    supported encoding not named explicitly.
    """
    if not header:
        return []

    weights = {}
    wildcard = None
    for part in header.split(","):
        token, _, params = part.strip().partition(";")
        token = token.strip().lower()
        if not token:
            continue
        quality = 1.0
        for param in params.split(";"):
            key, _, value = param.strip().partition("=")
            if key.strip().lower() == "q":
                try:
                    quality = float(value.strip())
                except ValueError:
                    quality = 0.0
        if token == "*":
            wildcard = quality
        else:
            weights[token] = quality

    ranked = []
    for preference, (encoding, _suffix) in enumerate(PRECOMPRESSED_ENCODINGS):
        quality = weights.get(encoding, wildcard)
        if quality is not None and quality > 0:
            ranked.append((-quality, preference, encoding))
    return [encoding for _q, _p, encoding in sorted(ranked)]


def guess_media_type(path: Path) -> str:
    """
    Content-Type for a file sent as is.

    A compressed file requested by its own name is sent without
    Content-Encoding, so it is typed as the archive, not as what it holds.
    """
    for encoding, suffix in PRECOMPRESSED_ENCODINGS:
        if path.name.endswith(suffix):
            return f"application/{encoding}"
    media_type, encoding = mimetypes.guess_type(path.name)
    if encoding is not None:
        return "application/octet-stream"
    return media_type or "application/octet-stream"


class AssetStore:
    """Serves the Bluemap web application from a directory on disk."""

    def __init__(self, root: Path):
        self.root = Path(root).resolve()

    def _safe_path(self, url_path: str) -> Path:
        segments = []
        for segment in url_path.split("/"):
            if segment in ("", "."):
                continue
            if segment == ".." or "\\" in segment or "\x00" in segment:
                logger.warning(f"Rejected asset path outside web root: {url_path!r}")
                raise AssetNotFound(url_path)
            segments.append(segment)

        candidate = self.root.joinpath(*segments)
        # Symlinks must not lead out of the web root either
        real = Path(os.path.realpath(candidate))
        if real != self.root and self.root not in real.parents:
            logger.warning(f"Rejected asset path outside web root: {url_path!r}")
            raise AssetNotFound(url_path)
        return candidate

    def needs_trailing_slash(self, url_path: str) -> bool:
        """True when a directory is requested without its trailing slash."""
        if url_path.endswith("/"):
            return False
        try:
            return self._safe_path(url_path).is_dir()
        except AssetNotFound:
            return False

    def _stat_file(self, path: Path) -> Optional[os.stat_result]:
        try:
            stat_result = path.stat()
        except (FileNotFoundError, NotADirectoryError):
            return None
        except OSError as e:
            raise AssetReadError(f"Cannot stat {path}: {e}") from e
        if not os.path.isfile(path):
            return None
        if not os.access(path, os.R_OK):
            raise AssetReadError(f"Permission denied: {path}")
        return stat_result

    def resolve(self, url_path: str, accept_encoding: Optional[str] = None) -> ResolvedAsset:
        """
        Map a URL path to the file that should be sent for it.

        Raises:
            AssetNotFound: nothing servable exists for the path
            AssetReadError: a candidate exists but cannot be read
        """
        path = self._safe_path(url_path)
        if url_path.endswith("/") or path == self.root or path.is_dir():
            path = path / INDEX_FILE

        media_type = guess_media_type(path)
        suffixes = dict(PRECOMPRESSED_ENCODINGS)
        for encoding in parse_accept_encoding(accept_encoding):
            variant = path.with_name(path.name + suffixes[encoding])
            stat_result = self._stat_file(variant)
            if stat_result is not None:
                return ResolvedAsset(variant, stat_result, media_type, encoding)

        stat_result = self._stat_file(path)
        if stat_result is None:
            raise AssetNotFound(url_path)
        return ResolvedAsset(path, stat_result, media_type)


async def serve_asset(request: Request, store: AssetStore) -> Response:
    """Answer a request from the asset store."""
    if request.method not in ALLOWED_METHODS:
        return PlainTextResponse(
            "Method Not Allowed",
            status_code=405,
            headers={"Allow": ", ".join(ALLOWED_METHODS)},
        )

    url_path = request.scope["path"]
    if await run_in_threadpool(store.needs_trailing_slash, url_path):
        location = url_path + "/"
        if request.url.query:
            location = f"{location}?{request.url.query}"
        return RedirectResponse(location, status_code=307)

    try:
        asset = await run_in_threadpool(
            store.resolve, url_path, request.headers.get("accept-encoding")
        )
    except AssetNotFound:
        return PlainTextResponse("Not Found", status_code=404)
    except AssetReadError as e:
        logger.error(f"Failed to read asset for {url_path}: {e}")
        return PlainTextResponse("Internal Server Error", status_code=500)

    headers = {"Vary": "Accept-Encoding"}
    if asset.content_encoding:
        headers["Content-Encoding"] = asset.content_encoding
    return FileResponse(
        asset.path,
        media_type=asset.media_type,
        headers=headers,
        stat_result=asset.stat_result,
    )
