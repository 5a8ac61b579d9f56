from .store import (
    AssetStore,
    ResolvedAsset,
    parse_accept_encoding,
    serve_asset,
)

__all__ = [
    "AssetStore",
    "ResolvedAsset",
    "parse_accept_encoding",
    "serve_asset",
]
