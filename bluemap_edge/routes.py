from enum import Enum

from fastapi import APIRouter, Request
from fastapi.responses import Response

from bluemap_edge.assets import AssetStore, serve_asset
from bluemap_edge.live_proxy import forward_live_data, is_live_data_path
from bluemap_edge.upstream import UpstreamClient

router = APIRouter()

PROXIED_METHODS = ["GET", "HEAD", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"]


class RouteKind(str, Enum):
    LIVE_DATA = "live_data"
    ASSET = "asset"


def classify(path: str) -> RouteKind:
    """Live data wins; everything else belongs to the web application."""
    if is_live_data_path(path):
        return RouteKind.LIVE_DATA
    return RouteKind.ASSET


def get_asset_store(request: Request) -> AssetStore:
    return request.app.state.asset_store


def get_upstream(request: Request) -> UpstreamClient:
    return request.app.state.upstream


@router.api_route("/{full_path:path}", methods=PROXIED_METHODS, include_in_schema=False)
async def dispatch(request: Request, full_path: str) -> Response:
    if classify(request.scope["path"]) is RouteKind.LIVE_DATA:
        return await forward_live_data(request, get_upstream(request))
    return await serve_asset(request, get_asset_store(request))
