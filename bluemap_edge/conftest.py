import logging
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from bluemap_edge.config import ServerConfig
from bluemap_edge.server import create_app
from bluemap_edge.upstream import UpstreamClient
from bluemap_edge.utils_tests.fake_bluemap import FakeBluemap, build_bluemap_dir


@pytest.fixture(autouse=True)
def propagate_uvicorn_logs(monkeypatch):
    """uvicorn's log config stops propagation; caplog listens on the root logger."""
    monkeypatch.setattr(logging.getLogger("uvicorn"), "propagate", True)


@pytest.fixture
def bluemap_dir(tmp_path: Path) -> Path:
    return build_bluemap_dir(tmp_path)


@pytest.fixture
def server_config(bluemap_dir: Path) -> ServerConfig:
    return ServerConfig(asset_root=bluemap_dir)


@pytest.fixture
def fake_bluemap() -> FakeBluemap:
    return FakeBluemap()


@pytest.fixture
def upstream(fake_bluemap: FakeBluemap, server_config: ServerConfig) -> UpstreamClient:
    return UpstreamClient(
        server_config.upstream_origin, timeout=5, transport=fake_bluemap.transport()
    )


@pytest.fixture
def client(server_config: ServerConfig, upstream: UpstreamClient):
    app = create_app(server_config, upstream=upstream)
    with TestClient(app) as test_client:
        yield test_client
