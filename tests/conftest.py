"""Shared pytest fixtures for s3bridge tests.

A single FastAPI app is created per test session to avoid duplicate
Prometheus metric registration errors (the instrumentator registers
collectors in the global prometheus_client registry).

The store client is placed on ``app.state`` by the ``client`` fixture
instead of the lifespan (which does not run with ASGITransport). Each
test gets a fresh in-memory store.
"""

import pytest
from httpx import ASGITransport, AsyncClient

from s3bridge.config import (
    MountConfig,
    ObservabilityConfig,
    ProxyConfig,
    S3BridgeConfig,
    ServerConfig,
    StoreConfig,
)
from s3bridge.server import create_app
from s3bridge.store.memory import MemoryS3Client

ASSETS_BUCKET = "assets"
DATA_BUCKET = "data"


@pytest.fixture(scope="session")
def config() -> S3BridgeConfig:
    """Create a test config with one mount per proxy policy under test."""
    return S3BridgeConfig(
        server=ServerConfig(host="127.0.0.1", port=8090),
        store=StoreConfig(backend="memory"),
        observability=ObservabilityConfig(metrics=True, health_check=True),
        mounts=[
            MountConfig(
                path="/s3-proxy",
                proxy=ProxyConfig(
                    bucket=ASSETS_BUCKET,
                    key_prefix="site",
                    default_cache_control="max-age=1000",
                ),
            ),
            MountConfig(
                path="/docs",
                proxy=ProxyConfig(bucket=ASSETS_BUCKET, key_prefix="docs", default_key="index.html"),
            ),
            MountConfig(
                path="/data",
                proxy=ProxyConfig(
                    bucket=DATA_BUCKET,
                    key_prefix="datadumps",
                    csv_to_json=True,
                    override_cache_control="max-age=10000",
                ),
            ),
            MountConfig(
                path="/plain",
                proxy=ProxyConfig(
                    bucket=ASSETS_BUCKET,
                    base64_encode=False,
                    custom_header_prefix="x-plain-",
                ),
            ),
            MountConfig(path="/broken", proxy=ProxyConfig(bucket="no-such-bucket")),
        ],
    )


@pytest.fixture(scope="session")
def app(config: S3BridgeConfig):
    """Create a single test FastAPI application for the whole session."""
    return create_app(config)


@pytest.fixture
async def s3() -> MemoryS3Client:
    """A fresh in-memory store with the test buckets created."""
    store = MemoryS3Client()
    await store.create_bucket(Bucket=ASSETS_BUCKET)
    await store.create_bucket(Bucket=DATA_BUCKET)
    return store


@pytest.fixture
async def client(app, s3) -> AsyncClient:
    """Create an async test client wired to the fresh store."""
    old_client = getattr(app.state, "s3_client", None)
    app.state.s3_client = s3

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    app.state.s3_client = old_client
