"""FastAPI application factory and route setup for s3bridge."""

import logging
import secrets
import time
from contextlib import AsyncExitStack, asynccontextmanager

from botocore.exceptions import BotoCoreError, ClientError
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from s3bridge.config import S3BridgeConfig
from s3bridge.errors import ProxyError, render_error
from s3bridge.proxy import create_proxy_router
from s3bridge.store import create_store_client

logger = logging.getLogger(__name__)

# Module-level singleton so multiple create_app() calls (e.g. in tests)
# don't re-register the same Prometheus gauge in the global registry.
_instrumentator = None


def _get_instrumentator():
    global _instrumentator
    if _instrumentator is None:
        from prometheus_fastapi_instrumentator import Instrumentator

        _instrumentator = Instrumentator(
            should_instrument_requests_inprogress=True,
            excluded_handlers=["/metrics"],
        )
    return _instrumentator


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(config: S3BridgeConfig) -> FastAPI:
    """Create and configure the s3bridge FastAPI application.

    One proxy router is mounted per configured mount. Middleware assigns a
    request id and logs every request; exception handlers render
    ProxyError exceptions as JSON error bodies (304 without a body).

    The lifespan context manager opens the store client on startup and
    closes it on shutdown.

    Args:
        config: The loaded s3bridge configuration.

    Returns:
        A configured FastAPI application ready to run.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan hook: open the store client and check mounted buckets."""
        async with AsyncExitStack() as stack:
            client = await stack.enter_async_context(create_store_client(config.store))
            if config.store.backend == "memory" and config.store.memory_seed_dir:
                await client.seed_from_directory(config.store.memory_seed_dir)
            app.state.s3_client = client
            logger.info("Store client initialized: %s", config.store.backend)

            await _check_buckets(client, config)

            yield

            app.state.s3_client = None
        logger.info("Store client closed")

    app = FastAPI(
        title="s3bridge",
        version="0.1.0",
        lifespan=lifespan,
        openapi_url=None,
        docs_url=None,
        redoc_url=None,
    )
    app.state.config = config

    _register_exception_handlers(app)
    _register_middleware(app)

    # Wire Prometheus metrics BEFORE the proxy routes so /metrics is not
    # shadowed by a mount at "/".
    if config.observability.metrics:
        import s3bridge.metrics as _metrics

        _metrics.init_metrics()
        _get_instrumentator().instrument(app, metric_namespace="s3bridge").expose(
            app, endpoint="/metrics"
        )

    _setup_routes(app, config)

    return app


async def _check_buckets(client, config: S3BridgeConfig) -> None:
    """Verify each mounted bucket is reachable. Failures only warn.

    The proxy reports store errors per request, so an unreachable bucket
    at startup is not fatal.
    """
    for mount in config.mounts:
        bucket = mount.proxy.bucket
        try:
            await client.head_bucket(Bucket=bucket)
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code", "")
            logger.warning("Cannot access bucket '%s' for mount %s: %s", bucket, mount.path, code)
        except BotoCoreError as exc:
            logger.warning("Cannot reach store for mount %s: %s", mount.path, exc)
        else:
            logger.info("Mounted bucket '%s' at %s", bucket, mount.path)


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


def _register_exception_handlers(app: FastAPI) -> None:
    """Register exception handlers on the FastAPI app."""

    @app.exception_handler(ProxyError)
    async def proxy_error_handler(request: Request, exc: ProxyError) -> Response:
        """Render ProxyError exceptions as JSON error responses.

        304 responses carry no body and no content headers.
        """
        if exc.http_status == 304:
            return Response(status_code=304, headers=exc.headers)

        request_id = getattr(request.state, "request_id", "")
        body = render_error(
            code=exc.code,
            message=exc.message,
            resource=request.url.path,
            request_id=request_id,
            extra_fields=exc.extra_fields,
        )
        return JSONResponse(content=body, status_code=exc.http_status, headers=exc.headers)

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception) -> Response:
        """Catch unexpected exceptions and return InternalError."""
        logger.exception("Unhandled exception in request handler")
        request_id = getattr(request.state, "request_id", "")
        body = render_error(
            code="InternalError",
            message="We encountered an internal error. Please try again.",
            resource=request.url.path,
            request_id=request_id,
        )
        return JSONResponse(content=body, status_code=500)


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------


def _register_middleware(app: FastAPI) -> None:
    """Register middleware on the FastAPI app."""

    # Paths to suppress from per-request logging
    _QUIET_PATHS = {"/metrics", "/health", "/healthz"}

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next) -> Response:
        """Assign a request id, echo it as x-request-id, and log the request.

        The id is stored on request.state so exception handlers can put it
        in error bodies.
        """
        request_id = secrets.token_hex(8).upper()
        request.state.request_id = request_id
        start = time.monotonic()

        response = await call_next(request)

        duration_ms = round((time.monotonic() - start) * 1000, 2)
        response.headers["x-request-id"] = request_id

        # Per-request structured log (skip noisy endpoints). For streamed
        # bodies the duration covers time to headers.
        if request.url.path not in _QUIET_PATHS:
            logger.info(
                "%s %s %d %.2fms",
                request.method,
                request.url.path,
                response.status_code,
                duration_ms,
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status": response.status_code,
                    "duration_ms": duration_ms,
                    "request_id": request_id,
                },
            )

        return response


# ---------------------------------------------------------------------------
# Route handlers
# ---------------------------------------------------------------------------


def _setup_routes(app: FastAPI, config: S3BridgeConfig) -> None:
    """Register health routes and one proxy router per mount.

    Args:
        app: The FastAPI application to attach routes to.
        config: The s3bridge configuration.
    """

    @app.get("/health")
    async def health_check() -> Response:
        """Return health status with the configured mounts."""
        return JSONResponse(
            content={
                "status": "ok",
                "mounts": {m.path: m.proxy.bucket for m in config.mounts},
            }
        )

    if config.observability.health_check:

        @app.get("/healthz")
        async def healthz() -> Response:
            """Liveness check. Returns 200 with empty body."""
            return Response(status_code=200)

    for mount in config.mounts:
        app.include_router(create_proxy_router(mount))
